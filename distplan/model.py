"""Data model for a distribution plan: releases, variants, binaries, artifacts and build steps."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

METADATA_DIST = "dist"
"""Key in workspace or package metadata holding our config."""
TARGET_DIST = "distrib"
"""Directory under the target dir where packages are built (never a profile name)."""
PROFILE_DIST = "dist"
"""The build profile used for distributable builds."""

OS_LINUX = "linux"
OS_MACOS = "macos"
OS_WINDOWS = "windows"

CPU_X64 = "x86_64"
CPU_X86 = "x86"
CPU_ARM64 = "arm64"
CPU_ARM = "arm"


class DistError(Exception):
    """Base class for errors raised while planning a distribution."""


class PreciseImpossibleError(DistError):
    """precise-builds was disabled although some packages need their own build features."""

    def __init__(self, packages):
        self.packages = list(packages)
        super().__init__(
            "precise-builds = false was set, but some packages have custom build "
            "features, making it impossible: " + ", ".join(self.packages)
        )


class MultiPackageMsiError(DistError):
    """An msi installer would need binaries from more than one package."""

    def __init__(self, artifact_name, spec1, spec2):
        self.artifact_name = artifact_name
        self.spec1 = spec1
        self.spec2 = spec2
        super().__init__(
            f"{artifact_name} would include binaries from multiple packages "
            f"({spec1} and {spec2}), which msi installers do not support"
        )


class NoPackageMsiError(DistError):
    """An msi installer has no binaries, so no package to build it from."""

    def __init__(self, artifact_name):
        self.artifact_name = artifact_name
        super().__init__(f"{artifact_name} has no binaries, so no package to build an msi for")


class NoTargetsError(DistError):
    """Host mode was disabled but no target triples were given."""

    def __init__(self, message=None):
        super().__init__(
            message
            or "You specified --artifacts, disabling host mode, but specified no targets to build!"
        )


class HostTargetError(DistError):
    """cargo could not be asked for the host target triple."""

    def __init__(self, message=None):
        super().__init__(message or "'cargo -vV' failed to report its host target? Really?")


class ArtifactMode(enum.Enum):
    """Which artifacts this invocation should produce."""

    LOCAL = "local"
    GLOBAL = "global"
    HOST = "host"
    ALL = "all"

    def local_enabled(self) -> bool:
        """Whether per-target (local) artifacts are produced."""
        return self is not ArtifactMode.GLOBAL

    def global_enabled(self) -> bool:
        """Whether target-independent (global) artifacts are produced."""
        return self is not ArtifactMode.LOCAL


class ZipStyle(enum.Enum):
    """The kind of archive to produce."""

    ZIP = "zip"
    TAR_GZIP = "tar.gz"
    TAR_XZIP = "tar.xz"
    TAR_ZSTD = "tar.zst"
    TEMP_DIR = "temp-dir"

    def ext(self) -> str:
        """File extension of the archive, with its leading dot."""
        if self is ZipStyle.TEMP_DIR:
            return ""
        return "." + self.value


class ChecksumStyle(enum.Enum):
    """Checksum algorithm to use for artifacts."""

    SHA256 = "sha256"
    SHA512 = "sha512"
    FALSE = "false"

    def ext(self) -> str:
        """File extension of a checksum file, without a dot."""
        if self is ChecksumStyle.FALSE:
            raise ValueError("checksums are disabled, there is no checksum extension")
        return self.value


class InstallerStyle(enum.Enum):
    """Kinds of installer that can be generated."""

    SHELL = "shell"
    POWERSHELL = "powershell"
    NPM = "npm"
    HOMEBREW = "homebrew"
    MSI = "msi"


class SymbolKind(enum.Enum):
    """A kind of debug symbols."""

    PDB = "pdb"
    DSYM = "dSYM"
    DWP = "dwp"

    def ext(self) -> str:
        """File extension for this kind of symbols."""
        return self.value


class StaticAssetKind(enum.Enum):
    """A kind of static file bundled into archives."""

    README = "readme"
    LICENSE = "license"
    CHANGELOG = "changelog"
    OTHER = "other"


def target_symbol_kind(target: str) -> Optional[SymbolKind]:
    """The kind of symbols a build for ``target`` produces, if they are collected.

    Symbol collection is currently disabled for every platform: pdbs pending a
    redesign, dSYMs because they are directories, and DWPs because cargo does
    not uplift them.
    """
    if "windows-msvc" in target:
        return None
    if "apple" in target:
        return None
    return None


@dataclass(frozen=True, order=True)
class CargoTargetFeatures:
    """Feature flags a cargo build should use."""

    default_features: bool = True
    all_features: bool = False
    features: tuple[str, ...] = ()


@dataclass
class ExtraArtifact:
    """A user-configured command producing extra files to upload."""

    artifacts: list[str]
    build: list[str]


@dataclass
class PackageConfig:
    """Per-package settings; ``None`` means the setting was not given."""

    targets: Optional[list[str]] = None
    installers: Optional[list[InstallerStyle]] = None
    features: Optional[list[str]] = None
    default_features: Optional[bool] = None
    all_features: Optional[bool] = None
    npm_scope: Optional[str] = None
    install_path: Optional[str] = None
    tap: Optional[str] = None
    windows_archive: Optional[ZipStyle] = None
    unix_archive: Optional[ZipStyle] = None
    checksum: Optional[ChecksumStyle] = None
    auto_includes: Optional[bool] = None
    include: Optional[list[Path]] = None
    extra_artifacts: Optional[list[ExtraArtifact]] = None
    homebrew_dependencies: Optional[dict[str, frozenset[str]]] = None


@dataclass
class PackageInfo:
    """A package of the workspace, with its own settings."""

    name: str
    version: str
    manifest_path: Path
    package_root: Optional[Path] = None
    description: Optional[str] = None
    authors: list[str] = field(default_factory=list)
    license: Optional[str] = None
    repository_url: Optional[str] = None
    homepage_url: Optional[str] = None
    keywords: Optional[list[str]] = None
    readme_file: Optional[Path] = None
    changelog_file: Optional[Path] = None
    license_files: list[Path] = field(default_factory=list)
    binaries: list[str] = field(default_factory=list)
    cargo_package_id: Optional[str] = None
    config: PackageConfig = field(default_factory=PackageConfig)


@dataclass
class WorkspaceConfig:
    """Workspace-wide settings; package settings fall back to ``defaults``."""

    cargo_dist_version: Optional[str] = None
    rust_toolchain_version: Optional[str] = None
    precise_builds: Optional[bool] = None
    merge_tasks: Optional[bool] = None
    fail_fast: Optional[bool] = None
    ssldotcom_windows_sign: Optional[str] = None
    ci: Optional[list[str]] = None
    features: Optional[list[str]] = None
    default_features: Optional[bool] = None
    all_features: Optional[bool] = None
    create_release: Optional[bool] = None
    pr_run_mode: Optional[str] = None
    allow_dirty: Optional[list[str]] = None
    msvc_crt_static: Optional[bool] = None
    hosting: Optional[list[str]] = None
    extra_artifacts: Optional[list[ExtraArtifact]] = None
    tap: Optional[str] = None
    plan_jobs: Optional[list[str]] = None
    local_artifacts_jobs: Optional[list[str]] = None
    global_artifacts_jobs: Optional[list[str]] = None
    host_jobs: Optional[list[str]] = None
    publish_jobs: Optional[list[str]] = None
    post_announce_jobs: Optional[list[str]] = None
    publish_prereleases: Optional[bool] = None
    github_custom_runners: Optional[dict[str, str]] = None
    defaults: PackageConfig = field(default_factory=PackageConfig)


@dataclass
class Workspace:
    """A project workspace: its directories, packages and settings."""

    workspace_dir: Path
    target_dir: Path
    manifest_path: Optional[Path] = None
    kind: str = "rust"
    packages: list[PackageInfo] = field(default_factory=list)
    config: WorkspaceConfig = field(default_factory=WorkspaceConfig)


@dataclass
class Binary:
    """A binary to build for one target."""

    id: str
    pkg_spec: str
    name: str
    file_name: str
    target: str
    package_index: int
    pkg_id: Optional[str] = None
    features: CargoTargetFeatures = field(default_factory=CargoTargetFeatures)
    symbols_artifact: Optional[int] = None
    copy_exe_to: list[Path] = field(default_factory=list)
    copy_symbols_to: list[Path] = field(default_factory=list)


@dataclass
class Archive:
    """A directory to fill and then pack into an artifact."""

    dir_path: Path
    zip_style: ZipStyle
    with_root: Optional[str] = None
    static_assets: list[tuple[StaticAssetKind, Path]] = field(default_factory=list)


@dataclass
class ExecutableZip:
    """An archive holding built binaries."""


@dataclass
class Symbols:
    """A debug-symbols artifact."""

    kind: SymbolKind


@dataclass
class ChecksumImpl:
    """Checksum ``src_path`` with ``checksum`` and write it to ``dest_path``."""

    checksum: ChecksumStyle
    src_path: Path
    dest_path: Path


@dataclass
class SourceTarball:
    """A tarball of the source tree at some commit."""

    committish: str
    prefix: str
    target: Path


@dataclass
class ExtraArtifactImpl:
    """A file produced by a user-configured build command."""

    build: list[str]
    artifact: Path


@dataclass
class ExecutableZipFragment:
    """What an installer needs to know about one executable archive."""

    id: str
    target_triples: list[str]
    zip_style: ZipStyle
    binaries: list[str]


@dataclass
class InstallerInfo:
    """Common details of a generated installer."""

    style: InstallerStyle
    dest_path: Path
    app_name: str
    app_version: str
    install_path: str
    base_url: str
    artifacts: list[ExecutableZipFragment]
    hint: str
    desc: str


@dataclass
class HomebrewInstallerInfo:
    """A Homebrew formula."""

    name: str
    formula_class: str
    inner: InstallerInfo
    desc: Optional[str] = None
    license: Optional[str] = None
    homepage: Optional[str] = None
    tap: Optional[str] = None
    dependencies: list[str] = field(default_factory=list)
    arm64_macos: Optional[ExecutableZipFragment] = None
    arm64_macos_sha256: Optional[str] = None
    x86_64_macos: Optional[ExecutableZipFragment] = None
    x86_64_macos_sha256: Optional[str] = None
    arm64_linux: Optional[ExecutableZipFragment] = None
    arm64_linux_sha256: Optional[str] = None
    x86_64_linux: Optional[ExecutableZipFragment] = None
    x86_64_linux_sha256: Optional[str] = None
    style: InstallerStyle = field(default=InstallerStyle.HOMEBREW, init=False)


@dataclass
class NpmInstallerInfo:
    """An npm package that fetches the prebuilt binaries."""

    npm_package_name: str
    npm_package_version: str
    package_dir: Path
    bin: str
    inner: InstallerInfo
    npm_package_desc: Optional[str] = None
    npm_package_authors: list[str] = field(default_factory=list)
    npm_package_license: Optional[str] = None
    npm_package_repository_url: Optional[str] = None
    npm_package_homepage_url: Optional[str] = None
    npm_package_keywords: Optional[list[str]] = None
    style: InstallerStyle = field(default=InstallerStyle.NPM, init=False)


@dataclass
class MsiInstallerInfo:
    """A Windows msi installer."""

    package_dir: Path
    pkg_spec: str
    target: str
    file_path: Path
    wxs_path: Path
    manifest_path: Path
    style: InstallerStyle = field(default=InstallerStyle.MSI, init=False)


Installer = Union[InstallerInfo, HomebrewInstallerInfo, NpmInstallerInfo, MsiInstallerInfo]
ArtifactKind = Union[
    ExecutableZip, Symbols, InstallerInfo, HomebrewInstallerInfo, NpmInstallerInfo,
    MsiInstallerInfo, ChecksumImpl, SourceTarball, ExtraArtifactImpl,
]


@dataclass
class Artifact:
    """A distributable file to produce; ``id`` is its file name."""

    id: str
    target_triples: list[str]
    file_path: Path
    kind: Any
    archive: Optional[Archive] = None
    required_binaries: dict[int, Path] = field(default_factory=dict)
    checksum: Optional[int] = None
    is_global: bool = False


@dataclass
class Release:
    """A version of an application that artifacts are grouped under."""

    app_name: str
    version: str
    id: str
    app_desc: Optional[str] = None
    app_authors: list[str] = field(default_factory=list)
    app_license: Optional[str] = None
    app_repository_url: Optional[str] = None
    app_homepage_url: Optional[str] = None
    app_keywords: Optional[list[str]] = None
    targets: list[str] = field(default_factory=list)
    bins: list[tuple[int, str]] = field(default_factory=list)
    global_artifacts: list[int] = field(default_factory=list)
    variants: list[int] = field(default_factory=list)
    changelog_body: Optional[str] = None
    changelog_title: Optional[str] = None
    windows_archive: ZipStyle = ZipStyle.ZIP
    unix_archive: ZipStyle = ZipStyle.TAR_XZIP
    checksum: ChecksumStyle = ChecksumStyle.SHA256
    npm_scope: Optional[str] = None
    static_assets: list[tuple[StaticAssetKind, Path]] = field(default_factory=list)
    install_path: str = "CARGO_HOME"
    tap: Optional[str] = None
    homebrew_dependencies: dict[str, frozenset[str]] = field(default_factory=dict)


@dataclass
class ReleaseVariant:
    """The part of a release built for one target triple."""

    target: str
    id: str
    binaries: list[int] = field(default_factory=list)
    static_assets: list[tuple[StaticAssetKind, Path]] = field(default_factory=list)
    local_artifacts: list[int] = field(default_factory=list)


@dataclass
class CopyStep:
    """Copy a file or directory, deciding which only when the step runs."""

    src_path: Path
    dest_path: Path


@dataclass
class ZipDirStep:
    """Pack a directory into an archive."""

    src_path: Path
    dest_path: Path
    zip_style: ZipStyle
    with_root: Optional[str] = None


@dataclass
class ExtraBuildStep:
    """Run a user command that produces extra artifacts."""

    expected_artifacts: list[str]
    build_command: list[str]


@dataclass
class GenerateInstallerStep:
    """Generate an installer."""

    installer: Any


@dataclass
class SourceTarballStep:
    """Archive the source tree at a commit."""

    committish: str
    prefix: str
    target: Path


@dataclass
class DistGraph:
    """All the work one invocation has to do, computed up front."""

    tools: Any
    target_dir: Path
    workspace_dir: Path
    dist_dir: Path
    is_init: bool = False
    precise_builds: bool = False
    merge_tasks: bool = False
    fail_fast: bool = False
    create_release: bool = True
    ssldotcom_windows_sign: Optional[str] = None
    desired_cargo_dist_version: Optional[str] = None
    desired_rust_toolchain: Optional[str] = None
    ci_style: list[str] = field(default_factory=list)
    pr_run_mode: str = "plan"
    allow_all_dirty: bool = False
    allow_dirty: list[str] = field(default_factory=list)
    local_build_steps: list[Any] = field(default_factory=list)
    global_build_steps: list[Any] = field(default_factory=list)
    artifacts: list[Artifact] = field(default_factory=list)
    binaries: list[Binary] = field(default_factory=list)
    variants: list[ReleaseVariant] = field(default_factory=list)
    releases: list[Release] = field(default_factory=list)
    plan_jobs: list[str] = field(default_factory=list)
    local_artifacts_jobs: list[str] = field(default_factory=list)
    global_artifacts_jobs: list[str] = field(default_factory=list)
    host_jobs: list[str] = field(default_factory=list)
    publish_jobs: list[str] = field(default_factory=list)
    user_publish_jobs: list[str] = field(default_factory=list)
    post_announce_jobs: list[str] = field(default_factory=list)
    tap: Optional[str] = None
    msvc_crt_static: bool = True
    hosting: Optional[Any] = None
    extra_artifacts: list[ExtraArtifact] = field(default_factory=list)
    github_custom_runners: dict[str, str] = field(default_factory=dict)