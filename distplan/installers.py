"""Global installers: shell script, powershell script and Homebrew formula."""

from __future__ import annotations

import dataclasses
import logging
import re
from typing import Optional

from distplan.model import (
    Artifact,
    ExecutableZipFragment,
    HomebrewInstallerInfo,
    InstallerInfo,
    InstallerStyle,
)

logger = logging.getLogger(__name__)

X64_MACOS = "x86_64-apple-darwin"
ARM64_MACOS = "aarch64-apple-darwin"
X64_GNU = "x86_64-unknown-linux-gnu"
ARM64_GNU = "aarch64-unknown-linux-gnu"
X64_MUSL = "x86_64-unknown-linux-musl"
ARM64_MUSL = "aarch64-unknown-linux-musl"
X64_MUSL_STATIC = "x86_64-unknown-linux-musl-static"
X64_MUSL_DYNAMIC = "x86_64-unknown-linux-musl-dynamic"
ARM64_MUSL_STATIC = "aarch64-unknown-linux-musl-static"
ARM64_MUSL_DYNAMIC = "aarch64-unknown-linux-musl-dynamic"

_HOMEBREW_PUBLISH_JOB = "homebrew"
_RUN_STAGE = "run"


def _fragment(builder, release_idx: int, variant_idx: int) -> ExecutableZipFragment:
    """The archive a variant *would* produce, described for an installer."""
    artifact, binaries = builder.make_executable_zip_for_variant(release_idx, variant_idx)
    return ExecutableZipFragment(
        id=artifact.id,
        target_triples=list(artifact.target_triples),
        zip_style=artifact.archive.zip_style,
        binaries=[dest_path.name for _, dest_path in binaries],
    )


def _retarget(fragment: ExecutableZipFragment, triple: str) -> ExecutableZipFragment:
    return dataclasses.replace(fragment, target_triples=[triple])


def _variant_targets(builder, release_idx: int) -> list[tuple[int, str]]:
    graph = builder.graph
    return [(idx, graph.variants[idx].target) for idx in graph.releases[release_idx].variants]


def _to_class_case(name: str) -> str:
    """Turn an app name such as ``my-app`` into a Ruby class name such as ``MyApp``."""
    parts = [part for part in re.split(r"[^0-9A-Za-z]+", name) if part]
    return "".join(part[0].upper() + part[1:] for part in parts)


def _installer_info(release, style: InstallerStyle, artifact_path, download_url: str,
                    artifacts: list[ExecutableZipFragment], hint: str, desc: str) -> InstallerInfo:
    return InstallerInfo(
        style=style,
        dest_path=artifact_path,
        app_name=release.app_name,
        app_version=str(release.version),
        install_path=release.install_path,
        base_url=download_url,
        artifacts=artifacts,
        hint=hint,
        desc=desc,
    )


def add_shell_installer(builder, release_idx: int, download_url: Optional[str]) -> Optional[int]:
    """Add a shell-script installer for the non-windows variants of a release.

    Returns the new artifact's index, or ``None`` if the installer was skipped.
    """
    if not builder.global_artifacts_enabled():
        return None
    if download_url is None:
        logger.warning("skipping shell installer: couldn't compute a URL to download artifacts from")
        return None
    graph = builder.graph
    release = graph.releases[release_idx]
    artifact_name = f"{release.id}-installer.sh"
    artifact_path = graph.dist_dir / artifact_name
    installer_url = f"{download_url}/{artifact_name}"
    hint = f"curl --proto '=https' --tlsv1.2 -LsSf {installer_url} | sh"
    desc = "Install prebuilt binaries via shell script"

    variants = _variant_targets(builder, release_idx)
    targets = {target for _, target in variants}
    # dynamic musl builds do not exist yet, so the static one always stands in
    do_rosetta_fallback = X64_MACOS in targets and ARM64_MACOS not in targets
    do_gnu_to_musl_fallback = X64_GNU not in targets and X64_MUSL in targets
    do_musl_to_musl_fallback = X64_MUSL in targets

    artifacts: list[ExecutableZipFragment] = []
    target_triples: set[str] = set()
    for variant_idx, target in variants:
        if "windows" in target:
            continue
        fragment = _fragment(builder, release_idx, variant_idx)
        target_triples.add(target)
        if do_rosetta_fallback and target == X64_MACOS:
            artifacts.append(_retarget(fragment, ARM64_MACOS))
        if target == X64_MUSL:
            fragment = _retarget(fragment, X64_MUSL_STATIC)
        if do_gnu_to_musl_fallback and target == X64_MUSL:
            artifacts.append(_retarget(fragment, X64_GNU))
        if do_musl_to_musl_fallback and target == X64_MUSL:
            artifacts.append(_retarget(fragment, X64_MUSL_DYNAMIC))
        artifacts.append(fragment)

    if not artifacts:
        logger.warning("skipping shell installer: not building any supported platforms "
                       "(use --artifacts=global)")
        return None

    return builder.add_global_artifact(release_idx, Artifact(
        id=artifact_name,
        target_triples=sorted(target_triples),
        file_path=artifact_path,
        kind=_installer_info(release, InstallerStyle.SHELL, artifact_path, download_url,
                             artifacts, hint, desc),
        is_global=True,
    ))


def add_powershell_installer(builder, release_idx: int,
                             download_url: Optional[str]) -> Optional[int]:
    """Add a powershell-script installer for the windows variants of a release.

    Returns the new artifact's index, or ``None`` if the installer was skipped.
    """
    if not builder.global_artifacts_enabled():
        return None
    if download_url is None:
        logger.warning(
            "skipping powershell installer: couldn't compute a URL to download artifacts from")
        return None
    graph = builder.graph
    release = graph.releases[release_idx]
    artifact_name = f"{release.id}-installer.ps1"
    artifact_path = graph.dist_dir / artifact_name
    installer_url = f"{download_url}/{artifact_name}"
    hint = f"irm {installer_url} | iex"
    desc = "Install prebuilt binaries via powershell script"

    artifacts: list[ExecutableZipFragment] = []
    target_triples: set[str] = set()
    for variant_idx, target in _variant_targets(builder, release_idx):
        if "windows" not in target:
            continue
        target_triples.add(target)
        artifacts.append(_fragment(builder, release_idx, variant_idx))

    if not artifacts:
        logger.warning("skipping powershell installer: not building any supported platforms "
                       "(use --artifacts=global)")
        return None

    return builder.add_global_artifact(release_idx, Artifact(
        id=artifact_name,
        target_triples=sorted(target_triples),
        file_path=artifact_path,
        kind=_installer_info(release, InstallerStyle.POWERSHELL, artifact_path, download_url,
                             artifacts, hint, desc),
        is_global=True,
    ))


def add_homebrew_installer(builder, release_idx: int,
                           download_url: Optional[str]) -> Optional[int]:
    """Add a Homebrew formula for the macOS and Linux variants of a release.

    Returns the new artifact's index, or ``None`` if the formula was skipped.
    """
    if not builder.global_artifacts_enabled():
        return None
    if download_url is None:
        logger.warning("skipping Homebrew formula: couldn't compute a URL to download artifacts from")
        return None
    graph = builder.graph
    release = graph.releases[release_idx]
    artifact_name = f"{release.id}.rb"
    artifact_path = graph.dist_dir / artifact_name

    install_target = release.app_name
    if graph.tap is not None:
        install_target = f"{graph.tap}/{install_target}"
    hint = f"brew install {install_target}"
    desc = "Install prebuilt binaries via Homebrew"

    variants = _variant_targets(builder, release_idx)
    targets = {target for _, target in variants}
    do_rosetta_fallback = X64_MACOS in targets and ARM64_MACOS not in targets
    do_x86_gnu_to_musl_fallback = X64_GNU not in targets and X64_MUSL in targets
    do_arm_gnu_to_musl_fallback = ARM64_GNU not in targets and ARM64_MUSL in targets
    do_x86_musl_to_musl_fallback = X64_MUSL in targets
    do_arm_musl_to_musl_fallback = ARM64_MUSL in targets

    arm64_macos = x86_64_macos = arm64_linux = x86_64_linux = None
    artifacts: list[ExecutableZipFragment] = []
    target_triples: set[str] = set()
    for variant_idx, target in variants:
        if "windows" in target:
            continue
        fragment = _fragment(builder, release_idx, variant_idx)
        target_triples.add(target)

        if target == X64_MACOS:
            x86_64_macos = dataclasses.replace(fragment)
        if target == ARM64_MACOS:
            arm64_macos = dataclasses.replace(fragment)
        if target == X64_GNU:
            x86_64_linux = dataclasses.replace(fragment)
        if target == ARM64_GNU:
            arm64_linux = dataclasses.replace(fragment)

        if do_rosetta_fallback and target == X64_MACOS:
            arm_fragment = _retarget(fragment, ARM64_MACOS)
            artifacts.append(arm_fragment)
            arm64_macos = dataclasses.replace(arm_fragment)

        if target == X64_MUSL:
            fragment = _retarget(fragment, X64_MUSL_STATIC)
        if target == ARM64_MUSL:
            fragment = _retarget(fragment, ARM64_MUSL_STATIC)

        if do_x86_gnu_to_musl_fallback and target == X64_MUSL:
            artifacts.append(_retarget(fragment, X64_GNU))
        if do_x86_musl_to_musl_fallback and target == X64_MUSL:
            artifacts.append(_retarget(fragment, X64_MUSL_DYNAMIC))
        if do_arm_gnu_to_musl_fallback and target == ARM64_MUSL:
            artifacts.append(_retarget(fragment, ARM64_GNU))
        if do_arm_musl_to_musl_fallback and target == ARM64_MUSL:
            artifacts.append(_retarget(fragment, ARM64_MUSL_DYNAMIC))

        artifacts.append(fragment)

    if not artifacts:
        logger.warning("skipping Homebrew installer: not building any supported platforms "
                       "(use --artifacts=global)")
        return None

    homebrew_publish = _HOMEBREW_PUBLISH_JOB in graph.publish_jobs
    if release.tap is not None and not homebrew_publish:
        logger.warning("A Homebrew tap was specified but the Homebrew publish job is disabled\n"
                       "  consider adding \"homebrew\" to publish-jobs in Cargo.toml")
    if homebrew_publish and release.tap is None:
        logger.warning("The Homebrew publish job is enabled but no tap was specified\n"
                       "  consider setting the tap field in Cargo.toml")

    # a dependency with no stages listed is wanted at run time
    dependencies = [
        name for name, stages in release.homebrew_dependencies.items()
        if not stages or _RUN_STAGE in stages
    ]

    formula = HomebrewInstallerInfo(
        name=release.app_name,
        formula_class=_to_class_case(release.app_name),
        inner=_installer_info(release, InstallerStyle.HOMEBREW, artifact_path, download_url,
                              artifacts, hint, desc),
        desc=release.app_desc,
        license=release.app_license,
        homepage=release.app_homepage_url,
        tap=release.tap,
        dependencies=dependencies,
        arm64_macos=arm64_macos,
        x86_64_macos=x86_64_macos,
        arm64_linux=arm64_linux,
        x86_64_linux=x86_64_linux,
    )
    return builder.add_global_artifact(release_idx, Artifact(
        id=artifact_name,
        target_triples=sorted(target_triples),
        file_path=artifact_path,
        kind=formula,
        is_global=True,
    ))