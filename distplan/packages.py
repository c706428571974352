"""Package-style installers: an npm package and per-target Windows msi installers."""

from __future__ import annotations

import dataclasses
import logging
from typing import Optional

from distplan.installers import (
    ARM64_MACOS,
    X64_GNU,
    X64_MACOS,
    X64_MUSL,
    X64_MUSL_DYNAMIC,
    X64_MUSL_STATIC,
)
from distplan.model import (
    Archive,
    Artifact,
    ChecksumStyle,
    ExecutableZipFragment,
    InstallerInfo,
    InstallerStyle,
    MsiInstallerInfo,
    MultiPackageMsiError,
    NoPackageMsiError,
    NpmInstallerInfo,
    ZipStyle,
)

logger = logging.getLogger(__name__)

_NPM_ROOT_DIR = "package"


def _describe_variant_zip(builder, release_idx: int, variant_idx: int) -> ExecutableZipFragment:
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


def add_npm_installer(builder, release_idx: int, download_url: Optional[str]) -> Optional[int]:
    """Add an npm package that installs the release's prebuilt binaries.

    Returns the new artifact's index, or ``None`` if the installer was skipped.
    """
    if not builder.global_artifacts_enabled():
        return None
    if download_url is None:
        logger.warning("skipping npm installer: couldn't compute a URL to download artifacts from")
        return None
    graph = builder.graph
    release = graph.releases[release_idx]

    if len(release.bins) > 1:
        logger.warning("skipping npm installer: packages with multiple binaries are unsupported\n"
                       "  let us know if you have a use for this, and what should happen!")
        return None
    if not release.bins:
        raise ValueError(f"release {release.id} has no binaries for an npm package")
    bin_name = release.bins[0][1]

    if release.npm_scope is not None:
        npm_package_name = f"{release.npm_scope}/{release.app_name}"
    else:
        npm_package_name = release.app_name
    npm_package_version = str(release.version)

    dir_name = f"{release.id}-npm-package"
    dir_path = graph.dist_dir / dir_name
    zip_style = ZipStyle.TAR_GZIP
    artifact_name = f"{dir_name}{zip_style.ext()}"
    artifact_path = graph.dist_dir / artifact_name
    hint = f"npm install {npm_package_name}@{npm_package_version}"
    desc = "Install prebuilt binaries into your npm project"

    variants = [(idx, graph.variants[idx].target) for idx in release.variants]
    targets = {target for _, target in variants}
    # dynamic musl builds do not exist yet, so the static one always stands in
    do_rosetta_fallback = X64_MACOS in targets and ARM64_MACOS not in targets
    do_gnu_to_musl_fallback = X64_GNU not in targets and X64_MUSL in targets
    do_musl_to_musl_fallback = X64_MUSL in targets

    artifacts: list[ExecutableZipFragment] = []
    target_triples: set[str] = set()
    has_sketchy_archives = False
    for variant_idx, target in variants:
        fragment = _describe_variant_zip(builder, release_idx, variant_idx)
        target_triples.add(target)
        if fragment.zip_style is not ZipStyle.TAR_GZIP:
            has_sketchy_archives = True
        if do_rosetta_fallback and target == X64_MACOS:
            artifacts.append(_retarget(fragment, ARM64_MACOS))
        if target == X64_MUSL:
            fragment = _retarget(fragment, X64_MUSL_STATIC)
        if do_gnu_to_musl_fallback and target == X64_MUSL:
            artifacts.append(_retarget(fragment, X64_GNU))
        if do_musl_to_musl_fallback and target == X64_MUSL:
            artifacts.append(_retarget(fragment, X64_MUSL_DYNAMIC))
        artifacts.append(fragment)

    if has_sketchy_archives:
        logger.warning("the npm installer currently only knows how to unpack .tar.gz archives\n"
                       "  consider setting windows-archive and unix-archive to .tar.gz "
                       "in your config")
    if not artifacts:
        logger.warning("skipping npm installer: not building any supported platforms "
                       "(use --artifacts=global)")
        return None

    inner = InstallerInfo(
        style=InstallerStyle.NPM,
        dest_path=artifact_path,
        app_name=release.app_name,
        app_version=npm_package_version,
        install_path=release.install_path,
        base_url=download_url,
        artifacts=artifacts,
        hint=hint,
        desc=desc,
    )
    installer = NpmInstallerInfo(
        npm_package_name=npm_package_name,
        npm_package_version=npm_package_version,
        package_dir=dir_path,
        bin=bin_name,
        inner=inner,
        npm_package_desc=release.app_desc,
        npm_package_authors=list(release.app_authors),
        npm_package_license=release.app_license,
        npm_package_repository_url=release.app_repository_url,
        npm_package_homepage_url=release.app_homepage_url,
        npm_package_keywords=release.app_keywords,
    )
    return builder.add_global_artifact(release_idx, Artifact(
        id=artifact_name,
        target_triples=sorted(target_triples),
        file_path=artifact_path,
        kind=installer,
        # npm expects the directory inside the tarball to be called "package"
        archive=Archive(
            dir_path=dir_path,
            zip_style=zip_style,
            with_root=_NPM_ROOT_DIR,
            static_assets=list(release.static_assets),
        ),
        is_global=True,
    ))


def add_msi_installer(builder, release_idx: int) -> list[int]:
    """Add an msi installer for every windows variant of a release.

    Returns the indexes of the msi artifacts that were added.
    """
    if not builder.local_artifacts_enabled():
        return []
    graph = builder.graph
    release = graph.releases[release_idx]
    checksum = release.checksum
    added: list[int] = []

    for variant_idx in list(release.variants):
        variant = graph.variants[variant_idx]
        target = variant.target
        if "windows" not in target:
            continue

        artifact_name = f"{variant.id}.msi"
        artifact_path = graph.dist_dir / artifact_name
        dir_path = graph.dist_dir / f"{variant.id}_msi"

        package: Optional[tuple[str, int]] = None
        for binary_idx in variant.binaries:
            binary = graph.binaries[binary_idx]
            if package is None:
                package = (binary.pkg_spec, binary.package_index)
            elif package[0] != binary.pkg_spec:
                raise MultiPackageMsiError(artifact_name, package[0], binary.pkg_spec)
        if package is None:
            raise NoPackageMsiError(artifact_name)
        pkg_spec, package_index = package

        manifest_path = builder.workspace.packages[package_index].manifest_path
        wxs_path = manifest_path.parent / "wix" / "main.wxs"

        installer_idx = builder.add_local_artifact(variant_idx, Artifact(
            id=artifact_name,
            target_triples=[target],
            file_path=artifact_path,
            kind=MsiInstallerInfo(
                package_dir=dir_path,
                pkg_spec=pkg_spec,
                target=target,
                file_path=artifact_path,
                wxs_path=wxs_path,
                manifest_path=manifest_path,
            ),
            archive=Archive(dir_path=dir_path, zip_style=ZipStyle.TEMP_DIR),
            is_global=False,
        ))
        for binary_idx in list(variant.binaries):
            file_name = graph.binaries[binary_idx].file_name
            builder.require_binary(installer_idx, variant_idx, binary_idx, dir_path / file_name)
        if checksum is not ChecksumStyle.FALSE:
            builder.add_artifact_checksum(variant_idx, installer_idx, checksum)
        added.append(installer_idx)

    return added