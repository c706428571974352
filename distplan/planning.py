"""Turning releases into artifacts and build steps, and choosing targets and CI."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional, Sequence

from distplan.installers import (
    add_homebrew_installer,
    add_powershell_installer,
    add_shell_installer,
)
from distplan.model import (
    Artifact,
    ArtifactMode,
    ChecksumImpl,
    CopyStep,
    DistGraph,
    ExtraBuildStep,
    GenerateInstallerStep,
    HomebrewInstallerInfo,
    InstallerInfo,
    InstallerStyle,
    MsiInstallerInfo,
    NoTargetsError,
    NpmInstallerInfo,
    SourceTarball,
    SourceTarballStep,
    ZipDirStep,
)
from distplan.packages import add_msi_installer, add_npm_installer

logger = logging.getLogger(__name__)

_INSTALLER_KINDS = (InstallerInfo, HomebrewInstallerInfo, NpmInstallerInfo, MsiInstallerInfo)


def add_installer(builder, release_idx: int, installer: InstallerStyle,
                  download_url: Optional[str]) -> list[int]:
    """Add one kind of installer to a release.

    Returns the indexes of the artifacts that were added (empty if skipped).
    """
    if installer is InstallerStyle.MSI:
        return add_msi_installer(builder, release_idx)
    adders = {
        InstallerStyle.SHELL: add_shell_installer,
        InstallerStyle.POWERSHELL: add_powershell_installer,
        InstallerStyle.NPM: add_npm_installer,
        InstallerStyle.HOMEBREW: add_homebrew_installer,
    }
    idx = adders[installer](builder, release_idx, download_url)
    return [] if idx is None else [idx]


def compute_extra_builds(graph: DistGraph) -> list[ExtraBuildStep]:
    """Build steps for the extra artifacts that survived into the graph."""
    known = {artifact.id for artifact in graph.artifacts}
    return [
        ExtraBuildStep(expected_artifacts=list(extra.artifacts), build_command=list(extra.build))
        for extra in graph.extra_artifacts
        if any(name in known for name in extra.artifacts)
    ]


def build_steps_for_artifacts(artifacts: Iterable[Artifact]) -> list:
    """The steps needed to produce the given artifacts, in order."""
    steps: list = []
    for artifact in artifacts:
        kind = artifact.kind
        if isinstance(kind, _INSTALLER_KINDS):
            # installers are generated by one monolithic step each
            steps.append(GenerateInstallerStep(installer=kind))
        elif isinstance(kind, ChecksumImpl):
            steps.append(kind)
        elif isinstance(kind, SourceTarball):
            steps.append(SourceTarballStep(
                committish=kind.committish, prefix=kind.prefix, target=kind.target,
            ))

        archive = artifact.archive
        if archive is not None:
            # whether a static asset is a file or a dir is decided when the step runs
            steps.extend(
                CopyStep(src_path=src_path, dest_path=archive.dir_path / src_path.name)
                for _, src_path in archive.static_assets
            )
            steps.append(ZipDirStep(
                src_path=archive.dir_path,
                dest_path=artifact.file_path,
                zip_style=archive.zip_style,
                with_root=archive.with_root,
            ))
    return steps


def compute_build_steps(graph: DistGraph) -> None:
    """Fill in the graph's local and global build steps from its artifacts."""
    local_steps = build_steps_for_artifacts(a for a in graph.artifacts if not a.is_global)
    global_steps: list = list(compute_extra_builds(graph))
    global_steps.extend(build_steps_for_artifacts(a for a in graph.artifacts if a.is_global))
    graph.local_build_steps = local_steps
    graph.global_build_steps = global_steps


def select_triples(builder, targets: Sequence[str], host_target: str) -> tuple[list[str], bool]:
    """Choose the target triples to build for.

    Returns the triples and whether package target preferences are bypassed.
    """
    if targets:
        logger.info("using explicit target-triples")
        return list(targets), False
    if builder.artifact_mode is ArtifactMode.HOST:
        logger.info("using host target-triple")
        return [host_target], True
    all_triples = sorted({
        triple for config in builder.package_configs for triple in config.targets or []
    })
    if not all_triples:
        raise NoTargetsError()
    logger.info("using all target-triples")
    return all_triples, False


def compute_releases(builder, announcing: Iterable[tuple[int, Sequence[str]]],
                     triples: Sequence[str], cli_installers: Sequence[InstallerStyle],
                     bypass_package_target_prefs: bool,
                     download_urls: Mapping[str, str]) -> list[int]:
    """Add a release, its variants, artifacts and installers for each announced package.

    ``announcing`` holds (package index, binary names) pairs; ``download_urls``
    maps app names to the URL their artifacts are downloaded from.
    Returns the indexes of the releases that were added.
    """
    added: list[int] = []
    for package_index, binaries in announcing:
        config = builder.package_configs[package_index]
        release_idx = builder.add_release(package_index)
        added.append(release_idx)

        # a library release has nothing to build
        if not binaries:
            continue

        for binary in binaries:
            builder.add_binary(release_idx, package_index, binary)

        package_targets = config.targets or []
        for target in triples:
            if bypass_package_target_prefs or target in package_targets:
                builder.add_variant(release_idx, target)

        builder.add_executable_zip(release_idx)
        builder.add_source_tarball(release_idx)
        builder.add_extra_artifacts(config, release_idx)

        package_installers = config.installers or []
        installers = list(cli_installers) if cli_installers else list(package_installers)
        app_name = builder.graph.releases[release_idx].app_name
        for installer in installers:
            if installer in package_installers:
                add_installer(builder, release_idx, installer, download_urls.get(app_name))
    return added


def select_ci(cli_ci: Sequence[str], workspace_ci: Optional[Sequence[str]]) -> list[str]:
    """The CI styles to use: the workspace's, narrowed to the command line's if given."""
    workspace = list(workspace_ci or [])
    if not cli_ci:
        return workspace
    return sorted(set(cli_ci) & set(workspace))