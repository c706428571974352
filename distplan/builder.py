"""Incremental construction of a distribution plan graph."""

from __future__ import annotations

import dataclasses
import logging
import subprocess
from pathlib import Path
from typing import Optional

from distplan.model import (
    TARGET_DIST,
    Archive,
    Artifact,
    ArtifactMode,
    Binary,
    CargoTargetFeatures,
    ChecksumImpl,
    ChecksumStyle,
    DistGraph,
    ExecutableZip,
    ExtraArtifactImpl,
    PackageConfig,
    PackageInfo,
    PreciseImpossibleError,
    Release,
    ReleaseVariant,
    SourceTarball,
    StaticAssetKind,
    Symbols,
    Workspace,
    ZipStyle,
    target_symbol_kind,
)
from distplan.tools import Tools

logger = logging.getLogger(__name__)

_USER_JOB_PREFIX = "./"


def _strip_job_prefix(job: str) -> str:
    return job[len(_USER_JOB_PREFIX):] if job.startswith(_USER_JOB_PREFIX) else job


def _strip_jobs(jobs: Optional[list[str]]) -> list[str]:
    return [_strip_job_prefix(str(job)) for job in jobs or []]


def _merge_package_config(package: PackageInfo, workspace: Workspace) -> PackageConfig:
    """Fill unset package settings from the workspace defaults."""
    own = package.config
    defaults = workspace.config.defaults
    inherited = {
        f.name: getattr(defaults, f.name)
        for f in dataclasses.fields(PackageConfig)
        if getattr(own, f.name) is None
    }
    merged = dataclasses.replace(own, **inherited)
    ws = workspace.config
    if merged.features is None:
        merged.features = ws.features
    if merged.default_features is None:
        merged.default_features = ws.default_features
    if merged.all_features is None:
        merged.all_features = ws.all_features
    return merged


class DistGraphBuilder:
    """Builds up a :class:`DistGraph` release by release."""

    def __init__(self, tools: Tools, workspace: Workspace, artifact_mode: ArtifactMode,
                 allow_all_dirty: bool):
        self.workspace = workspace
        self.artifact_mode = artifact_mode
        ws = workspace.config

        if ws.rust_toolchain_version is not None:
            logger.warning(
                "rust-toolchain-version is deprecated, use rust-toolchain.toml "
                "if you want pinned toolchains"
            )

        mismatched: list[str] = []
        self.package_configs: list[PackageConfig] = []
        for package in workspace.packages:
            merged = _merge_package_config(package, workspace)
            if (
                merged.features != ws.features
                or merged.all_features != ws.all_features
                or merged.default_features != ws.default_features
            ):
                mismatched.append(package.name)
            self.package_configs.append(merged)

        requires_precise = bool(mismatched)
        if ws.precise_builds is None:
            logger.info("force-enabling precise-builds to handle your build features")
            precise_builds = requires_precise
        else:
            if not ws.precise_builds and requires_precise:
                raise PreciseImpossibleError(mismatched)
            precise_builds = ws.precise_builds

        publish_jobs: list[str] = []
        user_publish_jobs: list[str] = []
        for job in ws.publish_jobs or []:
            job = str(job)
            if job.startswith(_USER_JOB_PREFIX):
                user_publish_jobs.append(_strip_job_prefix(job))
            else:
                publish_jobs.append(job)

        self.publish_prereleases = bool(ws.publish_prereleases)

        self.graph = DistGraph(
            tools=tools,
            target_dir=workspace.target_dir,
            workspace_dir=workspace.workspace_dir,
            dist_dir=workspace.target_dir / TARGET_DIST,
            is_init=ws.cargo_dist_version is not None,
            precise_builds=precise_builds,
            merge_tasks=bool(ws.merge_tasks),
            fail_fast=bool(ws.fail_fast),
            create_release=True if ws.create_release is None else ws.create_release,
            ssldotcom_windows_sign=ws.ssldotcom_windows_sign,
            desired_cargo_dist_version=ws.cargo_dist_version,
            desired_rust_toolchain=ws.rust_toolchain_version,
            pr_run_mode=ws.pr_run_mode or "plan",
            allow_all_dirty=allow_all_dirty,
            allow_dirty=[] if allow_all_dirty else list(ws.allow_dirty or []),
            plan_jobs=_strip_jobs(ws.plan_jobs),
            local_artifacts_jobs=_strip_jobs(ws.local_artifacts_jobs),
            global_artifacts_jobs=_strip_jobs(ws.global_artifacts_jobs),
            host_jobs=_strip_jobs(ws.host_jobs),
            publish_jobs=publish_jobs,
            user_publish_jobs=user_publish_jobs,
            post_announce_jobs=_strip_jobs(ws.post_announce_jobs),
            tap=ws.tap,
            msvc_crt_static=True if ws.msvc_crt_static is None else ws.msvc_crt_static,
            hosting=ws.hosting,
            extra_artifacts=list(ws.extra_artifacts or []),
            github_custom_runners=dict(ws.github_custom_runners or {}),
        )

    def local_artifacts_enabled(self) -> bool:
        """Whether per-variant artifacts are being produced."""
        return self.artifact_mode.local_enabled()

    def global_artifacts_enabled(self) -> bool:
        """Whether per-release artifacts are being produced."""
        return self.artifact_mode.global_enabled()

    def add_release(self, package_index: int) -> int:
        """Add a release for a package and return its index."""
        package = self.workspace.packages[package_index]
        config = self.package_configs[package_index]

        static_assets: list[tuple[StaticAssetKind, Path]] = []
        if config.auto_includes is None or config.auto_includes:
            if package.readme_file is not None:
                static_assets.append((StaticAssetKind.README, package.readme_file))
            if package.changelog_file is not None:
                static_assets.append((StaticAssetKind.CHANGELOG, package.changelog_file))
            static_assets.extend((StaticAssetKind.LICENSE, path) for path in package.license_files)
        static_assets.extend((StaticAssetKind.OTHER, path) for path in config.include or [])

        release = Release(
            app_name=package.name,
            version=package.version,
            id=package.name,
            app_desc=package.description,
            app_authors=list(package.authors),
            app_license=package.license,
            app_repository_url=package.repository_url,
            app_homepage_url=package.homepage_url,
            app_keywords=package.keywords,
            windows_archive=config.windows_archive or ZipStyle.ZIP,
            unix_archive=config.unix_archive or ZipStyle.TAR_XZIP,
            checksum=config.checksum or ChecksumStyle.SHA256,
            npm_scope=config.npm_scope,
            static_assets=static_assets,
            install_path=config.install_path or "CARGO_HOME",
            tap=config.tap,
            homebrew_dependencies=dict(config.homebrew_dependencies or {}),
        )
        logger.info("added release %s", release.id)
        self.graph.releases.append(release)
        return len(self.graph.releases) - 1

    def add_binary(self, release_idx: int, package_index: int, binary_name: str) -> None:
        """Record that every variant of the release should provide this binary."""
        self.graph.releases[release_idx].bins.append((package_index, binary_name))

    def add_variant(self, release_idx: int, target: str) -> int:
        """Add a variant of the release for ``target`` and return its index."""
        graph = self.graph
        release = graph.releases[release_idx]
        variant_idx = len(graph.variants)
        variant_id = f"{release.id}-{target}"
        logger.info("added variant %s", variant_id)
        release.variants.append(variant_idx)
        release.targets.append(target)

        exe_ext = ".exe" if "windows" in target else ""
        binaries = []
        for package_index, binary_name in list(release.bins):
            package = self.workspace.packages[package_index]
            config = self.package_configs[package_index]
            binary_id = f"{binary_name}-v{package.version}-{target}"
            all_features = config.all_features is True
            features = CargoTargetFeatures(
                default_features=True if config.default_features is None else config.default_features,
                all_features=all_features,
                features=() if all_features else tuple(config.features or ()),
            )
            logger.info("added binary %s", binary_id)
            graph.binaries.append(Binary(
                id=binary_id,
                pkg_spec=package.name,
                name=binary_name,
                file_name=f"{binary_name}{exe_ext}",
                target=target,
                package_index=package_index,
                pkg_id=package.cargo_package_id,
                features=features,
            ))
            binaries.append(len(graph.binaries) - 1)

        graph.variants.append(ReleaseVariant(
            target=target,
            id=variant_id,
            binaries=binaries,
            static_assets=list(release.static_assets),
        ))
        return variant_idx

    def make_executable_zip_for_variant(self, release_idx: int, variant_idx: int
                                        ) -> tuple[Artifact, list[tuple[int, Path]]]:
        """Describe the executable archive of a variant without adding it to the graph."""
        graph = self.graph
        release = graph.releases[release_idx]
        variant = graph.variants[variant_idx]
        zip_style = release.windows_archive if "windows" in variant.target else release.unix_archive

        dir_name = variant.id
        dir_path = graph.dist_dir / dir_name
        artifact_name = f"{dir_name}{zip_style.ext()}"
        built_assets = [
            (binary_idx, dir_path / graph.binaries[binary_idx].file_name)
            for binary_idx in variant.binaries
        ]
        # zips unpack flat; tarballs carry one top-level directory
        with_root = None if zip_style is ZipStyle.ZIP else dir_name

        artifact = Artifact(
            id=artifact_name,
            target_triples=[variant.target],
            file_path=graph.dist_dir / artifact_name,
            kind=ExecutableZip(),
            archive=Archive(
                dir_path=dir_path,
                zip_style=zip_style,
                with_root=with_root,
                static_assets=list(variant.static_assets),
            ),
            is_global=False,
        )
        return artifact, built_assets

    def add_local_artifact(self, variant_idx: int, artifact: Artifact) -> int:
        """Add an artifact belonging to one variant and return its index."""
        if not self.local_artifacts_enabled():
            raise ValueError("local artifacts are disabled in this artifact mode")
        if artifact.is_global:
            raise ValueError(f"{artifact.id} is a global artifact")
        idx = len(self.graph.artifacts)
        self.graph.variants[variant_idx].local_artifacts.append(idx)
        self.graph.artifacts.append(artifact)
        return idx

    def add_global_artifact(self, release_idx: int, artifact: Artifact) -> int:
        """Add an artifact shared by the whole release and return its index."""
        if not self.global_artifacts_enabled():
            raise ValueError("global artifacts are disabled in this artifact mode")
        if not artifact.is_global:
            raise ValueError(f"{artifact.id} is a local artifact")
        idx = len(self.graph.artifacts)
        self.graph.releases[release_idx].global_artifacts.append(idx)
        self.graph.artifacts.append(artifact)
        return idx

    def add_artifact_checksum(self, variant_idx: int, artifact_idx: int,
                              checksum: ChecksumStyle) -> int:
        """Add a checksum artifact next to a local artifact and return its index."""
        artifact = self.graph.artifacts[artifact_idx]
        checksum_id = f"{artifact.id}.{checksum.ext()}"
        checksum_path = artifact.file_path.parent / checksum_id
        checksum_artifact = Artifact(
            id=checksum_id,
            target_triples=list(artifact.target_triples),
            file_path=checksum_path,
            kind=ChecksumImpl(checksum=checksum, src_path=artifact.file_path,
                              dest_path=checksum_path),
            is_global=False,
        )
        checksum_idx = self.add_local_artifact(variant_idx, checksum_artifact)
        self.graph.artifacts[artifact_idx].checksum = checksum_idx
        return checksum_idx

    def require_binary(self, artifact_idx: int, variant_idx: int, binary_idx: int,
                       dest_path: Path) -> None:
        """Record that an artifact needs a binary built and copied to ``dest_path``."""
        graph = self.graph
        binary = graph.binaries[binary_idx]
        binary.copy_exe_to.append(dest_path)

        if binary.symbols_artifact is None:
            symbol_kind = target_symbol_kind(binary.target)
            if symbol_kind is not None:
                symbol_name = f"{binary.id}.{symbol_kind.ext()}"
                symbol_path = graph.dist_dir / symbol_name
                symbols = Artifact(
                    id=symbol_name,
                    target_triples=[binary.target],
                    file_path=symbol_path,
                    kind=Symbols(kind=symbol_kind),
                    is_global=False,
                )
                binary.symbols_artifact = self.add_local_artifact(variant_idx, symbols)
                binary.copy_symbols_to.append(symbol_path)

        graph.artifacts[artifact_idx].required_binaries[binary_idx] = dest_path

    def add_executable_zip(self, release_idx: int) -> None:
        """Add an executable archive (and its checksum) for every variant of the release."""
        if not self.local_artifacts_enabled():
            return
        release = self.graph.releases[release_idx]
        logger.info("adding executable zip to release %s", release.id)
        for variant_idx in list(release.variants):
            artifact, built_assets = self.make_executable_zip_for_variant(release_idx, variant_idx)
            zip_idx = self.add_local_artifact(variant_idx, artifact)
            for binary_idx, dest_path in built_assets:
                self.require_binary(zip_idx, variant_idx, binary_idx, dest_path)
            if release.checksum is not ChecksumStyle.FALSE:
                self.add_artifact_checksum(variant_idx, zip_idx, release.checksum)

    def add_extra_artifacts(self, config: PackageConfig, release_idx: int) -> None:
        """Add the user-configured extra artifacts as global artifacts."""
        if not self.global_artifacts_enabled():
            return
        dist_dir = self.graph.dist_dir
        for extra in config.extra_artifacts or []:
            for filename in extra.artifacts:
                target_path = dist_dir / filename
                self.add_global_artifact(release_idx, Artifact(
                    id=filename,
                    target_triples=[],
                    file_path=target_path,
                    kind=ExtraArtifactImpl(build=list(extra.build), artifact=target_path),
                    is_global=True,
                ))

    def _is_git_repo(self, git: str) -> bool:
        try:
            completed = subprocess.run(
                [git, "rev-parse", "--show-toplevel"],
                capture_output=True,
                check=False,
                cwd=self.graph.workspace_dir,
            )
        except OSError:
            return False
        return completed.returncode == 0

    def add_source_tarball(self, release_idx: int) -> None:
        """Add a source tarball (and its checksum) if the workspace is a git repository."""
        if not self.global_artifacts_enabled():
            return
        git_tool = self.graph.tools.git
        if git_tool is None:
            logger.warning("skipping source tarball; git not installed")
            return
        if not self._is_git_repo(git_tool.cmd):
            logger.warning("skipping source tarball; no git repo found at %s",
                           self.graph.workspace_dir)
            return

        release = self.graph.releases[release_idx]
        logger.info("adding source tarball to release %s", release.id)
        dist_dir = self.graph.dist_dir
        filename = "source.tar.gz"
        target_path = dist_dir / filename
        artifact_idx = self.add_global_artifact(release_idx, Artifact(
            id=filename,
            target_triples=[],
            file_path=target_path,
            kind=SourceTarball(
                committish="HEAD",
                prefix=f"{release.app_name}-{release.version}/",
                target=target_path,
            ),
            is_global=True,
        ))

        checksum = release.checksum
        if checksum is not ChecksumStyle.FALSE:
            checksum_id = f"{filename}.{checksum.ext()}"
            checksum_path = dist_dir / checksum_id
            checksum_idx = self.add_global_artifact(release_idx, Artifact(
                id=checksum_id,
                target_triples=[],
                file_path=checksum_path,
                kind=ChecksumImpl(checksum=checksum, src_path=target_path,
                                  dest_path=checksum_path),
                is_global=True,
            ))
            self.graph.artifacts[artifact_idx].checksum = checksum_idx