from pathlib import Path

import pytest

from distplan.builder import DistGraphBuilder
from distplan.model import (
    Archive,
    Artifact,
    ArtifactMode,
    ChecksumImpl,
    CopyStep,
    ExecutableZip,
    ExtraArtifact,
    GenerateInstallerStep,
    InstallerStyle,
    NoTargetsError,
    PackageConfig,
    PackageInfo,
    SourceTarball,
    SourceTarballStep,
    StaticAssetKind,
    Workspace,
    ZipDirStep,
    ZipStyle,
)
from distplan.planning import (
    add_installer,
    build_steps_for_artifacts,
    compute_build_steps,
    compute_extra_builds,
    compute_releases,
    select_ci,
    select_triples,
)
from distplan.tools import CargoInfo, Tools

LINUX = "x86_64-unknown-linux-gnu"
WINDOWS = "x86_64-pc-windows-msvc"
URL = "https://example.com/dl"


def _tools():
    return Tools(cargo=CargoInfo(cmd="cargo", version_line=None, host_target=LINUX))


def _builder(tmp_path, mode=ArtifactMode.ALL, configs=None, extra=None):
    configs = configs or [PackageConfig(
        targets=[LINUX, WINDOWS],
        installers=[InstallerStyle.SHELL, InstallerStyle.POWERSHELL, InstallerStyle.MSI],
    )]
    packages = [
        PackageInfo(name=f"app{i}" if i else "app", version="1.0.0",
                    manifest_path=tmp_path / f"p{i}" / "Cargo.toml", config=config)
        for i, config in enumerate(configs)
    ]
    workspace = Workspace(workspace_dir=tmp_path, target_dir=tmp_path / "target",
                          packages=packages)
    if extra is not None:
        workspace.config.extra_artifacts = extra
    return DistGraphBuilder(_tools(), workspace, mode, False)


def _ids(builder):
    return [a.id for a in builder.graph.artifacts]


def test_select_ci_uses_workspace_when_cli_empty():
    assert select_ci([], ["github"]) == ["github"]
    assert select_ci([], None) == []


def test_select_ci_intersects():
    assert select_ci(["github", "other"], ["github"]) == ["github"]
    assert select_ci(["other"], ["github"]) == []


def test_select_triples_explicit(tmp_path):
    builder = _builder(tmp_path)
    assert select_triples(builder, [WINDOWS], LINUX) == ([WINDOWS], False)


def test_select_triples_host_mode_bypasses(tmp_path):
    builder = _builder(tmp_path, mode=ArtifactMode.HOST)
    assert select_triples(builder, [], LINUX) == ([LINUX], True)


def test_select_triples_union_sorted(tmp_path):
    builder = _builder(tmp_path, configs=[
        PackageConfig(targets=[WINDOWS, LINUX]),
        PackageConfig(targets=[LINUX]),
    ])
    triples, bypass = select_triples(builder, [], "ignored")
    assert triples == sorted({LINUX, WINDOWS})
    assert bypass is False


def test_select_triples_no_targets(tmp_path):
    builder = _builder(tmp_path, mode=ArtifactMode.GLOBAL, configs=[PackageConfig()])
    with pytest.raises(NoTargetsError):
        select_triples(builder, [], LINUX)


def test_compute_releases_builds_variants_and_installers(tmp_path):
    builder = _builder(tmp_path)
    added = compute_releases(builder, [(0, ["app"])], [LINUX, WINDOWS], [], False,
                             {"app": URL})
    assert added == [0]
    graph = builder.graph
    assert [v.id for v in graph.variants] == [f"app-{LINUX}", f"app-{WINDOWS}"]
    ids = _ids(builder)
    assert f"app-{LINUX}.tar.xz" in ids
    assert f"app-{LINUX}.tar.xz.sha256" in ids
    assert f"app-{WINDOWS}.zip" in ids
    assert "app-installer.sh" in ids
    assert "app-installer.ps1" in ids
    assert f"app-{WINDOWS}.msi" in ids


def test_compute_releases_respects_package_targets(tmp_path):
    builder = _builder(tmp_path, configs=[PackageConfig(targets=[LINUX])])
    compute_releases(builder, [(0, ["app"])], [LINUX, WINDOWS], [], False, {})
    assert [v.target for v in builder.graph.variants] == [LINUX]


def test_compute_releases_bypass_uses_all_triples(tmp_path):
    builder = _builder(tmp_path, configs=[PackageConfig(targets=[LINUX])])
    compute_releases(builder, [(0, ["app"])], [LINUX, WINDOWS], [], True, {})
    assert [v.target for v in builder.graph.variants] == [LINUX, WINDOWS]


def test_compute_releases_library_has_no_variants(tmp_path):
    builder = _builder(tmp_path)
    compute_releases(builder, [(0, [])], [LINUX], [], False, {"app": URL})
    assert len(builder.graph.releases) == 1
    assert builder.graph.variants == []
    assert builder.graph.artifacts == []


def test_cli_installers_filtered_by_package(tmp_path):
    builder = _builder(tmp_path, configs=[PackageConfig(
        targets=[LINUX], installers=[InstallerStyle.SHELL])])
    compute_releases(builder, [(0, ["app"])], [LINUX],
                     [InstallerStyle.SHELL, InstallerStyle.NPM], False, {"app": URL})
    ids = _ids(builder)
    assert "app-installer.sh" in ids
    assert not any("npm-package" in i for i in ids)


def test_add_installer_without_url_skips(tmp_path):
    builder = _builder(tmp_path)
    compute_releases(builder, [(0, ["app"])], [LINUX], [InstallerStyle.MSI], False, {})
    assert add_installer(builder, 0, InstallerStyle.SHELL, None) == []


def test_add_installer_msi_returns_indexes(tmp_path):
    builder = _builder(tmp_path)
    compute_releases(builder, [(0, ["app"])], [WINDOWS], [InstallerStyle.SHELL], False, {})
    indexes = add_installer(builder, 0, InstallerStyle.MSI, None)
    assert [builder.graph.artifacts[i].id for i in indexes] == [f"app-{WINDOWS}.msi"]


def test_compute_build_steps_splits_local_and_global(tmp_path):
    builder = _builder(tmp_path, configs=[PackageConfig(
        targets=[LINUX], installers=[InstallerStyle.SHELL])])
    compute_releases(builder, [(0, ["app"])], [LINUX], [], False, {"app": URL})
    graph = builder.graph
    compute_build_steps(graph)
    assert [type(s) for s in graph.local_build_steps] == [ZipDirStep, ChecksumImpl]
    zip_step = graph.local_build_steps[0]
    assert zip_step.dest_path == graph.dist_dir / f"app-{LINUX}.tar.xz"
    assert zip_step.with_root == f"app-{LINUX}"
    assert len(graph.global_build_steps) == 1
    assert isinstance(graph.global_build_steps[0], GenerateInstallerStep)


def test_build_steps_copy_static_assets_then_zip(tmp_path):
    readme = tmp_path / "README.md"
    artifact = Artifact(
        id="a.zip", target_triples=[], file_path=tmp_path / "a.zip", kind=ExecutableZip(),
        archive=Archive(dir_path=tmp_path / "a", zip_style=ZipStyle.ZIP,
                        static_assets=[(StaticAssetKind.README, readme)]),
    )
    steps = build_steps_for_artifacts([artifact])
    assert steps[0] == CopyStep(src_path=readme, dest_path=tmp_path / "a" / "README.md")
    assert steps[1] == ZipDirStep(src_path=tmp_path / "a", dest_path=tmp_path / "a.zip",
                                  zip_style=ZipStyle.ZIP, with_root=None)


def test_build_steps_source_tarball(tmp_path):
    target = tmp_path / "source.tar.gz"
    artifact = Artifact(id="source.tar.gz", target_triples=[], file_path=target,
                        kind=SourceTarball(committish="HEAD", prefix="app-1.0.0/",
                                           target=target), is_global=True)
    assert build_steps_for_artifacts([artifact]) == [
        SourceTarballStep(committish="HEAD", prefix="app-1.0.0/", target=target)
    ]


def test_compute_extra_builds_filters_missing(tmp_path):
    extras = [ExtraArtifact(artifacts=["kept.txt"], build=["make", "kept"]),
              ExtraArtifact(artifacts=["gone.txt"], build=["make", "gone"])]
    builder = _builder(tmp_path, extra=extras, configs=[PackageConfig(
        targets=[LINUX], extra_artifacts=[extras[0]])])
    compute_releases(builder, [(0, ["app"])], [LINUX], [], False, {})
    steps = compute_extra_builds(builder.graph)
    assert [(s.expected_artifacts, s.build_command) for s in steps] == [
        (["kept.txt"], ["make", "kept"])
    ]


def test_local_mode_has_no_global_artifacts(tmp_path):
    builder = _builder(tmp_path, mode=ArtifactMode.LOCAL)
    compute_releases(builder, [(0, ["app"])], [LINUX], [], False, {"app": URL})
    assert all(not a.is_global for a in builder.graph.artifacts)
    assert builder.graph.artifacts
    assert isinstance(Path(builder.graph.artifacts[0].file_path), Path)