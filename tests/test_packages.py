import logging

import pytest

from distplan.builder import DistGraphBuilder
from distplan.installers import (
    ARM64_MACOS,
    X64_GNU,
    X64_MACOS,
    X64_MUSL,
    X64_MUSL_DYNAMIC,
    X64_MUSL_STATIC,
)
from distplan.model import (
    ArtifactMode,
    ChecksumImpl,
    ChecksumStyle,
    InstallerStyle,
    MsiInstallerInfo,
    MultiPackageMsiError,
    NoPackageMsiError,
    NpmInstallerInfo,
    PackageConfig,
    PackageInfo,
    Workspace,
    ZipStyle,
)
from distplan.packages import add_msi_installer, add_npm_installer
from distplan.tools import CargoInfo, Tools

URL = "https://example.com/downloads"
WIN = "x86_64-pc-windows-msvc"


def make_builder(tmp_path, packages, mode=ArtifactMode.ALL):
    tools = Tools(cargo=CargoInfo(cmd="cargo", version_line=None, host_target=X64_GNU))
    workspace = Workspace(workspace_dir=tmp_path, target_dir=tmp_path / "target",
                          packages=packages)
    return DistGraphBuilder(tools, workspace, mode, False)


def package(tmp_path, name="app", **config):
    return PackageInfo(name=name, version="1.2.3",
                       manifest_path=tmp_path / name / "Cargo.toml",
                       config=PackageConfig(**config))


def release_with(builder, targets, bins=(("app", 0),)):
    rel = builder.add_release(0)
    for name, pkg in bins:
        builder.add_binary(rel, pkg, name)
    for target in targets:
        builder.add_variant(rel, target)
    return rel


def test_npm_installer_basic_artifact(tmp_path):
    builder = make_builder(tmp_path, [package(tmp_path)])
    rel = release_with(builder, [X64_GNU, WIN])
    idx = add_npm_installer(builder, rel, URL)
    artifact = builder.graph.artifacts[idx]
    assert idx in builder.graph.releases[rel].global_artifacts
    assert artifact.is_global
    assert artifact.id.endswith("-npm-package.tar.gz")
    assert artifact.archive.with_root == "package"
    assert artifact.archive.zip_style is ZipStyle.TAR_GZIP
    assert artifact.target_triples == sorted([X64_GNU, WIN])
    kind = artifact.kind
    assert isinstance(kind, NpmInstallerInfo)
    assert kind.bin == "app"
    assert kind.inner.style is InstallerStyle.NPM
    assert kind.inner.hint == f"npm install app@{kind.npm_package_version}"
    assert kind.npm_package_version == "1.2.3"
    assert kind.package_dir == artifact.archive.dir_path


def test_npm_installer_scope(tmp_path):
    builder = make_builder(tmp_path, [package(tmp_path, npm_scope="@acme")])
    rel = release_with(builder, [X64_GNU])
    idx = add_npm_installer(builder, rel, URL)
    assert builder.graph.artifacts[idx].kind.npm_package_name == "@acme/app"


def test_npm_installer_rosetta_and_musl_fallbacks(tmp_path):
    builder = make_builder(tmp_path, [package(tmp_path)])
    rel = release_with(builder, [X64_MACOS, X64_MUSL])
    idx = add_npm_installer(builder, rel, URL)
    fragments = builder.graph.artifacts[idx].kind.inner.artifacts
    triples = [f.target_triples[0] for f in fragments]
    assert set(triples) == {ARM64_MACOS, X64_MACOS, X64_GNU, X64_MUSL_DYNAMIC, X64_MUSL_STATIC}
    assert X64_MUSL not in triples


def test_npm_installer_skips_multiple_bins(tmp_path):
    builder = make_builder(tmp_path, [package(tmp_path)])
    rel = release_with(builder, [X64_GNU], bins=(("a", 0), ("b", 0)))
    before = len(builder.graph.artifacts)
    assert add_npm_installer(builder, rel, URL) is None
    assert len(builder.graph.artifacts) == before


def test_npm_installer_skips_without_url_or_in_local_mode(tmp_path):
    builder = make_builder(tmp_path, [package(tmp_path)])
    rel = release_with(builder, [X64_GNU])
    assert add_npm_installer(builder, rel, None) is None
    local = make_builder(tmp_path, [package(tmp_path)], ArtifactMode.LOCAL)
    rel2 = release_with(local, [X64_GNU])
    assert add_npm_installer(local, rel2, URL) is None
    assert local.graph.artifacts == []


def test_npm_installer_warns_on_non_gzip_archives(tmp_path, caplog):
    builder = make_builder(tmp_path, [package(tmp_path)])
    rel = release_with(builder, [X64_GNU])
    with caplog.at_level(logging.WARNING):
        add_npm_installer(builder, rel, URL)
    assert "only knows how to unpack .tar.gz" in caplog.text


def test_npm_installer_no_warning_for_gzip(tmp_path, caplog):
    builder = make_builder(tmp_path, [package(tmp_path, unix_archive=ZipStyle.TAR_GZIP)])
    rel = release_with(builder, [X64_GNU])
    with caplog.at_level(logging.WARNING):
        add_npm_installer(builder, rel, URL)
    assert "tar.gz" not in caplog.text


def test_msi_installer_for_windows_variant(tmp_path):
    pkg = package(tmp_path)
    builder = make_builder(tmp_path, [pkg])
    rel = release_with(builder, [X64_GNU, WIN])
    added = add_msi_installer(builder, rel)
    assert len(added) == 1
    graph = builder.graph
    artifact = graph.artifacts[added[0]]
    variant = graph.variants[graph.releases[rel].variants[1]]
    assert artifact.id == f"{variant.id}.msi"
    assert artifact.target_triples == [WIN]
    assert not artifact.is_global
    assert artifact.archive.zip_style is ZipStyle.TEMP_DIR
    assert added[0] in variant.local_artifacts
    kind = artifact.kind
    assert isinstance(kind, MsiInstallerInfo)
    assert kind.wxs_path == pkg.manifest_path.parent / "wix" / "main.wxs"
    assert kind.pkg_spec == "app"
    binary_idx = variant.binaries[0]
    dest = artifact.archive.dir_path / "app.exe"
    assert artifact.required_binaries == {binary_idx: dest}
    assert dest in graph.binaries[binary_idx].copy_exe_to
    checksum = graph.artifacts[artifact.checksum]
    assert isinstance(checksum.kind, ChecksumImpl)
    assert checksum.kind.src_path == artifact.file_path


def test_msi_installer_without_checksum(tmp_path):
    builder = make_builder(tmp_path, [package(tmp_path, checksum=ChecksumStyle.FALSE)])
    rel = release_with(builder, [WIN])
    added = add_msi_installer(builder, rel)
    assert builder.graph.artifacts[added[0]].checksum is None
    assert len(builder.graph.artifacts) == 1


def test_msi_installer_global_mode_adds_nothing(tmp_path):
    builder = make_builder(tmp_path, [package(tmp_path)], ArtifactMode.GLOBAL)
    rel = release_with(builder, [WIN])
    assert add_msi_installer(builder, rel) == []
    assert builder.graph.artifacts == []


def test_msi_installer_multi_package_error(tmp_path):
    builder = make_builder(tmp_path, [package(tmp_path, "app"), package(tmp_path, "other")])
    rel = release_with(builder, [WIN], bins=(("app", 0), ("tool", 1)))
    with pytest.raises(MultiPackageMsiError) as info:
        add_msi_installer(builder, rel)
    assert info.value.spec1 == "app"
    assert info.value.spec2 == "other"


def test_msi_installer_no_package_error(tmp_path):
    builder = make_builder(tmp_path, [package(tmp_path)])
    rel = release_with(builder, [WIN], bins=())
    with pytest.raises(NoPackageMsiError) as info:
        add_msi_installer(builder, rel)
    assert info.value.artifact_name.endswith(".msi")