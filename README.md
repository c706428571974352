# distplan

`distplan` works out, ahead of time, what is needed to distribute the
binaries of a workspace. It decides which releases to cut and which
target-specific variants each release has. It lists the archives, checksums,
source tarballs and installers to produce, and the build steps that produce
them.

Planning builds nothing. The result is a `DistGraph` that says what *should*
happen. You can report it, inspect it, or pass it to whatever carries out the
steps.

## What gets planned

The graph has roughly this shape:

- **Releases**: one per announced package, with the package name as its id
  (`my-app`). A release holds the global artifacts: shell, PowerShell,
  Homebrew and npm installers, the source tarball, and any extra artifacts
  from the configuration.
- **Variants**: one per release and target triple
  (`my-app-x86_64-unknown-linux-gnu`). A variant holds the local artifacts:
  executable archives, MSI installers and their checksums.
- **Binaries**: one per binary and variant, with ids such as
  `my-app-v1.0.0-x86_64-pc-windows-msvc`. A binary records where its
  executable must be copied. Windows targets get a `.exe` file name.
- **Build steps**: local steps and global steps. They cover extra-artifact
  builds, installer generation, checksums, source tarballs, copying static
  assets, and zipping archive directories.

`ArtifactMode` decides which half of the graph is produced:

| Mode | Local artifacts | Global artifacts |
| --- | --- | --- |
| `LOCAL` | yes | no |
| `GLOBAL` | no | yes |
| `HOST` | yes | yes |
| `ALL` | yes | yes |

Debug-symbol artifacts are modelled (`SymbolKind`, `Symbols`), but
`target_symbol_kind()` currently returns `None` for every target. No symbol
artifacts are planned.

## Modules

### `distplan.model`

The data model:

- The graph and its parts: `DistGraph`, `Release`, `ReleaseVariant`,
  `Binary` and `Artifact`.
- Artifact kinds: `Archive`, `ExecutableZip`, `Symbols`, `ChecksumImpl`,
  `SourceTarball` and `ExtraArtifactImpl`.
- Installer descriptions: `ExecutableZipFragment`, `InstallerInfo`,
  `HomebrewInstallerInfo`, `NpmInstallerInfo` and `MsiInstallerInfo`.
- Build steps: `CopyStep`, `ZipDirStep`, `ExtraBuildStep`,
  `GenerateInstallerStep` and `SourceTarballStep`.
- Enums: `ArtifactMode`, `ZipStyle`, `ChecksumStyle`, `InstallerStyle`,
  `SymbolKind` and `StaticAssetKind`.
- The workspace description: `Workspace`, `PackageInfo`, `PackageConfig`,
  `WorkspaceConfig` and `ExtraArtifact`.
- The `DistError` family of exceptions.

### `distplan.tools`

Discovers the tools on the system and returns them as `Tool`, `CargoInfo` and
`Tools`:

- `cargo()` returns the `CARGO` environment variable, or `cargo` if it is not
  set.
- `get_host_target()` runs `cargo -vV`.
- `parse_host_target()` reads the version line and the `host:` triple from
  the output of `cargo -vV`.
- `find_tool()` runs a tool with a version flag.
- `tool_info()` gathers cargo, rustup, brew and git.

### `distplan.builder`

Provides `DistGraphBuilder`. It merges each package's settings with the
workspace defaults, then adds the parts of the graph: releases, binaries,
variants, executable archives, checksums, extra artifacts and source
tarballs.

The source tarball is added only when git is available and
`git rev-parse --show-toplevel` succeeds in the workspace directory.

### `distplan.installers`

Provides `add_shell_installer`, `add_powershell_installer` and
`add_homebrew_installer`. These add fallback entries:

- Rosetta: an x86_64 macOS build stands in for arm64 when there is no arm64
  build.
- glibc to musl: a musl build stands in for glibc when there is no glibc
  build.
- Static to dynamic musl: a static musl build stands in for dynamic musl.

### `distplan.packages`

Provides `add_npm_installer` and `add_msi_installer`.

### `distplan.planning`

- Target and CI selection: `select_triples` and `select_ci`.
- Releases and installers: `compute_releases` and `add_installer`.
- Build steps: `compute_extra_builds`, `build_steps_for_artifacts` and
  `compute_build_steps`.

## Usage

```python
from pathlib import Path

from distplan.builder import DistGraphBuilder
from distplan.model import ArtifactMode, InstallerStyle, PackageConfig, PackageInfo, Workspace
from distplan.planning import compute_build_steps, compute_releases, select_triples
from distplan.tools import tool_info

workspace = Workspace(
    workspace_dir=Path("."),
    target_dir=Path("target"),
    packages=[
        PackageInfo(
            name="my-app",
            version="1.0.0",
            manifest_path=Path("Cargo.toml"),
            config=PackageConfig(
                targets=["x86_64-unknown-linux-gnu", "x86_64-pc-windows-msvc"],
                installers=[InstallerStyle.SHELL, InstallerStyle.POWERSHELL],
            ),
        )
    ],
)

tools = tool_info()
builder = DistGraphBuilder(tools, workspace, ArtifactMode.ALL, allow_all_dirty=False)

triples, bypass = select_triples(builder, targets=[], host_target=tools.cargo.host_target)
compute_releases(
    builder,
    announcing=[(0, ["my-app"])],
    triples=triples,
    cli_installers=[],
    bypass_package_target_prefs=bypass,
    download_urls={"my-app": "https://downloads.example.com/my-app/v1.0.0"},
)
compute_build_steps(builder.graph)

for release in builder.graph.releases:
    print(release.id, release.targets)
```

`announcing` is a list of `(package index, binary names)` pairs.
`download_urls` maps each app name to the base URL its artifacts are
downloaded from. When an app has no URL, the shell, PowerShell, Homebrew and
npm installers for it are skipped, and a warning is logged.

## Errors

Configuration problems raise a subclass of `DistError`:

- `PreciseImpossibleError`: packages disagree on feature settings while
  `precise_builds` is set to false.
- `MultiPackageMsiError`: an MSI installer would need binaries from more than
  one package.
- `NoPackageMsiError`: an MSI installer has no binaries.
- `NoTargetsError`: no target triples were given outside host mode, and no
  package declares any.
- `HostTargetError`: `cargo -vV` cannot be run, or does not report a host
  triple.

Misuse of the builder raises `ValueError`. This happens when:

- an artifact is added in a mode that disables it;
- an artifact is added with the wrong global or local flag;
- `ChecksumStyle.FALSE.ext()` is called;
- an npm package is requested for a release with no binaries.

## What it does not do

`distplan` only plans. It does not:

- run the build steps, or build, copy, zip or checksum anything;
- read configuration files: the `Workspace` is described in code;
- choose which packages to announce;
- work out download URLs;
- write a manifest;
- generate CI workflows: `select_ci` only returns the list of CI style names.

It also has no command-line entry point.