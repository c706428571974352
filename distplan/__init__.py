"""Plan releases, variants, artifacts, installers and build steps for distributing binaries."""

__version__ = "0.1.0"