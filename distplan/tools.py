"""Discovery of the build tools installed on this machine."""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Optional

from distplan.model import HostTargetError

logger = logging.getLogger(__name__)

_HOST_PREFIX = "host: "


@dataclass
class Tool:
    """A tool found on the system."""

    cmd: str = ""
    """The command used to invoke the tool."""
    version: str = ""
    """The first line the tool printed when asked for its version."""


@dataclass
class CargoInfo:
    """What we know about the cargo toolchain in use."""

    cmd: str
    """The command used to invoke cargo (usually from the CARGO variable)."""
    version_line: Optional[str]
    """The first line of ``cargo -vV``, the version information."""
    host_target: str
    """The host target triple reported by ``cargo -vV``."""


@dataclass
class Tools:
    """The tools available for building."""

    cargo: CargoInfo
    rustup: Optional[Tool] = None
    brew: Optional[Tool] = None
    git: Optional[Tool] = None


def cargo() -> str:
    """The command to invoke cargo: the CARGO variable, or plain ``cargo``."""
    return os.environ.get("CARGO", "cargo")


def parse_host_target(cargo: str, output: str) -> CargoInfo:
    """Read the version line and host triple from the output of ``cargo -vV``."""
    lines = output.splitlines()
    version_line = lines[0] if lines else None
    for line in lines[1:]:
        if line.startswith(_HOST_PREFIX):
            target = line[len(_HOST_PREFIX):]
            logger.info("host target is %s", target)
            return CargoInfo(cmd=cargo, version_line=version_line, host_target=target)
    raise HostTargetError()


def get_host_target(cargo: str) -> CargoInfo:
    """Run ``cargo -vV`` and report the host target triple."""
    command = [cargo, "-vV"]
    logger.info("exec: %s", command)
    try:
        completed = subprocess.run(command, capture_output=True, check=False)
    except OSError as exc:
        raise HostTargetError(
            "failed to run 'cargo -vV' (trying to get info about host platform)"
        ) from exc
    try:
        output = completed.stdout.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise HostTargetError("'cargo -vV' wasn't utf8? Really?") from exc
    return parse_host_target(cargo, output)


def find_tool(name: str, test_flag: str) -> Optional[Tool]:
    """Find a tool by running ``name test_flag``; ``None`` if it is unusable."""
    try:
        completed = subprocess.run([name, test_flag], capture_output=True, check=False)
    except OSError:
        return None
    try:
        output = completed.stdout.decode("utf-8")
    except UnicodeDecodeError:
        return None
    lines = output.splitlines()
    if not lines:
        return None
    return Tool(cmd=name, version=lines[0])


def tool_info() -> Tools:
    """Gather information about cargo, rustup, brew and git."""
    cargo_info = get_host_target(cargo())
    return Tools(
        cargo=cargo_info,
        rustup=find_tool("rustup", "-V"),
        brew=find_tool("brew", "--version"),
        git=find_tool("git", "--version"),
    )