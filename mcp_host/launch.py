"""
Launch strategies for stdio tool servers.

A server config names a logical command ("npx", "node", "python", "uvx",
or anything else). Each logical command maps to exactly one
LaunchStrategy, and each strategy owns its own rule for building the
concrete executable + argv. Bundled runtimes are pinned per install, so a
server runs the same way on every machine regardless of what is on PATH.

    resolver = BundledRuntimes(Path("/opt/app/resources"))
    spec = build_launch_spec("npx", ["-y", "@scope/server"], resolver=resolver)
    # spec.executable, spec.args, spec.env, spec.cwd
"""

from __future__ import annotations

import enum
import logging
import os
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from mcp_host.errors import SpawnError

logger = logging.getLogger(__name__)

UNBUFFERED_FLAG = "-u"


class LaunchStrategy(enum.Enum):
    """Closed set of ways to turn a logical command into a process."""

    NPX = "npx"            # bundled node runtime + bundled npx launcher script
    NODE = "node"          # bundled node runtime, args passed through
    PYTHON = "python"      # bundled or system interpreter, forced unbuffered
    UVX = "uvx"            # bundled uv in "tool run" mode
    VERBATIM = "verbatim"  # executed as-is, resolved via PATH

    @classmethod
    def for_command(cls, command: str) -> "LaunchStrategy":
        return _COMMAND_TABLE.get(command.strip().lower(), cls.VERBATIM)


_COMMAND_TABLE = {
    "npx": LaunchStrategy.NPX,
    "node": LaunchStrategy.NODE,
    "python": LaunchStrategy.PYTHON,
    "python3": LaunchStrategy.PYTHON,
    "uvx": LaunchStrategy.UVX,
}


class RuntimeResolver(Protocol):
    """Locates bundled runtimes and launcher scripts on disk."""

    def runtime_path(self, name: str) -> Path | None:
        """Executable for a logical runtime ("node", "python", "uv"), or None."""
        ...

    def launcher_path(self, name: str) -> Path | None:
        """Launcher script for a logical name ("npx"), or None."""
        ...


def _exe(name: str) -> str:
    return f"{name}.exe" if sys.platform == "win32" else name


class BundledRuntimes:
    """
    RuntimeResolver over an on-disk resources directory.

    Layout:
        <root>/node/bin/node          (node/node.exe on Windows)
        <root>/npm/bin/npx-cli.js
        <root>/uv/uv
        <root>/python/bin/python3     (python/python.exe on Windows)
    """

    def __init__(self, root: str | Path | None):
        self.root = Path(root) if root else None

    def _candidates(self, name: str) -> list[Path]:
        if self.root is None:
            return []
        if name == "node":
            return [self.root / "node" / "bin" / _exe("node"), self.root / "node" / _exe("node")]
        if name == "uv":
            return [self.root / "uv" / _exe("uv"), self.root / "uv" / "bin" / _exe("uv")]
        if name == "python":
            return [
                self.root / "python" / "bin" / "python3",
                self.root / "python" / _exe("python"),
            ]
        return []

    def runtime_path(self, name: str) -> Path | None:
        for candidate in self._candidates(name):
            if candidate.is_file():
                return candidate
        return None

    def launcher_path(self, name: str) -> Path | None:
        if self.root is None:
            return None
        if name == "npx":
            script = self.root / "npm" / "bin" / "npx-cli.js"
            return script if script.is_file() else None
        return None


@dataclass
class LaunchSpec:
    """Everything needed to create the child process."""

    strategy: LaunchStrategy
    executable: str
    args: list[str]
    env: dict[str, str] | None = None
    cwd: str | None = None

    @property
    def argv(self) -> list[str]:
        return [self.executable, *self.args]


def _require_runtime(resolver: RuntimeResolver | None, name: str) -> str:
    path = resolver.runtime_path(name) if resolver else None
    if path is None:
        raise SpawnError(f"Bundled runtime '{name}' is not available")
    return str(path)


def _resolve_python(resolver: RuntimeResolver | None) -> str:
    bundled = resolver.runtime_path("python") if resolver else None
    if bundled is not None:
        return str(bundled)
    system = shutil.which("python3") or shutil.which("python")
    if system is None:
        raise SpawnError("No Python interpreter found (bundled or on PATH)")
    return system


def _resolve_verbatim(command: str) -> str:
    if os.sep in command or (os.altsep and os.altsep in command):
        return command
    found = shutil.which(command)
    if found is None:
        raise SpawnError(f"Command not found on PATH: {command}")
    return found


def build_launch_spec(
    command: str,
    args: list[str] | None = None,
    env: dict[str, str] | None = None,
    cwd: str | None = None,
    resolver: RuntimeResolver | None = None,
) -> LaunchSpec:
    """
    Resolve a logical command into a concrete LaunchSpec.

    Raises SpawnError when the strategy needs a bundled resource that is
    missing, or a verbatim command cannot be found. No process is created.

    Empty env means full inheritance from this process; a non-empty env is
    passed as the child's whole environment.
    """
    args = list(args or [])
    strategy = LaunchStrategy.for_command(command)

    if strategy is LaunchStrategy.NPX:
        executable = _require_runtime(resolver, "node")
        launcher = resolver.launcher_path("npx") if resolver else None
        if launcher is None:
            raise SpawnError("Bundled npx launcher script is not available")
        final_args = [str(launcher), *args]
    elif strategy is LaunchStrategy.NODE:
        executable = _require_runtime(resolver, "node")
        final_args = args
    elif strategy is LaunchStrategy.PYTHON:
        executable = _resolve_python(resolver)
        final_args = args if UNBUFFERED_FLAG in args else [UNBUFFERED_FLAG, *args]
    elif strategy is LaunchStrategy.UVX:
        executable = _require_runtime(resolver, "uv")
        final_args = ["tool", "run", *args]
    else:
        executable = _resolve_verbatim(command)
        final_args = args

    spec = LaunchSpec(
        strategy=strategy,
        executable=executable,
        args=final_args,
        env=dict(env) if env else None,
        cwd=cwd or None,
    )
    logger.debug(f"Resolved '{command}' via {strategy.name}: {spec.argv}")
    return spec
