from __future__ import annotations

import signal
from pathlib import Path
from typing import TYPE_CHECKING

import platformdirs

if TYPE_CHECKING:
    from collections.abc import Iterable

dirs = platformdirs.PlatformDirs("pipeproc")


def default_config_path() -> Path | None:
    path = dirs.user_config_path / "pipeproc.toml"
    return path if path.is_file() else None


def parse_env_assignments(assignments: Iterable[str]) -> dict[str, str]:
    env = {}
    for assignment in assignments:
        key, sep, value = assignment.partition("=")
        if not sep or not key:
            msg = f"expected KEY=VALUE, got {assignment!r}"
            raise ValueError(msg)
        env[key] = value
    return env


def exit_status(returncode: int) -> int:
    """Map a child's return code to a shell-style exit status."""
    if returncode < 0:
        return 128 + -returncode
    return returncode & 0xFF


def describe_returncode(returncode: int) -> str:
    if returncode < 0:
        try:
            name = signal.Signals(-returncode).name
        except ValueError:
            name = f"signal {-returncode}"
        return f"killed by {name}"
    return f"exited with code {returncode}"
