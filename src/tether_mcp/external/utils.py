"""Utility helpers shared by the external tool adapters."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a sanitized environment suitable for subprocess execution."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    if additional:
        env.update(additional)
    return env


def expand_local_path(path: str) -> str:
    """Expand ``~`` and make ``path`` absolute against the current directory.

    Only ``~`` and ``~/...`` are expanded; ``~user`` forms are left alone and
    treated as relative paths, matching what the shell-less callers expect.
    """

    trimmed = path.strip()
    if trimmed == "~" or trimmed.startswith("~/"):
        home = os.environ.get("HOME", "~")
        if trimmed == "~":
            return home
        return f"{home}{trimmed[1:]}"
    candidate = Path(trimmed)
    if candidate.is_absolute():
        return trimmed
    return str(Path.cwd() / candidate)


def shell_escape(value: str) -> str:
    """Single-quote ``value`` for a POSIX shell."""

    if not value:
        return "''"
    return "'" + value.replace("'", "'\"'\"'") + "'"


def remote_path_command(remote: str) -> str:
    """Quote a remote path while keeping a leading ``~`` expandable."""

    trimmed = remote.strip()
    if trimmed.startswith("~"):
        prefix, sep, rest = trimmed.partition("/")
        if sep:
            return f"{prefix}/{shell_escape(rest)}"
        return trimmed
    return shell_escape(trimmed)


__all__ = ["expand_local_path", "remote_path_command", "sanitize_environment", "shell_escape"]
