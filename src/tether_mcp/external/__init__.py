"""Adapters around the external programs the engine drives."""

from .mutagen import SyncDaemon
from .runner import CommandResult, CommandRunner, FakeCommandRunner, ToolError, ToolNotFoundError
from .ssh import RemoteShell, SshConfig

__all__ = [
    "CommandResult",
    "CommandRunner",
    "FakeCommandRunner",
    "RemoteShell",
    "SshConfig",
    "SyncDaemon",
    "ToolError",
    "ToolNotFoundError",
]
