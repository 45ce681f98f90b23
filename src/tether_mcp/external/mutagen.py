"""Adapter for the mutagen sync daemon CLI."""

from __future__ import annotations

import logging

from .runner import CommandRunner
from .ssh import SshConfig

logger = logging.getLogger(__name__)


class SyncDaemon:
    """Thin wrapper over ``mutagen sync`` subcommands.

    Every method is one process invocation. Failures surface as
    ``ToolError`` with the daemon's stderr attached verbatim.
    """

    def __init__(self, runner: CommandRunner | None = None) -> None:
        self._runner = runner or CommandRunner("mutagen")

    @property
    def runner(self) -> CommandRunner:
        return self._runner

    def _sync(self, *args: str) -> str:
        return self._runner.check_output("sync", *args, label="mutagen")

    def list(self, *, structured: bool = False) -> str:
        if structured:
            return self._sync("list", "--json")
        return self._sync("list")

    def create(self, name: str, local: str, ssh: SshConfig, remote: str) -> None:
        remote_target = f"{ssh.target}:{remote}"
        logger.info("Creating sync session", extra={"session": name, "local": local, "remote": remote_target})
        self._sync("create", "--name", name, local, remote_target)

    def resume(self, name: str) -> None:
        logger.info("Resuming sync session", extra={"session": name})
        self._sync("resume", name)

    def terminate(self, name: str) -> None:
        logger.info("Terminating sync session", extra={"session": name})
        self._sync("terminate", name)


__all__ = ["SyncDaemon"]
