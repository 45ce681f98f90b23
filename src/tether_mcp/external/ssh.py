"""Remote shell execution over the ``ssh`` client."""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .runner import CommandRunner, ToolError
from .utils import expand_local_path

logger = logging.getLogger(__name__)


class SshConfig(BaseModel):
    """Connection parameters for a remote host."""

    model_config = ConfigDict(frozen=True)

    user: str = Field(..., description="Login user on the remote host.")
    host: str = Field(..., description="Hostname or IP address.")
    port: int = Field(default=22, ge=1, le=65535)
    key_path: str = Field(..., description="Private key used for authentication.")

    @field_validator("user", "host")
    @classmethod
    def _require_value(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("SSH user and host must not be empty")
        return normalized

    @property
    def target(self) -> str:
        return f"{self.user}@{self.host}"


class RemoteShell:
    """Run commands, including multi-line scripts, on a remote host."""

    def __init__(self, runner: CommandRunner | None = None) -> None:
        self._runner = runner or CommandRunner("ssh")

    @property
    def runner(self) -> CommandRunner:
        return self._runner

    def base_args(self, ssh: SshConfig) -> list[str]:
        return [
            "-i",
            expand_local_path(ssh.key_path),
            "-p",
            str(ssh.port),
            "-o",
            "BatchMode=yes",
        ]

    def run(self, ssh: SshConfig, command: str) -> str:
        """Execute ``command`` remotely and return its stdout."""

        logger.debug("Running remote command", extra={"host": ssh.host, "port": ssh.port})
        result = self._runner.run(*self.base_args(ssh), ssh.target, command)
        if not result.ok:
            raise ToolError(f"ssh failed: {result.stderr}", args=result.args, stderr=result.stderr)
        return result.stdout


__all__ = ["RemoteShell", "SshConfig"]
