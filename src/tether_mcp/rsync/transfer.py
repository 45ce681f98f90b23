"""One-shot rsync copies between a droplet folder and a local folder."""

from __future__ import annotations

import logging
import shlex
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ..external.runner import CommandRunner
from ..external.utils import expand_local_path
from ..storage import RsyncBind

logger = logging.getLogger(__name__)

EXCLUDES = ("--exclude=node_modules", "--exclude=target", "--exclude=/.cargo*")


class RsyncError(RuntimeError):
    """Raised when a bind's local folder is unusable or rsync fails."""


class RsyncDirection(str, Enum):
    UP = "up"
    DOWN = "down"


@dataclass(slots=True)
class RsyncRunOutcome:
    bind: RsyncBind
    direction: RsyncDirection


@dataclass(slots=True)
class DeleteRsyncBindOutcome:
    bind: RsyncBind
    local_deleted: bool = False


def ssh_transport(bind: RsyncBind, ssh_program: str = "ssh") -> str:
    """Build the ``-e`` remote shell command rsync runs to reach the droplet."""

    key_path = expand_local_path(bind.ssh_key_path)
    return (
        f"{shlex.quote(ssh_program)} -i {shlex.quote(key_path)} -p {bind.ssh_port} "
        "-o BatchMode=yes -o ServerAliveInterval=15 -o ServerAliveCountMax=3"
    )


def rsync_args(bind: RsyncBind, direction: RsyncDirection, ssh_program: str = "ssh") -> list[str]:
    """Arguments copying the folder contents up to or down from the droplet.

    Both sides end in ``/`` where needed so rsync copies the folder contents
    rather than nesting the folder inside its destination.
    """

    local_path = expand_local_path(bind.local_path)
    remote = f"{bind.ssh_user}@{bind.host}:{bind.remote_path}"
    if direction is RsyncDirection.UP:
        source, dest = f"{local_path}/", remote
    else:
        source, dest = f"{remote}/", f"{local_path}/"
    return [
        "-az",
        "--human-readable",
        *EXCLUDES,
        "-e",
        ssh_transport(bind, ssh_program),
        source,
        dest,
    ]


def _or_empty(text: str) -> str:
    text = text.strip()
    return text or "<empty>"


class RsyncTransfer:
    """Prepare, run and remove rsync binds.

    A bind is only a registry record; nothing runs in the background. Each
    :meth:`run` is a single blocking rsync invocation.
    """

    def __init__(self, runner: CommandRunner | None = None, *, ssh_program: str = "ssh") -> None:
        self._runner = runner or CommandRunner("rsync")
        self._ssh_program = ssh_program

    @property
    def runner(self) -> CommandRunner:
        return self._runner

    def create_bind(self, bind: RsyncBind) -> RsyncBind:
        """Validate or create the local folder and return the bind with it resolved.

        An existing folder must be empty so a later pull never mixes with
        unrelated files.
        """

        local_path = expand_local_path(bind.local_path)
        local = Path(local_path)
        try:
            if local.exists():
                if not local.is_dir():
                    raise RsyncError(
                        f"Local path '{local_path}' exists and is not a directory. "
                        "Pick a different local folder."
                    )
                if any(local.iterdir()):
                    raise RsyncError(
                        f"Local folder '{local_path}' is not empty. "
                        "Move/remove its contents or pick a different folder."
                    )
            else:
                local.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise RsyncError(f"Failed to prepare local folder '{local_path}': {exc}") from exc
        logger.info("Rsync bind prepared", extra={"local_path": local_path, "host": bind.host})
        return bind.model_copy(update={"local_path": local_path})

    def run(self, bind: RsyncBind, direction: RsyncDirection) -> RsyncRunOutcome:
        local_path = expand_local_path(bind.local_path)
        try:
            Path(local_path).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise RsyncError(f"Failed to ensure local folder '{local_path}': {exc}") from exc

        result = self._runner.run(*rsync_args(bind, direction, self._ssh_program))
        if not result.ok:
            raise RsyncError(
                f"rsync failed (exit status {result.returncode}).\n"
                f"stdout:\n{_or_empty(result.stdout)}\n"
                f"stderr:\n{_or_empty(result.stderr)}"
            )
        logger.info(
            "Rsync finished",
            extra={"local_path": local_path, "host": bind.host, "direction": direction.value},
        )
        return RsyncRunOutcome(bind=bind.model_copy(update={"local_path": local_path}), direction=direction)

    def delete_bind(self, bind: RsyncBind, delete_local_copy: bool = False) -> DeleteRsyncBindOutcome:
        """Forget a bind, optionally removing its local copy first."""

        local_path = expand_local_path(bind.local_path)
        outcome = DeleteRsyncBindOutcome(bind=bind)
        if not delete_local_copy:
            return outcome
        local = Path(local_path)
        if not local.exists():
            return outcome
        try:
            if local.is_dir() and not local.is_symlink():
                shutil.rmtree(local)
            else:
                local.unlink()
        except OSError as exc:
            raise RsyncError(f"Failed to remove local copy '{local_path}': {exc}") from exc
        outcome.local_deleted = True
        logger.info("Rsync local copy removed", extra={"local_path": local_path})
        return outcome


__all__ = [
    "DeleteRsyncBindOutcome",
    "RsyncDirection",
    "RsyncError",
    "RsyncRunOutcome",
    "RsyncTransfer",
    "rsync_args",
    "ssh_transport",
]
