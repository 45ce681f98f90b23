"""Reconcile requested sync pairs against the ledger and the live daemon."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Callable, Iterable

from ..external.mutagen import SyncDaemon
from ..external.runner import ToolError
from ..external.ssh import RemoteShell, SshConfig
from ..external.utils import expand_local_path
from .ledger import MountLedger
from .models import (
    DeleteDropletSyncsOutcome,
    DeleteSyncOutcome,
    MountEntry,
    SyncPath,
    SyncSession,
)
from .naming import generate_sync_name, name_prefix, sanitize_name
from .parsing import names_from_sessions, sessions_from_json, sessions_from_text
from .remote import ensure_remote_dir

logger = logging.getLogger(__name__)

_ALREADY_EXISTS_MARKERS = ("already exists",)


class SyncError(RuntimeError):
    """Raised for invalid sync requests and unusable ledger state."""


def _looks_like_duplicate(exc: ToolError) -> bool:
    text = (exc.stderr or str(exc)).lower()
    return any(marker in text for marker in _ALREADY_EXISTS_MARKERS)


class SyncReconciler:
    """Drive sync sessions from requested paths, the remote ledger and the daemon.

    Each public call fetches the ledger and the daemon inventory afresh and
    never caches between calls. The ledger entry is the only durable identity
    of a session: a pair keeps its ledger name through any number of
    terminate/resume cycles until it is deleted by name.
    """

    def __init__(
        self,
        daemon: SyncDaemon,
        shell: RemoteShell,
        ledger: MountLedger | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._daemon = daemon
        self._shell = shell
        self._ledger = ledger or MountLedger(shell)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def daemon(self) -> SyncDaemon:
        return self._daemon

    @property
    def ledger(self) -> MountLedger:
        return self._ledger

    # -- live inventory -------------------------------------------------

    def list_syncs(self) -> list[SyncSession]:
        """Return live sessions, preferring the daemon's JSON listing."""

        try:
            sessions = sessions_from_json(self._daemon.list(structured=True))
        except ToolError as exc:
            logger.debug("Structured sync listing failed", extra={"error": str(exc)})
            sessions = []
        if sessions:
            return sessions
        return sessions_from_text(self._daemon.list())

    def live_names(self) -> set[str]:
        return names_from_sessions(self.list_syncs())

    # -- create / restore -----------------------------------------------

    def _resume_or_create(
        self,
        ssh: SshConfig,
        name: str,
        local: str,
        remote: str,
        existing: set[str],
    ) -> str:
        if name in existing:
            self._daemon.resume(name)
            return "resumed"
        try:
            self._daemon.create(name, local, ssh, remote)
        except ToolError as exc:
            # The session appeared between the inventory snapshot and now.
            if not _looks_like_duplicate(exc):
                raise
            logger.warning("Sync session already existed; resuming", extra={"session": name})
            self._daemon.resume(name)
            existing.add(name)
            return "resumed"
        existing.add(name)
        return "created"

    def create_syncs(self, ssh: SshConfig, label: str, paths: Iterable[SyncPath]) -> int:
        """Create or resume one session per unique ``(local, remote)`` pair.

        Returns the number of pairs processed.
        """

        requested = list(paths)
        if not requested:
            raise SyncError("No folders provided for sync")

        ledger_entries = self._ledger.read(ssh)
        existing = self.live_names()

        by_pair = {(entry.local, entry.remote): entry.name for entry in ledger_entries}
        taken = {entry.name for entry in ledger_entries}
        staged: list[MountEntry] = []
        seen: set[tuple[str, str]] = set()
        minted: Counter[str] = Counter()
        stamp = self._clock()
        processed = 0

        # Entries are staged only once their session exists, and whatever was
        # staged is written even when a later pair fails.
        try:
            for path in requested:
                local = expand_local_path(path.local)
                remote = path.remote.strip()
                if not remote:
                    raise SyncError("Remote path cannot be empty")

                pair = (local, remote)
                if pair in seen:
                    continue
                seen.add(pair)

                entry: MountEntry | None = None
                name = by_pair.get(pair)
                if name is None:
                    base = sanitize_name(local.rstrip("/").rsplit("/", 1)[-1] or "sync")
                    minted[base] += 1
                    name = generate_sync_name(label, local, minted[base], now=stamp)
                    while name in taken:
                        minted[base] += 1
                        name = generate_sync_name(label, local, minted[base], now=stamp)
                    entry = MountEntry(name=name, local=local, remote=remote)
                    by_pair[pair] = name
                    taken.add(name)

                ensure_remote_dir(self._shell, ssh, remote)
                action = self._resume_or_create(ssh, name, local, remote, existing)
                if entry is not None:
                    staged.append(entry)
                logger.info(
                    "Sync pair reconciled",
                    extra={"session": name, "action": action, "local": local, "remote": remote},
                )
                processed += 1
        finally:
            if staged:
                self._ledger.append(ssh, staged)
        return processed

    def restore_syncs(self, ssh: SshConfig) -> int:
        """Bring every ledger entry back, resuming where the daemon still knows it."""

        entries = self._ledger.read(ssh)
        if not entries:
            raise SyncError(f"No mounts found in {self._ledger.path}")

        existing = self.live_names()
        restored = 0
        for entry in entries:
            local = expand_local_path(entry.local)
            ensure_remote_dir(self._shell, ssh, entry.remote)
            action = self._resume_or_create(ssh, entry.name, local, entry.remote, existing)
            logger.info("Sync restored", extra={"session": entry.name, "action": action})
            restored += 1
        return restored

    # -- teardown -------------------------------------------------------

    def terminate_sync(self, name: str) -> None:
        self._daemon.terminate(name)

    def delete_sync(self, name: str, ssh: SshConfig | None = None) -> DeleteSyncOutcome:
        """Terminate ``name`` and, given an ssh context, drop its ledger entries.

        Termination failures propagate. Ledger cleanup failures are reported
        on the outcome instead.
        """

        self.terminate_sync(name)
        outcome = DeleteSyncOutcome(name=name)
        if ssh is None:
            return outcome
        try:
            outcome.mount_removed = self._ledger.delete(ssh, [name]) > 0
        except ToolError as exc:
            logger.warning("Ledger cleanup failed", extra={"session": name, "error": str(exc)})
            outcome.mount_error = str(exc)
        return outcome

    def terminate_all_syncs(self) -> int:
        count = 0
        for session in self.list_syncs():
            self.terminate_sync(session.name)
            count += 1
        return count

    def delete_syncs_for_droplet(self, ssh: SshConfig, label: str) -> DeleteDropletSyncsOutcome:
        """Terminate every session pointing at ``ssh.host`` or named for ``label``."""

        prefix = name_prefix(label)
        outcome = DeleteDropletSyncsOutcome(label=label)
        for session in self.list_syncs():
            if session.beta_host == ssh.host or session.name.startswith(prefix):
                self.terminate_sync(session.name)
                outcome.terminated.append(session.name)

        try:
            entries = self._ledger.read(ssh)
            terminated = set(outcome.terminated)
            doomed = [
                entry.name
                for entry in entries
                if entry.name.startswith(prefix) or entry.name in terminated
            ]
            outcome.mounts_removed = self._ledger.delete(ssh, doomed) if doomed else 0
        except ToolError as exc:
            logger.warning(
                "Ledger cleanup failed for droplet",
                extra={"label": label, "error": str(exc)},
            )
            outcome.mount_error = str(exc)
        return outcome


__all__ = ["SyncError", "SyncReconciler"]
