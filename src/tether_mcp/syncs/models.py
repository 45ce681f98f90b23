"""Data models for sync reconciliation."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True, frozen=True)
class SyncPath:
    """A requested local folder and its remote counterpart."""

    local: str
    remote: str


@dataclass(slots=True, frozen=True)
class MountEntry:
    """One line of the remote ledger."""

    name: str
    local: str
    remote: str


@dataclass(slots=True)
class SyncSession:
    """A live session as reported by the sync daemon."""

    name: str
    status: str | None = None
    beta_url: str | None = None
    beta_host: str | None = None


@dataclass(slots=True)
class DeleteSyncOutcome:
    name: str
    mount_removed: bool = False
    mount_error: str | None = None


@dataclass(slots=True)
class DeleteDropletSyncsOutcome:
    label: str
    terminated: list[str] = field(default_factory=list)
    mounts_removed: int = 0
    mount_error: str | None = None


@dataclass(slots=True)
class RemoteDirectoryListing:
    path: str
    directories: list[str] = field(default_factory=list)


__all__ = [
    "DeleteDropletSyncsOutcome",
    "DeleteSyncOutcome",
    "MountEntry",
    "RemoteDirectoryListing",
    "SyncPath",
    "SyncSession",
]
