"""Sync session reconciliation."""

from .ledger import DEFAULT_LEDGER_PATH, MountLedger, parse_ledger
from .models import (
    DeleteDropletSyncsOutcome,
    DeleteSyncOutcome,
    MountEntry,
    RemoteDirectoryListing,
    SyncPath,
    SyncSession,
)
from .reconciler import SyncError, SyncReconciler
from .remote import RemoteListingError, ensure_remote_dir, list_remote_directories

__all__ = [
    "DEFAULT_LEDGER_PATH",
    "DeleteDropletSyncsOutcome",
    "DeleteSyncOutcome",
    "MountEntry",
    "MountLedger",
    "RemoteDirectoryListing",
    "RemoteListingError",
    "SyncError",
    "SyncPath",
    "SyncReconciler",
    "SyncSession",
    "ensure_remote_dir",
    "list_remote_directories",
    "parse_ledger",
]
