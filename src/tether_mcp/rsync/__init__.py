"""On-demand rsync copies between droplet and local folders."""

from .transfer import (
    DeleteRsyncBindOutcome,
    RsyncDirection,
    RsyncError,
    RsyncRunOutcome,
    RsyncTransfer,
    rsync_args,
    ssh_transport,
)

__all__ = [
    "DeleteRsyncBindOutcome",
    "RsyncDirection",
    "RsyncError",
    "RsyncRunOutcome",
    "RsyncTransfer",
    "rsync_args",
    "ssh_transport",
]
