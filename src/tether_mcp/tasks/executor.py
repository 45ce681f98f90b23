"""Thread-per-task executor funnelling results into one channel."""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from ..compute import DoctlProvider
from ..external.ssh import RemoteShell
from ..rsync import RsyncTransfer
from ..syncs import SyncReconciler, list_remote_directories
from ..tunnels import TunnelManager
from . import models as m

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Services:
    """Collaborators a worker may call into."""

    provider: DoctlProvider
    tunnels: TunnelManager
    syncs: SyncReconciler
    shell: RemoteShell
    rsync: RsyncTransfer = field(default_factory=RsyncTransfer)
    sleep: Callable[[float], None] = field(default=time.sleep)


class TaskExecutor:
    """Run each submitted task on its own daemon thread.

    ``submit`` returns immediately. Exactly one result per task lands on
    :attr:`channel`, success or failure; a handler exception is converted
    into the task's failure variant and never escapes the worker. There is
    no pool ceiling and no cancellation.
    """

    def __init__(self, services: Services, channel: queue.Queue[Any] | None = None) -> None:
        self._services = services
        self._channel: queue.Queue[Any] = channel if channel is not None else queue.Queue()
        self._handlers: dict[type, Callable[[Any], Any]] = {
            m.CheckProvider: self._check_provider,
            m.RefreshDroplets: self._refresh_droplets,
            m.LoadSnapshots: self._load_snapshots,
            m.LoadRegions: self._load_regions,
            m.LoadSizes: self._load_sizes,
            m.LoadImages: self._load_images,
            m.LoadSshKeys: self._load_ssh_keys,
            m.CreateDroplet: self._create_droplet,
            m.RestoreDroplet: self._restore_droplet,
            m.SnapshotDelete: self._snapshot_delete,
            m.DeleteDroplet: self._delete_droplet,
            m.StartTunnel: self._start_tunnel,
            m.StopTunnel: self._stop_tunnel,
            m.CreateSyncs: self._create_syncs,
            m.RestoreSyncs: self._restore_syncs,
            m.LoadSyncs: self._load_syncs,
            m.DeleteSync: self._delete_sync,
            m.ListRemoteDirectories: self._list_remote_directories,
            m.DeleteDropletSyncs: self._delete_droplet_syncs,
            m.TerminateAllSyncs: self._terminate_all_syncs,
            m.CreateRsyncBind: self._create_rsync_bind,
            m.RunRsync: self._run_rsync,
            m.DeleteRsyncBind: self._delete_rsync_bind,
        }

    @property
    def channel(self) -> queue.Queue[Any]:
        return self._channel

    @property
    def services(self) -> Services:
        return self._services

    def submit(self, task: m.Task) -> None:
        worker = threading.Thread(
            target=self._worker,
            args=(task,),
            name=f"task-{type(task).__name__}",
            daemon=True,
        )
        worker.start()

    def _worker(self, task: m.Task) -> None:
        self._channel.put(self.execute(task))

    def execute(self, task: m.Task) -> m.TaskResult:
        """Run ``task`` on the calling thread and return its single result."""

        handler = self._handlers.get(type(task))
        if handler is None:
            return task.failure(f"Unsupported task: {type(task).__name__}")
        started = time.monotonic()
        try:
            result = handler(task)
        except Exception as exc:  # noqa: BLE001 - every failure becomes a result
            logger.warning(
                "Task failed",
                extra={"task": type(task).__name__, "error": str(exc)},
            )
            return task.failure(str(exc) or type(exc).__name__)
        logger.debug(
            "Task finished",
            extra={"task": type(task).__name__, "elapsed": round(time.monotonic() - started, 3)},
        )
        return result

    def drain(self) -> list[m.TaskResult]:
        """Pop every result currently queued, oldest first, without blocking."""

        results: list[m.TaskResult] = []
        while True:
            try:
                results.append(self._channel.get_nowait())
            except queue.Empty:
                return results

    # -- handlers -------------------------------------------------------

    def _check_provider(self, task: m.CheckProvider) -> m.ProviderCheckResult:
        self._services.provider.check()
        return m.ProviderCheckResult()

    def _refresh_droplets(self, task: m.RefreshDroplets) -> m.DropletsResult:
        return m.DropletsResult(value=self._services.provider.list_droplets())

    def _load_snapshots(self, task: m.LoadSnapshots) -> m.SnapshotsResult:
        if task.delay_ms > 0:
            self._services.sleep(task.delay_ms / 1000)
        return m.SnapshotsResult(value=self._services.provider.list_snapshots())

    def _load_regions(self, task: m.LoadRegions) -> m.RegionsResult:
        return m.RegionsResult(value=self._services.provider.list_regions())

    def _load_sizes(self, task: m.LoadSizes) -> m.SizesResult:
        return m.SizesResult(value=self._services.provider.list_sizes())

    def _load_images(self, task: m.LoadImages) -> m.ImagesResult:
        return m.ImagesResult(value=self._services.provider.list_images())

    def _load_ssh_keys(self, task: m.LoadSshKeys) -> m.SshKeysResult:
        return m.SshKeysResult(value=self._services.provider.list_ssh_keys())

    def _create_droplet(self, task: m.CreateDroplet) -> m.CreateDropletResult:
        return m.CreateDropletResult(value=self._services.provider.create_droplet(task.args))

    def _restore_droplet(self, task: m.RestoreDroplet) -> m.RestoreDropletResult:
        return m.RestoreDropletResult(value=self._services.provider.create_droplet(task.args))

    def _snapshot_delete(self, task: m.SnapshotDelete) -> m.SnapshotDeleteResult:
        provider = self._services.provider
        provider.snapshot_droplet(task.droplet_id, task.snapshot_name)
        provider.delete_droplet(task.droplet_id)
        return m.SnapshotDeleteResult(value=task.droplet_id)

    def _delete_droplet(self, task: m.DeleteDroplet) -> m.DeleteDropletResult:
        self._services.provider.delete_droplet(task.droplet_id)
        return m.DeleteDropletResult(value=task.droplet_id)

    def _start_tunnel(self, task: m.StartTunnel) -> m.StartTunnelResult:
        binding = task.binding.model_copy()
        self._services.tunnels.start_tunnel(binding)
        return m.StartTunnelResult(value=binding)

    def _stop_tunnel(self, task: m.StopTunnel) -> m.StopTunnelResult:
        self._services.tunnels.stop(task.pid)
        return m.StopTunnelResult(value=task.port)

    def _create_syncs(self, task: m.CreateSyncs) -> m.CreateSyncsResult:
        return m.CreateSyncsResult(
            value=self._services.syncs.create_syncs(task.ssh, task.label, task.paths)
        )

    def _restore_syncs(self, task: m.RestoreSyncs) -> m.RestoreSyncsResult:
        return m.RestoreSyncsResult(value=self._services.syncs.restore_syncs(task.ssh))

    def _load_syncs(self, task: m.LoadSyncs) -> m.SyncsResult:
        return m.SyncsResult(value=self._services.syncs.list_syncs())

    def _delete_sync(self, task: m.DeleteSync) -> m.DeleteSyncResult:
        return m.DeleteSyncResult(value=self._services.syncs.delete_sync(task.name, task.ssh))

    def _list_remote_directories(self, task: m.ListRemoteDirectories) -> m.RemoteDirectoriesResult:
        listing = list_remote_directories(self._services.shell, task.ssh, task.path)
        return m.RemoteDirectoriesResult(requested_path=task.path, value=listing)

    def _delete_droplet_syncs(self, task: m.DeleteDropletSyncs) -> m.DeleteDropletSyncsResult:
        return m.DeleteDropletSyncsResult(
            value=self._services.syncs.delete_syncs_for_droplet(task.ssh, task.label)
        )

    def _terminate_all_syncs(self, task: m.TerminateAllSyncs) -> m.TerminateAllSyncsResult:
        return m.TerminateAllSyncsResult(value=self._services.syncs.terminate_all_syncs())

    def _create_rsync_bind(self, task: m.CreateRsyncBind) -> m.CreateRsyncBindResult:
        return m.CreateRsyncBindResult(value=self._services.rsync.create_bind(task.bind))

    def _run_rsync(self, task: m.RunRsync) -> m.RunRsyncResult:
        return m.RunRsyncResult(value=self._services.rsync.run(task.bind, task.direction))

    def _delete_rsync_bind(self, task: m.DeleteRsyncBind) -> m.DeleteRsyncBindResult:
        return m.DeleteRsyncBindResult(
            value=self._services.rsync.delete_bind(task.bind, task.delete_local_copy)
        )


__all__ = ["Services", "TaskExecutor"]
