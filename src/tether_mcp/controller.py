"""Single consumer that owns application state and applies task results."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from .compute import CreateDropletArgs, DoctlProvider, Droplet, Image, Region, Size, Snapshot, SshKey
from .config import TetherSettings
from .external import CommandRunner, RemoteShell, SshConfig, SyncDaemon
from .external.utils import expand_local_path
from .rsync import RsyncDirection, RsyncTransfer
from .storage import BindingRegistry, PortBinding, RegistryError, RsyncBind
from .syncs import MountLedger, RemoteDirectoryListing, SyncPath, SyncReconciler, SyncSession
from .tasks import Services, TaskExecutor
from .tasks import models as m
from .tunnels import TunnelError, TunnelManager, is_port_available, new_binding

logger = logging.getLogger(__name__)

SNAPSHOT_RETRY_DELAY_MS = 4000
NOTICE_LIMIT = 50

_NOTICE_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class ControllerError(ValueError):
    """Raised when a request cannot be turned into a task."""


@dataclass(slots=True)
class Notice:
    """A user-facing message produced while applying requests or results."""

    seq: int
    level: str
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> dict[str, Any]:
        return {
            "seq": self.seq,
            "level": self.level,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
        }


def split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_sync_paths(value: str) -> list[SyncPath]:
    """Parse ``"a -> b, c"`` into sync pairs; a bare path mirrors itself remotely."""

    items = split_csv(value)
    if not items:
        raise ControllerError("Provide at least one local path")
    paths: list[SyncPath] = []
    for item in items:
        local, sep, remote = item.partition("->")
        local = local.strip()
        if not local:
            raise ControllerError("Local path cannot be empty")
        remote = remote.strip() if sep else local
        if not remote:
            raise ControllerError("Remote path cannot be empty")
        paths.append(SyncPath(local=local, remote=remote))
    return paths


def parse_port(value: int | str, label: str) -> int:
    try:
        port = int(str(value).strip())
    except ValueError:
        raise ControllerError(f"Invalid {label} port") from None
    if not 1 <= port <= 65535:
        raise ControllerError(f"Invalid {label} port")
    return port


def parse_rsync_direction(value: str) -> RsyncDirection:
    try:
        return RsyncDirection(value.strip().lower())
    except ValueError:
        raise ControllerError("Direction must be 'up' or 'down'") from None


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'' if count == 1 else 's'}"


class Controller:
    """Own the registry, cached inventories and the pending counter.

    Requests are validated here and turned into tasks. Results are only ever
    applied from :meth:`poll`, in the order the workers delivered them, so
    every piece of state below has exactly one writer.
    """

    def __init__(
        self,
        executor: TaskExecutor,
        registry: BindingRegistry,
        *,
        notice_limit: int = NOTICE_LIMIT,
        port_available: Callable[[int], bool] = is_port_available,
    ) -> None:
        self._executor = executor
        self._registry = registry
        self._port_available = port_available
        self._pending = 0
        self._notices: deque[Notice] = deque(maxlen=notice_limit)
        self._notice_seq = 0

        self.droplets: list[Droplet] = []
        self.snapshots: list[Snapshot] = []
        self.regions: list[Region] = []
        self.sizes: list[Size] = []
        self.images: list[Image] = []
        self.ssh_keys: list[SshKey] = []
        self.syncs: list[SyncSession] = []
        self.syncs_context: SshConfig | None = None
        self.remote_listing: RemoteDirectoryListing | None = None
        self.remote_listing_error: str | None = None
        self.provider_ready: bool | None = None
        self.last_refresh: datetime | None = None

        self._appliers: dict[type, Callable[[Any], None]] = {
            m.ProviderCheckResult: self._on_provider_check,
            m.DropletsResult: self._on_droplets,
            m.SnapshotsResult: self._on_snapshots,
            m.RegionsResult: self._on_regions,
            m.SizesResult: self._on_sizes,
            m.ImagesResult: self._on_images,
            m.SshKeysResult: self._on_ssh_keys,
            m.CreateDropletResult: self._on_create_droplet,
            m.RestoreDropletResult: self._on_restore_droplet,
            m.SnapshotDeleteResult: self._on_snapshot_delete,
            m.DeleteDropletResult: self._on_delete_droplet,
            m.StartTunnelResult: self._on_start_tunnel,
            m.StopTunnelResult: self._on_stop_tunnel,
            m.CreateSyncsResult: self._on_create_syncs,
            m.RestoreSyncsResult: self._on_restore_syncs,
            m.SyncsResult: self._on_syncs,
            m.DeleteSyncResult: self._on_delete_sync,
            m.RemoteDirectoriesResult: self._on_remote_directories,
            m.DeleteDropletSyncsResult: self._on_delete_droplet_syncs,
            m.TerminateAllSyncsResult: self._on_terminate_all_syncs,
            m.CreateRsyncBindResult: self._on_create_rsync_bind,
            m.RunRsyncResult: self._on_run_rsync,
            m.DeleteRsyncBindResult: self._on_delete_rsync_bind,
        }

    @classmethod
    def from_settings(cls, settings: TetherSettings) -> "Controller":
        ssh_runner = CommandRunner("ssh", settings.ssh_path)
        shell = RemoteShell(ssh_runner)
        services = Services(
            provider=DoctlProvider(CommandRunner("doctl", settings.doctl_path)),
            tunnels=TunnelManager(ssh_runner, grace_seconds=settings.tunnel_grace_ms / 1000),
            syncs=SyncReconciler(
                SyncDaemon(CommandRunner("mutagen", settings.mutagen_path)),
                shell,
                MountLedger(shell, settings.ledger_path),
            ),
            shell=shell,
            rsync=RsyncTransfer(
                CommandRunner("rsync", settings.rsync_path),
                ssh_program=settings.ssh_path or "ssh",
            ),
        )
        registry = BindingRegistry.from_settings(settings)
        controller = cls(TaskExecutor(services), registry)
        try:
            registry.load()
        except RegistryError as exc:
            controller.notify("warning", f"{exc}; starting with an empty registry")
        return controller

    # -- state ----------------------------------------------------------

    @property
    def executor(self) -> TaskExecutor:
        return self._executor

    @property
    def registry(self) -> BindingRegistry:
        return self._registry

    @property
    def bindings(self) -> list[PortBinding]:
        return self._registry.bindings

    @property
    def rsync_binds(self) -> list[RsyncBind]:
        return self._registry.rsync_binds

    @property
    def pending(self) -> int:
        return self._pending

    @property
    def notices(self) -> list[Notice]:
        return list(self._notices)

    @property
    def notice_cursor(self) -> int:
        return self._notice_seq

    def notices_since(self, cursor: int) -> list[Notice]:
        return [notice for notice in self._notices if notice.seq > cursor]

    def notify(self, level: str, message: str) -> Notice:
        self._notice_seq += 1
        notice = Notice(seq=self._notice_seq, level=level, message=message)
        self._notices.append(notice)
        logger.log(_NOTICE_LEVELS.get(level, logging.INFO), message)
        return notice

    # -- task plumbing --------------------------------------------------

    def spawn(self, task: m.Task) -> None:
        self._pending += 1
        self._executor.submit(task)

    def poll(self) -> list[m.TaskResult]:
        """Apply every result delivered since the last poll, oldest first."""

        results = self._executor.drain()
        for result in results:
            if self._pending > 0:
                self._pending -= 1
            self.apply(result)
        return results

    def apply(self, result: m.TaskResult) -> None:
        if result.error is not None:
            self.notify("error", result.error)
            if isinstance(result, m.ProviderCheckResult):
                self.provider_ready = False
            elif isinstance(result, m.RemoteDirectoriesResult):
                self.remote_listing_error = result.error
            return
        applier = self._appliers.get(type(result))
        if applier is None:
            logger.warning("No handler for task result", extra={"result": type(result).__name__})
            return
        applier(result)

    def bootstrap(self) -> None:
        self.spawn(m.CheckProvider())
        self.refresh_all()

    def refresh_all(self) -> None:
        self.refresh_droplets()
        self.load_catalog()

    def refresh_droplets(self) -> None:
        self.spawn(m.RefreshDroplets())

    def load_catalog(self) -> None:
        self.spawn(m.LoadSnapshots())
        self.spawn(m.LoadRegions())
        self.spawn(m.LoadSizes())
        self.spawn(m.LoadImages())
        self.spawn(m.LoadSshKeys())

    # -- droplets -------------------------------------------------------

    def find_droplet(self, droplet_id: int) -> Droplet | None:
        for droplet in self.droplets:
            if droplet.id == droplet_id:
                return droplet
        return None

    def ssh_config_for(self, droplet_id: int) -> SshConfig:
        droplet = self.find_droplet(droplet_id)
        if droplet is None:
            raise ControllerError(f"Unknown droplet {droplet_id}")
        if not droplet.is_running():
            raise ControllerError("Droplet must be running")
        if not droplet.public_ipv4:
            raise ControllerError("Droplet has no public IP")
        defaults = self._registry.settings
        return SshConfig(
            user=defaults.default_ssh_user,
            host=droplet.public_ipv4,
            port=defaults.default_ssh_port,
            key_path=defaults.default_ssh_key_path,
        )

    def _with_ssh(self, droplet_id: int) -> SshConfig | None:
        try:
            return self.ssh_config_for(droplet_id)
        except ControllerError as exc:
            self.notify("warning", str(exc))
            return None

    def create_droplet(self, args: CreateDropletArgs) -> None:
        self.spawn(m.CreateDroplet(args=args))

    def restore_droplet(self, args: CreateDropletArgs) -> None:
        self.spawn(m.RestoreDroplet(args=args))

    def snapshot_and_delete(self, droplet_id: int, snapshot_name: str) -> bool:
        if not snapshot_name.strip():
            self.notify("warning", "Snapshot name cannot be empty")
            return False
        self.spawn(m.SnapshotDelete(droplet_id=droplet_id, snapshot_name=snapshot_name.strip()))
        return True

    def delete_droplet(self, droplet_id: int) -> None:
        self.spawn(m.DeleteDroplet(droplet_id=droplet_id))

    # -- bindings -------------------------------------------------------

    def bind_port(
        self,
        droplet_id: int,
        local_port: int | str,
        remote_port: int | str,
        *,
        ssh_user: str | None = None,
        ssh_key_path: str | None = None,
        ssh_port: int | str | None = None,
    ) -> bool:
        """Validate a bind request and start its tunnel in the background."""

        defaults = self._registry.settings
        try:
            local = parse_port(local_port, "local")
            remote = parse_port(remote_port, "remote")
            port = parse_port(defaults.default_ssh_port if ssh_port is None else ssh_port, "SSH")
            droplet = self.find_droplet(droplet_id)
            if droplet is None:
                raise ControllerError(f"Unknown droplet {droplet_id}")
            if not droplet.public_ipv4:
                raise ControllerError("Droplet has no public IP")
        except ControllerError as exc:
            self.notify("warning", str(exc))
            return False

        if self._registry.find(local) is not None:
            self.notify("warning", "Local port already bound")
            return False
        if not self._port_available(local):
            self.notify("warning", "Local port is in use")
            return False

        binding = new_binding(
            droplet.id,
            droplet.name,
            droplet.public_ipv4,
            local,
            remote,
            (ssh_user or defaults.default_ssh_user).strip(),
            (ssh_key_path or defaults.default_ssh_key_path).strip(),
            port,
        )
        self.spawn(m.StartTunnel(binding=binding))
        return True

    def unbind(self, local_port: int) -> bool:
        binding = self._registry.find(local_port)
        if binding is None:
            self.notify("warning", f"No binding on local port {local_port}")
            return False
        if binding.tunnel_pid is not None:
            self.spawn(m.StopTunnel(port=binding.local_port, pid=binding.tunnel_pid))
        else:
            self._registry.remove(local_port)
            self._save_registry()
        return True

    def cleanup_stale(self) -> int:
        tunnels = self._executor.services.tunnels
        dropped = self._registry.retain(
            lambda binding: binding.tunnel_pid is not None and tunnels.is_alive(binding.tunnel_pid)
        )
        if dropped:
            self._save_registry()
            self.notify("info", f"Removed {_plural(len(dropped), 'stale binding')}")
        else:
            self.notify("info", "No stale bindings found")
        return len(dropped)

    def _save_registry(self) -> None:
        try:
            self._registry.save()
        except RegistryError as exc:
            self.notify("error", str(exc))

    # -- syncs ----------------------------------------------------------

    def create_syncs(self, droplet_id: int, paths: str | list[SyncPath]) -> bool:
        try:
            requested = parse_sync_paths(paths) if isinstance(paths, str) else list(paths)
        except ControllerError as exc:
            self.notify("warning", str(exc))
            return False
        ssh = self._with_ssh(droplet_id)
        if ssh is None:
            return False
        droplet = self.find_droplet(droplet_id)
        label = droplet.name if droplet is not None else str(droplet_id)
        self.spawn(m.CreateSyncs(ssh=ssh, label=label, paths=requested))
        return True

    def restore_syncs(self, droplet_id: int) -> bool:
        ssh = self._with_ssh(droplet_id)
        if ssh is None:
            return False
        self.spawn(m.RestoreSyncs(ssh=ssh))
        return True

    def open_syncs(self, droplet_id: int | None = None) -> None:
        """Refresh the live session list, remembering which host it is for."""

        self.syncs_context = None
        if droplet_id is not None:
            try:
                self.syncs_context = self.ssh_config_for(droplet_id)
            except ControllerError:
                self.syncs_context = None
        self.spawn(m.LoadSyncs())

    def delete_sync(self, name: str) -> bool:
        if not name.strip():
            self.notify("warning", "Sync name cannot be empty")
            return False
        self.spawn(m.DeleteSync(name=name.strip(), ssh=self.syncs_context))
        return True

    def list_remote_directories(self, droplet_id: int, path: str = "~") -> bool:
        ssh = self._with_ssh(droplet_id)
        if ssh is None:
            return False
        self.remote_listing_error = None
        self.spawn(m.ListRemoteDirectories(ssh=ssh, path=path.strip() or "~"))
        return True

    def delete_droplet_syncs(self, droplet_id: int) -> bool:
        ssh = self._with_ssh(droplet_id)
        if ssh is None:
            return False
        droplet = self.find_droplet(droplet_id)
        label = droplet.name if droplet is not None else str(droplet_id)
        self.spawn(m.DeleteDropletSyncs(ssh=ssh, label=label))
        return True

    def terminate_all_syncs(self) -> None:
        self.spawn(m.TerminateAllSyncs())

    # -- rsync binds ----------------------------------------------------

    def create_rsync_bind(
        self,
        droplet_id: int,
        remote_path: str,
        local_path: str,
        *,
        ssh_user: str | None = None,
        ssh_key_path: str | None = None,
        ssh_port: int | str | None = None,
    ) -> bool:
        """Record a droplet folder to copy into ``local_path`` with rsync.

        The local folder is created, or must already be an empty directory.
        """

        defaults = self._registry.settings
        try:
            port = parse_port(defaults.default_ssh_port if ssh_port is None else ssh_port, "SSH")
            if not remote_path.strip():
                raise ControllerError("Remote path cannot be empty")
            if not local_path.strip():
                raise ControllerError("Local path cannot be empty")
            droplet = self.find_droplet(droplet_id)
            if droplet is None:
                raise ControllerError(f"Unknown droplet {droplet_id}")
            if not droplet.public_ipv4:
                raise ControllerError("Droplet has no public IP")
        except ControllerError as exc:
            self.notify("warning", str(exc))
            return False

        local = expand_local_path(local_path)
        if self._registry.find_rsync_bind(local) is not None:
            self.notify("warning", "Local folder already bound")
            return False

        bind = RsyncBind(
            droplet_id=droplet.id,
            droplet_name=droplet.name,
            host=droplet.public_ipv4,
            remote_path=remote_path.strip(),
            local_path=local,
            ssh_user=(ssh_user or defaults.default_ssh_user).strip(),
            ssh_key_path=(ssh_key_path or defaults.default_ssh_key_path).strip(),
            ssh_port=port,
        )
        self.spawn(m.CreateRsyncBind(bind=bind))
        return True

    def _find_rsync_bind(self, local_path: str) -> RsyncBind | None:
        bind = self._registry.find_rsync_bind(expand_local_path(local_path))
        if bind is None:
            self.notify("warning", f"No rsync bind for {local_path}")
        return bind

    def run_rsync(self, local_path: str, direction: str) -> bool:
        try:
            parsed = parse_rsync_direction(direction)
        except ControllerError as exc:
            self.notify("warning", str(exc))
            return False
        bind = self._find_rsync_bind(local_path)
        if bind is None:
            return False
        self.spawn(m.RunRsync(bind=bind, direction=parsed))
        return True

    def delete_rsync_bind(self, local_path: str, *, delete_local_copy: bool = False) -> bool:
        bind = self._find_rsync_bind(local_path)
        if bind is None:
            return False
        self.spawn(m.DeleteRsyncBind(bind=bind, delete_local_copy=delete_local_copy))
        return True

    # -- shutdown -------------------------------------------------------

    def shutdown(self) -> None:
        """Stop every tracked tunnel and persist the registry."""

        tunnels = self._executor.services.tunnels
        for binding in self._registry.bindings:
            if binding.tunnel_pid is None:
                continue
            try:
                tunnels.stop(binding.tunnel_pid)
            except TunnelError as exc:
                logger.warning(
                    "Failed to stop tunnel on shutdown",
                    extra={"pid": binding.tunnel_pid, "error": str(exc)},
                )
        try:
            self._registry.save()
        except RegistryError as exc:
            logger.error("Failed to save registry on shutdown", extra={"error": str(exc)})

    # -- result appliers ------------------------------------------------

    def _on_provider_check(self, result: m.ProviderCheckResult) -> None:
        self.provider_ready = True
        self.notify("success", "doctl authenticated")

    def _on_droplets(self, result: m.DropletsResult) -> None:
        self.droplets = sorted(result.value or [], key=lambda droplet: droplet.name)
        self.last_refresh = datetime.now(timezone.utc)

    def _on_snapshots(self, result: m.SnapshotsResult) -> None:
        self.snapshots = sorted(result.value or [], key=lambda snap: snap.created_at, reverse=True)

    def _on_regions(self, result: m.RegionsResult) -> None:
        self.regions = sorted(result.value or [], key=lambda region: region.slug)

    def _on_sizes(self, result: m.SizesResult) -> None:
        self.sizes = sorted(result.value or [], key=lambda size: size.slug)

    def _on_images(self, result: m.ImagesResult) -> None:
        self.images = sorted(result.value or [], key=lambda image: image.name)

    def _on_ssh_keys(self, result: m.SshKeysResult) -> None:
        self.ssh_keys = sorted(result.value or [], key=lambda key: key.name)

    def _on_create_droplet(self, result: m.CreateDropletResult) -> None:
        if result.value is not None:
            self.droplets.append(result.value)
        self.notify("success", "Droplet created")
        self.spawn(m.RefreshDroplets())

    def _on_restore_droplet(self, result: m.RestoreDropletResult) -> None:
        if result.value is not None:
            self.droplets.append(result.value)
        self.notify("success", "Droplet restored")
        self.spawn(m.RefreshDroplets())

    def _on_snapshot_delete(self, result: m.SnapshotDeleteResult) -> None:
        self.notify("success", "Snapshot created and droplet deleted")
        self.spawn(m.RefreshDroplets())
        self.spawn(m.LoadSnapshots())
        # Snapshots can take a few seconds to show up in the listing.
        self.spawn(m.LoadSnapshots(delay_ms=SNAPSHOT_RETRY_DELAY_MS))

    def _on_delete_droplet(self, result: m.DeleteDropletResult) -> None:
        self.notify("success", "Droplet deleted")
        self.spawn(m.RefreshDroplets())

    def _on_start_tunnel(self, result: m.StartTunnelResult) -> None:
        binding = result.value
        if binding is None:
            return
        try:
            self._registry.add(binding)
        except RegistryError as exc:
            # Two binds for the same port raced past validation.
            self.notify("error", str(exc))
            if binding.tunnel_pid is not None:
                try:
                    self._executor.services.tunnels.stop(binding.tunnel_pid)
                except TunnelError as stop_exc:
                    self.notify("error", str(stop_exc))
            return
        self._save_registry()
        self.notify("success", f"Port {binding.local_port} bound")

    def _on_stop_tunnel(self, result: m.StopTunnelResult) -> None:
        if result.value is None:
            return
        self._registry.remove(result.value)
        self._save_registry()
        self.notify("success", f"Port {result.value} unbound")

    def _on_create_syncs(self, result: m.CreateSyncsResult) -> None:
        self.notify("success", f"Synced {_plural(result.value or 0, 'folder')}")

    def _on_restore_syncs(self, result: m.RestoreSyncsResult) -> None:
        self.notify("success", f"Restored {_plural(result.value or 0, 'sync')}")

    def _on_syncs(self, result: m.SyncsResult) -> None:
        self.syncs = sorted(result.value or [], key=lambda session: session.name)

    def _on_delete_sync(self, result: m.DeleteSyncResult) -> None:
        outcome = result.value
        if outcome is None:
            return
        if outcome.mount_error:
            self.notify(
                "warning",
                f"Sync '{outcome.name}' terminated, but mount cleanup failed: {outcome.mount_error}",
            )
        elif outcome.mount_removed:
            self.notify("success", f"Sync '{outcome.name}' deleted and mount removed")
        else:
            self.notify("success", f"Sync '{outcome.name}' deleted")
        self.spawn(m.LoadSyncs())

    def _on_remote_directories(self, result: m.RemoteDirectoriesResult) -> None:
        self.remote_listing = result.value
        self.remote_listing_error = None

    def _on_delete_droplet_syncs(self, result: m.DeleteDropletSyncsResult) -> None:
        outcome = result.value
        if outcome is None:
            return
        message = (
            f"Terminated {_plural(len(outcome.terminated), 'sync')} for {outcome.label}, "
            f"removed {_plural(outcome.mounts_removed, 'mount')}"
        )
        if outcome.mount_error:
            self.notify("warning", f"{message}; mount cleanup failed: {outcome.mount_error}")
        else:
            self.notify("success", message)
        self.spawn(m.LoadSyncs())

    def _on_terminate_all_syncs(self, result: m.TerminateAllSyncsResult) -> None:
        self.notify("success", f"Terminated {_plural(result.value or 0, 'sync')}")
        self.spawn(m.LoadSyncs())

    def _on_create_rsync_bind(self, result: m.CreateRsyncBindResult) -> None:
        bind = result.value
        if bind is None:
            return
        try:
            self._registry.add_rsync_bind(bind)
        except RegistryError as exc:
            self.notify("error", str(exc))
            return
        self._save_registry()
        self.notify(
            "success",
            f"RSYNC bind created: {bind.ssh_user}@{bind.host}:{bind.remote_path} -> {bind.local_path}",
        )

    def _on_run_rsync(self, result: m.RunRsyncResult) -> None:
        outcome = result.value
        if outcome is None:
            return
        bind = outcome.bind
        remote = f"{bind.host}:{bind.remote_path}"
        if outcome.direction is RsyncDirection.UP:
            self.notify("success", f"Pushed {bind.local_path} to {remote}")
        else:
            self.notify("success", f"Pulled {remote} into {bind.local_path}")

    def _on_delete_rsync_bind(self, result: m.DeleteRsyncBindResult) -> None:
        outcome = result.value
        if outcome is None:
            return
        self._registry.remove_rsync_bind(outcome.bind.local_path)
        self._save_registry()
        if outcome.local_deleted:
            self.notify("success", f"RSYNC bind removed and {outcome.bind.local_path} deleted")
        else:
            self.notify("success", "RSYNC bind removed")


__all__ = [
    "Controller",
    "ControllerError",
    "Notice",
    "parse_port",
    "parse_rsync_direction",
    "parse_sync_paths",
    "split_csv",
]
