"""Task requests and their results.

Every operation has one request variant and one result variant. A result
is either a success carrying ``value`` or a failure carrying ``error``;
the executor guarantees exactly one result per submitted task.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Union

from ..compute.models import CreateDropletArgs, Droplet, Image, Region, Size, Snapshot, SshKey
from ..external.ssh import SshConfig
from ..rsync.transfer import DeleteRsyncBindOutcome, RsyncDirection, RsyncRunOutcome
from ..storage.models import PortBinding, RsyncBind
from ..syncs.models import (
    DeleteDropletSyncsOutcome,
    DeleteSyncOutcome,
    RemoteDirectoryListing,
    SyncPath,
    SyncSession,
)


# -- results ----------------------------------------------------------------


@dataclass(slots=True)
class _Outcome:
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class ProviderCheckResult(_Outcome):
    pass


@dataclass(slots=True)
class DropletsResult(_Outcome):
    value: list[Droplet] | None = None


@dataclass(slots=True)
class SnapshotsResult(_Outcome):
    value: list[Snapshot] | None = None


@dataclass(slots=True)
class RegionsResult(_Outcome):
    value: list[Region] | None = None


@dataclass(slots=True)
class SizesResult(_Outcome):
    value: list[Size] | None = None


@dataclass(slots=True)
class ImagesResult(_Outcome):
    value: list[Image] | None = None


@dataclass(slots=True)
class SshKeysResult(_Outcome):
    value: list[SshKey] | None = None


@dataclass(slots=True)
class CreateDropletResult(_Outcome):
    value: Droplet | None = None


@dataclass(slots=True)
class RestoreDropletResult(_Outcome):
    value: Droplet | None = None


@dataclass(slots=True)
class SnapshotDeleteResult(_Outcome):
    value: int | None = None


@dataclass(slots=True)
class DeleteDropletResult(_Outcome):
    value: int | None = None


@dataclass(slots=True)
class StartTunnelResult(_Outcome):
    value: PortBinding | None = None


@dataclass(slots=True)
class StopTunnelResult(_Outcome):
    value: int | None = None


@dataclass(slots=True)
class CreateSyncsResult(_Outcome):
    value: int | None = None


@dataclass(slots=True)
class RestoreSyncsResult(_Outcome):
    value: int | None = None


@dataclass(slots=True)
class SyncsResult(_Outcome):
    value: list[SyncSession] | None = None


@dataclass(slots=True)
class DeleteSyncResult(_Outcome):
    value: DeleteSyncOutcome | None = None


@dataclass(slots=True)
class RemoteDirectoriesResult(_Outcome):
    requested_path: str = ""
    value: RemoteDirectoryListing | None = None


@dataclass(slots=True)
class DeleteDropletSyncsResult(_Outcome):
    value: DeleteDropletSyncsOutcome | None = None


@dataclass(slots=True)
class TerminateAllSyncsResult(_Outcome):
    value: int | None = None


@dataclass(slots=True)
class CreateRsyncBindResult(_Outcome):
    value: RsyncBind | None = None


@dataclass(slots=True)
class RunRsyncResult(_Outcome):
    value: RsyncRunOutcome | None = None


@dataclass(slots=True)
class DeleteRsyncBindResult(_Outcome):
    value: DeleteRsyncBindOutcome | None = None


TaskResult = Union[
    ProviderCheckResult,
    DropletsResult,
    SnapshotsResult,
    RegionsResult,
    SizesResult,
    ImagesResult,
    SshKeysResult,
    CreateDropletResult,
    RestoreDropletResult,
    SnapshotDeleteResult,
    DeleteDropletResult,
    StartTunnelResult,
    StopTunnelResult,
    CreateSyncsResult,
    RestoreSyncsResult,
    SyncsResult,
    DeleteSyncResult,
    RemoteDirectoriesResult,
    DeleteDropletSyncsResult,
    TerminateAllSyncsResult,
    CreateRsyncBindResult,
    RunRsyncResult,
    DeleteRsyncBindResult,
]


# -- requests ---------------------------------------------------------------


@dataclass(slots=True)
class _Request:
    result_type: ClassVar[type[Any]]

    def failure(self, message: str) -> Any:
        return self.result_type(error=message)


@dataclass(slots=True)
class CheckProvider(_Request):
    result_type: ClassVar[type[Any]] = ProviderCheckResult


@dataclass(slots=True)
class RefreshDroplets(_Request):
    result_type: ClassVar[type[Any]] = DropletsResult


@dataclass(slots=True)
class LoadSnapshots(_Request):
    result_type: ClassVar[type[Any]] = SnapshotsResult

    delay_ms: int = 0


@dataclass(slots=True)
class LoadRegions(_Request):
    result_type: ClassVar[type[Any]] = RegionsResult


@dataclass(slots=True)
class LoadSizes(_Request):
    result_type: ClassVar[type[Any]] = SizesResult


@dataclass(slots=True)
class LoadImages(_Request):
    result_type: ClassVar[type[Any]] = ImagesResult


@dataclass(slots=True)
class LoadSshKeys(_Request):
    result_type: ClassVar[type[Any]] = SshKeysResult


@dataclass(slots=True)
class CreateDroplet(_Request):
    result_type: ClassVar[type[Any]] = CreateDropletResult

    args: CreateDropletArgs


@dataclass(slots=True)
class RestoreDroplet(_Request):
    result_type: ClassVar[type[Any]] = RestoreDropletResult

    args: CreateDropletArgs


@dataclass(slots=True)
class SnapshotDelete(_Request):
    result_type: ClassVar[type[Any]] = SnapshotDeleteResult

    droplet_id: int
    snapshot_name: str


@dataclass(slots=True)
class DeleteDroplet(_Request):
    result_type: ClassVar[type[Any]] = DeleteDropletResult

    droplet_id: int


@dataclass(slots=True)
class StartTunnel(_Request):
    result_type: ClassVar[type[Any]] = StartTunnelResult

    binding: PortBinding


@dataclass(slots=True)
class StopTunnel(_Request):
    result_type: ClassVar[type[Any]] = StopTunnelResult

    port: int
    pid: int


@dataclass(slots=True)
class CreateSyncs(_Request):
    result_type: ClassVar[type[Any]] = CreateSyncsResult

    ssh: SshConfig
    label: str
    paths: list[SyncPath]


@dataclass(slots=True)
class RestoreSyncs(_Request):
    result_type: ClassVar[type[Any]] = RestoreSyncsResult

    ssh: SshConfig


@dataclass(slots=True)
class LoadSyncs(_Request):
    result_type: ClassVar[type[Any]] = SyncsResult


@dataclass(slots=True)
class DeleteSync(_Request):
    result_type: ClassVar[type[Any]] = DeleteSyncResult

    name: str
    ssh: SshConfig | None = None


@dataclass(slots=True)
class ListRemoteDirectories(_Request):
    result_type: ClassVar[type[Any]] = RemoteDirectoriesResult

    ssh: SshConfig
    path: str = "~"

    def failure(self, message: str) -> RemoteDirectoriesResult:
        return RemoteDirectoriesResult(error=message, requested_path=self.path)


@dataclass(slots=True)
class DeleteDropletSyncs(_Request):
    result_type: ClassVar[type[Any]] = DeleteDropletSyncsResult

    ssh: SshConfig
    label: str


@dataclass(slots=True)
class TerminateAllSyncs(_Request):
    result_type: ClassVar[type[Any]] = TerminateAllSyncsResult


@dataclass(slots=True)
class CreateRsyncBind(_Request):
    result_type: ClassVar[type[Any]] = CreateRsyncBindResult

    bind: RsyncBind


@dataclass(slots=True)
class RunRsync(_Request):
    result_type: ClassVar[type[Any]] = RunRsyncResult

    bind: RsyncBind
    direction: RsyncDirection


@dataclass(slots=True)
class DeleteRsyncBind(_Request):
    result_type: ClassVar[type[Any]] = DeleteRsyncBindResult

    bind: RsyncBind
    delete_local_copy: bool = False


Task = Union[
    CheckProvider,
    RefreshDroplets,
    LoadSnapshots,
    LoadRegions,
    LoadSizes,
    LoadImages,
    LoadSshKeys,
    CreateDroplet,
    RestoreDroplet,
    SnapshotDelete,
    DeleteDroplet,
    StartTunnel,
    StopTunnel,
    CreateSyncs,
    RestoreSyncs,
    LoadSyncs,
    DeleteSync,
    ListRemoteDirectories,
    DeleteDropletSyncs,
    TerminateAllSyncs,
    CreateRsyncBind,
    RunRsync,
    DeleteRsyncBind,
]


__all__ = [
    "CheckProvider",
    "CreateDroplet",
    "CreateDropletResult",
    "CreateRsyncBind",
    "CreateRsyncBindResult",
    "CreateSyncs",
    "CreateSyncsResult",
    "DeleteDroplet",
    "DeleteDropletResult",
    "DeleteDropletSyncs",
    "DeleteDropletSyncsResult",
    "DeleteRsyncBind",
    "DeleteRsyncBindResult",
    "DeleteSync",
    "DeleteSyncResult",
    "DropletsResult",
    "ImagesResult",
    "ListRemoteDirectories",
    "LoadImages",
    "LoadRegions",
    "LoadSizes",
    "LoadSnapshots",
    "LoadSshKeys",
    "LoadSyncs",
    "ProviderCheckResult",
    "RefreshDroplets",
    "RegionsResult",
    "RemoteDirectoriesResult",
    "RestoreDroplet",
    "RestoreDropletResult",
    "RestoreSyncs",
    "RestoreSyncsResult",
    "RunRsync",
    "RunRsyncResult",
    "SizesResult",
    "SnapshotDelete",
    "SnapshotDeleteResult",
    "SnapshotsResult",
    "SshKeysResult",
    "StartTunnel",
    "StartTunnelResult",
    "StopTunnel",
    "StopTunnelResult",
    "SyncsResult",
    "Task",
    "TaskResult",
    "TerminateAllSyncs",
    "TerminateAllSyncsResult",
]
