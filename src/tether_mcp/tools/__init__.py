"""Tool registration for Tether MCP."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP

from ..compute import CreateDropletArgs
from ..config import TetherSettings
from ..controller import Controller

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    refresh: Any
    list_droplets: Any
    catalog: Any
    create_droplet: Any
    restore_droplet: Any
    snapshot_and_delete: Any
    delete_droplet: Any
    bind_port: Any
    unbind_port: Any
    list_bindings: Any
    cleanup_stale_bindings: Any
    create_syncs: Any
    restore_syncs: Any
    list_syncs: Any
    delete_sync: Any
    list_remote_directories: Any
    delete_droplet_syncs: Any
    terminate_all_syncs: Any
    create_rsync_bind: Any
    run_rsync: Any
    delete_rsync_bind: Any
    list_rsync_binds: Any


def _dump(value: Any) -> Any:
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, list):
        return [_dump(item) for item in value]
    return value


def register_tools(
    server: FastMCP,
    *,
    controller: Controller,
    settings: TetherSettings,
) -> ToolHandles:
    """Register Tether's MCP tools on the server.

    Each tool turns its arguments into controller requests, then settles:
    the result channel is polled on the configured cadence until nothing is
    pending or the settle timeout passes. Follow-up tasks spawned while
    applying results are waited on as well.
    """

    interval = settings.poll_interval_ms / 1000

    async def _settle() -> bool:
        deadline = time.monotonic() + settings.settle_timeout_s
        controller.poll()
        while controller.pending > 0:
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(interval)
            controller.poll()
        return True

    async def _finish(cursor: int, **payload: Any) -> dict[str, Any]:
        settled = await _settle()
        response = {key: _dump(value) for key, value in payload.items()}
        response.update(
            {
                "settled": settled,
                "pending": controller.pending,
                "notices": [notice.as_dict() for notice in controller.notices_since(cursor)],
            }
        )
        return response

    async def _refresh(context: Context | None = None) -> dict[str, Any]:
        """Reload droplets, snapshots and the provider catalogue."""

        cursor = controller.notice_cursor
        controller.refresh_all()
        response = await _finish(cursor)
        response["droplets"] = _dump(controller.droplets)
        response["snapshots"] = _dump(controller.snapshots)
        _emit_log(context, "info", "Refreshed inventory", extra={"droplets": len(controller.droplets)})
        return response

    async def _list_droplets(
        running_only: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        cursor = controller.notice_cursor
        controller.refresh_droplets()
        response = await _finish(cursor)
        droplets = [d for d in controller.droplets if d.is_running() or not running_only]
        response["droplets"] = _dump(droplets)
        return response

    async def _catalog(context: Context | None = None) -> dict[str, Any]:
        cursor = controller.notice_cursor
        controller.load_catalog()
        response = await _finish(cursor)
        response.update(
            {
                "regions": _dump(controller.regions),
                "sizes": _dump(controller.sizes),
                "images": _dump(controller.images),
                "ssh_keys": _dump(controller.ssh_keys),
                "snapshots": _dump(controller.snapshots),
            }
        )
        return response

    async def _create_droplet(
        name: str,
        size: str,
        image: str,
        region: str | None = None,
        ssh_keys: list[str] | None = None,
        tags: list[str] | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Create a droplet from a distribution image."""

        cursor = controller.notice_cursor
        args = CreateDropletArgs(
            name=name, size=size, image=image, region=region, ssh_keys=ssh_keys or [], tags=tags or []
        )
        controller.create_droplet(args)
        _emit_log(context, "info", "Creating droplet", extra={"droplet": name, "size": size})
        response = await _finish(cursor)
        response["droplets"] = _dump(controller.droplets)
        return response

    async def _restore_droplet(
        name: str,
        size: str,
        snapshot_id: int,
        region: str | None = None,
        ssh_keys: list[str] | None = None,
        tags: list[str] | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Create a droplet from a snapshot."""

        cursor = controller.notice_cursor
        args = CreateDropletArgs(
            name=name,
            size=size,
            image=str(snapshot_id),
            region=region,
            ssh_keys=ssh_keys or [],
            tags=tags or [],
        )
        controller.restore_droplet(args)
        _emit_log(context, "info", "Restoring droplet", extra={"droplet": name, "snapshot_id": snapshot_id})
        response = await _finish(cursor)
        response["droplets"] = _dump(controller.droplets)
        return response

    async def _snapshot_and_delete(
        droplet_id: int,
        snapshot_name: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        cursor = controller.notice_cursor
        accepted = controller.snapshot_and_delete(droplet_id, snapshot_name)
        _emit_log(context, "info", "Snapshot and delete requested", extra={"droplet_id": droplet_id})
        return await _finish(cursor, accepted=accepted)

    async def _delete_droplet(droplet_id: int, context: Context | None = None) -> dict[str, Any]:
        cursor = controller.notice_cursor
        controller.delete_droplet(droplet_id)
        _emit_log(context, "info", "Droplet delete requested", extra={"droplet_id": droplet_id})
        return await _finish(cursor, accepted=True)

    async def _bind_port(
        droplet_id: int,
        local_port: int,
        remote_port: int,
        ssh_user: str | None = None,
        ssh_key_path: str | None = None,
        ssh_port: int | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Forward ``127.0.0.1:local_port`` to ``remote_port`` on the droplet."""

        cursor = controller.notice_cursor
        accepted = controller.bind_port(
            droplet_id,
            local_port,
            remote_port,
            ssh_user=ssh_user,
            ssh_key_path=ssh_key_path,
            ssh_port=ssh_port,
        )
        _emit_log(
            context,
            "info",
            "Bind requested",
            extra={"droplet_id": droplet_id, "local_port": local_port, "accepted": accepted},
        )
        response = await _finish(cursor, accepted=accepted)
        response["binding"] = _dump(controller.registry.find(local_port)) if accepted else None
        return response

    async def _unbind_port(local_port: int, context: Context | None = None) -> dict[str, Any]:
        cursor = controller.notice_cursor
        accepted = controller.unbind(local_port)
        _emit_log(context, "info", "Unbind requested", extra={"local_port": local_port})
        return await _finish(cursor, accepted=accepted)

    def _binding_rows() -> list[dict[str, Any]]:
        tunnels = controller.executor.services.tunnels
        rows = []
        for binding in controller.bindings:
            row = binding.model_dump(mode="json")
            row["alive"] = binding.tunnel_pid is not None and tunnels.is_alive(binding.tunnel_pid)
            rows.append(row)
        return rows

    async def _list_bindings(context: Context | None = None) -> dict[str, Any]:
        cursor = controller.notice_cursor
        response = await _finish(cursor)
        response["bindings"] = _binding_rows()
        _emit_log(context, "debug", "Listing bindings", extra={"count": len(response["bindings"])})
        return response

    async def _cleanup_stale_bindings(context: Context | None = None) -> dict[str, Any]:
        cursor = controller.notice_cursor
        removed = controller.cleanup_stale()
        response = await _finish(cursor, removed=removed)
        response["bindings"] = _binding_rows()
        return response

    async def _create_syncs(
        droplet_id: int,
        paths: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Sync folders to a droplet.

        ``paths`` is a comma-separated list of ``local -> remote`` pairs; a
        path without ``->`` is mirrored to the same path remotely.
        """

        cursor = controller.notice_cursor
        accepted = controller.create_syncs(droplet_id, paths)
        _emit_log(context, "info", "Sync creation requested", extra={"droplet_id": droplet_id})
        return await _finish(cursor, accepted=accepted)

    async def _restore_syncs(droplet_id: int, context: Context | None = None) -> dict[str, Any]:
        cursor = controller.notice_cursor
        accepted = controller.restore_syncs(droplet_id)
        _emit_log(context, "info", "Sync restore requested", extra={"droplet_id": droplet_id})
        return await _finish(cursor, accepted=accepted)

    async def _list_syncs(
        droplet_id: int | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        cursor = controller.notice_cursor
        controller.open_syncs(droplet_id)
        response = await _finish(cursor)
        response["syncs"] = _dump(controller.syncs)
        response["host"] = controller.syncs_context.host if controller.syncs_context else None
        return response

    async def _delete_sync(name: str, context: Context | None = None) -> dict[str, Any]:
        """Terminate a sync session and drop its ledger entry when a host is known.

        The host is the one last passed to ``list_syncs``.
        """

        cursor = controller.notice_cursor
        accepted = controller.delete_sync(name)
        _emit_log(context, "info", "Sync delete requested", extra={"session": name})
        response = await _finish(cursor, accepted=accepted)
        response["syncs"] = _dump(controller.syncs)
        return response

    async def _list_remote_directories(
        droplet_id: int,
        path: str = "~",
        context: Context | None = None,
    ) -> dict[str, Any]:
        cursor = controller.notice_cursor
        accepted = controller.list_remote_directories(droplet_id, path)
        response = await _finish(cursor, accepted=accepted)
        response["listing"] = _dump(controller.remote_listing) if accepted else None
        response["error"] = controller.remote_listing_error
        return response

    async def _delete_droplet_syncs(droplet_id: int, context: Context | None = None) -> dict[str, Any]:
        cursor = controller.notice_cursor
        accepted = controller.delete_droplet_syncs(droplet_id)
        _emit_log(context, "info", "Droplet sync teardown requested", extra={"droplet_id": droplet_id})
        response = await _finish(cursor, accepted=accepted)
        response["syncs"] = _dump(controller.syncs)
        return response

    async def _terminate_all_syncs(context: Context | None = None) -> dict[str, Any]:
        cursor = controller.notice_cursor
        controller.terminate_all_syncs()
        _emit_log(context, "warning", "Terminating all sync sessions")
        response = await _finish(cursor)
        response["syncs"] = _dump(controller.syncs)
        return response

    async def _create_rsync_bind(
        droplet_id: int,
        remote_path: str,
        local_path: str,
        ssh_user: str | None = None,
        ssh_key_path: str | None = None,
        ssh_port: int | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Pair a droplet folder with an empty local folder for rsync copies."""

        cursor = controller.notice_cursor
        accepted = controller.create_rsync_bind(
            droplet_id,
            remote_path,
            local_path,
            ssh_user=ssh_user,
            ssh_key_path=ssh_key_path,
            ssh_port=ssh_port,
        )
        _emit_log(
            context,
            "info",
            "Rsync bind requested",
            extra={"droplet_id": droplet_id, "local_path": local_path, "accepted": accepted},
        )
        response = await _finish(cursor, accepted=accepted)
        response["rsync_binds"] = _dump(controller.rsync_binds)
        return response

    async def _run_rsync(
        local_path: str,
        direction: str = "down",
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Copy a bound folder ``up`` to the droplet or ``down`` from it."""

        cursor = controller.notice_cursor
        accepted = controller.run_rsync(local_path, direction)
        _emit_log(context, "info", "Rsync requested", extra={"local_path": local_path, "direction": direction})
        return await _finish(cursor, accepted=accepted)

    async def _delete_rsync_bind(
        local_path: str,
        delete_local_copy: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        cursor = controller.notice_cursor
        accepted = controller.delete_rsync_bind(local_path, delete_local_copy=delete_local_copy)
        _emit_log(
            context,
            "info",
            "Rsync bind delete requested",
            extra={"local_path": local_path, "delete_local_copy": delete_local_copy},
        )
        response = await _finish(cursor, accepted=accepted)
        response["rsync_binds"] = _dump(controller.rsync_binds)
        return response

    async def _list_rsync_binds(context: Context | None = None) -> dict[str, Any]:
        cursor = controller.notice_cursor
        response = await _finish(cursor)
        response["rsync_binds"] = _dump(controller.rsync_binds)
        return response

    tool_refresh = server.tool(
        name="refresh",
        description="Reload droplets, snapshots, regions, sizes, images and SSH keys.",
    )(_refresh)
    tool_list_droplets = server.tool(
        name="list_droplets",
        description="List cached droplets, optionally only running ones.",
    )(_list_droplets)
    tool_catalog = server.tool(
        name="catalog",
        description="Show cached regions, sizes, images, SSH keys and snapshots.",
    )(_catalog)
    tool_create_droplet = server.tool(
        name="create_droplet",
        description="Create a droplet from an image and wait until it is provisioned.",
    )(_create_droplet)
    tool_restore_droplet = server.tool(
        name="restore_droplet",
        description="Create a droplet from a snapshot.",
    )(_restore_droplet)
    tool_snapshot_and_delete = server.tool(
        name="snapshot_and_delete",
        description="Snapshot a droplet, then delete it.",
    )(_snapshot_and_delete)
    tool_delete_droplet = server.tool(
        name="delete_droplet",
        description="Delete a droplet without taking a snapshot.",
    )(_delete_droplet)
    tool_bind_port = server.tool(
        name="bind_port",
        description="Open an SSH tunnel forwarding a local port to a droplet port.",
    )(_bind_port)
    tool_unbind_port = server.tool(
        name="unbind_port",
        description="Stop the tunnel on a local port and forget the binding.",
    )(_unbind_port)
    tool_list_bindings = server.tool(
        name="list_bindings",
        description="List port bindings with tunnel liveness.",
    )(_list_bindings)
    tool_cleanup = server.tool(
        name="cleanup_stale_bindings",
        description="Drop bindings whose tunnel process is gone.",
    )(_cleanup_stale_bindings)
    tool_create_syncs = server.tool(
        name="create_syncs",
        description="Create or resume file sync sessions for 'local -> remote' pairs.",
    )(_create_syncs)
    tool_restore_syncs = server.tool(
        name="restore_syncs",
        description="Bring back every sync recorded in the droplet's mount ledger.",
    )(_restore_syncs)
    tool_list_syncs = server.tool(
        name="list_syncs",
        description="List live sync sessions; pass a droplet to target deletes at its ledger.",
    )(_list_syncs)
    tool_delete_sync = server.tool(
        name="delete_sync",
        description="Terminate a sync session and remove its mount ledger entry.",
    )(_delete_sync)
    tool_list_remote_dirs = server.tool(
        name="list_remote_directories",
        description="List sub-directories of a path on a droplet.",
    )(_list_remote_directories)
    tool_delete_droplet_syncs = server.tool(
        name="delete_droplet_syncs",
        description="Terminate every sync session for a droplet and prune its ledger.",
    )(_delete_droplet_syncs)
    tool_terminate_all = server.tool(
        name="terminate_all_syncs",
        description="Terminate every live sync session.",
    )(_terminate_all_syncs)
    tool_create_rsync_bind = server.tool(
        name="create_rsync_bind",
        description="Pair a droplet folder with an empty local folder for rsync copies.",
    )(_create_rsync_bind)
    tool_run_rsync = server.tool(
        name="run_rsync",
        description="Copy a bound folder up to the droplet or down from it with rsync.",
    )(_run_rsync)
    tool_delete_rsync_bind = server.tool(
        name="delete_rsync_bind",
        description="Forget an rsync bind, optionally deleting the local copy.",
    )(_delete_rsync_bind)
    tool_list_rsync_binds = server.tool(
        name="list_rsync_binds",
        description="List rsync binds.",
    )(_list_rsync_binds)

    return ToolHandles(
        refresh=tool_refresh,
        list_droplets=tool_list_droplets,
        catalog=tool_catalog,
        create_droplet=tool_create_droplet,
        restore_droplet=tool_restore_droplet,
        snapshot_and_delete=tool_snapshot_and_delete,
        delete_droplet=tool_delete_droplet,
        bind_port=tool_bind_port,
        unbind_port=tool_unbind_port,
        list_bindings=tool_list_bindings,
        cleanup_stale_bindings=tool_cleanup,
        create_syncs=tool_create_syncs,
        restore_syncs=tool_restore_syncs,
        list_syncs=tool_list_syncs,
        delete_sync=tool_delete_sync,
        list_remote_directories=tool_list_remote_dirs,
        delete_droplet_syncs=tool_delete_droplet_syncs,
        terminate_all_syncs=tool_terminate_all,
        create_rsync_bind=tool_create_rsync_bind,
        run_rsync=tool_run_rsync,
        delete_rsync_bind=tool_delete_rsync_bind,
        list_rsync_binds=tool_list_rsync_binds,
    )


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["ToolHandles", "register_tools"]
