from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from conftest import wait_until_settled
from tether_mcp.config import TetherSettings
from tether_mcp.controller import Controller
from tether_mcp.server import build_status, create_server
from tether_mcp.storage import BindingRegistry
from tether_mcp.tasks import TaskExecutor
from tether_mcp.tools import register_tools


class StubTool:
    def __init__(self, fn, name):
        self.fn = fn
        self.name = name


class StubServer:
    def __init__(self) -> None:
        self._tools: dict[str, StubTool] = {}

    def tool(self, *args, **kwargs):
        provided_name = None
        if args and isinstance(args[0], str):
            provided_name = args[0]
        provided_name = kwargs.get("name", provided_name)

        def decorator(fn):
            tool_name = provided_name or fn.__name__
            tool = StubTool(fn, tool_name)
            self._tools[tool_name] = tool
            return tool

        return decorator


class StubLogger:
    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict]] = []

    def info(self, message, extra=None):
        self.records.append(("info", message, extra or {}))


class StubContext:
    def __init__(self) -> None:
        self.logger = StubLogger()
        self.request_id = "req-1"


@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> TetherSettings:
    monkeypatch.setenv("TETHER_STATE_PATH", str(tmp_path / "state.json"))
    monkeypatch.setenv("TETHER_POLL_INTERVAL_MS", "5")
    monkeypatch.setenv("TETHER_SETTLE_TIMEOUT", "5")
    return TetherSettings()


@pytest.fixture
def controller(executor: TaskExecutor, registry: BindingRegistry) -> Controller:
    controller = Controller(executor, registry, port_available=lambda port: True)
    controller.refresh_droplets()
    wait_until_settled(controller)
    return controller


def test_register_tools_exposes_every_operation(controller: Controller, settings: TetherSettings) -> None:
    server = StubServer()

    register_tools(server, controller=controller, settings=settings)

    assert set(server._tools) == {
        "refresh",
        "list_droplets",
        "catalog",
        "create_droplet",
        "restore_droplet",
        "snapshot_and_delete",
        "delete_droplet",
        "bind_port",
        "unbind_port",
        "list_bindings",
        "cleanup_stale_bindings",
        "create_syncs",
        "restore_syncs",
        "list_syncs",
        "delete_sync",
        "list_remote_directories",
        "delete_droplet_syncs",
        "terminate_all_syncs",
        "create_rsync_bind",
        "run_rsync",
        "delete_rsync_bind",
        "list_rsync_binds",
    }


def test_bind_port_tool_settles_and_reports(controller: Controller, settings: TetherSettings) -> None:
    handles = register_tools(StubServer(), controller=controller, settings=settings)
    context = StubContext()

    response = asyncio.run(handles.bind_port.fn(2, 8080, 80, context=context))

    assert response["accepted"] is True
    assert response["settled"] is True
    assert response["pending"] == 0
    assert response["binding"]["tunnel_pid"] == 4242
    assert [n["message"] for n in response["notices"]] == ["Port 8080 bound"]
    assert context.logger.records[0][1] == "Bind requested"

    listing = asyncio.run(handles.list_bindings.fn())
    assert listing["bindings"][0]["alive"] is True


def test_rejected_request_returns_warning(controller: Controller, settings: TetherSettings) -> None:
    handles = register_tools(StubServer(), controller=controller, settings=settings)

    response = asyncio.run(handles.create_syncs.fn(1, "~/proj"))

    assert response["accepted"] is False
    assert response["notices"] == [
        {**response["notices"][0], "level": "warning", "message": "Droplet must be running"}
    ]


def test_list_syncs_tool_tracks_host(controller: Controller, settings: TetherSettings) -> None:
    handles = register_tools(StubServer(), controller=controller, settings=settings)

    response = asyncio.run(handles.list_syncs.fn(droplet_id=2))

    assert response["host"] == "203.0.113.5"
    assert response["syncs"][0]["name"] == "sync-web-1-proj-20250101-120000"

    deleted = asyncio.run(handles.delete_sync.fn("sync-web-1-proj-20250101-120000"))
    assert deleted["syncs"] == []


def test_rsync_bind_tools_create_and_remove(
    controller: Controller, settings: TetherSettings, tmp_path: Path
) -> None:
    handles = register_tools(StubServer(), controller=controller, settings=settings)
    local = tmp_path / "copy"

    created = asyncio.run(handles.create_rsync_bind.fn(2, "/srv/app", str(local)))

    assert created["accepted"] is True
    assert created["settled"] is True
    assert [row["local_path"] for row in created["rsync_binds"]] == [str(local)]
    assert local.is_dir()

    pulled = asyncio.run(handles.run_rsync.fn(str(local), "down"))
    assert [n["message"] for n in pulled["notices"]] == [f"Pulled 203.0.113.5:/srv/app into {local}"]

    removed = asyncio.run(handles.delete_rsync_bind.fn(str(local)))
    assert removed["rsync_binds"] == []
    assert asyncio.run(handles.list_rsync_binds.fn())["rsync_binds"] == []


def test_list_droplets_filters_running(controller: Controller, settings: TetherSettings) -> None:
    handles = register_tools(StubServer(), controller=controller, settings=settings)

    response = asyncio.run(handles.list_droplets.fn(running_only=True))

    assert sorted(d["name"] for d in response["droplets"]) == ["fresh", "web-1"]


def test_build_status_is_json_ready(controller: Controller, settings: TetherSettings) -> None:
    controller.notify("info", "hello")

    payload = build_status(controller, settings, {"doctl": {"available": True, "path": "/bin/doctl"}})

    decoded = json.loads(json.dumps(payload))
    assert decoded["droplets"]["count"] == 3
    assert decoded["droplets"]["running"] == 2
    assert decoded["notices"][-1]["message"] == "hello"
    assert decoded["tools"]["doctl"]["available"] is True


def test_create_server_wires_controller(controller: Controller, settings: TetherSettings) -> None:
    server = create_server(settings, controller)

    assert getattr(server, "controller") is controller
    assert set(getattr(server, "tools_metadata")) == {"doctl", "ssh", "mutagen", "rsync"}
    wait_until_settled(controller)
    assert controller.provider_ready is True
