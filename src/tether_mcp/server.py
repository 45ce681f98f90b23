"""FastMCP server bootstrap for Tether."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .config import TetherSettings, get_settings
from .controller import Controller
from .tools import register_tools


def configure_logging(level: str) -> None:
    """Configure root logging for the Tether server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _tool_metadata(controller: Controller) -> dict[str, Any]:
    services = controller.executor.services
    runners = {
        "doctl": services.provider.runner,
        "ssh": services.shell.runner,
        "mutagen": services.syncs.daemon.runner,
        "rsync": services.rsync.runner,
    }
    metadata: dict[str, Any] = {}
    for name, runner in runners.items():
        available = runner.available()
        metadata[name] = {
            "available": available,
            "path": str(runner.executable) if available else None,
        }
    return metadata


def build_status(
    controller: Controller,
    settings: TetherSettings,
    tools_metadata: dict[str, Any],
) -> dict[str, Any]:
    """Summarize tools, bindings, syncs, rsync binds and recent notices."""

    tunnels = controller.executor.services.tunnels
    bindings = [
        {
            "local_port": binding.local_port,
            "remote_port": binding.remote_port,
            "droplet": binding.droplet_name,
            "pid": binding.tunnel_pid,
            "alive": binding.tunnel_pid is not None and tunnels.is_alive(binding.tunnel_pid),
        }
        for binding in controller.bindings
    ]
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "server_version": __version__,
        "log_level": settings.log_level,
        "state_path": str(settings.state_path),
        "tools": tools_metadata,
        "provider_ready": controller.provider_ready,
        "pending": controller.pending,
        "droplets": {
            "count": len(controller.droplets),
            "running": sum(1 for droplet in controller.droplets if droplet.is_running()),
            "last_refresh": (
                controller.last_refresh.isoformat() if controller.last_refresh else None
            ),
        },
        "bindings": bindings,
        "syncs": [
            {"name": session.name, "status": session.status, "host": session.beta_host}
            for session in controller.syncs
        ],
        "rsync_binds": [
            {"local_path": bind.local_path, "remote_path": bind.remote_path, "droplet": bind.droplet_name}
            for bind in controller.rsync_binds
        ],
        "notices": [notice.as_dict() for notice in controller.notices[-10:]],
    }


def create_server(
    settings: Optional[TetherSettings] = None,
    controller: Controller | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with baseline resources."""

    settings = settings or get_settings()
    controller = controller or Controller.from_settings(settings)
    tools_metadata = _tool_metadata(controller)

    missing = [name for name, info in tools_metadata.items() if not info["available"]]
    if missing:
        logging.getLogger(__name__).warning(
            "External tools missing from PATH",
            extra={"missing": missing},
        )

    server = FastMCP(
        name="Tether MCP",
        version=__version__,
        instructions=(
            "Tether manages DigitalOcean droplets, SSH port tunnels to them and "
            "mutagen file syncs, plus rsync copies of droplet folders. Refresh first, "
            "then bind ports, create syncs or bind rsync folders against a droplet id."
        ),
    )

    handles = register_tools(server, controller=controller, settings=settings)
    controller.bootstrap()

    @server.resource(
        "resource://tether/status",
        name="tether_status",
        title="Tether MCP Status",
        description="Provides the current runtime status for the Tether MCP server.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing basic runtime state."""

        controller.poll()
        payload = build_status(controller, settings, tools_metadata)
        payload["request_id"] = getattr(context, "request_id", None)
        return json.dumps(payload)

    setattr(server, "controller", controller)
    setattr(server, "tools_metadata", tools_metadata)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the Tether MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    controller: Controller = getattr(server, "controller")
    logging.getLogger(__name__).info(
        "Launching Tether MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "bindings": len(controller.bindings),
            "doctl_available": getattr(server, "tools_metadata", {}).get("doctl", {}).get("available"),
        },
    )
    try:
        server.run()
    finally:
        controller.shutdown()


if __name__ == "__main__":
    main()
