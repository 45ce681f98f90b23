"""Tether MCP diagnostics CLI."""

from __future__ import annotations

import argparse
import dataclasses
import json

from tether_mcp.config import TetherSettings
from tether_mcp.external import CommandRunner, RemoteShell, SshConfig, SyncDaemon, ToolError
from tether_mcp.external import signals
from tether_mcp.storage import BindingRegistry, RegistryError
from tether_mcp.syncs import MountLedger, SyncReconciler


def load_registry(settings: TetherSettings) -> BindingRegistry:
    registry = BindingRegistry.from_settings(settings)
    try:
        registry.load()
    except RegistryError as exc:
        print(f"Registry unreadable: {exc}")
        raise SystemExit(1)
    return registry


def cmd_bindings(args: argparse.Namespace) -> None:
    settings = TetherSettings()
    registry = load_registry(settings)
    rows = []
    for binding in registry.bindings:
        row = binding.model_dump(mode="json")
        row["alive"] = binding.tunnel_pid is not None and signals.is_running(binding.tunnel_pid)
        rows.append(row)
    if args.json:
        print(json.dumps(rows, indent=2))
    else:
        for row in rows:
            state = "alive" if row["alive"] else "stale"
            print(
                f"{row['local_port']} -> {row['droplet_name']}:{row['remote_port']} "
                f"[{state}] pid={row['tunnel_pid']}"
            )


def cmd_ledger(args: argparse.Namespace) -> None:
    settings = TetherSettings()
    ssh = SshConfig(
        user=args.user or settings.default_ssh_user,
        host=args.host,
        port=args.port or settings.default_ssh_port,
        key_path=args.key or settings.default_ssh_key_path,
    )
    ledger = MountLedger(RemoteShell(CommandRunner("ssh", settings.ssh_path)), settings.ledger_path)
    try:
        entries = ledger.read(ssh)
    except ToolError as exc:
        print(f"Ledger unavailable: {exc}")
        raise SystemExit(1)
    print(json.dumps([dataclasses.asdict(entry) for entry in entries], indent=2))


def cmd_syncs(args: argparse.Namespace) -> None:
    settings = TetherSettings()
    shell = RemoteShell(CommandRunner("ssh", settings.ssh_path))
    reconciler = SyncReconciler(
        SyncDaemon(CommandRunner("mutagen", settings.mutagen_path)),
        shell,
        MountLedger(shell, settings.ledger_path),
    )
    try:
        sessions = reconciler.list_syncs()
    except ToolError as exc:
        print(f"Sync daemon unavailable: {exc}")
        raise SystemExit(1)
    if args.host:
        sessions = [session for session in sessions if session.beta_host == args.host]
    print(json.dumps([dataclasses.asdict(session) for session in sessions], indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Tether MCP diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_bindings = sub.add_parser("bindings", help="List registered port bindings with liveness")
    p_bindings.add_argument("--json", action="store_true", help="Output JSON")
    p_bindings.set_defaults(func=cmd_bindings)

    p_ledger = sub.add_parser("ledger", help="Show the remote mount ledger for a host")
    p_ledger.add_argument("host")
    p_ledger.add_argument("--user")
    p_ledger.add_argument("--key")
    p_ledger.add_argument("--port", type=int, default=None)
    p_ledger.set_defaults(func=cmd_ledger)

    p_syncs = sub.add_parser("syncs", help="List live sync sessions")
    p_syncs.add_argument("--host", help="Only sessions whose remote endpoint is this host")
    p_syncs.set_defaults(func=cmd_syncs)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
