from __future__ import annotations

import json
import re
import shlex
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from tether_mcp.compute import Droplet
from tether_mcp.external import FakeCommandRunner, RemoteShell, SshConfig, SyncDaemon, ToolError
from tether_mcp.rsync import RsyncTransfer
from tether_mcp.storage import BindingRegistry, RegistrySettings
from tether_mcp.syncs import DeleteDropletSyncsOutcome, DeleteSyncOutcome, SyncSession
from tether_mcp.tasks import Services, TaskExecutor


class StubShell:
    """Remote host double that keeps the ledger file in memory."""

    def __init__(self, ledger: str = "", *, fail_on: str | None = None) -> None:
        self.ledger_lines = [line for line in ledger.splitlines() if line]
        self.commands: list[str] = []
        self.fail_on = fail_on

    def run(self, ssh: SshConfig, command: str) -> str:
        self.commands.append(command)
        if self.fail_on and self.fail_on in command:
            raise ToolError("ssh failed: permission denied", stderr="permission denied")
        if command.startswith("cat "):
            return "".join(f"{line}\n" for line in self.ledger_lines)
        if command.startswith("printf "):
            for line in command.splitlines():
                parts = shlex.split(line)
                self.ledger_lines.append("\t".join(parts[2:5]))
            return ""
        if command.startswith("if [ -f"):
            doomed = set(re.findall(r'del\["([^"]*)"\]', command))
            self.ledger_lines = [
                line for line in self.ledger_lines if line.split("\t")[0] not in doomed
            ]
        return ""

    @property
    def appends(self) -> list[str]:
        return [command for command in self.commands if command.startswith("printf ")]

    @property
    def mkdirs(self) -> list[str]:
        return [command for command in self.commands if command.startswith("mkdir -p")]


class StubDaemon:
    """Sync daemon double tracking live sessions and every call made."""

    def __init__(self, sessions: dict[str, str] | None = None, *, structured: bool = True) -> None:
        self.sessions: dict[str, str] = dict(sessions or {})
        self.structured = structured
        self.text = ""
        self.calls: list[tuple[str, str]] = []
        self.fail_terminate = False
        self.create_error: str | None = None

    def list(self, *, structured: bool = False) -> str:
        if structured:
            if not self.structured:
                raise ToolError("mutagen failed: unknown flag: --json", stderr="unknown flag: --json")
            return json.dumps(
                [
                    {"name": name, "status": "Watching for changes", "beta": {"url": f"root@{host}:/srv"}}
                    for name, host in self.sessions.items()
                ]
            )
        return self.text

    def create(self, name: str, local: str, ssh: SshConfig, remote: str) -> None:
        self.calls.append(("create", name))
        if self.create_error is not None:
            message, self.create_error = self.create_error, None
            raise ToolError(f"mutagen failed: {message}", stderr=message)
        self.sessions[name] = ssh.host

    def resume(self, name: str) -> None:
        self.calls.append(("resume", name))

    def terminate(self, name: str) -> None:
        self.calls.append(("terminate", name))
        if self.fail_terminate:
            raise ToolError("mutagen failed: unable to locate session", stderr="unable to locate session")
        self.sessions.pop(name, None)

    def named(self, action: str) -> list[str]:
        return [name for kind, name in self.calls if kind == action]


class StubProvider:
    def __init__(self, droplets: list[Droplet] | None = None) -> None:
        self.runner = FakeCommandRunner("doctl")
        self.droplets = list(droplets or [])
        self.calls: list[tuple[Any, ...]] = []
        self.fail: dict[str, Exception] = {}

    def _maybe_fail(self, name: str) -> None:
        if name in self.fail:
            raise self.fail[name]

    def check(self) -> None:
        self._maybe_fail("check")

    def list_droplets(self) -> list[Droplet]:
        self.calls.append(("list_droplets",))
        self._maybe_fail("list_droplets")
        return list(self.droplets)

    def list_snapshots(self) -> list:
        self.calls.append(("list_snapshots",))
        return []

    def list_regions(self) -> list:
        return []

    def list_sizes(self) -> list:
        return []

    def list_images(self) -> list:
        return []

    def list_ssh_keys(self) -> list:
        return []

    def create_droplet(self, args: Any) -> Droplet:
        self.calls.append(("create_droplet", args.name))
        self._maybe_fail("create_droplet")
        droplet = Droplet(id=99, name=args.name, status="new", region=args.region or "nyc1")
        self.droplets.append(droplet)
        return droplet

    def snapshot_droplet(self, droplet_id: int, snapshot_name: str) -> None:
        self.calls.append(("snapshot_droplet", droplet_id, snapshot_name))
        self._maybe_fail("snapshot_droplet")

    def delete_droplet(self, droplet_id: int) -> None:
        self.calls.append(("delete_droplet", droplet_id))
        self.droplets = [droplet for droplet in self.droplets if droplet.id != droplet_id]


class StubTunnels:
    def __init__(self, pid: int = 4242) -> None:
        self.pid = pid
        self.started: list[int] = []
        self.stopped: list[int] = []
        self.alive: set[int] = set()

    def start_tunnel(self, binding: Any) -> int:
        self.started.append(binding.local_port)
        binding.tunnel_pid = self.pid
        self.alive.add(self.pid)
        return self.pid

    def is_alive(self, pid: int) -> bool:
        return pid in self.alive

    def stop(self, pid: int) -> None:
        self.stopped.append(pid)
        self.alive.discard(pid)


class StubSyncs:
    def __init__(self) -> None:
        self.daemon = SyncDaemon(FakeCommandRunner("mutagen"))
        self.sessions = [SyncSession(name="sync-web-1-proj-20250101-120000", beta_host="203.0.113.5")]
        self.calls: list[tuple[Any, ...]] = []

    def create_syncs(self, ssh: SshConfig, label: str, paths: list) -> int:
        self.calls.append(("create_syncs", ssh.host, label, tuple(paths)))
        return len(paths)

    def restore_syncs(self, ssh: SshConfig) -> int:
        self.calls.append(("restore_syncs", ssh.host))
        return 2

    def list_syncs(self) -> list[SyncSession]:
        self.calls.append(("list_syncs",))
        return list(self.sessions)

    def delete_sync(self, name: str, ssh: SshConfig | None = None) -> DeleteSyncOutcome:
        self.calls.append(("delete_sync", name, ssh.host if ssh else None))
        self.sessions = [session for session in self.sessions if session.name != name]
        return DeleteSyncOutcome(name=name, mount_removed=ssh is not None)

    def delete_syncs_for_droplet(self, ssh: SshConfig, label: str) -> DeleteDropletSyncsOutcome:
        self.calls.append(("delete_syncs_for_droplet", ssh.host, label))
        terminated = [session.name for session in self.sessions]
        self.sessions = []
        return DeleteDropletSyncsOutcome(label=label, terminated=terminated, mounts_removed=len(terminated))

    def terminate_all_syncs(self) -> int:
        count = len(self.sessions)
        self.sessions = []
        return count


def make_droplets() -> list[Droplet]:
    return [
        Droplet(id=2, name="web-1", status="active", region="nyc1", public_ipv4="203.0.113.5"),
        Droplet(id=1, name="db", status="off", region="nyc1", public_ipv4="203.0.113.9"),
        Droplet(id=3, name="fresh", status="active", region="nyc1"),
    ]


def wait_until_settled(controller: Any, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    controller.poll()
    while controller.pending > 0:
        assert time.monotonic() < deadline, "tasks did not settle"
        time.sleep(0.01)
        controller.poll()


@pytest.fixture
def ssh() -> SshConfig:
    return SshConfig(user="root", host="203.0.113.5", port=22, key_path="~/.ssh/id_ed25519")


@pytest.fixture
def clock():
    return lambda: datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def home(monkeypatch: pytest.MonkeyPatch) -> str:
    monkeypatch.setenv("HOME", "/home/dev")
    return "/home/dev"


@pytest.fixture
def services() -> Services:
    return Services(
        provider=StubProvider(make_droplets()),  # type: ignore[arg-type]
        tunnels=StubTunnels(),  # type: ignore[arg-type]
        syncs=StubSyncs(),  # type: ignore[arg-type]
        shell=RemoteShell(FakeCommandRunner("ssh")),
        rsync=RsyncTransfer(FakeCommandRunner("rsync")),
        sleep=lambda seconds: None,
    )


@pytest.fixture
def registry(tmp_path: Path) -> BindingRegistry:
    return BindingRegistry(
        tmp_path / "state.json",
        defaults=RegistrySettings(
            default_ssh_user="root",
            default_ssh_key_path="~/.ssh/id_ed25519",
            default_ssh_port=22,
        ),
    )


@pytest.fixture
def executor(services: Services) -> TaskExecutor:
    return TaskExecutor(services)
