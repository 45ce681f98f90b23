from __future__ import annotations

import pytest

from conftest import StubDaemon, StubShell
from tether_mcp.controller import parse_sync_paths
from tether_mcp.external import ToolError
from tether_mcp.syncs import SyncError, SyncPath, SyncReconciler, SyncSession

STAMP = "20250101-120000"


def make_reconciler(shell: StubShell, daemon: StubDaemon, clock) -> SyncReconciler:
    return SyncReconciler(daemon, shell, clock=clock)  # type: ignore[arg-type]


def test_duplicate_pair_creates_once_then_resumes(ssh, clock, home) -> None:
    shell, daemon = StubShell(), StubDaemon()
    reconciler = make_reconciler(shell, daemon, clock)
    request = parse_sync_paths("~/proj -> /srv/app, ~/proj -> /srv/app")

    assert reconciler.create_syncs(ssh, "web-1", request) == 1

    name = f"sync-web-1-proj-{STAMP}"
    assert daemon.named("create") == [name]
    assert daemon.named("resume") == []
    assert shell.ledger_lines == [f"{name}\t/home/dev/proj\t/srv/app"]
    assert len(shell.appends) == 1

    assert reconciler.create_syncs(ssh, "web-1", request) == 1

    assert daemon.named("create") == [name]
    assert daemon.named("resume") == [name]
    assert shell.ledger_lines == [f"{name}\t/home/dev/proj\t/srv/app"]
    assert len(shell.appends) == 1


def test_ledger_name_is_reused_even_after_termination(ssh, clock, home) -> None:
    name = "sync-web-1-proj-20240101-000000"
    shell = StubShell(f"{name}\t/home/dev/proj\t/srv/app\n")
    daemon = StubDaemon()
    reconciler = make_reconciler(shell, daemon, clock)

    processed = reconciler.create_syncs(ssh, "web-1", [SyncPath("~/proj", "/srv/app")])

    assert processed == 1
    assert daemon.named("create") == [name]
    assert shell.appends == []


def test_same_base_in_one_call_gets_distinct_names(ssh, clock, home) -> None:
    shell, daemon = StubShell(), StubDaemon()
    reconciler = make_reconciler(shell, daemon, clock)

    processed = reconciler.create_syncs(
        ssh,
        "web-1",
        [SyncPath("/a/proj", "/srv/a"), SyncPath("/b/proj", "/srv/b"), SyncPath("/a/proj", "/srv/c")],
    )

    assert processed == 3
    created = daemon.named("create")
    assert created == [
        f"sync-web-1-proj-{STAMP}",
        f"sync-web-1-proj-{STAMP}-2",
        f"sync-web-1-proj-{STAMP}-3",
    ]
    assert len(set(created)) == 3
    assert len(shell.ledger_lines) == 3
    assert len(shell.appends) == 1


def test_minted_name_skips_names_already_in_ledger(ssh, clock, home) -> None:
    taken = f"sync-web-1-proj-{STAMP}"
    shell = StubShell(f"{taken}\t/elsewhere/proj\t/srv/other\n")
    daemon = StubDaemon()
    reconciler = make_reconciler(shell, daemon, clock)

    reconciler.create_syncs(ssh, "web-1", [SyncPath("/a/proj", "/srv/a")])

    assert daemon.named("create") == [f"{taken}-2"]


def test_create_rejects_empty_request(ssh, clock) -> None:
    shell, daemon = StubShell(), StubDaemon()
    reconciler = make_reconciler(shell, daemon, clock)

    with pytest.raises(SyncError, match="No folders provided"):
        reconciler.create_syncs(ssh, "web-1", [])
    assert shell.commands == []


def test_create_rejects_empty_remote_path(ssh, clock, home) -> None:
    shell, daemon = StubShell(), StubDaemon()
    reconciler = make_reconciler(shell, daemon, clock)

    with pytest.raises(SyncError, match="Remote path cannot be empty"):
        reconciler.create_syncs(ssh, "web-1", [SyncPath("~/proj", "  ")])
    assert daemon.calls == []
    assert shell.appends == []


def test_create_ensures_remote_directory(ssh, clock, home) -> None:
    shell, daemon = StubShell(), StubDaemon()
    reconciler = make_reconciler(shell, daemon, clock)

    reconciler.create_syncs(ssh, "web-1", [SyncPath("~/proj", "~/code/my app")])

    assert shell.mkdirs == ["mkdir -p ~/'code/my app'"]


def test_create_treats_already_exists_as_resume(ssh, clock, home) -> None:
    shell, daemon = StubShell(), StubDaemon()
    daemon.create_error = "session with name already exists"
    reconciler = make_reconciler(shell, daemon, clock)

    assert reconciler.create_syncs(ssh, "web-1", [SyncPath("~/proj", "/srv/app")]) == 1

    name = f"sync-web-1-proj-{STAMP}"
    assert daemon.named("create") == [name]
    assert daemon.named("resume") == [name]
    assert len(shell.ledger_lines) == 1


def test_create_propagates_other_daemon_failures(ssh, clock, home) -> None:
    shell, daemon = StubShell(), StubDaemon()
    daemon.create_error = "unable to connect to beta"
    reconciler = make_reconciler(shell, daemon, clock)

    with pytest.raises(ToolError, match="unable to connect"):
        reconciler.create_syncs(ssh, "web-1", [SyncPath("~/proj", "/srv/app")])
    assert shell.appends == []


def test_restore_fails_on_empty_ledger(ssh, clock) -> None:
    reconciler = make_reconciler(StubShell(), StubDaemon(), clock)

    with pytest.raises(SyncError, match=r"No mounts found in ~/\.mountlist"):
        reconciler.restore_syncs(ssh)


def test_restore_resumes_known_and_creates_missing(ssh, clock, home) -> None:
    shell = StubShell(
        "# name\tlocal\tremote\n"
        "sync-web-1-a-1\t/home/dev/a\t/srv/a\n"
        "sync-web-1-b-1\t~/b\t/srv/b\n"
    )
    daemon = StubDaemon({"sync-web-1-a-1": ssh.host})
    reconciler = make_reconciler(shell, daemon, clock)

    assert reconciler.restore_syncs(ssh) == 2

    assert daemon.named("resume") == ["sync-web-1-a-1"]
    assert daemon.named("create") == ["sync-web-1-b-1"]
    assert shell.appends == []
    assert len(shell.mkdirs) == 2


def test_delete_terminates_before_ledger_cleanup(ssh, clock) -> None:
    shell = StubShell("sync-web-1-a-1\t/home/dev/a\t/srv/a\nkeep\t/x\t/y\n")
    daemon = StubDaemon({"sync-web-1-a-1": ssh.host})
    reconciler = make_reconciler(shell, daemon, clock)

    outcome = reconciler.delete_sync("sync-web-1-a-1", ssh)

    assert daemon.named("terminate") == ["sync-web-1-a-1"]
    assert outcome.mount_removed is True
    assert outcome.mount_error is None
    assert shell.ledger_lines == ["keep\t/x\t/y"]


def test_delete_reports_partial_outcome_on_cleanup_failure(ssh, clock) -> None:
    shell = StubShell("sync-web-1-a-1\t/home/dev/a\t/srv/a\n", fail_on="awk")
    daemon = StubDaemon({"sync-web-1-a-1": ssh.host})
    reconciler = make_reconciler(shell, daemon, clock)

    outcome = reconciler.delete_sync("sync-web-1-a-1", ssh)

    assert daemon.named("terminate") == ["sync-web-1-a-1"]
    assert outcome.mount_removed is False
    assert outcome.mount_error is not None
    assert "permission denied" in outcome.mount_error


def test_delete_fails_when_termination_fails(ssh, clock) -> None:
    shell = StubShell("sync-web-1-a-1\t/home/dev/a\t/srv/a\n")
    daemon = StubDaemon()
    daemon.fail_terminate = True
    reconciler = make_reconciler(shell, daemon, clock)

    with pytest.raises(ToolError):
        reconciler.delete_sync("sync-web-1-a-1", ssh)
    assert shell.commands == []


def test_delete_without_ssh_context_skips_ledger(clock) -> None:
    shell = StubShell()
    daemon = StubDaemon({"lonely": "198.51.100.1"})
    reconciler = make_reconciler(shell, daemon, clock)

    outcome = reconciler.delete_sync("lonely")

    assert outcome.mount_removed is False
    assert outcome.mount_error is None
    assert shell.commands == []


def test_list_syncs_prefers_structured_output(clock) -> None:
    daemon = StubDaemon({"alpha": "203.0.113.5"})
    reconciler = make_reconciler(StubShell(), daemon, clock)

    sessions = reconciler.list_syncs()

    assert [session.name for session in sessions] == ["alpha"]
    assert sessions[0].beta_host == "203.0.113.5"


def test_list_syncs_falls_back_to_text(clock) -> None:
    daemon = StubDaemon(structured=False)
    daemon.text = "Name: foo\nStatus: bar\n"
    reconciler = make_reconciler(StubShell(), daemon, clock)

    assert reconciler.list_syncs() == [SyncSession(name="foo", status="bar")]


def test_delete_syncs_for_droplet_matches_host_and_prefix(ssh, clock) -> None:
    shell = StubShell(
        "sync-web-1-a-1\t/a\t/srv/a\n"
        "sync-other-b-1\t/b\t/srv/b\n"
        "sync-web-1-gone-1\t/g\t/srv/g\n"
    )
    daemon = StubDaemon(
        {
            "sync-web-1-a-1": "198.51.100.7",
            "sync-other-b-1": ssh.host,
            "unrelated": "198.51.100.8",
        }
    )
    reconciler = make_reconciler(shell, daemon, clock)

    outcome = reconciler.delete_syncs_for_droplet(ssh, "web-1")

    assert sorted(outcome.terminated) == ["sync-other-b-1", "sync-web-1-a-1"]
    assert outcome.mounts_removed == 3
    assert outcome.mount_error is None
    assert shell.ledger_lines == []
    assert "unrelated" in daemon.sessions


def test_terminate_all_syncs(clock) -> None:
    daemon = StubDaemon({"a": "h1", "b": "h2"})
    reconciler = make_reconciler(StubShell(), daemon, clock)

    assert reconciler.terminate_all_syncs() == 2
    assert daemon.sessions == {}


class FailingSecondCreate(StubDaemon):
    def create(self, name: str, local: str, ssh, remote: str) -> None:
        if self.named("create"):
            self.calls.append(("create", name))
            raise ToolError("mutagen failed: unable to connect to beta", stderr="unable to connect to beta")
        super().create(name, local, ssh, remote)


def test_partial_create_still_records_created_sessions(ssh, clock, home) -> None:
    shell, daemon = StubShell(), FailingSecondCreate()
    reconciler = make_reconciler(shell, daemon, clock)

    with pytest.raises(ToolError, match="unable to connect"):
        reconciler.create_syncs(
            ssh, "web-1", [SyncPath("/a/one", "/srv/one"), SyncPath("/a/two", "/srv/two")]
        )

    assert list(daemon.sessions) == [f"sync-web-1-one-{STAMP}"]
    assert shell.ledger_lines == [f"sync-web-1-one-{STAMP}\t/a/one\t/srv/one"]
    assert len(shell.appends) == 1


def test_failed_remote_mkdir_keeps_earlier_entries(ssh, clock, home) -> None:
    shell, daemon = StubShell(fail_on="/srv/two"), StubDaemon()
    reconciler = make_reconciler(shell, daemon, clock)

    with pytest.raises(ToolError):
        reconciler.create_syncs(
            ssh, "web-1", [SyncPath("/a/one", "/srv/one"), SyncPath("/a/two", "/srv/two")]
        )

    assert daemon.named("create") == [f"sync-web-1-one-{STAMP}"]
    assert shell.ledger_lines == [f"sync-web-1-one-{STAMP}\t/a/one\t/srv/one"]
