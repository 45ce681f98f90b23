from __future__ import annotations

import json
from pathlib import Path

import pytest

from tether_mcp.config import TetherSettings, get_settings
from tether_mcp.storage import BindingRegistry, RegistryError, RegistrySettings, RsyncBind
from tether_mcp.tunnels import new_binding


def make_binding(port: int, pid: int | None = None):
    binding = new_binding(2, "web-1", "203.0.113.5", port, 80, "root", "~/.ssh/id", 22)
    binding.tunnel_pid = pid
    return binding


def test_missing_file_loads_defaults(registry: BindingRegistry) -> None:
    state = registry.load()

    assert state.bindings == []
    assert state.settings.default_ssh_user == "root"


def test_save_and_reload_round_trip(registry: BindingRegistry) -> None:
    registry.add(make_binding(8080, pid=321))
    registry.save()

    payload = json.loads(registry.path.read_text(encoding="utf-8"))
    assert set(payload) == {"bindings", "rsync_binds", "settings"}

    reloaded = BindingRegistry(registry.path)
    reloaded.load()
    assert [b.local_port for b in reloaded.bindings] == [8080]
    assert reloaded.bindings[0].tunnel_pid == 321


def test_duplicate_local_port_is_rejected(registry: BindingRegistry) -> None:
    registry.add(make_binding(8080))
    with pytest.raises(RegistryError, match="already bound"):
        registry.add(make_binding(8080))


def test_duplicate_ports_in_file_keep_the_first(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    first, second = make_binding(8080, pid=1), make_binding(8080, pid=2)
    second.remote_port = 81
    path = tmp_path / "state.json"
    path.write_text(
        json.dumps({"bindings": [first.model_dump(mode="json"), second.model_dump(mode="json")]}),
        encoding="utf-8",
    )

    registry = BindingRegistry(path)
    with caplog.at_level("WARNING"):
        registry.load()

    assert [(b.local_port, b.tunnel_pid) for b in registry.bindings] == [(8080, 1)]
    assert "Dropping duplicate binding from registry" in caplog.text


def test_rsync_binds_round_trip_and_reject_duplicates(registry: BindingRegistry) -> None:
    bind = RsyncBind(
        droplet_id=2,
        droplet_name="web-1",
        host="203.0.113.5",
        remote_path="/srv/app",
        local_path="/work/copy",
        ssh_user="root",
        ssh_key_path="~/.ssh/id",
    )
    registry.add_rsync_bind(bind)
    with pytest.raises(RegistryError, match="already bound"):
        registry.add_rsync_bind(bind)
    registry.save()

    reloaded = BindingRegistry(registry.path)
    reloaded.load()
    assert reloaded.find_rsync_bind("/work/copy") == bind
    assert reloaded.remove_rsync_bind("/work/copy") == bind
    assert reloaded.rsync_binds == []


def test_remove_and_retain(registry: BindingRegistry) -> None:
    for port, pid in ((8080, 1), (8081, None), (8082, 3)):
        registry.add(make_binding(port, pid))

    assert registry.remove(9999) is None
    removed = registry.remove(8080)
    assert removed is not None and removed.local_port == 8080

    dropped = registry.retain(lambda b: b.tunnel_pid is not None)
    assert [b.local_port for b in dropped] == [8081]
    assert [b.local_port for b in registry.bindings] == [8082]


def test_corrupt_file_raises(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(RegistryError, match="Failed to parse"):
        BindingRegistry(path).load()


def test_blank_settings_fall_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text(json.dumps({"bindings": [], "settings": {"default_ssh_user": ""}}), encoding="utf-8")
    defaults = RegistrySettings(default_ssh_user="deploy", default_ssh_key_path="~/.ssh/k", default_ssh_port=2222)

    registry = BindingRegistry(path, defaults=defaults)
    registry.load()

    assert registry.settings == defaults


def test_settings_from_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TETHER_STATE_PATH", str(tmp_path / "s.json"))
    monkeypatch.setenv("TETHER_SSH_USER", "deploy")
    monkeypatch.setenv("TETHER_LOG_LEVEL", "debug")
    monkeypatch.setenv("TETHER_POLL_INTERVAL_MS", "50")

    settings = TetherSettings()

    assert settings.state_path == tmp_path / "s.json"
    assert settings.default_ssh_user == "deploy"
    assert settings.log_level == "DEBUG"
    assert settings.poll_interval_ms == 50
    assert settings.ledger_path == "~/.mountlist"

    registry = BindingRegistry.from_settings(settings)
    assert registry.path == tmp_path / "s.json"
    assert registry.load().settings.default_ssh_user == "deploy"


@pytest.mark.parametrize(
    ("env", "value"),
    [
        ("TETHER_LOG_LEVEL", "chatty"),
        ("TETHER_SSH_PORT", "70000"),
        ("TETHER_TUNNEL_GRACE_MS", "0"),
        ("TETHER_LEDGER_PATH", "  "),
    ],
)
def test_invalid_settings_are_rejected(monkeypatch: pytest.MonkeyPatch, env: str, value: str) -> None:
    monkeypatch.setenv(env, value)
    with pytest.raises(ValueError):
        TetherSettings()


def test_get_settings_is_cached_and_resolved(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TETHER_STATE_PATH", str(tmp_path / "nested" / ".." / "state.json"))
    get_settings.cache_clear()
    try:
        first = get_settings()
        assert first is get_settings()
        assert first.state_path == (tmp_path / "state.json").resolve()
    finally:
        get_settings.cache_clear()
