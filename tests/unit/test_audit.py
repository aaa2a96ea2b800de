"""
Unit tests for the audit trail.
"""

import json
from pathlib import Path
from unittest.mock import patch

import pytest


@pytest.mark.unit
def test_state_dir_from_env(temp_dir, monkeypatch):
    monkeypatch.setenv("RAIDKIT_STATE_DIR", str(temp_dir))
    from raidkit.cli.lib.audit import get_state_dir

    assert get_state_dir() == Path(temp_dir)


@pytest.mark.unit
def test_state_dir_from_config(temp_dir, monkeypatch):
    monkeypatch.delenv("RAIDKIT_STATE_DIR", raising=False)
    config_path = temp_dir / "raidkit.conf"
    config_path.write_text(f"[storage]\nstate_dir = {temp_dir / 'configured'}\n", encoding="utf-8")
    monkeypatch.setenv("RAIDKIT_CONFIG_PATH", str(config_path))
    from raidkit.cli.lib.audit import get_state_dir

    assert get_state_dir() == temp_dir / "configured"


@pytest.mark.unit
def test_record_and_read_events(temp_dir, monkeypatch):
    monkeypatch.setenv("RAIDKIT_STATE_DIR", str(temp_dir))
    from raidkit.cli.lib import audit

    audit.record_event("group_formed", label="1.8TB", devices=["/dev/sdb", "/dev/sdc"])
    audit.record_event("plan_recommended", plan_id="raid1-1.8TB", path=Path("/dev/sdb"))

    lines = (temp_dir / "audit.jsonl").read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    first = json.loads(lines[0])
    assert first["event"] == "group_formed"
    assert first["devices"] == ["/dev/sdb", "/dev/sdc"]
    assert first["timestamp"].endswith("+00:00")

    recommended = audit.read_events("plan_recommended")
    assert len(recommended) == 1
    assert recommended[0]["path"] == "/dev/sdb"
    assert len(audit.read_events()) == 2


@pytest.mark.unit
def test_read_events_skips_corrupt_lines(temp_dir, monkeypatch):
    monkeypatch.setenv("RAIDKIT_STATE_DIR", str(temp_dir))
    (temp_dir / "audit.jsonl").write_text('{"event": "a"}\nnot json\n\n{"event": "b"}\n', encoding="utf-8")
    from raidkit.cli.lib import audit

    assert [e["event"] for e in audit.read_events()] == ["a", "b"]


@pytest.mark.unit
def test_record_event_write_failure_does_not_raise(temp_dir, monkeypatch):
    blocker = temp_dir / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")
    monkeypatch.setenv("RAIDKIT_STATE_DIR", str(blocker))
    from raidkit.cli.lib import audit

    audit.record_event("guard_verdict", array="md0")
    assert audit.read_events() == []


@pytest.mark.unit
def test_state_dir_resolved_once(temp_dir, monkeypatch):
    """Test repeated events do not re-read the config without the env var."""
    monkeypatch.delenv("RAIDKIT_STATE_DIR", raising=False)
    from raidkit.cli.lib import audit
    from raidkit.cli.lib.config import RaidKitConfig

    config = RaidKitConfig(state_dir=temp_dir / "configured")
    with patch("raidkit.cli.lib.audit.load_config", return_value=config) as mock_load:
        for _ in range(3):
            audit.record_event("array_transition", source="planned", target="created")

        assert mock_load.call_count == 1
        assert len(audit.read_events("array_transition")) == 3

        audit.reset_state_dir_cache()
        audit.get_state_dir()

        assert mock_load.call_count == 2


@pytest.mark.unit
def test_env_var_overrides_cached_state_dir(temp_dir, monkeypatch):
    monkeypatch.delenv("RAIDKIT_STATE_DIR", raising=False)
    from raidkit.cli.lib import audit
    from raidkit.cli.lib.config import RaidKitConfig

    with patch("raidkit.cli.lib.audit.load_config", return_value=RaidKitConfig(state_dir=temp_dir / "configured")):
        assert audit.get_state_dir() == temp_dir / "configured"

    monkeypatch.setenv("RAIDKIT_STATE_DIR", str(temp_dir / "env"))

    assert audit.get_state_dir() == temp_dir / "env"
