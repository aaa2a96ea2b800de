"""
Unit tests for config loader.
"""

from pathlib import Path

import pytest


@pytest.mark.unit
def test_load_config_missing_file(monkeypatch, temp_dir):
    monkeypatch.setenv("RAIDKIT_CONFIG_PATH", str(temp_dir / "missing.conf"))
    from raidkit.cli.lib.config import load_config

    cfg = load_config()
    assert cfg.size_tolerance_pct == 10.0
    assert cfg.mount_base == "/mnt/pve"
    assert cfg.mdadm_conf == "/etc/mdadm/mdadm.conf"
    assert cfg.enable_zfs is False
    assert cfg.state_dir is None
    assert cfg.api_port == 8081


@pytest.mark.unit
def test_load_config_reads_values(monkeypatch, temp_dir):
    config_path = temp_dir / "raidkit.conf"
    config_path.write_text(
        "\n".join(
            [
                "[storage]",
                "size_tolerance_pct = 5",
                "mount_base = /srv/pve/",
                "storage_content = images,backup",
                "mdadm_conf = /tmp/mdadm.conf",
                "settle_timeout = 60",
                "enable_zfs = yes",
                "state_dir = /tmp/raidkit-state",
                "",
                "[logging]",
                "log_file =",
                "log_level = debug",
                "",
                "[api]",
                "api_host = 0.0.0.0",
                "api_port = 18081",
                "",
            ]
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("RAIDKIT_CONFIG_PATH", str(config_path))
    from raidkit.cli.lib.config import load_config

    cfg = load_config()
    assert cfg.size_tolerance_pct == 5.0
    assert cfg.mount_base == "/srv/pve"
    assert cfg.storage_content == "images,backup"
    assert cfg.mdadm_conf == "/tmp/mdadm.conf"
    assert cfg.settle_timeout == 60
    assert cfg.enable_zfs is True
    assert cfg.state_dir == Path("/tmp/raidkit-state")
    assert cfg.log_file is None
    assert cfg.log_level == "DEBUG"
    assert cfg.api_host == "0.0.0.0"
    assert cfg.api_port == 18081


@pytest.mark.unit
def test_load_config_bad_values_fall_back(monkeypatch, temp_dir):
    config_path = temp_dir / "raidkit.conf"
    config_path.write_text(
        "[storage]\nsize_tolerance_pct = -3\nsettle_timeout = soon\nenable_zfs = maybe\n"
        "[logging]\nlog_level = chatty\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("RAIDKIT_CONFIG_PATH", str(config_path))
    from raidkit.cli.lib.config import load_config

    cfg = load_config()
    assert cfg.size_tolerance_pct == 10.0
    assert cfg.settle_timeout == 30
    assert cfg.enable_zfs is False
    assert cfg.log_level == "INFO"
