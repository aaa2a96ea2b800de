"""
Configuration loader for raidkit.

The primary goal is to avoid hardcoding host-specific defaults (mount base,
storage-manager content types, mdadm.conf location, log destinations, etc.)
in code.
"""

from __future__ import annotations

import configparser
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


DEFAULT_CONFIG_PATH = Path("/etc/raidkit/raidkit.conf")


@dataclass(frozen=True)
class RaidKitConfig:
    state_dir: Optional[Path] = None
    size_tolerance_pct: float = 10.0
    mount_base: str = "/mnt/pve"
    storage_content: str = "images,vztmpl,iso,snippets,backup"
    mdadm_conf: str = "/etc/mdadm/mdadm.conf"
    fstab_path: str = "/etc/fstab"
    storage_cfg: str = "/etc/pve/storage.cfg"
    settle_timeout: int = 30
    enable_zfs: bool = False
    log_file: Optional[str] = "/var/log/raidkit.log"
    log_level: str = "INFO"
    api_host: str = "127.0.0.1"
    api_port: int = 8081


def _config_path() -> Path:
    env = os.environ.get("RAIDKIT_CONFIG_PATH")
    if env:
        return Path(env)
    return DEFAULT_CONFIG_PATH


def _read_ini(path: Path) -> configparser.ConfigParser:
    parser = configparser.ConfigParser()
    if path.exists():
        parser.read(path, encoding="utf-8")
    return parser


def load_config() -> RaidKitConfig:
    """
    Load config from `RAIDKIT_CONFIG_PATH` or `/etc/raidkit/raidkit.conf`.

    Sections: `[storage]`, `[logging]`, `[api]`.
    Missing files are not an error; defaults are returned. Unparsable values
    fall back to their defaults.
    """
    parser = _read_ini(_config_path())

    storage = parser["storage"] if parser.has_section("storage") else {}
    logging_section = parser["logging"] if parser.has_section("logging") else {}
    api = parser["api"] if parser.has_section("api") else {}

    def _get(section: object, key: str, default: str) -> str:
        if isinstance(section, dict):
            return str(section.get(key, default)).strip()
        return str(section.get(key, fallback=default)).strip()

    def _get_int(section: object, key: str, default: int) -> int:
        raw = _get(section, key, str(default))
        try:
            return int(raw)
        except ValueError:
            return default

    def _get_float(section: object, key: str, default: float) -> float:
        raw = _get(section, key, str(default))
        try:
            value = float(raw)
        except ValueError:
            return default
        return value if value >= 0 else default

    def _get_bool(section: object, key: str, default: bool) -> bool:
        raw = _get(section, key, "yes" if default else "no").lower()
        if raw in ("1", "yes", "true", "on"):
            return True
        if raw in ("0", "no", "false", "off"):
            return False
        return default

    state_dir_raw = _get(storage, "state_dir", "")
    state_dir = Path(state_dir_raw) if state_dir_raw else None

    log_file_raw = _get(logging_section, "log_file", "/var/log/raidkit.log")
    log_level = _get(logging_section, "log_level", "INFO").upper()
    if log_level not in ("DEBUG", "INFO", "WARNING", "ERROR"):
        log_level = "INFO"

    return RaidKitConfig(
        state_dir=state_dir,
        size_tolerance_pct=_get_float(storage, "size_tolerance_pct", 10.0),
        mount_base=_get(storage, "mount_base", "/mnt/pve").rstrip("/") or "/mnt/pve",
        storage_content=_get(storage, "storage_content", "images,vztmpl,iso,snippets,backup"),
        mdadm_conf=_get(storage, "mdadm_conf", "/etc/mdadm/mdadm.conf"),
        fstab_path=_get(storage, "fstab_path", "/etc/fstab"),
        storage_cfg=_get(storage, "storage_cfg", "/etc/pve/storage.cfg"),
        settle_timeout=_get_int(storage, "settle_timeout", 30),
        enable_zfs=_get_bool(storage, "enable_zfs", False),
        log_file=log_file_raw or None,
        log_level=log_level,
        api_host=_get(api, "api_host", "127.0.0.1"),
        api_port=_get_int(api, "api_port", 8081),
    )
