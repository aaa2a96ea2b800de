"""
Local persistent audit trail for raidkit.

Every planning and lifecycle decision is appended as one JSON object per line
to `<state_dir>/audit.jsonl`. This is the only persisted record of why a plan
was chosen or an array was preserved.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from raidkit.cli.lib.config import load_config

logger = logging.getLogger(__name__)

_state_dir_cache: Optional[Path] = None


def get_state_dir() -> Path:
    """
    Resolve the directory used for persistent state.

    Priority:
    1) `RAIDKIT_STATE_DIR` env var, if set
    2) `state_dir` from the config file
    3) `/var/lib/raidkit` if writable
    4) `$XDG_STATE_HOME/raidkit` or `~/.local/state/raidkit` as fallback

    The env var is honoured on every call. Steps 2-4 run once per process
    and the result is cached.
    """
    global _state_dir_cache

    env = os.environ.get("RAIDKIT_STATE_DIR")
    if env:
        return Path(env)

    if _state_dir_cache is None:
        _state_dir_cache = _resolve_state_dir()
    return _state_dir_cache


def reset_state_dir_cache() -> None:
    """Forget the cached state directory (config reloads and tests)."""
    global _state_dir_cache
    _state_dir_cache = None


def _resolve_state_dir() -> Path:
    cfg = load_config()
    if cfg.state_dir:
        return cfg.state_dir

    candidates: list[Path] = [Path("/var/lib/raidkit")]
    xdg_state_home = os.environ.get("XDG_STATE_HOME")
    if xdg_state_home:
        candidates.append(Path(xdg_state_home) / "raidkit")
    else:
        candidates.append(Path.home() / ".local" / "state" / "raidkit")

    for candidate in candidates:
        try:
            candidate.mkdir(parents=True, exist_ok=True)
            marker = candidate / ".write_test"
            marker.write_text("ok", encoding="utf-8")
            marker.unlink(missing_ok=True)
            return candidate
        except OSError:
            continue

    return Path(".raidkit-state")


def _audit_file() -> Path:
    return get_state_dir() / "audit.jsonl"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def record_event(event: str, **fields: Any) -> None:
    """
    Append one audit event.

    Values that are not JSON serializable are stored as their string form.
    A failing write is logged and never interrupts the caller.
    """
    entry: Dict[str, Any] = {"timestamp": _utc_now_iso(), "event": event}
    entry.update(fields)
    path = _audit_file()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(entry, ensure_ascii=False, sort_keys=True, default=str)
        # One write() per line keeps concurrent readers from seeing half records.
        with open(path, "a", encoding="utf-8") as file:
            file.write(line + "\n")
    except OSError as e:
        logger.warning("Could not write audit event %s to %s: %s", event, path, e)


def read_events(event: Optional[str] = None) -> List[Dict[str, Any]]:
    path = _audit_file()
    if not path.exists():
        return []
    events = []
    with open(path, "r", encoding="utf-8") as file:
        for line in file:
            line = line.strip()
            if not line:
                continue
            try:
                item = json.loads(line)
            except json.JSONDecodeError:
                continue
            if event is None or item.get("event") == event:
                events.append(item)
    return events
