"""
Drive and plan service layer.
"""

from typing import Any, Dict, List, Optional

from raidkit.api.models import DriveInfo, PlanInfo
from raidkit.cli.lib.config import load_config
from raidkit.cli.lib.validators import validate_plan_id, validate_tolerance
from raidkit.cli.lib.zfs import zfs_available
from raidkit.core import inventory, planner
from raidkit.core.grouping import group


def list_drives() -> List[Dict[str, Any]]:
    """
    List scanned physical disks.

    Raises:
        ScanError: If block devices cannot be listed
    """
    devices = inventory.scan(mount_base=load_config().mount_base)
    return [DriveInfo(**d.to_dict()).model_dump(mode="json") for d in devices]


def _plans(tolerance_pct: Optional[float]):
    cfg = load_config()
    tolerance = cfg.size_tolerance_pct if tolerance_pct is None else tolerance_pct
    validate_tolerance(tolerance)
    devices = inventory.candidate_devices(inventory.scan(mount_base=cfg.mount_base))
    groups = group(devices, tolerance)
    plans = planner.plan(groups, zfs_available=cfg.enable_zfs and zfs_available())
    best = planner.recommend(plans)
    return tolerance, groups, plans, best


def list_plans(tolerance_pct: Optional[float] = None) -> Dict[str, Any]:
    """
    Enumerate plans for the current drives.

    Args:
        tolerance_pct: Size tolerance; the configured default if omitted

    Returns:
        Dictionary with the recommended plan id, groups and every plan (best first)

    Raises:
        ScanError: If block devices cannot be listed
        ValueError: If the tolerance is out of range
    """
    tolerance, groups, _, best = _plans(tolerance_pct)
    ranked = [best] + best.alternatives
    return {
        "tolerance_pct": tolerance,
        "recommended": best.plan_id,
        "groups": [
            {"label": g.label, "reference_size": g.reference_size, "devices": [d.path for d in g.devices]}
            for g in groups
        ],
        "items": [PlanInfo(**p.to_dict()).model_dump(mode="json") for p in ranked],
    }


def get_plan(plan_id: str, tolerance_pct: Optional[float] = None) -> Dict[str, Any]:
    """
    Get one plan by id.

    Raises:
        PlanNotFoundError: If the plan is not feasible for the current drives
        ValueError: If the plan id or tolerance is invalid
    """
    validate_plan_id(plan_id)
    _, _, plans, best = _plans(tolerance_pct)
    found = planner.find_plan(plans, plan_id)
    data = PlanInfo(**found.to_dict()).model_dump(mode="json")
    data["recommended"] = found is best
    return data
