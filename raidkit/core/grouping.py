"""
Size grouping of candidate devices.
"""

import logging
from typing import Callable, List, Sequence

from raidkit.cli.lib.audit import record_event
from raidkit.core.models import GIB, MIB, TIB, Device, DeviceGroup, human_size

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_PCT = 10.0

# Finer formats are tried when two groups would share a label.
_LABEL_FORMATS: List[Callable[[int], str]] = [
    human_size,
    lambda size: f"{size / TIB:.2f}TB" if size >= TIB else f"{size / GIB:.1f}GB",
    lambda size: f"{size // MIB}MB",
    lambda size: f"{size}B",
]


def size_label(size_bytes: int) -> str:
    """
    Canonical label for a group reference size ("1.8TB", "932GB").
    """
    return human_size(size_bytes)


def _unique_label(size_bytes: int, taken: set) -> str:
    for fmt in _LABEL_FORMATS:
        label = fmt(size_bytes)
        if label not in taken:
            return label
    return f"{size_bytes}B"


def group(devices: Sequence[Device], tolerance_pct: float = DEFAULT_TOLERANCE_PCT) -> List[DeviceGroup]:
    """
    Bucket devices by capacity.

    Devices are sorted by capacity, largest first (ties keep scan order). A
    new group opens whenever a device is more than `tolerance_pct` smaller
    than the first member of the current group. Tolerance is measured
    against that first member only, so a chain of small steps can end up in
    one group.

    Args:
        devices: Devices to group
        tolerance_pct: Allowed deviation from the group reference, in percent

    Returns:
        Groups sorted by capacity, largest first

    Raises:
        ValueError: If tolerance_pct is negative
    """
    if tolerance_pct < 0:
        raise ValueError("Size tolerance must not be negative")

    ordered = sorted(devices, key=lambda d: d.size_bytes, reverse=True)

    buckets: List[List[Device]] = []
    for device in ordered:
        if buckets:
            reference = buckets[-1][0].size_bytes
            deviation = (reference - device.size_bytes) / reference * 100 if reference else 0.0
            if deviation <= tolerance_pct:
                buckets[-1].append(device)
                continue
            logger.debug(
                "Group boundary at %s: %.1f%% below reference %s",
                device.path, deviation, human_size(reference),
            )
        buckets.append([device])

    groups = []
    taken: set = set()
    for bucket in buckets:
        reference = bucket[0].size_bytes
        label = _unique_label(reference, taken)
        taken.add(label)
        groups.append(DeviceGroup(label=label, reference_size=reference, devices=tuple(bucket)))
        logger.info("Group %s: %s", label, ", ".join(d.path for d in bucket))
        record_event(
            "group_formed",
            label=label,
            reference_size=reference,
            tolerance_pct=tolerance_pct,
            devices=[d.path for d in bucket],
        )

    return groups
