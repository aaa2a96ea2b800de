"""
RAID planning: enumerate feasible layouts per size group and recommend one.
"""

import logging
from typing import List, Optional, Sequence, Tuple

from raidkit.cli.lib.audit import record_event
from raidkit.core.exceptions import InsufficientDevicesError, PlanNotFoundError
from raidkit.core.models import SCHEMES, ArrayLayout, Device, DeviceGroup, RaidPlan, human_size

logger = logging.getLogger(__name__)

CUSTOM_LEVELS = ("1", "5", "6", "10")

SCHEME_PREFERENCE = {
    "10": 6,
    "6": 5,
    "5": 4,
    "1": 3,
    "zfs-mirror": 2,
    "composite": 1,
    "none": 0,
}

_KIND_NAMES = {
    "10": "RAID10",
    "6": "RAID6",
    "5": "RAID5",
    "1": "RAID1",
    "zfs-mirror": "ZFS mirror",
    "composite": "composite",
    "none": "no redundancy",
}


def _single(device, label: str) -> ArrayLayout:
    return ArrayLayout("none", (device,), (), label)


def _mirror(group: DeviceGroup) -> ArrayLayout:
    return ArrayLayout("1", group.devices[:2], group.devices[2:], group.label)


def _individual_plan(group: DeviceGroup) -> RaidPlan:
    return RaidPlan(
        plan_id=f"individual-{group.label}",
        kind="none",
        layouts=[_single(d, group.label) for d in group.devices],
        groups=[group],
        description=f"{group.count} x {group.label} as individual disks, no redundancy",
    )


def _group_plans(group: DeviceGroup, zfs_available: bool) -> List[RaidPlan]:
    n = group.count
    label = group.label
    plans: List[RaidPlan] = []

    if n == 1:
        return [_individual_plan(group)]

    if n == 2:
        plans.append(RaidPlan(
            plan_id=f"raid1-{label}",
            kind="1",
            layouts=[_mirror(group)],
            groups=[group],
            description=f"RAID1 mirror of 2 x {label}",
        ))
        if zfs_available:
            plans.append(RaidPlan(
                plan_id=f"zfs-mirror-{label}",
                kind="zfs-mirror",
                layouts=[ArrayLayout("zfs-mirror", group.devices, (), label)],
                groups=[group],
                description=f"ZFS mirror with checksums of 2 x {label}",
            ))
        return plans

    if n == 3:
        plans.append(RaidPlan(
            plan_id=f"raid1-{label}",
            kind="1",
            layouts=[_mirror(group)],
            groups=[group],
            description=f"RAID1 mirror of 2 x {label} with 1 hot spare",
        ))
        plans.append(RaidPlan(
            plan_id=f"raid5-{label}",
            kind="5",
            layouts=[ArrayLayout("5", group.devices, (), label)],
            groups=[group],
            description=f"RAID5 single parity over 3 x {label}",
        ))
        return plans

    plans.append(RaidPlan(
        plan_id=f"raid5-{label}",
        kind="5",
        layouts=[ArrayLayout("5", group.devices, (), label)],
        groups=[group],
        description=f"RAID5 single parity over {n} x {label}",
    ))
    plans.append(RaidPlan(
        plan_id=f"raid6-{label}",
        kind="6",
        layouts=[ArrayLayout("6", group.devices, (), label)],
        groups=[group],
        description=f"RAID6 dual parity over {n} x {label}",
    ))
    if n % 2 == 0:
        plans.append(RaidPlan(
            plan_id=f"raid10-{label}",
            kind="10",
            layouts=[ArrayLayout("10", group.devices, (), label)],
            groups=[group],
            description=f"RAID10 striped mirror over {n} x {label}",
        ))
    plans.append(_individual_plan(group))
    return plans


def _group_mirror_or_single(group: DeviceGroup) -> List[ArrayLayout]:
    if group.count >= 2:
        return [_mirror(group)]
    return [_single(group.devices[0], group.label)]


def _dual_mirror(groups: Sequence[DeviceGroup]) -> Optional[RaidPlan]:
    layouts: List[ArrayLayout] = []
    for group in groups:
        layouts.extend(_group_mirror_or_single(group))
    plan = RaidPlan(
        plan_id="dual-mirror",
        kind="composite",
        layouts=layouts,
        groups=list(groups),
        description="One array per size group: " + ", ".join(
            f"{_KIND_NAMES[l.scheme]} on {l.group_label}" for l in layouts
        ),
    )
    return plan if plan.is_redundant else None


def _mixed_optimal(groups: Sequence[DeviceGroup]) -> Optional[RaidPlan]:
    # most devices first, larger capacity on ties
    largest = max(groups, key=lambda g: (g.count, g.reference_size))
    layouts: List[ArrayLayout] = []
    for group in groups:
        if group is largest and group.count >= 4:
            layouts.append(ArrayLayout("6", group.devices, (), group.label))
        else:
            layouts.extend(_group_mirror_or_single(group))
    plan = RaidPlan(
        plan_id="mixed-optimal",
        kind="composite",
        layouts=layouts,
        groups=list(groups),
        description="Mixed layout: " + ", ".join(
            f"{_KIND_NAMES[l.scheme]} on {l.group_label if l.scheme != 'none' else l.devices[0].path}"
            for l in layouts
        ),
    )
    return plan if plan.is_redundant else None


def _no_raid(groups: Sequence[DeviceGroup]) -> RaidPlan:
    devices = [d for g in groups for d in g.devices]
    layouts = [_single(d, g.label) for g in groups for d in g.devices]
    if devices:
        message = (
            f"{len(devices)} device(s) found but no two share a size within tolerance; "
            "no redundant layout is possible"
        )
        remedy = "Add a drive matching an existing drive's size, or raise --tolerance"
    else:
        message = "No candidate devices found"
        remedy = "Check `lsblk` for unused disks"
    plan = RaidPlan(
        plan_id="no-raid",
        kind="none",
        layouts=layouts,
        groups=list(groups),
        description="All devices as individual disks, no redundancy",
        notice=InsufficientDevicesError(message, device_count=len(devices), remedy=remedy),
    )
    plan.rationale = f"No redundant layout is possible: {message}."
    return plan


def plan(groups: Sequence[DeviceGroup], zfs_available: bool = False) -> List[RaidPlan]:
    """
    Enumerate feasible plans.

    Args:
        groups: Size groups from grouping.group()
        zfs_available: Offer ZFS mirrors for two-device groups

    Returns:
        Plans in enumeration order. When nothing redundant is possible this
        is a single `no-raid` plan whose `notice` is an
        InsufficientDevicesError.
    """
    plans: List[RaidPlan] = []
    for group in groups:
        plans.extend(_group_plans(group, zfs_available))

    composite = None
    if len(groups) == 2:
        composite = _dual_mirror(groups)
    elif len(groups) >= 3:
        composite = _mixed_optimal(groups)
    if composite:
        plans.append(composite)

    if not any(p.is_redundant for p in plans):
        plans = [_no_raid(groups)]
        logger.warning("No redundant layout possible: %s", plans[0].notice)

    for p in plans:
        logger.debug(
            "Plan %s: %d device(s), usable %s, protected %s, tolerates %d",
            p.plan_id, p.device_count, human_size(p.usable_bytes),
            human_size(p.protected_bytes), p.fault_tolerance,
        )
    record_event("plans_enumerated", plans=[p.plan_id for p in plans])
    return plans


def score(plan: RaidPlan) -> Tuple[int, int, int, int]:
    """Ranking key, larger is better."""
    return (
        plan.protected_bytes,
        plan.fault_tolerance,
        -plan.device_count,
        SCHEME_PREFERENCE.get(plan.kind, 0),
    )


def _deciding_factor(best: RaidPlan, runner: RaidPlan) -> str:
    a, b = score(best), score(runner)
    if a[0] != b[0]:
        return (
            f"most protected capacity ({human_size(best.protected_bytes)} vs "
            f"{human_size(runner.protected_bytes)} for {runner.plan_id})"
        )
    if a[1] != b[1]:
        return (
            f"highest tolerated failures ({best.fault_tolerance} vs {runner.fault_tolerance} "
            f"for {runner.plan_id}) at equal protected capacity"
        )
    if a[2] != b[2]:
        return (
            f"fewest devices ({best.device_count} vs {runner.device_count} for {runner.plan_id}) "
            "at equal protected capacity and tolerated failures"
        )
    if a[3] != b[3]:
        return (
            f"scheme preference ({_KIND_NAMES[best.kind]} over {_KIND_NAMES[runner.kind]}) "
            "at equal protected capacity, tolerated failures and device count"
        )
    return f"enumeration order (identical score to {runner.plan_id})"


def recommend(plans: Sequence[RaidPlan]) -> RaidPlan:
    """
    Pick the best plan and explain why.

    Ranking: protected raw capacity, then tolerated failures, then fewer
    devices, then scheme preference (10, 6, 5, 1, zfs-mirror, composite,
    none), then enumeration order.

    Returns:
        The recommended plan with `rationale` set and every other plan in
        `alternatives`, best first

    Raises:
        ValueError: If there are no plans
    """
    if not plans:
        raise ValueError("No plans to choose from")

    ranked = [p for _, p in sorted(enumerate(plans), key=lambda ip: (score(ip[1]), -ip[0]), reverse=True)]
    best = ranked[0]
    best.alternatives = ranked[1:]

    if best.notice is None:
        summary = (
            f"{best.plan_id} protects {human_size(best.protected_bytes)} of raw capacity "
            f"and tolerates {best.fault_tolerance} simultaneous device failure(s)."
        )
        if len(ranked) > 1:
            factor = _deciding_factor(best, ranked[1])
        else:
            factor = "only feasible plan"
        # redundant alternatives protecting as much as the winner
        peers = [
            p for p in ranked[1:]
            if p.is_redundant and p.protected_bytes == best.protected_bytes
        ]
        rationale = f"{summary} Deciding factor: {factor}."
        if peers:
            compared = ", ".join(f"{p.fault_tolerance} for {p.plan_id}" for p in peers)
            rationale += (
                f" Highest tolerated failures at equal protected capacity: "
                f"{best.fault_tolerance} (vs {compared})."
            )
        best.rationale = rationale

    logger.info("Recommended %s: %s", best.plan_id, best.rationale)
    record_event(
        "plan_recommended",
        plan_id=best.plan_id,
        rationale=best.rationale,
        alternatives=[p.plan_id for p in best.alternatives],
    )
    return best


def find_plan(plans: Sequence[RaidPlan], plan_id: str) -> RaidPlan:
    """
    Select a plan by id.

    Raises:
        PlanNotFoundError: If no plan has that id
    """
    for p in plans:
        if p.plan_id == plan_id:
            return p
    raise PlanNotFoundError(plan_id, [p.plan_id for p in plans])


def custom_plan(candidates: Sequence[Device], paths: Sequence[str], level: str) -> RaidPlan:
    """
    Build a one-array plan from an explicit device list.

    Args:
        candidates: Devices usable for planning (see inventory.candidate_devices)
        paths: Device paths chosen by the operator, in order
        level: RAID level ("1", "5", "6" or "10")

    Returns:
        A plan holding a single array over exactly the chosen devices

    Raises:
        ValueError: If the level is unknown, a path repeats or a path is not a usable disk
        InsufficientDevicesError: If the level needs more devices (or an even
            count for RAID10)
    """
    if level not in CUSTOM_LEVELS:
        raise ValueError(f"Unsupported RAID level {level}; choose one of {', '.join(CUSTOM_LEVELS)}")

    by_path = {d.path: d for d in candidates}
    chosen: List[Device] = []
    for path in paths:
        if path not in by_path:
            usable = ", ".join(sorted(by_path)) or "none"
            raise ValueError(f"{path} is not a usable disk (usable: {usable})")
        if by_path[path] in chosen:
            raise ValueError(f"{path} was given more than once")
        chosen.append(by_path[path])

    scheme = SCHEMES[level]
    if len(chosen) < scheme.min_devices:
        raise InsufficientDevicesError(
            f"{scheme.title} needs at least {scheme.min_devices} devices, got {len(chosen)}",
            device_count=len(chosen),
            remedy=f"Pass {scheme.min_devices - len(chosen)} more device(s) or choose a lower level",
        )
    if level == "10" and len(chosen) % 2:
        raise InsufficientDevicesError(
            f"{scheme.title} needs an even number of devices, got {len(chosen)}",
            device_count=len(chosen),
            remedy="Add or drop one device",
        )

    smallest = min(d.size_bytes for d in chosen)
    label = human_size(smallest)
    if max(d.size_bytes for d in chosen) != smallest:
        logger.warning("Devices differ in size; every member is used up to %s", label)

    selected = DeviceGroup(label, smallest, tuple(chosen))
    result = RaidPlan(
        plan_id=f"raid{level}-{label}",
        kind=level,
        layouts=[ArrayLayout(level, tuple(chosen), (), label)],
        groups=[selected],
        description=f"{scheme.title} over {len(chosen)} x {label} (selected devices)",
        rationale="Built from the devices given on the command line.",
    )
    record_event("custom_plan", plan_id=result.plan_id, devices=[d.path for d in chosen])
    return result
