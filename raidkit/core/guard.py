"""
System array guard.

Decides whether an array backs the running operating system. Verdicts are
computed from a snapshot taken once per teardown session and are never
cached beyond it.
"""

import logging
from typing import List, Set

from raidkit.cli.lib.audit import record_event
from raidkit.core.models import GuardVerdict, RaidArrayDescriptor, SystemSnapshot

logger = logging.getLogger(__name__)

PROTECTED_PATHS = frozenset({"/", "/boot", "/var", "/usr", "/home", "/opt", "/tmp"})


def _protected(mounts: Set[str]) -> List[str]:
    return sorted(mp for mp in mounts if mp in PROTECTED_PATHS)


def root_arrays(all_arrays: List[RaidArrayDescriptor], snapshot: SystemSnapshot) -> Set[str]:
    """
    Names of the arrays the root filesystem is built on.

    The root source is followed through the topology (partition of an md
    device, LVM on md) and then down into arrays nested as members of a root
    array.
    """
    topology = snapshot.topology
    array_names = {a.name for a in all_arrays}
    node = topology.resolve(snapshot.root_source)
    if node is None:
        return set()

    found = {n for n in ({node} | topology.ancestors(node)) if n in array_names}

    changed = True
    while changed:
        changed = False
        for array in all_arrays:
            if array.name not in found:
                continue
            for member in array.members:
                if member.device in array_names and member.device not in found:
                    found.add(member.device)
                    changed = True
    return found


def classify(array: RaidArrayDescriptor, all_arrays: List[RaidArrayDescriptor],
             snapshot: SystemSnapshot) -> GuardVerdict:
    """
    Classify an array as SYSTEM or DATA.

    Checks, stopping at the first hit:
    1. the array backs the root filesystem
    2. a filesystem from the array is mounted at a protected path
    3. a member's physical disk has a protected-path mount

    Args:
        array: Array to classify
        all_arrays: Every array in the snapshot, used to resolve nesting
        snapshot: Session snapshot

    Returns:
        The verdict with the reason for it
    """
    topology = snapshot.topology

    if array.name in root_arrays(all_arrays, snapshot):
        verdict = GuardVerdict(array.name, True, f"backs the root filesystem ({snapshot.root_source})")
    else:
        verdict = None
        mounted = _protected(topology.mounts_under(array.name))
        if mounted:
            verdict = GuardVerdict(array.name, True, f"mounted at {', '.join(mounted)}")
        else:
            for member in array.members:
                disk = topology.parent_disk(member.device)
                shared = _protected(topology.mounts_under(disk))
                if shared:
                    verdict = GuardVerdict(
                        array.name,
                        True,
                        f"member {member.device} is on disk {disk} which holds {', '.join(shared)}",
                    )
                    break
        if verdict is None:
            verdict = GuardVerdict(array.name, False, "no protected mounts on the array or its disks")

    logger.info("Array %s classified %s: %s", array.name, verdict.classification, verdict.reason)
    record_event(
        "guard_verdict",
        array=array.name,
        classification=verdict.classification,
        reason=verdict.reason,
    )
    return verdict


def is_system_array(array: RaidArrayDescriptor, all_arrays: List[RaidArrayDescriptor],
                    snapshot: SystemSnapshot) -> bool:
    return classify(array, all_arrays, snapshot).system
