"""
Data model shared by the inventory, planner, guard and lifecycle manager.

Everything here is rebuilt from live system state on each invocation; nothing
is persisted except through the lifecycle manager's system commands.
"""

import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

MIB = 1024 ** 2
GIB = 1024 ** 3
TIB = 1024 ** 4


def human_size(size_bytes: int) -> str:
    """
    Format a byte count with binary units the way drive groups are labelled.

    Examples: 2000398934016 -> "1.8TB", 1000204886016 -> "932GB"
    """
    if size_bytes >= TIB:
        return f"{size_bytes / TIB:.1f}TB"
    if size_bytes >= GIB:
        return f"{int(round(size_bytes / GIB))}GB"
    return f"{int(round(size_bytes / MIB))}MB"


class DeviceStatus(str, Enum):
    AVAILABLE = "available"
    IN_RAID = "in-raid"
    MOUNTED = "mounted"
    MANAGED = "managed"
    SYSTEM = "system"


@dataclass(frozen=True)
class Device:
    path: str
    size_bytes: int
    model: str = "unknown"
    serial: str = "unknown"
    rotational: bool = False
    is_block: bool = True
    status: DeviceStatus = DeviceStatus.AVAILABLE

    @property
    def name(self) -> str:
        return os.path.basename(self.path)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "name": self.name,
            "size_bytes": self.size_bytes,
            "size": human_size(self.size_bytes),
            "model": self.model,
            "serial": self.serial,
            "rotational": self.rotational,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class DeviceGroup:
    """Devices within the size tolerance of the group's first (largest) member."""

    label: str
    reference_size: int
    devices: Tuple[Device, ...]

    @property
    def count(self) -> int:
        return len(self.devices)

    @property
    def slug(self) -> str:
        return self.label.lower().replace(".", "_")


@dataclass(frozen=True)
class RaidScheme:
    level: str
    title: str
    min_devices: int

    @property
    def redundant(self) -> bool:
        return self.level != "none"

    def tolerance(self, members: int) -> int:
        """Simultaneous failures survived in the best case."""
        if self.level in ("1", "zfs-mirror"):
            return max(members - 1, 0)
        if self.level == "5":
            return 1
        if self.level == "6":
            return 2
        if self.level == "10":
            # one failure per mirror pair
            return members // 2
        return 0

    def data_members(self, members: int) -> int:
        if self.level in ("1", "zfs-mirror"):
            return 1 if members else 0
        if self.level == "5":
            return members - 1
        if self.level == "6":
            return members - 2
        if self.level == "10":
            return members // 2
        return members

    def usable_fraction(self, members: int) -> float:
        if members <= 0:
            return 0.0
        return self.data_members(members) / members


SCHEMES: Dict[str, RaidScheme] = {
    "none": RaidScheme("none", "individual disk", 1),
    "1": RaidScheme("1", "RAID1 mirror", 2),
    "5": RaidScheme("5", "RAID5 single parity", 3),
    "6": RaidScheme("6", "RAID6 dual parity", 4),
    "10": RaidScheme("10", "RAID10 striped mirror", 4),
    "zfs-mirror": RaidScheme("zfs-mirror", "ZFS mirror with checksums", 2),
}


@dataclass(frozen=True)
class ArrayLayout:
    """One array of a plan: scheme, active devices and hot spares."""

    scheme: str
    devices: Tuple[Device, ...]
    spares: Tuple[Device, ...] = ()
    group_label: str = ""

    @property
    def raid_scheme(self) -> RaidScheme:
        return SCHEMES[self.scheme]

    @property
    def name(self) -> str:
        if self.scheme == "none":
            return f"single-{self.devices[0].name}"
        slug = self.group_label.lower().replace(".", "_")
        if self.scheme == "zfs-mirror":
            return f"zfs-mirror-{slug}"
        return f"raid{self.scheme}-{slug}"

    @property
    def members(self) -> Tuple[Device, ...]:
        return self.devices + self.spares

    @property
    def usable_bytes(self) -> int:
        if not self.devices:
            return 0
        smallest = min(d.size_bytes for d in self.devices)
        return smallest * self.raid_scheme.data_members(len(self.devices))

    @property
    def protected_bytes(self) -> int:
        if not self.raid_scheme.redundant:
            return 0
        return sum(d.size_bytes for d in self.devices)

    @property
    def fault_tolerance(self) -> int:
        return self.raid_scheme.tolerance(len(self.devices))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "scheme": self.scheme,
            "title": self.raid_scheme.title,
            "group": self.group_label,
            "devices": [d.path for d in self.devices],
            "spares": [d.path for d in self.spares],
            "usable_bytes": self.usable_bytes,
            "usable": human_size(self.usable_bytes),
            "fault_tolerance": self.fault_tolerance,
        }


@dataclass
class RaidPlan:
    """A proposed, unapplied set of arrays. Never touches hardware."""

    plan_id: str
    kind: str
    layouts: List[ArrayLayout]
    groups: List[DeviceGroup]
    description: str = ""
    rationale: str = ""
    alternatives: List["RaidPlan"] = field(default_factory=list)
    notice: Optional[Exception] = None

    @property
    def members(self) -> List[Device]:
        return [d for layout in self.layouts for d in layout.members]

    @property
    def device_count(self) -> int:
        return len(self.members)

    @property
    def usable_bytes(self) -> int:
        return sum(layout.usable_bytes for layout in self.layouts)

    @property
    def protected_bytes(self) -> int:
        return sum(layout.protected_bytes for layout in self.layouts)

    @property
    def fault_tolerance(self) -> int:
        return sum(layout.fault_tolerance for layout in self.layouts)

    @property
    def is_redundant(self) -> bool:
        return any(layout.raid_scheme.redundant for layout in self.layouts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "kind": self.kind,
            "description": self.description,
            "rationale": self.rationale,
            "arrays": [layout.to_dict() for layout in self.layouts],
            "groups": [g.label for g in self.groups],
            "device_count": self.device_count,
            "usable_bytes": self.usable_bytes,
            "usable": human_size(self.usable_bytes),
            "protected_bytes": self.protected_bytes,
            "fault_tolerance": self.fault_tolerance,
            "notice": getattr(self.notice, "message", None),
            "alternatives": [p.plan_id for p in self.alternatives],
        }


@dataclass(frozen=True)
class ArrayMember:
    device: str
    role: int
    flags: str = ""

    @property
    def path(self) -> str:
        return f"/dev/{self.device}"

    @property
    def failed(self) -> bool:
        return "F" in self.flags

    @property
    def spare(self) -> bool:
        return "S" in self.flags


@dataclass(frozen=True)
class RaidArrayDescriptor:
    """An array observed in /proc/mdstat."""

    name: str
    level: str
    active: bool
    members: Tuple[ArrayMember, ...] = ()
    size_bytes: int = 0
    alias: Optional[str] = None

    @property
    def device(self) -> str:
        return f"/dev/{self.name}"

    @property
    def scheme(self) -> str:
        return self.level[4:] if self.level.startswith("raid") else (self.level or "unknown")

    @property
    def member_paths(self) -> List[str]:
        return [m.path for m in self.members]

    @property
    def display_name(self) -> str:
        return self.alias or self.name


class ArrayState(str, Enum):
    PLANNED = "planned"
    CREATED = "created"
    FORMATTED = "formatted"
    MOUNTED = "mounted"
    MANAGED = "managed"
    REGISTERED = "registered"
    UNMOUNTING = "unmounting"
    STOPPED = "stopped"
    WIPED = "wiped"


TRANSITIONS: Dict[ArrayState, Set[ArrayState]] = {
    ArrayState.PLANNED: {ArrayState.CREATED},
    ArrayState.CREATED: {ArrayState.FORMATTED, ArrayState.UNMOUNTING},
    ArrayState.FORMATTED: {ArrayState.MOUNTED, ArrayState.UNMOUNTING},
    ArrayState.MOUNTED: {ArrayState.REGISTERED, ArrayState.UNMOUNTING},
    ArrayState.REGISTERED: {ArrayState.UNMOUNTING},
    ArrayState.UNMOUNTING: {ArrayState.STOPPED},
    ArrayState.STOPPED: {ArrayState.WIPED},
    ArrayState.WIPED: set(),
}

IRREVERSIBLE_STATES = frozenset({ArrayState.STOPPED, ArrayState.WIPED})


@dataclass
class RaidArray:
    """A materialized array and where it is in its lifecycle."""

    name: str
    device: str
    scheme: str
    members: List[str]
    state: ArrayState = ArrayState.PLANNED
    mount_points: List[str] = field(default_factory=list)
    registration_name: Optional[str] = None
    resume_state: Optional[ArrayState] = None
    history: List[ArrayState] = field(default_factory=list)
    warnings: List[Exception] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "device": self.device,
            "scheme": self.scheme,
            "members": list(self.members),
            "state": self.state.value,
            "mount_points": list(self.mount_points),
            "registration_name": self.registration_name,
            "warnings": [str(w) for w in self.warnings],
        }


_PARTITION_PATTERNS = (
    re.compile(r"^((?:nvme\d+n\d+)|(?:mmcblk\d+)|(?:md\d+)|(?:loop\d+))p\d+$"),
    re.compile(r"^((?:[shv]|xv)d[a-z]+)\d+$"),
)


def strip_partition(name: str) -> str:
    """Map a partition name to its disk name ("nvme0n1p2" -> "nvme0n1")."""
    for pattern in _PARTITION_PATTERNS:
        match = pattern.match(name)
        if match:
            return match.group(1)
    return name


class BlockTopology:
    """
    Parent/child view of the `lsblk -J` tree.

    lsblk repeats an md device under each of its members, so a node can have
    several parents.
    """

    def __init__(self, blockdevices: Iterable[Dict[str, Any]]):
        self.types: Dict[str, str] = {}
        self.paths: Dict[str, str] = {}
        self.pknames: Dict[str, str] = {}
        self.fstypes: Dict[str, str] = {}
        self.parents: Dict[str, Set[str]] = {}
        self.children: Dict[str, Set[str]] = {}
        self.mounts: Dict[str, Set[str]] = {}
        for node in blockdevices:
            self._add(node, None)

    def _add(self, node: Dict[str, Any], parent: Optional[str]) -> None:
        name = node.get("name")
        if not name:
            return
        self.types.setdefault(name, node.get("type") or "")
        self.paths.setdefault(name, node.get("path") or f"/dev/{name}")
        if node.get("pkname"):
            self.pknames.setdefault(name, node["pkname"])
        if node.get("fstype"):
            self.fstypes.setdefault(name, node["fstype"])
        self.parents.setdefault(name, set())
        self.children.setdefault(name, set())
        mounts = self.mounts.setdefault(name, set())
        if node.get("mountpoint"):
            mounts.add(node["mountpoint"])
        for mountpoint in node.get("mountpoints") or []:
            if mountpoint:
                mounts.add(mountpoint)
        if parent:
            self.parents[name].add(parent)
            self.children[parent].add(name)
        for child in node.get("children") or []:
            self._add(child, name)

    def __contains__(self, name: str) -> bool:
        return name in self.types

    def resolve(self, path: Optional[str]) -> Optional[str]:
        """Return the node name for a device path or name, or None."""
        if not path:
            return None
        for candidate in (path, os.path.realpath(path)):
            for name, node_path in self.paths.items():
                if node_path == candidate:
                    return name
            base = os.path.basename(candidate)
            if base in self.types:
                return base
        return None

    def _walk(self, name: str, edges: Dict[str, Set[str]]) -> Set[str]:
        seen: Set[str] = set()
        stack = list(edges.get(name, ()))
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(edges.get(current, ()))
        return seen

    def ancestors(self, name: str) -> Set[str]:
        return self._walk(name, self.parents)

    def descendants(self, name: str) -> Set[str]:
        return self._walk(name, self.children)

    def mounts_under(self, name: str) -> Set[str]:
        """Mount points of a node and everything stacked on it."""
        result = set(self.mounts.get(name, ()))
        for child in self.descendants(name):
            result.update(self.mounts.get(child, ()))
        return result

    def parent_disk(self, name: str) -> str:
        """The physical disk under a partition (or the name itself for a disk)."""
        current = name
        seen: Set[str] = set()
        while current in self.types and self.types[current] == "part" and current not in seen:
            seen.add(current)
            parent = self.pknames.get(current) or next(iter(sorted(self.parents.get(current, ()))), None)
            if not parent:
                break
            current = parent
        if current in self.types:
            return current
        return strip_partition(name)


@dataclass
class SystemSnapshot:
    """Arrays and mount topology captured once per session."""

    arrays: List[RaidArrayDescriptor]
    topology: BlockTopology
    root_source: Optional[str] = None
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class GuardVerdict:
    array: str
    system: bool
    reason: str

    @property
    def classification(self) -> str:
        return "SYSTEM" if self.system else "DATA"
