"""
Device inventory: physical disks, assembled arrays and the mount topology.

Read only. Every function here rebuilds its view from live system state.
"""

import logging
import re
from dataclasses import replace
from typing import Any, Dict, List, Optional

from raidkit.cli.lib import blockdev
from raidkit.core.exceptions import ScanError
from raidkit.core.guard import PROTECTED_PATHS
from raidkit.core.models import (
    ArrayMember,
    BlockTopology,
    Device,
    DeviceStatus,
    RaidArrayDescriptor,
    SystemSnapshot,
)

logger = logging.getLogger(__name__)

VIRTUAL_PREFIXES = ("loop", "ram", "zram", "sr", "fd", "md", "dm-", "nbd")

RAID_FSTYPES = ("linux_raid_member", "zfs_member")

_MDSTAT_HEADER = re.compile(r"^(md\S+)\s*:\s*(active|inactive)\b(.*)$")
_MDSTAT_MEMBER = re.compile(r"^(\S+?)\[(\d+)\](?:\(([A-Z])\))?$")
_MDSTAT_BLOCKS = re.compile(r"^\s+(\d+)\s+blocks\b")


def _text(value: Any) -> str:
    if value is None:
        return "unknown"
    text = str(value).strip()
    return text or "unknown"


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true")


def _under(mount_point: str, base: str) -> bool:
    return mount_point.startswith(base.rstrip("/") + "/")


def _device_status(name: str, topology: BlockTopology, mount_base: Optional[str] = None) -> DeviceStatus:
    mounts = topology.mounts_under(name)
    if any(mp in PROTECTED_PATHS for mp in mounts):
        return DeviceStatus.SYSTEM
    stacked = {name} | topology.descendants(name)
    for node in stacked:
        if topology.types.get(node, "").startswith("raid") or topology.fstypes.get(node) in RAID_FSTYPES:
            return DeviceStatus.IN_RAID
    if mounts and mount_base and all(_under(mp, mount_base) for mp in mounts):
        return DeviceStatus.MANAGED
    if mounts:
        return DeviceStatus.MOUNTED
    return DeviceStatus.AVAILABLE


def _load_tree() -> List[Dict[str, Any]]:
    try:
        return blockdev.list_block_devices()
    except RuntimeError as e:
        raise ScanError(
            f"Cannot enumerate block devices: {e}",
            remedy="Install util-linux and check `lsblk -J -b` runs as root",
        )


def scan(mount_base: Optional[str] = None) -> List[Device]:
    """
    List the physical disks of this host.

    Args:
        mount_base: Directory raidkit mounts its arrays under. A disk whose
            only mounts live there is reported as managed rather than mounted.

    Returns:
        Devices in lsblk order, each tagged with its scan-time status

    Raises:
        ScanError: If lsblk is missing, fails or prints unparsable output
    """
    tree = _load_tree()
    topology = BlockTopology(tree)
    devices = []
    for node in tree:
        name = node.get("name") or ""
        if node.get("type") != "disk":
            continue
        if name.startswith(VIRTUAL_PREFIXES):
            logger.debug("Skipping virtual device %s", name)
            continue
        path = node.get("path") or f"/dev/{name}"
        if not blockdev.is_block_device(path):
            logger.debug("Skipping %s: not a block device", path)
            continue
        try:
            size = int(node.get("size") or 0)
        except (TypeError, ValueError):
            size = 0
        devices.append(Device(
            path=path,
            size_bytes=size,
            model=_text(node.get("model")),
            serial=_text(node.get("serial")),
            rotational=_flag(node.get("rota")),
            is_block=True,
            status=_device_status(name, topology, mount_base),
        ))

    logger.info("Found %d disk(s)", len(devices))
    return devices


def candidate_devices(devices: List[Device]) -> List[Device]:
    """
    Devices usable for planning.

    Disks already in a RAID, and single disks mounted under the mount base,
    are kept so re-running apply sees the same plans.
    """
    usable = (DeviceStatus.AVAILABLE, DeviceStatus.IN_RAID, DeviceStatus.MANAGED)
    return [d for d in devices if d.status in usable]


def parse_mdstat(text: str) -> List[RaidArrayDescriptor]:
    """
    Parse the kernel software-RAID report.

    Args:
        text: Contents of /proc/mdstat (may be empty)

    Returns:
        One descriptor per array, in report order
    """
    arrays: List[RaidArrayDescriptor] = []
    current: Optional[RaidArrayDescriptor] = None

    for line in (text or "").splitlines():
        header = _MDSTAT_HEADER.match(line)
        if header:
            if current:
                arrays.append(current)
            name, state, rest = header.groups()
            level = ""
            members = []
            for token in rest.split():
                member = _MDSTAT_MEMBER.match(token)
                if member:
                    members.append(ArrayMember(
                        device=member.group(1),
                        role=int(member.group(2)),
                        flags=member.group(3) or "",
                    ))
                elif not level and (token.startswith("raid") or token in ("linear", "multipath")):
                    level = token
            current = RaidArrayDescriptor(
                name=name,
                level=level,
                active=state == "active",
                members=tuple(sorted(members, key=lambda m: m.role)),
            )
            continue

        if current is None:
            continue
        blocks = _MDSTAT_BLOCKS.match(line)
        if blocks and not current.size_bytes:
            current = replace(current, size_bytes=int(blocks.group(1)) * 1024)
        elif not line.strip():
            arrays.append(current)
            current = None

    if current:
        arrays.append(current)
    return arrays


def list_arrays() -> List[RaidArrayDescriptor]:
    """
    List assembled md arrays with their /dev/md/<alias> names.
    """
    arrays = parse_mdstat(blockdev.read_mdstat())
    aliases = blockdev.md_aliases()
    return [replace(a, alias=aliases.get(a.name)) for a in arrays]


def capture_snapshot() -> SystemSnapshot:
    """
    Capture arrays, block topology and the root mount source together.

    Raises:
        ScanError: If block devices cannot be listed
    """
    snapshot = SystemSnapshot(
        arrays=list_arrays(),
        topology=BlockTopology(_load_tree()),
        root_source=blockdev.root_source(),
    )
    logger.debug(
        "Captured snapshot: %d array(s), root on %s",
        len(snapshot.arrays),
        snapshot.root_source,
    )
    return snapshot
