"""
Block device and mount discovery functions (lsblk, findmnt, /proc/mdstat).
"""

import json
import os
import stat
import subprocess
from typing import Any, Dict, List, Optional

LSBLK_COLUMNS = "NAME,PATH,SIZE,TYPE,MODEL,SERIAL,ROTA,MOUNTPOINT,FSTYPE,PKNAME"


def list_block_devices(disks_only: bool = False) -> List[Dict[str, Any]]:
    """
    List block devices as the lsblk JSON tree.

    Args:
        disks_only: Only list top-level devices, without their children

    Returns:
        The "blockdevices" list from `lsblk -J -b`

    Raises:
        RuntimeError: If lsblk is unavailable, fails, or prints invalid JSON
    """
    cmd = ["lsblk", "-J", "-b", "-o", LSBLK_COLUMNS]
    if disks_only:
        cmd.append("-d")

    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=False
        )
    except FileNotFoundError:
        raise RuntimeError("lsblk is not installed")

    if result.returncode != 0:
        raise RuntimeError(f"Failed to list block devices: {result.stderr}")

    try:
        data = json.loads(result.stdout or "{}")
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Unparsable lsblk output: {e}")

    devices = data.get("blockdevices")
    if not isinstance(devices, list):
        raise RuntimeError("Unparsable lsblk output: missing 'blockdevices'")
    return devices


def root_source() -> Optional[str]:
    """
    Return the device backing the root filesystem.

    Returns:
        Source path (e.g., "/dev/md0p1"), or None if it cannot be determined
    """
    try:
        result = subprocess.run(
            ["findmnt", "-n", "-o", "SOURCE", "/"],
            capture_output=True,
            text=True,
            check=False
        )
    except FileNotFoundError:
        return None

    if result.returncode != 0:
        return None

    source = (result.stdout or "").strip().splitlines()
    if not source:
        return None
    # btrfs subvolume mounts are reported as "/dev/sda2[/@]"
    return source[0].split("[", 1)[0].strip() or None


def is_block_device(path: str) -> bool:
    """
    Check if a path is a block special file.
    """
    try:
        return stat.S_ISBLK(os.stat(path).st_mode)
    except OSError:
        return False


def read_mdstat(path: str = "/proc/mdstat") -> str:
    """
    Read the kernel software-RAID status report.

    Returns:
        The report text, or "" if the md driver is not loaded
    """
    try:
        with open(path, "r", encoding="utf-8") as file:
            return file.read()
    except FileNotFoundError:
        return ""


def md_aliases(md_dir: str = "/dev/md") -> Dict[str, str]:
    """
    Map kernel md names to their /dev/md/<alias> names.

    Returns:
        Dictionary such as {"md127": "raid10-1_8tb"}
    """
    aliases: Dict[str, str] = {}
    if not os.path.isdir(md_dir):
        return aliases
    for entry in sorted(os.listdir(md_dir)):
        target = os.path.realpath(os.path.join(md_dir, entry))
        kernel_name = os.path.basename(target)
        if kernel_name.startswith("md") and kernel_name != entry:
            aliases[kernel_name] = entry
    return aliases
