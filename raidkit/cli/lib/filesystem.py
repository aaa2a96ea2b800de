"""
Filesystem management functions (mkfs, mount, fstab).
"""

import os
import subprocess
import tempfile
from typing import List, Optional

MKFS_COMMANDS = {
    # Striped and parity arrays get xfs, which reads the md geometry for su/sw.
    "xfs": ["mkfs.xfs", "-f"],
    "ext4": ["mkfs.ext4", "-F"],
}


def _blkid_value(device: str, tag: str) -> Optional[str]:
    result = subprocess.run(
        ["blkid", "-o", "value", "-s", tag, device],
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode != 0:
        return None
    value = (result.stdout or "").strip()
    return value or None


def filesystem_type(device: str) -> Optional[str]:
    """
    Return the filesystem type on a device, or None if it has none.
    """
    return _blkid_value(device, "TYPE")


def filesystem_uuid(device: str) -> Optional[str]:
    """
    Return the filesystem UUID on a device, or None if it has none.
    """
    return _blkid_value(device, "UUID")


def wipe_signatures(device: str) -> None:
    """
    Erase filesystem, RAID and partition-table signatures from a device.

    Raises:
        RuntimeError: If wiping fails
    """
    result = subprocess.run(
        ["wipefs", "-a", device],
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode != 0:
        raise RuntimeError(f"Failed to wipe signatures on {device}: {result.stderr}")


def format_filesystem(device: str, fstype: str = "ext4") -> None:
    """
    Format a device.

    Args:
        device: Device path (e.g., "/dev/md/raid1-3_6tb")
        fstype: "ext4" or "xfs"

    Raises:
        RuntimeError: If formatting fails
        ValueError: If the filesystem type is not supported
    """
    if fstype not in MKFS_COMMANDS:
        raise ValueError(f"Unsupported filesystem type: {fstype}")

    # Check if device exists
    if not os.path.exists(device):
        raise RuntimeError(f"Device {device} does not exist")

    existing = filesystem_type(device)
    if existing == fstype:
        # Already formatted, skip
        return

    result = subprocess.run(
        MKFS_COMMANDS[fstype] + [device],
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode != 0:
        raise RuntimeError(f"Failed to format {fstype} on {device}: {result.stderr}")


def is_mounted(mount_point: str) -> bool:
    """
    Check if a directory is a mount point.
    """
    result = subprocess.run(
        ["mountpoint", "-q", mount_point],
        capture_output=True,
        text=True,
        check=False
    )
    return result.returncode == 0


def mount_filesystem(device: str, mount_point: str) -> None:
    """
    Mount a filesystem.

    Args:
        device: Device path
        mount_point: Mount point directory

    Raises:
        RuntimeError: If mounting fails
    """
    os.makedirs(mount_point, exist_ok=True)

    if is_mounted(mount_point):
        # Already mounted, skip
        return

    result = subprocess.run(
        ["mount", "-o", "defaults,noatime", device, mount_point],
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode != 0:
        raise RuntimeError(f"Failed to mount {device} at {mount_point}: {result.stderr}")


def umount_filesystem(mount_point: str, force: bool = False) -> None:
    """
    Unmount a filesystem.

    Args:
        mount_point: Mount point directory
        force: Use a forced unmount

    Raises:
        RuntimeError: If unmounting fails
    """
    if not is_mounted(mount_point):
        # Not mounted, skip
        return

    cmd = ["umount", "-f", mount_point] if force else ["umount", mount_point]
    result = subprocess.run(
        cmd,
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode != 0:
        raise RuntimeError(f"Failed to unmount {mount_point}: {result.stderr}")


def _read_lines(path: str) -> List[str]:
    if not os.path.exists(path):
        return []
    with open(path, "r", encoding="utf-8") as file:
        return file.read().splitlines()


def _atomic_write_lines(path: str, lines: List[str]) -> None:
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)
    tmp_fd, tmp_path = tempfile.mkstemp(prefix=f".{os.path.basename(path)}.", dir=directory)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as file:
            file.write("\n".join(lines) + "\n")
        if os.path.exists(path):
            os.chmod(tmp_path, os.stat(path).st_mode & 0o777)
        os.replace(tmp_path, path)
    finally:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass


def add_fstab_entry(uuid: str, mount_point: str, fstype: str, fstab_path: str = "/etc/fstab") -> bool:
    """
    Add a UUID-based fstab entry unless the UUID is already present.

    Returns:
        True if an entry was added
    """
    lines = _read_lines(fstab_path)
    for line in lines:
        fields = line.split()
        if fields and not fields[0].startswith("#") and fields[0] == f"UUID={uuid}":
            return False

    lines.append(f"UUID={uuid} {mount_point} {fstype} defaults,nofail 0 2")
    _atomic_write_lines(fstab_path, lines)
    return True


def remove_fstab_entries(mount_point: str, fstab_path: str = "/etc/fstab") -> int:
    """
    Remove every fstab entry mounting at the given mount point.

    Returns:
        Number of removed entries
    """
    lines = _read_lines(fstab_path)
    kept = []
    removed = 0
    for line in lines:
        fields = line.split()
        if len(fields) >= 2 and not fields[0].startswith("#") and fields[1] == mount_point:
            removed += 1
            continue
        kept.append(line)

    if removed:
        _atomic_write_lines(fstab_path, kept)
    return removed
