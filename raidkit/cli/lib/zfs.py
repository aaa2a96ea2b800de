"""
ZFS mirror pool management functions (zpool, zfs).
"""

import shutil
import subprocess
from typing import List, Sequence

# Pool-wide properties tuned for VM image storage.
POOL_OPTIONS = [
    "-o", "ashift=12",
    "-O", "compression=lz4",
    "-O", "atime=off",
    "-O", "relatime=on",
    "-O", "xattr=sa",
    "-O", "dnodesize=auto",
    "-O", "normalization=formD",
    "-O", "mountpoint=none",
    "-O", "canmount=off",
]


def zfs_available() -> bool:
    """
    Check if the zpool and zfs utilities are installed.
    """
    return shutil.which("zpool") is not None and shutil.which("zfs") is not None


def pool_exists(pool: str) -> bool:
    """
    Check if a pool is imported.
    """
    result = subprocess.run(
        ["zpool", "list", "-H", "-o", "name", pool],
        capture_output=True,
        text=True,
        check=False
    )
    return result.returncode == 0 and result.stdout.strip() == pool


def pool_devices(pool: str) -> List[str]:
    """
    List the leaf vdev paths of a pool.

    Returns:
        Device paths as reported by `zpool status -P`, or [] if the pool is missing
    """
    result = subprocess.run(
        ["zpool", "status", "-P", pool],
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode != 0:
        return []

    devices = []
    for line in result.stdout.splitlines():
        fields = line.split()
        if fields and fields[0].startswith("/dev/"):
            devices.append(fields[0])
    return devices


def create_mirror_pool(pool: str, devices: Sequence[str]) -> None:
    """
    Create a mirrored pool.

    Args:
        pool: Pool name
        devices: Mirror member devices

    Raises:
        RuntimeError: If creation fails
    """
    if pool_exists(pool):
        raise RuntimeError(f"Pool {pool} already exists")

    result = subprocess.run(
        ["zpool", "create", "-f"] + POOL_OPTIONS + [pool, "mirror"] + list(devices),
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode != 0:
        raise RuntimeError(f"Failed to create pool {pool}: {result.stderr}")


def dataset_exists(dataset: str) -> bool:
    result = subprocess.run(
        ["zfs", "list", "-H", "-o", "name", dataset],
        capture_output=True,
        text=True,
        check=False
    )
    return result.returncode == 0


def create_dataset(dataset: str, mount_point: str) -> None:
    """
    Create a mounted dataset, skipping it if it already exists.

    Raises:
        RuntimeError: If creation fails
    """
    if dataset_exists(dataset):
        return

    result = subprocess.run(
        ["zfs", "create", "-o", f"mountpoint={mount_point}", "-o", "canmount=on", dataset],
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode != 0:
        raise RuntimeError(f"Failed to create dataset {dataset}: {result.stderr}")
