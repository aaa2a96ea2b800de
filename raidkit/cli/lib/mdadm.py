"""
mdadm software-RAID management functions.
"""

import subprocess
import time
from typing import List, Optional, Sequence

from raidkit.cli.lib.blockdev import is_block_device


def create_array(name: str, level: str, devices: Sequence[str], spares: Optional[Sequence[str]] = None) -> str:
    """
    Create a named md array.

    Args:
        name: Array name, used for /dev/md/<name> and the superblock name
        level: RAID level ("1", "5", "6", "10")
        devices: Active member devices
        spares: Hot spare devices

    Returns:
        Path to the array device (e.g., "/dev/md/raid10-1_8tb")

    Raises:
        RuntimeError: If the array already exists or creation fails
    """
    array_path = f"/dev/md/{name}"

    if is_block_device(array_path):
        raise RuntimeError(f"Array {array_path} already exists")

    spares = list(spares or [])
    cmd = [
        "mdadm",
        "--create", array_path,
        "--name", name,
        "--level", level,
        "--raid-devices", str(len(devices)),
        "--metadata", "1.2",
        "--run",
    ]
    if spares:
        cmd.extend(["--spare-devices", str(len(spares))])
    cmd.extend(devices)
    cmd.extend(spares)

    result = subprocess.run(
        cmd,
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode != 0:
        raise RuntimeError(f"Failed to create array {array_path}: {result.stderr}")

    return array_path


def wait_for_device(path: str, timeout: int = 30, interval: float = 1.0) -> bool:
    """
    Wait for udev to settle and the device node to appear.

    Returns:
        True if the device exists before the timeout
    """
    subprocess.run(
        ["udevadm", "settle", f"--timeout={timeout}"],
        capture_output=True,
        text=True,
        check=False
    )

    deadline = time.monotonic() + timeout
    while True:
        if is_block_device(path):
            return True
        if time.monotonic() >= deadline:
            return False
        time.sleep(interval)


def stop_array(device: str) -> None:
    """
    Stop an md array.

    Args:
        device: Array device (e.g., "/dev/md1")

    Raises:
        RuntimeError: If stopping fails
    """
    result = subprocess.run(
        ["mdadm", "--stop", device],
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode != 0:
        raise RuntimeError(f"Failed to stop array {device}: {result.stderr}")


def zero_superblock(device: str) -> None:
    """
    Erase the md superblock from a former member device.

    Raises:
        RuntimeError: If erasing fails
    """
    result = subprocess.run(
        ["mdadm", "--zero-superblock", device],
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode != 0:
        raise RuntimeError(f"Failed to clear superblock on {device}: {result.stderr}")


def detail_scan() -> List[str]:
    """
    Return the ARRAY lines describing every assembled array.

    Raises:
        RuntimeError: If mdadm fails
    """
    result = subprocess.run(
        ["mdadm", "--detail", "--scan"],
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode != 0:
        raise RuntimeError(f"Failed to scan arrays: {result.stderr}")

    return [line for line in result.stdout.splitlines() if line.startswith("ARRAY")]
