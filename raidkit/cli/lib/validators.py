"""
Input validation functions.
"""

import os
import re


def validate_plan_id(plan_id: str) -> None:
    """
    Validate a plan identifier (e.g., "raid10-1.8TB", "dual-mirror").

    Args:
        plan_id: Identifier to validate

    Raises:
        ValueError: If identifier is invalid
    """
    if not plan_id:
        raise ValueError("Plan id cannot be empty")

    if len(plan_id) > 64:
        raise ValueError("Plan id must be at most 64 characters")

    if not re.match(r"^[a-z][a-z0-9-]*(-[0-9]+(\.[0-9]+)?[KMGTP]?B)?$", plan_id):
        raise ValueError(
            "Plan id must look like 'raid10-1.8TB', 'individual-932GB', 'dual-mirror' or 'no-raid'"
        )


def validate_array_name(name: str) -> None:
    """
    Validate a kernel md array name.

    Args:
        name: Array name (e.g., "md0", "/dev/md127")

    Raises:
        ValueError: If name is invalid
    """
    if not name:
        raise ValueError("Array name cannot be empty")

    if not re.match(r"^(/dev/)?md[0-9]+$", name):
        raise ValueError("Array name must be an md device such as md0 or /dev/md0")


def validate_device_path(path: str) -> None:
    """
    Validate a block device path.

    Args:
        path: Device path (e.g., "/dev/sdb", "/dev/nvme1n1")

    Raises:
        ValueError: If path is invalid
    """
    if not path:
        raise ValueError("Device path cannot be empty")

    if not re.match(r"^/dev/[a-zA-Z0-9][a-zA-Z0-9/_.-]*$", path):
        raise ValueError(f"Invalid device path: {path}")


def validate_tolerance(tolerance_pct: float) -> None:
    """
    Validate a size tolerance percentage.

    Raises:
        ValueError: If tolerance is outside 0-50 percent
    """
    if tolerance_pct < 0 or tolerance_pct > 50:
        raise ValueError("Size tolerance must be between 0 and 50 percent")


def validate_root() -> None:
    """
    Ensure the current process runs as root.

    Raises:
        ValueError: If not running as root
    """
    if os.geteuid() != 0:
        raise ValueError("This command must be run as root (try: sudo raidkit ...)")
