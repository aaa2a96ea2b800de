"""
raidkit - drive discovery, RAID planning and array lifecycle tooling.

This package provides a CLI and a read-only API for inventorying the block
devices of a freshly provisioned server, recommending a redundant layout,
materializing it with mdadm (or ZFS), and safely removing data arrays.
"""

__version__ = "0.1.0"
__all__ = ["api", "cli", "core"]
