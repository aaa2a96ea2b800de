"""
Proxmox storage manager (pvesm) registration functions.
"""

import os
import subprocess
from typing import List


class ProxmoxStorage:
    """
    Registers and deregisters directory storages with the Proxmox storage manager.

    Args:
        content: Content types allowed on registered storages
        storage_cfg: Path of the storage configuration parsed by names_for_path()
    """

    def __init__(self, content: str = "images,vztmpl,iso,snippets,backup",
                 storage_cfg: str = "/etc/pve/storage.cfg"):
        self.content = content
        self.storage_cfg = storage_cfg

    def exists(self, name: str) -> bool:
        """
        Check if a storage is registered.
        """
        try:
            result = subprocess.run(
                ["pvesm", "status", "-storage", name],
                capture_output=True,
                text=True,
                check=False
            )
        except FileNotFoundError:
            return False
        return result.returncode == 0

    def register(self, name: str, path: str, storage_type: str = "dir") -> None:
        """
        Register a mount point as a storage.

        Args:
            name: Storage name
            path: Mount point
            storage_type: Storage plugin type

        Raises:
            RuntimeError: If registration fails
        """
        if self.exists(name):
            # Already registered, skip
            return

        try:
            result = subprocess.run(
                ["pvesm", "add", storage_type, name, "--path", path, "--content", self.content],
                capture_output=True,
                text=True,
                check=False
            )
        except FileNotFoundError:
            raise RuntimeError("pvesm is not installed")

        if result.returncode != 0:
            raise RuntimeError(f"Failed to register storage {name}: {result.stderr}")

    def deregister(self, name: str) -> None:
        """
        Remove a storage registration. Data on the mount point is not touched.

        Raises:
            RuntimeError: If removal fails
        """
        if not self.exists(name):
            return

        result = subprocess.run(
            ["pvesm", "remove", name],
            capture_output=True,
            text=True,
            check=False
        )

        if result.returncode != 0:
            raise RuntimeError(f"Failed to remove storage {name}: {result.stderr}")

    def names_for_path(self, path: str) -> List[str]:
        """
        Find storages whose configured path is the given mount point.

        Returns:
            Storage names in configuration order
        """
        if not os.path.exists(self.storage_cfg):
            return []

        names = []
        current = None
        with open(self.storage_cfg, "r", encoding="utf-8") as file:
            for raw in file:
                line = raw.rstrip("\n")
                if not line.strip() or line.lstrip().startswith("#"):
                    continue
                if not line[0].isspace() and ":" in line:
                    # "dir: local" starts a new section
                    current = line.split(":", 1)[1].strip()
                    continue
                fields = line.split(None, 1)
                if current and len(fields) == 2 and fields[0] == "path":
                    if fields[1].strip().rstrip("/") == path.rstrip("/"):
                        names.append(current)
        return names
