"""
Boot-time array reassembly configuration (mdadm.conf, initramfs).
"""

import logging
import os
import shutil
import subprocess
from datetime import datetime

from raidkit.cli.lib.mdadm import detail_scan

logger = logging.getLogger(__name__)

_HEADER = [
    "# mdadm.conf written by raidkit",
    "HOMEHOST <system>",
    "MAILADDR root",
]


class MdadmBootConfig:
    """
    Keeps mdadm.conf and the initramfs in line with the assembled arrays.
    """

    def __init__(self, mdadm_conf: str = "/etc/mdadm/mdadm.conf"):
        self.mdadm_conf = mdadm_conf

    def persist_current_arrays(self) -> str:
        """
        Rewrite the ARRAY lines of mdadm.conf from `mdadm --detail --scan`.

        Non-ARRAY lines of the existing file are kept. The previous file is
        copied next to it with a timestamp suffix.

        Returns:
            Path of the backup, or "" if there was no previous file

        Raises:
            RuntimeError: If scanning or writing fails
        """
        array_lines = detail_scan()

        backup = ""
        kept = list(_HEADER)
        if os.path.exists(self.mdadm_conf):
            backup = f"{self.mdadm_conf}.backup.{datetime.now().strftime('%Y%m%d_%H%M%S')}"
            try:
                shutil.copy2(self.mdadm_conf, backup)
                with open(self.mdadm_conf, "r", encoding="utf-8") as file:
                    kept = [
                        line.rstrip("\n") for line in file
                        if not line.startswith("ARRAY") and not line.startswith("  ")
                    ]
            except OSError as e:
                raise RuntimeError(f"Failed to back up {self.mdadm_conf}: {e}")

        try:
            os.makedirs(os.path.dirname(self.mdadm_conf) or ".", exist_ok=True)
            with open(self.mdadm_conf, "w", encoding="utf-8") as file:
                file.write("\n".join(kept + array_lines) + "\n")
        except OSError as e:
            raise RuntimeError(f"Failed to write {self.mdadm_conf}: {e}")

        logger.info("Wrote %d array definition(s) to %s", len(array_lines), self.mdadm_conf)
        return backup

    def regenerate_boot_image(self) -> None:
        """
        Regenerate the initramfs so boot-time assembly matches mdadm.conf.

        Raises:
            RuntimeError: If update-initramfs fails
        """
        try:
            result = subprocess.run(
                ["update-initramfs", "-u"],
                capture_output=True,
                text=True,
                check=False
            )
        except FileNotFoundError:
            raise RuntimeError("update-initramfs is not installed")

        if result.returncode != 0:
            raise RuntimeError(f"Failed to regenerate initramfs: {result.stderr}")
