"""
Unit tests for pvesm module.
"""

from unittest.mock import MagicMock

import pytest

from raidkit.cli.lib.pvesm import ProxmoxStorage

STORAGE_CFG = """\
dir: local
\tpath /var/lib/vz
\tcontent iso,vztmpl,backup

lvmthin: local-lvm
\tthinpool data
\tvgname pve

dir: raid10-1_8tb
\tpath /mnt/pve/raid10-1_8tb/
\tcontent images,vztmpl,iso,snippets,backup

dir: data1
\tpath /srv/data1
\tcontent images
"""


class TestProxmoxStorage:
    """Tests for ProxmoxStorage class."""

    @pytest.mark.unit
    def test_register(self, mock_subprocess):
        """Test registering a directory storage."""
        mock_subprocess.side_effect = [
            MagicMock(returncode=1),  # pvesm status: not registered
            MagicMock(returncode=0),  # pvesm add
        ]
        storage = ProxmoxStorage(content="images,backup")

        storage.register("raid10-1_8tb", "/mnt/pve/raid10-1_8tb")

        assert mock_subprocess.call_args_list[1][0][0] == [
            "pvesm", "add", "dir", "raid10-1_8tb",
            "--path", "/mnt/pve/raid10-1_8tb",
            "--content", "images,backup",
        ]

    @pytest.mark.unit
    def test_register_existing(self, mock_subprocess):
        mock_subprocess.return_value = MagicMock(returncode=0)

        ProxmoxStorage().register("raid10-1_8tb", "/mnt/pve/raid10-1_8tb")

        assert mock_subprocess.call_count == 1

    @pytest.mark.unit
    def test_register_fails(self, mock_subprocess):
        mock_subprocess.side_effect = [
            MagicMock(returncode=1),
            MagicMock(returncode=255, stderr="storage ID 'raid10-1_8tb' already defined"),
        ]

        with pytest.raises(RuntimeError, match="Failed to register storage raid10-1_8tb"):
            ProxmoxStorage().register("raid10-1_8tb", "/mnt/pve/raid10-1_8tb")

    @pytest.mark.unit
    def test_pvesm_not_installed(self, mock_subprocess):
        """Test a host without Proxmox reports no storages and fails registration."""
        mock_subprocess.side_effect = FileNotFoundError("pvesm")
        storage = ProxmoxStorage()

        assert storage.exists("raid10-1_8tb") is False
        with pytest.raises(RuntimeError, match="not installed"):
            storage.register("raid10-1_8tb", "/mnt/pve/raid10-1_8tb")

    @pytest.mark.unit
    def test_deregister(self, mock_subprocess):
        mock_subprocess.side_effect = [MagicMock(returncode=0), MagicMock(returncode=0)]

        ProxmoxStorage().deregister("data1")

        assert mock_subprocess.call_args_list[1][0][0] == ["pvesm", "remove", "data1"]

    @pytest.mark.unit
    def test_deregister_unknown(self, mock_subprocess):
        mock_subprocess.return_value = MagicMock(returncode=1)

        ProxmoxStorage().deregister("data1")

        assert mock_subprocess.call_count == 1

    @pytest.mark.unit
    def test_deregister_fails(self, mock_subprocess):
        mock_subprocess.side_effect = [MagicMock(returncode=0), MagicMock(returncode=2, stderr="locked")]

        with pytest.raises(RuntimeError, match="Failed to remove storage data1"):
            ProxmoxStorage().deregister("data1")

    @pytest.mark.unit
    def test_names_for_path(self, temp_dir):
        cfg = temp_dir / "storage.cfg"
        cfg.write_text(STORAGE_CFG, encoding="utf-8")
        storage = ProxmoxStorage(storage_cfg=str(cfg))

        assert storage.names_for_path("/srv/data1") == ["data1"]
        assert storage.names_for_path("/mnt/pve/raid10-1_8tb") == ["raid10-1_8tb"]
        assert storage.names_for_path("/srv/data2") == []

    @pytest.mark.unit
    def test_names_for_path_without_config(self, temp_dir):
        storage = ProxmoxStorage(storage_cfg=str(temp_dir / "storage.cfg"))

        assert storage.names_for_path("/srv/data1") == []
