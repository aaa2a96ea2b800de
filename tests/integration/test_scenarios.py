"""
Scenario tests for end-to-end workflows.

Only the lowest layer (lsblk, /proc/mdstat, findmnt and the system command
backend) is faked; scanning, grouping, planning, guarding and the lifecycle
run for real.
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from typer.testing import CliRunner

from conftest import TB1, TB2, TB4, lsblk_node
from raidkit.api.main import app as api_app
from raidkit.cli.cli import app as cli_app

MDSTAT = """\
Personalities : [raid1]
md2 : active raid1 sdf[1] sde[0]
      1953382464 blocks super 1.2 [2/2] [UU]

md1 : active raid1 sdd[1] sdc[0]
      1953382464 blocks super 1.2 [2/2] [UU]

md0 : active raid1 sdb1[1] sda1[0]
      1953382464 blocks super 1.2 [2/2] [UU]

unused devices: <none>
"""


@pytest.fixture
def fresh_host():
    """A host with a system disk and four blank 1.8TB drives."""
    return [
        lsblk_node("sda", size=TB1, children=[
            lsblk_node("sda1", "part", size=512 * 1024 ** 2, mountpoint="/boot/efi", fstype="vfat", pkname="sda"),
            lsblk_node("sda2", "part", size=TB1 - 512 * 1024 ** 2, mountpoint="/", fstype="ext4", pkname="sda"),
        ]),
        lsblk_node("sdb", size=TB2, model="ST2000NM0055", serial="ZBS1"),
        lsblk_node("sdc", size=TB2, model="ST2000NM0055", serial="ZBS2"),
        lsblk_node("sdd", size=TB2, model="ST2000NM0055", serial="ZBS3"),
        lsblk_node("sde", size=TB2, model="ST2000NM0055", serial="ZBS4"),
        lsblk_node("loop0", "loop", size=64 * 1024 ** 2, mountpoint="/snap/core/1"),
    ]


class TestBuildWorkflow:
    """Scan -> plan -> apply on a freshly provisioned host."""

    @pytest.mark.integration
    @pytest.mark.slow
    @patch("raidkit.cli.commands.drives.validate_root")
    @patch("raidkit.core.inventory.blockdev.is_block_device", return_value=True)
    @patch("raidkit.core.inventory.blockdev.list_block_devices")
    def test_plan_and_apply(self, mock_list, mock_is_block, mock_root, fresh_host, manager_factory,
                            fake_backend, fake_storage, fake_boot):
        mock_list.return_value = fresh_host
        runner = CliRunner()

        scan = runner.invoke(cli_app, ["drives", "scan"])
        assert scan.exit_code == 0
        assert "/dev/loop0" not in scan.output

        plan = runner.invoke(cli_app, ["drives", "plan"])
        assert plan.exit_code == 0
        assert "Recommended: raid10-1.8TB" in plan.output
        assert "/dev/sda " not in plan.output

        with patch("raidkit.cli.commands.drives.ArrayLifecycleManager",
                   side_effect=lambda **kw: manager_factory(**kw)):
            dry = runner.invoke(cli_app, ["drives", "apply", "--dry-run"])
            assert dry.exit_code == 0
            assert fake_backend.calls == []

            applied = runner.invoke(cli_app, ["drives", "apply", "--force"])
            assert applied.exit_code == 0

            again = runner.invoke(cli_app, ["drives", "apply", "--force"])
            assert again.exit_code == 0

        assert "raid10-1_8tb: registered" in applied.output
        assert "raid10-1_8tb: registered" in again.output
        assert len(fake_backend.called("create_md_array")) == 1
        wiped = [args[0] for args in fake_backend.called("wipe_signatures")]
        assert wiped == ["/dev/sdb", "/dev/sdc", "/dev/sdd", "/dev/sde"]
        assert fake_storage.registered == {"raid10-1_8tb": "/mnt/pve/raid10-1_8tb"}
        assert fake_boot.persisted == 1

    @pytest.mark.integration
    @pytest.mark.slow
    @patch("raidkit.cli.commands.drives.validate_root")
    @patch("raidkit.core.inventory.blockdev.is_block_device", return_value=True)
    @patch("raidkit.core.inventory.blockdev.list_block_devices")
    def test_rerun_with_single_disk_after_apply(self, mock_list, mock_is_block, mock_root, manager_factory,
                                                fake_backend, fake_storage, fake_boot):
        """A disk left mounted as single-sdX keeps the plan ids stable on the next run."""
        system_disk = lsblk_node("sda", size=TB1, children=[
            lsblk_node("sda1", "part", size=TB1, mountpoint="/", fstype="ext4", pkname="sda"),
        ])
        mock_list.return_value = [
            system_disk,
            lsblk_node("sdb", size=TB4),
            lsblk_node("sdc", size=TB4),
            lsblk_node("sdd", size=TB2),
            lsblk_node("sde", size=TB2),
            lsblk_node("sdf", size=TB1),
        ]
        runner = CliRunner()

        with patch("raidkit.cli.commands.drives.ArrayLifecycleManager",
                   side_effect=lambda **kw: manager_factory(**kw)):
            first = runner.invoke(cli_app, ["drives", "apply", "--force", "--config", "mixed-optimal"])
            assert first.exit_code == 0

            md127 = lsblk_node("md127", "raid1", size=TB4, mountpoint="/mnt/pve/raid1-3_6tb", fstype="ext4")
            md126 = lsblk_node("md126", "raid1", size=TB2, mountpoint="/mnt/pve/raid1-1_8tb", fstype="ext4")
            mock_list.return_value = [
                system_disk,
                lsblk_node("sdb", size=TB4, fstype="linux_raid_member", children=[md127]),
                lsblk_node("sdc", size=TB4, fstype="linux_raid_member", children=[md127]),
                lsblk_node("sdd", size=TB2, fstype="linux_raid_member", children=[md126]),
                lsblk_node("sde", size=TB2, fstype="linux_raid_member", children=[md126]),
                lsblk_node("sdf", size=TB1, mountpoint="/mnt/pve/single-sdf", fstype="ext4"),
            ]
            again = runner.invoke(cli_app, ["drives", "apply", "--force", "--config", "mixed-optimal"])

        assert again.exit_code == 0, again.output
        assert "Plan mixed-optimal applied successfully" in again.output
        for name in ("raid1-3_6tb", "raid1-1_8tb", "single-sdf"):
            assert f"{name}: registered (/mnt/pve/{name})" in again.output
        assert len(fake_backend.called("create_md_array")) == 2
        assert len(fake_backend.called("format_filesystem")) == 3
        assert len(fake_backend.called("wipe_signatures")) == 5
        assert set(fake_storage.registered) == {"raid1-3_6tb", "raid1-1_8tb", "single-sdf"}
        assert fake_boot.persisted == 1

    @pytest.mark.integration
    @pytest.mark.slow
    @patch("raidkit.core.inventory.blockdev.is_block_device", return_value=True)
    @patch("raidkit.core.inventory.blockdev.list_block_devices")
    def test_mixed_sizes_over_api(self, mock_list, mock_is_block):
        mock_list.return_value = [
            lsblk_node("sdb", size=TB4),
            lsblk_node("sdc", size=TB4),
            lsblk_node("sdd", size=TB1),
            lsblk_node("sde", size=TB1),
        ]
        client = TestClient(api_app)

        drives = client.get("/v1/drives").json()["data"]["items"]
        plans = client.get("/v1/plans").json()["data"]

        assert [d["size"] for d in drives] == ["3.6TB", "3.6TB", "932GB", "932GB"]
        assert [g["label"] for g in plans["groups"]] == ["3.6TB", "932GB"]
        assert plans["recommended"] == "dual-mirror"


class TestTeardownWorkflow:
    """Status -> remove on a host whose root filesystem is on md0."""

    @pytest.mark.integration
    @pytest.mark.slow
    @patch("raidkit.cli.commands.arrays.validate_root")
    @patch("raidkit.core.inventory.blockdev.root_source", return_value="/dev/md0")
    @patch("raidkit.core.inventory.blockdev.md_aliases", return_value={"md1": "data1", "md2": "data2"})
    @patch("raidkit.core.inventory.blockdev.read_mdstat", return_value=MDSTAT)
    @patch("raidkit.core.inventory.blockdev.list_block_devices")
    def test_status_then_remove(self, mock_list, mock_mdstat, mock_aliases, mock_root_source, mock_root,
                                three_array_tree, manager_factory, mounted_backend, fake_boot):
        mock_list.return_value = three_array_tree
        runner = CliRunner()

        status = runner.invoke(cli_app, ["arrays", "status"])
        assert status.exit_code == 0
        assert "SYSTEM  /dev/md0" in status.output
        assert "DATA  /dev/md1 (data1)" in status.output
        assert "1 SYSTEM, 2 DATA" in status.output

        with patch("raidkit.cli.commands.arrays.ArrayLifecycleManager",
                   side_effect=lambda **kw: manager_factory(**kw)):
            refused = runner.invoke(cli_app, ["arrays", "remove", "--array", "/dev/md0", "--force"])
            removed = runner.invoke(cli_app, ["arrays", "remove", "--force"])

        assert refused.exit_code == 1
        assert removed.exit_code == 0
        assert "Removed /dev/md2" in removed.output
        assert "Removed /dev/md1" in removed.output
        stopped = [args[0] for args in mounted_backend.called("stop_array")]
        assert stopped == ["/dev/md2", "/dev/md1"]
        assert "/" in mounted_backend.mounted
        assert fake_boot.persisted == 1

        client = TestClient(api_app)
        arrays = client.get("/v1/arrays").json()["data"]["items"]
        assert {a["name"]: a["classification"] for a in arrays} == {"md2": "DATA", "md1": "DATA", "md0": "SYSTEM"}
