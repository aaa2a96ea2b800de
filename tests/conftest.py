"""
Pytest configuration and fixtures.
"""

import logging
import shutil
import tempfile
from pathlib import Path
from typing import Dict, List, Optional
from unittest.mock import patch

import pytest

from raidkit.cli.lib.audit import reset_state_dir_cache
from raidkit.cli.lib.config import RaidKitConfig
from raidkit.core.lifecycle import ArrayLifecycleManager
from raidkit.core.models import (
    ArrayMember,
    BlockTopology,
    Device,
    DeviceStatus,
    RaidArrayDescriptor,
    SystemSnapshot,
)

# Marketing capacities as reported by lsblk -b
TB4 = 4000787030016
TB2 = 2000398934016
TB1 = 1000204886016


def make_device(name: str, size: int, status: DeviceStatus = DeviceStatus.AVAILABLE, **kwargs) -> Device:
    """Build a scanned Device for /dev/<name>."""
    return Device(path=f"/dev/{name}", size_bytes=size, status=status, **kwargs)


def lsblk_node(name: str, node_type: str = "disk", size: int = TB2, mountpoint: Optional[str] = None,
               fstype: Optional[str] = None, pkname: Optional[str] = None,
               children: Optional[List[Dict]] = None, **extra) -> Dict:
    """Build one node of `lsblk -J -b -o NAME,PATH,SIZE,...` output."""
    path = f"/dev/mapper/{name}" if node_type == "lvm" else f"/dev/{name}"
    node = {
        "name": name,
        "path": path,
        "size": size,
        "type": node_type,
        "model": extra.get("model"),
        "serial": extra.get("serial"),
        "rota": extra.get("rota", False),
        "mountpoint": mountpoint,
        "fstype": fstype,
        "pkname": pkname,
    }
    if children:
        node["children"] = children
    return node


def md_descriptor(name: str, level: str, members: List[str], alias: Optional[str] = None) -> RaidArrayDescriptor:
    return RaidArrayDescriptor(
        name=name,
        level=level,
        active=True,
        members=tuple(ArrayMember(device=m, role=i) for i, m in enumerate(members)),
        size_bytes=TB2,
        alias=alias,
    )


class FakeBackend:
    """
    Stateful stand-in for SystemBackend.

    `fail` maps a mutating method name to an exception instance, or to a
    callable taking the method's arguments and returning an exception (or
    None to succeed).
    """

    def __init__(self):
        self.arrays: Dict[str, RaidArrayDescriptor] = {}
        self.filesystems: Dict[str, str] = {}
        self.uuids: Dict[str, str] = {}
        self.mounted: Dict[str, str] = {}
        self.fstab: Dict[str, str] = {}
        self.pools: Dict[str, List[str]] = {}
        self.datasets: Dict[str, str] = {}
        self.fail: Dict[str, object] = {}
        self.calls: List[tuple] = []

    def _record(self, name: str, *args) -> None:
        self.calls.append((name,) + args)
        hook = self.fail.get(name)
        if hook is None:
            return
        error = hook(*args) if callable(hook) else hook
        if error:
            raise error

    def called(self, name: str) -> List[tuple]:
        return [c[1:] for c in self.calls if c[0] == name]

    def assembled_arrays(self):
        return list(self.arrays.values())

    def wipe_signatures(self, device):
        self._record("wipe_signatures", device)
        self.filesystems.pop(device, None)

    def create_md_array(self, name, level, devices, spares):
        self._record("create_md_array", name, level, list(devices), list(spares))
        md = f"md{127 - len(self.arrays)}"
        members = [ArrayMember(p[len("/dev/"):], i) for i, p in enumerate(devices)]
        members += [ArrayMember(p[len("/dev/"):], len(devices) + i, "S") for i, p in enumerate(spares)]
        self.arrays[md] = RaidArrayDescriptor(md, f"raid{level}", True, tuple(members), alias=name)
        return f"/dev/md/{name}"

    def wait_for_device(self, path):
        return True

    def create_zfs_pool(self, name, devices):
        self._record("create_zfs_pool", name, list(devices))
        self.pools[name] = list(devices)

    def zfs_pool_exists(self, name):
        return name in self.pools

    def create_zfs_dataset(self, dataset, mount_point):
        self._record("create_zfs_dataset", dataset, mount_point)
        self.datasets[dataset] = mount_point
        self.mounted[mount_point] = dataset

    def zfs_dataset_exists(self, dataset):
        return dataset in self.datasets

    def filesystem_type(self, device):
        return self.filesystems.get(device)

    def filesystem_uuid(self, device):
        return self.uuids.get(device)

    def format_filesystem(self, device, fstype):
        self._record("format_filesystem", device, fstype)
        self.filesystems[device] = fstype
        self.uuids[device] = f"uuid-{Path(device).name}"

    def is_mounted(self, mount_point):
        return mount_point in self.mounted

    def mount(self, device, mount_point):
        self._record("mount", device, mount_point)
        self.mounted[mount_point] = device

    def unmount(self, mount_point, force=False):
        self._record("unmount", mount_point, force)
        self.mounted.pop(mount_point, None)

    def add_fstab_entry(self, uuid, mount_point, fstype):
        self._record("add_fstab_entry", uuid, mount_point, fstype)
        self.fstab[mount_point] = uuid

    def remove_fstab_entries(self, mount_point):
        self._record("remove_fstab_entries", mount_point)
        self.fstab.pop(mount_point, None)

    def stop_array(self, device):
        self._record("stop_array", device)
        for name, array in list(self.arrays.items()):
            if array.device == device:
                del self.arrays[name]

    def zero_superblock(self, device):
        self._record("zero_superblock", device)


class FakeStorage:
    """Stand-in for ProxmoxStorage."""

    def __init__(self):
        self.registered: Dict[str, str] = {}
        self.fail_register: Optional[Exception] = None
        self.fail_deregister: Optional[Exception] = None

    def exists(self, name):
        return name in self.registered

    def register(self, name, path, storage_type="dir"):
        if self.fail_register:
            raise self.fail_register
        self.registered[name] = path

    def deregister(self, name):
        if self.fail_deregister:
            raise self.fail_deregister
        self.registered.pop(name, None)

    def names_for_path(self, path):
        return [name for name, p in self.registered.items() if p == path]


class FakeBoot:
    """Stand-in for MdadmBootConfig."""

    def __init__(self):
        self.persisted = 0
        self.regenerated = 0
        self.fail_persist: Optional[Exception] = None

    def persist_current_arrays(self):
        if self.fail_persist:
            raise self.fail_persist
        self.persisted += 1
        return ""

    def regenerate_boot_image(self):
        self.regenerated += 1


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Point state, config and log files at a per-test directory."""
    state_dir = tmp_path / "state"
    config_path = tmp_path / "raidkit.conf"
    config_path.write_text(
        "[logging]\n"
        f"log_file = {tmp_path / 'raidkit.log'}\n"
        "log_level = INFO\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("RAIDKIT_STATE_DIR", str(state_dir))
    monkeypatch.setenv("RAIDKIT_CONFIG_PATH", str(config_path))
    reset_state_dir_cache()
    yield
    reset_state_dir_cache()
    logger = logging.getLogger("raidkit")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path)


@pytest.fixture
def mock_subprocess():
    """Mock subprocess.run for testing."""
    with patch("subprocess.run") as mock:
        yield mock


@pytest.fixture
def mock_path_exists():
    """Mock os.path.exists for testing."""
    with patch("os.path.exists") as mock:
        yield mock


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
def fake_boot():
    return FakeBoot()


@pytest.fixture
def test_config(temp_dir):
    return RaidKitConfig(mount_base=str(temp_dir / "mnt"), log_file=None)


@pytest.fixture
def four_drives():
    return [make_device(name, TB2) for name in ("sdb", "sdc", "sdd", "sde")]


@pytest.fixture
def three_array_tree():
    """lsblk tree: md0 on / (sda1+sdb1), md1 on /srv/data1, md2 on /srv/data2."""
    md0 = lsblk_node("md0", "raid1", mountpoint="/", fstype="ext4")
    md1 = lsblk_node("md1", "raid1", mountpoint="/srv/data1", fstype="ext4")
    md2 = lsblk_node("md2", "raid1", mountpoint="/srv/data2", fstype="ext4")
    return [
        lsblk_node("sda", children=[
            lsblk_node("sda1", "part", fstype="linux_raid_member", pkname="sda", children=[md0]),
        ]),
        lsblk_node("sdb", children=[
            lsblk_node("sdb1", "part", fstype="linux_raid_member", pkname="sdb", children=[md0]),
        ]),
        lsblk_node("sdc", fstype="linux_raid_member", children=[md1]),
        lsblk_node("sdd", fstype="linux_raid_member", children=[md1]),
        lsblk_node("sde", fstype="linux_raid_member", children=[md2]),
        lsblk_node("sdf", fstype="linux_raid_member", children=[md2]),
    ]


@pytest.fixture
def three_array_snapshot(three_array_tree):
    return SystemSnapshot(
        arrays=[
            md_descriptor("md0", "raid1", ["sda1", "sdb1"]),
            md_descriptor("md1", "raid1", ["sdc", "sdd"], alias="data1"),
            md_descriptor("md2", "raid1", ["sde", "sdf"], alias="data2"),
        ],
        topology=BlockTopology(three_array_tree),
        root_source="/dev/md0",
    )


@pytest.fixture
def mounted_backend(fake_backend, three_array_snapshot):
    """Backend whose mounts match the three-array snapshot."""
    fake_backend.mounted.update({"/": "/dev/md0", "/srv/data1": "/dev/md1", "/srv/data2": "/dev/md2"})
    for array in three_array_snapshot.arrays:
        fake_backend.arrays[array.name] = array
    return fake_backend


@pytest.fixture
def manager_factory(fake_backend, fake_storage, fake_boot, test_config):
    """Build managers on the fakes; keyword arguments override the defaults."""

    def factory(snapshot: Optional[SystemSnapshot] = None, **kwargs):
        kwargs.setdefault("config", test_config)
        if snapshot is not None:
            kwargs.setdefault("snapshot_provider", lambda: snapshot)
        return ArrayLifecycleManager(backend=fake_backend, storage=fake_storage, boot=fake_boot, **kwargs)

    return factory
