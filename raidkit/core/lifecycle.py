"""
Array lifecycle manager.

Applies plans (create, format, mount, register) and tears arrays down
(unmount, deregister, stop, wipe) as an explicit state machine:

    planned -> created -> formatted -> mounted -> registered
    created|formatted|mounted|registered -> unmounting -> stopped -> wiped

Every step goes through `advance()`, which refuses invalid transitions and
any move back once an array is stopped. Nothing is rolled back automatically.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Union

from raidkit.cli.lib import filesystem, mdadm, zfs
from raidkit.cli.lib.audit import record_event
from raidkit.cli.lib.boot import MdadmBootConfig
from raidkit.cli.lib.config import RaidKitConfig, load_config
from raidkit.cli.lib.pvesm import ProxmoxStorage
from raidkit.core import inventory
from raidkit.core.exceptions import (
    CreateFailure,
    FormatFailure,
    InvalidTransitionError,
    IrreversibleTransitionError,
    MountFailure,
    PersistWarning,
    RaidKitError,
    RaidKitWarning,
    RegistrationWarning,
    StopFailure,
    UnmountFailure,
    UnsafeRemovalError,
    WipeWarning,
)
from raidkit.core.guard import classify
from raidkit.core.models import (
    IRREVERSIBLE_STATES,
    TRANSITIONS,
    ArrayLayout,
    ArrayState,
    GuardVerdict,
    RaidArray,
    RaidArrayDescriptor,
    RaidPlan,
    SystemSnapshot,
)

logger = logging.getLogger(__name__)

MD_SCHEMES = ("1", "5", "6", "10")

ConfirmFn = Callable[[str], bool]


def always_confirm(prompt: str) -> bool:
    return True


def never_confirm(prompt: str) -> bool:
    return False


def filesystem_for(scheme: str) -> str:
    """Filesystem used on an array of the given scheme."""
    if scheme in ("5", "6", "10"):
        return "xfs"
    if scheme == "zfs-mirror":
        return "zfs"
    return "ext4"


def advance(array: RaidArray, target: ArrayState) -> None:
    """
    Move an array to its next lifecycle state.

    Raises:
        IrreversibleTransitionError: If the array is stopped or wiped and
            the target is not further along the teardown path
        InvalidTransitionError: For any other transition not in the table
    """
    current = array.state
    allowed = TRANSITIONS[current]
    fallback = current == ArrayState.UNMOUNTING and target == array.resume_state

    if target not in allowed and not fallback:
        if current in IRREVERSIBLE_STATES:
            raise IrreversibleTransitionError(
                f"Array {array.name} is {current.value}; cannot move to {target.value}",
                remedy="Re-run `raidkit drives apply` to build a new array",
            )
        raise InvalidTransitionError(
            f"Array {array.name} cannot move from {current.value} to {target.value}"
        )

    if target == ArrayState.UNMOUNTING:
        array.resume_state = current
    array.history.append(current)
    array.state = target
    logger.info("Array %s: %s -> %s", array.name, current.value, target.value)
    record_event("array_transition", array=array.name, source=current.value, target=target.value)


class SystemBackend:
    """
    System commands used by the lifecycle manager.

    Thin delegation to raidkit.cli.lib so tests can substitute a fake.
    """

    def __init__(self, fstab_path: str = "/etc/fstab", settle_timeout: int = 30):
        self.fstab_path = fstab_path
        self.settle_timeout = settle_timeout

    def assembled_arrays(self) -> List[RaidArrayDescriptor]:
        return inventory.list_arrays()

    def wipe_signatures(self, device: str) -> None:
        filesystem.wipe_signatures(device)

    def create_md_array(self, name: str, level: str, devices: Sequence[str], spares: Sequence[str]) -> str:
        return mdadm.create_array(name, level, devices, spares)

    def wait_for_device(self, path: str) -> bool:
        return mdadm.wait_for_device(path, timeout=self.settle_timeout)

    def create_zfs_pool(self, name: str, devices: Sequence[str]) -> None:
        zfs.create_mirror_pool(name, devices)

    def zfs_pool_exists(self, name: str) -> bool:
        return zfs.pool_exists(name)

    def create_zfs_dataset(self, dataset: str, mount_point: str) -> None:
        zfs.create_dataset(dataset, mount_point)

    def zfs_dataset_exists(self, dataset: str) -> bool:
        return zfs.dataset_exists(dataset)

    def filesystem_type(self, device: str) -> Optional[str]:
        return filesystem.filesystem_type(device)

    def filesystem_uuid(self, device: str) -> Optional[str]:
        return filesystem.filesystem_uuid(device)

    def format_filesystem(self, device: str, fstype: str) -> None:
        filesystem.format_filesystem(device, fstype)

    def is_mounted(self, mount_point: str) -> bool:
        return filesystem.is_mounted(mount_point)

    def mount(self, device: str, mount_point: str) -> None:
        filesystem.mount_filesystem(device, mount_point)

    def unmount(self, mount_point: str, force: bool = False) -> None:
        filesystem.umount_filesystem(mount_point, force=force)

    def add_fstab_entry(self, uuid: str, mount_point: str, fstype: str) -> None:
        filesystem.add_fstab_entry(uuid, mount_point, fstype, fstab_path=self.fstab_path)

    def remove_fstab_entries(self, mount_point: str) -> None:
        filesystem.remove_fstab_entries(mount_point, fstab_path=self.fstab_path)

    def stop_array(self, device: str) -> None:
        mdadm.stop_array(device)

    def zero_superblock(self, device: str) -> None:
        mdadm.zero_superblock(device)


@dataclass
class TeardownSession:
    """One snapshot shared by every teardown decision of a batch."""

    snapshot: SystemSnapshot


@dataclass
class TeardownResult:
    array: str
    ok: bool
    state: Optional[ArrayState] = None
    error: Optional[RaidKitError] = None
    warnings: List[RaidKitWarning] = field(default_factory=list)
    unmounted: List[str] = field(default_factory=list)


@dataclass
class BatchResult:
    preserved: List[GuardVerdict] = field(default_factory=list)
    results: List[TeardownResult] = field(default_factory=list)
    warnings: List[RaidKitWarning] = field(default_factory=list)
    cancelled: bool = False

    @property
    def removed(self) -> List[str]:
        return [r.array for r in self.results if r.ok]

    @property
    def failed(self) -> List[TeardownResult]:
        return [r for r in self.results if not r.ok]

    @property
    def ok(self) -> bool:
        """False only when every attempted teardown failed."""
        if self.cancelled:
            return False
        return not self.results or any(r.ok for r in self.results)


class ArrayLifecycleManager:
    """
    Applies plans and tears down arrays.

    Args:
        backend: System command backend
        storage: Storage manager registration (register/deregister/exists/names_for_path)
        boot: Boot configuration (persist_current_arrays/regenerate_boot_image)
        config: raidkit configuration
        dry_run: Log every mutating step as [DRY RUN] instead of running it
        snapshot_provider: Callable returning a SystemSnapshot
    """

    def __init__(self, backend: Optional[SystemBackend] = None, storage=None, boot=None,
                 config: Optional[RaidKitConfig] = None, dry_run: bool = False,
                 snapshot_provider: Optional[Callable[[], SystemSnapshot]] = None):
        self.config = config or load_config()
        self.backend = backend or SystemBackend(
            fstab_path=self.config.fstab_path,
            settle_timeout=self.config.settle_timeout,
        )
        self.storage = storage or ProxmoxStorage(
            content=self.config.storage_content,
            storage_cfg=self.config.storage_cfg,
        )
        self.boot = boot or MdadmBootConfig(self.config.mdadm_conf)
        self.dry_run = dry_run
        self.snapshot_provider = snapshot_provider or inventory.capture_snapshot
        self.warnings: List[RaidKitWarning] = []
        self._created_md = False

    def _step(self, description: str, func: Callable, *args, **kwargs):
        if self.dry_run:
            logger.info("[DRY RUN] %s", description)
            return None
        logger.debug(description)
        return func(*args, **kwargs)

    def _warn(self, warning: RaidKitWarning, sink: List[RaidKitWarning]) -> None:
        logger.warning("%s", warning.message)
        record_event("warning", kind=type(warning).__name__, target=warning.target, message=warning.message)
        sink.append(warning)

    def mount_point_for(self, name: str) -> str:
        return f"{self.config.mount_base}/{name}"

    # Apply path

    def _observe(self, layout: ArrayLayout) -> RaidArray:
        name = layout.name
        members = [d.path for d in layout.members]
        wanted = set(members)
        array = RaidArray(
            name=name,
            device=members[0] if layout.scheme == "none" else f"/dev/md/{name}",
            scheme=layout.scheme,
            members=members,
        )

        if layout.scheme == "zfs-mirror":
            array.device = name
            if self.backend.zfs_pool_exists(name):
                array.state = ArrayState.CREATED
        else:
            for existing in self.backend.assembled_arrays():
                paths = set(existing.member_paths)
                if existing.alias == name and layout.scheme != "none" and not paths & wanted:
                    raise CreateFailure(
                        f"Array name {name} is already used by {existing.device}",
                        remedy=f"raidkit arrays remove --array {existing.name}",
                    )
                same = existing.alias == name or (layout.scheme != "none" and paths == wanted)
                if same and layout.scheme != "none":
                    array.state = ArrayState.CREATED
                    array.device = f"/dev/md/{existing.alias}" if existing.alias else existing.device
                    continue
                overlap = sorted(paths & wanted)
                if overlap:
                    raise CreateFailure(
                        f"{overlap[0]} is already a member of {existing.device}",
                        remedy=f"raidkit arrays remove --array {existing.name}",
                    )

        fstype = filesystem_for(layout.scheme)
        if array.state == ArrayState.CREATED and layout.scheme == "zfs-mirror":
            if self.backend.zfs_dataset_exists(f"{name}/vmdata"):
                array.state = ArrayState.FORMATTED
        elif layout.scheme == "none" or array.state == ArrayState.CREATED:
            if self.backend.filesystem_type(array.device) == fstype:
                array.state = ArrayState.FORMATTED

        mount_point = self.mount_point_for(name)
        if array.state == ArrayState.FORMATTED and self.backend.is_mounted(mount_point):
            array.state = ArrayState.MOUNTED
            array.mount_points = [mount_point]
        if array.state == ArrayState.MOUNTED and self.storage.exists(name):
            array.state = ArrayState.REGISTERED
            array.registration_name = name

        logger.info("Array %s observed as %s", name, array.state.value)
        return array

    def _create(self, layout: ArrayLayout, array: RaidArray) -> None:
        for path in array.members:
            try:
                self._step(f"wipefs -a {path}", self.backend.wipe_signatures, path)
            except RuntimeError as e:
                raise CreateFailure(str(e), remedy=f"wipefs -n {path}")

        try:
            if layout.scheme in MD_SCHEMES:
                devices = [d.path for d in layout.devices]
                spares = [d.path for d in layout.spares]
                created = self._step(
                    f"mdadm --create /dev/md/{array.name} --level={layout.scheme} "
                    f"--raid-devices={len(devices)} {' '.join(devices + spares)}",
                    self.backend.create_md_array, array.name, layout.scheme, devices, spares,
                )
                if created:
                    array.device = created
                if not self.dry_run and not self.backend.wait_for_device(array.device):
                    raise CreateFailure(
                        f"Array device {array.device} did not appear after creation",
                        remedy="cat /proc/mdstat",
                    )
                self._created_md = True
            elif layout.scheme == "zfs-mirror":
                self._step(
                    f"zpool create {array.name} mirror {' '.join(array.members)}",
                    self.backend.create_zfs_pool, array.name, array.members,
                )
        except RuntimeError as e:
            raise CreateFailure(
                f"Could not create {array.name}: {e}",
                remedy=f"mdadm --examine {' '.join(array.members)}",
            )
        advance(array, ArrayState.CREATED)

    def _format(self, layout: ArrayLayout, array: RaidArray) -> None:
        fstype = filesystem_for(layout.scheme)
        mount_point = self.mount_point_for(array.name)
        try:
            if layout.scheme == "zfs-mirror":
                self._step(
                    f"zfs create -o mountpoint={mount_point} {array.name}/vmdata",
                    self.backend.create_zfs_dataset, f"{array.name}/vmdata", mount_point,
                )
            else:
                self._step(
                    f"mkfs.{fstype} {array.device}",
                    self.backend.format_filesystem, array.device, fstype,
                )
        except (RuntimeError, ValueError) as e:
            raise FormatFailure(
                f"Could not format {array.device}: {e}",
                remedy=f"wipefs -n {array.device}",
            )
        advance(array, ArrayState.FORMATTED)

    def _mount(self, layout: ArrayLayout, array: RaidArray) -> None:
        fstype = filesystem_for(layout.scheme)
        mount_point = self.mount_point_for(array.name)
        if layout.scheme == "zfs-mirror":
            if not self.dry_run and not self.backend.is_mounted(mount_point):
                raise MountFailure(
                    f"Dataset {array.name}/vmdata is not mounted at {mount_point}",
                    remedy=f"zfs mount {array.name}/vmdata",
                )
        else:
            try:
                self._step(f"mount {array.device} {mount_point}", self.backend.mount, array.device, mount_point)
                if self.dry_run:
                    logger.info("[DRY RUN] add fstab entry for %s", mount_point)
                else:
                    uuid = self.backend.filesystem_uuid(array.device)
                    if uuid:
                        self.backend.add_fstab_entry(uuid, mount_point, fstype)
                    else:
                        logger.warning("No filesystem UUID for %s; fstab not updated", array.device)
            except (RuntimeError, OSError) as e:
                raise MountFailure(
                    f"Could not mount {array.device} at {mount_point}: {e}",
                    remedy=f"mount {array.device} {mount_point}",
                )
        array.mount_points = [mount_point]
        advance(array, ArrayState.MOUNTED)

    def _register(self, array: RaidArray) -> None:
        mount_point = self.mount_point_for(array.name)
        try:
            self._step(
                f"pvesm add dir {array.name} --path {mount_point}",
                self.storage.register, array.name, mount_point, "dir",
            )
        except RuntimeError as e:
            self._warn(RegistrationWarning(f"Could not register {array.name}: {e}", array.name), array.warnings)
            return
        array.registration_name = array.name
        advance(array, ArrayState.REGISTERED)

    def apply(self, layout: ArrayLayout) -> RaidArray:
        """
        Bring one array of a plan up to the registered state.

        Live state is observed first, so steps already done are skipped and
        re-running after an interruption picks up where it stopped.

        Returns:
            The array, REGISTERED (or MOUNTED if registration failed)

        Raises:
            CreateFailure: If a member belongs to another array or creation fails
            FormatFailure: If formatting fails
            MountFailure: If mounting fails
        """
        array = self._observe(layout)
        if array.state == ArrayState.PLANNED:
            self._create(layout, array)
        if array.state == ArrayState.CREATED:
            self._format(layout, array)
        if array.state == ArrayState.FORMATTED:
            self._mount(layout, array)
        if array.state == ArrayState.MOUNTED:
            self._register(array)
        record_event("array_applied", array=array.name, state=array.state.value, dry_run=self.dry_run)
        return array

    def apply_plan(self, plan: RaidPlan) -> List[RaidArray]:
        """
        Apply every array of a plan in order.

        mdadm.conf and the boot image are refreshed if any md array was
        created, even when a later array fails.
        """
        self._created_md = False
        arrays = []
        logger.info("Applying plan %s (%d array(s))", plan.plan_id, len(plan.layouts))
        try:
            for layout in plan.layouts:
                arrays.append(self.apply(layout))
        finally:
            if self._created_md:
                self.persist_boot_config()
        record_event("plan_applied", plan_id=plan.plan_id, arrays=[a.name for a in arrays], dry_run=self.dry_run)
        return arrays

    def persist_boot_config(self) -> None:
        """Refresh mdadm.conf and the initramfs; failures become PersistWarnings."""
        try:
            self._step("persist arrays to mdadm.conf", self.boot.persist_current_arrays)
        except RuntimeError as e:
            self._warn(PersistWarning(str(e), self.config.mdadm_conf), self.warnings)
        try:
            self._step("update-initramfs -u", self.boot.regenerate_boot_image)
        except RuntimeError as e:
            self._warn(PersistWarning(str(e), "initramfs"), self.warnings)

    # Teardown path

    def begin_teardown(self) -> TeardownSession:
        return TeardownSession(snapshot=self.snapshot_provider())

    @staticmethod
    def _lookup(snapshot: SystemSnapshot, name: str) -> RaidArrayDescriptor:
        short = name[len("/dev/"):] if name.startswith("/dev/") else name
        for descriptor in snapshot.arrays:
            if short in (descriptor.name, descriptor.alias, f"md/{descriptor.alias}"):
                return descriptor
        raise RaidKitError(f"Array {name} not found", remedy="cat /proc/mdstat")

    def teardown(self, descriptor: RaidArrayDescriptor, force: bool = False,
                 session: Optional[TeardownSession] = None) -> TeardownResult:
        """
        Unmount, deregister, stop and wipe one array.

        Args:
            descriptor: Array to remove
            force: Retry a failed unmount with `umount -f`
            session: Teardown session; a new snapshot is taken if omitted

        Returns:
            Result with the warnings collected on the way

        Raises:
            UnsafeRemovalError: If the array backs the running system (always,
                whatever `force` is)
            UnmountFailure: If a filesystem stays mounted; nothing destructive
                has been done
            StopFailure: If the array cannot be stopped
        """
        session = session or self.begin_teardown()
        snapshot = session.snapshot
        verdict = classify(descriptor, snapshot.arrays, snapshot)
        if verdict.system:
            record_event("teardown_refused", array=descriptor.name, reason=verdict.reason)
            raise UnsafeRemovalError(
                f"Refusing to remove {descriptor.device}: it {verdict.reason}",
                remedy="System arrays cannot be removed with raidkit",
            )

        mounts = sorted(
            (mp for mp in snapshot.topology.mounts_under(descriptor.name) if mp.startswith("/")),
            key=lambda mp: (mp.count("/"), mp),
            reverse=True,
        )
        candidates = []
        if descriptor.alias:
            candidates.append(descriptor.alias)
        for mount_point in mounts:
            candidates.extend(self.storage.names_for_path(mount_point))
        registrations = [n for n in dict.fromkeys(candidates) if self.storage.exists(n)]

        array = RaidArray(
            name=descriptor.display_name,
            device=descriptor.device,
            scheme=descriptor.scheme,
            members=descriptor.member_paths,
            mount_points=list(mounts),
            registration_name=registrations[0] if registrations else None,
        )
        if registrations:
            array.state = ArrayState.REGISTERED
        elif mounts:
            array.state = ArrayState.MOUNTED
        else:
            array.state = ArrayState.CREATED

        result = TeardownResult(array=descriptor.name, ok=False)
        advance(array, ArrayState.UNMOUNTING)

        for mount_point in mounts:
            try:
                self._step(f"umount {mount_point}", self.backend.unmount, mount_point)
            except RuntimeError as e:
                if not force:
                    advance(array, array.resume_state)
                    raise UnmountFailure(
                        f"Could not unmount {mount_point} from {descriptor.device}: {e}",
                        remedy=f"fuser -vm {mount_point}  (or re-run with --force)",
                    )
                logger.warning("Unmount of %s failed, retrying with force: %s", mount_point, e)
                try:
                    self._step(f"umount -f {mount_point}", self.backend.unmount, mount_point, force=True)
                except RuntimeError as e2:
                    advance(array, array.resume_state)
                    raise UnmountFailure(
                        f"Could not force-unmount {mount_point} from {descriptor.device}: {e2}",
                        remedy=f"fuser -vmk {mount_point}",
                    )
            result.unmounted.append(mount_point)

        for mount_point in mounts:
            try:
                self._step(f"remove fstab entries for {mount_point}", self.backend.remove_fstab_entries, mount_point)
            except (RuntimeError, OSError) as e:
                self._warn(PersistWarning(f"Could not update fstab for {mount_point}: {e}", mount_point),
                           result.warnings)

        for name in registrations:
            try:
                self._step(f"pvesm remove {name}", self.storage.deregister, name)
            except RuntimeError as e:
                self._warn(RegistrationWarning(f"Could not remove storage {name}: {e}", name), result.warnings)

        try:
            self._step(f"mdadm --stop {descriptor.device}", self.backend.stop_array, descriptor.device)
        except RuntimeError as e:
            raise StopFailure(
                f"Could not stop {descriptor.device}: {e}",
                remedy=f"lsof {descriptor.device}; mdadm --stop {descriptor.device}",
            )
        advance(array, ArrayState.STOPPED)

        for member in descriptor.member_paths:
            try:
                self._step(f"mdadm --zero-superblock {member}", self.backend.zero_superblock, member)
            except RuntimeError as e:
                self._warn(WipeWarning(f"Could not wipe metadata on {member}: {e}", member), result.warnings)
        advance(array, ArrayState.WIPED)

        result.ok = True
        result.state = array.state
        record_event(
            "array_removed",
            array=descriptor.name,
            members=descriptor.member_paths,
            warnings=[w.message for w in result.warnings],
            dry_run=self.dry_run,
        )
        return result

    def teardown_batch(self, arrays: Optional[Sequence[Union[RaidArrayDescriptor, str]]] = None, force: bool = False,
                       confirm: ConfirmFn = always_confirm) -> BatchResult:
        """
        Remove every DATA array (or the given arrays) in one session.

        SYSTEM arrays are preserved and reported. Arrays are torn down one
        after another; a failure on one does not stop the others.

        Args:
            arrays: Arrays to remove; all arrays in the snapshot if omitted
            force: Allow forced unmounts
            confirm: Asked once before anything is removed

        Returns:
            BatchResult; `ok` is False only if every attempted teardown failed
        """
        session = self.begin_teardown()
        snapshot = session.snapshot
        if arrays is None:
            targets = list(snapshot.arrays)
        else:
            targets = [self._lookup(snapshot, a) if isinstance(a, str) else a for a in arrays]

        batch = BatchResult()
        removable = []
        for descriptor in targets:
            verdict = classify(descriptor, snapshot.arrays, snapshot)
            if verdict.system:
                logger.info("Preserving system array %s: %s", descriptor.name, verdict.reason)
                batch.preserved.append(verdict)
            else:
                removable.append(descriptor)

        if not removable:
            logger.info("No data arrays to remove")
            return batch

        names = ", ".join(d.device for d in removable)
        if not confirm(f"Remove {len(removable)} data array(s): {names}? All data on them will be lost."):
            logger.info("Removal cancelled")
            record_event("teardown_cancelled", arrays=[d.name for d in removable])
            batch.cancelled = True
            return batch

        for descriptor in removable:
            try:
                batch.results.append(self.teardown(descriptor, force=force, session=session))
            except RaidKitError as e:
                logger.error("Teardown of %s failed: %s", descriptor.device, e.message)
                batch.results.append(TeardownResult(array=descriptor.name, ok=False, error=e))

        if batch.removed:
            self.persist_boot_config()
            batch.warnings.extend(self.warnings)

        record_event(
            "teardown_batch",
            removed=batch.removed,
            failed=[r.array for r in batch.failed],
            preserved=[v.array for v in batch.preserved],
            dry_run=self.dry_run,
        )
        return batch
