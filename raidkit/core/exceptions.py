"""Error taxonomy for drive planning and array lifecycle operations."""

from typing import List, Optional


class RaidKitError(Exception):
    """Base exception for raidkit errors.

    Every fatal error names the offending device or array in its message and
    carries the command an operator can run to fix or inspect the situation.
    """

    def __init__(self, message: str, remedy: Optional[str] = None):
        self.message = message
        self.remedy = remedy
        super().__init__(self.message)


class ScanError(RaidKitError):
    """Block devices could not be listed."""

    pass


class InsufficientDevicesError(RaidKitError):
    """No redundant scheme is possible with the scanned devices.

    Attached to the `no-raid` plan as an informational notice; never raised
    while enumerating plans. Raised when an explicit device list is too
    short for the requested level.
    """

    def __init__(self, message: str, device_count: int = 0, remedy: Optional[str] = None):
        super().__init__(message, remedy)
        self.device_count = device_count


class PlanNotFoundError(RaidKitError):
    """A plan id does not match any proposed plan."""

    def __init__(self, plan_id: str, valid_ids: List[str]):
        super().__init__(
            f"Plan '{plan_id}' is not available for the scanned devices",
            remedy=f"Choose one of: {', '.join(valid_ids)}",
        )
        self.plan_id = plan_id
        self.valid_ids = valid_ids


class UnsafeRemovalError(RaidKitError):
    """Attempted teardown of an array backing the running system."""

    pass


class UnmountFailure(RaidKitError):
    """A filesystem on the array could not be unmounted."""

    pass


class StopFailure(RaidKitError):
    """The array could not be stopped."""

    pass


class CreateFailure(RaidKitError):
    """The array could not be created."""

    pass


class FormatFailure(RaidKitError):
    """The array could not be formatted."""

    pass


class MountFailure(RaidKitError):
    """The array filesystem could not be mounted."""

    pass


class InvalidTransitionError(RaidKitError):
    """A lifecycle step was requested from a state that does not allow it."""

    pass


class IrreversibleTransitionError(InvalidTransitionError):
    """A lifecycle step tried to move an array back past the stop boundary."""

    pass


class RaidKitWarning(UserWarning):
    """Base class for non-fatal lifecycle problems.

    Warnings are instantiated, logged and collected on the operation result.
    They are never raised.
    """

    def __init__(self, message: str, target: str = ""):
        self.message = message
        self.target = target
        super().__init__(self.message)


class RegistrationWarning(RaidKitWarning):
    """Storage manager registration or deregistration failed."""

    pass


class WipeWarning(RaidKitWarning):
    """Array metadata could not be erased from a former member."""

    pass


class PersistWarning(RaidKitWarning):
    """mdadm.conf or the boot image could not be refreshed."""

    pass
