"""Error taxonomy for reconciliation.

Errors raised for one device are caught at the per-device boundary in the
engine and recorded on that device's result. Only ConfigLoadError aborts a
whole run.
"""
from typing import Iterable, Optional


class ArcError(Exception):
    """Base class for all arc errors."""
    pass


class ConfigLoadError(ArcError):
    """The desired configuration file could not be read or decoded."""
    pass


class ValidationError(ArcError):
    """Desired configuration violates one or more invariants.

    Carries every violation, not just the first one found.
    """

    def __init__(self, errors: Iterable[str], warnings: Iterable[str] = ()):
        self.errors = list(errors)
        self.warnings = list(warnings)
        super().__init__("; ".join(self.errors) or "invalid configuration")


class DeviceError(ArcError):
    """Non-recoverable error reported by a device or its transport."""
    pass


class TransientDeviceError(DeviceError):
    """Recoverable device error (busy, timeout, connection reset)."""
    pass


class NotAuthenticated(DeviceError):
    """The device session is missing or no longer valid."""
    pass


class FetchError(ArcError):
    """Live state could not be retrieved after retries."""

    def __init__(self, device_id: str, kind: Optional[str], cause: BaseException):
        self.device_id = device_id
        self.kind = kind
        self.cause = cause
        what = f"{kind} state" if kind else "state"
        super().__init__(f"Failed to fetch {what} from {device_id}: {cause}")


class DependencyViolation(ArcError):
    """An operation would leave a dangling dependency."""

    def __init__(self, violations: Iterable[str]):
        self.violations = list(violations)
        super().__init__("; ".join(self.violations))


class DependencyCycle(ArcError):
    """The dependency graph of a change set contains a cycle."""

    def __init__(self, cycle: list):
        self.cycle = list(cycle)
        path = " -> ".join(str(ref) for ref in self.cycle)
        super().__init__(f"Dependency cycle: {path}")
