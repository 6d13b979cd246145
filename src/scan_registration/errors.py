"""
Registration error taxonomy.

Attempt-level failures are raised as subclasses of RegistrationError. The
``kind`` attribute carries the stable taxonomy name that is surfaced in
``AlignmentState.reason`` for UI and telemetry consumers.
"""

from __future__ import annotations

__all__ = [
    "RegistrationError",
    "InsufficientGeometryError",
    "NoSeedFoundError",
    "NoCorrespondenceFoundError",
    "InvalidInputError",
    "RegistrationCancelledError",
    "AlignmentStateError",
    "CoordinatorBusyError",
]


class RegistrationError(Exception):
    """Base class for every failure surfaced by the registration engine."""

    kind: str = "RegistrationError"

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


class InsufficientGeometryError(RegistrationError):
    """A mesh or point source yields fewer points than the usable minimum."""

    kind = "InsufficientGeometry"


class NoSeedFoundError(RegistrationError):
    """The coarse search produced zero candidate seeds."""

    kind = "NoSeedFound"


class NoCorrespondenceFoundError(RegistrationError):
    """No seed found a valid correspondence at any pyramid level."""

    kind = "NoCorrespondenceFound"


class InvalidInputError(RegistrationError):
    """Malformed input: empty clouds, mismatched normals, non-finite values."""

    kind = "InvalidInput"


class RegistrationCancelledError(RegistrationError):
    """The caller set the cancellation flag of an in-flight attempt."""

    kind = "Cancelled"


class AlignmentStateError(RegistrationError):
    """A request is not allowed in the coordinator's current state."""

    kind = "InvalidStateTransition"


class CoordinatorBusyError(RegistrationError):
    """Another request is already running on the same coordinator."""

    kind = "CoordinatorBusy"
