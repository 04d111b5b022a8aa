"""Error taxonomy shared by the engine components.

Recoverable outcomes (a low-confidence TCA, an infeasible burn, a search that
did not converge) are returned as data tagged with an :class:`ErrorKind`.
Exceptions are reserved for input that is rejected before work begins and for
cancelled background work.
"""
from __future__ import annotations

from concurrent.futures import CancelledError
from enum import Enum


class ErrorKind(Enum):
    """Failure categories attached to engine results."""

    INVALID_ORBIT = "invalid_orbit"
    SCAN_INCOMPLETE = "scan_incomplete"
    MANEUVER_INFEASIBLE = "maneuver_infeasible"
    OPTIMIZATION_NOT_CONVERGED = "optimization_not_converged"
    CANCELLED = "cancelled"


class OrbitOpsError(Exception):
    """Base class for engine errors."""

    kind: ErrorKind | None = None


class InvalidOrbitError(OrbitOpsError, ValueError):
    """Elements describe a decayed or degenerate orbit."""

    kind = ErrorKind.INVALID_ORBIT

    def __init__(self, object_id: int, reason: str) -> None:
        self.object_id = object_id
        self.reason = reason
        super().__init__(f"Invalid orbit for object {object_id}: {reason}")


class EmptyCatalogError(OrbitOpsError, ValueError):
    """A scan was requested on a catalog with no objects."""


class InvalidTransitionError(OrbitOpsError, RuntimeError):
    """A replay command is not allowed in the controller's current mode."""


class OperationCancelled(OrbitOpsError, CancelledError):
    """In-flight background work was cancelled or superseded."""

    kind = ErrorKind.CANCELLED
