"""Tests for the error taxonomy."""

from concurrent.futures import CancelledError

import pytest

from orbitops.core.errors import (
    EmptyCatalogError,
    ErrorKind,
    InvalidOrbitError,
    InvalidTransitionError,
    OperationCancelled,
    OrbitOpsError,
)


def test_invalid_orbit_carries_object():
    err = InvalidOrbitError(25544, "perigee below Earth's surface")
    assert err.object_id == 25544
    assert err.kind is ErrorKind.INVALID_ORBIT
    assert "25544" in str(err)
    assert isinstance(err, ValueError)


@pytest.mark.parametrize("exc,base", [
    (EmptyCatalogError("empty"), ValueError),
    (InvalidTransitionError("nope"), RuntimeError),
    (OperationCancelled("stop"), CancelledError),
])
def test_hierarchy(exc, base):
    assert isinstance(exc, OrbitOpsError)
    assert isinstance(exc, base)


def test_cancelled_kind():
    assert OperationCancelled("stop").kind is ErrorKind.CANCELLED
