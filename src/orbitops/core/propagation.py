"""State-vector propagation: SGP4 and a fast analytic model.

Two precision modes are offered and callers pick one explicitly:

``PropagationMode.SGP4``
    Full SGP4/SDP4 via the sgp4 library. Positions are in the TEME frame.
    Use this for screening and maneuver planning.

``PropagationMode.ANALYTIC``
    Two-body Kepler motion with J2 secular drift of the node and perigee
    (no drag, no short-periodic terms). It is a few times faster per call
    and vectorizes over time, which suits interactive scrubbing. For
    near-circular LEO orbits it agrees with SGP4 to a few km near epoch and
    drifts to tens of km over a day, so it must not feed screening or
    maneuver decisions.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Sequence

import numpy as np
from numpy.typing import NDArray
from sgp4.api import SatrecArray

from orbitops.core.elements import OrbitalElements, unix_to_jd
from orbitops.core.errors import InvalidOrbitError
from orbitops.core.kepler import solve_kepler
from orbitops.utils.constants import (
    EARTH_J2 as J2,
    EARTH_MU_KM3_S2 as MU,
    EARTH_RADIUS_KM as RE,
    SECONDS_PER_DAY,
)

logger = logging.getLogger(__name__)


class PropagationMode(Enum):
    """Propagator fidelity selector."""

    SGP4 = "sgp4"
    ANALYTIC = "analytic"


@dataclass
class StateVector:
    """Position and velocity of one object at one instant.

    Attributes:
        object_id: NORAD id of the object.
        position_km: [x, y, z] position in km.
        velocity_km_s: [vx, vy, vz] velocity in km/s.
        timestamp: Time of this state in Unix seconds.
    """

    object_id: int
    position_km: NDArray[np.float64]  # shape (3,)
    velocity_km_s: NDArray[np.float64]  # shape (3,)
    timestamp: float

    @property
    def epoch(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc)

    @property
    def radius_km(self) -> float:
        return float(np.linalg.norm(self.position_km))


def propagate(
    elements: OrbitalElements,
    t: float,
    mode: PropagationMode = PropagationMode.SGP4,
) -> StateVector:
    """Propagate one object to a Unix time.

    Raises:
        InvalidOrbitError: If the elements describe a decayed or degenerate
            orbit at ``t``.
    """
    if mode is PropagationMode.ANALYTIC:
        pos, vel = _analytic_states(elements, np.array([t], dtype=np.float64))
        return StateVector(elements.norad_id, pos[0], vel[0], t)

    jd, fr = unix_to_jd(t)
    error_code, pos, vel = elements.satrec.sgp4(jd, fr)
    if error_code != 0:
        logger.warning("SGP4 propagation failed for NORAD %d at %.1f: error code %d",
                       elements.norad_id, t, error_code)
        raise InvalidOrbitError(elements.norad_id, f"SGP4 error code {error_code}")

    position = np.array(pos, dtype=np.float64)
    velocity = np.array(vel, dtype=np.float64)
    _check_state(elements.norad_id, position, velocity)
    return StateVector(elements.norad_id, position, velocity, t)


def propagate_many(
    elements: OrbitalElements,
    times: Sequence[float],
    mode: PropagationMode = PropagationMode.SGP4,
) -> list[StateVector]:
    """Propagate a single object to multiple Unix times."""
    times_arr = np.asarray(times, dtype=np.float64)
    if mode is PropagationMode.ANALYTIC:
        pos, vel = _analytic_states(elements, times_arr)
        result = [StateVector(elements.norad_id, pos[k], vel[k], float(t)) for k, t in enumerate(times_arr)]
    else:
        result = [propagate(elements, float(t), mode) for t in times_arr]
    logger.debug("Propagated NORAD %d to %d times", elements.norad_id, len(result))
    return result


def propagate_batch(
    elements_list: Sequence[OrbitalElements],
    times: Sequence[float] | NDArray[np.float64],
    mode: PropagationMode = PropagationMode.SGP4,
) -> tuple[NDArray[np.float64], NDArray[np.float64], NDArray[np.bool_]]:
    """Propagate many objects over a common time grid.

    SGP4 mode uses ``SatrecArray`` for C-level batch propagation.

    Returns:
        Tuple of:
            - positions: shape (n, m, 3), km
            - velocities: shape (n, m, 3), km/s
            - valid: shape (n,), False for objects that failed at any time.
              Their rows are filled with NaN.
    """
    times_arr = np.atleast_1d(np.asarray(times, dtype=np.float64))
    n, m = len(elements_list), len(times_arr)
    if n == 0:
        empty = np.empty((0, m, 3), dtype=np.float64)
        return empty, empty.copy(), np.empty(0, dtype=np.bool_)

    if mode is PropagationMode.ANALYTIC:
        positions = np.full((n, m, 3), np.nan)
        velocities = np.full((n, m, 3), np.nan)
        valid = np.zeros(n, dtype=np.bool_)
        for i, elements in enumerate(elements_list):
            try:
                positions[i], velocities[i] = _analytic_states(elements, times_arr)
                valid[i] = True
            except InvalidOrbitError as exc:
                logger.warning("Excluding NORAD %d: %s", elements.norad_id, exc.reason)
        return positions, velocities, valid

    jd = np.empty(m, dtype=np.float64)
    fr = np.empty(m, dtype=np.float64)
    for k, t in enumerate(times_arr):
        jd[k], fr[k] = unix_to_jd(float(t))

    sat_arr = SatrecArray([e.satrec for e in elements_list])
    errors, positions, velocities = sat_arr.sgp4(jd, fr)
    positions = np.asarray(positions, dtype=np.float64)
    velocities = np.asarray(velocities, dtype=np.float64)

    radii = np.linalg.norm(positions, axis=2)
    valid = (
        np.all(errors == 0, axis=1)
        & np.all(np.isfinite(positions), axis=(1, 2))
        & np.all(np.isfinite(velocities), axis=(1, 2))
        & np.all(radii >= RE, axis=1)
    )
    if not np.all(valid):
        for i in np.where(~valid)[0]:
            logger.warning("Excluding NORAD %d: propagation failed inside the time grid",
                           elements_list[i].norad_id)
        positions[~valid] = np.nan
        velocities[~valid] = np.nan
    return positions, velocities, valid


class StateArena:
    """Positions and velocities of a whole catalog at one instant.

    Rows are indexed by object slot, the position of the object id in
    ``object_ids``. ``fill`` overwrites the buffers in place; consumers that
    keep a result across refills must take a ``snapshot()``.
    """

    def __init__(self, object_ids: Sequence[int]) -> None:
        self.object_ids: tuple[int, ...] = tuple(object_ids)
        self._slots = {oid: i for i, oid in enumerate(self.object_ids)}
        n = len(self.object_ids)
        self.positions = np.full((n, 3), np.nan)
        self.velocities = np.full((n, 3), np.nan)
        self.valid = np.zeros(n, dtype=np.bool_)
        self.timestamp = math.nan

    def __len__(self) -> int:
        return len(self.object_ids)

    def slot(self, object_id: int) -> int:
        try:
            return self._slots[object_id]
        except KeyError:
            raise KeyError(f"Object {object_id} has no slot in this arena") from None

    def fill(
        self,
        elements_list: Sequence[OrbitalElements],
        t: float,
        mode: PropagationMode = PropagationMode.SGP4,
    ) -> None:
        """Propagate every object to ``t`` into the arena buffers."""
        if [e.norad_id for e in elements_list] != list(self.object_ids):
            raise ValueError("elements_list does not match the arena slots")
        pos, vel, valid = propagate_batch(elements_list, [t], mode)
        self.positions[:] = pos[:, 0, :]
        self.velocities[:] = vel[:, 0, :]
        self.valid[:] = valid
        self.timestamp = t

    def state(self, object_id: int) -> StateVector:
        """Copy one slot out as a StateVector.

        Raises:
            InvalidOrbitError: If the object failed to propagate.
        """
        i = self.slot(object_id)
        if not self.valid[i]:
            raise InvalidOrbitError(object_id, "no valid state in arena")
        return StateVector(object_id, self.positions[i].copy(), self.velocities[i].copy(), self.timestamp)

    def snapshot(self) -> StateArena:
        """Independent copy of the arena."""
        copy = StateArena.__new__(StateArena)
        copy.object_ids = self.object_ids
        copy._slots = self._slots
        copy.positions = self.positions.copy()
        copy.velocities = self.velocities.copy()
        copy.valid = self.valid.copy()
        copy.timestamp = self.timestamp
        return copy


def _check_state(object_id: int, position: NDArray[np.float64], velocity: NDArray[np.float64]) -> None:
    if not (np.all(np.isfinite(position)) and np.all(np.isfinite(velocity))):
        raise InvalidOrbitError(object_id, "non-finite state vector")
    if float(np.linalg.norm(position)) < RE:
        raise InvalidOrbitError(object_id, "radius below Earth's surface")


def _analytic_states(
    elements: OrbitalElements,
    times: NDArray[np.float64],
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Two-body + J2 secular positions and velocities, vectorized over time."""
    oid = elements.norad_id
    e = elements.eccentricity
    angles = (elements.inclination_deg, elements.raan_deg, elements.arg_perigee_deg, elements.mean_anomaly_deg)
    if not all(math.isfinite(x) for x in angles) or not math.isfinite(e):
        raise InvalidOrbitError(oid, "non-finite orbital elements")
    if not 0.0 <= e < 1.0:
        raise InvalidOrbitError(oid, f"eccentricity {e} outside [0, 1)")
    n0 = elements.mean_motion_rev_per_day * 2.0 * math.pi / SECONDS_PER_DAY  # rad/s
    if not math.isfinite(n0) or n0 <= 0.0:
        raise InvalidOrbitError(oid, "non-positive mean motion")

    a = (MU / (n0 * n0)) ** (1.0 / 3.0)
    if a * (1.0 - e) < RE:
        raise InvalidOrbitError(oid, "perigee below Earth's surface")
    p = a * (1.0 - e * e)

    incl = math.radians(elements.inclination_deg)
    cos_i = math.cos(incl)
    sin_i = math.sin(incl)

    # J2 secular rates
    factor = 1.5 * J2 * (RE / p) ** 2
    raan_dot = -factor * n0 * cos_i
    argp_dot = factor * n0 * (2.0 - 2.5 * sin_i * sin_i)

    dt = times - elements.epoch
    raan = math.radians(elements.raan_deg) + raan_dot * dt
    argp = math.radians(elements.arg_perigee_deg) + argp_dot * dt
    M = np.mod(math.radians(elements.mean_anomaly_deg) + n0 * dt, 2.0 * math.pi)

    E = solve_kepler(M, e)
    cos_E = np.cos(E)
    denom = 1.0 - e * cos_E
    sin_nu = math.sqrt(1.0 - e * e) * np.sin(E) / denom
    cos_nu = (cos_E - e) / denom
    nu = np.arctan2(sin_nu, cos_nu)

    u = argp + nu
    r = a * denom
    cos_u = np.cos(u)
    sin_u = np.sin(u)
    cos_raan = np.cos(raan)
    sin_raan = np.sin(raan)

    xp = r * cos_u
    yp = r * sin_u
    positions = np.column_stack([
        xp * cos_raan - yp * cos_i * sin_raan,
        xp * sin_raan + yp * cos_i * cos_raan,
        yp * sin_i,
    ])

    h = math.sqrt(MU * p)
    r_dot = math.sqrt(MU / p) * e * np.sin(nu)
    rf_dot = h / r
    vxp = r_dot * cos_u - rf_dot * sin_u
    vyp = r_dot * sin_u + rf_dot * cos_u
    velocities = np.column_stack([
        vxp * cos_raan - vyp * cos_i * sin_raan,
        vxp * sin_raan + vyp * cos_i * cos_raan,
        vyp * sin_i,
    ])
    return positions, velocities
