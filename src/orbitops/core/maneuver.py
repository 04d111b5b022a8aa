"""Collision-avoidance maneuver simulation.

A maneuver is an impulsive delta-V given in the Radial/In-track/Cross-track
(RIC) frame of the maneuvering object at burn time. The simulator applies it,
carries the perturbed object forward to the conjunction's TCA and reports the
new miss distance against the unperturbed threat, together with the fuel the
burn costs under the rocket equation.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Sequence

import numpy as np
from numpy.typing import NDArray

from orbitops.core.catalog import CatalogSnapshot
from orbitops.core.errors import ErrorKind
from orbitops.core.kepler import circular_velocity_km_s, kepler_propagate, orbital_period_s, ric_basis
from orbitops.core.propagation import PropagationMode, StateVector, propagate
from orbitops.core.screening import ConjunctionEvent
from orbitops.utils.constants import (
    DEFAULT_TRAJECTORY_SAMPLES,
    EARTH_MU_KM3_S2 as MU,
    EARTH_RADIUS_KM as RE,
    STANDARD_GRAVITY_M_S2 as G0,
)

logger = logging.getLogger(__name__)

Vector3 = tuple[float, float, float]
_ZERO: Vector3 = (0.0, 0.0, 0.0)


def fuel_required(delta_v_km_s: float, mass_kg: float, isp_s: float) -> float:
    """Propellant mass (kg) for a burn, by the Tsiolkovsky rocket equation.

    ``mass * (1 - exp(-dv / (Isp * g0)))`` with dv converted to m/s.
    """
    if delta_v_km_s == 0.0:
        return 0.0
    return mass_kg * (1.0 - math.exp(-abs(delta_v_km_s) * 1000.0 / (isp_s * G0)))


def delta_v_for_fuel(fuel_kg: float, mass_kg: float, isp_s: float) -> float:
    """Delta-V (km/s) bought by burning ``fuel_kg``; inverse of :func:`fuel_required`."""
    if not 0.0 <= fuel_kg < mass_kg:
        raise ValueError(f"fuel_kg must be in [0, {mass_kg}), got {fuel_kg}")
    return -isp_s * G0 * math.log(1.0 - fuel_kg / mass_kg) / 1000.0


@dataclass(frozen=True)
class SpacecraftParams:
    """Propulsion parameters of the maneuvering spacecraft.

    Attributes:
        mass_kg: Total mass at burn time (dry + propellant).
        isp_s: Specific impulse in seconds.
        max_thrust_n: Maximum thrust in newtons.
        fuel_mass_kg: Propellant available for this maneuver.
    """

    mass_kg: float = 1000.0
    isp_s: float = 300.0
    max_thrust_n: float = 100.0
    fuel_mass_kg: float = 50.0

    def __post_init__(self) -> None:
        for name in ("mass_kg", "isp_s", "max_thrust_n"):
            value = getattr(self, name)
            if not math.isfinite(value) or value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        if not math.isfinite(self.fuel_mass_kg) or not 0.0 <= self.fuel_mass_kg < self.mass_kg:
            raise ValueError(f"fuel_mass_kg must be in [0, mass_kg), got {self.fuel_mass_kg}")

    def fuel_required(self, delta_v_km_s: float) -> float:
        return fuel_required(delta_v_km_s, self.mass_kg, self.isp_s)

    def can_execute(self, delta_v_km_s: float) -> bool:
        return self.fuel_required(delta_v_km_s) <= self.fuel_mass_kg

    @property
    def max_delta_v_km_s(self) -> float:
        """Largest delta-V the available propellant can deliver."""
        return delta_v_for_fuel(self.fuel_mass_kg, self.mass_kg, self.isp_s)

    def burn_duration_s(self, delta_v_km_s: float) -> float:
        """Approximate burn time at full thrust (constant-mass estimate)."""
        return self.mass_kg * abs(delta_v_km_s) * 1000.0 / self.max_thrust_n


@dataclass(frozen=True)
class ManeuverAlternative:
    delta_v_ric_km_s: Vector3
    burn_time: float
    new_miss_distance_km: float
    fuel_cost_kg: float
    description: str

    @property
    def total_delta_v_km_s(self) -> float:
        return math.sqrt(sum(c * c for c in self.delta_v_ric_km_s))


@dataclass(frozen=True)
class ManeuverResult:
    """Outcome of a simulated or planned maneuver.

    Attributes:
        success: True when the burn is affordable with the available fuel.
        message: Human-readable summary, naming any shortfall.
        delta_v_ric_km_s: Burn in the RIC frame at burn time.
        total_delta_v_km_s: Magnitude of the burn (sum of burns for transfers).
        burn_time: Unix time of the (first) burn.
        new_miss_distance_km: Separation at TCA after the burn.
        baseline_miss_distance_km: Separation at TCA without the burn.
        fuel_cost_kg: Propellant used.
        predicted_trajectory: Perturbed states from burn time to TCA.
        alternatives: Other burns the caller may trade against.
        error: Failure category when ``success`` is False.
    """

    success: bool
    message: str
    delta_v_ric_km_s: Vector3
    total_delta_v_km_s: float
    burn_time: float
    new_miss_distance_km: float
    baseline_miss_distance_km: float
    fuel_cost_kg: float
    predicted_trajectory: tuple[StateVector, ...] = ()
    alternatives: tuple[ManeuverAlternative, ...] = ()
    error: ErrorKind | None = None


@dataclass(frozen=True)
class BurnGeometry:
    """States needed to evaluate any burn of one object against one threat.

    The perturbed TCA state is the SGP4 (or analytic) nominal state plus the
    two-body difference between the perturbed and unperturbed burn states,
    so a zero burn reproduces the nominal state exactly.
    """

    object_id: int
    threat_id: int
    burn_time: float
    tca: float
    burn_position_km: NDArray[np.float64]
    burn_velocity_km_s: NDArray[np.float64]
    ric: NDArray[np.float64]  # rows R, I, C
    nominal_at_tca: StateVector
    threat_at_tca: StateVector

    @property
    def baseline_miss_vector_km(self) -> NDArray[np.float64]:
        return self.nominal_at_tca.position_km - self.threat_at_tca.position_km

    @property
    def baseline_miss_distance_km(self) -> float:
        return float(np.linalg.norm(self.baseline_miss_vector_km))

    def offset(self, delta_v_ric: Sequence[float], t: float) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Position and velocity change at ``t`` caused by the burn."""
        dv = self.ric.T @ np.asarray(delta_v_ric, dtype=np.float64)
        dt = t - self.burn_time
        r_pert, v_pert = kepler_propagate(self.burn_position_km, self.burn_velocity_km_s + dv, dt)
        r_nom, v_nom = kepler_propagate(self.burn_position_km, self.burn_velocity_km_s, dt)
        return r_pert - r_nom, v_pert - v_nom

    def miss_vector(self, delta_v_ric: Sequence[float]) -> NDArray[np.float64]:
        """Primary minus threat position at TCA after the burn."""
        if not np.any(delta_v_ric):
            return self.baseline_miss_vector_km
        dr, _ = self.offset(delta_v_ric, self.tca)
        return self.baseline_miss_vector_km + dr

    def miss_distance(self, delta_v_ric: Sequence[float]) -> float:
        return float(np.linalg.norm(self.miss_vector(delta_v_ric)))


class ManeuverSimulator:
    """One-shot evaluation of an avoidance burn.

    Args:
        catalog: Snapshot the objects are looked up in.
        mode: Propagator used for the nominal trajectories.
        trajectory_samples: Number of states in ``predicted_trajectory``.
    """

    def __init__(
        self,
        catalog: CatalogSnapshot,
        mode: PropagationMode = PropagationMode.SGP4,
        trajectory_samples: int = DEFAULT_TRAJECTORY_SAMPLES,
    ) -> None:
        if trajectory_samples < 2:
            raise ValueError(f"trajectory_samples must be >= 2, got {trajectory_samples}")
        self.catalog = catalog
        self.mode = mode
        self.trajectory_samples = trajectory_samples

    def geometry(self, object_id: int, threat_id: int, tca: float, burn_time: float) -> BurnGeometry:
        """Propagate the nominal states a burn evaluation needs.

        Raises:
            ValueError: If the burn is after TCA.
            KeyError: If either object is not in the catalog.
            InvalidOrbitError: If either object cannot be propagated.
        """
        if burn_time > tca:
            raise ValueError(f"Burn time {burn_time:.1f} is after TCA {tca:.1f}")
        obj = self.catalog.get(object_id)
        threat = self.catalog.get(threat_id)
        at_burn = propagate(obj, burn_time, self.mode)
        return BurnGeometry(
            object_id=object_id,
            threat_id=threat_id,
            burn_time=burn_time,
            tca=tca,
            burn_position_km=at_burn.position_km,
            burn_velocity_km_s=at_burn.velocity_km_s,
            ric=ric_basis(at_burn.position_km, at_burn.velocity_km_s),
            nominal_at_tca=propagate(obj, tca, self.mode),
            threat_at_tca=propagate(threat, tca, self.mode),
        )

    def simulate(
        self,
        object_id: int,
        delta_v_ric: Sequence[float],
        spacecraft: SpacecraftParams,
        event: ConjunctionEvent,
        burn_time: float | None = None,
    ) -> ManeuverResult:
        """Apply a RIC delta-V to ``object_id`` and report the outcome at the event's TCA.

        Args:
            object_id: The maneuvering object; must be part of ``event``.
            delta_v_ric: ``(radial, in-track, cross-track)`` in km/s.
            spacecraft: Propulsion parameters for the fuel estimate.
            event: The conjunction being avoided.
            burn_time: Unix time of the burn (default: now).

        Raises:
            ValueError: If the object is not part of the event, the burn is
                after TCA or the delta-V is not a finite 3-vector.
        """
        dv = np.asarray(delta_v_ric, dtype=np.float64)
        if dv.shape != (3,) or not np.all(np.isfinite(dv)):
            raise ValueError(f"delta_v_ric must be a finite 3-vector, got {delta_v_ric!r}")
        threat_id = event.other(object_id)
        burn_time = time.time() if burn_time is None else burn_time
        geometry = self.geometry(object_id, threat_id, event.tca, burn_time)
        return self.evaluate(geometry, dv, spacecraft)

    def evaluate(
        self,
        geometry: BurnGeometry,
        delta_v_ric: Sequence[float],
        spacecraft: SpacecraftParams,
        alternatives: Sequence[ManeuverAlternative] = (),
        with_trajectory: bool = True,
    ) -> ManeuverResult:
        """Build the result for one burn on precomputed geometry."""
        dv = tuple(float(c) for c in delta_v_ric)
        total = math.sqrt(sum(c * c for c in dv))
        fuel = spacecraft.fuel_required(total)
        baseline = geometry.baseline_miss_distance_km
        new_miss = geometry.miss_distance(dv)

        if fuel <= spacecraft.fuel_mass_kg:
            success, error = True, None
            message = (f"Maneuver feasible: {total * 1000:.3f} m/s, {fuel:.3f} kg fuel, "
                       f"miss distance {baseline:.3f} -> {new_miss:.3f} km")
        else:
            success, error = False, ErrorKind.MANEUVER_INFEASIBLE
            message = (f"Insufficient fuel: burn needs {fuel:.3f} kg but only "
                       f"{spacecraft.fuel_mass_kg:.3f} kg available "
                       f"(short by {fuel - spacecraft.fuel_mass_kg:.3f} kg)")

        logger.debug("Simulated burn for %d: dv=%s km/s miss %.4f -> %.4f km, fuel %.3f kg",
                     geometry.object_id, dv, baseline, new_miss, fuel)
        return ManeuverResult(
            success=success,
            message=message,
            delta_v_ric_km_s=dv,
            total_delta_v_km_s=total,
            burn_time=geometry.burn_time,
            new_miss_distance_km=new_miss,
            baseline_miss_distance_km=baseline,
            fuel_cost_kg=fuel,
            predicted_trajectory=self._trajectory(geometry, dv) if with_trajectory else (),
            alternatives=tuple(alternatives),
            error=error,
        )

    def _trajectory(self, geometry: BurnGeometry, delta_v_ric: Vector3) -> tuple[StateVector, ...]:
        obj = self.catalog.get(geometry.object_id)
        times = np.linspace(geometry.burn_time, geometry.tca, self.trajectory_samples)
        states = []
        for t in times:
            nominal = propagate(obj, float(t), self.mode)
            if any(delta_v_ric):
                dr, dv = geometry.offset(delta_v_ric, float(t))
                nominal = StateVector(nominal.object_id, nominal.position_km + dr,
                                      nominal.velocity_km_s + dv, nominal.timestamp)
            states.append(nominal)
        return tuple(states)


def _transfer_result(
    name: str,
    delta_v_ric: Vector3,
    total_delta_v: float,
    spacecraft: SpacecraftParams,
    alternatives: tuple[ManeuverAlternative, ...] = (),
    burn_time: float = 0.0,
) -> ManeuverResult:
    fuel = spacecraft.fuel_required(total_delta_v)
    if fuel <= spacecraft.fuel_mass_kg:
        success, error, message = True, None, f"{name} feasible"
    else:
        success, error = False, ErrorKind.MANEUVER_INFEASIBLE
        message = f"Insufficient fuel for {name.lower()}: needs {fuel:.3f} kg, {spacecraft.fuel_mass_kg:.3f} kg available"
    return ManeuverResult(
        success=success,
        message=message,
        delta_v_ric_km_s=delta_v_ric,
        total_delta_v_km_s=total_delta_v,
        burn_time=burn_time,
        new_miss_distance_km=math.nan,
        baseline_miss_distance_km=math.nan,
        fuel_cost_kg=fuel,
        alternatives=alternatives,
        error=error,
    )


def hohmann_transfer(r1_km: float, r2_km: float, spacecraft: SpacecraftParams) -> ManeuverResult:
    """Two-burn Hohmann transfer between circular orbits of radius r1 and r2.

    ``burn_time`` of the result is the time of the second burn relative to
    the first (half the transfer period, seconds). The individual burns are
    listed as alternatives.
    """
    if r1_km <= RE or r2_km <= RE:
        raise ValueError("Orbit radii must be above Earth's surface")
    a_transfer = (r1_km + r2_km) / 2.0
    v1 = circular_velocity_km_s(r1_km)
    v2 = circular_velocity_km_s(r2_km)
    v_perigee = math.sqrt(2.0 * MU * (1.0 / r1_km - 1.0 / (2.0 * a_transfer)))
    v_apogee = math.sqrt(2.0 * MU * (1.0 / r2_km - 1.0 / (2.0 * a_transfer)))

    # signed along the velocity: positive raises, negative lowers
    dv1 = v_perigee - v1
    dv2 = v2 - v_apogee
    half_period = orbital_period_s(a_transfer) / 2.0
    burns = (
        ManeuverAlternative((0.0, dv1, 0.0), 0.0, math.nan, spacecraft.fuel_required(dv1), "First burn (departure)"),
        ManeuverAlternative((0.0, dv2, 0.0), half_period, math.nan, spacecraft.fuel_required(dv2),
                            "Second burn (arrival)"),
    )
    return _transfer_result("Hohmann transfer", (0.0, dv1, 0.0), abs(dv1) + abs(dv2), spacecraft, burns, half_period)


def plane_change(velocity_km_s: float, inclination_change_rad: float, spacecraft: SpacecraftParams) -> ManeuverResult:
    """Single cross-track burn at a node: ``dv = 2 v sin(di / 2)``."""
    dv = 2.0 * velocity_km_s * math.sin(inclination_change_rad / 2.0)
    return _transfer_result("Plane change", (0.0, 0.0, dv), abs(dv), spacecraft)


def phasing(altitude_km: float, phase_angle_rad: float, spacecraft: SpacecraftParams) -> ManeuverResult:
    """Enter and leave a phasing orbit to shift the along-track position.

    ``burn_time`` of the result is the phasing orbit period in seconds.
    """
    r = RE + altitude_km
    period = orbital_period_s(r)
    target_period = period * (1.0 - phase_angle_rad / (2.0 * math.pi))
    if target_period <= 0:
        raise ValueError(f"Phase angle {phase_angle_rad} rad cannot be absorbed in one orbit")
    a_phase = (MU * (target_period / (2.0 * math.pi)) ** 2) ** (1.0 / 3.0)
    v_circ = circular_velocity_km_s(r)
    v_phase = math.sqrt(2.0 * MU * (1.0 / r - 1.0 / (2.0 * a_phase)))
    single = v_phase - v_circ
    return _transfer_result("Phasing maneuver", (0.0, single, 0.0), 2.0 * abs(single), spacecraft,
                            burn_time=target_period)
