"""Minimum-fuel search for collision-avoidance burns.

The optimizer estimates how the TCA miss vector responds to a burn along each
RIC axis, derives a handful of candidate burn directions from that
sensitivity, and line-searches each direction for the smallest magnitude
that opens the miss distance to the target. The cheapest candidate becomes the
recommendation; the rest are offered as alternatives.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

import numpy as np
from numpy.typing import NDArray

from orbitops.core.errors import ErrorKind
from orbitops.core.maneuver import (
    BurnGeometry,
    ManeuverAlternative,
    ManeuverResult,
    ManeuverSimulator,
    SpacecraftParams,
)
from orbitops.core.screening import ConjunctionDetector, ConjunctionEvent
from orbitops.utils.constants import (
    DEFAULT_MAX_ALTERNATIVES,
    DEFAULT_MAX_LINE_SEARCH_ITERATIONS,
    DEFAULT_MISS_TOLERANCE_KM,
    DEFAULT_PROBE_DELTA_V_KM_S,
)

if TYPE_CHECKING:
    from orbitops.core.engine import CancellationToken

logger = logging.getLogger(__name__)

_AXES = ("radial", "in-track", "cross-track")


@dataclass(frozen=True)
class OptimizeManeuverResult(ManeuverResult):
    """A :class:`ManeuverResult` with the search bookkeeping.

    Attributes:
        target_miss_distance_km: Separation the search aimed for.
        best_attainable_miss_distance_km: Largest separation any affordable
            evaluated burn reached.
        evaluations: Miss-distance evaluations spent.
        converged: True when the recommended magnitude was pinned within
            the miss-distance tolerance.
    """

    target_miss_distance_km: float = 0.0
    best_attainable_miss_distance_km: float = 0.0
    evaluations: int = 0
    converged: bool = False


@dataclass
class _Candidate:
    description: str
    direction: NDArray[np.float64]
    magnitude: float = 0.0
    miss_distance_km: float = 0.0
    reached: bool = False
    converged: bool = False

    @property
    def delta_v(self) -> tuple[float, float, float]:
        dv = self.direction * self.magnitude
        return float(dv[0]), float(dv[1]), float(dv[2])


class ManeuverOptimizer:
    """Searches delta-V space for the cheapest burn reaching a target miss distance.

    Args:
        simulator: Evaluates burns; its catalog supplies both objects.
        probe_delta_v_km_s: Finite-difference step for the sensitivity estimate.
        tolerance_km: Accepted overshoot of the target miss distance.
        max_iterations: Evaluations allowed per line search.
        max_alternatives: Upper bound on alternatives in the result.
        detector: Used to locate the TCA when no event is supplied.
    """

    def __init__(
        self,
        simulator: ManeuverSimulator,
        probe_delta_v_km_s: float = DEFAULT_PROBE_DELTA_V_KM_S,
        tolerance_km: float = DEFAULT_MISS_TOLERANCE_KM,
        max_iterations: int = DEFAULT_MAX_LINE_SEARCH_ITERATIONS,
        max_alternatives: int = DEFAULT_MAX_ALTERNATIVES,
        detector: ConjunctionDetector | None = None,
    ) -> None:
        if probe_delta_v_km_s <= 0 or tolerance_km <= 0:
            raise ValueError("probe_delta_v_km_s and tolerance_km must be positive")
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")
        self.simulator = simulator
        self.probe = probe_delta_v_km_s
        self.tolerance_km = tolerance_km
        self.max_iterations = max_iterations
        self.max_alternatives = max(0, max_alternatives)
        self.detector = detector or ConjunctionDetector(mode=simulator.mode)

    def optimize(
        self,
        object_id: int,
        threat_id: int,
        target_miss_distance_km: float,
        time_to_tca_s: float,
        spacecraft: SpacecraftParams,
        event: ConjunctionEvent | None = None,
        now: float | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> OptimizeManeuverResult:
        """Find the minimum-fuel burn for ``object_id`` that clears ``threat_id``.

        The burn happens at ``now`` (default: current time). When ``event``
        is omitted the TCA is refined near ``now + time_to_tca_s``.

        Raises:
            ValueError: If the target is not positive, the TCA is in the
                past or the event does not pair the two objects.
            OperationCancelled: If ``cancel_token`` is cancelled mid-search.
        """
        if not target_miss_distance_km > 0:
            raise ValueError(f"target_miss_distance_km must be positive, got {target_miss_distance_km}")
        now = time.time() if now is None else now
        if event is None:
            if time_to_tca_s < 0:
                raise ValueError(f"time_to_tca_s must not be negative, got {time_to_tca_s}")
            event = self.detector.refine_pair(
                self.simulator.catalog.get(object_id),
                self.simulator.catalog.get(threat_id),
                now + time_to_tca_s,
            )
        elif event.other(object_id) != threat_id:
            raise ValueError(f"Event does not pair objects {object_id} and {threat_id}")

        geometry = self.simulator.geometry(object_id, threat_id, event.tca, now)
        search = _Search(geometry, cancel_token)
        baseline = geometry.baseline_miss_distance_km
        logger.info("Optimizing burn for %d vs %d: baseline %.4f km, target %.4f km, TCA in %.0f s",
                    object_id, threat_id, baseline, target_miss_distance_km, event.tca - now)

        if baseline >= target_miss_distance_km:
            result = self.simulator.evaluate(geometry, (0.0, 0.0, 0.0), spacecraft)
            return self._finish(result, target_miss_distance_km, baseline, search.evaluations, True,
                                message="Baseline miss distance already meets the target; no burn needed")

        max_dv = spacecraft.max_delta_v_km_s * (1.0 - 1e-9)
        jacobian = self._jacobian(search)
        candidates = self._candidates(jacobian, geometry.baseline_miss_vector_km)
        for candidate in candidates:
            self._line_search(search, candidate, jacobian, target_miss_distance_km, max_dv)
            logger.debug("Candidate %s: %.6f km/s -> %.4f km (reached=%s converged=%s)",
                         candidate.description, candidate.magnitude, candidate.miss_distance_km,
                         candidate.reached, candidate.converged)

        reached = sorted((c for c in candidates if c.reached), key=lambda c: c.magnitude)
        best_miss = max(search.best_miss, baseline)
        converged = [c for c in reached if c.converged]

        if converged:
            primary = converged[0]
            alternatives = tuple(
                ManeuverAlternative(
                    delta_v_ric_km_s=c.delta_v,
                    burn_time=now,
                    new_miss_distance_km=c.miss_distance_km,
                    fuel_cost_kg=spacecraft.fuel_required(c.magnitude),
                    description=c.description,
                )
                for c in reached if c is not primary
            )[: self.max_alternatives]
            result = self.simulator.evaluate(geometry, primary.delta_v, spacecraft, alternatives)
            search.evaluations += 1
            if result.success and result.new_miss_distance_km >= target_miss_distance_km:
                logger.info("Recommended %s burn: %.3f m/s, %.3f kg fuel, miss %.4f km",
                            primary.description, result.total_delta_v_km_s * 1000, result.fuel_cost_kg,
                            result.new_miss_distance_km)
                return self._finish(result, target_miss_distance_km, best_miss, search.evaluations, True,
                                    message=f"Recommended {primary.description} burn: {result.message}")
            logger.warning("Verification of %s burn failed: %s", primary.description, result.message)

        if reached:
            fallback = reached[0]
            result = self.simulator.evaluate(geometry, fallback.delta_v, spacecraft)
            message = (f"Line search did not converge within {self.max_iterations} evaluations; "
                       f"best attainable miss distance {best_miss:.4f} km")
            return self._failure(result, ErrorKind.OPTIMIZATION_NOT_CONVERGED, message,
                                 target_miss_distance_km, best_miss, search.evaluations)

        result = self.simulator.evaluate(geometry, search.best_delta_v, spacecraft)
        message = (f"No burn within the {spacecraft.fuel_mass_kg:.3f} kg fuel budget reaches "
                   f"{target_miss_distance_km:.4f} km; best attainable miss distance {best_miss:.4f} km")
        return self._failure(result, ErrorKind.MANEUVER_INFEASIBLE, message,
                             target_miss_distance_km, best_miss, search.evaluations)

    def _jacobian(self, search: _Search) -> NDArray[np.float64]:
        """Central-difference sensitivity of the miss vector to each RIC axis (km per km/s)."""
        jacobian = np.zeros((3, 3))
        for axis in range(3):
            step = np.zeros(3)
            step[axis] = self.probe
            plus = search.miss_vector(step)
            minus = search.miss_vector(-step)
            jacobian[:, axis] = (plus - minus) / (2.0 * self.probe)
        return jacobian

    def _candidates(self, jacobian: NDArray[np.float64], miss: NDArray[np.float64]) -> list[_Candidate]:
        miss_norm = float(np.linalg.norm(miss))
        if miss_norm > 1e-9:
            m_hat = miss / miss_norm
            combined = jacobian.T @ m_hat
        else:
            # no separation direction yet: the axis combination with most leverage
            _, _, vt = np.linalg.svd(jacobian)
            m_hat = None
            combined = vt[0]
        candidates = []
        norm = float(np.linalg.norm(combined))
        if norm > 1e-12:
            candidates.append(_Candidate("combined", combined / norm))
        for axis, name in enumerate(_AXES):
            direction = np.zeros(3)
            sign = 1.0
            if m_hat is not None and float(jacobian[:, axis] @ m_hat) < 0:
                sign = -1.0
            direction[axis] = sign
            candidates.append(_Candidate(name, direction))
        return candidates

    def _line_search(
        self,
        search: _Search,
        candidate: _Candidate,
        jacobian: NDArray[np.float64],
        target: float,
        max_dv: float,
    ) -> None:
        """Bisection on burn magnitude along ``candidate.direction``.

        Keeps ``miss(lo) < target <= miss(hi)`` and stops once ``miss(hi)``
        is within the tolerance of the target.
        """
        if max_dv <= 0:
            return
        u = candidate.direction
        f = lambda s: search.miss_distance(s * u)  # noqa: E731

        # linearized magnitude: |m0 + s J u| = target
        m0 = search.geometry.baseline_miss_vector_km
        ju = jacobian @ u
        a, b, c = float(ju @ ju), 2.0 * float(m0 @ ju), float(m0 @ m0) - target * target
        disc = b * b - 4.0 * a * c
        estimate = (-b + math.sqrt(disc)) / (2.0 * a) if a > 1e-18 and disc >= 0 else 10.0 * self.probe
        hi = min(max(estimate, self.probe), max_dv)
        lo = 0.0

        iterations = 1
        f_hi = f(hi)
        while f_hi < target:
            if hi >= max_dv or iterations >= self.max_iterations:
                return
            lo, hi = hi, min(2.0 * hi, max_dv)
            f_hi = f(hi)
            iterations += 1

        candidate.reached = True
        candidate.magnitude, candidate.miss_distance_km = hi, f_hi
        while f_hi - target > self.tolerance_km and hi - lo > 1e-12:
            if iterations >= self.max_iterations:
                return
            mid = 0.5 * (lo + hi)
            f_mid = f(mid)
            iterations += 1
            if f_mid >= target:
                hi, f_hi = mid, f_mid
            else:
                lo = mid
        candidate.magnitude, candidate.miss_distance_km = hi, f_hi
        candidate.converged = True

    def _finish(
        self,
        result: ManeuverResult,
        target: float,
        best_miss: float,
        evaluations: int,
        converged: bool,
        message: str,
    ) -> OptimizeManeuverResult:
        return OptimizeManeuverResult(
            success=result.success,
            message=message,
            delta_v_ric_km_s=result.delta_v_ric_km_s,
            total_delta_v_km_s=result.total_delta_v_km_s,
            burn_time=result.burn_time,
            new_miss_distance_km=result.new_miss_distance_km,
            baseline_miss_distance_km=result.baseline_miss_distance_km,
            fuel_cost_kg=result.fuel_cost_kg,
            predicted_trajectory=result.predicted_trajectory,
            alternatives=result.alternatives,
            error=result.error,
            target_miss_distance_km=target,
            best_attainable_miss_distance_km=best_miss,
            evaluations=evaluations,
            converged=converged,
        )

    def _failure(
        self,
        result: ManeuverResult,
        error: ErrorKind,
        message: str,
        target: float,
        best_miss: float,
        evaluations: int,
    ) -> OptimizeManeuverResult:
        logger.warning("Maneuver optimization failed (%s): %s", error.value, message)
        finished = self._finish(result, target, best_miss, evaluations, False, message)
        return dataclasses.replace(finished, success=False, error=error)


class _Search:
    """Evaluation counter and cancellation checkpoint around a burn geometry."""

    def __init__(self, geometry: BurnGeometry, cancel_token: CancellationToken | None) -> None:
        self.geometry = geometry
        self._check: Callable[[], None] = cancel_token.raise_if_cancelled if cancel_token else lambda: None
        self.evaluations = 0
        self.best_miss = 0.0
        self.best_delta_v: tuple[float, float, float] = (0.0, 0.0, 0.0)

    def miss_vector(self, delta_v: NDArray[np.float64]) -> NDArray[np.float64]:
        self._check()
        self.evaluations += 1
        return self.geometry.miss_vector(delta_v)

    def miss_distance(self, delta_v: NDArray[np.float64]) -> float:
        miss = float(np.linalg.norm(self.miss_vector(delta_v)))
        if miss > self.best_miss:
            self.best_miss = miss
            self.best_delta_v = (float(delta_v[0]), float(delta_v[1]), float(delta_v[2]))
        return miss
