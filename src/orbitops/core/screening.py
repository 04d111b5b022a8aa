"""Conjunction screening: find close approaches between tracked objects."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Iterable

import numpy as np
from numpy.typing import NDArray

from orbitops.core.catalog import CatalogSnapshot
from orbitops.core.elements import OrbitalElements
from orbitops.core.errors import EmptyCatalogError, ErrorKind, InvalidOrbitError
from orbitops.core.kepler import semi_major_axis_km
from orbitops.core.propagation import PropagationMode, propagate, propagate_batch
from orbitops.utils.constants import (
    DEFAULT_MAX_REFINE_ITERATIONS,
    DEFAULT_SCREENING_RADIUS_KM,
    DEFAULT_SCREENING_STEP_S,
    DEFAULT_TCA_TOLERANCE_S,
    EARTH_RADIUS_KM as RE,
)

if TYPE_CHECKING:
    from orbitops.core.probability import MonteCarloStats
    from orbitops.core.risk import RiskTier

logger = logging.getLogger(__name__)

_GOLDEN = (math.sqrt(5.0) - 1.0) / 2.0
_MAX_LINEAR_STEPS = 4
_LINEAR_STEP_TOLERANCE_S = 1e-6


@dataclass(frozen=True)
class ConjunctionEvent:
    """A predicted close approach between two objects.

    Attributes:
        primary_id: NORAD id of the first object of the pair.
        secondary_id: NORAD id of the second object.
        primary_name: Name of the first object.
        secondary_name: Name of the second object.
        tca: Time of closest approach, Unix seconds.
        miss_distance_km: Separation at TCA in km.
        relative_velocity_km_s: |v_A - v_B| at TCA in km/s.
        collision_probability: Pc in [0, 1]; 0.0 until assessed.
        risk_tier: Tier assigned by the risk assessor, None until assessed.
        monte_carlo: Sampling statistics when Pc came from Monte-Carlo.
        low_confidence: True when TCA refinement did not converge and the
            coarse grid estimate is reported instead.
    """

    primary_id: int
    secondary_id: int
    primary_name: str
    secondary_name: str
    tca: float
    miss_distance_km: float
    relative_velocity_km_s: float
    collision_probability: float = 0.0
    risk_tier: RiskTier | None = None
    monte_carlo: MonteCarloStats | None = None
    low_confidence: bool = False

    @property
    def tca_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.tca, tz=timezone.utc)

    @property
    def error(self) -> ErrorKind | None:
        return ErrorKind.SCAN_INCOMPLETE if self.low_confidence else None

    def involves(self, object_id: int) -> bool:
        return object_id in (self.primary_id, self.secondary_id)

    def other(self, object_id: int) -> int:
        """Id of the other object of the pair."""
        if object_id == self.primary_id:
            return self.secondary_id
        if object_id == self.secondary_id:
            return self.primary_id
        raise ValueError(f"Object {object_id} is not part of this conjunction")


@dataclass
class ScanReport:
    """Outcome of one detection pass.

    Attributes:
        events: Events sorted by TCA.
        horizon_start: Start of the screened horizon (Unix seconds).
        horizon_end: End of the screened horizon (Unix seconds).
        catalog_version: Version of the catalog snapshot that was scanned.
        excluded_ids: Objects skipped because their orbit was invalid.
        pairs_screened: Pairs that survived the shell prefilter.
        candidates_refined: Local minima passed to refinement.
    """

    events: list[ConjunctionEvent]
    horizon_start: float
    horizon_end: float
    catalog_version: int = 0
    excluded_ids: list[int] = field(default_factory=list)
    pairs_screened: int = 0
    candidates_refined: int = 0

    @property
    def low_confidence_count(self) -> int:
        return sum(1 for e in self.events if e.low_confidence)


def _apogee_perigee(elements: OrbitalElements) -> tuple[float, float]:
    """Perigee and apogee altitude in km from mean elements."""
    a = semi_major_axis_km(elements.mean_motion_rev_per_day)
    return a * (1 - elements.eccentricity) - RE, a * (1 + elements.eccentricity) - RE


def _shells_overlap(a: tuple[float, float], b: tuple[float, float], threshold_km: float) -> bool:
    return a[0] - threshold_km <= b[1] and a[1] + threshold_km >= b[0]


class ConjunctionDetector:
    """Scans object pairs over a horizon for local minima of separation.

    Args:
        step_s: Coarse sampling step of the separation function.
        tolerance_s: Bracket width at which TCA refinement stops.
        max_iterations: Golden-section iterations before a candidate is
            reported as a low-confidence coarse estimate.
        mode: Propagator fidelity.
        shell_prefilter: Skip pairs whose altitude bands cannot meet.
    """

    def __init__(
        self,
        step_s: float = DEFAULT_SCREENING_STEP_S,
        tolerance_s: float = DEFAULT_TCA_TOLERANCE_S,
        max_iterations: int = DEFAULT_MAX_REFINE_ITERATIONS,
        mode: PropagationMode = PropagationMode.SGP4,
        shell_prefilter: bool = True,
    ) -> None:
        if step_s <= 0:
            raise ValueError(f"step_s must be positive, got {step_s}")
        if tolerance_s <= 0:
            raise ValueError(f"tolerance_s must be positive, got {tolerance_s}")
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")
        self.step_s = step_s
        self.tolerance_s = tolerance_s
        self.max_iterations = max_iterations
        self.mode = mode
        self.shell_prefilter = shell_prefilter

    def detect(
        self,
        catalog: CatalogSnapshot | Iterable[OrbitalElements],
        horizon_start: float,
        horizon_end: float,
        screening_radius_km: float = DEFAULT_SCREENING_RADIUS_KM,
    ) -> list[ConjunctionEvent]:
        """Conjunctions within the horizon, sorted by TCA."""
        return self.scan(catalog, horizon_start, horizon_end, screening_radius_km).events

    def scan(
        self,
        catalog: CatalogSnapshot | Iterable[OrbitalElements],
        horizon_start: float,
        horizon_end: float,
        screening_radius_km: float = DEFAULT_SCREENING_RADIUS_KM,
        should_stop: Callable[[], None] | None = None,
    ) -> ScanReport:
        """Run one detection pass and report what was screened.

        Args:
            catalog: Snapshot (or iterable of elements) to screen.
            horizon_start: Unix seconds.
            horizon_end: Unix seconds, must be after ``horizon_start``.
            screening_radius_km: Refined minima above this are discarded.
            should_stop: Called between pairs; raising from it aborts the pass.

        Raises:
            EmptyCatalogError: If the catalog has no objects.
            ValueError: If the horizon or radius is invalid.
        """
        if not isinstance(catalog, CatalogSnapshot):
            catalog = CatalogSnapshot.from_elements(catalog)
        if len(catalog) == 0:
            raise EmptyCatalogError("Cannot scan an empty catalog")
        if not (math.isfinite(horizon_start) and math.isfinite(horizon_end)) or horizon_end <= horizon_start:
            raise ValueError(f"Invalid horizon [{horizon_start}, {horizon_end}]")
        if screening_radius_km <= 0:
            raise ValueError(f"screening_radius_km must be positive, got {screening_radius_km}")

        report = ScanReport(events=[], horizon_start=horizon_start, horizon_end=horizon_end,
                            catalog_version=catalog.version)
        if len(catalog) < 2:
            logger.info("scan: fewer than 2 objects, nothing to screen")
            return report

        objects = list(catalog.elements)
        times = self._time_grid(horizon_start, horizon_end)
        logger.info("scan: %d objects, %d samples at %.0fs, %.1fkm radius (%s)",
                    len(objects), len(times), self.step_s, screening_radius_km, self.mode.value)

        positions, velocities, valid = propagate_batch(objects, times, self.mode)
        report.excluded_ids = [objects[i].norad_id for i in np.where(~valid)[0]]
        live = [i for i in range(len(objects)) if valid[i]]
        shells = {i: _apogee_perigee(objects[i]) for i in live}

        for a_idx, i in enumerate(live):
            for j in live[a_idx + 1:]:
                if should_stop is not None:
                    should_stop()
                if self.shell_prefilter and not _shells_overlap(shells[i], shells[j], screening_radius_km):
                    continue
                report.pairs_screened += 1
                events, refined = self._screen_pair(
                    objects[i], objects[j], times,
                    positions[i] - positions[j], velocities[i] - velocities[j],
                    screening_radius_km,
                )
                report.candidates_refined += refined
                report.events.extend(events)

        report.events.sort(key=lambda e: (e.tca, e.primary_id, e.secondary_id))
        logger.info("scan: %d events from %d pairs (%d excluded objects, %d low-confidence)",
                    len(report.events), report.pairs_screened, len(report.excluded_ids),
                    report.low_confidence_count)
        return report

    def refine_pair(
        self,
        a: OrbitalElements,
        b: OrbitalElements,
        t_guess: float,
        window_s: float | None = None,
    ) -> ConjunctionEvent:
        """Closest approach of one pair near a guessed time.

        Samples ``t_guess ± window_s`` (default: one coarse step) on the
        detector grid and refines the deepest sample.
        """
        window_s = self.step_s if window_s is None else window_s
        times = self._time_grid(t_guess - window_s, t_guess + window_s)
        pos, vel, valid = propagate_batch([a, b], times, self.mode)
        if not valid[0]:
            raise InvalidOrbitError(a.norad_id, "propagation failed near TCA guess")
        if not valid[1]:
            raise InvalidOrbitError(b.norad_id, "propagation failed near TCA guess")
        d = np.linalg.norm(pos[0] - pos[1], axis=1)
        k = int(np.argmin(d))
        lo = times[max(k - 1, 0)]
        hi = times[min(k + 1, len(times) - 1)]
        v_coarse = float(np.linalg.norm(vel[0, k] - vel[1, k]))
        return self._refine(a, b, lo, hi, times[k], float(d[k]), v_coarse)

    def _time_grid(self, start: float, end: float) -> NDArray[np.float64]:
        steps = int(math.floor((end - start) / self.step_s))
        times = start + np.arange(steps + 1) * self.step_s
        if times[-1] < end:
            times = np.append(times, end)
        return times

    def _screen_pair(
        self,
        a: OrbitalElements,
        b: OrbitalElements,
        times: NDArray[np.float64],
        rel_pos: NDArray[np.float64],
        rel_vel: NDArray[np.float64],
        radius_km: float,
    ) -> tuple[list[ConjunctionEvent], int]:
        d = np.linalg.norm(rel_pos, axis=1)
        diff = np.diff(d)
        last = len(d) - 1
        # (sample, bracket start, bracket end): interior samples where d(t) stops decreasing
        brackets = [(int(k), int(k) - 1, int(k) + 1)
                    for k in np.where((diff[:-1] < 0) & (diff[1:] >= 0))[0] + 1]
        # minima between an endpoint and its neighbour: closing at the start, opening at the end
        range_rate = np.einsum("ij,ij->i", rel_pos, rel_vel)
        if diff[0] > 0 and range_rate[0] < 0:
            brackets.insert(0, (0, 0, 1))
        if diff[-1] < 0 and range_rate[last] > 0:
            brackets.append((last, last - 1, last))
        if not brackets:
            return [], 0

        speed = np.linalg.norm(rel_vel, axis=1)
        brackets = [br for br in brackets
                    if d[br[0]] <= math.sqrt(radius_km ** 2 + (speed[br[0]] * self.step_s) ** 2)]

        minima: list[ConjunctionEvent] = []
        for k, k_lo, k_hi in brackets:
            event = self._refine(a, b, times[k_lo], times[k_hi], times[k], float(d[k]), float(speed[k]))
            # low-confidence estimates already passed the coarse bound and are kept
            if event.low_confidence or event.miss_distance_km <= radius_km:
                minima.append(event)
        return self._merge_close_minima(minima), len(brackets)

    def _merge_close_minima(self, minima: list[ConjunctionEvent]) -> list[ConjunctionEvent]:
        """Keep minima more than one coarse step apart; otherwise keep the deeper."""
        kept: list[ConjunctionEvent] = []
        for event in sorted(minima, key=lambda e: e.tca):
            if kept and event.tca - kept[-1].tca <= self.step_s:
                if event.miss_distance_km < kept[-1].miss_distance_km:
                    kept[-1] = event
                continue
            kept.append(event)
        return kept

    def _separation(self, a: OrbitalElements, b: OrbitalElements, t: float) -> float:
        sa = propagate(a, t, self.mode)
        sb = propagate(b, t, self.mode)
        return float(np.linalg.norm(sa.position_km - sb.position_km))

    def _closest_point(
        self,
        a: OrbitalElements,
        b: OrbitalElements,
        t: float,
        lo: float,
        hi: float,
    ) -> tuple[float, float, float]:
        """Polish a bracketed TCA assuming linear relative motion.

        Steps ``t <- t - (dr.dv)/|dv|^2`` clamped to ``[lo, hi]`` and returns
        ``(tca, miss_km, relative_speed_km_s)`` at the closest point visited.
        """
        sa, sb = propagate(a, t, self.mode), propagate(b, t, self.mode)
        best_t, best_a, best_b = t, sa, sb
        best_d = float(np.linalg.norm(sa.position_km - sb.position_km))
        for _ in range(_MAX_LINEAR_STEPS):
            dr = sa.position_km - sb.position_km
            dv = sa.velocity_km_s - sb.velocity_km_s
            vv = float(dv @ dv)
            if vv == 0.0:
                break
            t_next = min(max(t - float(dr @ dv) / vv, lo), hi)
            if abs(t_next - t) < _LINEAR_STEP_TOLERANCE_S:
                break
            t = t_next
            sa, sb = propagate(a, t, self.mode), propagate(b, t, self.mode)
            d = float(np.linalg.norm(sa.position_km - sb.position_km))
            if d < best_d:
                best_t, best_a, best_b, best_d = t, sa, sb, d
        rel_vel = float(np.linalg.norm(best_a.velocity_km_s - best_b.velocity_km_s))
        return best_t, best_d, rel_vel

    def _refine(
        self,
        a: OrbitalElements,
        b: OrbitalElements,
        lo: float,
        hi: float,
        t_coarse: float,
        d_coarse: float,
        v_coarse: float,
    ) -> ConjunctionEvent:
        """Golden-section search for the minimum of d(t) in [lo, hi].

        Falls back to the coarse sample, flagged low-confidence, when the
        bracket does not shrink below the tolerance within ``max_iterations``
        or a propagation inside the bracket fails.
        """
        tca, miss, rel_vel = t_coarse, d_coarse, v_coarse
        converged = False
        try:
            c = hi - _GOLDEN * (hi - lo)
            e = lo + _GOLDEN * (hi - lo)
            fc = self._separation(a, b, c)
            fe = self._separation(a, b, e)
            iterations = 0
            while hi - lo > self.tolerance_s and iterations < self.max_iterations:
                iterations += 1
                if fc < fe:
                    hi, e, fe = e, c, fc
                    c = hi - _GOLDEN * (hi - lo)
                    fc = self._separation(a, b, c)
                else:
                    lo, c, fc = c, e, fe
                    e = lo + _GOLDEN * (hi - lo)
                    fe = self._separation(a, b, e)
            if hi - lo <= self.tolerance_s:
                t_best = c if fc < fe else e
                tca, miss, rel_vel = self._closest_point(a, b, t_best, lo, hi)
                converged = True
        except InvalidOrbitError as exc:
            logger.warning("TCA refinement for %d/%d failed: %s", a.norad_id, b.norad_id, exc)

        if not converged:
            logger.warning("TCA refinement for %d/%d did not converge; using coarse estimate at %.1f",
                           a.norad_id, b.norad_id, t_coarse)
        else:
            logger.debug("Refined %d/%d: tca=%.3f miss=%.4f km vrel=%.3f km/s",
                         a.norad_id, b.norad_id, tca, miss, rel_vel)
        return ConjunctionEvent(
            primary_id=a.norad_id,
            secondary_id=b.norad_id,
            primary_name=a.name,
            secondary_name=b.name,
            tca=float(tca),
            miss_distance_km=miss,
            relative_velocity_km_s=rel_vel,
            low_confidence=not converged,
        )


def detect(
    catalog: CatalogSnapshot | Iterable[OrbitalElements],
    horizon_start: float,
    horizon_end: float,
    screening_radius_km: float = DEFAULT_SCREENING_RADIUS_KM,
    step_s: float = DEFAULT_SCREENING_STEP_S,
    tolerance_s: float = DEFAULT_TCA_TOLERANCE_S,
    mode: PropagationMode = PropagationMode.SGP4,
) -> list[ConjunctionEvent]:
    """Convenience wrapper around :meth:`ConjunctionDetector.detect`."""
    detector = ConjunctionDetector(step_s=step_s, tolerance_s=tolerance_s, mode=mode)
    return detector.detect(catalog, horizon_start, horizon_end, screening_radius_km)
