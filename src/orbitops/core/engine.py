"""Background execution of scans and maneuver searches.

Detection passes and optimizer searches run on a thread pool and hand back a
:class:`TaskHandle`. Every task works on the :class:`CatalogSnapshot` that
was current when it was submitted; a catalog refresh swaps the snapshot
reference and reschedules any in-flight scan instead of touching it. The
engine lock only guards reference swaps and is never held while work runs.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Generic, Iterable, Sequence, TypeVar

from orbitops.config import EngineSettings
from orbitops.core.catalog import CatalogSnapshot, hours_since_epoch
from orbitops.core.debris import DebrisConfig, DebrisModel, is_debris
from orbitops.core.elements import OrbitalElements
from orbitops.core.errors import InvalidOrbitError, OperationCancelled
from orbitops.core.maneuver import ManeuverResult, ManeuverSimulator, SpacecraftParams
from orbitops.core.optimizer import ManeuverOptimizer, OptimizeManeuverResult
from orbitops.core.probability import PositionCovariance
from orbitops.core.propagation import StateArena, propagate
from orbitops.core.replay import ReplayController, ReplayState
from orbitops.core.risk import RiskAssessor, rank_events
from orbitops.core.screening import ConjunctionDetector, ConjunctionEvent, ScanReport

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation flag checked by long-running work."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason = "cancelled"

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self.reason)


class TaskHandle(Generic[T]):
    """Future-like handle of a background task.

    ``result()`` raises :class:`OperationCancelled` for cancelled or
    superseded work, even if the task got to finish.
    """

    def __init__(self, future: Future, token: CancellationToken, description: str) -> None:
        self._future = future
        self.token = token
        self.description = description

    def cancel(self, reason: str = "cancelled") -> None:
        self.token.cancel(reason)
        self._future.cancel()

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: float | None = None) -> T:
        try:
            value = self._future.result(timeout)
        except OperationCancelled:
            raise
        except CancelledError as exc:
            raise OperationCancelled(f"{self.description}: {self.token.reason}") from exc
        if self.token.cancelled:
            raise OperationCancelled(f"{self.description}: {self.token.reason}")
        return value

    def add_done_callback(self, fn: Callable[[TaskHandle[T]], None]) -> None:
        self._future.add_done_callback(lambda _: fn(self))


@dataclass(frozen=True)
class _ScanRequest:
    horizon_start: float
    horizon_end: float
    screening_radius_km: float
    handle: TaskHandle[ScanReport]


class ConjunctionEngine:
    """Owns the catalog snapshot and runs scans and maneuver searches.

    Args:
        settings: Engine configuration (defaults from the constants module).
        catalog: Initial elements.
        on_events: Called with every fresh scan report from a worker thread.
            Reports of cancelled or superseded scans are never delivered.
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        catalog: Iterable[OrbitalElements] = (),
        on_events: Callable[[ScanReport], None] | None = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.settings.validate()
        s = self.settings
        self.detector = ConjunctionDetector(
            step_s=s.screening_step_s,
            tolerance_s=s.tca_tolerance_s,
            max_iterations=s.max_refine_iterations,
            mode=s.propagation_mode,
            shell_prefilter=s.shell_prefilter,
        )
        self.assessor = RiskAssessor(
            mc_samples=s.mc_samples,
            seed=s.mc_seed,
            covariance_method=s.covariance_method,
            proxy_sigma_km=s.proxy_sigma_km,
        )
        self.on_events = on_events
        self._executor = ThreadPoolExecutor(max_workers=s.max_workers, thread_name_prefix="orbitops")
        self._lock = threading.Lock()
        self._catalog = CatalogSnapshot.from_elements(catalog)
        self._scan: _ScanRequest | None = None
        self._latest_report: ScanReport | None = None
        self._published: CancellationToken | None = None
        self._optimizations: dict[int, TaskHandle[OptimizeManeuverResult]] = {}
        self.replay = ReplayController(s.record_interval_s, s.max_snapshots)
        self._closed = False

    @property
    def catalog(self) -> CatalogSnapshot:
        return self._catalog

    @property
    def latest_report(self) -> ScanReport | None:
        return self._latest_report

    @property
    def latest_events(self) -> list[ConjunctionEvent]:
        """Ranked events of the most recent scan that was not superseded."""
        report = self._latest_report
        return list(report.events) if report is not None else []

    def refresh_catalog(self, elements: Iterable[OrbitalElements], refreshed_at: float | None = None) -> CatalogSnapshot:
        """Replace the catalog; an in-flight scan is superseded by a new one.

        A scan counts as in flight until it has published its report, so a
        scan that finishes on the old catalog after the swap is always
        replaced.
        """
        with self._lock:
            self._check_open()
            snapshot = self._catalog.replace(elements, refreshed_at)
            self._catalog = snapshot
            pending = self._scan
            prior = None
            if (pending is not None and not pending.handle.cancelled
                    and self._published is not pending.handle.token):
                prior = self._start_scan(pending.horizon_start, pending.horizon_end, pending.screening_radius_km)
        logger.info("Catalog refreshed: version %d, %d objects", snapshot.version, len(snapshot))

        if prior is not None:
            logger.info("Rescheduled in-flight scan for catalog version %d", snapshot.version)
            self._supersede(prior, snapshot)
        return snapshot

    def submit_scan(
        self,
        horizon_start: float,
        horizon_end: float,
        screening_radius_km: float | None = None,
    ) -> TaskHandle[ScanReport]:
        """Start a detection pass over the current catalog snapshot.

        The pass detects, assesses and ranks conjunctions. A newer scan or a
        catalog refresh supersedes it.
        """
        radius = self.settings.screening_radius_km if screening_radius_km is None else screening_radius_km
        with self._lock:
            self._check_open()
            prior = self._start_scan(horizon_start, horizon_end, radius)
            request, snapshot = self._scan, self._catalog
        self._supersede(prior, snapshot)
        return request.handle

    def _start_scan(self, horizon_start: float, horizon_end: float, radius_km: float) -> _ScanRequest | None:
        """Submit a scan of the current snapshot; caller holds the lock. Returns the replaced request."""
        snapshot = self._catalog
        token = CancellationToken()
        future = self._executor.submit(self._run_scan, snapshot, horizon_start, horizon_end, radius_km, token)
        handle: TaskHandle[ScanReport] = TaskHandle(future, token, f"scan of catalog v{snapshot.version}")
        prior = self._scan
        self._scan = _ScanRequest(horizon_start, horizon_end, radius_km, handle)
        logger.debug("Submitted scan of catalog version %d", snapshot.version)
        return prior

    def _supersede(self, prior: _ScanRequest | None, snapshot: CatalogSnapshot) -> None:
        if prior is not None and not prior.handle.done():
            prior.handle.cancel(f"superseded by a scan of catalog version {snapshot.version}")

    def _run_scan(
        self,
        snapshot: CatalogSnapshot,
        horizon_start: float,
        horizon_end: float,
        radius_km: float,
        token: CancellationToken,
    ) -> ScanReport:
        token.raise_if_cancelled()
        report = self.detector.scan(snapshot, horizon_start, horizon_end, radius_km,
                                    should_stop=token.raise_if_cancelled)
        assessed = []
        for event in report.events:
            token.raise_if_cancelled()
            assessed.append(self._assess(snapshot, event))
        report.events = rank_events(assessed)

        with self._lock:
            if token.cancelled or snapshot.version != self._catalog.version:
                token.cancel(f"catalog version {snapshot.version} is stale")
                raise OperationCancelled(f"Discarding scan of stale catalog version {snapshot.version}")
            self._latest_report = report
            self._published = token
        logger.info("Scan of catalog version %d complete: %d events", snapshot.version, len(report.events))
        if self.on_events is not None:
            self.on_events(report)
        return report

    def _assess(self, snapshot: CatalogSnapshot, event: ConjunctionEvent) -> ConjunctionEvent:
        hbr = self.settings.hard_body_radius_km
        if not self.settings.estimate_covariance:
            return self.assessor.assess_event(event, hbr)
        a, b = snapshot.get(event.primary_id), snapshot.get(event.secondary_id)
        try:
            states = (propagate(a, event.tca, self.detector.mode), propagate(b, event.tca, self.detector.mode))
        except InvalidOrbitError as exc:
            logger.warning("Falling back to closed-form Pc for %d/%d: %s", a.norad_id, b.norad_id, exc)
            return self.assessor.assess_event(event, hbr)
        covariance = PositionCovariance.estimated(
            hours_since_epoch(a, event.tca),
            hours_since_epoch(b, event.tca),
            primary_is_debris=is_debris(a),
            secondary_is_debris=is_debris(b),
        )
        return self.assessor.assess_event(event, hbr, covariance, states)

    def record_snapshot(self, t: float) -> ReplayState:
        """Propagate the current catalog to ``t`` and hand the positions to the replay recorder."""
        snapshot = self._catalog
        arena = StateArena(snapshot.ids)
        arena.fill(list(snapshot), t, self.settings.propagation_mode)
        return self.replay.record_arena(arena)

    def debris_model(self, t: float | None = None, config: DebrisConfig | None = None) -> DebrisModel:
        """Debris population of the current catalog, with positions at ``t`` when given."""
        snapshot = self._catalog
        model = DebrisModel(config)
        model.load(snapshot)
        if t is not None:
            arena = StateArena(snapshot.ids)
            arena.fill(list(snapshot), t, self.settings.propagation_mode)
            model.update_positions(arena)
        return model

    def simulator(self) -> ManeuverSimulator:
        return ManeuverSimulator(self._catalog, self.settings.propagation_mode, self.settings.trajectory_samples)

    def simulate(
        self,
        object_id: int,
        delta_v_ric: Sequence[float],
        spacecraft: SpacecraftParams,
        event: ConjunctionEvent,
        burn_time: float | None = None,
    ) -> ManeuverResult:
        """Synchronous one-shot maneuver evaluation on the current catalog."""
        return self.simulator().simulate(object_id, delta_v_ric, spacecraft, event, burn_time)

    def submit_optimization(
        self,
        object_id: int,
        threat_id: int,
        target_miss_distance_km: float,
        time_to_tca_s: float,
        spacecraft: SpacecraftParams,
        event: ConjunctionEvent | None = None,
        now: float | None = None,
    ) -> TaskHandle[OptimizeManeuverResult]:
        """Start a maneuver search; a pending search for the same object is cancelled."""
        s = self.settings
        optimizer = ManeuverOptimizer(
            self.simulator(),
            probe_delta_v_km_s=s.probe_delta_v_km_s,
            tolerance_km=s.miss_tolerance_km,
            max_iterations=s.max_line_search_iterations,
            max_alternatives=s.max_alternatives,
            detector=self.detector,
        )
        token = CancellationToken()
        with self._lock:
            self._check_open()
            prior = self._optimizations.get(object_id)
            future = self._executor.submit(
                optimizer.optimize, object_id, threat_id, target_miss_distance_km, time_to_tca_s,
                spacecraft, event, now, token,
            )
            handle: TaskHandle[OptimizeManeuverResult] = TaskHandle(
                future, token, f"maneuver search for {object_id} vs {threat_id}")
            self._optimizations[object_id] = handle
        if prior is not None and not prior.done():
            prior.cancel(f"superseded by a new request for object {object_id}")
            logger.info("Cancelled previous maneuver search for object %d", object_id)
        handle.add_done_callback(lambda h: self._forget_optimization(object_id, h))
        return handle

    def _forget_optimization(self, object_id: int, handle: TaskHandle) -> None:
        with self._lock:
            if self._optimizations.get(object_id) is handle:
                del self._optimizations[object_id]

    def cancel_optimization(self, object_id: int) -> bool:
        with self._lock:
            handle = self._optimizations.get(object_id)
        if handle is None or handle.done():
            return False
        handle.cancel("cancelled by caller")
        return True

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("ConjunctionEngine has been shut down")

    def shutdown(self, wait: bool = True) -> None:
        """Cancel pending work and stop the worker pool."""
        with self._lock:
            self._closed = True
            handles: list[TaskHandle] = list(self._optimizations.values())
            if self._scan is not None:
                handles.append(self._scan.handle)
        for handle in handles:
            if not handle.done():
                handle.cancel("engine shut down")
        self._executor.shutdown(wait=wait, cancel_futures=True)

    def __enter__(self) -> ConjunctionEngine:
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()
