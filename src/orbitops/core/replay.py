"""Recording and playback of propagated catalog snapshots.

All state changes go through :meth:`ReplayController.transition`, a pure
function from ``(state, command, value)`` to the next :class:`ReplayState`.
The controller serializes calls to it and notifies listeners; the
:class:`ReplayTicker` drives playback from a fixed-interval thread.
"""

from __future__ import annotations

import bisect
import dataclasses
import logging
import math
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Iterator

import numpy as np
from numpy.typing import NDArray

from orbitops.core.errors import InvalidTransitionError
from orbitops.core.propagation import StateArena
from orbitops.utils.constants import (
    DEFAULT_MAX_SNAPSHOTS,
    DEFAULT_RECORD_INTERVAL_S,
    DEFAULT_TICK_INTERVAL_S,
    MAX_PLAYBACK_SPEED,
    MIN_PLAYBACK_SPEED,
)

logger = logging.getLogger(__name__)

# dead prefix length that triggers compaction of a snapshot store
_COMPACT_MIN = 1024


class ReplayMode(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PLAYING = "playing"
    PAUSED = "paused"
    SEEKING = "seeking"


class ReplayCommand(Enum):
    START_RECORDING = "start_recording"
    RECORD = "record"
    STOP_RECORDING = "stop_recording"
    PLAY = "play"
    PAUSE = "pause"
    STOP = "stop"
    SEEK = "seek"
    SET_SPEED = "set_speed"
    TICK = "tick"
    RESET = "reset"


@dataclass(frozen=True, eq=False)
class ReplaySnapshot:
    """Positions of the catalog at one instant, packed as float32.

    Attributes:
        timestamp: Unix seconds.
        object_ids: NORAD ids, one per row of ``positions_km``.
        positions_km: Array of shape (n, 3).
    """

    timestamp: float
    object_ids: tuple[int, ...]
    positions_km: NDArray[np.float32]

    @classmethod
    def from_arena(cls, arena: StateArena) -> ReplaySnapshot:
        """Pack the valid rows of a filled arena."""
        rows = np.where(arena.valid)[0]
        return cls(
            timestamp=float(arena.timestamp),
            object_ids=tuple(arena.object_ids[i] for i in rows),
            positions_km=arena.positions[rows].astype(np.float32),
        )

    def position_of(self, object_id: int) -> NDArray[np.float32]:
        try:
            return self.positions_km[self.object_ids.index(object_id)]
        except ValueError:
            raise KeyError(f"Object {object_id} not in snapshot at {self.timestamp}") from None


class _SnapshotStore:
    __slots__ = ("items", "times", "lock")

    def __init__(self, items: Iterable[ReplaySnapshot] = ()) -> None:
        self.items: list[ReplaySnapshot] = list(items)
        self.times: list[float] = [s.timestamp for s in self.items]
        self.lock = threading.Lock()


class SnapshotHistory(Sequence):
    """Immutable, time-ordered window onto an append-only snapshot store.

    Appending to the newest history extends the shared store in place, and
    trimming only moves the window start, so recording is amortized O(1)
    per snapshot. Histories taken earlier keep seeing exactly their own
    window.
    """

    __slots__ = ("_store", "_start", "_stop")

    def __init__(self, snapshots: Iterable[ReplaySnapshot] = ()) -> None:
        self._store = _SnapshotStore(snapshots)
        self._start = 0
        self._stop = len(self._store.items)

    @classmethod
    def _window(cls, store: _SnapshotStore, start: int, stop: int) -> SnapshotHistory:
        history = cls.__new__(cls)
        history._store, history._start, history._stop = store, start, stop
        return history

    def __len__(self) -> int:
        return self._stop - self._start

    def __getitem__(self, index):
        if isinstance(index, slice):
            return tuple(self._store.items[self._start:self._stop][index])
        n = self._stop - self._start
        if index < 0:
            index += n
        if not 0 <= index < n:
            raise IndexError("snapshot index out of range")
        return self._store.items[self._start + index]

    def __iter__(self) -> Iterator[ReplaySnapshot]:
        items = self._store.items
        return (items[i] for i in range(self._start, self._stop))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, (SnapshotHistory, tuple, list)):
            return NotImplemented
        return len(self) == len(other) and all(a is b for a, b in zip(self, other))

    __hash__ = None

    def __repr__(self) -> str:
        return f"SnapshotHistory(len={len(self)})"

    def bisect(self, t: float) -> int:
        """Index of the first snapshot at or after ``t``."""
        return bisect.bisect_left(self._store.times, t, self._start, self._stop) - self._start

    def append(self, snapshot: ReplaySnapshot, max_len: int) -> SnapshotHistory:
        """New history with ``snapshot`` added, keeping at most ``max_len`` entries."""
        store = self._store
        with store.lock:
            shared = self._stop == len(store.items)
            if shared:
                store.items.append(snapshot)
                store.times.append(snapshot.timestamp)
        if shared:
            start, stop = self._start, self._stop + 1
        else:
            store = _SnapshotStore([*self, snapshot])
            start, stop = 0, len(store.items)
        start = max(start, stop - max_len)
        if start > max(stop - start, _COMPACT_MIN):
            store = _SnapshotStore(store.items[start:stop])
            start, stop = 0, stop - start
        return self._window(store, start, stop)


@dataclass(frozen=True)
class ReplayState:
    """Immutable replay session state.

    ``start_time <= current_time <= end_time`` always holds.
    """

    mode: ReplayMode = ReplayMode.IDLE
    current_time: float = 0.0
    start_time: float = 0.0
    end_time: float = 0.0
    playback_speed: float = 1.0
    snapshots: SnapshotHistory = field(default_factory=SnapshotHistory)
    revision: int = 0

    @property
    def recording(self) -> bool:
        return self.mode is ReplayMode.RECORDING

    @property
    def playing(self) -> bool:
        return self.mode is ReplayMode.PLAYING

    @property
    def duration_s(self) -> float:
        return self.end_time - self.start_time


Listener = Callable[[ReplayState], None]


class ReplayController:
    """State machine for recording, playback and scrubbing.

    Args:
        record_interval_s: Minimum spacing of recorded snapshots; closer
            snapshots are dropped.
        max_snapshots: Oldest snapshots are discarded beyond this count.
    """

    def __init__(
        self,
        record_interval_s: float = DEFAULT_RECORD_INTERVAL_S,
        max_snapshots: int = DEFAULT_MAX_SNAPSHOTS,
    ) -> None:
        if record_interval_s < 0:
            raise ValueError(f"record_interval_s must not be negative, got {record_interval_s}")
        if max_snapshots < 1:
            raise ValueError(f"max_snapshots must be >= 1, got {max_snapshots}")
        self.record_interval_s = record_interval_s
        self.max_snapshots = max_snapshots
        self._state = ReplayState()
        self._lock = threading.Lock()
        # reentrant so a listener may dispatch from its callback
        self._publish_lock = threading.RLock()
        self._published_revision = self._state.revision
        self._listeners: list[Listener] = []

    @property
    def state(self) -> ReplayState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener for new states; returns an unsubscribe function."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, command: ReplayCommand, value: object = None) -> ReplayState:
        """Apply one command atomically and notify listeners after the swap.

        Notifications are serialized in revision order; a state overtaken by
        a newer one before it could be published is not delivered.

        Raises:
            InvalidTransitionError: If the command is not allowed in the
                current mode.
            ValueError: If the command's value is invalid.
        """
        with self._lock:
            previous = self._state
            new_state = self.transition(previous, command, value)
            self._state = new_state
            listeners = list(self._listeners)

        if new_state is not previous:
            published = [new_state]
            if command is ReplayCommand.SEEK:
                published.insert(0, dataclasses.replace(new_state, mode=ReplayMode.SEEKING))
            self._publish(published, listeners)
        return new_state

    def _publish(self, states: list[ReplayState], listeners: list[Listener]) -> None:
        with self._publish_lock:
            revision = states[-1].revision
            if revision <= self._published_revision:
                logger.debug("Dropping replay revision %d, already at %d", revision, self._published_revision)
                return
            self._published_revision = revision
            for state in states:
                for listener in listeners:
                    listener(state)

    def transition(self, state: ReplayState, command: ReplayCommand, value: object = None) -> ReplayState:
        """Next state for ``command`` applied to ``state``; never mutates ``state``."""
        mode = state.mode
        if command is ReplayCommand.RESET:
            return ReplayState(revision=state.revision + 1)

        if command is ReplayCommand.START_RECORDING:
            if mode is not ReplayMode.IDLE:
                raise InvalidTransitionError(f"Cannot start recording while {mode.value}")
            return self._next(state, mode=ReplayMode.RECORDING, snapshots=SnapshotHistory(),
                              start_time=0.0, end_time=0.0, current_time=0.0)

        if command is ReplayCommand.RECORD:
            if mode is not ReplayMode.RECORDING:
                raise InvalidTransitionError(f"Cannot record snapshots while {mode.value}")
            if not isinstance(value, ReplaySnapshot):
                raise ValueError("RECORD needs a ReplaySnapshot value")
            return self._record(state, value)

        if command is ReplayCommand.STOP_RECORDING:
            if mode is not ReplayMode.RECORDING:
                raise InvalidTransitionError(f"Cannot stop recording while {mode.value}")
            if not state.snapshots:
                return self._next(state, mode=ReplayMode.IDLE)
            return self._next(state, mode=ReplayMode.PAUSED, current_time=state.end_time)

        if command is ReplayCommand.PLAY:
            if mode is ReplayMode.RECORDING:
                raise InvalidTransitionError("Cannot play while recording")
            if mode is ReplayMode.PLAYING:
                return state
            return self._next(state, mode=ReplayMode.PLAYING)

        if command is ReplayCommand.PAUSE:
            if mode is ReplayMode.PAUSED:
                return state
            if mode is not ReplayMode.PLAYING:
                raise InvalidTransitionError(f"Cannot pause while {mode.value}")
            return self._next(state, mode=ReplayMode.PAUSED)

        if command is ReplayCommand.STOP:
            if mode not in (ReplayMode.PLAYING, ReplayMode.PAUSED):
                raise InvalidTransitionError(f"Cannot stop playback while {mode.value}")
            return self._next(state, mode=ReplayMode.PAUSED, current_time=state.start_time)

        if command is ReplayCommand.SEEK:
            t = _finite(value, "seek time")
            return self._next(state, current_time=min(max(t, state.start_time), state.end_time))

        if command is ReplayCommand.SET_SPEED:
            speed = _finite(value, "playback speed")
            if speed <= 0:
                raise ValueError(f"Playback speed must be positive, got {speed}")
            return self._next(state, playback_speed=min(max(speed, MIN_PLAYBACK_SPEED), MAX_PLAYBACK_SPEED))

        if command is ReplayCommand.TICK:
            dt = _finite(value, "tick interval")
            if dt < 0:
                raise ValueError(f"Tick interval must not be negative, got {dt}")
            if mode is not ReplayMode.PLAYING:
                return state
            current = min(state.current_time + dt * state.playback_speed, state.end_time)
            if current >= state.end_time:
                return self._next(state, mode=ReplayMode.PAUSED, current_time=state.end_time)
            return self._next(state, current_time=current)

        raise InvalidTransitionError(f"Unknown command {command!r}")

    def _record(self, state: ReplayState, snapshot: ReplaySnapshot) -> ReplayState:
        snapshots = state.snapshots
        if snapshots:
            last = snapshots[-1].timestamp
            if snapshot.timestamp < last:
                raise ValueError(f"Snapshot at {snapshot.timestamp} is older than the last one at {last}")
            if snapshot.timestamp - last < self.record_interval_s:
                logger.debug("Dropping snapshot at %.3f: within %.3fs of the previous one",
                             snapshot.timestamp, self.record_interval_s)
                return state
        snapshots = snapshots.append(snapshot, self.max_snapshots)
        return self._next(
            state,
            snapshots=snapshots,
            start_time=snapshots[0].timestamp,
            end_time=snapshot.timestamp,
            current_time=snapshot.timestamp,
        )

    @staticmethod
    def _next(state: ReplayState, **changes) -> ReplayState:
        return dataclasses.replace(state, revision=state.revision + 1, **changes)

    # Convenience wrappers around dispatch

    def start_recording(self) -> ReplayState:
        return self.dispatch(ReplayCommand.START_RECORDING)

    def record(self, snapshot: ReplaySnapshot) -> ReplayState:
        return self.dispatch(ReplayCommand.RECORD, snapshot)

    def record_arena(self, arena: StateArena) -> ReplayState:
        return self.record(ReplaySnapshot.from_arena(arena))

    def stop_recording(self) -> ReplayState:
        return self.dispatch(ReplayCommand.STOP_RECORDING)

    def play(self) -> ReplayState:
        return self.dispatch(ReplayCommand.PLAY)

    def pause(self) -> ReplayState:
        return self.dispatch(ReplayCommand.PAUSE)

    def stop(self) -> ReplayState:
        return self.dispatch(ReplayCommand.STOP)

    def seek(self, t: float) -> ReplayState:
        return self.dispatch(ReplayCommand.SEEK, t)

    def set_speed(self, speed: float) -> ReplayState:
        return self.dispatch(ReplayCommand.SET_SPEED, speed)

    def tick(self, dt: float) -> ReplayState:
        return self.dispatch(ReplayCommand.TICK, dt)

    def reset(self) -> ReplayState:
        return self.dispatch(ReplayCommand.RESET)

    def snapshot_nearest(self, t: float | None = None) -> ReplaySnapshot | None:
        """Recorded snapshot closest to ``t`` (default: the current time)."""
        state = self._state
        if not state.snapshots:
            return None
        t = state.current_time if t is None else t
        i = state.snapshots.bisect(t)
        if i == 0:
            return state.snapshots[0]
        if i == len(state.snapshots):
            return state.snapshots[-1]
        before, after = state.snapshots[i - 1], state.snapshots[i]
        return before if t - before.timestamp <= after.timestamp - t else after


def _finite(value: object, label: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid {label}: {value!r}") from None
    if not math.isfinite(number):
        raise ValueError(f"Invalid {label}: {value!r}")
    return number


class ReplayTicker:
    """Background thread that sends ``TICK`` commands at a fixed interval.

    Each tick carries the measured wall-clock time since the previous one.
    """

    def __init__(self, controller: ReplayController, interval_s: float = DEFAULT_TICK_INTERVAL_S) -> None:
        if interval_s <= 0:
            raise ValueError(f"interval_s must be positive, got {interval_s}")
        self.controller = controller
        self.interval_s = interval_s
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="replay-ticker", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        last = time.monotonic()
        while not self._stop.wait(self.interval_s):
            now = time.monotonic()
            try:
                self.controller.tick(now - last)
            except Exception:
                logger.exception("Replay tick failed")
            last = now

    def __enter__(self) -> ReplayTicker:
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()
