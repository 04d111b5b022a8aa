"""Tests for the replay state machine."""

import threading
import time

import numpy as np
import pytest

from orbitops.core.elements import OrbitalElements
from orbitops.core.errors import InvalidTransitionError
from orbitops.core.propagation import PropagationMode, StateArena
from orbitops.core.replay import (
    ReplayCommand,
    ReplayController,
    ReplayMode,
    ReplaySnapshot,
    ReplayState,
    ReplayTicker,
    SnapshotHistory,
)

T0 = 1_700_000_000.0


def _snapshot(t: float) -> ReplaySnapshot:
    return ReplaySnapshot(t, (1, 2), np.array([[7000.0, 0.0, 0.0], [0.0, 7000.0, 0.0]], dtype=np.float32))


@pytest.fixture
def controller() -> ReplayController:
    return ReplayController(record_interval_s=1.0, max_snapshots=100)


@pytest.fixture
def recorded(controller) -> ReplayController:
    """Controller holding snapshots at T0, T0+10, ..., T0+100, paused at the end."""
    controller.start_recording()
    for k in range(11):
        controller.record(_snapshot(T0 + 10.0 * k))
    controller.stop_recording()
    return controller


class TestRecording:
    def test_initial_state(self, controller) -> None:
        state = controller.state
        assert state.mode is ReplayMode.IDLE
        assert state.snapshots == ()
        assert not state.recording and not state.playing

    def test_record_extends_range(self, controller) -> None:
        controller.start_recording()
        controller.record(_snapshot(T0))
        state = controller.record(_snapshot(T0 + 5.0))
        assert state.recording
        assert state.start_time == T0
        assert state.end_time == T0 + 5.0
        assert state.current_time == T0 + 5.0
        assert len(state.snapshots) == 2

    def test_stop_recording_pauses_at_end(self, recorded) -> None:
        state = recorded.state
        assert state.mode is ReplayMode.PAUSED
        assert state.current_time == T0 + 100.0
        assert state.duration_s == 100.0

    def test_stop_recording_without_snapshots(self, controller) -> None:
        controller.start_recording()
        assert controller.stop_recording().mode is ReplayMode.IDLE

    def test_snapshots_closer_than_interval_dropped(self, controller) -> None:
        controller.start_recording()
        controller.record(_snapshot(T0))
        before = controller.state
        after = controller.record(_snapshot(T0 + 0.5))
        assert after is before
        assert len(after.snapshots) == 1

    def test_out_of_order_snapshot(self, controller) -> None:
        controller.start_recording()
        controller.record(_snapshot(T0))
        with pytest.raises(ValueError):
            controller.record(_snapshot(T0 - 10.0))

    def test_oldest_trimmed(self) -> None:
        controller = ReplayController(record_interval_s=0.0, max_snapshots=3)
        controller.start_recording()
        for k in range(5):
            controller.record(_snapshot(T0 + k))
        state = controller.state
        assert [s.timestamp for s in state.snapshots] == [T0 + 2, T0 + 3, T0 + 4]
        assert state.start_time == T0 + 2

    def test_record_requires_snapshot(self, controller) -> None:
        controller.start_recording()
        with pytest.raises(ValueError):
            controller.dispatch(ReplayCommand.RECORD, "not a snapshot")

    def test_record_arena(self, controller) -> None:
        elem = OrbitalElements.from_keplerian(
            norad_id=5, epoch=T0, inclination_deg=51.6, raan_deg=0.0, eccentricity=0.001,
            arg_perigee_deg=0.0, mean_anomaly_deg=0.0, mean_motion_rev_per_day=15.5)
        arena = StateArena([5])
        arena.fill([elem], T0, PropagationMode.ANALYTIC)
        controller.start_recording()
        state = controller.record_arena(arena)
        snap = state.snapshots[0]
        assert snap.object_ids == (5,)
        assert snap.positions_km.dtype == np.float32
        np.testing.assert_allclose(snap.position_of(5), arena.positions[0], rtol=1e-6)
        with pytest.raises(KeyError):
            snap.position_of(6)


class TestSnapshotHistory:
    def test_append_shares_storage(self) -> None:
        history = SnapshotHistory()
        for k in range(5):
            nxt = history.append(_snapshot(T0 + k), max_len=10)
            assert nxt._store is history._store
            history = nxt
        assert [s.timestamp for s in history] == [T0 + k for k in range(5)]

    def test_earlier_history_unchanged(self) -> None:
        first = SnapshotHistory().append(_snapshot(T0), max_len=10)
        second = first.append(_snapshot(T0 + 1), max_len=10)
        assert len(first) == 1 and len(second) == 2
        assert first[-1].timestamp == T0

    def test_branch_from_earlier_history_copies(self) -> None:
        base = SnapshotHistory().append(_snapshot(T0), max_len=10)
        tip = base.append(_snapshot(T0 + 1), max_len=10)
        branch = base.append(_snapshot(T0 + 2), max_len=10)
        assert [s.timestamp for s in tip] == [T0, T0 + 1]
        assert [s.timestamp for s in branch] == [T0, T0 + 2]

    def test_trim_and_compaction(self) -> None:
        history = SnapshotHistory()
        for k in range(5000):
            history = history.append(_snapshot(T0 + k), max_len=100)
        assert len(history) == 100
        assert history[0].timestamp == T0 + 4900
        assert len(history._store.items) < 2200
        assert history.bisect(T0 + 4950.5) == 51

    def test_indexing(self) -> None:
        snaps = [_snapshot(T0 + k) for k in range(3)]
        history = SnapshotHistory(snaps)
        assert history == tuple(snaps)
        assert history[1:] == tuple(snaps[1:])
        with pytest.raises(IndexError):
            history[3]

    def test_long_recording_keeps_cap(self) -> None:
        controller = ReplayController(record_interval_s=1.0, max_snapshots=1000)
        controller.start_recording()
        for k in range(3000):
            controller.record(_snapshot(T0 + k))
        state = controller.state
        assert len(state.snapshots) == 1000
        assert state.start_time == T0 + 2000
        assert controller.snapshot_nearest(T0 + 2500.4).timestamp == T0 + 2500


class TestInvalidTransitions:
    def test_record_while_idle(self, controller) -> None:
        with pytest.raises(InvalidTransitionError):
            controller.record(_snapshot(T0))

    def test_start_recording_twice(self, controller) -> None:
        controller.start_recording()
        with pytest.raises(InvalidTransitionError):
            controller.start_recording()

    def test_play_while_recording(self, controller) -> None:
        controller.start_recording()
        with pytest.raises(InvalidTransitionError):
            controller.play()

    def test_pause_while_idle(self, controller) -> None:
        with pytest.raises(InvalidTransitionError):
            controller.pause()

    def test_stop_while_idle(self, controller) -> None:
        with pytest.raises(InvalidTransitionError):
            controller.stop()

    def test_failed_command_leaves_state(self, recorded) -> None:
        before = recorded.state
        with pytest.raises(InvalidTransitionError):
            recorded.stop_recording()
        assert recorded.state is before


class TestPlayback:
    def test_seek_clamps(self, recorded) -> None:
        assert recorded.seek(T0 + 42.0).current_time == T0 + 42.0
        assert recorded.seek(T0 - 500.0).current_time == T0
        assert recorded.seek(T0 + 500.0).current_time == T0 + 100.0

    def test_seek_rejects_nan(self, recorded) -> None:
        with pytest.raises(ValueError):
            recorded.seek(float("nan"))

    def test_play_then_pause_keeps_time(self, recorded) -> None:
        recorded.seek(T0 + 30.0)
        recorded.play()
        state = recorded.pause()
        assert state.mode is ReplayMode.PAUSED
        assert state.current_time == T0 + 30.0

    def test_play_and_pause_idempotent(self, recorded) -> None:
        playing = recorded.play()
        assert recorded.play() is playing
        paused = recorded.pause()
        assert recorded.pause() is paused

    def test_tick_advances_with_speed(self, recorded) -> None:
        recorded.seek(T0)
        recorded.set_speed(2.0)
        recorded.play()
        state = recorded.tick(5.0)
        assert state.current_time == T0 + 10.0
        assert state.playing

    def test_tick_auto_pauses_at_end(self, recorded) -> None:
        recorded.seek(T0 + 95.0)
        recorded.play()
        state = recorded.tick(60.0)
        assert state.mode is ReplayMode.PAUSED
        assert state.current_time == T0 + 100.0

    def test_tick_ignored_when_paused(self, recorded) -> None:
        before = recorded.state
        assert recorded.tick(1.0) is before

    def test_negative_tick(self, recorded) -> None:
        recorded.play()
        with pytest.raises(ValueError):
            recorded.tick(-1.0)

    def test_stop_returns_to_start(self, recorded) -> None:
        recorded.play()
        state = recorded.stop()
        assert state.mode is ReplayMode.PAUSED
        assert state.current_time == T0

    @pytest.mark.parametrize("speed,expected", [(0.01, 0.1), (0.5, 0.5), (50.0, 10.0)])
    def test_speed_clamped(self, recorded, speed, expected) -> None:
        assert recorded.set_speed(speed).playback_speed == expected

    @pytest.mark.parametrize("speed", [0.0, -1.0, float("inf")])
    def test_bad_speed(self, recorded, speed) -> None:
        with pytest.raises(ValueError):
            recorded.set_speed(speed)

    def test_reset(self, recorded) -> None:
        revision = recorded.state.revision
        state = recorded.reset()
        assert state.mode is ReplayMode.IDLE
        assert state.snapshots == ()
        assert state.revision == revision + 1

    def test_snapshot_nearest(self, recorded) -> None:
        assert recorded.snapshot_nearest(T0 + 14.0).timestamp == T0 + 10.0
        assert recorded.snapshot_nearest(T0 + 16.0).timestamp == T0 + 20.0
        assert recorded.snapshot_nearest(T0 - 99.0).timestamp == T0
        recorded.seek(T0 + 71.0)
        assert recorded.snapshot_nearest().timestamp == T0 + 70.0

    def test_snapshot_nearest_empty(self, controller) -> None:
        assert controller.snapshot_nearest(T0) is None


class TestTransitionFunction:
    def test_pure(self, controller) -> None:
        state = ReplayState()
        nxt = controller.transition(state, ReplayCommand.START_RECORDING)
        assert state.mode is ReplayMode.IDLE
        assert nxt.mode is ReplayMode.RECORDING
        assert controller.state.mode is ReplayMode.IDLE

    def test_revision_increments(self, controller) -> None:
        r0 = controller.state.revision
        controller.start_recording()
        assert controller.state.revision == r0 + 1


class TestListeners:
    def test_notified_after_each_change(self, recorded) -> None:
        seen = []
        recorded.subscribe(seen.append)
        recorded.play()
        recorded.pause()
        assert [s.mode for s in seen] == [ReplayMode.PLAYING, ReplayMode.PAUSED]

    def test_seek_publishes_seeking_first(self, recorded) -> None:
        seen = []
        recorded.subscribe(seen.append)
        recorded.seek(T0 + 50.0)
        assert [s.mode for s in seen] == [ReplayMode.SEEKING, ReplayMode.PAUSED]
        assert all(s.current_time == T0 + 50.0 for s in seen)

    def test_no_notification_without_change(self, recorded) -> None:
        seen = []
        recorded.subscribe(seen.append)
        recorded.tick(1.0)
        assert seen == []

    def test_unsubscribe(self, recorded) -> None:
        seen = []
        unsubscribe = recorded.subscribe(seen.append)
        unsubscribe()
        recorded.play()
        assert seen == []

    def test_concurrent_seeks_publish_latest_last(self, recorded, monkeypatch) -> None:
        seen = []
        recorded.subscribe(lambda s: seen.append((s.mode, s.current_time)))
        original = recorded._publish
        first_swapped = threading.Event()
        second_done = threading.Event()

        def delayed(states, listeners):
            if threading.current_thread().name == "first":
                first_swapped.set()
                second_done.wait(5)
            original(states, listeners)

        monkeypatch.setattr(recorded, "_publish", delayed)
        worker = threading.Thread(target=recorded.seek, args=(T0 + 10.0,), name="first")
        worker.start()
        assert first_swapped.wait(5)
        recorded.seek(T0 + 20.0)
        second_done.set()
        worker.join(5)

        assert recorded.state.current_time == T0 + 20.0
        assert seen == [(ReplayMode.SEEKING, T0 + 20.0), (ReplayMode.PAUSED, T0 + 20.0)]

    def test_listener_reads_new_state(self, recorded) -> None:
        observed = []
        recorded.subscribe(lambda s: observed.append(recorded.state is s))
        recorded.play()
        assert observed == [True]


class TestTicker:
    def test_drives_playback(self, recorded) -> None:
        recorded.seek(T0)
        recorded.set_speed(10.0)
        recorded.play()
        with ReplayTicker(recorded, interval_s=0.01) as ticker:
            assert ticker.running
            deadline = time.monotonic() + 2.0
            while recorded.state.current_time == T0 and time.monotonic() < deadline:
                time.sleep(0.01)
        assert not ticker.running
        assert recorded.state.current_time > T0

    def test_rejects_bad_interval(self, controller) -> None:
        with pytest.raises(ValueError):
            ReplayTicker(controller, interval_s=0.0)
