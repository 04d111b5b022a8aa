"""Tests for state propagation and the two-body helpers."""

import math

import numpy as np
import pytest

from orbitops.core.elements import OrbitalElements
from orbitops.core.errors import InvalidOrbitError
from orbitops.core.kepler import (
    inertial_to_ric,
    kepler_propagate,
    orbital_period_s,
    ric_basis,
    ric_to_inertial,
    semi_major_axis_km,
    solve_kepler,
)
from orbitops.core.propagation import (
    PropagationMode,
    StateArena,
    propagate,
    propagate_batch,
    propagate_many,
)
from orbitops.utils.constants import EARTH_RADIUS_KM

ISS_LINE1 = "1 25544U 98067A   24045.54896019  .00016717  00000-0  30093-3 0  9993"
ISS_LINE2 = "2 25544  51.6412 207.4925 0004948 290.5508 178.9792 15.49583488439596"

HUBBLE_LINE1 = "1 20580U 90037B   24045.55478014  .00001456  00000-0  73052-4 0  9994"
HUBBLE_LINE2 = "2 20580  28.4701  41.0696 0002622 348.3544 140.2428 15.09435694872912"

EPOCH = 1_700_000_000.0


@pytest.fixture
def iss() -> OrbitalElements:
    return OrbitalElements.from_lines(ISS_LINE1, ISS_LINE2, name="ISS (ZARYA)")


@pytest.fixture
def hubble() -> OrbitalElements:
    return OrbitalElements.from_lines(HUBBLE_LINE1, HUBBLE_LINE2, name="HST")


def _circular(norad_id: int, mean_motion: float = 15.5, eccentricity: float = 1e-6) -> OrbitalElements:
    return OrbitalElements.from_keplerian(
        norad_id=norad_id,
        epoch=EPOCH,
        inclination_deg=45.0,
        raan_deg=30.0,
        eccentricity=eccentricity,
        arg_perigee_deg=0.0,
        mean_anomaly_deg=0.0,
        mean_motion_rev_per_day=mean_motion,
    )


class TestPropagate:
    def test_iss_altitude(self, iss: OrbitalElements) -> None:
        state = propagate(iss, iss.epoch)
        altitude = state.radius_km - EARTH_RADIUS_KM
        assert 350 < altitude < 450
        assert 7.0 < np.linalg.norm(state.velocity_km_s) < 8.0
        assert state.object_id == 25544
        assert state.timestamp == iss.epoch

    def test_deterministic(self, iss: OrbitalElements) -> None:
        t = iss.epoch + 5000.0
        for mode in PropagationMode:
            a = propagate(iss, t, mode)
            b = propagate(iss, t, mode)
            assert np.array_equal(a.position_km, b.position_km)
            assert np.array_equal(a.velocity_km_s, b.velocity_km_s)

    def test_analytic_close_to_sgp4_near_epoch(self, iss: OrbitalElements) -> None:
        sgp4_state = propagate(iss, iss.epoch, PropagationMode.SGP4)
        analytic_state = propagate(iss, iss.epoch, PropagationMode.ANALYTIC)
        assert np.linalg.norm(sgp4_state.position_km - analytic_state.position_km) < 100.0

    def test_analytic_circular_radius(self) -> None:
        elem = _circular(1, eccentricity=0.0)
        a = semi_major_axis_km(15.5)
        for t in (EPOCH, EPOCH + 1234.0, EPOCH + 86400.0):
            state = propagate(elem, t, PropagationMode.ANALYTIC)
            assert state.radius_km == pytest.approx(a, abs=1e-6)
            assert float(state.position_km @ state.velocity_km_s) == pytest.approx(0.0, abs=1e-6)

    def test_epoch_datetime(self, iss: OrbitalElements) -> None:
        state = propagate(iss, iss.epoch)
        assert state.epoch == iss.epoch_datetime

    def test_hyperbolic_rejected(self) -> None:
        elem = _circular(1, eccentricity=1.2)
        with pytest.raises(InvalidOrbitError) as excinfo:
            propagate(elem, EPOCH, PropagationMode.ANALYTIC)
        assert excinfo.value.object_id == 1

    def test_subsurface_orbit_rejected(self) -> None:
        elem = _circular(7, mean_motion=18.0)
        with pytest.raises(InvalidOrbitError, match="perigee"):
            propagate(elem, EPOCH, PropagationMode.ANALYTIC)

    def test_invalid_orbit_is_value_error(self) -> None:
        elem = _circular(1, eccentricity=1.2)
        with pytest.raises(ValueError):
            propagate(elem, EPOCH, PropagationMode.ANALYTIC)


class TestPropagateMany:
    def test_matches_single(self, iss: OrbitalElements) -> None:
        times = [iss.epoch + k * 600.0 for k in range(5)]
        for mode in PropagationMode:
            states = propagate_many(iss, times, mode)
            assert len(states) == 5
            single = propagate(iss, times[3], mode)
            np.testing.assert_allclose(states[3].position_km, single.position_km, atol=1e-9)


class TestPropagateBatch:
    def test_shapes(self, iss: OrbitalElements, hubble: OrbitalElements) -> None:
        times = np.linspace(iss.epoch, iss.epoch + 3600.0, 7)
        pos, vel, valid = propagate_batch([iss, hubble], times)
        assert pos.shape == (2, 7, 3)
        assert vel.shape == (2, 7, 3)
        assert valid.tolist() == [True, True]

    def test_matches_single_sgp4(self, iss: OrbitalElements, hubble: OrbitalElements) -> None:
        times = np.array([iss.epoch, iss.epoch + 1800.0])
        pos, _, _ = propagate_batch([iss, hubble], times)
        single = propagate(hubble, float(times[1]))
        np.testing.assert_allclose(pos[1, 1], single.position_km, atol=1e-6)

    def test_invalid_object_excluded(self) -> None:
        good = _circular(1)
        bad = _circular(2, eccentricity=1.5)
        pos, vel, valid = propagate_batch([good, bad], [EPOCH, EPOCH + 60.0], PropagationMode.ANALYTIC)
        assert valid.tolist() == [True, False]
        assert np.all(np.isnan(pos[1]))
        assert np.all(np.isfinite(pos[0]))

    def test_empty(self) -> None:
        pos, vel, valid = propagate_batch([], [EPOCH])
        assert pos.shape == (0, 1, 3)
        assert len(valid) == 0


class TestStateArena:
    def test_fill_and_state(self, iss: OrbitalElements, hubble: OrbitalElements) -> None:
        arena = StateArena([iss.norad_id, hubble.norad_id])
        arena.fill([iss, hubble], iss.epoch)
        assert len(arena) == 2
        assert arena.timestamp == iss.epoch
        state = arena.state(hubble.norad_id)
        np.testing.assert_allclose(state.position_km, propagate(hubble, iss.epoch).position_km, atol=1e-6)

    def test_state_is_a_copy(self, iss: OrbitalElements) -> None:
        arena = StateArena([iss.norad_id])
        arena.fill([iss], iss.epoch)
        state = arena.state(iss.norad_id)
        state.position_km[0] = 0.0
        assert arena.positions[0, 0] != 0.0

    def test_snapshot_survives_refill(self, iss: OrbitalElements) -> None:
        arena = StateArena([iss.norad_id])
        arena.fill([iss], iss.epoch)
        snap = arena.snapshot()
        arena.fill([iss], iss.epoch + 600.0)
        assert snap.timestamp == iss.epoch
        assert not np.array_equal(snap.positions, arena.positions)

    def test_mismatched_slots(self, iss: OrbitalElements, hubble: OrbitalElements) -> None:
        arena = StateArena([iss.norad_id, hubble.norad_id])
        with pytest.raises(ValueError):
            arena.fill([hubble, iss], iss.epoch)

    def test_unknown_slot(self, iss: OrbitalElements) -> None:
        arena = StateArena([iss.norad_id])
        with pytest.raises(KeyError):
            arena.slot(99999)

    def test_invalid_slot_raises(self) -> None:
        bad = _circular(2, eccentricity=1.5)
        arena = StateArena([2])
        arena.fill([bad], EPOCH, PropagationMode.ANALYTIC)
        assert not arena.valid[0]
        with pytest.raises(InvalidOrbitError):
            arena.state(2)


class TestKepler:
    def test_solve_kepler_circular(self) -> None:
        M = np.array([0.1, 1.0, 3.0])
        np.testing.assert_allclose(solve_kepler(M, 0.0), M)

    def test_solve_kepler_residual(self) -> None:
        M = np.linspace(0.0, 2 * math.pi, 13)
        e = 0.7
        E = solve_kepler(M, e)
        np.testing.assert_allclose(E - e * np.sin(E), M, atol=1e-10)

    def test_full_period_returns_home(self, iss: OrbitalElements) -> None:
        state = propagate(iss, iss.epoch)
        r0, v0 = state.position_km, state.velocity_km_s
        energy = float(v0 @ v0) / 2.0 - 398600.4418 / float(np.linalg.norm(r0))
        a = -398600.4418 / (2.0 * energy)
        r, v = kepler_propagate(r0, v0, orbital_period_s(a))
        np.testing.assert_allclose(r, r0, atol=1e-4)
        np.testing.assert_allclose(v, v0, atol=1e-7)

    def test_zero_dt_identity(self) -> None:
        r0 = np.array([7000.0, 0.0, 0.0])
        v0 = np.array([0.0, 7.5, 0.0])
        r, v = kepler_propagate(r0, v0, 0.0)
        assert np.array_equal(r, r0) and np.array_equal(v, v0)

    def test_backwards(self) -> None:
        r0 = np.array([7000.0, 0.0, 0.0])
        v0 = np.array([0.0, 7.5, 0.5])
        r1, v1 = kepler_propagate(r0, v0, 900.0)
        r2, v2 = kepler_propagate(r1, v1, -900.0)
        np.testing.assert_allclose(r2, r0, atol=1e-6)
        np.testing.assert_allclose(v2, v0, atol=1e-9)

    def test_ric_basis_orthonormal(self, iss: OrbitalElements) -> None:
        state = propagate(iss, iss.epoch)
        basis = ric_basis(state.position_km, state.velocity_km_s)
        np.testing.assert_allclose(basis @ basis.T, np.eye(3), atol=1e-12)
        # in-track is roughly along velocity for a near-circular orbit
        v_hat = state.velocity_km_s / np.linalg.norm(state.velocity_km_s)
        assert float(basis[1] @ v_hat) > 0.99

    def test_ric_roundtrip(self, iss: OrbitalElements) -> None:
        state = propagate(iss, iss.epoch)
        vec = np.array([0.1, -0.2, 0.3])
        inertial = ric_to_inertial(vec, state.position_km, state.velocity_km_s)
        np.testing.assert_allclose(inertial_to_ric(inertial, state.position_km, state.velocity_km_s), vec,
                                   atol=1e-12)

    def test_ric_rectilinear(self) -> None:
        with pytest.raises(ValueError):
            ric_basis(np.array([7000.0, 0.0, 0.0]), np.array([1.0, 0.0, 0.0]))
