"""Tests for the minimum-fuel maneuver search."""

import math

import pytest

from orbitops.core.catalog import CatalogSnapshot
from orbitops.core.elements import OrbitalElements
from orbitops.core.engine import CancellationToken
from orbitops.core.errors import ErrorKind, OperationCancelled
from orbitops.core.maneuver import ManeuverSimulator, SpacecraftParams
from orbitops.core.optimizer import ManeuverOptimizer
from orbitops.core.propagation import PropagationMode
from orbitops.core.screening import ConjunctionEvent

EPOCH = 1_700_000_000.0
NOW = EPOCH - 3000.0
TARGET_KM = 2.0

_U_CROSS_1 = math.degrees(math.acos(-1.0 / math.sqrt(3.0)))
_U_CROSS_2 = math.degrees(math.acos(1.0 / math.sqrt(3.0)))


def _crossing_catalog(offset_deg: float = 0.0) -> CatalogSnapshot:
    common = dict(epoch=EPOCH, inclination_deg=45.0, eccentricity=1e-6, arg_perigee_deg=0.0,
                  mean_motion_rev_per_day=15.5)
    return CatalogSnapshot.from_elements([
        OrbitalElements.from_keplerian(norad_id=1, raan_deg=0.0, mean_anomaly_deg=_U_CROSS_1,
                                       name="SAT", **common),
        OrbitalElements.from_keplerian(norad_id=2, raan_deg=90.0, mean_anomaly_deg=_U_CROSS_2 + offset_deg,
                                       name="DEB", **common),
    ])


@pytest.fixture
def simulator() -> ManeuverSimulator:
    return ManeuverSimulator(_crossing_catalog(), PropagationMode.ANALYTIC, trajectory_samples=5)


@pytest.fixture
def optimizer(simulator) -> ManeuverOptimizer:
    return ManeuverOptimizer(simulator, max_alternatives=2)


@pytest.fixture
def event() -> ConjunctionEvent:
    return ConjunctionEvent(1, 2, "SAT", "DEB", EPOCH, 0.01, 7.6)


@pytest.fixture
def spacecraft() -> SpacecraftParams:
    return SpacecraftParams(mass_kg=1000.0, isp_s=300.0, fuel_mass_kg=50.0)


class TestOptimize:
    def test_reaches_target(self, optimizer, event, spacecraft) -> None:
        result = optimizer.optimize(1, 2, TARGET_KM, EPOCH - NOW, spacecraft, event=event, now=NOW)
        assert result.success
        assert result.converged
        assert result.error is None
        assert result.burn_time == NOW
        assert result.new_miss_distance_km >= TARGET_KM
        assert result.new_miss_distance_km - TARGET_KM <= optimizer.tolerance_km
        assert result.fuel_cost_kg <= spacecraft.fuel_mass_kg
        assert result.target_miss_distance_km == TARGET_KM
        assert result.evaluations > 0
        assert len(result.alternatives) <= 2

    def test_consistent_with_simulate(self, optimizer, simulator, event, spacecraft) -> None:
        result = optimizer.optimize(1, 2, TARGET_KM, EPOCH - NOW, spacecraft, event=event, now=NOW)
        check = simulator.simulate(1, result.delta_v_ric_km_s, spacecraft, event, burn_time=result.burn_time)
        assert check.success
        assert check.new_miss_distance_km >= TARGET_KM
        assert check.fuel_cost_kg == pytest.approx(result.fuel_cost_kg)
        assert check.new_miss_distance_km == pytest.approx(result.new_miss_distance_km)

    def test_alternatives_cost_at_least_primary(self, optimizer, event, spacecraft) -> None:
        result = optimizer.optimize(1, 2, TARGET_KM, EPOCH - NOW, spacecraft, event=event, now=NOW)
        for alternative in result.alternatives:
            assert alternative.total_delta_v_km_s >= result.total_delta_v_km_s - 1e-12
            assert alternative.new_miss_distance_km >= TARGET_KM

    def test_refines_tca_without_event(self, optimizer, spacecraft) -> None:
        result = optimizer.optimize(1, 2, TARGET_KM, EPOCH - NOW, spacecraft, now=NOW)
        assert result.success
        assert result.new_miss_distance_km >= TARGET_KM

    def test_baseline_already_clear(self, spacecraft) -> None:
        simulator = ManeuverSimulator(_crossing_catalog(offset_deg=1.0), PropagationMode.ANALYTIC)
        event = ConjunctionEvent(1, 2, "SAT", "DEB", EPOCH, 100.0, 7.6)
        result = ManeuverOptimizer(simulator).optimize(1, 2, 10.0, EPOCH - NOW, spacecraft, event=event, now=NOW)
        assert result.success
        assert result.total_delta_v_km_s == 0.0
        assert result.fuel_cost_kg == 0.0
        assert result.new_miss_distance_km == result.baseline_miss_distance_km
        assert "no burn needed" in result.message

    def test_infeasible_budget(self, optimizer, event) -> None:
        tiny_tank = SpacecraftParams(mass_kg=1000.0, isp_s=300.0, fuel_mass_kg=0.001)
        result = optimizer.optimize(1, 2, TARGET_KM, EPOCH - NOW, tiny_tank, event=event, now=NOW)
        assert not result.success
        assert result.error is ErrorKind.MANEUVER_INFEASIBLE
        assert not result.converged
        assert result.best_attainable_miss_distance_km < TARGET_KM
        assert result.fuel_cost_kg <= tiny_tank.fuel_mass_kg
        assert "best attainable" in result.message

    def test_iteration_cap(self, simulator, event, spacecraft) -> None:
        optimizer = ManeuverOptimizer(simulator, tolerance_km=1e-9, max_iterations=2)
        result = optimizer.optimize(1, 2, TARGET_KM, EPOCH - NOW, spacecraft, event=event, now=NOW)
        assert not result.success
        assert result.error in (ErrorKind.OPTIMIZATION_NOT_CONVERGED, ErrorKind.MANEUVER_INFEASIBLE)
        assert not result.converged

    def test_cancelled(self, optimizer, event, spacecraft) -> None:
        token = CancellationToken()
        token.cancel("test")
        with pytest.raises(OperationCancelled):
            optimizer.optimize(1, 2, TARGET_KM, EPOCH - NOW, spacecraft, event=event, now=NOW,
                               cancel_token=token)


class TestValidation:
    def test_non_positive_target(self, optimizer, event, spacecraft) -> None:
        with pytest.raises(ValueError):
            optimizer.optimize(1, 2, 0.0, EPOCH - NOW, spacecraft, event=event, now=NOW)

    def test_event_mismatch(self, optimizer, event, spacecraft) -> None:
        with pytest.raises(ValueError):
            optimizer.optimize(2, 3, TARGET_KM, EPOCH - NOW, spacecraft, event=event, now=NOW)

    def test_negative_time_to_tca(self, optimizer, spacecraft) -> None:
        with pytest.raises(ValueError):
            optimizer.optimize(1, 2, TARGET_KM, -10.0, spacecraft, now=NOW)

    def test_tca_in_the_past(self, optimizer, event, spacecraft) -> None:
        with pytest.raises(ValueError):
            optimizer.optimize(1, 2, TARGET_KM, 0.0, spacecraft, event=event, now=EPOCH + 60.0)

    @pytest.mark.parametrize("kwargs", [{"probe_delta_v_km_s": 0.0}, {"tolerance_km": -1.0},
                                        {"max_iterations": 0}])
    def test_constructor(self, simulator, kwargs) -> None:
        with pytest.raises(ValueError):
            ManeuverOptimizer(simulator, **kwargs)
