"""Tests for orbital elements, TLE parsing and catalog snapshots."""

import math
from datetime import datetime, timezone

import numpy as np
import pytest

from orbitops.core.catalog import CatalogSnapshot, filter_stale, hours_since_epoch, merge_elements
from orbitops.core.elements import OrbitalElements, datetime_to_unix, parse_tle, unix_to_jd
from orbitops.core.errors import InvalidOrbitError
from orbitops.core.propagation import PropagationMode, propagate

# ISS (ZARYA) TLE, a well-known reference
ISS_NAME = "ISS (ZARYA)"
ISS_LINE1 = "1 25544U 98067A   24045.54896019  .00016717  00000-0  30093-3 0  9993"
ISS_LINE2 = "2 25544  51.6412 207.4925 0004948 290.5508 178.9792 15.49583488439596"

CSS_LINE1 = "1 48274U 21035A   24045.50261574  .00021540  00000-0  25163-3 0  9993"
CSS_LINE2 = "2 48274  41.4681 279.1498 0005372 149.8847 345.3740 15.62096269157018"

EPOCH = 1_700_000_000.0


def _keplerian(norad_id: int, epoch: float = EPOCH) -> OrbitalElements:
    return OrbitalElements.from_keplerian(
        norad_id=norad_id,
        epoch=epoch,
        inclination_deg=51.6,
        raan_deg=10.0,
        eccentricity=0.0005,
        arg_perigee_deg=90.0,
        mean_anomaly_deg=0.0,
        mean_motion_rev_per_day=15.5,
        name=f"OBJ-{norad_id}",
    )


class TestFromLines:
    def test_parse_basic(self) -> None:
        elem = OrbitalElements.from_lines(ISS_LINE1, ISS_LINE2, name=ISS_NAME)
        assert elem.norad_id == 25544
        assert elem.name == ISS_NAME
        assert elem.intl_designator == "98067A"

    def test_orbital_elements_reasonable(self) -> None:
        elem = OrbitalElements.from_lines(ISS_LINE1, ISS_LINE2)
        assert 51.0 < elem.inclination_deg < 52.0
        assert 0.0 < elem.eccentricity < 0.01
        assert 15.0 < elem.mean_motion_rev_per_day < 16.0
        assert 5500 < elem.period_s < 5600

    def test_epoch_is_unix_seconds(self) -> None:
        elem = OrbitalElements.from_lines(ISS_LINE1, ISS_LINE2)
        epoch = elem.epoch_datetime
        assert epoch.year == 2024
        assert epoch.month == 2  # day 45 ~ Feb 14
        assert epoch.day == 14

    def test_bstar(self) -> None:
        elem = OrbitalElements.from_lines(ISS_LINE1, ISS_LINE2)
        assert abs(elem.bstar - 3.0093e-4) < 1e-7

    def test_str_roundtrip(self) -> None:
        elem = OrbitalElements.from_lines(ISS_LINE1, ISS_LINE2, name=ISS_NAME)
        reparsed = parse_tle(str(elem))
        assert len(reparsed) == 1
        assert reparsed[0].norad_id == elem.norad_id
        assert reparsed[0].line1 == elem.line1
        assert reparsed[0].epoch == elem.epoch

    def test_bad_line_length(self) -> None:
        with pytest.raises(ValueError):
            OrbitalElements.from_lines("1 short", ISS_LINE2)

    def test_swapped_lines(self) -> None:
        with pytest.raises(ValueError):
            OrbitalElements.from_lines(ISS_LINE2, ISS_LINE1)


class TestFromKeplerian:
    def test_fields_preserved(self) -> None:
        elem = _keplerian(1)
        assert elem.epoch == EPOCH
        assert elem.inclination_deg == 51.6
        assert elem.satrec is not None
        assert elem.line1 == ""

    def test_satrec_epoch_matches(self) -> None:
        elem = _keplerian(1)
        jd, fr = unix_to_jd(EPOCH)
        sat = elem.satrec
        assert abs((sat.jdsatepoch + sat.jdsatepochF) - (jd + fr)) < 1e-6

    def test_str_without_lines(self) -> None:
        assert "OBJ-1" in str(_keplerian(1))


class TestDirectConstruction:
    def _direct(self, eccentricity: float = 0.0005) -> OrbitalElements:
        return OrbitalElements(
            norad_id=9, name="DIRECT", intl_designator="", epoch=EPOCH,
            inclination_deg=51.6, raan_deg=10.0, eccentricity=eccentricity,
            arg_perigee_deg=90.0, mean_anomaly_deg=0.0, mean_motion_rev_per_day=15.5,
        )

    def test_satrec_built_from_elements(self) -> None:
        elem = self._direct()
        assert elem.satrec is not None
        state = propagate(elem, EPOCH + 600.0, PropagationMode.SGP4)
        reference = propagate(_keplerian(9), EPOCH + 600.0, PropagationMode.SGP4)
        np.testing.assert_allclose(state.position_km, reference.position_km, atol=1e-6)

    def test_satrec_built_from_lines(self) -> None:
        parsed = OrbitalElements.from_lines(ISS_LINE1, ISS_LINE2)
        fields = {f: getattr(parsed, f) for f in (
            "norad_id", "name", "intl_designator", "epoch", "inclination_deg", "raan_deg", "eccentricity",
            "arg_perigee_deg", "mean_anomaly_deg", "mean_motion_rev_per_day", "bstar", "line1", "line2")}
        elem = OrbitalElements(**fields)
        a = propagate(elem, parsed.epoch + 60.0, PropagationMode.SGP4)
        b = propagate(parsed, parsed.epoch + 60.0, PropagationMode.SGP4)
        np.testing.assert_allclose(a.position_km, b.position_km)

    def test_degenerate_orbit_raises_invalid_orbit(self) -> None:
        with pytest.raises(InvalidOrbitError):
            propagate(self._direct(eccentricity=1.2), EPOCH, PropagationMode.SGP4)


class TestTimeHelpers:
    def test_unix_to_jd_epoch(self) -> None:
        jd, fr = unix_to_jd(0.0)
        assert jd + fr == pytest.approx(2440587.5)

    def test_datetime_to_unix(self) -> None:
        dt = datetime(2024, 2, 14, 12, 0, 0, tzinfo=timezone.utc)
        assert datetime_to_unix(dt) == pytest.approx(dt.timestamp(), abs=1e-3)

    def test_naive_datetime_is_utc(self) -> None:
        naive = datetime(2024, 2, 14, 12, 0, 0)
        aware = naive.replace(tzinfo=timezone.utc)
        assert datetime_to_unix(naive) == pytest.approx(datetime_to_unix(aware))


class TestParseTle:
    def test_three_line(self) -> None:
        text = f"{ISS_NAME}\n{ISS_LINE1}\n{ISS_LINE2}\n"
        result = parse_tle(text)
        assert len(result) == 1
        assert result[0].name == ISS_NAME

    def test_two_line(self) -> None:
        result = parse_tle(f"{ISS_LINE1}\n{ISS_LINE2}\n")
        assert len(result) == 1
        assert result[0].name == ""

    def test_multiple(self) -> None:
        text = f"{ISS_NAME}\n{ISS_LINE1}\n{ISS_LINE2}\nCSS (TIANHE)\n{CSS_LINE1}\n{CSS_LINE2}\n"
        result = parse_tle(text)
        assert [e.norad_id for e in result] == [25544, 48274]

    def test_malformed_entry_skipped(self) -> None:
        text = f"BROKEN\n{ISS_LINE1}\n{ISS_LINE2[:60]}\nCSS (TIANHE)\n{CSS_LINE1}\n{CSS_LINE2}\n"
        result = parse_tle(text)
        assert [e.norad_id for e in result] == [48274]

    def test_empty(self) -> None:
        assert parse_tle("") == []


class TestCatalogSnapshot:
    def test_lookup(self) -> None:
        snap = CatalogSnapshot.from_elements([_keplerian(1), _keplerian(2)], refreshed_at=EPOCH)
        assert len(snap) == 2
        assert 1 in snap and 3 not in snap
        assert snap.get(2).norad_id == 2
        assert snap.ids == [1, 2]
        assert snap.refreshed_at == EPOCH

    def test_missing_id(self) -> None:
        snap = CatalogSnapshot.from_elements([_keplerian(1)])
        with pytest.raises(KeyError):
            snap.get(99)

    def test_duplicate_ids_rejected(self) -> None:
        with pytest.raises(ValueError):
            CatalogSnapshot.from_elements([_keplerian(1), _keplerian(1)])

    def test_replace_bumps_version_and_leaves_original(self) -> None:
        snap = CatalogSnapshot.from_elements([_keplerian(1)])
        newer = snap.replace([_keplerian(2), _keplerian(3)])
        assert newer.version == snap.version + 1
        assert snap.ids == [1]
        assert newer.ids == [2, 3]


class TestCatalogHelpers:
    def test_merge_keeps_newest_epoch(self) -> None:
        old = _keplerian(1, EPOCH)
        new = _keplerian(1, EPOCH + 3600)
        stale_update = _keplerian(2, EPOCH - 3600)
        current = _keplerian(2, EPOCH)
        merged = merge_elements([old, current], [new, stale_update, _keplerian(3)])
        assert [e.norad_id for e in merged] == [1, 2, 3]
        assert merged[0].epoch == EPOCH + 3600
        assert merged[1].epoch == EPOCH

    def test_hours_since_epoch(self) -> None:
        assert hours_since_epoch(_keplerian(1), EPOCH + 7200) == pytest.approx(2.0)

    def test_filter_stale(self) -> None:
        fresh = _keplerian(1, EPOCH)
        old = _keplerian(2, EPOCH - 5 * 86400)
        result = filter_stale([fresh, old], max_age_days=3.0, reference_time=EPOCH)
        assert [e.norad_id for e in result] == [1]

    def test_filter_stale_real_tle(self) -> None:
        iss = OrbitalElements.from_lines(ISS_LINE1, ISS_LINE2)
        assert filter_stale([iss], max_age_days=1.0, reference_time=iss.epoch + 3600) == [iss]
        assert not math.isnan(iss.epoch)
