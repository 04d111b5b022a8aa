"""Orbital elements and TLE parsing.

Elements wrap the sgp4 library's ``Satrec`` so the same record drives both the
SGP4 propagator and the fast analytic model.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sgp4.api import Satrec, WGS72, jday

from orbitops.utils.constants import SECONDS_PER_DAY, UNIX_EPOCH_JD

logger = logging.getLogger(__name__)

_SGP4_EPOCH_JD = 2433281.5  # 1949-12-31T00:00:00Z, origin of sgp4init epochs


@dataclass(frozen=True)
class OrbitalElements:
    """Mean orbital elements of one tracked object.

    Attributes:
        norad_id: NORAD catalog number.
        name: Object name (line 0 of a TLE, may be empty).
        intl_designator: International designator, e.g. ``"98067A"``.
        epoch: Element epoch in Unix seconds.
        inclination_deg: Inclination in degrees.
        raan_deg: Right ascension of ascending node in degrees.
        eccentricity: Eccentricity (dimensionless).
        arg_perigee_deg: Argument of perigee in degrees.
        mean_anomaly_deg: Mean anomaly at epoch in degrees.
        mean_motion_rev_per_day: Mean motion in revolutions per day.
        bstar: BSTAR drag term.
        line1: Raw TLE line 1 (empty when built from elements).
        line2: Raw TLE line 2 (empty when built from elements).
        satrec: Underlying sgp4 record; built from the TLE lines, or from
            the mean elements when there are none, if not supplied.
    """

    norad_id: int
    name: str
    intl_designator: str
    epoch: float
    inclination_deg: float
    raan_deg: float
    eccentricity: float
    arg_perigee_deg: float
    mean_anomaly_deg: float
    mean_motion_rev_per_day: float
    bstar: float = 0.0
    line1: str = ""
    line2: str = ""
    satrec: Satrec | None = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.satrec is not None:
            return
        if self.line1 and self.line2:
            sat = Satrec.twoline2rv(self.line1, self.line2, WGS72)
        else:
            sat = _satrec_from_elements(self)
        object.__setattr__(self, "satrec", sat)

    @property
    def epoch_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.epoch, tz=timezone.utc)

    @property
    def period_s(self) -> float:
        return SECONDS_PER_DAY / self.mean_motion_rev_per_day

    @classmethod
    def from_lines(cls, line1: str, line2: str, name: str = "") -> OrbitalElements:
        """Parse elements from TLE lines 1 and 2.

        Raises:
            ValueError: If the TLE lines are malformed.
        """
        line1 = line1.strip()
        line2 = line2.strip()

        if len(line1) != 69 or not line1.startswith("1"):
            logger.error("Invalid TLE line 1: %r", line1)
            raise ValueError(f"Invalid TLE line 1: {line1!r}")
        if len(line2) != 69 or not line2.startswith("2"):
            logger.error("Invalid TLE line 2: %r", line2)
            raise ValueError(f"Invalid TLE line 2: {line2!r}")

        sat = Satrec.twoline2rv(line1, line2, WGS72)
        norad_id = int(line1[2:7].strip())
        epoch = _satrec_epoch_unix(sat)

        logger.debug("Parsed TLE for NORAD %d (epoch %.3f)", norad_id, epoch)

        return cls(
            norad_id=norad_id,
            name=name.strip(),
            intl_designator=line1[9:17].strip(),
            epoch=epoch,
            inclination_deg=math.degrees(sat.inclo),
            raan_deg=math.degrees(sat.nodeo),
            eccentricity=sat.ecco,
            arg_perigee_deg=math.degrees(sat.argpo),
            mean_anomaly_deg=math.degrees(sat.mo),
            mean_motion_rev_per_day=sat.no_kozai * 1440.0 / (2.0 * math.pi),
            bstar=sat.bstar,
            line1=line1,
            line2=line2,
            satrec=sat,
        )

    @classmethod
    def from_keplerian(
        cls,
        norad_id: int,
        epoch: float,
        inclination_deg: float,
        raan_deg: float,
        eccentricity: float,
        arg_perigee_deg: float,
        mean_anomaly_deg: float,
        mean_motion_rev_per_day: float,
        bstar: float = 0.0,
        name: str = "",
        intl_designator: str = "",
    ) -> OrbitalElements:
        """Build elements from mean Keplerian elements at a Unix epoch.

        No range checks are applied here; degenerate values surface as
        :class:`~orbitops.core.errors.InvalidOrbitError` on propagation.
        """
        return cls(
            norad_id=norad_id,
            name=name,
            intl_designator=intl_designator,
            epoch=epoch,
            inclination_deg=inclination_deg,
            raan_deg=raan_deg,
            eccentricity=eccentricity,
            arg_perigee_deg=arg_perigee_deg,
            mean_anomaly_deg=mean_anomaly_deg,
            mean_motion_rev_per_day=mean_motion_rev_per_day,
            bstar=bstar,
        )

    def __str__(self) -> str:
        if not self.line1:
            return f"{self.name or self.norad_id} (elements)"
        header = f"0 {self.name}\n" if self.name else ""
        return f"{header}{self.line1}\n{self.line2}"


def _satrec_from_elements(elements: OrbitalElements) -> Satrec:
    sat = Satrec()
    sat.sgp4init(
        WGS72,
        "i",
        elements.norad_id,
        elements.epoch / SECONDS_PER_DAY + UNIX_EPOCH_JD - _SGP4_EPOCH_JD,
        elements.bstar,
        0.0,
        0.0,
        elements.eccentricity,
        math.radians(elements.arg_perigee_deg),
        math.radians(elements.inclination_deg),
        math.radians(elements.mean_anomaly_deg),
        elements.mean_motion_rev_per_day * 2.0 * math.pi / 1440.0,
        math.radians(elements.raan_deg),
    )
    return sat


def _satrec_epoch_unix(sat: Satrec) -> float:
    return ((sat.jdsatepoch - UNIX_EPOCH_JD) + sat.jdsatepochF) * SECONDS_PER_DAY


def unix_to_jd(t: float) -> tuple[float, float]:
    """Split a Unix time into the (jd, fraction) pair sgp4 expects."""
    days = math.floor(t / SECONDS_PER_DAY)
    return UNIX_EPOCH_JD + days, (t - days * SECONDS_PER_DAY) / SECONDS_PER_DAY


def datetime_to_unix(dt: datetime) -> float:
    """Convert a datetime (naive values are taken as UTC) to Unix seconds."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    jd, fr = jday(dt.year, dt.month, dt.day, dt.hour, dt.minute, dt.second + dt.microsecond / 1e6)
    return ((jd - UNIX_EPOCH_JD) + fr) * SECONDS_PER_DAY


def parse_tle(text: str) -> list[OrbitalElements]:
    """Parse one or more TLEs from text.

    Handles both 2-line and 3-line (with name) formats. Entries that fail to
    parse are skipped and logged.
    """
    lines = [l.rstrip() for l in text.strip().splitlines() if l.strip()]
    result: list[OrbitalElements] = []
    i = 0

    while i < len(lines):
        if lines[i].startswith("1 ") and i + 1 < len(lines) and lines[i + 1].startswith("2 "):
            name, line1, line2 = "", lines[i], lines[i + 1]
            i += 2
        elif (
            not lines[i].startswith("1 ")
            and not lines[i].startswith("2 ")
            and i + 2 < len(lines)
            and lines[i + 1].startswith("1 ")
            and lines[i + 2].startswith("2 ")
        ):
            name, line1, line2 = lines[i], lines[i + 1], lines[i + 2]
            i += 3
        else:
            i += 1  # skip unrecognized lines
            continue

        try:
            result.append(OrbitalElements.from_lines(line1, line2, name=name))
        except ValueError as exc:
            logger.warning("Skipping malformed TLE entry %r: %s", name or line1[:7], exc)

    logger.debug("Parsed %d TLEs from text", len(result))
    return result
