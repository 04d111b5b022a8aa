"""Debris classification and environment statistics.

Objects are classified from their catalog entries alone (name, international
designator, drag term and mean motion). A :class:`DebrisModel` built from a
catalog can then report spatial density by altitude shell, per-satellite
debris risk from propagated positions, and summary statistics.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

import numpy as np
from numpy.typing import NDArray

from orbitops.core.elements import OrbitalElements
from orbitops.core.propagation import StateArena
from orbitops.utils.constants import EARTH_MU_KM3_S2, EARTH_RADIUS_KM, GEO_ALT_KM, LEO_MAX_ALT_KM, SECONDS_PER_DAY

logger = logging.getLogger(__name__)


class DebrisType(Enum):
    ROCKET_BODY = "rocket_body"        # spent upper stages
    PAYLOAD_DEBRIS = "payload_debris"  # pieces shed by a payload
    MISSION_DEBRIS = "mission_debris"  # items released during operations
    FRAGMENTATION = "fragmentation"    # breakup or collision fragments
    UNKNOWN = "unknown"


class DebrisSize(Enum):
    LARGE = "large"    # > 10 cm
    MEDIUM = "medium"  # 1-10 cm
    SMALL = "small"    # < 1 cm


class DebrisRisk(Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NEGLIGIBLE = "negligible"


# Name fragments that mark a catalog entry as debris
DEBRIS_KEYWORDS = (
    "DEB", "DEBRIS", "R/B", "ROCKET", "FRAG", "FRAGMENT",
    "COOLANT", "NAK", "TANK", "PLATFORM", "OBJECT",
)

# Parents of major fragmentation events
KNOWN_DEBRIS_PARENTS = {
    13552: "Cosmos 954",
    25730: "Fengyun-1C ASAT test",
    24946: "Cosmos 2251 / Iridium 33 collision",
    25544: "ISS",
    36499: "Briz-M R/B explosion",
    40258: "Cosmos 1408 ASAT test",
}
_PARENT_CATALOG_WINDOW = 5000

_HIGH_DRAG_BSTAR = 0.01
_MEDIUM_SIZE_BSTAR = 0.005
_SMALL_SIZE_BSTAR = 0.001
_SMALL_SIZE_MAX_ALT_KM = 300.0

_STABLE_ALT_KM = 800.0
_REENTRY_ALT_KM = 200.0

_MASS_PER_RCS_KG_M2 = 10.0
_MIN_FIELD_PIECES = 3

NEARBY_RADIUS_KM = 100.0
MAX_CLOSEST_DEBRIS = 10
MEAN_LEO_SPEED_KM_S = 7.5
SECONDS_PER_YEAR = 365.25 * SECONDS_PER_DAY


def semi_major_axis_km(elements: OrbitalElements) -> float:
    """Semi-major axis from the mean motion."""
    n_rad_s = 2.0 * math.pi / elements.period_s
    return (EARTH_MU_KM3_S2 / n_rad_s**2) ** (1.0 / 3.0)


def mean_altitude_km(elements: OrbitalElements) -> float:
    return semi_major_axis_km(elements) - EARTH_RADIUS_KM


def is_debris(elements: OrbitalElements) -> bool:
    """Whether a catalog entry looks like debris rather than an active payload.

    Checks the name for debris keywords, the international designator for a
    late piece letter, and the drag term for a small high-drag object.
    """
    name = elements.name.upper()
    if any(keyword in name for keyword in DEBRIS_KEYWORDS):
        return True

    designator = elements.intl_designator
    if len(designator) >= 7 and "DEB" not in designator:
        piece = designator[-1]
        if piece.isalpha() and ord(piece.upper()) - ord("A") > 5:
            return True

    return abs(elements.bstar) > _HIGH_DRAG_BSTAR


def classify_debris(elements: OrbitalElements) -> DebrisType:
    name = elements.name.upper()
    if "R/B" in name or "ROCKET" in name:
        return DebrisType.ROCKET_BODY
    if "FRAG" in name:
        return DebrisType.FRAGMENTATION
    if "DEB" in name:
        if any(abs(elements.norad_id - parent) < _PARENT_CATALOG_WINDOW for parent in KNOWN_DEBRIS_PARENTS):
            return DebrisType.FRAGMENTATION
        return DebrisType.PAYLOAD_DEBRIS
    if "COOLANT" in name or "NAK" in name or "TANK" in name:
        return DebrisType.MISSION_DEBRIS
    return DebrisType.UNKNOWN


def estimate_size(elements: OrbitalElements) -> DebrisSize:
    """Size class from altitude, drag term and name.

    Low objects with a high drag term are small; rocket bodies are large;
    anything else tracked is large unless its drag term says otherwise.
    """
    bstar = abs(elements.bstar)
    if mean_altitude_km(elements) < _SMALL_SIZE_MAX_ALT_KM and bstar > _SMALL_SIZE_BSTAR:
        return DebrisSize.SMALL
    if "R/B" in elements.name.upper():
        return DebrisSize.LARGE
    if bstar > _MEDIUM_SIZE_BSTAR:
        return DebrisSize.MEDIUM
    return DebrisSize.LARGE


_BASE_RCS_M2 = {DebrisSize.LARGE: 1.0, DebrisSize.MEDIUM: 0.1, DebrisSize.SMALL: 0.01}


def estimate_rcs(elements: OrbitalElements) -> float:
    """Radar cross-section estimate in m²."""
    rcs = _BASE_RCS_M2[estimate_size(elements)]
    if classify_debris(elements) is DebrisType.ROCKET_BODY:
        rcs *= 5.0
    return rcs


def estimate_decay_days(elements: OrbitalElements) -> int | None:
    """Rough days until reentry, or ``None`` for orbits above 800 km."""
    altitude = mean_altitude_km(elements)
    if altitude > _STABLE_ALT_KM:
        return None
    if altitude < _REENTRY_ALT_KM:
        return 1
    bstar = abs(elements.bstar) + 1e-10
    decay_years = (altitude / 100.0) ** 2.5 / (bstar * 1e6)
    return int(decay_years * 365)


@dataclass
class DebrisObject:
    """One debris object with its derived properties.

    ``altitude_km`` starts as the mean of apogee and perigee altitude and
    becomes the geocentric altitude once positions are attached.
    """

    norad_id: int
    name: str
    origin: str                 # international designator
    debris_type: DebrisType
    size: DebrisSize
    rcs_m2: float
    estimated_mass_kg: float
    apogee_km: float
    perigee_km: float
    altitude_km: float
    inclination_deg: float
    decay_days: int | None      # None when the orbit is long-lived
    epoch: float
    position_km: NDArray[np.float64] | None = None
    velocity_km_s: NDArray[np.float64] | None = None

    @classmethod
    def from_elements(cls, elements: OrbitalElements) -> DebrisObject:
        a = semi_major_axis_km(elements)
        apogee = a * (1.0 + elements.eccentricity) - EARTH_RADIUS_KM
        perigee = a * (1.0 - elements.eccentricity) - EARTH_RADIUS_KM
        rcs = estimate_rcs(elements)
        return cls(
            norad_id=elements.norad_id,
            name=elements.name,
            origin=elements.intl_designator,
            debris_type=classify_debris(elements),
            size=estimate_size(elements),
            rcs_m2=rcs,
            estimated_mass_kg=rcs * _MASS_PER_RCS_KG_M2,
            apogee_km=apogee,
            perigee_km=perigee,
            altitude_km=(apogee + perigee) / 2.0,
            inclination_deg=elements.inclination_deg,
            decay_days=estimate_decay_days(elements),
            epoch=elements.epoch,
        )


@dataclass(frozen=True)
class DebrisField:
    """Pieces sharing a launch (designator prefix ``YYNNN``)."""

    launch: str
    norad_ids: tuple[int, ...]
    center_km: NDArray[np.float64] | None   # mean position, None without positions
    spread_radius_km: float

    @property
    def total_fragments(self) -> int:
        return len(self.norad_ids)


@dataclass(frozen=True)
class ShellDensity:
    min_altitude_km: float
    max_altitude_km: float
    debris_count: int
    spatial_density: float      # objects per km³
    flux: float                 # objects per m² per year


@dataclass(frozen=True)
class DebrisRiskAssessment:
    satellite_id: int
    overall_risk: DebrisRisk
    nearby_debris_count: int
    closest_debris: list[tuple[int, float]]   # (norad_id, distance km), nearest first
    estimated_flux: float                     # objects per m² per year


@dataclass(frozen=True)
class DebrisStatistics:
    total_debris: int = 0
    rocket_bodies: int = 0
    payload_debris: int = 0
    fragments: int = 0          # fragmentation, mission and unclassified debris
    leo_debris: int = 0
    meo_debris: int = 0
    geo_debris: int = 0
    average_altitude_km: float = 0.0
    max_density_altitude_km: float = 0.0   # centre of the fullest 50 km bin


@dataclass
class DebrisConfig:
    """Filters applied when loading debris from a catalog."""

    include_rocket_bodies: bool = True
    include_fragments: bool = True
    min_altitude_km: float = 150.0       # lower perigees decay within days
    max_altitude_km: float = 50000.0
    max_debris_objects: int = 10000


class DebrisModel:
    """Debris population of a catalog.

    Args:
        config: Load filters; defaults to :class:`DebrisConfig`.
    """

    def __init__(self, config: DebrisConfig | None = None) -> None:
        self.config = config or DebrisConfig()
        self._debris: list[DebrisObject] = []
        self._by_id: dict[int, DebrisObject] = {}
        self._fields: list[DebrisField] = []

    @property
    def debris(self) -> list[DebrisObject]:
        return list(self._debris)

    @property
    def fields(self) -> list[DebrisField]:
        return list(self._fields)

    def __len__(self) -> int:
        return len(self._debris)

    def load(self, elements: Iterable[OrbitalElements]) -> None:
        """Replace the population with the debris found in ``elements``."""
        cfg = self.config
        self._debris = []
        for elem in elements:
            if not is_debris(elem):
                continue
            if len(self._debris) >= cfg.max_debris_objects:
                logger.warning("Debris population capped at %d objects", cfg.max_debris_objects)
                break

            obj = DebrisObject.from_elements(elem)
            if obj.perigee_km < cfg.min_altitude_km or obj.apogee_km > cfg.max_altitude_km:
                continue
            if obj.debris_type is DebrisType.ROCKET_BODY and not cfg.include_rocket_bodies:
                continue
            if (obj.debris_type in (DebrisType.FRAGMENTATION, DebrisType.PAYLOAD_DEBRIS)
                    and not cfg.include_fragments):
                continue
            self._debris.append(obj)

        self._by_id = {obj.norad_id: obj for obj in self._debris}
        self._identify_fields()
        logger.info("Loaded %d debris objects in %d fields", len(self._debris), len(self._fields))

    def update_positions(self, arena: StateArena) -> int:
        """Attach positions from a propagated arena; returns how many were updated."""
        updated = 0
        for object_id in arena.object_ids:
            obj = self._by_id.get(object_id)
            if obj is None:
                continue
            i = arena.slot(object_id)
            if not arena.valid[i]:
                continue
            obj.position_km = arena.positions[i].copy()
            obj.velocity_km_s = arena.velocities[i].copy()
            obj.altitude_km = float(np.linalg.norm(obj.position_km)) - EARTH_RADIUS_KM
            updated += 1
        self._identify_fields()
        logger.debug("Updated %d debris positions at t=%.3f", updated, arena.timestamp)
        return updated

    def in_shell(self, min_altitude_km: float, max_altitude_km: float) -> list[DebrisObject]:
        return [obj for obj in self._debris if min_altitude_km <= obj.altitude_km <= max_altitude_km]

    def by_type(self, debris_type: DebrisType) -> list[DebrisObject]:
        return [obj for obj in self._debris if obj.debris_type is debris_type]

    def _identify_fields(self) -> None:
        groups: dict[str, list[DebrisObject]] = defaultdict(list)
        for obj in self._debris:
            if len(obj.origin) >= 5:
                groups[obj.origin[:5]].append(obj)

        fields = []
        for launch in sorted(groups):
            members = groups[launch]
            if len(members) < _MIN_FIELD_PIECES:
                continue
            placed = [obj.position_km for obj in members if obj.position_km is not None]
            center = None
            spread = 0.0
            if placed:
                pts = np.array(placed)
                center = pts.mean(axis=0)
                spread = float(np.max(np.linalg.norm(pts - center, axis=1)))
            fields.append(DebrisField(launch, tuple(obj.norad_id for obj in members), center, spread))
        self._fields = fields

    def shell_densities(
        self,
        shell_thickness_km: float = 50.0,
        min_altitude_km: float = 200.0,
        max_altitude_km: float = LEO_MAX_ALT_KM,
    ) -> list[ShellDensity]:
        """Spatial density and flux in spherical shells across LEO.

        Flux assumes every object crosses the shell at the mean LEO speed.
        """
        if shell_thickness_km <= 0.0:
            raise ValueError("shell_thickness_km must be positive")
        lows = np.arange(min_altitude_km, max_altitude_km, shell_thickness_km)
        altitudes = np.array([obj.altitude_km for obj in self._debris], dtype=np.float64)

        shells = []
        for low in lows:
            high = low + shell_thickness_km
            count = int(np.count_nonzero((altitudes >= low) & (altitudes < high)))
            r_inner = EARTH_RADIUS_KM + low
            r_outer = EARTH_RADIUS_KM + high
            volume = 4.0 / 3.0 * math.pi * (r_outer**3 - r_inner**3)
            density = count / volume
            # km⁻³ · km/s = km⁻² s⁻¹, then to m⁻² yr⁻¹
            flux = density * MEAN_LEO_SPEED_KM_S * 1e-6 * SECONDS_PER_YEAR
            shells.append(ShellDensity(float(low), float(high), count, density, flux))
        return shells

    def assess_risk(
        self,
        satellite_id: int,
        position_km: NDArray[np.float64],
        altitude_km: float | None = None,
    ) -> DebrisRiskAssessment:
        """Debris risk for a satellite at ``position_km``.

        Only debris with attached positions counts toward proximity; the
        satellite itself is skipped when it is part of the population.
        """
        position_km = np.asarray(position_km, dtype=np.float64)
        if altitude_km is None:
            altitude_km = float(np.linalg.norm(position_km)) - EARTH_RADIUS_KM

        nearby: list[tuple[int, float]] = []
        for obj in self._debris:
            if obj.position_km is None or obj.norad_id == satellite_id:
                continue
            distance = float(np.linalg.norm(obj.position_km - position_km))
            if distance < NEARBY_RADIUS_KM:
                nearby.append((obj.norad_id, distance))
        nearby.sort(key=lambda item: item[1])

        flux = 0.0
        for shell in self.shell_densities():
            if shell.min_altitude_km <= altitude_km < shell.max_altitude_km:
                flux = shell.flux
                break

        closest = nearby[0][1] if nearby else math.inf
        if closest < 1.0:
            risk = DebrisRisk.CRITICAL
        elif closest < 10.0:
            risk = DebrisRisk.HIGH
        elif len(nearby) > 10:
            risk = DebrisRisk.MEDIUM
        elif nearby:
            risk = DebrisRisk.LOW
        else:
            risk = DebrisRisk.NEGLIGIBLE

        return DebrisRiskAssessment(
            satellite_id=satellite_id,
            overall_risk=risk,
            nearby_debris_count=len(nearby),
            closest_debris=nearby[:MAX_CLOSEST_DEBRIS],
            estimated_flux=flux,
        )

    def statistics(self) -> DebrisStatistics:
        if not self._debris:
            return DebrisStatistics()

        counts: dict[str, int] = defaultdict(int)
        bins: dict[int, int] = defaultdict(int)
        for obj in self._debris:
            if obj.debris_type is DebrisType.ROCKET_BODY:
                counts["rocket_bodies"] += 1
            elif obj.debris_type is DebrisType.PAYLOAD_DEBRIS:
                counts["payload_debris"] += 1
            else:
                counts["fragments"] += 1

            if obj.altitude_km < LEO_MAX_ALT_KM:
                counts["leo_debris"] += 1
            elif obj.altitude_km < GEO_ALT_KM:
                counts["meo_debris"] += 1
            else:
                counts["geo_debris"] += 1
            bins[int(obj.altitude_km // 50.0)] += 1

        # ties go to the lowest bin
        peak = max(sorted(bins), key=lambda b: bins[b])
        return DebrisStatistics(
            total_debris=len(self._debris),
            average_altitude_km=sum(obj.altitude_km for obj in self._debris) / len(self._debris),
            max_density_altitude_km=(peak + 0.5) * 50.0,
            **counts,
        )
