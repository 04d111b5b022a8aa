from __future__ import annotations

"""Physical constants and default thresholds for orbital mechanics.

Units are km, km/s, seconds and kg unless a name says otherwise.
"""

# --- Earth parameters (WGS-84) ---
EARTH_RADIUS_KM: float = 6378.137
"""Equatorial radius of Earth in km."""

EARTH_MU_KM3_S2: float = 398600.4418
"""Earth gravitational parameter (GM) in km³/s²."""

EARTH_J2: float = 1.08262668e-3
"""Earth J2 oblateness coefficient."""

STANDARD_GRAVITY_M_S2: float = 9.80665
"""Standard gravity g0 in m/s², used by the rocket equation."""

SECONDS_PER_DAY: float = 86400.0

UNIX_EPOCH_JD: float = 2440587.5
"""Julian date of 1970-01-01T00:00:00Z."""

# --- Screening defaults ---
DEFAULT_SCREENING_RADIUS_KM: float = 10.0
"""Miss distance above which an approach is not a conjunction candidate."""

DEFAULT_SCREENING_STEP_S: float = 60.0
"""Coarse sampling step for the separation function in seconds."""

DEFAULT_TCA_TOLERANCE_S: float = 1.0
"""Bracket width at which TCA refinement stops, in seconds."""

DEFAULT_MAX_REFINE_ITERATIONS: int = 50
"""Golden-section iterations allowed before a TCA is flagged low-confidence."""

# --- Risk ---
CRITICAL_PC_THRESHOLD: float = 1e-3
HIGH_PC_THRESHOLD: float = 1e-4
MEDIUM_PC_THRESHOLD: float = 1e-5

DEFAULT_HARD_BODY_RADIUS_KM: float = 0.02
"""Combined hard-body radius (20 m) used when none is supplied."""

DEFAULT_PROXY_SIGMA_KM: float = 0.5
"""Combined 1-sigma position uncertainty for the closed-form Pc proxy."""

SLOW_ENCOUNTER_KM_S: float = 1e-3
"""Below this relative speed the short-encounter (2-D) model is not used."""

DEFAULT_MC_SAMPLES: int = 10_000
DEFAULT_MC_SEED: int = 42

# --- Maneuvers ---
DEFAULT_PROBE_DELTA_V_KM_S: float = 1e-5
"""Finite-difference probe (1 cm/s) for maneuver sensitivity estimates."""

DEFAULT_MISS_TOLERANCE_KM: float = 0.01
"""Accepted overshoot of the target miss distance in the line search."""

DEFAULT_MAX_LINE_SEARCH_ITERATIONS: int = 60
DEFAULT_MAX_ALTERNATIVES: int = 4
DEFAULT_TRAJECTORY_SAMPLES: int = 60

# --- Replay ---
DEFAULT_RECORD_INTERVAL_S: float = 1.0
DEFAULT_MAX_SNAPSHOTS: int = 86_400
MIN_PLAYBACK_SPEED: float = 0.1
MAX_PLAYBACK_SPEED: float = 10.0
DEFAULT_TICK_INTERVAL_S: float = 0.05

# --- Orbit regime boundaries ---
LEO_MAX_ALT_KM: float = 2000.0
"""Maximum altitude for Low Earth Orbit in km."""

GEO_ALT_KM: float = 35786.0
"""Geostationary orbit altitude in km."""
