"""Engine settings.

Defaults come from :mod:`orbitops.utils.constants`; every field can be
overridden when constructing :class:`EngineSettings` or loaded from a plain
mapping (for example a parsed JSON or TOML section).
"""
from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass
from typing import Any, Mapping

from orbitops.core.probability import PcMethod
from orbitops.core.propagation import PropagationMode
from orbitops.utils import constants as C


@dataclass(frozen=True)
class EngineSettings:
    # Screening
    screening_radius_km: float = C.DEFAULT_SCREENING_RADIUS_KM
    screening_step_s: float = C.DEFAULT_SCREENING_STEP_S
    tca_tolerance_s: float = C.DEFAULT_TCA_TOLERANCE_S
    max_refine_iterations: int = C.DEFAULT_MAX_REFINE_ITERATIONS
    propagation_mode: PropagationMode = PropagationMode.SGP4
    shell_prefilter: bool = True

    # Risk
    hard_body_radius_km: float = C.DEFAULT_HARD_BODY_RADIUS_KM
    proxy_sigma_km: float = C.DEFAULT_PROXY_SIGMA_KM
    mc_samples: int = C.DEFAULT_MC_SAMPLES
    mc_seed: int = C.DEFAULT_MC_SEED
    covariance_method: PcMethod = PcMethod.MONTE_CARLO
    estimate_covariance: bool = False

    # Maneuvers
    probe_delta_v_km_s: float = C.DEFAULT_PROBE_DELTA_V_KM_S
    miss_tolerance_km: float = C.DEFAULT_MISS_TOLERANCE_KM
    max_line_search_iterations: int = C.DEFAULT_MAX_LINE_SEARCH_ITERATIONS
    max_alternatives: int = C.DEFAULT_MAX_ALTERNATIVES
    trajectory_samples: int = C.DEFAULT_TRAJECTORY_SAMPLES

    # Replay
    record_interval_s: float = C.DEFAULT_RECORD_INTERVAL_S
    max_snapshots: int = C.DEFAULT_MAX_SNAPSHOTS
    tick_interval_s: float = C.DEFAULT_TICK_INTERVAL_S

    # Workers
    max_workers: int = 2

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> EngineSettings:
        """Build validated settings from a mapping of field names.

        Enum fields accept their string values (``"analytic"``, ``"foster_1992"``).

        Raises:
            ValueError: On unknown keys or invalid values.
        """
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(unknown)}")
        kwargs = dict(values)
        if "propagation_mode" in kwargs:
            kwargs["propagation_mode"] = PropagationMode(kwargs["propagation_mode"])
        if "covariance_method" in kwargs:
            kwargs["covariance_method"] = PcMethod(kwargs["covariance_method"])
        settings = cls(**kwargs)
        settings.validate()
        return settings

    def replace(self, **changes: Any) -> EngineSettings:
        settings = dataclasses.replace(self, **changes)
        settings.validate()
        return settings

    def validate(self) -> None:
        """Raise ValueError if any setting is out of range."""
        positive = (
            "screening_radius_km", "screening_step_s", "tca_tolerance_s", "hard_body_radius_km",
            "proxy_sigma_km", "probe_delta_v_km_s", "miss_tolerance_km", "tick_interval_s",
        )
        for name in positive:
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
                raise ValueError(f"{name} must be > 0")
        for name in ("max_refine_iterations", "mc_samples", "max_line_search_iterations", "max_snapshots",
                     "max_workers"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1")
        if self.trajectory_samples < 2:
            raise ValueError("trajectory_samples must be >= 2")
        if self.max_alternatives < 0:
            raise ValueError("max_alternatives must be >= 0")
        if self.record_interval_s < 0:
            raise ValueError("record_interval_s must be >= 0")
        if self.tca_tolerance_s >= self.screening_step_s:
            raise ValueError("tca_tolerance_s must be smaller than screening_step_s")
        if self.covariance_method is PcMethod.CLOSED_FORM:
            raise ValueError("covariance_method must be monte_carlo or foster_1992")
