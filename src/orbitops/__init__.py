"""
OrbitOps: conjunction screening and collision avoidance for Python.

Propagates a catalog of tracked objects, finds close approaches, grades
their collision risk, plans avoidance burns within a fuel budget, and
records propagated snapshots for replay.
"""

from __future__ import annotations

__version__ = "0.1.0-dev"

from orbitops.config import EngineSettings
from orbitops.core.catalog import CatalogSnapshot, filter_stale, merge_elements
from orbitops.core.debris import (
    DebrisConfig,
    DebrisModel,
    DebrisRisk,
    DebrisRiskAssessment,
    DebrisSize,
    DebrisType,
    classify_debris,
    is_debris,
)
from orbitops.core.elements import OrbitalElements, parse_tle
from orbitops.core.engine import CancellationToken, ConjunctionEngine, TaskHandle
from orbitops.core.errors import (
    EmptyCatalogError,
    ErrorKind,
    InvalidOrbitError,
    InvalidTransitionError,
    OperationCancelled,
    OrbitOpsError,
)
from orbitops.core.maneuver import (
    ManeuverAlternative,
    ManeuverResult,
    ManeuverSimulator,
    SpacecraftParams,
    fuel_required,
)
from orbitops.core.optimizer import ManeuverOptimizer, OptimizeManeuverResult
from orbitops.core.probability import MonteCarloStats, PcMethod, PositionCovariance
from orbitops.core.propagation import PropagationMode, StateArena, StateVector, propagate, propagate_batch
from orbitops.core.replay import (
    ReplayCommand,
    ReplayController,
    ReplayMode,
    ReplaySnapshot,
    ReplayState,
    SnapshotHistory,
)
from orbitops.core.risk import RiskAssessment, RiskAssessor, RiskTier, classify_probability, rank_events
from orbitops.core.screening import ConjunctionDetector, ConjunctionEvent, ScanReport, detect
from orbitops.data.celestrak import CelesTrakClient, TLESource

__all__ = [
    "__version__",
    "EngineSettings",
    "CatalogSnapshot",
    "filter_stale",
    "merge_elements",
    "DebrisConfig",
    "DebrisModel",
    "DebrisRisk",
    "DebrisRiskAssessment",
    "DebrisSize",
    "DebrisType",
    "classify_debris",
    "is_debris",
    "OrbitalElements",
    "parse_tle",
    "CancellationToken",
    "ConjunctionEngine",
    "TaskHandle",
    "EmptyCatalogError",
    "ErrorKind",
    "InvalidOrbitError",
    "InvalidTransitionError",
    "OperationCancelled",
    "OrbitOpsError",
    "ManeuverAlternative",
    "ManeuverResult",
    "ManeuverSimulator",
    "SpacecraftParams",
    "fuel_required",
    "ManeuverOptimizer",
    "OptimizeManeuverResult",
    "MonteCarloStats",
    "PcMethod",
    "PositionCovariance",
    "PropagationMode",
    "StateArena",
    "StateVector",
    "propagate",
    "propagate_batch",
    "ReplayCommand",
    "ReplayController",
    "ReplayMode",
    "ReplaySnapshot",
    "ReplayState",
    "SnapshotHistory",
    "RiskAssessment",
    "RiskAssessor",
    "RiskTier",
    "classify_probability",
    "rank_events",
    "ConjunctionDetector",
    "ConjunctionEvent",
    "ScanReport",
    "detect",
    "CelesTrakClient",
    "TLESource",
]
