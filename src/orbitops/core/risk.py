from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

import numpy as np

from orbitops.core.probability import (
    MonteCarloStats,
    PcMethod,
    PositionCovariance,
    compute_pc_closed_form,
    compute_pc_covariance,
)
from orbitops.core.propagation import StateVector
from orbitops.core.screening import ConjunctionEvent
from orbitops.utils.constants import (
    CRITICAL_PC_THRESHOLD,
    DEFAULT_HARD_BODY_RADIUS_KM,
    DEFAULT_MC_SAMPLES,
    DEFAULT_MC_SEED,
    DEFAULT_PROXY_SIGMA_KM,
    HIGH_PC_THRESHOLD,
    MEDIUM_PC_THRESHOLD,
)

logger = logging.getLogger(__name__)


class RiskTier(Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """0 for the most severe tier."""
        return _TIER_RANK[self]


_TIER_RANK = {RiskTier.CRITICAL: 0, RiskTier.HIGH: 1, RiskTier.MEDIUM: 2, RiskTier.LOW: 3}


@dataclass(frozen=True)
class RiskAssessment:
    probability: float            # 0-1
    tier: RiskTier
    method: PcMethod
    miss_distance_km: float
    relative_velocity_km_s: float
    combined_hard_body_radius_km: float
    monte_carlo: MonteCarloStats | None
    recommendation: str           # human-readable action recommendation


def classify_probability(probability: float) -> RiskTier:
    """Map a collision probability onto a risk tier.

    Thresholds are strict: ``p > 1e-3`` is critical, ``p > 1e-4`` high,
    ``p > 1e-5`` medium, anything else low.
    """
    if probability > CRITICAL_PC_THRESHOLD:
        return RiskTier.CRITICAL
    elif probability > HIGH_PC_THRESHOLD:
        return RiskTier.HIGH
    elif probability > MEDIUM_PC_THRESHOLD:
        return RiskTier.MEDIUM
    else:
        return RiskTier.LOW


class RiskAssessor:
    """Computes collision probability and tier for conjunction events.

    Args:
        mc_samples: Monte-Carlo sample count when a covariance is supplied.
        seed: Seed of the Monte-Carlo generator; equal inputs give equal Pc.
        covariance_method: ``PcMethod.MONTE_CARLO`` or ``PcMethod.FOSTER_1992``.
        proxy_sigma_km: Combined 1-sigma for the closed-form proxy.
    """

    def __init__(
        self,
        mc_samples: int = DEFAULT_MC_SAMPLES,
        seed: int = DEFAULT_MC_SEED,
        covariance_method: PcMethod = PcMethod.MONTE_CARLO,
        proxy_sigma_km: float = DEFAULT_PROXY_SIGMA_KM,
    ) -> None:
        if mc_samples < 1:
            raise ValueError(f"mc_samples must be >= 1, got {mc_samples}")
        if covariance_method is PcMethod.CLOSED_FORM:
            raise ValueError("covariance_method must be a covariance-based method")
        self.mc_samples = mc_samples
        self.seed = seed
        self.covariance_method = covariance_method
        self.proxy_sigma_km = proxy_sigma_km

    def assess(
        self,
        event: ConjunctionEvent,
        combined_hard_body_radius_km: float = DEFAULT_HARD_BODY_RADIUS_KM,
        position_covariance: PositionCovariance | None = None,
        states: tuple[StateVector, StateVector] | None = None,
    ) -> RiskAssessment:
        """Assess one conjunction.

        Without a covariance the closed-form proxy is used. With one, the
        objects' positions at TCA are sampled (or integrated over the
        B-plane). ``states`` are the primary and secondary states at TCA;
        when omitted the miss geometry is reconstructed from the event's
        miss distance and relative speed.
        """
        if combined_hard_body_radius_km <= 0:
            raise ValueError(f"combined_hard_body_radius_km must be positive, got {combined_hard_body_radius_km}")

        monte_carlo = None
        if position_covariance is None:
            method = PcMethod.CLOSED_FORM
            pc = compute_pc_closed_form(
                event.miss_distance_km,
                event.relative_velocity_km_s,
                combined_hard_body_radius_km,
                self.proxy_sigma_km,
            )
        else:
            method = self.covariance_method
            if states is not None:
                pos1, vel1 = states[0].position_km, states[0].velocity_km_s
                pos2, vel2 = states[1].position_km, states[1].velocity_km_s
            else:
                pos1, vel1 = np.zeros(3), np.zeros(3)
                pos2 = np.array([event.miss_distance_km, 0.0, 0.0])
                vel2 = np.array([0.0, event.relative_velocity_km_s, 0.0])
            pc, monte_carlo = compute_pc_covariance(
                pos1, vel1, pos2, vel2,
                position_covariance,
                combined_hard_body_radius_km,
                method=method,
                mc_samples=self.mc_samples,
                seed=self.seed,
            )

        tier = classify_probability(pc)
        logger.debug("Risk %d/%d: Pc=%.2e (%s) tier=%s miss=%.3f km",
                     event.primary_id, event.secondary_id, pc, method.value, tier.value, event.miss_distance_km)
        return RiskAssessment(
            probability=pc,
            tier=tier,
            method=method,
            miss_distance_km=event.miss_distance_km,
            relative_velocity_km_s=event.relative_velocity_km_s,
            combined_hard_body_radius_km=combined_hard_body_radius_km,
            monte_carlo=monte_carlo,
            recommendation=_generate_recommendation(tier, event.low_confidence),
        )

    def assess_event(
        self,
        event: ConjunctionEvent,
        combined_hard_body_radius_km: float = DEFAULT_HARD_BODY_RADIUS_KM,
        position_covariance: PositionCovariance | None = None,
        states: tuple[StateVector, StateVector] | None = None,
    ) -> ConjunctionEvent:
        """Copy of ``event`` carrying its probability, tier and sampling stats."""
        assessment = self.assess(event, combined_hard_body_radius_km, position_covariance, states)
        return apply_assessment(event, assessment)

    def assess_all(
        self,
        events: Iterable[ConjunctionEvent],
        combined_hard_body_radius_km: float = DEFAULT_HARD_BODY_RADIUS_KM,
    ) -> list[ConjunctionEvent]:
        """Assess every event with the closed-form proxy and rank the result."""
        return rank_events(self.assess_event(e, combined_hard_body_radius_km) for e in events)


def apply_assessment(event: ConjunctionEvent, assessment: RiskAssessment) -> ConjunctionEvent:
    return dataclasses.replace(
        event,
        collision_probability=assessment.probability,
        risk_tier=assessment.tier,
        monte_carlo=assessment.monte_carlo,
    )


def rank_events(events: Iterable[ConjunctionEvent]) -> list[ConjunctionEvent]:
    """Order events by tier (critical first), then by ascending TCA.

    Unassessed events sort after low-tier ones.
    """
    def key(event: ConjunctionEvent) -> tuple[int, float]:
        rank = event.risk_tier.rank if event.risk_tier is not None else len(_TIER_RANK)
        return rank, event.tca

    return sorted(events, key=key)


def _generate_recommendation(tier: RiskTier, low_confidence: bool) -> str:
    """Generate human-readable action recommendation."""
    if tier is RiskTier.CRITICAL:
        text = "IMMEDIATE ACTION REQUIRED: plan and execute a collision avoidance maneuver"
    elif tier is RiskTier.HIGH:
        text = "Continuous monitoring required - prepare collision avoidance maneuver"
    elif tier is RiskTier.MEDIUM:
        text = "Monitor conjunction closely and update assessment as tracking improves"
    else:
        text = "Maintain awareness - routine monitoring sufficient"
    if low_confidence:
        text += " (TCA is a coarse estimate; rescreen with a finer step)"
    return text
