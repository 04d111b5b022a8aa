"""Collision probability estimation.

Implements several ways of computing the probability of collision (Pc) for
a conjunction: a closed-form proxy that needs no covariance, Monte-Carlo
sampling of each object's position uncertainty, and Foster's 1992 B-plane
integral.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum

import numpy as np
from numpy.typing import NDArray
from scipy.integrate import dblquad

from orbitops.core.kepler import ric_basis
from orbitops.utils.constants import (
    DEFAULT_MC_SAMPLES,
    DEFAULT_MC_SEED,
    DEFAULT_PROXY_SIGMA_KM,
    SLOW_ENCOUNTER_KM_S,
)

logger = logging.getLogger(__name__)

# Base 1-sigma uncertainty of a well-tracked object, km (radial, in-track, cross-track)
_BASE_SIGMAS_RIC_KM = (0.05, 0.5, 0.1)
_DEBRIS_SIGMA_FACTOR = 3.0


class PcMethod(Enum):
    """Collision probability calculation methods."""

    CLOSED_FORM = "closed_form"
    MONTE_CARLO = "monte_carlo"
    FOSTER_1992 = "foster_1992"


@dataclass(frozen=True)
class MonteCarloStats:
    """Statistics of a Monte-Carlo Pc estimate.

    Attributes:
        probability: Fraction of samples closer than the hard-body radius.
        sample_count: Number of sample pairs drawn.
        collisions: Samples below the hard-body radius.
        min_miss_distance_km: Smallest sampled separation.
        max_miss_distance_km: Largest sampled separation.
        mean_miss_distance_km: Mean sampled separation.
        std_miss_distance_km: Standard deviation of sampled separations.
        combined_hard_body_radius_km: Radius the samples were tested against.
    """

    probability: float
    sample_count: int
    collisions: int
    min_miss_distance_km: float
    max_miss_distance_km: float
    mean_miss_distance_km: float
    std_miss_distance_km: float
    combined_hard_body_radius_km: float


@dataclass(frozen=True)
class PositionCovariance:
    """Position uncertainty of both objects of a conjunction at TCA.

    Attributes:
        primary: 3x3 covariance of the primary object, km².
        secondary: 3x3 covariance of the secondary object, km².
        frame: ``"ric"`` when each matrix is expressed in its own object's
            Radial/In-track/Cross-track frame, ``"inertial"`` otherwise.
    """

    primary: NDArray[np.float64]
    secondary: NDArray[np.float64]
    frame: str = "ric"

    def __post_init__(self) -> None:
        for label in ("primary", "secondary"):
            matrix = np.asarray(getattr(self, label), dtype=np.float64)
            if matrix.shape != (3, 3):
                raise ValueError(f"{label} covariance must be 3x3, got shape {matrix.shape}")
            if not np.all(np.isfinite(matrix)):
                raise ValueError(f"{label} covariance contains non-finite values")
            object.__setattr__(self, label, matrix)
        if self.frame not in ("ric", "inertial"):
            raise ValueError(f"Unknown covariance frame {self.frame!r}")

    @classmethod
    def from_sigmas(
        cls,
        primary_sigmas_km: tuple[float, float, float],
        secondary_sigmas_km: tuple[float, float, float],
        frame: str = "ric",
    ) -> PositionCovariance:
        """Diagonal covariances from per-axis 1-sigma values."""
        return cls(
            primary=np.diag(np.square(primary_sigmas_km)),
            secondary=np.diag(np.square(secondary_sigmas_km)),
            frame=frame,
        )

    @classmethod
    def estimated(
        cls,
        primary_hours_since_epoch: float,
        secondary_hours_since_epoch: float,
        primary_is_debris: bool = False,
        secondary_is_debris: bool = False,
    ) -> PositionCovariance:
        """Default RIC covariances grown with element age."""
        return cls.from_sigmas(
            estimate_sigmas_ric(primary_hours_since_epoch, primary_is_debris),
            estimate_sigmas_ric(secondary_hours_since_epoch, secondary_is_debris),
        )

    def inertial(
        self,
        primary_state: tuple[NDArray[np.float64], NDArray[np.float64]] | None = None,
        secondary_state: tuple[NDArray[np.float64], NDArray[np.float64]] | None = None,
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Both matrices rotated into the inertial frame.

        RIC matrices stay as they are when no ``(position, velocity)`` state
        is given for the corresponding object.
        """
        if self.frame == "inertial":
            return self.primary, self.secondary
        return _rotate_ric(self.primary, primary_state), _rotate_ric(self.secondary, secondary_state)


def _rotate_ric(
    cov: NDArray[np.float64],
    state: tuple[NDArray[np.float64], NDArray[np.float64]] | None,
) -> NDArray[np.float64]:
    if state is None:
        return cov
    basis = ric_basis(*state)
    return basis.T @ cov @ basis


def estimate_sigmas_ric(hours_since_epoch: float, is_debris: bool = False) -> tuple[float, float, float]:
    """Approximate RIC 1-sigma position uncertainty (km) for a TLE of given age.

    Uncertainty grows roughly linearly over the first day, faster over the
    first week, then quadratically with a cap for stale elements.
    """
    sigmas = np.array(_BASE_SIGMAS_RIC_KM)
    if is_debris:
        sigmas *= _DEBRIS_SIGMA_FACTOR

    hours = abs(hours_since_epoch)
    days = hours / 24.0
    if hours <= 24.0:
        sigmas *= 1.0 + 0.05 * hours
    elif hours <= 168.0:
        sigmas *= 1.5 + 0.5 * days
    else:
        scale = 3.0 + 0.2 * days * days / 7.0
        sigmas *= np.minimum(scale, np.array([50.0, 100.0, 50.0]))
    return float(sigmas[0]), float(sigmas[1]), float(sigmas[2])


def compute_pc_closed_form(
    miss_distance_km: float,
    relative_velocity_km_s: float,
    hard_body_radius_km: float,
    sigma_km: float = DEFAULT_PROXY_SIGMA_KM,
) -> float:
    """Closed-form Pc proxy from miss distance alone.

    Uses the short-encounter approximation ``R²/(2σ²)·exp(-d²/(2σ²))``. When
    the objects barely move relative to each other the encounter is not
    short and the 3-D density form
    ``(4/3·π·R³)/((2π)^{3/2}σ³)·exp(-d²/(2σ²))`` is used instead.

    Returns:
        Collision probability clamped to [0, 1].
    """
    if hard_body_radius_km <= 0 or sigma_km <= 0:
        raise ValueError("hard_body_radius_km and sigma_km must be positive")
    d = max(miss_distance_km, 0.0)
    decay = math.exp(-d * d / (2.0 * sigma_km * sigma_km))

    if relative_velocity_km_s < SLOW_ENCOUNTER_KM_S:
        volume = 4.0 / 3.0 * math.pi * hard_body_radius_km ** 3
        pc = volume / ((2.0 * math.pi) ** 1.5 * sigma_km ** 3) * decay
    else:
        pc = hard_body_radius_km ** 2 / (2.0 * sigma_km * sigma_km) * decay
    return min(max(pc, 0.0), 1.0)


def compute_pc_monte_carlo(
    pos1: NDArray[np.float64],
    pos2: NDArray[np.float64],
    cov1: NDArray[np.float64],
    cov2: NDArray[np.float64],
    hard_body_radius_km: float,
    n_samples: int = DEFAULT_MC_SAMPLES,
    seed: int = DEFAULT_MC_SEED,
) -> MonteCarloStats:
    """Monte Carlo Pc estimation.

    Samples each object's position at TCA from its own covariance and counts
    sample pairs closer than the hard-body radius.

    Args:
        pos1: Nominal primary position at TCA (km).
        pos2: Nominal secondary position at TCA (km).
        cov1: Primary 3x3 position covariance (km²), same frame as ``pos1``.
        cov2: Secondary 3x3 position covariance (km²).
        hard_body_radius_km: Combined hard-body radius (km).
        n_samples: Number of sample pairs.
        seed: Random seed for reproducibility.
    """
    if n_samples < 1:
        raise ValueError(f"n_samples must be >= 1, got {n_samples}")
    rng = np.random.default_rng(seed)
    pos1 = np.asarray(pos1, dtype=np.float64)
    pos2 = np.asarray(pos2, dtype=np.float64)

    try:
        samples1 = rng.multivariate_normal(pos1, cov1, size=n_samples)
        samples2 = rng.multivariate_normal(pos2, cov2, size=n_samples)
    except np.linalg.LinAlgError:
        # Singular covariance - cannot sample
        logger.warning("Monte-Carlo Pc: covariance cannot be sampled, reporting nominal miss only")
        miss = float(np.linalg.norm(pos1 - pos2))
        hit = int(miss < hard_body_radius_km)
        return MonteCarloStats(float(hit), 1, hit, miss, miss, miss, 0.0, hard_body_radius_km)

    distances = np.linalg.norm(samples1 - samples2, axis=1)
    collisions = int(np.sum(distances < hard_body_radius_km))

    stats = MonteCarloStats(
        probability=collisions / n_samples,
        sample_count=n_samples,
        collisions=collisions,
        min_miss_distance_km=float(distances.min()),
        max_miss_distance_km=float(distances.max()),
        mean_miss_distance_km=float(distances.mean()),
        std_miss_distance_km=float(distances.std()),
        combined_hard_body_radius_km=hard_body_radius_km,
    )
    logger.debug("Monte-Carlo Pc: %d/%d samples inside %.4f km", collisions, n_samples, hard_body_radius_km)
    return stats


def _project_to_bplane(
    rel_pos: NDArray[np.float64],
    rel_vel: NDArray[np.float64],
    cov_pos: NDArray[np.float64],
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Project miss vector and combined position covariance onto the B-plane.

    The B-plane is perpendicular to the relative velocity. With no relative
    velocity the first two inertial axes are used.

    Returns:
        Tuple of (miss_2d: shape (2,), cov_2d: shape (2,2))
    """
    rel_vel_norm = np.linalg.norm(rel_vel)
    if rel_vel_norm < 1e-10:
        return rel_pos[:2], cov_pos[:2, :2]

    z_hat = rel_vel / rel_vel_norm
    x_hat = np.cross(z_hat, np.array([0.0, 0.0, 1.0]))
    if np.linalg.norm(x_hat) < 1e-10:
        # z_hat is nearly parallel to [0, 0, 1]
        x_hat = np.cross(z_hat, np.array([1.0, 0.0, 0.0]))
    x_hat = x_hat / np.linalg.norm(x_hat)
    y_hat = np.cross(z_hat, x_hat)

    P = np.vstack([x_hat, y_hat])
    return P @ rel_pos, P @ cov_pos @ P.T


def compute_pc_foster(
    miss_2d: NDArray[np.float64],
    cov_2d: NDArray[np.float64],
    hard_body_radius_km: float,
) -> float:
    """Integrate the bivariate normal over the hard-body disk (Foster 1992).

    Uses ``scipy.integrate.dblquad`` in polar coordinates around the origin
    of the B-plane, with the Gaussian centered on the miss vector.
    """
    det = np.linalg.det(cov_2d)
    if det < 1e-20:
        # Covariance is nearly singular - probability is essentially 0
        return 0.0

    cov_inv = np.linalg.inv(cov_2d)
    mx, my = miss_2d
    norm_factor = 1.0 / (2.0 * np.pi * np.sqrt(det))

    def integrand_polar(theta, r):
        offset = np.array([r * np.cos(theta) - mx, r * np.sin(theta) - my])
        return norm_factor * np.exp(-0.5 * (offset @ cov_inv @ offset)) * r

    result, _ = dblquad(
        integrand_polar,
        0.0, hard_body_radius_km,
        lambda r: 0.0, lambda r: 2.0 * np.pi,
        epsabs=1e-10, epsrel=1e-6,
    )
    return float(np.clip(result, 0.0, 1.0))


def compute_pc_covariance(
    pos1: NDArray[np.float64],
    vel1: NDArray[np.float64],
    pos2: NDArray[np.float64],
    vel2: NDArray[np.float64],
    covariance: PositionCovariance,
    hard_body_radius_km: float,
    method: PcMethod = PcMethod.MONTE_CARLO,
    mc_samples: int = DEFAULT_MC_SAMPLES,
    seed: int = DEFAULT_MC_SEED,
) -> tuple[float, MonteCarloStats | None]:
    """Covariance-based Pc at TCA.

    Returns:
        ``(probability, stats)``; ``stats`` is only set for Monte-Carlo.
    """
    pos1, vel1 = np.asarray(pos1, dtype=np.float64), np.asarray(vel1, dtype=np.float64)
    pos2, vel2 = np.asarray(pos2, dtype=np.float64), np.asarray(vel2, dtype=np.float64)
    primary_state = (pos1, vel1) if np.linalg.norm(np.cross(pos1, vel1)) > 1e-12 else None
    secondary_state = (pos2, vel2) if np.linalg.norm(np.cross(pos2, vel2)) > 1e-12 else None
    cov1, cov2 = covariance.inertial(primary_state, secondary_state)

    if method is PcMethod.MONTE_CARLO:
        stats = compute_pc_monte_carlo(pos1, pos2, cov1, cov2, hard_body_radius_km, mc_samples, seed)
        return stats.probability, stats
    if method is PcMethod.FOSTER_1992:
        miss_2d, cov_2d = _project_to_bplane(pos2 - pos1, vel2 - vel1, cov1 + cov2)
        pc = compute_pc_foster(miss_2d, cov_2d, hard_body_radius_km)
        logger.debug("Foster Pc: %.2e", pc)
        return pc, None
    raise ValueError(f"Method {method} does not use a covariance")
