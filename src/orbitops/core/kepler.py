"""Two-body helpers: Kepler's equation, universal-variable propagation and
the Radial/In-track/Cross-track (RIC) frame."""
from __future__ import annotations

import math

import numpy as np
from numpy.typing import NDArray

from orbitops.utils.constants import EARTH_MU_KM3_S2 as MU


def solve_kepler(
    mean_anomaly: NDArray[np.float64] | float,
    eccentricity: float,
    tolerance: float = 1e-12,
    max_iter: int = 50,
) -> NDArray[np.float64]:
    """Solve Kepler's equation ``M = E - e sin E`` by Newton-Raphson.

    Works element-wise on arrays of mean anomaly (radians).
    """
    M = np.asarray(mean_anomaly, dtype=np.float64)
    E = M.copy() if eccentricity < 0.8 else np.full_like(M, math.pi)
    for _ in range(max_iter):
        delta = (E - eccentricity * np.sin(E) - M) / (1.0 - eccentricity * np.cos(E))
        E = E - delta
        if np.all(np.abs(delta) < tolerance):
            break
    return E


def _stumpff_c(z: float) -> float:
    if z > 1e-6:
        sz = math.sqrt(z)
        return (1.0 - math.cos(sz)) / z
    elif z < -1e-6:
        sz = math.sqrt(-z)
        return (math.cosh(sz) - 1.0) / (-z)
    else:
        return 0.5 - z / 24.0


def _stumpff_s(z: float) -> float:
    if z > 1e-6:
        sz = math.sqrt(z)
        return (sz - math.sin(sz)) / (z * sz)
    elif z < -1e-6:
        sz = math.sqrt(-z)
        return (math.sinh(sz) - sz) / ((-z) * sz)
    else:
        return 1.0 / 6.0 - z / 120.0


def kepler_propagate(
    r0: NDArray[np.float64],
    v0: NDArray[np.float64],
    dt: float,
    mu: float = MU,
    tolerance: float = 1e-10,
    max_iter: int = 100,
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Propagate a Cartesian state by ``dt`` seconds under two-body gravity.

    Universal-variable formulation with Lagrange f and g coefficients, valid
    for every conic. ``dt`` may be negative.

    Raises:
        ValueError: If the state is degenerate or the iteration diverges.
    """
    r0 = np.asarray(r0, dtype=np.float64)
    v0 = np.asarray(v0, dtype=np.float64)
    if dt == 0.0:
        return r0.copy(), v0.copy()

    r0n = float(np.linalg.norm(r0))
    if not np.isfinite(r0n) or r0n <= 0.0:
        raise ValueError(f"Degenerate position vector: {r0}")
    v0n2 = float(v0 @ v0)
    vr0 = float(r0 @ v0) / r0n
    sqrt_mu = math.sqrt(mu)
    alpha = 2.0 / r0n - v0n2 / mu

    chi = sqrt_mu * abs(alpha) * dt
    if abs(alpha) < 1e-12:
        chi = sqrt_mu * dt / r0n

    for _ in range(max_iter):
        z = alpha * chi * chi
        c = _stumpff_c(z)
        s = _stumpff_s(z)
        f = (r0n * vr0 / sqrt_mu) * chi * chi * c + (1.0 - alpha * r0n) * chi ** 3 * s + r0n * chi - sqrt_mu * dt
        fp = (r0n * vr0 / sqrt_mu) * chi * (1.0 - z * s) + (1.0 - alpha * r0n) * chi * chi * c + r0n
        step = f / fp
        chi -= step
        if abs(step) < tolerance:
            break
    else:
        raise ValueError(f"Universal-variable iteration did not converge for dt={dt}")

    z = alpha * chi * chi
    c = _stumpff_c(z)
    s = _stumpff_s(z)
    f_coef = 1.0 - chi * chi / r0n * c
    g_coef = dt - chi ** 3 / sqrt_mu * s
    r = f_coef * r0 + g_coef * v0
    rn = float(np.linalg.norm(r))
    fdot = sqrt_mu / (rn * r0n) * (alpha * chi ** 3 * s - chi)
    gdot = 1.0 - chi * chi / rn * c
    v = fdot * r0 + gdot * v0
    return r, v


def ric_basis(position_km: NDArray[np.float64], velocity_km_s: NDArray[np.float64]) -> NDArray[np.float64]:
    """Rows are the R, I and C unit vectors of the RIC frame at a state.

    R points along the position vector, C along the orbit normal ``r x v``
    and I completes the right-handed set (``C x R``).
    """
    r = np.asarray(position_km, dtype=np.float64)
    v = np.asarray(velocity_km_s, dtype=np.float64)
    r_hat = r / np.linalg.norm(r)
    h = np.cross(r, v)
    h_norm = np.linalg.norm(h)
    if h_norm < 1e-12:
        raise ValueError("RIC frame undefined for rectilinear motion")
    c_hat = h / h_norm
    i_hat = np.cross(c_hat, r_hat)
    return np.vstack([r_hat, i_hat, c_hat])


def ric_to_inertial(
    vector_ric: NDArray[np.float64],
    position_km: NDArray[np.float64],
    velocity_km_s: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Rotate a vector expressed in RIC components into the inertial frame."""
    return ric_basis(position_km, velocity_km_s).T @ np.asarray(vector_ric, dtype=np.float64)


def inertial_to_ric(
    vector: NDArray[np.float64],
    position_km: NDArray[np.float64],
    velocity_km_s: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Express an inertial vector in the RIC frame of the given state."""
    return ric_basis(position_km, velocity_km_s) @ np.asarray(vector, dtype=np.float64)


def semi_major_axis_km(mean_motion_rev_per_day: float, mu: float = MU) -> float:
    """Semi-major axis from mean motion via Kepler's third law."""
    n = mean_motion_rev_per_day * 2.0 * math.pi / 86400.0
    return (mu / (n * n)) ** (1.0 / 3.0)


def orbital_period_s(semi_major_axis: float, mu: float = MU) -> float:
    return 2.0 * math.pi * math.sqrt(semi_major_axis ** 3 / mu)


def circular_velocity_km_s(radius_km: float, mu: float = MU) -> float:
    return math.sqrt(mu / radius_km)
