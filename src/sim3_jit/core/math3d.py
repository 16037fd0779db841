# Copyright (c) 2025.
# This file is part of Sim3-JIT, released under the MIT License.
"""
SO(3) primitives and Lie-algebra coefficient series for Sim3-JIT.

This module implements the rotation-level mathematics that the similarity
group in `core.similarity3` is built on:

    • SO(3) exponential & logarithm maps
    • hat / vee operators between ℝ³ and skew-symmetric matrices
    • Rodrigues coefficients X, Y, Z, W as functions of θ²
    • Scale coefficients A, β, μ as functions of the log-scale λ

All functions are written in JAX and support:
    - JIT compilation
    - Automatic differentiation (including *at* the origin)
    - Numerically stable behavior near zero-rotation / zero-scale limits

Key Functions
-------------
hat(ω)
    Converts a 3-vector to its skew-symmetric matrix.

vee(Ω)
    Converts a 3×3 skew matrix back into a 3-vector.

so3_exp(w)
    Maps a 3-vector (axis-angle) to a 3×3 rotation matrix.

so3_log(R)
    Maps a rotation matrix back to its axis-angle representation. Stable
    for θ → 0 and θ → π.

rotation_coefficients(θ²)
    Returns (X, Y, Z, W):

        X = sin θ / θ
        Y = (1 − cos θ) / θ²
        Z = (1 − X) / θ²
        W = (½ − Y) / θ²

scale_coefficients(λ)
    Returns (A, β, μ):

        A = (1 − e^{−λ}) / λ
        β = (e^{−λ} − 1 + λ) / λ²
        μ = (1 − λ + ½λ² − e^{−λ}) / λ³

Small-argument convention
-------------------------
Every coefficient above is an entire function with an alternating power
series of the form

    Σₖ (−x)ᵏ / (first + stride·k)!

with x = θ² (stride 2) for the rotation coefficients and x = λ (stride 1)
for the scale coefficients. Below the thresholds in `SeriesConfig` the
series is summed to a fixed number of terms; above them the closed form is
evaluated with a safe denominator. Both branches are always computed and
selected with `jnp.where`, so no branch ever produces NaNs under
`jax.jacfwd` / `jax.grad`.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from functools import lru_cache
from typing import Tuple

import jax.numpy as jnp


@dataclass(frozen=True)
class SeriesConfig:
    """Thresholds for switching from closed forms to truncated series."""
    angle_sq_threshold: float = 1.0   # use series when θ² < threshold
    scale_threshold: float = 1.0      # use series when |λ| < threshold
    terms: int = 16                   # series terms; 1/17! ≈ 3e-15 at |λ| = 1
    small_sin_sq: float = 1e-6        # so3_log: sin²θ below this -> asin series
    near_pi_cos: float = -0.99        # so3_log: cos θ below this -> symmetric part


DEFAULT_SERIES = SeriesConfig()


def hat(v: jnp.ndarray) -> jnp.ndarray:
    """so(3) hat operator: R^3 -> 3x3 skew-symmetric matrix."""
    x, y, z = v[0], v[1], v[2]
    return jnp.array(
        [
            [0.0, -z, y],
            [z, 0.0, -x],
            [-y, x, 0.0],
        ]
    )


def vee(R: jnp.ndarray) -> jnp.ndarray:
    """
    vee: so(3) -> R^3, inverse of hat.
    Assumes R is a 3x3 skew-symmetric-like matrix.
    """
    return jnp.array([
        R[2, 1] - R[1, 2],
        R[0, 2] - R[2, 0],
        R[1, 0] - R[0, 1],
    ]) / 2.0


@lru_cache(maxsize=None)
def _inverse_factorials(first: int, stride: int, terms: int) -> Tuple[float, ...]:
    """1 / (first + stride * k)! as Python floats; the integers overflow int64."""
    return tuple(1.0 / math.factorial(first + stride * k) for k in range(terms))


def _alternating_series(x: jnp.ndarray, first: int, stride: int, terms: int) -> jnp.ndarray:
    """Sum_{k < terms} (-x)^k / (first + stride * k)!"""
    total = jnp.zeros_like(x)
    power = jnp.ones_like(x)
    for coeff in _inverse_factorials(first, stride, terms):
        total = total + coeff * power
        power = power * (-x)
    return total


def rotation_coefficients(
    theta_sq: jnp.ndarray, cfg: SeriesConfig = DEFAULT_SERIES
) -> Tuple[jnp.ndarray, jnp.ndarray, jnp.ndarray, jnp.ndarray]:
    """
    Rodrigues expansion coefficients (X, Y, Z, W) as functions of θ².

    Continuous at θ = 0 where they take the values (1, 1/2, 1/6, 1/24).
    """
    theta_sq = jnp.asarray(theta_sq)
    use_series = theta_sq < cfg.angle_sq_threshold

    # Any non-zero value works in the unused branch; keeps NaNs out of AD.
    theta_sq_safe = jnp.where(use_series, jnp.ones_like(theta_sq), theta_sq)
    theta = jnp.sqrt(theta_sq_safe)

    X_closed = jnp.sin(theta) / theta
    Y_closed = (1.0 - jnp.cos(theta)) / theta_sq_safe
    Z_closed = (1.0 - X_closed) / theta_sq_safe
    W_closed = (0.5 - Y_closed) / theta_sq_safe

    n = cfg.terms
    X = jnp.where(use_series, _alternating_series(theta_sq, 1, 2, n), X_closed)
    Y = jnp.where(use_series, _alternating_series(theta_sq, 2, 2, n), Y_closed)
    Z = jnp.where(use_series, _alternating_series(theta_sq, 3, 2, n), Z_closed)
    W = jnp.where(use_series, _alternating_series(theta_sq, 4, 2, n), W_closed)
    return X, Y, Z, W


def scale_coefficients(
    lam: jnp.ndarray, cfg: SeriesConfig = DEFAULT_SERIES
) -> Tuple[jnp.ndarray, jnp.ndarray, jnp.ndarray]:
    """
    Log-scale coefficients (A, β, μ) as functions of λ.

    Continuous at λ = 0 where they take the values (1, 1/2, 1/6).
    """
    lam = jnp.asarray(lam)
    use_series = jnp.abs(lam) < cfg.scale_threshold
    lam_safe = jnp.where(use_series, jnp.ones_like(lam), lam)
    e = jnp.exp(-lam_safe)

    A_closed = (1.0 - e) / lam_safe
    beta_closed = (e - 1.0 + lam_safe) / (lam_safe * lam_safe)
    mu_closed = (1.0 - lam_safe + 0.5 * lam_safe * lam_safe - e) / (lam_safe ** 3)

    n = cfg.terms
    A = jnp.where(use_series, _alternating_series(lam, 1, 1, n), A_closed)
    beta = jnp.where(use_series, _alternating_series(lam, 2, 1, n), beta_closed)
    mu = jnp.where(use_series, _alternating_series(lam, 3, 1, n), mu_closed)
    return A, beta, mu


def so3_exp(w: jnp.ndarray, cfg: SeriesConfig = DEFAULT_SERIES) -> jnp.ndarray:
    """
    Exponential map from so(3) (rotation vector) to SO(3).

    Rodrigues' formula R = I + X·[w]× + Y·[w]×², with X and Y taken from
    `rotation_coefficients` so the small-angle case is exact to series order.
    """
    w = jnp.asarray(w)
    X, Y, _, _ = rotation_coefficients(jnp.dot(w, w), cfg)
    K = hat(w)
    return jnp.eye(3, dtype=K.dtype) + X * K + Y * (K @ K)


def so3_log(R: jnp.ndarray, cfg: SeriesConfig = DEFAULT_SERIES) -> jnp.ndarray:
    """
    Numerically stable logarithm map for SO(3).

    Handles:
      - small angles via the series of asin(x)/x on sin θ · axis
      - angles near π via the symmetric part of R (axis from R + Rᵀ)
      - trace slightly outside [-1, 3] via clamping

    Returns w in R^3 such that Exp(w) ~ R.
    """
    R = jnp.asarray(R)
    I = jnp.eye(3, dtype=R.dtype)

    cos_theta = jnp.clip((jnp.trace(R) - 1.0) / 2.0, -1.0, 1.0)
    # sin(theta) * axis
    sin_axis = vee(R - R.T) / 2.0
    sin_sq = jnp.dot(sin_axis, sin_axis)

    small = (sin_sq < cfg.small_sin_sq) & (cos_theta > 0.0)
    near_pi = cos_theta < cfg.near_pi_cos

    sin_sq_safe = jnp.where(small, jnp.ones_like(sin_sq), sin_sq)
    sin_norm = jnp.sqrt(sin_sq_safe)
    theta = jnp.arctan2(sin_norm, cos_theta)

    # asin(x)/x = 1 + x²/6 + 3x⁴/40 + ...
    w_small = sin_axis * (1.0 + sin_sq / 6.0 + 3.0 * sin_sq * sin_sq / 40.0)
    w_general = (theta / sin_norm) * sin_axis

    # Near pi: (R + Rᵀ)/2 - cos θ I = (1 - cos θ) k kᵀ
    one_minus_cos = jnp.where(near_pi, 1.0 - cos_theta, jnp.ones_like(cos_theta))
    kkt = ((R + R.T) / 2.0 - cos_theta * I) / one_minus_cos
    diag = jnp.diagonal(kkt)
    j = jnp.argmax(diag)
    axis = jnp.take(kkt, j, axis=1) / jnp.sqrt(jnp.maximum(diag[j], 1e-12))
    axis = jnp.where(jnp.dot(axis, sin_axis) < 0.0, -axis, axis)
    w_pi = theta * axis

    return jnp.where(small, w_small, jnp.where(near_pi, w_pi, w_general))
