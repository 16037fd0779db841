# Copyright (c) 2025.
# This file is part of Sim3-JIT, released under the MIT License.
"""
Similarity group Sim(3) for Sim3-JIT.

A `Similarity3` element is a triple (R, t, s) with R ∈ SO(3), t ∈ ℝ³ and
s > 0, acting on points as

    x ↦ s·R·x + t

The group law used throughout the factor layer is

    (R₁, t₁, s₁) * (R₂, t₂, s₂) = (R₁R₂, t₁/s₂ + R₁t₂, s₁s₂)
    (R, t, s)⁻¹                  = (Rᵀ, −s·Rᵀt, 1/s)

Tangent space
-------------
Tangent vectors are 7-vectors ordered (ω, u, λ):

    ω ∈ ℝ³   rotation generator
    u ∈ ℝ³   translation generator
    λ ∈ ℝ    log-scale

The exponential map is

    Exp(ω, u, λ) = (exp([ω]×), V·u, e^λ)

with V = A·I + B·[ω]× + C·[ω]×², where

    α = λ² / (λ² + θ²)           θ = ‖ω‖
    γ = Y − λZ,  υ = Z − λW
    B = α(β − γ) + γ
    C = α(μ − υ) + υ

and A, β, μ, X, Y, Z, W are the coefficient series from `core.math3d`. The
logarithm inverts each component: ω = log(R), λ = log(s), u = V⁻¹·t.

The optimizer chart is the group chart: `retract(v) = self * Exp(v)` and
`local_coordinates(g) = Log(self⁻¹ * g)`, which at the identity is exactly
Exp / Log.

Notes
-----
`Similarity3` is registered as a JAX pytree, so elements may be passed
through `jax.jit`, `jax.vmap` and `jax.jacfwd` like any array container.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Optional, Tuple, Union

import jax
import jax.numpy as jnp

from .math3d import (
    DEFAULT_SERIES,
    SeriesConfig,
    hat,
    rotation_coefficients,
    scale_coefficients,
    so3_exp,
    so3_log,
)
from .types import Pose3


def _as_float(x) -> jnp.ndarray:
    x = jnp.asarray(x)
    if not jnp.issubdtype(x.dtype, jnp.floating):
        x = x.astype(jnp.result_type(float))
    return x


def _v_matrix(
    omega: jnp.ndarray, lam: jnp.ndarray, cfg: SeriesConfig = DEFAULT_SERIES
) -> jnp.ndarray:
    """V = A·I + B·[ω]× + C·[ω]×², shared by Exp and Log."""
    theta_sq = jnp.dot(omega, omega)
    _, Y, Z, W = rotation_coefficients(theta_sq, cfg)
    A, beta, mu = scale_coefficients(lam, cfg)

    lam_sq = lam * lam
    denom = lam_sq + theta_sq
    has_denom = denom > 0.0
    # alpha := 0 at the origin, where beta == gamma and mu == upsilon anyway.
    alpha = jnp.where(
        has_denom, lam_sq / jnp.where(has_denom, denom, jnp.ones_like(denom)), 0.0
    )

    gamma = Y - lam * Z
    upsilon = Z - lam * W
    B = alpha * (beta - gamma) + gamma
    C = alpha * (mu - upsilon) + upsilon

    K = hat(omega)
    return A * jnp.eye(3, dtype=K.dtype) + B * K + C * (K @ K)


@jax.tree_util.register_pytree_node_class
@dataclass(frozen=True, eq=False)
class Similarity3:
    """
    Similarity transform in 3D: rotation, translation and positive scale.

    Elements are immutable; every operation returns a new element.
    """

    R: jnp.ndarray  # (3, 3) rotation
    t: jnp.ndarray  # (3,) translation
    s: jnp.ndarray  # () scale, > 0

    dimension: ClassVar[int] = 7
    matrix_dim: ClassVar[int] = 4
    space_dim: ClassVar[int] = 3

    def __post_init__(self) -> None:
        object.__setattr__(self, "R", _as_float(self.R))
        object.__setattr__(self, "t", _as_float(self.t))
        object.__setattr__(self, "s", _as_float(self.s))
        assert self.R.shape == (3, 3), f"rotation must be 3x3, got {self.R.shape}"
        assert self.t.shape == (3,), f"translation must be (3,), got {self.t.shape}"
        assert self.s.shape == (), f"scale must be a scalar, got {self.s.shape}"
        # Traced values (inside jit / jacfwd) cannot be inspected.
        if not isinstance(self.s, jax.core.Tracer) and not bool(self.s > 0.0):
            raise ValueError(f"scale must be positive, got {float(self.s)}")

    # --- pytree ---

    def tree_flatten(self):
        return (self.R, self.t, self.s), None

    @classmethod
    def tree_unflatten(cls, aux_data, children) -> "Similarity3":
        # Bypass __post_init__: JAX may unflatten with non-array placeholders.
        obj = object.__new__(cls)
        R, t, s = children
        object.__setattr__(obj, "R", R)
        object.__setattr__(obj, "t", t)
        object.__setattr__(obj, "s", s)
        return obj

    # --- Factory ---

    @classmethod
    def identity(cls) -> "Similarity3":
        return cls(jnp.eye(3), jnp.zeros(3), 1.0)

    @classmethod
    def from_scale(cls, s: float) -> "Similarity3":
        """Pure scaling: R = I, t = 0."""
        return cls(jnp.eye(3), jnp.zeros(3), s)

    @classmethod
    def from_rotation_vector(
        cls, w: jnp.ndarray, t: Optional[jnp.ndarray] = None, s: float = 1.0
    ) -> "Similarity3":
        """Build from an axis-angle rotation vector instead of a matrix."""
        w = _as_float(w)
        if t is None:
            t = jnp.zeros(3, dtype=w.dtype)
        return cls(so3_exp(w), t, s)

    @classmethod
    def from_matrix(cls, T: jnp.ndarray) -> "Similarity3":
        """
        Inverse of `matrix()`. The top-left block is s·R, so the scale is
        recovered as the cube root of its determinant.
        """
        T = _as_float(T)
        assert T.shape == (4, 4)
        sR = T[:3, :3]
        s = jnp.cbrt(jnp.linalg.det(sR))
        return cls(sR / s, T[:3, 3], s)

    # --- Accessors ---

    def rotation(self) -> jnp.ndarray:
        return self.R

    def translation(self) -> jnp.ndarray:
        return self.t

    def scale(self) -> jnp.ndarray:
        return self.s

    def __repr__(self) -> str:
        R = jnp.round(self.R, 5)
        t = jnp.round(self.t, 5)
        return f"{self.__class__.__name__}(R={R.tolist()}, t={t.tolist()}, s={float(self.s):.5f})"

    # --- Equality ---

    def equals(self, other: "Similarity3", tol: float = 1e-9) -> bool:
        """
        Approximate equality: every rotation entry, every translation
        component and the scale must differ by strictly less than `tol`.
        """
        return bool(
            jnp.all(jnp.abs(self.R - other.R) < tol)
            and jnp.all(jnp.abs(self.t - other.t) < tol)
            and jnp.abs(self.s - other.s) < tol
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Similarity3):
            return NotImplemented
        return bool(
            jnp.array_equal(self.R, other.R)
            and jnp.array_equal(self.t, other.t)
            and jnp.array_equal(self.s, other.s)
        )

    # --- Group operations ---

    def compose(self, other: "Similarity3") -> "Similarity3":
        return Similarity3(
            self.R @ other.R,
            (1.0 / other.s) * self.t + self.R @ other.t,
            self.s * other.s,
        )

    def __mul__(
        self, other: Union["Similarity3", jnp.ndarray]
    ) -> Union["Similarity3", jnp.ndarray]:
        """`a * b` composes; `a * p` with an array p transforms the point."""
        if isinstance(other, Similarity3):
            return self.compose(other)
        return self.transform_from(other)

    def inverse(self) -> "Similarity3":
        Rt = self.R.T
        return Similarity3(Rt, Rt @ (-self.s * self.t), 1.0 / self.s)

    def between(self, other: "Similarity3") -> "Similarity3":
        """self⁻¹ * other."""
        return self.inverse().compose(other)

    def transform_from(
        self, p: jnp.ndarray, jacobians: bool = False
    ) -> Union[jnp.ndarray, Tuple[jnp.ndarray, jnp.ndarray, jnp.ndarray]]:
        """
        Apply the similarity to a point: y = s·R·p + t.

        With `jacobians=True`, returns (y, H_sim, H_point) where

            H_sim   (3×7) = [ s·R·[−p]× | R | R·p ]
            H_point (3×3) = s·R
        """
        p = _as_float(p)
        y = self.R @ (self.s * p) + self.t
        if not jacobians:
            return y
        H_sim = jnp.concatenate(
            [self.s * self.R @ hat(-p), self.R, (self.R @ p)[:, None]], axis=1
        )
        H_point = self.s * self.R
        return y, H_sim, H_point

    def adjoint_map(self) -> jnp.ndarray:
        """
        7×7 adjoint, laid out as

            [ s·R   s·[t]×·R   −s·t ]
            [ 0     R           0   ]
            [ 0     0           1   ]
        """
        R, t, s = self.R, self.t, self.s
        z33 = jnp.zeros((3, 3), dtype=R.dtype)
        z31 = jnp.zeros((3, 1), dtype=R.dtype)
        top = jnp.concatenate([s * R, s * hat(t) @ R, (-s * t)[:, None]], axis=1)
        mid = jnp.concatenate([z33, R, z31], axis=1)
        bottom = jnp.zeros((1, 7), dtype=R.dtype).at[0, 6].set(1.0)
        return jnp.concatenate([top, mid, bottom], axis=0)

    # --- Exponential / logarithm ---

    @classmethod
    def expmap(cls, v: jnp.ndarray, cfg: SeriesConfig = DEFAULT_SERIES) -> "Similarity3":
        """Exp: tangent (ω, u, λ) -> group."""
        v = _as_float(v)
        assert v.shape == (7,), f"Similarity3 tangent must be (7,), got {v.shape}"
        omega, u, lam = v[:3], v[3:6], v[6]
        V = _v_matrix(omega, lam, cfg)
        return cls(so3_exp(omega, cfg), V @ u, jnp.exp(lam))

    @staticmethod
    def logmap(g: "Similarity3", cfg: SeriesConfig = DEFAULT_SERIES) -> jnp.ndarray:
        """Log: group -> tangent (ω, u, λ)."""
        omega = so3_log(g.R, cfg)
        lam = jnp.log(g.s)
        V = _v_matrix(omega, lam, cfg)
        u = jnp.linalg.solve(V, g.t)
        return jnp.concatenate([omega, u, lam[None]])

    def log(self) -> jnp.ndarray:
        return Similarity3.logmap(self)

    # --- Manifold chart ---

    def retract(self, v: jnp.ndarray) -> "Similarity3":
        return self.compose(Similarity3.expmap(v))

    def local_coordinates(self, other: "Similarity3") -> jnp.ndarray:
        return Similarity3.logmap(self.between(other))

    # --- Conversions ---

    def matrix(self) -> jnp.ndarray:
        """Homogeneous 4×4 embedding [[s·R, t], [0, 0, 0, 1]]."""
        T = jnp.eye(4, dtype=self.R.dtype)
        T = T.at[:3, :3].set(self.s * self.R)
        T = T.at[:3, 3].set(self.t)
        return T

    def to_pose3(self) -> Pose3:
        """Drop the scale: (R, s·t). Lossy, one-directional."""
        return Pose3(rotation=self.R, translation=self.s * self.t)
