# Copyright (c) 2025.
# This file is part of Sim3-JIT, released under the MIT License.
"""
Noise models for Sim3-JIT factors.

Only the part of the noise-model hierarchy the factor layer depends on is
implemented here:

    • `unit(dim)`   σ = 1 in every row
    • `Diagonal`    per-row standard deviations σᵢ > 0
    • `isotropic`   one σ shared by every row
    • `Constrained` σᵢ = 0 marks a hard (equality) constraint row

Every model exposes its dimension `dim`, its `sigmas`, and `whiten(v)`,
which maps an unwhitened residual to a unit-variance one:

    whiten(v)ᵢ = vᵢ / σᵢ

Constrained rows (σᵢ = 0) are passed through unchanged by `whiten`; the
downstream solver is told about them through the `is_constrained` tag and
the unit weighting returned by `Constrained.unit()`, never by dividing by
zero.
"""

from __future__ import annotations

from dataclasses import dataclass

import jax.numpy as jnp


def sigma_to_weight(sigma):
    """
    Convert standard deviation sigma (or vector of sigmas) to an
    information weight.

    For scalar sigma:
        w = 1 / sigma^2

    For vector sigma (per-component std devs):
        w[i] = 1 / sigma[i]^2
    """
    s = jnp.asarray(sigma)
    return 1.0 / (s * s)


@dataclass(frozen=True)
class NoiseModel:
    """Base class: diagonal Gaussian noise described by its sigmas."""
    sigmas: jnp.ndarray

    is_constrained = False

    def __post_init__(self) -> None:
        sigmas = jnp.asarray(self.sigmas, dtype=jnp.result_type(float))
        if sigmas.ndim != 1 or sigmas.shape[0] == 0:
            raise ValueError(f"sigmas must be a non-empty 1-D array, got shape {sigmas.shape}")
        if bool(jnp.any(sigmas < 0.0)):
            raise ValueError("sigmas must be non-negative")
        if not self.is_constrained and bool(jnp.any(sigmas == 0.0)):
            raise ValueError(
                f"{type(self).__name__} requires strictly positive sigmas; "
                "use Constrained for hard constraints"
            )
        object.__setattr__(self, "sigmas", sigmas)

    @property
    def dim(self) -> int:
        return int(self.sigmas.shape[0])

    def whiten(self, v: jnp.ndarray) -> jnp.ndarray:
        return jnp.asarray(v) / self.sigmas

    def weights(self) -> jnp.ndarray:
        return sigma_to_weight(self.sigmas)


class Diagonal(NoiseModel):
    """Independent per-row standard deviations."""


def unit(dim: int) -> NoiseModel:
    """σ = 1 in every row."""
    return Diagonal(jnp.ones(dim))


def isotropic(dim: int, sigma: float) -> NoiseModel:
    """One σ shared by every row."""
    return Diagonal(jnp.full((dim,), sigma))


class Constrained(NoiseModel):
    """
    Mixed hard/soft model: rows with σ = 0 are equality constraints.

    `unit()` returns the unit weighting handed to linear factors: σ = 0 on
    constrained rows and σ = 1 on all others.
    """

    is_constrained = True

    @classmethod
    def all(cls, dim: int) -> "Constrained":
        """Every row is a hard constraint."""
        return cls(jnp.zeros(dim))

    def constrained_mask(self) -> jnp.ndarray:
        return self.sigmas == 0.0

    def whiten(self, v: jnp.ndarray) -> jnp.ndarray:
        v = jnp.asarray(v)
        mask = self.constrained_mask()
        safe = jnp.where(mask, 1.0, self.sigmas)
        return jnp.where(mask, v, v / safe)

    def weights(self) -> jnp.ndarray:
        # Infinite weight on hard rows.
        mask = self.constrained_mask()
        safe = jnp.where(mask, 1.0, self.sigmas)
        return jnp.where(mask, jnp.inf, sigma_to_weight(safe))

    def unit(self) -> "Constrained":
        return Constrained(jnp.where(self.constrained_mask(), 0.0, 1.0))
