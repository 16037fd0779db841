# Copyright (c) 2025.
# This file is part of Sim3-JIT, released under the MIT License.
"""
Expression-based residual factor for Sim3-JIT.

`ExpressionFactor` binds three things at construction time:

    • a noise model,
    • a fixed measurement z of some manifold type T,
    • an expression h(x₁, …, xₖ) over unknowns that evaluates to T,

and defines the residual

    r(x) = z.local_coordinates( h(x) )

i.e. the tangent-space difference between measurement and prediction,
expressed in the measurement's own chart. T can be anything that
`slam.manifold` knows how to handle (`Similarity3`, 1-D arrays, ...).

Linearization
-------------
`linearize(values)` produces a `JacobianFactor` whose row block is

    [ H₁ | H₂ | … | Hₖ | −r ]

with one column block per key, in key order, filled directly by the
expression (no intermediate copies). No whitening is applied. If the noise
model is constrained, the linear factor carries the model's unit weighting
so the solver can treat its zero-sigma rows as hard constraints; otherwise
the linear factor carries no noise model.

The factor is immutable and holds no state between calls: `linearize`,
`unwhitened_error` and `error` are pure functions of the Values snapshot.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Tuple

import jax.numpy as jnp
import numpy as np

from sim3_jit.core.linear import JacobianFactor, VerticalBlockMatrix
from sim3_jit.core.types import Key, Values
from sim3_jit.slam import manifold
from sim3_jit.slam.expression import Expression
from sim3_jit.slam.noise import NoiseModel

logger = logging.getLogger(__name__)


class ExpressionFactor:
    """Nonlinear factor z ⊖ h(x) for an arbitrary expression h."""

    def __init__(
        self,
        noise_model: Optional[NoiseModel],
        measurement: Any,
        expression: Expression,
    ) -> None:
        if noise_model is None:
            raise ValueError("ExpressionFactor: no NoiseModel.")
        dim = manifold.dimension(measurement)
        if noise_model.dim != dim:
            raise ValueError(
                "ExpressionFactor was created with a NoiseModel of incorrect dimension: "
                f"noise model has {noise_model.dim}, measurement has {dim}."
            )

        self._noise_model = noise_model
        self._measurement = measurement
        self._expression = expression
        self._dim = dim
        self._keys: Tuple[Key, ...] = tuple(expression.keys())

        logger.debug(
            "ExpressionFactor on keys %s (dims %s), residual dim %d, constrained=%s",
            self._keys, tuple(expression.dimensions()), dim, noise_model.is_constrained,
        )

    # --- Accessors ---

    @property
    def noise_model(self) -> NoiseModel:
        return self._noise_model

    @property
    def measurement(self) -> Any:
        return self._measurement

    @property
    def expression(self) -> Expression:
        return self._expression

    def keys(self) -> Tuple[Key, ...]:
        return self._keys

    def size(self) -> int:
        return len(self._keys)

    def dim(self) -> int:
        return self._dim

    # --- Errors ---

    def unwhitened_error(
        self, values: Values, H: Optional[List[np.ndarray]] = None
    ) -> jnp.ndarray:
        """
        Residual z ⊖ h(x) without the noise model.

        If `H` is given it must hold one writable array per key (in key
        order), each shaped (dim(T), dim(key)). The arrays are zeroed and
        then filled with ∂h/∂xᵢ.
        """
        if H is None:
            value = self._expression.value(values)
            return manifold.local_coordinates(self._measurement, value)

        dims = self._expression.dimensions()
        assert len(H) == self.size(), (
            f"expected {self.size()} Jacobian buffers, got {len(H)}"
        )
        blocks = {}
        for key, Hi, d in zip(self._keys, H, dims):
            assert Hi.shape == (self._dim, d), (
                f"Jacobian buffer for key {key} has shape {Hi.shape}, "
                f"expected {(self._dim, d)}"
            )
            Hi[...] = 0.0
            blocks[key] = Hi

        value = self._expression.value_and_jacobians(values, blocks)
        return manifold.local_coordinates(self._measurement, value)

    def whitened_error(self, values: Values) -> jnp.ndarray:
        return self._noise_model.whiten(self.unwhitened_error(values))

    def error(self, values: Values) -> float:
        """0.5 ‖ whiten(z ⊖ h(x)) ‖²"""
        e = self.whitened_error(values)
        return 0.5 * float(jnp.dot(e, e))

    # --- Linearization ---

    def linearize(self, values: Values) -> JacobianFactor:
        ab = VerticalBlockMatrix(self._expression.dimensions(), self._dim)
        blocks = {key: ab.block(i) for i, key in enumerate(self._keys)}

        value = self._expression.value_and_jacobians(values, blocks)
        ab.rhs()[:] = -np.asarray(manifold.local_coordinates(self._measurement, value))

        if self._noise_model.is_constrained:
            logger.debug("linearize: constrained factor on keys %s", self._keys)
            return JacobianFactor(self._keys, ab, self._noise_model.unit())
        return JacobianFactor(self._keys, ab)
