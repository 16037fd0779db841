# Copyright (c) 2025.
# This file is part of Sim3-JIT, released under the MIT License.
"""
Manifold capability contract and dispatch for Sim3-JIT.

The factor layer never hard-codes the type of an unknown or a measurement.
Instead it goes through the four operations below, which is the whole
contract a value type has to satisfy to be used with `ExpressionFactor`:

    • `dimension(x)`               intrinsic (tangent) dimension
    • `retract(x, δ)`              x ⊕ δ
    • `local_coordinates(x, y)`    y ⊖ x, expressed in x's chart
    • `equals(x, y, tol)`          approximate equality

Supported value kinds
---------------------
"lie"
    Any object implementing the `Manifold` protocol (e.g. `Similarity3`):
    the calls are forwarded to its methods.

"euclidean"
    Plain 1-D JAX / NumPy arrays. `retract` is addition,
    `local_coordinates` is subtraction, and the dimension is the length.

Anything else raises `TypeError`.

Integration with the factor layer
---------------------------------
`slam.expression.FunctionExpression` uses `retract` / `local_coordinates`
to differentiate an expression in local coordinates of each unknown, and
`slam.expression_factor.ExpressionFactor` uses `local_coordinates` on the
measurement to turn a prediction into a residual.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Protocol, runtime_checkable

import jax.numpy as jnp
import numpy as np

from sim3_jit.core.types import Key, Values


@runtime_checkable
class Manifold(Protocol):
    """Capability interface for manifold-valued unknowns and measurements."""

    dimension: int

    def retract(self, v: jnp.ndarray) -> Any: ...

    def local_coordinates(self, other: Any) -> jnp.ndarray: ...

    def equals(self, other: Any, tol: float = 1e-9) -> bool: ...


def manifold_kind(x: Any) -> str:
    """Return "lie" for Manifold objects, "euclidean" for 1-D arrays."""
    if isinstance(x, Manifold):
        return "lie"
    if isinstance(x, (jnp.ndarray, np.ndarray)) and x.ndim == 1:
        return "euclidean"
    raise TypeError(f"Unsupported manifold value of type {type(x).__name__}")


def dimension(x: Any) -> int:
    if manifold_kind(x) == "lie":
        return int(x.dimension)
    return int(x.shape[0])


def retract(x: Any, delta: jnp.ndarray) -> Any:
    if manifold_kind(x) == "lie":
        return x.retract(delta)
    return x + delta


def local_coordinates(x: Any, other: Any) -> jnp.ndarray:
    if manifold_kind(x) == "lie":
        return x.local_coordinates(other)
    return jnp.asarray(other) - x


def equals(x: Any, other: Any, tol: float = 1e-9) -> bool:
    if manifold_kind(x) == "lie":
        return x.equals(other, tol)
    other = jnp.asarray(other)
    return x.shape == other.shape and bool(jnp.all(jnp.abs(other - x) < tol))


def retract_values(values: Values, deltas: Mapping[Key, jnp.ndarray]) -> Dict[Key, Any]:
    """
    Apply per-key tangent updates and return a new Values dict.

    Keys without an entry in `deltas` are carried over unchanged.
    """
    result: Dict[Key, Any] = dict(values)
    for key, delta in deltas.items():
        result[key] = retract(values[key], delta)
    return result
