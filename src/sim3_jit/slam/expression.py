# Copyright (c) 2025.
# This file is part of Sim3-JIT, released under the MIT License.
"""
Expression (computation-graph) contract for Sim3-JIT factors.

An expression is a function h(x₁, …, xₖ) of some unknowns that evaluates
to a manifold value. `ExpressionFactor` only needs four things from it:

    keys()                              involved keys, sorted
    dimensions()                        local dimension of each key, same order
    value(values)                       h evaluated at a Values snapshot
    value_and_jacobians(values, blocks) h, plus ∂h/∂xᵢ accumulated into
                                        the caller's blocks

Jacobians are taken in *local coordinates* on both sides:

    Hᵢ = ∂/∂δ [ y.local_coordinates( h(…, xᵢ ⊕ δ, …) ) ] at δ = 0,
    y  = h(x₁, …, xₖ)

so an expression producing a `Similarity3` has 7-row blocks and an
unknown that is a `Similarity3` contributes 7 columns.

FunctionExpression
------------------
The concrete implementation wraps a pure JAX function and lets
`jax.jacfwd` do the chain rule, in the same way residuals in Sim3-JIT are
written once in JAX and differentiated automatically:

    pose_key, point_key = Key(0), Key(1)
    predict = FunctionExpression(
        lambda sim, p: sim.transform_from(p),
        keys=(pose_key, point_key),
        dims=(7, 3),
    )

`fn` receives the unknowns in the order `keys` was given; `keys()` and
`dimensions()` report them sorted, which is the block order of every
linear factor built from the expression.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Protocol, Sequence, Tuple

import jax
import jax.numpy as jnp
import numpy as np

from sim3_jit.core.types import Key, Values
from sim3_jit.slam import manifold


class Expression(Protocol):
    """Evaluation contract consumed by `ExpressionFactor`."""

    def keys(self) -> Tuple[Key, ...]: ...

    def dimensions(self) -> Tuple[int, ...]: ...

    def value(self, values: Values) -> Any: ...

    def value_and_jacobians(
        self, values: Values, blocks: Mapping[Key, np.ndarray]
    ) -> Any: ...


class FunctionExpression:
    """Expression backed by a pure JAX function of its unknowns."""

    def __init__(
        self,
        fn: Callable[..., Any],
        keys: Sequence[Key],
        dims: Sequence[int],
    ) -> None:
        keys = tuple(keys)
        dims = tuple(int(d) for d in dims)
        if len(keys) != len(dims):
            raise ValueError(
                f"FunctionExpression got {len(keys)} keys but {len(dims)} dimensions"
            )
        if len(set(keys)) != len(keys):
            raise ValueError(f"FunctionExpression keys must be unique, got {keys}")

        self._fn = fn
        self._arg_keys = keys
        self._arg_dims = dims

        order = sorted(range(len(keys)), key=lambda i: keys[i])
        self._keys = tuple(keys[i] for i in order)
        self._dims = tuple(dims[i] for i in order)

    def keys(self) -> Tuple[Key, ...]:
        return self._keys

    def dimensions(self) -> Tuple[int, ...]:
        return self._dims

    def _args(self, values: Values) -> list:
        return [values[k] for k in self._arg_keys]

    def value(self, values: Values) -> Any:
        return self._fn(*self._args(values))

    def value_and_jacobians(
        self, values: Values, blocks: Mapping[Key, np.ndarray]
    ) -> Any:
        """
        Evaluate and add ∂h/∂xᵢ into `blocks[key]` for every involved key.

        Blocks are accumulated into, not overwritten; callers zero them.
        """
        args = self._args(values)
        y = self._fn(*args)

        for i, (key, dim) in enumerate(zip(self._arg_keys, self._arg_dims)):
            assert key in blocks, f"missing Jacobian block for key {key}"
            assert manifold.dimension(args[i]) == dim, (
                f"key {key}: expected dimension {dim}, "
                f"value has {manifold.dimension(args[i])}"
            )

            def local(delta: jnp.ndarray, i: int = i) -> jnp.ndarray:
                perturbed = list(args)
                perturbed[i] = manifold.retract(args[i], delta)
                return manifold.local_coordinates(y, self._fn(*perturbed))

            J = jax.jacfwd(local)(jnp.zeros(dim))
            block = blocks[key]
            assert block.shape == J.shape, (
                f"key {key}: Jacobian block has shape {block.shape}, expected {J.shape}"
            )
            block += np.asarray(J)

        return y


def leaf(key: Key, dim: int) -> FunctionExpression:
    """Expression that evaluates to the unknown `key` itself."""
    return FunctionExpression(lambda x: x, (key,), (dim,))


def constant(value: Any) -> FunctionExpression:
    """Expression with no unknowns."""
    return FunctionExpression(lambda: value, (), ())
