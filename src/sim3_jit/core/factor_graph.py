# Copyright (c) 2025.
# This file is part of Sim3-JIT, released under the MIT License.
"""
Nonlinear factor graph container for Sim3-JIT.

The FactorGraph stores factors (anything with the `ExpressionFactor`
interface: `keys()`, `error(values)`, `linearize(values)`) and offers the
few whole-graph operations a downstream optimizer needs:

error(values)
    Total cost Σ 0.5‖whiten(rᵢ)‖².

linearize(values)
    One `JacobianFactor` per factor, in insertion order.

linearize_dense(values)
    Stacks all linear factors into a single dense (A, b), with column
    blocks laid out in sorted key order. Returned together with the index
    `Key -> (offset, dim)` so a caller can split a solution vector back
    into per-key tangent updates (see `slam.manifold.retract_values`).

Notes
-----
Iterating to convergence (Gauss–Newton, Levenberg–Marquardt) and sparse
elimination are left to the caller; `linearize_dense` exists for small
problems and for tests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

import numpy as np

from .linear import JacobianFactor
from .types import Key, Values

logger = logging.getLogger(__name__)


@dataclass
class FactorGraph:
    """Ordered collection of nonlinear factors."""
    factors: List = field(default_factory=list)

    def add(self, factor) -> None:
        self.factors.append(factor)

    def __len__(self) -> int:
        return len(self.factors)

    def keys(self) -> Tuple[Key, ...]:
        found = set()
        for factor in self.factors:
            found.update(factor.keys())
        return tuple(sorted(found))

    def error(self, values: Values) -> float:
        return float(sum(f.error(values) for f in self.factors))

    def linearize(self, values: Values) -> List[JacobianFactor]:
        return [f.linearize(values) for f in self.factors]

    # --- Dense assembly ---

    def _build_state_index(self, linear: List[JacobianFactor]) -> Dict[Key, Tuple[int, int]]:
        """
        Returns a mapping: Key -> (start_index, dim), keys sorted.
        """
        dims: Dict[Key, int] = {}
        for lf in linear:
            for key, d in lf.dims().items():
                assert dims.setdefault(key, d) == d, f"inconsistent dimension for key {key}"

        index: Dict[Key, Tuple[int, int]] = {}
        offset = 0
        for key in sorted(dims):
            index[key] = (offset, dims[key])
            offset += dims[key]
        return index

    def linearize_dense(
        self, values: Values
    ) -> Tuple[np.ndarray, np.ndarray, Dict[Key, Tuple[int, int]]]:
        linear = self.linearize(values)
        index = self._build_state_index(linear)

        n_cols = sum(d for _, d in index.values())
        n_rows = sum(lf.rows for lf in linear)
        A = np.zeros((n_rows, n_cols))
        b = np.zeros(n_rows)

        row = 0
        for lf in linear:
            for key in lf.keys:
                start, dim = index[key]
                A[row:row + lf.rows, start:start + dim] = lf.get_a(key)
            b[row:row + lf.rows] = lf.get_b()
            row += lf.rows

        logger.debug("linearize_dense: %d factors, A is %dx%d", len(linear), n_rows, n_cols)
        return A, b, index

    def unpack_delta(
        self, dx: np.ndarray, index: Dict[Key, Tuple[int, int]]
    ) -> Dict[Key, np.ndarray]:
        """Split a flat tangent vector into per-key blocks."""
        return {key: dx[start:start + dim] for key, (start, dim) in index.items()}
