# Copyright (c) 2025.
# This file is part of Sim3-JIT, released under the MIT License.
"""
Linear (Gaussian) factors produced by linearization.

A nonlinear factor linearized at a Values snapshot becomes

    ‖ A₁δ₁ + … + Aₖδₖ − b ‖²

stored as one dense row block `[A₁ | … | Aₖ | b]`. The column blocks follow
the factor's key order, and the trailing single column is the right-hand
side. This is the artifact handed to an external sparse solver.

The storage is a NumPy array rather than a JAX array because the
Jacobian blocks are written *in place* by the expression being linearized:
`VerticalBlockMatrix.block(i)` returns a writable view into the shared
matrix, and distinct blocks never alias.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Sequence, Tuple

import numpy as np

from .types import Key


class VerticalBlockMatrix:
    """Dense matrix split into column blocks of fixed widths plus an RHS column."""

    def __init__(self, dims: Sequence[int], rows: int, dtype=np.float64) -> None:
        self.dims: Tuple[int, ...] = tuple(int(d) for d in dims) + (1,)
        self.offsets: Tuple[int, ...] = tuple(np.cumsum((0,) + self.dims).tolist())
        self.rows = int(rows)
        self._matrix = np.zeros((self.rows, self.offsets[-1]), dtype=dtype)

    @property
    def n_blocks(self) -> int:
        """Number of column blocks, including the RHS column."""
        return len(self.dims)

    def block(self, i: int) -> np.ndarray:
        """Writable view of column block `i`; `block(n_blocks - 1)` is the RHS."""
        return self._matrix[:, self.offsets[i]:self.offsets[i + 1]]

    def rhs(self) -> np.ndarray:
        return self._matrix[:, -1]

    def full(self) -> np.ndarray:
        return self._matrix


@dataclass
class JacobianFactor:
    """
    Linear factor over ordered keys.

    `model` is set only for constrained factors; it then holds the unit
    weighting of the originating noise model and tells the solver that
    its zero-sigma rows are hard constraints.
    """
    keys: Tuple[Key, ...]
    ab: VerticalBlockMatrix
    model: Optional[object] = field(default=None)

    def __post_init__(self) -> None:
        assert len(self.keys) == self.ab.n_blocks - 1, (
            f"{len(self.keys)} keys for {self.ab.n_blocks - 1} Jacobian blocks"
        )

    @property
    def rows(self) -> int:
        return self.ab.rows

    def get_a(self, key: Key) -> np.ndarray:
        return self.ab.block(self.keys.index(key))

    def get_b(self) -> np.ndarray:
        return self.ab.rhs()

    def jacobian(self) -> Tuple[np.ndarray, np.ndarray]:
        """Return (A, b) with the blocks of A in key order."""
        full = self.ab.full()
        return full[:, :-1].copy(), full[:, -1].copy()

    def error(self, delta: Mapping[Key, np.ndarray]) -> float:
        """0.5 ‖ Σ Aᵢδᵢ − b ‖²"""
        r = -self.get_b()
        for i, key in enumerate(self.keys):
            r = r + self.ab.block(i) @ np.asarray(delta[key])
        return 0.5 * float(r @ r)

    def dims(self) -> Dict[Key, int]:
        return {key: self.ab.dims[i] for i, key in enumerate(self.keys)}
