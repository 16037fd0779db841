# Copyright (c) 2025.
# This file is part of Sim3-JIT, released under the MIT License.
"""
Core typed data structures for Sim3-JIT.

This module defines the lightweight types shared by the geometry and the
factor layers. They are intentionally minimal: they carry identity and
values only, while all numerical work happens in JAX functions elsewhere.

Types
-----
Key
    Opaque, totally ordered identifier of an unknown. The sort order of keys
    is the column-block order of every linear system built from them.

Values
    Mapping from `Key` to the current estimate of that unknown. Estimates
    may be heterogeneous: `Similarity3` elements and plain 1-D JAX arrays
    (Euclidean vectors) can live in the same dictionary. Values are treated
    as immutable snapshots: nothing in Sim3-JIT mutates them.

Pose3
    Scale-free rigid transform (R, t). Produced by
    `Similarity3.to_pose3()` for consumers that do not understand scale.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, NewType

import jax.numpy as jnp

Key = NewType("Key", int)
Values = Dict[Key, Any]


@dataclass(frozen=True)
class Pose3:
    """Rigid transform x -> R x + t."""
    rotation: jnp.ndarray     # (3, 3)
    translation: jnp.ndarray  # (3,)

    def transform_from(self, p: jnp.ndarray) -> jnp.ndarray:
        return self.rotation @ jnp.asarray(p) + self.translation

    def matrix(self) -> jnp.ndarray:
        T = jnp.eye(4, dtype=self.rotation.dtype)
        T = T.at[:3, :3].set(self.rotation)
        T = T.at[:3, 3].set(self.translation)
        return T
