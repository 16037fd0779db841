# Copyright (c) 2025.
# This file is part of Sim3-JIT, released under the MIT License.
"""Sim(3) Lie group and expression factors for JAX factor graphs."""

from sim3_jit.core.similarity3 import Similarity3
from sim3_jit.core.types import Key, Pose3, Values
from sim3_jit.core.linear import JacobianFactor, VerticalBlockMatrix
from sim3_jit.core.factor_graph import FactorGraph
from sim3_jit.slam.expression import Expression, FunctionExpression, constant, leaf
from sim3_jit.slam.expression_factor import ExpressionFactor
from sim3_jit.slam.noise import Constrained, Diagonal, NoiseModel, isotropic, unit

__all__ = [
    "Similarity3",
    "Key",
    "Pose3",
    "Values",
    "JacobianFactor",
    "VerticalBlockMatrix",
    "FactorGraph",
    "Expression",
    "FunctionExpression",
    "constant",
    "leaf",
    "ExpressionFactor",
    "Constrained",
    "Diagonal",
    "NoiseModel",
    "isotropic",
    "unit",
]
