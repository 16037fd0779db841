from __future__ import annotations

import jax.numpy as jnp
import numpy as np
import pytest

from sim3_jit.core.factor_graph import FactorGraph
from sim3_jit.core.linear import JacobianFactor, VerticalBlockMatrix
from sim3_jit.core.similarity3 import Similarity3
from sim3_jit.core.types import Key
from sim3_jit.slam import manifold
from sim3_jit.slam.expression import FunctionExpression, leaf
from sim3_jit.slam.expression_factor import ExpressionFactor
from sim3_jit.slam.noise import isotropic, unit


def _observe(key, p):
    p = jnp.asarray(p)
    return FunctionExpression(lambda sim: sim.transform_from(p), keys=(key,), dims=(7,))


def test_vertical_block_matrix_views():
    ab = VerticalBlockMatrix((3, 7), rows=2)
    assert ab.n_blocks == 3
    assert ab.offsets == (0, 3, 10, 11)
    ab.block(1)[:] = 2.0
    ab.rhs()[:] = -1.0
    assert np.all(ab.full()[:, :3] == 0.0)
    assert np.all(ab.full()[:, 3:10] == 2.0)
    assert np.all(ab.full()[:, 10] == -1.0)


def test_jacobian_factor_requires_one_block_per_key():
    with pytest.raises(AssertionError):
        JacobianFactor((Key(0),), VerticalBlockMatrix((3, 3), rows=3))


def test_keys_and_error():
    pose, point = Key(5), Key(2)
    sim = Similarity3.from_scale(2.0)
    p = jnp.array([1.0, 0.0, 0.0])
    values = {pose: sim, point: p}

    graph = FactorGraph()
    graph.add(ExpressionFactor(unit(7), sim, leaf(pose, 7)))
    graph.add(ExpressionFactor(
        isotropic(3, 0.5),
        jnp.array([2.0, 1.0, 0.0]),
        FunctionExpression(lambda g, x: g.transform_from(x), keys=(pose, point), dims=(7, 3)),
    ))

    assert len(graph) == 2
    assert graph.keys() == (point, pose)
    # Second residual is (0, -1, 0), whitened (0, -2, 0).
    assert graph.error(values) == pytest.approx(2.0)


def test_linearize_dense_layout():
    pose, point = Key(5), Key(2)
    values = {
        pose: Similarity3.from_rotation_vector(jnp.array([0.1, 0.2, 0.3]), jnp.array([1.0, 0.0, 0.0]), 1.5),
        point: jnp.array([0.3, 0.4, 0.5]),
    }
    prior = ExpressionFactor(unit(7), Similarity3.identity(), leaf(pose, 7))
    obs = ExpressionFactor(
        unit(3),
        jnp.zeros(3),
        FunctionExpression(lambda g, x: g.transform_from(x), keys=(pose, point), dims=(7, 3)),
    )
    graph = FactorGraph([prior, obs])

    A, b, index = graph.linearize_dense(values)
    assert index == {point: (0, 3), pose: (3, 7)}
    assert A.shape == (10, 10)
    assert b.shape == (10,)

    lp, lo = graph.linearize(values)
    assert np.all(A[:7, :3] == 0.0)
    assert np.allclose(A[:7, 3:], lp.get_a(pose))
    assert np.allclose(A[7:, :3], lo.get_a(point))
    assert np.allclose(A[7:, 3:], lo.get_a(pose))
    assert np.allclose(b, np.concatenate([lp.get_b(), lo.get_b()]))

    deltas = graph.unpack_delta(np.arange(10.0), index)
    assert np.array_equal(deltas[point], [0.0, 1.0, 2.0])
    assert np.array_equal(deltas[pose], np.arange(3.0, 10.0))


def test_gauss_newton_recovers_similarity_from_points():
    key = Key(0)
    truth = Similarity3.from_rotation_vector(
        jnp.array([0.3, -0.2, 0.4]), jnp.array([1.0, -2.0, 0.5]), 1.8
    )
    landmarks = [
        jnp.array([1.0, 0.0, 0.0]),
        jnp.array([0.0, 2.0, 0.0]),
        jnp.array([0.0, 0.0, -1.5]),
        jnp.array([1.0, 1.0, 1.0]),
        jnp.array([-0.5, 0.3, 2.0]),
    ]
    graph = FactorGraph()
    for p in landmarks:
        graph.add(ExpressionFactor(unit(3), truth.transform_from(p), _observe(key, p)))

    values = {key: truth.retract(jnp.array([0.1, -0.05, 0.08, 0.2, 0.1, -0.3, 0.15]))}
    initial_error = graph.error(values)
    for _ in range(10):
        A, b, index = graph.linearize_dense(values)
        dx, *_ = np.linalg.lstsq(A, b, rcond=None)
        values = manifold.retract_values(values, graph.unpack_delta(dx, index))

    assert graph.error(values) < 1e-16 < initial_error
    assert values[key].equals(truth, 1e-8)
