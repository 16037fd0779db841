from __future__ import annotations

import jax.numpy as jnp
import numpy as np
import pytest

from sim3_jit.core.similarity3 import Similarity3
from sim3_jit.core.types import Key
from sim3_jit.slam.expression import FunctionExpression, leaf
from sim3_jit.slam.expression_factor import ExpressionFactor
from sim3_jit.slam.noise import Constrained, Diagonal, isotropic, unit

POSE, POINT = Key(7), Key(3)


def _projection():
    return FunctionExpression(
        lambda sim, p: sim.transform_from(p), keys=(POSE, POINT), dims=(7, 3)
    )


@pytest.fixture
def values():
    sim = Similarity3.from_rotation_vector(
        jnp.array([0.2, 0.1, -0.4]), jnp.array([0.5, -1.0, 2.0]), 1.3
    )
    return {POSE: sim, POINT: jnp.array([1.0, -0.5, 0.25])}


def test_requires_noise_model():
    with pytest.raises(ValueError, match="no NoiseModel"):
        ExpressionFactor(None, Similarity3.identity(), leaf(POSE, 7))


def test_rejects_noise_model_of_wrong_dimension():
    with pytest.raises(ValueError, match="incorrect dimension"):
        ExpressionFactor(unit(3), Similarity3.identity(), leaf(POSE, 7))


def test_accessors(values):
    model = isotropic(3, 0.1)
    z = jnp.array([1.0, 2.0, 3.0])
    factor = ExpressionFactor(model, z, _projection())
    assert factor.noise_model is model
    assert factor.measurement is z
    assert factor.keys() == (POINT, POSE)
    assert factor.size() == 2
    assert factor.dim() == 3


def test_zero_error_when_prediction_matches(values):
    sim = values[POSE]
    prior = ExpressionFactor(unit(7), sim, leaf(POSE, 7))
    assert jnp.allclose(prior.unwhitened_error(values), jnp.zeros(7), atol=1e-12)
    assert prior.error(values) == pytest.approx(0.0, abs=1e-20)

    z = sim.transform_from(values[POINT])
    obs = ExpressionFactor(unit(3), z, _projection())
    assert jnp.allclose(obs.unwhitened_error(values), jnp.zeros(3), atol=1e-12)


def test_error_is_half_squared_whitened_norm(values):
    z = jnp.zeros(3)
    factor = ExpressionFactor(Diagonal(jnp.array([0.5, 1.0, 2.0])), z, _projection())
    r = np.asarray(factor.unwhitened_error(values))
    w = r / np.array([0.5, 1.0, 2.0])
    assert np.allclose(factor.whitened_error(values), w)
    assert factor.error(values) == pytest.approx(0.5 * float(w @ w))


def test_unwhitened_error_fills_and_zeroes_buffers(values):
    factor = ExpressionFactor(unit(3), jnp.zeros(3), _projection())
    H = [np.full((3, 3), 99.0), np.full((3, 7), -5.0)]
    r = factor.unwhitened_error(values, H)

    sim = values[POSE]
    assert jnp.allclose(r, sim.transform_from(values[POINT]))
    assert np.allclose(H[0], np.asarray(sim.s * sim.R), atol=1e-12)

    fresh = [np.zeros((3, 3)), np.zeros((3, 7))]
    factor.unwhitened_error(values, fresh)
    assert np.allclose(H[1], fresh[1])


def test_unwhitened_error_checks_buffers(values):
    factor = ExpressionFactor(unit(3), jnp.zeros(3), _projection())
    with pytest.raises(AssertionError):
        factor.unwhitened_error(values, [np.zeros((3, 3))])
    with pytest.raises(AssertionError):
        factor.unwhitened_error(values, [np.zeros((3, 3)), np.zeros((3, 6))])


def test_linearize_rhs_is_negated_plain_error():
    z = Similarity3.from_rotation_vector(jnp.array([0.0, 0.3, 0.1]), jnp.array([1.0, 0.0, -1.0]), 0.7)
    x = Similarity3.from_rotation_vector(jnp.array([0.2, -0.1, 0.0]), jnp.array([0.5, 0.5, 0.0]), 1.4)
    factor = ExpressionFactor(unit(7), z, leaf(POSE, 7))
    values = {POSE: x}

    r = np.asarray(factor.unwhitened_error(values))
    assert np.linalg.norm(r) > 0.1
    assert np.allclose(factor.linearize(values).get_b(), -r, atol=1e-12)


def test_linearize_block_layout(values):
    z = jnp.array([0.1, 0.2, 0.3])
    factor = ExpressionFactor(isotropic(3, 0.01), z, _projection())
    lf = factor.linearize(values)

    assert lf.keys == (POINT, POSE)
    assert lf.rows == 3
    assert lf.dims() == {POINT: 3, POSE: 7}
    assert lf.ab.full().shape == (3, 3 + 7 + 1)

    H = [np.zeros((3, 3)), np.zeros((3, 7))]
    r = np.asarray(factor.unwhitened_error(values, H))
    assert np.allclose(lf.get_b(), -r)
    assert np.allclose(lf.get_a(POINT), H[0])
    assert np.allclose(lf.get_a(POSE), H[1])

    # Not whitened and no model attached for an ordinary Gaussian model.
    assert lf.model is None

    A, b = lf.jacobian()
    assert np.allclose(A, np.hstack(H))
    assert np.allclose(b, -r)


def test_linearize_constrained_carries_unit_model(values):
    sim = values[POSE]
    model = Constrained(jnp.array([0.0, 0.0, 0.0, 0.5, 0.5, 0.5, 2.0]))
    factor = ExpressionFactor(model, sim, leaf(POSE, 7))
    lf = factor.linearize(values)

    assert isinstance(lf.model, Constrained)
    assert lf.model.is_constrained
    assert jnp.array_equal(lf.model.sigmas, jnp.array([0.0, 0.0, 0.0, 1.0, 1.0, 1.0, 1.0]))
    assert np.allclose(lf.get_a(POSE), np.eye(7), atol=1e-10)
    assert np.allclose(lf.get_b(), 0.0, atol=1e-12)


def test_linear_error_predicts_nonlinear_change(values):
    z = jnp.array([0.1, 0.2, 0.3])
    factor = ExpressionFactor(unit(3), z, _projection())
    lf = factor.linearize(values)

    delta = {POINT: np.array([1e-4, -2e-4, 5e-5]), POSE: np.full(7, 1e-4)}
    moved = {
        POINT: values[POINT] + delta[POINT],
        POSE: values[POSE].retract(jnp.asarray(delta[POSE])),
    }
    assert lf.error(delta) == pytest.approx(factor.error(moved), rel=1e-5)
