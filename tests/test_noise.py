import jax.numpy as jnp
import pytest

from sim3_jit.slam.noise import Constrained, Diagonal, isotropic, sigma_to_weight, unit


def test_unit_and_isotropic_dimensions():
    assert unit(7).dim == 7
    model = isotropic(3, 0.5)
    assert model.dim == 3
    assert not model.is_constrained
    assert jnp.allclose(model.whiten(jnp.array([1.0, 2.0, -1.0])), jnp.array([2.0, 4.0, -2.0]))


def test_diagonal_weights():
    model = Diagonal(jnp.array([0.1, 2.0]))
    assert jnp.allclose(model.weights(), jnp.array([100.0, 0.25]))
    assert jnp.allclose(sigma_to_weight(0.5), 4.0)


@pytest.mark.parametrize(
    "sigmas",
    [jnp.array([]), jnp.ones((2, 2)), jnp.array([1.0, -1.0]), jnp.array([1.0, 0.0])],
)
def test_diagonal_rejects_bad_sigmas(sigmas):
    with pytest.raises(ValueError):
        Diagonal(sigmas)


def test_constrained_tag_and_unit():
    model = Constrained(jnp.array([0.0, 0.5, 0.0, 2.0]))
    assert model.is_constrained
    assert model.dim == 4

    u = model.unit()
    assert isinstance(u, Constrained)
    assert u.is_constrained
    assert jnp.array_equal(u.sigmas, jnp.array([0.0, 1.0, 0.0, 1.0]))


def test_constrained_whiten_passes_hard_rows_through():
    model = Constrained(jnp.array([0.0, 0.5]))
    w = model.whiten(jnp.array([3.0, 3.0]))
    assert jnp.all(jnp.isfinite(w))
    assert jnp.allclose(w, jnp.array([3.0, 6.0]))
    assert jnp.isinf(model.weights()[0])


def test_constrained_all():
    model = Constrained.all(7)
    assert model.dim == 7
    assert jnp.array_equal(model.unit().sigmas, jnp.zeros(7))


def test_constrained_rejects_negative_sigmas():
    with pytest.raises(ValueError):
        Constrained(jnp.array([0.0, -1.0]))
