import jax.numpy as jnp
import numpy as np
import pytest
from jax import random
from numpy.testing import assert_allclose

from kefx.utils import as_point_matrix, squared_distances

# ============================================================================
# Metrics
# ============================================================================


def naive_squared_distances(x1, x2):
    n1, _ = x1.shape
    n2, _ = x2.shape
    D = np.zeros((n1, n2))
    for i in range(n1):
        for j in range(n2):
            D[i, j] = np.sum((x1[i] - x2[j]) ** 2)
    return D


@pytest.mark.parametrize("dim", [1, 5])
def test_squared_distances(dim):
    key = random.PRNGKey(2023)
    subkey, key = random.split(key)
    X1 = random.normal(key, shape=(10, dim))
    X2 = random.normal(subkey, shape=(7, dim))
    assert_allclose(
        squared_distances(X1, X2), naive_squared_distances(X1, X2), atol=1e-12
    )


def test_squared_distances_non_negative():
    """identical points must not give negative distances"""
    X = random.normal(random.PRNGKey(2023), shape=(10, 3)) * 1e3
    assert jnp.all(squared_distances(X, X) >= 0.0)


# ============================================================================
# Point matrices
# ============================================================================


def test_point_matrix_keeps_jax_matrices():
    X = jnp.ones((2, 5))
    assert as_point_matrix(X) is X


@pytest.mark.parametrize("X", [np.ones((2, 5)), [[1.0, 2.0], [3.0, 4.0]]])
def test_point_matrix_converts(X):
    Y = as_point_matrix(X)
    assert Y is not X
    assert Y.dtype == jnp.float64
    assert Y.shape == np.asarray(X).shape


def test_point_matrix_converts_integers():
    X = jnp.ones((2, 5), dtype=jnp.int32)
    Y = as_point_matrix(X)
    assert Y is not X
    assert Y.dtype == jnp.float64


def test_point_matrix_vector_is_a_column():
    x = jnp.array([1.0, 2.0, 3.0])
    assert as_point_matrix(x).shape == (3, 1)


def test_point_matrix_rejects_tensors():
    with pytest.raises(ValueError):
        as_point_matrix(jnp.ones((2, 3, 4)))


@pytest.mark.parametrize("X", [jnp.zeros((2, 0)), np.zeros((0, 3)), []])
def test_point_matrix_rejects_empty(X):
    with pytest.raises(ValueError):
        as_point_matrix(X)
