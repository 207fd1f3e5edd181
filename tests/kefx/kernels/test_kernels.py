import jax.numpy as jnp
import numpy as np
import pytest
from jax import random
from numpy.testing import assert_allclose

from kefx.kernels import (
    Gaussian,
    Kernel,
    Polynomial,
    SquaredExponential,
    polynomial_kernel,
    squared_exponential_kernel,
)
from kefx.parameters import Parameter


# ============================================================================
# Reference kernels
# ============================================================================
def reference_squared_exponential_kernel(x1, x2, params):
    n1, _ = x1.shape
    n2, _ = x2.shape
    K = np.zeros((n1, n2))
    for i in range(n1):
        for j in range(n2):
            dist = x1[i] - x2[j]
            dist2 = jnp.dot(dist.T, dist)
            K[i, j] = jnp.exp(-dist2 / params["lengthscale"].value ** 2)
    return K


def reference_polynomial_kernel(x1, x2, params):
    n1, _ = x1.shape
    n2, _ = x2.shape
    K = np.zeros((n1, n2))
    for i in range(n1):
        for j in range(n2):
            K[i, j] = (
                params["offset"].value + jnp.dot(x1[i], x2[j])
            ) ** params["degree"].value
    return K


def random_points(dim, n1=10, n2=20):
    key = random.PRNGKey(2022)
    subkey, key = random.split(key)
    X1 = random.normal(key, shape=(n1, dim))
    X2 = random.normal(subkey, shape=(n2, dim))
    return X1, X2


# ============================================================================
# Kernel functions
# ============================================================================
@pytest.mark.parametrize("dim", [1, 10])
@pytest.mark.parametrize("lengthscale", [0.5, 1.0, 2.0])
def test_squared_exponential_kernel(dim, lengthscale):
    X1, X2 = random_points(dim)
    params = {"lengthscale": Parameter(lengthscale)}

    K = squared_exponential_kernel(X1, X2, params)
    K_ref = reference_squared_exponential_kernel(X1, X2, params)

    assert_allclose(K, K_ref, atol=1e-12)


@pytest.mark.parametrize("dim", [1, 10])
@pytest.mark.parametrize("degree", [1.0, 2.0, 3.0])
def test_polynomial_kernel(dim, degree):
    X1, X2 = random_points(dim)
    params = {"degree": Parameter(degree), "offset": Parameter(1.0)}

    K = polynomial_kernel(X1, X2, params)
    K_ref = reference_polynomial_kernel(X1, X2, params)

    assert_allclose(K, K_ref, rtol=1e-10)


# ============================================================================
# Kernel classes
# ============================================================================
def test_default_params():
    kernel = SquaredExponential()
    assert set(kernel.params) == {"lengthscale"}
    assert kernel.params["lengthscale"].value == 1.0

    kernel = Polynomial(params={"degree": Parameter(3.0)})
    assert kernel.params["degree"].value == 3.0
    assert kernel.params["offset"].value == 1.0


def test_params_must_be_parameters():
    with pytest.raises(ValueError):
        SquaredExponential(params={"lengthscale": 2.0})


def test_gaussian_alias():
    assert Gaussian is SquaredExponential


@pytest.mark.parametrize("kernel", [SquaredExponential(), Polynomial()])
def test_call_uses_columns_as_points(kernel):
    X1, X2 = random_points(3)
    K_ref = kernel.k(X1, X2, kernel.params)
    assert_allclose(kernel(X1.T, X2.T), K_ref, rtol=1e-10)
    assert kernel(X1.T, X2.T).shape == (10, 20)


@pytest.mark.parametrize("kernel_class", [SquaredExponential, Polynomial])
def test_fast_kernel_matches_kernel_base(kernel_class):
    X1, X2 = random_points(3)
    kernel = kernel_class()
    tables = kernel._table_funcs
    assert_allclose(
        kernel.k(X1, X2, kernel.params),
        tables["k"](X1, X2, kernel.params),
        rtol=1e-10,
        atol=1e-12,
    )


def test_custom_kernel():
    def my_kernel_base(x1, x2, params):
        return jnp.exp(-jnp.sum(jnp.abs(x1 - x2) ** 2) * params["gamma"].value)

    class MyKernel(Kernel):
        def __init__(self, params=None):
            self._kernel_base = my_kernel_base
            super().__init__(params)

        def default_params(self):
            return dict(gamma=Parameter(1.0))

    X1, X2 = random_points(2)
    kernel = MyKernel()
    ref = SquaredExponential()
    assert_allclose(kernel(X1.T, X2.T), ref(X1.T, X2.T), rtol=1e-10)


# ============================================================================
# Kernel gateway
# ============================================================================
def test_set_rhs_dimension_mismatch():
    kernel = SquaredExponential()
    kernel.set_lhs(jnp.ones((2, 5)))
    with pytest.raises(ValueError):
        kernel.set_rhs(jnp.ones((3, 5)))


def test_set_rhs_before_lhs():
    kernel = SquaredExponential()
    with pytest.raises(RuntimeError):
        kernel.set_rhs(jnp.ones((2, 5)))


def test_set_lhs_rejects_vectors():
    kernel = SquaredExponential()
    with pytest.raises(ValueError):
        kernel.set_lhs(jnp.ones(5))


def test_require_unknown_table():
    kernel = SquaredExponential()
    with pytest.raises(ValueError):
        kernel.require("dx_dx_dx")


def test_require_keeps_order_and_uniqueness():
    kernel = SquaredExponential()
    kernel.require("dx", "dx_dx", "dx")
    assert kernel.required == ("k", "dx", "dx_dx")


def test_tables_before_precompute():
    kernel = SquaredExponential()
    kernel.set_lhs(jnp.ones((2, 5)))
    kernel.set_rhs(jnp.ones((2, 3)))
    with pytest.raises(RuntimeError):
        kernel.tables
    with pytest.raises(RuntimeError):
        SquaredExponential().precompute()


def test_precompute_is_idempotent():
    X1, X2 = random_points(2)
    kernel = SquaredExponential()
    kernel.require("dx")
    kernel.set_lhs(X1.T)
    kernel.set_rhs(X2.T)
    kernel.precompute()
    tables = kernel.tables
    kernel.precompute()
    assert kernel.tables["k"] is tables["k"]
    assert kernel.tables["dx"] is tables["dx"]


def test_set_rhs_invalidates_cache():
    X1, X2 = random_points(2)
    kernel = SquaredExponential()
    kernel.set_lhs(X1.T)
    kernel.set_rhs(X1.T)
    kernel.precompute()
    assert kernel.tables["k"].shape == (10, 10)

    kernel.set_rhs(X2.T)
    with pytest.raises(RuntimeError):
        kernel.tables
    kernel.precompute()
    assert kernel.tables["k"].shape == (10, 20)


@pytest.mark.parametrize(
    "name, shape",
    [
        ("k", (10, 20)),
        ("dx", (10, 20, 3)),
        ("dx_dx", (10, 20, 3)),
        ("dy", (10, 20, 3)),
        ("dx_dy", (10, 20, 3, 3)),
        ("dx_dx_dy", (10, 20, 3, 3)),
        ("lap_y", (10, 20)),
        ("dx_lap_y", (10, 20, 3)),
        ("dx_dx_lap_y", (10, 20, 3)),
    ],
)
def test_table_shapes(name, shape):
    X1, X2 = random_points(3)
    kernel = SquaredExponential()
    kernel.require(name)
    kernel.set_lhs(X1.T)
    kernel.set_rhs(X2.T)
    kernel.precompute()
    assert kernel.tables[name].shape == shape


def test_compute_tables_matches_cache():
    X1, X2 = random_points(2)
    kernel = SquaredExponential()
    kernel.require("dx", "dx_dy")
    kernel.set_lhs(X1.T)
    kernel.set_rhs(X2.T)
    kernel.precompute()
    computed = kernel.compute_tables(X1.T, X2.T)
    for name, table in kernel.tables.items():
        assert_allclose(computed[name], table)


# ============================================================================
# Derivative tables
# ============================================================================
def gaussian_tables(lhs, rhs, lengthscale):
    "analytic derivatives of exp(-|x - y|² / l²), y in lhs and x in rhs"
    _, dim = lhs.shape
    l2 = lengthscale**2
    # r[a, b] = x_b - y_a
    r = rhs[jnp.newaxis] - lhs[:, jnp.newaxis]
    k = jnp.exp(-jnp.sum(r**2, axis=-1) / l2)
    kk = k[..., jnp.newaxis]
    eye = jnp.eye(dim)
    return {
        "k": k,
        "dx": -2.0 * r / l2 * kk,
        "dy": 2.0 * r / l2 * kk,
        "dx_dx": (4.0 * r**2 / l2**2 - 2.0 / l2) * kk,
        "dx_dy": (
            2.0 * eye / l2 - 4.0 * jnp.einsum("abd,abi->abdi", r, r) / l2**2
        )
        * kk[..., jnp.newaxis],
        "lap_y": (4.0 * jnp.sum(r**2, axis=-1) / l2**2 - 2.0 * dim / l2) * k,
    }


@pytest.mark.parametrize("lengthscale", [0.7, 1.0, 2.0])
@pytest.mark.parametrize("dim", [1, 3])
def test_gaussian_derivative_tables(lengthscale, dim):
    X1, X2 = random_points(dim, n1=4, n2=5)
    kernel = SquaredExponential(params={"lengthscale": Parameter(lengthscale)})
    reference = gaussian_tables(X1, X2, lengthscale)
    kernel.require(*reference.keys())
    computed = kernel.compute_tables(X1.T, X2.T)

    for name, ref in reference.items():
        assert_allclose(computed[name], ref, rtol=1e-10, atol=1e-12, err_msg=name)


def test_polynomial_derivative_tables():
    """derivatives of (c + x∙y)², checks the [d, i] layout of dx_dy"""
    X1, X2 = random_points(3, n1=4, n2=5)
    c = 0.5
    kernel = Polynomial(params={"degree": Parameter(2.0), "offset": Parameter(c)})
    kernel.require("dx", "dy", "dx_dy", "dx_dx")
    computed = kernel.compute_tables(X1.T, X2.T)

    # dots[a, b] = c + y_a ∙ x_b
    dots = c + X1 @ X2.T
    dx = 2.0 * dots[..., jnp.newaxis] * X1[:, jnp.newaxis, :]
    dy = 2.0 * dots[..., jnp.newaxis] * X2[jnp.newaxis, :, :]
    dx_dx = 2.0 * jnp.broadcast_to(X1[:, jnp.newaxis, :] ** 2, dx.shape)
    # ∂²k/∂x_d∂y_i = 2 y_d x_i + 2 (c + x∙y) δ_di
    dx_dy = 2.0 * jnp.einsum("ad,bi->abdi", X1, X2)
    dx_dy = dx_dy + 2.0 * dots[..., jnp.newaxis, jnp.newaxis] * jnp.eye(3)

    assert_allclose(computed["dx"], dx, rtol=1e-10, atol=1e-12)
    assert_allclose(computed["dy"], dy, rtol=1e-10, atol=1e-12)
    assert_allclose(computed["dx_dx"], dx_dx, rtol=1e-10, atol=1e-12)
    assert_allclose(computed["dx_dy"], dx_dy, rtol=1e-10, atol=1e-12)


def test_laplacian_tables_are_consistent():
    """dx_dx_lap_y summed over the dimensions is symmetric in the points"""
    X1, _ = random_points(2, n1=4)
    kernel = SquaredExponential()
    kernel.require("dx_dx_lap_y", "dx_lap_y")
    tables = kernel.compute_tables(X1.T, X1.T)

    lap_lap = jnp.sum(tables["dx_dx_lap_y"], axis=-1)
    assert_allclose(lap_lap, lap_lap.T, rtol=1e-10, atol=1e-12)
    # for a stationary kernel, derivatives of odd order vanish on the diagonal
    diag = tables["dx_lap_y"][jnp.arange(4), jnp.arange(4)]
    assert_allclose(diag, jnp.zeros_like(diag), atol=1e-12)
