# KEFX: kernel exponential family estimation in JAX
# Copyright (C) 2023  KEFX authors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.
from __future__ import annotations

import functools
from typing import Callable, Dict

import jax
import jax.numpy as jnp
from jax import jacfwd, jit, vmap

# =============================================================================
# Kernel Decorator
# =============================================================================


def kernelize(kernel_func: Callable, lax: bool = False) -> Callable:
    """Decorator to promote a kernel function operating on single samples to a
       function operating on batches.

    With this decorator, you can write a function operating on a pair of
    samples, and vectorize it so that it accepts two batches of samples.
    The pair function may return a scalar or an array: the output of the
    vectorized function has shape (n_samples1, n_samples2, *pair_shape).

    Args:
        kernel_func: a function accepting three arguments: x1, x2, and params.
          x1 and x2 are two samples of data, while params is a dictionary of
          kernel parameters.
        lax: whether to use a kernelizer implemented with jax.lax operations
             (True) or a kernelizer implemented with vmap (False).
             The vmap version should be faster for small number
             of samples, but can break as the number of samples increases.
             The lax version is slower, but scales much better with the number
             of samples.

    Returns:
        A vectorized kernel function that applies the original `kernel_func`
        to batches of data.
    """
    if lax:

        @functools.wraps(kernel_func)
        @jit
        def kernel(x1, x2, params):
            _kernel_func = lambda x1: vmap(  # noqa: E731
                lambda x2: kernel_func(x1, x2, params)
            )

            @jax.checkpoint
            def update_row(carry, x1s):
                gram_row = _kernel_func(x1s)(x2)
                return carry, gram_row

            _, gram = jax.lax.scan(update_row, 0, x1)
            return gram

    else:

        @functools.wraps(kernel_func)
        @jit
        def kernel(x1, x2, params):
            return vmap(lambda x: vmap(lambda y: kernel_func(x, y, params))(x2))(x1)

    return kernel


# =============================================================================
# Derivative Kernels
# =============================================================================

# Convention: the first argument of a kernel (x1) is the "basis" point y,
# the second argument (x2) is the point x where the density is evaluated.
# Names read as the derivatives applied to k(y, x), e.g. dx_dy is
# ∂²k/∂x_d∂y_i, stored as [d, i].


def _hessian_diagonal(func: Callable, argnums: int) -> Callable:
    hess = jax.hessian(func, argnums=argnums)

    def wrapper(x1, x2, params):
        return jnp.diagonal(hess(x1, x2, params))

    return wrapper


def _laplacian(func: Callable, argnums: int) -> Callable:
    hess = jax.hessian(func, argnums=argnums)

    def wrapper(x1, x2, params):
        return jnp.trace(hess(x1, x2, params))

    return wrapper


def derivative_kernels(kernel_base: Callable) -> Dict[str, Callable]:
    """Pairwise derivative kernels of `kernel_base`

    Builds, by automatic differentiation, the derivatives of a kernel
    between two samples that are needed by score matching estimators:

        k            k(y, x)
        dx           ∂k/∂x_d                      (n_feats,)
        dx_dx        ∂²k/∂x_d²                    (n_feats,)
        dy           ∂k/∂y_i                      (n_feats,)
        dx_dy        ∂²k/∂x_d∂y_i                 (n_feats, n_feats)
        dx_dx_dy     ∂³k/∂x_d²∂y_i                (n_feats, n_feats)
        lap_y        Σ_j ∂²k/∂y_j²
        dx_lap_y     ∂/∂x_d Σ_j ∂²k/∂y_j²         (n_feats,)
        dx_dx_lap_y  ∂²/∂x_d² Σ_j ∂²k/∂y_j²       (n_feats,)

    where y is the first and x the second argument of the kernel.

    Returns:
        dictionary mapping each name to a function (x1, x2, params)
    """
    dx = jax.grad(kernel_base, argnums=1)
    dx_dx = _hessian_diagonal(kernel_base, argnums=1)
    lap_y = _laplacian(kernel_base, argnums=0)
    return {
        "k": kernel_base,
        "dx": dx,
        "dx_dx": dx_dx,
        "dy": jax.grad(kernel_base, argnums=0),
        "dx_dy": jacfwd(dx, argnums=0),
        "dx_dx_dy": jacfwd(dx_dx, argnums=0),
        "lap_y": lap_y,
        "dx_lap_y": jax.grad(lap_y, argnums=1),
        "dx_dx_lap_y": _hessian_diagonal(lap_y, argnums=1),
    }


DERIVATIVE_KERNELS = (
    "k",
    "dx",
    "dx_dx",
    "dy",
    "dx_dy",
    "dx_dx_dy",
    "lap_y",
    "dx_lap_y",
    "dx_dx_lap_y",
)
