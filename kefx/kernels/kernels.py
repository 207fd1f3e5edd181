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

from typing import Dict, Optional

import jax.numpy as jnp
from jax import Array, jit
from jax.typing import ArrayLike

from ..defaults import kefxargs
from ..parameters.parameter import Parameter, is_parameter
from ..utils import squared_distances
from .kernelizers import DERIVATIVE_KERNELS, derivative_kernels, kernelize

# =============================================================================
# Kernel functions
# =============================================================================

# Before the kernel classes, there we have a series of kernel functions.
# The actual implementation of the kernels is inside these functions, and the
# kernel classes act mostly as a wrapper that also stores the two sets of
# points the kernel is evaluated between, together with the cached tables.
# Inside the kernel_base functions x has shape (n_features,), while in the
# batched kernel functions x has shape (n_samples, n_features).

# =============================================================================
# Polynomial Kernel
# =============================================================================


def _polynomial_kernel_base(
    x1: ArrayLike, x2: ArrayLike, degree: ArrayLike, offset: ArrayLike
) -> Array:
    return (offset + jnp.dot(x1, x2)) ** degree


@jit
def polynomial_kernel_base(
    x1: ArrayLike, x2: ArrayLike, params: Dict[str, Parameter]
) -> Array:
    degree = params["degree"].value
    offset = params["offset"].value
    return _polynomial_kernel_base(x1, x2, degree, offset)


def _polynomial_kernel(
    x1: ArrayLike, x2: ArrayLike, degree: ArrayLike, offset: ArrayLike
) -> Array:
    return (offset + x1 @ x2.T) ** degree


@jit
def polynomial_kernel(
    x1: ArrayLike, x2: ArrayLike, params: Dict[str, Parameter]
) -> Array:
    degree = params["degree"].value
    offset = params["offset"].value
    return _polynomial_kernel(x1, x2, degree, offset)


# =============================================================================
# Squared Exponential Kernel
# =============================================================================


def _squared_exponential_kernel_base(
    x1: ArrayLike, x2: ArrayLike, lengthscale: ArrayLike
) -> Array:
    z1 = x1 / lengthscale
    z2 = x2 / lengthscale
    return jnp.exp(-jnp.sum((z1 - z2) ** 2))


@jit
def squared_exponential_kernel_base(
    x1: ArrayLike, x2: ArrayLike, params: Dict[str, Parameter]
) -> Array:
    lengthscale = params["lengthscale"].value
    return _squared_exponential_kernel_base(x1, x2, lengthscale)


def _squared_exponential_kernel(
    x1: ArrayLike, x2: ArrayLike, lengthscale: ArrayLike
) -> Array:
    z1 = x1 / lengthscale
    z2 = x2 / lengthscale
    d2 = squared_distances(z1, z2)
    return jnp.exp(-d2)


@jit
def squared_exponential_kernel(
    x1: ArrayLike, x2: ArrayLike, params: Dict[str, Parameter]
) -> Array:
    lengthscale = params["lengthscale"].value
    return _squared_exponential_kernel(x1, x2, lengthscale)


# =============================================================================
# Kernel classes
# =============================================================================


class Kernel:
    """base class representing a kernel

    This class wraps a kernel function and keeps the two sets of
    points the kernel is evaluated between: the left hand side (lhs,
    the training points) and the right hand side (rhs, the points
    where the estimated density is evaluated). Points are stored
    column-wise, i.e. as (n_dims, n_points) matrices.

    To implement a fully working kernel with the minimum effort,
    (1) define a `kernel_base` function, which computes the kernel
    between **two** samples (i.e., not on batches of data), and (2)
    write the corresponding kernel class that inherits from this class,
    and that calls super().__init__() **after** specifying the base
    kernel, e.g.:

    >>> def my_custom_kernel_base(x1: ArrayLike, x2: ArrayLike, params: Dict):
    ...     # write your implementation here
    >>>
    >>> class MyCustomKernel(Kernel):
    ...     def __init__(self, params=None):
    ...         self._kernel_base = my_custom_kernel_base
    ...         super().__init__(params)
    ...
    ...     def default_params(self):
    ...         return dict()

    All the derivative tables listed in `DERIVATIVE_KERNELS` are then
    obtained by automatic differentiation of the kernel base. An
    estimator declares the tables it reads with `require`, and
    `precompute` evaluates (and caches) them between lhs and rhs.
    Each table has shape (n_lhs, n_rhs, ...).
    """

    def __init__(self, params: Optional[Dict[str, Parameter]] = None) -> None:
        self.params = self.default_params()
        if params is not None:
            for name, p in params.items():
                if not is_parameter(p):
                    raise ValueError(
                        f"kernel parameter {name} must be a Parameter instance, "
                        f"you provided {type(p)}"
                    )
            self.params.update(params)

        self.k = kernelize(self._kernel_base, lax=kefxargs.lax)
        self._table_funcs = {
            name: kernelize(func, lax=kefxargs.lax)
            for name, func in derivative_kernels(self._kernel_base).items()
        }

        self._lhs = None
        self._rhs = None
        self._required = ["k"]
        self._cache = {}

    def __repr__(self) -> str:
        name = self.__class__.__name__
        params = ", ".join(f"{k}={p.value}" for k, p in self.params.items())
        return f"{name}({params})"

    def __call__(self, x1: ArrayLike, x2: ArrayLike) -> Array:
        "Gram matrix between the columns of x1 and the columns of x2"
        return self.k(jnp.asarray(x1).T, jnp.asarray(x2).T, self.params)

    def default_params(self) -> Dict[str, Parameter]:
        raise NotImplementedError

    @property
    def lhs(self) -> Array:
        return self._lhs

    @property
    def rhs(self) -> Array:
        return self._rhs

    def dimension(self) -> int:
        "number of dimensions of the points in lhs"
        return self._lhs.shape[0]

    def set_lhs(self, x: ArrayLike) -> None:
        "sets the left hand side points, invalidating the cached tables"
        if x.ndim != 2:
            raise ValueError(f"lhs must be a 2D array, you provided ndim={x.ndim}")
        if self._rhs is not None and self._rhs.shape[0] != x.shape[0]:
            # rhs is stale: it is expected to be reset right after
            self._rhs = None
        self._lhs = x
        self._cache = {}

    def set_rhs(self, x: ArrayLike) -> None:
        "sets the right hand side points, invalidating the cached tables"
        if self._lhs is None:
            raise RuntimeError("lhs must be set before rhs")
        if x.ndim != 2:
            raise ValueError(f"rhs must be a 2D array, you provided ndim={x.ndim}")
        if x.shape[0] != self._lhs.shape[0]:
            raise ValueError(
                f"rhs has {x.shape[0]} dimensions, while lhs has "
                f"{self._lhs.shape[0]} dimensions"
            )
        self._rhs = x
        self._cache = {}

    def require(self, *names: str) -> None:
        "registers derivative tables to be cached by `precompute`"
        for name in names:
            if name not in DERIVATIVE_KERNELS:
                raise ValueError(
                    f"unknown kernel table {name!r}. "
                    f"Allowed: {', '.join(DERIVATIVE_KERNELS)}"
                )
            if name not in self._required:
                self._required.append(name)

    @property
    def required(self):
        return tuple(self._required)

    def precompute(self) -> None:
        """computes the required tables between lhs and rhs

        Only tables that are not cached yet are evaluated, so calling
        this function again without changing lhs or rhs does nothing.
        """
        if self._lhs is None or self._rhs is None:
            raise RuntimeError("both lhs and rhs must be set before precomputing")
        for name in self._required:
            if name not in self._cache:
                self._cache[name] = self._table(name, self._lhs, self._rhs)

    @property
    def tables(self) -> Dict[str, Array]:
        "cached tables between lhs and rhs"
        missing = [name for name in self._required if name not in self._cache]
        if missing:
            raise RuntimeError(
                f"tables {missing} are not available. Call 'precompute' first."
            )
        return {name: self._cache[name] for name in self._required}

    def compute_tables(self, x1: ArrayLike, x2: ArrayLike) -> Dict[str, Array]:
        "required tables between x1 and x2, without using the cache"
        return {name: self._table(name, x1, x2) for name in self._required}

    def _table(self, name: str, x1: ArrayLike, x2: ArrayLike) -> Array:
        if name == "k":
            return self.k(x1.T, x2.T, self.params)
        return self._table_funcs[name](x1.T, x2.T, self.params)


class Polynomial(Kernel):
    """Polynomial kernel

    The Polynomial kernel:

        k(x, x') = (c + x∙x')^(d)

    where c is the offset and d is the degree.
    Use integer degrees: non-integer powers of negative
    numbers are not defined.
    """

    def __init__(self, params: Optional[Dict[str, Parameter]] = None) -> None:
        self._kernel_base = polynomial_kernel_base
        super().__init__(params)
        # faster version for evaluating k
        self.k = polynomial_kernel

    def default_params(self):
        return dict(
            degree=Parameter(2.0),
            offset=Parameter(1.0),
        )


class SquaredExponential(Kernel):
    """SquaredExponential kernel

    The Squared Exponential kernel:

        k(x, x') = exp( -∥ x - x'∥² / l²)

    where l is the lengthscale.
    """

    def __init__(self, params: Optional[Dict[str, Parameter]] = None) -> None:
        self._kernel_base = squared_exponential_kernel_base
        super().__init__(params)
        # faster version for evaluating k
        self.k = squared_exponential_kernel

    def default_params(self):
        return dict(
            lengthscale=Parameter(1.0),
        )


# Aliases
Gaussian = SquaredExponential
