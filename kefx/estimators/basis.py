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

from typing import Dict, Tuple

import jax.numpy as jnp
from jax import Array, vmap
from jax.typing import ArrayLike

from .base import Base

# =============================================================================
# Score matching for models linear in their coefficients
# =============================================================================


def derivative_basis(table: ArrayLike) -> Array:
    """reshapes a (n_basis, n_dims, n_dims) table of mixed derivatives

    Takes a table t[a, d, i] holding the derivative along x_d of the
    basis function ∂k(z_a, x)/∂y_i, and returns the (n_basis * n_dims,
    n_dims) matrix whose row (a, i) is that derivative.
    """
    n_basis, n_dims, _ = table.shape
    return jnp.transpose(table, (0, 2, 1)).reshape(n_basis * n_dims, n_dims)


def derivative_gram(table: ArrayLike) -> Array:
    """inner products of the derivative basis functions

    Takes the dx_dy table between the basis points, t[a, b, j, i] =
    ∂²k/∂x_j∂y_i (z_a, z_b), and returns the matrix of the inner
    products in the RKHS

        R[(a, i), (b, j)] = < ∂k(z_a, ·)/∂y_i, ∂k(z_b, ·)/∂y_j >
    """
    n_basis, _, n_dims, _ = table.shape
    return jnp.transpose(table, (0, 3, 1, 2)).reshape(
        n_basis * n_dims, n_basis * n_dims
    )


class BasisExpansion(Base):
    """score matching estimator for a basis expansion

    The log density is a linear combination of basis functions

        f(x) = Σ_m c_m φ_m(x)

    and the coefficients minimize the regularized score matching loss

        J(c) = 1/N Σ_n [ ½ ‖∇f(x_n)‖² + Σ_d ∂²f(x_n)/∂x_d² ] + λ/2 cᵀ R c

    over the training points x_n. J is quadratic in c, and its
    stationary point solves A c = b with

        A = 1/N Σ_n G_n G_nᵀ + λ R
        b = - 1/N Σ_n H_n 1

    where G_n and H_n, of shape (n_basis, n_dims), hold the gradients
    and the Hessian diagonals of the basis functions at x_n.

    Subclasses provide the basis functions, evaluated at a test point
    from the cached kernel tables, and the regularization matrix R.
    """

    def _basis_value(self, tables: Dict[str, Array], i: int) -> Array:
        "basis functions at point i, shape (n_basis,)"
        raise NotImplementedError

    def _basis_grad(self, tables: Dict[str, Array], i: int) -> Array:
        "gradients of the basis functions at point i, shape (n_basis, n_dims)"
        raise NotImplementedError

    def _basis_hessian_diag(self, tables: Dict[str, Array], i: int) -> Array:
        "Hessian diagonals of the basis functions at point i"
        raise NotImplementedError

    def _regularizer(self, tables: Dict[str, Array]) -> Array:
        "regularization matrix, from the tables between training points"
        raise NotImplementedError

    def build_system(self) -> Tuple[Array, Array]:
        tables = self._train_tables()
        n = self.num_train()
        idx = jnp.arange(n)

        # (n_train, n_basis, n_dims)
        G = vmap(lambda i: self._basis_grad(tables, i))(idx)
        H = vmap(lambda i: self._basis_hessian_diag(tables, i))(idx)

        A = jnp.einsum("nmd,nkd->mk", G, G) / n
        A = A + self.lam * self._regularizer(tables)
        b = -jnp.sum(H, axis=(0, 2)) / n
        return A, b

    def _log_pdf(self, coef, tables, i):
        return self._basis_value(tables, i) @ coef

    def _grad(self, coef, tables, i):
        return self._basis_grad(tables, i).T @ coef

    def _hessian_diag(self, coef, tables, i):
        return self._basis_hessian_diag(tables, i).T @ coef
