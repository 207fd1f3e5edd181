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

import jax.numpy as jnp

from .basis import BasisExpansion, derivative_basis, derivative_gram


class Full(BasisExpansion):
    """Kernel exponential family, full solution

    By the representer theorem, the score matching estimator in the
    RKHS of the kernel has the form

        f(x) = α ξ(x) + Σ_a Σ_i β_(a,i) ∂k(x_a, x)/∂y_i

        ξ(x) = 1/N Σ_b Σ_j ∂²k(x_b, x)/∂y_j²

    where the sums run over all the training points. The coefficients
    are regularized with the RKHS norm of f. The linear system has
    N * n_dims + 1 unknowns: α first, followed by the β block ordered
    with the training point first and the dimension second.

    Note: see Sriperumbudur et al., Density estimation in infinite
    dimensional exponential families, JMLR 2017.
    """

    kernel_tables = ("dy", "dx_dy", "dx_dx_dy", "lap_y", "dx_lap_y", "dx_dx_lap_y")

    def system_size(self) -> int:
        return self.num_train() * self.dimension() + 1

    def _basis_value(self, tables, i):
        xi = jnp.mean(tables["lap_y"][:, i])
        beta = tables["dy"][:, i].reshape(-1)
        return jnp.concatenate([xi[jnp.newaxis], beta])

    def _basis_grad(self, tables, i):
        xi = jnp.mean(tables["dx_lap_y"][:, i], axis=0)
        beta = derivative_basis(tables["dx_dy"][:, i])
        return jnp.concatenate([xi[jnp.newaxis], beta], axis=0)

    def _basis_hessian_diag(self, tables, i):
        xi = jnp.mean(tables["dx_dx_lap_y"][:, i], axis=0)
        beta = derivative_basis(tables["dx_dx_dy"][:, i])
        return jnp.concatenate([xi[jnp.newaxis], beta], axis=0)

    def _regularizer(self, tables):
        n = self.num_train()
        # < ξ, ξ >
        xi_xi = jnp.sum(tables["dx_dx_lap_y"]) / n**2
        # < ξ, ∂k(x_a, ·)/∂y_i >
        xi_beta = jnp.mean(tables["dx_lap_y"], axis=0).reshape(-1)
        # < ∂k(x_a, ·)/∂y_i, ∂k(x_b, ·)/∂y_j >
        beta_beta = derivative_gram(tables["dx_dy"])

        top = jnp.concatenate([xi_xi[jnp.newaxis], xi_beta])
        bottom = jnp.concatenate([xi_beta[:, jnp.newaxis], beta_beta], axis=1)
        return jnp.concatenate([top[jnp.newaxis], bottom], axis=0)
