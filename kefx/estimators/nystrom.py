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

from typing import Any, Dict, Optional

import jax.numpy as jnp
import numpy as np
from jax import Array, random
from jax.typing import ArrayLike

from ..defaults import kefxargs
from ..kernels import Kernel
from .basis import BasisExpansion, derivative_basis, derivative_gram

KeyArray = Array


def _check_basis_idx(basis_idx: ArrayLike, n: int) -> Array:
    basis_idx = np.asarray(basis_idx)
    if basis_idx.ndim != 1 or basis_idx.size == 0:
        raise ValueError("basis_idx must be a non-empty 1D array of indices")
    if not np.issubdtype(basis_idx.dtype, np.integer):
        raise ValueError(f"basis_idx must hold integers, got {basis_idx.dtype}")
    if basis_idx.min() < 0 or basis_idx.max() >= n:
        raise IndexError(f"basis indices out of range [0, {n})")
    if np.unique(basis_idx).size != basis_idx.size:
        raise ValueError("basis_idx contains repeated indices")
    return jnp.asarray(np.sort(basis_idx))


class Nystrom(BasisExpansion):
    """Nyström kernel exponential family

    The log density is expanded on the partial derivatives of the
    kernel functions centered on a subset z of the training points
    (the basis)

        f(x) = Σ_a Σ_i β_(a,i) ∂k(z_a, x)/∂y_i

    and the coefficients are regularized with the RKHS norm of f.
    The linear system has n_basis * n_dims unknowns, ordered with
    the basis point first and the dimension second.

    Note: see Sutherland et al., Efficient and principled score
    estimation with Nyström kernel exponential families, AISTATS 2018.
    """

    kernel_tables = ("dy", "dx_dy", "dx_dx_dy")

    def __init__(
        self,
        data: ArrayLike,
        kernel: Kernel,
        lam: float,
        basis_idx: Optional[ArrayLike] = None,
        num_basis: Optional[int] = None,
        key: Optional[KeyArray] = kefxargs.key_basis,
        parallel: Optional[bool] = kefxargs.parallel,
    ) -> None:
        """
        Args:
            data: training points, shape (n_dims, n_points)
            kernel: kernel instance, owned by the estimator
            lam: regularization parameter, strictly positive
            basis_idx: indices of the training points used as basis
            num_basis: number of basis points drawn at random without
                       replacement (used only if basis_idx is None).
                       If both are None, all the training points are used.
            key: JAX PRNGKey used to draw the basis points
            parallel: whether to evaluate test points on a pool of threads
        """
        super().__init__(data, kernel, lam, parallel=parallel)
        n = self.num_train()
        if basis_idx is None:
            if num_basis is None:
                basis_idx = np.arange(n)
            else:
                if not 0 < num_basis <= n:
                    raise ValueError(
                        f"num_basis must be in [1, {n}], you provided {num_basis}"
                    )
                basis_idx = random.choice(key, n, shape=(num_basis,), replace=False)
        self.basis_idx = _check_basis_idx(basis_idx, n)

    def num_basis(self) -> int:
        return self.basis_idx.shape[0]

    def system_size(self) -> int:
        return self.num_basis() * self.dimension()

    def basis(self) -> Array:
        "basis points, shape (n_dims, n_basis)"
        return self.lhs[:, self.basis_idx]

    def _basis_value(self, tables, i):
        return tables["dy"][self.basis_idx, i].reshape(-1)

    def _basis_grad(self, tables, i):
        return derivative_basis(tables["dx_dy"][self.basis_idx, i])

    def _basis_hessian_diag(self, tables, i):
        return derivative_basis(tables["dx_dx_dy"][self.basis_idx, i])

    def _regularizer(self, tables):
        dx_dy = tables["dx_dy"][self.basis_idx][:, self.basis_idx]
        return derivative_gram(dx_dy)

    def _state_extras(self) -> Dict[str, Any]:
        return {"basis_idx": np.asarray(self.basis_idx)}

    def _check_state_extras(self, extras: Dict[str, Any]) -> None:
        basis_idx = extras.get("basis_idx")
        if basis_idx is None or not np.array_equal(basis_idx, self.basis_idx):
            raise ValueError("saved basis points differ from this estimator.")
