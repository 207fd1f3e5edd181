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

from typing import Optional, Tuple

import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

# =============================================================================
# Linear systems
# =============================================================================


def _cutoff(s: ArrayLike, shape: Tuple[int, int], threshold: Optional[float]):
    if threshold is None:
        threshold = jnp.finfo(s.dtype).eps * min(shape)
    return threshold * jnp.max(s)


def svd_solve(
    A: ArrayLike, b: ArrayLike, threshold: Optional[float] = None
) -> Tuple[Array, Array]:
    """solves A x = b with the thin singular value decomposition

    Computes the minimum norm least squares solution

        A = U S Vᵀ
        x = V S⁺ Uᵀ b

    using the thin (economy) factors U and V. Singular values smaller
    than or equal to `threshold * max(s)` are treated as zero, so that
    a (nearly) singular A still yields a solution.

    Args:
        A: matrix of the linear system, shape (n, m)
        b: right hand side, shape (n,)
        threshold: relative cutoff for the singular values. If None,
                   eps * min(n, m) is used.
    Returns:
        x: solution, shape (m,)
        s: singular values of A, in descending order
    """
    A = jnp.asarray(A)
    b = jnp.asarray(b)
    U, s, Vt = jnp.linalg.svd(A, full_matrices=False)
    cutoff = _cutoff(s, A.shape, threshold)
    keep = s > cutoff
    s_inv = jnp.where(keep, 1.0 / jnp.where(keep, s, 1.0), 0.0)
    x = Vt.T @ (s_inv * (U.T @ b))
    return x, s


def eigenspectrum(s: ArrayLike) -> Array:
    """eigenvalues proxy from the singular values

    For a symmetric positive semi-definite matrix the squared
    singular values are the squared eigenvalues.
    """
    return jnp.asarray(s) ** 2


def spectrum_range(s: ArrayLike) -> Tuple[float, float]:
    "smallest and largest value of the squared singular values"
    ev = eigenspectrum(s)
    return float(jnp.min(ev)), float(jnp.max(ev))


def effective_rank(
    s: ArrayLike, shape: Tuple[int, int], threshold: Optional[float] = None
) -> int:
    "number of singular values kept by `svd_solve`"
    s = jnp.asarray(s)
    return int(jnp.sum(s > _cutoff(s, shape, threshold)))
