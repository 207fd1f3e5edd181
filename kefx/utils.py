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
from jax import Array, jit
from jax.typing import ArrayLike

# =============================================================================
# Operations
# =============================================================================


@jit
def squared_distances(x1: ArrayLike, x2: ArrayLike) -> Array:
    """squared euclidean distances

    This is a memory-efficient implementation of the calculation of
    squared euclidean distances. Euclidean distances between `x1`
    of shape (n_samples1, n_feats) and `x2` of shape (n_samples2, n_feats)
    is evaluated by using the "euclidean distances trick":

        dist = X1 @ X1.T - 2 X1 @ X2.T + X2 @ X2.T

    Negative values coming from cancellation errors are clipped to zero.

    Note: this function evaluates distances between batches of points
    """
    x1s = jnp.sum(jnp.square(x1), axis=-1)
    x2s = jnp.sum(jnp.square(x2), axis=-1)
    dist = x1s[:, jnp.newaxis] - 2 * jnp.dot(x1, x2.T) + x2s
    return jnp.maximum(dist, 0.0)


def as_point_matrix(x: ArrayLike) -> Array:
    """promotes the input to a (n_dims, n_points) matrix

    Points are stored column-wise. A 1D input is a single point and
    is reshaped to a one-column matrix. A 2D JAX array of floats is
    returned unchanged (same object), so that identity checks on the
    stored matrices keep working. Everything else is converted to a
    new float64 JAX array. Empty matrices are rejected.
    """
    is_float = isinstance(x, Array) and jnp.issubdtype(x.dtype, jnp.floating)
    if not (is_float and x.ndim == 2):
        x = jnp.asarray(x, dtype=jnp.float64)
        if x.ndim == 1:
            x = x[:, jnp.newaxis]
    if x.ndim != 2:
        raise ValueError(
            f"points must be stored in a 1D or 2D array, you provided ndim={x.ndim}"
        )
    if x.size == 0:
        raise ValueError(f"no points provided, got an array of shape {x.shape}")
    return x
