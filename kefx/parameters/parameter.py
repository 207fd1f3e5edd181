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

from typing import Any, Dict, Tuple

import jax
import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike


@jax.tree_util.register_pytree_node_class
class Parameter:
    """hyper-parameter of a kernel

    Thin pytree wrapper around a value, so that dictionaries of
    parameters can be passed through `jit`, `vmap` and `grad`.
    """

    def __init__(self, value: ArrayLike) -> None:
        self.value = jnp.array(value, dtype=jnp.float64)

    def __repr__(self) -> str:
        name = self.__class__.__name__
        return f"{name}(value={self.value})"

    def tree_flatten(self) -> Tuple[Array, Any]:
        children = (self.value,)
        aux_data = None
        return children, aux_data

    @classmethod
    def tree_unflatten(cls, aux_data: Any, children: ArrayLike) -> "Parameter":
        # bypass __init__: during tracing children may be tracers
        # or placeholder objects that cannot be converted to arrays
        p = cls.__new__(cls)
        (p.value,) = children
        return p


def is_parameter(p: Any) -> bool:
    "True if p is a Parameter instance, False otherwise"
    return isinstance(p, Parameter)
