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
from collections import namedtuple

import jax

KEFX_DEFAULTS = {
    # evaluate test points on a pool of threads (True) or one by one (False)
    "parallel": True,
    # build kernel tables with lax.scan (True) or with nested vmaps (False)
    "lax": False,
    # relative cutoff for singular values in the SVD solve.
    # None uses eps * min(A.shape)
    "svd_threshold": None,
    # default "random" key to select the basis points of Nystrom estimators
    "key_basis": jax.random.PRNGKey(2023),
}

# using a namedtuple to have immutable defaults
kefxargs = namedtuple(
    "KEFX_DEFAULTS_ARGUMENTS",
    KEFX_DEFAULTS.keys(),
    defaults=KEFX_DEFAULTS.values(),
)()
