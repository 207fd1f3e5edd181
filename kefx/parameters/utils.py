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

import warnings
from typing import Any, Callable, Dict, Optional


def _flatten_dict(
    dictionary: Dict,
    flattened: Optional[Dict] = None,
    starting_key: Optional[str] = None,
    sep: str = ":",
    map_value: Optional[Callable] = None,
) -> Dict:
    # instantiate the flattened dictionary
    if flattened is None:
        flattened = {}

    # We want to be compatible with a final, empty
    # dictionary. We use the name 'NULL' to indicate
    # the empty dictionary
    if len(dictionary.keys()) == 0:
        k = f"{starting_key}{sep}NULL" if starting_key else "NULL"
        flattened[k] = None

    else:
        for k, v in dictionary.items():
            k = f"{starting_key}{sep}{k}" if starting_key else k
            if isinstance(v, dict):
                _flatten_dict(
                    dictionary=v,
                    flattened=flattened,
                    starting_key=k,
                    sep=sep,
                    map_value=map_value,
                )
                continue

            flattened[k] = map_value(v) if map_value is not None else v

    return flattened


def _unflatten_dict(dictionary: Dict[str, Any], sep: str = ":") -> Dict:
    # instantiate the unflattened dictionary
    unflattened = {}

    for k in dictionary.keys():
        # Try to retrieve a dictionary key but do not
        # stop iterating if you're unable to get that
        try:
            v = dictionary[k]
        except ValueError:
            warnings.warn(f"Unable to retrieve key={k}", stacklevel=2)
            continue

        # start from top
        cur_dict = unflattened

        # split into subkeys
        keys = k.split(sep)

        for pos, subk in enumerate(keys):
            # we are at the last key, so we assign the value now
            if pos == len(keys) - 1:
                # NULL identifies an empty dictionary, so we
                # do nothing
                if subk != "NULL":
                    cur_dict[subk] = v
            # Avoid overwriting on existing keys
            elif subk in cur_dict:
                cur_dict = cur_dict[subk]
            # Key not present, so we instantiate a new dict
            else:
                cur_dict[subk] = {}
                cur_dict = cur_dict[subk]

    return unflattened
