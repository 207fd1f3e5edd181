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

import logging
import math
import warnings
from collections import namedtuple
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, Dict, Optional, Tuple

import jax.numpy as jnp
import numpy as np
from jax import Array, jit
from jax.typing import ArrayLike
from tabulate import tabulate
from typing_extensions import Self

from ..defaults import kefxargs
from ..kernels import Kernel
from ..linalg import effective_rank, spectrum_range, svd_solve
from ..parameters.utils import _flatten_dict, _unflatten_dict
from ..utils import as_point_matrix

logger = logging.getLogger(__name__)

FittedModel = namedtuple("FittedModel", ["alpha_beta", "lam", "kernel_params"])


def _check_object_is_type(obj: Any, ref_type: Any, name: str) -> None:
    if not isinstance(obj, ref_type):
        raise ValueError(
            f"{name} must be a {ref_type} instance, you provided {type(obj)}"
        )


def _check_index(i: int, n: int, name: str) -> None:
    if not 0 <= i < n:
        raise IndexError(f"{name} point index {i} out of range [0, {n})")


class Base:
    """base class of kernel exponential family estimators

    An estimator models an unnormalized log density f(x), with the
    density proportional to exp(f(x)), and estimates it from the
    training points with score matching.

    The estimator owns the training points (lhs), the test points
    (rhs) where the density is evaluated, and the kernel, which is
    kept in sync with them. Points are stored column-wise, as
    (n_dims, n_points) matrices. Until test data is set, the test
    points are the training points themselves.

    Subclasses implement the model:
    *   `build_system` returns the linear system (A, b) whose solution
        are the coefficients of the model
    *   `_log_pdf`, `_grad`, `_hessian_diag` evaluate the log density,
        its gradient and the diagonal of its Hessian at test point i,
        from the coefficients and the kernel tables they receive.
        They are compiled with `jit`, with a traced index, and the
        same compiled function serves every test point.
    *   `kernel_tables` lists the kernel tables read by the model.
    """

    kernel_tables: Tuple[str, ...] = ("k",)

    def __init__(
        self,
        data: ArrayLike,
        kernel: Kernel,
        lam: float,
        parallel: Optional[bool] = kefxargs.parallel,
    ) -> None:
        """
        Args:
            data: training points, shape (n_dims, n_points)
            kernel: kernel instance. The estimator takes ownership of it:
                    the same instance must not be shared with other
                    estimators.
            lam: regularization parameter, strictly positive
            parallel: whether to evaluate test points on a pool of threads
        """
        _check_object_is_type(kernel, Kernel, "kernel")
        if not lam > 0:
            raise ValueError(f"lam must be strictly positive, you provided {lam}")

        data = as_point_matrix(data)
        self._lhs = data
        self._rhs = data
        self._lam = float(lam)
        self.parallel = parallel
        self.alpha_beta_ = None
        self._point_funcs = {}

        self._kernel = kernel
        self._kernel.require(*self.kernel_tables)
        self._kernel.set_lhs(data)
        self._kernel.set_rhs(data)

        logger.info(
            "Problem size is N=%d, D=%d.", self.num_train(), self.dimension()
        )
        self._kernel.precompute()

    def __repr__(self) -> str:
        name = self.__class__.__name__
        return (
            f"{name}(N={self.num_train()}, D={self.dimension()}, "
            f"lam={self.lam}, kernel={self.kernel})"
        )

    # =========================================================================
    # Data
    # =========================================================================

    @property
    def lhs(self) -> Array:
        return self._lhs

    @property
    def rhs(self) -> Array:
        return self._rhs

    @property
    def kernel(self) -> Kernel:
        return self._kernel

    @property
    def lam(self) -> float:
        return self._lam

    def dimension(self) -> int:
        "number of dimensions of the points"
        return self._lhs.shape[0]

    def num_train(self) -> int:
        "number of training points"
        return self._lhs.shape[1]

    def num_test(self) -> int:
        "number of test points"
        return self._rhs.shape[1]

    def set_test_data(self, x: ArrayLike) -> None:
        """Sets the points where the density is evaluated

        A 1D array is interpreted as a single point. The kernel
        rejects points with a different number of dimensions than
        the training points, in which case the estimator is left
        unchanged.
        """
        x = as_point_matrix(x)
        self._kernel.set_rhs(x)
        self._rhs = x
        self._kernel.precompute()

    def reset_test_data(self) -> None:
        "Uses the training points as test points"
        self.set_test_data(self._lhs)

    def is_test_equals_train(self) -> bool:
        """True if the test points are the training points

        This checks that test and training points are the same
        array object, not that they hold the same values: a copy
        of the training points is not considered equal.
        """
        return self._rhs is self._lhs and self._rhs.shape == self._lhs.shape

    def lhs_point(self, i: int) -> Array:
        "training point i, shape (n_dims,)"
        _check_index(i, self.num_train(), "training")
        return self._lhs[:, i]

    def rhs_point(self, i: int) -> Array:
        "test point i, shape (n_dims,)"
        _check_index(i, self.num_test(), "test")
        return self._rhs[:, i]

    def _train_tables(self) -> Dict[str, Array]:
        "kernel tables between the training points"
        if self.is_test_equals_train():
            return self._kernel.tables
        return self._kernel.compute_tables(self._lhs, self._lhs)

    # =========================================================================
    # Fit
    # =========================================================================

    def build_system(self) -> Tuple[Array, Array]:
        "Builds the linear system A x = b of the model"
        raise NotImplementedError

    def system_size(self) -> int:
        "number of coefficients of the model"
        raise NotImplementedError

    def is_fitted(self) -> bool:
        return self.alpha_beta_ is not None

    def _check_is_fitted(self) -> None:
        if not self.is_fitted():
            class_name = self.__class__.__name__
            raise RuntimeError(
                f"{class_name} is not fitted yet. "
                "Call 'fit' before using this model for evaluation."
            )

    def fit(self) -> Self:
        """Fits the model on the training points

        Builds the linear system of the model and solves it with
        the singular value decomposition, which yields a (least
        squares) solution also when the system is close to singular.
        The range of the squared singular values is logged, to
        diagnose ill-conditioned systems.
        """
        logger.info("Building system.")
        A, b = self.build_system()

        logger.info("Solving system of size %d.", b.shape[0])
        self.alpha_beta_ = self._solve(A, b)
        return self

    def _solve(self, A: ArrayLike, b: ArrayLike) -> Array:
        logger.info("Solving with SVD.")
        threshold = kefxargs.svd_threshold
        x, s = svd_solve(A, b, threshold=threshold)

        if not (jnp.all(jnp.isfinite(s)) and jnp.all(jnp.isfinite(x))):
            warnings.warn(
                "Numerical problems solving the system with SVD: "
                "non-finite values in the solution.",
                RuntimeWarning,
                stacklevel=3,
            )
            return x

        smin, smax = spectrum_range(s)
        logger.info(
            "Eigenspectrum range is [%f, %f], or [exp(%f), exp(%f)].",
            smin,
            smax,
            math.log(smin) if smin > 0 else -math.inf,
            math.log(smax) if smax > 0 else -math.inf,
        )

        rank = effective_rank(s, A.shape, threshold=threshold)
        if rank < s.shape[0]:
            warnings.warn(
                f"System of size {s.shape[0]} is rank deficient (rank {rank}), "
                "returning the minimum norm least squares solution.",
                RuntimeWarning,
                stacklevel=3,
            )
        return x

    # =========================================================================
    # Evaluation
    # =========================================================================

    def _log_pdf(self, coef: Array, tables: Dict[str, Array], i: int) -> Array:
        raise NotImplementedError

    def _grad(self, coef: Array, tables: Dict[str, Array], i: int) -> Array:
        raise NotImplementedError

    def _hessian_diag(self, coef: Array, tables: Dict[str, Array], i: int) -> Array:
        raise NotImplementedError

    def _point_function(self, hook: str) -> Callable[[int], Array]:
        """compiled hook, bound to the current coefficients and tables

        The hook is compiled once per estimator. Every test point,
        single or batched, sequential or parallel, goes through the
        same compiled function, so results do not depend on how the
        points are scheduled.
        """
        if hook not in self._point_funcs:
            self._point_funcs[hook] = jit(getattr(self, hook))
        return partial(self._point_funcs[hook], self.alpha_beta_, self._kernel.tables)

    def _map_points(self, hook: str) -> Array:
        """evaluates a hook at every test point

        Test points are independent, so with `parallel` they are
        dispatched to a pool of threads, otherwise they are evaluated
        one after the other. The output follows the order of the
        test points.
        """
        func = self._point_function(hook)
        points = range(self.num_test())
        if self.parallel:
            with ThreadPoolExecutor() as pool:
                out = list(pool.map(func, points))
        else:
            out = [func(i) for i in points]
        return jnp.stack(out)

    def _point_or_all(self, hook: str, i: Optional[int]) -> Array:
        self._check_is_fitted()
        if i is None:
            return self._map_points(hook)
        _check_index(i, self.num_test(), "test")
        return self._point_function(hook)(i)

    def log_pdf(self, i: Optional[int] = None) -> Array:
        """Unnormalized log density

        Args:
            i: index of a test point. If None, all the test points are used.
        Returns:
            log density at test point i, or at all the test points,
            shape (n_test,)
        """
        return self._point_or_all("_log_pdf", i)

    def grad(self, i: Optional[int] = None) -> Array:
        """Gradient of the log density

        Args:
            i: index of a test point. If None, all the test points are used.
        Returns:
            gradient at test point i, shape (n_dims,), or at all the
            test points, shape (n_dims, n_test)
        """
        out = self._point_or_all("_grad", i)
        return out if i is not None else out.T

    def hessian_diag(self, i: Optional[int] = None) -> Array:
        """Diagonal of the Hessian of the log density

        Args:
            i: index of a test point. If None, all the test points are used.
        Returns:
            Hessian diagonal at test point i, shape (n_dims,), or at
            all the test points, shape (n_dims, n_test)
        """
        out = self._point_or_all("_hessian_diag", i)
        return out if i is not None else out.T

    def _objective_term(self, coef: Array, tables: Dict[str, Array], i: int) -> Array:
        gradient = self._grad(coef, tables, i)
        hessian_diag = self._hessian_diag(coef, tables, i)
        # plain sum of the Hessian diagonal, no correction term
        return 0.5 * jnp.sum(gradient**2) + jnp.sum(hessian_diag)

    def objective(self) -> Array:
        """Score matching objective on the test points

            J = 1/N Σᵢ [ ½ ‖∇f(xᵢ)‖² + Σ_d ∂²f(xᵢ)/∂x_d² ]

        Per-point terms are computed in parallel and summed.
        """
        self._check_is_fitted()
        return jnp.sum(self._map_points("_objective_term")) / self.num_test()

    # =========================================================================
    # Persistence and reporting
    # =========================================================================

    def _state_extras(self) -> Dict[str, Any]:
        "model specific values saved together with the coefficients"
        return {}

    def _check_state_extras(self, extras: Dict[str, Any]) -> None:
        pass

    def fitted_state(self) -> FittedModel:
        "coefficients, regularization and kernel parameters of the fit"
        self._check_is_fitted()
        kernel_params = {k: p.value for k, p in self.kernel.params.items()}
        return FittedModel(self.alpha_beta_, self.lam, kernel_params)

    def save(self, state_file: str) -> Dict:
        """Saves the fitted model to file

        Saves the coefficients, the regularization parameter and the
        kernel parameters to "state_file" (numpy .npz format). The
        training points are not saved.

        Args:
            state_file: path to the output state file.
        Returns:
            saved_dict: dictionary of values saved to state_file.
        """
        state = self.fitted_state()
        saved = {
            "alpha_beta": np.asarray(state.alpha_beta),
            "lam": np.asarray(state.lam),
        }
        saved |= _flatten_dict(
            state.kernel_params,
            starting_key="kernel_params",
            sep=":",
            map_value=np.asarray,
        )
        saved |= self._state_extras()
        np.savez(state_file, **saved)
        return saved

    def load(self, state_file: str) -> Self:
        """Loads a fitted model from file

        The estimator must be built on the same training points, with
        the same kind of kernel and regularization used when saving.

        Args:
            state_file: path to the input state file.
        Returns:
            self, with the loaded coefficients
        """
        dumped = np.load(state_file, allow_pickle=True)
        dumped = _unflatten_dict({k: v for k, v in dumped.items()}, sep=":")

        missing = [k for k in ("alpha_beta", "lam") if k not in dumped]
        if missing:
            raise ValueError(f"{state_file} is not a saved model, missing {missing}")

        if not np.isclose(dumped.pop("lam"), self.lam):
            raise ValueError("lam of the saved model differs from this estimator.")

        kernel_params = dumped.pop("kernel_params", {})
        if set(kernel_params) != set(self.kernel.params):
            raise ValueError("saved kernel parameters do not match the kernel.")
        for name, value in kernel_params.items():
            if not np.allclose(value, self.kernel.params[name].value):
                raise ValueError(f"saved kernel parameter {name} differs.")

        alpha_beta = jnp.asarray(dumped.pop("alpha_beta"))
        if alpha_beta.shape != (self.system_size(),):
            raise ValueError(
                f"saved coefficients have shape {alpha_beta.shape}, "
                f"expected ({self.system_size()},)"
            )
        self._check_state_extras(dumped)

        self.alpha_beta_ = alpha_beta
        return self

    def print(self, tablefmt: Optional[str] = "simple_grid") -> None:
        "Print a summary of the estimator"
        fields = [
            ["N", self.num_train()],
            ["D", self.dimension()],
            ["N test", self.num_test()],
            ["lam", self.lam],
            ["kernel", self.kernel.__class__.__name__],
        ]
        fields += [
            ["kernel " + k, np.array2string(np.asarray(p.value))]
            for k, p in self.kernel.params.items()
        ]
        fields += [
            ["system size", self.system_size()],
            ["fitted", self.is_fitted()],
        ]
        print(tabulate(fields, headers=["name", "value"], tablefmt=tablefmt))
