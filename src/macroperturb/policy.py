"""Perturbation solution container and law of motion.

A :class:`PerturbationSolution` bundles the steady state, the variable and
shock orderings and the Taylor coefficients of the policy function

.. math::

    y_t - \\bar{y} = g_1 z_t + \\tfrac{1}{2} g_2 (z_t \\otimes z_t)
                    + \\tfrac{1}{6} g_3 (z_t \\otimes z_t \\otimes z_t)

in the augmented state :math:`z_t = [\\, \\hat{y}^{-}_{t-1};\\; \\sigma;\\; \\varepsilon_t \\,]`
evaluated at :math:`\\sigma = 1`.  The factorial scaling is applied by
:meth:`PerturbationSolution.state_update`.

Solutions are immutable: arrays are read-only copies and re-solving with
new parameters returns a new object.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

import numpy as np

from .exceptions import ConvergenceError
from .timing import Timings

Array = np.ndarray

ALGORITHM_ORDERS = {
    "first_order": 1,
    "second_order": 2,
    "third_order": 3,
    "linear_time_iteration": 1,
}


def _as_1d(array: Array | list[float] | tuple[float, ...], size: int) -> Array:
    out = np.asarray(array, dtype=float).reshape(-1)
    if out.size != size:
        raise ValueError(f"Expected vector of size {size}, got {out.size}")
    return out


def _quadratic_term(tensor: Array, a: Array, b: Array) -> Array:
    return np.einsum("ijk,j,k->i", tensor, a, b)


def _cubic_term(tensor: Array, a: Array, b: Array, c: Array) -> Array:
    return np.einsum("ijkl,j,k,l->i", tensor, a, b, c)


def _frozen(array: Array | None) -> Array | None:
    if array is None:
        return None
    out = np.array(array, dtype=float)
    out.setflags(write=False)
    return out


@dataclass(frozen=True)
class PerturbationSolution:
    """Immutable perturbation solution of a model.

    Attributes
    ----------
    algorithm : str
        ``"first_order"``, ``"second_order"``, ``"third_order"`` or
        ``"linear_time_iteration"``.
    timings : Timings
        Variable, state and shock orderings.
    steady_state : Array, shape (n,)
        Non-stochastic steady state in variable order.
    parameters : Mapping[str, float]
        Free and calibrated parameter values used.
    first_order : Array, shape (n, n_past + n_shocks)
        ``[X, B]``: response to predetermined variables at ``t-1`` and to
        current shocks.
    g2 : Array or None, shape (n, m, m)
        Second-order tensor over the augmented state (orders 2 and 3).
    g3 : Array or None, shape (n, m, m, m)
        Third-order tensor over the augmented state (order 3).
    shock_covariance : Array, shape (n_shocks, n_shocks)
        Shock covariance the solution was computed with.
    eigenvalues : Array
        Moduli of the eigenvalues of the first-order problem.
    model_name : str
        Name of the solved model.
    """

    algorithm: str
    timings: Timings
    steady_state: Array
    parameters: Mapping[str, float]
    first_order: Array
    g2: Array | None = None
    g3: Array | None = None
    shock_covariance: Array | None = None
    eigenvalues: Array | None = None
    model_name: str = "model"

    def __post_init__(self) -> None:
        if self.algorithm not in ALGORITHM_ORDERS:
            raise ValueError(f"Unknown algorithm '{self.algorithm}'")
        t = self.timings
        n = t.n_variables
        m = t.n_augmented
        first = np.asarray(self.first_order, dtype=float)
        if first.shape != (n, t.n_past + t.n_shocks):
            raise ValueError(
                f"first_order must have shape {(n, t.n_past + t.n_shocks)}, got {first.shape}"
            )
        order = ALGORITHM_ORDERS[self.algorithm]
        if order >= 2 and (self.g2 is None or np.shape(self.g2) != (n, m, m)):
            raise ValueError(f"{self.algorithm} requires g2 of shape {(n, m, m)}")
        if order >= 3 and (self.g3 is None or np.shape(self.g3) != (n, m, m, m)):
            raise ValueError(f"{self.algorithm} requires g3 of shape {(n, m, m, m)}")
        covariance = (
            np.eye(t.n_shocks) if self.shock_covariance is None else self.shock_covariance
        )
        object.__setattr__(self, "steady_state", _frozen(_as_1d(self.steady_state, n)))
        object.__setattr__(self, "first_order", _frozen(first))
        object.__setattr__(self, "g2", _frozen(self.g2) if order >= 2 else None)
        object.__setattr__(self, "g3", _frozen(self.g3) if order >= 3 else None)
        object.__setattr__(self, "shock_covariance", _frozen(covariance))
        object.__setattr__(
            self,
            "eigenvalues",
            _frozen(np.zeros(0) if self.eigenvalues is None else self.eigenvalues),
        )
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))

    @property
    def order(self) -> int:
        return ALGORITHM_ORDERS[self.algorithm]

    @property
    def variables(self) -> tuple[str, ...]:
        return self.timings.variables

    @property
    def states(self) -> tuple[str, ...]:
        """Predetermined variables, in the order of the state columns."""
        return self.timings.past

    @property
    def shocks(self) -> tuple[str, ...]:
        return self.timings.shocks

    @property
    def n_variables(self) -> int:
        return self.timings.n_variables

    @property
    def n_states(self) -> int:
        return self.timings.n_past

    @property
    def n_shocks(self) -> int:
        return self.timings.n_shocks

    @property
    def ghx(self) -> Array:
        """``X``: first-order response to predetermined variables."""
        return self.first_order[:, : self.n_states]

    @property
    def ghu(self) -> Array:
        """``B``: first-order response to shocks."""
        return self.first_order[:, self.n_states :]

    @property
    def g1(self) -> Array:
        """First-order coefficients over the augmented state (zero sigma column)."""
        return np.hstack([self.ghx, np.zeros((self.n_variables, 1)), self.ghu])

    def _slices(self) -> tuple[slice, int, slice]:
        s = self.n_states
        return slice(0, s), s, slice(s + 1, s + 1 + self.n_shocks)

    @property
    def ghxx(self) -> Array | None:
        if self.g2 is None:
            return None
        x, _, _ = self._slices()
        return self.g2[:, x, x]

    @property
    def ghxu(self) -> Array | None:
        if self.g2 is None:
            return None
        x, _, u = self._slices()
        return self.g2[:, x, u]

    @property
    def ghuu(self) -> Array | None:
        if self.g2 is None:
            return None
        _, _, u = self._slices()
        return self.g2[:, u, u]

    @property
    def ghs2(self) -> Array | None:
        """``g_sigma_sigma``: uncertainty correction of the policy."""
        if self.g2 is None:
            return None
        _, s, _ = self._slices()
        return self.g2[:, s, s]

    @property
    def risk_correction(self) -> Array:
        """Constant shift ``0.5 * g_sigma_sigma`` (zero at first order)."""
        if self.g2 is None:
            return np.zeros(self.n_variables)
        return 0.5 * self.ghs2

    def augmented_state(
        self,
        state: Array | list[float] | tuple[float, ...],
        shock: Array | list[float] | tuple[float, ...] | None = None,
    ) -> Array:
        """``[state[past]; 1; shock]`` for a full-length deviation vector *state*."""
        y = _as_1d(state, self.n_variables)
        e = np.zeros(self.n_shocks) if shock is None else _as_1d(shock, self.n_shocks)
        return np.concatenate([y[self.timings.past_idx], [1.0], e])

    def state_update(
        self,
        state: Array | list[float] | tuple[float, ...],
        shock: Array | list[float] | tuple[float, ...] | None = None,
        *,
        include_higher_order: bool = True,
    ) -> Array:
        """Next period's deviations from the steady state.

        Parameters
        ----------
        state : array_like, shape (n,)
            Deviations of all variables from the steady state at ``t-1``;
            only the predetermined entries are used.
        shock : array_like or None, shape (n_shocks,)
            Shock realisation at ``t``.  Defaults to zero.
        include_higher_order : bool
            If False, only the first-order terms are used regardless of
            the order of the solution.

        Returns
        -------
        Array, shape (n,)
            Deviations of all variables at ``t``.
        """
        z = self.augmented_state(state, shock)
        out = self.g1 @ z
        if not include_higher_order or self.g2 is None:
            return out
        out = out + 0.5 * _quadratic_term(self.g2, z, z)
        if self.g3 is not None:
            out = out + (1.0 / 6.0) * _cubic_term(self.g3, z, z, z)
        return out

    def state_space(self) -> tuple[Array, Array, Array]:
        """First-order state-space system ``(T, R, steady_state)``.

        ``y_t = T y_{t-1} + R e_t`` in deviations; ``T`` is ``(n, n)`` with
        nonzero columns only at the predetermined variables.
        """
        n = self.n_variables
        T = np.zeros((n, n))
        T[:, self.timings.past_idx] = self.ghx
        return T, np.array(self.ghu), np.array(self.steady_state)

    def stochastic_steady_state(self, *, tol: float = 1e-12, max_iter: int = 10_000) -> Array:
        """Fixed point of :meth:`state_update` with zero shocks, in deviations.

        Raises
        ------
        ConvergenceError
            If the iteration does not settle within *max_iter* steps.
        """
        y = np.zeros(self.n_variables)
        change = np.inf
        for iteration in range(1, max_iter + 1):
            y_next = self.state_update(y)
            change = float(np.max(np.abs(y_next - y), initial=0.0))
            y = y_next
            if not np.isfinite(change):
                raise ConvergenceError(iteration, change, reason="diverged")
            if change < tol:
                return y
        raise ConvergenceError(max_iter, change, reason="max_iter")

    def levels(self, deviations: Array) -> Array:
        """Add the steady state to deviations (last axis in variable order)."""
        return np.asarray(deviations, dtype=float) + self.steady_state

    def variable_index(self, name: str) -> int:
        try:
            return self.variables.index(name)
        except ValueError:
            raise ValueError(f"Unknown variable '{name}'") from None

    def shock_index(self, name: str) -> int:
        try:
            return self.shocks.index(name)
        except ValueError:
            raise ValueError(f"Unknown shock '{name}'") from None
