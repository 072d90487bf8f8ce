"""Exact derivatives of the canonical equations at the steady state.

Derivatives come from exact symbolic differentiation with sympy, not from
forward-mode automatic differentiation: each equation is differentiated as
a sympy expression and the result compiled to a numeric function.  The
values agree with automatic differentiation to rounding.

The equations are differentiated with respect to the stacked vector

.. math::

    v = [\\, y_{t+1}^{+};\\; y_t;\\; y_{t-1}^{-};\\; \\varepsilon_t \\,]

where :math:`y^{+}` are the forward-looking variables and :math:`y^{-}`
the predetermined ones (see :class:`~macroperturb.timing.Timings`).  Each
equation is only differentiated with respect to the symbols it contains,
and higher derivatives only for sorted index combinations ``i <= j (<= k)``;
the remaining entries of the symmetric tensors are filled by permutation.

Derivative expressions are built once per model and order and compiled with
``sympy.lambdify`` over ``(v, steady-state references, parameters)``, so a
re-solve with new parameter values only re-evaluates them.
"""

from __future__ import annotations

from dataclasses import dataclass
from itertools import permutations
import logging
from typing import Callable

import numpy as np
import sympy as sp

from .exceptions import DifferentiationError
from .model import Model, parameter_symbol, shock_symbol, ss_symbol, timed_symbol
from .steady_state import SteadyStateResult
from .timing import Timings

logger = logging.getLogger(__name__)

Array = np.ndarray

MAX_ORDER = 3


@dataclass(frozen=True)
class DerivativeTensors:
    """Derivatives of the model equations over the stacked vector.

    Attributes
    ----------
    order : int
        Highest derivative order available.
    timings : Timings
        Timing map defining the layout of the stacked vector.
    jacobian : Array, shape (n_eq, n_v)
        First derivatives.
    hessian : Array or None, shape (n_eq, n_v, n_v)
        Second derivatives (symmetric in the last two axes).
    third : Array or None, shape (n_eq, n_v, n_v, n_v)
        Third derivatives (symmetric in the last three axes).
    """

    order: int
    timings: Timings
    jacobian: Array
    hessian: Array | None = None
    third: Array | None = None

    def jacobian_blocks(self) -> tuple[Array, Array, Array, Array]:
        """Split the Jacobian into ``(f_plus, f_zero, f_minus, f_shock)``.

        ``f_plus`` has one column per forward-looking variable, ``f_zero``
        one per variable, ``f_minus`` one per predetermined variable and
        ``f_shock`` one per shock.
        """
        t = self.timings
        a = t.n_future
        b = a + t.n_variables
        c = b + t.n_past
        return (
            self.jacobian[:, :a],
            self.jacobian[:, a:b],
            self.jacobian[:, b:c],
            self.jacobian[:, c:],
        )


def stacked_symbols(timings: Timings) -> tuple[sp.Symbol, ...]:
    """Symbols of the stacked vector ``v`` in order."""
    return (
        tuple(timed_symbol(name, 1) for name in timings.future)
        + tuple(timed_symbol(name, 0) for name in timings.variables)
        + tuple(timed_symbol(name, -1) for name in timings.past)
        + tuple(shock_symbol(name) for name in timings.shocks)
    )


class DerivativeEvaluator:
    """Symbolic derivatives of a model, compiled on demand per order."""

    def __init__(self, model: Model) -> None:
        self.model = model
        self.timings = model.timings
        self.stacked = stacked_symbols(self.timings)
        self._position = {sym: i for i, sym in enumerate(self.stacked)}
        self._arguments = (
            list(self.stacked)
            + [ss_symbol(name) for name in self.timings.variables]
            + [parameter_symbol(name) for name in model.parameter_names]
        )
        self._positions = tuple(
            tuple(sorted(self._position[sym] for sym in deps if sym in self._position))
            for deps in model.dependencies
        )
        self._symbolic: dict[int, dict[tuple[int, tuple[int, ...]], sp.Expr]] = {}
        self._compiled: dict[int, tuple[tuple[tuple[int, tuple[int, ...]], ...], Callable[..., object]]] = {}

    def expressions(self, order: int) -> dict[tuple[int, tuple[int, ...]], sp.Expr]:
        """Nonzero derivative expressions keyed by ``(equation, sorted indices)``."""
        if not 1 <= order <= MAX_ORDER:
            raise ValueError(f"order must be between 1 and {MAX_ORDER}, got {order}")
        if order in self._symbolic:
            return self._symbolic[order]

        out: dict[tuple[int, tuple[int, ...]], sp.Expr] = {}
        if order == 1:
            for eq, positions in zip(self.model.equations, self._positions):
                for p in positions:
                    expr = sp.diff(eq.residual, self.stacked[p])
                    if expr != 0:
                        out[(eq.index, (p,))] = expr
        else:
            for (eq_index, idx), expr in self.expressions(order - 1).items():
                for p in self._positions[eq_index]:
                    if p < idx[-1]:
                        continue
                    deriv = sp.diff(expr, self.stacked[p])
                    if deriv != 0:
                        out[(eq_index, idx + (p,))] = deriv
        self._symbolic[order] = out
        logger.debug(
            "Built %d nonzero order-%d derivative expressions for '%s'",
            len(out),
            order,
            self.model.name,
        )
        return out

    def _compile(self, order: int):
        if order not in self._compiled:
            expressions = self.expressions(order)
            keys = tuple(expressions)
            func = sp.lambdify(
                self._arguments,
                [expressions[key] for key in keys],
                modules=["scipy", "numpy"],
                cse=True,
            )
            self._compiled[order] = (keys, func)
        return self._compiled[order]

    def point(self, steady_state: SteadyStateResult) -> list[float]:
        """Argument values at the steady state with shocks at zero."""
        t = self.timings
        ss = dict(zip(steady_state.variables, map(float, steady_state.values)))
        parameters = steady_state.all_parameters()
        return (
            [ss[name] for name in t.future]
            + [ss[name] for name in t.variables]
            + [ss[name] for name in t.past]
            + [0.0] * t.n_shocks
            + [ss[name] for name in t.variables]
            + [parameters[name] for name in self.model.parameter_names]
        )

    def evaluate(self, steady_state: SteadyStateResult, order: int = 1) -> DerivativeTensors:
        """Evaluate derivatives up to *order* at *steady_state*.

        Raises
        ------
        DifferentiationError
            If any derivative evaluates to a non-finite value.
        """
        if not 1 <= order <= MAX_ORDER:
            raise ValueError(f"order must be between 1 and {MAX_ORDER}, got {order}")
        args = self.point(steady_state)
        n_eq = len(self.model.equations)
        n_v = len(self.stacked)

        tensors: list[Array] = []
        for k in range(1, order + 1):
            keys, func = self._compile(k)
            with np.errstate(all="ignore"):
                values = np.array(func(*args), dtype=float).reshape(-1)
            bad = np.flatnonzero(~np.isfinite(values))
            if bad.size:
                raise DifferentiationError(equation_index=keys[bad[0]][0], order=k)

            tensor = np.zeros((n_eq,) + (n_v,) * k)
            for (eq_index, idx), value in zip(keys, values):
                if k == 1:
                    tensor[eq_index, idx[0]] = value
                else:
                    for perm in set(permutations(idx)):
                        tensor[(eq_index,) + perm] = value
            tensor.setflags(write=False)
            tensors.append(tensor)

        return DerivativeTensors(
            order=order,
            timings=self.timings,
            jacobian=tensors[0],
            hessian=tensors[1] if order >= 2 else None,
            third=tensors[2] if order >= 3 else None,
        )


def compute_derivatives(
    model: Model, steady_state: SteadyStateResult, order: int = 1
) -> DerivativeTensors:
    """Derivatives of *model* up to *order* at *steady_state*.

    Uses the evaluator attached to the model, so symbolic work is shared
    across calls.
    """
    evaluator: DerivativeEvaluator = model.derivative_evaluator
    return evaluator.evaluate(steady_state, order)
