"""Third-order perturbation solver.

Continues the expansion of :mod:`macroperturb.solver_second_order` by one
order.  With ``g2`` known, next period's augmented state has second
derivative ``h2`` (the predetermined rows of ``g2``), and the third
derivative of the model condition splits into the unknown part

.. math::

    M\\, g_3 + f_{+}\\, g_3^{+}\\, C_3, \\qquad C_3 = E[h_1 \\otimes h_1 \\otimes h_1]

and the known part

.. math::

    D_3 = E\\bigl[f_3[v_1, v_1, v_1] + \\mathrm{sym}(f_2[v_1, v_2]) + f_1 v_3^{0}\\bigr]

where :math:`v_3^{0}` is the third derivative of the stacked vector with
``g3`` set to zero.  Third moments of symmetric shocks vanish, so the
terms in :math:`\\sigma^3` and :math:`\\sigma^2 \\varepsilon` capture the
interaction of risk with the state.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging

import numpy as np

from .derivatives import DerivativeTensors
from .solver_second_order import (
    SecondOrderSolution,
    cubature_nodes,
    stacked_jacobian,
    transition_jacobian,
)
from .tensor_ops import kron_power, mdot, sdot, solve_policy_correction, sym3_cross, symmetrize

logger = logging.getLogger(__name__)

Array = np.ndarray


@dataclass(frozen=True)
class ThirdOrderSolution:
    """Result of the third-order perturbation solution.

    Attributes
    ----------
    second_order : SecondOrderSolution
        The underlying second-order solution.
    g3 : Array, shape (n, m, m, m)
        Third derivatives of the policy over the augmented state.
    """

    second_order: SecondOrderSolution
    g3: Array

    @property
    def first_order(self):
        return self.second_order.first_order


def solve_third_order(
    derivatives: DerivativeTensors,
    second_order: SecondOrderSolution,
) -> ThirdOrderSolution:
    """Compute the third-order policy tensor ``g3``.

    The shock covariance is the one the second-order solution was computed
    with.

    Raises
    ------
    SingularSolutionError
        If the correction system is singular.
    """
    if derivatives.third is None:
        raise ValueError("third-order solution requires derivatives of order 3")
    t = derivatives.timings
    m = t.n_augmented
    n = t.n_variables
    n_future = t.n_future
    n_stacked = t.n_stacked
    first_order = second_order.first_order
    f1 = derivatives.jacobian
    f2 = derivatives.hessian
    f3 = derivatives.third
    f_plus = derivatives.jacobian_blocks()[0]
    g1 = first_order.g1
    g2 = second_order.g2

    h2 = np.zeros((m, m, m))
    h2[: t.n_past] = g2[t.past_idx]

    D = np.zeros((n, m, m, m))
    C = np.zeros((m**3, m**3))
    for weight, eta in cubature_nodes(second_order.shock_covariance, t.n_shocks):
        h1 = transition_jacobian(g1, t, eta)
        gh1 = g1 @ h1
        gh2 = mdot(g2, h1, h1) + sdot(g1, h2)
        gh3 = sym3_cross(g2, h1, h2)

        v1 = stacked_jacobian(g1, gh1, t)
        v2 = np.zeros((n_stacked, m, m))
        v2[:n_future] = gh2[t.future_idx]
        v2[n_future : n_future + n] = g2
        v3 = np.zeros((n_stacked, m, m, m))
        v3[:n_future] = gh3[t.future_idx]

        D += weight * (mdot(f3, v1, v1, v1) + sym3_cross(f2, v1, v2) + sdot(f1, v3))
        C += weight * kron_power(h1, 3)

    g3 = solve_policy_correction(first_order.contemporaneous, f_plus, t.future_idx, C, D, order=3)
    g3 = symmetrize(g3)
    logger.debug("Third-order solution: g3 of shape %s", g3.shape)
    return ThirdOrderSolution(second_order=second_order, g3=g3)
