"""Second-order perturbation solver.

The policy is expanded in the augmented state

.. math::

    z_t = [\\, y^{-}_{t-1};\\; \\sigma;\\; \\varepsilon_t \\,]

so that the order-two term is a single tensor ``g2`` of shape
``(n, m, m)`` with ``m = n_past + 1 + n_shocks``.  Next period's augmented
state is :math:`z_{t+1} = h(z_t, \\eta)` with
:math:`\\varepsilon_{t+1} = \\sigma \\eta`, and the model is

.. math::

    E_t\\, f\\bigl(g(h(z_t, \\eta)),\\, g(z_t),\\, y^{-}_{t-1},\\, \\varepsilon_t\\bigr) = 0.

Differentiating twice and collecting the unknown ``g2`` gives

.. math::

    M\\, g_2 + f_{+}\\, g_2^{+}\\, C_2 + D_2 = 0,
    \\qquad C_2 = E[h_1 \\otimes h_1],
    \\qquad D_2 = E[f_2[v_1, v_1]]

where :math:`v_1` is the derivative of the stacked vector with respect to
:math:`z_t`.  The expectation over :math:`\\eta` is taken with a symmetric
degree-3 cubature rule, which is exact for the polynomial integrands of
orders two and three.  The ``sigma, sigma`` entry of ``g2`` is the risk
correction.

References
----------
Schmitt-Grohe, S. and Uribe, M. (2004). "Solving dynamic general
    equilibrium models using a second-order approximation to the policy
    function." *Journal of Economic Dynamics and Control*, 28(4),
    755-775.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging

import numpy as np
from scipy.linalg import LinAlgError, cholesky, eigh

from .derivatives import DerivativeTensors
from .solver import FirstOrderSolution
from .tensor_ops import mdot, solve_policy_correction, symmetrize
from .timing import Timings

logger = logging.getLogger(__name__)

Array = np.ndarray


@dataclass(frozen=True)
class SecondOrderSolution:
    """Result of the second-order perturbation solution.

    Attributes
    ----------
    first_order : FirstOrderSolution
        The underlying first-order solution.
    g2 : Array, shape (n, m, m)
        Second derivatives of the policy over the augmented state.
    shock_covariance : Array, shape (n_shocks, n_shocks)
        Covariance the expectations were taken with.
    """

    first_order: FirstOrderSolution
    g2: Array
    shock_covariance: Array

    @property
    def risk_correction(self) -> Array:
        """``0.5 * g_sigma_sigma``: constant shift of the policy due to risk."""
        s = self.first_order.timings.n_past
        return 0.5 * self.g2[:, s, s]


def cubature_nodes(shock_covariance: Array | None, n_shocks: int) -> list[tuple[float, Array]]:
    """Symmetric ``2 n`` point rule exact for polynomials of degree three.

    Nodes are ``+-sqrt(n) S[:, j]`` with ``S S^T = shock_covariance`` and
    weights ``1 / (2 n)``.  Without shocks the rule is the single node 0.
    """
    if n_shocks == 0:
        return [(1.0, np.zeros(0))]
    sigma = normalize_covariance(shock_covariance, n_shocks)
    try:
        S = cholesky(sigma, lower=True)
    except LinAlgError:
        w, V = eigh(sigma)
        S = V * np.sqrt(np.clip(w, 0.0, None))
    scale = np.sqrt(n_shocks)
    weight = 1.0 / (2 * n_shocks)
    nodes = []
    for j in range(n_shocks):
        nodes.append((weight, scale * S[:, j]))
        nodes.append((weight, -scale * S[:, j]))
    return nodes


def normalize_covariance(shock_covariance: Array | None, n_shocks: int) -> Array:
    """Validate a shock covariance; ``None`` means the identity."""
    if shock_covariance is None:
        return np.eye(n_shocks)
    sigma = np.asarray(shock_covariance, dtype=float)
    if sigma.shape != (n_shocks, n_shocks):
        raise ValueError(
            f"shock_covariance must have shape ({n_shocks}, {n_shocks}), got {sigma.shape}"
        )
    if not np.allclose(sigma, sigma.T):
        raise ValueError("shock_covariance must be symmetric")
    if n_shocks and np.min(np.linalg.eigvalsh(sigma)) < -1e-12:
        raise ValueError("shock_covariance must be positive semidefinite")
    return sigma


def transition_jacobian(g1: Array, timings: Timings, eta: Array) -> Array:
    """``h1``: derivative of ``z_{t+1}`` with respect to ``z_t`` at shock node *eta*."""
    n_past = timings.n_past
    m = timings.n_augmented
    h1 = np.zeros((m, m))
    h1[:n_past] = g1[timings.past_idx]
    h1[n_past, n_past] = 1.0
    h1[n_past + 1 :, n_past] = eta
    return h1


def stacked_jacobian(g1: Array, gh1: Array, timings: Timings) -> Array:
    """``v1``: derivative of the stacked vector ``v`` with respect to ``z_t``."""
    n_past = timings.n_past
    n_shocks = timings.n_shocks
    m = timings.n_augmented
    E_past = np.zeros((n_past, m))
    E_past[:, :n_past] = np.eye(n_past)
    E_shock = np.zeros((n_shocks, m))
    E_shock[:, n_past + 1 :] = np.eye(n_shocks)
    return np.vstack([gh1[timings.future_idx], g1, E_past, E_shock])


def solve_second_order(
    derivatives: DerivativeTensors,
    first_order: FirstOrderSolution,
    *,
    shock_covariance: Array | None = None,
) -> SecondOrderSolution:
    """Compute the second-order policy tensor ``g2``.

    Parameters
    ----------
    derivatives : DerivativeTensors
        Derivatives of order two or more at the steady state.
    first_order : FirstOrderSolution
        The first-order solution of the same model.
    shock_covariance : Array or None
        Covariance of the shocks (identity when ``None``).

    Returns
    -------
    SecondOrderSolution
        The second-order solution.

    Raises
    ------
    SingularSolutionError
        If the correction system is singular.
    """
    if derivatives.hessian is None:
        raise ValueError("second-order solution requires derivatives of order >= 2")
    t = derivatives.timings
    m = t.n_augmented
    n = t.n_variables
    sigma = normalize_covariance(shock_covariance, t.n_shocks)
    f_plus = derivatives.jacobian_blocks()[0]
    f2 = derivatives.hessian
    g1 = first_order.g1

    D = np.zeros((n, m, m))
    C = np.zeros((m * m, m * m))
    for weight, eta in cubature_nodes(sigma, t.n_shocks):
        h1 = transition_jacobian(g1, t, eta)
        v1 = stacked_jacobian(g1, g1 @ h1, t)
        D += weight * mdot(f2, v1, v1)
        C += weight * np.kron(h1, h1)

    g2 = solve_policy_correction(first_order.contemporaneous, f_plus, t.future_idx, C, D, order=2)
    g2 = symmetrize(g2)
    logger.debug("Second-order solution: g2 of shape %s", g2.shape)
    return SecondOrderSolution(first_order=first_order, g2=g2, shock_covariance=sigma)
