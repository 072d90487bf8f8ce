"""First-order solution by linear time iteration.

Solves the quadratic matrix equation

.. math::

    A F^2 + B F + C = 0

over all variables, with ``A`` the forward-looking and ``C`` the
predetermined columns of the Jacobian expanded to ``(n, n)`` and
``B = f_0``, by iterating :math:`F_{k+1} = -(A F_k + B)^{-1} C` from zero.
The dual iteration :math:`S_{k+1} = -(C S_k + B)^{-1} A` converges to the
solution of the time-reversed problem; the fixed point is the unique
stable solution when both spectral radii are below one.

The algorithm needs no eigenvalue ordering and is used to cross-check the
QZ-based solver.

References
----------
Rendahl, P. (2017). "Linear Time Iteration." IHS Economics Series
    Working Paper 330.
"""

from __future__ import annotations

import logging

import numpy as np

from .derivatives import DerivativeTensors
from .exceptions import ConvergenceError
from .solver import FirstOrderSolution

logger = logging.getLogger(__name__)

Array = np.ndarray


def _spectral_radius(F: Array) -> float:
    if F.size == 0:
        return 0.0
    return float(np.max(np.abs(np.linalg.eigvals(F))))


def solve_linear_time_iteration(
    derivatives: DerivativeTensors,
    *,
    tol: float = 1e-12,
    max_iter: int = 10_000,
) -> FirstOrderSolution:
    """Compute the first-order solution by linear time iteration.

    Parameters
    ----------
    derivatives : DerivativeTensors
        Jacobian of the model at the steady state.
    tol : float
        Convergence threshold on ``max |F_{k+1} - F_k|`` (and on the dual).
    max_iter : int
        Iteration cap.

    Returns
    -------
    FirstOrderSolution
        Same layout as :func:`~macroperturb.solver.solve_first_order`, with
        ``method="linear_time_iteration"``.

    Raises
    ------
    ConvergenceError
        With reason ``"max_iter"`` when the cap is reached,
        ``"singular_update"`` when ``A F + B`` cannot be inverted,
        ``"unstable_fixed_point"`` when the fixed point is not stable and
        ``"not_unique"`` when the dual fixed point is not stable.
    """
    if tol <= 0:
        raise ValueError("tol must be positive")
    if max_iter < 1:
        raise ValueError("max_iter must be at least 1")

    t = derivatives.timings
    f_plus, f_zero, f_minus, f_shock = derivatives.jacobian_blocks()
    n = t.n_variables
    A = np.zeros((n, n))
    A[:, t.future_idx] = f_plus
    B = np.asarray(f_zero, dtype=float)
    C = np.zeros((n, n))
    C[:, t.past_idx] = f_minus

    F = np.zeros((n, n))
    S = np.zeros((n, n))
    change = np.inf
    iterations = 0
    for iterations in range(1, max_iter + 1):
        try:
            F_next = -np.linalg.solve(A @ F + B, C)
            S_next = -np.linalg.solve(C @ S + B, A)
        except np.linalg.LinAlgError as exc:
            raise ConvergenceError(iterations, np.inf, reason="singular_update") from exc
        if not (np.all(np.isfinite(F_next)) and np.all(np.isfinite(S_next))):
            raise ConvergenceError(iterations, np.inf, reason="singular_update")
        change = max(
            float(np.max(np.abs(F_next - F), initial=0.0)),
            float(np.max(np.abs(S_next - S), initial=0.0)),
        )
        F, S = F_next, S_next
        if iterations % 1000 == 0:
            logger.debug("Linear time iteration %d: max change %.3e", iterations, change)
        if change < tol:
            break
    else:
        raise ConvergenceError(iterations, change, reason="max_iter")

    radius = _spectral_radius(F)
    if radius >= 1.0:
        raise ConvergenceError(iterations, change, reason="unstable_fixed_point")
    if _spectral_radius(S) >= 1.0:
        raise ConvergenceError(iterations, change, reason="not_unique")

    M = A @ F + B
    shock_impact = -np.linalg.solve(M, f_shock)
    logger.debug("Linear time iteration converged after %d iterations", iterations)
    return FirstOrderSolution(
        timings=t,
        policy=F[:, t.past_idx],
        shock_impact=shock_impact,
        forward_policy=F[np.ix_(t.future_idx, t.past_idx)],
        contemporaneous=M,
        eigenvalues=np.sort(np.abs(np.linalg.eigvals(F))) if n else np.zeros(0),
        method="linear_time_iteration",
        iterations=iterations,
    )
