"""Ergodic (unconditional) moments from perturbation solutions.

Computes theoretical unconditional mean, covariance, standard deviation and
autocorrelations from the state-space view ``(T, R)`` of a solution.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.linalg import solve_discrete_lyapunov

from .policy import PerturbationSolution
from .solver_second_order import normalize_covariance

Array = np.ndarray


@dataclass(frozen=True)
class MomentsResult:
    """Unconditional (ergodic) moments of a perturbation solution.

    The mean is in levels; covariances, standard deviations and
    autocorrelations refer to deviations from the steady state.

    Attributes
    ----------
    variables : tuple of str
        Variable ordering of every array.
    mean : ndarray, shape (n,)
        Unconditional mean.  At first order this is the steady state; at
        second order and above it includes the risk adjustment.
    covariance : ndarray, shape (n, n)
        Unconditional covariance from the discrete Lyapunov equation.
    std : ndarray, shape (n,)
        Square root of the diagonal of ``covariance``.
    autocorrelations : ndarray or None, shape (max_lag, n)
        Autocorrelation at lags 1, ..., ``max_lag``.  ``None`` if
        ``max_lag == 0``.
    """

    variables: tuple[str, ...]
    mean: Array
    covariance: Array
    std: Array
    autocorrelations: Array | None

    def as_dict(self) -> dict[str, dict[str, float]]:
        return {
            name: {"mean": float(self.mean[i]), "std": float(self.std[i])}
            for i, name in enumerate(self.variables)
        }


def compute_unconditional_moments(
    solution: PerturbationSolution,
    *,
    shock_covariance: Array | None = None,
    max_lag: int = 5,
) -> MomentsResult:
    r"""Compute theoretical unconditional moments from a perturbation solution.

    With the first-order law of motion ``y_t = T y_{t-1} + R e_t``:

    **Covariance.**  ``Sigma`` solves the discrete Lyapunov equation::

        Sigma = T Sigma T^T + R Sigma_e R^T

    **Mean.**  At first order the mean equals the deterministic steady
    state.  At second order and above the mean deviation of the pruned
    system solves ``mu = T mu + c / 2`` with::

        c = g_xx : Sigma_xx + g_uu : Sigma_e + g_ss

    where ``Sigma_xx`` is the covariance of the predetermined variables.
    Third-order terms do not move the mean for symmetric shocks.

    **Autocorrelation.**  ``Cov(y_t, y_{t-k}) = T^k Sigma``.

    Parameters
    ----------
    solution : PerturbationSolution
        Solution of any order.
    shock_covariance : ndarray, shape (n_e, n_e), optional
        Shock covariance.  Defaults to the one the solution was computed
        with.  A different covariance is only accepted for first-order
        solutions; at higher order pass it to :func:`~macroperturb.solve`.
    max_lag : int, optional
        Maximum lag for autocorrelations (default 5).  Set to 0 to skip.

    Returns
    -------
    MomentsResult

    Raises
    ------
    ValueError
        If *max_lag* is negative, the covariance is malformed, or it differs
        from the solution's covariance at second order and above.

    References
    ----------
    Hamilton (1994), *Time Series Analysis*, Ch. 10.
    Andreasen, Fernandez-Villaverde and Rubio-Ramirez (2018), "The
    Pruned State-Space System for Non-Linear DSGE Models", Review of
    Economic Studies 85(1), 1-49.
    """
    if max_lag < 0:
        raise ValueError("max_lag must be non-negative")
    n = solution.n_variables
    if shock_covariance is None:
        Sigma_e = np.asarray(solution.shock_covariance, dtype=float)
    else:
        Sigma_e = normalize_covariance(shock_covariance, solution.n_shocks)
        if solution.order >= 2 and not np.allclose(Sigma_e, solution.shock_covariance):
            raise ValueError(
                "shock_covariance override requires a first-order solution; pass "
                "the covariance to solve() for higher orders"
            )

    T, R, steady_state = solution.state_space()
    Sigma = solve_discrete_lyapunov(T, R @ Sigma_e @ R.T)
    Sigma = 0.5 * (Sigma + Sigma.T)

    mean = steady_state.copy()
    if solution.order >= 2:
        past = solution.timings.past_idx
        Sigma_xx = Sigma[np.ix_(past, past)]
        c = (
            np.einsum("ijk,jk->i", solution.ghxx, Sigma_xx)
            + np.einsum("ijk,jk->i", solution.ghuu, Sigma_e)
            + solution.ghs2
        )
        mean = mean + np.linalg.solve(np.eye(n) - T, 0.5 * c)

    variances = np.clip(np.diag(Sigma), 0.0, None)
    std = np.sqrt(variances)

    autocorrelations = None
    if max_lag > 0:
        autocorr = np.zeros((max_lag, n), dtype=float)
        positive = variances > 1e-16
        T_power = np.eye(n, dtype=float)
        for k in range(1, max_lag + 1):
            T_power = T_power @ T
            cov_lag = np.diag(T_power @ Sigma)
            autocorr[k - 1, positive] = cov_lag[positive] / variances[positive]
        autocorrelations = autocorr

    return MomentsResult(
        variables=solution.variables,
        mean=mean,
        covariance=Sigma,
        std=std,
        autocorrelations=autocorrelations,
    )
