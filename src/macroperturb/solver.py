"""First-order perturbation solver using the generalized Schur (QZ) decomposition.

The linearised model reads

.. math::

    f_{+}\\, y^{+}_{t+1} + f_{0}\\, y_t + f_{-}\\, y^{-}_{t-1} + f_{e}\\, \\varepsilon_t = 0

with :math:`y^{+}` the forward-looking and :math:`y^{-}` the predetermined
variables.  The solution is the linear law of motion

.. math::

    y_t = X\\, y^{-}_{t-1} + B\\, \\varepsilon_t

(deviations from the steady state).

Algorithm outline
-----------------
1. Eliminate static variables with a QR decomposition of their ``f_0``
   columns; the remaining rows only involve dynamic variables.
2. Write the dynamic rows as a pencil ``E w_{t+1} = D w_t`` over
   ``w_t = [y^-_{t-1}; y^+_t]``, adding identity rows linking the two copies
   of each mixed variable.
3. Apply ``scipy.linalg.ordqz`` with stable roots first; the number of
   explosive roots must equal the number of forward-looking variables.
4. The stable block of ``Z`` gives ``G = Z_{21} Z_{11}^{-1}`` with
   ``y^+_t = G y^-_{t-1}``.
5. ``M = f_0 + f_+ G P^-`` and ``X = -M^{-1} f_-``, ``B = -M^{-1} f_e``.

References
----------
Blanchard, O. J. and Kahn, C. M. (1980). "The Solution of Linear
    Difference Models under Rational Expectations." *Econometrica*,
    48(5), 1305-1311.
Klein, P. (2000). "Using the generalized Schur form to solve a
    multivariate linear rational expectations model." *JEDC*, 24(10),
    1405-1423.
Villemot, S. (2011). "Solving rational expectations models at first
    order: what Dynare does." *Dynare Working Papers*, 2.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

import numpy as np
from scipy.linalg import ordqz, qr

from .derivatives import DerivativeTensors
from .exceptions import BlanchardKahnError
from .qz import BKDiagnostics, classify_bk_failure, compute_generalized_eigenvalues, stable_first
from .timing import Timings

logger = logging.getLogger(__name__)

Array = np.ndarray


@dataclass(frozen=True)
class FirstOrderSolution:
    """Result of the first-order perturbation solution.

    Attributes
    ----------
    timings : Timings
        Timing map of the model.
    policy : Array, shape (n, n_past)
        ``X``: response of every variable to predetermined variables at
        ``t-1``.
    shock_impact : Array, shape (n, n_shocks)
        ``B``: response of every variable to current shocks.
    forward_policy : Array, shape (n_future, n_past)
        ``G``: forward-looking variables at ``t`` as a function of
        predetermined variables at ``t-1``.
    contemporaneous : Array, shape (n, n)
        ``M = f_0 + f_+ G P^-``, reused by the higher-order solvers.
    eigenvalues : Array
        Moduli of the generalised eigenvalues, sorted ascending.
    diagnostics : BKDiagnostics or None
        Blanchard-Kahn diagnostics (``None`` for purely static models and
        for linear time iteration).
    method : str
        ``"qz"`` or ``"linear_time_iteration"``.
    iterations : int
        Iterations used by linear time iteration.
    """

    timings: Timings
    policy: Array
    shock_impact: Array
    forward_policy: Array
    contemporaneous: Array
    eigenvalues: Array
    diagnostics: BKDiagnostics | None = None
    method: str = "qz"
    iterations: int = 0

    @property
    def unstable_eigenvalues(self) -> int:
        return 0 if self.diagnostics is None else self.diagnostics.unstable_count

    @property
    def transition(self) -> Array:
        """``(n, n)`` matrix with the columns of ``X`` at the predetermined positions."""
        n = self.timings.n_variables
        T = np.zeros((n, n))
        T[:, self.timings.past_idx] = self.policy
        return T

    @property
    def g1(self) -> Array:
        """First-order policy over the augmented state ``[y^-_{t-1}; sigma; e_t]``."""
        n = self.timings.n_variables
        return np.hstack([self.policy, np.zeros((n, 1)), self.shock_impact])

    @property
    def stable(self) -> bool:
        """Whether the predetermined block of the transition is asymptotically stable."""
        T = self.policy[self.timings.past_idx]
        if T.size == 0:
            return True
        return float(np.max(np.abs(np.linalg.eigvals(T)))) < 1.0


def _rank_failure(n_forward: int, message: str, diagnostics: BKDiagnostics | None = None) -> BlanchardKahnError:
    unstable = diagnostics.unstable_count if diagnostics is not None else 0
    return BlanchardKahnError(
        unstable,
        n_forward,
        reason="rank_failure",
        diagnostics=diagnostics,
        message=f"Blanchard-Kahn condition failed (rank_failure): {message}",
    )


def _pencil(
    timings: Timings, f_plus: Array, f_zero: Array, f_minus: Array, singular_tol: float
) -> tuple[Array, Array]:
    """Static elimination and the ``(D, E)`` pencil of the dynamic block."""
    t = timings
    n_static = t.n_static
    if n_static:
        Q, R = qr(f_zero[:, t.static_idx])
        diag = np.abs(np.diag(R))
        if diag.min() <= singular_tol * max(1.0, diag.max()):
            raise _rank_failure(t.n_future, "static variables cannot be eliminated")
        f_plus, f_zero, f_minus = Q.T @ f_plus, Q.T @ f_zero, Q.T @ f_minus

    A_plus = f_plus[n_static:]
    A_zero = f_zero[n_static:]
    A_minus = f_minus[n_static:]
    rows = A_zero.shape[0]

    n_past = t.n_past
    dim = n_past + t.n_future
    past_pos = {name: i for i, name in enumerate(t.past)}
    future_pos = {name: i for i, name in enumerate(t.future)}
    var_pos = {name: i for i, name in enumerate(t.variables)}

    E = np.zeros((dim, dim))
    D = np.zeros((dim, dim))
    for name in t.past_not_future:
        E[:rows, past_pos[name]] = A_zero[:, var_pos[name]]
    E[:rows, n_past:] = A_plus
    D[:rows, :n_past] = -A_minus
    D[:rows, n_past:] = -A_zero[:, t.future_idx]
    for r, name in enumerate(t.mixed):
        E[rows + r, past_pos[name]] = 1.0
        D[rows + r, n_past + future_pos[name]] = 1.0
    return D, E


def solve_first_order(
    derivatives: DerivativeTensors,
    *,
    eig_cutoff: float = 1.0,
    unit_root_tol: float = 1e-9,
    singular_tol: float = 1e-12,
) -> FirstOrderSolution:
    """Compute the first-order perturbation solution via QZ decomposition.

    Parameters
    ----------
    derivatives : DerivativeTensors
        Jacobian of the model at the steady state.
    eig_cutoff : float
        Modulus separating stable from explosive generalised eigenvalues.
    unit_root_tol : float
        Roots with ``|modulus - eig_cutoff| < unit_root_tol`` make the
        stable/explosive split ambiguous.
    singular_tol : float
        Threshold for infinite eigenvalues and for the conditioning of the
        stable block and of ``M``.

    Returns
    -------
    FirstOrderSolution
        Policy ``X``, shock impact ``B`` and diagnostics.

    Raises
    ------
    BlanchardKahnError
        With reason ``"ambiguous"`` for near-unit roots,
        ``"indeterminacy"``/``"no_stable_equilibrium"`` for a wrong count of
        explosive roots and ``"rank_failure"`` for singular blocks.
    """
    t = derivatives.timings
    f_plus, f_zero, f_minus, f_shock = derivatives.jacobian_blocks()
    n_past, n_future = t.n_past, t.n_future

    D, E = _pencil(t, f_plus, f_zero, f_minus, singular_tol)
    diagnostics = None
    eigenvalues = np.zeros(0)
    G = np.zeros((n_future, n_past))
    if D.size:
        sort: Any = stable_first(eig_cutoff, singular_tol)
        try:
            _, _, alpha, beta, _, Z = ordqz(D, E, sort=sort, output="real")
        except ValueError as exc:
            raise _rank_failure(n_future, f"QZ reordering failed ({exc})") from exc

        eigenvalues = compute_generalized_eigenvalues(alpha, beta, singular_tol)
        diagnostics = classify_bk_failure(
            eigenvalues, n_future, eig_cutoff=eig_cutoff, unit_root_tol=unit_root_tol
        )
        logger.debug(
            "QZ: %d explosive eigenvalues for %d forward-looking variables",
            diagnostics.unstable_count,
            n_future,
        )
        if np.any((np.abs(alpha) < singular_tol) & (np.abs(beta) < singular_tol)):
            raise _rank_failure(n_future, "singular pencil (0/0 eigenvalue)", diagnostics)
        if diagnostics.reason != "ok":
            raise BlanchardKahnError(
                diagnostics.unstable_count,
                n_future,
                reason=diagnostics.reason,
                diagnostics=diagnostics,
            )

        if n_past:
            z11 = Z[:n_past, :n_past]
            z21 = Z[n_past:, :n_past]
            cond = np.linalg.cond(z11)
            if not np.isfinite(cond) or cond > 1.0 / singular_tol:
                raise _rank_failure(n_future, "stable block of Z is singular", diagnostics)
            G = np.linalg.solve(z11.T, z21.T).T
        eigenvalues = diagnostics.eigenvalues

    M = f_zero.copy()
    M[:, t.past_idx] += f_plus @ G
    cond = np.linalg.cond(M)
    if not np.isfinite(cond) or cond > 1.0 / singular_tol:
        raise _rank_failure(n_future, "f_zero + f_plus G is singular", diagnostics)

    policy = -np.linalg.solve(M, f_minus)
    shock_impact = -np.linalg.solve(M, f_shock)

    return FirstOrderSolution(
        timings=t,
        policy=policy,
        shock_impact=shock_impact,
        forward_policy=G,
        contemporaneous=M,
        eigenvalues=eigenvalues,
        diagnostics=diagnostics,
    )
