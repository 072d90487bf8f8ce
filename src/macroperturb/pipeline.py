"""Model-to-solution entry point.

:func:`solve` chains the stages

``Model -> steady state -> derivatives -> first order -> higher orders``

and only recomputes what depends on what changed: symbolic work (block
structure, compiled steady-state functions, derivative expressions) is
attached to the model and built once; with a :class:`SteadyStateCache` the
steady state is only re-solved when a parameter it depends on changes; the
perturbation step always runs.
"""

from __future__ import annotations

from dataclasses import replace
import logging
from typing import Mapping

import numpy as np

from .derivatives import compute_derivatives
from .linear_time_iteration import solve_linear_time_iteration
from .model import Model
from .policy import ALGORITHM_ORDERS, PerturbationSolution
from .solver import solve_first_order
from .solver_second_order import normalize_covariance, solve_second_order
from .solver_third_order import solve_third_order
from .steady_state import SteadyStateCache, SteadyStateOptions, solve_steady_state

logger = logging.getLogger(__name__)

Array = np.ndarray

ALGORITHMS = tuple(ALGORITHM_ORDERS)


def solve(
    model: Model,
    algorithm: str = "first_order",
    parameters: Mapping[str, float] | None = None,
    *,
    cache: SteadyStateCache | None = None,
    symbolic: bool = False,
    steady_state_options: SteadyStateOptions | None = None,
    initial_guess: Mapping[str, float] | None = None,
    shock_covariance: Array | None = None,
    eig_cutoff: float = 1.0,
    unit_root_tol: float = 1e-9,
    singular_tol: float = 1e-12,
    lti_tol: float = 1e-12,
    lti_max_iter: int = 10_000,
) -> PerturbationSolution:
    """Solve *model* with *algorithm*.

    Parameters
    ----------
    model : Model
        Canonical model from :func:`~macroperturb.parser.parse_model`.
    algorithm : str
        One of ``"first_order"``, ``"second_order"``, ``"third_order"`` and
        ``"linear_time_iteration"``.
    parameters : Mapping[str, float] or None
        Overrides of free parameter values.
    cache : SteadyStateCache or None
        Caller-owned steady-state cache.
    symbolic : bool
        Try closed-form steady-state solutions for single-unknown blocks
        and small polynomial blocks.
    steady_state_options : SteadyStateOptions or None
        Steady-state tolerances and restarts.
    initial_guess : Mapping[str, float] or None
        Steady-state starting values.
    shock_covariance : Array or None
        Shock covariance for orders 2 and 3 (identity when ``None``).
    eig_cutoff, unit_root_tol, singular_tol : float
        First-order QZ settings, see :func:`~macroperturb.solver.solve_first_order`.
    lti_tol : float
        Convergence tolerance of linear time iteration.
    lti_max_iter : int
        Iteration cap of linear time iteration.

    Returns
    -------
    PerturbationSolution
        A new immutable solution.

    Raises
    ------
    ValueError
        For an unknown algorithm or parameter name.
    SteadyStateError, DifferentiationError, BlanchardKahnError,
    SingularSolutionError, ConvergenceError
        From the respective stage.
    """
    if algorithm not in ALGORITHM_ORDERS:
        raise ValueError(
            f"Unknown algorithm '{algorithm}'; expected one of {', '.join(ALGORITHMS)}"
        )
    order = ALGORITHM_ORDERS[algorithm]
    options = steady_state_options or SteadyStateOptions()
    if symbolic and not options.symbolic:
        options = replace(options, symbolic=True)
    covariance = normalize_covariance(shock_covariance, model.n_shocks)

    steady_state = solve_steady_state(
        model, parameters, options=options, initial_guess=initial_guess, cache=cache
    )
    derivatives = compute_derivatives(model, steady_state, order)
    logger.debug("Derivatives of order %d evaluated for '%s'", order, model.name)

    if algorithm == "linear_time_iteration":
        first = solve_linear_time_iteration(derivatives, tol=lti_tol, max_iter=lti_max_iter)
    else:
        first = solve_first_order(
            derivatives,
            eig_cutoff=eig_cutoff,
            unit_root_tol=unit_root_tol,
            singular_tol=singular_tol,
        )

    g2 = g3 = None
    if order >= 2:
        second = solve_second_order(derivatives, first, shock_covariance=covariance)
        g2 = second.g2
        if order >= 3:
            g3 = solve_third_order(derivatives, second).g3

    logger.info("Solved '%s' with %s", model.name, algorithm)
    return PerturbationSolution(
        algorithm=algorithm,
        timings=model.timings,
        steady_state=steady_state.values,
        parameters=steady_state.all_parameters(),
        first_order=np.hstack([first.policy, first.shock_impact]),
        g2=g2,
        g3=g3,
        shock_covariance=covariance,
        eigenvalues=first.eigenvalues,
        model_name=model.name,
    )
