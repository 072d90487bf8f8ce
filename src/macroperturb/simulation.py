"""Simulation and impulse-response tools for perturbation solutions.

Every path is produced by iterating
:meth:`~macroperturb.policy.PerturbationSolution.state_update`, so the
higher-order terms of second- and third-order solutions enter the
simulation directly.  Paths are stored as deviations from the
non-stochastic steady state; :attr:`SimulationResult.levels` adds it back.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .policy import PerturbationSolution

Array = np.ndarray


@dataclass(frozen=True)
class SimulationResult:
    """Result of a forward simulation.

    Attributes
    ----------
    variables : tuple of str
        Column labels of the paths.
    deviations : ndarray, shape (horizon + 1, n)
        Deviations from the steady state.  Row 0 holds the initial
        condition, row ``t + 1`` the variables after shock ``t``.
    shocks : ndarray, shape (horizon, n_e)
        Shock sequence used in the simulation.
    steady_state : ndarray, shape (n,)
        Steady state the deviations refer to.
    """

    variables: tuple[str, ...]
    deviations: Array
    shocks: Array
    steady_state: Array

    @property
    def levels(self) -> Array:
        return self.deviations + self.steady_state

    @property
    def horizon(self) -> int:
        return self.shocks.shape[0]

    def path(self, name: str, *, levels: bool = False) -> Array:
        """Path of a single variable."""
        try:
            j = self.variables.index(name)
        except ValueError:
            raise ValueError(f"Unknown variable '{name}'") from None
        return (self.levels if levels else self.deviations)[:, j]


def simulate(
    solution: PerturbationSolution,
    shocks: Array,
    initial_state: Array | None = None,
    *,
    include_higher_order: bool = True,
) -> SimulationResult:
    """Forward-simulate a perturbation solution.

    Parameters
    ----------
    solution : PerturbationSolution
        Solution of any order.
    shocks : ndarray, shape (T, n_e)
        Exogenous shock realisations for each period.
    initial_state : ndarray, shape (n,), optional
        Initial deviations from the steady state.  Defaults to zero.
    include_higher_order : bool, optional
        Whether the second- and third-order terms are used (default
        ``True``).

    Returns
    -------
    SimulationResult
        Paths of shape ``(T + 1, n)``.

    Raises
    ------
    ValueError
        If array dimensions are inconsistent.
    """
    shocks = np.asarray(shocks, dtype=float)
    if shocks.ndim != 2:
        raise ValueError("shocks must have shape (T, n_shocks)")
    n = solution.n_variables
    n_e = solution.n_shocks
    if shocks.shape[1] != n_e:
        raise ValueError(f"Expected shock size {n_e}, got {shocks.shape[1]}")

    if initial_state is None:
        y0 = np.zeros(n, dtype=float)
    else:
        y0 = np.asarray(initial_state, dtype=float).reshape(-1)
        if y0.size != n:
            raise ValueError(f"Expected initial_state size {n}, got {y0.size}")

    horizon = shocks.shape[0]
    paths = np.zeros((horizon + 1, n), dtype=float)
    paths[0] = y0
    for t in range(horizon):
        paths[t + 1] = solution.state_update(
            paths[t], shocks[t], include_higher_order=include_higher_order
        )

    return SimulationResult(
        variables=solution.variables,
        deviations=paths,
        shocks=shocks,
        steady_state=np.array(solution.steady_state),
    )


def draw_shocks(
    solution: PerturbationSolution,
    periods: int,
    *,
    seed: int | None = None,
    shock_covariance: Array | None = None,
) -> Array:
    """Draw ``(periods, n_e)`` Gaussian shocks with the solution's covariance."""
    if periods <= 0:
        raise ValueError("periods must be positive")
    cov = solution.shock_covariance if shock_covariance is None else shock_covariance
    cov = np.asarray(cov, dtype=float)
    rng = np.random.default_rng(seed)
    return rng.multivariate_normal(np.zeros(solution.n_shocks), cov, size=periods)


def _impulse(solution: PerturbationSolution, horizon: int, shock_index: int, shock_size: float) -> Array:
    if horizon <= 0:
        raise ValueError("horizon must be positive")
    if shock_index < 0 or shock_index >= solution.n_shocks:
        raise ValueError("shock_index out of bounds")
    shocks = np.zeros((horizon, solution.n_shocks), dtype=float)
    shocks[0, shock_index] = shock_size
    return shocks


def impulse_response(
    solution: PerturbationSolution,
    *,
    horizon: int,
    shock_index: int,
    shock_size: float = 1.0,
    include_higher_order: bool = True,
) -> SimulationResult:
    """Compute an impulse response from the steady state.

    A shock of *shock_size* hits the shock at *shock_index* in the first
    period; all other shocks are zero.  The result is the simulated path,
    so at order two and above it includes the drift towards the stochastic
    steady state; use :func:`generalized_irf` to net that out.

    Raises
    ------
    ValueError
        If *horizon* is non-positive or *shock_index* is out of bounds.
    """
    shocks = _impulse(solution, horizon, shock_index, shock_size)
    return simulate(solution, shocks, include_higher_order=include_higher_order)


@dataclass(frozen=True)
class GIRFResult:
    """Generalized impulse response function result.

    Attributes
    ----------
    response : ndarray, shape (horizon + 1, n)
        Shocked path minus baseline path.
    baseline : SimulationResult
        Path without shocks.
    shocked : SimulationResult
        Path with the impulse in the first period.
    """

    response: Array
    baseline: SimulationResult
    shocked: SimulationResult

    @property
    def variables(self) -> tuple[str, ...]:
        return self.baseline.variables


def generalized_irf(
    solution: PerturbationSolution,
    *,
    horizon: int,
    shock_index: int,
    shock_size: float = 1.0,
    initial_state: Array | None = None,
) -> GIRFResult:
    """Compute the Generalised Impulse Response Function (GIRF).

    Two simulations from *initial_state* are compared: a baseline with all
    shocks zero and a shocked path with ``e_0 = shock_size`` at
    *shock_index*.  At first order the baseline stays at the initial
    state's decay and the GIRF equals the linear IRF; at higher orders the
    response depends on the sign and size of the shock.

    References
    ----------
    Koop, Pesaran, and Potter (1996), Journal of Econometrics 74(1),
    119-147.
    """
    shocks = _impulse(solution, horizon, shock_index, shock_size)
    baseline = simulate(solution, np.zeros_like(shocks), initial_state)
    shocked = simulate(solution, shocks, initial_state)
    return GIRFResult(
        response=shocked.deviations - baseline.deviations,
        baseline=baseline,
        shocked=shocked,
    )


__all__ = [
    "SimulationResult",
    "GIRFResult",
    "simulate",
    "draw_shocks",
    "impulse_response",
    "generalized_irf",
]
