"""End-to-end tests of ``solve``: model text in, perturbation solution out.

Checks determinism, agreement of lower-order coefficients across orders,
steady-state cache reuse, invariance of the solution to auxiliary lead/lag
variables and a concrete RBC scenario.
"""

import logging

import numpy as np
import pytest
from numpy.testing import assert_allclose

from macroperturb import ALGORITHMS, SteadyStateCache, SteadyStateOptions, solve
from helpers import (
    RBC_CME_CALIBRATED_GUESS,
    RBC_CME_CALIBRATED_STEADY_STATE,
    make_calibrated_rbc_cme,
    make_rbc_cme,
    make_rbc_model,
    rbc_steady_state,
)


def test_algorithms_are_listed():
    assert ALGORITHMS == ("first_order", "second_order", "third_order", "linear_time_iteration")


def test_solving_twice_gives_identical_results():
    model = make_rbc_model()
    first = solve(model, "second_order")
    second = solve(model, "second_order")
    assert np.array_equal(first.first_order, second.first_order)
    assert np.array_equal(first.g2, second.g2)
    assert np.array_equal(first.steady_state, second.steady_state)


def test_lower_order_coefficients_agree_across_orders():
    model = make_rbc_cme()
    solutions = [solve(model, algorithm) for algorithm in ("first_order", "second_order", "third_order")]
    for sol in solutions[1:]:
        assert_allclose(sol.first_order, solutions[0].first_order, atol=1e-10)
        assert_allclose(sol.steady_state, solutions[0].steady_state)
    assert_allclose(solutions[2].g2, solutions[1].g2, atol=1e-10)
    assert [sol.order for sol in solutions] == [1, 2, 3]


def test_unknown_algorithm_is_rejected():
    with pytest.raises(ValueError, match="Unknown algorithm"):
        solve(make_rbc_model(), "fourth_order")


def test_unknown_parameter_override_is_rejected():
    with pytest.raises(ValueError, match="Unknown parameter"):
        solve(make_rbc_model(), "first_order", {"gamma": 2.0})


def test_cache_serves_repeated_steady_states():
    model = make_rbc_model()
    cache = SteadyStateCache()
    base = solve(model, "first_order", cache=cache)
    volatile = solve(model, "first_order", {"sigma": 0.02}, cache=cache)
    assert cache.hits == 1
    assert_allclose(volatile.steady_state, base.steady_state)
    # only the shock column scales with sigma
    assert_allclose(volatile.ghx, base.ghx)
    assert_allclose(volatile.ghu, base.ghu * 0.02 / 0.0068, rtol=1e-10)


def test_calibrated_model_reports_calibrated_parameters():
    sol = solve(
        make_calibrated_rbc_cme(),
        "first_order",
        symbolic=True,
        steady_state_options=SteadyStateOptions(tol=1e-9),
        initial_guess=RBC_CME_CALIBRATED_GUESS,
    )
    assert_allclose(sol.steady_state, RBC_CME_CALIBRATED_STEADY_STATE, rtol=1e-8)
    assert_allclose(sol.parameters["alpha"], 0.15662344139650963, rtol=1e-8)
    assert sol.parameters["phi_pi"] == 1.5


def test_auxiliary_variables_do_not_change_original_policy():
    """Extra equations with long lags add auxiliary states but leave the rest alone."""
    base_model = make_rbc_cme()
    extended_model = make_rbc_cme(
        extra_equations=(
            "ZZ_avg[0] = (A[0] + A[-1] + A[-2] + A[-3]) / 4",
            "ZZ_dev[0] = log(c[0] / c[ss])",
        )
    )
    assert {"A__lag1", "A__lag2", "ZZ_avg", "ZZ_dev"} <= set(extended_model.variable_names)

    base = solve(base_model, "second_order")
    extended = solve(extended_model, "second_order")

    rows = [extended.variable_index(name) for name in base.variables]
    assert_allclose(extended.steady_state[rows], base.steady_state)

    base_states = base.timings.augmented_labels()
    ext_states = extended.timings.augmented_labels()
    cols = [ext_states.index(label) for label in base_states]
    assert_allclose(extended.g1[np.ix_(rows, cols)], base.g1, atol=1e-10)
    assert_allclose(
        extended.g2[np.ix_(rows, cols, cols)], base.g2, rtol=1e-8, atol=1e-10
    )
    # unused auxiliary states carry no weight in the original equations
    extra = [i for i in range(len(ext_states)) if i not in cols]
    assert_allclose(extended.g1[np.ix_(rows, extra)], 0.0, atol=1e-10)


def test_deviation_from_steady_state_equation():
    """``log(c / c_ss)`` responds like consumption in percent."""
    model = make_rbc_cme(extra_equations=("ZZ_dev[0] = log(c[0] / c[ss])",))
    sol = solve(model, "first_order")
    c = sol.variable_index("c")
    dev = sol.variable_index("ZZ_dev")
    assert_allclose(sol.steady_state[dev], 0.0, atol=1e-12)
    assert_allclose(sol.first_order[dev], sol.first_order[c] / sol.steady_state[c], rtol=1e-8)


def test_lagged_shocks_are_absorbed_into_auxiliary_states():
    """A technology shock that takes effect one period later moves nothing on impact."""
    news = solve(make_rbc_cme(shock_timing="x-1"), "first_order")
    eps = news.shock_index("eps_z")
    A = news.variable_index("A")
    assert news.ghu[A, eps] == pytest.approx(0.0, abs=1e-12)
    aux = news.variable_index("eps_z__x")
    assert news.ghu[aux, eps] == pytest.approx(1.0)


def test_rbc_scenario():
    """Closed-form steady state and a positive, damped capital response."""
    model = make_rbc_model()
    sol = solve(model, "first_order")
    expected = rbc_steady_state(alpha=0.36, beta=0.99, delta=0.025)
    assert_allclose(sol.steady_state, [expected[name] for name in sol.variables], rtol=1e-9)
    k = sol.variable_index("k")
    y = sol.variable_index("y")
    assert 0.0 < sol.ghu[k, 0] < sol.ghu[y, 0]
    assert np.all(sol.eigenvalues[: sol.n_states] < 1.0)


def test_solve_logs_completion(caplog):
    with caplog.at_level(logging.INFO, logger="macroperturb"):
        solve(make_rbc_model(), "first_order")
    assert "Solved 'rbc' with first_order" in caplog.text
