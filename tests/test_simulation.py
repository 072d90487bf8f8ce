"""Tests for simulation, impulse responses and generalized impulse responses.

Paths are produced by iterating the solution's law of motion, so at first
order an impulse response of an AR(1) process is ``sigma rho^t``, and at
higher orders the GIRF nets out the drift of the no-shock baseline.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from macroperturb import (
    draw_shocks,
    generalized_irf,
    impulse_response,
    simulate,
    solve,
)
from helpers import make_ar1_model, make_brock_mirman, make_rbc_model


def test_ar1_impulse_response_is_geometric():
    rho, sigma = 0.8, 0.01
    sol = solve(make_ar1_model(rho, sigma), "first_order")
    irf = impulse_response(sol, horizon=10, shock_index=0)
    assert irf.deviations.shape == (11, 1)
    assert irf.horizon == 10
    expected = np.concatenate([[0.0], sigma * rho ** np.arange(10)])
    assert_allclose(irf.path("z"), expected, atol=1e-14)


def test_simulation_is_linear_at_first_order():
    sol = solve(make_rbc_model(), "first_order")
    shocks = draw_shocks(sol, 25, seed=3)
    one = simulate(sol, shocks)
    two = simulate(sol, 2.0 * shocks)
    assert_allclose(two.deviations, 2.0 * one.deviations, atol=1e-12)


def test_levels_add_the_steady_state():
    sol = solve(make_rbc_model(), "first_order")
    irf = impulse_response(sol, horizon=5, shock_index=0)
    assert_allclose(irf.levels, irf.deviations + sol.steady_state)
    k = sol.variable_index("k")
    assert_allclose(irf.path("k", levels=True), irf.levels[:, k])
    with pytest.raises(ValueError, match="Unknown variable"):
        irf.path("nope")


def test_first_order_only_simulation_matches_first_order_solution():
    model = make_rbc_model()
    second = solve(model, "second_order")
    first = solve(model, "first_order")
    shocks = draw_shocks(first, 20, seed=7)
    assert_allclose(
        simulate(second, shocks, include_higher_order=False).deviations,
        simulate(first, shocks).deviations,
        atol=1e-12,
    )


def test_second_order_simulation_drifts_without_shocks():
    """The risk correction moves the economy away from the deterministic steady state."""
    sol = solve(make_rbc_model(), "second_order")
    path = simulate(sol, np.zeros((30, 1)))
    assert np.abs(path.deviations[-1]).max() > 0.0
    assert_allclose(path.deviations[1], sol.risk_correction, atol=1e-15)


def test_girf_matches_irf_at_first_order():
    sol = solve(make_rbc_model(), "first_order")
    irf = impulse_response(sol, horizon=12, shock_index=0)
    girf = generalized_irf(sol, horizon=12, shock_index=0)
    assert_allclose(girf.response, irf.deviations, atol=1e-14)
    assert girf.variables == sol.variables
    assert not girf.baseline.deviations.any()


def test_girf_is_asymmetric_at_second_order():
    """Curvature makes positive and negative shocks of equal size differ."""
    sol = solve(make_brock_mirman(std_eps=0.1), "second_order")
    up = generalized_irf(sol, horizon=8, shock_index=0, shock_size=1.0)
    down = generalized_irf(sol, horizon=8, shock_index=0, shock_size=-1.0)
    assert not np.allclose(up.response, -down.response, atol=1e-8)
    assert_allclose(up.response[1], -down.response[1], rtol=0.2)


def test_girf_decays_for_stable_model():
    sol = solve(make_rbc_model(), "second_order")
    girf = generalized_irf(sol, horizon=400, shock_index=0, shock_size=1.0)
    impact = np.abs(girf.response[1]).max()
    assert np.abs(girf.response[-1]).max() < 0.01 * impact


def test_draw_shocks_is_reproducible_and_uses_covariance():
    sol = solve(make_ar1_model(), "first_order")
    a = draw_shocks(sol, 50, seed=11)
    b = draw_shocks(sol, 50, seed=11)
    assert a.shape == (50, 1)
    assert np.array_equal(a, b)
    scaled = draw_shocks(sol, 20000, seed=0, shock_covariance=np.array([[4.0]]))
    assert abs(scaled.std() - 2.0) < 0.05


@pytest.mark.parametrize(
    "shocks, initial, message",
    [
        (np.zeros(5), None, r"shape \(T, n_shocks\)"),
        (np.zeros((5, 2)), None, "Expected shock size"),
        (np.zeros((5, 1)), np.zeros(3), "Expected initial_state size"),
    ],
)
def test_simulate_validates_inputs(shocks, initial, message):
    sol = solve(make_ar1_model(), "first_order")
    with pytest.raises(ValueError, match=message):
        simulate(sol, shocks, initial)


@pytest.mark.parametrize(
    "kwargs, message",
    [
        ({"horizon": 0, "shock_index": 0}, "horizon must be positive"),
        ({"horizon": 5, "shock_index": 1}, "shock_index out of bounds"),
        ({"horizon": 5, "shock_index": -1}, "shock_index out of bounds"),
    ],
)
def test_impulse_response_validates_inputs(kwargs, message):
    sol = solve(make_ar1_model(), "first_order")
    with pytest.raises(ValueError, match=message):
        impulse_response(sol, **kwargs)
