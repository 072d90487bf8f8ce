"""Tests for theoretical unconditional moments.

For an AR(1) process ``z = rho z(-1) + sigma eps`` the variance is
``sigma^2 / (1 - rho^2)`` and the autocorrelation at lag ``k`` is
``rho^k``.  At second order the mean includes the risk adjustment.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from macroperturb import compute_unconditional_moments, draw_shocks, simulate, solve
from helpers import make_ar1_model, make_brock_mirman, make_rbc_model


def test_ar1_variance_and_autocorrelation():
    rho, sigma = 0.9, 0.01
    sol = solve(make_ar1_model(rho, sigma), "first_order")
    moments = compute_unconditional_moments(sol, max_lag=3)
    variance = sigma**2 / (1.0 - rho**2)
    assert_allclose(moments.covariance, [[variance]], rtol=1e-10)
    assert_allclose(moments.std, [np.sqrt(variance)], rtol=1e-10)
    assert_allclose(moments.autocorrelations[:, 0], rho ** np.arange(1, 4), rtol=1e-10)
    assert_allclose(moments.mean, [0.0])


def test_first_order_mean_is_the_steady_state():
    sol = solve(make_rbc_model(), "first_order")
    moments = compute_unconditional_moments(sol)
    assert_allclose(moments.mean, sol.steady_state)
    assert moments.autocorrelations.shape == (5, sol.n_variables)


def test_shock_covariance_override_scales_covariance():
    sol = solve(make_ar1_model(), "first_order")
    base = compute_unconditional_moments(sol, max_lag=0)
    scaled = compute_unconditional_moments(sol, shock_covariance=np.array([[9.0]]), max_lag=0)
    assert_allclose(scaled.covariance, 9.0 * base.covariance)
    assert base.autocorrelations is None


def test_covariance_override_is_rejected_at_second_order():
    """The risk correction is tied to the covariance the solution was computed with."""
    sol = solve(make_rbc_model(), "second_order")
    with pytest.raises(ValueError, match="first-order"):
        compute_unconditional_moments(sol, shock_covariance=np.array([[4.0]]))
    same = compute_unconditional_moments(sol, shock_covariance=np.eye(1))
    assert_allclose(same.mean, compute_unconditional_moments(sol).mean)


def test_second_order_moments_follow_the_solved_covariance():
    """Re-solving with a larger shock variance moves the mean and scales the covariance."""
    model = make_rbc_model()
    sol = solve(model, "second_order")
    base = compute_unconditional_moments(sol)
    wide = compute_unconditional_moments(
        solve(model, "second_order", shock_covariance=np.array([[4.0]]))
    )
    k = sol.variable_index("k")
    assert_allclose(wide.covariance, 4.0 * base.covariance, rtol=1e-10)
    steady = sol.steady_state[k]
    assert_allclose(wide.mean[k] - steady, 4.0 * (base.mean[k] - steady), rtol=1e-8)


def test_second_order_mean_of_linear_model_is_unchanged():
    sol = solve(make_ar1_model(), "second_order")
    assert_allclose(compute_unconditional_moments(sol).mean, [0.0], atol=1e-14)


def test_second_order_mean_adds_risk_adjustment():
    """Capital's ergodic mean lies above its deterministic steady state."""
    model = make_rbc_model()
    sol = solve(model, "second_order")
    moments = compute_unconditional_moments(sol)
    k = sol.variable_index("k")
    assert moments.mean[k] > sol.steady_state[k]
    assert_allclose(
        compute_unconditional_moments(solve(model, "first_order")).covariance,
        moments.covariance,
    )


def test_second_order_mean_agrees_with_long_simulation():
    """The pruned mean is close to the sample mean of a long simulation."""
    sol = solve(make_brock_mirman(), "second_order")
    moments = compute_unconditional_moments(sol)
    shocks = draw_shocks(sol, 50_000, seed=1)
    path = simulate(sol, shocks)
    sample_mean = path.levels[1000:].mean(axis=0)
    scale = moments.std
    assert np.all(np.abs(sample_mean - moments.mean) < 0.15 * scale)


def test_as_dict_reports_mean_and_std():
    sol = solve(make_ar1_model(), "first_order")
    out = compute_unconditional_moments(sol).as_dict()
    assert set(out) == {"z"}
    assert set(out["z"]) == {"mean", "std"}


def test_negative_lag_is_rejected():
    sol = solve(make_ar1_model(), "first_order")
    with pytest.raises(ValueError, match="max_lag"):
        compute_unconditional_moments(sol, max_lag=-1)
