"""Tests for symbolic derivatives over the stacked vector.

The stacked vector is ``[y(t+1) forward-looking; y(t); y(t-1) predetermined;
shocks]``.  Derivatives are checked against hand-computed values for the
Brock-Mirman resource constraint and for a linear AR(1) process.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from macroperturb import (
    DifferentiationError,
    SteadyStateResult,
    compute_derivatives,
    parse_model,
    solve_steady_state,
)
from macroperturb.derivatives import stacked_symbols
from helpers import brock_mirman_steady_state, make_ar1_model, make_brock_mirman


def test_ar1_jacobian_and_vanishing_higher_derivatives():
    model = make_ar1_model(rho=0.8, sigma=0.02)
    ss = solve_steady_state(model)
    derivs = compute_derivatives(model, ss, order=3)
    # v = [z(t); z(t-1); eps]
    assert_allclose(derivs.jacobian, [[1.0, -0.8, -0.02]])
    assert not derivs.hessian.any()
    assert not derivs.third.any()
    f_plus, f_zero, f_minus, f_shock = derivs.jacobian_blocks()
    assert f_plus.shape == (1, 0)
    assert_allclose(f_zero, [[1.0]])
    assert_allclose(f_minus, [[-0.8]])
    assert_allclose(f_shock, [[-0.02]])


def test_brock_mirman_resource_constraint_derivatives():
    """``c + k - A k(-1)^alpha``: first, second and third derivatives."""
    alpha = 0.33
    model = make_brock_mirman(alpha=alpha)
    ss = solve_steady_state(model)
    k = brock_mirman_steady_state(alpha=alpha)["k"]
    derivs = compute_derivatives(model, ss, order=3)

    labels = model.timings.stacked_labels()
    assert labels == ("A[1]", "c[1]", "A[0]", "c[0]", "k[0]", "A[-1]", "k[-1]", "eps[x]")
    pos = {label: i for i, label in enumerate(labels)}
    row = 1

    jac = derivs.jacobian[row]
    assert_allclose(jac[pos["c[0]"]], 1.0)
    assert_allclose(jac[pos["k[0]"]], 1.0)
    assert_allclose(jac[pos["A[0]"]], -(k**alpha))
    assert_allclose(jac[pos["k[-1]"]], -alpha * k ** (alpha - 1))
    assert jac[pos["A[1]"]] == 0.0

    hess = derivs.hessian[row]
    assert_allclose(hess[pos["A[0]"], pos["k[-1]"]], -alpha * k ** (alpha - 1))
    assert_allclose(hess[pos["k[-1]"], pos["A[0]"]], -alpha * k ** (alpha - 1))
    assert_allclose(hess[pos["k[-1]"], pos["k[-1]"]], -alpha * (alpha - 1) * k ** (alpha - 2))

    third = derivs.third[row]
    assert_allclose(
        third[pos["k[-1]"], pos["k[-1]"], pos["k[-1]"]],
        -alpha * (alpha - 1) * (alpha - 2) * k ** (alpha - 3),
    )
    assert_allclose(third[pos["A[0]"], pos["k[-1]"], pos["k[-1]"]], -alpha * (alpha - 1) * k ** (alpha - 2))


def test_derivatives_are_exact_to_rounding():
    """``z - log(1 + rho z(-1))`` at ``z(-1) = 1``: -1/3, 1/9 and -2/27 for ``rho = 1/2``."""
    model = parse_model(
        ["z[0] = log(1 + rho * z[-1]) + sigma * eps[x]"], {"rho": 0.5, "sigma": 0.1}
    )
    point = SteadyStateResult(
        variables=("z",),
        values=np.array([1.0]),
        calibrated={},
        parameters={"rho": 0.5, "sigma": 0.1},
        blocks=(),
        max_residual=0.0,
    )
    derivs = compute_derivatives(model, point, order=3)
    assert model.timings.stacked_labels() == ("z[0]", "z[-1]", "eps[x]")
    assert_allclose(derivs.jacobian[0], [1.0, -1.0 / 3.0, -0.1], rtol=1e-14)
    assert_allclose(derivs.hessian[0, 1, 1], 1.0 / 9.0, rtol=1e-14)
    assert_allclose(derivs.third[0, 1, 1, 1], -2.0 / 27.0, rtol=1e-14)


def test_higher_derivatives_are_symmetric():
    model = make_brock_mirman()
    derivs = compute_derivatives(model, solve_steady_state(model), order=3)
    assert_allclose(derivs.hessian, derivs.hessian.transpose(0, 2, 1))
    assert_allclose(derivs.third, derivs.third.transpose(0, 2, 1, 3))
    assert_allclose(derivs.third, derivs.third.transpose(0, 3, 2, 1))


def test_lower_order_requests_skip_higher_tensors():
    model = make_brock_mirman()
    derivs = compute_derivatives(model, solve_steady_state(model), order=1)
    assert derivs.hessian is None and derivs.third is None
    assert derivs.jacobian.shape == (3, len(stacked_symbols(model.timings)))


def test_derivatives_are_read_only():
    model = make_ar1_model()
    derivs = compute_derivatives(model, solve_steady_state(model), order=2)
    with pytest.raises(ValueError):
        derivs.jacobian[0, 0] = 5.0


def test_parameter_change_reuses_compiled_expressions():
    """The evaluator is attached to the model and keeps its compiled functions."""
    model = make_ar1_model(rho=0.8)
    first = compute_derivatives(model, solve_steady_state(model), order=1)
    evaluator = model.derivative_evaluator
    second = compute_derivatives(model, solve_steady_state(model, {"rho": 0.5}), order=1)
    assert model.derivative_evaluator is evaluator
    assert_allclose(first.jacobian[0, 1], -0.8)
    assert_allclose(second.jacobian[0, 1], -0.5)


def test_non_finite_derivative_raises():
    """``sqrt(z)`` has no real derivative at ``z = -1``."""
    model = parse_model(
        ["y[0] = sqrt(z[0])", "z[0] = rho * z[-1] + eps[x]"], {"rho": 0.5}
    )
    outside = SteadyStateResult(
        variables=("y", "z"),
        values=np.array([0.0, -1.0]),
        calibrated={},
        parameters={"rho": 0.5},
        blocks=(),
        max_residual=0.0,
    )
    with pytest.raises(DifferentiationError) as info:
        compute_derivatives(model, outside, order=1)
    assert info.value.equation_index == 0
    assert info.value.order == 1


@pytest.mark.parametrize("order", [0, 4])
def test_order_outside_supported_range(order):
    model = make_ar1_model()
    with pytest.raises(ValueError, match="order"):
        compute_derivatives(model, solve_steady_state(model), order=order)
