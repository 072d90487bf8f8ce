"""Shared test helpers for the macroperturb test suite.

Provides factory functions that build small DSGE models, either analytically
tractable or taken from well-known reference calibrations, used across many
test modules.  Keeping them in a single helpers module avoids duplicating
model text and makes it easy to adjust the canonical test fixtures in one
place.
"""

from __future__ import annotations

from pathlib import Path

import numpy as np
import sympy as sp

from macroperturb import Model, parse_model

FIXTURES = Path(__file__).parent / "fixtures"


def make_ar1_model(rho: float = 0.9, sigma: float = 0.01) -> Model:
    """Single AR(1) process ``z_t = rho z_{t-1} + sigma eps_t``.

    The steady state is zero and the exact solution is linear, so every
    higher-order tensor vanishes.
    """
    return parse_model(
        ["z[0] = rho * z[-1] + sigma * eps[x]"],
        {"rho": rho, "sigma": sigma},
        name="ar1",
    )


def make_scalar_model(
    rho: float = 0.9, beta: float = 0.95, kappa: float = 0.1, sigma: float = 0.01
) -> Model:
    """Build a linear model with one state (k), one jump (c) and one shock (eps).

        Transition:  k_t = rho * k_{t-1} + sigma * eps_t
        Arbitrage:   c_t = beta * c_{t+1} + kappa * k_{t-1}

    The exact policy is ``c_t = a k_{t-1} + beta a sigma eps_t`` with
    ``a = kappa / (1 - beta * rho)``.  The steady state is zero.
    """
    return parse_model(
        [
            "k[0] = rho * k[-1] + sigma * eps[x]",
            "c[0] = beta * c[1] + kappa * k[-1]",
        ],
        {"rho": rho, "beta": beta, "kappa": kappa, "sigma": sigma},
        name="scalar",
    )


def scalar_policy_coefficient(rho: float, beta: float, kappa: float) -> float:
    return kappa / (1.0 - beta * rho)


BROCK_MIRMAN = [
    "1/c[0] = beta/c[1] * alpha * A[1] * k[0]^(alpha - 1)",
    "c[0] + k[0] = A[0] * k[-1]^alpha",
    "log(A[0]) = rho * log(A[-1]) + std_eps * eps[x]",
]


def make_brock_mirman(
    alpha: float = 0.33, beta: float = 0.96, rho: float = 0.9, std_eps: float = 0.01
) -> Model:
    """Stochastic growth model with log utility and full depreciation.

    The exact policy is

        k_t = alpha beta A_t k_{t-1}^alpha
        c_t = (1 - alpha beta) A_t k_{t-1}^alpha
        A_t = A_{t-1}^rho exp(std_eps eps_t)

    and does not depend on the shock variance, so every perturbation
    coefficient involving ``sigma`` is zero at every order.
    """
    return parse_model(
        BROCK_MIRMAN,
        {"alpha": alpha, "beta": beta, "rho": rho, "std_eps": std_eps},
        name="brock_mirman",
    )


def brock_mirman_steady_state(alpha: float = 0.33, beta: float = 0.96) -> dict[str, float]:
    k = (alpha * beta) ** (1.0 / (1.0 - alpha))
    return {"A": 1.0, "c": k**alpha - k, "k": k}


def brock_mirman_policy_derivatives(
    order: int, alpha: float, beta: float, rho: float, std_eps: float
) -> np.ndarray:
    """Exact policy derivatives over ``(A(-1), k(-1), eps)`` at the steady state.

    Rows are the variables ``(A, c, k)``; the remaining axes are the state
    (without ``sigma``), repeated *order* times.
    """
    a, kl, e = sp.symbols("a kl e", real=True)
    k_bar = brock_mirman_steady_state(alpha, beta)["k"]
    A = (1 + a) ** rho * sp.exp(std_eps * e)
    output = A * (k_bar + kl) ** alpha
    policy = [A, (1 - alpha * beta) * output, alpha * beta * output]
    point = {a: 0, kl: 0, e: 0}
    out = []
    for expr in policy:
        deriv = expr
        for _ in range(order):
            deriv = sp.derive_by_array(deriv, (a, kl, e))
        out.append(np.array(deriv.subs(point).tolist(), dtype=float))
    return np.array(out)


RBC = [
    "y[0] = A[0] * k[-1]^alpha",
    "1/c[0] = beta/c[1] * (alpha * A[1] * k[0]^(alpha - 1) + 1 - delta)",
    "c[0] + k[0] = (1 - delta) * k[-1] + y[0]",
    "A[0] = 1 - rho + rho * A[-1] + sigma * eps[x]",
]
RBC_PARAMETERS = {"alpha": 0.36, "beta": 0.99, "delta": 0.025, "rho": 0.9, "sigma": 0.0068}


def make_rbc_model(**overrides: float) -> Model:
    """One-shock real business cycle model with partial depreciation."""
    parameters = dict(RBC_PARAMETERS)
    parameters.update(overrides)
    return parse_model(RBC, parameters, name="rbc")


def rbc_steady_state(alpha: float, beta: float, delta: float) -> dict[str, float]:
    """Closed-form steady state of :func:`make_rbc_model` with ``A = 1``."""
    k = (alpha / (1.0 / beta - 1.0 + delta)) ** (1.0 / (1.0 - alpha))
    y = k**alpha
    return {"A": 1.0, "c": y - delta * k, "k": k, "y": y}


RBC_CME = [
    "y[0]=A[0]*k[-1]^alpha",
    "1/c[0]=beta*1/c[1]*(alpha*A[1]*k[0]^(alpha-1)+(1-delta))",
    "1/c[0]=beta*1/c[1]*(R[0]/Pi[+1])",
    "R[0] * beta =(Pi[0]/Pibar)^phi_pi",
    "A[0]*k[-1]^alpha=c[0]+k[0]-(1-delta*z_delta[0])*k[-1]",
    "z_delta[0] = 1 - rho_z_delta + rho_z_delta * z_delta[-1] + std_z_delta * delta_eps[x]",
    "A[0] = 1 - rhoz + rhoz * A[-1]  + std_eps * eps_z[x]",
]

RBC_CME_PARAMETERS = [
    "alpha = .157",
    "beta = .999",
    "delta = .0226",
    "Pibar = 1.0008",
    "phi_pi = 1.5",
    "rhoz = .9",
    "std_eps = .0068",
    "rho_z_delta = .9",
    "std_z_delta = .005",
]

RBC_CME_CALIBRATION = [
    "alpha | k[ss] / (4 * y[ss]) = cap_share",
    "cap_share = 1.66",
    "beta | R[ss] = R_ss",
    "R_ss = 1.0035",
    "delta | c[ss]/y[ss] = 1 - I_K_ratio",
    "I_K_ratio = .15",
    "Pibar | Pi[ss] = Pi_ss",
    "Pi_ss = 1.0025",
    "phi_pi = 1.5",
    "rhoz = .9",
    "std_eps = .0068",
    "rho_z_delta = .9",
    "std_z_delta = .005",
]

# A, Pi, R, c, k, y, z_delta
RBC_CME_CALIBRATED_STEADY_STATE = np.array(
    [1.0, 1.0025, 1.0035, 1.2081023828249515, 9.437411555244328, 1.4212969209705313, 1.0]
)
RBC_CME_CALIBRATED_GUESS = {
    "k": 9.0,
    "y": 1.4,
    "c": 1.2,
    "alpha": 0.15,
    "delta": 0.02,
}


def make_rbc_cme(extra_equations: tuple[str, ...] = (), shock_timing: str = "x") -> Model:
    """RBC model with a monetary block and a depreciation shock."""
    equations = list(RBC_CME)
    equations[-1] = equations[-1].replace("eps_z[x]", f"eps_z[{shock_timing}]")
    return parse_model(equations + list(extra_equations), RBC_CME_PARAMETERS, name="rbc_cme")


def make_calibrated_rbc_cme() -> Model:
    return parse_model(RBC_CME, RBC_CME_CALIBRATION, name="rbc_cme_calibrated")


def make_indeterminate_model() -> Model:
    """Forward-looking inflation equation with a passive policy rule."""
    return parse_model(
        [
            "pi[0] = beta * pi[1] + kappa * gap[0]",
            "gap[0] = gap[1] - (i[0] - pi[1])",
            "i[0] = phi * pi[0] + u[0]",
            "u[0] = rho * u[-1] + eps[x]",
        ],
        {"beta": 0.99, "kappa": 0.1, "phi": 0.5, "rho": 0.5},
        name="nk_passive",
    )


def make_explosive_model() -> Model:
    """Predetermined variable with an explosive root and no jump variable."""
    return parse_model(
        ["k[0] = 1.5 * k[-1] + eps[x]"],
        name="explosive",
    )
