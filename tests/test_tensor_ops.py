"""Tests for tensor operations (sdot, mdot, symmetrize, solve_policy_correction).

These are the linear-algebra primitives of the higher-order solvers:

- ``sdot`` contracts the last axis of the first operand with the first axis
  of the second.
- ``mdot`` applies a separate matrix along each trailing axis of a tensor.
- ``symmetrize`` averages over permutations of the trailing axes.
- ``solve_policy_correction`` solves ``M X + f_plus X[future] C + D = 0``,
  the equation that appears at every order >= 2.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from macroperturb import SingularSolutionError
from macroperturb.tensor_ops import (
    kron_power,
    mdot,
    sdot,
    solve_policy_correction,
    sym3_cross,
    symmetrize,
)


def test_sdot_matrices_equals_matmul():
    A = np.random.default_rng(0).standard_normal((3, 4))
    B = np.random.default_rng(1).standard_normal((4, 5))
    assert_allclose(sdot(A, B), A @ B, atol=1e-14)


def test_sdot_tensor_vector():
    """sdot contracts a rank-3 tensor with a vector along the last axis."""
    T = np.random.default_rng(2).standard_normal((2, 3, 4))
    v = np.random.default_rng(3).standard_normal(4)
    assert_allclose(sdot(T, v), np.tensordot(T, v, axes=(2, 0)), atol=1e-14)


def test_mdot_matrix_matrix():
    """mdot(M, A, B) equals the contraction M_{ijk} A_{jm} B_{kn}."""
    M = np.random.default_rng(4).standard_normal((2, 3, 4))
    A = np.random.default_rng(5).standard_normal((3, 5))
    B = np.random.default_rng(6).standard_normal((4, 6))
    assert_allclose(mdot(M, A, B), np.einsum("ijk,jm,kn->imn", M, A, B), atol=1e-13)


def test_mdot_single_matrix():
    M = np.random.default_rng(7).standard_normal((2, 3))
    A = np.random.default_rng(8).standard_normal((3, 4))
    assert_allclose(mdot(M, A), M @ A, atol=1e-14)


def test_kron_power():
    C = np.array([[1.0, 2.0], [0.0, 3.0]])
    assert_allclose(kron_power(C, 1), C)
    assert_allclose(kron_power(C, 3), np.kron(np.kron(C, C), C))


def test_symmetrize_averages_trailing_axes():
    T = np.random.default_rng(9).standard_normal((2, 3, 3, 3))
    S = symmetrize(T)
    for axes in [(0, 2, 1, 3), (0, 3, 2, 1), (0, 1, 3, 2)]:
        assert_allclose(S, S.transpose(axes), atol=1e-14)
    # already symmetric tensors are unchanged
    assert_allclose(symmetrize(S), S, atol=1e-14)
    matrix = np.arange(6.0).reshape(2, 3)
    assert symmetrize(matrix) is matrix


def test_sym3_cross_sums_three_index_splits():
    rng = np.random.default_rng(10)
    F2 = rng.standard_normal((2, 3, 3))
    V1 = rng.standard_normal((3, 2))
    V2 = rng.standard_normal((3, 2, 2))
    V2 = 0.5 * (V2 + V2.transpose(0, 2, 1))
    out = sym3_cross(F2, V1, V2)
    expected = (
        np.einsum("ipq,pa,qbc->iabc", F2, V1, V2)
        + np.einsum("ipq,pb,qac->iabc", F2, V1, V2)
        + np.einsum("ipq,pc,qab->iabc", F2, V1, V2)
    )
    assert_allclose(out, expected, atol=1e-13)


def test_policy_correction_residual_vanishes():
    """The returned X satisfies ``M X + f_plus X[future] C + D = 0``."""
    rng = np.random.default_rng(42)
    n, m = 4, 3
    future = np.array([1, 3])
    M = rng.standard_normal((n, n)) + 3.0 * np.eye(n)
    f_plus = rng.standard_normal((n, len(future)))
    C = 0.3 * rng.standard_normal((m * m, m * m))
    D = rng.standard_normal((n, m, m))

    X = solve_policy_correction(M, f_plus, future, C, D, order=2)
    assert X.shape == D.shape
    XX = X.reshape(n, -1)
    residual = M @ XX + f_plus @ XX[future] @ C + D.reshape(n, -1)
    assert_allclose(residual, 0.0, atol=1e-10)


def test_policy_correction_without_forward_variables():
    rng = np.random.default_rng(5)
    M = rng.standard_normal((2, 2)) + 2.0 * np.eye(2)
    D = rng.standard_normal((2, 2, 2))
    X = solve_policy_correction(
        M, np.zeros((2, 0)), np.array([], dtype=int), np.eye(4), D, order=2
    )
    assert_allclose(np.einsum("ij,jab->iab", M, X), -D, atol=1e-12)


def test_singular_correction_raises():
    with pytest.raises(SingularSolutionError) as info:
        solve_policy_correction(
            np.zeros((2, 2)), np.zeros((2, 1)), np.array([0]), np.eye(1), np.ones((2, 1)), order=3
        )
    assert info.value.order == 3
    assert "Order-3" in str(info.value)
