"""Tensor operations for higher-order perturbation methods.

Contraction helpers follow dolo's ``numeric/tensor.py``; the correction
equation solver follows the Kronecker vectorisation of dolo's
``numeric/matrix_equations.py``, restricted to the forward-looking rows.
"""

from __future__ import annotations

from itertools import permutations
import logging
import warnings

import numpy as np
from numpy import einsum
from scipy.linalg import LinAlgError, LinAlgWarning, solve

from .exceptions import SingularSolutionError

logger = logging.getLogger(__name__)

Array = np.ndarray


def sdot(U: Array, V: Array) -> Array:
    """Tensor product contracting the last axis of *U* with the first axis of *V*.

    ``result[i1,...,iN, j2,...,jM] = sum_k U[i1,...,iN, k] * V[k, j2,...,jM]``;
    for 2-D arrays this is ``U @ V``.
    """
    return np.tensordot(U, V, axes=(U.ndim - 1, 0))


def mdot(M: Array, *C: Array) -> Array:
    """Contract the trailing ``len(C)`` axes of *M* with the first axis of each ``Ci``.

    In Einstein notation (two matrices)::

        result[a, i, j] = sum_{b,c} M[a, b, c] * C1[b, i] * C2[c, j]

    Parameters
    ----------
    M : ndarray
        Core tensor whose trailing axes are contracted.
    *C : ndarray
        One or more 2-D (or higher) arrays.

    Returns
    -------
    ndarray
        Uncontracted leading axes of ``M`` followed by the trailing axes of
        each ``Ci``.
    """
    sig = _mdot_signature(M.shape, *(c.shape for c in C))
    return einsum(sig, M, *C)


def kron_power(C: Array, power: int) -> Array:
    """``kron(C, ..., C)`` with *power* factors."""
    out = C
    for _ in range(power - 1):
        out = np.kron(out, C)
    return out


def symmetrize(T: Array) -> Array:
    """Average *T* over all permutations of its trailing axes (all but the first)."""
    k = T.ndim - 1
    if k < 2:
        return T
    perms = list(permutations(range(1, k + 1)))
    return sum(np.transpose(T, (0,) + p) for p in perms) / len(perms)


def sym3_cross(F2: Array, V1: Array, V2: Array) -> Array:
    """Chain-rule cross term ``F2[V1, V2]`` summed over the three index splits.

    For a composite ``f(v(z))`` the third derivative contains
    ``f_vv v_z v_zz`` once for each way of pairing one of the three
    differentiation indices with the first factor.
    """
    T = einsum("ipq,pa,qbc->iabc", F2, V1, V2)
    return T + T.transpose(0, 2, 1, 3) + T.transpose(0, 2, 3, 1)


def solve_policy_correction(
    M: Array,
    f_plus: Array,
    future_idx: Array,
    C: Array,
    D: Array,
    order: int,
) -> Array:
    r"""Solve the higher-order correction equation.

    Finds ``X`` (shape ``(n, m, ..., m)``, same as *D*) with::

        M @ X + f_plus @ X[future] @ C + D = 0

    where ``X`` is read as an ``(n, m**k)`` matrix and ``C`` is
    ``(m**k, m**k)``.  Writing ``Y = X[future]`` and
    ``A = (M^{-1} f_plus)[future]`` the forward rows satisfy::

        Y + A Y C = -(M^{-1} D)[future]

    which is vectorised as :math:`(I + A \otimes C^{\top})\,\mathrm{vec}(Y)
    = -\mathrm{vec}(\tilde D)` and solved with a pivoted LU factorisation.
    The remaining rows follow as ``X = -M^{-1} (D + f_plus Y C)``.

    Parameters
    ----------
    M : ndarray, shape (n, n)
        ``f_zero`` with the forward terms of the first-order solution added.
    f_plus : ndarray, shape (n, n_future)
        Derivatives with respect to forward-looking variables.
    future_idx : ndarray of int
        Positions of the forward-looking variables.
    C : ndarray, shape (m**k, m**k)
        Expected Kronecker power of the state transition.
    D : ndarray, shape (n, m, ..., m)
        Known terms of the order-*k* equation.
    order : int
        Perturbation order, reported on failure.

    Raises
    ------
    SingularSolutionError
        If ``M`` or the vectorised system is singular or ill-conditioned.
    """
    n = M.shape[0]
    shape = D.shape
    DD = D.reshape(n, -1)
    n_f = len(future_idx)

    MD = _solve(M, DD, order)
    if n_f == 0:
        return (-MD).reshape(shape)

    A = _solve(M, f_plus, order)[future_idx]
    rhs = -MD[future_idx]
    size = n_f * DD.shape[1]
    logger.debug("Order-%d correction: Kronecker system of size %d", order, size)
    L = np.eye(size) + np.kron(A, C.T)
    Y = _solve(L, rhs.reshape(-1), order).reshape(n_f, DD.shape[1])

    X = -_solve(M, DD + f_plus @ (Y @ C), order)
    return X.reshape(shape)


def _solve(A: Array, B: Array, order: int) -> Array:
    with warnings.catch_warnings():
        warnings.simplefilter("error", LinAlgWarning)
        try:
            return solve(A, B)
        except (LinAlgError, LinAlgWarning) as exc:
            with np.errstate(all="ignore"):
                rcond = 1.0 / np.linalg.cond(A) if A.size else 0.0
            raise SingularSolutionError(order, float(rcond)) from exc


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _mdot_signature(M_shape: tuple[int, ...], *C_shapes: tuple[int, ...]) -> str:
    """Build an einsum signature for :func:`mdot`."""
    M_syms = [chr(97 + e) for e in range(len(M_shape))]
    fC_syms = M_syms[-len(C_shapes):]
    ic = 97 + len(M_syms)
    C_syms: list[list[str]] = []
    for i in range(len(C_shapes)):
        c_sym = [fC_syms[i]]
        for _ in range(len(C_shapes[i]) - 1):
            c_sym.append(chr(ic))
            ic += 1
        C_syms.append(c_sym)
    C_sig = [M_syms] + C_syms
    out_sig = [M_syms[: -len(C_shapes)]] + [cc[1:] for cc in C_syms]
    args = ",".join("".join(g) for g in C_sig)
    out = "".join("".join(g) for g in out_sig)
    return args + "->" + out
