"""Blanchard-Kahn condition diagnostics and generalised eigenvalue utilities.

The Blanchard-Kahn (1980) conditions require that the number of explosive
generalised eigenvalues of the linearised system equals the number of
forward-looking variables.  With too few the equilibrium is indeterminate,
with too many no stable equilibrium exists.  Eigenvalues whose modulus is
numerically indistinguishable from the cutoff make the count itself
unreliable and are reported separately.

References
----------
Blanchard, O. J. and Kahn, C. M. (1980). "The Solution of Linear
    Difference Models under Rational Expectations." *Econometrica*,
    48(5), 1305-1311.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

import numpy as np

Array = np.ndarray


@dataclass(frozen=True)
class BKDiagnostics:
    """Diagnostic information for a Blanchard-Kahn condition check.

    Attributes
    ----------
    unstable_count : int
        Number of generalised eigenvalues with modulus above the cutoff.
    expected_unstable : int
        Number of forward-looking variables.
    reason : str
        ``"ok"``, ``"indeterminacy"``, ``"no_stable_equilibrium"``,
        ``"ambiguous"`` or ``"rank_failure"``.
    eigenvalues : Array
        Moduli of all generalised eigenvalues, sorted ascending.
    """

    unstable_count: int
    expected_unstable: int
    reason: str
    eigenvalues: Array


def compute_generalized_eigenvalues(
    alpha: Array, beta: Array, singular_tol: float
) -> Array:
    """Moduli ``|alpha_i / beta_i|`` of generalised eigenvalues from QZ output.

    Entries with ``|beta_i| < singular_tol`` are infinite eigenvalues.
    """
    with np.errstate(divide="ignore", invalid="ignore"):
        eigenvalues = np.abs(alpha / beta)
    return np.where(np.abs(beta) < singular_tol, np.inf, eigenvalues)


def stable_first(eig_cutoff: float, singular_tol: float) -> Callable[[Array, Array], Array]:
    """``ordqz`` sort callable selecting eigenvalues with modulus below *eig_cutoff*."""

    def stable(alpha: Array, beta: Array) -> Array:
        return compute_generalized_eigenvalues(alpha, beta, singular_tol) < eig_cutoff

    return stable


def classify_bk_failure(
    eigenvalues: Array,
    expected_unstable: int,
    *,
    eig_cutoff: float = 1.0,
    unit_root_tol: float = 1e-9,
) -> BKDiagnostics:
    """Count explosive roots and classify the Blanchard-Kahn outcome.

    Parameters
    ----------
    eigenvalues : Array
        Moduli of the generalised eigenvalues.
    expected_unstable : int
        Number of forward-looking variables.
    eig_cutoff : float
        Modulus separating stable from explosive roots.
    unit_root_tol : float
        Half-width of the band around *eig_cutoff* in which a root is
        treated as ambiguous.

    Returns
    -------
    BKDiagnostics
        ``reason`` is ``"ambiguous"`` if any root lies in the band, else
        ``"indeterminacy"`` (too few explosive roots),
        ``"no_stable_equilibrium"`` (too many) or ``"ok"``.
    """
    moduli = np.sort(np.asarray(eigenvalues, dtype=float))
    unstable_count = int(np.sum(moduli > eig_cutoff))
    if np.any(np.abs(moduli - eig_cutoff) < unit_root_tol):
        reason = "ambiguous"
    elif unstable_count < expected_unstable:
        reason = "indeterminacy"
    elif unstable_count > expected_unstable:
        reason = "no_stable_equilibrium"
    else:
        reason = "ok"
    return BKDiagnostics(
        unstable_count=unstable_count,
        expected_unstable=expected_unstable,
        reason=reason,
        eigenvalues=moduli,
    )
