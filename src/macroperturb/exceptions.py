"""Error taxonomy for the model-to-solution pipeline.

Every failure of a pipeline stage is a distinct exception type that carries
the diagnostic payload needed to reproduce it (equation index, block id,
residual, eigenvalue counts, iteration count).  All of them derive from
:class:`MacroPerturbError` so callers can catch the whole family at once.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Mapping

if TYPE_CHECKING:
    from .qz import BKDiagnostics


class MacroPerturbError(Exception):
    """Base exception for all macroperturb errors."""


class ParseError(MacroPerturbError):
    """Malformed model text: untokenizable expression, undeclared symbol, bad offset."""

    def __init__(
        self,
        message: str,
        *,
        equation_index: int | None = None,
        text: str | None = None,
    ):
        self.equation_index = equation_index
        self.text = text
        msg = message
        if equation_index is not None:
            msg = f"Equation {equation_index}: {msg}"
        if text is not None:
            msg += f" (in '{text.strip()}')"
        super().__init__(msg)


class SteadyStateError(MacroPerturbError):
    """A steady-state block failed to converge or violated its bounds."""

    def __init__(
        self,
        message: str,
        *,
        block_id: int | None,
        last_residual: float = float("nan"),
        last_guess: Mapping[str, float] | None = None,
    ):
        self.block_id = block_id
        self.last_residual = float(last_residual)
        self.last_guess = dict(last_guess or {})
        where = "steady state" if block_id is None else f"steady-state block {block_id}"
        msg = f"{where}: {message} (max |residual| = {self.last_residual:.3e})"
        super().__init__(msg)


class DifferentiationError(MacroPerturbError):
    """A derivative is undefined (non-finite) at the steady state."""

    def __init__(self, equation_index: int, order: int, message: str | None = None):
        self.equation_index = equation_index
        self.order = order
        msg = (
            f"Order-{order} derivative of equation {equation_index} is not finite "
            "at the steady state"
        )
        if message:
            msg += f": {message}"
        super().__init__(msg)


class BlanchardKahnError(MacroPerturbError):
    """Raised when the Blanchard-Kahn conditions are not satisfied.

    Attributes
    ----------
    n_explosive : int
        Number of explosive generalised eigenvalues found.
    n_forward : int
        Number of forward-looking variables (required explosive count).
    reason : str
        ``"indeterminacy"``, ``"no_stable_equilibrium"``, ``"ambiguous"``
        (eigenvalue inside the unit-root tolerance band) or
        ``"rank_failure"``.
    diagnostics : BKDiagnostics or None
        Full eigenvalue diagnostics.
    """

    def __init__(
        self,
        n_explosive: int,
        n_forward: int,
        *,
        reason: str,
        diagnostics: BKDiagnostics | None = None,
        message: str | None = None,
    ):
        self.n_explosive = int(n_explosive)
        self.n_forward = int(n_forward)
        self.reason = reason
        self.diagnostics = diagnostics
        msg = message or (
            f"Blanchard-Kahn condition failed ({reason}): {n_explosive} explosive "
            f"eigenvalues for {n_forward} forward-looking variables"
        )
        super().__init__(msg)


class SingularSolutionError(MacroPerturbError):
    """The linear system for a higher-order correction is (near) singular."""

    def __init__(self, order: int, rcond: float = 0.0):
        self.order = order
        self.rcond = float(rcond)
        super().__init__(
            f"Order-{order} Sylvester system is singular or ill-conditioned "
            f"(reciprocal condition number {self.rcond:.3e})"
        )


class ConvergenceError(MacroPerturbError):
    """An iterative solver exhausted its budget or converged to an unusable point."""

    def __init__(self, iterations: int, residual: float, *, reason: str = "max_iter"):
        self.iterations = int(iterations)
        self.residual = float(residual)
        self.reason = reason
        super().__init__(
            f"No convergence after {self.iterations} iterations ({reason}, "
            f"residual = {self.residual:.3e})"
        )


__all__ = [
    "MacroPerturbError",
    "ParseError",
    "SteadyStateError",
    "DifferentiationError",
    "BlanchardKahnError",
    "SingularSolutionError",
    "ConvergenceError",
]
