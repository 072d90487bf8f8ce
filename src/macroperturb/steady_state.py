"""Non-stochastic steady-state solver.

Solves the steady-state system of a :class:`~macroperturb.model.Model`
block by block, in the order produced by :func:`~macroperturb.blocks.analyze_blocks`.
Each block is solved on the numerators of its equations (common
denominator), and accepted only if the original equations hold.  When a
variable cancels from a numerator, the original equation can involve
unknowns of later blocks; it is then checked after the last block.

* linear blocks: one exact Newton step, i.e. a pivoted linear solve of the
  block Jacobian;
* in symbolic mode, single-unknown blocks and small polynomial blocks:
  closed-form candidates from ``sympy.solve``, filtered numerically;
* everything else: ``scipy.optimize.least_squares`` (trust-region
  reflective) with the exact Jacobian and box constraints.

Box constraints combine declared bounds with automatic positivity bounds
for unknowns used as the base of a non-integer power or as the argument of
``log``.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
import logging
from types import MappingProxyType
from typing import Callable, Mapping

import numpy as np
from scipy.linalg import LinAlgError, solve
from scipy.optimize import least_squares
import sympy as sp

from .blocks import Block
from .exceptions import SteadyStateError
from .model import Bound, Model, steady_symbol

logger = logging.getLogger(__name__)

Array = np.ndarray

_MODULES = ["scipy", "numpy"]
_RESTART_SCALES = (0.5, 2.0, 0.1, 10.0, 0.01, 100.0)
_MAX_SYMBOLIC_BLOCK = 3


@dataclass(frozen=True)
class SteadyStateOptions:
    """Options of :func:`solve_steady_state`.

    Attributes
    ----------
    tol : float
        Maximum absolute residual accepted for every equation.
    max_nfev : int
        Function evaluation cap of each nonlinear block solve.
    restarts : int
        Number of additional deterministic initial guesses tried when a
        block fails.  ``0`` disables retries.
    symbolic : bool
        Try closed-form solutions first, for single-unknown blocks and for
        blocks of up to three unknowns with polynomial numerators.
    """

    tol: float = 1e-8
    max_nfev: int = 1000
    restarts: int = 0
    symbolic: bool = False

    def __post_init__(self) -> None:
        if self.tol <= 0:
            raise ValueError("tol must be positive")
        if self.max_nfev < 1:
            raise ValueError("max_nfev must be at least 1")
        if self.restarts < 0:
            raise ValueError("restarts must be non-negative")


@dataclass(frozen=True)
class BlockSolveRecord:
    block_id: int
    unknowns: tuple[str, ...]
    method: str
    residual: float
    nfev: int
    restarts: int = 0


@dataclass(frozen=True)
class SteadyStateResult:
    """Solved non-stochastic steady state.

    Attributes
    ----------
    variables : tuple of str
        Variable names (model order).
    values : Array, shape (n_variables,)
        Steady-state values, read-only.
    calibrated : Mapping[str, float]
        Values of calibrated parameters.
    parameters : Mapping[str, float]
        Free parameter values the steady state was solved for.
    blocks : tuple of BlockSolveRecord
        How each block was solved.
    max_residual : float
        Largest absolute residual over all original equations.
    """

    variables: tuple[str, ...]
    values: Array
    calibrated: Mapping[str, float]
    parameters: Mapping[str, float]
    blocks: tuple[BlockSolveRecord, ...]
    max_residual: float

    def __post_init__(self) -> None:
        values = np.array(self.values, dtype=float)
        values.setflags(write=False)
        object.__setattr__(self, "values", values)
        object.__setattr__(self, "calibrated", MappingProxyType(dict(self.calibrated)))
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))

    def __getitem__(self, name: str) -> float:
        if name in self.calibrated:
            return self.calibrated[name]
        return float(self.values[self.variables.index(name)])

    def as_dict(self) -> dict[str, float]:
        """Variables and calibrated parameters by name."""
        out = {name: float(v) for name, v in zip(self.variables, self.values)}
        out.update(self.calibrated)
        return out

    def all_parameters(self) -> dict[str, float]:
        """Free and calibrated parameter values."""
        out = dict(self.parameters)
        out.update(self.calibrated)
        return out


@dataclass(frozen=True)
class CompiledBlock:
    """Numerical functions of one block.

    ``residual``/``jacobian`` take ``(x, context)`` and evaluate the
    numerators; ``original`` takes ``(x, check_context)`` and evaluates the
    uncombined residuals.  ``check_context`` can name unknowns of later
    blocks when a variable cancels from a numerator (``1/c = beta/c * R``);
    such blocks are accepted on their numerators and the original equations
    are checked once every block is solved.
    """

    block: Block
    symbols: tuple[sp.Symbol, ...]
    context: tuple[str, ...]
    check_context: tuple[str, ...]
    numerators: tuple[sp.Expr, ...]
    bounds: tuple[Bound, ...]
    residual: Callable[..., object]
    jacobian: Callable[..., object]
    original: Callable[..., object]


def _positive_symbols(expr: sp.Expr) -> set[sp.Symbol]:
    """Symbols used as the base of non-integer powers or inside ``log``."""
    out: set[sp.Symbol] = set()
    for node in sp.preorder_traversal(expr):
        if isinstance(node, sp.Pow) and isinstance(node.base, sp.Symbol):
            if not node.exp.is_integer:
                out.add(node.base)
        elif isinstance(node, sp.log) and isinstance(node.args[0], sp.Symbol):
            out.add(node.args[0])
    return out


class SteadyStateProgram:
    """Compiled steady-state system of a model.

    Built once per model (see :attr:`Model.steady_state_program`); solving
    for new parameter values only re-evaluates the compiled functions.
    """

    def __init__(self, model: Model) -> None:
        self.model = model
        self.structure = model.block_structure
        system = model.steady_state_system
        self.unknowns = self.structure.unknowns
        unknown_set = set(self.unknowns)
        free = set(model.parameters)

        relevant: set[str] = set()
        blocks = []
        for block in self.structure:
            numerators = tuple(system[i].numerator for i in block.equations)
            originals = [system[i].residual for i in block.equations]
            symbols = tuple(steady_symbol(name) for name in block.unknowns)
            used = {s.name for expr in numerators for s in expr.free_symbols}
            checked = {s.name for expr in originals for s in expr.free_symbols}
            context = tuple(sorted(used - set(block.unknowns)))
            check_context = tuple(sorted(checked - set(block.unknowns)))
            for name in sorted(set(context) | set(check_context)):
                if name not in free and name not in unknown_set:
                    raise SteadyStateError(
                        f"Unknown symbol '{name}' in steady-state block {block.index}",
                        block_id=block.index,
                    )
            relevant |= {name for name in context + check_context if name in free}

            positive: set[sp.Symbol] = set()
            for expr in originals:
                positive |= _positive_symbols(expr)
            bounds = []
            for name, sym in zip(block.unknowns, symbols):
                bound = model.bounds.get(name, Bound())
                if sym in positive:
                    bound = bound.intersect(Bound(lower=0.0, strict_lower=True))
                bounds.append(bound)

            ctx = [steady_symbol(name) for name in context]
            check_ctx = [steady_symbol(name) for name in check_context]
            matrix = sp.Matrix(numerators)
            blocks.append(
                CompiledBlock(
                    block=block,
                    symbols=symbols,
                    context=context,
                    check_context=check_context,
                    numerators=numerators,
                    bounds=tuple(bounds),
                    residual=sp.lambdify([list(symbols), ctx], matrix, modules=_MODULES, cse=True),
                    jacobian=sp.lambdify(
                        [list(symbols), ctx], matrix.jacobian(list(symbols)), modules=_MODULES, cse=True
                    ),
                    original=sp.lambdify(
                        [list(symbols), check_ctx], sp.Matrix(originals), modules=_MODULES
                    ),
                )
            )
        self.blocks = tuple(blocks)
        self.relevant_parameters = tuple(sorted(relevant))

        all_symbols = [steady_symbol(name) for name in self.unknowns + tuple(model.parameters)]
        self._check = sp.lambdify(
            [all_symbols], sp.Matrix([eq.residual for eq in system]), modules=_MODULES
        )
        self._closed_forms: dict[int, tuple[Callable[..., object], ...]] = {}
        logger.debug(
            "Compiled steady-state program for '%s': %d blocks, relevant parameters %s",
            model.name,
            len(self.blocks),
            self.relevant_parameters,
        )

    def closed_form(self, block_id: int) -> tuple[Callable[..., object], ...]:
        """Closed-form candidate solutions of a block.

        Single-unknown blocks are always tried; blocks of up to
        ``_MAX_SYMBOLIC_BLOCK`` unknowns only when their numerators are
        polynomial in the unknowns.  Each candidate evaluates to the vector
        of block unknowns given the context values.
        """
        if block_id not in self._closed_forms:
            compiled = self.blocks[block_id]
            symbols = list(compiled.symbols)
            candidates: list[list[sp.Expr]] = []
            if _symbolic_candidate(compiled):
                try:
                    solutions = sp.solve(list(compiled.numerators), symbols, dict=True)
                except NotImplementedError:
                    logger.debug("No closed form for block %d", block_id)
                    solutions = []
                candidates = [
                    [sol[s] for s in symbols]
                    for sol in solutions
                    if all(s in sol and not sol[s].free_symbols & set(symbols) for s in symbols)
                ]
            ctx = [steady_symbol(name) for name in compiled.context]
            self._closed_forms[block_id] = tuple(
                sp.lambdify([ctx], candidate, modules=_MODULES) for candidate in candidates
            )
        return self._closed_forms[block_id]

    def residuals(self, values: Mapping[str, float]) -> Array:
        """Original residuals of the full steady-state system."""
        args = [values[name] for name in self.unknowns + tuple(self.model.parameters)]
        with np.errstate(all="ignore"):
            return np.asarray(self._check(args), dtype=float).reshape(-1)


def _symbolic_candidate(compiled: CompiledBlock) -> bool:
    if compiled.block.size == 1:
        return True
    if compiled.block.size > _MAX_SYMBOLIC_BLOCK:
        return False
    return all(expr.is_polynomial(*compiled.symbols) for expr in compiled.numerators)


def compile_steady_state(model: Model) -> SteadyStateProgram:
    return SteadyStateProgram(model)


def _interior(value: float, bound: Bound) -> float:
    """Move *value* strictly inside *bound*."""
    if bound.contains(value):
        return float(value)
    lo, hi = bound.lower, bound.upper
    if np.isfinite(lo) and np.isfinite(hi):
        return 0.5 * (lo + hi)
    if value <= lo:
        return lo + 0.1 * max(1.0, abs(lo))
    return hi - 0.1 * max(1.0, abs(hi))


def _evaluate(func: Callable[..., object], x: Array, context: Array, shape: tuple[int, ...]) -> Array:
    with np.errstate(all="ignore"):
        out = np.array(func(x, context), dtype=float)
    return out.reshape(shape)


class _BlockSolver:
    def __init__(
        self,
        compiled: CompiledBlock,
        context: Array,
        check_context: Array | None,
        options: SteadyStateOptions,
    ) -> None:
        self.compiled = compiled
        self.context = context
        self.check_context = check_context
        self.options = options
        self.n = compiled.block.size

    def residual(self, x: Array) -> Array:
        return _evaluate(self.compiled.residual, x, self.context, (self.n,))

    def jacobian(self, x: Array) -> Array:
        return _evaluate(self.compiled.jacobian, x, self.context, (self.n, self.n))

    def original(self, x: Array) -> float:
        if self.check_context is None:
            r = self.residual(x)
        else:
            r = _evaluate(self.compiled.original, x, self.check_context, (self.n,))
        return float(np.max(np.abs(r))) if np.all(np.isfinite(r)) else np.inf

    def acceptable(self, x: Array) -> tuple[bool, float]:
        if not np.all(np.isfinite(x)):
            return False, np.inf
        if not all(b.contains(v) for b, v in zip(self.compiled.bounds, x)):
            return False, self.original(x)
        res = self.original(x)
        return res <= self.options.tol, res

    def closed_form(self, funcs: tuple[Callable[..., object], ...]) -> tuple[Array | None, float]:
        best = np.inf
        for func in funcs:
            with np.errstate(all="ignore"):
                value = np.array(func(self.context), dtype=complex).reshape(-1)
            if np.any(np.abs(value.imag) > self.options.tol):
                continue
            x = value.real
            ok, res = self.acceptable(x)
            best = min(best, res)
            if ok:
                return x, res
        return None, best

    def linear(self, x0: Array) -> tuple[Array, float]:
        try:
            x = x0 - solve(self.jacobian(x0), self.residual(x0))
        except (LinAlgError, ValueError):
            return x0, np.inf
        return x, self.acceptable(x)[1]

    def nonlinear(self, x0: Array) -> tuple[Array, float, int]:
        lower = np.array([b.lower for b in self.compiled.bounds])
        upper = np.array([b.upper for b in self.compiled.bounds])
        try:
            result = least_squares(
                self.residual,
                x0,
                jac=self.jacobian,
                bounds=(lower, upper),
                method="trf",
                xtol=1e-14,
                ftol=1e-14,
                gtol=1e-14,
                max_nfev=self.options.max_nfev,
            )
        except ValueError as exc:
            logger.debug("least_squares failed in block %d: %s", self.compiled.block.index, exc)
            return x0, np.inf, 0
        return result.x, self.acceptable(result.x)[1], int(result.nfev)


def solve_steady_state(
    model: Model,
    parameters: Mapping[str, float] | None = None,
    *,
    options: SteadyStateOptions | None = None,
    initial_guess: Mapping[str, float] | None = None,
    cache: "SteadyStateCache | None" = None,
) -> SteadyStateResult:
    """Solve the non-stochastic steady state of *model*.

    Parameters
    ----------
    model : Model
        Canonical model.
    parameters : Mapping[str, float] or None
        Overrides of free parameter values.
    options : SteadyStateOptions or None
        Tolerance, iteration caps, restarts and symbolic mode.
    initial_guess : Mapping[str, float] or None
        Starting values for variables and calibrated parameters.  Missing
        names default to 1.0 moved inside their bounds.
    cache : SteadyStateCache or None
        Caller-owned cache of previous solutions.

    Returns
    -------
    SteadyStateResult
        The solved steady state.

    Raises
    ------
    SteadyStateError
        If a block cannot be solved to tolerance within its bounds or the
        final check on the original equations fails.
    ValueError
        If *parameters* names a calibrated or unknown parameter.
    """
    options = options or SteadyStateOptions()
    values = model.parameter_values(parameters)
    program: SteadyStateProgram = model.steady_state_program

    guess: dict[str, float] = {}
    if cache is not None:
        cached, previous = cache.lookup(model, values, options)
        if cached is not None:
            logger.debug("Steady state of '%s' served from cache", model.name)
            return cached
        guess.update(previous or {})
    guess.update(initial_guess or {})
    unknown = set(guess) - set(program.unknowns)
    if unknown:
        raise ValueError(f"initial_guess names unknown symbols {sorted(unknown)}")

    known: dict[str, float] = dict(values)
    records = []
    for compiled in program.blocks:
        block = compiled.block
        context = np.array([known[name] for name in compiled.context], dtype=float)
        check_context = None
        if all(name in known for name in compiled.check_context):
            check_context = np.array([known[name] for name in compiled.check_context], dtype=float)
        else:
            logger.debug(
                "Block %d: original equations checked after the last block", block.index
            )
        solver = _BlockSolver(compiled, context, check_context, options)
        base = np.array(
            [guess.get(name, 1.0) for name in block.unknowns], dtype=float
        )

        x: Array | None = None
        residual = np.inf
        last = base
        method = block.kind
        nfev = 0
        attempt = 0
        if options.symbolic and _symbolic_candidate(compiled):
            x, residual = solver.closed_form(program.closed_form(block.index))
            method = "symbolic"
            if x is None:
                logger.debug("Block %d: no admissible closed-form candidate", block.index)
        while x is None and attempt <= options.restarts:
            scale = 1.0 if attempt == 0 else _RESTART_SCALES[(attempt - 1) % len(_RESTART_SCALES)]
            if attempt > 0:
                logger.warning(
                    "Steady-state block %d (%s) failed with residual %.3e; restart %d/%d",
                    block.index,
                    ", ".join(block.unknowns),
                    residual,
                    attempt,
                    options.restarts,
                )
            x0 = np.array([_interior(scale * v, b) for v, b in zip(base, compiled.bounds)])
            if block.kind == "linear":
                method = "linear"
                candidate, residual = solver.linear(x0)
                nfev += 1
            else:
                method = "least_squares"
                candidate, residual, used = solver.nonlinear(x0)
                nfev += used
            last = candidate
            if solver.acceptable(candidate)[0]:
                x = candidate
            attempt += 1

        if x is None:
            raise SteadyStateError(
                f"Steady-state block {block.index} ({', '.join(block.unknowns)}) "
                f"did not converge",
                block_id=block.index,
                last_residual=residual,
                last_guess=dict(zip(block.unknowns, map(float, last))),
            )

        known.update(zip(block.unknowns, map(float, x)))
        records.append(
            BlockSolveRecord(
                block_id=block.index,
                unknowns=block.unknowns,
                method=method,
                residual=residual,
                nfev=nfev,
                restarts=max(attempt - 1, 0),
            )
        )
        logger.debug(
            "Block %d (%s) solved by %s, residual %.3e",
            block.index,
            ", ".join(block.unknowns),
            method,
            residual,
        )

    residuals = program.residuals(known)
    max_residual = float(np.max(np.abs(residuals))) if residuals.size else 0.0
    if not np.isfinite(max_residual) or max_residual > options.tol:
        worst = int(np.argmax(np.where(np.isfinite(residuals), np.abs(residuals), np.inf)))
        raise SteadyStateError(
            f"Steady-state equation {worst} violated after block solve",
            block_id=program.structure.block_of_equation(worst),
            last_residual=max_residual,
            last_guess={name: known[name] for name in program.unknowns},
        )

    result = SteadyStateResult(
        variables=model.variable_names,
        values=np.array([known[name] for name in model.variable_names]),
        calibrated={name: known[name] for name in model.calibrated_parameters},
        parameters=values,
        blocks=tuple(records),
        max_residual=max_residual,
    )
    if cache is not None:
        cache.store(model, values, result, options)
    logger.info("Steady state of '%s' solved (max residual %.3e)", model.name, max_residual)
    return result


_CacheKey = tuple[SteadyStateOptions, tuple[tuple[str, float], ...]]


class SteadyStateCache:
    """Caller-owned cache of steady-state solutions of one model structure.

    Entries are keyed by the values of the parameters the steady state
    depends on and by the solver options, so a result is never served to a
    request with a tighter tolerance or a different solution mode.  The
    cache is cleared when it sees a model with a different structural
    signature.

    Parameters
    ----------
    maxsize : int
        Maximum number of retained solutions (least recently used dropped).
    """

    def __init__(self, maxsize: int = 128) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self.maxsize = maxsize
        self.hits = 0
        self.misses = 0
        self._signature: str | None = None
        self._entries: OrderedDict[_CacheKey, SteadyStateResult] = OrderedDict()
        self._latest: SteadyStateResult | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()
        self._latest = None
        self._signature = None

    def _key(
        self, model: Model, values: Mapping[str, float], options: SteadyStateOptions
    ) -> _CacheKey:
        if model.signature != self._signature:
            self.clear()
            self._signature = model.signature
        program: SteadyStateProgram = model.steady_state_program
        return options, tuple((name, float(values[name])) for name in program.relevant_parameters)

    def lookup(
        self,
        model: Model,
        values: Mapping[str, float],
        options: SteadyStateOptions | None = None,
    ) -> tuple[SteadyStateResult | None, dict[str, float] | None]:
        """Exact match, or the most recent solution as a starting point.

        Returns ``(result, None)`` on a hit and ``(None, guess)`` on a miss,
        where ``guess`` is ``None`` when the cache is empty.
        """
        key = self._key(model, values, options or SteadyStateOptions())
        if key in self._entries:
            self.hits += 1
            self._entries.move_to_end(key)
            cached = self._entries[key]
            if dict(cached.parameters) == dict(values):
                return cached, None
            return _with_parameters(cached, values), None
        self.misses += 1
        if self._latest is None:
            return None, None
        return None, self._latest.as_dict()

    def store(
        self,
        model: Model,
        values: Mapping[str, float],
        result: SteadyStateResult,
        options: SteadyStateOptions | None = None,
    ) -> None:
        key = self._key(model, values, options or SteadyStateOptions())
        self._entries[key] = result
        self._entries.move_to_end(key)
        self._latest = result
        while len(self._entries) > self.maxsize:
            self._entries.popitem(last=False)


def _with_parameters(result: SteadyStateResult, values: Mapping[str, float]) -> SteadyStateResult:
    return SteadyStateResult(
        variables=result.variables,
        values=result.values,
        calibrated=result.calibrated,
        parameters=values,
        blocks=result.blocks,
        max_residual=result.max_residual,
    )
