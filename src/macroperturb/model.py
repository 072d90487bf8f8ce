"""Canonical model representation.

A :class:`Model` is the output of the Equation Normalizer: every equation is
a sympy residual expression (``lhs - rhs``) over *timed symbols*, one symbol
per (variable, offset) pair with offsets restricted to ``{-1, 0, 1}``, plus
shock symbols, steady-state reference symbols and parameter symbols.

The model is immutable.  Structural artifacts derived from it (timing map,
dependency sets, steady-state system, block structure, compiled derivative
and steady-state functions) are computed lazily, once, and attached to the
instance; they depend only on the equations, never on parameter values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import cached_property
import hashlib
import math
from types import MappingProxyType
from typing import Any, Mapping

import sympy as sp

from .timing import Timings, build_timings

VARIABLE_KINDS = ("endogenous", "auxiliary")


def _time_tag(offset: int) -> str:
    if offset == 0:
        return "t0"
    return f"tm{-offset}" if offset < 0 else f"tp{offset}"


def timed_symbol(name: str, offset: int) -> sp.Symbol:
    """Symbol standing for variable *name* at period ``t + offset``."""
    return sp.Symbol(f"{name}__{_time_tag(offset)}", real=True)


def shock_symbol(name: str) -> sp.Symbol:
    """Symbol standing for the realisation of shock *name* at period ``t``."""
    return sp.Symbol(f"{name}__shock", real=True)


def ss_symbol(name: str) -> sp.Symbol:
    """Symbol bound to the steady-state value of variable *name*."""
    return sp.Symbol(f"{name}__ss", real=True)


def steady_symbol(name: str) -> sp.Symbol:
    """Time-invariant symbol used for *name* in the steady-state system.

    Parameters share this naming scheme; names are unique across
    variables and parameters.
    """
    return sp.Symbol(name, real=True)


parameter_symbol = steady_symbol


@dataclass(frozen=True)
class Variable:
    """An endogenous or auxiliary variable of the canonical system.

    Attributes
    ----------
    name : str
        Variable name.
    kind : str
        ``"endogenous"`` for user variables, ``"auxiliary"`` for variables
        synthesised by the lead/lag expansion.
    offsets : tuple of int
        Sorted offsets (subset of ``{-1, 0, 1}``) the variable appears with.
    """

    name: str
    kind: str
    offsets: tuple[int, ...]

    @property
    def present(self) -> bool:
        return 0 in self.offsets


@dataclass(frozen=True)
class Equation:
    index: int
    text: str
    residual: sp.Expr
    is_auxiliary: bool = False


@dataclass(frozen=True)
class CalibrationEquation:
    """Steady-state target that pins down a calibrated parameter.

    ``residual`` is ``target - value`` written over steady-state symbols of
    variables and parameter symbols.
    """

    parameter: str
    text: str
    residual: sp.Expr


@dataclass(frozen=True)
class Bound:
    lower: float = -math.inf
    upper: float = math.inf
    strict_lower: bool = True
    strict_upper: bool = True

    def contains(self, value: float) -> bool:
        lower_ok = value > self.lower if self.strict_lower else value >= self.lower
        upper_ok = value < self.upper if self.strict_upper else value <= self.upper
        return bool(lower_ok and upper_ok)

    def intersect(self, other: "Bound") -> "Bound":
        """Tightest bound implied by both *self* and *other*."""
        if self.lower > other.lower:
            lower, strict_lower = self.lower, self.strict_lower
        elif other.lower > self.lower:
            lower, strict_lower = other.lower, other.strict_lower
        else:
            lower, strict_lower = self.lower, self.strict_lower or other.strict_lower
        if self.upper < other.upper:
            upper, strict_upper = self.upper, self.strict_upper
        elif other.upper < self.upper:
            upper, strict_upper = other.upper, other.strict_upper
        else:
            upper, strict_upper = self.upper, self.strict_upper or other.strict_upper
        return Bound(lower, upper, strict_lower, strict_upper)


@dataclass(frozen=True)
class SteadyStateEquation:
    """One equation of the steady-state system.

    ``residual`` is the equation with every timed reference collapsed to its
    steady-state symbol and shocks set to zero; ``numerator`` is the
    numerator of ``residual`` over a common denominator and is what the
    block analyzer and the steady-state solver work with.
    """

    index: int
    label: str
    residual: sp.Expr
    numerator: sp.Expr
    is_calibration: bool = False


@dataclass(frozen=True, eq=False)
class Model:
    """Canonical DSGE model produced by :func:`macroperturb.parser.parse_model`.

    Attributes
    ----------
    name : str
        Model name (used in logs and serialized output).
    equations : tuple of Equation
        Canonical equations including auxiliary identities.
    variables : tuple of Variable
        Endogenous and auxiliary variables sorted by name.
    shocks : tuple of str
        Exogenous shocks sorted by name.
    parameters : Mapping[str, float]
        Free parameter values sorted by name.
    calibrations : tuple of CalibrationEquation
        Calibration equations sorted by parameter name.
    bounds : Mapping[str, Bound]
        Declared bounds on variables and calibrated parameters.
    """

    name: str
    equations: tuple[Equation, ...]
    variables: tuple[Variable, ...]
    shocks: tuple[str, ...]
    parameters: Mapping[str, float]
    calibrations: tuple[CalibrationEquation, ...] = ()
    bounds: Mapping[str, Bound] = field(default_factory=dict)

    def __post_init__(self) -> None:
        names = [var.name for var in self.variables]
        if names != sorted(names) or len(set(names)) != len(names):
            raise ValueError("variables must be unique and sorted by name")
        for var in self.variables:
            if var.kind not in VARIABLE_KINDS:
                raise ValueError(f"Unknown variable kind '{var.kind}' for '{var.name}'")
        if list(self.shocks) != sorted(set(self.shocks)):
            raise ValueError("shocks must be unique and sorted by name")
        n_unknowns = len(self.variables) + len(self.calibrations)
        n_equations = len(self.equations) + len(self.calibrations)
        if n_unknowns != n_equations:
            raise ValueError(
                f"Model has {n_equations} equations for {n_unknowns} unknowns"
            )
        object.__setattr__(
            self,
            "parameters",
            MappingProxyType({k: float(self.parameters[k]) for k in sorted(self.parameters)}),
        )
        object.__setattr__(self, "bounds", MappingProxyType(dict(self.bounds)))

    @property
    def variable_names(self) -> tuple[str, ...]:
        return tuple(var.name for var in self.variables)

    @property
    def calibrated_parameters(self) -> tuple[str, ...]:
        return tuple(cal.parameter for cal in self.calibrations)

    @property
    def parameter_names(self) -> tuple[str, ...]:
        """Free parameters followed by calibrated parameters."""
        return tuple(self.parameters) + self.calibrated_parameters

    @property
    def n_variables(self) -> int:
        return len(self.variables)

    @property
    def n_shocks(self) -> int:
        return len(self.shocks)

    def parameter_values(self, overrides: Mapping[str, float] | None = None) -> dict[str, float]:
        """Free parameter values with *overrides* applied.

        Raises
        ------
        ValueError
            If an override names a calibrated or unknown parameter.
        """
        values = dict(self.parameters)
        for name, value in (overrides or {}).items():
            if name in self.calibrated_parameters:
                raise ValueError(
                    f"Parameter '{name}' is calibrated; change its target value instead"
                )
            if name not in values:
                raise ValueError(f"Unknown parameter '{name}'")
            values[name] = float(value)
        return values

    @cached_property
    def symbol_table(self) -> Mapping[sp.Symbol, tuple[str, Any]]:
        """Map every dynamic symbol to ``(name, offset)``.

        ``offset`` is an integer for timed symbols, ``"x"`` for shocks and
        ``"ss"`` for steady-state references.
        """
        table: dict[sp.Symbol, tuple[str, Any]] = {}
        for var in self.variables:
            for offset in (-1, 0, 1):
                table[timed_symbol(var.name, offset)] = (var.name, offset)
            table[ss_symbol(var.name)] = (var.name, "ss")
        for shock in self.shocks:
            table[shock_symbol(shock)] = (shock, "x")
        return MappingProxyType(table)

    @cached_property
    def dependencies(self) -> tuple[frozenset[sp.Symbol], ...]:
        """Minimal set of timed and shock symbols each equation depends on."""
        table = self.symbol_table
        deps = []
        for eq in self.equations:
            deps.append(
                frozenset(
                    sym
                    for sym in eq.residual.free_symbols
                    if sym in table and table[sym][1] != "ss"
                )
            )
        return tuple(deps)

    @cached_property
    def timings(self) -> Timings:
        return build_timings(self.variables, self.shocks)

    @cached_property
    def steady_state_system(self) -> tuple[SteadyStateEquation, ...]:
        """Dynamic equations followed by calibration equations, at steady state."""
        collapse: dict[sp.Symbol, sp.Expr] = {}
        for sym, (name, offset) in self.symbol_table.items():
            collapse[sym] = sp.Integer(0) if offset == "x" else steady_symbol(name)

        system = []
        for eq in self.equations:
            residual = eq.residual.xreplace(collapse)
            system.append(
                SteadyStateEquation(
                    index=eq.index,
                    label=eq.text,
                    residual=residual,
                    numerator=sp.fraction(sp.together(residual))[0],
                )
            )
        offset = len(self.equations)
        for i, cal in enumerate(self.calibrations):
            system.append(
                SteadyStateEquation(
                    index=offset + i,
                    label=cal.text,
                    residual=cal.residual,
                    numerator=sp.fraction(sp.together(cal.residual))[0],
                    is_calibration=True,
                )
            )
        return tuple(system)

    @cached_property
    def block_structure(self):
        from .blocks import analyze_blocks

        return analyze_blocks(self)

    @cached_property
    def steady_state_program(self):
        from .steady_state import compile_steady_state

        return compile_steady_state(self)

    @cached_property
    def derivative_evaluator(self):
        from .derivatives import DerivativeEvaluator

        return DerivativeEvaluator(self)

    @cached_property
    def signature(self) -> str:
        """Hash of the equation set; changes whenever the structure changes."""
        digest = hashlib.sha256()
        for eq in self.equations:
            digest.update(sp.srepr(eq.residual).encode("utf-8"))
        for cal in self.calibrations:
            digest.update(cal.parameter.encode("utf-8"))
            digest.update(sp.srepr(cal.residual).encode("utf-8"))
        for name in sorted(self.bounds):
            digest.update(f"{name}:{self.bounds[name]!r}".encode("utf-8"))
        digest.update(",".join(self.shocks).encode("utf-8"))
        return digest.hexdigest()
