"""Equation Normalizer: model text to canonical :class:`~macroperturb.model.Model`.

Equations are written with explicit timing, ``name[offset]``::

    y[0] = A[0] * k[-1]^alpha
    1/c[0] = beta * 1/c[1] * (alpha * A[1] * k[0]^(alpha - 1) + (1 - delta))
    A[0] = 1 - rhoz + rhoz * A[-1] + std_eps * eps_z[x]

where ``offset`` is an integer, ``ss`` (a reference to the steady-state
value) or ``x``/``x+k``/``x-k`` for exogenous shocks.  The parameter
specification is a sequence of lines::

    alpha = 0.157                       # free parameter
    beta | R[ss] = R_ss                 # calibrated parameter
    0 < k < 100                         # bounds

References beyond ``{-1, 0, 1}`` are rewritten through chains of auxiliary
variables and identity equations, so that the canonical system only ever
looks one period back and one period ahead.  Shocks with a nonzero offset are
first routed through an auxiliary endogenous copy of the shock.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from tokenize import TokenError
from typing import Callable, Iterable, Mapping, Sequence

import sympy as sp
from sympy.parsing.sympy_parser import auto_number, parse_expr

from .exceptions import ParseError
from .model import (
    Bound,
    CalibrationEquation,
    Equation,
    Model,
    Variable,
    parameter_symbol,
    shock_symbol,
    ss_symbol,
    steady_symbol,
    timed_symbol,
)

logger = logging.getLogger(__name__)

_REFERENCE = re.compile(r"(?<![\w.])([A-Za-z_]\w*)\s*\[([^\[\]]*)\]")
_INT_OFFSET = re.compile(r"^([+-]?)\s*(\d+)$")
_SS_OFFSET = re.compile(r"^(?:ss|stst|steady|steadystate)$", re.IGNORECASE)
_SHOCK_OFFSET = re.compile(
    r"^(?:x|ex|exo|exog|exogenous)(?:\s*([+-])\s*(\d+))?$", re.IGNORECASE
)
_IDENTIFIER = re.compile(r"(?<![\w.])([A-Za-z_]\w*)(\s*\()?")
_NAME = re.compile(r"^[A-Za-z_]\w*$")
_COMPARISON = re.compile(r"(<=|>=|<|>)")
_COMMENT = re.compile(r"(#|%|//).*$")


def _normcdf(x: sp.Expr) -> sp.Expr:
    return (1 + sp.erf(x / sp.sqrt(2))) / 2


def _normpdf(x: sp.Expr) -> sp.Expr:
    return sp.exp(-(x**2) / 2) / sp.sqrt(2 * sp.pi)


def _norminvcdf(p: sp.Expr) -> sp.Expr:
    return sp.sqrt(2) * sp.erfinv(2 * p - 1)


def _normlogpdf(x: sp.Expr) -> sp.Expr:
    return -(x**2) / 2 - sp.log(2 * sp.pi) / 2


FUNCTIONS: Mapping[str, Callable[..., sp.Expr]] = {
    "exp": sp.exp,
    "log": sp.log,
    "sqrt": sp.sqrt,
    "abs": sp.Abs,
    "min": sp.Min,
    "max": sp.Max,
    "sin": sp.sin,
    "cos": sp.cos,
    "tan": sp.tan,
    "erf": sp.erf,
    "erfc": sp.erfc,
    "erfcinv": sp.erfcinv,
    "normcdf": _normcdf,
    "pnorm": _normcdf,
    "normpdf": _normpdf,
    "dnorm": _normpdf,
    "norminvcdf": _norminvcdf,
    "norminv": _norminvcdf,
    "qnorm": _norminvcdf,
    "normlogpdf": _normlogpdf,
}

_GLOBALS = {"Integer": sp.Integer, "Float": sp.Float, "Rational": sp.Rational}


@dataclass(frozen=True)
class Reference:
    """A ``name[offset]`` occurrence in model text.

    ``kind`` is ``"endogenous"``, ``"shock"`` or ``"ss"``; ``offset`` is the
    integer period shift (0 for ``ss``).
    """

    name: str
    kind: str
    offset: int


@dataclass(frozen=True)
class ParsedEquation:
    index: int
    text: str
    residual: sp.Expr
    references: Mapping[str, Reference]


@dataclass(frozen=True)
class ParameterSpec:
    """Parsed parameter specification.

    Attributes
    ----------
    values : dict
        Free parameter values in declaration order.
    calibrations : tuple
        ``(parameter, target_text, value_text, line)`` per calibrated parameter.
    bounds : dict
        Declared bounds keyed by variable or parameter name.
    """

    values: dict[str, float]
    calibrations: tuple[tuple[str, str, str, str], ...]
    bounds: dict[str, Bound]


def _time_tag(offset: int) -> str:
    if offset == 0:
        return "t0"
    return f"tm{-offset}" if offset < 0 else f"tp{offset}"


def _placeholder(ref: Reference) -> str:
    if ref.kind == "ss":
        return ss_symbol(ref.name).name
    if ref.kind == "shock":
        if ref.offset == 0:
            return shock_symbol(ref.name).name
        return f"{ref.name}__shock{_time_tag(ref.offset)}"
    return timed_symbol(ref.name, ref.offset).name


def _classify(name: str, token: str, *, index: int | None, text: str) -> Reference:
    token = token.strip()
    match = _INT_OFFSET.match(token)
    if match:
        sign, digits = match.groups()
        return Reference(name, "endogenous", -int(digits) if sign == "-" else int(digits))
    if _SS_OFFSET.match(token):
        return Reference(name, "ss", 0)
    match = _SHOCK_OFFSET.match(token)
    if match:
        sign, digits = match.groups()
        offset = 0 if digits is None else int(digits)
        return Reference(name, "shock", -offset if sign == "-" else offset)
    raise ParseError(
        f"malformed time index '{name}[{token}]'", equation_index=index, text=text
    )


def _substitute_references(
    text: str, *, index: int | None
) -> tuple[str, dict[str, Reference]]:
    references: dict[str, Reference] = {}

    def replace(match: re.Match[str]) -> str:
        ref = _classify(match.group(1), match.group(2), index=index, text=text)
        placeholder = _placeholder(ref)
        references[placeholder] = ref
        return f" {placeholder} "

    out = _REFERENCE.sub(replace, text)
    if "[" in out or "]" in out:
        raise ParseError("unbalanced or nested brackets", equation_index=index, text=text)
    return out, references


def _sympify(
    text: str,
    symbols: Mapping[str, sp.Symbol],
    *,
    index: int | None,
    source: str,
) -> sp.Expr:
    text = text.replace("^", "**")
    if not text.strip():
        raise ParseError("empty expression", equation_index=index, text=source)
    for match in _IDENTIFIER.finditer(text):
        ident, call = match.groups()
        if call:
            if ident not in FUNCTIONS:
                raise ParseError(
                    f"unknown function '{ident}'", equation_index=index, text=source
                )
        elif ident not in symbols:
            raise ParseError(
                f"undeclared symbol '{ident}'", equation_index=index, text=source
            )

    local_dict: dict[str, object] = dict(FUNCTIONS)
    local_dict.update(symbols)
    try:
        expr = parse_expr(
            text,
            local_dict=local_dict,
            global_dict=dict(_GLOBALS),
            transformations=(auto_number,),
        )
    except (SyntaxError, TokenError, TypeError, ValueError, NameError, sp.SympifyError) as exc:
        raise ParseError(
            f"cannot tokenize expression ({exc})", equation_index=index, text=source
        ) from exc
    if not isinstance(expr, sp.Expr):
        raise ParseError("not an algebraic expression", equation_index=index, text=source)
    return expr


def parse_equation(
    text: str, *, parameters: Iterable[str] = (), index: int | None = None
) -> ParsedEquation:
    """Parse one equation into a residual ``lhs - rhs``.

    Timed references are replaced by placeholder symbols (one per
    (name, offset) pair), recorded in ``references``.  Every bare identifier
    must be one of *parameters* or a known function.

    Raises
    ------
    ParseError
        On malformed time indices, undeclared symbols, unknown functions,
        more than one ``=`` or untokenizable text.
    """
    sides = text.split("=")
    if len(sides) > 2:
        raise ParseError("more than one '=' in equation", equation_index=index, text=text)
    lhs, rhs = (sides[0], sides[1]) if len(sides) == 2 else (sides[0], "0")

    references: dict[str, Reference] = {}
    exprs = []
    for side in (lhs, rhs):
        substituted, refs = _substitute_references(side, index=index)
        references.update(refs)
        symbols = {name: parameter_symbol(name) for name in parameters}
        symbols.update({name: sp.Symbol(name, real=True) for name in references})
        exprs.append(_sympify(substituted, symbols, index=index, source=text))
    return ParsedEquation(
        index=-1 if index is None else index,
        text=text.strip(),
        residual=exprs[0] - exprs[1],
        references=references,
    )


def _split_statements(source: str | Sequence[str]) -> list[str]:
    chunks = source.splitlines() if isinstance(source, str) else list(source)
    out = []
    for chunk in chunks:
        for piece in _COMMENT.sub("", chunk).split(";"):
            if piece.strip():
                out.append(piece.strip())
    return out


def _number(text: str, *, line: str) -> float:
    expr = _sympify(text, {}, index=None, source=line)
    if not expr.is_number:
        raise ParseError("expected a numeric value", text=line)
    return float(expr)


def _parse_bound(line: str) -> tuple[str, Bound]:
    parts = [part.strip() for part in _COMPARISON.split(line)]
    if len(parts) == 3:
        left, op, right = parts
        if _NAME.match(left):
            name, value = left, _number(right, line=line)
            if op.startswith("<"):
                return name, Bound(upper=value, strict_upper=op == "<")
            return name, Bound(lower=value, strict_lower=op == ">")
        if _NAME.match(right):
            name, value = right, _number(left, line=line)
            if op.startswith("<"):
                return name, Bound(lower=value, strict_lower=op == "<")
            return name, Bound(upper=value, strict_upper=op == ">")
    elif len(parts) == 5 and _NAME.match(parts[2]):
        left, op1, name, op2, right = parts
        lo, hi = _number(left, line=line), _number(right, line=line)
        if op1.startswith("<") and op2.startswith("<"):
            return name, Bound(lo, hi, strict_lower=op1 == "<", strict_upper=op2 == "<")
        if op1.startswith(">") and op2.startswith(">"):
            return name, Bound(hi, lo, strict_lower=op2 == ">", strict_upper=op1 == ">")
    raise ParseError("malformed bound declaration", text=line)


def parse_parameters(
    spec: Mapping[str, float] | Sequence[str] | str | None,
) -> ParameterSpec:
    """Parse free values, calibration equations and bounds.

    *spec* is either a plain ``{name: value}`` mapping or parameter lines
    (a sequence of strings or one multi-line string).
    """
    values: dict[str, float] = {}
    calibrations: dict[str, tuple[str, str, str, str]] = {}
    bounds: dict[str, Bound] = {}
    if spec is None:
        return ParameterSpec(values, (), bounds)
    if isinstance(spec, Mapping):
        for name, value in spec.items():
            if not _NAME.match(name):
                raise ParseError(f"invalid parameter name '{name}'")
            values[name] = float(value)
        return ParameterSpec(values, (), bounds)

    for line in _split_statements(spec):
        if "|" in line:
            name, _, rest = line.partition("|")
            name = name.strip()
            sides = rest.split("=")
            if not _NAME.match(name) or len(sides) != 2:
                raise ParseError("malformed calibration equation", text=line)
            if name in calibrations or name in values:
                raise ParseError(f"parameter '{name}' defined twice", text=line)
            calibrations[name] = (name, sides[0].strip(), sides[1].strip(), line)
        elif _COMPARISON.search(line):
            name, bound = _parse_bound(line)
            bounds[name] = bounds[name].intersect(bound) if name in bounds else bound
        elif "=" in line:
            name, _, value = line.partition("=")
            name = name.strip()
            if not _NAME.match(name):
                raise ParseError(f"invalid parameter name '{name}'", text=line)
            if name in values or name in calibrations:
                raise ParseError(f"parameter '{name}' defined twice", text=line)
            values[name] = _number(value, line=line)
        else:
            raise ParseError("unrecognised parameter statement", text=line)
    return ParameterSpec(values, tuple(calibrations.values()), bounds)


class _AuxiliaryChains:
    """Rewrite rule for references outside ``{-1, 0, 1}``.

    ``y[k]`` (k > 1) becomes ``y__lead{k-1}[1]`` with identities
    ``y__lead1[0] = y[1]`` and ``y__lead{j}[0] = y__lead{j-1}[1]``;
    lags mirror this with ``__lag``.  A shock ``e[x+-k]`` becomes the
    auxiliary variable ``e__x`` (``e__x[0] = e[x]``) at offset ``+-k``.
    """

    def __init__(self) -> None:
        self.leads: dict[str, int] = {}
        self.lags: dict[str, int] = {}
        self.shock_copies: set[str] = set()

    def symbol_for(self, ref: Reference) -> sp.Symbol:
        if ref.kind == "ss":
            return ss_symbol(ref.name)
        if ref.kind == "shock":
            if ref.offset == 0:
                return shock_symbol(ref.name)
            self.shock_copies.add(ref.name)
            return self._timed(f"{ref.name}__x", ref.offset)
        return self._timed(ref.name, ref.offset)

    def _timed(self, name: str, offset: int) -> sp.Symbol:
        if -1 <= offset <= 1:
            return timed_symbol(name, offset)
        if offset > 1:
            self.leads[name] = max(self.leads.get(name, 0), offset - 1)
            return timed_symbol(f"{name}__lead{offset - 1}", 1)
        self.lags[name] = max(self.lags.get(name, 0), -offset - 1)
        return timed_symbol(f"{name}__lag{-offset - 1}", -1)

    def identities(self) -> list[tuple[str, str, sp.Expr]]:
        """``(auxiliary name, text, residual)`` for every synthesised identity."""
        out = []
        for shock in sorted(self.shock_copies):
            aux = f"{shock}__x"
            out.append(
                (aux, f"{aux}[0] = {shock}[x]", timed_symbol(aux, 0) - shock_symbol(shock))
            )
        for chains, tag, step in ((self.leads, "lead", 1), (self.lags, "lag", -1)):
            for name in sorted(chains):
                for j in range(1, chains[name] + 1):
                    prev = name if j == 1 else f"{name}__{tag}{j - 1}"
                    aux = f"{name}__{tag}{j}"
                    out.append(
                        (
                            aux,
                            f"{aux}[0] = {prev}[{step}]",
                            timed_symbol(aux, 0) - timed_symbol(prev, step),
                        )
                    )
        return out


def parse_model(
    equations: Sequence[str] | str,
    parameters: Mapping[str, float] | Sequence[str] | str | None = None,
    *,
    name: str = "model",
) -> Model:
    """Normalize model text into a canonical :class:`Model`.

    Parameters
    ----------
    equations : sequence of str or str
        Equation strings (a single string is split on newlines and ``;``).
    parameters : mapping, sequence of str, str or None
        Parameter values, calibration equations and bounds; see
        :func:`parse_parameters`.
    name : str
        Model name.

    Returns
    -------
    Model
        Canonical model with variables, shocks and parameters sorted by name.

    Raises
    ------
    ParseError
        On any malformed or inconsistent input, including a mismatch between
        the number of equations and the number of unknowns.
    """
    texts = _split_statements(equations)
    if not texts:
        raise ParseError("model has no equations")
    spec = parse_parameters(parameters)
    calibrated = {cal[0] for cal in spec.calibrations}
    parameter_names = set(spec.values) | calibrated

    parsed = [
        parse_equation(text, parameters=parameter_names, index=i)
        for i, text in enumerate(texts)
    ]

    endogenous: set[str] = set()
    shocks: set[str] = set()
    for eq in parsed:
        for ref in eq.references.values():
            if ref.kind == "endogenous":
                endogenous.add(ref.name)
            elif ref.kind == "shock":
                shocks.add(ref.name)
    for eq in parsed:
        for ref in eq.references.values():
            if ref.kind == "ss" and ref.name not in endogenous:
                raise ParseError(
                    f"steady-state reference to undeclared variable '{ref.name}'",
                    equation_index=eq.index,
                    text=eq.text,
                )
    if endogenous & shocks:
        raise ParseError(
            f"names used both as variable and shock: {sorted(endogenous & shocks)}"
        )
    if (endogenous | shocks) & parameter_names:
        raise ParseError(
            "names used both as variable and parameter: "
            f"{sorted((endogenous | shocks) & parameter_names)}"
        )

    chains = _AuxiliaryChains()
    canonical: list[Equation] = []
    for eq in parsed:
        mapping = {
            sp.Symbol(placeholder, real=True): chains.symbol_for(ref)
            for placeholder, ref in eq.references.items()
        }
        canonical.append(
            Equation(index=eq.index, text=eq.text, residual=eq.residual.xreplace(mapping))
        )

    auxiliary: set[str] = set()
    for aux, text, residual in chains.identities():
        if aux in endogenous or aux in shocks or aux in parameter_names:
            raise ParseError(f"auxiliary variable name '{aux}' clashes with a declared name")
        auxiliary.add(aux)
        canonical.append(
            Equation(index=len(canonical), text=text, residual=residual, is_auxiliary=True)
        )

    used = set().union(*(eq.residual.free_symbols for eq in canonical))
    variables = tuple(
        Variable(
            name=var,
            kind="auxiliary" if var in auxiliary else "endogenous",
            offsets=tuple(o for o in (-1, 0, 1) if timed_symbol(var, o) in used),
        )
        for var in sorted(endogenous | auxiliary)
    )
    if len(canonical) != len(variables):
        raise ParseError(
            f"{len(canonical)} equations (including auxiliary identities) for "
            f"{len(variables)} endogenous variables"
        )

    variable_names = {var.name for var in variables}
    calibrations = tuple(
        _calibration(cal, variable_names, parameter_names)
        for cal in sorted(spec.calibrations)
    )

    for bound_name in spec.bounds:
        if bound_name not in variable_names and bound_name not in parameter_names:
            raise ParseError(f"bound declared for unknown name '{bound_name}'")

    for cal in calibrations:
        used |= cal.residual.free_symbols
    unused = [p for p in spec.values if parameter_symbol(p) not in used]
    if unused:
        logger.warning("Parameters declared but not used: %s", ", ".join(unused))

    model = Model(
        name=name,
        equations=tuple(canonical),
        variables=variables,
        shocks=tuple(sorted(shocks)),
        parameters=spec.values,
        calibrations=calibrations,
        bounds=spec.bounds,
    )
    logger.debug(
        "Parsed model '%s': %d variables (%d auxiliary), %d shocks, %d calibrated parameters",
        name,
        model.n_variables,
        len(auxiliary),
        model.n_shocks,
        len(calibrations),
    )
    return model


def _calibration(
    cal: tuple[str, str, str, str],
    variables: set[str],
    parameters: set[str],
) -> CalibrationEquation:
    parameter, target, value, line = cal
    exprs = []
    for side in (target, value):
        substituted, refs = _substitute_references(side, index=None)
        symbols = {name: parameter_symbol(name) for name in parameters}
        for placeholder, ref in refs.items():
            if ref.kind == "shock" or ref.offset != 0:
                raise ParseError(
                    f"calibration targets may only use steady-state references, got '{ref.name}'",
                    text=line,
                )
            if ref.name not in variables:
                raise ParseError(f"undeclared variable '{ref.name}'", text=line)
            symbols[placeholder] = sp.Symbol(placeholder, real=True)
        expr = _sympify(substituted, symbols, index=None, source=line)
        expr = expr.xreplace(
            {sp.Symbol(p, real=True): steady_symbol(ref.name) for p, ref in refs.items()}
        )
        exprs.append(expr)
    return CalibrationEquation(parameter=parameter, text=line, residual=exprs[0] - exprs[1])


__all__ = [
    "FUNCTIONS",
    "ParameterSpec",
    "ParsedEquation",
    "Reference",
    "parse_equation",
    "parse_model",
    "parse_parameters",
]
