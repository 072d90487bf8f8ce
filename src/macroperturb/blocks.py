"""Incidence analysis and block decomposition of the steady-state system.

The steady-state system (dynamic equations with leads and lags collapsed,
followed by calibration equations) is split into the smallest blocks that
have to be solved simultaneously:

1. a maximum bipartite matching between equations and unknowns
   (variables and calibrated parameters) assigns each equation the unknown
   it determines;
2. the equations are linked ``i -> j`` whenever equation ``j`` uses the
   unknown matched to equation ``i``;
3. strongly connected components of that graph are the blocks, and a
   topological order of the condensed graph is the solve order.

The decomposition (fine Dulmage-Mendelsohn form) does not depend on which
perfect matching is found; blocks are ordered deterministically by their
smallest equation index.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Iterator

import networkx as nx
import sympy as sp

from .exceptions import SteadyStateError
from .model import Model, steady_symbol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Block:
    """A set of steady-state equations solved simultaneously.

    Attributes
    ----------
    index : int
        Position of the block in solve order.
    equations : tuple of int
        Indices into :attr:`Model.steady_state_system`.
    unknowns : tuple of str
        Variables and calibrated parameters determined by the block, sorted.
    kind : str
        ``"linear"`` when every numerator is of total degree at most one in
        the block unknowns, else ``"nonlinear"``.
    has_calibration : bool
        Whether the block contains a calibration equation.
    """

    index: int
    equations: tuple[int, ...]
    unknowns: tuple[str, ...]
    kind: str
    has_calibration: bool

    @property
    def size(self) -> int:
        return len(self.unknowns)


@dataclass(frozen=True)
class BlockStructure:
    """Ordered block decomposition of a model's steady-state system."""

    blocks: tuple[Block, ...]
    unknowns: tuple[str, ...]
    incidence: tuple[frozenset[str], ...]

    def __len__(self) -> int:
        return len(self.blocks)

    def __iter__(self) -> Iterator[Block]:
        return iter(self.blocks)

    def block_of_equation(self, equation: int) -> int:
        for block in self.blocks:
            if equation in block.equations:
                return block.index
        raise KeyError(equation)


def steady_state_unknowns(model: Model) -> tuple[str, ...]:
    """Variables followed by calibrated parameters."""
    return model.variable_names + model.calibrated_parameters


def build_incidence(model: Model) -> tuple[frozenset[str], ...]:
    """Unknowns each steady-state equation depends on.

    Dependencies are read off the numerator of the equation over a common
    denominator, one set per entry of :attr:`Model.steady_state_system`.
    """
    symbols = {steady_symbol(name): name for name in steady_state_unknowns(model)}
    return tuple(
        frozenset(symbols[s] for s in eq.numerator.free_symbols if s in symbols)
        for eq in model.steady_state_system
    )


def _is_linear(numerators: list[sp.Expr], unknowns: tuple[str, ...]) -> bool:
    syms = [steady_symbol(name) for name in unknowns]
    for expr in numerators:
        if not expr.is_polynomial(*syms):
            return False
        if sp.Poly(expr, *syms).total_degree() > 1:
            return False
    return True


def analyze_blocks(model: Model) -> BlockStructure:
    """Decompose the steady-state system into ordered blocks.

    Parameters
    ----------
    model : Model
        Canonical model.

    Returns
    -------
    BlockStructure
        Blocks in solve order (every block only uses unknowns determined by
        itself or by earlier blocks).

    Raises
    ------
    SteadyStateError
        With ``block_id=None`` if no perfect matching between equations and
        unknowns exists (structurally singular steady-state system).
    """
    system = model.steady_state_system
    unknowns = steady_state_unknowns(model)
    incidence = build_incidence(model)

    equation_nodes = [("eq", i) for i in range(len(system))]
    graph = nx.Graph()
    graph.add_nodes_from(equation_nodes, bipartite=0)
    graph.add_nodes_from((("var", name) for name in unknowns), bipartite=1)
    for i, deps in enumerate(incidence):
        for name in sorted(deps):
            graph.add_edge(("eq", i), ("var", name))

    matching = nx.bipartite.maximum_matching(graph, top_nodes=equation_nodes)
    unmatched_eqs = [i for i in range(len(system)) if ("eq", i) not in matching]
    unmatched_vars = [name for name in unknowns if ("var", name) not in matching]
    if unmatched_eqs or unmatched_vars:
        raise SteadyStateError(
            "Steady-state system is structurally singular: "
            f"equations {unmatched_eqs} and unknowns {unmatched_vars} cannot be matched",
            block_id=None,
        )

    matched_equation = {matching[("eq", i)][1]: i for i in range(len(system))}
    dependency = nx.DiGraph()
    dependency.add_nodes_from(range(len(system)))
    for j, deps in enumerate(incidence):
        for name in deps:
            i = matched_equation[name]
            if i != j:
                dependency.add_edge(i, j)

    condensed = nx.condensation(dependency)
    order = nx.lexicographical_topological_sort(
        condensed, key=lambda node: min(condensed.nodes[node]["members"])
    )

    blocks = []
    for position, node in enumerate(order):
        equations = tuple(sorted(condensed.nodes[node]["members"]))
        block_unknowns = tuple(sorted(matching[("eq", i)][1] for i in equations))
        numerators = [system[i].numerator for i in equations]
        blocks.append(
            Block(
                index=position,
                equations=equations,
                unknowns=block_unknowns,
                kind="linear" if _is_linear(numerators, block_unknowns) else "nonlinear",
                has_calibration=any(system[i].is_calibration for i in equations),
            )
        )

    logger.debug(
        "Block analysis of '%s': %d blocks, sizes %s",
        model.name,
        len(blocks),
        [block.size for block in blocks],
    )
    return BlockStructure(blocks=tuple(blocks), unknowns=unknowns, incidence=incidence)
