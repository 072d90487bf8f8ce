"""Tests for the incidence and block analysis of the steady-state system.

The steady-state system is decomposed into strongly connected blocks of a
bipartite equation/unknown matching.  Blocks come out in solve order: every
unknown an equation depends on is determined by the equation's own block
or by an earlier one.
"""

import pytest

from macroperturb import SteadyStateError, analyze_blocks, build_incidence, parse_model
from helpers import make_calibrated_rbc_cme, make_rbc_cme, make_rbc_model


def _assert_solve_order(model):
    structure = analyze_blocks(model)
    incidence = build_incidence(model)
    determined: set[str] = set()
    for block in structure:
        determined |= set(block.unknowns)
        for eq in block.equations:
            assert incidence[eq] <= determined
    assert determined == set(structure.unknowns)
    return structure


def test_rbc_blocks_follow_recursive_structure():
    """A is solved first (alone), then capital from the Euler equation."""
    structure = _assert_solve_order(make_rbc_model())
    sizes = [block.size for block in structure]
    assert sum(sizes) == 4
    assert structure.blocks[0].unknowns == ("A",)
    assert structure.blocks[0].kind == "linear"
    k_block = next(block for block in structure if "k" in block.unknowns)
    assert k_block.unknowns == ("k",)
    assert k_block.kind == "nonlinear"


def test_euler_equation_drops_consumption_from_incidence():
    """``1/c = beta/c * R/Pi`` does not depend on c once over a common denominator."""
    model = make_rbc_cme()
    incidence = build_incidence(model)
    assert incidence[2] == frozenset({"Pi", "R"})


def test_calibration_equations_join_the_block_structure():
    model = make_calibrated_rbc_cme()
    structure = _assert_solve_order(model)
    assert set(structure.unknowns) >= {"alpha", "beta", "delta", "Pibar"}
    calibrated_blocks = [block for block in structure if block.has_calibration]
    assert calibrated_blocks
    beta_block = next(block for block in structure if "beta" in block.unknowns)
    assert beta_block.unknowns == ("beta",)
    core = next(block for block in structure if "alpha" in block.unknowns)
    assert set(core.unknowns) == {"alpha", "c", "delta", "k", "y"}


def test_block_structure_is_cached_on_the_model():
    model = make_rbc_model()
    assert model.block_structure is model.block_structure


def test_structurally_singular_system_is_reported():
    """A unit-root equation is ``0 = 0`` in the steady state and matches nothing."""
    model = parse_model(["x[0] = 1", "y[0] = y[-1] + e[x]"])
    with pytest.raises(SteadyStateError) as info:
        analyze_blocks(model)
    assert info.value.block_id is None


def test_block_of_equation_lookup():
    structure = analyze_blocks(make_rbc_model())
    for block in structure:
        for eq in block.equations:
            assert structure.block_of_equation(eq) == block.index
    with pytest.raises(KeyError):
        structure.block_of_equation(99)
