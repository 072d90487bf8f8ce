"""Tests for the timing partition of a canonical model.

Variables are classified by the offsets they appear with: a lag makes a
variable a state, a lead makes it forward-looking, both make it mixed and
neither makes it static.
"""

import numpy as np
import pytest

from macroperturb import build_timings, parse_model
from macroperturb.model import Variable
from helpers import make_rbc_model


def test_partition_of_rbc_model():
    """Capital and technology are states; consumption and technology lead."""
    t = make_rbc_model().timings
    assert t.variables == ("A", "c", "k", "y")
    assert t.shocks == ("eps",)
    assert t.past == ("A", "k")
    assert t.future == ("A", "c")
    assert t.mixed == ("A",)
    assert t.static == ("y",)
    assert t.past_not_future == ("k",)
    assert t.future_not_past == ("c",)
    assert np.array_equal(t.past_idx, [0, 2])
    assert np.array_equal(t.future_idx, [0, 1])
    assert np.array_equal(t.static_idx, [3])


def test_stacked_and_augmented_labels():
    t = make_rbc_model().timings
    assert t.n_stacked == 2 + 4 + 2 + 1
    assert t.stacked_labels() == (
        "A[1]", "c[1]", "A[0]", "c[0]", "k[0]", "y[0]", "A[-1]", "k[-1]", "eps[x]",
    )
    assert t.n_augmented == 4
    assert t.augmented_labels() == ("A[-1]", "k[-1]", "sigma", "eps[x]")


def test_long_leads_become_auxiliary_variables():
    model = parse_model(["x[0] = 0.5 * x[2] + 0.2 * x[-2] + e[x]"])
    t = model.timings
    assert set(t.variables) == {"x", "x__lag1", "x__lead1"}
    assert "x__lag1" in t.past and "x__lead1" in t.future


def test_offsets_outside_one_period_are_rejected():
    with pytest.raises(ValueError, match="outside"):
        build_timings([Variable("x", "endogenous", (-2, 0))], ["e"])


def test_static_only_model():
    t = build_timings([Variable("y", "endogenous", (0,))], [])
    assert t.static == ("y",)
    assert t.n_past == t.n_future == t.n_shocks == 0
    assert t.augmented_labels() == ("sigma",)
