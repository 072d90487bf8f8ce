"""Timing map of a canonical model.

Once every equation references variables only at offsets in ``{-1, 0, 1}``
the endogenous variables can be partitioned by the periods they appear in:

* ``past_not_future`` -- appear at ``t-1`` but never at ``t+1``
  (predetermined states);
* ``future_not_past`` -- appear at ``t+1`` but never at ``t-1``
  (pure jump variables);
* ``mixed`` -- appear at both ``t-1`` and ``t+1``;
* ``static`` -- appear only at ``t``.

The :class:`Timings` record holds these sets together with the integer
index vectors into the (lexicographically sorted) variable list that the
Differentiator and every solver use to slice Jacobians.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

import numpy as np

if TYPE_CHECKING:
    from .model import Variable

Array = np.ndarray


@dataclass(frozen=True)
class Timings:
    """Partition of the endogenous variables by timing.

    Attributes
    ----------
    variables : tuple of str
        All endogenous (and auxiliary) variables, sorted.
    shocks : tuple of str
        Exogenous shocks, sorted.
    past : tuple of str
        Variables appearing at ``t-1`` (states), in variable order.
    future : tuple of str
        Variables appearing at ``t+1`` (forward-looking), in variable order.
    static : tuple of str
        Variables appearing only at ``t``.
    mixed : tuple of str
        Variables appearing at both ``t-1`` and ``t+1``.
    past_idx, future_idx, static_idx, mixed_idx : Array
        Integer positions of the above sets in ``variables``.
    """

    variables: tuple[str, ...]
    shocks: tuple[str, ...]
    past: tuple[str, ...]
    future: tuple[str, ...]
    static: tuple[str, ...]
    mixed: tuple[str, ...]
    past_idx: Array
    future_idx: Array
    static_idx: Array
    mixed_idx: Array

    @property
    def past_not_future(self) -> tuple[str, ...]:
        mixed = set(self.mixed)
        return tuple(name for name in self.past if name not in mixed)

    @property
    def future_not_past(self) -> tuple[str, ...]:
        mixed = set(self.mixed)
        return tuple(name for name in self.future if name not in mixed)

    @property
    def n_variables(self) -> int:
        return len(self.variables)

    @property
    def n_past(self) -> int:
        return len(self.past)

    @property
    def n_future(self) -> int:
        return len(self.future)

    @property
    def n_static(self) -> int:
        return len(self.static)

    @property
    def n_mixed(self) -> int:
        return len(self.mixed)

    @property
    def n_shocks(self) -> int:
        return len(self.shocks)

    @property
    def n_stacked(self) -> int:
        """Length of the stacked derivative vector ``[y(t+1); y(t); y(t-1); e]``."""
        return self.n_future + self.n_variables + self.n_past + self.n_shocks

    @property
    def n_augmented(self) -> int:
        """Length of the augmented policy state ``[y(t-1); sigma; e]``."""
        return self.n_past + 1 + self.n_shocks

    def stacked_labels(self) -> tuple[str, ...]:
        """Readable labels of the stacked derivative vector, in order."""
        return (
            tuple(f"{name}[1]" for name in self.future)
            + tuple(f"{name}[0]" for name in self.variables)
            + tuple(f"{name}[-1]" for name in self.past)
            + tuple(f"{name}[x]" for name in self.shocks)
        )

    def augmented_labels(self) -> tuple[str, ...]:
        """Readable labels of the augmented policy state, in order."""
        return (
            tuple(f"{name}[-1]" for name in self.past)
            + ("sigma",)
            + tuple(f"{name}[x]" for name in self.shocks)
        )


def build_timings(variables: Sequence["Variable"], shocks: Sequence[str]) -> Timings:
    """Classify variables by the offsets they appear with.

    Parameters
    ----------
    variables : Sequence[Variable]
        Canonical variables; each carries the offsets it appears with.
    shocks : Sequence[str]
        Exogenous shock names.

    Returns
    -------
    Timings
        The timing partition with index vectors.

    Raises
    ------
    ValueError
        If a variable carries an offset outside ``{-1, 0, 1}``.
    """
    names = tuple(var.name for var in variables)
    past: list[str] = []
    future: list[str] = []
    static: list[str] = []
    mixed: list[str] = []

    for var in variables:
        offsets = set(var.offsets)
        if not offsets <= {-1, 0, 1}:
            raise ValueError(
                f"Variable '{var.name}' has offsets {sorted(offsets)} outside {{-1, 0, 1}}"
            )
        lag = -1 in offsets
        lead = 1 in offsets
        if lag:
            past.append(var.name)
        if lead:
            future.append(var.name)
        if lag and lead:
            mixed.append(var.name)
        if not lag and not lead:
            static.append(var.name)

    position = {name: i for i, name in enumerate(names)}

    def _index(group: list[str]) -> Array:
        return np.array([position[name] for name in group], dtype=int)

    return Timings(
        variables=names,
        shocks=tuple(shocks),
        past=tuple(past),
        future=tuple(future),
        static=tuple(static),
        mixed=tuple(mixed),
        past_idx=_index(past),
        future_idx=_index(future),
        static_idx=_index(static),
        mixed_idx=_index(mixed),
    )
