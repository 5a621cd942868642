"""Masked, globally reduced inner products of state vectors."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .mpi import allreduce_sum
from .state import FieldSet, MaskSet

__all__ = ["DotProduct", "DotResult"]


@dataclass(frozen=True, slots=True)
class DotResult:
    """Inner product split by state variable.

    ``values[0]`` is the aggregate over every field and ``values[i]`` the
    contribution of ``names[i - 1]``.
    """

    values: np.ndarray
    names: tuple[str, ...]

    def __post_init__(self) -> None:
        if len(self.values) != len(self.names) + 1:
            raise ValueError("A dot result holds one aggregate plus one value per state variable")

    @property
    def total(self) -> float:
        return float(self.values[0])

    def __getitem__(self, index: int) -> float:
        return float(self.values[index])

    def __len__(self) -> int:
        return len(self.values)

    def part(self, name: str) -> float:
        return float(self.values[1 + self.names.index(name)])

    @classmethod
    def from_parts(cls, parts: Sequence[float], names: Sequence[str]) -> "DotResult":
        parts = np.asarray(parts, dtype=float)
        return cls(np.concatenate(([parts.sum()], parts)), tuple(names))


class DotProduct:
    """Dot-product service for one grid.

    Parameters
    ----------
    masks:
        Resolved per-field masks (see :meth:`GridMasks.resolve`); only active
        points contribute.
    comm:
        Optional MPI communicator.  Each rank contributes the partial sums of
        its own subdomain and the per-variable partials are summed across ranks
        before the aggregate is formed, so every rank sees the same result.
    """

    def __init__(self, masks: MaskSet, comm=None):
        self.masks = masks
        self.comm = comm

    def __call__(self, a: FieldSet, b: FieldSet) -> DotResult:
        a.check_layout(b, what="dot product operand")
        parts = np.empty(len(a.names), dtype=float)
        for index, (name, values) in enumerate(a.items()):
            parts[index] = np.sum(values * b[name] * self.masks[name])
        parts = allreduce_sum(parts, self.comm)
        return DotResult.from_parts(parts, a.names)

    def norm(self, a: FieldSet) -> float:
        return float(np.sqrt(self(a, a).total))
