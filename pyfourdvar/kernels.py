"""Masked elementwise updates used by the conjugate-gradient descent.

Each update visits every field of a :class:`FieldSet` with the mask of its
staggering group, so inactive points stay exactly zero as long as the inputs
are zero there.
"""

from __future__ import annotations

import numpy as np

from .state import FieldSet, MaskSet

__all__ = ["advance_state", "blend_gradient", "new_direction", "remove_component", "scale"]


def blend_gradient(g_old: FieldSet, g_new: FieldSet, fac: float, masks: MaskSet) -> None:
    """Estimate the gradient at the accepted point from a trial gradient.

    ``G(k+1) = G(k) + fac * (Ghat(k) - G(k))`` with ``fac = alpha / tau``.
    The estimate overwrites *g_new* and is copied into *g_old*, which keeps it
    as the non-orthogonalized reference.
    """

    for name, new in g_new.items():
        old = g_old[name]
        new -= old
        new *= masks[name] * fac
        new += old
        np.copyto(old, new)


def advance_state(
    x_in: FieldSet,
    direction: FieldSet,
    step: float,
    masks: MaskSet,
    out: FieldSet | None = None,
) -> FieldSet:
    """Return ``x_in + step * direction`` on active points.

    The result is written to *out* (which may be *x_in* itself); a new field
    set is allocated when *out* is omitted.
    """

    if out is None:
        out = x_in.zeros_like()
    for name, target in out.items():
        np.add(x_in[name], masks[name] * step * direction[name], out=target)
    return out


def new_direction(gradient: FieldSet, direction: FieldSet, beta: float, masks: MaskSet) -> None:
    """Overwrite *direction* with ``mask * (-G + beta * d)``."""

    for name, d in direction.items():
        d *= beta
        d -= gradient[name]
        d *= masks[name]


def remove_component(target: FieldSet, basis: FieldSet, coeff: float, masks: MaskSet) -> None:
    """Subtract ``coeff * basis`` from *target* on active points."""

    for name, values in target.items():
        values -= masks[name] * coeff * basis[name]


def scale(target: FieldSet, factor: float) -> None:
    for _, values in target.items():
        values *= factor
