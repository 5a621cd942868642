"""Exceptions raised by the descent algorithm."""

from __future__ import annotations

__all__ = [
    "DescentError",
    "HistoryRecordError",
    "ShapeMismatchError",
    "StepSizeError",
]


class DescentError(RuntimeError):
    """The conjugate-gradient driver cannot continue the current run."""


class StepSizeError(DescentError):
    """The optimal step size or conjugate coefficient is not usable.

    Raised when ``<d,G> - <d,Ghat>`` vanishes relative to its terms, or when
    any of ``tau``, ``alpha`` or ``beta`` is not finite.
    """


class HistoryRecordError(LookupError):
    """A gradient history record is missing, duplicated or badly indexed."""


class ShapeMismatchError(ValueError):
    """Two state-shaped field sets do not share the same layout."""
