"""Run-time options of the descent algorithm."""

from __future__ import annotations

import json
import logging
import math
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

LOGGER = logging.getLogger(__name__)

__all__ = ["DescentConfig", "load_config"]


@dataclass(frozen=True, slots=True)
class DescentConfig:
    """Options shared by every grid of one optimization run.

    Attributes
    ----------
    initial_step:
        Trial step length ``tau`` used at the first inner loop.
    orthogonalize:
        Orthogonalize each new gradient against the gradient history.
    normalize:
        Scale the orthogonalized gradient to unit norm.
    verify_orthogonality:
        Recompute and log ``<G, G(r)>`` for every record after orthogonalizing.
    persist_gradients:
        Append the new gradient of every inner loop to the history store.  Turn
        off when the adjoint model writes the history itself.
    step_rtol:
        Relative threshold on ``<d,G> - <d,Ghat>`` below which the optimal step
        size is considered undefined.
    orthogonality_tol:
        Relative residual above which the verification logs a warning.
    """

    initial_step: float = 1.0
    orthogonalize: bool = True
    normalize: bool = False
    verify_orthogonality: bool = False
    persist_gradients: bool = True
    step_rtol: float = 1e-12
    orthogonality_tol: float = 1e-8

    def __post_init__(self) -> None:
        if not math.isfinite(self.initial_step) or self.initial_step <= 0.0:
            raise ValueError(f"The initial trial step must be positive, got {self.initial_step!r}")
        if self.step_rtol < 0.0:
            raise ValueError("step_rtol must not be negative")
        if self.orthogonality_tol <= 0.0:
            raise ValueError("orthogonality_tol must be positive")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "DescentConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValueError(f"Unknown descent options: {', '.join(unknown)}")
        return cls(**dict(values))

    def updated(self, **overrides: Any) -> "DescentConfig":
        """Return a copy with every non-``None`` override applied."""

        return replace(self, **{key: value for key, value in overrides.items() if value is not None})

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def load_config(path: str | Path) -> DescentConfig:
    """Read a :class:`DescentConfig` from a JSON file."""

    path = Path(path)
    LOGGER.info("Loading descent options from %s", path)
    with path.open("r", encoding="utf-8") as handle:
        values = json.load(handle)
    if not isinstance(values, dict):
        raise ValueError(f"{path!s} must contain a JSON object")
    return DescentConfig.from_mapping(values)
