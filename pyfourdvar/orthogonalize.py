"""Gram-Schmidt orthogonalization of a gradient against its history."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field

from .dotprod import DotProduct
from .errors import DescentError
from .history import GradientHistoryStore, load_checked
from .kernels import remove_component, scale
from .state import FieldSet, MaskSet, apply_masks

LOGGER = logging.getLogger(__name__)

__all__ = ["OrthogonalizationReport", "orthogonalize"]


@dataclass(slots=True)
class OrthogonalizationReport:
    """Per-record diagnostics of one orthogonalization pass.

    All mappings are keyed by history record index.  ``residuals`` is only
    filled when the pass was verified.
    """

    coefficients: dict[int, float] = field(default_factory=dict)
    record_norms: dict[int, float] = field(default_factory=dict)
    residuals: dict[int, float] = field(default_factory=dict)
    norm_factor: float | None = None

    def max_relative_residual(self, gradient_norm: float) -> float:
        worst = 0.0
        for record, value in self.residuals.items():
            bound = gradient_norm * math.sqrt(self.record_norms[record])
            if bound > 0.0:
                worst = max(worst, abs(value) / bound)
        return worst


def orthogonalize(
    gradient: FieldSet,
    iteration: int,
    *,
    grid_id: int,
    store: GradientHistoryStore,
    dot: DotProduct,
    masks: MaskSet,
    work: FieldSet,
    normalize: bool = False,
    verify: bool = False,
    tolerance: float = 1e-8,
) -> OrthogonalizationReport:
    """Remove from *gradient* its components along history records ``iteration .. 1``.

    The records are processed once, in reverse order.  They are assumed to be
    mutually orthogonal already, so a single modified Gram-Schmidt sweep leaves
    *gradient* orthogonal to all of them.  Each record is loaded into the
    *work* buffer; *gradient* is updated in place.

    Parameters
    ----------
    normalize:
        Scale the result to unit norm after the sweep.
    verify:
        Reload every record and recompute ``<G, G(r)>``.  The values are
        reported and logged; relative residuals above *tolerance* only produce
        a warning.
    """

    report = OrthogonalizationReport()
    if iteration < 1:
        return report

    for record in range(iteration, 0, -1):
        work.assign(load_checked(store, grid_id, record, work))
        apply_masks(work, masks)
        new_dot = dot(gradient, work).total
        old_dot = dot(work, work).total
        if old_dot <= 0.0 or not math.isfinite(old_dot):
            raise DescentError(f"Gradient record {record} of grid {grid_id} has norm {old_dot!r}")
        coeff = new_dot / old_dot
        remove_component(gradient, work, coeff, masks)
        report.coefficients[record] = coeff
        report.record_norms[record] = old_dot
        LOGGER.debug("Record %03d: <G,G(r)> = %.12e, <G(r),G(r)> = %.12e, factor = %.12e",
                     record, new_dot, old_dot, coeff)

    if normalize:
        norm2 = dot(gradient, gradient).total
        if norm2 <= 0.0 or not math.isfinite(norm2):
            raise DescentError(f"Cannot normalize a gradient with squared norm {norm2!r}")
        report.norm_factor = 1.0 / math.sqrt(norm2)
        scale(gradient, report.norm_factor)

    if verify:
        for record in range(iteration, 0, -1):
            work.assign(load_checked(store, grid_id, record, work))
            apply_masks(work, masks)
            report.residuals[record] = dot(gradient, work).total
        _log_verification(report, iteration, dot.norm(gradient), tolerance)

    return report


def _log_verification(report: OrthogonalizationReport, iteration: int, gradient_norm: float, tolerance: float) -> None:
    LOGGER.info("Gram-Schmidt orthogonalization, iteration %03d:", iteration)
    for record in sorted(report.coefficients, reverse=True):
        LOGGER.info(
            "  Ortho Test: <G(%03d),G(%03d)> = %15.8e  <G(%03d),G(%03d)> = %15.8e  factor = %19.12e",
            iteration,
            record - 1,
            report.residuals[record],
            record - 1,
            record - 1,
            report.record_norms[record],
            report.coefficients[record],
        )
    worst = report.max_relative_residual(gradient_norm)
    if worst > tolerance:
        LOGGER.warning("Orthogonality residual %.3e exceeds tolerance %.3e", worst, tolerance)
