"""Quadratic cost functions standing in for the tangent linear/adjoint pair."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from .descent import DescentDriver, DescentReport
from .dotprod import DotProduct
from .state import FieldSet, GridMasks, apply_masks

LOGGER = logging.getLogger(__name__)

__all__ = ["QuadraticProblem", "random_problem", "run_inner_loops"]


@dataclass(slots=True)
class QuadraticProblem:
    """``J(x) = 1/2 <x, H x> - <b, x>`` with a diagonal, positive ``H``.

    Its minimizer is ``x = b / H`` and its gradient ``H x - b``.
    """

    hessian: FieldSet
    rhs: FieldSet
    dot: DotProduct

    def __post_init__(self) -> None:
        self.hessian.check_layout(self.rhs, what="right-hand side")
        for name, values in self.hessian.items():
            if np.any(values <= 0.0):
                raise ValueError(f"Hessian diagonal of {name!r} must be positive")

    def _apply_hessian(self, x: FieldSet) -> FieldSet:
        result = x.copy()
        for name, values in result.items():
            values *= self.hessian[name]
        return result

    def cost(self, x: FieldSet) -> np.ndarray:
        """Return the cost split like a :class:`DotResult` (total first)."""

        return 0.5 * self.dot(x, self._apply_hessian(x)).values - self.dot(self.rhs, x).values

    def gradient(self, x: FieldSet) -> FieldSet:
        grad = self._apply_hessian(x)
        for name, values in grad.items():
            values -= self.rhs[name]
        apply_masks(grad, self.dot.masks)
        return grad

    def minimizer(self) -> FieldSet:
        solution = self.rhs.copy()
        for name, values in solution.items():
            values /= self.hessian[name]
        apply_masks(solution, self.dot.masks)
        return solution


def random_problem(
    template: FieldSet,
    masks: GridMasks,
    rng: np.random.Generator,
    *,
    condition: float = 10.0,
) -> QuadraticProblem:
    """Draw a well-posed problem with Hessian eigenvalues in ``[1, condition]``."""

    resolved = masks.resolve(template)
    hessian = template.zeros_like()
    rhs = template.zeros_like()
    for name, values in hessian.items():
        values[...] = rng.uniform(1.0, condition, size=values.shape)
        rhs[name][...] = rng.standard_normal(values.shape)
    apply_masks(rhs, resolved)
    return QuadraticProblem(hessian, rhs, DotProduct(resolved))


def run_inner_loops(
    driver: DescentDriver,
    grid_id: int,
    problem: QuadraticProblem,
    ninner: int,
) -> list[DescentReport]:
    """Run inner loops ``0 .. ninner`` of *grid_id* against *problem*.

    Inner loop 0 evaluates the problem at the current increment; every later
    loop evaluates it at the trial point left by the previous call.
    """

    context = driver.context(grid_id)
    reports = []
    for inner in range(ninner + 1):
        point = context.increment if inner == 0 else context.trial
        driver.set_cost(grid_id, problem.cost(point))
        driver.set_gradient(grid_id, problem.gradient(point))
        reports.append(driver.advance(grid_id, inner))
        LOGGER.debug("Inner loop %03d of grid %d: J = %.12e", inner, grid_id, context.cost.value[0])
    return reports
