"""Conjugate-gradient descent driver for incremental 4D-Var inner loops.

The driver minimizes a quadratic cost function with the conjugate-gradient
variant proposed by M. Fisher (ECMWF, 1997).  Given the accepted increment
``X(k)``, its gradient ``G(k)``, the descent direction ``d(k)`` and a trial
step ``tau(k)``, one inner loop proceeds as follows:

1. the tangent linear model is run from the trial point
   ``Xhat(k) = X(k) + tau(k) d(k)`` and the adjoint model returns the trial
   gradient ``Ghat(k)``;
2. the optimal step is ``alpha(k) = tau(k) <d,G> / (<d,G> - <d,Ghat>)``;
3. the accepted increment becomes ``X(k+1) = X(k) + alpha(k) d(k)``;
4. the gradient there is ``G(k+1) = G(k) + alpha/tau (Ghat(k) - G(k))``,
   optionally orthogonalized against every previous gradient;
5. ``beta(k+1) = <G(k+1),G(k+1)> / <G(k),G(k)>`` and
   ``d(k+1) = -G(k+1) + beta(k+1) d(k)``.

After the first inner loop the trial step is the previous optimal step,
``tau(k+1) = alpha(k)``.  Step 1 happens outside of this module: callers hand
the trial cost and gradient over with :meth:`DescentDriver.set_cost` and
:meth:`DescentDriver.set_gradient` and then call :meth:`DescentDriver.advance`.
"""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass

import numpy as np

from .config import DescentConfig
from .dotprod import DotProduct
from .errors import DescentError, HistoryRecordError, StepSizeError
from .history import GradientHistoryStore, MemoryHistoryStore
from .kernels import advance_state, blend_gradient, new_direction
from .mpi import comm_rank
from .orthogonalize import OrthogonalizationReport, orthogonalize
from .state import FieldSet, GridMasks, Mask, Role, StateVector, apply_masks

LOGGER = logging.getLogger(__name__)

__all__ = [
    "CostState",
    "DescentDriver",
    "DescentReport",
    "DriverState",
    "GridContext",
    "ScalarIterationState",
]

TANGENT_ROLES = (Role.INPUT, Role.OUTPUT, Role.WORK)
ADJOINT_ROLES = (Role.OLD, Role.NEW)


class DriverState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    RUNNING = "running"


@dataclass(slots=True)
class ScalarIterationState:
    """Trial step ``tau``, optimal step ``alpha`` and conjugate coefficient ``beta``."""

    tau: float = 0.0
    alpha: float = 0.0
    beta: float = 0.0

    def reset(self, initial_step: float) -> None:
        self.tau = float(initial_step)
        self.alpha = self.tau
        self.beta = 0.0


@dataclass(slots=True)
class CostState:
    """Cost function and ``<d, G>`` split like a :class:`DotResult`."""

    value: np.ndarray
    grad_dot: np.ndarray

    @classmethod
    def zeros(cls, size: int) -> "CostState":
        return cls(np.zeros(size, dtype=float), np.zeros(size, dtype=float))


@dataclass(slots=True)
class DescentReport:
    """Quantities computed by one call of :meth:`DescentDriver.advance`."""

    outer: int
    inner: int
    tau: float
    alpha: float
    beta: float
    adjust: float
    dot_old: float
    dot_new: float
    old_dot: float
    new_dot: float
    orthogonalization: OrthogonalizationReport | None = None

    def format(self) -> str:
        o, k = self.outer, self.inner
        return "\n".join(
            [
                " <<<< Descent Algorithm >>>>",
                f" ({o:03d},{k:03d}): tau = {self.tau:14.7e}, alpha = {self.alpha:14.7e}, Beta = {self.beta:14.7e}",
                f" ({o:03d},{max(0, k - 1):03d}): Total COST Function Adjustment = {self.adjust:19.12e}",
                f" ({o:03d},{k:03d}): dot product <d({k:03d}),G({k:03d})> = {self.dot_old:19.12e}   alpha",
                f"            dot product <d({k:03d}),g({k:03d})> = {self.dot_new:19.12e}   alpha",
                f"            dot product <G({k:03d}),G({k:03d})> = {self.old_dot:19.12e}   beta",
                f"            dot product <G({k + 1:03d}),G({k + 1:03d})> = {self.new_dot:19.12e}   beta",
            ]
        )


@dataclass(slots=True)
class GridContext:
    """Everything one grid owns during one optimization run.

    ``tangent`` holds the accepted increment (``INPUT``), the next trial point
    (``OUTPUT``) and a scratch buffer for history records (``WORK``).
    ``adjoint`` holds the current gradient: ``NEW`` receives the trial
    gradient from the adjoint model and ends up with the new (orthogonalized)
    gradient, ``OLD`` keeps the non-orthogonalized one.
    """

    grid_id: int
    masks: dict[str, Mask]
    dot: DotProduct
    tangent: StateVector
    adjoint: StateVector
    direction: FieldSet
    scalars: ScalarIterationState
    cost: CostState
    outer: int = 0
    state: DriverState = DriverState.UNINITIALIZED
    last_iteration: int | None = None

    @property
    def increment(self) -> FieldSet:
        return self.tangent[Role.INPUT]

    @property
    def trial(self) -> FieldSet:
        return self.tangent[Role.OUTPUT]

    @property
    def gradient(self) -> FieldSet:
        return self.adjoint[Role.NEW]


class DescentDriver:
    """Run conjugate-gradient inner loops on one or more independent grids.

    Grids share only the history store, whose records are keyed by grid id.
    Each grid must be advanced by a single caller at a time.
    """

    def __init__(self, config: DescentConfig | None = None, store: GradientHistoryStore | None = None):
        self.config = config if config is not None else DescentConfig()
        self.store = store if store is not None else MemoryHistoryStore()
        self._grids: dict[int, GridContext] = {}

    # ------------------------------------------------------------------
    # Grid lifecycle
    # ------------------------------------------------------------------

    def open_grid(
        self,
        grid_id: int,
        template: FieldSet,
        masks: GridMasks | None = None,
        *,
        initial_state: FieldSet | None = None,
        comm=None,
        outer: int = 0,
    ) -> GridContext:
        """Allocate the buffers of *grid_id* shaped like *template*."""

        if grid_id in self._grids:
            raise ValueError(f"Grid {grid_id} is already open")
        resolved = (masks if masks is not None else GridMasks()).resolve(template)
        context = GridContext(
            grid_id=grid_id,
            masks=resolved,
            dot=DotProduct(resolved, comm),
            tangent=StateVector.allocate(template, TANGENT_ROLES),
            adjoint=StateVector.allocate(template, ADJOINT_ROLES),
            direction=template.zeros_like(),
            scalars=ScalarIterationState(),
            cost=CostState.zeros(len(template.names) + 1),
            outer=outer,
        )
        if initial_state is not None:
            context.increment.assign(initial_state)
            apply_masks(context.increment, resolved)
        self._grids[grid_id] = context
        LOGGER.debug("Opened grid %d with fields %s", grid_id, ", ".join(template.names))
        return context

    def close_grid(self, grid_id: int) -> GridContext:
        return self._grids.pop(grid_id)

    def context(self, grid_id: int) -> GridContext:
        try:
            return self._grids[grid_id]
        except KeyError:
            raise KeyError(f"Grid {grid_id} has not been opened") from None

    def set_gradient(self, grid_id: int, fields: FieldSet) -> None:
        """Store the adjoint gradient at the current trial point."""

        context = self.context(grid_id)
        context.gradient.assign(fields)
        apply_masks(context.gradient, context.masks)

    def set_cost(self, grid_id: int, values) -> None:
        """Store the cost function evaluated at the current trial point."""

        context = self.context(grid_id)
        values = np.asarray(values, dtype=float)
        if values.shape != context.cost.value.shape:
            raise ValueError(f"Expected {context.cost.value.size} cost values, got shape {values.shape}")
        context.cost.value[...] = values

    # ------------------------------------------------------------------
    # Inner loop
    # ------------------------------------------------------------------

    def advance(self, grid_id: int, iteration: int) -> DescentReport:
        """Run inner loop *iteration* of *grid_id*.

        Iteration 0 resets the scalar state and sets ``d(0) = -G(0)``.  Later
        iterations require the trial gradient (and cost) of the trial point
        produced by the previous call.
        """

        context = self.context(grid_id)
        config = self.config
        self._check_sequence(context, iteration)
        if config.persist_gradients and (grid_id, iteration + 1) in self.store:
            raise HistoryRecordError(f"Gradient record {iteration + 1} of grid {grid_id} already exists")

        masks = context.masks
        dot = context.dot
        scalars = context.scalars
        g_old = context.adjoint[Role.OLD]
        g_new = context.adjoint[Role.NEW]
        direction = context.direction
        dot_old = dot_new = new_dot = 0.0

        if iteration == 0:
            scalars.reset(config.initial_step)
            context.cost.grad_dot.fill(0.0)
            direction.fill(0.0)
            context.state = DriverState.RUNNING
        else:
            dot_old = dot(direction, g_old).total
            dot_new = dot(direction, g_new).total
            tau = scalars.alpha
            alpha = self._optimal_step(tau, dot_old, dot_new, grid_id, iteration)
            if not math.isfinite(alpha):
                raise StepSizeError(f"Grid {grid_id}, iteration {iteration}: alpha = {alpha!r}")
            old_dot = dot(g_old, g_old).total
            if old_dot == 0.0:
                raise StepSizeError(f"Grid {grid_id}, iteration {iteration}: previous gradient has zero norm")
            scalars.alpha = alpha
            scalars.tau = tau

        # J(v) = J(v + tau d) - tau <d, G>, first order in tau; the cost
        # being corrected belongs to the previous inner loop.
        adjust = scalars.tau * context.cost.grad_dot
        context.cost.value -= adjust

        if iteration == 0:
            old_dot = dot(g_old, g_old).total
            g_old.assign(g_new)
        else:
            blend_gradient(g_old, g_new, scalars.alpha / scalars.tau, masks)

        ortho = None
        if iteration > 0 and config.orthogonalize:
            ortho = orthogonalize(
                g_new,
                iteration,
                grid_id=grid_id,
                store=self.store,
                dot=dot,
                masks=masks,
                work=context.tangent[Role.WORK],
                normalize=config.normalize,
                verify=config.verify_orthogonality,
                tolerance=config.orthogonality_tol,
            )

        if iteration > 0:
            advance_state(context.increment, direction, scalars.alpha, masks, out=context.increment)
            new_dot = dot(g_new, g_new).total
            scalars.beta = new_dot / old_dot
        else:
            scalars.beta = 0.0
        self._check_finite(scalars, grid_id, iteration)

        new_direction(g_new, direction, scalars.beta, masks)

        # <d(k+1), G(k+1)> with the non-orthogonalized gradient, used to
        # correct the cost function at the next inner loop.
        context.cost.grad_dot[...] = dot(direction, g_old).values

        advance_state(context.increment, direction, scalars.alpha, masks, out=context.trial)

        if config.persist_gradients:
            self.store.store(grid_id, iteration + 1, g_new)

        context.last_iteration = iteration
        report = DescentReport(
            outer=context.outer,
            inner=iteration,
            tau=scalars.tau,
            alpha=scalars.alpha,
            beta=scalars.beta,
            adjust=float(adjust[0]),
            dot_old=dot_old,
            dot_new=dot_new,
            old_dot=old_dot,
            new_dot=new_dot,
            orthogonalization=ortho,
        )
        if comm_rank(dot.comm) == 0:
            LOGGER.info("\n%s", report.format())
        return report

    @staticmethod
    def _check_sequence(context: GridContext, iteration: int) -> None:
        if iteration < 0:
            raise ValueError(f"Inner loop iteration must not be negative, got {iteration}")
        if iteration == 0:
            return
        if context.state is DriverState.UNINITIALIZED:
            raise DescentError(f"Grid {context.grid_id}: iteration 0 must run before iteration {iteration}")
        if context.last_iteration is not None and iteration != context.last_iteration + 1:
            raise DescentError(
                f"Grid {context.grid_id}: expected iteration {context.last_iteration + 1}, got {iteration}"
            )

    def _optimal_step(self, tau: float, dot_old: float, dot_new: float, grid_id: int, iteration: int) -> float:
        denominator = dot_old - dot_new
        threshold = self.config.step_rtol * max(abs(dot_old), abs(dot_new))
        if not math.isfinite(denominator) or abs(denominator) <= threshold:
            raise StepSizeError(
                f"Grid {grid_id}, iteration {iteration}: step size undefined, "
                f"<d,G> = {dot_old!r}, <d,Ghat> = {dot_new!r}"
            )
        return tau * (dot_old / denominator)

    @staticmethod
    def _check_finite(scalars: ScalarIterationState, grid_id: int, iteration: int) -> None:
        for name in ("tau", "alpha", "beta"):
            value = getattr(scalars, name)
            if not math.isfinite(value):
                raise StepSizeError(f"Grid {grid_id}, iteration {iteration}: {name} = {value!r}")
