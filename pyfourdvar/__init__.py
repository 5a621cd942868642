"""Conjugate-gradient descent core of an incremental 4D-Var driver."""

from .config import DescentConfig, load_config
from .descent import CostState, DescentDriver, DescentReport, DriverState, GridContext, ScalarIterationState
from .dotprod import DotProduct, DotResult
from .errors import DescentError, HistoryRecordError, ShapeMismatchError, StepSizeError
from .history import GradientHistoryStore, MemoryHistoryStore, NetCDFHistoryStore
from .io import load_state, save_outputs, save_state
from .kernels import advance_state, blend_gradient, new_direction
from .orthogonalize import OrthogonalizationReport, orthogonalize
from .quadratic import QuadraticProblem, run_inner_loops
from .state import FieldSet, GridMasks, Role, StateVector

__all__ = [
    "CostState",
    "DescentConfig",
    "DescentDriver",
    "DescentError",
    "DescentReport",
    "DotProduct",
    "DotResult",
    "DriverState",
    "FieldSet",
    "GradientHistoryStore",
    "GridContext",
    "GridMasks",
    "HistoryRecordError",
    "MemoryHistoryStore",
    "NetCDFHistoryStore",
    "OrthogonalizationReport",
    "QuadraticProblem",
    "Role",
    "ScalarIterationState",
    "ShapeMismatchError",
    "StateVector",
    "StepSizeError",
    "advance_state",
    "blend_gradient",
    "load_config",
    "load_state",
    "new_direction",
    "orthogonalize",
    "run_inner_loops",
    "save_outputs",
    "save_state",
]
