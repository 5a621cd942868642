"""State-shaped field containers, role slots and land/sea masks."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Mapping, Union

import numpy as np

from .errors import ShapeMismatchError

__all__ = [
    "DescentDirection",
    "FieldSet",
    "GradientVector",
    "GridMasks",
    "Mask",
    "MaskSet",
    "Role",
    "StateVector",
    "apply_masks",
    "field_group",
    "tracer_name",
]

TRACER_PREFIX = "tracer_"

Mask = Union[np.ndarray, float]
MaskSet = Mapping[str, Mask]


class Role(enum.Enum):
    """Named scratch buffers of a :class:`StateVector`."""

    OLD = "old"
    NEW = "new"
    INPUT = "input"
    OUTPUT = "output"
    WORK = "work"


def tracer_name(tracer_id: int) -> str:
    """Return the field name used for tracer *tracer_id*."""

    return f"{TRACER_PREFIX}{int(tracer_id):02d}"


def field_group(name: str) -> str:
    """Return the staggering group (``rho``, ``u`` or ``v``) of field *name*."""

    if name in ("u", "v"):
        return name
    if name == "zeta" or name.startswith(TRACER_PREFIX):
        return "rho"
    raise KeyError(f"Unknown state field {name!r}")


def _as_field(values, name: str) -> np.ndarray:
    array = np.array(values, dtype=float)
    if array.ndim < 2:
        raise ValueError(f"Field {name!r} must be at least two dimensional, got shape {array.shape}")
    return array


@dataclass(slots=True)
class FieldSet:
    """One state-shaped set of fields.

    Arrays are laid out ``(..., eta, xi)`` so that two-dimensional masks
    broadcast over an optional leading vertical axis.  Fields are always
    visited in the same order: ``zeta``, ``u``, ``v`` and then the tracers by
    increasing id.
    """

    zeta: np.ndarray
    u: np.ndarray
    v: np.ndarray
    tracers: dict[int, np.ndarray] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.zeta = _as_field(self.zeta, "zeta")
        self.u = _as_field(self.u, "u")
        self.v = _as_field(self.v, "v")
        self.tracers = {
            int(key): _as_field(self.tracers[key], tracer_name(key)) for key in sorted(self.tracers)
        }

    @property
    def names(self) -> tuple[str, ...]:
        return ("zeta", "u", "v") + tuple(tracer_name(key) for key in self.tracers)

    def __getitem__(self, name: str) -> np.ndarray:
        if name in ("zeta", "u", "v"):
            return getattr(self, name)
        if name.startswith(TRACER_PREFIX):
            suffix = name[len(TRACER_PREFIX):]
            if suffix.isdigit() and int(suffix) in self.tracers:
                return self.tracers[int(suffix)]
        raise KeyError(f"Unknown state field {name!r}")

    def items(self) -> Iterator[tuple[str, np.ndarray]]:
        yield "zeta", self.zeta
        yield "u", self.u
        yield "v", self.v
        for key, values in self.tracers.items():
            yield tracer_name(key), values

    def layout(self) -> dict[str, tuple[int, ...]]:
        return {name: values.shape for name, values in self.items()}

    def check_layout(self, other: "FieldSet", *, what: str = "field set") -> None:
        """Raise :class:`ShapeMismatchError` unless *other* matches this layout."""

        mine = self.layout()
        theirs = other.layout()
        if mine.keys() != theirs.keys():
            missing = sorted(set(mine) - set(theirs))
            extra = sorted(set(theirs) - set(mine))
            raise ShapeMismatchError(
                f"{what} has fields {sorted(theirs)}; missing {missing}, unexpected {extra}"
            )
        for name, shape in mine.items():
            if theirs[name] != shape:
                raise ShapeMismatchError(
                    f"{what} field {name!r} has shape {theirs[name]}, expected {shape}"
                )

    def copy(self) -> "FieldSet":
        return FieldSet(self.zeta, self.u, self.v, dict(self.tracers))

    def zeros_like(self) -> "FieldSet":
        return FieldSet(
            np.zeros_like(self.zeta),
            np.zeros_like(self.u),
            np.zeros_like(self.v),
            {key: np.zeros_like(values) for key, values in self.tracers.items()},
        )

    def assign(self, other: "FieldSet") -> None:
        """Copy the values of *other* into this field set in place."""

        self.check_layout(other)
        for name, values in self.items():
            np.copyto(values, other[name])

    def fill(self, value: float) -> None:
        for _, values in self.items():
            values.fill(value)


DescentDirection = FieldSet
GradientVector = FieldSet


@dataclass(slots=True)
class GridMasks:
    """Land/sea masks of one grid.

    ``rmask`` applies to the free surface and the tracers, ``umask`` and
    ``vmask`` to the two velocity components.  ``None`` marks every point of
    that group as active.
    """

    rmask: np.ndarray | None = None
    umask: np.ndarray | None = None
    vmask: np.ndarray | None = None

    def __post_init__(self) -> None:
        for name in ("rmask", "umask", "vmask"):
            mask = getattr(self, name)
            if mask is None:
                continue
            array = np.asarray(mask, dtype=float)
            if array.ndim != 2:
                raise ValueError(f"{name} must be two dimensional, got shape {array.shape}")
            if not np.all((array == 0.0) | (array == 1.0)):
                raise ValueError(f"{name} may only contain zeros and ones")
            setattr(self, name, array)

    def for_group(self, group: str) -> Mask:
        mask = {"rho": self.rmask, "u": self.umask, "v": self.vmask}[group]
        return 1.0 if mask is None else mask

    def resolve(self, template: FieldSet) -> dict[str, Mask]:
        """Return the mask of every field of *template*, checking shapes once."""

        resolved: dict[str, Mask] = {}
        for name, values in template.items():
            mask = self.for_group(field_group(name))
            if isinstance(mask, np.ndarray) and values.shape[-2:] != mask.shape:
                raise ShapeMismatchError(
                    f"Mask of shape {mask.shape} does not match field {name!r} of shape {values.shape}"
                )
            resolved[name] = mask
        return resolved

    def active_points(self) -> int:
        return int(sum(np.count_nonzero(m) for m in (self.rmask, self.umask, self.vmask) if m is not None))


def apply_masks(fields: FieldSet, masks: MaskSet) -> None:
    """Zero the inactive points of *fields* in place."""

    for name, values in fields.items():
        mask = masks[name]
        if isinstance(mask, np.ndarray):
            values *= mask


class StateVector:
    """A fixed set of :class:`FieldSet` buffers addressed by :class:`Role`."""

    __slots__ = ("_slots",)

    def __init__(self, slots: Mapping[Role, FieldSet]):
        if not slots:
            raise ValueError("A state vector needs at least one role slot")
        self._slots = dict(slots)

    @classmethod
    def allocate(cls, template: FieldSet, roles: Iterable[Role]) -> "StateVector":
        return cls({role: template.zeros_like() for role in roles})

    @property
    def roles(self) -> tuple[Role, ...]:
        return tuple(self._slots)

    def __contains__(self, role: object) -> bool:
        return role in self._slots

    def __getitem__(self, role: Role) -> FieldSet:
        try:
            return self._slots[role]
        except KeyError:
            raise KeyError(f"Role slot {role} is not allocated in this state vector") from None
