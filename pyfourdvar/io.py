"""NetCDF input/output of state-shaped field sets."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping

import xarray as xr

from .state import TRACER_PREFIX, FieldSet, field_group, tracer_name

LOGGER = logging.getLogger(__name__)

__all__ = ["dataset_from_fields", "fields_from_dataset", "load_state", "save_outputs", "save_state"]

_HORIZONTAL_DIMS = {
    "rho": ("eta_rho", "xi_rho"),
    "u": ("eta_u", "xi_u"),
    "v": ("eta_v", "xi_v"),
}


def _dims(name: str, ndim: int) -> tuple[str, ...]:
    horizontal = _HORIZONTAL_DIMS[field_group(name)]
    extra = ndim - 2
    if extra == 0:
        return horizontal
    if extra == 1:
        return ("s_rho",) + horizontal
    return tuple(f"{name}_dim{axis}" for axis in range(extra)) + horizontal


def dataset_from_fields(fields: FieldSet, attrs: Mapping[str, object] | None = None) -> xr.Dataset:
    """Wrap *fields* in an :class:`xarray.Dataset` with ROMS-style dimensions."""

    data_vars = {name: (_dims(name, values.ndim), values) for name, values in fields.items()}
    dataset = xr.Dataset(data_vars)
    if attrs:
        dataset.attrs.update(attrs)
    return dataset


def fields_from_dataset(dataset: xr.Dataset, source: str = "dataset") -> FieldSet:
    """Build a :class:`FieldSet` from the state variables of *dataset*."""

    for name in ("zeta", "u", "v"):
        if name not in dataset:
            raise KeyError(f"Variable {name!r} not found in {source}")

    tracers = {}
    for name in dataset.data_vars:
        name = str(name)
        if name.startswith(TRACER_PREFIX):
            tracer_id = int(name[len(TRACER_PREFIX):])
            if tracer_name(tracer_id) != name:
                raise KeyError(f"Malformed tracer variable {name!r} in {source}")
            tracers[tracer_id] = dataset[name].values

    return FieldSet(dataset["zeta"].values, dataset["u"].values, dataset["v"].values, tracers)


def save_state(fields: FieldSet, path: str | Path, attrs: Mapping[str, object] | None = None) -> Path:
    """Write *fields* to the NetCDF file *path*."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    LOGGER.debug("Writing %s", path)
    dataset_from_fields(fields, attrs).to_netcdf(path)
    return path


def load_state(path: str | Path) -> FieldSet:
    """Read a field set previously written by :func:`save_state`."""

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"State file {path!s} not found")

    LOGGER.debug("Loading state from %s", path)
    with xr.open_dataset(path) as ds:
        ds = ds.load()
    return fields_from_dataset(ds, str(path))


def save_outputs(outputs: Mapping[str, FieldSet], output_dir: str | Path) -> None:
    """Persist several field sets to NetCDF files.

    The *outputs* mapping associates a relative file name with the field set
    that is to be saved.
    """

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    for filename, fields in outputs.items():
        path = output_dir / filename
        LOGGER.info("Writing %s", path)
        dataset_from_fields(fields).to_netcdf(path)
