from __future__ import annotations

import numpy as np
import pytest

from pyfourdvar.state import FieldSet, GridMasks


def make_template(ny: int = 4, nx: int = 4, ntracers: int = 2, nz: int = 0) -> FieldSet:
    vertical = (nz,) if nz else ()
    return FieldSet(
        np.zeros((ny, nx)),
        np.zeros(vertical + (ny, nx)),
        np.zeros(vertical + (ny, nx)),
        {itrc: np.zeros(vertical + (ny, nx)) for itrc in range(1, ntracers + 1)},
    )


def random_fields(template: FieldSet, rng: np.random.Generator, masks=None) -> FieldSet:
    fields = template.zeros_like()
    for name, values in fields.items():
        values[...] = rng.standard_normal(values.shape)
        if masks is not None:
            values *= masks[name]
    return fields


def flatten(fields: FieldSet) -> np.ndarray:
    return np.concatenate([values.ravel() for _, values in fields.items()])


def unflatten(vector: np.ndarray, template: FieldSet) -> FieldSet:
    fields = template.zeros_like()
    offset = 0
    for _, values in fields.items():
        values[...] = vector[offset:offset + values.size].reshape(values.shape)
        offset += values.size
    return fields


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(20240607)


@pytest.fixture
def template() -> FieldSet:
    return make_template()


@pytest.fixture
def land_masks() -> GridMasks:
    rmask = np.ones((4, 4))
    rmask[0, 0] = rmask[3, 1] = rmask[2, 3] = 0.0
    umask = np.ones((4, 4))
    umask[0, :2] = 0.0
    vmask = np.ones((4, 4))
    vmask[1, 2] = 0.0
    return GridMasks(rmask, umask, vmask)
