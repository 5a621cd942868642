from __future__ import annotations

import logging

import numpy as np
import pytest

from conftest import flatten, make_template, random_fields, unflatten
from pyfourdvar.dotprod import DotProduct
from pyfourdvar.errors import HistoryRecordError, ShapeMismatchError
from pyfourdvar.history import MemoryHistoryStore
from pyfourdvar.orthogonalize import orthogonalize
from pyfourdvar.state import GridMasks


class RecordingStore(MemoryHistoryStore):
    def __init__(self):
        super().__init__()
        self.loaded = []

    def load(self, grid_id, record):
        self.loaded.append(record)
        return super().load(grid_id, record)


def _orthogonal_history(template, rng, count, store, grid_id=1):
    size = flatten(template).size
    basis, _ = np.linalg.qr(rng.standard_normal((size, count)))
    records = []
    for column in range(count):
        fields = unflatten(basis[:, column] * (column + 0.5), template)
        store.store(grid_id, column + 1, fields)
        records.append(fields)
    return records


@pytest.fixture
def setup(template, rng):
    masks = GridMasks().resolve(template)
    return masks, DotProduct(masks)


def test_result_is_orthogonal_to_every_record(template, rng, setup):
    masks, dot = setup
    store = RecordingStore()
    records = _orthogonal_history(template, rng, 4, store)
    gradient = random_fields(template, rng)

    report = orthogonalize(gradient, 4, grid_id=1, store=store, dot=dot, masks=masks, work=template.zeros_like())

    assert store.loaded == [4, 3, 2, 1]
    assert sorted(report.coefficients) == [1, 2, 3, 4]
    norm = dot.norm(gradient)
    for record in records:
        assert abs(dot(gradient, record).total) <= 1e-12 * norm * dot.norm(record)


def test_projection_matches_linear_algebra(template, rng, setup):
    masks, dot = setup
    store = MemoryHistoryStore()
    records = _orthogonal_history(template, rng, 3, store)
    gradient = random_fields(template, rng)

    basis = np.column_stack([flatten(r) for r in records])
    g = flatten(gradient)
    expected = g - basis @ np.linalg.solve(basis.T @ basis, basis.T @ g)

    orthogonalize(gradient, 3, grid_id=1, store=store, dot=dot, masks=masks, work=template.zeros_like())

    np.testing.assert_allclose(flatten(gradient), expected, rtol=1e-10, atol=1e-12)


def test_normalization_gives_unit_norm(template, rng, setup):
    masks, dot = setup
    store = MemoryHistoryStore()
    _orthogonal_history(template, rng, 2, store)
    gradient = random_fields(template, rng)

    report = orthogonalize(
        gradient, 2, grid_id=1, store=store, dot=dot, masks=masks, work=template.zeros_like(), normalize=True
    )

    assert report.norm_factor is not None
    assert dot(gradient, gradient).total == pytest.approx(1.0, rel=1e-12)


def test_verification_reports_residuals(template, rng, setup, caplog):
    masks, dot = setup
    store = MemoryHistoryStore()
    _orthogonal_history(template, rng, 3, store)
    gradient = random_fields(template, rng)

    with caplog.at_level(logging.INFO, logger="pyfourdvar.orthogonalize"):
        report = orthogonalize(
            gradient, 3, grid_id=1, store=store, dot=dot, masks=masks, work=template.zeros_like(), verify=True
        )

    assert sorted(report.residuals) == [1, 2, 3]
    assert report.max_relative_residual(dot.norm(gradient)) < 1e-12
    assert "Ortho Test" in caplog.text
    assert "exceeds tolerance" not in caplog.text


def test_iteration_zero_is_a_no_op(template, rng, setup):
    masks, dot = setup
    gradient = random_fields(template, rng)
    before = gradient.copy()

    report = orthogonalize(
        gradient, 0, grid_id=1, store=MemoryHistoryStore(), dot=dot, masks=masks, work=template.zeros_like()
    )

    assert report.coefficients == {}
    np.testing.assert_array_equal(flatten(gradient), flatten(before))


def test_missing_record_is_fatal(template, rng, setup):
    masks, dot = setup
    store = MemoryHistoryStore()
    _orthogonal_history(template, rng, 2, store)

    with pytest.raises(HistoryRecordError):
        orthogonalize(
            random_fields(template, rng), 3, grid_id=1, store=store, dot=dot, masks=masks, work=template.zeros_like()
        )


def test_record_with_other_layout_is_rejected(template, rng, setup):
    masks, dot = setup
    store = MemoryHistoryStore()
    store.store(1, 1, random_fields(make_template(ny=4, nx=4, nz=2), rng))

    with pytest.raises(ShapeMismatchError):
        orthogonalize(
            random_fields(template, rng), 1, grid_id=1, store=store, dot=dot, masks=masks, work=template.zeros_like()
        )


def test_masked_gradient_stays_zero_on_land(template, rng, land_masks):
    masks = land_masks.resolve(template)
    dot = DotProduct(masks)
    store = MemoryHistoryStore()
    for record in (1, 2):
        store.store(1, record, random_fields(template, rng, masks))
    gradient = random_fields(template, rng, masks)

    orthogonalize(gradient, 2, grid_id=1, store=store, dot=dot, masks=masks, work=template.zeros_like())

    assert gradient.zeta[0, 0] == 0.0
    assert np.all(gradient.u[0, :2] == 0.0)
    assert gradient.v[1, 2] == 0.0
