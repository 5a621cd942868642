from __future__ import annotations

import types

import numpy as np
import pytest

from conftest import make_template, random_fields
from pyfourdvar.dotprod import DotProduct, DotResult
from pyfourdvar.errors import ShapeMismatchError
from pyfourdvar.state import GridMasks


def test_dot_result_layout(template, rng):
    masks = GridMasks().resolve(template)
    a = random_fields(template, rng)
    b = random_fields(template, rng)

    result = DotProduct(masks)(a, b)

    assert len(result) == 6
    assert result.names == ("zeta", "u", "v", "tracer_01", "tracer_02")
    assert result.total == pytest.approx(sum(result[i] for i in range(1, 6)))
    assert result.part("u") == pytest.approx(float(np.sum(a.u * b.u)))
    assert result.total == pytest.approx(float(np.dot(
        np.concatenate([v.ravel() for _, v in a.items()]),
        np.concatenate([v.ravel() for _, v in b.items()]),
    )))


def test_bilinear(template, rng):
    dot = DotProduct(GridMasks().resolve(template))
    a, b, c = (random_fields(template, rng) for _ in range(3))
    a_plus_b = a.copy()
    for name, values in a_plus_b.items():
        values += b[name]

    lhs = dot(a_plus_b, c).values
    rhs = dot(a, c).values + dot(b, c).values
    np.testing.assert_allclose(lhs, rhs, rtol=1e-12, atol=1e-12)


def test_symmetric(template, rng, land_masks):
    dot = DotProduct(land_masks.resolve(template))
    a = random_fields(template, rng)
    b = random_fields(template, rng)

    np.testing.assert_array_equal(dot(a, b).values, dot(b, a).values)


def test_inactive_points_do_not_contribute(template, rng, land_masks):
    masks = land_masks.resolve(template)
    dot = DotProduct(masks)
    a = random_fields(template, rng, masks)
    b = random_fields(template, rng, masks)
    noisy = a.copy()
    noisy.zeta[0, 0] = 1.0e6
    noisy.u[0, 0] = -3.0e5

    np.testing.assert_allclose(dot(noisy, b).values, dot(a, b).values, rtol=1e-14)


def test_dot_result_rejects_bad_length():
    with pytest.raises(ValueError):
        DotResult(np.zeros(3), ("zeta",))


def test_from_parts():
    result = DotResult.from_parts([1.0, 2.0, 3.5], ("zeta", "u", "v"))
    np.testing.assert_array_equal(result.values, [6.5, 1.0, 2.0, 3.5])
    assert result.part("v") == 3.5


class FakeComm:
    def __init__(self, size):
        self.size = size
        self.calls = 0

    def Get_size(self):
        return self.size

    def Get_rank(self):
        return 0

    def Allreduce(self, send, recv, op):
        self.calls += 1
        recv[...] = self.size * send


def test_partials_are_reduced_across_ranks(template, rng, monkeypatch):
    monkeypatch.setattr("pyfourdvar.mpi.MPI", types.SimpleNamespace(SUM="sum"))
    masks = GridMasks().resolve(template)
    a = random_fields(template, rng)
    b = random_fields(template, rng)
    comm = FakeComm(3)

    local = DotProduct(masks)(a, b)
    reduced = DotProduct(masks, comm)(a, b)

    assert comm.calls == 1
    np.testing.assert_allclose(reduced.values, 3.0 * local.values, rtol=1e-14)


def test_single_rank_skips_reduction(template, rng):
    comm = FakeComm(1)
    masks = GridMasks().resolve(template)
    a = random_fields(template, rng)

    DotProduct(masks, comm)(a, a)

    assert comm.calls == 0


def test_mismatched_layouts_are_rejected(template, rng):
    dot = DotProduct(GridMasks().resolve(template))
    surface = random_fields(template, rng)
    layered = random_fields(make_template(nz=3), rng)

    with pytest.raises(ShapeMismatchError, match="'u'"):
        dot(surface, layered)
