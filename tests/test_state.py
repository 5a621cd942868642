from __future__ import annotations

import numpy as np
import pytest

import pyfourdvar.state as state
from pyfourdvar.state import FieldSet


def test_field_lookup_by_name(template):
    assert template["tracer_02"] is template.tracers[2]
    assert template["zeta"] is template.zeta


@pytest.mark.parametrize("name", ["salt", "tracer_03", "tracer_xx", "tracer_", "tracer_-1"])
def test_unknown_field_raises_key_error(template, name):
    with pytest.raises(KeyError, match=name):
        template[name]


def test_tracers_are_sorted_by_id():
    fields = FieldSet(np.zeros((2, 2)), np.zeros((2, 2)), np.zeros((2, 2)), {3: np.ones((2, 2)), 1: np.zeros((2, 2))})

    assert fields.names == ("zeta", "u", "v", "tracer_01", "tracer_03")


def test_public_names_are_exported():
    for name in state.__all__:
        assert hasattr(state, name), name
    assert "Mask" in state.__all__
