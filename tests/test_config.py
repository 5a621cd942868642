from __future__ import annotations

import json

import pytest

from pyfourdvar.config import DescentConfig, load_config


def test_defaults():
    config = DescentConfig()

    assert config.initial_step == 1.0
    assert config.orthogonalize is True
    assert config.normalize is False
    assert config.persist_gradients is True


def test_load_config(tmp_path):
    path = tmp_path / "descent.json"
    path.write_text(json.dumps({"initial_step": 0.25, "normalize": True}), encoding="utf-8")

    config = load_config(path)

    assert config.initial_step == 0.25
    assert config.normalize is True
    assert config.orthogonalize is True


def test_unknown_option_is_rejected():
    with pytest.raises(ValueError, match="CGstep"):
        DescentConfig.from_mapping({"CGstep": 1.0})


@pytest.mark.parametrize("step", [0.0, -1.0, float("nan"), float("inf")])
def test_initial_step_must_be_positive(step):
    with pytest.raises(ValueError):
        DescentConfig(initial_step=step)


def test_updated_ignores_missing_overrides():
    config = DescentConfig(initial_step=0.5).updated(initial_step=None, normalize=True)

    assert config.initial_step == 0.5
    assert config.normalize is True
    assert config.as_dict()["normalize"] is True


def test_config_file_must_hold_an_object(tmp_path):
    path = tmp_path / "descent.json"
    path.write_text("[1, 2]", encoding="utf-8")

    with pytest.raises(ValueError):
        load_config(path)
