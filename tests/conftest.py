from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any, Dict

import pytest

from driver.run_case import build_case_config

BASE_RAW: Dict[str, Any] = {
    "case": {"id": "unit"},
    "paths": {"output_root": "out"},
    "geometry": {"length": 1.0, "n_nodes": 21},
    "time": {"t0": 0.0, "t_end": 0.5, "n_checkpoints": 11},
    "transport": {"D": 0.05, "v": 1.0, "C_in": 1.0, "advection_scheme": "upwind"},
    "integrator": {"method": "BDF", "rtol": 1.0e-6, "atol": 1.0e-9},
}


def _merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = copy.deepcopy(value)
    return out


@pytest.fixture
def make_cfg(tmp_path: Path):
    """Build a CaseConfig from BASE_RAW with nested section overrides."""

    def _make(**overrides):
        return build_case_config(_merge(BASE_RAW, overrides), base=tmp_path)

    return _make


@pytest.fixture
def sorption_raw() -> Dict[str, Any]:
    return {
        "enabled": True,
        "porosity": 0.3,
        "density": 1.0e6,
        "K_F": 0.1,
        "isotherm": {"model": "langmuir", "params": {"q_max": 1.5e-5, "K_L": 1.0e3}},
    }


@pytest.fixture(autouse=True)
def _drop_file_handlers():
    """run.log handlers attached by the driver must not outlive a test."""
    yield
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, logging.FileHandler):
            root.removeHandler(handler)
            handler.close()
