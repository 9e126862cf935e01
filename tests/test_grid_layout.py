from __future__ import annotations

import numpy as np
import pytest

from core.errors import InvalidParameterError
from core.grid import build_checkpoints, build_grid, build_grid_from_arrays, build_uniform_nodes
from core.layout import FieldLayout, build_layout
from core.types import CaseConfig, CaseGeometry, CaseSorption, CaseTime, CaseTransport, Grid1D


def test_uniform_nodes_and_checkpoints():
    x = build_uniform_nodes(10.0, 100)
    assert x[0] == 0.0 and x[-1] == 10.0
    np.testing.assert_allclose(np.diff(x), 10.0 / 99)
    t = build_checkpoints(0.0, 2000.0, 500)
    assert t.size == 500 and t[-1] == 2000.0


def test_grid_from_config_is_read_only(make_cfg):
    grid = build_grid(make_cfg())
    assert (grid.N, grid.M) == (21, 11)
    assert grid.length == pytest.approx(1.0)
    with pytest.raises(ValueError):
        grid.x[0] = 1.0


def test_grid_rejects_bad_arrays():
    with pytest.raises(InvalidParameterError, match="uniform"):
        build_grid_from_arrays([0.0, 0.1, 0.3], [0.0, 1.0])
    with pytest.raises(InvalidParameterError, match="strictly increasing"):
        Grid1D(x=np.array([0.0, 1.0, 2.0]), t=np.array([1.0, 0.0]), dx=np.array([1.0, 1.0]))
    with pytest.raises(InvalidParameterError):
        build_uniform_nodes(1.0, 2)


def test_layout_is_field_major(make_cfg, sorption_raw):
    cfg = make_cfg(sorption=sorption_raw)
    layout = build_layout(cfg, build_grid(cfg))
    N = cfg.geometry.n_nodes
    assert layout.field_names == ("C", "q")
    assert layout.size == 2 * N
    assert layout.index("q", 0) == N
    assert layout.index("C", -1) == N - 1
    u = np.arange(2 * N, dtype=float).reshape(2, N)
    y = layout.pack(u)
    np.testing.assert_array_equal(y, np.arange(2 * N))
    np.testing.assert_array_equal(layout.unpack(y), u)
    with pytest.raises(IndexError):
        layout.index("C", N)
    with pytest.raises(ValueError, match="Unknown block"):
        layout.require_block("T")
    with pytest.raises(ValueError, match="Duplicate"):
        FieldLayout(field_names=("C", "C"), n_nodes=5)


def test_config_validation():
    with pytest.raises(InvalidParameterError, match="transport.v"):
        CaseTransport(D=0.1, v=-1.0, C_in=1.0)
    with pytest.raises(InvalidParameterError, match="transport.D"):
        CaseTransport(D=-0.1, v=1.0, C_in=1.0)
    with pytest.raises(InvalidParameterError, match="n_nodes"):
        CaseGeometry(length=1.0, n_nodes=2)
    with pytest.raises(InvalidParameterError, match="t_end"):
        CaseTime(t_end=0.0, n_checkpoints=10)
    with pytest.raises(InvalidParameterError, match="porosity"):
        CaseSorption(enabled=True, porosity=1.0)
    # disabled sorption is not validated
    CaseSorption(enabled=False, porosity=1.0)


def test_boundaries_required_for_enabled_fields(make_cfg, sorption_raw):
    cfg = make_cfg(sorption=sorption_raw)
    boundaries = {"C": cfg.boundaries["C"], "q": {"left": cfg.boundaries["q"]["left"]}}
    with pytest.raises(InvalidParameterError, match="boundaries.q"):
        CaseConfig(
            case=cfg.case,
            paths=cfg.paths,
            geometry=cfg.geometry,
            time=cfg.time,
            transport=cfg.transport,
            sorption=cfg.sorption,
            boundaries=boundaries,
        )


def test_field_vector_expands_per_field_values(make_cfg, sorption_raw):
    cfg = make_cfg(sorption=sorption_raw)
    layout = build_layout(cfg, build_grid(cfg))
    N = layout.n_nodes
    vec = layout.field_vector({"C": 1e-6, "q": 1e-13})
    assert vec.shape == (layout.size,)
    np.testing.assert_array_equal(vec[:N], 1e-6)
    np.testing.assert_array_equal(vec[N:], 1e-13)
    with pytest.raises(ValueError, match="no value given"):
        layout.field_vector({"C": 1e-6})
    with pytest.raises(ValueError, match="unknown fields"):
        layout.field_vector({"C": 1e-6, "q": 1e-13, "T": 1.0})
