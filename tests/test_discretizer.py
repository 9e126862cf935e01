from __future__ import annotations

import numpy as np
import pytest

from assembly.discretizer import MethodOfLinesSystem, build_system
from core.errors import BoundaryUnsolvableError, InvalidParameterError
from core.grid import build_grid
from core.layout import FieldLayout, build_layout
from physics.boundary import AdvectiveOutflow, Dirichlet, Robin, ZeroFlux, encode_boundary
from physics.flux import AdvectionDispersion, TransportModel


def _system(cfg):
    grid = build_grid(cfg)
    return build_system(cfg, grid, build_layout(cfg, grid)), grid


def _numeric_jacobian(system, y, eps=1e-6):
    f0 = system.rhs(0.0, y)
    J = np.zeros((y.size, y.size))
    for j in range(y.size):
        yp = y.copy()
        yp[j] += eps
        J[:, j] = (system.rhs(0.0, yp) - f0) / eps
    return J


def test_rhs_shape_and_constrained_boundary_slots(make_cfg):
    system, grid = _system(make_cfg())
    y = np.linspace(0.0, 1.0, grid.N)
    dydt = system.rhs(0.0, y)
    assert dydt.shape == (grid.N,)
    assert dydt[0] == 0.0
    assert dydt[-1] == 0.0
    assert not system.boundary_mode("C", "left").free
    assert not system.boundary_mode("C", "right").free


def test_uniform_inlet_state_is_steady(make_cfg):
    cfg = make_cfg(transport={"C_in": 3.0})
    system, grid = _system(cfg)
    dydt = system.rhs(0.0, np.full(grid.N, 3.0))
    np.testing.assert_allclose(dydt, 0.0, atol=1e-12)


def test_constrain_applies_boundary_relations(make_cfg):
    cfg = make_cfg(transport={"C_in": 2.0})
    system, grid = _system(cfg)
    y = np.zeros(grid.N)
    y[-2] = 0.7
    out = system.constrain(y)
    assert out[0] == 2.0
    assert out[-1] == pytest.approx(0.7)
    assert y[0] == 0.0  # input untouched


def test_interior_stencil_matches_upwind_laplacian(make_cfg):
    cfg = make_cfg(transport={"D": 0.05, "v": 1.0, "C_in": 0.0})
    system, grid = _system(cfg)
    dx = float(grid.dx[0])
    y = np.sin(np.pi * grid.x)
    dydt = system.rhs(0.0, y)
    u = system.constrain(y)
    i = np.arange(2, grid.N - 2)
    expected = 0.05 * (u[i + 1] - 2 * u[i] + u[i - 1]) / dx**2 - 1.0 * (u[i] - u[i - 1]) / dx
    np.testing.assert_allclose(dydt[i], expected, rtol=1e-10, atol=1e-10)


def test_central_scheme_uses_face_average(make_cfg):
    cfg = make_cfg(transport={"D": 0.0, "v": 1.0, "C_in": 0.0, "advection_scheme": "central"})
    system, grid = _system(cfg)
    dx = float(grid.dx[0])
    y = grid.x**2
    dydt = system.rhs(0.0, y)
    i = np.arange(2, grid.N - 2)
    np.testing.assert_allclose(dydt[i], -(y[i + 1] - y[i - 1]) / (2 * dx), rtol=1e-10)


def test_zero_dispersion_outlet_is_free(make_cfg):
    cfg = make_cfg(transport={"D": 0.0, "v": 1.0, "C_in": 1.0})
    system, grid = _system(cfg)
    assert system.boundary_mode("C", "right").free
    dx = float(grid.dx[0])
    y = np.zeros(grid.N)
    y[-2] = 1.0
    dydt = system.rhs(0.0, y)
    # half-cell balance: (f_b - F_face)/(dx/2) with f_b = -v*u_N, F_face = -v*u_{N-2}
    assert dydt[-1] == pytest.approx(2.0 * (1.0 - 0.0) / dx)


def test_coupled_sorption_sources(make_cfg, sorption_raw):
    cfg = make_cfg(transport={"C_in": 100.0}, sorption=sorption_raw)
    system, grid = _system(cfg)
    assert system.boundary_mode("q", "left").free
    assert system.boundary_mode("q", "right").free

    layout = system.layout
    u = np.zeros((2, grid.N))
    u[0, :] = 100.0
    dydt = layout.unpack(system.rhs(0.0, layout.pack(u)))
    rate = 0.1 * 1.5e-5 * 1.0e5 / (1.0 + 1.0e5)
    np.testing.assert_allclose(dydt[1], rate, rtol=1e-12)
    capacity = (0.7 / 0.3) * 1.0e6
    np.testing.assert_allclose(dydt[0, 1:-1], -capacity * rate, rtol=1e-10)


def test_sparsity_pattern_covers_numeric_jacobian(make_cfg, sorption_raw):
    cfg = make_cfg(geometry={"n_nodes": 7}, transport={"C_in": 1.0}, sorption=sorption_raw)
    system, grid = _system(cfg)
    rng = np.random.default_rng(0)
    y = rng.uniform(0.1, 1.0, system.layout.size)
    y[grid.N :] *= 1e-6
    J = _numeric_jacobian(system, y)
    S = system.jac_sparsity().toarray().astype(bool)
    assert S.shape == (2 * grid.N, 2 * grid.N)
    assert not np.any((np.abs(J) > 1e-9) & ~S)
    # the outlet loading reads the outflow value re-solved from C_{N-2}
    assert J[2 * grid.N - 1, grid.N - 2] != 0.0
    # C: tridiagonal, q: diagonal, node-local coupling both ways, plus the two
    # sorbed boundary rows reading the interior fluid neighbour
    assert system.jac_sparsity().nnz == 6 * grid.N


def test_sparsity_pattern_covers_robin_inlet_coupling(make_cfg, sorption_raw):
    cfg = make_cfg(
        geometry={"n_nodes": 7},
        transport={"C_in": 1.0},
        sorption=sorption_raw,
        boundaries={"C": {"left": {"type": "robin", "a": 1.0, "b": 0.0, "q": 1.0}}},
    )
    system, grid = _system(cfg)
    assert not system.boundary_mode("C", "left").free
    rng = np.random.default_rng(1)
    y = rng.uniform(1e-3, 1e-2, system.layout.size)
    y[grid.N :] *= 1e-6
    J = _numeric_jacobian(system, y, eps=1e-9)
    S = system.jac_sparsity().toarray().astype(bool)
    i_q0, i_c1 = system.layout.index("q", 0), system.layout.index("C", 1)
    assert abs(J[i_q0, i_c1]) > 1e-9
    assert S[i_q0, i_c1]
    assert not np.any((np.abs(J) > 1e-9) & ~S)


def test_inconsistent_relation_fails_at_evaluation(make_cfg):
    cfg = make_cfg()
    grid = build_grid(cfg)
    layout = FieldLayout(field_names=("C",), n_nodes=grid.N)
    model = TransportModel(field_names=("C",), fluxes=(AdvectionDispersion(D=0.0, v=0.0),))
    relations = {
        ("C", "left"): encode_boundary(Robin(a=0.0, b=1.0, q=1.0), field="C", side="left"),
        ("C", "right"): encode_boundary(ZeroFlux(), field="C", side="right"),
    }
    system = MethodOfLinesSystem(grid, layout, model, relations)
    with pytest.raises(BoundaryUnsolvableError) as excinfo:
        system.rhs(0.0, np.zeros(grid.N))
    assert (excinfo.value.field, excinfo.value.side) == ("C", "left")


def test_construction_errors(make_cfg):
    cfg = make_cfg()
    grid = build_grid(cfg)
    layout = FieldLayout(field_names=("C",), n_nodes=grid.N)
    model = TransportModel(field_names=("C",), fluxes=(AdvectionDispersion(D=0.1, v=1.0),))
    relations = {
        ("C", "left"): encode_boundary(Dirichlet(1.0), field="C", side="left"),
        ("C", "right"): encode_boundary(AdvectiveOutflow(1.0), field="C", side="right"),
    }
    with pytest.raises(InvalidParameterError, match="advection_scheme"):
        MethodOfLinesSystem(grid, layout, model, relations, advection_scheme="weno")
    with pytest.raises(InvalidParameterError, match="missing boundary relation"):
        MethodOfLinesSystem(grid, layout, model, {("C", "left"): relations[("C", "left")]})
