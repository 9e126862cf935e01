"""
End-to-end behaviour of the fixed-bed solver.

Covers the demonstrated adsorption case, sharp-front transport, physical
bounds, determinism, grid refinement, mass balance and the analytical
reference.
"""

from __future__ import annotations

import numpy as np
import pytest

from driver.run_case import solve_case
from physics.analytical import ogata_banks
from postprocess.assembler import front_arrival_time
from postprocess.mass_balance import compute_mass_balance


@pytest.fixture
def adsorption_cfg(make_cfg, sorption_raw):
    return make_cfg(
        geometry={"length": 10.0, "n_nodes": 100},
        time={"t_end": 2000.0, "n_checkpoints": 101},
        transport={"D": 2.0e-2, "v": 1.0e-3, "C_in": 100.0},
        sorption=sorption_raw,
        integrator={"rtol": 1.0e-3, "atol": 1.0e-6},
    )


def test_adsorption_breakthrough_is_partial_and_rising(adsorption_cfg):
    sol, _ = solve_case(adsorption_cfg)
    outlet = sol.breakthrough("C")
    assert sol.values.shape == (101, 100, 2)
    assert outlet[0] == 0.0
    assert 0.0 < outlet[-1] < 100.0
    assert outlet[-1] < 90.0
    assert np.all(np.diff(outlet) >= -1e-2)
    # loading stays below capacity up to rtol
    assert np.max(sol.field_values("q")) <= 1.5e-5 * (1.0 + 1.0e-3)


def test_adsorption_mass_balance_closes(adsorption_cfg):
    sol, system = solve_case(adsorption_cfg)
    mb = compute_mass_balance(sol, system)
    assert mb.inflow > 0.0
    assert mb.sorbed_change > 0.0
    assert mb.relative_error < 0.05
    assert mb.closed


def test_sorption_retards_the_front(make_cfg, sorption_raw, adsorption_cfg):
    coupled, _ = solve_case(adsorption_cfg)
    plain_cfg = make_cfg(
        geometry={"length": 10.0, "n_nodes": 100},
        time={"t_end": 2000.0, "n_checkpoints": 101},
        transport={"D": 2.0e-2, "v": 1.0e-3, "C_in": 100.0},
        integrator={"rtol": 1.0e-3, "atol": 1.0e-6},
    )
    plain, _ = solve_case(plain_cfg)
    assert coupled.breakthrough("C")[-1] < plain.breakthrough("C")[-1]


def test_boundary_relations_hold_at_every_checkpoint(make_cfg):
    sol, _ = solve_case(make_cfg(transport={"C_in": 5.0}))
    C = sol.field_values("C")
    np.testing.assert_array_equal(C[:, 0], 5.0)
    np.testing.assert_allclose(C[:, -1], C[:, -2], rtol=1e-12, atol=0.0)


def test_pure_advection_front_arrives_at_x_over_v(make_cfg):
    cfg = make_cfg(
        geometry={"length": 1.0, "n_nodes": 201},
        time={"t_end": 1.0, "n_checkpoints": 201},
        transport={"D": 0.0, "v": 1.0, "C_in": 1.0},
        integrator={"rtol": 1.0e-6, "atol": 1.0e-9},
    )
    sol, _ = solve_case(cfg)
    for node in (50, 100, 150):
        x = sol.x[node]
        assert front_arrival_time(sol, node, 0.5) == pytest.approx(x / 1.0, abs=0.03)


def test_single_field_breakthrough_stays_bounded_and_rises(make_cfg):
    C_in = 100.0
    sol, _ = solve_case(
        make_cfg(
            geometry={"length": 10.0, "n_nodes": 100},
            time={"t_end": 2000.0, "n_checkpoints": 500},
            transport={"D": 2.0e-2, "v": 1.0e-3, "C_in": C_in},
            integrator={"rtol": 1.0e-3, "atol": 1.0e-6},
        )
    )
    C = sol.field_values("C")
    tol = 1e-3 * C_in
    assert C.min() >= -tol
    assert C.max() <= C_in + tol
    outlet = sol.breakthrough("C")
    assert np.all((outlet >= -tol) & (outlet <= C_in + tol))
    # front has reached the outlet but the bed is far from saturated
    assert 0.0 < outlet[-1] < 90.0
    assert np.all(np.diff(outlet[1:]) > 0.0)


def test_reruns_are_deterministic(make_cfg, sorption_raw):
    cfg_kwargs = dict(
        geometry={"length": 10.0, "n_nodes": 40},
        time={"t_end": 500.0, "n_checkpoints": 11},
        transport={"D": 2.0e-2, "v": 1.0e-3, "C_in": 100.0},
        sorption=sorption_raw,
    )
    a, _ = solve_case(make_cfg(**cfg_kwargs))
    b, _ = solve_case(make_cfg(**cfg_kwargs))
    np.testing.assert_array_equal(a.values, b.values)
    np.testing.assert_array_equal(a.face_flux_in, b.face_flux_in)


def test_grid_refinement_converges_monotonically(make_cfg):
    def run(n_nodes):
        cfg = make_cfg(
            geometry={"length": 1.0, "n_nodes": n_nodes},
            time={"t_end": 0.5, "n_checkpoints": 6},
            transport={"D": 0.05, "v": 1.0, "C_in": 1.0},
            integrator={"rtol": 1.0e-7, "atol": 1.0e-10},
        )
        sol, _ = solve_case(cfg)
        return sol.field_values("C")

    ref = run(321)
    errors = []
    for n_nodes in (21, 41, 81):
        stride = 320 // (n_nodes - 1)
        C = run(n_nodes)
        errors.append(float(np.max(np.abs(C - ref[:, ::stride]))))
    assert errors[0] > errors[1] > errors[2]
    assert errors[2] < 0.05


def test_matches_ogata_banks_away_from_outlet(make_cfg):
    D, v, C_in = 0.01, 1.0, 1.0
    cfg = make_cfg(
        geometry={"length": 2.0, "n_nodes": 401},
        time={"t_end": 0.6, "n_checkpoints": 4},
        transport={"D": D, "v": v, "C_in": C_in, "advection_scheme": "central"},
        integrator={"rtol": 1.0e-6, "atol": 1.0e-9},
    )
    sol, _ = solve_case(cfg)
    exact = ogata_banks(sol.x[None, :], sol.t[:, None], D, v, C_in)
    numeric = sol.field_values("C")
    assert np.max(np.abs(numeric[1:] - exact[1:])) < 0.02 * C_in
