from __future__ import annotations

import numpy as np
import pytest

from core.errors import InvalidParameterError
from core.types import CaseIsotherm
from physics.isotherm import (
    FreundlichIsotherm,
    LangmuirIsotherm,
    LinearIsotherm,
    TabulatedIsotherm,
    build_isotherm,
    build_isotherm_from_params,
)


def test_langmuir_reference_values():
    iso = LangmuirIsotherm(q_max=1.5e-5, K_L=1.0e3)
    assert iso.loading_equilibrium(0.0) == 0.0
    assert iso.loading_equilibrium(100.0) == pytest.approx(1.49998500015e-5, rel=1e-9)
    assert iso.loading_equilibrium(100.0) == pytest.approx(1.4999e-5, rel=1e-4)


def test_langmuir_monotone_and_bounded():
    iso = LangmuirIsotherm(q_max=1.5e-5, K_L=1.0e3)
    c = np.logspace(-8, 8, 200)
    q = iso.loading_equilibrium(c)
    assert np.all(np.diff(q) > 0.0)
    assert np.all(q < 1.5e-5)
    assert q[-1] == pytest.approx(1.5e-5, rel=1e-9)


def test_negative_concentration_is_clamped():
    iso = LangmuirIsotherm(q_max=2.0, K_L=1.0)
    # K_L*c = -1 would be singular without the clamp
    q = iso.loading_equilibrium(np.array([-1.0, -1e-12, 1.0]))
    assert q[0] == 0.0
    assert q[1] == 0.0
    assert q[2] == pytest.approx(1.0)


@pytest.mark.parametrize("q_max, K_L", [(0.0, 1.0), (-1.0, 1.0), (1.0, 0.0), (1.0, float("nan"))])
def test_langmuir_rejects_nonphysical_parameters(q_max, K_L):
    with pytest.raises(InvalidParameterError):
        LangmuirIsotherm(q_max=q_max, K_L=K_L)


def test_linear_and_freundlich():
    assert LinearIsotherm(K_H=2.0).loading_equilibrium(3.0) == pytest.approx(6.0)
    fr = FreundlichIsotherm(K_Fr=2.0, n=2.0)
    assert fr.loading_equilibrium(9.0) == pytest.approx(6.0)
    assert fr.loading_equilibrium(-4.0) == 0.0


def test_tabulated_interpolates_and_holds_last_value():
    iso = TabulatedIsotherm(c_data=[0.0, 1.0, 3.0], q_data=[0.0, 2.0, 3.0])
    np.testing.assert_allclose(iso.loading_equilibrium(np.array([0.5, 2.0, 10.0])), [1.0, 2.5, 3.0])


@pytest.mark.parametrize(
    "c_data, q_data",
    [
        ([0.0, 1.0], [1.0, 0.5]),
        ([1.0, 0.5], [0.0, 1.0]),
        ([-1.0, 1.0], [0.0, 1.0]),
        ([0.0], [0.0]),
    ],
)
def test_tabulated_rejects_bad_data(c_data, q_data):
    with pytest.raises(InvalidParameterError):
        TabulatedIsotherm(c_data=c_data, q_data=q_data)


def test_factory_by_model_name():
    iso = build_isotherm(CaseIsotherm(model="Langmuir", params={"q_max": 1.0, "K_L": 2.0}))
    assert isinstance(iso, LangmuirIsotherm)
    assert isinstance(build_isotherm_from_params("henry", {"K_H": 1.0}), LinearIsotherm)
    assert isinstance(
        build_isotherm_from_params("table", {"c_data": [0.0, 1.0], "q_data": [0.0, 1.0]}),
        TabulatedIsotherm,
    )


def test_factory_errors():
    with pytest.raises(InvalidParameterError, match="Unknown isotherm model"):
        build_isotherm_from_params("bet", {})
    with pytest.raises(InvalidParameterError, match="requires parameter 'K_L'"):
        build_isotherm_from_params("langmuir", {"q_max": 1.0})
