"""
Equilibrium isotherms q* = f(c) for the sorbed phase.

All models map fluid concentration c [mol/m^3] to equilibrium loading [mol/kg].
Precondition c >= 0: the models are undefined for negative concentration, so
inputs are clamped at zero before evaluation. Integrator undershoot (c slightly
below zero) therefore maps to zero loading instead of hitting the Langmuir
singularity at K_L*c = -1.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence

import numpy as np

from core.errors import InvalidParameterError
from core.types import CaseIsotherm

logger = logging.getLogger(__name__)


class Isotherm(Protocol):
    def loading_equilibrium(self, c): ...


def _clamp_concentration(c):
    c_arr = np.asarray(c, dtype=np.float64)
    return np.maximum(c_arr, 0.0)


def _positive(name: str, value: Any) -> float:
    value = float(value)
    if not np.isfinite(value) or value <= 0.0:
        raise InvalidParameterError(f"isotherm parameter {name} must be positive and finite, got {value!r}")
    return value


@dataclass(frozen=True, slots=True)
class LangmuirIsotherm:
    """
    Langmuir isotherm:

                 q_max * K_L * c
        q*(c) = -----------------
                  1 + K_L * c

    Monotone non-decreasing for c >= 0, q*(0) = 0, bounded above by q_max.
    """

    q_max: float
    K_L: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "q_max", _positive("q_max", self.q_max))
        object.__setattr__(self, "K_L", _positive("K_L", self.K_L))

    def loading_equilibrium(self, c):
        c = _clamp_concentration(c)
        kc = self.K_L * c
        return self.q_max * kc / (1.0 + kc)


@dataclass(frozen=True, slots=True)
class LinearIsotherm:
    """Henry-law isotherm q* = K_H * c (unbounded)."""

    K_H: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "K_H", _positive("K_H", self.K_H))

    def loading_equilibrium(self, c):
        return self.K_H * _clamp_concentration(c)


@dataclass(frozen=True, slots=True)
class FreundlichIsotherm:
    """Freundlich isotherm q* = K_Fr * c**(1/n)."""

    K_Fr: float
    n: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "K_Fr", _positive("K_Fr", self.K_Fr))
        object.__setattr__(self, "n", _positive("n", self.n))

    def loading_equilibrium(self, c):
        return self.K_Fr * np.power(_clamp_concentration(c), 1.0 / self.n)


@dataclass(frozen=True, slots=True, eq=False)
class TabulatedIsotherm:
    """
    Piecewise-linear interpolation of measured isotherm points.

    Data must start at c >= 0 with strictly increasing concentrations and
    non-decreasing, non-negative loadings. Beyond the last point the loading is
    held constant (np.interp edge behavior).
    """

    c_data: np.ndarray
    q_data: np.ndarray

    def __post_init__(self) -> None:
        c_data = np.array(self.c_data, dtype=np.float64, copy=True)
        q_data = np.array(self.q_data, dtype=np.float64, copy=True)
        if c_data.ndim != 1 or c_data.shape != q_data.shape or c_data.size < 2:
            raise InvalidParameterError("tabulated isotherm needs two 1D arrays of equal length >= 2")
        if not (np.all(np.isfinite(c_data)) and np.all(np.isfinite(q_data))):
            raise InvalidParameterError("tabulated isotherm data must be finite")
        if c_data[0] < 0.0 or not np.all(np.diff(c_data) > 0.0):
            raise InvalidParameterError("tabulated isotherm c_data must be >= 0 and strictly increasing")
        if np.any(q_data < 0.0) or np.any(np.diff(q_data) < 0.0):
            raise InvalidParameterError("tabulated isotherm q_data must be non-negative and non-decreasing")
        c_data.flags.writeable = False
        q_data.flags.writeable = False
        object.__setattr__(self, "c_data", c_data)
        object.__setattr__(self, "q_data", q_data)

    def loading_equilibrium(self, c):
        return np.interp(_clamp_concentration(c), self.c_data, self.q_data)


_MODEL_ALIAS = {
    "langmuir": "langmuir",
    "linear": "linear",
    "henry": "linear",
    "freundlich": "freundlich",
    "tabulated": "tabulated",
    "table": "tabulated",
}


def _require(params: Mapping[str, Any], key: str, model: str) -> Any:
    if key not in params:
        raise InvalidParameterError(f"isotherm model {model!r} requires parameter {key!r}")
    return params[key]


def build_isotherm_from_params(model: str, params: Mapping[str, Any]) -> Isotherm:
    """Build an isotherm from a model name and a parameter mapping."""
    key = _MODEL_ALIAS.get(str(model).strip().lower())
    if key is None:
        raise InvalidParameterError(f"Unknown isotherm model: {model!r}")
    if key == "langmuir":
        return LangmuirIsotherm(q_max=_require(params, "q_max", key), K_L=_require(params, "K_L", key))
    if key == "linear":
        return LinearIsotherm(K_H=_require(params, "K_H", key))
    if key == "freundlich":
        return FreundlichIsotherm(K_Fr=_require(params, "K_Fr", key), n=_require(params, "n", key))
    c_data: Sequence[float] = _require(params, "c_data", key)
    q_data: Sequence[float] = _require(params, "q_data", key)
    return TabulatedIsotherm(c_data=np.asarray(c_data), q_data=np.asarray(q_data))


def build_isotherm(cfg_iso: CaseIsotherm) -> Isotherm:
    """Build the isotherm selected in the sorption.isotherm config block."""
    iso = build_isotherm_from_params(cfg_iso.model, cfg_iso.params)
    logger.debug("Isotherm model: %r", iso)
    return iso
