"""
Per-field flux and source closures for the fixed-bed transport system.

Conventions (pdepe-style flux balance, du/dt = df/dx + s):
- Advection-dispersion field: f = D*du/dx - v*u, s = coupling source (or 0).
- Sorbed field (linear driving force): f = 0, s = K_F*(q*(c) - q).
- Coupled fluid source: s_C = -((1-eps)/eps) * rho * dq/dt.

All closures are pure and vectorised over nodes; u and dudx carry one row per
field, shape (k, n).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Tuple

import numpy as np

from core.errors import InvalidParameterError
from core.types import FIELD_FLUID, FIELD_SORBED, CaseConfig, FloatArray
from physics.isotherm import Isotherm, build_isotherm

logger = logging.getLogger(__name__)


class FieldFlux(Protocol):
    D: float
    v: float

    @property
    def transported(self) -> bool: ...

    def flux(self, u, dudx): ...


@dataclass(frozen=True, slots=True)
class AdvectionDispersion:
    """f = D*du/dx - v*u. Negative D or v are non-physical and rejected."""

    D: float
    v: float

    def __post_init__(self) -> None:
        for name in ("D", "v"):
            value = float(getattr(self, name))
            if not np.isfinite(value) or value < 0.0:
                raise InvalidParameterError(f"{name} must be finite and >= 0, got {value!r}")
            object.__setattr__(self, name, value)

    @property
    def transported(self) -> bool:
        return self.D > 0.0 or self.v > 0.0

    def flux(self, u, dudx):
        return self.D * dudx - self.v * u


@dataclass(frozen=True, slots=True)
class Immobile:
    """Field with no spatial flux (sorbed loading stays where it is)."""

    D: float = 0.0
    v: float = 0.0

    @property
    def transported(self) -> bool:
        return False

    def flux(self, u, dudx):
        return np.zeros_like(np.asarray(u, dtype=np.float64))


@dataclass(frozen=True, slots=True)
class LinearDrivingForce:
    """Uptake rate dq/dt = K_F * (q*(c) - q)."""

    K_F: float
    isotherm: Isotherm

    def __post_init__(self) -> None:
        value = float(self.K_F)
        if not np.isfinite(value) or value <= 0.0:
            raise InvalidParameterError(f"K_F must be positive and finite, got {value!r}")
        object.__setattr__(self, "K_F", value)

    def rate(self, c, q):
        return self.K_F * (self.isotherm.loading_equilibrium(c) - q)


@dataclass(frozen=True, slots=True)
class SorptionCoupling:
    """Couples the fluid field to the sorbed field through the uptake rate."""

    ldf: LinearDrivingForce
    porosity: float
    density: float
    fluid_index: int = 0
    sorbed_index: int = 1

    def __post_init__(self) -> None:
        if not (0.0 < float(self.porosity) < 1.0):
            raise InvalidParameterError(f"porosity must lie in (0, 1), got {self.porosity!r}")
        if not (np.isfinite(self.density) and float(self.density) > 0.0):
            raise InvalidParameterError(f"density must be positive and finite, got {self.density!r}")

    @property
    def capacity_factor(self) -> float:
        """Fluid-equivalent concentration per unit loading: ((1-eps)/eps) * rho."""
        return (1.0 - float(self.porosity)) / float(self.porosity) * float(self.density)

    def sources(self, u: FloatArray) -> FloatArray:
        rate = self.ldf.rate(u[self.fluid_index], u[self.sorbed_index])
        s = np.zeros_like(u)
        s[self.sorbed_index] = rate
        s[self.fluid_index] = -self.capacity_factor * rate
        return s


@dataclass(frozen=True, slots=True)
class TransportModel:
    """A system of k fields on a shared grid with per-field flux closures."""

    field_names: Tuple[str, ...]
    fluxes: Tuple[FieldFlux, ...]
    coupling: Optional[SorptionCoupling] = None

    def __post_init__(self) -> None:
        if len(self.field_names) != len(self.fluxes):
            raise InvalidParameterError(
                f"{len(self.field_names)} field names but {len(self.fluxes)} flux closures"
            )
        if self.coupling is not None:
            k = len(self.field_names)
            for idx in (self.coupling.fluid_index, self.coupling.sorbed_index):
                if not (0 <= idx < k):
                    raise InvalidParameterError(f"coupling field index {idx} out of range for {k} fields")

    @property
    def n_fields(self) -> int:
        return len(self.field_names)

    def field_index(self, name: str) -> int:
        return self.field_names.index(name)

    def flux(self, u: FloatArray, dudx: FloatArray) -> FloatArray:
        """Flux f for every field; u, dudx shape (k, n)."""
        f = np.empty_like(np.asarray(u, dtype=np.float64))
        for j, closure in enumerate(self.fluxes):
            f[j] = closure.flux(u[j], dudx[j])
        return f

    def source(self, u: FloatArray) -> FloatArray:
        """Algebraic source s for every field; u shape (k, n)."""
        u = np.asarray(u, dtype=np.float64)
        if self.coupling is None:
            return np.zeros_like(u)
        return self.coupling.sources(u)

    def field_scales(self, c_ref: float) -> Dict[str, float]:
        """
        Typical magnitude of each field when the fluid sits at c_ref.

        The sorbed field scales with its equilibrium loading at c_ref; fields
        without a usable scale fall back to the fluid one.
        """
        c_ref = float(c_ref) if np.isfinite(c_ref) and c_ref > 0.0 else 1.0
        scales = {name: c_ref for name in self.field_names}
        if self.coupling is not None:
            q_ref = float(self.coupling.ldf.isotherm.loading_equilibrium(c_ref))
            if np.isfinite(q_ref) and q_ref > 0.0:
                scales[self.field_names[self.coupling.sorbed_index]] = q_ref
        return scales

    def evaluate(self, u: FloatArray, dudx: FloatArray) -> Tuple[FloatArray, FloatArray]:
        """(flux, source) at the given points."""
        return self.flux(u, dudx), self.source(u)


def build_transport_model(cfg: CaseConfig) -> TransportModel:
    """Build the single-field or coupled system described by cfg."""
    tr = cfg.transport
    fluid = AdvectionDispersion(D=tr.D, v=tr.v)
    if not cfg.sorption.enabled:
        return TransportModel(field_names=(FIELD_FLUID,), fluxes=(fluid,))

    sp = cfg.sorption
    ldf = LinearDrivingForce(K_F=sp.K_F, isotherm=build_isotherm(sp.isotherm))
    coupling = SorptionCoupling(ldf=ldf, porosity=sp.porosity, density=sp.density)
    logger.debug(
        "Coupled sorption: K_F=%.3e capacity_factor=%.3e isotherm=%s",
        ldf.K_F,
        coupling.capacity_factor,
        type(ldf.isotherm).__name__,
    )
    return TransportModel(
        field_names=(FIELD_FLUID, FIELD_SORBED),
        fluxes=(fluid, Immobile()),
        coupling=coupling,
    )
