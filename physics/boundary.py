"""
Boundary encoder: physical boundary statements -> flux-balance relations.

Every (field, side) carries one relation of the form

    p(u) + q * f(u, du/dx) = 0

with f the field's natural flux (f = D*du/dx - v*u for the fluid). The same
sign convention holds on both sides; it is not an outward normal.

Variants:
- Dirichlet(V):          p(u) = u - V,  q = 0
- AdvectiveOutflow(v):   p(u) = v*u,    q = 1   (with f above this leaves D*du/dx = 0)
- ZeroFlux():            p = 0,         q = 1
- Robin(a, b, q) or Robin(p=callable, q)

The outflow encoding assumes v >= 0 (flow toward the right side). Reversed flow
needs the relation rederived and is rejected upstream.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Union

import numpy as np

from core.errors import InvalidParameterError
from core.types import CaseBoundary

SIDES = ("left", "right")


@dataclass(frozen=True, slots=True)
class Dirichlet:
    value: float


@dataclass(frozen=True, slots=True)
class AdvectiveOutflow:
    velocity: float


@dataclass(frozen=True, slots=True)
class ZeroFlux:
    pass


@dataclass(frozen=True, slots=True)
class Robin:
    """General relation; either affine p(u) = a*u + b or a callable p."""

    a: float = 0.0
    b: float = 0.0
    q: float = 1.0
    p: Optional[Callable[[float], float]] = None


BoundaryCondition = Union[Dirichlet, AdvectiveOutflow, ZeroFlux, Robin]


@dataclass(frozen=True, slots=True)
class BoundaryRelation:
    """Canonical (p, q) pair for one field on one side."""

    field: str
    side: str
    kind: str
    a: float = 0.0
    b: float = 0.0
    q: float = 0.0
    p_func: Optional[Callable[[float], float]] = None

    @property
    def is_affine(self) -> bool:
        return self.p_func is None

    @property
    def is_dirichlet(self) -> bool:
        return self.q == 0.0

    def p(self, u):
        if self.p_func is not None:
            return self.p_func(u)
        return self.a * u + self.b

    def residual(self, u, f):
        """p(u) + q*f; zero when the relation holds."""
        return self.p(u) + self.q * f

    def boundary_flux(self, u):
        """Flux implied by the relation, f = -p(u)/q (only for q != 0)."""
        if self.q == 0.0:
            raise ValueError(f"{self.kind} relation on {self.field}/{self.side} does not fix a flux")
        return -self.p(u) / self.q


def _finite(name: str, value: float) -> float:
    value = float(value)
    if not np.isfinite(value):
        raise InvalidParameterError(f"boundary parameter {name} must be finite, got {value!r}")
    return value


def encode_boundary(condition: BoundaryCondition, *, field: str, side: str) -> BoundaryRelation:
    """Translate one boundary statement into its (p, q) relation."""
    if side not in SIDES:
        raise InvalidParameterError(f"side must be 'left' or 'right', got {side!r}")

    if isinstance(condition, Dirichlet):
        value = _finite("value", condition.value)
        return BoundaryRelation(field=field, side=side, kind="dirichlet", a=1.0, b=-value, q=0.0)

    if isinstance(condition, AdvectiveOutflow):
        v = _finite("velocity", condition.velocity)
        if v < 0.0:
            raise InvalidParameterError(
                f"advective outflow on {field}/{side} is derived for v >= 0; got v={v:g}"
            )
        return BoundaryRelation(field=field, side=side, kind="outflow", a=v, b=0.0, q=1.0)

    if isinstance(condition, ZeroFlux):
        return BoundaryRelation(field=field, side=side, kind="zero_flux", a=0.0, b=0.0, q=1.0)

    if isinstance(condition, Robin):
        q = _finite("q", condition.q)
        if condition.p is not None:
            if not callable(condition.p):
                raise InvalidParameterError(f"Robin p on {field}/{side} must be callable")
            return BoundaryRelation(field=field, side=side, kind="robin", q=q, p_func=condition.p)
        a = _finite("a", condition.a)
        b = _finite("b", condition.b)
        if q == 0.0 and a == 0.0:
            # p is constant and there is no flux term: either 0 = 0 or b = 0 with b != 0.
            raise InvalidParameterError(
                f"degenerate relation on {field}/{side}: q=0 requires p to depend on u (a != 0)"
            )
        return BoundaryRelation(field=field, side=side, kind="robin", a=a, b=b, q=q)

    raise InvalidParameterError(f"Unsupported boundary condition type: {type(condition).__name__}")


def build_boundary_condition(
    raw: CaseBoundary,
    *,
    default_value: Optional[float] = None,
    velocity: float = 0.0,
) -> BoundaryCondition:
    """Build a boundary variant from a boundaries.<field>.<side> config entry."""
    kind = str(raw.type).strip().lower()
    if kind in ("dirichlet", "fixed_value", "fixed"):
        value = raw.value if raw.value is not None else default_value
        if value is None:
            raise InvalidParameterError("dirichlet boundary requires a value")
        return Dirichlet(value=float(value))
    if kind in ("outflow", "advective_outflow", "zero_gradient"):
        return AdvectiveOutflow(velocity=float(velocity))
    if kind in ("zero_flux", "no_flux"):
        return ZeroFlux()
    if kind == "robin":
        return Robin(a=float(raw.a), b=float(raw.b), q=float(raw.q))
    raise InvalidParameterError(f"Unknown boundary type: {raw.type!r}")
