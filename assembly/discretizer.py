"""
Method-of-lines spatial discretization of the fixed-bed transport system.

Turns du/dt = df/dx + s (one equation per field) on the node grid into an ODE
system dy/dt = rhs(t, y) over the field-major state vector.

Interior nodes (1 <= i <= N-2):
    F_{i+1/2} = f(u_face, (u_{i+1} - u_i)/dx)
    du_i/dt   = (F_{i+1/2} - F_{i-1/2}) / dx + s_i
With f = D*u_x - v*u this is the three-point Laplacian plus first-order upwind
(u_face = upstream node) or central (u_face = mean) advection.

Boundary nodes (i = 0, N-1) per field and side:
- constrained: the relation p(u) + q*f = 0 is re-solved at every evaluation
  from the adjacent interior node; the stored slot has zero derivative and is
  overwritten by constrain() on output. It is never integrated.
- free: the relation does not determine u (immobile field, or outflow with
  D = 0). The node follows its half-cell balance with boundary flux -p(u)/q.

Known approximation: constrained boundary nodes carry no control volume, so the
scheme is not machine-exactly mass conservative next to the boundaries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np
from scipy import sparse

from assembly.jacobian_pattern import JacobianPattern, build_jacobian_pattern
from core.errors import InvalidParameterError
from core.layout import FieldLayout, StateVector, build_layout
from core.types import CaseConfig, FloatArray, Grid1D
from physics.boundary import (
    SIDES,
    BoundaryRelation,
    build_boundary_condition,
    encode_boundary,
)
from physics.flux import TransportModel, build_transport_model
from solvers.boundary_solve import is_structurally_free, solve_boundary_value

logger = logging.getLogger(__name__)

ADVECTION_SCHEMES = ("upwind", "central")


@dataclass(frozen=True, slots=True)
class BoundaryMode:
    """Per (field, side) treatment decided once at construction."""

    relation: BoundaryRelation
    free: bool


class MethodOfLinesSystem:
    """ODE right-hand side for k coupled fields on a shared uniform grid."""

    def __init__(
        self,
        grid: Grid1D,
        layout: FieldLayout,
        model: TransportModel,
        relations: Dict[Tuple[str, str], BoundaryRelation],
        *,
        advection_scheme: str = "upwind",
        field_scales: Optional[Dict[str, float]] = None,
    ) -> None:
        if layout.field_names != model.field_names:
            raise InvalidParameterError(
                f"layout fields {layout.field_names} != model fields {model.field_names}"
            )
        if layout.n_nodes != grid.N:
            raise InvalidParameterError(f"layout n_nodes={layout.n_nodes} != grid N={grid.N}")
        scheme = str(advection_scheme).strip().lower()
        if scheme not in ADVECTION_SCHEMES:
            raise InvalidParameterError(f"advection_scheme must be one of {ADVECTION_SCHEMES}, got {advection_scheme!r}")

        self.grid = grid
        self.layout = layout
        self.model = model
        self.advection_scheme = scheme
        # typical magnitude per field, used to spread a scalar atol
        self.field_scales = {name: 1.0 for name in layout.field_names}
        if field_scales is not None:
            self.field_scales.update({name: float(field_scales[name]) for name in layout.field_names})

        self._dx = np.asarray(grid.dx, dtype=np.float64)
        # interior control-volume widths (x_{i+1/2} - x_{i-1/2})
        self._vol = 0.5 * (self._dx[:-1] + self._dx[1:])
        self._half_left = 0.5 * float(self._dx[0])
        self._half_right = 0.5 * float(self._dx[-1])

        self._modes: List[Dict[str, BoundaryMode]] = []
        for j, name in enumerate(model.field_names):
            closure = model.fluxes[j]
            per_side: Dict[str, BoundaryMode] = {}
            for side in SIDES:
                rel = relations.get((name, side))
                if rel is None:
                    raise InvalidParameterError(f"missing boundary relation for field {name!r} side {side!r}")
                if rel.field != name or rel.side != side:
                    raise InvalidParameterError(
                        f"relation registered under ({name}, {side}) describes ({rel.field}, {rel.side})"
                    )
                h = self._half_left * 2.0 if side == "left" else self._half_right * 2.0
                free = is_structurally_free(rel, closure, h)
                per_side[side] = BoundaryMode(relation=rel, free=free)
            self._modes.append(per_side)

        # upwind direction per field: v >= 0 takes the left node of each face
        self._upwind_left = np.array([float(c.v) >= 0.0 for c in model.fluxes], dtype=bool)
        self._pattern: Optional[JacobianPattern] = None
        self.n_rhs_evals = 0

        for j, name in enumerate(model.field_names):
            logger.debug(
                "field %s: left=%s%s right=%s%s",
                name,
                self._modes[j]["left"].relation.kind,
                " (free)" if self._modes[j]["left"].free else "",
                self._modes[j]["right"].relation.kind,
                " (free)" if self._modes[j]["right"].free else "",
            )

    # ------------------------------------------------------------------
    # Boundary handling
    # ------------------------------------------------------------------
    def boundary_mode(self, field: str, side: str) -> BoundaryMode:
        return self._modes[self.model.field_index(field)][side]

    def resolve_boundaries(self, u: FloatArray) -> FloatArray:
        """Return a copy of u (k, N) with constrained boundary nodes solved."""
        u_full = np.array(u, dtype=np.float64, copy=True)
        for j, closure in enumerate(self.model.fluxes):
            for side, node, adj, h in (
                ("left", 0, 1, float(self._dx[0])),
                ("right", -1, -2, float(self._dx[-1])),
            ):
                mode = self._modes[j][side]
                if mode.free:
                    continue
                bv = solve_boundary_value(mode.relation, closure, u_full[j, adj], h)
                if not bv.free:
                    u_full[j, node] = bv.value
        return u_full

    def constrain(self, y: StateVector) -> StateVector:
        """Return a copy of y whose constrained boundary entries satisfy their relations."""
        return self.layout.pack(self.resolve_boundaries(self.layout.unpack(y)))

    # ------------------------------------------------------------------
    # Discrete operators
    # ------------------------------------------------------------------
    def face_states(self, u_full: FloatArray) -> Tuple[FloatArray, FloatArray]:
        """Face values used for advection and face gradients, both (k, N-1)."""
        grad = np.diff(u_full, axis=1) / self._dx
        if self.advection_scheme == "central":
            u_face = 0.5 * (u_full[:, :-1] + u_full[:, 1:])
        else:
            u_face = np.where(self._upwind_left[:, None], u_full[:, :-1], u_full[:, 1:])
        return u_face, grad

    def face_fluxes(self, u_full: FloatArray) -> FloatArray:
        u_face, grad = self.face_states(u_full)
        return self.model.flux(u_face, grad)

    def time_derivative(self, u: FloatArray) -> FloatArray:
        """du/dt as a (k, N) array."""
        u_full = self.resolve_boundaries(u)
        F = self.face_fluxes(u_full)
        S = self.model.source(u_full)

        dudt = np.zeros_like(u_full)
        dudt[:, 1:-1] = (F[:, 1:] - F[:, :-1]) / self._vol + S[:, 1:-1]

        for j in range(self.model.n_fields):
            left = self._modes[j]["left"]
            if left.free:
                f_b = left.relation.boundary_flux(u_full[j, 0])
                dudt[j, 0] = (F[j, 0] - f_b) / self._half_left + S[j, 0]
            right = self._modes[j]["right"]
            if right.free:
                f_b = right.relation.boundary_flux(u_full[j, -1])
                dudt[j, -1] = (f_b - F[j, -1]) / self._half_right + S[j, -1]
        return dudt

    def rhs(self, t: float, y: StateVector) -> StateVector:
        """dy/dt for any ODE stepper (t unused: the system is autonomous)."""
        self.n_rhs_evals += 1
        return self.time_derivative(self.layout.unpack(y)).reshape(-1)

    def boundary_face_fluxes(self, y: StateVector) -> Tuple[FloatArray, FloatArray]:
        """
        Transport (-f) across the first and last interior faces, shape (k,) each.

        These bound the interior control volume [x_{1/2}, x_{N-3/2}].
        """
        u_full = self.resolve_boundaries(self.layout.unpack(y))
        F = self.face_fluxes(u_full)
        return -F[:, 0], -F[:, -1]

    def interior_inventory(self, u_full: FloatArray) -> FloatArray:
        """Integral of each field over the interior control volume, shape (k,)."""
        return np.sum(u_full[:, 1:-1] * self._vol, axis=-1)

    # ------------------------------------------------------------------
    # Jacobian structure
    # ------------------------------------------------------------------
    @property
    def pattern(self) -> JacobianPattern:
        if self._pattern is None:
            self._pattern = build_jacobian_pattern(
                self.layout,
                [bool(c.transported) for c in self.model.fluxes],
                coupled=self.model.coupling is not None,
            )
        return self._pattern

    def jac_sparsity(self) -> sparse.csr_matrix:
        return self.pattern.to_csr()


def build_boundary_relations(cfg: CaseConfig) -> Dict[Tuple[str, str], BoundaryRelation]:
    """Encode boundaries.<field>.<side> for every enabled field."""
    relations: Dict[Tuple[str, str], BoundaryRelation] = {}
    for name in cfg.field_names():
        for side in SIDES:
            raw = cfg.boundaries[name][side]
            default_value = cfg.transport.C_in if (name == cfg.field_names()[0] and side == "left") else None
            cond = build_boundary_condition(raw, default_value=default_value, velocity=cfg.transport.v)
            relations[(name, side)] = encode_boundary(cond, field=name, side=side)
    return relations


def build_system(cfg: CaseConfig, grid: Grid1D, layout: Optional[FieldLayout] = None) -> MethodOfLinesSystem:
    """Build the discretized system (model + boundaries + grid) for one run."""
    if layout is None:
        layout = build_layout(cfg, grid)
    model = build_transport_model(cfg)
    relations = build_boundary_relations(cfg)
    return MethodOfLinesSystem(
        grid,
        layout,
        model,
        relations,
        advection_scheme=cfg.transport.advection_scheme,
        field_scales=model.field_scales(max(cfg.transport.C_in, cfg.initial.C0)),
    )
