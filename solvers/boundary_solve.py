"""
Local solve of one boundary relation for the boundary node value.

Given the relation p(u) + q*f(u, du/dx) = 0, the field's flux closure, and the
adjacent interior value, the one-sided gradient

    left : du/dx = (u_adj - u) / h
    right: du/dx = (u - u_adj) / h

turns the relation into a scalar equation in u:
- q == 0 (Dirichlet) with affine p: explicit assignment u = -b/a.
- affine p with a linear flux closure: closed form.
- callable p: secant iteration from u_adj, then a bracketed Brent solve.

A relation whose residual does not depend on u (e.g. zero flux on an immobile
field, or an outflow relation with D = 0) leaves the node free; the caller then
evolves it with its half-cell balance instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from scipy import optimize

from core.errors import BoundaryUnsolvableError
from physics.boundary import BoundaryRelation
from physics.flux import FieldFlux

logger = logging.getLogger(__name__)

DEGENERATE_RTOL = 1.0e-13
ROOT_XTOL = 1.0e-12
ROOT_FTOL = 1.0e-9
ROOT_MAXITER = 50
BRACKET_EXPANSIONS = 60


@dataclass(frozen=True, slots=True)
class BoundaryValue:
    """Resolved boundary node: value (ignored when free) and whether it is free."""

    value: float
    free: bool = False


FREE = BoundaryValue(value=float("nan"), free=True)


def _side_sign(side: str) -> float:
    return 1.0 if side == "right" else -1.0


def one_sided_gradient(u: float, u_adj: float, h: float, side: str) -> float:
    if side == "right":
        return (u - u_adj) / h
    return (u_adj - u) / h


def affine_coefficients(rel: BoundaryRelation, closure: FieldFlux, u_adj: float, h: float):
    """
    Return (slope, const, scale) with residual(u) = slope*u + const.

    Valid for affine p and a linear closure f = D*du/dx - v*u.
    """
    sigma = _side_sign(rel.side)
    D = float(closure.D)
    v = float(closure.v)
    slope = rel.a + rel.q * (sigma * D / h - v)
    const = rel.b - rel.q * sigma * D * u_adj / h
    scale = abs(rel.a) + abs(rel.q) * (D / h + v)
    return slope, const, scale


def _solve_affine(rel: BoundaryRelation, closure: FieldFlux, u_adj: float, h: float) -> BoundaryValue:
    if rel.is_dirichlet:
        return BoundaryValue(value=-rel.b / rel.a)

    slope, const, scale = affine_coefficients(rel, closure, u_adj, h)
    if abs(slope) <= DEGENERATE_RTOL * max(scale, 1.0e-300):
        if abs(const) <= DEGENERATE_RTOL * max(scale * (abs(u_adj) + 1.0), abs(rel.b), 1.0e-300):
            return FREE
        raise BoundaryUnsolvableError(
            f"{rel.kind} relation has no solution: residual is the nonzero constant {const:.3e}",
            field=rel.field,
            side=rel.side,
        )
    return BoundaryValue(value=-const / slope)


def _solve_callable(rel: BoundaryRelation, closure: FieldFlux, u_adj: float, h: float) -> BoundaryValue:
    def residual(u: float) -> float:
        grad = one_sided_gradient(u, u_adj, h, rel.side)
        return float(rel.residual(u, closure.flux(u, grad)))

    x0 = float(u_adj)
    r0 = residual(x0)
    if r0 == 0.0:
        return BoundaryValue(value=x0)
    # secant may stop on a flat stretch and still report success; accept only true roots
    ftol = ROOT_FTOL * max(1.0, abs(r0))
    x1 = x0 + max(1.0e-4, 1.0e-3 * abs(x0))
    with np.errstate(over="ignore", invalid="ignore"):
        try:
            sol = optimize.root_scalar(residual, method="secant", x0=x0, x1=x1, xtol=ROOT_XTOL, maxiter=ROOT_MAXITER)
            if sol.converged and np.isfinite(sol.root) and abs(residual(sol.root)) <= ftol:
                return BoundaryValue(value=float(sol.root))
            logger.debug("secant did not converge on %s/%s: %s", rel.field, rel.side, sol.flag)
        except (ArithmeticError, ValueError) as exc:
            logger.debug("secant failed on %s/%s: %s", rel.field, rel.side, exc)

    # Bracket around u_adj by geometric expansion, then Brent.
    width = max(1.0, abs(x0))
    for _ in range(BRACKET_EXPANSIONS):
        lo, hi = x0 - width, x0 + width
        r_lo, r_hi = residual(lo), residual(hi)
        if np.isfinite(r_lo) and np.isfinite(r_hi):
            if np.sign(r_lo) != np.sign(r0):
                root = optimize.brentq(residual, lo, x0, xtol=ROOT_XTOL, maxiter=ROOT_MAXITER * 4)
                return BoundaryValue(value=float(root))
            if np.sign(r_hi) != np.sign(r0):
                root = optimize.brentq(residual, x0, hi, xtol=ROOT_XTOL, maxiter=ROOT_MAXITER * 4)
                return BoundaryValue(value=float(root))
        width *= 2.0

    raise BoundaryUnsolvableError(
        f"root-find for {rel.kind} relation did not converge (u_adj={u_adj:.6e})",
        field=rel.field,
        side=rel.side,
    )


def solve_boundary_value(rel: BoundaryRelation, closure: FieldFlux, u_adj: float, h: float) -> BoundaryValue:
    """Resolve the boundary node of one field on one side."""
    if rel.is_affine:
        return _solve_affine(rel, closure, float(u_adj), float(h))
    return _solve_callable(rel, closure, float(u_adj), float(h))


def is_structurally_free(rel: BoundaryRelation, closure: FieldFlux, h: float) -> bool:
    """
    True when the relation never determines u, independent of the state.

    Only affine relations are classified ahead of time; callable ones are
    always treated as constraints.
    """
    if not rel.is_affine or rel.is_dirichlet:
        return False
    slope, const, scale = affine_coefficients(rel, closure, 0.0, float(h))
    return abs(slope) <= DEGENERATE_RTOL * max(scale, 1.0e-300) and rel.b == 0.0 and (
        rel.q * float(closure.D) == 0.0
    )
