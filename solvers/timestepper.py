"""
Adaptive time integration of the method-of-lines system.

This module:
- Steps a SciPy OdeSolver (BDF by default) over [t0, t_end] with local error
  control (rtol plus one atol per field), handing it the discretizer's
  Jacobian sparsity.
- Samples the dense output at the requested checkpoints.
- Integrates the boundary-face transport over accepted steps (trapezoid rule)
  so mass balances can be closed afterwards.
- Enforces a step budget; exhausting it, or the stepper failing, raises
  NonConvergenceError with the last reached time. No partial result is returned.
"""

from __future__ import annotations

import logging
import time
from typing import Dict, Mapping, Optional, Sequence, Union

import numpy as np
from scipy import integrate

from assembly.discretizer import MethodOfLinesSystem
from core.errors import InvalidParameterError, NonConvergenceError
from core.types import CaseIntegrator
from solvers.integrator_types import IntegrationDiagnostics, IntegrationResult, IntegratorMethod

logger = logging.getLogger(__name__)

_METHOD_ALIAS = {
    "bdf": IntegratorMethod.BDF,
    "qndf": IntegratorMethod.BDF,
    "radau": IntegratorMethod.RADAU,
    "lsoda": IntegratorMethod.LSODA,
    "rk45": IntegratorMethod.RK45,
    "tsit5": IntegratorMethod.RK45,
    "rk23": IntegratorMethod.RK23,
}

_SOLVER_CLASSES = {
    IntegratorMethod.BDF: integrate.BDF,
    IntegratorMethod.RADAU: integrate.Radau,
    IntegratorMethod.LSODA: integrate.LSODA,
    IntegratorMethod.RK45: integrate.RK45,
    IntegratorMethod.RK23: integrate.RK23,
}

LOG_EVERY_STEPS = 500


def normalize_method(method: Union[str, IntegratorMethod]) -> IntegratorMethod:
    """Map a config string (case-insensitive, with aliases) to IntegratorMethod."""
    if isinstance(method, IntegratorMethod):
        return method
    key = str(method).strip().lower()
    resolved = _METHOD_ALIAS.get(key)
    if resolved is None:
        raise InvalidParameterError(f"Unknown integrator method: {method!r}")
    return resolved


def field_tolerances(
    atol: Union[float, Mapping[str, float]],
    field_names: Sequence[str],
    field_scales: Optional[Mapping[str, float]] = None,
) -> Dict[str, float]:
    """
    Absolute tolerance per field.

    A mapping is taken as given and must name every field. A scalar applies to
    the first (fluid) field; every other field gets it rescaled by the ratio of
    its typical magnitude to the fluid one, so a loading several orders of
    magnitude below the concentration is still error-controlled.
    """
    if isinstance(atol, Mapping):
        missing = [name for name in field_names if name not in atol]
        if missing:
            raise InvalidParameterError(f"integrator.atol has no entry for fields {missing}")
        return {name: float(atol[name]) for name in field_names}
    atol = float(atol)
    if not field_scales:
        return {name: atol for name in field_names}
    ref = float(field_scales[field_names[0]])
    return {name: atol * float(field_scales[name]) / ref for name in field_names}


def _build_stepper(
    system: MethodOfLinesSystem,
    y0: np.ndarray,
    t0: float,
    t_bound: float,
    settings: CaseIntegrator,
    atol_vector: np.ndarray,
):
    method = normalize_method(settings.method)
    kwargs = {
        "rtol": float(settings.rtol),
        "atol": atol_vector,
        "max_step": float(settings.max_step) if settings.max_step is not None else np.inf,
    }
    if settings.first_step is not None:
        kwargs["first_step"] = float(settings.first_step)
    if method.accepts_sparsity and settings.use_sparsity:
        kwargs["jac_sparsity"] = system.jac_sparsity()
    if not method.implicit:
        logger.warning(
            "Explicit method %s selected; dispersion and fast sorption make the system stiff "
            "and the step budget may be exhausted.",
            method.value,
        )
    cls = _SOLVER_CLASSES[method]
    return method, cls(system.rhs, t0, y0, t_bound, **kwargs)


def integrate_system(
    system: MethodOfLinesSystem,
    y0: np.ndarray,
    t_eval: Sequence[float],
    settings: Optional[CaseIntegrator] = None,
) -> IntegrationResult:
    """
    Advance y0 from t_eval[0] through every checkpoint in t_eval.

    y0 is copied; t_eval must be strictly increasing with at least two entries.
    """
    if settings is None:
        settings = CaseIntegrator()
    t_eval = np.asarray(t_eval, dtype=np.float64)
    if t_eval.ndim != 1 or t_eval.size < 2 or not np.all(np.diff(t_eval) > 0.0):
        raise InvalidParameterError("t_eval must be a strictly increasing 1D sequence of >= 2 times")
    y0 = np.array(y0, dtype=np.float64, copy=True)
    if y0.shape != (system.layout.size,):
        raise InvalidParameterError(f"y0 shape {y0.shape} != ({system.layout.size},)")
    if not np.all(np.isfinite(y0)):
        raise InvalidParameterError("y0 contains non-finite entries")

    M = t_eval.size
    k = system.layout.n_fields
    t0 = float(t_eval[0])
    t_bound = float(t_eval[-1])

    wall0 = time.perf_counter()
    atol_by_field = field_tolerances(settings.atol, system.layout.field_names, system.field_scales)
    method, stepper = _build_stepper(
        system, y0, t0, t_bound, settings, system.layout.field_vector(atol_by_field)
    )
    logger.info(
        "Integrating %d states over [%.6e, %.6e] with %s (rtol=%.1e atol=%s max_steps=%d)",
        y0.size,
        t0,
        t_bound,
        method.value,
        settings.rtol,
        ", ".join(f"{name}:{value:.1e}" for name, value in atol_by_field.items()),
        settings.max_steps,
    )

    Y = np.empty((M, y0.size), dtype=np.float64)
    flux_in = np.zeros((M, k), dtype=np.float64)
    flux_out = np.zeros((M, k), dtype=np.float64)
    Y[0] = y0

    # trapezoid accumulator state: last sample point (t_p, J_p) and running sums
    t_p = t0
    j_in_p, j_out_p = system.boundary_face_fluxes(y0)
    cum_in = np.zeros(k, dtype=np.float64)
    cum_out = np.zeros(k, dtype=np.float64)

    def _advance_to(t_s: float, y_s: np.ndarray) -> None:
        nonlocal t_p, j_in_p, j_out_p
        j_in_s, j_out_s = system.boundary_face_fluxes(y_s)
        dt = t_s - t_p
        cum_in[:] += 0.5 * (j_in_p + j_in_s) * dt
        cum_out[:] += 0.5 * (j_out_p + j_out_s) * dt
        t_p, j_in_p, j_out_p = t_s, j_in_s, j_out_s

    next_idx = 1
    n_steps = 0
    while next_idx < M:
        if n_steps >= settings.max_steps:
            raise NonConvergenceError(
                f"{method.value}: step budget of {settings.max_steps} exhausted before t_end={t_bound:.6e}",
                t_last=float(stepper.t),
                n_steps=n_steps,
            )
        message = stepper.step()
        if stepper.status == "failed":
            raise NonConvergenceError(
                f"{method.value} failed: {message}",
                t_last=float(stepper.t),
                n_steps=n_steps,
            )
        n_steps += 1
        t_new = float(stepper.t)
        if not np.all(np.isfinite(stepper.y)):
            raise NonConvergenceError(
                f"{method.value} produced non-finite state",
                t_last=float(stepper.t_old if stepper.t_old is not None else t0),
                n_steps=n_steps,
            )

        dense = None
        while next_idx < M and t_eval[next_idx] <= t_new:
            t_c = float(t_eval[next_idx])
            if t_c == t_new:
                y_c = np.array(stepper.y, copy=True)
            else:
                if dense is None:
                    dense = stepper.dense_output()
                y_c = np.asarray(dense(t_c), dtype=np.float64)
            _advance_to(t_c, y_c)
            Y[next_idx] = y_c
            flux_in[next_idx] = cum_in
            flux_out[next_idx] = cum_out
            next_idx += 1

        if t_new > t_p:
            _advance_to(t_new, stepper.y)

        if n_steps % LOG_EVERY_STEPS == 0:
            logger.debug("step=%d t=%.6e h=%.3e nfev=%d", n_steps, t_new, t_new - float(stepper.t_old), stepper.nfev)

        if stepper.status == "finished" and next_idx < M:
            raise NonConvergenceError(
                f"{method.value} finished at t={t_new:.6e} before reaching all checkpoints",
                t_last=t_new,
                n_steps=n_steps,
            )

    wall = time.perf_counter() - wall0
    diag = IntegrationDiagnostics(
        method=method.value,
        n_steps=n_steps,
        nfev=int(getattr(stepper, "nfev", 0)),
        njev=int(getattr(stepper, "njev", 0)),
        nlu=int(getattr(stepper, "nlu", 0)),
        t_last=float(stepper.t),
        wall_time_s=wall,
        message="completed",
        extra={
            "jacobian_nnz": system.pattern.meta["nnz_total"] if method.accepts_sparsity else None,
            "atol": atol_by_field,
        },
    )
    logger.info(
        "Integration done: steps=%d nfev=%d njev=%d nlu=%d wall=%.3fs",
        diag.n_steps,
        diag.nfev,
        diag.njev,
        diag.nlu,
        diag.wall_time_s,
    )
    return IntegrationResult(t=t_eval.copy(), y=Y, face_flux_in=flux_in, face_flux_out=flux_out, diag=diag)
