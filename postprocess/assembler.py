"""
Turn integrator checkpoint series into the caller-owned Solution.

- Constrained boundary entries are replaced by their relation values.
- values are reshaped from field-major state rows to (M, N, k).
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Tuple

import numpy as np

from assembly.discretizer import MethodOfLinesSystem
from core.types import FIELD_FLUID, FloatArray, Solution
from solvers.integrator_types import IntegrationResult

logger = logging.getLogger(__name__)


def assemble_solution(system: MethodOfLinesSystem, result: IntegrationResult) -> Solution:
    layout = system.layout
    M = result.t.size
    values = np.empty((M, layout.n_nodes, layout.n_fields), dtype=np.float64)
    for m in range(M):
        y_m = system.constrain(result.y[m])
        values[m] = layout.unpack(y_m).T

    stats = asdict(result.diag)
    stats["n_rhs_evals"] = int(system.n_rhs_evals)
    stats["advection_scheme"] = system.advection_scheme
    stats["boundary_modes"] = {
        f"{name}.{side}": ("free" if system.boundary_mode(name, side).free else "constrained")
        for name in layout.field_names
        for side in ("left", "right")
    }

    sol = Solution(
        x=np.array(system.grid.x, copy=True),
        t=np.array(result.t, copy=True),
        values=values,
        field_names=tuple(layout.field_names),
        face_flux_in=np.array(result.face_flux_in, copy=True),
        face_flux_out=np.array(result.face_flux_out, copy=True),
        stats=stats,
    )
    logger.debug("Assembled solution values%s", values.shape)
    return sol


def breakthrough_curve(solution: Solution, name: str = FIELD_FLUID) -> Tuple[FloatArray, FloatArray]:
    """(t, outlet value) pair for one field."""
    return solution.t.copy(), solution.breakthrough(name).copy()


def profile_at(solution: Solution, time: float, name: str = FIELD_FLUID) -> FloatArray:
    """
    Spatial profile of one field at an arbitrary time inside [t0, t_end].

    Linear interpolation between the bracketing checkpoints; exact at checkpoints.
    """
    t = solution.t
    time = float(time)
    if time < t[0] or time > t[-1]:
        raise ValueError(f"time {time:g} outside solution window [{t[0]:g}, {t[-1]:g}]")
    slab = solution.field_values(name)
    hi = int(np.searchsorted(t, time, side="left"))
    if hi < t.size and t[hi] == time:
        return slab[hi].copy()
    lo = hi - 1
    w = (time - t[lo]) / (t[hi] - t[lo])
    return (1.0 - w) * slab[lo] + w * slab[hi]


def front_arrival_time(solution: Solution, node: int, level: float, name: str = FIELD_FLUID) -> float:
    """
    First time the field at a node reaches `level`, linearly interpolated.

    Returns nan when the level is never reached within the window.
    """
    series = solution.field_values(name)[:, node]
    above = np.nonzero(series >= level)[0]
    if above.size == 0:
        return float("nan")
    i = int(above[0])
    if i == 0:
        return float(solution.t[0])
    s0, s1 = series[i - 1], series[i]
    t0, t1 = solution.t[i - 1], solution.t[i]
    return float(t0 + (level - s0) * (t1 - t0) / (s1 - s0))
