"""
Mass balance over the interior control volume [x_{1/2}, x_{N-3/2}].

Fluid change + ((1-eps)/eps)*rho * sorbed change must match the net transport
across the two bounding faces. The semi-discrete scheme balances exactly; the
residual measures time-integration and quadrature error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict

import numpy as np

from assembly.discretizer import MethodOfLinesSystem
from core.types import FIELD_FLUID, FIELD_SORBED, Solution

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 0.05


@dataclass(slots=True)
class MassBalance:
    fluid_change: float
    sorbed_change: float
    inflow: float
    outflow: float
    tolerance: float = DEFAULT_TOLERANCE

    @property
    def net_transport(self) -> float:
        return self.inflow - self.outflow

    @property
    def residual(self) -> float:
        return self.fluid_change + self.sorbed_change - self.net_transport

    @property
    def relative_error(self) -> float:
        scale = max(abs(self.inflow), abs(self.outflow), abs(self.fluid_change) + abs(self.sorbed_change))
        if scale == 0.0:
            return 0.0
        return abs(self.residual) / scale

    @property
    def closed(self) -> bool:
        return self.relative_error <= self.tolerance

    def as_dict(self) -> Dict[str, Any]:
        return {
            "fluid_change": self.fluid_change,
            "sorbed_change": self.sorbed_change,
            "inflow": self.inflow,
            "outflow": self.outflow,
            "residual": self.residual,
            "relative_error": self.relative_error,
            "tolerance": self.tolerance,
            "closed": self.closed,
        }


def compute_mass_balance(
    solution: Solution,
    system: MethodOfLinesSystem,
    *,
    tolerance: float = DEFAULT_TOLERANCE,
) -> MassBalance:
    """Balance of the fluid field between the first and last checkpoints."""
    i_c = solution.field_index(FIELD_FLUID)
    inv0 = system.interior_inventory(solution.values[0].T)
    inv1 = system.interior_inventory(solution.values[-1].T)
    fluid_change = float(inv1[i_c] - inv0[i_c])

    sorbed_change = 0.0
    coupling = system.model.coupling
    if coupling is not None and FIELD_SORBED in solution.field_names:
        i_q = solution.field_index(FIELD_SORBED)
        sorbed_change = float(coupling.capacity_factor * (inv1[i_q] - inv0[i_q]))

    mb = MassBalance(
        fluid_change=fluid_change,
        sorbed_change=sorbed_change,
        inflow=float(solution.face_flux_in[-1, i_c] - solution.face_flux_in[0, i_c]),
        outflow=float(solution.face_flux_out[-1, i_c] - solution.face_flux_out[0, i_c]),
        tolerance=float(tolerance),
    )
    level = logging.INFO if mb.closed else logging.WARNING
    logger.log(
        level,
        "Mass balance: in=%.6e out=%.6e dC=%.6e dq=%.6e rel_err=%.3e",
        mb.inflow,
        mb.outflow,
        mb.fluid_change,
        mb.sorbed_change,
        mb.relative_error,
    )
    if not np.isfinite(mb.relative_error):
        logger.warning("Mass balance is not finite")
    return mb
