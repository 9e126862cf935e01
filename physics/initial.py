from __future__ import annotations

import logging

import numpy as np

from core.layout import FieldLayout, StateVector
from core.types import FIELD_FLUID, FIELD_SORBED, CaseConfig, Grid1D

logger = logging.getLogger(__name__)


def build_initial_state(cfg: CaseConfig, grid: Grid1D, layout: FieldLayout) -> StateVector:
    """
    Build the initial state vector from the uniform initial fields.

    Boundary slots are filled with the same uniform value; the integrator
    output replaces constrained boundary entries by their relation values.
    """
    values = {FIELD_FLUID: float(cfg.initial.C0), FIELD_SORBED: float(cfg.initial.q0)}
    u0 = np.zeros((layout.n_fields, layout.n_nodes), dtype=np.float64)
    for j, name in enumerate(layout.field_names):
        u0[j, :] = values.get(name, 0.0)
        logger.debug("initial %s = %.6e on %d nodes", name, u0[j, 0], grid.N)
    return layout.pack(u0)
