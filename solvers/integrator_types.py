"""
Shared time-integration result types.

Goal:
- Method-agnostic: BDF, Radau, LSODA and the explicit steppers return the same structure.
- Keep the assembler/driver/tests stable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import numpy as np


class IntegratorMethod(str, Enum):
    BDF = "BDF"
    RADAU = "Radau"
    LSODA = "LSODA"
    RK45 = "RK45"
    RK23 = "RK23"

    @property
    def implicit(self) -> bool:
        return self in (IntegratorMethod.BDF, IntegratorMethod.RADAU, IntegratorMethod.LSODA)

    @property
    def accepts_sparsity(self) -> bool:
        return self in (IntegratorMethod.BDF, IntegratorMethod.RADAU)


@dataclass(slots=True)
class IntegrationDiagnostics:
    method: str
    n_steps: int
    nfev: int
    njev: int
    nlu: int
    t_last: float
    wall_time_s: float
    message: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class IntegrationResult:
    """Raw checkpoint series, y.shape == (M, n_state); flux arrays (M, k)."""

    t: np.ndarray
    y: np.ndarray
    face_flux_in: np.ndarray
    face_flux_out: np.ndarray
    diag: IntegrationDiagnostics
