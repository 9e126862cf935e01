"""
Failure types surfaced by the fixed-bed solver.

All three are fatal to a run: nothing retries them and no partial result is
returned alongside. Callers can inspect the attached attributes.
"""

from __future__ import annotations

from typing import Optional


class InvalidParameterError(ValueError):
    """Raised at construction time for non-physical or inconsistent input."""

    pass


class BoundaryUnsolvableError(RuntimeError):
    """
    Raised when a boundary relation cannot be solved for the boundary value.

    Carries the offending field name and side ("left" | "right").
    """

    def __init__(self, message: str, *, field: str, side: str) -> None:
        super().__init__(f"[field={field} side={side}] {message}")
        self.field = field
        self.side = side


class NonConvergenceError(RuntimeError):
    """Raised when the time integrator cannot meet its tolerance within budget."""

    def __init__(self, message: str, *, t_last: float, n_steps: Optional[int] = None) -> None:
        super().__init__(f"{message} (last reached t={t_last:.6e})")
        self.t_last = float(t_last)
        self.n_steps = n_steps
