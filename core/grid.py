"""
Grid construction from CaseConfig geometry and time settings.

Builds the uniform node grid over [0, L] and the uniform output checkpoints over
[t0, t_end]. Both are immutable once returned.
"""

from __future__ import annotations

import logging

import numpy as np

from core.errors import InvalidParameterError
from core.types import CaseConfig, FloatArray, Grid1D

logger = logging.getLogger(__name__)


def build_uniform_nodes(length: float, n_nodes: int) -> FloatArray:
    """
    Return n_nodes equally spaced positions spanning [0, length].

    The last node is pinned to `length` exactly so the outlet coordinate does not
    carry linspace round-off.
    """
    length = float(length)
    n_nodes = int(n_nodes)
    if not np.isfinite(length) or length <= 0.0:
        raise InvalidParameterError(f"length must be positive and finite, got {length!r}")
    if n_nodes < 3:
        raise InvalidParameterError(f"n_nodes must be >= 3 (two boundaries + one interior), got {n_nodes}")

    x = np.linspace(0.0, length, n_nodes, dtype=np.float64)
    x[-1] = length
    return x


def build_checkpoints(t0: float, t_end: float, n_checkpoints: int) -> FloatArray:
    """Return n_checkpoints equally spaced output times spanning [t0, t_end]."""
    t0 = float(t0)
    t_end = float(t_end)
    n_checkpoints = int(n_checkpoints)
    if not (np.isfinite(t0) and np.isfinite(t_end)) or t_end <= t0:
        raise InvalidParameterError(f"time window must satisfy t_end > t0, got t0={t0!r}, t_end={t_end!r}")
    if n_checkpoints < 2:
        raise InvalidParameterError(f"n_checkpoints must be >= 2, got {n_checkpoints}")

    t = np.linspace(t0, t_end, n_checkpoints, dtype=np.float64)
    t[-1] = t_end
    return t


def build_grid_from_arrays(x: FloatArray, t: FloatArray) -> Grid1D:
    """Wrap caller-supplied node/time arrays (copied) into a validated Grid1D."""
    x = np.array(x, dtype=np.float64, copy=True)
    t = np.array(t, dtype=np.float64, copy=True)
    dx = np.diff(x)
    if dx.size and not np.allclose(dx, dx[0], rtol=1.0e-10, atol=0.0):
        raise InvalidParameterError("Only uniform node spacing is supported.")
    return Grid1D(x=x, t=t, dx=dx)


def build_grid(cfg: CaseConfig) -> Grid1D:
    """Build the static node grid and checkpoint sequence for one run."""
    x = build_uniform_nodes(cfg.geometry.length, cfg.geometry.n_nodes)
    t = build_checkpoints(cfg.time.t0, cfg.time.t_end, cfg.time.n_checkpoints)
    grid = Grid1D(x=x, t=t, dx=np.diff(x))
    logger.debug(
        "Grid built: N=%d dx=%.6e L=%.6e | M=%d dt_out=%.6e",
        grid.N,
        float(grid.dx[0]),
        grid.length,
        grid.M,
        float(t[1] - t[0]),
    )
    return grid
