"""
Ogata-Banks solution for 1D advection-dispersion in a semi-infinite column.

    C(x, t) = C0/2 * [ erfc((x - v t) / (2 sqrt(D t)))
                     + exp(v x / D) * erfc((x + v t) / (2 sqrt(D t))) ]

Initially solute-free column, constant concentration C0 at x = 0 for t > 0.
The second term is evaluated as exp(v x/D - b^2) * erfcx(b) so large Peclet
numbers do not overflow.
"""

from __future__ import annotations

import numpy as np
from scipy import special

from core.errors import InvalidParameterError
from core.types import FloatArray


def _exp_erfc(a: FloatArray, b: FloatArray) -> FloatArray:
    """exp(a) * erfc(b) without overflow for large a, b."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    pos = b > 0.0
    b_pos = np.where(pos, b, 0.0)
    a_neg = np.where(pos, -np.inf, a)
    scaled = np.exp(np.where(pos, a - b_pos * b_pos, -np.inf)) * special.erfcx(b_pos)
    direct = np.exp(a_neg) * special.erfc(np.where(pos, 0.0, b))
    return np.where(pos, scaled, direct)


def ogata_banks(x, t, D: float, v: float, C0: float = 1.0) -> FloatArray:
    """
    Evaluate the Ogata-Banks concentration on broadcast (x, t).

    D = 0 degenerates to a sharp front at x = v t; t <= 0 returns zeros
    (except exactly at x = 0 where the inlet value applies).
    """
    D = float(D)
    v = float(v)
    if D < 0.0 or v < 0.0:
        raise InvalidParameterError(f"Ogata-Banks needs D >= 0 and v >= 0, got D={D:g} v={v:g}")
    x, t = np.broadcast_arrays(np.asarray(x, dtype=np.float64), np.asarray(t, dtype=np.float64))
    out = np.zeros(x.shape, dtype=np.float64)

    active = t > 0.0
    out[~active & (x <= 0.0)] = C0
    if not np.any(active):
        return out

    xa = x[active]
    ta = t[active]
    if D == 0.0:
        out[active] = np.where(xa < v * ta, C0, np.where(xa == v * ta, 0.5 * C0, 0.0))
        return out

    denom = 2.0 * np.sqrt(D * ta)
    first = special.erfc((xa - v * ta) / denom)
    second = _exp_erfc(v * xa / D, (xa + v * ta) / denom)
    out[active] = 0.5 * C0 * (first + second)
    return out
