"""
State-vector layout definition and pack/unpack utilities.

Principles:
- Block order matches field order: (1) C, (2) q when sorption is enabled.
- Each block holds all N nodes of one field, boundary nodes included, so the
  state length is N * n_fields.
- State indices must come from FieldLayout helpers (no hand-rolled math).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, Mapping, Tuple

import numpy as np

from core.types import CaseConfig, FloatArray, Grid1D

StateVector = np.ndarray


@dataclass(slots=True)
class FieldLayout:
    """Layout of the global state vector (field-major)."""

    field_names: Tuple[str, ...]
    n_nodes: int
    blocks: Dict[str, slice] = field(init=False)

    def __post_init__(self) -> None:
        if not self.field_names:
            raise ValueError("FieldLayout requires at least one field.")
        if len(set(self.field_names)) != len(self.field_names):
            raise ValueError(f"Duplicate field names in layout: {self.field_names}")
        if self.n_nodes < 3:
            raise ValueError(f"FieldLayout requires n_nodes >= 3, got {self.n_nodes}")
        self.blocks = {
            name: slice(j * self.n_nodes, (j + 1) * self.n_nodes) for j, name in enumerate(self.field_names)
        }

    @property
    def n_fields(self) -> int:
        return len(self.field_names)

    @property
    def size(self) -> int:
        return self.n_fields * self.n_nodes

    def require_block(self, name: str) -> slice:
        if name not in self.blocks:
            raise ValueError(f"Unknown block '{name}' not present in layout.")
        return self.blocks[name]

    def iter_blocks(self) -> Iterator[Tuple[str, slice]]:
        for name in self.field_names:
            yield name, self.blocks[name]

    def index(self, name: str, node: int) -> int:
        """Global index of (field, node); negative node counts from the outlet."""
        sl = self.require_block(name)
        if node < 0:
            node += self.n_nodes
        if not (0 <= node < self.n_nodes):
            raise IndexError(f"node {node} out of range for n_nodes={self.n_nodes}")
        return sl.start + node

    def unpack(self, y: StateVector) -> FloatArray:
        """View y as a (n_fields, n_nodes) array (no copy for contiguous input)."""
        y = np.asarray(y, dtype=np.float64)
        if y.shape != (self.size,):
            raise ValueError(f"state shape {y.shape} != ({self.size},)")
        return y.reshape(self.n_fields, self.n_nodes)

    def field_vector(self, values: Mapping[str, float]) -> StateVector:
        """State-length vector holding values[name] on every node of that field."""
        missing = [name for name in self.field_names if name not in values]
        if missing:
            raise ValueError(f"no value given for fields {missing}")
        extra = sorted(set(values) - set(self.field_names))
        if extra:
            raise ValueError(f"values given for unknown fields {extra}")
        per_field = np.array([float(values[name]) for name in self.field_names], dtype=np.float64)
        return np.repeat(per_field, self.n_nodes)

    def pack(self, u: FloatArray) -> StateVector:
        """Flatten a (n_fields, n_nodes) array into a fresh state vector."""
        u = np.asarray(u, dtype=np.float64)
        if u.shape != (self.n_fields, self.n_nodes):
            raise ValueError(f"field array shape {u.shape} != ({self.n_fields}, {self.n_nodes})")
        return np.array(u.reshape(-1), dtype=np.float64, copy=True)


def build_layout(cfg: CaseConfig, grid: Grid1D) -> FieldLayout:
    """Build the state layout for the fields enabled in cfg."""
    return FieldLayout(field_names=cfg.field_names(), n_nodes=grid.N)
