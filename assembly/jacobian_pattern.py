"""
Conservative sparsity pattern for the method-of-lines Jacobian d(dy/dt)/dy.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Sequence, Tuple

import numpy as np
from scipy import sparse

from core.layout import FieldLayout


@dataclass(slots=True)
class JacobianPattern:
    """CSR pattern for the ODE Jacobian."""

    indptr: np.ndarray
    indices: np.ndarray
    shape: Tuple[int, int]
    meta: Dict[str, float]

    def to_csr(self) -> sparse.csr_matrix:
        data = np.ones(self.indices.size, dtype=np.int8)
        return sparse.csr_matrix((data, self.indices, self.indptr), shape=self.shape)


def build_jacobian_pattern(
    layout: FieldLayout,
    transported: Sequence[bool],
    *,
    coupled: bool,
) -> JacobianPattern:
    """
    Build a CSR sparsity pattern for the state derivative.

    - Every entry depends on itself.
    - Transported fields couple each node to its two neighbours (three-point
      stencil; boundary resolution only reads the adjacent interior node).
    - With a local source coupling, all fields at the same node couple.
    - A constrained boundary value is re-solved from the adjacent interior
      node, so with coupling every boundary-node row also reads the transported
      fields at nodes 1 and N-2.
    """
    if len(transported) != layout.n_fields:
        raise ValueError(f"transported flags ({len(transported)}) != n_fields ({layout.n_fields})")

    N = layout.size
    n = layout.n_nodes
    row_sets = [set() for _ in range(N)]

    def add_coupling(i: int, j: int) -> None:
        if 0 <= i < N and 0 <= j < N:
            row_sets[i].add(j)

    for i in range(N):
        row_sets[i].add(i)

    for jf, (name, sl) in enumerate(layout.iter_blocks()):
        if not transported[jf]:
            continue
        for node in range(n):
            gi = sl.start + node
            if node > 0:
                add_coupling(gi, gi - 1)
            if node < n - 1:
                add_coupling(gi, gi + 1)

    if coupled and layout.n_fields > 1:
        starts = [sl.start for _, sl in layout.iter_blocks()]
        for node in range(n):
            ids = [s + node for s in starts]
            for a in ids:
                for b in ids:
                    add_coupling(a, b)

        moving = [sl.start for jf, (_, sl) in enumerate(layout.iter_blocks()) if transported[jf]]
        for s_row in starts:
            for s_col in moving:
                add_coupling(s_row, s_col + 1)
                add_coupling(s_row + n - 1, s_col + n - 2)

    indptr = np.zeros(N + 1, dtype=np.int32)
    indices_list = []
    nnz = 0
    max_row = 0
    for i in range(N):
        cols = sorted(row_sets[i])
        nnz += len(cols)
        max_row = max(max_row, len(cols))
        indptr[i + 1] = nnz
        indices_list.extend(cols)

    indices = np.asarray(indices_list, dtype=np.int32)
    meta = {
        "nnz_total": float(nnz),
        "nnz_avg": float(nnz) / float(N) if N > 0 else 0.0,
        "nnz_max_row": float(max_row),
    }
    return JacobianPattern(indptr=indptr, indices=indices, shape=(N, N), meta=meta)
