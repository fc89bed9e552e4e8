"""
Mesh rebuild — extract the kept triangles of a mesh into a new mesh.

The vertex buffer and every per-vertex channel are copied unchanged: no
vertex is removed or renumbered, so unreferenced vertices stay in the
output. Only the per-submesh index buffers are filtered, keeping submesh
count and the original triangle order inside each submesh.
"""
from __future__ import annotations

from typing import Iterable, Optional

import numpy as np

from mesh_asset import MeshData

# Largest vertex count addressable with 16-bit indices
_UINT16_LIMIT = 1 << 16


def _optimize_index_layout(mesh: MeshData) -> None:
    """Store index buffers contiguously in the narrowest unsigned type."""
    dtype = np.uint16 if mesh.vertex_count <= _UINT16_LIMIT else np.uint32
    mesh.submeshes = [np.ascontiguousarray(s, dtype=dtype) for s in mesh.submeshes]


def rebuild_mesh(src: MeshData, kept: Iterable[int],
                 name: Optional[str] = None) -> MeshData:
    """Build a mesh holding only the triangles whose global index is in *kept*.

    Raises ValueError for an empty selection; callers must not rebuild a
    mesh with nothing left in it.
    """
    kept = set(kept)
    if not kept:
        raise ValueError(f"{src.name}: cannot rebuild a mesh with no kept triangles")

    submeshes = []
    base = 0
    for sub in src.submeshes:
        count = len(sub)
        mask = np.fromiter((base + k in kept for k in range(count)),
                           dtype=bool, count=count)
        submeshes.append(np.array(sub[mask]).reshape(-1, 3))
        base += count

    out = MeshData(
        name=name or src.name,
        positions=src.positions.copy(),
        submeshes=submeshes,
        channels={k: v.copy() for k, v in src.channels.items()},
        bind_poses=None if src.bind_poses is None else src.bind_poses.copy(),
    )
    out.recalculate_bounds()
    _optimize_index_layout(out)
    return out
