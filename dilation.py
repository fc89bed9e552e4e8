"""
Seam dilation — grow a kept-triangle set by one ring of neighbours.

Two triangles are neighbours when they share a vertex index. Growth is a
single ring taken from the *original* set: triangles reached only through a
newly added neighbour are not added. Applying the function again to its own
output gives the two-ring set.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Set

import numpy as np


def build_adjacency(triangles: np.ndarray) -> Dict[int, List[int]]:
    """Map each vertex index to the global indices of its incident triangles."""
    adjacency: Dict[int, List[int]] = {}
    for tri_idx, tri in enumerate(np.asarray(triangles).reshape(-1, 3).tolist()):
        for v in tri:
            adjacency.setdefault(v, []).append(tri_idx)
    return adjacency


def dilate_triangle_selection(triangles: np.ndarray, kept: Iterable[int]) -> Set[int]:
    """Return *kept* plus every triangle sharing a vertex with one of them.

    ``triangles`` is the full (T, 3) index buffer in global triangle order.
    Indices in *kept* outside [0, T) are carried over but not expanded.
    """
    kept = set(kept)
    tris = np.asarray(triangles).reshape(-1, 3).tolist()
    adjacency = build_adjacency(triangles)

    dilated = set(kept)
    for idx in kept:
        if not 0 <= idx < len(tris):
            continue
        for v in tris[idx]:
            dilated.update(adjacency.get(v, ()))
    return dilated
