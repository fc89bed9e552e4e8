"""
Geometry — small vector toolkit shared by the culling pipeline.

Vectors are plain ``(x, y, z)`` tuples so the per-triangle classifier stays
cheap to pickle into worker processes. Bulk work (transforming vertex
buffers, testing a segment against a batch of triangles) is done with numpy.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

import numpy as np

Vec3 = Tuple[float, float, float]

# ─── Vector math utilities ────────────────────────────────────────────────────

def vec_sub(a: Vec3, b: Vec3) -> Vec3:
    return (a[0] - b[0], a[1] - b[1], a[2] - b[2])

def vec_scale(v: Vec3, s: float) -> Vec3:
    return (v[0] * s, v[1] * s, v[2] * s)

def vec_dot(a: Vec3, b: Vec3) -> float:
    return a[0] * b[0] + a[1] * b[1] + a[2] * b[2]

def vec_cross(a: Vec3, b: Vec3) -> Vec3:
    return (
        a[1] * b[2] - a[2] * b[1],
        a[2] * b[0] - a[0] * b[2],
        a[0] * b[1] - a[1] * b[0],
    )

def vec_length(v: Vec3) -> float:
    return math.sqrt(v[0] ** 2 + v[1] ** 2 + v[2] ** 2)

def vec_distance(a: Vec3, b: Vec3) -> float:
    return vec_length(vec_sub(a, b))

def vec_normalize(v: Vec3) -> Vec3:
    l = vec_length(v)
    if l < 1e-10:
        return (0.0, 0.0, 0.0)
    return (v[0] / l, v[1] / l, v[2] / l)

def vec_is_finite(v: Vec3) -> bool:
    return all(math.isfinite(c) for c in v)


# ─── Affine transforms ───────────────────────────────────────────────────────

def transform_points(matrix: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Apply a 4x4 object→world matrix to an (N, 3) point array."""
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    m = np.asarray(matrix, dtype=np.float64)
    return points @ m[:3, :3].T + m[:3, 3]


def transform_normals(matrix: np.ndarray, normals: np.ndarray) -> np.ndarray:
    """Apply the inverse-transpose of a 4x4 matrix to (N, 3) normals, renormalized.

    Degenerate normals come out as zero vectors.
    """
    normals = np.asarray(normals, dtype=np.float64).reshape(-1, 3)
    linear = np.asarray(matrix, dtype=np.float64)[:3, :3]
    out = normals @ np.linalg.inv(linear)
    lengths = np.linalg.norm(out, axis=1, keepdims=True)
    return np.divide(out, lengths, out=np.zeros_like(out), where=lengths > 1e-12)


# ─── Bounding boxes ──────────────────────────────────────────────────────────

@dataclass
class AABB:
    """Axis-aligned bounding box for fast segment rejection."""
    mins: Vec3
    maxs: Vec3

    @staticmethod
    def from_points(points: Iterable) -> AABB:
        arr = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        if len(arr) == 0:
            return AABB((0.0, 0.0, 0.0), (0.0, 0.0, 0.0))
        lo = arr.min(axis=0)
        hi = arr.max(axis=0)
        return AABB(tuple(float(c) for c in lo), tuple(float(c) for c in hi))

    def segment_intersects(self, start: Vec3, end: Vec3) -> bool:
        """Slab-method test of the closed segment [start, end] against the box."""
        t_min = 0.0
        t_max = 1.0
        for i in range(3):
            d = end[i] - start[i]
            if abs(d) < 1e-12:  # segment parallel to slab
                if start[i] < self.mins[i] or start[i] > self.maxs[i]:
                    return False
            else:
                inv = 1.0 / d
                t1 = (self.mins[i] - start[i]) * inv
                t2 = (self.maxs[i] - start[i]) * inv
                if t1 > t2:
                    t1, t2 = t2, t1
                t_min = max(t_min, t1)
                t_max = min(t_max, t2)
                if t_min > t_max:
                    return False
        return True


# ─── Segment-triangle intersection ───────────────────────────────────────────

def segment_triangle_intersect(start: Vec3, end: Vec3,
                               v0: Vec3, v1: Vec3, v2: Vec3) -> Optional[float]:
    """Möller–Trumbore test of a segment against one triangle (two-sided).

    Returns the hit fraction along start→end in [0, 1], or None.
    """
    direction = vec_sub(end, start)
    e1 = vec_sub(v1, v0)
    e2 = vec_sub(v2, v0)
    h = vec_cross(direction, e2)
    a = vec_dot(e1, h)

    if -1e-12 < a < 1e-12:
        return None  # Parallel

    f = 1.0 / a
    s = vec_sub(start, v0)
    u = f * vec_dot(s, h)
    if u < 0.0 or u > 1.0:
        return None

    q = vec_cross(s, e1)
    v = f * vec_dot(direction, q)
    if v < 0.0 or u + v > 1.0:
        return None

    t = f * vec_dot(e2, q)
    if 0.0 <= t <= 1.0:
        return t
    return None


def segment_triangles_intersect(start: Vec3, end: Vec3, v0: np.ndarray,
                                e1: np.ndarray, e2: np.ndarray) -> np.ndarray:
    """Vectorised Möller–Trumbore over a batch of K triangles.

    ``v0``, ``e1`` (= v1 - v0) and ``e2`` (= v2 - v0) are (K, 3) arrays.
    Returns a (K,) array of hit fractions with ``inf`` where there is no hit.
    """
    origin = np.asarray(start, dtype=np.float64)
    direction = np.asarray(end, dtype=np.float64) - origin

    h = np.cross(direction, e2)
    a = np.einsum('ij,ij->i', e1, h)
    valid = np.abs(a) > 1e-12
    f = np.zeros_like(a)
    np.divide(1.0, a, out=f, where=valid)

    s = origin - v0
    u = f * np.einsum('ij,ij->i', s, h)
    q = np.cross(s, e1)
    v = f * (q @ direction)
    t = f * np.einsum('ij,ij->i', e2, q)

    hit = (valid & (u >= 0.0) & (u <= 1.0) & (v >= 0.0) & (u + v <= 1.0)
           & (t >= 0.0) & (t <= 1.0))
    return np.where(hit, t, np.inf)
