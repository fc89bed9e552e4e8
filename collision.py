"""
Collision World — triangle-soup occlusion queries for the mesh culler.

Collects the collision meshes of every scene object into world space and
answers segment queries against them. Objects flagged as triggers are kept
but never block a query. Triangles are two-sided.

Each collider's triangles are split into fixed-size batches with their own
AABB; a query rejects whole colliders and batches by box before running a
vectorised Möller–Trumbore test over the survivors.

Usage:
    from scene_loader import load_scene
    from collision import CollisionWorld

    scene = load_scene("level.json")
    world = CollisionWorld.from_scene(scene)

    if not world.is_segment_blocked(eye, target):
        print("clear line of sight")

    hit = world.trace_segment(eye, target)
    if hit.fraction < 1.0:
        print(f"Blocked by {hit.collider} at {hit.fraction:.2f}")
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

import numpy as np

from geometry import AABB, Vec3, segment_triangles_intersect, vec_is_finite
from mesh_asset import MeshData, MeshError

# Triangles per AABB batch
BATCH_SIZE = 256


class OracleQueryError(Exception):
    """Raised when an occlusion query cannot be answered."""
    pass


# ─── Trace result ─────────────────────────────────────────────────────────────

@dataclass
class TraceResult:
    """Result of a segment trace through the collision world."""
    fraction: float = 1.0       # 1.0 = no hit
    end_pos: Vec3 = (0.0, 0.0, 0.0)
    collider: Optional[str] = None


# ─── Colliders ───────────────────────────────────────────────────────────────

@dataclass
class _TriangleBatch:
    bbox: AABB
    v0: np.ndarray
    e1: np.ndarray
    e2: np.ndarray


@dataclass
class Collider:
    """World-space collision triangles of one scene object."""
    name: str
    is_trigger: bool
    bbox: AABB
    triangle_count: int
    batches: List[_TriangleBatch] = field(default_factory=list)

    @staticmethod
    def build(name: str, mesh: MeshData, transform: np.ndarray,
              is_trigger: bool = False) -> Collider:
        world = mesh.world_positions(transform)
        tris = mesh.triangle_buffer()
        batches = []
        for start in range(0, len(tris), BATCH_SIZE):
            chunk = tris[start:start + BATCH_SIZE]
            v0 = world[chunk[:, 0]]
            v1 = world[chunk[:, 1]]
            v2 = world[chunk[:, 2]]
            bbox = AABB.from_points(np.concatenate([v0, v1, v2]))
            batches.append(_TriangleBatch(bbox, v0, v1 - v0, v2 - v0))
        bbox = AABB.from_points(world[np.unique(tris)] if len(tris) else world)
        return Collider(name, is_trigger, bbox, len(tris), batches)


# ─── Collision World ──────────────────────────────────────────────────────────

class CollisionWorld:
    """Solid scene geometry answering "is this segment obstructed?".

    Any object exposing ``is_segment_blocked(start, end) -> bool`` can stand
    in for this class wherever the culler needs an occlusion oracle.
    """

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self._colliders: Dict[str, Collider] = {}
        self.rejected: Dict[str, str] = {}     # collider name -> reason it was left out

    @classmethod
    def from_scene(cls, scene, verbose: bool = False) -> CollisionWorld:
        """Build a world from every scene object that has a collision mesh."""
        world = cls(verbose=verbose)
        for obj in scene.objects.values():
            if obj.collision_mesh is None:
                continue
            try:
                obj.collision_mesh.validate()
            except MeshError as e:
                world.rejected[obj.name] = str(e)
                print(f"  ⚠ Collider '{obj.name}' ignored: {e}", flush=True)
                continue
            world.add_collider(obj.name, obj.collision_mesh, obj.transform,
                               is_trigger=obj.is_trigger)
        if verbose:
            solid = [c for c in world._colliders.values() if not c.is_trigger]
            tris = sum(c.triangle_count for c in solid)
            print(f"  CollisionWorld: {len(solid)} solid colliders, {tris:,} triangles"
                  f"{f', {len(world._colliders) - len(solid)} triggers ignored' if len(solid) != len(world._colliders) else ''}")
        return world

    # ─── Collider management ──────────────────────────────────────────────────

    @property
    def collider_names(self) -> List[str]:
        return list(self._colliders)

    def add_collider(self, name: str, mesh: MeshData, transform: np.ndarray,
                     is_trigger: bool = False) -> None:
        self._colliders[name] = Collider.build(name, mesh, transform, is_trigger)

    def replace_collider(self, name: str, mesh: MeshData,
                         transform: np.ndarray) -> None:
        """Repoint an existing collider at new geometry, keeping its flags."""
        old = self._colliders.get(name)
        is_trigger = old.is_trigger if old is not None else False
        self._colliders[name] = Collider.build(name, mesh, transform, is_trigger)

    def _solid_colliders(self) -> Iterable[Collider]:
        return (c for c in self._colliders.values() if not c.is_trigger)

    # ─── Segment queries ──────────────────────────────────────────────────────

    @staticmethod
    def _check_segment(start: Vec3, end: Vec3) -> None:
        if not (vec_is_finite(start) and vec_is_finite(end)):
            raise OracleQueryError(f"non-finite segment {start} -> {end}")

    def is_segment_blocked(self, start: Vec3, end: Vec3) -> bool:
        """True if any solid triangle crosses the closed segment [start, end]."""
        self._check_segment(start, end)
        for collider in self._solid_colliders():
            if not collider.bbox.segment_intersects(start, end):
                continue
            for batch in collider.batches:
                if not batch.bbox.segment_intersects(start, end):
                    continue
                t = segment_triangles_intersect(start, end, batch.v0, batch.e1, batch.e2)
                if np.isfinite(t).any():
                    return True
        return False

    def trace_segment(self, start: Vec3, end: Vec3) -> TraceResult:
        """Return the nearest solid hit along start→end."""
        self._check_segment(start, end)
        result = TraceResult(fraction=1.0, end_pos=end)
        best = float('inf')

        for collider in self._solid_colliders():
            if not collider.bbox.segment_intersects(start, end):
                continue
            for batch in collider.batches:
                if not batch.bbox.segment_intersects(start, end):
                    continue
                t = segment_triangles_intersect(start, end, batch.v0, batch.e1, batch.e2)
                nearest = float(t.min()) if len(t) else float('inf')
                if nearest < best:
                    best = nearest
                    result.collider = collider.name

        if result.collider is not None:
            f = result.fraction = best
            result.end_pos = (
                start[0] + f * (end[0] - start[0]),
                start[1] + f * (end[1] - start[1]),
                start[2] + f * (end[2] - start[2]),
            )
        return result
