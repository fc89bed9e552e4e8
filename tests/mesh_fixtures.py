"""Mesh builders, fake oracles and a recording reporter shared by the tests."""
from __future__ import annotations

import numpy as np

from mesh_asset import MeshData
from scene_loader import ObserverPoint, Scene, SceneObject

# Unit cube corners, 8 shared vertices
CUBE_VERTICES = [
    (-1, -1, -1), (1, -1, -1), (1, 1, -1), (-1, 1, -1),
    (-1, -1, 1), (1, -1, 1), (1, 1, 1), (-1, 1, 1),
]

# Outward winding: normal = (v1 - v0) x (v2 - v0)
CUBE_FACES = [
    (1, 2, 6), (1, 6, 5),   # +X  -> triangles 0, 1
    (0, 4, 7), (0, 7, 3),   # -X  -> 2, 3
    (3, 7, 6), (3, 6, 2),   # +Y  -> 4, 5
    (0, 1, 5), (0, 5, 4),   # -Y  -> 6, 7
    (4, 5, 6), (4, 6, 7),   # +Z  -> 8, 9
    (0, 3, 2), (0, 2, 1),   # -Z  -> 10, 11
]

PLUS_X = {0, 1}
MINUS_X = {2, 3}


def cube_mesh(name: str = "cube", half: float = 1.0,
              split_submeshes: bool = False) -> MeshData:
    """12-triangle cube with every attribute channel filled in."""
    positions = np.array(CUBE_VERTICES, dtype=np.float64) * half
    faces = np.array(CUBE_FACES, dtype=np.int32)
    submeshes = [faces[:6], faces[6:]] if split_submeshes else [faces]
    n = len(positions)
    channels = {
        'uv': np.linspace(0.0, 1.0, n * 2).reshape(n, 2),
        'normals': positions / np.linalg.norm(positions, axis=1, keepdims=True),
        'tangents': np.tile([1.0, 0.0, 0.0, 1.0], (n, 1)),
        'bone_weights': np.tile([1.0, 0.0, 0.0, 0.0], (n, 1)),
        'bone_indices': np.zeros((n, 4), dtype=np.int32),
    }
    bind_poses = np.stack([np.eye(4), np.eye(4)])
    return MeshData(name=name, positions=positions, submeshes=submeshes,
                    channels=channels, bind_poses=bind_poses)


def strip_mesh(quads: int, name: str = "strip") -> MeshData:
    """A row of quads in the z=0 plane facing +z.

    Quad i spans x in [i, i+1] and holds triangles 2i and 2i+1.
    """
    positions = []
    for i in range(quads + 1):
        positions.append((float(i), 0.0, 0.0))   # vertex 2i
        positions.append((float(i), 1.0, 0.0))   # vertex 2i+1
    faces = []
    for i in range(quads):
        b0, t0, b1, t1 = 2 * i, 2 * i + 1, 2 * i + 2, 2 * i + 3
        faces.append((b0, b1, t1))
        faces.append((b0, t1, t0))
    return MeshData(name=name, positions=positions, submeshes=[np.array(faces)])


def wall_mesh(name: str = "wall") -> MeshData:
    """2x2 quad in the x=0 plane."""
    positions = [(0, -1, -1), (0, 1, -1), (0, 1, 1), (0, -1, 1)]
    return MeshData(name=name, positions=positions,
                    submeshes=[np.array([(0, 1, 2), (0, 2, 3)])])


def translation(x: float, y: float, z: float) -> np.ndarray:
    m = np.eye(4)
    m[:3, 3] = (x, y, z)
    return m


def make_object(name: str, mesh: MeshData, collider: bool = True,
                transform=None, is_trigger: bool = False) -> SceneObject:
    return SceneObject(
        name=name,
        transform=np.eye(4) if transform is None else transform,
        render_mesh=mesh,
        collision_mesh=mesh if collider else None,
        is_trigger=is_trigger,
        mesh_path=f"{name}.npz",
        collider_path=f"{name}.npz" if collider else None,
    )


def make_scene(objects, observers, targets, path=None) -> Scene:
    return Scene(
        observers=[ObserverPoint(f"obs_{i}", tuple(float(c) for c in p))
                   for i, p in enumerate(observers)],
        objects={o.name: o for o in objects},
        target_names=list(targets),
        path=path,
    )


# ─── Fakes ───────────────────────────────────────────────────────────────────

class FakeOracle:
    """Segment oracle driven by a predicate; records every query."""

    def __init__(self, blocked=None):
        self.blocked = blocked or (lambda start, end: False)
        self.calls = []

    def is_segment_blocked(self, start, end):
        self.calls.append((start, end))
        return self.blocked(start, end)


class ExplodingOracle:
    def __init__(self, exc=RuntimeError("query backend crashed")):
        self.exc = exc
        self.calls = 0

    def is_segment_blocked(self, start, end):
        self.calls += 1
        raise self.exc


class RecordingReporter:
    verbose = True

    def __init__(self):
        self.progress_calls = []
        self.clear_calls = 0
        self.messages = []

    def progress(self, label, current, total):
        self.progress_calls.append((label, current, total))

    def clear_progress(self):
        self.clear_calls += 1

    def info(self, msg):
        self.messages.append(('info', msg))

    def detail(self, msg):
        self.messages.append(('detail', msg))

    def warning(self, msg):
        self.messages.append(('warning', msg))

    def error(self, msg):
        self.messages.append(('error', msg))

    def success(self, msg):
        self.messages.append(('success', msg))

    def of_kind(self, kind):
        return [m for k, m in self.messages if k == kind]
