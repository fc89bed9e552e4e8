"""
Mesh Asset — in-memory mesh model and mesh file I/O.

A mesh is a vertex buffer, one triangle index buffer per submesh (material
slot) and any number of per-vertex attribute channels. Triangles are
addressed by a *global* index that runs through the submeshes in order:

    submesh 0: triangles 0 .. n0-1
    submesh 1: triangles n0 .. n0+n1-1
    ...

Supported formats:
    .npz                           : native asset (every channel, submeshes,
                                     bind poses); read/written with numpy
    .obj .ply .glb .gltf .stl .off : read/written through trimesh
                                     (one scene geometry per submesh)

Usage:
    from mesh_asset import load_mesh, save_mesh

    mesh = load_mesh("props/crate.glb")
    print(mesh.vertex_count, mesh.triangle_count, mesh.submesh_count)
    save_mesh(mesh, "out/crate.npz")
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, NamedTuple, Optional, Tuple, Union

import numpy as np
import trimesh

from geometry import (
    AABB, Vec3, transform_normals, transform_points, vec_cross, vec_normalize, vec_sub,
)

# Per-vertex attribute channels carried through every operation.
# Each is an (N, k) array where N is the vertex count.
VERTEX_CHANNELS = (
    'uv', 'uv2', 'normals', 'tangents', 'colors', 'bone_weights', 'bone_indices',
)

NATIVE_SUFFIX = '.npz'
TRIMESH_SUFFIXES = ('.obj', '.ply', '.glb', '.gltf', '.stl', '.off')


class MeshError(Exception):
    """Raised when a mesh is malformed or cannot be read/written."""
    pass


# ─── Triangle view ───────────────────────────────────────────────────────────

class Triangle(NamedTuple):
    """World-space view of one triangle. Owns nothing; built on demand."""
    index: int
    v0: Vec3
    v1: Vec3
    v2: Vec3

    @property
    def centroid(self) -> Vec3:
        return (
            (self.v0[0] + self.v1[0] + self.v2[0]) / 3.0,
            (self.v0[1] + self.v1[1] + self.v2[1]) / 3.0,
            (self.v0[2] + self.v1[2] + self.v2[2]) / 3.0,
        )

    @property
    def normal(self) -> Vec3:
        """Outward normal from the winding: normalize((v1-v0) × (v2-v0))."""
        return vec_normalize(vec_cross(vec_sub(self.v1, self.v0),
                                       vec_sub(self.v2, self.v0)))


# ─── Mesh data ───────────────────────────────────────────────────────────────

@dataclass
class MeshData:
    """A renderable mesh: vertices, per-submesh triangles and attribute channels."""
    name: str
    positions: np.ndarray                       # (N, 3) float
    submeshes: List[np.ndarray]                 # each (M_i, 3) int
    channels: Dict[str, np.ndarray] = field(default_factory=dict)
    bind_poses: Optional[np.ndarray] = None     # (B, 4, 4), per bone
    bounds: Optional[AABB] = None

    def __post_init__(self):
        self.positions = np.asarray(self.positions, dtype=np.float64).reshape(-1, 3)
        self.submeshes = [np.asarray(s).reshape(-1, 3) for s in self.submeshes]
        if self.bounds is None:
            self.recalculate_bounds()

    @property
    def vertex_count(self) -> int:
        return len(self.positions)

    @property
    def submesh_count(self) -> int:
        return len(self.submeshes)

    @property
    def triangle_count(self) -> int:
        return sum(len(s) for s in self.submeshes)

    def recalculate_bounds(self) -> None:
        self.bounds = AABB.from_points(self.positions)

    def triangle_buffer(self) -> np.ndarray:
        """Concatenated (T, 3) index buffer in global triangle order."""
        if not self.submeshes:
            return np.zeros((0, 3), dtype=np.int64)
        return np.concatenate([s.astype(np.int64) for s in self.submeshes])

    def submesh_ranges(self) -> List[Tuple[int, int]]:
        """(first, end) global triangle range of each submesh."""
        ranges = []
        start = 0
        for s in self.submeshes:
            ranges.append((start, start + len(s)))
            start += len(s)
        return ranges

    def world_positions(self, transform: np.ndarray) -> np.ndarray:
        return transform_points(transform, self.positions)

    def iter_triangles(self, transform: np.ndarray) -> Iterator[Triangle]:
        """Yield every triangle in world space, in global index order."""
        world = [tuple(p) for p in self.world_positions(transform).tolist()]
        for i, (a, b, c) in enumerate(self.triangle_buffer().tolist()):
            yield Triangle(i, world[a], world[b], world[c])

    def validate(self) -> None:
        """Check index ranges and channel lengths. Raises MeshError."""
        n = self.vertex_count
        for si, sub in enumerate(self.submeshes):
            if sub.size == 0:
                continue
            if not np.issubdtype(sub.dtype, np.integer):
                raise MeshError(f"{self.name}: submesh {si} index buffer is not integral")
            lo, hi = int(sub.min()), int(sub.max())
            if lo < 0 or hi >= n:
                raise MeshError(
                    f"{self.name}: submesh {si} references vertex {hi if hi >= n else lo} "
                    f"but the mesh has {n} vertices")
        for cname, data in self.channels.items():
            if len(data) != n:
                raise MeshError(
                    f"{self.name}: channel '{cname}' has {len(data)} entries, "
                    f"expected {n}")


# ─── Native .npz assets ──────────────────────────────────────────────────────

def _read_native(path: Path) -> MeshData:
    with np.load(path, allow_pickle=False) as data:
        if 'positions' not in data:
            raise MeshError(f"{path}: not a mesh asset (no 'positions' array)")
        count = int(data['submesh_count']) if 'submesh_count' in data else 0
        submeshes = [data[f'submesh_{i}'] for i in range(count)]
        channels = {}
        for cname in VERTEX_CHANNELS:
            key = f'channel_{cname}'
            if key in data:
                channels[cname] = data[key]
        bind_poses = data['bind_poses'] if 'bind_poses' in data else None
        name = str(data['name']) if 'name' in data else path.stem
        positions = data['positions']
    return MeshData(name=name, positions=positions, submeshes=submeshes,
                    channels=channels, bind_poses=bind_poses)


def _write_native(mesh: MeshData, path: Path) -> None:
    arrays = {
        'name': np.array(mesh.name),
        'positions': mesh.positions,
        'submesh_count': np.array(mesh.submesh_count),
    }
    for i, sub in enumerate(mesh.submeshes):
        arrays[f'submesh_{i}'] = sub
    for cname, data in mesh.channels.items():
        arrays[f'channel_{cname}'] = data
    if mesh.bind_poses is not None:
        arrays['bind_poses'] = mesh.bind_poses
    # np.savez appends .npz to names without it; write through a handle instead
    with open(path, 'wb') as f:
        np.savez_compressed(f, **arrays)


# ─── trimesh-backed formats ──────────────────────────────────────────────────

def _read_trimesh(path: Path) -> MeshData:
    scene = trimesh.load(str(path), force='scene', process=False)

    parts: List[Tuple[np.ndarray, trimesh.Trimesh]] = []
    for node in scene.graph.nodes_geometry:
        transform, geom_name = scene.graph[node]
        geom = scene.geometry.get(geom_name)
        if isinstance(geom, trimesh.Trimesh) and len(geom.faces) > 0:
            parts.append((transform, geom))

    if not parts:
        raise MeshError(f"{path}: no triangle geometry found")

    positions = []
    normals = []
    uvs = []
    submeshes = []
    base = 0
    for transform, geom in parts:
        positions.append(transform_points(transform, geom.vertices))
        normals.append(transform_normals(transform, geom.vertex_normals))
        uv = getattr(geom.visual, 'uv', None)
        uvs.append(None if uv is None or len(uv) != len(geom.vertices) else np.asarray(uv))
        submeshes.append(np.asarray(geom.faces, dtype=np.int64) + base)
        base += len(geom.vertices)

    channels = {'normals': np.concatenate(normals)}
    if all(uv is not None for uv in uvs):
        channels['uv'] = np.concatenate(uvs)

    return MeshData(name=path.stem, positions=np.concatenate(positions),
                    submeshes=submeshes, channels=channels)


# Formats that can hold several geometries; the rest get one merged mesh
_SCENE_SUFFIXES = ('.obj', '.glb', '.gltf')


def _to_trimesh(mesh: MeshData, faces: np.ndarray) -> trimesh.Trimesh:
    part = trimesh.Trimesh(vertices=mesh.positions, faces=faces,
                           vertex_normals=mesh.channels.get('normals'),
                           process=False)
    uv = mesh.channels.get('uv')
    if uv is not None:
        part.visual = trimesh.visual.TextureVisuals(uv=uv)
    return part


def _write_trimesh(mesh: MeshData, path: Path) -> None:
    if path.suffix.lower() not in _SCENE_SUFFIXES or mesh.submesh_count < 2:
        _to_trimesh(mesh, mesh.triangle_buffer()).export(str(path))
        return

    scene = trimesh.Scene()
    for i, sub in enumerate(mesh.submeshes):
        scene.add_geometry(_to_trimesh(mesh, sub), node_name=f"{mesh.name}_{i}",
                           geom_name=f"{mesh.name}_{i}")
    scene.export(str(path))


# ─── Public API ──────────────────────────────────────────────────────────────

def load_mesh(path: Union[str, Path]) -> MeshData:
    """Read a mesh file and validate it."""
    path = Path(path)
    if not path.is_file():
        raise MeshError(f"Mesh file not found: {path}")

    suffix = path.suffix.lower()
    try:
        if suffix == NATIVE_SUFFIX:
            mesh = _read_native(path)
        elif suffix in TRIMESH_SUFFIXES:
            mesh = _read_trimesh(path)
        else:
            raise MeshError(f"{path}: unsupported mesh format '{suffix}'")
    except MeshError:
        raise
    except Exception as e:
        raise MeshError(f"{path}: failed to read mesh ({e})") from e

    mesh.validate()
    return mesh


def save_mesh(mesh: MeshData, path: Union[str, Path]) -> None:
    """Write a mesh, choosing the format from the file extension."""
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == NATIVE_SUFFIX:
        _write_native(mesh, path)
    elif suffix in TRIMESH_SUFFIXES:
        _write_trimesh(mesh, path)
    else:
        raise MeshError(f"{path}: unsupported mesh format '{suffix}'")
