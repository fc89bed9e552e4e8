"""
Scene Loader — read the scene description the culler runs against.

A scene is a JSON file listing observer points, the scene objects (render
mesh, optional collision mesh, world transform) and which of those objects
are culling targets:

    {
      "observers": [{"name": "seat_a", "position": [0, 1.2, 0]}],
      "objects": [
        {"name": "hall",  "mesh": "hall.glb",  "collider": "mesh"},
        {"name": "crate", "mesh": "crate.obj", "collider": "crate_col.obj",
         "transform": {"position": [2, 0, 1], "rotation": [0, 45, 0], "scale": 1.5}},
        {"name": "zone",  "mesh": "zone.obj",  "collider": "mesh", "trigger": true}
      ],
      "targets": ["crate", "hall"],
      "settings": {"surface_bias": 0.02, "multi_sample": true, "dilate": true}
    }

Mesh paths are resolved relative to the scene file. ``"collider": "mesh"``
shares the render mesh as the collision mesh. An object whose mesh file
cannot be read is kept without geometry and listed in ``Scene.load_errors``.
"""
from __future__ import annotations

import json
import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np

from geometry import Vec3, vec_is_finite
from mesh_asset import MeshData, MeshError, load_mesh

SHARED_COLLIDER = 'mesh'


class SceneError(Exception):
    """Raised when a scene description is malformed."""
    pass


@dataclass(frozen=True)
class ObserverPoint:
    """A fixed world-space position visibility is evaluated from."""
    name: str
    position: Vec3


@dataclass
class SceneObject:
    """One object of the scene: render mesh, collision mesh and transform."""
    name: str
    transform: np.ndarray = field(default_factory=lambda: np.eye(4))
    render_mesh: Optional[MeshData] = None
    collision_mesh: Optional[MeshData] = None
    is_trigger: bool = False
    mesh_path: Optional[str] = None
    collider_path: Optional[str] = None

    @property
    def has_collider(self) -> bool:
        return self.collision_mesh is not None


@dataclass
class Scene:
    observers: List[ObserverPoint] = field(default_factory=list)
    objects: Dict[str, SceneObject] = field(default_factory=dict)
    target_names: List[str] = field(default_factory=list)
    settings: Dict[str, Any] = field(default_factory=dict)
    path: Optional[Path] = None
    load_errors: Dict[str, str] = field(default_factory=dict)   # object name -> reason

    @property
    def directory(self) -> Optional[Path]:
        return self.path.parent if self.path is not None else None


# ─── Transforms ──────────────────────────────────────────────────────────────

def _rotation_matrix(euler_degrees) -> np.ndarray:
    """Rotation from XYZ Euler angles in degrees (applied X, then Y, then Z)."""
    rx, ry, rz = (math.radians(float(a)) for a in euler_degrees)
    cx, sx = math.cos(rx), math.sin(rx)
    cy, sy = math.cos(ry), math.sin(ry)
    cz, sz = math.cos(rz), math.sin(rz)
    mx = np.array([[1, 0, 0], [0, cx, -sx], [0, sx, cx]])
    my = np.array([[cy, 0, sy], [0, 1, 0], [-sy, 0, cy]])
    mz = np.array([[cz, -sz, 0], [sz, cz, 0], [0, 0, 1]])
    return mz @ my @ mx


def parse_transform(data: Optional[dict]) -> np.ndarray:
    """Build a 4x4 object→world matrix from a transform entry."""
    if not data:
        return np.eye(4)
    if 'matrix' in data:
        m = np.asarray(data['matrix'], dtype=np.float64)
        if m.shape != (4, 4):
            raise SceneError(f"transform matrix must be 4x4, got shape {m.shape}")
        return m

    scale = data.get('scale', 1.0)
    if isinstance(scale, (int, float)):
        scale = (scale, scale, scale)
    if len(scale) != 3:
        raise SceneError(f"transform scale must be a number or 3 values: {scale!r}")

    m = np.eye(4)
    m[:3, :3] = _rotation_matrix(data.get('rotation', (0.0, 0.0, 0.0))) @ np.diag(
        [float(s) for s in scale])
    m[:3, 3] = [float(c) for c in data.get('position', (0.0, 0.0, 0.0))]
    return m


def _parse_vec3(value, what: str) -> Vec3:
    try:
        x, y, z = (float(c) for c in value)
    except (TypeError, ValueError):
        raise SceneError(f"{what}: expected 3 numbers, got {value!r}")
    v = (x, y, z)
    if not vec_is_finite(v):
        raise SceneError(f"{what}: position is not finite: {value!r}")
    return v


# ─── Observers ───────────────────────────────────────────────────────────────

def parse_observers(entries: List[Any]) -> List[ObserverPoint]:
    """Accept ``[x, y, z]`` lists or ``{"name", "position"}`` objects."""
    observers = []
    for i, entry in enumerate(entries):
        if isinstance(entry, dict):
            name = str(entry.get('name', f"observer_{i}"))
            pos = _parse_vec3(entry.get('position'), f"observer '{name}'")
        else:
            name = f"observer_{i}"
            pos = _parse_vec3(entry, f"observer {i}")
        observers.append(ObserverPoint(name, pos))
    return observers


def load_observers(path: Union[str, Path]) -> List[ObserverPoint]:
    """Load observer points from a standalone JSON file."""
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get('observers', [])
    return parse_observers(data)


# ─── Scene ───────────────────────────────────────────────────────────────────

def _load_object(entry: dict, base_dir: Path) -> Tuple[SceneObject, Optional[str]]:
    name = entry.get('name')
    if not name:
        raise SceneError(f"scene object without a name: {entry!r}")

    obj = SceneObject(
        name=str(name),
        transform=parse_transform(entry.get('transform')),
        is_trigger=bool(entry.get('trigger', False)),
    )

    mesh_ref = entry.get('mesh')
    collider_ref = entry.get('collider')
    if mesh_ref:
        obj.mesh_path = str(mesh_ref)
    if collider_ref == SHARED_COLLIDER:
        obj.collider_path = obj.mesh_path
    elif collider_ref:
        obj.collider_path = str(collider_ref)

    # Mesh load failures are returned, not raised; the object keeps no geometry
    try:
        if mesh_ref:
            obj.render_mesh = load_mesh(base_dir / mesh_ref)
        if collider_ref == SHARED_COLLIDER:
            obj.collision_mesh = obj.render_mesh
        elif collider_ref:
            obj.collision_mesh = load_mesh(base_dir / collider_ref)
    except MeshError as e:
        obj.render_mesh = None
        obj.collision_mesh = None
        return obj, str(e)

    return obj, None


def load_scene(path: Union[str, Path]) -> Scene:
    """Parse a scene JSON file and load every referenced mesh."""
    path = Path(path)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise SceneError(f"cannot read scene {path}: {e}") from e

    scene = Scene(path=path.resolve())
    scene.observers = parse_observers(data.get('observers', []))

    for entry in data.get('objects', []):
        obj, error = _load_object(entry, scene.directory)
        if obj.name in scene.objects:
            raise SceneError(f"duplicate object name '{obj.name}'")
        scene.objects[obj.name] = obj
        if error is not None:
            scene.load_errors[obj.name] = error

    seen = set()
    for name in data.get('targets', []):
        if name not in seen:
            seen.add(name)
            scene.target_names.append(str(name))

    scene.settings = dict(data.get('settings', {}))
    return scene


def _relocate(ref: str, scene_dir: Optional[Path], base_dir: Optional[Path]) -> str:
    """Re-express a mesh reference relative to *base_dir*."""
    p = Path(ref)
    if not p.is_absolute() and scene_dir is not None:
        p = scene_dir / p
    if base_dir is None or not p.is_absolute():
        return str(p).replace('\\', '/')
    return os.path.relpath(p, base_dir).replace('\\', '/')


def scene_to_dict(scene: Scene, base_dir: Optional[Path] = None) -> dict:
    """Serialise a scene back to its JSON form.

    Mesh references are rewritten relative to *base_dir* (the directory the
    JSON will be written to) so the file stays loadable from its new place.
    """
    scene_dir = scene.directory
    objects = []
    for obj in scene.objects.values():
        entry: Dict[str, Any] = {'name': obj.name}
        if obj.mesh_path:
            entry['mesh'] = _relocate(obj.mesh_path, scene_dir, base_dir)
        if obj.collider_path:
            if obj.collision_mesh is obj.render_mesh and obj.collider_path == obj.mesh_path:
                entry['collider'] = SHARED_COLLIDER
            else:
                entry['collider'] = _relocate(obj.collider_path, scene_dir, base_dir)
        if obj.is_trigger:
            entry['trigger'] = True
        if not np.allclose(obj.transform, np.eye(4)):
            entry['transform'] = {'matrix': np.asarray(obj.transform).tolist()}
        objects.append(entry)

    return {
        'observers': [{'name': o.name, 'position': list(o.position)}
                      for o in scene.observers],
        'objects': objects,
        'targets': list(scene.target_names),
        'settings': dict(scene.settings),
    }


def save_scene(scene: Scene, path: Union[str, Path]) -> None:
    path = Path(path)
    data = scene_to_dict(scene, base_dir=path.resolve().parent)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)
