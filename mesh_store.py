"""
Mesh Store — write reduced meshes into a per-run output folder.

Every run writes into a fresh ``OptimizedMeshes_YYYYmmdd_HHMMSS`` folder
next to the scene (or under an explicit output root). Files are named
``<object>_Optimized.<ext>``; names that already exist get a numeric
suffix, so nothing is ever overwritten.
"""
from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from mesh_asset import NATIVE_SUFFIX, TRIMESH_SUFFIXES, MeshData, save_mesh

FOLDER_PREFIX = "OptimizedMeshes_"
OUTPUT_SUFFIX = "_Optimized"

# Characters not allowed in file names on any major platform
_INVALID_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


class MeshStoreError(Exception):
    """Raised when a mesh cannot be stored."""
    pass


def sanitize_file_name(name: str) -> str:
    """Replace characters that are invalid in file names with '_'."""
    cleaned = _INVALID_CHARS_RE.sub('_', name).strip()
    return cleaned or "mesh"


def run_folder_name(when: Optional[datetime] = None) -> str:
    when = when or datetime.now()
    return f"{FOLDER_PREFIX}{when:%Y%m%d_%H%M%S}"


class MeshStore:
    """Persist meshes under ``<root>/<folder_name>``.

    The folder is created on the first save, so a run that reduces nothing
    leaves no trace on disk.
    """

    def __init__(self, root: Union[str, Path], folder_name: Optional[str] = None,
                 suffix: str = NATIVE_SUFFIX):
        suffix = suffix if suffix.startswith('.') else f'.{suffix}'
        if suffix.lower() not in (NATIVE_SUFFIX,) + TRIMESH_SUFFIXES:
            raise ValueError(f"unsupported output format '{suffix}'")
        self.root = Path(root).resolve()
        self.folder = self.root / (folder_name or run_folder_name())
        self.suffix = suffix.lower()

    def ensure_folder(self) -> Path:
        try:
            self.folder.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise MeshStoreError(f"cannot create output folder {self.folder}: {e}") from e
        return self.folder

    def unique_path(self, name: str) -> Path:
        stem = f"{sanitize_file_name(name)}{OUTPUT_SUFFIX}"
        path = self.folder / f"{stem}{self.suffix}"
        n = 1
        while path.exists():
            path = self.folder / f"{stem} {n}{self.suffix}"
            n += 1
        return path

    def save(self, mesh: MeshData, name: str) -> Path:
        """Write *mesh* under a unique name derived from *name*; return the path."""
        self.ensure_folder()
        path = self.unique_path(name)
        mesh.name = path.stem
        try:
            save_mesh(mesh, path)
        except Exception as e:
            raise MeshStoreError(f"cannot write {path.name}: {e}") from e
        return path
