from datetime import datetime

import pytest

from mesh_asset import load_mesh
from mesh_store import MeshStore, MeshStoreError, run_folder_name, sanitize_file_name

from mesh_fixtures import cube_mesh


def test_sanitize_file_name():
    assert sanitize_file_name('door:left/1') == 'door_left_1'
    assert sanitize_file_name('  ') == 'mesh'
    assert sanitize_file_name('Crate (big)') == 'Crate (big)'


def test_run_folder_name():
    assert run_folder_name(datetime(2024, 3, 9, 7, 5, 1)) == "OptimizedMeshes_20240309_070501"


def test_folder_is_created_on_first_save(tmp_path):
    store = MeshStore(tmp_path, folder_name="run")
    assert not store.folder.exists()

    path = store.save(cube_mesh(), "crate")

    assert path == tmp_path.resolve() / "run" / "crate_Optimized.npz"
    assert load_mesh(path).name == "crate_Optimized"


def test_existing_files_are_never_overwritten(tmp_path):
    store = MeshStore(tmp_path, folder_name="run")
    first = store.save(cube_mesh(), "crate")
    second = store.save(cube_mesh(), "crate")
    third = store.save(cube_mesh(), "crate")
    assert first.name == "crate_Optimized.npz"
    assert second.name == "crate_Optimized 1.npz"
    assert third.name == "crate_Optimized 2.npz"


def test_trimesh_format(tmp_path):
    store = MeshStore(tmp_path, folder_name="run", suffix="obj")
    path = store.save(cube_mesh(), "crate")
    assert path.suffix == ".obj"
    assert load_mesh(path).triangle_count == 12


def test_unsupported_suffix():
    with pytest.raises(ValueError):
        MeshStore(".", suffix=".fbx")


def test_folder_creation_failure_is_a_store_error(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    store = MeshStore(blocker, folder_name="run")
    with pytest.raises(MeshStoreError):
        store.save(cube_mesh(), "crate")


def test_relative_root_is_resolved_against_the_working_dir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    store = MeshStore("out", folder_name="run")
    assert store.root.is_absolute()
    path = store.save(cube_mesh(), "crate")
    assert path.is_absolute()
    assert path == tmp_path.resolve() / "out" / "run" / "crate_Optimized.npz"
