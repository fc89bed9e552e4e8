#!/usr/bin/env python3
"""
Exact Occlusion Culler — bake never-visible triangles out of static meshes.

Given a scene (observers, occluding geometry, target meshes), every triangle
of every target is tested against every observer through the scene's solid
collision geometry. Triangles no observer can see are removed; the rest are
written as a new mesh into a per-run output folder and the target's render
and collision meshes are repointed to it.

Pipeline per target:
    visibility pass  →  seam dilation (optional)  →  mesh rebuild  →  store

Usage:
    python mesh_culler.py scene.json [--output-dir DIR] [--format npz|obj|ply|glb]
                          [--bias 0.02] [--no-multi-sample] [--no-dilate]
                          [--workers N] [--debug-image vis.png] [--verbose]
"""
from __future__ import annotations

import argparse
import os
import signal
import sys
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

_this_dir = os.path.dirname(os.path.abspath(__file__))
if _this_dir not in sys.path:
    sys.path.insert(0, _this_dir)

from collision import CollisionWorld, OracleQueryError
from dilation import dilate_triangle_selection
from mesh_asset import MeshError
from mesh_rebuild import rebuild_mesh
from mesh_store import MeshStore, MeshStoreError
from reporting import ConsoleReporter
from scene_loader import Scene, SceneError, load_observers, load_scene, save_scene
from visibility import CullSettings, DebugPointBuffer, VisibilityPass

TOOL_VERSION = "1.0.0"

OPTIMIZED_SCENE_NAME = "scene_optimized.json"

# Target outcomes
REDUCED = "reduced"
SKIPPED = "skipped"
EMPTY = "empty"
FAILED = "failed"
CANCELLED = "cancelled"


class PreconditionError(Exception):
    """Raised when a run cannot start; nothing has been touched."""
    pass


# ─── Results ──────────────────────────────────────────────────────────────────

@dataclass
class TargetResult:
    """Outcome of culling one target."""
    name: str
    status: str
    kept: int = 0
    total: int = 0
    output_path: Optional[Path] = None
    message: str = ""

    @property
    def reduction_percent(self) -> float:
        if self.total <= 0:
            return 0.0
        return (1.0 - self.kept / self.total) * 100.0


@dataclass
class BatchResult:
    results: List[TargetResult] = field(default_factory=list)
    output_folder: Optional[Path] = None
    scene_path: Optional[Path] = None

    @property
    def reduced_count(self) -> int:
        return sum(1 for r in self.results if r.status == REDUCED)

    def by_status(self, status: str) -> List[TargetResult]:
        return [r for r in self.results if r.status == status]


# ─── Orchestrator ─────────────────────────────────────────────────────────────

class OcclusionCuller:
    """Run the culling pipeline over every target of a scene.

    A failing target never stops the batch: it is reported, recorded in the
    BatchResult, and left with its original geometry.
    """

    def __init__(self, scene: Scene, settings: Optional[CullSettings] = None,
                 reporter=None, oracle=None, store: Optional[MeshStore] = None,
                 output_root: Optional[Path] = None, output_format: str = '.npz',
                 debug: Optional[DebugPointBuffer] = None):
        self.scene = scene
        self.settings = settings or CullSettings()
        self.reporter = reporter or ConsoleReporter()
        self.oracle = oracle
        self.store = store
        self.output_root = Path(output_root) if output_root is not None else None
        self.output_format = output_format
        self.debug = debug
        self._visibility: Optional[VisibilityPass] = None

    def _prepare(self) -> None:
        if self.store is None:
            self.store = MeshStore(self._resolve_output_root(),
                                   suffix=self.output_format)
        if self.oracle is None:
            self.oracle = CollisionWorld.from_scene(self.scene,
                                                    verbose=self.reporter_verbose)
        if self._visibility is None:
            self._visibility = VisibilityPass(self.oracle, self.scene.observers,
                                              self.settings, self.reporter, self.debug)

    # ─── Preconditions ────────────────────────────────────────────────────────

    def _resolve_output_root(self) -> Optional[Path]:
        if self.store is not None:
            return self.store.root
        if self.output_root is not None:
            return self.output_root
        return self.scene.directory

    def validate(self) -> None:
        """Reject the whole run before any target is processed."""
        if not self.scene.observers:
            raise PreconditionError("No observer points: add at least one observer.")
        if not self.scene.target_names:
            raise PreconditionError("No target meshes: add at least one target.")
        if self._resolve_output_root() is None:
            raise PreconditionError(
                "No output location: save the scene to a file or pass an output directory.")

    # ─── Batch ────────────────────────────────────────────────────────────────

    def run(self, cancel_event: Optional[threading.Event] = None) -> BatchResult:
        self.validate()
        self._prepare()

        batch = BatchResult()
        targets = self.scene.target_names
        for i, name in enumerate(targets):
            if cancel_event is not None and cancel_event.is_set():
                remaining = targets[i:]
                self.reporter.warning(f"Cancelled; {len(remaining)} target(s) not processed")
                batch.results.extend(TargetResult(n, CANCELLED, message="cancelled")
                                     for n in remaining)
                break
            batch.results.append(self.process_target(name))

        if batch.reduced_count > 0:
            batch.output_folder = self.store.folder
            scene_path = self.store.folder / OPTIMIZED_SCENE_NAME
            try:
                save_scene(self.scene, scene_path)
                batch.scene_path = scene_path
            except OSError as e:
                self.reporter.error(f"Could not write {scene_path.name}: {e}")

        return batch

    @property
    def reporter_verbose(self) -> bool:
        return bool(getattr(self.reporter, 'verbose', False))

    def process_target(self, name: str) -> TargetResult:
        """Cull one target. The run's preconditions are not re-checked."""
        self._prepare()
        try:
            return self._process_target(name)
        finally:
            self.reporter.clear_progress()

    def _skip(self, name: str, reason: str) -> TargetResult:
        self.reporter.warning(f"[Skipped] '{name}': {reason}")
        return TargetResult(name, SKIPPED, message=reason)

    def _fail(self, name: str, total: int, reason: str) -> TargetResult:
        self.reporter.error(f"[Failed] '{name}': {reason}")
        return TargetResult(name, FAILED, total=total, message=reason)

    def _process_target(self, name: str) -> TargetResult:
        obj = self.scene.objects.get(name)
        if obj is None:
            return self._skip(name, "not found in the scene")
        if name in self.scene.load_errors:
            return self._skip(name, f"mesh could not be loaded: {self.scene.load_errors[name]}")
        if obj.render_mesh is None:
            return self._skip(name, "has no render mesh")
        if obj.collision_mesh is None:
            return self._skip(name, "has no collision mesh")

        mesh = obj.render_mesh
        try:
            mesh.validate()
            if obj.collision_mesh is not mesh:
                obj.collision_mesh.validate()
        except MeshError as e:
            return self._skip(name, f"invalid mesh: {e}")

        total = mesh.triangle_count
        if total == 0:
            return self._skip(name, "render mesh has no triangles")

        try:
            kept = self._visibility.run(name, mesh, obj.transform)
        except OracleQueryError as e:
            return self._fail(name, total, f"occlusion query failed: {e}")

        if self.settings.dilate:
            visible = len(kept)
            kept = dilate_triangle_selection(mesh.triangle_buffer(), kept)
            self.reporter.detail(f"{name}: dilation added {len(kept) - visible} triangles")

        if not kept:
            reason = "no triangle is visible from any observer; source left unchanged"
            self.reporter.warning(f"[Result] '{name}': {reason}")
            return TargetResult(name, EMPTY, kept=0, total=total, message=reason)

        try:
            new_mesh = rebuild_mesh(mesh, kept)
        except (ValueError, MeshError) as e:
            return self._fail(name, total, f"mesh rebuild failed: {e}")

        try:
            path = self.store.save(new_mesh, name)
        except MeshStoreError as e:
            return self._fail(name, total, f"could not store mesh: {e}")

        # Repoint render and collision geometry at the reduced mesh
        obj.render_mesh = new_mesh
        obj.collision_mesh = new_mesh
        obj.mesh_path = str(path)
        obj.collider_path = str(path)
        if hasattr(self.oracle, 'replace_collider'):
            self.oracle.replace_collider(name, new_mesh, obj.transform)

        result = TargetResult(name, REDUCED, kept=len(kept), total=total,
                              output_path=path)
        self.reporter.success(f"[SUCCESS] {name} saved as {path.name} | "
                              f"Reduced: {result.reduction_percent:.1f}% "
                              f"({len(kept)}/{total} triangles kept)")
        return result


# ─── CLI ──────────────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Remove mesh triangles never visible from a set of observer points")
    parser.add_argument("scene", help="Scene JSON file")
    parser.add_argument("--observers", default=None,
                        help="JSON file with observer positions (replaces the scene's)")
    parser.add_argument("--output-dir", "-o", default=None,
                        help="Root for the OptimizedMeshes_* folder (default: scene directory)")
    parser.add_argument("--format", "-f", default="npz",
                        choices=["npz", "obj", "ply", "glb", "gltf", "stl", "off"],
                        help="Output mesh format (default: npz)")
    parser.add_argument("--bias", type=float, default=None,
                        help="Surface bias distance (default 0.02)")
    parser.add_argument("--no-multi-sample", action="store_true",
                        help="Only test triangle centroids, not their vertices")
    parser.add_argument("--no-dilate", action="store_true",
                        help="Skip the one-ring seam dilation")
    parser.add_argument("--workers", "-w", type=int, default=None,
                        help="Number of worker processes (0=auto, 1=serial)")
    parser.add_argument("--debug-image", default=None,
                        help="Write a top-down PNG of visible sample points")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Print detailed progress")
    parser.add_argument("--version", action="version",
                        version=f"%(prog)s {TOOL_VERSION}")
    return parser


def _install_cancel_handler(cancel_event: threading.Event):
    """Make the first Ctrl+C stop between targets. Returns the previous handler."""
    def handler(signum, frame):
        if cancel_event.is_set():
            signal.signal(signal.SIGINT, signal.default_int_handler)
            raise KeyboardInterrupt
        cancel_event.set()
        print("\n  Cancelling after the current target (Ctrl+C again to abort)...",
              flush=True)

    return signal.signal(signal.SIGINT, handler)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if not os.path.exists(args.scene):
        print(f"ERROR: Scene file not found: {args.scene}")
        return 1

    print(f"\n{'='*60}")
    print(f"  Exact Occlusion Culler {TOOL_VERSION} — {os.path.basename(args.scene)}")
    print(f"{'='*60}\n")

    t0 = time.perf_counter()

    try:
        scene = load_scene(args.scene)
        if args.observers:
            scene.observers = load_observers(args.observers)
        settings = CullSettings.from_dict(
            scene.settings,
            surface_bias=args.bias,
            multi_sample=False if args.no_multi_sample else None,
            dilate=False if args.no_dilate else None,
            num_workers=args.workers,
        )
    except (SceneError, OSError, ValueError) as e:
        print(f"ERROR: {e}")
        return 1

    reporter = ConsoleReporter(verbose=args.verbose)
    debug = DebugPointBuffer(settings.debug_capacity) if args.debug_image else None
    culler = OcclusionCuller(scene, settings, reporter,
                             output_root=args.output_dir,
                             output_format=f".{args.format}",
                             debug=debug)

    reporter.info(f"Observers: {len(scene.observers)}, targets: {len(scene.target_names)}, "
                  f"objects: {len(scene.objects)}")
    reporter.detail(f"Settings: bias={settings.surface_bias}, "
                    f"multi_sample={settings.multi_sample}, dilate={settings.dilate}, "
                    f"workers={settings.resolved_workers()}")
    for name, reason in scene.load_errors.items():
        if name not in scene.target_names:
            reporter.warning(f"Object '{name}' has no geometry and will not occlude: {reason}")
    print()

    cancel_event = threading.Event()
    previous_handler = _install_cancel_handler(cancel_event)

    try:
        batch = culler.run(cancel_event)
    except PreconditionError as e:
        print(f"ERROR: {e}")
        return 1
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)

    if debug is not None:
        from debug_view import render_debug_points
        out = render_debug_points(debug.points, [o.position for o in scene.observers],
                                  args.debug_image)
        print(f"  Debug view: {out} ({len(debug)} points)")

    elapsed = time.perf_counter() - t0
    print(f"\n{'='*60}")
    print(f"  Reduced: {batch.reduced_count}/{len(batch.results)} targets")
    for status in (EMPTY, SKIPPED, FAILED, CANCELLED):
        entries = batch.by_status(status)
        if entries:
            print(f"  {status.capitalize()}: {', '.join(r.name for r in entries)}")
    if batch.output_folder is not None:
        print(f"  Output: {batch.output_folder}")
    print(f"  Total: {elapsed:.2f}s")
    print(f"{'='*60}\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
