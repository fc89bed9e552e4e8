"""
Triangle Visibility — decide which triangles of a mesh any observer can see.

For every triangle and every observer (in order, stopping at the first hit):

  1. Backface rejection: if the triangle faces away from this observer,
     move on to the next observer without querying the oracle.
  2. Test the centroid.
  3. With multi-sampling, test v0, v1, v2 in that order.

A sample point is visible when the segment from the observer to the point,
pulled ``surface_bias`` units back toward the observer, is not obstructed.
The oracle is any object with ``is_segment_blocked(start, end) -> bool``
(normally a collision.CollisionWorld). The target's own collision mesh is
part of the oracle, so concave parts of a target can hide each other.

Usage:
    from visibility import CullSettings, VisibilityPass

    vis = VisibilityPass(world, scene.observers, CullSettings(), reporter)
    kept = vis.run(obj.name, obj.render_mesh, obj.transform)
"""
from __future__ import annotations

import multiprocessing as mp
import os
import threading
import time
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Optional, Set, Tuple

from collision import OracleQueryError
from geometry import Vec3, vec_distance, vec_dot, vec_length, vec_normalize, vec_scale, vec_sub
from mesh_asset import MeshData, Triangle

# Below this many triangles a pool costs more than it saves
MIN_PARALLEL_TRIANGLES = 50


# ─── Settings ─────────────────────────────────────────────────────────────────

_TRUE_STRINGS = ('true', 'yes', 'on', '1')
_FALSE_STRINGS = ('false', 'no', 'off', '0')


def _as_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")


def _as_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


def _as_float(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a number, got {value!r}") from None


@dataclass
class CullSettings:
    """Kernel parameters for one culling run."""
    surface_bias: float = 0.02      # pull-back distance for sample points
    multi_sample: bool = True       # test v0/v1/v2 besides the centroid
    dilate: bool = True             # grow the kept set by one triangle ring
    num_workers: int = 1            # 0 = auto, 1 = serial
    progress_interval: int = 200    # triangles between progress reports
    debug_capacity: int = 2000      # visible points kept for visualization

    def __post_init__(self):
        self.surface_bias = _as_float('surface_bias', self.surface_bias)
        self.multi_sample = _as_bool('multi_sample', self.multi_sample)
        self.dilate = _as_bool('dilate', self.dilate)
        self.num_workers = _as_int('num_workers', self.num_workers)
        self.progress_interval = _as_int('progress_interval', self.progress_interval)
        self.debug_capacity = _as_int('debug_capacity', self.debug_capacity)
        if not self.surface_bias >= 0.0:
            raise ValueError(f"surface_bias must be >= 0, got {self.surface_bias}")
        if self.num_workers < 0:
            raise ValueError(f"num_workers must be >= 0, got {self.num_workers}")
        if self.progress_interval < 1:
            raise ValueError(f"progress_interval must be >= 1, got {self.progress_interval}")
        if self.debug_capacity < 0:
            raise ValueError(f"debug_capacity must be >= 0, got {self.debug_capacity}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any], **overrides) -> CullSettings:
        """Build settings from a scene's ``settings`` block plus overrides.

        Unknown keys are ignored; ``None`` overrides leave the value alone.
        """
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def resolved_workers(self) -> int:
        if self.num_workers <= 0:
            return max(1, (os.cpu_count() or 4) - 2)
        return self.num_workers


# ─── Debug point buffer ──────────────────────────────────────────────────────

class DebugPointBuffer:
    """Bounded record of visible sample points, for visualization only.

    Once full, further points are dropped; nothing is ever evicted.
    """

    def __init__(self, capacity: int = 2000):
        self.capacity = capacity
        self._points: List[Vec3] = []
        self._lock = threading.Lock()

    def add(self, point: Vec3) -> None:
        with self._lock:
            if len(self._points) < self.capacity:
                self._points.append(point)

    @property
    def points(self) -> List[Vec3]:
        with self._lock:
            return list(self._points)

    @property
    def is_full(self) -> bool:
        return len(self._points) >= self.capacity

    def __len__(self) -> int:
        return len(self._points)


# ─── Classifier ──────────────────────────────────────────────────────────────

def biased_target(eye: Vec3, target: Vec3, bias: float) -> Vec3:
    """Pull *target* toward *eye* by *bias*, unless that overshoots the eye."""
    direction = vec_sub(target, eye)
    dist = vec_length(direction)
    step = vec_scale(vec_normalize(direction), bias)
    biased = vec_sub(target, step)
    if vec_distance(eye, biased) > dist:
        return target
    return biased


def is_point_visible(oracle, eye: Vec3, target: Vec3, bias: float,
                     debug: Optional[DebugPointBuffer] = None) -> bool:
    end = biased_target(eye, target, bias)
    try:
        blocked = oracle.is_segment_blocked(eye, end)
    except OracleQueryError:
        raise
    except Exception as e:
        raise OracleQueryError(f"occlusion query {eye} -> {end} failed: {e}") from e
    if blocked:
        return False
    if debug is not None:
        debug.add(target)
    return True


def find_visible_sample(tri: Triangle, observers, oracle, bias: float,
                        multi_sample: bool,
                        debug: Optional[DebugPointBuffer] = None) -> Optional[Vec3]:
    """Return the first sample point of *tri* some observer sees, or None."""
    centroid = tri.centroid
    normal = tri.normal
    samples = (centroid, tri.v0, tri.v1, tri.v2) if multi_sample else (centroid,)

    for obs in observers:
        eye = obs.position
        view_dir = vec_normalize(vec_sub(centroid, eye))
        if vec_dot(view_dir, normal) > 0.0:
            continue  # facing away from this observer

        for sample in samples:
            if is_point_visible(oracle, eye, sample, bias, debug):
                return sample
    return None


def classify_triangle(tri: Triangle, observers, oracle,
                      settings: CullSettings,
                      debug: Optional[DebugPointBuffer] = None) -> bool:
    """True if the triangle is visible from at least one observer."""
    return find_visible_sample(tri, observers, oracle, settings.surface_bias,
                               settings.multi_sample, debug) is not None


# ─── Multiprocessing worker ──────────────────────────────────────────────────

# Module-level state for worker processes
_worker_oracle = None
_worker_observers = None
_worker_triangles: Optional[List[Triangle]] = None
_worker_bias: float = 0.0
_worker_multi_sample: bool = True


def _worker_init(oracle, observers, triangles, bias, multi_sample):
    """Give each worker process its own copy of the read-only inputs."""
    global _worker_oracle, _worker_observers, _worker_triangles
    global _worker_bias, _worker_multi_sample
    _worker_oracle = oracle
    _worker_observers = observers
    _worker_triangles = triangles
    _worker_bias = bias
    _worker_multi_sample = multi_sample


def _worker_check_triangle(tri_idx: int) -> Tuple[int, Optional[Vec3]]:
    """Returns (triangle index, first visible sample point or None)."""
    tri = _worker_triangles[tri_idx]
    sample = find_visible_sample(tri, _worker_observers, _worker_oracle,
                                 _worker_bias, _worker_multi_sample)
    return tri_idx, sample


# ─── Mesh-wide pass ──────────────────────────────────────────────────────────

class VisibilityPass:
    """Classify every triangle of a mesh and collect the visible ones."""

    def __init__(self, oracle, observers, settings: Optional[CullSettings] = None,
                 reporter=None, debug: Optional[DebugPointBuffer] = None):
        self.oracle = oracle
        self.observers = list(observers)
        self.settings = settings or CullSettings()
        self.reporter = reporter
        self.debug = debug

    def _report(self, label: str, current: int, total: int) -> None:
        if self.reporter is not None:
            self.reporter.progress(label, current, total)

    def run(self, label: str, mesh: MeshData, transform) -> Set[int]:
        """Return the global indices of the visible triangles of *mesh*."""
        triangles = list(mesh.iter_triangles(transform))
        total = len(triangles)
        if total == 0:
            return set()

        workers = self.settings.resolved_workers()
        t0 = time.perf_counter()
        if workers == 1 or total < MIN_PARALLEL_TRIANGLES:
            kept = self._run_serial(label, triangles)
            mode = "serial"
        else:
            kept = self._run_parallel(label, triangles, workers)
            mode = f"{workers} workers"

        if self.reporter is not None:
            elapsed = time.perf_counter() - t0
            rate = total / elapsed if elapsed > 0 else 0
            self.reporter.detail(f"{label}: {len(kept)}/{total} visible in {elapsed:.2f}s "
                                 f"({mode}, {rate:.0f} tris/s)")
        return kept

    def _run_serial(self, label: str, triangles: List[Triangle]) -> Set[int]:
        kept: Set[int] = set()
        total = len(triangles)
        interval = self.settings.progress_interval
        for i, tri in enumerate(triangles):
            if classify_triangle(tri, self.observers, self.oracle,
                                 self.settings, self.debug):
                kept.add(tri.index)
            if i % interval == 0:
                self._report(label, i, total)
        return kept

    def _run_parallel(self, label: str, triangles: List[Triangle],
                      workers: int) -> Set[int]:
        kept: Set[int] = set()
        total = len(triangles)
        interval = self.settings.progress_interval
        completed = 0

        try:
            with mp.Pool(
                processes=workers,
                initializer=_worker_init,
                initargs=(self.oracle, self.observers, triangles,
                          self.settings.surface_bias, self.settings.multi_sample),
            ) as pool:
                for tri_idx, sample in pool.imap_unordered(
                        _worker_check_triangle, range(total), chunksize=16):
                    if sample is not None:
                        kept.add(tri_idx)
                        if self.debug is not None:
                            self.debug.add(sample)
                    if completed % interval == 0:
                        self._report(label, completed, total)
                    completed += 1
        except OracleQueryError:
            raise
        except Exception as e:
            if self.reporter is not None:
                self.reporter.warning(f"Parallel mode failed: {e}; falling back to serial mode")
            return self._run_serial(label, triangles)

        return kept
