"""
Debug view — plot observers and visible sample points as a top-down PNG.

The image projects world space onto two axes (x/z by default, i.e. looking
down the y axis), draws every recorded visible sample point in green and
every observer as a cyan disc.
"""
from __future__ import annotations

from pathlib import Path
from typing import List, Sequence, Tuple, Union

from PIL import Image, ImageDraw

from geometry import Vec3

_AXES = {'x': 0, 'y': 1, 'z': 2}

BACKGROUND = (24, 24, 28)
POINT_COLOR = (0, 255, 0)
OBSERVER_COLOR = (0, 255, 255)


def _project(points: Sequence[Vec3], axes: Tuple[int, int]) -> List[Tuple[float, float]]:
    a, b = axes
    return [(p[a], p[b]) for p in points]


def render_debug_points(points: Sequence[Vec3], observers: Sequence[Vec3],
                        path: Union[str, Path], size: int = 1024,
                        axes: str = 'xz', margin: int = 16) -> Path:
    """Write a PNG of *points* and *observers*; returns the output path."""
    if len(axes) != 2 or any(a not in _AXES for a in axes):
        raise ValueError(f"axes must be two of 'x', 'y', 'z', got {axes!r}")
    ax = (_AXES[axes[0]], _AXES[axes[1]])

    flat_pts = _project(points, ax)
    flat_obs = _project(observers, ax)
    everything = flat_pts + flat_obs

    img = Image.new('RGB', (size, size), BACKGROUND)
    draw = ImageDraw.Draw(img)

    if everything:
        min_u = min(p[0] for p in everything)
        max_u = max(p[0] for p in everything)
        min_v = min(p[1] for p in everything)
        max_v = max(p[1] for p in everything)
        span = max(max_u - min_u, max_v - min_v, 1e-6)
        scale = (size - 2 * margin) / span

        def to_px(u: float, v: float) -> Tuple[float, float]:
            # image rows grow downward
            return (margin + (u - min_u) * scale,
                    size - margin - (v - min_v) * scale)

        for u, v in flat_pts:
            x, y = to_px(u, v)
            draw.point((x, y), fill=POINT_COLOR)
        for u, v in flat_obs:
            x, y = to_px(u, v)
            draw.ellipse((x - 4, y - 4, x + 4, y + 4), outline=OBSERVER_COLOR, width=2)

    path = Path(path)
    img.save(path)
    return path
