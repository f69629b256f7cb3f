from __future__ import annotations

import math
from typing import List, Sequence, Tuple

from .types import Point, _round_half_up

FOCAL_LENGTH = 1000.0


def calculate_transformed_corners(
    w: float,
    h: float,
    rotate: float,
    tilt_x: float,
    tilt_y: float,
    focal_length: float = FOCAL_LENGTH,
) -> List[Point]:
    """Project the corners (TL, TR, BR, BL) of a ``w x h`` rectangle after a 3D rotation.

    The rectangle is centered on the origin in the z=0 plane and rotated
    about X by ``tilt_y``, then about Y by ``-tilt_x``, then about Z by
    ``rotate`` (degrees). The viewer sits at ``(0, 0, focal_length)``;
    points moving towards it grow by ``f / (f - z)``. Results are shifted
    back so that the unrotated rectangle spans ``(0, 0)..(w, h)``.
    """

    rx = math.radians(tilt_y)
    ry = math.radians(-tilt_x)
    rz = math.radians(rotate)
    cx, sx = math.cos(rx), math.sin(rx)
    cy, sy = math.cos(ry), math.sin(ry)
    cz, sz = math.cos(rz), math.sin(rz)

    half_w = w / 2
    half_h = h / 2
    corners = [(-half_w, -half_h), (half_w, -half_h), (half_w, half_h), (-half_w, half_h)]

    projected: List[Point] = []
    for px, py in corners:
        pz = 0.0
        # about X
        y1 = py * cx - pz * sx
        z1 = py * sx + pz * cx
        x1 = px
        # about Y
        x2 = x1 * cy + z1 * sy
        z2 = -x1 * sy + z1 * cy
        y2 = y1
        # about Z
        x3 = x2 * cz - y2 * sz
        y3 = x2 * sz + y2 * cz
        z3 = z2

        scale = focal_length / (focal_length - z3)
        projected.append((x3 * scale + half_w, y3 * scale + half_h))
    return projected


def bounding_box(points: Sequence[Point]) -> Tuple[float, float, float, float]:
    if not points:
        raise ValueError("bounding_box needs at least one point")
    xs = [p[0] for p in points]
    ys = [p[1] for p in points]
    return min(xs), min(ys), max(xs), max(ys)


def output_size(points: Sequence[Point]) -> Tuple[int, int]:
    """Rounded ``(width, height)`` of the axis-aligned box around ``points``."""
    min_x, min_y, max_x, max_y = bounding_box(points)
    return _round_half_up(max_x - min_x), _round_half_up(max_y - min_y)


def translate_to_origin(points: Sequence[Point]) -> List[Point]:
    min_x, min_y, _, _ = bounding_box(points)
    return [(x - min_x, y - min_y) for x, y in points]
