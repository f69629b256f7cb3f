from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Sequence, Tuple, Union

Point = Tuple[float, float]
Quad = Tuple[Point, Point, Point, Point]
Matrix3 = Tuple[float, float, float, float, float, float, float, float, float]

ROTATE_LIMIT_DEG = 45.0
TILT_LIMIT_DEG = 60.0


class DegenerateTransformError(ValueError):
    """Raised when a projective transform cannot be computed."""


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def as_quad(points: Sequence[Sequence[float]]) -> Quad:
    if len(points) != 4:
        raise ValueError(f"Quad requires exactly 4 points, got {len(points)}")
    pts = [(float(p[0]), float(p[1])) for p in points]
    return (pts[0], pts[1], pts[2], pts[3])


@dataclass(frozen=True)
class TransformParams:
    rotate: float = 0.0
    tilt_x: float = 0.0
    tilt_y: float = 0.0

    def clamped(self) -> "TransformParams":
        """Clamp to the ranges offered by the editing controls."""

        def _clip(value: float, limit: float) -> float:
            return max(-limit, min(limit, float(value)))

        return TransformParams(
            rotate=_clip(self.rotate, ROTATE_LIMIT_DEG),
            tilt_x=_clip(self.tilt_x, TILT_LIMIT_DEG),
            tilt_y=_clip(self.tilt_y, TILT_LIMIT_DEG),
        )


@dataclass(frozen=True)
class RectRegion:
    x: float
    y: float
    w: float
    h: float

    @classmethod
    def from_corners(cls, p0: Point, p1: Point) -> "RectRegion":
        return cls(
            x=min(p0[0], p1[0]),
            y=min(p0[1], p1[1]),
            w=abs(p1[0] - p0[0]),
            h=abs(p1[1] - p0[1]),
        )

    def normalized(self) -> Tuple[int, int, int, int]:
        """Return integer ``(x, y, w, h)`` with ``w, h >= 1``."""

        x0 = _round_half_up(min(self.x, self.x + self.w))
        y0 = _round_half_up(min(self.y, self.y + self.h))
        x1 = _round_half_up(max(self.x, self.x + self.w))
        y1 = _round_half_up(max(self.y, self.y + self.h))
        return x0, y0, max(1, x1 - x0), max(1, y1 - y0)


@dataclass(frozen=True)
class PolygonRegion:
    points: Tuple[Point, ...]

    def __post_init__(self) -> None:
        if len(self.points) < 3:
            raise ValueError("Polygon region needs at least 3 points")

    @classmethod
    def from_points(cls, points: Sequence[Sequence[float]]) -> "PolygonRegion":
        return cls(tuple((float(p[0]), float(p[1])) for p in points))

    def bounds(self) -> Tuple[int, int, int, int]:
        """Integer pixel bounds ``(x, y, w, h)`` enclosing every vertex."""

        xs = [p[0] for p in self.points]
        ys = [p[1] for p in self.points]
        x0 = math.floor(min(xs))
        y0 = math.floor(min(ys))
        w = max(1, math.ceil(max(xs)) - x0)
        h = max(1, math.ceil(max(ys)) - y0)
        return int(x0), int(y0), int(w), int(h)

    def translated(self, dx: float, dy: float) -> List[Point]:
        return [(x + dx, y + dy) for x, y in self.points]


CropRegion = Union[RectRegion, PolygonRegion]
