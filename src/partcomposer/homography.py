"""Closed-form homographies between quadrilaterals.

Both quads are treated as images of the unit square
``(0,0), (1,0), (1,1), (0,1)``; the mapping between them is the product of
one square-to-quad map with the inverse of the other.
"""
from __future__ import annotations

import logging
from typing import Sequence

from .matrix import invert, multiply
from .types import DegenerateTransformError, Matrix3, as_quad

DENOM_EPS = 1e-12
NORMALIZE_EPS = 1e-12

log = logging.getLogger(__name__)


def square_to_quad(quad: Sequence[Sequence[float]]) -> Matrix3:
    """Projective map sending the unit square corners onto ``quad`` (TL, TR, BR, BL)."""

    (x0, y0), (x1, y1), (x2, y2), (x3, y3) = as_quad(quad)

    dx1, dy1 = x1 - x2, y1 - y2
    dx2, dy2 = x3 - x2, y3 - y2
    sx = x0 - x1 + x2 - x3
    sy = y0 - y1 + y2 - y3

    denom = dx1 * dy2 - dx2 * dy1
    if abs(denom) < DENOM_EPS:
        raise DegenerateTransformError("Quad diagonals are parallel; no projective map exists")

    g = (sx * dy2 - dx2 * sy) / denom
    h = (dx1 * sy - sx * dy1) / denom

    a = x1 - x0 + g * x1
    b = x3 - x0 + h * x3
    c = x0
    d = y1 - y0 + g * y1
    e = y3 - y0 + h * y3
    f = y0

    return (a, b, c, d, e, f, g, h, 1.0)


def get_perspective_transform(
    src: Sequence[Sequence[float]], dst: Sequence[Sequence[float]]
) -> Matrix3:
    """Homography mapping points of the ``src`` quad frame onto the ``dst`` frame.

    The result is scaled so that ``H[8] == 1`` whenever that entry is not
    vanishingly small, which leaves the projective map unchanged.
    """

    to_src = square_to_quad(src)
    to_dst = square_to_quad(dst)
    H = multiply(to_dst, invert(to_src))

    if abs(H[8]) > NORMALIZE_EPS and H[8] != 1.0:
        s = 1.0 / H[8]
        H = tuple(v * s for v in H)  # type: ignore[assignment]
    log.debug("perspective transform: %s", ", ".join(f"{v:.6g}" for v in H))
    return H
