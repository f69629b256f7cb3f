import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from partcomposer.homography import get_perspective_transform, square_to_quad
from partcomposer.matrix import apply, identity
from partcomposer.types import DegenerateTransformError

UNIT_SQUARE = [(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0)]

QUADS = [
    [(0.0, 0.0), (100.0, 0.0), (100.0, 50.0), (0.0, 50.0)],
    [(10.0, 5.0), (90.0, 12.0), (80.0, 70.0), (3.0, 60.0)],
    [(25.0, 0.0), (111.6, 50.0), (86.6, 93.3), (0.0, 43.3)],
    [(-4.0, -2.0), (7.5, 1.0), (6.0, 9.0), (-3.0, 6.5)],
]


def test_square_to_quad_of_unit_square_is_identity() -> None:
    assert square_to_quad(UNIT_SQUARE) == pytest.approx(identity())


@pytest.mark.parametrize("quad", QUADS)
def test_square_to_quad_maps_unit_corners_onto_quad(quad) -> None:
    H = square_to_quad(quad)
    for (u, v), expected in zip(UNIT_SQUARE, quad):
        assert apply(H, u, v) == pytest.approx(expected, abs=1e-9)


@pytest.mark.parametrize("quad", QUADS)
def test_transform_between_identical_quads_is_identity(quad) -> None:
    H = get_perspective_transform(quad, quad)
    assert H == pytest.approx(identity(), abs=1e-9)


@pytest.mark.parametrize("src", QUADS)
@pytest.mark.parametrize("dst", QUADS)
def test_transform_maps_src_corners_to_dst_corners(src, dst) -> None:
    H = get_perspective_transform(src, dst)
    assert H[8] == pytest.approx(1.0)
    for p, q in zip(src, dst):
        assert apply(H, *p) == pytest.approx(q, abs=1e-6)


def test_corner_order_changes_transform() -> None:
    quad = QUADS[1]
    swapped = [quad[1], quad[0], quad[3], quad[2]]
    assert get_perspective_transform(quad, QUADS[0]) != pytest.approx(
        get_perspective_transform(swapped, QUADS[0])
    )


def test_collinear_quad_raises() -> None:
    line = [(0.0, 0.0), (5.0, 0.0), (10.0, 0.0), (15.0, 0.0)]
    with pytest.raises(DegenerateTransformError):
        square_to_quad(line)
    with pytest.raises(DegenerateTransformError):
        get_perspective_transform(line, UNIT_SQUARE)
    with pytest.raises(DegenerateTransformError):
        get_perspective_transform(UNIT_SQUARE, line)


def test_quad_needs_four_points() -> None:
    with pytest.raises(ValueError):
        square_to_quad(UNIT_SQUARE[:3])
