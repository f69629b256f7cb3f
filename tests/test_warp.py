import math
import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import partcomposer.warp as warp_module
from partcomposer.metrics import collect_stats
from partcomposer.raster import RasterImage
from partcomposer.types import DegenerateTransformError, TransformParams
from partcomposer.warp import rasterize, warp_image, warp_to_quad


def _pattern(w: int, h: int) -> RasterImage:
    ys, xs = np.mgrid[0:h, 0:w]
    px = np.zeros((h, w, 4), dtype=np.uint8)
    px[..., 0] = (xs * 7) % 256
    px[..., 1] = (ys * 11) % 256
    px[..., 2] = 90
    px[..., 3] = 255
    return RasterImage(px)


def test_zero_params_reproduce_source() -> None:
    src = _pattern(40, 25)

    result = warp_image(src, TransformParams())

    assert result.image.size == (40, 25)
    assert result.image == src
    assert result.homography == pytest.approx((1, 0, 0, 0, 1, 0, 0, 0, 1), abs=1e-9)


def test_rotation_output_size_and_transparent_corners() -> None:
    src = RasterImage.filled(100, 50, (10, 200, 30, 255))

    result = warp_image(src, TransformParams(rotate=30))

    out = result.image
    assert out.size == (112, 93)
    assert out.get_pixel(56, 46) == (10, 200, 30, 255)
    assert out.get_pixel(0, 0) == (0, 0, 0, 0)
    assert out.get_pixel(111, 92) == (0, 0, 0, 0)
    assert set(np.unique(out.alpha)) <= {0, 255}


def test_warp_does_not_modify_source() -> None:
    src = _pattern(30, 20)
    before = src.pixels.copy()
    warp_image(src, TransformParams(rotate=10, tilt_x=15, tilt_y=-20))
    assert np.array_equal(src.pixels, before)


def test_vertical_tilt_produces_trapezoid() -> None:
    src = RasterImage.filled(100, 60, (255, 255, 255, 255))

    out = warp_image(src, TransformParams(tilt_y=30)).image

    opaque_rows = [int(np.count_nonzero(out.alpha[y])) for y in range(out.height)]
    first = next(i for i, n in enumerate(opaque_rows) if n)
    last = max(i for i, n in enumerate(opaque_rows) if n)
    assert opaque_rows[first + 1] < opaque_rows[last - 1]


def test_collinear_destination_raises_without_rasterizing(monkeypatch: pytest.MonkeyPatch) -> None:
    def _boom(*args, **kwargs):
        raise AssertionError("rasterize must not run for degenerate corners")

    monkeypatch.setattr(warp_module, "rasterize", _boom)
    src = _pattern(10, 10)

    with pytest.raises(DegenerateTransformError):
        warp_to_quad(src, [(0.0, 0.0), (5.0, 0.0), (10.0, 0.0), (15.0, 0.0)])


def test_edge_on_tilt_is_degenerate() -> None:
    src = _pattern(20, 10)
    with pytest.raises(DegenerateTransformError):
        warp_image(src, TransformParams(tilt_x=90))


def test_degenerate_rays_stay_transparent() -> None:
    src = RasterImage.filled(8, 8, (50, 60, 70, 255))
    H = (1.0, 0.0, 0.0, 0.0, 1.0, 0.0, -0.25, 0.0, 1.0)

    with collect_stats() as stats:
        out = rasterize(src, H, 8, 8)

    assert np.all(out.alpha[:, 4] == 0)
    assert out.get_pixel(0, 0) == (50, 60, 70, 255)
    assert stats.counters["warp.degenerate_rays"] == 8
    assert stats.counters["warp.pixels"] == 64


def test_rasterize_normalizes_scaled_homography() -> None:
    src = _pattern(12, 9)
    scaled = tuple(v * 3.0 for v in (1.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 1.0))
    assert rasterize(src, scaled, 12, 9) == src


def test_rasterize_rejects_bad_matrix() -> None:
    with pytest.raises(ValueError):
        rasterize(_pattern(4, 4), (1.0, 0.0, 0.0), 4, 4)


def test_chunking_does_not_change_result() -> None:
    src = _pattern(64, 48)
    params = TransformParams(rotate=-12, tilt_x=20, tilt_y=10)

    a = warp_image(src, params).image
    b = warp_image(src, params, chunk_rows=7).image

    assert a == b


def test_rotation_round_trip_recovers_bounding_box() -> None:
    src = RasterImage.filled(60, 40, (120, 30, 200, 255))

    once = warp_image(src, TransformParams(rotate=30)).image
    back = warp_image(once, TransformParams(rotate=-30)).image

    bounds = back.opaque_bounds()
    assert bounds is not None
    _, _, w, h = bounds
    assert abs(w - 60) <= 3
    assert abs(h - 40) <= 3


def test_tilt_round_trip_keeps_height_and_foreshortens_width() -> None:
    src = RasterImage.filled(60, 40, (120, 30, 200, 255))

    once = warp_image(src, TransformParams(tilt_x=30)).image
    back = warp_image(once, TransformParams(tilt_x=-30)).image

    bounds = back.opaque_bounds()
    assert bounds is not None
    _, _, w, h = bounds
    # each pass projects the full frame, so the width shrinks by cos(30) twice
    assert abs(w - 60 * math.cos(math.radians(30)) ** 2) <= 3
    assert abs(h - 40) <= 3
