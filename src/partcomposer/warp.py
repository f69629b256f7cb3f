"""Inverse-mapped nearest-neighbor warping of RGBA rasters."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

from .homography import get_perspective_transform
from .metrics import count, stage
from .projection import (
    FOCAL_LENGTH,
    calculate_transformed_corners,
    output_size,
    translate_to_origin,
)
from .raster import RasterImage
from .types import DegenerateTransformError, Matrix3, Point, TransformParams, as_quad

RAY_EPS = 1e-9
CHUNK_ROWS = 512

log = logging.getLogger(__name__)


@dataclass
class WarpResult:
    image: RasterImage
    corners: List[Point]
    homography: Matrix3


def _normalize_h(H: Sequence[float]) -> np.ndarray:
    h = np.asarray(H, dtype=float)
    if h.shape != (9,):
        raise ValueError(f"Homography must have 9 entries, got shape={h.shape}")
    if h[8] != 0.0 and h[8] != 1.0:
        h = h / h[8]
    return h


def rasterize(
    source: RasterImage,
    H: Sequence[float],
    out_w: int,
    out_h: int,
    chunk_rows: int = CHUNK_ROWS,
) -> RasterImage:
    """Fill an ``out_w x out_h`` raster by sampling ``source`` through ``H``.

    ``H`` maps destination pixel coordinates to source coordinates. Each
    destination pixel takes the nearest source pixel; rays with a vanishing
    homogeneous denominator and samples outside the source stay transparent.

    ``H`` is rescaled so that ``H[8] == 1`` before sampling, which makes the
    per-pixel denominator ``H[6]*x + H[7]*y + 1``. A raw square-to-quad
    product whose ``H[8]`` is not 1 (combined rotation and tilt) is therefore
    applied as the projective map it represents, not with ``H[8]`` dropped.
    """

    if out_w < 0 or out_h < 0:
        raise ValueError(f"Invalid output size {out_w}x{out_h}")
    h = _normalize_h(H)
    src = source.pixels
    src_h, src_w = src.shape[:2]
    out = np.zeros((out_h, out_w, 4), dtype=np.uint8)
    step = max(1, int(chunk_rows))

    xs = np.arange(out_w, dtype=float)[None, :]
    degenerate = 0
    sampled = 0
    with stage("warp.rasterize", log):
        for row0 in range(0, out_h, step):
            row1 = min(out_h, row0 + step)
            ys = np.arange(row0, row1, dtype=float)[:, None]

            denom = h[6] * xs + h[7] * ys + 1.0
            ray_ok = np.abs(denom) >= RAY_EPS
            safe = np.where(ray_ok, denom, 1.0)
            u = (h[0] * xs + h[1] * ys + h[2]) / safe
            v = (h[3] * xs + h[4] * ys + h[5]) / safe

            su = np.floor(u + 0.5)
            sv = np.floor(v + 0.5)
            inside = (
                ray_ok
                & np.isfinite(su)
                & np.isfinite(sv)
                & (su >= 0)
                & (su < src_w)
                & (sv >= 0)
                & (sv < src_h)
            )
            band = out[row0:row1]
            if inside.any():
                iu = su[inside].astype(np.intp)
                iv = sv[inside].astype(np.intp)
                band[inside] = src[iv, iu]
            degenerate += int(ray_ok.size - np.count_nonzero(ray_ok))
            sampled += int(np.count_nonzero(inside))

    count("warp.pixels", out_w * out_h)
    count("warp.sampled", sampled)
    count("warp.degenerate_rays", degenerate)
    if degenerate:
        log.debug("rasterize: %d degenerate rays left transparent", degenerate)
    return RasterImage(out)


def warp_to_quad(
    source: RasterImage,
    dst_corners: Sequence[Sequence[float]],
    chunk_rows: int = CHUNK_ROWS,
) -> WarpResult:
    """Warp ``source`` so its corners land on ``dst_corners`` (TL, TR, BR, BL).

    The corners are shifted so their bounding box starts at ``(0, 0)``; the
    output has the rounded size of that box.
    """

    quad = translate_to_origin(list(as_quad(dst_corners)))
    out_w, out_h = output_size(quad)
    w, h = source.width, source.height
    src_corners = [(0.0, 0.0), (float(w), 0.0), (float(w), float(h)), (0.0, float(h))]

    # raises before any output buffer exists
    H = get_perspective_transform(quad, src_corners)
    if out_w < 1 or out_h < 1:
        raise DegenerateTransformError(f"Warped area collapses to {out_w}x{out_h}")

    log.debug("warp %dx%d -> %dx%d", w, h, out_w, out_h)
    image = rasterize(source, H, out_w, out_h, chunk_rows=chunk_rows)
    return WarpResult(image=image, corners=quad, homography=H)


def warp_image(
    source: RasterImage,
    params: TransformParams,
    focal_length: float = FOCAL_LENGTH,
    chunk_rows: int = CHUNK_ROWS,
) -> WarpResult:
    """Apply the simulated 3D rotation described by ``params`` to ``source``."""

    corners = calculate_transformed_corners(
        source.width,
        source.height,
        params.rotate,
        params.tilt_x,
        params.tilt_y,
        focal_length=focal_length,
    )
    with stage("warp.total", log):
        return warp_to_quad(source, corners, chunk_rows=chunk_rows)
