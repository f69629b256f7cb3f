from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from .metrics import count, stage
from .raster import RasterImage
from .types import CropRegion, Point, PolygonRegion, RectRegion

log = logging.getLogger(__name__)


@dataclass
class Extraction:
    """Extracted part plus the punched origin image (``None`` when nothing was punched)."""

    part: RasterImage
    origin: Optional[RasterImage] = None


def polygon_mask(width: int, height: int, points: Sequence[Point]) -> np.ndarray:
    """Boolean ``(height, width)`` mask of pixels whose center lies inside the polygon.

    Uses the nonzero winding rule.
    """

    px = np.arange(int(width), dtype=float)[None, :] + 0.5
    py = np.arange(int(height), dtype=float)[:, None] + 0.5
    winding = np.zeros((int(height), int(width)), dtype=np.int32)
    pts = [(float(x), float(y)) for x, y in points]
    for (x0, y0), (x1, y1) in zip(pts, pts[1:] + pts[:1]):
        side = (x1 - x0) * (py - y0) - (px - x0) * (y1 - y0)
        up = (y0 <= py) & (y1 > py) & (side > 0)
        down = (y0 > py) & (y1 <= py) & (side < 0)
        winding += up.astype(np.int32) - down.astype(np.int32)
    return winding != 0


def crop_rect(image: RasterImage, region: RectRegion) -> RasterImage:
    x, y, w, h = region.normalized()
    log.debug("crop_rect x=%d y=%d w=%d h=%d", x, y, w, h)
    return image.copy_block(x, y, w, h)


def crop_polygon(image: RasterImage, region: PolygonRegion) -> RasterImage:
    x, y, w, h = region.bounds()
    out = image.copy_block(x, y, w, h)
    mask = polygon_mask(w, h, region.translated(-x, -y))
    out.pixels[~mask] = 0
    log.debug("crop_polygon bbox=(%d, %d, %d, %d) inside=%d", x, y, w, h, int(mask.sum()))
    return out


def crop(image: RasterImage, region: CropRegion) -> RasterImage:
    if isinstance(region, RectRegion):
        return crop_rect(image, region)
    if isinstance(region, PolygonRegion):
        return crop_polygon(image, region)
    raise TypeError(f"Unsupported crop region: {type(region).__name__}")


def punch_hole(origin: RasterImage, region: CropRegion) -> RasterImage:
    """Copy of ``origin`` with alpha cleared inside ``region``."""

    out = origin.copy()
    if isinstance(region, RectRegion):
        x, y, w, h = region.normalized()
        x0, y0 = max(0, x), max(0, y)
        x1, y1 = min(out.width, x + w), min(out.height, y + h)
        if x1 > x0 and y1 > y0:
            out.pixels[y0:y1, x0:x1, 3] = 0
            count("region.punched", (x1 - x0) * (y1 - y0))
    elif isinstance(region, PolygonRegion):
        mask = polygon_mask(out.width, out.height, region.points)
        out.pixels[mask, 3] = 0
        count("region.punched", int(mask.sum()))
    else:
        raise TypeError(f"Unsupported crop region: {type(region).__name__}")
    return out


def extract_region(
    source: RasterImage,
    region: CropRegion,
    origin: Optional[RasterImage] = None,
    punch: bool = False,
) -> Extraction:
    """Crop ``region`` out of ``source``; with ``punch`` also erase it from ``origin``.

    ``origin`` defaults to ``source``. Neither input is modified.
    """

    with stage("region.extract", log):
        part = crop(source, region)
        punched = None
        if punch:
            punched = punch_hole(origin if origin is not None else source, region)
    return Extraction(part=part, origin=punched)
