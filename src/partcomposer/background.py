"""Single-color background removal seeded by the brightest opaque pixel."""
from __future__ import annotations

import logging
from typing import Tuple

import numpy as np

from .metrics import count, stage
from .raster import RasterImage

THRESHOLD = 40.0
ALPHA_FLOOR = 10
FALLBACK_COLOR = (255, 255, 255)

log = logging.getLogger(__name__)


def luminance(pixels: np.ndarray) -> np.ndarray:
    rgb = pixels[..., :3].astype(np.float64)
    return 0.299 * rgb[..., 0] + 0.587 * rgb[..., 1] + 0.114 * rgb[..., 2]


def detect_background_color(
    image: RasterImage, alpha_floor: int = ALPHA_FLOOR
) -> Tuple[int, int, int]:
    """RGB of the brightest pixel with ``alpha >= alpha_floor``.

    The first such pixel in row-major order wins ties. Fully transparent
    images fall back to white.
    """

    flat = image.pixels.reshape(-1, 4)
    candidates = flat[:, 3] >= alpha_floor
    if not candidates.any():
        log.debug("detect_background_color: no opaque pixels, using white")
        return FALLBACK_COLOR
    lum = np.where(candidates, luminance(flat), -1.0)
    idx = int(np.argmax(lum))
    r, g, b = (int(v) for v in flat[idx, :3])
    return r, g, b


def remove_background(
    image: RasterImage,
    threshold: float = THRESHOLD,
    alpha_floor: int = ALPHA_FLOOR,
) -> RasterImage:
    """Clear alpha of every pixel closer than ``threshold`` to the background color."""

    with stage("background.remove", log):
        bg = detect_background_color(image, alpha_floor=alpha_floor)
        out = image.copy()
        diff = out.pixels[..., :3].astype(np.float64) - np.asarray(bg, dtype=np.float64)
        dist = np.sqrt(np.sum(diff * diff, axis=-1))
        hit = dist < threshold
        out.pixels[hit, 3] = 0
    removed = int(np.count_nonzero(hit))
    count("background.removed", removed)
    log.debug("remove_background: bg=%s removed=%d/%d", bg, removed, hit.size)
    return out
