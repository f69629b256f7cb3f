from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Tuple

import numpy as np

Pixel = Tuple[int, int, int, int]


@dataclass(eq=False)
class RasterImage:
    """RGBA8 image with straight alpha, stored as ``(height, width, 4)`` uint8."""

    pixels: np.ndarray

    def __post_init__(self) -> None:
        self.pixels = ensure_rgba("pixels", self.pixels)

    @classmethod
    def blank(cls, width: int, height: int) -> "RasterImage":
        """Fully transparent image."""
        if width < 0 or height < 0:
            raise ValueError(f"Invalid raster size {width}x{height}")
        return cls(np.zeros((int(height), int(width), 4), dtype=np.uint8, order="C"))

    @classmethod
    def filled(cls, width: int, height: int, rgba: Pixel) -> "RasterImage":
        img = cls.blank(width, height)
        img.pixels[:, :] = np.asarray(rgba, dtype=np.uint8)
        return img

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    @property
    def alpha(self) -> np.ndarray:
        return self.pixels[:, :, 3]

    def get_pixel(self, x: int, y: int) -> Pixel:
        r, g, b, a = (int(v) for v in self.pixels[int(y), int(x)])
        return r, g, b, a

    def set_pixel(self, x: int, y: int, rgba: Pixel) -> None:
        self.pixels[int(y), int(x)] = np.asarray(rgba, dtype=np.uint8)

    def copy(self) -> "RasterImage":
        return RasterImage(self.pixels.copy())

    def copy_block(self, x: int, y: int, w: int, h: int) -> "RasterImage":
        """Copy a ``w x h`` block starting at ``(x, y)``.

        Parts of the block outside the image stay transparent.
        """
        out = RasterImage.blank(w, h)
        sx0, sy0 = max(0, x), max(0, y)
        sx1, sy1 = min(self.width, x + w), min(self.height, y + h)
        if sx1 <= sx0 or sy1 <= sy0:
            return out
        out.pixels[sy0 - y : sy1 - y, sx0 - x : sx1 - x] = self.pixels[sy0:sy1, sx0:sx1]
        return out

    def opaque_bounds(self) -> Tuple[int, int, int, int] | None:
        """Bounding box ``(x, y, w, h)`` of pixels with non-zero alpha."""
        ys, xs = np.nonzero(self.alpha)
        if ys.size == 0:
            return None
        x0, x1 = int(xs.min()), int(xs.max())
        y0, y1 = int(ys.min()), int(ys.max())
        return x0, y0, x1 - x0 + 1, y1 - y0 + 1

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RasterImage):
            return NotImplemented
        return self.pixels.shape == other.pixels.shape and bool(
            np.array_equal(self.pixels, other.pixels)
        )


def ensure_rgba(name: str, arr: Any) -> np.ndarray:
    """Convert to a contiguous ``(h, w, 4)`` uint8 array and check the shape."""
    a = np.asarray(arr)
    if a.ndim != 3 or a.shape[2] != 4:
        raise ValueError(f"{name} must be an (h, w, 4) RGBA array, got shape={a.shape}")
    if a.dtype != np.uint8:
        a = a.astype(np.uint8)
    return np.ascontiguousarray(a)
