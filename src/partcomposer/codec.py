"""Pillow-backed conversion between encoded images and RasterImage."""

from __future__ import annotations

import base64
import io
import re
from pathlib import Path

import numpy as np
from PIL import Image

from .raster import RasterImage

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<b64>;base64)?,(?P<data>.*)$", re.DOTALL)


def from_pil(image: Image.Image) -> RasterImage:
    if image.mode != "RGBA":
        image = image.convert("RGBA")
    return RasterImage(np.array(image, dtype=np.uint8))


def to_pil(image: RasterImage) -> Image.Image:
    return Image.fromarray(image.pixels)


def decode(data: bytes) -> RasterImage:
    try:
        with Image.open(io.BytesIO(data)) as pil:
            pil.load()
            return from_pil(pil)
    except OSError as exc:
        # UnidentifiedImageError and truncated streams both land here
        raise ValueError(f"Cannot decode image data ({exc})") from exc


def encode(image: RasterImage, format: str = "PNG") -> bytes:
    buf = io.BytesIO()
    pil = to_pil(image)
    if format.upper() in ("JPEG", "JPG"):
        pil = pil.convert("RGB")
    pil.save(buf, format=format)
    return buf.getvalue()


def load_image(path: str | Path) -> RasterImage:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Image not found: {p}")
    try:
        return decode(p.read_bytes())
    except ValueError as exc:
        raise ValueError(f"{p}: {exc}") from exc


def save_image(image: RasterImage, path: str | Path) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    fmt = Image.registered_extensions().get(p.suffix.lower(), "PNG")
    p.write_bytes(encode(image, format=fmt))
    return p


def to_data_url(image: RasterImage) -> str:
    payload = base64.b64encode(encode(image, format="PNG")).decode("ascii")
    return f"data:image/png;base64,{payload}"


def from_data_url(url: str) -> RasterImage:
    match = _DATA_URL_RE.match(url.strip())
    if not match:
        raise ValueError("Not a data URL")
    if not match.group("b64"):
        raise ValueError("Only base64 data URLs are supported")
    try:
        raw = base64.b64decode(match.group("data"), validate=False)
    except (ValueError, TypeError) as exc:
        raise ValueError(f"Invalid base64 payload ({exc})") from exc
    return decode(raw)
