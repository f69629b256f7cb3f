import base64
import os
import sys
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from partcomposer.codec import (
    from_data_url,
    from_pil,
    load_image,
    save_image,
    to_data_url,
    to_pil,
)
from partcomposer.raster import RasterImage


def _sample() -> RasterImage:
    img = RasterImage.filled(3, 2, (10, 20, 30, 255))
    img.set_pixel(1, 1, (200, 0, 0, 0))
    return img


def test_rgb_input_becomes_opaque_rgba() -> None:
    pil = Image.new("RGB", (4, 3), (1, 2, 3))
    img = from_pil(pil)
    assert img.size == (4, 3)
    assert img.get_pixel(2, 2) == (1, 2, 3, 255)


def test_to_pil_keeps_alpha() -> None:
    pil = to_pil(_sample())
    assert pil.mode == "RGBA"
    assert pil.size == (3, 2)
    assert pil.getpixel((1, 1)) == (200, 0, 0, 0)


def test_png_file_preserves_pixels(tmp_path: Path) -> None:
    path = save_image(_sample(), tmp_path / "nested" / "img.png")
    assert path.exists()
    assert load_image(path) == _sample()


def test_jpeg_output_drops_alpha(tmp_path: Path) -> None:
    path = save_image(RasterImage.filled(8, 8, (0, 0, 0, 255)), tmp_path / "img.jpg")
    with Image.open(path) as pil:
        assert pil.format == "JPEG"
    assert np.all(load_image(path).alpha == 255)


def test_missing_image_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_image(tmp_path / "missing.png")


def test_data_url_carries_png() -> None:
    url = to_data_url(_sample())
    assert url.startswith("data:image/png;base64,")
    assert from_data_url(url) == _sample()


@pytest.mark.parametrize("url", ["not a url", "data:image/png,rawbytes"])
def test_rejects_unsupported_data_urls(url: str) -> None:
    with pytest.raises(ValueError):
        from_data_url(url)


def test_corrupt_payload_is_a_value_error(tmp_path: Path) -> None:
    url = "data:image/png;base64," + base64.b64encode(b"notanimage").decode("ascii")
    with pytest.raises(ValueError):
        from_data_url(url)

    path = tmp_path / "broken.png"
    path.write_bytes(b"not an image")
    with pytest.raises(ValueError, match="broken.png"):
        load_image(path)
