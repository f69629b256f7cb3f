from __future__ import annotations

import logging
from typing import Tuple

from PIL import Image

from .codec import from_pil, to_pil
from .history import current_image
from .metrics import stage
from .project import PartLayer, Project
from .raster import RasterImage
from .types import _round_half_up

log = logging.getLogger(__name__)


def canvas_size(project: Project) -> Tuple[int, int]:
    """Displayed base size: ``widthPx`` wide (native width when unset), aspect kept."""
    if project.base is None:
        raise ValueError("Project has no base image")
    img = current_image(project.base.history)
    if project.base.width_px > 0:
        width = max(1, _round_half_up(project.base.width_px))
        height = max(1, _round_half_up(img.height * width / img.width))
        return width, height
    return img.width, img.height


def part_size(part: PartLayer, px_per_mm: float) -> Tuple[int, int]:
    img = current_image(part.history)
    target = part.mm * px_per_mm
    if part.metric_type == "height":
        h = target
        w = target * img.width / img.height
    else:
        w = target
        h = target * img.height / img.width
    return max(1, _round_half_up(w)), max(1, _round_half_up(h))


def render_part(part: PartLayer, px_per_mm: float) -> Image.Image:
    """Scaled, mirrored and rotated part, rotation expanding the canvas."""

    pil = to_pil(current_image(part.history))
    pil = pil.resize(part_size(part, px_per_mm), Image.NEAREST)
    if part.flip:
        pil = pil.transpose(Image.FLIP_LEFT_RIGHT)
    if part.rotation:
        # PIL rotates counter-clockwise; screen rotation is clockwise
        pil = pil.rotate(-part.rotation, resample=Image.NEAREST, expand=True)
    return pil


def compose(project: Project) -> RasterImage:
    """Flatten the base and all visible parts into one image."""

    if project.base is None:
        raise ValueError("Project has no base image")
    size = canvas_size(project)
    scale = project.px_per_mm()

    with stage("compose.total", log):
        base = to_pil(current_image(project.base.history))
        if base.size != size:
            base = base.resize(size, Image.NEAREST)
        if project.base.flip:
            base = base.transpose(Image.FLIP_LEFT_RIGHT)
        canvas = Image.new("RGBA", size, (0, 0, 0, 0))
        canvas = Image.alpha_composite(canvas, base)

        for part in project.parts:
            if not part.visible:
                continue
            w, h = part_size(part, scale)
            rendered = render_part(part, scale)
            left = _round_half_up(part.x + w / 2 - rendered.width / 2)
            top = _round_half_up(part.y + h / 2 - rendered.height / 2)
            layer = Image.new("RGBA", size, (0, 0, 0, 0))
            layer.paste(rendered, (left, top))
            canvas = Image.alpha_composite(canvas, layer)
            log.debug("compose part %s at (%d, %d) size %dx%d", part.name or part.id, left, top, *rendered.size)
    return from_pil(canvas)
