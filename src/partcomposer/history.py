"""Current image plus an optional set-once original."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from .background import ALPHA_FLOOR, THRESHOLD, remove_background
from .raster import RasterImage


@dataclass(frozen=True)
class Current:
    image: RasterImage


@dataclass(frozen=True)
class WithOriginal:
    current: RasterImage
    original: RasterImage


ImageHistory = Union[Current, WithOriginal]


def current_image(state: ImageHistory) -> RasterImage:
    if isinstance(state, WithOriginal):
        return state.current
    return state.image


def original_image(state: ImageHistory) -> Optional[RasterImage]:
    if isinstance(state, WithOriginal):
        return state.original
    return None


def record_edit(state: ImageHistory, image: RasterImage) -> WithOriginal:
    """Replace the current image; the first pre-edit image is kept as original."""
    if isinstance(state, WithOriginal):
        return WithOriginal(current=image, original=state.original)
    return WithOriginal(current=image, original=state.image)


def restore(state: ImageHistory) -> Current:
    if isinstance(state, WithOriginal):
        return Current(state.original)
    return state


def remove_background_step(
    state: ImageHistory, threshold: float = THRESHOLD, alpha_floor: int = ALPHA_FLOOR
) -> WithOriginal:
    edited = remove_background(current_image(state), threshold=threshold, alpha_floor=alpha_floor)
    return record_edit(state, edited)


def toggle_background(
    state: ImageHistory, threshold: float = THRESHOLD, alpha_floor: int = ALPHA_FLOOR
) -> ImageHistory:
    """Restore when an original is held, otherwise remove the background."""
    if isinstance(state, WithOriginal):
        return restore(state)
    return remove_background_step(state, threshold=threshold, alpha_floor=alpha_floor)


def replace_current(state: ImageHistory, image: RasterImage) -> ImageHistory:
    """Swap in a new current image without recording an original."""
    if isinstance(state, WithOriginal):
        return WithOriginal(current=image, original=state.original)
    return Current(image)
