"""JSON project documents: a base image plus positioned parts."""
from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional

from .codec import from_data_url, to_data_url
from .history import (
    Current,
    ImageHistory,
    WithOriginal,
    current_image,
    original_image,
    remove_background_step,
    replace_current,
)
from .projection import FOCAL_LENGTH
from .region import crop, extract_region
from .types import CropRegion, TransformParams
from .warp import CHUNK_ROWS, warp_image

PROJECT_VERSION = 1
DEFAULT_BASE_MM = 800.0
DEFAULT_PART_MM = 150.0
EXTRACTED_PART_MM = 100.0
BASE_LAYER = "base"

MetricType = Literal["width", "height"]

log = logging.getLogger(__name__)


@dataclass
class BaseLayer:
    history: ImageHistory
    mm: float = DEFAULT_BASE_MM
    width_px: float = 0.0
    flip: bool = False


@dataclass
class PartLayer:
    history: ImageHistory
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    mm: float = DEFAULT_PART_MM
    metric_type: MetricType = "width"
    rotation: float = 0.0
    flip: bool = False
    visible: bool = True
    x: float = 50.0
    y: float = 50.0


@dataclass
class Project:
    base: Optional[BaseLayer] = None
    parts: List[PartLayer] = field(default_factory=list)
    zoom: float = 1.0

    def add_image(
        self,
        history: ImageHistory,
        name: str = "",
        remove_bg: bool = False,
        part_mm: float = DEFAULT_PART_MM,
        **bg_opts: Any,
    ) -> BaseLayer | PartLayer:
        """First image becomes the base, later ones become parts."""

        if remove_bg:
            history = remove_background_step(history, **bg_opts)
        if self.base is None:
            self.base = BaseLayer(history=history)
            return self.base
        part = PartLayer(history=history, name=name, mm=part_mm)
        self.parts.append(part)
        return part

    def find_part(self, part_id: str) -> PartLayer:
        for part in self.parts:
            if part.id == part_id:
                return part
        raise KeyError(part_id)

    def layer_history(self, layer: str) -> ImageHistory:
        """History of the base (``"base"``) or of the part with id ``layer``."""
        if layer == BASE_LAYER:
            if self.base is None:
                raise ValueError("Project has no base image")
            return self.base.history
        return self.find_part(layer).history

    def apply_warp(
        self,
        part_id: str,
        params: TransformParams,
        region: Optional[CropRegion] = None,
        focal_length: float = FOCAL_LENGTH,
        chunk_rows: int = CHUNK_ROWS,
    ) -> PartLayer:
        """Replace a part's image with its warped (and optionally cropped) version.

        The part's original image, if any, is left as it is.
        """

        part = self.find_part(part_id)
        warped = warp_image(
            current_image(part.history), params, focal_length=focal_length, chunk_rows=chunk_rows
        ).image
        if region is not None:
            warped = crop(warped, region)
        part.history = replace_current(part.history, warped)
        log.info("warped part %s to %dx%d", part.name or part.id, warped.width, warped.height)
        return part

    def extract_part(
        self,
        source: str,
        region: CropRegion,
        punch: bool = False,
        name: str = "extracted part",
        mm: float = EXTRACTED_PART_MM,
    ) -> PartLayer:
        """Add ``region`` of the ``source`` layer as a new part.

        ``punch`` erases the region from the base image; it is ignored for
        part sources.
        """

        from_base = source == BASE_LAYER
        if punch and not from_base:
            log.warning("punch only applies when extracting from the base image")
        result = extract_region(
            current_image(self.layer_history(source)), region, punch=punch and from_base
        )
        if result.origin is not None and self.base is not None:
            self.base.history = replace_current(self.base.history, result.origin)
        part = PartLayer(history=Current(result.part), name=name, mm=mm)
        self.parts.append(part)
        return part

    def import_part(self, path: str | Path) -> PartLayer:
        """Append the part of a ``part_data`` document under a fresh id at (50, 50)."""

        data = load_document(path)
        if data.get("type") != "part_data" or not isinstance(data.get("part"), Mapping):
            raise ValueError(f"{path}: not a part export")
        part = part_from_json(data["part"])
        part.id = str(uuid.uuid4())
        part.x, part.y = 50.0, 50.0
        self.parts.append(part)
        return part

    def px_per_mm(self) -> float:
        if self.base is None:
            return 1.0
        if self.base.width_px > 0 and self.base.mm > 0:
            return self.base.width_px / self.base.mm
        return 1.0


def _history_to_json(history: ImageHistory) -> Dict[str, Optional[str]]:
    original = original_image(history)
    return {
        "src": to_data_url(current_image(history)),
        "originalSrc": to_data_url(original) if original is not None else None,
    }


def _history_from_json(data: Mapping[str, Any]) -> ImageHistory:
    src = data.get("src")
    if not isinstance(src, str):
        raise ValueError("Layer has no image source")
    image = from_data_url(src)
    original_src = data.get("originalSrc")
    if isinstance(original_src, str) and original_src and original_src != src:
        return WithOriginal(current=image, original=from_data_url(original_src))
    return Current(image)


def part_to_json(part: PartLayer) -> Dict[str, Any]:
    return {
        "id": part.id,
        "name": part.name,
        **_history_to_json(part.history),
        "mm": part.mm,
        "metricType": part.metric_type,
        "rotation": part.rotation,
        "flip": part.flip,
        "visible": part.visible,
        "position": {"x": part.x, "y": part.y},
    }


def part_from_json(data: Mapping[str, Any]) -> PartLayer:
    metric = data.get("metricType", "width")
    if metric not in ("width", "height"):
        raise ValueError(f"Unknown metricType: {metric!r}")
    position = data.get("position") or {}
    return PartLayer(
        history=_history_from_json(data),
        id=str(data.get("id") or uuid.uuid4()),
        name=str(data.get("name", "")),
        mm=float(data.get("mm") or DEFAULT_PART_MM),
        metric_type=metric,
        rotation=float(data.get("rotation", 0.0) or 0.0),
        flip=bool(data.get("flip", False)),
        visible=data.get("visible", True) is not False,
        x=float(position.get("x", 50.0)),
        y=float(position.get("y", 50.0)),
    )


def project_to_json(project: Project) -> Dict[str, Any]:
    if project.base is None:
        raise ValueError("Project has no base image")
    base = project.base
    return {
        "version": PROJECT_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "baseImg": {
            **_history_to_json(base.history),
            "mm": base.mm,
            "widthPx": base.width_px,
            "flip": base.flip,
        },
        "parts": [part_to_json(part) for part in project.parts],
        "zoom": project.zoom,
    }


def project_from_json(data: Mapping[str, Any]) -> Project:
    version = data.get("version", PROJECT_VERSION)
    if version != PROJECT_VERSION:
        raise ValueError(f"Unsupported project version: {version!r}")
    project = Project(zoom=float(data.get("zoom", 1.0) or 1.0))
    base = data.get("baseImg")
    if isinstance(base, Mapping) and base.get("src"):
        project.base = BaseLayer(
            history=_history_from_json(base),
            mm=float(base.get("mm") or DEFAULT_BASE_MM),
            width_px=float(base.get("widthPx", 0.0) or 0.0),
            flip=bool(base.get("flip", False)),
        )
    for entry in data.get("parts") or []:
        project.parts.append(part_from_json(entry))
    log.debug("loaded project: base=%s parts=%d", project.base is not None, len(project.parts))
    return project


def save_project(project: Project, path: str | Path) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(project_to_json(project)), encoding="utf-8")
    return p


def load_document(path: str | Path) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Project file not found: {p}")
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"{p}: invalid JSON ({exc})") from exc
    if not isinstance(data, dict):
        raise ValueError(f"{p}: document root must be an object")
    return data


def load_project(path: str | Path) -> Project:
    """Load a project document; a ``part_data`` export yields a base-less project."""

    data = load_document(path)
    if data.get("type") == "part_data":
        return Project(parts=[part_from_json(data.get("part") or {})])
    return project_from_json(data)


def export_part(part: PartLayer, path: str | Path) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps({"type": "part_data", "part": part_to_json(part)}), encoding="utf-8")
    return p
