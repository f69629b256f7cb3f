from __future__ import annotations

import logging
import textwrap
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import typer
import yaml
from rich.console import Console
from rich.table import Table
from rich.theme import Theme

from .background import remove_background
from .codec import load_image, save_image
from .compose import compose
from .config import load_settings
from .history import Current, current_image
from .metrics import EngineStats, collect_stats
from .project import BASE_LAYER, Project, export_part, load_project, save_project
from .projection import bounding_box, calculate_transformed_corners, output_size
from .region import extract_region
from .types import CropRegion, DegenerateTransformError, PolygonRegion, RectRegion, TransformParams
from .warp import warp_image


log = logging.getLogger(__name__)


class Logger:
    def __init__(self, verbose: bool) -> None:
        self.verbose = verbose
        theme = Theme({
            "info": "cyan",
            "step": "bold cyan",
            "warning": "bold yellow",
            "error": "bold red",
        })
        self.console = Console(theme=theme, highlight=False)
        self.err_console = Console(theme=theme, highlight=False, stderr=True)

    def _print(self, message: str, style: str | None = None, *, err: bool = False) -> None:
        target = self.err_console if err else self.console
        if style:
            target.print(f"[{style}]{message}[/{style}]")
        else:
            target.print(message)

    def info(self, message: str) -> None:
        self._print(message, style="info")

    def step(self, message: str) -> None:
        self.console.print(f"[step]▶ {message}")

    def warn(self, message: str) -> None:
        self._print(message, style="warning")

    def error(self, message: str) -> None:
        self._print(message, style="error", err=True)

    def debug(self, message: str) -> None:
        if self.verbose:
            self.console.print(f"[dim]{message}[/dim]")


class _LoggingBridge(logging.Handler):
    def __init__(self, cli_logger: Logger, level: int) -> None:
        super().__init__(level)
        self._cli_logger = cli_logger

    def emit(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        msg = self.format(record)
        if record.levelno >= logging.ERROR:
            self._cli_logger.error(msg)
        elif record.levelno >= logging.WARNING:
            self._cli_logger.warn(msg)
        elif record.levelno >= logging.INFO:
            self._cli_logger.info(msg)
        else:
            self._cli_logger.debug(msg)


def _install_bridge(logger: Logger) -> None:
    log_level = logging.DEBUG if logger.verbose else logging.INFO
    package_logger = logging.getLogger("partcomposer")
    package_logger.setLevel(log_level)
    package_logger.propagate = False
    for handler in list(package_logger.handlers):
        if isinstance(handler, _LoggingBridge):
            package_logger.removeHandler(handler)
    bridge = _LoggingBridge(logger, log_level)
    bridge.setFormatter(logging.Formatter("%(message)s"))
    package_logger.addHandler(bridge)


def _handle_known_exception(logger: Logger, exc: Exception, *, prefix: str | None = None) -> None:
    message = str(exc) if str(exc) else exc.__class__.__name__
    if prefix:
        message = f"{prefix}: {message}"
    logger.error(message)


def _parse_point(text: str) -> Tuple[float, float]:
    parts = [p.strip() for p in text.split(",")]
    if len(parts) != 2:
        raise ValueError(f"Point must be 'x,y', got {text!r}")
    try:
        return float(parts[0]), float(parts[1])
    except ValueError as exc:
        raise ValueError(f"Point must be numeric, got {text!r}") from exc


def _parse_rect(text: str) -> RectRegion:
    values = [v.strip() for v in text.split(",")]
    if len(values) != 4:
        raise ValueError("--rect expects 'x1,y1,x2,y2'")
    x1, y1, x2, y2 = (float(v) for v in values)
    return RectRegion.from_corners((x1, y1), (x2, y2))


def _parse_polygon(text: str) -> PolygonRegion:
    points = [_parse_point(chunk) for chunk in text.split(";") if chunk.strip()]
    return PolygonRegion.from_points(points)


def _region_from_options(rect: Optional[str], poly: Optional[str]) -> Optional[CropRegion]:
    if rect and poly:
        raise ValueError("Use either --rect or --poly, not both")
    if rect:
        return _parse_rect(rect)
    if poly:
        return _parse_polygon(poly)
    return None


def _prepare(verbose: bool, config: Optional[Path], opts: List[str]) -> Tuple[Logger, Dict[str, Any]]:
    logger = Logger(verbose=verbose)
    _install_bridge(logger)
    try:
        cfg = load_settings(config, opts)
    except yaml.YAMLError as exc:
        raise ValueError(f"Could not read configuration: {exc}") from exc
    if verbose:
        config_yaml = yaml.safe_dump(cfg, sort_keys=False, default_flow_style=False).strip()
        logger.debug("Active configuration:\n" + textwrap.indent(config_yaml, "  "))
    return logger, cfg


def _transform_params(cfg: Mapping[str, Any], rotate: float, tilt_x: float, tilt_y: float) -> TransformParams:
    params = TransformParams(rotate=rotate, tilt_x=tilt_x, tilt_y=tilt_y)
    if cfg["params"].get("clamp", True):
        clamped = params.clamped()
        if clamped != params:
            log.warning("Transform parameters clamped to %s", clamped)
        params = clamped
    return params


def _print_stats(logger: Logger, stats: EngineStats) -> None:
    table = Table(title="Engine stats")
    table.add_column("Key")
    table.add_column("Value", justify="right")
    for key, value in stats.rows():
        table.add_row(key, value)
    logger.console.print(table)


def _fail(logger: Logger, exc: Exception) -> typer.Exit:
    if isinstance(exc, DegenerateTransformError):
        _handle_known_exception(logger, exc, prefix="Degenerate transform")
        return typer.Exit(code=2)
    if isinstance(exc, KeyError):
        _handle_known_exception(logger, exc, prefix="Unknown part id")
        return typer.Exit(code=1)
    _handle_known_exception(logger, exc, prefix="Error")
    return typer.Exit(code=1)


app = typer.Typer(help="Perspective warp, cropping and background removal for part images")

_CONFIG_OPT = typer.Option(None, "--config", resolve_path=True, help="YAML configuration file")
_OPTS_OPT = typer.Option([], "--opts", metavar="PATH=VALUE", help="Override a config key, e.g. background.threshold=30")
_VERBOSE_OPT = typer.Option(False, "--verbose", "-v", help="Verbose output")
_STATS_OPT = typer.Option(False, "--stats", help="Print stage timings and counters")


@app.command("corners")
def corners_cmd(
    width: float = typer.Argument(..., help="Image width in px"),
    height: float = typer.Argument(..., help="Image height in px"),
    rotate: float = typer.Option(0.0, "--rotate", help="Rotation in degrees"),
    tilt_x: float = typer.Option(0.0, "--tilt-x", help="Horizontal tilt in degrees"),
    tilt_y: float = typer.Option(0.0, "--tilt-y", help="Vertical tilt in degrees"),
    config: Optional[Path] = _CONFIG_OPT,
    opts: List[str] = _OPTS_OPT,
    verbose: bool = _VERBOSE_OPT,
) -> None:
    """Print the projected corners and output size of a transformed rectangle."""
    logger = Logger(verbose=verbose)
    try:
        logger, cfg = _prepare(verbose, config, opts)
        params = _transform_params(cfg, rotate, tilt_x, tilt_y)
        pts = calculate_transformed_corners(
            width, height, params.rotate, params.tilt_x, params.tilt_y,
            focal_length=float(cfg["projection"]["focal_length"]),
        )
    except (FileNotFoundError, ValueError) as exc:
        raise _fail(logger, exc) from exc

    table = Table(title="Projected corners")
    table.add_column("Corner")
    table.add_column("x", justify="right")
    table.add_column("y", justify="right")
    for label, (x, y) in zip(("TL", "TR", "BR", "BL"), pts):
        table.add_row(label, f"{x:.3f}", f"{y:.3f}")
    logger.console.print(table)
    min_x, min_y, max_x, max_y = bounding_box(pts)
    out_w, out_h = output_size(pts)
    logger.info(f"bbox=({min_x:.3f}, {min_y:.3f})-({max_x:.3f}, {max_y:.3f}) size={out_w}x{out_h}")


@app.command("warp")
def warp_cmd(
    source: Path = typer.Argument(..., exists=True, readable=True, resolve_path=True, help="Input image"),
    output: Path = typer.Argument(..., resolve_path=True, help="Output image"),
    rotate: float = typer.Option(0.0, "--rotate", help="Rotation in degrees"),
    tilt_x: float = typer.Option(0.0, "--tilt-x", help="Horizontal tilt in degrees"),
    tilt_y: float = typer.Option(0.0, "--tilt-y", help="Vertical tilt in degrees"),
    rect: Optional[str] = typer.Option(None, "--rect", help="Crop the result: 'x1,y1,x2,y2'"),
    poly: Optional[str] = typer.Option(None, "--poly", help="Crop the result: 'x,y;x,y;x,y;...'"),
    config: Optional[Path] = _CONFIG_OPT,
    opts: List[str] = _OPTS_OPT,
    verbose: bool = _VERBOSE_OPT,
    stats_flag: bool = _STATS_OPT,
) -> None:
    """Simulate a 3D rotation of SOURCE and write the warped image."""
    logger = Logger(verbose=verbose)
    try:
        logger, cfg = _prepare(verbose, config, opts)
        region = _region_from_options(rect, poly)
        params = _transform_params(cfg, rotate, tilt_x, tilt_y)
        with collect_stats() as stats:
            logger.step("Load image")
            image = load_image(source)
            logger.step("Warp")
            result = warp_image(
                image,
                params,
                focal_length=float(cfg["projection"]["focal_length"]),
                chunk_rows=int(cfg["warp"]["chunk_rows"]),
            )
            warped = result.image
            if region is not None:
                logger.step("Crop")
                warped = extract_region(warped, region).part
        save_image(warped, output)
    except (FileNotFoundError, ValueError) as exc:
        raise _fail(logger, exc) from exc

    logger.info(f"{image.width}x{image.height} -> {warped.width}x{warped.height}: {output}")
    if stats_flag:
        _print_stats(logger, stats)


@app.command("crop")
def crop_cmd(
    source: Path = typer.Argument(..., exists=True, readable=True, resolve_path=True, help="Input image"),
    output: Path = typer.Argument(..., resolve_path=True, help="Extracted part image"),
    rect: Optional[str] = typer.Option(None, "--rect", help="'x1,y1,x2,y2'"),
    poly: Optional[str] = typer.Option(None, "--poly", help="'x,y;x,y;x,y;...'"),
    punch: Optional[Path] = typer.Option(
        None, "--punch", resolve_path=True, help="Write the origin image with the region erased here"
    ),
    origin: Optional[Path] = typer.Option(
        None, "--origin", exists=True, readable=True, resolve_path=True,
        help="Image to punch (defaults to SOURCE)",
    ),
    config: Optional[Path] = _CONFIG_OPT,
    opts: List[str] = _OPTS_OPT,
    verbose: bool = _VERBOSE_OPT,
    stats_flag: bool = _STATS_OPT,
) -> None:
    """Extract a rectangle or polygon from SOURCE."""
    logger = Logger(verbose=verbose)
    try:
        logger, _cfg = _prepare(verbose, config, opts)
        region = _region_from_options(rect, poly)
        if region is None:
            raise ValueError("crop needs --rect or --poly")
        with collect_stats() as stats:
            image = load_image(source)
            origin_image = load_image(origin) if origin is not None else None
            result = extract_region(image, region, origin=origin_image, punch=punch is not None)
        save_image(result.part, output)
        if punch is not None and result.origin is not None:
            save_image(result.origin, punch)
            logger.info(f"Punched origin: {punch}")
    except (FileNotFoundError, ValueError) as exc:
        raise _fail(logger, exc) from exc

    logger.info(f"Part {result.part.width}x{result.part.height}: {output}")
    if stats_flag:
        _print_stats(logger, stats)


@app.command("remove-bg")
def remove_bg_cmd(
    source: Path = typer.Argument(..., exists=True, readable=True, resolve_path=True, help="Input image"),
    output: Path = typer.Argument(..., resolve_path=True, help="Output image"),
    threshold: Optional[float] = typer.Option(None, "--threshold", min=0.0, help="RGB distance threshold"),
    config: Optional[Path] = _CONFIG_OPT,
    opts: List[str] = _OPTS_OPT,
    verbose: bool = _VERBOSE_OPT,
    stats_flag: bool = _STATS_OPT,
) -> None:
    """Make the brightest color of SOURCE (and colors close to it) transparent."""
    logger = Logger(verbose=verbose)
    try:
        logger, cfg = _prepare(verbose, config, opts)
        bg_cfg = cfg["background"]
        with collect_stats() as stats:
            image = load_image(source)
            cleaned = remove_background(
                image,
                threshold=float(threshold if threshold is not None else bg_cfg["threshold"]),
                alpha_floor=int(bg_cfg["alpha_floor"]),
            )
        save_image(cleaned, output)
    except (FileNotFoundError, ValueError) as exc:
        raise _fail(logger, exc) from exc

    logger.info(f"Removed {int(stats.counters.get('background.removed', 0))} px: {output}")
    if stats_flag:
        _print_stats(logger, stats)


@app.command("init")
def init_cmd(
    base: Path = typer.Argument(..., exists=True, readable=True, resolve_path=True, help="Base image"),
    parts: List[Path] = typer.Argument(None, help="Part images"),
    output: Path = typer.Option(Path("project.json"), "--out", "-o", resolve_path=True, help="Project file"),
    remove_bg: Optional[bool] = typer.Option(
        None, "--remove-bg/--keep-bg", help="Remove backgrounds of added images"
    ),
    config: Optional[Path] = _CONFIG_OPT,
    opts: List[str] = _OPTS_OPT,
    verbose: bool = _VERBOSE_OPT,
) -> None:
    """Create a project document from a base image and part images."""
    logger = Logger(verbose=verbose)
    try:
        logger, cfg = _prepare(verbose, config, opts)
        bg_cfg = cfg["background"]
        auto = bool(bg_cfg.get("auto_remove", True)) if remove_bg is None else remove_bg
        bg_opts = {"threshold": float(bg_cfg["threshold"]), "alpha_floor": int(bg_cfg["alpha_floor"])}

        project = Project()
        for path in [base, *(parts or [])]:
            _ensure_exists(path, "Image")
            logger.step(f"Add {path.name}")
            project.add_image(
                Current(load_image(path)),
                name=path.name,
                remove_bg=auto,
                part_mm=float(cfg["part"]["mm"]),
                **bg_opts,
            )
        assert project.base is not None
        project.base.mm = float(cfg["base"]["mm"])
        save_project(project, output)
    except (FileNotFoundError, ValueError) as exc:
        raise _fail(logger, exc) from exc

    for part in project.parts:
        logger.debug(f"part {part.id}: {part.name}")
    logger.info(f"Project with {len(project.parts)} part(s): {output}")


@app.command("compose")
def compose_cmd(
    project_path: Path = typer.Argument(..., exists=True, readable=True, resolve_path=True, help="Project JSON"),
    output: Path = typer.Argument(..., resolve_path=True, help="Flattened image"),
    config: Optional[Path] = _CONFIG_OPT,
    opts: List[str] = _OPTS_OPT,
    verbose: bool = _VERBOSE_OPT,
    stats_flag: bool = _STATS_OPT,
) -> None:
    """Render the base image and all visible parts of a project into one image."""
    logger = Logger(verbose=verbose)
    try:
        logger, _cfg = _prepare(verbose, config, opts)
        with collect_stats() as stats:
            project = load_project(project_path)
            flat = compose(project)
        save_image(flat, output)
    except (FileNotFoundError, ValueError) as exc:
        raise _fail(logger, exc) from exc

    logger.info(f"Composed {flat.width}x{flat.height}: {output}")
    if stats_flag:
        _print_stats(logger, stats)


def _load_edit_target(project_path: Path) -> Project:
    project = load_project(project_path)
    if project.base is None:
        raise ValueError(f"{project_path}: not a project document (no base image)")
    return project


@app.command("parts")
def parts_cmd(
    project_path: Path = typer.Argument(..., exists=True, readable=True, resolve_path=True, help="Project JSON"),
    verbose: bool = _VERBOSE_OPT,
) -> None:
    """List the parts of a project with their ids."""
    logger = Logger(verbose=verbose)
    try:
        logger, _cfg = _prepare(verbose, None, [])
        project = load_project(project_path)
    except (FileNotFoundError, ValueError) as exc:
        raise _fail(logger, exc) from exc

    table = Table(title=f"Parts in {project_path.name}")
    for column in ("id", "name", "size", "mm", "visible"):
        table.add_column(column)
    for part in project.parts:
        img = current_image(part.history)
        table.add_row(
            part.id, part.name, f"{img.width}x{img.height}",
            f"{part.mm:g} ({part.metric_type})", "yes" if part.visible else "no",
        )
    logger.console.print(table)


@app.command("apply-warp")
def apply_warp_cmd(
    project_path: Path = typer.Argument(..., exists=True, readable=True, resolve_path=True, help="Project JSON"),
    part_id: str = typer.Argument(..., help="Id of the part to warp"),
    rotate: float = typer.Option(0.0, "--rotate", help="Rotation in degrees"),
    tilt_x: float = typer.Option(0.0, "--tilt-x", help="Horizontal tilt in degrees"),
    tilt_y: float = typer.Option(0.0, "--tilt-y", help="Vertical tilt in degrees"),
    rect: Optional[str] = typer.Option(None, "--rect", help="Crop the result: 'x1,y1,x2,y2'"),
    poly: Optional[str] = typer.Option(None, "--poly", help="Crop the result: 'x,y;x,y;x,y;...'"),
    output: Optional[Path] = typer.Option(None, "--out", "-o", resolve_path=True, help="Write here instead of in place"),
    config: Optional[Path] = _CONFIG_OPT,
    opts: List[str] = _OPTS_OPT,
    verbose: bool = _VERBOSE_OPT,
    stats_flag: bool = _STATS_OPT,
) -> None:
    """Replace a part's image with its warped version."""
    logger = Logger(verbose=verbose)
    try:
        logger, cfg = _prepare(verbose, config, opts)
        region = _region_from_options(rect, poly)
        params = _transform_params(cfg, rotate, tilt_x, tilt_y)
        project = _load_edit_target(project_path)
        with collect_stats() as stats:
            part = project.apply_warp(
                part_id,
                params,
                region=region,
                focal_length=float(cfg["projection"]["focal_length"]),
                chunk_rows=int(cfg["warp"]["chunk_rows"]),
            )
        target = save_project(project, output or project_path)
    except (FileNotFoundError, ValueError, KeyError) as exc:
        raise _fail(logger, exc) from exc

    img = current_image(part.history)
    logger.info(f"Part {part.id} is now {img.width}x{img.height}: {target}")
    if stats_flag:
        _print_stats(logger, stats)


@app.command("extract-part")
def extract_part_cmd(
    project_path: Path = typer.Argument(..., exists=True, readable=True, resolve_path=True, help="Project JSON"),
    source: str = typer.Option(BASE_LAYER, "--from", help="'base' or the id of a part to extract from"),
    rect: Optional[str] = typer.Option(None, "--rect", help="'x1,y1,x2,y2'"),
    poly: Optional[str] = typer.Option(None, "--poly", help="'x,y;x,y;x,y;...'"),
    punch: bool = typer.Option(False, "--punch", help="Erase the region from the base image"),
    name: str = typer.Option("extracted part", "--name", help="Name of the new part"),
    output: Optional[Path] = typer.Option(None, "--out", "-o", resolve_path=True, help="Write here instead of in place"),
    config: Optional[Path] = _CONFIG_OPT,
    opts: List[str] = _OPTS_OPT,
    verbose: bool = _VERBOSE_OPT,
    stats_flag: bool = _STATS_OPT,
) -> None:
    """Add a region of the base image (or of a part) as a new part."""
    logger = Logger(verbose=verbose)
    try:
        logger, _cfg = _prepare(verbose, config, opts)
        region = _region_from_options(rect, poly)
        if region is None:
            raise ValueError("extract-part needs --rect or --poly")
        project = _load_edit_target(project_path)
        with collect_stats() as stats:
            part = project.extract_part(source, region, punch=punch, name=name)
        target = save_project(project, output or project_path)
    except (FileNotFoundError, ValueError, KeyError) as exc:
        raise _fail(logger, exc) from exc

    img = current_image(part.history)
    logger.info(f"New part {part.id} ({img.width}x{img.height}): {target}")
    if stats_flag:
        _print_stats(logger, stats)


@app.command("import-part")
def import_part_cmd(
    project_path: Path = typer.Argument(..., exists=True, readable=True, resolve_path=True, help="Project JSON"),
    part_files: List[Path] = typer.Argument(..., help="Part exports (type part_data)"),
    output: Optional[Path] = typer.Option(None, "--out", "-o", resolve_path=True, help="Write here instead of in place"),
    verbose: bool = _VERBOSE_OPT,
) -> None:
    """Append exported parts to a project."""
    logger = Logger(verbose=verbose)
    try:
        logger, _cfg = _prepare(verbose, None, [])
        project = _load_edit_target(project_path)
        for path in part_files:
            _ensure_exists(path, "Part file")
            part = project.import_part(path)
            logger.step(f"Imported {part.name or path.name} as {part.id}")
        target = save_project(project, output or project_path)
    except (FileNotFoundError, ValueError) as exc:
        raise _fail(logger, exc) from exc

    logger.info(f"Project with {len(project.parts)} part(s): {target}")


@app.command("export-part")
def export_part_cmd(
    project_path: Path = typer.Argument(..., exists=True, readable=True, resolve_path=True, help="Project JSON"),
    part_id: str = typer.Argument(..., help="Id of the part to export"),
    output: Path = typer.Argument(..., resolve_path=True, help="Part export JSON"),
    verbose: bool = _VERBOSE_OPT,
) -> None:
    """Write one part of a project as a standalone part document."""
    logger = Logger(verbose=verbose)
    try:
        logger, _cfg = _prepare(verbose, None, [])
        project = load_project(project_path)
        export_part(project.find_part(part_id), output)
    except (FileNotFoundError, ValueError, KeyError) as exc:
        raise _fail(logger, exc) from exc

    logger.info(f"Exported part {part_id}: {output}")


def _ensure_exists(path: Path, description: str) -> None:
    if not path.exists():
        raise FileNotFoundError(f"{description} not found: {path}")
    if path.is_dir():
        raise FileNotFoundError(f"{description} must not be a directory: {path}")


if __name__ == "__main__":
    app()
