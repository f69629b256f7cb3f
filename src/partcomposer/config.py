from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Optional, Sequence, Tuple

import yaml

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "configs" / "default.yaml"

HARDCODED_DEFAULTS: Dict[str, Any] = {
    "projection": {"focal_length": 1000.0},
    "warp": {"chunk_rows": 512},
    "params": {"clamp": True},
    "background": {
        "threshold": 40.0,
        "alpha_floor": 10,
        "auto_remove": True,
    },
    "base": {"mm": 800.0},
    "part": {"mm": 150.0},
}


def load_config(path: str | Path) -> dict:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")
    return yaml.safe_load(p.read_text(encoding="utf-8"))


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = copy.deepcopy(dict(base))
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(result.get(key), Mapping):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def set_nested(config: MutableMapping[str, Any], path: Sequence[str], value: Any) -> None:
    if not path:
        return
    cursor: MutableMapping[str, Any] = config
    for key in path[:-1]:
        next_value = cursor.get(key)
        if not isinstance(next_value, MutableMapping):
            next_value = {}
            cursor[key] = next_value
        cursor = next_value
    cursor[path[-1]] = value


def parse_override(entry: str) -> Tuple[Tuple[str, ...], Any]:
    """Parse ``a.b.c=value``; the value is read as YAML."""
    if "=" not in entry:
        raise ValueError("--opts expects 'path=value'")
    raw_path, raw_value = entry.split("=", 1)
    path = tuple(part.strip() for part in raw_path.split(".") if part.strip())
    if not path:
        raise ValueError("--opts needs a key path, e.g. background.threshold")
    try:
        value = yaml.safe_load(raw_value)
    except yaml.YAMLError as exc:
        raise ValueError(f"--opts {raw_path}: could not parse value ({exc})") from exc
    return path, value


def load_settings(
    path: Optional[str | Path] = None, overrides: Sequence[str] = ()
) -> Dict[str, Any]:
    """Defaults, then the YAML file at ``path`` (packaged default if omitted), then ``overrides``."""

    loaded = load_config(path if path is not None else DEFAULT_CONFIG_PATH)
    if loaded is None:
        loaded = {}
    if not isinstance(loaded, Mapping):
        raise ValueError("Config root must be a mapping")
    cfg = deep_merge(HARDCODED_DEFAULTS, loaded)
    for entry in overrides:
        key_path, value = parse_override(entry)
        set_nested(cfg, key_path, value)
    return cfg
