import os
import sys
from pathlib import Path

import pytest
import yaml

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from partcomposer.config import (
    DEFAULT_CONFIG_PATH,
    HARDCODED_DEFAULTS,
    deep_merge,
    load_settings,
    parse_override,
    set_nested,
)


def test_packaged_defaults_match_builtin_values() -> None:
    assert DEFAULT_CONFIG_PATH.exists()
    cfg = load_settings()
    assert cfg["projection"]["focal_length"] == 1000.0
    assert cfg["background"]["threshold"] == 40.0
    assert cfg["background"]["alpha_floor"] == 10
    assert cfg["params"]["clamp"] is True
    assert cfg["warp"]["chunk_rows"] == 512
    assert cfg == deep_merge(HARDCODED_DEFAULTS, yaml.safe_load(DEFAULT_CONFIG_PATH.read_text()))


def test_deep_merge_keeps_untouched_keys() -> None:
    base = {"a": {"b": 1, "c": 2}, "d": 3}
    merged = deep_merge(base, {"a": {"b": 10}})
    assert merged == {"a": {"b": 10, "c": 2}, "d": 3}
    assert base["a"]["b"] == 1


def test_set_nested_creates_missing_levels() -> None:
    cfg = {"a": 1}
    set_nested(cfg, ("x", "y", "z"), 5)
    assert cfg == {"a": 1, "x": {"y": {"z": 5}}}


def test_override_values_are_yaml() -> None:
    assert parse_override("background.threshold=25") == (("background", "threshold"), 25)
    assert parse_override("params.clamp=false") == (("params", "clamp"), False)
    with pytest.raises(ValueError):
        parse_override("threshold")
    with pytest.raises(ValueError):
        parse_override("=3")


def test_user_file_and_overrides_layer_on_defaults(tmp_path: Path) -> None:
    path = tmp_path / "cfg.yaml"
    path.write_text("background:\n  threshold: 12\n", encoding="utf-8")

    cfg = load_settings(path, ["background.alpha_floor=0", "part.mm=42"])

    assert cfg["background"] == {"threshold": 12, "alpha_floor": 0, "auto_remove": True}
    assert cfg["part"]["mm"] == 42
    assert cfg["projection"]["focal_length"] == 1000.0


def test_empty_file_gives_defaults(tmp_path: Path) -> None:
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert load_settings(path) == HARDCODED_DEFAULTS


def test_bad_config_files(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_settings(tmp_path / "missing.yaml")
    path = tmp_path / "list.yaml"
    path.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_settings(path)
