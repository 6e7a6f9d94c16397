"""Load `[validation]` settings from jsontag.toml and merge explicit overrides."""

from __future__ import annotations

from datetime import date, datetime, time
from pathlib import Path
from typing import TypeAlias
import logging
import tomllib

DEFAULT_CONFIG_NAME = "jsontag.toml"

TomlScalar: TypeAlias = str | int | float | bool | None | date | datetime | time
TomlValue: TypeAlias = TomlScalar | list["TomlValue"] | dict[str, "TomlValue"]
TomlTable: TypeAlias = dict[str, TomlValue]

logger = logging.getLogger(__name__)


def _load_toml(path: Path) -> TomlTable:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as exc:
        logger.warning("could not read %s: %s", path, exc)
        return {}
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as exc:
        logger.warning("ignoring malformed config %s: %s", path, exc)
        return {}
    return data if isinstance(data, dict) else {}


def load_config(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    if config_path is None:
        base = root if root is not None else Path.cwd()
        config_path = base / DEFAULT_CONFIG_NAME
    return _load_toml(config_path)


def validation_defaults(
    root: Path | None = None, config_path: Path | None = None
) -> TomlTable:
    data = load_config(root=root, config_path=config_path)
    section = data.get("validation", {})
    return section if isinstance(section, dict) else {}


def _normalize_name_list(value: TomlValue) -> list[str]:
    items: list[str] = []
    if value is None:
        return items
    if isinstance(value, str):
        items = [part.strip() for part in value.split(",") if part.strip()]
    elif isinstance(value, (list, tuple)):
        for item in value:
            if isinstance(item, str) and item.strip():
                items.append(item.strip())
    return items


def normalize_payload(payload: TomlTable) -> TomlTable:
    """Coerce loosely typed table values (comma strings, aliases) before validation."""
    normalized = dict(payload)
    for key in ("checker_command", "checker_args"):
        if key in normalized and normalized[key] is not None:
            normalized[key] = _normalize_name_list(normalized[key])
    mode = normalized.get("mode")
    if isinstance(mode, str):
        normalized["mode"] = mode.strip().lower()
    return normalized


def merge_payload(payload: TomlTable, defaults: TomlTable) -> TomlTable:
    merged = dict(defaults)
    for key, value in payload.items():
        if value is None:
            continue
        merged[key] = value
    return merged
