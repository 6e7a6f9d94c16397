"""Locate the `$type` declaration of a JSON document without parsing it."""

from __future__ import annotations

from dataclasses import dataclass
import json
import re

FROM_KEY = "$from"
IMPORT_KEY = "$import"
TAG_KEY = "$type"

_STRING = r'"(?P<{name}>(?:[^"\\\n]|\\.)*)"'
_TAG_RE = re.compile(
    r'"\$type"\s*:\s*\{\s*'
    r'"(?P<first_key>\$from|\$import)"\s*:\s*' + _STRING.format(name="first_value") + r"\s*,\s*"
    r'"(?P<second_key>\$from|\$import)"\s*:\s*' + _STRING.format(name="second_value") + r"\s*\}"
)


@dataclass(frozen=True)
class TypeTag:
    source_locator: str
    type_name: str
    start: int = 0
    end: int = 0


def _unescape(raw: str) -> str | None:
    try:
        value = json.loads(f'"{raw}"')
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, str) else None


def nesting_depth(text: str, offset: int) -> int:
    """Count open objects/arrays before offset, ignoring string contents."""
    depth = 0
    in_string = False
    escaped = False
    for ch in text[:offset]:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            depth = max(depth - 1, 0)
    return depth


def extract_type_tag(text: str) -> TypeTag | None:
    for match in _TAG_RE.finditer(text):
        if match.group("first_key") == match.group("second_key"):
            continue
        if nesting_depth(text, match.start()) != 1:
            continue
        values = {
            match.group("first_key"): _unescape(match.group("first_value")),
            match.group("second_key"): _unescape(match.group("second_value")),
        }
        source = values.get(FROM_KEY)
        name = values.get(IMPORT_KEY)
        if not source or not name:
            continue
        return TypeTag(
            source_locator=source,
            type_name=name,
            start=match.start(),
            end=match.end(),
        )
    return None


def has_top_level_key(text: str, key: str) -> bool:
    pattern = re.compile(r'"' + re.escape(key) + r'"\s*:')
    return any(nesting_depth(text, m.start()) == 1 for m in pattern.finditer(text))
