"""Recursive value-against-type conformance check.

`match` never raises. Shapes it cannot reason about match everything, so a
gap in the type model cannot block validation of the rest of a document.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final, TypeAlias

from jsontag.json_types import JSONValue
from jsontag.typedesc import (
    AnyType,
    ArrayType,
    BooleanLiteral,
    IntersectionType,
    NeverType,
    NullType,
    NumberLiteral,
    ObjectType,
    OpaqueType,
    Primitive,
    StringLiteral,
    TypeDescription,
    UndefinedType,
    UnionType,
    describe,
)


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Final = _Missing()

MatchValue: TypeAlias = JSONValue | _Missing


@dataclass(frozen=True)
class Mismatch:
    """One conformance failure; segments locate it from the value root."""

    segments: tuple[str, ...]
    expected: str
    actual: str

    @property
    def path(self) -> str:
        return ".".join(self.segments)

    @property
    def message(self) -> str:
        if self.actual == "undefined":
            return f"Missing property {self.path or '<root>'}: expected {self.expected}"
        location = f" at {self.path}" if self.path else ""
        return f"Type mismatch{location}: expected {self.expected}, got {self.actual}"


def kind_of(value: MatchValue) -> str:
    if value is MISSING:
        return "undefined"
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def join_path(path: tuple[str, ...], segment: str | int) -> tuple[str, ...]:
    return (*path, str(segment))


def _literal_matches(value: object, expected: object) -> bool:
    if isinstance(expected, bool) or isinstance(value, bool):
        return type(value) is type(expected) and value == expected
    return kind_of(value) == kind_of(expected) and value == expected


def match(
    value: MatchValue, type_: TypeDescription, path: tuple[str, ...] = ()
) -> list[Mismatch]:
    match type_:
        case AnyType() | OpaqueType():
            return []
        case NeverType():
            return [] if value is MISSING else [Mismatch(path, "never", kind_of(value))]
        case NullType():
            return [] if value is None else [Mismatch(path, "null", kind_of(value))]
        case UndefinedType():
            return [] if value is MISSING else [Mismatch(path, "undefined", kind_of(value))]
        case UnionType(members=members):
            for member in members:
                if not match(value, member, path):
                    return []
            return [Mismatch(path, describe(type_), kind_of(value))]
        case IntersectionType(members=members):
            mismatches: list[Mismatch] = []
            for member in members:
                mismatches.extend(match(value, member, path))
            return mismatches
        case ObjectType(properties=properties):
            if not isinstance(value, dict):
                return [Mismatch(path, describe(type_), kind_of(value))]
            mismatches = []
            for prop in properties:
                child_path = join_path(path, prop.name)
                if prop.name not in value:
                    if not prop.optional:
                        mismatches.append(Mismatch(child_path, describe(prop.type), "undefined"))
                    continue
                mismatches.extend(match(value[prop.name], prop.type, child_path))
            return mismatches
        case NumberLiteral(value=expected) | StringLiteral(value=expected) | BooleanLiteral(
            value=expected
        ):
            if _literal_matches(value, expected):
                return []
            return [Mismatch(path, describe(type_), kind_of(value))]
        case Primitive(kind=kind):
            actual = kind_of(value)
            return [] if actual == kind else [Mismatch(path, kind, actual)]
        case ArrayType(element=element):
            if not isinstance(value, list):
                return [Mismatch(path, describe(type_), kind_of(value))]
            mismatches = []
            for index, item in enumerate(value):
                mismatches.extend(match(item, element, join_path(path, index)))
            return mismatches
        case _:
            return []
