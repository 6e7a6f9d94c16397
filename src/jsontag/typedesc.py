"""Structural type descriptions checked by jsontag.matcher."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, TypeAlias
import json

PrimitiveKind: TypeAlias = Literal["number", "string", "boolean"]


@dataclass(frozen=True)
class AnyType:
    pass


@dataclass(frozen=True)
class NeverType:
    pass


@dataclass(frozen=True)
class NullType:
    pass


@dataclass(frozen=True)
class UndefinedType:
    pass


@dataclass(frozen=True)
class NumberLiteral:
    value: int | float


@dataclass(frozen=True)
class StringLiteral:
    value: str


@dataclass(frozen=True)
class BooleanLiteral:
    value: bool


@dataclass(frozen=True)
class Primitive:
    kind: PrimitiveKind


@dataclass(frozen=True)
class Property:
    name: str
    type: TypeDescription
    optional: bool = False


@dataclass(frozen=True)
class ObjectType:
    properties: tuple[Property, ...] = ()


@dataclass(frozen=True)
class UnionType:
    members: tuple[TypeDescription, ...]


@dataclass(frozen=True)
class IntersectionType:
    members: tuple[TypeDescription, ...]


@dataclass(frozen=True)
class ArrayType:
    element: TypeDescription


@dataclass(frozen=True)
class OpaqueType:
    """A shape the resolver does not model; it always matches."""

    label: str = "unknown"


TypeDescription: TypeAlias = (
    AnyType
    | NeverType
    | NullType
    | UndefinedType
    | NumberLiteral
    | StringLiteral
    | BooleanLiteral
    | Primitive
    | ObjectType
    | UnionType
    | IntersectionType
    | ArrayType
    | OpaqueType
)


def _wrap(type_: TypeDescription) -> str:
    text = describe(type_)
    if isinstance(type_, (UnionType, IntersectionType)) and len(type_.members) > 1:
        return f"({text})"
    return text


def describe(type_: TypeDescription) -> str:
    match type_:
        case AnyType():
            return "any"
        case NeverType():
            return "never"
        case NullType():
            return "null"
        case UndefinedType():
            return "undefined"
        case NumberLiteral(value=value):
            return json.dumps(value)
        case StringLiteral(value=value):
            return json.dumps(value)
        case BooleanLiteral(value=value):
            return "true" if value else "false"
        case Primitive(kind=kind):
            return kind
        case ObjectType(properties=properties):
            if not properties:
                return "{}"
            fields = "; ".join(
                f"{prop.name}{'?' if prop.optional else ''}: {describe(prop.type)}"
                for prop in properties
            )
            return f"{{ {fields} }}"
        case UnionType(members=members):
            return " | ".join(_wrap(member) for member in members) or "never"
        case IntersectionType(members=members):
            return " & ".join(_wrap(member) for member in members) or "any"
        case ArrayType(element=element):
            return f"{_wrap(element)}[]"
        case OpaqueType(label=label):
            return label


def properties_of(type_: TypeDescription) -> list[Property]:
    """Declared properties reachable through unions and intersections, first wins."""
    seen: dict[str, Property] = {}
    pending: list[TypeDescription] = [type_]
    while pending:
        current = pending.pop(0)
        match current:
            case ObjectType(properties=properties):
                for prop in properties:
                    seen.setdefault(prop.name, prop)
            case UnionType(members=members) | IntersectionType(members=members):
                pending.extend(members)
            case _:
                pass
    return list(seen.values())


def child_type(type_: TypeDescription, segment: str) -> TypeDescription | None:
    """Expected type one path segment below type_, if it is declared."""
    match type_:
        case ObjectType():
            for prop in type_.properties:
                if prop.name == segment:
                    return prop.type
            return None
        case ArrayType(element=element):
            return element if segment.isdigit() else None
        case UnionType(members=members) | IntersectionType(members=members):
            found = [
                child for child in (child_type(member, segment) for member in members)
                if child is not None
            ]
            if not found:
                return None
            if len(found) == 1:
                return found[0]
            if isinstance(type_, UnionType):
                return UnionType(tuple(found))
            return IntersectionType(tuple(found))
        case _:
            return None


def type_at_path(type_: TypeDescription, path: tuple[str, ...]) -> TypeDescription | None:
    current: TypeDescription | None = type_
    for segment in path:
        if current is None:
            return None
        current = child_type(current, segment)
    return current


def literal_values(type_: TypeDescription) -> list[str]:
    """JSON renderings of the literal values a type admits."""
    values: list[str] = []
    match type_:
        case NumberLiteral() | StringLiteral() | BooleanLiteral() | NullType():
            values.append(describe(type_))
        case Primitive(kind="boolean"):
            values.extend(["true", "false"])
        case UnionType(members=members):
            for member in members:
                values.extend(value for value in literal_values(member) if value not in values)
        case _:
            pass
    return values
