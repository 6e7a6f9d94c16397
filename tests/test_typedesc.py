from __future__ import annotations

from jsontag.typedesc import (
    AnyType,
    ArrayType,
    BooleanLiteral,
    IntersectionType,
    NullType,
    NumberLiteral,
    ObjectType,
    Primitive,
    Property,
    StringLiteral,
    UnionType,
    child_type,
    describe,
    literal_values,
    properties_of,
    type_at_path,
)

NUMBER = Primitive("number")


def test_describe_renders_nested_shapes() -> None:
    type_ = ObjectType(
        (
            Property("a", NUMBER),
            Property("b", UnionType((StringLiteral("x"), NullType())), optional=True),
            Property("c", ArrayType(UnionType((NUMBER, Primitive("string"))))),
        )
    )
    assert describe(type_) == '{ a: number; b?: "x" | null; c: (number | string)[] }'
    assert describe(ObjectType()) == "{}"
    assert describe(AnyType()) == "any"
    assert describe(BooleanLiteral(False)) == "false"


def test_properties_of_flattens_unions_and_intersections() -> None:
    left = ObjectType((Property("a", NUMBER),))
    right = ObjectType((Property("b", NUMBER), Property("a", Primitive("string"))))
    names = [prop.name for prop in properties_of(IntersectionType((left, right)))]
    assert names == ["a", "b"]
    assert properties_of(NUMBER) == []


def test_type_at_path_walks_objects_and_arrays() -> None:
    type_ = ObjectType((Property("items", ArrayType(ObjectType((Property("id", NUMBER),)))),))
    assert type_at_path(type_, ("items", "0", "id")) == NUMBER
    assert type_at_path(type_, ("items", "x")) is None
    assert type_at_path(type_, ()) == type_


def test_child_type_merges_members() -> None:
    left = ObjectType((Property("a", NUMBER),))
    right = ObjectType((Property("a", Primitive("string")),))
    assert child_type(UnionType((left, right)), "a") == UnionType((NUMBER, Primitive("string")))
    assert child_type(IntersectionType((left, ObjectType())), "a") == NUMBER
    assert child_type(left, "missing") is None


def test_literal_values() -> None:
    type_ = UnionType(
        (NumberLiteral(1), Primitive("boolean"), StringLiteral("s"), NullType(), NumberLiteral(1))
    )
    assert literal_values(type_) == ["1", "true", "false", '"s"', "null"]
    assert literal_values(NUMBER) == []
