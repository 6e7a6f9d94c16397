"""Resolve a named type from a Python source file into a TypeDescription.

The type source is read with LibCST and never imported, so resolving a tag
does not execute user code. `TypedDict` classes (class or functional
syntax), plain annotated classes, and type aliases are understood; anything
else resolves to an `OpaqueType` that matches every value.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import logging

import libcst as cst
from libcst.helpers import get_full_name_for_node

from jsontag.exceptions import JsonTagError, TypeNotFound, TypeSourceNotFound
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
    Property,
    StringLiteral,
    TypeDescription,
    UnionType,
)

logger = logging.getLogger(__name__)

_BUILTIN_TYPES: dict[str, TypeDescription] = {
    "int": Primitive("number"),
    "float": Primitive("number"),
    "str": Primitive("string"),
    "bool": Primitive("boolean"),
    "None": NullType(),
    "NoneType": NullType(),
    "Any": AnyType(),
    "object": AnyType(),
    "Never": NeverType(),
    "NoReturn": NeverType(),
    "list": ArrayType(AnyType()),
    "List": ArrayType(AnyType()),
    "Sequence": ArrayType(AnyType()),
}
_SEQUENCE_NAMES = {"list", "List", "Sequence", "MutableSequence", "Iterable", "Collection"}
_UNWRAP_NAMES = {"Required", "NotRequired", "ReadOnly", "Annotated", "Final", "TypeAliasType"}
_OBJECT_BASES = {"TypedDict", "Generic", "Protocol", "object", "BaseModel"}

Stack = frozenset[tuple[Path, str]]


@dataclass
class _ModuleInfo:
    path: Path
    declarations: dict[str, cst.CSTNode] = field(default_factory=dict)
    imports: dict[str, tuple[Path, str]] = field(default_factory=dict)


def _node_code(node: cst.CSTNode) -> str:
    return cst.Module(body=[]).code_for_node(node)


def _terminal_name(node: cst.BaseExpression) -> str | None:
    if isinstance(node, cst.Name):
        return node.value
    if isinstance(node, cst.Attribute):
        return node.attr.value
    return None


def _subscript_args(node: cst.Subscript) -> list[cst.BaseExpression]:
    return [
        element.slice.value
        for element in node.slice
        if isinstance(element.slice, cst.Index)
    ]


def _union(members: list[TypeDescription]) -> TypeDescription:
    flat: list[TypeDescription] = []
    for member in members:
        if isinstance(member, UnionType):
            flat.extend(member.members)
        else:
            flat.append(member)
    if len(flat) == 1:
        return flat[0]
    return UnionType(tuple(flat))


def _literal(node: cst.BaseExpression) -> TypeDescription:
    if isinstance(node, (cst.SimpleString, cst.ConcatenatedString)):
        value = node.evaluated_value
        if isinstance(value, str):
            return StringLiteral(value)
    if isinstance(node, (cst.Integer, cst.Float)):
        return NumberLiteral(node.evaluated_value)
    if (
        isinstance(node, cst.UnaryOperation)
        and isinstance(node.operator, cst.Minus)
        and isinstance(node.expression, (cst.Integer, cst.Float))
    ):
        return NumberLiteral(-node.expression.evaluated_value)
    if isinstance(node, cst.Name) and node.value in {"True", "False"}:
        return BooleanLiteral(node.value == "True")
    if isinstance(node, cst.Name) and node.value == "None":
        return NullType()
    return OpaqueType(_node_code(node))


def _module_file(base: Path, dotted: str) -> Path | None:
    relative = Path(*dotted.split(".")) if dotted else Path()
    for candidate in (base / relative.with_suffix(".py"), base / relative / "__init__.py"):
        if dotted and candidate.is_file():
            return candidate.resolve()
    return None


def _import_base(source: Path, node: cst.ImportFrom) -> Path:
    base = source.parent
    for _ in range(max(len(node.relative) - 1, 0)):
        base = base.parent
    return base


class TypeResolver:
    """Cache of parsed type sources keyed by path and modification time."""

    def __init__(self) -> None:
        self._modules: dict[Path, tuple[int, _ModuleInfo]] = {}

    def resolve(self, source: Path, name: str) -> TypeDescription:
        info = self._module(source)
        if name not in info.declarations and name not in info.imports:
            raise TypeNotFound(name, str(source))
        return self._named(info, name, frozenset())

    def _module(self, source: Path) -> _ModuleInfo:
        path = source.resolve()
        try:
            stamp = path.stat().st_mtime_ns
        except OSError:
            raise TypeSourceNotFound(str(source)) from None
        cached = self._modules.get(path)
        if cached is not None and cached[0] == stamp:
            return cached[1]
        try:
            module = cst.parse_module(path.read_text(encoding="utf-8"))
        except OSError:
            raise TypeSourceNotFound(str(source)) from None
        except UnicodeDecodeError as exc:
            raise JsonTagError(f"Cannot read type source {path}: {exc.reason}") from exc
        except cst.ParserSyntaxError as exc:
            raise JsonTagError(f"Cannot parse type source {path}: {exc.message}") from exc
        info = _collect(path, module)
        self._modules[path] = (stamp, info)
        logger.debug("indexed %d declarations from %s", len(info.declarations), path)
        return info

    def _named(self, info: _ModuleInfo, name: str, stack: Stack) -> TypeDescription:
        key = (info.path, name)
        if key in stack:
            return OpaqueType(name)
        stack = stack | {key}
        node = info.declarations.get(name)
        if node is not None:
            if isinstance(node, cst.ClassDef):
                return self._class(info, node, stack)
            if isinstance(node, cst.BaseExpression):
                return self._expression(info, node, stack)
        imported = info.imports.get(name)
        if imported is not None:
            target_path, target_name = imported
            try:
                target = self._module(target_path)
            except JsonTagError as exc:
                logger.debug("cannot follow import of %s: %s", name, exc)
                return OpaqueType(name)
            if target_name not in target.declarations and target_name not in target.imports:
                return OpaqueType(name)
            return self._named(target, target_name, stack)
        builtin = _BUILTIN_TYPES.get(name)
        return builtin if builtin is not None else OpaqueType(name)

    def _class(self, info: _ModuleInfo, node: cst.ClassDef, stack: Stack) -> TypeDescription:
        total = True
        # Only TypedDict fields ignore assigned values; elsewhere a value is a default.
        defaults_allowed = not self._is_typed_dict(info, node, frozenset())
        for keyword in node.keywords:
            if keyword.keyword is not None and keyword.keyword.value == "total":
                total = not (isinstance(keyword.value, cst.Name) and keyword.value.value == "False")
        bases: list[TypeDescription] = []
        for base in node.bases:
            base_name = _terminal_name(base.value)
            if base_name is None or base_name in _OBJECT_BASES:
                continue
            if base_name in info.declarations or base_name in info.imports:
                bases.append(self._named(info, base_name, stack))
        properties: list[Property] = []
        for small in _class_statements(node):
            if not isinstance(small, cst.AnnAssign) or not isinstance(small.target, cst.Name):
                continue
            prop = self._property(
                info,
                small.target.value,
                small.annotation.annotation,
                total,
                stack,
                has_default=defaults_allowed and _declares_default(small.value),
            )
            if prop is not None:
                properties.append(prop)
        own = ObjectType(tuple(properties))
        if not bases:
            return own
        return IntersectionType((*bases, own))

    def _class_node(
        self, info: _ModuleInfo, name: str
    ) -> tuple[_ModuleInfo, cst.ClassDef] | None:
        node = info.declarations.get(name)
        if isinstance(node, cst.ClassDef):
            return info, node
        imported = info.imports.get(name)
        if imported is None:
            return None
        target_path, target_name = imported
        try:
            target = self._module(target_path)
        except JsonTagError:
            return None
        return self._class_node(target, target_name)

    def _is_typed_dict(
        self, info: _ModuleInfo, node: cst.ClassDef, seen: Stack
    ) -> bool:
        for base in node.bases:
            base_name = _terminal_name(base.value)
            if base_name == "TypedDict":
                return True
            if base_name is None or (info.path, base_name) in seen:
                continue
            found = self._class_node(info, base_name)
            if found is not None and self._is_typed_dict(
                found[0], found[1], seen | {(info.path, base_name)}
            ):
                return True
        return False

    def _property(
        self,
        info: _ModuleInfo,
        name: str,
        annotation: cst.BaseExpression,
        total: bool,
        stack: Stack,
        *,
        has_default: bool = False,
    ) -> Property | None:
        wrapper = (
            _terminal_name(annotation.value) if isinstance(annotation, cst.Subscript) else None
        )
        if wrapper == "ClassVar":
            return None
        optional = not total
        if wrapper == "NotRequired":
            optional = True
        elif wrapper == "Required":
            optional = False
        if has_default:
            optional = True
        return Property(name=name, type=self._expression(info, annotation, stack), optional=optional)

    def _functional_typed_dict(
        self, info: _ModuleInfo, node: cst.Call, stack: Stack
    ) -> TypeDescription:
        positional = [arg.value for arg in node.args if arg.keyword is None]
        total = True
        for arg in node.args:
            if arg.keyword is not None and arg.keyword.value == "total":
                total = not (isinstance(arg.value, cst.Name) and arg.value.value == "False")
        if len(positional) < 2 or not isinstance(positional[1], cst.Dict):
            return OpaqueType("TypedDict")
        properties: list[Property] = []
        for element in positional[1].elements:
            if not isinstance(element, cst.DictElement):
                continue
            key = element.key
            if not isinstance(key, (cst.SimpleString, cst.ConcatenatedString)):
                continue
            name = key.evaluated_value
            if not isinstance(name, str):
                continue
            prop = self._property(info, name, element.value, total, stack)
            if prop is not None:
                properties.append(prop)
        return ObjectType(tuple(properties))

    def _expression(
        self, info: _ModuleInfo, node: cst.BaseExpression, stack: Stack
    ) -> TypeDescription:
        if isinstance(node, (cst.Name, cst.Attribute)):
            name = _terminal_name(node)
            if name is None:  # pragma: no cover - both node kinds carry a name
                return OpaqueType(_node_code(node))
            if isinstance(node, cst.Attribute) and name in info.declarations:
                return OpaqueType(_node_code(node))
            return self._named(info, name, stack)
        if isinstance(node, (cst.SimpleString, cst.ConcatenatedString)):
            value = node.evaluated_value
            if not isinstance(value, str):
                return OpaqueType(_node_code(node))
            try:
                parsed = cst.parse_expression(value)
            except cst.ParserSyntaxError:
                return OpaqueType(value)
            return self._expression(info, parsed, stack)
        if isinstance(node, cst.BinaryOperation) and isinstance(node.operator, cst.BitOr):
            return _union(
                [self._expression(info, node.left, stack), self._expression(info, node.right, stack)]
            )
        if isinstance(node, cst.Call) and _terminal_name(node.func) == "TypedDict":
            return self._functional_typed_dict(info, node, stack)
        if isinstance(node, cst.Subscript):
            return self._subscript(info, node, stack)
        return OpaqueType(_node_code(node))

    def _subscript(self, info: _ModuleInfo, node: cst.Subscript, stack: Stack) -> TypeDescription:
        base = _terminal_name(node.value)
        args = _subscript_args(node)
        if base is None or not args:
            return OpaqueType(_node_code(node))
        if base == "Optional":
            return _union([self._expression(info, args[0], stack), NullType()])
        if base == "Union":
            return _union([self._expression(info, arg, stack) for arg in args])
        if base == "Literal":
            return _union([_literal(arg) for arg in args])
        if base in _UNWRAP_NAMES:
            return self._expression(info, args[0], stack)
        if base in _SEQUENCE_NAMES and len(args) == 1:
            return ArrayType(self._expression(info, args[0], stack))
        if base in {"tuple", "Tuple"} and len(args) == 2 and isinstance(args[1], cst.Ellipsis):
            return ArrayType(self._expression(info, args[0], stack))
        return OpaqueType(_node_code(node))


def _collect(path: Path, module: cst.Module) -> _ModuleInfo:
    info = _ModuleInfo(path=path)
    for statement in module.body:
        if isinstance(statement, cst.ClassDef):
            info.declarations[statement.name.value] = statement
            continue
        if not isinstance(statement, cst.SimpleStatementLine):
            continue
        for small in statement.body:
            if isinstance(small, cst.Assign) and len(small.targets) == 1:
                target = small.targets[0].target
                if isinstance(target, cst.Name):
                    info.declarations[target.value] = small.value
            elif (
                isinstance(small, cst.AnnAssign)
                and isinstance(small.target, cst.Name)
                and small.value is not None
                and _terminal_name(small.annotation.annotation) == "TypeAlias"
            ):
                info.declarations[small.target.value] = small.value
            elif isinstance(small, cst.TypeAlias):
                info.declarations[small.name.value] = small.value
            elif isinstance(small, cst.ImportFrom) and not isinstance(small.names, cst.ImportStar):
                dotted = get_full_name_for_node(small.module) if small.module is not None else ""
                target_file = _module_file(_import_base(path, small), dotted or "")
                if target_file is None:
                    continue
                for alias in small.names:
                    local = alias.evaluated_alias or alias.evaluated_name
                    info.imports[local] = (target_file, alias.evaluated_name)
    return info


def _declares_default(value: cst.BaseExpression | None) -> bool:
    if value is None or isinstance(value, cst.Ellipsis):
        return False
    if isinstance(value, cst.Call) and _terminal_name(value.func) in {"Field", "field"}:
        for arg in value.args:
            if arg.keyword is None:
                return not isinstance(arg.value, cst.Ellipsis)
            if arg.keyword.value in {"default", "default_factory"}:
                return True
        return False
    return True


def _class_statements(node: cst.ClassDef) -> list[cst.BaseSmallStatement]:
    if isinstance(node.body, cst.SimpleStatementSuite):
        return list(node.body.body)
    statements: list[cst.BaseSmallStatement] = []
    for statement in node.body.body:
        if isinstance(statement, cst.SimpleStatementLine):
            statements.extend(statement.body)
    return statements
