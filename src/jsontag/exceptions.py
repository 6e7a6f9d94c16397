"""Error taxonomy for jsontag validation."""

from __future__ import annotations


class JsonTagError(RuntimeError):
    """Base class for errors surfaced to the user as a single notification."""


class DocumentParseError(JsonTagError):
    """The document body is not parseable JSON."""

    def __init__(self, message: str, *, line: int = 0, column: int = 0) -> None:
        super().__init__(message)
        self.line = line
        self.column = column


class TypeSourceNotFound(JsonTagError):
    """The `$from` path of a type tag does not point at a readable file."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Type source not found: {path}")
        self.path = path


class TypeNotFound(JsonTagError):
    """The `$import` name is not declared in the type source."""

    def __init__(self, name: str, source: str) -> None:
        super().__init__(f"Type {name!r} not found in {source}")
        self.name = name
        self.source = source


class CheckerUnavailable(JsonTagError):
    """The external type checker could not be run or crashed."""


class NeverThrown(RuntimeError):
    """Raised by never() when a path that should be unreachable is reached."""

    def __init__(self, message: str, *, env: dict[str, object] | None = None) -> None:
        super().__init__(message)
        self.env = dict(env or {})
