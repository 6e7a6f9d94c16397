"""Map JSON paths to text ranges and text offsets back to JSON paths.

The scanner is tolerant: it records everything it could read before the
first syntax error, so half-typed documents still yield usable positions for
completion and hover.
"""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass, field
import json
import logging
import re

logger = logging.getLogger(__name__)

_WHITESPACE = " \t\r\n"
_SCALAR_RE = re.compile(r"-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?|true|false|null")

JsonPath = tuple[str, ...]


@dataclass(frozen=True)
class Span:
    start: int
    end: int


@dataclass
class JsonEntry:
    path: JsonPath
    key: Span | None
    value: Span


@dataclass
class Container:
    path: JsonPath
    kind: str
    start: int
    end: int
    closed: bool = False


@dataclass(frozen=True)
class CursorContext:
    path: JsonPath
    container: str
    in_key: bool
    key: str | None = None
    in_string: bool = False


class _ScanStop(Exception):
    pass


@dataclass
class PositionIndex:
    text: str
    entries: dict[JsonPath, JsonEntry] = field(default_factory=dict)
    containers: list[Container] = field(default_factory=list)
    line_starts: list[int] = field(default_factory=list)
    complete: bool = False

    def position(self, offset: int) -> tuple[int, int]:
        offset = max(0, min(offset, len(self.text)))
        line = bisect_right(self.line_starts, offset) - 1
        return line, offset - self.line_starts[line]

    def offset(self, line: int, character: int) -> int:
        if line < 0:
            return 0
        if line >= len(self.line_starts):
            return len(self.text)
        start = self.line_starts[line]
        next_start = (
            self.line_starts[line + 1] if line + 1 < len(self.line_starts) else len(self.text) + 1
        )
        return min(start + max(character, 0), next_start - 1, len(self.text))

    def locate(self, segments: JsonPath, *, missing: bool = False) -> Span:
        """Best-effort span for a path; the whole text when nothing matches."""
        if not missing and segments in self.entries:
            return self.entries[segments].value
        ancestor = segments[:-1] if missing else segments
        while ancestor and ancestor not in self.entries:
            ancestor = ancestor[:-1]
        entry = self.entries.get(ancestor)
        if entry is None:
            return Span(0, len(self.text))
        if entry.key is not None:
            return entry.key
        return Span(entry.value.start, min(entry.value.start + 1, entry.value.end))

    def container_at(self, offset: int) -> Container | None:
        best: Container | None = None
        for container in self.containers:
            if container.start < offset and (offset < container.end or not container.closed):
                if best is None or container.start >= best.start:
                    best = container
        return best

    def context_at(self, offset: int) -> CursorContext | None:
        container = self.container_at(offset)
        if container is None:
            return None
        last = "{"
        key: str | None = None
        pending_key: str | None = None
        depth = 0
        pos = container.start + 1
        while pos < offset:
            ch = self.text[pos]
            if ch == '"':
                end = _string_end(self.text, pos)
                if end is None or end > offset:
                    return CursorContext(
                        path=container.path,
                        container=container.kind,
                        in_key=container.kind == "object" and last != ":",
                        key=key if last == ":" else None,
                        in_string=True,
                    )
                if depth == 0:
                    pending_key = _decode(self.text[pos:end])
                    last = '"'
                pos = end
                continue
            if ch in "{[":
                depth += 1
            elif ch in "}]":
                depth -= 1
            elif depth == 0 and ch == ":":
                key = pending_key
                last = ":"
            elif depth == 0 and ch == ",":
                last = ","
                key = None
            pos += 1
        if container.kind == "array":
            return CursorContext(path=container.path, container="array", in_key=False)
        return CursorContext(
            path=container.path,
            container="object",
            in_key=last in "{,",
            key=key if last == ":" or (last == '"' and key is not None) else None,
        )

    def path_at(self, offset: int) -> JsonPath | None:
        """Path of the innermost key or value whose span contains offset."""
        best: JsonEntry | None = None
        for entry in self.entries.values():
            spans = [entry.value] + ([entry.key] if entry.key is not None else [])
            if any(span.start <= offset <= span.end for span in spans):
                if best is None or len(entry.path) > len(best.path):
                    best = entry
        return best.path if best is not None else None


def _string_end(text: str, start: int) -> int | None:
    pos = start + 1
    while pos < len(text):
        ch = text[pos]
        if ch == "\\":
            pos += 2
            continue
        if ch == '"':
            return pos + 1
        if ch == "\n":
            return None
        pos += 1
    return None


def _decode(raw: str) -> str:
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return raw.strip('"')
    return value if isinstance(value, str) else raw


class _Scanner:
    def __init__(self, index: PositionIndex) -> None:
        self.index = index
        self.text = index.text
        self.pos = 0

    def skip_whitespace(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos] in _WHITESPACE:
            self.pos += 1

    def peek(self) -> str:
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def string(self) -> tuple[Span, str]:
        end = _string_end(self.text, self.pos)
        if end is None:
            raise _ScanStop
        span = Span(self.pos, end)
        self.pos = end
        return span, _decode(self.text[span.start : span.end])

    def value(self, path: JsonPath, key: Span | None) -> None:
        self.skip_whitespace()
        start = self.pos
        ch = self.peek()
        if ch in "{[":
            kind = "object" if ch == "{" else "array"
            container = Container(path=path, kind=kind, start=start, end=len(self.text))
            self.index.containers.append(container)
            entry = JsonEntry(path=path, key=key, value=Span(start, len(self.text)))
            self.index.entries[path] = entry
            self.pos += 1
            if kind == "object":
                self.object_members(path)
            else:
                self.array_items(path)
            container.end = self.pos
            container.closed = True
            entry.value = Span(start, self.pos)
            return
        if ch == '"':
            span, _ = self.string()
            self.index.entries[path] = JsonEntry(path=path, key=key, value=span)
            return
        found = _SCALAR_RE.match(self.text, self.pos)
        if found is None:
            raise _ScanStop
        self.pos = found.end()
        self.index.entries[path] = JsonEntry(path=path, key=key, value=Span(start, self.pos))

    def object_members(self, path: JsonPath) -> None:
        self.skip_whitespace()
        if self.peek() == "}":
            self.pos += 1
            return
        while True:
            self.skip_whitespace()
            if self.peek() != '"':
                raise _ScanStop
            key_span, name = self.string()
            self.skip_whitespace()
            if self.peek() != ":":
                raise _ScanStop
            self.pos += 1
            self.value(path + (name,), key_span)
            self.skip_whitespace()
            ch = self.peek()
            self.pos += 1
            if ch == "}":
                return
            if ch != ",":
                self.pos -= 1
                raise _ScanStop

    def array_items(self, path: JsonPath) -> None:
        self.skip_whitespace()
        if self.peek() == "]":
            self.pos += 1
            return
        index = 0
        while True:
            self.value(path + (str(index),), None)
            index += 1
            self.skip_whitespace()
            ch = self.peek()
            self.pos += 1
            if ch == "]":
                return
            if ch != ",":
                self.pos -= 1
                raise _ScanStop


def index_positions(text: str) -> PositionIndex:
    line_starts = [0] + [match.end() for match in re.finditer(r"\n", text)]
    index = PositionIndex(text=text, line_starts=line_starts)
    scanner = _Scanner(index)
    try:
        scanner.value((), None)
        scanner.skip_whitespace()
        index.complete = scanner.pos == len(text)
    except _ScanStop:
        index.complete = False
    except RecursionError:
        # Every lookup falls back to the whole text.
        logger.debug("document nesting exceeds the scanner depth; positions disabled")
        index.entries.clear()
        index.containers.clear()
        index.complete = False
    return index
