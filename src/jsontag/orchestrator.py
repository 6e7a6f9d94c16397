"""Drive validation, completion and hover for `$type`-tagged JSON documents.

Validation runs in one of two modes. In ``checker`` mode the document is
wrapped into a synthetic Python module and checked by the external checker;
its diagnostics are remapped into document coordinates. In ``matcher`` mode
the resolved type is checked against the parsed document directly.

Every validation issues a gate token first. Each step with an externally
visible effect is preceded by a staleness checkpoint, so when edits arrive
faster than the checker answers only the latest edit publishes anything.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Protocol
import asyncio
import json
import logging

from jsontag.artifacts import ArtifactStore
from jsontag.checker import MypyChecker, TypeChecker
from jsontag.exceptions import DocumentParseError, JsonTagError, TypeSourceNotFound
from jsontag.gate import IndexedPaths, StalenessGate, ValidationRequest, wait_until
from jsontag.json_types import JSONValue
from jsontag.matcher import Mismatch, match
from jsontag.positions import PositionIndex, Span, index_positions
from jsontag.remap import DocumentDiagnostic, remap_all
from jsontag.resolver import TypeResolver
from jsontag.schema import ValidatorSettings
from jsontag.synthesis import artifact_path_for, resolve_type_source, synthesize
from jsontag.tagging import TAG_KEY, TypeTag, extract_type_tag, has_top_level_key
from jsontag.typedesc import (
    TypeDescription,
    child_type,
    describe,
    literal_values,
    properties_of,
    type_at_path,
)

logger = logging.getLogger(__name__)

TYPE_SNIPPET = '"\\$type": {\n\t"\\$from": "$1",\n\t"\\$import": "$2"\n}$0'


class DiagnosticsSink(Protocol):
    def publish(self, document_uri: str, diagnostics: list[DocumentDiagnostic]) -> None: ...

    def notify_error(self, message: str) -> None: ...


@dataclass(frozen=True)
class CompletionEntry:
    label: str
    insert_text: str
    kind: str
    detail: str = ""
    snippet: bool = False
    preselect: bool = False
    sort_text: str | None = None


@dataclass(frozen=True)
class HoverInfo:
    markdown: str
    start: tuple[int, int]
    end: tuple[int, int]


def _span_diagnostic(index: PositionIndex, span: Span, message: str) -> DocumentDiagnostic:
    start_line, start_char = index.position(span.start)
    end_line, end_char = index.position(span.end)
    return DocumentDiagnostic(
        start_line=start_line,
        start_char=start_char,
        end_line=end_line,
        end_char=end_char,
        message=message,
    )


def mismatch_diagnostics(text: str, mismatches: list[Mismatch]) -> list[DocumentDiagnostic]:
    if not mismatches:
        return []
    index = index_positions(text)
    return [
        _span_diagnostic(
            index,
            index.locate(mismatch.segments, missing=mismatch.actual == "undefined"),
            mismatch.message,
        )
        for mismatch in mismatches
    ]


def _existing_type_source(document_path: Path, tag: TypeTag) -> Path:
    source = resolve_type_source(document_path, tag)
    if not source.is_file():
        raise TypeSourceNotFound(tag.source_locator)
    return source


def parse_document(text: str) -> JSONValue:
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise DocumentParseError(
            f"Invalid JSON: {exc.msg} (line {exc.lineno}, column {exc.colno})",
            line=exc.lineno - 1,
            column=exc.colno - 1,
        ) from exc


class Orchestrator:
    def __init__(
        self,
        sink: DiagnosticsSink,
        settings: ValidatorSettings | None = None,
        *,
        checker: TypeChecker | None = None,
        resolver: TypeResolver | None = None,
        store: ArtifactStore | None = None,
        gate: StalenessGate | None = None,
        indexed: IndexedPaths | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.sink = sink
        self.settings = settings or ValidatorSettings()
        self.resolver = resolver or TypeResolver()
        self.store = store or ArtifactStore()
        self.gate = gate or StalenessGate()
        self.indexed = indexed or IndexedPaths()
        self._checker_override = checker
        self._checker: TypeChecker | None = checker
        self._sleep = sleep
        self._published: set[str] = set()
        self._last_notice: dict[str, str] = {}
        self._active_completions: set[str] = set()

    def configure(self, settings: ValidatorSettings) -> None:
        self.settings = settings
        self._checker = self._checker_override

    @property
    def checker(self) -> TypeChecker:
        if self._checker is None:
            self._checker = MypyChecker(
                command=self.settings.resolved_checker_command(),
                extra_args=list(self.settings.checker_args),
            )
        return self._checker

    # Validation

    async def validate(self, document_uri: str, document_path: Path, text: str) -> None:
        tag = extract_type_tag(text)
        request = self.gate.issue(document_uri, text)
        if tag is None:
            await self._untagged(request, document_path)
            return
        try:
            if self.settings.mode == "checker":
                await self._validate_with_checker(request, document_path, tag)
            else:
                await self._validate_with_matcher(request, document_path, tag)
        except JsonTagError as exc:
            if self.gate.is_current(request):
                self._notify(document_uri, str(exc))

    async def _untagged(self, request: ValidationRequest, document_path: Path) -> None:
        if request.document in self._published:
            self._publish(request.document, [])
        self._last_notice.pop(request.document, None)
        if self.settings.mode == "checker":
            artifact = artifact_path_for(document_path, self.settings.artifact_prefix)
            if artifact.exists():
                await self.store.delete(artifact)

    async def _validate_with_checker(
        self, request: ValidationRequest, document_path: Path, tag: TypeTag
    ) -> None:
        _existing_type_source(document_path, tag)
        artifact = synthesize(
            document_path, request.text, tag, prefix=self.settings.artifact_prefix
        )
        if not self.gate.is_current(request):
            return
        if not await self.store.write(artifact):
            return
        try:
            if not self.gate.is_current(request):
                return
            await self._ensure_indexed(artifact.path)
            if not self.gate.is_current(request):
                return
            diagnostics = await self.checker.check(artifact)
            if not self.gate.is_current(request):
                return
            result = remap_all(diagnostics, artifact)
            self._publish(request.document, result.document)
            for error in result.declaration:
                self._notify(request.document, f"Error in {TAG_KEY}: {error.message}")
            if not result.declaration:
                self._last_notice.pop(request.document, None)
        finally:
            # A stale request must not remove the file a newer one just wrote.
            if self.gate.is_current(request):
                await self.store.delete(artifact.path)

    async def _validate_with_matcher(
        self, request: ValidationRequest, document_path: Path, tag: TypeTag
    ) -> None:
        value = parse_document(request.text)
        source = _existing_type_source(document_path, tag)
        expected = await asyncio.to_thread(self.resolver.resolve, source, tag.type_name)
        if not self.gate.is_current(request):
            return
        diagnostics = mismatch_diagnostics(request.text, match(value, expected))
        self._publish(request.document, diagnostics)
        self._last_notice.pop(request.document, None)

    async def _ensure_indexed(self, path: Path) -> None:
        if path in self.indexed:
            return
        ready = await wait_until(
            lambda: self.checker.is_indexed(path),
            timeout=self.settings.indexing_timeout_ms / 1000,
            interval=self.settings.indexing_poll_ms / 1000,
            sleep=self._sleep,
        )
        if not ready:
            logger.warning(
                "checker did not pick up %s within %dms; continuing",
                path,
                self.settings.indexing_timeout_ms,
            )
        self.indexed.add(path)

    def _publish(self, document_uri: str, diagnostics: list[DocumentDiagnostic]) -> None:
        self.sink.publish(document_uri, diagnostics)
        if diagnostics:
            self._published.add(document_uri)
        else:
            self._published.discard(document_uri)

    def _notify(self, document_uri: str, message: str) -> None:
        if self._last_notice.get(document_uri) == message:
            logger.debug("suppressing repeated notice for %s: %s", document_uri, message)
            return
        self._last_notice[document_uri] = message
        self.sink.notify_error(message)

    # Completion and hover

    async def _resolve_quietly(self, document_path: Path, tag: TypeTag) -> TypeDescription | None:
        source = resolve_type_source(document_path, tag)
        try:
            return await asyncio.to_thread(self.resolver.resolve, source, tag.type_name)
        except JsonTagError as exc:
            logger.debug("cannot resolve %s for %s: %s", tag.type_name, document_path, exc)
            return None

    async def complete(
        self, document_path: Path, text: str, line: int, character: int
    ) -> list[CompletionEntry]:
        key = str(document_path)
        if key in self._active_completions:
            return []
        self._active_completions.add(key)
        try:
            index = index_positions(text)
            offset = index.offset(line, character)
            tag = extract_type_tag(text)
            if tag is None:
                return _untagged_completions(text, index, offset)
            expected = await self._resolve_quietly(document_path, tag)
            if expected is None:
                return []
            return _tagged_completions(text, index, offset, expected)
        finally:
            self._active_completions.discard(key)

    async def hover(
        self, document_path: Path, text: str, line: int, character: int
    ) -> HoverInfo | None:
        tag = extract_type_tag(text)
        if tag is None:
            return None
        index = index_positions(text)
        offset = index.offset(line, character)
        path = index.path_at(offset)
        if not path or path[0] == TAG_KEY:
            return None
        expected = await self._resolve_quietly(document_path, tag)
        if expected is None:
            return None
        declared = type_at_path(expected, path)
        if declared is None:
            return None
        parent = type_at_path(expected, path[:-1])
        optional = parent is not None and any(
            prop.name == path[-1] and prop.optional for prop in properties_of(parent)
        )
        entry = index.entries[path]
        span = entry.value
        if entry.key is not None and entry.key.start <= offset <= entry.key.end:
            span = entry.key
        label = f"{path[-1]}{'?' if optional else ''}: {describe(declared)}"
        return HoverInfo(
            markdown=f"```ts\n{label}\n```",
            start=index.position(span.start),
            end=index.position(span.end),
        )


def _untagged_completions(text: str, index: PositionIndex, offset: int) -> list[CompletionEntry]:
    # Documents that already declare a schema follow it instead.
    if has_top_level_key(text, "$schema"):
        return []
    context = index.context_at(offset)
    if context is None or context.path or not context.in_key or context.in_string:
        return []
    return [
        CompletionEntry(
            label=f'"{TAG_KEY}"',
            insert_text=TYPE_SNIPPET,
            kind="snippet",
            detail="Declare the type this document must satisfy",
            snippet=True,
            preselect=True,
            sort_text="0",
        )
    ]


def _tagged_completions(
    text: str, index: PositionIndex, offset: int, expected: TypeDescription
) -> list[CompletionEntry]:
    context = index.context_at(offset)
    if context is None:
        return []
    target = type_at_path(expected, context.path)
    if target is None:
        return []
    if context.in_key:
        depth = len(context.path) + 1
        present = {
            path[-1]
            for path in index.entries
            if len(path) == depth and path[:-1] == context.path
        }
        surrounded = text[offset - 1 : offset] == '"' and text[offset : offset + 1] == '"'
        return [
            CompletionEntry(
                label=prop.name,
                insert_text=prop.name if surrounded or context.in_string else json.dumps(prop.name),
                kind="property",
                detail=describe(prop.type),
            )
            for prop in properties_of(target)
            if prop.name not in present
        ]
    if context.container == "array":
        value_type = child_type(target, "0")
    elif context.key is not None:
        value_type = child_type(target, context.key)
    else:
        return []
    if value_type is None:
        return []
    entries: list[CompletionEntry] = []
    for value in literal_values(value_type):
        if context.in_string:
            if not value.startswith('"'):
                continue
            insert = json.loads(value)
        else:
            insert = value
        entries.append(
            CompletionEntry(label=value, insert_text=insert, kind="value", detail=describe(value_type))
        )
    return entries
