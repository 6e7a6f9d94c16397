"""pygls language server wiring for jsontag.

The orchestrator counts characters in code points. Positions crossing the
connection are converted with the document's position codec, which speaks
the encoding negotiated with the client (UTF-16 unless agreed otherwise).
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable
from urllib.parse import unquote, urlparse
import logging

from pygls.lsp.server import LanguageServer
from pygls.workspace import TextDocument
from lsprotocol.types import (
    INITIALIZE,
    INITIALIZED,
    TEXT_DOCUMENT_COMPLETION,
    TEXT_DOCUMENT_DID_CHANGE,
    TEXT_DOCUMENT_DID_OPEN,
    TEXT_DOCUMENT_DID_SAVE,
    TEXT_DOCUMENT_HOVER,
    CompletionItem,
    CompletionItemKind,
    CompletionList,
    CompletionOptions,
    CompletionParams,
    Diagnostic,
    DiagnosticSeverity,
    Hover,
    HoverParams,
    InitializeParams,
    InsertTextFormat,
    MarkupContent,
    MarkupKind,
    MessageType,
    Position,
    PublishDiagnosticsParams,
    Range,
    ShowMessageParams,
)

from jsontag import __version__
from jsontag.artifacts import sweep_artifacts
from jsontag.orchestrator import CompletionEntry, HoverInfo, Orchestrator
from jsontag.remap import DocumentDiagnostic
from jsontag.schema import load_settings

logger = logging.getLogger(__name__)

server = LanguageServer("jsontag", __version__)

_COMPLETION_KINDS = {
    "property": CompletionItemKind.Property,
    "value": CompletionItemKind.Constant,
    "snippet": CompletionItemKind.Snippet,
}


@dataclass
class _ServerState:
    orchestrator: Orchestrator | None = None
    root: Path | None = None


_STATE = _ServerState()


class LanguageServerSink:
    """Delivers orchestrator output through the language server connection."""

    def __init__(self, ls: LanguageServer) -> None:
        self.ls = ls

    def publish(self, document_uri: str, diagnostics: list[DocumentDiagnostic]) -> None:
        document = self.ls.workspace.get_text_document(document_uri) if diagnostics else None
        self.ls.text_document_publish_diagnostics(
            PublishDiagnosticsParams(
                uri=document_uri,
                diagnostics=[to_lsp_diagnostic(item, document) for item in diagnostics],
            )
        )

    def notify_error(self, message: str) -> None:
        self.ls.window_show_message(ShowMessageParams(type=MessageType.Error, message=message))


def _uri_to_path(uri: str) -> Path:
    parsed = urlparse(uri)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    return Path(uri)


def _is_json_document(uri: str) -> bool:
    return _uri_to_path(uri).suffix.lower() == ".json"


def _workspace_root(params: InitializeParams) -> Path | None:
    if params.workspace_folders:
        return _uri_to_path(params.workspace_folders[0].uri)
    if params.root_uri:
        return _uri_to_path(params.root_uri)
    if params.root_path:
        return Path(params.root_path)
    return None


def _client_range(
    start: tuple[int, int], end: tuple[int, int], document: TextDocument | None
) -> Range:
    range_ = Range(
        start=Position(line=start[0], character=start[1]),
        end=Position(line=end[0], character=end[1]),
    )
    if document is None:
        return range_
    return document.position_codec.range_to_client_units(document.lines, range_)


def _server_position(document: TextDocument, position: Position) -> tuple[int, int]:
    converted = document.position_codec.position_from_client_units(document.lines, position)
    return converted.line, converted.character


def to_lsp_diagnostic(item: DocumentDiagnostic, document: TextDocument | None = None) -> Diagnostic:
    return Diagnostic(
        range=_client_range(
            (item.start_line, item.start_char), (item.end_line, item.end_char), document
        ),
        message=item.message,
        severity=DiagnosticSeverity.Error,
        source="jsontag",
    )


def to_lsp_completion(entry: CompletionEntry) -> CompletionItem:
    return CompletionItem(
        label=entry.label,
        kind=_COMPLETION_KINDS.get(entry.kind, CompletionItemKind.Text),
        detail=entry.detail or None,
        insert_text=entry.insert_text,
        insert_text_format=InsertTextFormat.Snippet if entry.snippet else InsertTextFormat.PlainText,
        preselect=entry.preselect or None,
        sort_text=entry.sort_text,
    )


def to_lsp_hover(info: HoverInfo, document: TextDocument | None = None) -> Hover:
    return Hover(
        contents=MarkupContent(kind=MarkupKind.Markdown, value=info.markdown),
        range=_client_range(info.start, info.end, document),
    )


def orchestrator_for(ls: LanguageServer) -> Orchestrator:
    if _STATE.orchestrator is None:
        _STATE.orchestrator = Orchestrator(LanguageServerSink(ls))
    return _STATE.orchestrator


@server.feature(INITIALIZE)
def initialize(ls: LanguageServer, params: InitializeParams) -> None:
    root = _workspace_root(params)
    options = params.initialization_options
    overrides = options if isinstance(options, dict) else {}
    settings = load_settings(root=root, overrides=overrides)
    orchestrator_for(ls).configure(settings)
    _STATE.root = root
    logger.info("jsontag %s ready (mode=%s, root=%s)", __version__, settings.mode, root)


@server.feature(INITIALIZED)
def initialized(ls: LanguageServer, params) -> None:
    if _STATE.root is None:
        return
    sweep_artifacts(_STATE.root, orchestrator_for(ls).settings.artifact_prefix)


async def _validate(ls: LanguageServer, uri: str) -> None:
    if not _is_json_document(uri):
        return
    document = ls.workspace.get_text_document(uri)
    await orchestrator_for(ls).validate(uri, _uri_to_path(uri), document.source)


@server.feature(TEXT_DOCUMENT_DID_OPEN)
async def did_open(ls: LanguageServer, params) -> None:
    await _validate(ls, params.text_document.uri)


@server.feature(TEXT_DOCUMENT_DID_CHANGE)
async def did_change(ls: LanguageServer, params) -> None:
    await _validate(ls, params.text_document.uri)


@server.feature(TEXT_DOCUMENT_DID_SAVE)
async def did_save(ls: LanguageServer, params) -> None:
    await _validate(ls, params.text_document.uri)


@server.feature(TEXT_DOCUMENT_COMPLETION, CompletionOptions(trigger_characters=['"', ":"]))
async def completion(ls: LanguageServer, params: CompletionParams) -> CompletionList | None:
    uri = params.text_document.uri
    if not _is_json_document(uri):
        return None
    document = ls.workspace.get_text_document(uri)
    line, character = _server_position(document, params.position)
    entries = await orchestrator_for(ls).complete(
        _uri_to_path(uri), document.source, line, character
    )
    return CompletionList(is_incomplete=False, items=[to_lsp_completion(e) for e in entries])


@server.feature(TEXT_DOCUMENT_HOVER)
async def hover(ls: LanguageServer, params: HoverParams) -> Hover | None:
    uri = params.text_document.uri
    if not _is_json_document(uri):
        return None
    document = ls.workspace.get_text_document(uri)
    line, character = _server_position(document, params.position)
    info = await orchestrator_for(ls).hover(_uri_to_path(uri), document.source, line, character)
    return to_lsp_hover(info, document) if info is not None else None


def start(start_fn: Callable[[], None] | None = None) -> None:
    """Start the language server on stdio."""
    (start_fn or server.start_io)()


if __name__ == "__main__":  # pragma: no cover
    start()  # pragma: no cover
