"""Build the checkable Python module that asserts a document against its tag."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import re

from jsontag.exceptions import JsonTagError, TypeNotFound
from jsontag.invariants import never
from jsontag.tagging import TypeTag

# Shared with jsontag.remap: diagnostics on lines below this count belong to
# the header, not to the document.
HEADER_LINE_COUNT = 2
DEFAULT_ARTIFACT_PREFIX = "_jsontag_"
EXPECTED_ALIAS = "_Expected"
ARTIFACT_MARKER = "from typing import Final; from "
ARTIFACT_TRAILER = ")"

_NON_IDENT_RE = re.compile(r"\W")


@dataclass(frozen=True)
class SyntheticArtifact:
    path: Path
    content: str
    header_line_count: int = HEADER_LINE_COUNT
    search_paths: tuple[Path, ...] = ()


def resolve_type_source(document_path: Path, tag: TypeTag) -> Path:
    candidate = Path(tag.source_locator)
    if not candidate.is_absolute():
        candidate = document_path.parent / candidate
    return candidate.resolve()


def artifact_path_for(document_path: Path, prefix: str = DEFAULT_ARTIFACT_PREFIX) -> Path:
    stem = _NON_IDENT_RE.sub("_", document_path.stem) or "document"
    return document_path.parent / f"{prefix}{stem}.py"


def module_name_for(source: Path) -> str:
    name = source.stem
    if not name.isidentifier():
        raise JsonTagError(f"Type source {source.name!r} is not an importable module name")
    return name


def header_lines(module: str, type_name: str) -> tuple[str, str]:
    import_line = (
        "from typing import Final; "
        f"from {module} import {type_name} as {EXPECTED_ALIAS}; "
        "true: Final = True; false: Final = False; null: Final = None"
    )
    declaration_line = f"data: {EXPECTED_ALIAS} = ("
    return import_line, declaration_line


def synthesize(
    document_path: Path,
    text: str,
    tag: TypeTag,
    *,
    prefix: str = DEFAULT_ARTIFACT_PREFIX,
) -> SyntheticArtifact:
    if not tag.type_name.isidentifier():
        raise TypeNotFound(tag.type_name, tag.source_locator)
    source = resolve_type_source(document_path, tag)
    lines = header_lines(module_name_for(source), tag.type_name)
    if len(lines) != HEADER_LINE_COUNT:  # pragma: no cover - header is static
        never("header shape out of sync", lines=len(lines))
    content = "\n".join(lines) + "\n" + text + "\n" + ARTIFACT_TRAILER
    return SyntheticArtifact(
        path=artifact_path_for(document_path, prefix),
        content=content,
        header_line_count=HEADER_LINE_COUNT,
        search_paths=(source.parent,),
    )
