"""Translate checker diagnostics from artifact coordinates to document coordinates."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from jsontag.synthesis import SyntheticArtifact


@dataclass(frozen=True)
class CheckerDiagnostic:
    file_path: str
    line: int
    character: int
    length: int
    message: str


@dataclass(frozen=True)
class DocumentDiagnostic:
    start_line: int
    start_char: int
    end_line: int
    end_char: int
    message: str


@dataclass(frozen=True)
class DeclarationError:
    """A checker error inside the synthesized header (bad import, unknown type)."""

    message: str
    artifact_path: str


@dataclass
class RemapResult:
    document: list[DocumentDiagnostic] = field(default_factory=list)
    declaration: list[DeclarationError] = field(default_factory=list)


def _same_file(candidate: str, artifact: Path) -> bool:
    try:
        return Path(candidate).resolve() == artifact.resolve()
    except OSError:
        return False


def remap_diagnostic(
    diagnostic: CheckerDiagnostic, header_line_count: int, artifact_path: str = ""
) -> DocumentDiagnostic | DeclarationError:
    if diagnostic.line < header_line_count:
        return DeclarationError(message=diagnostic.message, artifact_path=artifact_path)
    line = diagnostic.line - header_line_count
    return DocumentDiagnostic(
        start_line=line,
        start_char=diagnostic.character,
        end_line=line,
        end_char=diagnostic.character + diagnostic.length,
        message=diagnostic.message,
    )


def remap_all(
    diagnostics: Iterable[CheckerDiagnostic], artifact: SyntheticArtifact
) -> RemapResult:
    result = RemapResult()
    for diagnostic in diagnostics:
        if not _same_file(diagnostic.file_path, artifact.path):
            continue
        mapped = remap_diagnostic(diagnostic, artifact.header_line_count, str(artifact.path))
        if isinstance(mapped, DeclarationError):
            result.declaration.append(mapped)
        else:
            result.document.append(mapped)
    return result
