"""Command line entry points: batch checking of documents and the language server."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
import asyncio
import json
import logging

import typer
from pydantic import ValidationError

from jsontag.config import TomlTable
from jsontag.orchestrator import Orchestrator
from jsontag.remap import DocumentDiagnostic
from jsontag.schema import CheckReportDTO, DiagnosticDTO, ValidatorSettings, load_settings
from jsontag.tagging import extract_type_tag

app = typer.Typer(add_completion=False)


@dataclass
class CollectingSink:
    """Keeps the latest diagnostics per document and every notification."""

    diagnostics: dict[str, list[DocumentDiagnostic]] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    def publish(self, document_uri: str, diagnostics: list[DocumentDiagnostic]) -> None:
        self.diagnostics[document_uri] = list(diagnostics)

    def notify_error(self, message: str) -> None:
        self.errors.append(message)


def check_documents(paths: list[Path], settings: ValidatorSettings) -> list[CheckReportDTO]:
    reports: list[CheckReportDTO] = []
    for path in paths:
        sink = CollectingSink()
        orchestrator = Orchestrator(sink, settings)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            reports.append(CheckReportDTO(path=str(path), tagged=False, errors=[str(exc)]))
            continue
        uri = path.resolve().as_uri()
        asyncio.run(orchestrator.validate(uri, path.resolve(), text))
        reports.append(
            CheckReportDTO(
                path=str(path),
                tagged=extract_type_tag(text) is not None,
                diagnostics=[
                    DiagnosticDTO(
                        path=str(path),
                        line=item.start_line + 1,
                        character=item.start_char + 1,
                        end_line=item.end_line + 1,
                        end_character=item.end_char + 1,
                        message=item.message,
                    )
                    for item in sink.diagnostics.get(uri, [])
                ],
                errors=list(sink.errors),
            )
        )
    return reports


def _render_text(reports: list[CheckReportDTO]) -> list[str]:
    lines: list[str] = []
    for report in reports:
        for error in report.errors:
            lines.append(f"{report.path}: error: {error}")
        for item in report.diagnostics:
            first, *rest = item.message.splitlines() or [""]
            lines.append(f"{item.path}:{item.line}:{item.character}: {first}")
            lines.extend(f"    {extra}" for extra in rest)
        if not report.tagged and not report.errors:
            lines.append(f"{report.path}: skipped (no $type declaration)")
    return lines


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@app.command()
def check(
    paths: List[Path] = typer.Argument(..., exists=True, dir_okay=False),
    mode: Optional[str] = typer.Option(None, "--mode", help="matcher or checker."),
    root: Path = typer.Option(Path("."), "--root"),
    config: Optional[Path] = typer.Option(None, "--config"),
    json_output: bool = typer.Option(False, "--json", help="Emit a JSON report."),
) -> None:
    """Validate tagged JSON documents and print their diagnostics."""
    overrides: TomlTable = {"mode": mode}
    try:
        settings = load_settings(root=root, overrides=overrides, config_path=config)
    except ValidationError as exc:
        typer.echo(f"Invalid configuration: {exc}", err=True)
        raise typer.Exit(code=2)
    reports = check_documents(list(paths), settings)
    if json_output:
        typer.echo(json.dumps([report.model_dump() for report in reports], indent=2))
    else:
        for line in _render_text(reports):
            typer.echo(line)
    failed = any(report.diagnostics or report.errors for report in reports)
    raise typer.Exit(code=1 if failed else 0)


@app.command()
def lsp() -> None:
    """Run the language server on stdio."""
    from jsontag.server import start

    start()
