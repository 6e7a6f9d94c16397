"""External type checker collaborator: mypy run as a subprocess."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Protocol, TypeAlias, runtime_checkable
import asyncio
import logging
import os
import re

from jsontag.exceptions import CheckerUnavailable
from jsontag.remap import CheckerDiagnostic
from jsontag.synthesis import SyntheticArtifact

logger = logging.getLogger(__name__)

ProcessResult: TypeAlias = tuple[int, str, str]
ProcessRunner: TypeAlias = Callable[[list[str], Path, dict[str, str]], Awaitable[ProcessResult]]

_MYPY_LINE_RE = re.compile(
    r"^(?P<path>.+?):(?P<line>\d+):(?P<col>\d+)"
    r"(?::(?P<end_line>\d+):(?P<end_col>\d+))?"
    r":\s*(?P<severity>error|note|warning):\s*(?P<message>.*?)"
    r"(?:\s+\[(?P<code>[a-z0-9-]+)\])?$"
)

MYPY_BASE_ARGS = (
    "--show-column-numbers",
    "--show-error-end",
    "--no-error-summary",
    "--no-color-output",
    "--hide-error-context",
    "--follow-imports=silent",
    # The $type tag is an extra key of the literal; extra keys are tolerated.
    "--disable-error-code=typeddict-unknown-key",
)


@runtime_checkable
class TypeChecker(Protocol):
    async def check(self, artifact: SyntheticArtifact) -> list[CheckerDiagnostic]: ...

    def is_indexed(self, path: Path) -> bool: ...


def parse_mypy_line(line: str, cwd: Path) -> tuple[str, CheckerDiagnostic] | None:
    match = _MYPY_LINE_RE.match(line.rstrip())
    if not match:
        return None
    line_no = int(match.group("line"))
    col_no = int(match.group("col"))
    length = 1
    if match.group("end_line") is not None and int(match.group("end_line")) == line_no:
        length = max(int(match.group("end_col")) - col_no + 1, 1)
    path = Path(match.group("path"))
    if not path.is_absolute():
        path = cwd / path
    return (
        match.group("severity"),
        CheckerDiagnostic(
            file_path=str(path),
            line=max(line_no - 1, 0),
            character=max(col_no - 1, 0),
            length=length,
            message=match.group("message").strip(),
        ),
    )


def parse_mypy_output(output: str, cwd: Path) -> list[CheckerDiagnostic]:
    """Collect errors; notes are appended to the error they follow."""
    diagnostics: list[CheckerDiagnostic] = []
    for raw in output.splitlines():
        parsed = parse_mypy_line(raw, cwd)
        if parsed is None:
            continue
        severity, diagnostic = parsed
        if severity == "note":
            if diagnostics and diagnostics[-1].file_path == diagnostic.file_path:
                last = diagnostics[-1]
                diagnostics[-1] = CheckerDiagnostic(
                    file_path=last.file_path,
                    line=last.line,
                    character=last.character,
                    length=last.length,
                    message=f"{last.message}\n{diagnostic.message}",
                )
            continue
        diagnostics.append(diagnostic)
    return diagnostics


async def run_process(argv: list[str], cwd: Path, env: dict[str, str]) -> ProcessResult:
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd),
            env=env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise CheckerUnavailable(f"Cannot start type checker {argv[0]!r}: {exc}") from exc
    stdout, stderr = await process.communicate()
    return (
        process.returncode if process.returncode is not None else -1,
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace"),
    )


@dataclass
class MypyChecker:
    command: list[str]
    extra_args: list[str] = field(default_factory=list)
    runner: ProcessRunner = run_process

    def _environment(self, artifact: SyntheticArtifact) -> dict[str, str]:
        env = dict(os.environ)
        search = [str(path) for path in artifact.search_paths]
        if env.get("MYPYPATH"):
            search.append(env["MYPYPATH"])
        env["MYPYPATH"] = os.pathsep.join(search)
        return env

    async def check(self, artifact: SyntheticArtifact) -> list[CheckerDiagnostic]:
        cwd = artifact.path.parent
        argv = [*self.command, *MYPY_BASE_ARGS, *self.extra_args, artifact.path.name]
        logger.debug("running %s in %s", argv, cwd)
        returncode, stdout, stderr = await self.runner(argv, cwd, self._environment(artifact))
        diagnostics = parse_mypy_output(stdout, cwd)
        if returncode not in (0, 1) or (returncode == 1 and not diagnostics):
            detail = (stderr or stdout).strip().splitlines()
            reason = detail[-1] if detail else f"exit status {returncode}"
            raise CheckerUnavailable(f"Type checker failed: {reason}")
        return diagnostics

    def is_indexed(self, path: Path) -> bool:
        return path.is_file()
