"""Pydantic models for validator settings and the CLI report."""

from __future__ import annotations

from pathlib import Path
from typing import List, Literal, Optional
import sys

from pydantic import BaseModel, Field

from jsontag.config import TomlTable, merge_payload, normalize_payload, validation_defaults


class ValidatorSettings(BaseModel):
    mode: Literal["matcher", "checker"] = "matcher"
    artifact_prefix: str = Field(default="_jsontag_", min_length=1)
    checker_command: Optional[List[str]] = None
    checker_args: List[str] = []
    indexing_timeout_ms: int = Field(default=2000, gt=0)
    indexing_poll_ms: int = Field(default=500, gt=0)

    def resolved_checker_command(self) -> list[str]:
        if self.checker_command:
            return list(self.checker_command)
        return [sys.executable, "-m", "mypy"]


class DiagnosticDTO(BaseModel):
    path: str
    line: int
    character: int
    end_line: int
    end_character: int
    message: str


class CheckReportDTO(BaseModel):
    path: str
    tagged: bool
    diagnostics: List[DiagnosticDTO] = []
    errors: List[str] = []


def load_settings(
    root: Path | None = None,
    overrides: TomlTable | None = None,
    config_path: Path | None = None,
) -> ValidatorSettings:
    defaults = normalize_payload(validation_defaults(root=root, config_path=config_path))
    merged = merge_payload(normalize_payload(overrides or {}), defaults)
    return ValidatorSettings.model_validate(merged)
