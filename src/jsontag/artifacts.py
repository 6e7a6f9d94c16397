"""Filesystem collaborator for synthetic artifacts."""

from __future__ import annotations

from pathlib import Path
import asyncio
import logging

from jsontag.synthesis import ARTIFACT_MARKER, DEFAULT_ARTIFACT_PREFIX, SyntheticArtifact

logger = logging.getLogger(__name__)


class ArtifactStore:
    """Writes and removes artifacts off the event loop."""

    async def write(self, artifact: SyntheticArtifact) -> bool:
        try:
            await asyncio.to_thread(
                artifact.path.write_text, artifact.content, encoding="utf-8"
            )
        except OSError as exc:
            logger.warning("could not write artifact %s: %s", artifact.path, exc)
            return False
        return True

    async def delete(self, path: Path) -> None:
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as exc:
            logger.warning("leaving artifact %s behind: %s", path, exc)


def _is_artifact(path: Path) -> bool:
    try:
        with path.open(encoding="utf-8") as handle:
            first = handle.readline()
    except (OSError, UnicodeDecodeError):
        return False
    return first.startswith(ARTIFACT_MARKER)


def sweep_artifacts(root: Path, prefix: str = DEFAULT_ARTIFACT_PREFIX) -> list[Path]:
    """Delete artifacts left over from a previous process under root."""
    removed: list[Path] = []
    for path in root.rglob(f"{prefix}*.py"):
        if not _is_artifact(path):
            continue
        try:
            path.unlink()
        except OSError as exc:
            logger.warning("could not remove stale artifact %s: %s", path, exc)
            continue
        removed.append(path)
    if removed:
        logger.info("removed %d stale artifacts under %s", len(removed), root)
    return removed
