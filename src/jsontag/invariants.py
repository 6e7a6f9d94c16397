"""Invariant markers for jsontag."""

from __future__ import annotations

from typing import NoReturn

from jsontag.exceptions import NeverThrown


def never(reason: str = "", **env: object) -> NoReturn:
    """Mark a code path as unreachable.

    The env payload is attached to the raised exception for diagnostics only.
    """
    detail = ", ".join(f"{key}={value!r}" for key, value in sorted(env.items()))
    message = reason or "never() marker reached"
    if detail:
        message = f"{message} ({detail})"
    raise NeverThrown(message, env=env)

def require_positive(value: float, *, reason: str, **env: object) -> float:
    if value <= 0:
        never(reason, value=value, **env)
    return value
