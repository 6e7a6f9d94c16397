"""Token-based staleness control for overlapping validation requests.

Every triggering event issues a request with a fresh token and records it as
the latest for its document. Work that has side effects checks the token
before acting; a request whose token is no longer the latest stops silently.
Nothing is locked: superseded requests are allowed to run their in-flight
checker call to completion and simply discard the result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterator
import asyncio
import itertools
import logging
import time

from jsontag.invariants import never, require_positive

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationRequest:
    document: str
    token: int
    text: str


@dataclass
class StalenessGate:
    _counter: Iterator[int] = field(default_factory=lambda: itertools.count(1))
    _latest: dict[str, int] = field(default_factory=dict)

    def issue(self, document: str, text: str) -> ValidationRequest:
        token = next(self._counter)
        self._latest[document] = token
        return ValidationRequest(document=document, token=token, text=text)

    def latest(self, document: str) -> int | None:
        return self._latest.get(document)

    def is_current(self, request: ValidationRequest) -> bool:
        latest = self._latest.get(request.document)
        if latest is None or request.token > latest:
            never(
                "request token was never issued",
                document=request.document,
                token=request.token,
            )
        current = request.token == latest
        if not current:
            logger.debug(
                "dropping stale request %s for %s (latest %s)",
                request.token,
                request.document,
                latest,
            )
        return current


@dataclass
class IndexedPaths:
    """Paths already forced into the checker's working set.

    Membership is permanent for the process lifetime.
    """

    _paths: set[str] = field(default_factory=set)

    def __contains__(self, path: object) -> bool:
        return str(path) in self._paths

    def add(self, path: object) -> None:
        self._paths.add(str(path))

    def __len__(self) -> int:
        return len(self._paths)


async def wait_until(
    condition: Callable[[], bool],
    *,
    timeout: float,
    interval: float,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """Poll condition until it is true or timeout seconds have elapsed."""
    require_positive(timeout, reason="invalid polling timeout")
    require_positive(interval, reason="invalid polling interval")
    deadline = clock() + timeout
    while True:
        if condition():
            return True
        if clock() >= deadline:
            return False
        await sleep(interval)
