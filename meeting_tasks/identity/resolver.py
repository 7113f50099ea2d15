"""Map free-text assignee names to directory identities.

Lookups escalate exact -> prefix -> search and stop at the first strategy
that returns candidates.  Candidate lists (including empty ones) are cached
per lower-cased name for a fixed TTL.

The shared cache is read-then-written without a lock.  That is only safe
because everything runs on one event loop; code that resolves names from
several threads must give each thread its own :class:`IdentityCache`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from meeting_tasks.errors import DirectoryError
from meeting_tasks.extraction.models import UNASSIGNED
from meeting_tasks.identity.directory import DirectoryService
from meeting_tasks.identity.models import (
    Confidence,
    DirectoryUser,
    ResolutionResult,
    ResolvedIdentity,
)
from meeting_tasks.telemetry import Telemetry, telemetry

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 300.0
BATCH_SIZE = 5
NO_MATCH_ERROR = "No matching users found"


@dataclass
class _CacheEntry:
    candidates: list[ResolvedIdentity]
    expires_at: float


class IdentityCache:
    """Candidate lists keyed by lower-cased name, each with its own expiry."""

    def __init__(self, ttl: float = CACHE_TTL_SECONDS, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}

    @staticmethod
    def key(name: str) -> str:
        return name.lower()

    def purge_expired(self) -> None:
        now = self._clock()
        for key in [k for k, entry in self._entries.items() if entry.expires_at <= now]:
            del self._entries[key]

    def get(self, name: str) -> list[ResolvedIdentity] | None:
        self.purge_expired()
        entry = self._entries.get(self.key(name))
        return None if entry is None else entry.candidates

    def put(self, name: str, candidates: list[ResolvedIdentity]) -> None:
        self._entries[self.key(name)] = _CacheEntry(list(candidates), self._clock() + self.ttl)

    def __len__(self) -> int:
        return len(self._entries)


def is_unassigned(name: str | None) -> bool:
    return not name or not name.strip() or name.strip().lower() == UNASSIGNED.lower()


class IdentityResolver:
    def __init__(
        self,
        directory: DirectoryService,
        cache: IdentityCache | None = None,
        batch_size: int = BATCH_SIZE,
        tracker: Telemetry | None = None,
    ) -> None:
        self.directory = directory
        self.cache = cache if cache is not None else IdentityCache()
        self.batch_size = max(1, batch_size)
        self.telemetry = tracker or telemetry

    async def _lookup(self, name: str) -> list[ResolvedIdentity]:
        """Run the escalating strategies; the first non-empty one wins."""
        users: list[DirectoryUser] = await self.directory.find_exact(name)
        if users:
            return [ResolvedIdentity.from_user(u, Confidence.HIGH) for u in users]

        users = await self.directory.find_prefix(name)
        if users:
            return [ResolvedIdentity.from_user(u, Confidence.MEDIUM) for u in users]

        try:
            users = await self.directory.search(name)
        except (DirectoryError, NotImplementedError) as exc:
            logger.debug("Directory search unavailable for %r, skipping: %s", name, exc)
            return []
        return [ResolvedIdentity.from_user(u, Confidence.LOW) for u in users]

    async def candidates(self, name: str) -> list[ResolvedIdentity]:
        cached = self.cache.get(name)
        if cached is not None:
            logger.debug("Identity cache hit for %r", name)
            return cached

        found = await self._lookup(name)
        self.cache.put(name, found)
        return found

    async def resolve(self, name: str) -> ResolutionResult:
        """Resolve one name; never raises for directory failures."""
        if is_unassigned(name):
            return ResolutionResult(original_name=name, resolved=False)

        timer = self.telemetry.start_timer("identity.resolve")
        try:
            found = await self.candidates(name.strip())
        except Exception as exc:
            timer.stop()
            self.telemetry.track_failure("identity.resolve", type(exc).__name__)
            logger.warning("Identity lookup failed for %r: %s", name, exc)
            return ResolutionResult(original_name=name, resolved=False, error=str(exc) or type(exc).__name__)
        timer.stop()

        if not found:
            return ResolutionResult(original_name=name, resolved=False, error=NO_MATCH_ERROR)

        best, *rest = found
        self.telemetry.track_success(
            "identity.resolve", {"confidence": best.confidence.value, "alternatives": str(len(rest))}
        )
        return ResolutionResult(original_name=name, resolved=True, identity=best, alternatives=rest)

    async def resolve_many(self, names: Iterable[str]) -> dict[str, ResolutionResult]:
        """Resolve each distinct name once, ``batch_size`` lookups at a time.

        Keys are the names exactly as supplied.
        """
        unique = list(dict.fromkeys(names))
        results: dict[str, ResolutionResult] = {}
        for start in range(0, len(unique), self.batch_size):
            batch = unique[start : start + self.batch_size]
            resolved = await asyncio.gather(*(self.resolve(name) for name in batch))
            results.update(zip(batch, resolved, strict=True))
        return results
