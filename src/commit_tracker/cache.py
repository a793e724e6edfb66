"""TTL memoization for read-only git queries.

Entries are keyed by ``(operation, repo_path, detail)`` so that a mutation
against one repository can drop everything cached for it. Lookups of the same
uncached key share a single in-flight computation.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, NamedTuple, TypeVar

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)

T = TypeVar("T")


class CacheKey(NamedTuple):
    """Identifies one cached query.

    Attributes:
        operation (str): The query name (e.g. 'current-branch').
        repo_path (str): The resolved repository path the query ran against.
        detail (str): Extra discriminator such as a commit hash or branch.
    """

    operation: str
    repo_path: str
    detail: str = ""

    @classmethod
    def of(cls, operation: str, repo_path: Path | str, detail: str = "") -> "CacheKey":
        return cls(operation, normalize_path(repo_path), detail)


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    expires_at: float


def normalize_path(repo_path: Path | str) -> str:
    """Returns the canonical string form used for cache keys and locks."""
    return str(Path(repo_path).expanduser().resolve())


class ResultCache:
    """An asyncio-aware TTL cache with single-flight computation per key.

    Attributes:
        hits (int): Lookups answered from a live entry.
        misses (int): Lookups that started a new computation.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._inflight: dict[CacheKey, asyncio.Future] = {}
        # Bumped on invalidation so that computations started before it are discarded.
        self._generations: dict[str, int] = {}
        self._epoch = 0
        self.hits = 0
        self.misses = 0

    def _generation(self, repo_path: str) -> tuple[int, int]:
        return self._epoch, self._generations.get(repo_path, 0)

    async def get_or_compute(
        self, key: CacheKey, ttl: float, producer: Callable[[], Awaitable[T]]
    ) -> T:
        """Returns a live cached value or computes, stores and returns a fresh one.

        Args:
            key (CacheKey): The cache key.
            ttl (float): Seconds the computed value stays valid.
            producer (Callable[[], Awaitable[T]]): Computes the value on a miss.

        Returns:
            T: The cached or freshly computed value.

        Raises:
            Exception: Whatever the producer raised. Failures are not cached.
        """
        entry = self._entries.get(key)
        if entry is not None:
            if entry.expires_at > self._clock():
                self.hits += 1
                return entry.value
            del self._entries[key]

        future = self._inflight.get(key)
        if future is None:
            self.misses += 1
            future = asyncio.ensure_future(
                self._compute(key, ttl, producer, self._generation(key.repo_path))
            )
            self._inflight[key] = future

        # Shielded so one cancelled waiter does not cancel the shared computation.
        return await asyncio.shield(future)

    async def _compute(
        self,
        key: CacheKey,
        ttl: float,
        producer: Callable[[], Awaitable[T]],
        generation: tuple[int, int],
    ) -> T:
        task = asyncio.current_task()
        try:
            value = await producer()
            if self._generation(key.repo_path) == generation:
                self._sweep()
                self._entries[key] = CacheEntry(value, self._clock() + ttl)
            else:
                logger.debug(f"Discarding stale result for {key.operation} in {key.repo_path}")
            return value
        finally:
            if self._inflight.get(key) is task:
                del self._inflight[key]

    def _sweep(self) -> None:
        # Per-commit keys are never looked up again once they expire.
        now = self._clock()
        for k in [k for k, entry in self._entries.items() if entry.expires_at <= now]:
            del self._entries[k]

    def peek(self, key: CacheKey) -> Any | None:
        """Returns a live cached value without computing, or None."""
        entry = self._entries.get(key)
        if entry is not None and entry.expires_at > self._clock():
            return entry.value
        return None

    def invalidate(self, repo_path: Path | str) -> int:
        """Drops every entry and in-flight computation for a repository.

        Args:
            repo_path (Path | str): The repository whose entries become stale.

        Returns:
            int: The number of stored entries removed.
        """
        path = normalize_path(repo_path)
        self._generations[path] = self._generations.get(path, 0) + 1

        stale = [k for k in self._entries if k.repo_path == path]
        for k in stale:
            del self._entries[k]
        # Waiters keep their futures; new callers must not join them.
        for k in [k for k in self._inflight if k.repo_path == path]:
            del self._inflight[k]

        if stale:
            logger.debug(f"Invalidated {len(stale)} cached result(s) for {path}")
        return len(stale)

    def invalidate_all(self) -> None:
        """Drops every entry; computations already in flight are not stored."""
        self._epoch += 1
        self._entries.clear()
        self._inflight.clear()

    def __len__(self) -> int:
        return len(self._entries)
