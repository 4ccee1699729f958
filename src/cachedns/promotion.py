"""Demand-driven promotion of store records into the cache.

Every resolved query schedules one promotion run in the background. A run
counts the resolution and, once a pair has been resolved ``min_hits`` times,
copies its current records from the store into the cache. Runs never raise:
failures are logged and the run is abandoned.
"""
from __future__ import annotations

import asyncio
import logging

from .cache import CacheError, RecordCache
from .store import RecordStore, StoreError

logger = logging.getLogger(__name__)

DEFAULT_MIN_HITS = 5
DEFAULT_MAX_PENDING = 1024


class PromotionPolicy:
    """Hit counting and conditional cache population for one pair at a time.

    Args:
        store: Persistent store holding records and hit counters.
        cache: Cache that promoted record lists are written to.
        min_hits: Counter value from which a store-served pair is cached.
    """

    def __init__(self, store: RecordStore, cache: RecordCache, min_hits: int = DEFAULT_MIN_HITS) -> None:
        if min_hits < 1:
            raise ValueError(f"min_hits must be at least 1 (got {min_hits})")
        self.store = store
        self.cache = cache
        self.min_hits = min_hits

    async def run(self, domain: str, qtype: str, served_from_cache: bool) -> bool:
        """Count one resolution and promote the pair if it is due.

        Args:
            domain: Normalized domain of the resolved query.
            qtype: Requested type name.
            served_from_cache: Whether the response came from the cache.

        Returns:
            True if the cache entry was (re)written.
        """
        logger.debug("incrementing hits for %s %s", qtype, domain)
        try:
            await self.store.increment_hits(domain, qtype)
        except StoreError as exc:
            logger.error("failed to increment hits for %s %s: %s", qtype, domain, exc)

        try:
            hits = await self.store.read_hits(domain, qtype)
        except StoreError as exc:
            logger.error("failed to read hits for %s %s: %s", qtype, domain, exc)
            return False
        if hits is None:
            logger.debug("no hit counter yet for %s %s", qtype, domain)
            return False

        if hits < self.min_hits:
            logger.debug("min hits for cache not reached for %s %s: %d hits", qtype, domain, hits)
            return False

        if served_from_cache:
            logger.debug("%s %s already cached, skipping: %d hits", qtype, domain, hits)
            return False

        try:
            records = await self.store.lookup(domain, qtype)
        except StoreError as exc:
            logger.error("failed to refetch %s %s for caching: %s", qtype, domain, exc)
            return False
        if not records:
            return False

        try:
            await self.cache.put_records(domain, qtype, records)
        except CacheError as exc:
            logger.error("failed to cache %s %s: %s", qtype, domain, exc)
            return False

        logger.debug("cached %s %s (%d records, %d hits)", qtype, domain, len(records), hits)
        return True


class Promoter:
    """Bounded fire-and-forget executor for promotion runs.

    Args:
        policy: Policy executed for each submitted resolution.
        max_pending: Upper bound on outstanding runs; further submissions
            are dropped until some complete.
    """

    def __init__(self, policy: PromotionPolicy, max_pending: int = DEFAULT_MAX_PENDING) -> None:
        self.policy = policy
        self.max_pending = max_pending
        self._tasks: set[asyncio.Task[bool]] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, domain: str, qtype: str, served_from_cache: bool) -> bool:
        """Schedule a promotion run without waiting for it.

        Must be called from within the running event loop.

        Returns:
            False if the run was not scheduled (closed or saturated).
        """
        if self._closed:
            logger.debug("promoter closed, dropping %s %s", qtype, domain)
            return False
        if len(self._tasks) >= self.max_pending:
            logger.warning("promotion backlog full (%d), dropping %s %s", self.max_pending, qtype, domain)
            return False

        task = asyncio.create_task(self.policy.run(domain, qtype, served_from_cache))
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return True

    def _finished(self, task: asyncio.Task[bool]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("promotion task failed", exc_info=exc)

    def close(self) -> None:
        """Stop accepting new runs. Outstanding runs are left alone."""
        self._closed = True

    async def join(self, timeout: float | None = None) -> None:
        """Wait for outstanding runs, at most ``timeout`` seconds."""
        if not self._tasks:
            return
        _, still_pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if still_pending:
            logger.info("abandoning %d outstanding promotions", len(still_pending))
