"""Redis-backed cache of record lists keyed by (domain, qtype)."""
from __future__ import annotations

import logging
from typing import Any, Sequence

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from .records import Record, decode_records, encode_records

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "dns:record:"
DEFAULT_CACHE_TTL = 3600


class CacheError(Exception):
    """Raised when the cache server cannot complete an operation."""


class RecordCache:
    """Cache of serialized record lists with absolute expiry.

    Entries are whole snapshots of the record list for one (domain, qtype);
    a write always replaces the previous snapshot.

    Args:
        client: An async Redis client created with ``decode_responses=False``.
        namespace: Prefix shared by every key.
        ttl: Expiry window, in seconds, applied by `put_records`.
    """

    def __init__(
        self,
        client: Any,
        namespace: str = DEFAULT_NAMESPACE,
        ttl: int = DEFAULT_CACHE_TTL,
    ) -> None:
        if ttl <= 0:
            raise ValueError(f"cache ttl must be positive (got {ttl})")
        self.client = client
        self.namespace = namespace
        self.ttl = ttl

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RecordCache":
        client = aioredis.Redis.from_url(url, decode_responses=False)
        return cls(client, **kwargs)

    def key(self, domain: str, qtype: str) -> str:
        return f"{self.namespace}{domain.lower()}:{qtype.upper()}"

    async def ping(self) -> None:
        try:
            await self.client.ping()
        except RedisError as exc:
            raise CacheError(f"redis ping: {exc}") from exc

    async def close(self) -> None:
        await self.client.aclose()

    async def get(self, key: str) -> bytes | None:
        try:
            return await self.client.get(key)
        except RedisError as exc:
            raise CacheError(str(exc)) from exc

    async def set(self, key: str, payload: bytes, ttl: int) -> None:
        try:
            await self.client.set(key, payload, ex=ttl)
        except RedisError as exc:
            raise CacheError(str(exc)) from exc

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self.client.delete(key))
        except RedisError as exc:
            raise CacheError(str(exc)) from exc

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self.client.exists(key))
        except RedisError as exc:
            raise CacheError(str(exc)) from exc

    async def get_records(self, domain: str, qtype: str) -> list[Record] | None:
        """Return the cached record list for a pair, or None on a miss.

        An absent key, an undecodable value and an unreachable server are all
        reported as a miss; only the log tells them apart.
        """
        key = self.key(domain, qtype)
        try:
            payload = await self.get(key)
        except CacheError as exc:
            logger.warning("cache read failed for %s: %s", key, exc)
            return None
        if payload is None:
            return None
        try:
            return decode_records(payload)
        except ValueError as exc:
            logger.debug("ignoring corrupt cache entry %s: %s", key, exc)
            return None

    async def put_records(
        self,
        domain: str,
        qtype: str,
        records: Sequence[Record],
        ttl: int | None = None,
    ) -> None:
        """Replace the cached snapshot for a pair.

        Raises:
            ValueError: If ``records`` is empty.
            CacheError: If the write fails.
        """
        if not records:
            raise ValueError("no records to cache")
        await self.set(self.key(domain, qtype), encode_records(records), ttl or self.ttl)
