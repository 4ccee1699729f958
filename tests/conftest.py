"""Brief: Shared fixtures for store, cache and resolver tests.

Inputs:
  - None

Outputs:
  - None
"""

from __future__ import annotations

from typing import Any, Dict

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from cachedns.cache import RecordCache
from cachedns.promotion import PromotionPolicy, Promoter
from cachedns.resolver import Resolver
from cachedns.store import RecordStore


class FakeRedisClient:
    """Brief: Minimal in-memory async Redis client substitute for tests.

    Inputs:
      - None

    Outputs:
      - FakeRedisClient instance storing raw values and their expiry, and
        counting the calls made against it.
    """

    def __init__(self) -> None:
        self.store: Dict[str, bytes] = {}
        self.ttls: Dict[str, int | None] = {}
        self.calls: Dict[str, int] = {}
        self.fail = False
        self.closed = False

    def _call(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1
        if self.fail:
            raise RedisConnectionError("connection refused")

    async def ping(self) -> bool:
        self._call("ping")
        return True

    async def get(self, key: str) -> bytes | None:
        self._call("get")
        return self.store.get(key)

    async def set(self, key: str, value: Any, ex: int | None = None) -> bool:
        self._call("set")
        self.store[key] = value if isinstance(value, bytes) else str(value).encode()
        self.ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        self._call("delete")
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                self.ttls.pop(key, None)
                removed += 1
        return removed

    async def exists(self, *keys: str) -> int:
        self._call("exists")
        return sum(1 for key in keys if key in self.store)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def redis_client() -> FakeRedisClient:
    return FakeRedisClient()


@pytest.fixture
def cache(redis_client: FakeRedisClient) -> RecordCache:
    return RecordCache(redis_client)


@pytest.fixture
def store(tmp_path):
    """Brief: Record store on a throwaway SQLite file.

    Inputs:
      - tmp_path: pytest temporary directory.

    Outputs:
      - RecordStore with the schema created.
    """
    s = RecordStore.from_url(f"sqlite:///{tmp_path / 'records.db'}")
    s.ensure_tables()
    yield s
    s.dispose()


@pytest.fixture
def make_resolver(store: RecordStore, cache: RecordCache):
    """Brief: Factory wiring a resolver to the store and cache fixtures.

    Inputs:
      - min_hits: promotion threshold (default 5).
      - single_flight: share concurrent cold lookups (default False).

    Outputs:
      - Resolver whose promoter is reachable as resolver.promoter.
    """

    def _make(min_hits: int = 5, single_flight: bool = False, max_pending: int = 1024) -> Resolver:
        policy = PromotionPolicy(store, cache, min_hits=min_hits)
        promoter = Promoter(policy, max_pending=max_pending)
        return Resolver(store, cache, promoter, single_flight=single_flight)

    return _make
