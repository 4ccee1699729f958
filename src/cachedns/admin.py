"""Administrative record and cache operations used by the CLI."""
from __future__ import annotations

import logging

from .cache import RecordCache
from .records import Record
from .store import RecordStore

logger = logging.getLogger(__name__)


async def add_record(store: RecordStore, cache: RecordCache, record: Record) -> None:
    """Upsert a record and refresh the pair's cache entry if one exists."""
    await store.upsert(record)
    logger.info("record added: %s %s %s", record.domain, record.qtype, record.value)

    if await cache.exists(cache.key(record.domain, record.qtype)):
        records = await store.lookup(record.domain, record.qtype)
        await cache.put_records(record.domain, record.qtype, records)
        logger.info("refreshed cache for %s %s", record.domain, record.qtype)


async def warm_cache(store: RecordStore, cache: RecordCache, domain: str, qtype: str) -> int:
    """Copy the records of a pair into the cache.

    Returns:
        Number of cached records.

    Raises:
        LookupError: If the store has no records for the pair.
    """
    records = await store.lookup(domain, qtype)
    if not records:
        raise LookupError(f"no {qtype} records for {domain}")
    await cache.put_records(domain, qtype, records)
    logger.info("cached record: %s %s", domain, qtype)
    return len(records)


async def evict_cache(cache: RecordCache, domain: str, qtype: str) -> bool:
    removed = await cache.delete(cache.key(domain, qtype))
    logger.info("evicted %s %s from cache: %s", domain, qtype, removed)
    return removed


async def delete_records(store: RecordStore, cache: RecordCache, domain: str, qtype: str) -> int:
    """Delete the records of a pair and drop its cache entry.

    Returns:
        Number of deleted records.
    """
    deleted = await store.delete(domain, qtype)
    await cache.delete(cache.key(domain, qtype))
    logger.info("deleted %d %s records for %s", deleted, qtype, domain)
    return deleted


async def list_records(store: RecordStore) -> list[Record]:
    return await store.scan_all()
