"""Persistent record and hit-counter storage.

The store is a thin layer over SQLAlchemy Core. The engine is synchronous and
connection-pooled; each coroutine below runs its statement in a worker thread
so the event loop is never blocked by database I/O.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, TypeVar

from sqlalchemy import (
    BigInteger,
    Column,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    select,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError

from .records import WILDCARD_QTYPE, Record

logger = logging.getLogger(__name__)

T = TypeVar("T")

metadata = MetaData()

records_table = Table(
    "dns_records",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("domain", Text, nullable=False),
    Column("qtype", Text, nullable=False),
    Column("ttl", Integer, nullable=False),
    Column("value", Text, nullable=False),
    UniqueConstraint("domain", "qtype", "value", name="uq_dns_records_domain_qtype_value"),
)

metrics_table = Table(
    "dns_metrics",
    metadata,
    Column("domain", Text, nullable=False),
    Column("qtype", Text, nullable=False),
    Column("hits", BigInteger, nullable=False, default=0),
    PrimaryKeyConstraint("domain", "qtype", name="pk_dns_metrics"),
)


class StoreError(Exception):
    """Raised when the persistent store cannot complete an operation."""


class RecordStore:
    """Record and hit-counter storage backed by a SQLAlchemy engine.

    Args:
        engine: Engine bound to Postgres (production) or SQLite (tests).

    Attributes:
        engine: The shared, pooled engine.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        if engine.dialect.name == "postgresql":
            self._insert = postgresql.insert
        elif engine.dialect.name == "sqlite":
            self._insert = sqlite.insert
        else:
            raise ValueError(f"unsupported database dialect '{engine.dialect.name}'")

    @classmethod
    def from_url(cls, url: str, pool_size: int = 10, max_overflow: int = 20) -> "RecordStore":
        """Create a store with its own connection pool.

        Args:
            url: SQLAlchemy database URL.
            pool_size: Persistent connections kept by the pool (Postgres only).
            max_overflow: Extra connections allowed under load (Postgres only).
        """
        kwargs: dict[str, Any] = {"pool_pre_ping": True}
        backend = make_url(url).get_backend_name()
        if backend == "postgresql":
            kwargs.update(pool_size=pool_size, max_overflow=max_overflow)
        elif backend == "sqlite":
            # pooled connections move between worker threads
            kwargs["connect_args"] = {"check_same_thread": False}
        return cls(create_engine(url, **kwargs))

    def ensure_tables(self) -> None:
        """Create the records and metrics tables if they do not exist.

        Raises:
            StoreError: If the schema cannot be created.
        """
        try:
            metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StoreError(f"failed to create tables: {exc}") from exc
        logger.info("database schema ready (%s)", self.engine.dialect.name)

    def dispose(self) -> None:
        self.engine.dispose()

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(fn, *args)
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    # Records

    def _upsert(self, record: Record) -> None:
        stmt = self._insert(records_table).values(
            domain=record.domain, qtype=record.qtype, ttl=record.ttl, value=record.value
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["domain", "qtype", "value"],
            set_={"ttl": stmt.excluded.ttl},
        )
        with self.engine.begin() as conn:
            conn.execute(stmt)

    async def upsert(self, record: Record) -> None:
        """Insert a record, or update its TTL if (domain, qtype, value) exists."""
        await self._run(self._upsert, record)

    def _lookup(self, domain: str, qtype: str) -> list[Record]:
        query = select(
            records_table.c.domain,
            records_table.c.qtype,
            records_table.c.ttl,
            records_table.c.value,
        ).where(records_table.c.domain == domain)
        if qtype != WILDCARD_QTYPE:
            query = query.where(records_table.c.qtype == qtype)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(records_table.c.id)).all()
        return [Record(domain=r.domain, qtype=r.qtype, ttl=r.ttl, value=r.value) for r in rows]

    async def lookup(self, domain: str, qtype: str) -> list[Record]:
        """Return every record for (domain, qtype); ``ANY`` matches all types."""
        return await self._run(self._lookup, domain, qtype)

    def _scan_all(self) -> list[Record]:
        query = select(
            records_table.c.domain,
            records_table.c.qtype,
            records_table.c.ttl,
            records_table.c.value,
        ).order_by(records_table.c.domain, records_table.c.qtype, records_table.c.value)
        with self.engine.connect() as conn:
            rows = conn.execute(query).all()
        return [Record(domain=r.domain, qtype=r.qtype, ttl=r.ttl, value=r.value) for r in rows]

    async def scan_all(self) -> list[Record]:
        return await self._run(self._scan_all)

    def _delete(self, domain: str, qtype: str) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                delete(records_table).where(
                    records_table.c.domain == domain, records_table.c.qtype == qtype
                )
            )
            conn.execute(
                delete(metrics_table).where(
                    metrics_table.c.domain == domain, metrics_table.c.qtype == qtype
                )
            )
        return result.rowcount

    async def delete(self, domain: str, qtype: str) -> int:
        """Delete all records of a pair and reset its hit counter.

        Returns:
            Number of deleted records.
        """
        return await self._run(self._delete, domain, qtype)

    # Hit counters

    def _increment_hits(self, domain: str, qtype: str) -> None:
        stmt = self._insert(metrics_table).values(domain=domain, qtype=qtype, hits=1)
        stmt = stmt.on_conflict_do_update(
            index_elements=["domain", "qtype"],
            set_={"hits": metrics_table.c.hits + 1},
        )
        with self.engine.begin() as conn:
            conn.execute(stmt)

    async def increment_hits(self, domain: str, qtype: str) -> None:
        """Count one resolution of (domain, qtype), creating the counter on first use."""
        await self._run(self._increment_hits, domain, qtype)

    def _read_hits(self, domain: str, qtype: str) -> int | None:
        query = select(metrics_table.c.hits).where(
            metrics_table.c.domain == domain, metrics_table.c.qtype == qtype
        )
        with self.engine.connect() as conn:
            return conn.execute(query).scalar_one_or_none()

    async def read_hits(self, domain: str, qtype: str) -> int | None:
        """Return the hit counter for a pair.

        Returns:
            The counter value, or None if the pair has never been counted.

        Raises:
            StoreError: If the store cannot be read.
        """
        return await self._run(self._read_hits, domain, qtype)
