"""Cache-first query resolution."""
from __future__ import annotations

import asyncio
import logging

from dnslib import QTYPE, RCODE, DNSHeader, DNSRecord
from dnslib.dns import DNSError
from dnslib.label import DNSLabelError

from .answers import synthesize
from .cache import RecordCache
from .promotion import Promoter
from .records import WILDCARD_QTYPE, Record, normalize_domain
from .store import RecordStore, StoreError

logger = logging.getLogger(__name__)


class Resolver:
    """Answers queries from the cache, falling back to the record store.

    Args:
        store: Authoritative record store.
        cache: Volatile record cache consulted first.
        promoter: Background executor notified after every answered query.
        single_flight: Share one store lookup between concurrent cache
            misses for the same (domain, qtype).
    """

    def __init__(
        self,
        store: RecordStore,
        cache: RecordCache,
        promoter: Promoter,
        single_flight: bool = False,
    ) -> None:
        self.store = store
        self.cache = cache
        self.promoter = promoter
        self.single_flight = single_flight
        self._inflight: dict[tuple[str, str], asyncio.Future[list[Record]]] = {}

    @staticmethod
    def _reply(request: DNSRecord, rcode: int = RCODE.NOERROR) -> DNSRecord:
        header = DNSHeader(
            id=request.header.id,
            qr=1,
            aa=1,
            ra=0,
            rd=request.header.rd,
            rcode=rcode,
        )
        return DNSRecord(header, questions=list(request.questions))

    async def resolve(self, request: DNSRecord) -> DNSRecord:
        """Resolve a parsed query into a response message.

        Args:
            request: Parsed DNS query.

        Returns:
            The response. Its rcode is FORMERR for a query without a
            question, SERVFAIL if the store failed, NXDOMAIN if the store
            has no rows for the name at all and NOERROR otherwise, possibly
            with an empty answer section.
        """
        if not request.questions:
            logger.debug("query %d has no question", request.header.id)
            return self._reply(request, RCODE.FORMERR)

        question = request.questions[0]
        domain = normalize_domain(str(question.qname))
        qtype = QTYPE.get(question.qtype)

        records = await self.cache.get_records(domain, qtype)
        if records is not None:
            logger.debug("cache hit: %s %s", domain, qtype)
            reply = self._reply(request)
            for rr in synthesize(records, qtype):
                reply.add_answer(rr)
            self.promoter.submit(domain, qtype, served_from_cache=True)
            return reply

        try:
            records = await self._fetch(domain, qtype)
            if not records and qtype != WILDCARD_QTYPE:
                # NODATA: the name exists with other types only
                name_exists = bool(await self._fetch(domain, WILDCARD_QTYPE))
            else:
                name_exists = bool(records)
        except StoreError as exc:
            logger.error("db fetch error for %s %s: %s", qtype, domain, exc)
            return self._reply(request, RCODE.SERVFAIL)

        if not records:
            logger.debug("no %s records for domain %s", qtype, domain)
            if not name_exists:
                return self._reply(request, RCODE.NXDOMAIN)
            reply = self._reply(request)
            # counted like any store-served answer; the empty refetch caches nothing
            self.promoter.submit(domain, qtype, served_from_cache=False)
            return reply

        logger.debug("serving record from db: %s %s", qtype, domain)
        reply = self._reply(request)
        for rr in synthesize(records, qtype):
            reply.add_answer(rr)
        self.promoter.submit(domain, qtype, served_from_cache=False)
        return reply

    async def _fetch(self, domain: str, qtype: str) -> list[Record]:
        if not self.single_flight:
            return await self.store.lookup(domain, qtype)

        key = (domain, qtype)
        inflight = self._inflight.get(key)
        if inflight is not None:
            return await asyncio.shield(inflight)

        fut = asyncio.ensure_future(self.store.lookup(domain, qtype))
        self._inflight[key] = fut
        fut.add_done_callback(lambda _: self._inflight.pop(key, None))
        return await asyncio.shield(fut)

    async def resolve_bytes(self, data: bytes, max_size: int | None = None) -> bytes | None:
        """Resolve a wire-format query.

        Args:
            data: Raw query message.
            max_size: Largest response the transport can carry; a bigger
                response is replaced by SERVFAIL.

        Returns:
            The packed response, or None if ``data`` is not a DNS message.
        """
        try:
            request = DNSRecord.parse(data)
        except DNSError:
            logger.debug("failed to parse request (%d bytes)", len(data))
            return None
        reply = await self.resolve(request)
        try:
            packed = reply.pack()
        except (DNSError, DNSLabelError) as exc:
            logger.error("failed to encode response for %s: %s", request.q.qname, exc)
            return self._reply(request, RCODE.SERVFAIL).pack()
        if max_size is not None and len(packed) > max_size:
            logger.error(
                "response for %s is %d bytes, over the %d byte limit",
                request.q.qname,
                len(packed),
                max_size,
            )
            return self._reply(request, RCODE.SERVFAIL).pack()
        return packed
