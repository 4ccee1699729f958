"""Server entry point and lifecycle management."""
from __future__ import annotations

import asyncio
import logging
import signal
import socket
from dataclasses import dataclass

from .cache import RecordCache
from .config import Config
from .promotion import PromotionPolicy, Promoter
from .protocol import DNSUDPProtocol, handle_tcp_client
from .resolver import Resolver
from .store import RecordStore

logger = logging.getLogger(__name__)


def configure_logging(log_level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@dataclass(slots=True)
class Services:
    """Store and cache clients shared by every resolution.

    Attributes:
        store: Persistent record store.
        cache: Record cache.
        promoter: Background promotion executor.
        resolver: Query resolver wired to the above.
    """

    store: RecordStore
    cache: RecordCache
    promoter: Promoter
    resolver: Resolver

    @classmethod
    def from_config(cls, config: Config) -> "Services":
        store = RecordStore.from_url(config.database_url)
        cache = RecordCache.from_url(
            config.redis_url, namespace=config.cache_namespace, ttl=config.cache_ttl
        )
        return cls.build(store, cache, config)

    @classmethod
    def build(cls, store: RecordStore, cache: RecordCache, config: Config) -> "Services":
        policy = PromotionPolicy(store, cache, min_hits=config.min_hits_for_cache)
        promoter = Promoter(policy, max_pending=config.max_pending_promotions)
        resolver = Resolver(store, cache, promoter, single_flight=config.single_flight)
        return cls(store=store, cache=cache, promoter=promoter, resolver=resolver)

    async def close(self) -> None:
        self.promoter.close()
        await self.cache.close()
        self.store.dispose()


async def serve(config: Config, services: Services | None = None, stop: asyncio.Event | None = None) -> None:
    """Run the DNS server on UDP and TCP until ``stop`` is set.

    Creates the schema, loads seed records, checks the cache, binds both
    transports on the configured address and serves until SIGINT/SIGTERM
    (or ``stop``). On the way out no new promotions are accepted and
    in-flight resolutions are allowed to finish.

    Args:
        config: Runtime settings.
        services: Pre-built clients; built from ``config`` when omitted.
        stop: Event that ends the server when set.

    Raises:
        OSError: If a listening socket cannot be bound.
        StoreError: If the schema or seed records cannot be written.
        CacheError: If the cache server is unreachable.
    """
    if services is None:
        services = Services.from_config(config)
    if stop is None:
        stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    handled: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
            handled.append(sig)
        except (NotImplementedError, RuntimeError):
            pass

    try:
        await asyncio.to_thread(services.store.ensure_tables)
        for rec in config.records:
            await services.store.upsert(rec)
        if config.records:
            logger.info("loaded %d seed records", len(config.records))
        await services.cache.ping()

        family = socket.AF_INET6 if ":" in config.host else socket.AF_INET
        transport, protocol = await loop.create_datagram_endpoint(
            lambda: DNSUDPProtocol(services.resolver),
            local_addr=(config.host, config.port),
            family=family,
        )
        # Port 0 picks an ephemeral UDP port; TCP follows it.
        port = transport.get_extra_info("sockname")[1]
        try:
            tcp_server = await asyncio.start_server(
                lambda r, w: handle_tcp_client(r, w, services.resolver),
                config.host,
                port,
                family=family,
            )
        except OSError:
            transport.close()
            raise
        logger.info("DNS server listening on %s:%d (udp, tcp)", config.host, port)

        try:
            await stop.wait()
        except asyncio.CancelledError:
            logger.info("server task cancelled")
        finally:
            logger.info("shutting down DNS server")
            services.promoter.close()
            tcp_server.close()
            transport.close()
            if protocol.tasks:
                await asyncio.wait(set(protocol.tasks))
            await tcp_server.wait_closed()
            if config.shutdown_grace > 0:
                await services.promoter.join(timeout=config.shutdown_grace)
    finally:
        for sig in handled:
            loop.remove_signal_handler(sig)
        await services.close()
