"""Asyncio UDP and TCP transports for the DNS server."""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from .resolver import Resolver

logger = logging.getLogger(__name__)

TCP_IDLE_TIMEOUT = 15.0
TCP_MAX_MESSAGE = 0xFFFF


class DNSUDPProtocol(asyncio.DatagramProtocol):
    """DNS handler over UDP.

    Each datagram is resolved in its own task so a slow store lookup never
    holds up other clients.

    Attributes:
        transport: Active UDP transport or None until connected.
        resolver: Shared resolver answering the queries.
        tasks: Resolutions still in flight.
    """

    def __init__(self, resolver: Resolver) -> None:
        """Initialize the protocol.

        Args:
            resolver: Resolver backing responses.
        """
        self.transport: asyncio.DatagramTransport | None = None
        self.resolver = resolver
        self.tasks: set[asyncio.Task[None]] = set()

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        """Called by asyncio when the UDP socket is ready.

        Args:
            transport: Created datagram transport.
        """
        self.transport = transport  # type: ignore[assignment]
        sock = self.transport.get_extra_info("socket")
        logger.info("UDP listening on %s", sock.getsockname() if sock else "?")

    def datagram_received(self, data: bytes, addr: Any) -> None:
        """Schedule resolution of a single DNS datagram.

        Args:
            data: Raw DNS message bytes.
            addr: Client address tuple as provided by asyncio.
        """
        logger.debug("received %d bytes from %s", len(data), addr)
        task = asyncio.get_running_loop().create_task(self._answer(data, addr))
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)

    async def _answer(self, data: bytes, addr: Any) -> None:
        response = await self.resolver.resolve_bytes(data)
        if response is None:
            logger.debug("dropping unparsable datagram from %s", addr)
            return
        if self.transport is None or self.transport.is_closing():
            return
        try:
            self.transport.sendto(response, addr)
        except (OSError, RuntimeError) as exc:
            logger.warning("failed to send response to %s: %s", addr, exc)


async def handle_tcp_client(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    resolver: Resolver,
    idle_timeout: float = TCP_IDLE_TIMEOUT,
) -> None:
    """Serve length-prefixed DNS messages on one TCP connection.

    Queries are answered in order until the client closes the connection,
    sends something that is not a DNS message, or stays idle for
    ``idle_timeout`` seconds.

    Args:
        reader: Connection reader.
        writer: Connection writer.
        resolver: Resolver backing responses.
        idle_timeout: Seconds to wait for the next message.
    """
    peer = writer.get_extra_info("peername")
    try:
        while True:
            try:
                hdr = await asyncio.wait_for(reader.readexactly(2), timeout=idle_timeout)
                length = int.from_bytes(hdr, "big")
                query = await asyncio.wait_for(reader.readexactly(length), timeout=idle_timeout)
            except asyncio.IncompleteReadError:
                break
            except asyncio.TimeoutError:
                logger.debug("closing idle TCP connection from %s", peer)
                break

            response = await resolver.resolve_bytes(query, max_size=TCP_MAX_MESSAGE)
            if response is None:
                logger.debug("closing TCP connection from %s after unparsable message", peer)
                break
            writer.write(len(response).to_bytes(2, "big") + response)
            await writer.drain()
    except (ConnectionError, OSError) as exc:
        logger.debug("TCP connection from %s failed: %s", peer, exc)
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, OSError):
            pass
