"""
Brief: UDP and TCP transport tests against loopback sockets.

Inputs:
  - None

Outputs:
  - None
"""

import asyncio
import struct

import pytest
from dnslib import RCODE, DNSRecord

from cachedns.protocol import DNSUDPProtocol, handle_tcp_client
from cachedns.records import Record


class _ClientProtocol(asyncio.DatagramProtocol):
    def __init__(self):
        self.replies = asyncio.Queue()

    def datagram_received(self, data, addr):
        self.replies.put_nowait(data)


@pytest.mark.asyncio
async def test_udp_query_round_trip(store, make_resolver):
    await store.upsert(Record("example.com", "A", 300, "203.0.113.5"))
    resolver = make_resolver()
    loop = asyncio.get_running_loop()

    server, _ = await loop.create_datagram_endpoint(
        lambda: DNSUDPProtocol(resolver), local_addr=("127.0.0.1", 0)
    )
    port = server.get_extra_info("sockname")[1]
    client, client_proto = await loop.create_datagram_endpoint(
        _ClientProtocol, remote_addr=("127.0.0.1", port)
    )
    try:
        request = DNSRecord.question("example.com", "A")
        client.sendto(request.pack())
        reply = DNSRecord.parse(await asyncio.wait_for(client_proto.replies.get(), 2))

        assert reply.header.id == request.header.id
        assert [str(rr.rdata) for rr in reply.rr] == ["203.0.113.5"]

        # garbage is dropped, the server keeps answering
        client.sendto(b"\x00")
        client.sendto(DNSRecord.question("missing.example", "A").pack())
        reply = DNSRecord.parse(await asyncio.wait_for(client_proto.replies.get(), 2))
        assert reply.header.rcode == RCODE.NXDOMAIN
    finally:
        client.close()
        server.close()
        await resolver.promoter.join()


async def _tcp_exchange(reader, writer, query):
    wire = query.pack()
    writer.write(struct.pack("!H", len(wire)) + wire)
    await writer.drain()
    (length,) = struct.unpack("!H", await reader.readexactly(2))
    return DNSRecord.parse(await reader.readexactly(length))


@pytest.mark.asyncio
async def test_tcp_serves_several_queries_per_connection(store, make_resolver):
    await store.upsert(Record("example.com", "A", 300, "203.0.113.5"))
    await store.upsert(Record("example.com", "TXT", 60, "hello"))
    resolver = make_resolver()

    server = await asyncio.start_server(
        lambda r, w: handle_tcp_client(r, w, resolver), "127.0.0.1", 0
    )
    port = server.sockets[0].getsockname()[1]
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    try:
        a = await _tcp_exchange(reader, writer, DNSRecord.question("example.com", "A"))
        txt = await _tcp_exchange(reader, writer, DNSRecord.question("example.com", "TXT"))

        assert [str(rr.rdata) for rr in a.rr] == ["203.0.113.5"]
        assert txt.rr[0].rdata.data == [b"hello"]
    finally:
        writer.close()
        await writer.wait_closed()
        server.close()
        await server.wait_closed()
        await resolver.promoter.join()


@pytest.mark.asyncio
async def test_tcp_closes_after_unparsable_message(make_resolver):
    resolver = make_resolver()

    server = await asyncio.start_server(
        lambda r, w: handle_tcp_client(r, w, resolver), "127.0.0.1", 0
    )
    port = server.sockets[0].getsockname()[1]
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    try:
        writer.write(b"\x00\x01\xff")
        await writer.drain()
        assert await asyncio.wait_for(reader.read(), 2) == b""
    finally:
        writer.close()
        await writer.wait_closed()
        server.close()
        await server.wait_closed()


@pytest.mark.asyncio
async def test_tcp_idle_connection_is_closed(make_resolver):
    resolver = make_resolver()

    server = await asyncio.start_server(
        lambda r, w: handle_tcp_client(r, w, resolver, idle_timeout=0.05), "127.0.0.1", 0
    )
    port = server.sockets[0].getsockname()[1]
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    try:
        assert await asyncio.wait_for(reader.read(), 2) == b""
    finally:
        writer.close()
        await writer.wait_closed()
        server.close()
        await server.wait_closed()


@pytest.mark.asyncio
async def test_tcp_reply_over_frame_limit_is_servfail(store, make_resolver):
    for i in range(300):
        await store.upsert(Record("example.com", "TXT", 60, f"{i:03d}" + "x" * 240))
    resolver = make_resolver()

    server = await asyncio.start_server(
        lambda r, w: handle_tcp_client(r, w, resolver), "127.0.0.1", 0
    )
    port = server.sockets[0].getsockname()[1]
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    try:
        reply = await _tcp_exchange(reader, writer, DNSRecord.question("example.com", "TXT"))
        assert reply.header.rcode == RCODE.SERVFAIL
        assert reply.rr == []
    finally:
        writer.close()
        await writer.wait_closed()
        server.close()
        await server.wait_closed()
        await resolver.promoter.join()
