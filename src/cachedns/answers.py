"""Conversion of stored records into DNS answer resource records."""
from __future__ import annotations

import ipaddress
import logging
from typing import Iterable

from dnslib import AAAA, CNAME, QTYPE, RR, TXT, A, DNSLabel
from dnslib.dns import DNSError
from dnslib.label import DNSLabelError

from .records import WILDCARD_QTYPE, Record, fqdn

logger = logging.getLogger(__name__)

MAX_TTL = 0xFFFFFFFF
MAX_NAME_LENGTH = 253


def _clamp_ttl(ttl: int) -> int:
    return min(max(int(ttl), 0), MAX_TTL)


def _label(name: str) -> DNSLabel:
    """Return the fully-qualified label for ``name``.

    Raises:
        DNSLabelError: If the encoded name exceeds 253 octets.
    """
    label = DNSLabel(fqdn(name))
    if len(label) > MAX_NAME_LENGTH:
        raise DNSLabelError(f"domain name too long: {name!r}")
    return label


def _ipv6_packed(value: str) -> tuple[int, ...]:
    """Return the 16 address bytes of any IP literal.

    IPv4 literals are accepted and mapped to ``::ffff:a.b.c.d``.

    Raises:
        ValueError: If ``value`` is not an IP literal.
    """
    ip = ipaddress.ip_address(value)
    if ip.version == 4:
        ip = ipaddress.IPv6Address(f"::ffff:{ip}")
    return tuple(ip.packed)


def _to_rr(rec: Record) -> RR | None:
    """Build a `dnslib.RR` for one record, or None if it cannot be served.

    Args:
        rec: Stored record.

    Returns:
        The resource record, or None for invalid addresses and unsupported types.
    """
    rtype = rec.qtype.upper()
    ttl = _clamp_ttl(rec.ttl)
    try:
        label = _label(rec.domain)
        if rtype == "A":
            ipaddress.IPv4Address(rec.value)
            return RR(label, QTYPE.A, rdata=A(rec.value), ttl=ttl)
        if rtype == "AAAA":
            return RR(label, QTYPE.AAAA, rdata=AAAA(_ipv6_packed(rec.value)), ttl=ttl)
        if rtype == "CNAME":
            return RR(label, QTYPE.CNAME, rdata=CNAME(_label(rec.value)), ttl=ttl)
        if rtype == "TXT":
            return RR(label, QTYPE.TXT, rdata=TXT(rec.value), ttl=ttl)
    except (ValueError, DNSError, DNSLabelError):
        # AddressValueError is a ValueError; DNSError covers oversized TXT;
        # DNSLabelError covers names over 253 octets
        logger.debug("invalid record skipped: %s %s %s", rec.domain, rtype, rec.value)
        return None
    logger.debug("unsupported record type skipped: %s %s", rec.domain, rtype)
    return None


def synthesize(records: Iterable[Record], qtype: str) -> list[RR]:
    """Build the answer section for a query.

    A record is included when its type matches ``qtype`` case-insensitively
    or ``qtype`` is ``ANY``. Records that cannot be encoded are dropped
    individually; they never fail the whole answer.

    Args:
        records: Candidate records, usually the store or cache result.
        qtype: Requested type name (e.g. "A", "ANY").

    Returns:
        Answer RRs in record order.
    """
    wanted = qtype.upper()
    answers: list[RR] = []
    for rec in records:
        if wanted != WILDCARD_QTYPE and rec.qtype.upper() != wanted:
            continue
        rr = _to_rr(rec)
        if rr is not None:
            answers.append(rr)
    return answers
