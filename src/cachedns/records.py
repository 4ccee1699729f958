"""Data structures representing DNS records and their cache encoding."""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Iterable

SUPPORTED_QTYPES: tuple[str, ...] = ("A", "AAAA", "CNAME", "TXT")
WILDCARD_QTYPE = "ANY"


def normalize_domain(name: str) -> str:
    """Return ``name`` lowercased and without the trailing root label."""
    return name.strip().rstrip(".").lower()


def fqdn(name: str) -> str:
    """Return ``name`` with exactly one trailing dot."""
    return name.rstrip(".") + "."


@dataclass(slots=True)
class Record:
    """Single DNS record entry.

    Attributes:
        domain (str): Owner name without the trailing dot.
        qtype (str): DNS record type (A, AAAA, CNAME, TXT).
        ttl (int): Time to live, in seconds.
        value (str): Record value.
    """

    domain: str
    qtype: str
    ttl: int
    value: str

    @classmethod
    def create(cls, domain: str, qtype: str, value: str, ttl: int = 300) -> "Record":
        """Build a record with normalized domain and type.

        Raises:
            ValueError: If the TTL is negative.
        """
        ttl = int(ttl)
        if ttl < 0:
            raise ValueError(f"ttl must be non-negative (got {ttl})")
        return cls(
            domain=normalize_domain(domain),
            qtype=qtype.strip().upper(),
            ttl=ttl,
            value=value.strip(),
        )


def encode_records(records: Iterable[Record]) -> bytes:
    """Serialize a record list into a cache blob."""
    return json.dumps([asdict(rec) for rec in records]).encode("utf-8")


def decode_records(payload: bytes | str) -> list[Record]:
    """Parse a cache blob produced by `encode_records`.

    Raises:
        ValueError: If the payload is not a JSON array of record objects.
    """
    try:
        data = json.loads(payload)
    except (TypeError, UnicodeDecodeError) as exc:
        raise ValueError(f"undecodable cache payload: {exc}") from exc

    if not isinstance(data, list):
        raise ValueError("cache payload must be a list")

    out: list[Record] = []
    for item in data:
        if not isinstance(item, dict):
            raise ValueError(f"cache entry must be a mapping, got {type(item).__name__}")
        try:
            out.append(
                Record(
                    domain=str(item["domain"]),
                    qtype=str(item["qtype"]),
                    ttl=int(item["ttl"]),
                    value=str(item["value"]),
                )
            )
        except (KeyError, TypeError) as exc:
            raise ValueError(f"malformed cache entry: {exc}") from exc
    return out
