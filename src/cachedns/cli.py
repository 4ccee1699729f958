"""CLI for the DNS server."""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Sequence

from . import admin
from .cache import CacheError
from .config import LOG_LEVELS, Config
from .records import SUPPORTED_QTYPES, WILDCARD_QTYPE, Record, normalize_domain
from .server import Services, configure_logging, serve
from .store import StoreError

logger = logging.getLogger(__name__)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        argparse.Namespace: Parsed CLI options:
            - config (str | None): Path to YAML config file.
            - log_level (str | None): Logging level overriding the config.
            - command (str): Subcommand name, plus its positional arguments.
    """
    parser = argparse.ArgumentParser(
        prog="cachedns",
        description="DNS server with Postgres records and a Redis cache",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--config", default=None, help="Path to YAML config")
    parser.add_argument("--log-level", default=None, choices=LOG_LEVELS, help="Log level")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("serve", help="Run the DNS daemon (UDP and TCP)")

    add = sub.add_parser("add-record", help="Add or update a DNS record")
    add.add_argument("domain")
    add.add_argument("type", type=str.upper, choices=SUPPORTED_QTYPES)
    add.add_argument("value")
    add.add_argument("ttl", nargs="?", type=int, default=300)

    qtypes = SUPPORTED_QTYPES + (WILDCARD_QTYPE,)
    for name, help_text in (
        ("cache-record", "Pre-warm the cache for a domain and type"),
        ("evict", "Remove a domain and type from the cache"),
        ("delete-record", "Delete every record of a domain and type"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("domain")
        cmd.add_argument("type", type=str.upper, choices=qtypes)

    sub.add_parser("list-records", help="Print every stored record")
    return parser.parse_args(argv)


async def _run_admin(args: argparse.Namespace, config: Config) -> None:
    services = Services.from_config(config)
    try:
        await asyncio.to_thread(services.store.ensure_tables)
        if args.command == "add-record":
            rec = Record.create(args.domain, args.type, args.value, args.ttl)
            await admin.add_record(services.store, services.cache, rec)
        elif args.command == "cache-record":
            domain = normalize_domain(args.domain)
            await admin.warm_cache(services.store, services.cache, domain, args.type)
        elif args.command == "evict":
            domain = normalize_domain(args.domain)
            await admin.evict_cache(services.cache, domain, args.type)
        elif args.command == "delete-record":
            domain = normalize_domain(args.domain)
            await admin.delete_records(services.store, services.cache, domain, args.type)
        elif args.command == "list-records":
            for rec in await admin.list_records(services.store):
                print(f"{rec.domain}\t{rec.ttl}\t{rec.qtype}\t{rec.value}")
    finally:
        await services.close()


def main(argv: Sequence[str] | None = None) -> int:
    """Run the CLI entry point.

    Returns:
        int: Process exit status.
    """
    args = parse_args(argv)
    try:
        config = Config(args.config)
    except (OSError, ValueError) as exc:
        configure_logging(args.log_level or "INFO")
        logger.error("failed to load configuration: %s", exc)
        return 1
    configure_logging(args.log_level or config.log_level)

    try:
        if args.command == "serve":
            asyncio.run(serve(config))
        else:
            asyncio.run(_run_admin(args, config))
    except (KeyboardInterrupt, SystemExit):
        pass
    except (StoreError, CacheError, LookupError, ValueError, OSError) as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
