from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys

import structlog

from cattle_tracking.db import pool as pool_module
from cattle_tracking.infra.logging.config import configure_logging

LOGGER = structlog.get_logger(__name__)

CRITICAL_ENV_VARS = ("DB_HOST", "DB_NAME", "DB_USER")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cattle-db",
        description="Cattle-tracking database utilities.",
    )
    parser.add_argument("--log-level", default=None, help="Log level (default: $LOG_LEVEL or INFO)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    check = subparsers.add_parser("check", help="Initialise the pool and run a liveness query")
    check.add_argument(
        "--require-postgres",
        action="store_true",
        help="Fail when the pool degraded to the mock backend",
    )
    return parser


async def _check(require_postgres: bool) -> int:
    missing = [name for name in CRITICAL_ENV_VARS if not os.getenv(name)]
    if missing:
        LOGGER.warning("cli.check.missing_env", missing=missing)

    backend = await pool_module.initialize_database()
    try:
        connected = await pool_module.test_connection()
        print(json.dumps(pool_module.get_connection_info(), indent=2, sort_keys=True))
    finally:
        await pool_module.close_pool()

    if not connected:
        return 1
    if require_postgres and backend.kind != "postgres":
        LOGGER.error("cli.check.mock_backend_active")
        return 1
    return 0


async def _amain(argv: list[str]) -> int:
    args = _build_parser().parse_args(argv)
    configure_logging(args.log_level)
    if args.command == "check":
        return await _check(bool(args.require_postgres))
    return 2  # pragma: no cover - argparse enforces a known subcommand


def main() -> None:  # pragma: no cover - console entry point
    raise SystemExit(asyncio.run(_amain(sys.argv[1:])))


if __name__ == "__main__":  # pragma: no cover
    main()
