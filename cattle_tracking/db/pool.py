from __future__ import annotations

import asyncio
from typing import Any
from weakref import WeakKeyDictionary

import structlog
from dotenv import load_dotenv

from cattle_tracking.config.db_settings import PoolConfig
from cattle_tracking.db.backends import create_backend
from cattle_tracking.infra.db.connection_context import acquire_connection
from cattle_tracking.infra.errors import PoolNotInitializedError
from cattle_tracking.infra.types.db import BackendProtocol

LOGGER = structlog.get_logger(__name__)

_POOL_LOCKS: "WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock]" = WeakKeyDictionary()
_active_backend: BackendProtocol | None = None
_active_config: PoolConfig | None = None


def _resolve_config() -> PoolConfig:
    load_dotenv(override=False)
    return PoolConfig.model_validate({})


async def initialize_database(config: PoolConfig | None = None) -> BackendProtocol:
    """Build the backend for ``config`` and make it the active pool.

    A pool that is already active is replaced, not closed; call ``close_pool()``
    first to drain it. Never raises for an unreachable server: the backend then
    degrades to the mock variant.
    """
    global _active_backend, _active_config
    pool_config = config if config is not None else _resolve_config()

    async with _get_pool_lock():
        backend = await create_backend(pool_config)
        if _active_backend is not None:
            LOGGER.info("db.pool.replaced", previous=_active_backend.kind, current=backend.kind)
        _active_backend = backend
        _active_config = pool_config

    LOGGER.info(
        "db.pool.initialised",
        backend=backend.kind,
        host=pool_config.host,
        database=pool_config.database,
        max_size=pool_config.max_size,
    )
    return backend


def get_pool() -> BackendProtocol | None:
    """Return the active backend, or None before initialisation."""
    return _active_backend


def require_pool() -> BackendProtocol:
    """Return the active backend or raise ``PoolNotInitializedError``."""
    if _active_backend is None:
        raise PoolNotInitializedError()
    return _active_backend


async def test_connection() -> bool:
    """Run a liveness query; any failure is reported as False."""
    try:
        backend = require_pool()
        async with acquire_connection(backend) as conn:
            await conn.query("SELECT NOW()")
    except Exception as exc:
        LOGGER.error("db.pool.connection_test_failed", error=str(exc), error_type=type(exc).__name__)
        return False
    LOGGER.info("db.pool.connection_ok", backend=backend.kind)
    return True


async def close_pool() -> None:
    """Close the active pool if one exists; close failures are logged only."""
    global _active_backend
    async with _get_pool_lock():
        backend, _active_backend = _active_backend, None

    if backend is None:
        return
    try:
        await backend.close()
    except Exception as exc:
        LOGGER.error("db.pool.close_failed", backend=backend.kind, error=str(exc))
        return
    LOGGER.info("db.pool.closed", backend=backend.kind)


def get_database_config() -> PoolConfig:
    """Return the configuration of the active pool, or resolve it from the environment."""
    if _active_config is not None:
        return _active_config
    return _resolve_config()


def get_connection_info() -> dict[str, Any]:
    """Describe the current connection state for health reporting."""
    info = get_database_config().describe()
    info["initialised"] = _active_backend is not None
    info["active_backend"] = _active_backend.kind if _active_backend is not None else None
    return info


def _get_pool_lock(loop: asyncio.AbstractEventLoop | None = None) -> asyncio.Lock:
    if loop is None:
        loop = asyncio.get_running_loop()
    lock = _POOL_LOCKS.get(loop)
    if lock is None:
        lock = asyncio.Lock()
        _POOL_LOCKS[loop] = lock
    return lock


__all__ = [
    "close_pool",
    "get_connection_info",
    "get_database_config",
    "get_pool",
    "initialize_database",
    "require_pool",
    "test_connection",
]
