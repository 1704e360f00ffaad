"""Database backends: a real asyncpg pool and a no-storage mock.

Both variants expose ``connect()``, ``query()``, ``close()`` and ``on_error()``;
connections expose ``query()`` and ``release()``. ``create_backend`` picks the
variant from configuration and falls back to the mock whenever the real pool
cannot be built, so callers always get a usable backend.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Sequence, cast

import asyncpg
import structlog

from cattle_tracking.config.db_settings import PoolConfig
from cattle_tracking.infra.db.connection_context import acquire_connection
from cattle_tracking.infra.types.db import (
    BackendKind,
    BackendProtocol,
    ErrorHandler,
    QueryResult,
)

LOGGER = structlog.get_logger(__name__)

if TYPE_CHECKING:
    from asyncpg.connection import Connection as _AsyncpgConnection
else:  # pragma: no cover - runtime branch
    from asyncpg import connection as _asyncpg_connection

    _AsyncpgConnection = _asyncpg_connection.Connection


class _TrackedConnection(_AsyncpgConnection):  # type: ignore[misc]
    """asyncpg connection that remembers whether this side closed it."""

    _closed_locally = False

    async def close(self, *, timeout: float | None = None) -> None:  # noqa: ASYNC109
        self._closed_locally = True
        _super: Any = super()
        await _super.close(timeout=timeout)

    def terminate(self) -> None:
        self._closed_locally = True
        _super: Any = super()
        _super.terminate()


def _command_of(text: str) -> str:
    parts = text.split(None, 1)
    return parts[0].upper() if parts else ""


def parse_row_count(status: str | None) -> int | None:
    """Extract the affected-row count from a command tag such as ``UPDATE 3``.

    ``INSERT 0 1`` yields 1; tags without a trailing count (``BEGIN``) yield None.
    """
    if not status:
        return None
    last = status.rsplit(" ", 1)[-1]
    if last.isdigit() and " " in status:
        return int(last)
    return None


class PostgresConnection:
    """A connection borrowed from an asyncpg pool."""

    def __init__(self, pool: asyncpg.Pool, raw: asyncpg.Connection) -> None:
        self._pool = pool
        self._raw = raw
        self._released = False

    async def query(self, text: str, params: Sequence[Any] | None = None) -> QueryResult:
        args = tuple(params or ())
        _raw: Any = self._raw
        if not args and _command_of(text) in ("BEGIN", "COMMIT", "ROLLBACK"):
            status = cast(str, await _raw.execute(text))
            return QueryResult(rows=[], row_count=None, command=_command_of(status))
        statement = await _raw.prepare(text)
        records = await statement.fetch(*args)
        status = statement.get_statusmsg()
        return QueryResult(
            rows=[dict(record) for record in records],
            row_count=parse_row_count(status),
            command=_command_of(status or text),
        )

    async def release(self) -> None:
        if self._released:
            return
        self._released = True
        await self._pool.release(self._raw)


class PostgresBackend:
    """Backend wrapping an ``asyncpg.Pool``."""

    kind: BackendKind = "postgres"

    def __init__(
        self, pool: asyncpg.Pool, *, error_handlers: list[ErrorHandler] | None = None
    ) -> None:
        self._pool = pool
        # Shared with the pool's connection init hook, which reports dropped connections.
        self._error_handlers: list[ErrorHandler] = (
            error_handlers if error_handlers is not None else []
        )

    @classmethod
    async def create(cls, config: PoolConfig) -> "PostgresBackend":
        """Open an asyncpg pool for ``config``; raises if the server is unreachable."""
        error_handlers: list[ErrorHandler] = []

        async def _init(connection: asyncpg.Connection) -> None:
            await _configure_connection(connection)
            _conn_any = cast(Any, connection)
            # Bound to the raw connection: the listener argument may be a
            # detached pool proxy.
            _conn_any.add_termination_listener(
                lambda _conn: _report_termination(connection, error_handlers)
            )

        connect_kwargs: dict[str, Any] = {
            "min_size": config.min_size,
            "max_size": config.max_size,
            "max_inactive_connection_lifetime": config.idle_timeout,
            "timeout": config.connect_timeout,
            "init": _init,
            "connection_class": _TrackedConnection,
        }
        if config.ssl:
            connect_kwargs["ssl"] = "require"
        if config.dsn is not None:
            connect_kwargs["dsn"] = config.dsn
        else:
            connect_kwargs.update(
                host=config.host,
                port=config.port,
                database=config.database,
                user=config.user,
                password=config.password,
            )

        _apg = cast(Any, asyncpg)
        pool = await _apg.create_pool(**connect_kwargs)
        return cls(pool, error_handlers=error_handlers)

    async def connect(self) -> PostgresConnection:
        raw = await self._pool.acquire()
        return PostgresConnection(self._pool, raw)

    async def query(self, text: str, params: Sequence[Any] | None = None) -> QueryResult:
        async with acquire_connection(self) as conn:
            return await conn.query(text, params)

    async def close(self) -> None:
        await self._pool.close()

    def on_error(self, handler: ErrorHandler) -> None:
        self._error_handlers.append(handler)


def _report_termination(connection: Any, handlers: list[ErrorHandler]) -> None:
    """Forward a dropped connection to the error handlers.

    asyncpg runs termination listeners on every close, including ``close_pool()``
    and idle reaping. Those go through ``close()`` / ``terminate()`` and are
    skipped here; only connections lost from the server side are reported.
    """
    if getattr(connection, "_closed_locally", False):
        return
    _notify_error_handlers(
        handlers,
        asyncpg.ConnectionDoesNotExistError("connection was closed unexpectedly"),
    )


def _notify_error_handlers(handlers: list[ErrorHandler], error: BaseException) -> None:
    for handler in list(handlers):
        try:
            handler(error)
        except Exception:
            LOGGER.warning("db.pool.error_handler_failed", exc_info=True)


class MockConnection:
    """Connection stand-in: every statement succeeds with no rows."""

    async def query(self, text: str, params: Sequence[Any] | None = None) -> QueryResult:
        LOGGER.debug("db.mock.query", sql=text, params=list(params or ()))
        return QueryResult(rows=[], row_count=0, command=_command_of(text))

    async def release(self) -> None:
        LOGGER.debug("db.mock.released")


class MockBackend:
    """No-storage backend used when PostgreSQL is deselected or unreachable."""

    kind: BackendKind = "mock"

    def __init__(self) -> None:
        self._error_handlers: list[ErrorHandler] = []

    async def connect(self) -> MockConnection:
        return MockConnection()

    async def query(self, text: str, params: Sequence[Any] | None = None) -> QueryResult:
        async with acquire_connection(self) as conn:
            return await conn.query(text, params)

    async def close(self) -> None:
        LOGGER.info("db.mock.pool_closed")

    def on_error(self, handler: ErrorHandler) -> None:
        self._error_handlers.append(handler)
        LOGGER.debug("db.mock.error_listener_registered")


def _log_pool_error(error: BaseException) -> None:
    LOGGER.error("db.pool.unexpected_error", error=str(error), error_type=type(error).__name__)


async def create_backend(config: PoolConfig) -> BackendProtocol:
    """Build the configured backend, falling back to the mock on any failure."""
    if config.backend == "mock":
        LOGGER.warning("db.pool.mock_selected")
        return MockBackend()

    try:
        backend = await PostgresBackend.create(config)
    except Exception as exc:
        LOGGER.warning(
            "db.pool.fallback_to_mock",
            error=str(exc),
            error_type=type(exc).__name__,
            host=config.host,
            port=config.port,
            database=config.database,
        )
        return MockBackend()

    backend.on_error(_log_pool_error)
    return backend


async def _configure_connection(connection: asyncpg.Connection) -> None:
    _conn_any = cast(Any, connection)
    await _conn_any.set_type_codec(
        "json",
        schema="pg_catalog",
        encoder=json.dumps,
        decoder=json.loads,
        format="text",
    )
    await _conn_any.set_type_codec(
        "jsonb",
        schema="pg_catalog",
        encoder=json.dumps,
        decoder=json.loads,
        format="text",
    )


__all__ = [
    "MockBackend",
    "MockConnection",
    "PostgresBackend",
    "PostgresConnection",
    "create_backend",
    "parse_row_count",
]
