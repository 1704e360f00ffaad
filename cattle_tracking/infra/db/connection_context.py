"""Scoped connection acquisition.

Every statement the data-access layer runs goes through this context manager,
so a borrowed connection is handed back exactly once whether the block
finishes normally, raises, or returns early.
"""

from __future__ import annotations

from types import TracebackType

import structlog

from cattle_tracking.infra.types.db import BackendProtocol, ConnectionProtocol

LOGGER = structlog.get_logger(__name__)


class AcquireConnectionContext:
    """Async context manager borrowing one connection from a backend.

    Usage:
        async with AcquireConnectionContext(backend) as conn:
            await conn.query("SELECT 1")
    """

    def __init__(self, backend: BackendProtocol) -> None:
        self._backend = backend
        self._conn: ConnectionProtocol | None = None

    @property
    def connection(self) -> ConnectionProtocol | None:
        return self._conn

    async def __aenter__(self) -> ConnectionProtocol:
        if self._conn is not None:
            raise RuntimeError("AcquireConnectionContext is not reentrant")
        self._conn = await self._backend.connect()
        return self._conn

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        conn, self._conn = self._conn, None
        if conn is None:
            return None
        try:
            await conn.release()
        except Exception:
            # A failed release must not mask the statement's own outcome.
            LOGGER.warning(
                "db.connection.release_failed",
                backend=self._backend.kind,
                exc_info=True,
            )
        return None


def acquire_connection(backend: BackendProtocol) -> AcquireConnectionContext:
    """Convenience wrapper: ``async with acquire_connection(backend) as conn``."""
    return AcquireConnectionContext(backend)
