"""Single-statement and transactional execution against the active pool."""

from __future__ import annotations

import time
from typing import Any, Iterable, Sequence

import structlog

from cattle_tracking.db.pool import require_pool
from cattle_tracking.infra.db.connection_context import acquire_connection
from cattle_tracking.infra.db_errors import is_retryable_error, map_database_error
from cattle_tracking.infra.types.db import QueryResult, Statement

LOGGER = structlog.get_logger(__name__)

StatementLike = Statement | tuple[str, Sequence[Any] | None]


def _as_statement(item: StatementLike) -> Statement:
    if isinstance(item, Statement):
        return item
    text, params = item
    return Statement.of(text, params)


def _log_failure(event: str, exc: BaseException, **fields: Any) -> None:
    mapped = map_database_error(exc)
    LOGGER.error(
        event,
        error=str(exc),
        error_type=type(exc).__name__,
        retryable=is_retryable_error(mapped),
        context=mapped.log_safe_context(),
        **fields,
    )


async def execute_query(sql: str, params: Sequence[Any] | None = None) -> QueryResult:
    """Run one parameterized statement on a borrowed connection.

    Database errors are logged and re-raised unchanged.
    """
    backend = require_pool()
    args = list(params or ())
    async with acquire_connection(backend) as conn:
        started = time.perf_counter()
        try:
            result = await conn.query(sql, args)
        except Exception as exc:
            _log_failure("db.query.failed", exc, sql=sql, params=args)
            raise
        LOGGER.debug(
            "db.query.executed",
            sql=sql,
            duration_ms=round((time.perf_counter() - started) * 1000, 3),
            row_count=result.row_count,
        )
        return result


async def execute_statement(statement: Statement) -> QueryResult:
    return await execute_query(statement.text, statement.params)


async def execute_transaction(statements: Iterable[StatementLike]) -> list[QueryResult]:
    """Run ``statements`` in order inside BEGIN/COMMIT on a single connection.

    On the first failure the transaction is rolled back and that failure is
    re-raised; a failing ROLLBACK is logged but never replaces it.
    """
    backend = require_pool()
    batch = [_as_statement(item) for item in statements]
    async with acquire_connection(backend) as conn:
        started = time.perf_counter()
        results: list[QueryResult] = []
        try:
            await conn.query("BEGIN")
            for statement in batch:
                results.append(await conn.query(statement.text, list(statement.params)))
            await conn.query("COMMIT")
        except BaseException as exc:
            # Cancellation included: the ROLLBACK is issued before it propagates.
            try:
                await conn.query("ROLLBACK")
            except Exception as rollback_exc:
                LOGGER.error(
                    "db.transaction.rollback_failed",
                    error=str(rollback_exc),
                    original_error=str(exc),
                )
            _log_failure(
                "db.transaction.rolled_back",
                exc,
                statements=len(batch),
                completed=len(results),
            )
            raise
        LOGGER.info(
            "db.transaction.committed",
            statements=len(batch),
            duration_ms=round((time.perf_counter() - started) * 1000, 3),
        )
        return results


__all__ = ["execute_query", "execute_statement", "execute_transaction"]
