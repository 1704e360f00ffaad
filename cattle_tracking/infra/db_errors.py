"""Classification of asyncpg / PostgreSQL failures.

The executor re-raises database errors unchanged; the helpers here only turn
an exception into a ``DatabaseError`` / ``SystemError`` whose context (SQLSTATE,
error category, table) is attached to the failure log event.
"""

from __future__ import annotations

from typing import Any, Dict

import asyncpg

from cattle_tracking.infra.errors import DatabaseError, Error, SystemError

# asyncpg does not expose PoolError in its type hints, so look it up dynamically.
PoolError: type[BaseException] = getattr(asyncpg, "PoolError", Exception)

POSTGRES_ERROR_CODES = {
    # Connection lost mid-statement
    "08000": "connection_exception",
    "08003": "connection_does_not_exist",
    "08006": "connection_failure",
    # Bound values rejected by column types (weights, coordinates, ids)
    "22003": "numeric_value_out_of_range",
    "22P02": "invalid_text_representation",
    # INSERT / UPDATE constraint violations
    "23502": "not_null_violation",
    "23503": "foreign_key_violation",
    "23505": "unique_violation",
    "23514": "check_violation",
    # Transactions
    "25P02": "in_failed_sql_transaction",
    "40001": "serialization_failure",
    "40P01": "deadlock_detected",
    "57014": "query_canceled",
    # Caller-supplied identifiers, joins and ordering
    "42601": "syntax_error",
    "42P01": "undefined_table",
    "42703": "undefined_column",
    # ST_DWithin / ST_Distance without PostGIS
    "42883": "undefined_function",
}


def map_postgres_error(error: asyncpg.PostgresError) -> DatabaseError:
    """Map a PostgreSQL error to a ``DatabaseError`` with SQLSTATE context."""
    raw_sqlstate = getattr(error, "sqlstate", None)
    sqlstate: str | None = str(raw_sqlstate) if raw_sqlstate is not None else None
    message = str(error)

    context: Dict[str, Any] = {
        "sqlstate": sqlstate,
        "error_type": (
            POSTGRES_ERROR_CODES.get(sqlstate, "unknown_postgres_error")
            if sqlstate is not None
            else "unknown_postgres_error"
        ),
        "original_message": message,
    }

    table_name = getattr(error, "table_name", None)
    if table_name:
        context["table_name"] = table_name
    schema_name = getattr(error, "schema_name", None)
    if schema_name:
        context["schema_name"] = schema_name

    if sqlstate in ("23505", "23503"):
        constraint_name = getattr(error, "constraint_name", None)
        if constraint_name:
            context["constraint_name"] = constraint_name
        detail = getattr(error, "detail", None)
        if detail:
            context["detail"] = detail
    elif sqlstate == "23502":
        column_name = getattr(error, "column_name", None)
        if column_name:
            context["column_name"] = column_name
    elif sqlstate in ("40001", "40P01"):
        context["retry_possible"] = True
    elif sqlstate == "57014":
        context["timeout"] = True
    elif sqlstate is not None and sqlstate.startswith("08"):
        context["connection_error"] = True

    return DatabaseError(message=message, context=context, cause=error)


def map_connection_pool_error(error: BaseException) -> SystemError:
    """Map asyncpg pool / interface errors to a ``SystemError``."""
    message = str(error)
    context: Dict[str, Any] = {
        "error_type": type(error).__name__,
        "original_message": message,
        "pool_error": True,
    }

    if isinstance(error, asyncpg.TooManyConnectionsError):
        context["too_many_connections"] = True
        context["retry_possible"] = True
    elif isinstance(error, asyncpg.InterfaceError):
        context["interface_error"] = True

    return SystemError(
        message=f"Connection pool error: {message}",
        context=context,
        cause=error,
    )


def map_database_error(error: BaseException) -> Error:
    """Classify any exception raised while talking to the database."""
    if isinstance(error, Error):
        return error
    if isinstance(error, asyncpg.TooManyConnectionsError):
        return map_connection_pool_error(error)
    if isinstance(error, asyncpg.PostgresError):
        return map_postgres_error(error)
    if isinstance(error, (PoolError, asyncpg.InterfaceError)):
        return map_connection_pool_error(error)
    if isinstance(error, TimeoutError):
        return SystemError(
            message=f"Database operation timed out: {error}",
            context={"timeout": True, "original_error": str(error)},
            cause=error,
        )
    return SystemError(
        message=f"Database error: {error}",
        context={"generic_db_error": True, "original_error": str(error)},
        cause=error,
    )


def is_retryable_error(error: Error) -> bool:
    """Return True if the failure might succeed when tried again."""
    if isinstance(error, DatabaseError):
        if error.context.get("sqlstate") in ("40001", "40P01", "57014"):
            return True
    if error.context.get("too_many_connections"):
        return True
    return bool(error.context.get("retry_possible"))


__all__ = [
    "POSTGRES_ERROR_CODES",
    "is_retryable_error",
    "map_connection_pool_error",
    "map_database_error",
    "map_postgres_error",
]
