"""Generic record access shared by every entity table.

Each operation is split into a pure ``build_*`` function returning a
:class:`Statement` and an async function that runs it, so multi-statement
flows can pass builder output straight to ``execute_transaction``.

Table and column names are interpolated into the statement text and must come
from the application's own code, never from request input. Only values are
sent as positional parameters. Tables are expected to follow the shared
conventions: ``id``, ``created_at``, ``updated_at``, ``deleted_at`` and, for
geo lookups, ``latitude`` / ``longitude``.
"""

from __future__ import annotations

import asyncio
from typing import Any, Mapping, Sequence, cast

import structlog

from cattle_tracking.common.validation import validate_coordinates
from cattle_tracking.db.executor import execute_query
from cattle_tracking.db.pool import require_pool
from cattle_tracking.infra.types.db import (
    PaginationParams,
    QueryResponse,
    QueryResult,
    Statement,
)

LOGGER = structlog.get_logger(__name__)

PAGINATION_FAILURE_MESSAGE = "Failed to fetch records"


def _placeholders(start: int, count: int) -> list[str]:
    return [f"${index}" for index in range(start, start + count)]


def _equality_clause(columns: Sequence[str], start: int) -> str:
    return " AND ".join(
        f"{column} = ${index}" for index, column in enumerate(columns, start=start)
    )


def build_insert(table: str, data: Mapping[str, Any]) -> Statement:
    if not data:
        raise ValueError("insert requires at least one column")
    columns = list(data.keys())
    sql = (
        f"INSERT INTO {table} ({', '.join(columns)}) "
        f"VALUES ({', '.join(_placeholders(1, len(columns)))}) "
        "RETURNING id"
    )
    return Statement.of(sql, list(data.values()))


def build_update(
    table: str, data: Mapping[str, Any], conditions: Mapping[str, Any]
) -> Statement:
    if not conditions:
        raise ValueError("update requires at least one condition")
    data_columns = list(data.keys())
    assignments = [
        f"{column} = ${index}" for index, column in enumerate(data_columns, start=1)
    ]
    assignments.append("updated_at = CURRENT_TIMESTAMP")
    where = _equality_clause(list(conditions.keys()), len(data_columns) + 1)
    sql = f"UPDATE {table} SET {', '.join(assignments)} WHERE {where}"
    return Statement.of(sql, [*data.values(), *conditions.values()])


def build_paginated_select(
    table: str,
    *,
    select: Sequence[str] = ("*",),
    filters: Mapping[str, Any] | None = None,
    pagination: PaginationParams | None = None,
    order_by: str = "created_at DESC",
    joins: str = "",
) -> tuple[Statement, Statement]:
    """Return the page query and the matching COUNT query."""
    filters = filters or {}
    page = pagination or PaginationParams()
    filter_columns = list(filters.keys())
    filter_values = list(filters.values())

    where = f" WHERE {_equality_clause(filter_columns, 1)}" if filter_columns else ""
    source = f"{table} {joins}".rstrip()
    limit_index = len(filter_columns) + 1

    data_sql = (
        f"SELECT {', '.join(select)} FROM {source}{where} "
        f"ORDER BY {order_by} LIMIT ${limit_index} OFFSET ${limit_index + 1}"
    )
    count_sql = f"SELECT COUNT(*) AS total FROM {source}{where}"
    return (
        Statement.of(data_sql, [*filter_values, page.limit, page.offset]),
        Statement.of(count_sql, filter_values),
    )


def build_soft_delete(table: str, record_id: Any) -> Statement:
    sql = (
        f"UPDATE {table} "
        "SET deleted_at = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP "
        "WHERE id = $1 AND deleted_at IS NULL"
    )
    return Statement.of(sql, [record_id])


def build_location_search(
    table: str, latitude: float, longitude: float, radius_km: float = 1
) -> Statement:
    row_point = "ST_SetSRID(ST_MakePoint(longitude, latitude), 4326)::geography"
    ref_point = "ST_SetSRID(ST_MakePoint($2::float8, $1::float8), 4326)::geography"
    sql = (
        f"SELECT *, ST_Distance({row_point}, {ref_point}) / 1000 AS distance_km "
        f"FROM {table} "
        f"WHERE ST_DWithin({row_point}, {ref_point}, $3::float8 * 1000) "
        "AND deleted_at IS NULL "
        "ORDER BY distance_km ASC"
    )
    return Statement.of(sql, [latitude, longitude, radius_km])


def build_table_exists(table: str) -> Statement:
    sql = (
        "SELECT EXISTS ("
        "SELECT FROM information_schema.tables "
        "WHERE table_schema = 'public' AND table_name = $1"
        ") AS exists"
    )
    return Statement.of(sql, [table])


async def insert_and_get_id(table: str, data: Mapping[str, Any]) -> Any:
    """Insert one row and return its ``id``, or 0 when none came back."""
    statement = build_insert(table, data)
    result = await execute_query(statement.text, statement.params)
    row = result.rows[0] if result.rows else {}
    return row.get("id") or 0


async def update_record(
    table: str, data: Mapping[str, Any], conditions: Mapping[str, Any]
) -> int:
    """Update rows matching every condition; return the affected row count."""
    statement = build_update(table, data, conditions)
    result = await execute_query(statement.text, statement.params)
    return result.row_count or 0


async def get_records_with_pagination(
    table: str,
    *,
    select: Sequence[str] = ("*",),
    filters: Mapping[str, Any] | None = None,
    pagination: PaginationParams | None = None,
    order_by: str = "created_at DESC",
    joins: str = "",
) -> QueryResponse:
    """Fetch one page of rows plus the total count for the same filters.

    Unlike the other operations, failures do not propagate: listings degrade
    to an empty, unsuccessful response.
    """
    data_statement, count_statement = build_paginated_select(
        table,
        select=select,
        filters=filters,
        pagination=pagination,
        order_by=order_by,
        joins=joins,
    )
    require_pool()
    try:
        outcomes = await asyncio.gather(
            execute_query(data_statement.text, data_statement.params),
            execute_query(count_statement.text, count_statement.params),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        data_result, count_result = cast(list[QueryResult], outcomes)
        total = count_result.rows[0].get("total") if count_result.rows else 0
        return QueryResponse(data=data_result.rows, count=int(total or 0), success=True)
    except Exception as exc:
        LOGGER.error("db.records.pagination_failed", table=table, error=str(exc))
        return QueryResponse(data=[], count=0, success=False, message=PAGINATION_FAILURE_MESSAGE)


async def soft_delete(table: str, record_id: Any) -> bool:
    """Mark a live row as deleted; False when nothing matched or the update failed."""
    statement = build_soft_delete(table, record_id)
    require_pool()
    try:
        result = await execute_query(statement.text, statement.params)
    except Exception as exc:
        LOGGER.error("db.records.soft_delete_failed", table=table, id=record_id, error=str(exc))
        return False
    return (result.row_count or 0) > 0


async def find_by_location(
    table: str, latitude: float, longitude: float, radius_km: float = 1
) -> QueryResult:
    """Return live rows within ``radius_km`` of the point, nearest first."""
    if not validate_coordinates(latitude, longitude):
        raise ValueError(f"invalid coordinates: latitude={latitude!r}, longitude={longitude!r}")
    statement = build_location_search(table, latitude, longitude, radius_km)
    return await execute_query(statement.text, statement.params)


async def table_exists(table: str) -> bool:
    statement = build_table_exists(table)
    require_pool()
    try:
        result = await execute_query(statement.text, statement.params)
    except Exception as exc:
        LOGGER.error("db.records.table_exists_failed", table=table, error=str(exc))
        return False
    return bool(result.rows[0].get("exists")) if result.rows else False


__all__ = [
    "PAGINATION_FAILURE_MESSAGE",
    "build_insert",
    "build_location_search",
    "build_paginated_select",
    "build_soft_delete",
    "build_table_exists",
    "build_update",
    "find_by_location",
    "get_records_with_pagination",
    "insert_and_get_id",
    "soft_delete",
    "table_exists",
    "update_record",
]
