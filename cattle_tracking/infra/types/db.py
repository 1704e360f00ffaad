"""Structural types shared by the data-access layer.

The protocols describe the small contract both backends honour (the
asyncpg-backed one and the mock one), so the pool facade and the executor
never inspect which variant they were handed. Real objects satisfy these
protocols structurally; nothing here is imported at runtime by the backends.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Protocol, Sequence

BackendKind = Literal["postgres", "mock"]

ErrorHandler = Callable[[BaseException], None]


@dataclass(frozen=True, slots=True)
class Statement:
    """Statement text plus its ordered positional parameters."""

    text: str
    params: tuple[Any, ...] = ()

    @classmethod
    def of(cls, text: str, params: Sequence[Any] | None = None) -> "Statement":
        return cls(text, tuple(params or ()))


@dataclass(slots=True)
class QueryResult:
    """Rows returned by a statement plus its affected-row count."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    row_count: int | None = None
    command: str = ""


@dataclass(slots=True)
class QueryResponse:
    """Outcome of a paginated listing.

    ``success`` is False when the listing degraded to an empty page; the
    ``message`` then carries a user-facing explanation.
    """

    data: list[dict[str, Any]]
    count: int
    success: bool
    message: str | None = None


@dataclass(frozen=True, slots=True)
class PaginationParams:
    page: int = 1
    limit: int = 10

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class ConnectionProtocol(Protocol):
    async def query(self, text: str, params: Sequence[Any] | None = None) -> QueryResult: ...

    async def release(self) -> None: ...


class BackendProtocol(Protocol):
    kind: BackendKind

    async def connect(self) -> ConnectionProtocol: ...

    async def query(self, text: str, params: Sequence[Any] | None = None) -> QueryResult: ...

    async def close(self) -> None: ...

    def on_error(self, handler: ErrorHandler) -> None: ...


__all__ = [
    "BackendKind",
    "BackendProtocol",
    "ConnectionProtocol",
    "ErrorHandler",
    "PaginationParams",
    "QueryResponse",
    "QueryResult",
    "Statement",
]
