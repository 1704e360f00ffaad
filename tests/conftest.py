from __future__ import annotations

from collections.abc import Iterator
from typing import Any, Callable

import pytest
from faker import Faker

from cattle_tracking.db import pool as pool_module
from cattle_tracking.infra.types.db import ErrorHandler, QueryResult

Responder = Callable[[str, list[Any]], "QueryResult | BaseException"]


class FakeConnection:
    """Connection that records statements and counts releases."""

    def __init__(self, backend: "FakeBackend") -> None:
        self._backend = backend
        self.statements: list[tuple[str, list[Any]]] = []
        self.release_count = 0

    async def query(self, text: str, params: Any = None) -> QueryResult:
        args = list(params or ())
        self.statements.append((text, args))
        self._backend.statements.append((text, args))
        return self._backend.respond(text, args)

    async def release(self) -> None:
        self.release_count += 1


class FakeBackend:
    """Scriptable backend: ``responder`` decides each statement's outcome."""

    kind = "postgres"

    def __init__(self, responder: Responder | None = None) -> None:
        self.responder = responder
        self.statements: list[tuple[str, list[Any]]] = []
        self.connections: list[FakeConnection] = []
        self.error_handlers: list[ErrorHandler] = []
        self.closed = False

    def respond(self, text: str, params: list[Any]) -> QueryResult:
        if self.responder is None:
            return QueryResult()
        outcome = self.responder(text, params)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def connect(self) -> FakeConnection:
        conn = FakeConnection(self)
        self.connections.append(conn)
        return conn

    async def query(self, text: str, params: Any = None) -> QueryResult:
        conn = await self.connect()
        try:
            return await conn.query(text, params)
        finally:
            await conn.release()

    async def close(self) -> None:
        self.closed = True

    def on_error(self, handler: ErrorHandler) -> None:
        self.error_handlers.append(handler)


@pytest.fixture
def faker() -> Faker:
    return Faker(["es_MX", "en_US"])


@pytest.fixture(autouse=True)
def reset_pool_state() -> Iterator[None]:
    """Start and finish every test with no active pool."""
    pool_module._active_backend = None
    pool_module._active_config = None
    yield
    pool_module._active_backend = None
    pool_module._active_config = None


@pytest.fixture
def fake_backend() -> FakeBackend:
    """A FakeBackend installed as the active pool."""
    backend = FakeBackend()
    pool_module._active_backend = backend  # type: ignore[assignment]
    return backend


@pytest.fixture
def fake_backend_cls() -> type[FakeBackend]:
    return FakeBackend
