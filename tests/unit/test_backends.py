from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

import pytest

from cattle_tracking.config.db_settings import PoolConfig
from cattle_tracking.db import backends as backends_module
from cattle_tracking.db.backends import (
    MockBackend,
    PostgresBackend,
    PostgresConnection,
    create_backend,
    parse_row_count,
)


class _RawStatement:
    def __init__(self, records: list[dict[str, Any]], status: str) -> None:
        self._records = records
        self._status = status
        self.args: tuple[Any, ...] | None = None

    async def fetch(self, *args: Any) -> list[dict[str, Any]]:
        self.args = args
        return self._records

    def get_statusmsg(self) -> str:
        return self._status


class _RawConnection:
    def __init__(self, statement: _RawStatement) -> None:
        self._statement = statement
        self.prepared: list[str] = []
        self.executed: list[str] = []

    async def prepare(self, text: str) -> _RawStatement:
        self.prepared.append(text)
        return self._statement

    async def execute(self, text: str) -> str:
        self.executed.append(text)
        return text


class _RawPool:
    def __init__(self, conn: Any = None) -> None:
        self._conn = conn
        self.released: list[Any] = []
        self.closed = False

    async def acquire(self) -> Any:
        return self._conn

    async def release(self, conn: Any) -> None:
        self.released.append(conn)

    async def close(self) -> None:
        self.closed = True


@pytest.mark.unit
@pytest.mark.parametrize(
    ("status", "expected"),
    [
        ("UPDATE 3", 3),
        ("INSERT 0 1", 1),
        ("SELECT 0", 0),
        ("DELETE 12", 12),
        ("BEGIN", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_row_count(status: str | None, expected: int | None) -> None:
    assert parse_row_count(status) == expected


@pytest.mark.asyncio
async def test_postgres_connection_query_uses_prepared_statement() -> None:
    statement = _RawStatement([{"id": 3}], "INSERT 0 1")
    raw = _RawConnection(statement)
    pool = _RawPool()
    conn = PostgresConnection(pool, raw)  # type: ignore[arg-type]

    result = await conn.query("INSERT INTO cattle (tag) VALUES ($1) RETURNING id", ["T-3"])

    assert raw.prepared == ["INSERT INTO cattle (tag) VALUES ($1) RETURNING id"]
    assert statement.args == ("T-3",)
    assert result.rows == [{"id": 3}]
    assert result.row_count == 1
    assert result.command == "INSERT"


@pytest.mark.asyncio
async def test_postgres_connection_transaction_control_uses_execute() -> None:
    raw = _RawConnection(_RawStatement([], ""))
    conn = PostgresConnection(_RawPool(), raw)  # type: ignore[arg-type]

    result = await conn.query("BEGIN")

    assert raw.executed == ["BEGIN"]
    assert raw.prepared == []
    assert result.command == "BEGIN"
    assert result.row_count is None


@pytest.mark.asyncio
async def test_postgres_connection_release_is_idempotent() -> None:
    raw = _RawConnection(_RawStatement([], ""))
    pool = _RawPool()
    conn = PostgresConnection(pool, raw)  # type: ignore[arg-type]

    await conn.release()
    await conn.release()

    assert pool.released == [raw]


@pytest.mark.asyncio
async def test_postgres_backend_query_borrows_and_releases() -> None:
    raw = _RawConnection(_RawStatement([{"now": "2026-01-01"}], "SELECT 1"))
    pool = _RawPool(raw)
    backend = PostgresBackend(pool)  # type: ignore[arg-type]

    result = await backend.query("SELECT NOW()")

    assert result.rows == [{"now": "2026-01-01"}]
    assert pool.released == [raw]

    await backend.close()
    assert pool.closed is True


@pytest.mark.asyncio
async def test_postgres_backend_create_passes_pool_settings(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    created_args: list[dict[str, Any]] = []

    async def fake_create_pool(**kwargs: Any) -> _RawPool:
        created_args.append(kwargs)
        return _RawPool()

    monkeypatch.setattr(backends_module.asyncpg, "create_pool", fake_create_pool)
    config = PoolConfig.model_validate(
        {
            "DB_HOST": "db.ranch.internal",
            "DB_PORT": 6543,
            "DB_NAME": "herd",
            "DB_USER": "rancher",
            "DB_PASSWORD": "pw",
            "APP_ENV": "production",
        }
    )

    backend = await PostgresBackend.create(config)

    assert backend.kind == "postgres"
    args = created_args[0]
    assert args["host"] == "db.ranch.internal"
    assert args["port"] == 6543
    assert args["database"] == "herd"
    assert args["user"] == "rancher"
    assert args["password"] == "pw"
    assert args["max_size"] == 20
    assert args["max_inactive_connection_lifetime"] == 30.0
    assert args["timeout"] == 2.0
    assert args["ssl"] == "require"
    assert "dsn" not in args


@pytest.mark.asyncio
async def test_postgres_backend_create_prefers_database_url(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    created_args: list[dict[str, Any]] = []

    async def fake_create_pool(**kwargs: Any) -> _RawPool:
        created_args.append(kwargs)
        return _RawPool()

    monkeypatch.setattr(backends_module.asyncpg, "create_pool", fake_create_pool)
    config = PoolConfig.model_validate(
        {"DATABASE_URL": "postgresql://u:p@db/herd", "APP_ENV": "development"}
    )

    await PostgresBackend.create(config)

    assert created_args[0]["dsn"] == "postgresql://u:p@db/herd"
    assert "host" not in created_args[0]
    assert "ssl" not in created_args[0]


@dataclass
class _InitRecorder:
    codecs: list[tuple[str, str, str]] = field(default_factory=list)
    listeners: list[Callable[[Any], Any]] = field(default_factory=list)
    _closed_locally: bool = False

    async def set_type_codec(
        self,
        name: str,
        *,
        schema: str,
        encoder: Callable[[Any], str],
        decoder: Callable[[str], Any],
        format: str,
    ) -> None:
        self.codecs.append((name, schema, format))

    def add_termination_listener(self, callback: Callable[[Any], Any]) -> None:
        self.listeners.append(callback)


async def _create_with_captured_kwargs(
    monkeypatch: pytest.MonkeyPatch,
) -> tuple[PostgresBackend, dict[str, Any], list[BaseException]]:
    captured: dict[str, Any] = {}

    async def fake_create_pool(**kwargs: Any) -> _RawPool:
        captured.update(kwargs)
        return _RawPool()

    monkeypatch.setattr(backends_module.asyncpg, "create_pool", fake_create_pool)
    backend = await PostgresBackend.create(PoolConfig.model_validate({}))
    seen: list[BaseException] = []
    backend.on_error(seen.append)
    return backend, captured, seen


@pytest.mark.asyncio
async def test_connection_init_sets_codecs_and_tracked_connection_class(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _, captured, _ = await _create_with_captured_kwargs(monkeypatch)

    recorder = _InitRecorder()
    await captured["init"](recorder)

    assert captured["connection_class"] is backends_module._TrackedConnection
    assert ("json", "pg_catalog", "text") in recorder.codecs
    assert ("jsonb", "pg_catalog", "text") in recorder.codecs
    assert len(recorder.listeners) == 1


@pytest.mark.asyncio
async def test_server_side_disconnect_reaches_error_handlers(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _, captured, seen = await _create_with_captured_kwargs(monkeypatch)
    recorder = _InitRecorder()
    await captured["init"](recorder)

    recorder.listeners[0](recorder)

    assert len(seen) == 1
    assert isinstance(seen[0], backends_module.asyncpg.ConnectionDoesNotExistError)
    assert "closed unexpectedly" in str(seen[0])


@pytest.mark.asyncio
async def test_locally_closed_connection_does_not_reach_error_handlers(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _, captured, seen = await _create_with_captured_kwargs(monkeypatch)
    recorder = _InitRecorder()
    await captured["init"](recorder)

    # close_pool() and idle reaping both end connections through close()/terminate().
    recorder._closed_locally = True
    recorder.listeners[0](recorder)

    assert seen == []


@pytest.mark.asyncio
async def test_tracked_connection_marks_close_and_terminate(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    calls: list[str] = []

    async def fake_close(self: Any, *, timeout: float | None = None) -> None:
        calls.append("close")

    def fake_terminate(self: Any) -> None:
        calls.append("terminate")

    base = backends_module._AsyncpgConnection
    monkeypatch.setattr(base, "close", fake_close)
    monkeypatch.setattr(base, "terminate", fake_terminate)
    tracked_cls = backends_module._TrackedConnection

    def bare_connection() -> Any:
        conn = tracked_cls.__new__(tracked_cls)
        # Already-closed slot state keeps asyncpg's __del__ quiet.
        conn._aborted = True
        conn._protocol = None
        return conn

    closed = bare_connection()
    assert closed._closed_locally is False
    await closed.close()

    terminated = bare_connection()
    terminated.terminate()

    assert calls == ["close", "terminate"]
    assert closed._closed_locally is True
    assert terminated._closed_locally is True

    seen: list[BaseException] = []
    backends_module._report_termination(closed, [seen.append])
    backends_module._report_termination(terminated, [seen.append])
    assert seen == []


@pytest.mark.asyncio
async def test_create_backend_honours_mock_selection(monkeypatch: pytest.MonkeyPatch) -> None:
    async def must_not_be_called(**_: Any) -> Any:  # pragma: no cover - guard
        raise AssertionError("create_pool should not run for the mock backend")

    monkeypatch.setattr(backends_module.asyncpg, "create_pool", must_not_be_called)

    backend = await create_backend(PoolConfig.model_validate({"DB_BACKEND": "MOCK"}))

    assert isinstance(backend, MockBackend)


@pytest.mark.asyncio
async def test_create_backend_falls_back_to_mock(monkeypatch: pytest.MonkeyPatch) -> None:
    async def failing_create_pool(**_: Any) -> Any:
        raise TimeoutError("connect timed out")

    monkeypatch.setattr(backends_module.asyncpg, "create_pool", failing_create_pool)

    backend = await create_backend(PoolConfig.model_validate({"DB_BACKEND": "postgres"}))

    assert isinstance(backend, MockBackend)


@pytest.mark.asyncio
async def test_create_backend_registers_error_listener(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_create_pool(**_: Any) -> _RawPool:
        return _RawPool()

    monkeypatch.setattr(backends_module.asyncpg, "create_pool", fake_create_pool)

    backend = await create_backend(PoolConfig.model_validate({"DB_BACKEND": "postgres"}))

    assert isinstance(backend, PostgresBackend)
    assert backend._error_handlers == [backends_module._log_pool_error]


@pytest.mark.asyncio
async def test_mock_backend_connection_contract() -> None:
    backend = MockBackend()
    conn = await backend.connect()

    result = await conn.query("UPDATE cattle SET status = $1", ["sold"])
    await conn.release()
    await backend.close()

    assert result.rows == []
    assert result.row_count == 0
    assert result.command == "UPDATE"
