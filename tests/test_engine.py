"""
Tests for engine helpers.

Covers:
- Disconnect detection through exception cause chains
- retry_on_disconnect retries disconnects only
- SQLite engine configuration
"""

from __future__ import annotations

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.pool import StaticPool

from core.db.engine import build_async_engine, is_disconnect, retry_on_disconnect


def _dbapi_error(cause: BaseException) -> DBAPIError:
    try:
        try:
            raise cause
        except BaseException as inner:
            raise DBAPIError("SELECT 1", {}, inner) from inner
    except DBAPIError as outer:
        return outer


class ConnectionDoesNotExistError(Exception):
    """Mimics the asyncpg class of the same name."""


class _FlakyRepo:
    session = None

    def __init__(self, failures: list[BaseException]) -> None:
        self.failures = failures
        self.calls = 0

    @retry_on_disconnect(max_retries=2, base_delay=0)
    async def read(self) -> str:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return "rows"


class TestIsDisconnect:
    def test_os_errors(self) -> None:
        assert is_disconnect(ConnectionResetError())
        assert is_disconnect(BrokenPipeError())

    def test_cause_chain(self) -> None:
        assert is_disconnect(_dbapi_error(ConnectionRefusedError()))
        assert is_disconnect(_dbapi_error(ConnectionDoesNotExistError()))

    def test_other_errors(self) -> None:
        assert not is_disconnect(ValueError("bad"))
        assert not is_disconnect(IntegrityError("INSERT", {}, Exception("duplicate key")))


class TestRetryOnDisconnect:
    async def test_recovers_after_disconnects(self) -> None:
        repo = _FlakyRepo([ConnectionResetError(), ConnectionResetError()])
        assert await repo.read() == "rows"
        assert repo.calls == 3

    async def test_gives_up(self) -> None:
        repo = _FlakyRepo([ConnectionResetError() for _ in range(5)])
        with pytest.raises(ConnectionResetError):
            await repo.read()
        assert repo.calls == 3

    async def test_other_errors_not_retried(self) -> None:
        repo = _FlakyRepo([ValueError("bad query")])
        with pytest.raises(ValueError):
            await repo.read()
        assert repo.calls == 1


class TestBuildEngine:
    async def test_memory_sqlite_uses_static_pool(self) -> None:
        engine = build_async_engine("sqlite+aiosqlite:///:memory:")
        try:
            assert isinstance(engine.pool, StaticPool)
        finally:
            await engine.dispose()
