"""SQLAlchemy async engine, session factory and disconnect retry."""

from __future__ import annotations

import functools
from collections.abc import Callable
from functools import lru_cache
from typing import Any

import structlog
from sqlalchemy.exc import DBAPIError, DisconnectionError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from core.config import get_settings

logger = structlog.get_logger(__name__)

# asyncpg exception class names that mean the server side is gone
_ASYNCPG_DISCONNECTS = frozenset(
    {"ConnectionDoesNotExistError", "InterfaceError", "InternalClientError"}
)


def build_async_engine(database_url: str) -> AsyncEngine:
    """Create an async engine for the given DSN.

    NOTE: Supabase fronts Postgres with pgBouncer in transaction mode,
    which cannot hold prepared statements, so asyncpg's statement caches
    are switched off. An in-memory SQLite database (local dev and tests)
    is pinned to a single shared connection.
    """
    if database_url.startswith("sqlite"):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url:
            kwargs["poolclass"] = StaticPool
        return create_async_engine(database_url, echo=False, **kwargs)

    return create_async_engine(
        database_url,
        echo=False,
        pool_size=10,
        max_overflow=5,
        pool_pre_ping=True,
        pool_recycle=300,
        connect_args={
            "statement_cache_size": 0,
            "prepared_statement_cache_size": 0,
            # Empty name => asyncpg falls back to unnamed statements.
            "prepared_statement_name_func": lambda: "",
        },
    )


@lru_cache(maxsize=1)
def get_async_engine() -> AsyncEngine:
    """Process-wide engine built from settings."""
    return build_async_engine(get_settings().database_url)


def get_async_session(engine: AsyncEngine | None = None) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to `engine` (default: the process-wide engine)."""
    return async_sessionmaker(
        engine or get_async_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
    )


def is_disconnect(exc: BaseException) -> bool:
    """True when `exc` or its cause chain is a dropped database connection."""
    if isinstance(exc, (DisconnectionError, OSError)):
        return True
    if isinstance(exc, DBAPIError):
        if exc.connection_invalidated:
            return True
        cause = exc.__cause__
        while cause is not None:
            if isinstance(cause, OSError) or type(cause).__name__ in _ASYNCPG_DISCONNECTS:
                return True
            cause = cause.__cause__
    return False


def _session_of(args: tuple[Any, ...], kwargs: dict[str, Any]) -> AsyncSession | None:
    """The AsyncSession behind a repository method call, if any."""
    candidate = kwargs.get("session")
    if candidate is None and args:
        candidate = getattr(args[0], "session", None)
    return candidate if isinstance(candidate, AsyncSession) else None


def retry_on_disconnect(
    max_retries: int = 3,
    base_delay: float = 1.0,
) -> Callable[..., Any]:
    """Retry an async repository method when its connection drops mid-call.

    Between attempts the session's connection is invalidated and the
    transaction rolled back, so the pool hands out a fresh connection.
    Only use on methods that open their transaction (reads, the queue
    claim); pending work in the session is discarded on retry.
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            session = _session_of(args, kwargs)

            async def _reset_connection(state: RetryCallState) -> None:
                error = state.outcome.exception() if state.outcome else None
                logger.warning(
                    "db_disconnect_retrying",
                    operation=fn.__qualname__,
                    attempt=state.attempt_number,
                    max_retries=max_retries,
                    error=str(error),
                )
                if session is not None:
                    conn = await session.connection()
                    await conn.invalidate()
                    await session.rollback()

            async for attempt in AsyncRetrying(
                retry=retry_if_exception(is_disconnect),
                stop=stop_after_attempt(max_retries + 1),
                wait=wait_exponential(multiplier=base_delay),
                before_sleep=_reset_connection,
                reraise=True,
            ):
                with attempt:
                    return await fn(*args, **kwargs)
            return None  # pragma: no cover

        return wrapper

    return decorator
