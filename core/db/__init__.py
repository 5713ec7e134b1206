"""Database package: engine, session, models, repositories."""

from core.db.engine import build_async_engine, get_async_engine, get_async_session
from core.db.models import Base

__all__ = ["Base", "build_async_engine", "get_async_engine", "get_async_session"]
