"""
Explicit wiring of the long-lived collaborators.

Built once per process (API lifespan, worker CLI) and handed down;
per-request objects (sessions, generators, processors) are derived from
it. Tests construct it directly with fakes.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from core.db.engine import build_async_engine, get_async_session
from core.pipeline.extraction import ExtractionService, PlaceholderTextExtractor
from core.pipeline.insights import InsightGenerator
from core.pipeline.llm import ModelInvoker

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from apps.insight_worker.service import QueueProcessor
    from core.config.settings import Settings
    from core.pipeline.extraction import TextExtractor
    from core.pipeline.insights import SleepFn


@dataclass
class ServiceContainer:
    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    extractor: TextExtractor
    invoker: ModelInvoker
    sleep: SleepFn = field(default=asyncio.sleep)
    engine: AsyncEngine | None = None

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> ServiceContainer:
        engine = build_async_engine(settings.database_url)
        values: dict[str, Any] = {
            "settings": settings,
            "session_factory": get_async_session(engine),
            "extractor": PlaceholderTextExtractor(),
            "invoker": ModelInvoker(settings),
            "engine": engine,
        }
        values.update(overrides)
        return cls(**values)

    def generator(self, session: AsyncSession) -> InsightGenerator:
        return InsightGenerator(
            session,
            ExtractionService(session, self.extractor),
            self.invoker,
            self.settings,
            sleep=self.sleep,
        )

    def processor(self, session: AsyncSession) -> QueueProcessor:
        from apps.insight_worker.service import QueueProcessor

        return QueueProcessor(session, self.generator(session), self.settings)

    async def dispose(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
