"""
Shared test fixtures.

Every test gets a fresh in-memory SQLite database (aiosqlite) with the
full schema, plus fakes for the two external collaborators: the text
extractor and the model invoker.
"""

from __future__ import annotations

import uuid
from datetime import date

import pytest
from pydantic import SecretStr

from core.config.settings import Settings
from core.container import ServiceContainer
from core.db import Base, build_async_engine, get_async_session
from core.db.models import AnnualReport, Company
from tests.fakes import CRON_SECRET, FakeExtractor, FakeInvoker, RecordingSleep


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        database_url="sqlite+aiosqlite:///:memory:",
        cron_secret=SecretStr(CRON_SECRET),
        llm_api_key=SecretStr("test-key"),
        llm_model="fake-model",
    )


@pytest.fixture
async def engine(settings: Settings):
    engine = build_async_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return get_async_session(engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def company(session) -> Company:
    company = Company(company="Acme Corp", industry="Technology", sector="Software")
    session.add(company)
    await session.commit()
    return company


@pytest.fixture
async def report(session, company: Company) -> AnnualReport:
    report = AnnualReport(
        company_id=company.id,
        report_type="annual_report",
        year=2023,
        filing_date=date(2024, 3, 1),
    )
    session.add(report)
    await session.commit()
    return report


@pytest.fixture
def make_report(session):
    """Factory for extra company/report pairs: `await make_report("Name", "Industry")`."""

    async def _make(name: str, industry: str | None, year: int = 2023) -> AnnualReport:
        company = Company(company=name, industry=industry)
        session.add(company)
        await session.flush()
        report = AnnualReport(company_id=company.id, report_type="annual_report", year=year)
        session.add(report)
        await session.commit()
        return report

    return _make


@pytest.fixture
def fake_invoker() -> FakeInvoker:
    return FakeInvoker()


@pytest.fixture
def fake_extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def container(
    settings: Settings,
    session_factory,
    fake_extractor: FakeExtractor,
    fake_invoker: FakeInvoker,
    recording_sleep: RecordingSleep,
) -> ServiceContainer:
    return ServiceContainer(
        settings=settings,
        session_factory=session_factory,
        extractor=fake_extractor,
        invoker=fake_invoker,  # type: ignore[arg-type]
        sleep=recording_sleep,
    )


@pytest.fixture
def unknown_id() -> uuid.UUID:
    """A fixed UUID that never matches a stored row."""
    return uuid.UUID("12345678-1234-5678-1234-567812345678")
