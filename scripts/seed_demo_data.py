"""
Seed a small companies + annual_reports dataset and queue it for insights.

Creates 3 companies with one annual report each and enqueues every
report with the default insight types. On SQLite the schema is created
from the ORM models; on PostgreSQL run `alembic upgrade head` first.

Usage:
    python scripts/seed_demo_data.py
    python scripts/seed_demo_data.py --no-queue      # reports only
    python scripts/seed_demo_data.py --priority 2
"""

from __future__ import annotations

import asyncio
import sys
from datetime import date

import click
from sqlalchemy import func, select

# ── Ensure project root is on sys.path ────────────────
sys.path.insert(0, ".")

from core.config import get_settings
from core.db.engine import get_async_engine, get_async_session
from core.db.models import AnnualReport, Base, Company
from core.db.repositories import QueueRepo
from core.pipeline.insights import DEFAULT_INSIGHT_TYPES

COMPANIES = [
    {
        "company": "Northwind Energy",
        "industry": "Energy",
        "sector": "Utilities",
        "report": {"year": 2024, "filing_date": date(2025, 3, 14)},
    },
    {
        "company": "Contoso Health",
        "industry": "Healthcare",
        "sector": "Pharmaceuticals",
        "report": {"year": 2024, "filing_date": date(2025, 2, 27)},
    },
    {
        "company": "Fabrikam Retail",
        "industry": "Consumer Retail",
        "sector": "Consumer Discretionary",
        "report": {"year": 2023, "filing_date": date(2024, 4, 2)},
    },
]


async def _main(queue: bool, priority: int) -> None:
    settings = get_settings()

    if settings.is_sqlite:
        async with get_async_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    session_factory = get_async_session()
    async with session_factory() as session:
        existing = (await session.execute(select(func.count(Company.id)))).scalar_one()
        if existing:
            print(f"  ⚠ companies already has {existing} rows, seeding anyway")

        queue_repo = QueueRepo(session)
        for entry in COMPANIES:
            company = Company(
                company=entry["company"], industry=entry["industry"], sector=entry["sector"]
            )
            session.add(company)
            await session.flush()

            report = AnnualReport(
                company_id=company.id,
                report_type="annual_report",
                file_url=f"reports/{entry['company'].lower().replace(' ', '-')}.pdf",
                **entry["report"],
            )
            session.add(report)
            await session.flush()
            print(f"  ✓ {company.company} ({report.year}) → report {report.id}")

            if queue:
                item = await queue_repo.enqueue(
                    report.id,
                    list(DEFAULT_INSIGHT_TYPES),
                    priority=priority,
                    max_retries=settings.queue_max_retries,
                )
                print(f"    queued as {item.id}")

        await session.commit()

    await get_async_engine().dispose()
    print("\n✓ Done! Drain the queue with:")
    print("  python -m apps.insight_worker.main")


@click.command()
@click.option("--no-queue", "no_queue", is_flag=True, help="Do not enqueue the reports")
@click.option("--priority", default=0, type=int, help="Queue priority for seeded reports")
def cli(no_queue: bool, priority: int) -> None:
    """Seed demo companies and reports."""
    asyncio.run(_main(queue=not no_queue, priority=priority))


if __name__ == "__main__":
    cli()
