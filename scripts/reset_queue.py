"""Return stuck or terminally failed queue items to pending.

Clears started_at, retry_count and error_message for every item that
has not completed, so the next batch picks them up again.

Usage:
    python scripts/reset_queue.py
    python scripts/reset_queue.py --purge-failed-insights
"""
import asyncio
import sys

import click
from sqlalchemy import delete, update

sys.path.insert(0, ".")

from core.db.engine import get_async_engine, get_async_session
from core.db.models import Insight, InsightQueueItem, ProcessingStatus


async def reset(purge_failed_insights: bool) -> None:
    session_factory = get_async_session()

    async with session_factory() as session:
        r1 = await session.execute(
            update(InsightQueueItem)
            .where(InsightQueueItem.completed_at.is_(None))
            .values(started_at=None, retry_count=0, error_message=None)
        )
        print(f"Reset {r1.rowcount} queue items")

        if purge_failed_insights:
            r2 = await session.execute(
                delete(Insight).where(Insight.processing_status == ProcessingStatus.FAILED)
            )
            print(f"Deleted {r2.rowcount} failed insights")

        await session.commit()

    await get_async_engine().dispose()
    print("Done. Items are pending again.")


@click.command()
@click.option("--purge-failed-insights", is_flag=True, help="Also delete failed insight rows")
def cli(purge_failed_insights: bool) -> None:
    asyncio.run(reset(purge_failed_insights))


if __name__ == "__main__":
    cli()
