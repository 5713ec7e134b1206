"""
Insight Worker CLI: drains one batch of the insight queue and exits.

Meant for a platform cron job when the HTTP trigger is not used.
"""

from __future__ import annotations

import asyncio
import sys

import click
import structlog

from core.config import get_settings
from core.config.logging import setup_logging

logger = structlog.get_logger(__name__)


async def run_batch(batch_size: int | None = None) -> dict[str, object]:
    """Process one queue batch with freshly wired services."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)

    from core.container import ServiceContainer

    container = ServiceContainer.from_settings(settings)
    try:
        async with container.session_factory() as session:
            processor = container.processor(session)
            result = await processor.process_batch(batch_size)
    finally:
        await container.dispose()

    logger.info(
        "insight_worker_complete",
        processed=result.processed,
        successful=result.successful,
        failed=result.failed,
    )
    return result.to_dict()


@click.command()
@click.option(
    "--batch-size",
    type=click.IntRange(min=1),
    default=None,
    help="Items to process (default from settings)",
)
def cli(batch_size: int | None) -> None:
    """Process one batch of queued insight generation work."""
    try:
        asyncio.run(run_batch(batch_size))
    except Exception:
        logger.exception("insight_worker_crashed")
        sys.exit(1)


if __name__ == "__main__":
    cli()
