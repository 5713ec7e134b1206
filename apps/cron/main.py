"""
Cron trigger: asks the running API to drain one queue batch.

Designed as a platform cron job that runs and terminates. Transport
errors and 5xx answers are retried with exponential backoff; auth and
other 4xx answers fail immediately.
"""

from __future__ import annotations

import asyncio
import sys
from typing import TYPE_CHECKING, Any

import click
import httpx
import structlog
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from core.config import get_settings
from core.config.logging import setup_logging
from core.exceptions import InsightsError

if TYPE_CHECKING:
    from core.config.settings import Settings

logger = structlog.get_logger(__name__)

PROCESS_QUEUE_PATH = "/insights/process-queue"


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    return isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code >= 500


@retry(
    retry=retry_if_exception(_is_retryable),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=30),
    reraise=True,
)
async def post_process_queue(
    client: httpx.AsyncClient,
    url: str,
    token: str,
    batch_size: int,
) -> dict[str, Any]:
    """POST the trigger once. Raises httpx.HTTPStatusError on non-2xx."""
    response = await client.post(
        url,
        params={"batchSize": batch_size},
        headers={"Authorization": f"Bearer {token}"},
    )
    response.raise_for_status()
    return response.json()


async def trigger_queue_processing(
    settings: Settings,
    batch_size: int | None = None,
    client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    """Call the process-queue endpoint and return its JSON body."""
    token = settings.cron_secret.get_secret_value()
    if not token:
        raise InsightsError("CRON_SECRET is not configured")

    url = settings.app_url.rstrip("/") + PROCESS_QUEUE_PATH
    size = batch_size or settings.queue_default_batch_size

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=httpx.Timeout(settings.llm_timeout_seconds * 3))
    try:
        result = await post_process_queue(client, url, token, size)
    finally:
        if owns_client:
            await client.aclose()

    logger.info(
        "cron_trigger_completed",
        processed=result.get("processed"),
        successful=result.get("successful"),
        failed=result.get("failed"),
    )
    return result


@click.command()
@click.option("--batch-size", type=int, default=None, help="Items per run (default from settings)")
def cli(batch_size: int | None) -> None:
    """Trigger one round of insight queue processing."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    try:
        asyncio.run(trigger_queue_processing(settings, batch_size))
    except Exception:
        logger.exception("cron_trigger_failed")
        sys.exit(1)


if __name__ == "__main__":
    cli()
