"""
Insight Queue Processor: drains insight_processing_queue in batches.

Per item:
1. Claim (compare-and-set on started_at), committed before any work
2. Run the insight pipeline for the item's report and insight types
3. Close the item:
   - every type succeeded → completed_at set, report marked processed
   - some types failed   → retry only the failed types (partial failure)
   - pipeline raised     → retry everything
   A retry increments retry_count; once it reaches max_retries the item
   stays claimed with its error and is never selected again. Otherwise
   started_at is cleared and scheduled_for pushed back by
   base * 2^retry_count seconds.

Items are processed strictly one after another. The claim is the only
mutual exclusion between overlapping batch runs; two processors can
still read the same unclaimed rows, and the loser of the claim skips.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import structlog

from core.db.repositories import QueueRepo, ReportRepo
from core.exceptions import InvalidRequestError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from core.config.settings import Settings
    from core.db.models import InsightQueueItem
    from core.pipeline.insights import InsightGenerationResult, InsightGenerator

logger = structlog.get_logger(__name__)


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class _ClaimTarget:
    """Plain copy of a selected row, safe to use across commits/rollbacks."""

    id: uuid.UUID
    report_id: uuid.UUID
    insight_types: list[str]
    retry_count: int
    max_retries: int

    @classmethod
    def from_item(cls, item: InsightQueueItem) -> _ClaimTarget:
        return cls(
            id=item.id,
            report_id=item.annual_report_id,
            insight_types=list(item.insight_types or []),
            retry_count=item.retry_count,
            max_retries=item.max_retries,
        )


@dataclass
class BatchResult:
    processed: int = 0
    successful: int = 0
    failed: int = 0
    results: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "successful": self.successful,
            "failed": self.failed,
            "results": self.results,
        }


class QueueProcessor:
    """Claims queue items and runs the insight pipeline for each."""

    def __init__(
        self,
        session: AsyncSession,
        generator: InsightGenerator,
        settings: Settings,
    ) -> None:
        self.session = session
        self.generator = generator
        self.settings = settings
        self.queue = QueueRepo(session)
        self.reports = ReportRepo(session)

    async def process_batch(self, batch_size: int | None = None) -> BatchResult:
        """Process up to `batch_size` unclaimed items, highest priority first."""
        limit = batch_size if batch_size is not None else self.settings.queue_default_batch_size
        if limit < 1:
            raise InvalidRequestError(f"batch size must be at least 1, got {limit}")
        due_before = _now() if self.settings.queue_honor_schedule else None

        items = await self.queue.select_unclaimed(limit, due_before=due_before)
        targets = [_ClaimTarget.from_item(item) for item in items]
        await self.session.commit()

        batch = BatchResult()
        if not targets:
            logger.info("queue_empty")
            return batch

        logger.info("queue_batch_started", selected=len(targets), batch_size=limit)

        for target in targets:
            structlog.contextvars.bind_contextvars(
                queue_item_id=str(target.id), report_id=str(target.report_id)
            )
            try:
                item_result = await self._process_item(target)
            except Exception as e:
                logger.error("queue_item_bookkeeping_failed", error=str(e), exc_info=True)
                await self.session.rollback()
                item_result = {
                    "id": str(target.id),
                    "reportId": str(target.report_id),
                    "success": False,
                    "error": str(e),
                }
            finally:
                structlog.contextvars.unbind_contextvars("queue_item_id", "report_id")

            if item_result is None:
                continue

            batch.processed += 1
            if item_result["success"]:
                batch.successful += 1
            else:
                batch.failed += 1
            batch.results.append(item_result)

        logger.info(
            "queue_batch_finished",
            processed=batch.processed,
            successful=batch.successful,
            failed=batch.failed,
        )
        return batch

    async def _process_item(self, target: _ClaimTarget) -> dict[str, Any] | None:
        """Claim and run one item. None when another processor owns it."""
        claimed = await self.queue.claim(target.id, _now())
        await self.session.commit()
        if not claimed:
            logger.info("queue_item_claim_lost")
            return None

        logger.info(
            "queue_item_claimed",
            insight_types=target.insight_types,
            retry_count=target.retry_count,
        )

        try:
            results = await self.generator.generate_insights_for_report(
                target.report_id, target.insight_types
            )
        except Exception as e:
            logger.error("queue_item_failed", error=str(e), exc_info=True)
            await self.session.rollback()
            message = getattr(e, "message", None) or str(e) or type(e).__name__
            await self._schedule_retry(target, message)
            return {
                "id": str(target.id),
                "reportId": str(target.report_id),
                "success": False,
                "error": message,
            }

        failed = [r for r in results if not r.success]
        if not failed:
            await self.queue.complete(target.id, _now())
            await self.reports.mark_processed(target.report_id)
            await self.session.commit()
            logger.info("queue_item_completed", insights=len(results))
            return {
                "id": str(target.id),
                "reportId": str(target.report_id),
                "success": True,
                "results": [r.to_dict() for r in results],
            }

        message = self._partial_failure_message(failed)
        logger.warning(
            "queue_item_partially_failed",
            failed_types=[r.insight_type for r in failed],
            succeeded=len(results) - len(failed),
        )
        await self._schedule_retry(
            target, message, insight_types=[r.insight_type for r in failed]
        )
        return {
            "id": str(target.id),
            "reportId": str(target.report_id),
            "success": False,
            "error": message,
            "results": [r.to_dict() for r in results],
        }

    async def _schedule_retry(
        self,
        target: _ClaimTarget,
        error: str,
        insight_types: list[str] | None = None,
    ) -> None:
        """Release with backoff, or leave terminally claimed once retries run out."""
        retry_count = target.retry_count + 1

        if retry_count >= target.max_retries:
            await self.queue.mark_terminal(
                target.id, retry_count=retry_count, error=error, insight_types=insight_types
            )
            await self.session.commit()
            logger.warning(
                "queue_item_retries_exhausted",
                retry_count=retry_count,
                max_retries=target.max_retries,
                error=error,
            )
            return

        delay = timedelta(seconds=self.settings.queue_backoff_base_seconds * 2**retry_count)
        await self.queue.release(
            target.id,
            retry_count=retry_count,
            scheduled_for=_now() + delay,
            error=error,
            insight_types=insight_types,
        )
        await self.session.commit()
        logger.info(
            "queue_item_rescheduled",
            retry_count=retry_count,
            delay_s=delay.total_seconds(),
        )

    @staticmethod
    def _partial_failure_message(failed: list[InsightGenerationResult]) -> str:
        details = "; ".join(f"{r.insight_type}: {r.error}" for r in failed)
        return f"Failed insight types ({len(failed)}): {details}"
