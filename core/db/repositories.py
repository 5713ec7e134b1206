"""
Database repository layer: async CRUD operations for all tables.

`annual_reports` and `companies` are read-only here (apart from the
`processed` flag). The queue repository carries the claim / release /
terminal transitions of `insight_processing_queue`; the queue has no
status column, so every transition is expressed on the
(started_at, completed_at, retry_count) triple.

Repositories never commit. Callers own the transaction boundary, with
one exception: the queue claim must be committed by the caller before
any work starts (see QueueProcessor).
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from core.db.engine import retry_on_disconnect
from core.db.models import (
    AnnualReport,
    Company,
    EngagementAction,
    Insight,
    InsightEngagement,
    InsightQueueItem,
    InsightType,
    PdfExtraction,
    ProcessingStatus,
    QueueState,
    UserProfile,
)

if TYPE_CHECKING:
    from sqlalchemy.engine import Row
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger(__name__)

# Insight status may only move forward; these are the states a row can leave.
_OPEN_INSIGHT_STATES = (ProcessingStatus.PENDING, ProcessingStatus.PROCESSING)


def _now() -> datetime:
    return datetime.now(UTC)


class ReportRepo:
    """Read access to annual_reports (owned by the CRUD application)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, report_id: uuid.UUID) -> AnnualReport | None:
        """Report with its company eagerly loaded, or None."""
        return await self.session.get(AnnualReport, report_id, populate_existing=True)

    async def exists(self, report_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            select(AnnualReport.id).where(AnnualReport.id == report_id)
        )
        return result.scalar_one_or_none() is not None

    async def mark_processed(self, report_id: uuid.UUID) -> None:
        await self.session.execute(
            update(AnnualReport).where(AnnualReport.id == report_id).values(processed=True)
        )


class ExtractionRepo:
    """CRUD for the pdf_extractions cache. Most recent row wins."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def latest(self, report_id: uuid.UUID) -> PdfExtraction | None:
        result = await self.session.execute(
            select(PdfExtraction)
            .where(PdfExtraction.annual_report_id == report_id)
            .order_by(PdfExtraction.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def add(
        self,
        report_id: uuid.UUID,
        text: str,
        page_count: int,
        method: str,
    ) -> PdfExtraction:
        row = PdfExtraction(
            annual_report_id=report_id,
            extracted_text=text,
            page_count=page_count,
            extraction_method=method,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def delete_for_report(self, report_id: uuid.UUID) -> int:
        result = await self.session.execute(
            delete(PdfExtraction).where(PdfExtraction.annual_report_id == report_id)
        )
        return result.rowcount or 0  # type: ignore[attr-defined]


class InsightRepo:
    """CRUD for ai_insights.

    Rows are inserted in `processing` and closed exactly once with
    `mark_completed` or `mark_failed`; both refuse to touch a row that
    has already reached a terminal status.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_processing(
        self, report_id: uuid.UUID, insight_type: InsightType, model: str | None
    ) -> Insight:
        insight = Insight(
            annual_report_id=report_id,
            insight_type=insight_type,
            processing_status=ProcessingStatus.PROCESSING,
            ai_model=model,
            key_metrics={},
        )
        self.session.add(insight)
        await self.session.flush()
        return insight

    async def create_failed(
        self,
        report_id: uuid.UUID,
        insight_type: InsightType,
        error: str,
        model: str | None = None,
        processing_time_ms: int | None = None,
    ) -> Insight:
        """Placeholder row recording a generation attempt that never got a row."""
        insight = Insight(
            annual_report_id=report_id,
            insight_type=insight_type,
            title=f"{insight_type.value.replace('_', ' ')} Analysis",
            content="",
            key_metrics={},
            processing_status=ProcessingStatus.FAILED,
            processing_error=error[:2000],
            ai_model=model,
            processing_time_ms=processing_time_ms,
        )
        self.session.add(insight)
        await self.session.flush()
        return insight

    async def mark_completed(self, insight_id: uuid.UUID, **values: Any) -> bool:
        stmt = (
            update(Insight)
            .where(
                Insight.id == insight_id,
                Insight.processing_status.in_(_OPEN_INSIGHT_STATES),
            )
            .values(processing_status=ProcessingStatus.COMPLETED, updated_at=_now(), **values)
        )
        result = await self.session.execute(stmt)
        return (result.rowcount or 0) > 0  # type: ignore[attr-defined]

    async def mark_failed(
        self, insight_id: uuid.UUID, error: str, processing_time_ms: int | None = None
    ) -> bool:
        stmt = (
            update(Insight)
            .where(
                Insight.id == insight_id,
                Insight.processing_status.in_(_OPEN_INSIGHT_STATES),
            )
            .values(
                processing_status=ProcessingStatus.FAILED,
                processing_error=error[:2000],
                processing_time_ms=processing_time_ms,
                updated_at=_now(),
            )
        )
        result = await self.session.execute(stmt)
        return (result.rowcount or 0) > 0  # type: ignore[attr-defined]

    async def list_for_report(self, report_id: uuid.UUID) -> list[Insight]:
        result = await self.session.execute(
            select(Insight)
            .where(Insight.annual_report_id == report_id)
            .order_by(Insight.created_at)
        )
        return list(result.scalars().all())

    @staticmethod
    def _feed_filters(
        insight_types: list[InsightType] | None, industries: list[str] | None
    ) -> list[Any]:
        """Completed-only, plus (types OR industries) when either is given."""
        filters: list[Any] = [Insight.processing_status == ProcessingStatus.COMPLETED]
        interest_filters = []
        if insight_types:
            interest_filters.append(Insight.insight_type.in_(insight_types))
        if industries:
            interest_filters.append(func.lower(Company.industry).in_(industries))
        if interest_filters:
            filters.append(or_(*interest_filters))
        return filters

    async def feed(
        self,
        limit: int,
        offset: int,
        insight_types: list[InsightType] | None = None,
        industries: list[str] | None = None,
    ) -> list[Row[Any]]:
        """Completed insights, newest first, with report and company context."""
        stmt = (
            select(
                Insight,
                AnnualReport.report_type.label("report_type"),
                AnnualReport.year.label("year"),
                AnnualReport.filing_date.label("filing_date"),
                Company.id.label("company_id"),
                Company.company.label("company_name"),
                Company.industry.label("industry"),
            )
            .join(AnnualReport, AnnualReport.id == Insight.annual_report_id)
            .join(Company, Company.id == AnnualReport.company_id)
            .where(*self._feed_filters(insight_types, industries))
            .order_by(Insight.created_at.desc(), Insight.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return list(result.all())

    async def count_feed(
        self,
        insight_types: list[InsightType] | None = None,
        industries: list[str] | None = None,
    ) -> int:
        stmt = (
            select(func.count(Insight.id))
            .join(AnnualReport, AnnualReport.id == Insight.annual_report_id)
            .join(Company, Company.id == AnnualReport.company_id)
            .where(*self._feed_filters(insight_types, industries))
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one())


class QueueRepo:
    """CRUD and state transitions for insight_processing_queue."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def enqueue(
        self,
        report_id: uuid.UUID,
        insight_types: list[InsightType],
        priority: int = 0,
        max_retries: int = 3,
    ) -> InsightQueueItem:
        item = InsightQueueItem(
            annual_report_id=report_id,
            insight_types=[t.value for t in insight_types],
            priority=priority,
            scheduled_for=_now(),
            max_retries=max_retries,
            retry_count=0,
        )
        self.session.add(item)
        await self.session.flush()
        return item

    async def get(self, item_id: uuid.UUID) -> InsightQueueItem | None:
        return await self.session.get(InsightQueueItem, item_id, populate_existing=True)

    @retry_on_disconnect()
    async def select_unclaimed(
        self, limit: int, *, due_before: datetime | None = None
    ) -> list[InsightQueueItem]:
        """Unclaimed items, highest priority first, earliest due as tie-break.

        `due_before` restricts the selection to items whose schedule has
        come up; without it every unclaimed item is eligible.
        """
        stmt = select(InsightQueueItem).where(
            InsightQueueItem.started_at.is_(None),
            InsightQueueItem.retry_count < InsightQueueItem.max_retries,
        )
        if due_before is not None:
            stmt = stmt.where(InsightQueueItem.scheduled_for <= due_before)
        stmt = stmt.order_by(
            InsightQueueItem.priority.desc(),
            InsightQueueItem.scheduled_for.asc(),
            InsightQueueItem.created_at.asc(),
            InsightQueueItem.id.asc(),
        ).limit(limit).execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    @retry_on_disconnect()
    async def claim(self, item_id: uuid.UUID, now: datetime | None = None) -> bool:
        """Compare-and-set `started_at`. False when another processor won."""
        stmt = (
            update(InsightQueueItem)
            .where(InsightQueueItem.id == item_id, InsightQueueItem.started_at.is_(None))
            .values(started_at=now or _now())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return (result.rowcount or 0) > 0  # type: ignore[attr-defined]

    async def complete(self, item_id: uuid.UUID, now: datetime | None = None) -> None:
        await self.session.execute(
            update(InsightQueueItem)
            .where(InsightQueueItem.id == item_id)
            .values(completed_at=now or _now(), error_message=None)
            .execution_options(synchronize_session=False)
        )

    async def release(
        self,
        item_id: uuid.UUID,
        *,
        retry_count: int,
        scheduled_for: datetime,
        error: str,
        insight_types: list[str] | None = None,
    ) -> None:
        """Return a claimed item to pending with a pushed-back schedule."""
        values: dict[str, Any] = {
            "started_at": None,
            "retry_count": retry_count,
            "scheduled_for": scheduled_for,
            "error_message": error[:2000],
        }
        if insight_types is not None:
            values["insight_types"] = insight_types
        await self.session.execute(
            update(InsightQueueItem)
            .where(InsightQueueItem.id == item_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    async def mark_terminal(
        self,
        item_id: uuid.UUID,
        *,
        retry_count: int,
        error: str,
        insight_types: list[str] | None = None,
    ) -> None:
        """Exhausted retries: keep `started_at` so the item is never reselected."""
        values: dict[str, Any] = {"retry_count": retry_count, "error_message": error[:2000]}
        if insight_types is not None:
            values["insight_types"] = insight_types
        await self.session.execute(
            update(InsightQueueItem)
            .where(InsightQueueItem.id == item_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    async def stats(self) -> dict[str, int]:
        """Counts per derived state over the whole table. Buckets are disjoint."""
        q = InsightQueueItem
        open_ = and_(q.completed_at.is_(None), q.retry_count < q.max_retries)

        def _count(condition: Any) -> Any:
            return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

        stmt = select(
            _count(and_(open_, q.started_at.is_(None))).label(QueueState.PENDING.value),
            _count(and_(open_, q.started_at.is_not(None))).label(QueueState.PROCESSING.value),
            _count(q.completed_at.is_not(None)).label(QueueState.COMPLETED.value),
            _count(and_(q.completed_at.is_(None), q.retry_count >= q.max_retries)).label(
                QueueState.FAILED.value
            ),
        )
        row = (await self.session.execute(stmt)).one()
        return {state.value: int(getattr(row, state.value)) for state in QueueState}

    async def recent(self, limit: int = 50) -> list[Row[Any]]:
        """Most recently created items with report and company display fields."""
        stmt = (
            select(
                InsightQueueItem,
                AnnualReport.report_type.label("report_type"),
                AnnualReport.year.label("year"),
                Company.company.label("company_name"),
            )
            .outerjoin(AnnualReport, AnnualReport.id == InsightQueueItem.annual_report_id)
            .outerjoin(Company, Company.id == AnnualReport.company_id)
            .order_by(InsightQueueItem.created_at.desc(), InsightQueueItem.id.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return list(result.all())


class EngagementRepo:
    """Upserts into insight_engagements. One row per (user, insight)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(
        self,
        user_id: uuid.UUID,
        insight_id: uuid.UUID,
        action: EngagementAction,
        duration_seconds: int | None = None,
    ) -> None:
        """Insert or overwrite the user's last action on an insight."""
        dialect = self.session.get_bind().dialect.name
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        now = _now()
        stmt = insert(InsightEngagement).values(
            id=uuid.uuid4(),
            user_id=user_id,
            insight_id=insight_id,
            action=action,
            duration_seconds=duration_seconds,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[InsightEngagement.user_id, InsightEngagement.insight_id],
            set_={
                "action": stmt.excluded.action,
                "duration_seconds": stmt.excluded.duration_seconds,
                "updated_at": now,
            },
        )
        await self.session.execute(stmt)

    async def list_for_user(self, user_id: uuid.UUID) -> list[InsightEngagement]:
        result = await self.session.execute(
            select(InsightEngagement)
            .where(InsightEngagement.user_id == user_id)
            .order_by(InsightEngagement.updated_at.desc())
        )
        return list(result.scalars().all())


class ProfileRepo:
    """Interest lists from user_profiles, used to personalise the feed."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_interests(self, user_id: uuid.UUID) -> list[str]:
        profile = await self.session.get(UserProfile, user_id)
        if profile is None:
            return []
        return list(profile.interests or [])

    async def set_interests(self, user_id: uuid.UUID, interests: list[str]) -> list[str]:
        profile = await self.session.get(UserProfile, user_id)
        if profile is None:
            profile = UserProfile(id=user_id, interests=list(interests))
            self.session.add(profile)
        else:
            profile.interests = list(interests)
        await self.session.flush()
        return list(profile.interests)
