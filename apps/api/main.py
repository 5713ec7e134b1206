"""
Insights API: FastAPI application.

Endpoints:
    GET  /health                     Unauthenticated liveness check
    POST /insights/queue             Enqueue insight generation for a report
    GET  /insights/queue             Queue counts + 50 most recent items
    POST /insights/process-queue     Drain one batch (Bearer CRON_SECRET)
    POST /insights/generate          Generate synchronously (admin)
    GET  /insights/feed              Paginated completed insights
    POST /insights/engagement        Record a user interaction (best effort)
    GET  /insights/preferences       Stored interest list of a user
    POST /insights/preferences       Replace the interest list of a user
"""

from __future__ import annotations

import sys
import uuid
from contextlib import asynccontextmanager
from typing import Any

import click
import structlog
import uvicorn
from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.config import get_settings
from core.config.logging import setup_logging
from core.container import ServiceContainer
from core.db.models import InsightType
from core.db.repositories import (
    EngagementRepo,
    InsightRepo,
    ProfileRepo,
    QueueRepo,
    ReportRepo,
)
from core.exceptions import InsightsError, NotFoundError

from .deps import get_container, get_session, verify_cron_secret
from .schemas import (
    EngagementRequest,
    EnqueueRequest,
    EnqueueResponse,
    ErrorResponse,
    FeedInsight,
    FeedResponse,
    GenerateRequest,
    GenerateResponse,
    HealthResponse,
    MessageResponse,
    PreferencesRequest,
    PreferencesResponse,
    ProcessQueueResponse,
    QueueItemOut,
    QueueStats,
    QueueStatusResponse,
)

logger = structlog.get_logger(__name__)

ANONYMOUS_USER_ID = uuid.UUID(int=0)
_INSIGHT_TYPE_VALUES = {t.value for t in InsightType}

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse, "description": "Invalid request"},
    500: {"model": ErrorResponse, "description": "Server error"},
}
_NOT_FOUND = {404: {"model": ErrorResponse, "description": "Report not found"}}
_UNAUTHORIZED = {401: {"model": ErrorResponse, "description": "Missing or wrong bearer token"}}


# ── Lifespan ─────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the service container unless one was injected."""
    owned = False
    if getattr(app.state, "container", None) is None:
        settings = get_settings()
        setup_logging(settings.log_level, settings.log_format)
        if settings.is_production and not settings.cron_secret.get_secret_value():
            logger.critical("CRON_SECRET must be set in production")
            sys.exit(1)
        app.state.container = ServiceContainer.from_settings(settings)
        owned = True
    logger.info("api_started", port=app.state.container.settings.port)
    yield
    if owned:
        await app.state.container.dispose()
    logger.info("api_shutdown")


# ── Error handlers ───────────────────────────────────────────


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


async def insights_error_handler(request: Request, exc: InsightsError) -> JSONResponse:
    logger.warning(
        "request_failed",
        path=request.url.path,
        error=exc.message,
        details=exc.details,
        status_code=exc.status_code,
    )
    return _error(exc.status_code, exc.message)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()) if part not in ("body", "query"))
        problems.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    message = "Invalid request: " + "; ".join(problems) if problems else "Invalid request"
    return _error(400, message)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_error", path=request.url.path, error=str(exc), exc_info=exc)
    return _error(500, "Internal server error")


# ── Helpers ──────────────────────────────────────────────────


def split_interests(interests: list[str]) -> tuple[list[InsightType], list[str]]:
    """Insight-type interests vs. industry interests (lower-cased, spaced)."""
    types = [InsightType(i) for i in interests if i in _INSIGHT_TYPE_VALUES]
    industries = [i.replace("_", " ").lower() for i in interests if i not in _INSIGHT_TYPE_VALUES]
    return types, industries


def _queue_row_to_out(row: Any) -> QueueItemOut:
    item = row.InsightQueueItem
    return QueueItemOut(
        id=item.id,
        report_id=item.annual_report_id,
        insight_types=list(item.insight_types or []),
        priority=item.priority,
        status=item.state,
        scheduled_for=item.scheduled_for,
        started_at=item.started_at,
        completed_at=item.completed_at,
        retry_count=item.retry_count,
        max_retries=item.max_retries,
        error_message=item.error_message,
        created_at=item.created_at,
        report_type=row.report_type,
        year=row.year,
        company_name=row.company_name,
    )


def _feed_row_to_out(row: Any) -> FeedInsight:
    insight = row.Insight
    return FeedInsight(
        id=insight.id,
        report_id=insight.annual_report_id,
        insight_type=insight.insight_type,
        title=insight.title,
        content=insight.content,
        summary=insight.summary,
        key_metrics=insight.key_metrics or {},
        confidence_score=insight.confidence_score,
        ai_model=insight.ai_model,
        created_at=insight.created_at,
        report_type=row.report_type,
        year=row.year,
        filing_date=row.filing_date,
        company_id=row.company_id,
        company_name=row.company_name,
        industry=row.industry,
    )


# ── App ──────────────────────────────────────────────────────


def create_app(container: ServiceContainer | None = None) -> FastAPI:
    """Application factory. Tests pass a container wired with fakes."""
    app = FastAPI(
        title="Annual Report Insights API",
        version="0.1.0",
        lifespan=lifespan,
        responses=_ERROR_RESPONSES,
    )
    app.state.container = container

    app.add_exception_handler(InsightsError, insights_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        """Unauthenticated health check."""
        return HealthResponse()

    @app.post("/insights/queue", response_model=EnqueueResponse, responses=_NOT_FOUND)
    async def enqueue_insights(
        body: EnqueueRequest,
        session: AsyncSession = Depends(get_session),
        container: ServiceContainer = Depends(get_container),
    ) -> EnqueueResponse:
        """Queue a report for deferred insight generation."""
        if not await ReportRepo(session).exists(body.report_id):
            raise NotFoundError("Report", body.report_id)

        item = await QueueRepo(session).enqueue(
            body.report_id,
            body.insight_types,
            priority=body.priority,
            max_retries=container.settings.queue_max_retries,
        )
        await session.commit()

        logger.info(
            "insights_enqueued",
            queue_item_id=str(item.id),
            report_id=str(body.report_id),
            insight_types=[t.value for t in body.insight_types],
            priority=body.priority,
        )
        return EnqueueResponse(
            message="Report queued for insight generation",
            report_id=body.report_id,
            insight_types=body.insight_types,
            priority=body.priority,
            queue_item_id=item.id,
        )

    @app.get("/insights/queue", response_model=QueueStatusResponse)
    async def queue_status(
        session: AsyncSession = Depends(get_session),
        container: ServiceContainer = Depends(get_container),
    ) -> QueueStatusResponse:
        """Counts per derived state plus the most recent items."""
        repo = QueueRepo(session)
        stats = await repo.stats()
        rows = await repo.recent(container.settings.queue_status_limit)
        return QueueStatusResponse(
            stats=QueueStats(**stats),
            items=[_queue_row_to_out(row) for row in rows],
        )

    @app.post(
        "/insights/process-queue",
        response_model=ProcessQueueResponse,
        responses=_UNAUTHORIZED,
        dependencies=[Depends(verify_cron_secret)],
    )
    async def process_queue(
        batch_size: int | None = Query(default=None, alias="batchSize", ge=1, le=50),
        session: AsyncSession = Depends(get_session),
        container: ServiceContainer = Depends(get_container),
    ) -> ProcessQueueResponse:
        """Drain one batch of the queue. Called by the periodic trigger."""
        size = batch_size if batch_size is not None else container.settings.queue_default_batch_size
        logger.info("process_queue_requested", batch_size=size)
        result = await container.processor(session).process_batch(size)
        return ProcessQueueResponse(**result.to_dict())

    @app.post("/insights/generate", response_model=GenerateResponse, responses=_NOT_FOUND)
    async def generate_insights(
        body: GenerateRequest,
        session: AsyncSession = Depends(get_session),
        container: ServiceContainer = Depends(get_container),
    ) -> GenerateResponse:
        """Run the pipeline synchronously for one report."""
        if not await ReportRepo(session).exists(body.report_id):
            raise NotFoundError("Report", body.report_id)

        logger.info("generate_requested", report_id=str(body.report_id))
        results = await container.generator(session).generate_insights_for_report(
            body.report_id, body.insight_types
        )
        generated = sum(1 for r in results if r.success)
        return GenerateResponse(
            success=True,
            report_id=body.report_id,
            results=[r.to_dict() for r in results],
            total_generated=generated,
            total_failed=len(results) - generated,
        )

    @app.get("/insights/feed", response_model=FeedResponse)
    async def insight_feed(
        limit: int | None = Query(default=None, ge=1),
        offset: int = Query(default=0, ge=0),
        user_id: uuid.UUID | None = Query(default=None, alias="userId"),
        session: AsyncSession = Depends(get_session),
        container: ServiceContainer = Depends(get_container),
    ) -> FeedResponse:
        """Completed insights, newest first, filtered by the user's interests."""
        settings = container.settings
        page_size = min(limit or settings.feed_default_limit, settings.feed_max_limit)

        types: list[InsightType] = []
        industries: list[str] = []
        if user_id is not None:
            interests = await ProfileRepo(session).get_interests(user_id)
            types, industries = split_interests(interests)

        repo = InsightRepo(session)
        rows = await repo.feed(page_size, offset, types, industries)
        total = await repo.count_feed(types, industries)

        return FeedResponse(
            insights=[_feed_row_to_out(row) for row in rows],
            has_more=total > offset + page_size,
            total=total,
            offset=offset,
            limit=page_size,
        )

    @app.post("/insights/engagement", response_model=MessageResponse)
    async def record_engagement(
        body: EngagementRequest,
        session: AsyncSession = Depends(get_session),
    ) -> MessageResponse:
        """Upsert the user's last action on an insight. Storage errors are not surfaced."""
        user_id = body.user_id or ANONYMOUS_USER_ID
        try:
            await EngagementRepo(session).upsert(
                user_id, body.insight_id, body.action, body.duration_seconds
            )
            await session.commit()
        except Exception as e:
            logger.warning(
                "engagement_not_recorded",
                insight_id=str(body.insight_id),
                action=body.action.value,
                error=str(e),
                exc_info=True,
            )
            await session.rollback()
        return MessageResponse(message="Engagement recorded")

    @app.get("/insights/preferences", response_model=PreferencesResponse)
    async def get_preferences(
        user_id: uuid.UUID = Query(alias="userId"),
        session: AsyncSession = Depends(get_session),
    ) -> PreferencesResponse:
        interests = await ProfileRepo(session).get_interests(user_id)
        return PreferencesResponse(user_id=user_id, interests=interests)

    @app.post("/insights/preferences", response_model=PreferencesResponse)
    async def update_preferences(
        body: PreferencesRequest,
        session: AsyncSession = Depends(get_session),
    ) -> PreferencesResponse:
        interests = await ProfileRepo(session).set_interests(body.user_id, body.interests)
        await session.commit()
        logger.info("preferences_updated", user_id=str(body.user_id), count=len(interests))
        return PreferencesResponse(user_id=body.user_id, interests=interests)

    return app


app = create_app()


# ── CLI ──────────────────────────────────────────────────────


@click.command()
@click.option("--host", default="0.0.0.0", help="Bind host")
@click.option("--port", default=None, type=int, help="Bind port (defaults to PORT env)")
def cli(host: str, port: int | None) -> None:
    """Start the Insights API server."""
    settings = get_settings()
    port = port or settings.port
    uvicorn.run(
        "apps.api.main:app",
        host=host,
        port=port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    cli()
