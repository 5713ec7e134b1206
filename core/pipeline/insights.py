"""
Insight generation for one report: extraction → prompt → model → parser → store.

Types are processed strictly in order with a fixed pause between model
calls. Each type is isolated: a failure is recorded as a `failed`
insight row and the remaining types still run.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from core.db.models import InsightType
from core.db.repositories import InsightRepo, ReportRepo
from core.exceptions import ExtractionError, InsightsError, NotFoundError
from core.pipeline.chunking import model_input
from core.pipeline.parser import parse_ai_response
from core.pipeline.prompts import build_prompt

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from core.config.settings import Settings
    from core.db.models import AnnualReport
    from core.pipeline.extraction import ExtractionService
    from core.pipeline.llm import ModelInvoker

logger = structlog.get_logger(__name__)

DEFAULT_INSIGHT_TYPES = (
    InsightType.FINANCIAL_ANALYSIS,
    InsightType.BUSINESS_INSIGHTS,
    InsightType.EXECUTIVE_SUMMARY,
)

SleepFn = Callable[[float], Awaitable[Any]]

_KNOWN_TYPES = frozenset(t.value for t in InsightType)


@dataclass
class InsightGenerationResult:
    """Outcome for one requested insight type."""

    insight_type: str
    success: bool
    insight_id: uuid.UUID | None = None
    error: str | None = None
    tokens_used: int | None = None
    processing_time_ms: int | None = None
    parse_method: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"insightType": self.insight_type, "success": self.success}
        if self.insight_id is not None:
            data["insightId"] = str(self.insight_id)
        if self.error is not None:
            data["error"] = self.error
        if self.tokens_used is not None:
            data["tokensUsed"] = self.tokens_used
        if self.processing_time_ms is not None:
            data["processingTimeMs"] = self.processing_time_ms
        return data


@dataclass(frozen=True)
class CompanyContext:
    company_name: str
    industry: str
    year: int

    @classmethod
    def from_report(cls, report: AnnualReport | None) -> CompanyContext:
        company = report.company if report is not None else None
        return cls(
            company_name=(company.company if company else None) or "Unknown Company",
            industry=(company.industry if company else None) or "Unknown Industry",
            year=(report.year if report else None) or datetime.now(UTC).year,
        )


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class InsightGenerator:
    """Runs the per-type pipeline for a report and persists every outcome."""

    def __init__(
        self,
        session: AsyncSession,
        extraction_service: ExtractionService,
        invoker: ModelInvoker,
        settings: Settings,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.session = session
        self.extraction = extraction_service
        self.invoker = invoker
        self.settings = settings
        self._sleep = sleep
        self.insights = InsightRepo(session)
        self.reports = ReportRepo(session)

    async def generate_insights_for_report(
        self,
        report_id: uuid.UUID,
        insight_types: Sequence[InsightType | str] = DEFAULT_INSIGHT_TYPES,
    ) -> list[InsightGenerationResult]:
        """One result per requested type, in request order.

        Raises NotFoundError when the report does not exist. Everything
        else is recorded per type.
        """
        report = await self.reports.get(report_id)
        if report is None:
            raise NotFoundError("Report", report_id)
        context = CompanyContext.from_report(report)

        extraction = await self.extraction.get_or_extract(report_id)
        await self.session.commit()

        if not extraction.success:
            error = ExtractionError(report_id, extraction.error)
            logger.warning("insight_extraction_failed", report_id=str(report_id), error=error.message)
            return [
                await self._record_failure(report_id, insight_type, error.message, None, 0)
                for insight_type in insight_types
            ]

        text = model_input(
            extraction.text,
            chunk_size=self.settings.ai_chunk_size,
            max_chunks=self.settings.ai_max_chunks,
        )

        results: list[InsightGenerationResult] = []
        for index, insight_type in enumerate(insight_types):
            if index > 0:
                await self._sleep(self.settings.llm_call_spacing_seconds)
            results.append(await self._generate_single(report_id, insight_type, text, context))

        logger.info(
            "insights_generated_for_report",
            report_id=str(report_id),
            requested=len(results),
            succeeded=sum(1 for r in results if r.success),
        )
        return results

    async def _generate_single(
        self,
        report_id: uuid.UUID,
        insight_type: InsightType | str,
        text: str,
        context: CompanyContext,
    ) -> InsightGenerationResult:
        start = time.perf_counter()
        insight_id: uuid.UUID | None = None
        type_value = getattr(insight_type, "value", str(insight_type))

        try:
            kind = InsightType(insight_type)
            insight = await self.insights.create_processing(report_id, kind, self.invoker.model)
            insight_id = insight.id
            await self.session.commit()

            prompt = build_prompt(kind, text, context.company_name, context.industry, context.year)
            response = await self.invoker.invoke(prompt)
            parsed = parse_ai_response(response.text, kind)

            elapsed = _elapsed_ms(start)
            closed = await self.insights.mark_completed(
                insight_id,
                title=parsed.title,
                content=parsed.content,
                summary=parsed.summary,
                key_metrics=parsed.key_metrics,
                confidence_score=parsed.confidence_score,
                ai_model=response.model,
                tokens_used=response.tokens_used,
                processing_time_ms=elapsed,
            )
            if not closed:
                raise InsightsError(f"Insight {insight_id} was closed before completion")
            await self.session.commit()

            logger.info(
                "insight_generated",
                report_id=str(report_id),
                insight_type=type_value,
                insight_id=str(insight_id),
                tokens=response.tokens_used,
                parse_method=parsed.parse_method.value,
                duration_ms=elapsed,
            )
            return InsightGenerationResult(
                insight_type=type_value,
                success=True,
                insight_id=insight_id,
                tokens_used=response.tokens_used,
                processing_time_ms=elapsed,
                parse_method=parsed.parse_method.value,
            )

        except Exception as e:
            logger.error(
                "insight_generation_failed",
                report_id=str(report_id),
                insight_type=type_value,
                error=str(e),
                exc_info=True,
            )
            await self.session.rollback()
            message = getattr(e, "message", None) or str(e) or type(e).__name__
            return await self._record_failure(
                report_id, insight_type, message, insight_id, _elapsed_ms(start)
            )

    async def _record_failure(
        self,
        report_id: uuid.UUID,
        insight_type: InsightType | str,
        error: str,
        insight_id: uuid.UUID | None,
        elapsed_ms: int,
    ) -> InsightGenerationResult:
        """Close the processing row as failed, or insert a failed placeholder."""
        type_value = getattr(insight_type, "value", str(insight_type))
        try:
            if insight_id is not None:
                await self.insights.mark_failed(insight_id, error, elapsed_ms)
            elif type_value in _KNOWN_TYPES:
                failed = await self.insights.create_failed(
                    report_id, InsightType(type_value), error, self.invoker.model, elapsed_ms
                )
                insight_id = failed.id
            await self.session.commit()
        except Exception:
            logger.error(
                "insight_failure_not_recorded",
                report_id=str(report_id),
                insight_type=type_value,
                exc_info=True,
            )
            await self.session.rollback()

        return InsightGenerationResult(
            insight_type=type_value,
            success=False,
            insight_id=insight_id,
            error=error,
            processing_time_ms=elapsed_ms,
        )
