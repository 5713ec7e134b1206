"""
Report text extraction with a `pdf_extractions` cache.

The extractor itself is an external collaborator behind the
`TextExtractor` protocol. `PlaceholderTextExtractor` is the only built-in
implementation: it returns canned annual-report text so the rest of the
pipeline can run end to end before real document processing exists.
"""

from __future__ import annotations

import textwrap
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import structlog

from core.db.repositories import ExtractionRepo, ReportRepo

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from core.db.models import AnnualReport, PdfExtraction

logger = structlog.get_logger(__name__)


@dataclass
class ExtractionResult:
    text: str
    page_count: int
    method: str = "pdf-parse"
    success: bool = True
    error: str | None = None

    @classmethod
    def failed(cls, error: str, method: str = "pdf-parse") -> ExtractionResult:
        return cls(text="", page_count=0, method=method, success=False, error=error)

    @classmethod
    def from_row(cls, row: PdfExtraction) -> ExtractionResult:
        return cls(
            text=row.extracted_text,
            page_count=row.page_count or 0,
            method=row.extraction_method,
            success=True,
        )


class TextExtractor(Protocol):
    """Anything that can turn a report's document into plain text."""

    async def extract(self, report: AnnualReport) -> ExtractionResult: ...


_PLACEHOLDER_TEMPLATE = textwrap.dedent(
    """\
    ANNUAL REPORT ANALYSIS

    This is a placeholder text extraction for {report_type}.

    EXECUTIVE SUMMARY
    This company has shown strong performance across key metrics.
    Revenue growth has been consistent over the past fiscal year.

    FINANCIAL HIGHLIGHTS
    - Total revenue increased by 15% year-over-year
    - Net income margin improved to 12.3%
    - Strong balance sheet with adequate liquidity
    - Debt-to-equity ratio remains conservative at 0.4

    BUSINESS OPERATIONS
    The company continues to expand its market presence through strategic initiatives.
    Investment in technology and innovation remains a key priority.
    Customer satisfaction scores have improved significantly.

    FUTURE OUTLOOK
    Management remains optimistic about future growth prospects.
    Several new product launches are planned for the upcoming year.
    Market expansion opportunities in emerging markets show promise.
    """
)


class PlaceholderTextExtractor:
    """Returns canned text instead of reading the document."""

    page_count = 25

    async def extract(self, report: AnnualReport) -> ExtractionResult:
        return ExtractionResult(
            text=_PLACEHOLDER_TEMPLATE.format(report_type=report.report_type),
            page_count=self.page_count,
            method="pdf-parse",
        )


class ExtractionService:
    """Cached extraction: most recent stored row wins, fresh runs are stored."""

    def __init__(self, session: AsyncSession, extractor: TextExtractor) -> None:
        self.session = session
        self.extractor = extractor
        self.extractions = ExtractionRepo(session)
        self.reports = ReportRepo(session)

    async def get_existing(self, report_id: uuid.UUID) -> ExtractionResult | None:
        row = await self.extractions.latest(report_id)
        return ExtractionResult.from_row(row) if row is not None else None

    async def has_extraction(self, report_id: uuid.UUID) -> bool:
        return await self.extractions.latest(report_id) is not None

    async def extract_from_report(self, report_id: uuid.UUID) -> ExtractionResult:
        """Run the extractor and store a successful result.

        Failures come back as an unsuccessful result, never as an exception.
        """
        report = await self.reports.get(report_id)
        if report is None:
            logger.warning("extraction_report_not_found", report_id=str(report_id))
            return ExtractionResult.failed(f"Report not found: {report_id}")

        try:
            result = await self.extractor.extract(report)
        except Exception as e:
            logger.error("extraction_failed", report_id=str(report_id), error=str(e), exc_info=True)
            return ExtractionResult.failed(str(e))

        if result.success:
            await self.extractions.add(report_id, result.text, result.page_count, result.method)
            logger.info(
                "extraction_stored",
                report_id=str(report_id),
                chars=len(result.text),
                pages=result.page_count,
                method=result.method,
            )
        return result

    async def get_or_extract(self, report_id: uuid.UUID) -> ExtractionResult:
        """Reuse the cached extraction, otherwise extract fresh."""
        existing = await self.get_existing(report_id)
        if existing is not None and existing.success:
            logger.debug("extraction_cache_hit", report_id=str(report_id))
            return existing
        return await self.extract_from_report(report_id)

    async def re_extract(self, report_id: uuid.UUID) -> ExtractionResult:
        """Force refresh: drop stored rows, then extract again."""
        deleted = await self.extractions.delete_for_report(report_id)
        logger.info("extraction_cache_cleared", report_id=str(report_id), deleted=deleted)
        return await self.extract_from_report(report_id)
