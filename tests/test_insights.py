"""
Tests for per-report insight generation.

Covers:
- Successful generation stores completed insights with parsed fields
- Per-type failure isolation
- A row closed by someone else is never reported as generated
- Extraction failure fails every requested type
- Spacing between model calls
- Missing reports raise NotFoundError
- Company context in prompts
"""

from __future__ import annotations

import pytest

from core.container import ServiceContainer
from core.db.models import AnnualReport, InsightType, ProcessingStatus
from core.db.repositories import InsightRepo
from core.exceptions import NotFoundError
from core.pipeline.insights import CompanyContext
from tests.fakes import FakeExtractor, FakeInvoker, model_answer, model_error

FIN = InsightType.FINANCIAL_ANALYSIS
RISK = InsightType.RISK_ASSESSMENT
EXEC = InsightType.EXECUTIVE_SUMMARY


class TestGenerateSuccess:
    async def test_completed_rows(
        self, container: ServiceContainer, session, report: AnnualReport
    ) -> None:
        report_id = report.id
        container.invoker.script = [model_answer("Fin"), model_answer("Risk", 0.6)]
        generator = container.generator(session)

        results = await generator.generate_insights_for_report(report_id, [FIN, RISK])

        assert [r.insight_type for r in results] == ["financial_analysis", "risk_assessment"]
        assert all(r.success for r in results)
        assert all(r.tokens_used == 150 for r in results)

        session.expire_all()
        rows = await InsightRepo(session).list_for_report(report_id)
        by_type = {row.insight_type: row for row in rows}
        assert set(by_type) == {FIN, RISK}
        assert all(row.processing_status == ProcessingStatus.COMPLETED for row in rows)
        assert by_type[RISK].title == "Risk"
        assert by_type[RISK].confidence_score == pytest.approx(0.6)
        assert by_type[FIN].key_metrics == {"revenueGrowth": "15%"}
        assert by_type[FIN].ai_model == "fake-model"
        assert by_type[FIN].tokens_used == 150

    async def test_prompt_carries_company_context(
        self, container: ServiceContainer, session, report: AnnualReport
    ) -> None:
        report_id = report.id
        await container.generator(session).generate_insights_for_report(report_id, [FIN])
        prompt = container.invoker.prompts[0]
        assert "Acme Corp (Technology industry) from 2023" in prompt

    async def test_to_dict_uses_camel_case(
        self, container: ServiceContainer, session, report: AnnualReport
    ) -> None:
        report_id = report.id
        [result] = await container.generator(session).generate_insights_for_report(
            report_id, [FIN]
        )
        data = result.to_dict()
        assert data["insightType"] == "financial_analysis"
        assert data["success"] is True
        assert data["insightId"] == str(result.insight_id)
        assert data["tokensUsed"] == 150


class TestGenerateFailures:
    async def test_failure_isolated_per_type(
        self, container: ServiceContainer, session, report: AnnualReport
    ) -> None:
        report_id = report.id
        container.invoker.script = [model_answer(), model_error("quota"), model_answer()]

        results = await container.generator(session).generate_insights_for_report(
            report_id, [FIN, RISK, EXEC]
        )

        assert [r.success for r in results] == [True, False, True]
        assert "quota" in results[1].error

        session.expire_all()
        rows = await InsightRepo(session).list_for_report(report_id)
        statuses = {row.insight_type: row.processing_status for row in rows}
        assert statuses == {
            FIN: ProcessingStatus.COMPLETED,
            RISK: ProcessingStatus.FAILED,
            EXEC: ProcessingStatus.COMPLETED,
        }
        failed = next(row for row in rows if row.insight_type == RISK)
        assert "quota" in failed.processing_error
        assert failed.id == results[1].insight_id

    async def test_row_closed_elsewhere_not_reported_as_success(
        self, container: ServiceContainer, session, report: AnnualReport, monkeypatch
    ) -> None:
        report_id = report.id
        real_complete = InsightRepo.mark_completed

        async def closed_first(self, insight_id, **values):
            await self.mark_failed(insight_id, "cancelled by operator")
            return await real_complete(self, insight_id, **values)

        monkeypatch.setattr(InsightRepo, "mark_completed", closed_first)

        [result] = await container.generator(session).generate_insights_for_report(
            report_id, [FIN]
        )

        assert not result.success
        assert "closed before completion" in result.error
        session.expire_all()
        [row] = await InsightRepo(session).list_for_report(report_id)
        assert row.processing_status == ProcessingStatus.FAILED
        assert row.title == ""

    async def test_unparseable_answer_still_completes(
        self, container: ServiceContainer, session, report: AnnualReport
    ) -> None:
        report_id = report.id
        container.invoker.script = ["Just some prose.\nNo JSON here."]
        [result] = await container.generator(session).generate_insights_for_report(
            report_id, [FIN]
        )
        assert result.success
        assert result.parse_method == "plaintext"

    async def test_extraction_failure_fails_all_types(
        self, settings, session_factory, session, report: AnnualReport, recording_sleep
    ) -> None:
        report_id = report.id
        invoker = FakeInvoker()
        container = ServiceContainer(
            settings=settings,
            session_factory=session_factory,
            extractor=FakeExtractor(fail=True),
            invoker=invoker,
            sleep=recording_sleep,
        )

        results = await container.generator(session).generate_insights_for_report(
            report_id, [FIN, RISK]
        )

        assert [r.success for r in results] == [False, False]
        assert all(r.error == "Failed to extract PDF content: document unreadable" for r in results)
        assert invoker.prompts == []

        session.expire_all()
        rows = await InsightRepo(session).list_for_report(report_id)
        assert len(rows) == 2
        assert all(row.processing_status == ProcessingStatus.FAILED for row in rows)

    async def test_unknown_type_reported_without_row(
        self, container: ServiceContainer, session, report: AnnualReport
    ) -> None:
        report_id = report.id
        results = await container.generator(session).generate_insights_for_report(
            report_id, ["crystal_ball", FIN]
        )
        assert [r.success for r in results] == [False, True]
        assert results[0].insight_id is None
        assert len(await InsightRepo(session).list_for_report(report_id)) == 1

    async def test_missing_report_raises(
        self, container: ServiceContainer, session, unknown_id
    ) -> None:
        with pytest.raises(NotFoundError) as exc_info:
            await container.generator(session).generate_insights_for_report(unknown_id, [FIN])
        assert exc_info.value.status_code == 404


class TestSpacing:
    async def test_sleep_between_calls_only(
        self, container: ServiceContainer, session, report: AnnualReport, recording_sleep
    ) -> None:
        report_id = report.id
        await container.generator(session).generate_insights_for_report(
            report_id, [FIN, RISK, EXEC]
        )
        assert recording_sleep.delays == [1.0, 1.0]

    async def test_single_type_never_sleeps(
        self, container: ServiceContainer, session, report: AnnualReport, recording_sleep
    ) -> None:
        report_id = report.id
        await container.generator(session).generate_insights_for_report(report_id, [FIN])
        assert recording_sleep.delays == []


class TestCompanyContext:
    def test_fallbacks(self) -> None:
        context = CompanyContext.from_report(None)
        assert context.company_name == "Unknown Company"
        assert context.industry == "Unknown Industry"
        assert context.year >= 2024
