"""
Tests for the Insights API.

Uses httpx.AsyncClient over ASGITransport against an app built with a
test ServiceContainer (in-memory SQLite, fake extractor and model), so
no lifespan, network or real database is needed.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import httpx
import pytest
from pydantic import SecretStr

from apps.api.main import ANONYMOUS_USER_ID, create_app, split_interests
from core.db.models import EngagementAction, Insight, InsightType, ProcessingStatus
from core.db.repositories import EngagementRepo, QueueRepo
from tests.fakes import CRON_SECRET

AUTH = {"Authorization": f"Bearer {CRON_SECRET}"}


# ── Helpers ──────────────────────────────────────────────────


@pytest.fixture
async def client(container):
    app = create_app(container)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _add_completed(session, report_id, insight_type, title, age_minutes=0) -> None:
    session.add(
        Insight(
            annual_report_id=report_id,
            insight_type=insight_type,
            title=title,
            content=f"{title} content",
            summary=f"{title} summary",
            key_metrics={"k": "v"},
            confidence_score=0.8,
            processing_status=ProcessingStatus.COMPLETED,
            created_at=datetime.now(UTC) - timedelta(minutes=age_minutes),
        )
    )
    await session.commit()


# ── Health ───────────────────────────────────────────────────


class TestHealth:
    async def test_health_ok(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert "version" in data

    async def test_uninitialised_container(self):
        transport = httpx.ASGITransport(app=create_app())
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
            resp = await c.get("/insights/queue")
        assert resp.status_code == 503
        assert resp.json() == {"success": False, "error": "Service not initialised"}

    async def test_error_bodies_documented(self, client):
        schema = (await client.get("/openapi.json")).json()
        ref = "#/components/schemas/ErrorResponse"
        paths = schema["paths"]

        def error_ref(path: str, method: str, status: str) -> str:
            content = paths[path][method]["responses"][status]["content"]
            return content["application/json"]["schema"]["$ref"]

        assert error_ref("/insights/queue", "post", "404") == ref
        assert error_ref("/insights/process-queue", "post", "401") == ref
        assert error_ref("/insights/feed", "get", "500") == ref
        assert set(schema["components"]["schemas"]["ErrorResponse"]["properties"]) == {
            "success",
            "error",
        }


# ── Enqueue ──────────────────────────────────────────────────


class TestEnqueue:
    async def test_enqueue_ok(self, client, session, report):
        report_id = report.id
        resp = await client.post(
            "/insights/queue",
            json={
                "reportId": str(report_id),
                "insightTypes": ["financial_analysis", "risk_assessment"],
                "priority": 1,
            },
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["reportId"] == str(report_id)
        assert data["insightTypes"] == ["financial_analysis", "risk_assessment"]
        assert data["priority"] == 1

        item = await QueueRepo(session).get(uuid.UUID(data["queueItemId"]))
        assert item.insight_types == ["financial_analysis", "risk_assessment"]
        assert item.max_retries == 3
        assert item.started_at is None

    async def test_priority_defaults_to_zero(self, client, report):
        resp = await client.post(
            "/insights/queue",
            json={"reportId": str(report.id), "insightTypes": ["esg_analysis"]},
        )
        assert resp.status_code == 200
        assert resp.json()["priority"] == 0

    @pytest.mark.parametrize(
        "body",
        [
            {"insightTypes": ["financial_analysis"]},
            {"reportId": "not-a-uuid", "insightTypes": ["financial_analysis"]},
            {"reportId": "12345678-1234-5678-1234-567812345678"},
            {"reportId": "12345678-1234-5678-1234-567812345678", "insightTypes": []},
            {"reportId": "12345678-1234-5678-1234-567812345678", "insightTypes": ["horoscope"]},
        ],
    )
    async def test_invalid_body_400(self, client, body):
        resp = await client.post("/insights/queue", json=body)
        assert resp.status_code == 400
        data = resp.json()
        assert data["success"] is False
        assert data["error"].startswith("Invalid request")

    async def test_unknown_report_404(self, client, unknown_id):
        resp = await client.post(
            "/insights/queue",
            json={"reportId": str(unknown_id), "insightTypes": ["financial_analysis"]},
        )
        assert resp.status_code == 404
        assert resp.json() == {"success": False, "error": "Report not found"}


# ── Queue status ─────────────────────────────────────────────


class TestQueueStatus:
    async def test_stats_and_items(self, client, session, report):
        report_id = report.id
        repo = QueueRepo(session)
        await repo.enqueue(report_id, [InsightType.FINANCIAL_ANALYSIS])
        done = await repo.enqueue(report_id, [InsightType.RISK_ASSESSMENT], priority=5)
        await session.commit()
        await repo.claim(done.id)
        await repo.complete(done.id)
        await session.commit()

        resp = await client.get("/insights/queue")

        assert resp.status_code == 200
        data = resp.json()
        assert data["stats"] == {"pending": 1, "processing": 0, "completed": 1, "failed": 0}
        assert len(data["items"]) == 2
        item = next(i for i in data["items"] if i["priority"] == 5)
        assert item["status"] == "completed"
        assert item["reportId"] == str(report_id)
        assert item["companyName"] == "Acme Corp"
        assert item["year"] == 2023
        assert item["completedAt"] is not None


# ── Process queue ────────────────────────────────────────────


class TestProcessQueue:
    async def test_missing_token_401(self, client):
        resp = await client.post("/insights/process-queue")
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "error": "Unauthorized"}

    async def test_wrong_token_401(self, client):
        resp = await client.post(
            "/insights/process-queue", headers={"Authorization": "Bearer wrong"}
        )
        assert resp.status_code == 401

    async def test_secret_not_configured_500(self, client, container):
        container.settings.cron_secret = SecretStr("")
        resp = await client.post("/insights/process-queue", headers=AUTH)
        assert resp.status_code == 500
        assert resp.json()["error"] == "CRON_SECRET not configured on server"

    async def test_processes_batch(self, client, session, report):
        report_id = report.id
        await QueueRepo(session).enqueue(report_id, [InsightType.FINANCIAL_ANALYSIS])
        await session.commit()

        resp = await client.post("/insights/process-queue?batchSize=1", headers=AUTH)

        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert (data["processed"], data["successful"], data["failed"]) == (1, 1, 0)
        assert data["results"][0]["reportId"] == str(report_id)

    async def test_batch_size_bounds(self, client):
        resp = await client.post("/insights/process-queue?batchSize=0", headers=AUTH)
        assert resp.status_code == 400


# ── Generate ─────────────────────────────────────────────────


class TestGenerate:
    async def test_generate_defaults(self, client, report, fake_invoker):
        resp = await client.post("/insights/generate", json={"reportId": str(report.id)})

        assert resp.status_code == 200
        data = resp.json()
        assert data["totalGenerated"] == 3
        assert data["totalFailed"] == 0
        assert [r["insightType"] for r in data["results"]] == [
            "financial_analysis",
            "business_insights",
            "executive_summary",
        ]
        assert len(fake_invoker.prompts) == 3

    async def test_generate_unknown_report(self, client, unknown_id):
        resp = await client.post("/insights/generate", json={"reportId": str(unknown_id)})
        assert resp.status_code == 404


# ── Feed ─────────────────────────────────────────────────────


class TestFeed:
    async def test_pagination(self, client, session, report):
        report_id = report.id
        for i in range(3):
            await _add_completed(session, report_id, InsightType.FINANCIAL_ANALYSIS, f"t{i}", i)

        first = (await client.get("/insights/feed?limit=2")).json()
        second = (await client.get("/insights/feed?limit=2&offset=2")).json()

        assert [i["title"] for i in first["insights"]] == ["t0", "t1"]
        assert first["hasMore"] is True
        assert first["total"] == 3
        assert [i["title"] for i in second["insights"]] == ["t2"]
        assert second["hasMore"] is False

        insight = first["insights"][0]
        assert insight["companyName"] == "Acme Corp"
        assert insight["industry"] == "Technology"
        assert insight["insightType"] == "financial_analysis"
        assert insight["keyMetrics"] == {"k": "v"}
        assert insight["filingDate"] == "2024-03-01"

    async def test_limit_capped(self, client, container):
        resp = await client.get("/insights/feed?limit=1000")
        assert resp.json()["limit"] == container.settings.feed_max_limit

    async def test_interests_filter(self, client, session, report, make_report):
        acme_id = report.id
        bank = await make_report("BankCo", "Financial Services")
        bank_id = bank.id
        await _add_completed(session, acme_id, InsightType.FINANCIAL_ANALYSIS, "acme-fin")
        await _add_completed(session, acme_id, InsightType.RISK_ASSESSMENT, "acme-risk")
        await _add_completed(session, bank_id, InsightType.ESG_ANALYSIS, "bank-esg")
        user_id = str(uuid.uuid4())

        resp = await client.post(
            "/insights/preferences",
            json={"userId": user_id, "interests": ["risk_assessment", "financial_services"]},
        )
        assert resp.status_code == 200

        data = (await client.get(f"/insights/feed?userId={user_id}")).json()
        assert {i["title"] for i in data["insights"]} == {"acme-risk", "bank-esg"}

    async def test_user_without_interests_sees_everything(self, client, session, report):
        await _add_completed(session, report.id, InsightType.FINANCIAL_ANALYSIS, "any")
        data = (await client.get(f"/insights/feed?userId={uuid.uuid4()}")).json()
        assert data["total"] == 1


# ── Engagement ───────────────────────────────────────────────


class TestEngagement:
    async def test_records_engagement(self, client, session):
        insight_id, user_id = uuid.uuid4(), uuid.uuid4()
        for duration in (5, 30):
            resp = await client.post(
                "/insights/engagement",
                json={
                    "insightId": str(insight_id),
                    "action": "view",
                    "durationSeconds": duration,
                    "userId": str(user_id),
                },
            )
            assert resp.status_code == 200
            assert resp.json()["success"] is True

        [row] = await EngagementRepo(session).list_for_user(user_id)
        assert row.duration_seconds == 30

    async def test_anonymous_user(self, client, session):
        resp = await client.post(
            "/insights/engagement", json={"insightId": str(uuid.uuid4()), "action": "like"}
        )
        assert resp.status_code == 200
        [row] = await EngagementRepo(session).list_for_user(ANONYMOUS_USER_ID)
        assert row.action == EngagementAction.LIKE

    async def test_storage_failure_not_surfaced(self, client, monkeypatch):
        async def broken_upsert(self, *args, **kwargs):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(EngagementRepo, "upsert", broken_upsert)

        resp = await client.post(
            "/insights/engagement", json={"insightId": str(uuid.uuid4()), "action": "share"}
        )
        assert resp.status_code == 200
        assert resp.json()["success"] is True

    async def test_invalid_action_400(self, client):
        resp = await client.post(
            "/insights/engagement", json={"insightId": str(uuid.uuid4()), "action": "stare"}
        )
        assert resp.status_code == 400


# ── Preferences ──────────────────────────────────────────────


class TestPreferences:
    async def test_round_trip(self, client):
        user_id = str(uuid.uuid4())
        empty = (await client.get(f"/insights/preferences?userId={user_id}")).json()
        assert empty["interests"] == []

        await client.post(
            "/insights/preferences", json={"userId": user_id, "interests": ["esg_analysis"]}
        )
        data = (await client.get(f"/insights/preferences?userId={user_id}")).json()
        assert data == {"success": True, "userId": user_id, "interests": ["esg_analysis"]}


class TestSplitInterests:
    def test_types_and_industries(self):
        types, industries = split_interests(["esg_analysis", "Financial_Services", "energy"])
        assert types == [InsightType.ESG_ANALYSIS]
        assert industries == ["financial services", "energy"]
