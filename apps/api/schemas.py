"""Pydantic schemas for the Insights API.

Field names are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from core.db.models import EngagementAction, InsightType, QueueState
from core.pipeline.insights import DEFAULT_INSIGHT_TYPES


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HealthResponse(CamelModel):
    """Response body for GET /health."""

    status: str = "ok"
    version: str = "0.1.0"


class ErrorResponse(CamelModel):
    """Body of every non-2xx response."""

    success: bool = False
    error: str


# ── Queue ────────────────────────────────────────────────────


class EnqueueRequest(CamelModel):
    """Request body for POST /insights/queue."""

    report_id: uuid.UUID
    insight_types: list[InsightType] = Field(min_length=1)
    priority: int = 0


class EnqueueResponse(CamelModel):
    success: bool = True
    message: str
    report_id: uuid.UUID
    insight_types: list[InsightType]
    priority: int
    queue_item_id: uuid.UUID


class QueueStats(CamelModel):
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0


class QueueItemOut(CamelModel):
    id: uuid.UUID
    report_id: uuid.UUID
    insight_types: list[str]
    priority: int
    status: QueueState
    scheduled_for: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    retry_count: int
    max_retries: int
    error_message: str | None = None
    created_at: datetime | None = None
    report_type: str | None = None
    year: int | None = None
    company_name: str | None = None


class QueueStatusResponse(CamelModel):
    success: bool = True
    stats: QueueStats
    items: list[QueueItemOut]


class ProcessQueueResponse(CamelModel):
    success: bool = True
    processed: int
    successful: int
    failed: int
    results: list[dict[str, Any]]


# ── Generation ───────────────────────────────────────────────


class GenerateRequest(CamelModel):
    """Request body for POST /insights/generate (synchronous, admin use)."""

    report_id: uuid.UUID
    insight_types: list[InsightType] = Field(
        default_factory=lambda: list(DEFAULT_INSIGHT_TYPES), min_length=1
    )


class GenerateResponse(CamelModel):
    success: bool
    report_id: uuid.UUID
    results: list[dict[str, Any]]
    total_generated: int
    total_failed: int


# ── Feed ─────────────────────────────────────────────────────


class FeedInsight(CamelModel):
    id: uuid.UUID
    report_id: uuid.UUID
    insight_type: InsightType
    title: str
    content: str
    summary: str | None = None
    key_metrics: dict[str, Any] = Field(default_factory=dict)
    confidence_score: float | None = None
    ai_model: str | None = None
    created_at: datetime | None = None
    report_type: str | None = None
    year: int | None = None
    filing_date: date | None = None
    company_id: uuid.UUID | None = None
    company_name: str | None = None
    industry: str | None = None


class FeedResponse(CamelModel):
    success: bool = True
    insights: list[FeedInsight]
    has_more: bool
    total: int
    offset: int
    limit: int


# ── Engagement & preferences ─────────────────────────────────


class EngagementRequest(CamelModel):
    insight_id: uuid.UUID
    action: EngagementAction
    duration_seconds: int | None = Field(default=None, ge=0)
    user_id: uuid.UUID | None = None


class MessageResponse(CamelModel):
    success: bool = True
    message: str


class PreferencesRequest(CamelModel):
    user_id: uuid.UUID
    interests: list[str]


class PreferencesResponse(CamelModel):
    success: bool = True
    user_id: uuid.UUID
    interests: list[str]
