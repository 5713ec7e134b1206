"""
SQLAlchemy ORM models.

`companies` and `annual_reports` are owned by the surrounding CRUD
application; this service only reads them (plus the `processed` flag).
Everything else is written by the insight pipeline and managed by the
Alembic migrations in `alembic/versions`.

JSON columns are JSONB on PostgreSQL and plain JSON elsewhere, so the
same models run against SQLite in local development and tests.
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class Base(DeclarativeBase):
    """Declarative base for all models."""


class InsightType(str, enum.Enum):
    """Analysis flavours the model can be asked for."""

    FINANCIAL_ANALYSIS = "financial_analysis"
    RISK_ASSESSMENT = "risk_assessment"
    BUSINESS_INSIGHTS = "business_insights"
    ENTREPRENEURIAL_RECOMMENDATIONS = "entrepreneurial_recommendations"
    EXECUTIVE_SUMMARY = "executive_summary"
    MARKET_ANALYSIS = "market_analysis"
    COMPETITIVE_ANALYSIS = "competitive_analysis"
    ESG_ANALYSIS = "esg_analysis"


class ProcessingStatus(str, enum.Enum):
    """Insight lifecycle. Moves forward only."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class EngagementAction(str, enum.Enum):
    VIEW = "view"
    LIKE = "like"
    SHARE = "share"
    BOOKMARK = "bookmark"
    SKIP = "skip"


class QueueState(str, enum.Enum):
    """Externally visible queue item state (derived, never stored)."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# ╔══════════════════════════════════════════════════════════╗
# ║  READ-ONLY TABLES: owned by the CRUD application        ║
# ╚══════════════════════════════════════════════════════════╝


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    company: Mapped[str] = mapped_column(String(255), nullable=False)
    industry: Mapped[str | None] = mapped_column(String(128))
    sector: Mapped[str | None] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )


class AnnualReport(Base):
    """One annual filing. Immutable once uploaded except for `processed`."""

    __tablename__ = "annual_reports"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("companies.id"), nullable=False, index=True
    )
    report_type: Mapped[str] = mapped_column(String(64), nullable=False, default="annual_report")
    year: Mapped[int | None] = mapped_column(Integer, comment="Fiscal year")
    filing_date: Mapped[date | None] = mapped_column(Date)
    file_url: Mapped[str | None] = mapped_column(Text, comment="Document location")
    processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    company: Mapped[Company] = relationship(lazy="joined")


# ╔══════════════════════════════════════════════════════════╗
# ║  PIPELINE TABLES: managed by Alembic migrations         ║
# ╚══════════════════════════════════════════════════════════╝


class PdfExtraction(Base):
    """Cached text rendering of a report document. Most recent row wins."""

    __tablename__ = "pdf_extractions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    annual_report_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("annual_reports.id", ondelete="CASCADE"), nullable=False, index=True
    )
    extracted_text: Mapped[str] = mapped_column(Text, nullable=False)
    page_count: Mapped[int] = mapped_column(Integer, default=0)
    extraction_method: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )


class Insight(Base):
    """A single generated analysis unit for one report and insight type."""

    __tablename__ = "ai_insights"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    annual_report_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("annual_reports.id", ondelete="CASCADE"), nullable=False
    )
    insight_type: Mapped[InsightType] = mapped_column(
        Enum(InsightType, name="insight_type", create_constraint=True, values_callable=_enum_values),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    summary: Mapped[str | None] = mapped_column(Text)
    key_metrics: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    confidence_score: Mapped[float | None] = mapped_column(Float)
    processing_status: Mapped[ProcessingStatus] = mapped_column(
        Enum(
            ProcessingStatus,
            name="processing_status",
            create_constraint=True,
            values_callable=_enum_values,
        ),
        default=ProcessingStatus.PENDING,
        nullable=False,
    )
    ai_model: Mapped[str | None] = mapped_column(String(128))
    tokens_used: Mapped[int | None] = mapped_column(Integer)
    processing_time_ms: Mapped[int | None] = mapped_column(Integer)
    processing_error: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), onupdate=_utcnow
    )

    __table_args__ = (
        Index("idx_ai_insights_report_type", "annual_report_id", "insight_type"),
        Index("idx_ai_insights_status_created", "processing_status", "created_at"),
    )


class InsightQueueItem(Base):
    """Deferred generation work for one report and a set of insight types.

    There is deliberately no status column: (started_at, completed_at,
    retry_count) decide the state, see `state`.
    """

    __tablename__ = "insight_processing_queue"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    annual_report_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("annual_reports.id", ondelete="CASCADE"), nullable=False
    )
    insight_types: Mapped[list[str]] = mapped_column(JSONType, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    scheduled_for: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_queue_unclaimed_order", "started_at", "priority", "scheduled_for"),
    )

    @property
    def state(self) -> QueueState:
        if self.completed_at is not None:
            return QueueState.COMPLETED
        if self.retry_count >= self.max_retries:
            return QueueState.FAILED
        if self.started_at is not None:
            return QueueState.PROCESSING
        return QueueState.PENDING


class InsightEngagement(Base):
    """Last interaction of a user with an insight (upserted)."""

    __tablename__ = "insight_engagements"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    insight_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    action: Mapped[EngagementAction] = mapped_column(
        Enum(
            EngagementAction,
            name="engagement_action",
            create_constraint=True,
            values_callable=_enum_values,
        ),
        nullable=False,
    )
    duration_seconds: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "insight_id", name="uq_engagement_user_insight"),
    )


class UserProfile(Base):
    """Feed personalisation: insight-type and industry interest ids."""

    __tablename__ = "user_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    interests: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), onupdate=_utcnow
    )
