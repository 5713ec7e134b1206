"""Create insight pipeline tables

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-19

NOTE: companies and annual_reports belong to the CRUD application and
are only created here when missing (fresh local databases). Downgrade
never drops them.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ENUM, JSONB, UUID


revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


INSIGHT_TYPES = (
    "financial_analysis", "risk_assessment", "business_insights",
    "entrepreneurial_recommendations", "executive_summary",
    "market_analysis", "competitive_analysis", "esg_analysis",
)


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    # ── Enums ─────────────────────────────────────────
    insight_type = ENUM(*INSIGHT_TYPES, name="insight_type", create_type=False)
    processing_status = ENUM(
        "pending", "processing", "completed", "failed",
        name="processing_status", create_type=False,
    )
    engagement_action = ENUM(
        "view", "like", "share", "bookmark", "skip",
        name="engagement_action", create_type=False,
    )
    for enum in (insight_type, processing_status, engagement_action):
        enum.create(bind, checkfirst=True)

    # ── companies / annual_reports (CRUD-owned) ───────
    if not inspector.has_table("companies"):
        op.create_table(
            "companies",
            sa.Column("id", UUID(as_uuid=True), primary_key=True,
                      server_default=sa.text("gen_random_uuid()")),
            sa.Column("company", sa.String(255), nullable=False),
            sa.Column("industry", sa.String(128), nullable=True),
            sa.Column("sector", sa.String(128), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        )

    if not inspector.has_table("annual_reports"):
        op.create_table(
            "annual_reports",
            sa.Column("id", UUID(as_uuid=True), primary_key=True,
                      server_default=sa.text("gen_random_uuid()")),
            sa.Column("company_id", UUID(as_uuid=True),
                      sa.ForeignKey("companies.id"), nullable=False),
            sa.Column("report_type", sa.String(64), nullable=False,
                      server_default="annual_report"),
            sa.Column("year", sa.Integer(), nullable=True, comment="Fiscal year"),
            sa.Column("filing_date", sa.Date(), nullable=True),
            sa.Column("file_url", sa.Text(), nullable=True, comment="Document location"),
            sa.Column("processed", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index("ix_annual_reports_company_id", "annual_reports", ["company_id"])

    # ── pdf_extractions ───────────────────────────────
    op.create_table(
        "pdf_extractions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text("gen_random_uuid()")),
        sa.Column("annual_report_id", UUID(as_uuid=True),
                  sa.ForeignKey("annual_reports.id", ondelete="CASCADE"), nullable=False),
        sa.Column("extracted_text", sa.Text(), nullable=False),
        sa.Column("page_count", sa.Integer(), server_default="0"),
        sa.Column("extraction_method", sa.String(32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_pdf_extractions_annual_report_id", "pdf_extractions", ["annual_report_id"]
    )

    # ── ai_insights ───────────────────────────────────
    op.create_table(
        "ai_insights",
        sa.Column("id", UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text("gen_random_uuid()")),
        sa.Column("annual_report_id", UUID(as_uuid=True),
                  sa.ForeignKey("annual_reports.id", ondelete="CASCADE"), nullable=False),
        sa.Column("insight_type", insight_type, nullable=False),
        sa.Column("title", sa.String(500), nullable=False, server_default=""),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("key_metrics", JSONB(), server_default=sa.text("'{}'::jsonb")),
        sa.Column("confidence_score", sa.Float(), nullable=True),
        sa.Column("processing_status", processing_status, nullable=False,
                  server_default="pending"),
        sa.Column("ai_model", sa.String(128), nullable=True),
        sa.Column("tokens_used", sa.Integer(), nullable=True),
        sa.Column("processing_time_ms", sa.Integer(), nullable=True),
        sa.Column("processing_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "confidence_score IS NULL OR (confidence_score >= 0 AND confidence_score <= 1)",
            name="ck_ai_insights_confidence_range",
        ),
    )
    op.create_index(
        "idx_ai_insights_report_type", "ai_insights", ["annual_report_id", "insight_type"]
    )
    op.create_index(
        "idx_ai_insights_status_created", "ai_insights", ["processing_status", "created_at"]
    )

    # ── insight_processing_queue ──────────────────────
    op.create_table(
        "insight_processing_queue",
        sa.Column("id", UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text("gen_random_uuid()")),
        sa.Column("annual_report_id", UUID(as_uuid=True),
                  sa.ForeignKey("annual_reports.id", ondelete="CASCADE"), nullable=False),
        sa.Column("insight_types", JSONB(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "idx_queue_unclaimed_order",
        "insight_processing_queue",
        ["started_at", "priority", "scheduled_for"],
    )

    # ── insight_engagements ───────────────────────────
    op.create_table(
        "insight_engagements",
        sa.Column("id", UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text("gen_random_uuid()")),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column("insight_id", UUID(as_uuid=True), nullable=False),
        sa.Column("action", engagement_action, nullable=False),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "insight_id", name="uq_engagement_user_insight"),
    )

    # ── user_profiles ─────────────────────────────────
    if not inspector.has_table("user_profiles"):
        op.create_table(
            "user_profiles",
            sa.Column("id", UUID(as_uuid=True), primary_key=True),
            sa.Column("interests", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        )


def downgrade() -> None:
    op.drop_table("insight_engagements")
    op.drop_table("insight_processing_queue")
    op.drop_table("ai_insights")
    op.drop_table("pdf_extractions")

    op.execute("DROP TYPE IF EXISTS engagement_action")
    op.execute("DROP TYPE IF EXISTS processing_status")
    op.execute("DROP TYPE IF EXISTS insight_type")
