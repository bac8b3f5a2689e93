"""initial schema: tickets and the AI triage/knowledge pipeline

Revision ID: 0001_initial
Revises: 
Create Date: 2026-10-16 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

JSONB = postgresql.JSONB(astext_type=sa.Text())

ENUMS = {
    "ticket_status": ("open", "in_progress", "resolved", "closed", "on_hold"),
    "ticket_priority": ("urgent", "high", "medium", "low"),
    "ticket_category": ("bug", "feature", "support", "enhancement", "incident", "request"),
    "article_status": ("draft", "published", "archived"),
    "article_source": ("manual", "ai_generated", "extracted"),
    "learning_status": ("pending", "processing", "done", "failed"),
    "feedback_type": ("auto_response", "knowledge_article"),
}


def _col(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "tickets",
        sa.Column("id", sa.String(length=20), primary_key=True, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("status", _col("ticket_status"), nullable=False),
        sa.Column("priority", _col("ticket_priority"), nullable=False),
        sa.Column("category", _col("ticket_category"), nullable=False),
        sa.Column("reporter_id", sa.String(length=64), nullable=True),
        sa.Column("assignee_team_id", sa.Integer(), nullable=True),
        sa.Column("tags", JSONB, nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_tickets_reporter_id", "tickets", ["reporter_id"], unique=False)

    op.create_table(
        "ticket_comments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("ticket_id", sa.String(length=20), nullable=False),
        sa.Column("author", sa.String(length=255), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_ticket_comments_ticket_id", "ticket_comments", ["ticket_id"], unique=False)

    op.create_table(
        "complexity_scores",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("ticket_id", sa.String(length=20), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("factors", JSONB, nullable=False),
        sa.Column("reasoning", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_complexity_scores_ticket_created", "complexity_scores", ["ticket_id", "created_at"], unique=False)

    op.create_table(
        "auto_responses",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("ticket_id", sa.String(length=20), nullable=False),
        sa.Column("response", sa.Text(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("was_applied", sa.Boolean(), nullable=False),
        sa.Column("was_helpful", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_auto_responses_ticket_id", "auto_responses", ["ticket_id"], unique=False)

    op.create_table(
        "faq_cache",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("question_hash", sa.String(length=64), nullable=False),
        sa.Column("original_question", sa.Text(), nullable=False),
        sa.Column("normalized_question", sa.Text(), nullable=False),
        sa.Column("answer", sa.Text(), nullable=False),
        sa.Column("hit_count", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_hit_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("question_hash", name="uq_faq_cache_question_hash"),
    )

    op.create_table(
        "knowledge_articles",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("summary", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("category", sa.String(length=32), nullable=True),
        sa.Column("tags", JSONB, nullable=False),
        sa.Column("source_ticket_ids", JSONB, nullable=False),
        sa.Column("status", _col("article_status"), nullable=False),
        sa.Column("source", _col("article_source"), nullable=False),
        sa.Column("effectiveness_score", sa.Float(), nullable=False),
        sa.Column("usage_count", sa.Integer(), nullable=False),
        sa.Column("helpful_votes", sa.Integer(), nullable=False),
        sa.Column("unhelpful_votes", sa.Integer(), nullable=False),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        sa.Column("approved_by", sa.String(length=64), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "effectiveness_score >= 0 AND effectiveness_score <= 1",
            name="ck_knowledge_articles_effectiveness_range",
        ),
    )
    op.create_index(
        "ix_knowledge_articles_status_effectiveness",
        "knowledge_articles",
        ["status", "effectiveness_score"],
        unique=False,
    )

    op.create_table(
        "learning_queue",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("ticket_id", sa.String(length=20), nullable=False),
        sa.Column("process_status", _col("learning_status"), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("article_id", sa.Integer(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["article_id"], ["knowledge_articles.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("ticket_id", name="uq_learning_queue_ticket_id"),
    )
    op.create_index("ix_learning_queue_status_created", "learning_queue", ["process_status", "created_at"], unique=False)

    op.create_table(
        "escalation_rules",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("conditions", JSONB, nullable=False),
        sa.Column("target_team_id", sa.Integer(), nullable=True),
        sa.Column("target_queue", sa.String(length=64), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "ai_usage_records",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("operation", sa.String(length=64), nullable=False),
        sa.Column("model_id", sa.String(length=128), nullable=False),
        sa.Column("input_tokens", sa.Integer(), nullable=False),
        sa.Column("output_tokens", sa.Integer(), nullable=False),
        sa.Column("cost", sa.Float(), nullable=False),
        sa.Column("caller_id", sa.String(length=64), nullable=True),
        sa.Column("ticket_id", sa.String(length=20), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_ai_usage_records_created_at", "ai_usage_records", ["created_at"], unique=False)
    op.create_index("ix_ai_usage_records_caller_created", "ai_usage_records", ["caller_id", "created_at"], unique=False)

    op.create_table(
        "ai_feedback",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("feedback_type", _col("feedback_type"), nullable=False),
        sa.Column("reference_id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("ticket_id", sa.String(length=20), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("rating IN (1, 5)", name="ck_ai_feedback_rating"),
    )
    op.create_index("ix_ai_feedback_reference", "ai_feedback", ["feedback_type", "reference_id"], unique=False)

    op.create_table(
        "ai_settings",
        sa.Column("key", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("value", JSONB, nullable=False),
        sa.Column("updated_by", sa.String(length=64), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "automation_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("ticket_id", sa.String(length=20), nullable=True),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("actor", sa.String(length=64), nullable=False),
        sa.Column("payload", JSONB, nullable=True),
        sa.Column("delivered", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_automation_events_ticket_id", "automation_events", ["ticket_id"], unique=False)
    op.create_index("ix_automation_events_delivered_created", "automation_events", ["delivered", "created_at"], unique=False)


def downgrade() -> None:
    for table in (
        "automation_events",
        "ai_settings",
        "ai_feedback",
        "ai_usage_records",
        "escalation_rules",
        "learning_queue",
        "knowledge_articles",
        "faq_cache",
        "auto_responses",
        "complexity_scores",
        "ticket_comments",
        "tickets",
    ):
        op.drop_table(table)
    bind = op.get_bind()
    for name, values in reversed(list(ENUMS.items())):
        postgresql.ENUM(*values, name=name).drop(bind, checkfirst=True)
