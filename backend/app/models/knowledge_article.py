"""Knowledge base articles, learned from resolved tickets or written by staff."""

from __future__ import annotations

import datetime as dt

from sqlalchemy import CheckConstraint, DateTime, Enum, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.types import JSONType
from app.models.enums import ArticleSource, ArticleStatus

NEUTRAL_EFFECTIVENESS = 0.5


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class KnowledgeArticle(Base):
    __tablename__ = "knowledge_articles"
    __table_args__ = (
        CheckConstraint(
            "effectiveness_score >= 0 AND effectiveness_score <= 1",
            name="ck_knowledge_articles_effectiveness_range",
        ),
        Index("ix_knowledge_articles_status_effectiveness", "status", "effectiveness_score"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    summary: Mapped[str] = mapped_column(Text, nullable=False, default="")
    content: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str | None] = mapped_column(String(32), nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    source_ticket_ids: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    status: Mapped[ArticleStatus] = mapped_column(
        Enum(ArticleStatus, name="article_status", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=ArticleStatus.draft,
    )
    source: Mapped[ArticleSource] = mapped_column(
        Enum(ArticleSource, name="article_source", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=ArticleSource.manual,
    )
    effectiveness_score: Mapped[float] = mapped_column(Float, nullable=False, default=NEUTRAL_EFFECTIVENESS)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    helpful_votes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unhelpful_votes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # None marks a system generated article.
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    published_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
