"""User ratings of AI artifacts."""

from __future__ import annotations

import datetime as dt
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime, Enum, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.enums import FeedbackType


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class AiFeedback(Base):
    __tablename__ = "ai_feedback"
    __table_args__ = (
        CheckConstraint("rating IN (1, 5)", name="ck_ai_feedback_rating"),
        Index("ix_ai_feedback_reference", "feedback_type", "reference_id"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    feedback_type: Mapped[FeedbackType] = mapped_column(
        Enum(FeedbackType, name="feedback_type", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    reference_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    ticket_id: Mapped[str | None] = mapped_column(String(20), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
