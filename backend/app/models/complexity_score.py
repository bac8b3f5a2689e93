"""Complexity scoring records produced by ticket triage."""

from __future__ import annotations

import datetime as dt
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.types import JSONType


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class ComplexityScore(Base):
    """One row per analysis run; the latest row for a ticket is authoritative."""

    __tablename__ = "complexity_scores"
    __table_args__ = (
        Index("ix_complexity_scores_ticket_created", "ticket_id", "created_at"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    ticket_id: Mapped[str] = mapped_column(ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    factors: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    reasoning: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
