"""Shared enum values used by the database models and schemas."""

from __future__ import annotations

import enum


class UserRole(str, enum.Enum):
    admin = "admin"
    agent = "agent"
    user = "user"


class TicketStatus(str, enum.Enum):
    open = "open"
    in_progress = "in_progress"
    resolved = "resolved"
    closed = "closed"
    on_hold = "on_hold"


class TicketPriority(str, enum.Enum):
    urgent = "urgent"
    high = "high"
    medium = "medium"
    low = "low"


class TicketCategory(str, enum.Enum):
    bug = "bug"
    feature = "feature"
    support = "support"
    enhancement = "enhancement"
    incident = "incident"
    request = "request"


class ArticleStatus(str, enum.Enum):
    draft = "draft"
    published = "published"
    archived = "archived"


class ArticleSource(str, enum.Enum):
    manual = "manual"
    ai_generated = "ai_generated"
    # Draft built from the raw comment trail when inference was unavailable.
    extracted = "extracted"


class LearningStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    done = "done"
    failed = "failed"


class FeedbackType(str, enum.Enum):
    auto_response = "auto_response"
    knowledge_article = "knowledge_article"


class AnalysisStatus(str, enum.Enum):
    completed = "completed"
    cached = "cached"
    blocked = "blocked"
    unavailable = "unavailable"
    fallback = "fallback"


class PipelineEvent(str, enum.Enum):
    auto_response_applied = "auto-response-applied"
    ticket_escalated = "ticket-escalated"
    article_published = "article-published"
