"""Schemas for AI triage, knowledge and administration endpoints."""

from __future__ import annotations

import datetime as dt
import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.sanitize import clean_list, clean_multiline, clean_single_line
from app.models.enums import AnalysisStatus, ArticleSource, ArticleStatus, FeedbackType, LearningStatus, TicketCategory, TicketPriority

MAX_TITLE_LEN = 255
MAX_CONTENT_LEN = 20000
MAX_TAGS = 15
MAX_TAG_LEN = 40
MAX_FEEDBACK_COMMENT_LEN = 2000
NEUTRAL_COMPLEXITY = 50
MAX_OUTPUT_ITEMS = 20
MAX_OUTPUT_ITEM_LEN = 300


def _finite_number(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError("invalid_number")
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        raise ValueError("invalid_number") from None
    if not math.isfinite(number):
        raise ValueError("invalid_number")
    return number


def _coerce_str_list(value: Any) -> list[str]:
    if value is not None and not isinstance(value, (str, list, tuple)):
        raise ValueError("expected_list")
    return clean_list(value, max_items=MAX_OUTPUT_ITEMS, item_max_length=MAX_OUTPUT_ITEM_LEN, truncate=True)


# ===== INFERENCE OUTPUT =====


class TriageOutput(BaseModel):
    """Structured triage answer expected from the model."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    key_issues: list[str] = Field(default_factory=list, alias="keyIssues")
    suggested_category: TicketCategory | None = Field(default=None, alias="suggestedCategory")
    suggested_priority: TicketPriority | None = Field(default=None, alias="suggestedPriority")
    complexity_score: int = Field(alias="complexityScore")
    required_expertise: list[str] = Field(default_factory=list, alias="requiredExpertise")
    estimated_hours: float = Field(default=0.0, alias="estimatedHours")
    reasoning: str = ""
    auto_response: str = Field(default="", alias="autoResponse")
    confidence: float = 0.0

    @field_validator("key_issues", "required_expertise", mode="before")
    @classmethod
    def normalize_lists(cls, value: Any) -> list[str]:
        return _coerce_str_list(value)

    @field_validator("suggested_category", "suggested_priority", mode="before")
    @classmethod
    def lower_enum(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower() or None
        return value

    @field_validator("complexity_score", mode="before")
    @classmethod
    def clamp_complexity(cls, value: Any) -> int:
        return max(0, min(100, int(round(_finite_number(value)))))

    @field_validator("estimated_hours", mode="before")
    @classmethod
    def non_negative_hours(cls, value: Any) -> float:
        if value is None:
            return 0.0
        return max(_finite_number(value), 0.0)

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, value: Any) -> float:
        confidence = _finite_number(value)
        # Some models answer on a 0-100 scale.
        if confidence > 1.0:
            confidence = confidence / 100.0
        return max(0.0, min(1.0, confidence))

    @field_validator("auto_response", "reasoning", mode="before")
    @classmethod
    def normalize_text(cls, value: Any) -> str:
        return clean_multiline(value) if value is not None else ""


class KnowledgeExtraction(BaseModel):
    """Structured article fields extracted from a resolved ticket."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str = Field(min_length=3)
    summary: str = ""
    problem: str = ""
    resolution_steps: list[str] = Field(default_factory=list, alias="resolutionSteps")
    root_cause: str = Field(default="", alias="rootCause")
    prevention: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)

    @field_validator("title", mode="before")
    @classmethod
    def normalize_title(cls, value: Any) -> str:
        return clean_single_line(value)[:MAX_TITLE_LEN]

    @field_validator("summary", "problem", "root_cause", mode="before")
    @classmethod
    def normalize_text(cls, value: Any) -> str:
        return clean_multiline(value) if value is not None else ""

    @field_validator("resolution_steps", "prevention", "tags", mode="before")
    @classmethod
    def normalize_lists(cls, value: Any) -> list[str]:
        return _coerce_str_list(value)


# ===== TRIAGE =====


class TriageResult(BaseModel):
    status: AnalysisStatus
    ticket_id: str
    key_issues: list[str] = Field(default_factory=list)
    suggested_category: TicketCategory
    suggested_priority: TicketPriority
    complexity_score: int = NEUTRAL_COMPLEXITY
    complexity_factors: list[dict[str, Any]] = Field(default_factory=list)
    required_expertise: list[str] = Field(default_factory=list)
    estimated_hours: float | None = None
    reasoning: str = ""
    auto_response: str | None = None
    auto_response_id: str | None = None
    confidence: float = 0.0
    applied: bool = False
    from_cache: bool = False
    blocked_reason: str | None = None
    retry_after: int | None = None
    estimated_cost: float | None = None
    fallback_articles: list[dict[str, Any]] = Field(default_factory=list)
    escalation: dict[str, Any] | None = None

    def public_view(self) -> dict[str, Any]:
        """Payload safe for non-admin callers: no governor or backend diagnostics."""
        return self.model_dump(exclude={"blocked_reason", "retry_after", "estimated_cost"})


class ComplexityScoreOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Any
    ticket_id: str
    score: int
    factors: list[dict[str, Any]]
    reasoning: str
    created_at: dt.datetime


# ===== KNOWLEDGE =====


class ArticleCreate(BaseModel):
    title: str = Field(min_length=3, max_length=MAX_TITLE_LEN)
    content: str = Field(min_length=10, max_length=MAX_CONTENT_LEN)
    summary: str = Field(default="", max_length=2000)
    category: TicketCategory | None = None
    tags: list[str] = Field(default_factory=list, max_length=MAX_TAGS)

    @field_validator("title", mode="before")
    @classmethod
    def normalize_title(cls, value: str) -> str:
        return clean_single_line(value)

    @field_validator("content", "summary", mode="before")
    @classmethod
    def normalize_body(cls, value: str) -> str:
        return clean_multiline(value)

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, value: list[str]) -> list[str]:
        return [tag.lower() for tag in clean_list(value, max_items=MAX_TAGS, item_max_length=MAX_TAG_LEN)]


class ArticleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    summary: str
    content: str
    category: str | None = None
    tags: list[str]
    source_ticket_ids: list[str]
    status: ArticleStatus
    source: ArticleSource
    effectiveness_score: float
    usage_count: int
    helpful_votes: int
    unhelpful_votes: int
    created_by: str | None = None
    approved_by: str | None = None
    published_at: dt.datetime | None = None
    created_at: dt.datetime


class ArticlePublishRequest(BaseModel):
    approve: bool = True


# ===== FEEDBACK =====


class FeedbackCreate(BaseModel):
    feedback_type: FeedbackType
    reference_id: str = Field(min_length=1, max_length=64)
    rating: int
    comment: str | None = Field(default=None, max_length=MAX_FEEDBACK_COMMENT_LEN)
    ticket_id: str | None = Field(default=None, max_length=20)

    @field_validator("rating")
    @classmethod
    def rating_is_thumb(cls, value: int) -> int:
        if value not in (1, 5):
            raise ValueError("rating_must_be_1_or_5")
        return value

    @field_validator("reference_id", "ticket_id", mode="before")
    @classmethod
    def normalize_ids(cls, value: str | None) -> str | None:
        cleaned = clean_single_line(value)
        return cleaned or None

    @field_validator("comment", mode="before")
    @classmethod
    def normalize_comment(cls, value: str | None) -> str | None:
        cleaned = clean_multiline(value)
        return cleaned or None


class FeedbackOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Any
    feedback_type: FeedbackType
    reference_id: str
    user_id: str
    rating: int
    comment: str | None = None
    ticket_id: str | None = None
    created_at: dt.datetime


# ===== LEARNING =====


class LearningOutcomeOut(BaseModel):
    ticket_id: str
    status: str
    reason: str | None = None
    article_id: int | None = None
    used_inference: bool = False


class LearningQueueStatus(BaseModel):
    counts: dict[LearningStatus, int]
    total: int
    worker_running: bool = False
    worker_backlog: int = 0


class LearningProcessResult(BaseModel):
    recovered: int = 0
    processed: int = 0
    drafted: int = 0
    failed: int = 0
    skipped: int = 0


# ===== ESCALATION =====


class EscalationRuleCreate(BaseModel):
    name: str = Field(min_length=2, max_length=128)
    description: str | None = Field(default=None, max_length=2000)
    priority: int = 0
    min_complexity: int | None = Field(default=None, ge=0, le=100)
    max_complexity: int | None = Field(default=None, ge=0, le=100)
    categories: list[TicketCategory] = Field(default_factory=list)
    priorities: list[TicketPriority] = Field(default_factory=list)
    statuses: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list, max_length=MAX_TAGS)
    target_team_id: int | None = None
    target_queue: str | None = Field(default=None, max_length=64)

    @field_validator("name", "target_queue", mode="before")
    @classmethod
    def normalize_name(cls, value: str | None) -> str | None:
        cleaned = clean_single_line(value)
        return cleaned or None

    @field_validator("keywords", mode="before")
    @classmethod
    def normalize_keywords(cls, value: list[str]) -> list[str]:
        return [item.lower() for item in clean_list(value, max_items=MAX_TAGS, item_max_length=MAX_TAG_LEN)]

    def conditions(self) -> dict[str, Any]:
        conditions: dict[str, Any] = {}
        if self.min_complexity is not None:
            conditions["min_complexity"] = self.min_complexity
        if self.max_complexity is not None:
            conditions["max_complexity"] = self.max_complexity
        if self.categories:
            conditions["categories"] = [item.value for item in self.categories]
        if self.priorities:
            conditions["priorities"] = [item.value for item in self.priorities]
        if self.statuses:
            conditions["statuses"] = [item.lower() for item in self.statuses]
        if self.keywords:
            conditions["keywords"] = self.keywords
        return conditions


class EscalationRuleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None = None
    conditions: dict[str, Any]
    target_team_id: int | None = None
    target_queue: str | None = None
    priority: int
    is_active: bool


# ===== ADMIN SETTINGS =====


class AISettingsUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    auto_response_enabled: bool | None = None
    confidence_threshold: float | None = None
    max_response_length: int | None = None
    min_auto_response_length: int | None = None
    response_timeout: int | None = None
    auto_learn_enabled: bool | None = None
    article_approval_required: bool | None = None
    complexity_threshold: int | None = None
    escalation_enabled: bool | None = None
    escalation_team_id: int | None = None
    model_id: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None

    def updates(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class CostLimitsUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    daily_limit_usd: float | None = Field(default=None, ge=0)
    monthly_limit_usd: float | None = Field(default=None, ge=0)
    max_tokens_per_request: int | None = Field(default=None, ge=1)
    max_requests_per_day: int | None = Field(default=None, ge=0)
    max_requests_per_hour: int | None = Field(default=None, ge=0)
    max_requests_per_minute: int | None = Field(default=None, ge=0)
    restricted_account: bool | None = None

    def updates(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)
