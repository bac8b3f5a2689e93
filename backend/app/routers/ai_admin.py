"""Administrator endpoints for AI settings, cost control and knowledge review."""

from __future__ import annotations

import datetime as dt
from typing import Any

from fastapi import APIRouter, Body, Depends, Path, Query
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.deps import Caller, require_admin
from app.core.exceptions import BadRequestError, NotEligible
from app.core.rate_limit import rate_limit
from app.db.session import get_db
from app.models.enums import ArticleStatus
from app.schemas.ai import (
    AISettingsUpdate,
    ArticleCreate,
    ArticleOut,
    ArticlePublishRequest,
    CostLimitsUpdate,
    EscalationRuleCreate,
    EscalationRuleOut,
    LearningOutcomeOut,
    LearningProcessResult,
    LearningQueueStatus,
)
from app.services.ai.escalation import create_rule, deactivate_rule, list_rules
from app.services.ai.pipeline import AIPipeline, get_pipeline
from app.services.knowledge_articles import (
    archive_article,
    auto_publish_drafts,
    create_article,
    list_articles,
    publish_article,
    restore_article,
    unpublish_low_scoring,
)

router = APIRouter(dependencies=[Depends(rate_limit("ai")), Depends(require_admin)])


# ----- settings -----


@router.get("/settings")
def get_ai_settings(pipeline: AIPipeline = Depends(get_pipeline)) -> dict[str, Any]:
    return pipeline.settings_provider.get_ai_settings().model_dump()


@router.put("/settings")
def put_ai_settings(
    payload: AISettingsUpdate = Body(...),
    caller: Caller = Depends(require_admin),
    pipeline: AIPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    return pipeline.settings_provider.update_ai_settings(payload.updates(), updated_by=caller.id).model_dump()


@router.get("/cost-limits")
def get_cost_limits(pipeline: AIPipeline = Depends(get_pipeline)) -> dict[str, Any]:
    return pipeline.settings_provider.get_cost_limits().model_dump()


@router.put("/cost-limits")
def put_cost_limits(
    payload: CostLimitsUpdate = Body(...),
    caller: Caller = Depends(require_admin),
    pipeline: AIPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    return pipeline.settings_provider.update_cost_limits(payload.updates(), updated_by=caller.id).model_dump()


# ----- usage & governor -----


@router.get("/usage/daily")
def usage_daily(
    day: dt.date | None = Query(default=None),
    pipeline: AIPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    return pipeline.ledger.daily_summary(day)


@router.get("/usage/monthly")
def usage_monthly(pipeline: AIPipeline = Depends(get_pipeline)) -> dict[str, Any]:
    summary = pipeline.ledger.monthly_summary()
    limits = pipeline.settings_provider.get_cost_limits()
    summary["monthly_limit_usd"] = limits.monthly_limit_usd
    summary["remaining_usd"] = round(max(limits.monthly_limit_usd - summary["cost"], 0.0), 6)
    return summary


@router.get("/usage/recent")
def usage_recent(
    limit: int = Query(default=50, ge=1, le=500),
    pipeline: AIPipeline = Depends(get_pipeline),
) -> list[dict[str, Any]]:
    return pipeline.ledger.recent(limit)


@router.get("/usage/export")
def usage_export(
    start: dt.datetime = Query(...),
    end: dt.datetime = Query(...),
    pipeline: AIPipeline = Depends(get_pipeline),
) -> list[dict[str, Any]]:
    if end <= start:
        raise BadRequestError("invalid_range", details={"start": start.isoformat(), "end": end.isoformat()})
    return pipeline.ledger.export(start, end)


@router.delete("/usage")
def usage_reset(pipeline: AIPipeline = Depends(get_pipeline)) -> dict[str, int]:
    removed = pipeline.ledger.reset()
    pipeline.governor.reset()
    return {"removed": removed}


@router.get("/diagnostics")
def diagnostics(pipeline: AIPipeline = Depends(get_pipeline)) -> dict[str, Any]:
    return pipeline.diagnostics()


@router.get("/governor/windows/{caller_id}")
def governor_windows(
    caller_id: str = Path(..., max_length=64),
    pipeline: AIPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    return {"caller_id": caller_id, "windows": pipeline.governor.windows_for(caller_id)}


# ----- FAQ cache -----


@router.get("/cache/popular")
def cache_popular(
    limit: int = Query(default=10, ge=1, le=100),
    pipeline: AIPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    return {"stats": pipeline.cache.stats(), "entries": pipeline.cache.popular(limit)}


@router.delete("/cache")
def cache_clear(pipeline: AIPipeline = Depends(get_pipeline)) -> dict[str, int]:
    return {"removed": pipeline.cache.clear()}


# ----- escalation rules -----


@router.get("/escalation-rules", response_model=list[EscalationRuleOut])
def get_rules(
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> list[EscalationRuleOut]:
    return [EscalationRuleOut.model_validate(rule) for rule in list_rules(db, active_only=not include_inactive)]


@router.post("/escalation-rules", response_model=EscalationRuleOut)
def post_rule(
    payload: EscalationRuleCreate = Body(...),
    db: Session = Depends(get_db),
) -> EscalationRuleOut:
    conditions = payload.conditions()
    if not conditions:
        raise BadRequestError("rule_without_conditions")
    if not payload.target_team_id and not payload.target_queue:
        raise BadRequestError("rule_without_target")
    rule = create_rule(
        db,
        name=payload.name,
        description=payload.description,
        conditions=conditions,
        priority=payload.priority,
        target_team_id=payload.target_team_id,
        target_queue=payload.target_queue,
    )
    return EscalationRuleOut.model_validate(rule)


@router.delete("/escalation-rules/{rule_id}", response_model=EscalationRuleOut)
def delete_rule(
    rule_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
) -> EscalationRuleOut:
    return EscalationRuleOut.model_validate(deactivate_rule(db, rule_id))


# ----- learning queue -----


@router.get("/learning/status", response_model=LearningQueueStatus)
def learning_status(pipeline: AIPipeline = Depends(get_pipeline)) -> LearningQueueStatus:
    counts = pipeline.learning.status_counts()
    return LearningQueueStatus(
        counts=counts,
        total=sum(counts.values()),
        worker_running=pipeline.worker.running,
        worker_backlog=pipeline.worker.backlog(),
    )


@router.post("/learning/tickets/{ticket_id}", response_model=LearningOutcomeOut)
def learn_from_ticket(
    ticket_id: str = Path(..., max_length=20),
    pipeline: AIPipeline = Depends(get_pipeline),
) -> LearningOutcomeOut:
    return LearningOutcomeOut(**pipeline.learning.learn_from(ticket_id).as_dict())


@router.post("/learning/tickets/{ticket_id}/enqueue")
def enqueue_ticket(
    ticket_id: str = Path(..., max_length=20),
    pipeline: AIPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    try:
        queued = pipeline.learning.enqueue(ticket_id)
    except NotEligible as exc:
        return {"ticket_id": ticket_id, "queued": False, "reason": exc.reason}
    if not queued:
        queued = pipeline.learning.requeue(ticket_id)
    return {"ticket_id": ticket_id, "queued": queued, "reason": None if queued else "already_queued"}


@router.post("/learning/process", response_model=LearningProcessResult)
def process_learning_queue(
    limit: int = Query(default=25, ge=1, le=200),
    seed: bool = Query(default=False),
    pipeline: AIPipeline = Depends(get_pipeline),
) -> LearningProcessResult:
    if seed:
        pipeline.learning.seed_backlog(limit)
    return pipeline.learning.process_pending(
        limit,
        lease=dt.timedelta(minutes=max(1, settings.AI_LEARNING_PROCESSING_LEASE_MINUTES)),
    )


@router.post("/learning/seed")
def seed_learning_queue(
    limit: int = Query(default=100, ge=1, le=1000),
    pipeline: AIPipeline = Depends(get_pipeline),
) -> dict[str, int]:
    queued, skipped = pipeline.learning.seed_backlog(limit)
    return {"queued": queued, "not_eligible": skipped}


# ----- knowledge articles -----


@router.get("/articles", response_model=list[ArticleOut])
def get_articles(
    status: ArticleStatus | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
) -> list[ArticleOut]:
    return [ArticleOut.model_validate(article) for article in list_articles(db, status=status, limit=limit)]


@router.post("/articles", response_model=ArticleOut)
def post_article(
    payload: ArticleCreate = Body(...),
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_admin),
) -> ArticleOut:
    article = create_article(
        db,
        title=payload.title,
        content=payload.content,
        summary=payload.summary,
        category=payload.category.value if payload.category else None,
        tags=payload.tags,
        created_by=caller.id,
    )
    return ArticleOut.model_validate(article)


@router.post("/articles/{article_id}/publish", response_model=ArticleOut)
def post_publish(
    article_id: int = Path(..., ge=1),
    payload: ArticlePublishRequest | None = Body(default=None),
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_admin),
    pipeline: AIPipeline = Depends(get_pipeline),
) -> ArticleOut:
    article = publish_article(
        db,
        article_id,
        ai_settings=pipeline.settings_provider.get_ai_settings(),
        events=pipeline.events,
        approved_by=caller.id if payload is None or payload.approve else None,
    )
    return ArticleOut.model_validate(article)


@router.post("/articles/{article_id}/archive", response_model=ArticleOut)
def post_archive(article_id: int = Path(..., ge=1), db: Session = Depends(get_db)) -> ArticleOut:
    return ArticleOut.model_validate(archive_article(db, article_id))


@router.post("/articles/{article_id}/restore", response_model=ArticleOut)
def post_restore(article_id: int = Path(..., ge=1), db: Session = Depends(get_db)) -> ArticleOut:
    return ArticleOut.model_validate(restore_article(db, article_id))


@router.post("/articles/maintenance/unpublish-low-scoring")
def post_unpublish_low_scoring(
    threshold: float = Query(default=0.3, ge=0.0, le=1.0),
    min_votes: int = Query(default=3, ge=0),
    db: Session = Depends(get_db),
) -> dict[str, list[int]]:
    return {"unpublished": unpublish_low_scoring(db, threshold=threshold, min_votes=min_votes)}


@router.post("/articles/maintenance/auto-publish")
def post_auto_publish(
    db: Session = Depends(get_db),
    pipeline: AIPipeline = Depends(get_pipeline),
) -> dict[str, list[int]]:
    published = auto_publish_drafts(
        db,
        ai_settings=pipeline.settings_provider.get_ai_settings(),
        events=pipeline.events,
    )
    return {"published": published}
