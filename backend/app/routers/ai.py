"""AI triage, knowledge and feedback endpoints used by the helpdesk app."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Path, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.deps import Caller, get_current_caller, require_roles
from app.core.exceptions import NotFoundError
from app.core.rate_limit import rate_limit
from app.db.session import get_db
from app.models.complexity_score import ComplexityScore
from app.models.enums import FeedbackType, UserRole
from app.models.ticket import Ticket
from app.schemas.ai import ArticleOut, ComplexityScoreOut, FeedbackCreate, FeedbackOut
from app.services.ai.pipeline import AIPipeline, get_pipeline
from app.services.ai.triage import comment_thread
from app.services.feedback import list_feedback, record_feedback
from app.services.knowledge_articles import record_view, search_articles

router = APIRouter(dependencies=[Depends(rate_limit("ai")), Depends(get_current_caller)])

_staff = require_roles(UserRole.admin, UserRole.agent)


def _get_ticket(db: Session, ticket_id: str) -> Ticket:
    ticket = db.get(Ticket, ticket_id)
    if ticket is None:
        raise NotFoundError("ticket_not_found", details={"ticket_id": ticket_id})
    return ticket


@router.post("/tickets/{ticket_id}/analyze")
def analyze_ticket(
    ticket_id: str = Path(..., max_length=20),
    use_thread: bool = Query(default=False),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
    pipeline: AIPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    """Triage hook called on ticket creation, or for a re-analysis by staff."""
    ticket = _get_ticket(db, ticket_id)
    context = comment_thread(list(ticket.comments)) if use_thread else None
    result = pipeline.on_ticket_created(db, ticket, caller_id=caller.id, context=context)
    if caller.is_admin:
        return result.model_dump()
    return result.public_view()


@router.post("/tickets/{ticket_id}/resolved", dependencies=[Depends(_staff)])
def ticket_resolved(
    ticket_id: str = Path(..., max_length=20),
    db: Session = Depends(get_db),
    pipeline: AIPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    _get_ticket(db, ticket_id)
    return {"ticket_id": ticket_id, "accepted": pipeline.on_ticket_resolved(ticket_id)}


@router.get("/tickets/{ticket_id}/complexity", response_model=ComplexityScoreOut, dependencies=[Depends(_staff)])
def latest_complexity(
    ticket_id: str = Path(..., max_length=20),
    db: Session = Depends(get_db),
) -> ComplexityScoreOut:
    row = db.execute(
        select(ComplexityScore)
        .where(ComplexityScore.ticket_id == ticket_id)
        .order_by(ComplexityScore.created_at.desc())
        .limit(1)
    ).scalars().first()
    if row is None:
        raise NotFoundError("complexity_score_not_found", details={"ticket_id": ticket_id})
    return ComplexityScoreOut.model_validate(row)


@router.get("/knowledge/search", response_model=list[ArticleOut])
def knowledge_search(
    q: str = Query(..., min_length=2, max_length=500),
    limit: int = Query(default=5, ge=1, le=20),
    db: Session = Depends(get_db),
) -> list[ArticleOut]:
    articles = search_articles(db, q, limit=limit, record_usage=True)
    return [ArticleOut.model_validate(article) for article in articles]


@router.get("/knowledge/{article_id}", response_model=ArticleOut)
def view_article(
    article_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
) -> ArticleOut:
    return ArticleOut.model_validate(record_view(db, article_id))


@router.post("/feedback", response_model=FeedbackOut)
def submit_feedback(
    payload: FeedbackCreate = Body(...),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
) -> FeedbackOut:
    row = record_feedback(
        db,
        feedback_type=payload.feedback_type,
        reference_id=payload.reference_id,
        user_id=caller.id,
        rating=payload.rating,
        comment=payload.comment,
        ticket_id=payload.ticket_id,
    )
    return FeedbackOut.model_validate(row)


@router.get("/feedback", response_model=list[FeedbackOut], dependencies=[Depends(_staff)])
def get_feedback(
    feedback_type: FeedbackType | None = Query(default=None),
    reference_id: str | None = Query(default=None, max_length=64),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
) -> list[FeedbackOut]:
    rows = list_feedback(db, feedback_type=feedback_type, reference_id=reference_id, limit=limit)
    return [FeedbackOut.model_validate(row) for row in rows]
