"""User feedback on AI artifacts and the effectiveness score it drives."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from app.core.exceptions import BadRequestError, NotFoundError
from app.models.ai_feedback import AiFeedback
from app.models.auto_response import AutoResponse
from app.models.enums import FeedbackType
from app.models.knowledge_article import KnowledgeArticle

logger = logging.getLogger(__name__)

POSITIVE_RATING = 5
NEGATIVE_RATING = 1
EFFECTIVENESS_STEP = 0.05


def _adjust_article(db: Session, article_id: int, positive: bool) -> None:
    delta = EFFECTIVENESS_STEP if positive else -EFFECTIVENESS_STEP
    adjusted = KnowledgeArticle.effectiveness_score + delta
    values = {
        "effectiveness_score": case(
            (adjusted > 1.0, 1.0),
            (adjusted < 0.0, 0.0),
            else_=adjusted,
        ),
    }
    if positive:
        values["helpful_votes"] = KnowledgeArticle.helpful_votes + 1
    else:
        values["unhelpful_votes"] = KnowledgeArticle.unhelpful_votes + 1
    result = db.execute(
        update(KnowledgeArticle)
        .where(KnowledgeArticle.id == article_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        raise NotFoundError("article_not_found", details={"article_id": article_id})


def _mark_response(db: Session, response_id: UUID, positive: bool) -> None:
    result = db.execute(
        update(AutoResponse)
        .where(AutoResponse.id == response_id)
        .values(was_helpful=positive)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        raise NotFoundError("auto_response_not_found", details={"response_id": str(response_id)})


def record_feedback(
    db: Session,
    *,
    feedback_type: FeedbackType,
    reference_id: str,
    user_id: str,
    rating: int,
    comment: str | None = None,
    ticket_id: str | None = None,
) -> AiFeedback:
    if rating not in (POSITIVE_RATING, NEGATIVE_RATING):
        raise BadRequestError("invalid_rating", details={"rating": rating, "allowed": [NEGATIVE_RATING, POSITIVE_RATING]})
    positive = rating == POSITIVE_RATING

    try:
        if feedback_type == FeedbackType.knowledge_article:
            try:
                article_id = int(reference_id)
            except (TypeError, ValueError):
                raise BadRequestError("invalid_reference_id", details={"reference_id": reference_id})
            _adjust_article(db, article_id, positive)
        else:
            try:
                response_id = UUID(str(reference_id))
            except ValueError:
                raise BadRequestError("invalid_reference_id", details={"reference_id": reference_id})
            _mark_response(db, response_id, positive)
    except Exception:
        db.rollback()
        raise

    row = AiFeedback(
        feedback_type=feedback_type,
        reference_id=str(reference_id),
        user_id=user_id,
        rating=rating,
        comment=comment,
        ticket_id=ticket_id,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("Feedback %s on %s %s (rating=%s)", row.id, feedback_type.value, reference_id, rating)
    return row


def list_feedback(
    db: Session,
    *,
    feedback_type: FeedbackType | None = None,
    reference_id: str | None = None,
    limit: int = 100,
) -> list[AiFeedback]:
    stmt = select(AiFeedback).order_by(AiFeedback.created_at.desc()).limit(max(limit, 1))
    if feedback_type is not None:
        stmt = stmt.where(AiFeedback.feedback_type == feedback_type)
    if reference_id is not None:
        stmt = stmt.where(AiFeedback.reference_id == str(reference_id))
    return list(db.execute(stmt).scalars())
