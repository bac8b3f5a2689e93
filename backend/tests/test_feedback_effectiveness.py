from __future__ import annotations

import pytest
from sqlalchemy import func, select

from app.core.exceptions import BadRequestError, NotFoundError
from app.models.ai_feedback import AiFeedback
from app.models.auto_response import AutoResponse
from app.models.enums import FeedbackType
from app.models.knowledge_article import KnowledgeArticle
from app.services.feedback import list_feedback, record_feedback
from app.services.knowledge_articles import create_article

from conftest import make_ticket


def _article(db) -> KnowledgeArticle:
    return create_article(db, title="Reset a password", content="Open the self-service portal and reset.")


def _rate(db, article: KnowledgeArticle, rating: int, user_id: str = "user-1") -> None:
    record_feedback(
        db,
        feedback_type=FeedbackType.knowledge_article,
        reference_id=str(article.id),
        user_id=user_id,
        rating=rating,
    )
    db.refresh(article)


def test_positive_and_negative_feedback_move_score_by_step(db) -> None:
    article = _article(db)
    assert article.effectiveness_score == pytest.approx(0.5)

    _rate(db, article, 5)
    assert article.effectiveness_score == pytest.approx(0.55)
    assert article.helpful_votes == 1

    _rate(db, article, 1)
    _rate(db, article, 1)
    assert article.effectiveness_score == pytest.approx(0.45)
    assert article.unhelpful_votes == 2


def test_score_is_clamped_to_unit_interval(db) -> None:
    article = _article(db)
    for _ in range(12):
        _rate(db, article, 5)
    assert article.effectiveness_score == pytest.approx(1.0)

    for _ in range(25):
        _rate(db, article, 1)
    assert article.effectiveness_score == pytest.approx(0.0)
    assert article.helpful_votes == 12
    assert article.unhelpful_votes == 25


def test_feedback_is_append_only(db) -> None:
    article = _article(db)
    _rate(db, article, 5, user_id="user-1")
    _rate(db, article, 5, user_id="user-1")

    assert db.execute(select(func.count(AiFeedback.id))).scalar_one() == 2
    assert len(list_feedback(db, reference_id=str(article.id))) == 2


def test_invalid_rating_is_rejected_without_side_effects(db) -> None:
    article = _article(db)

    with pytest.raises(BadRequestError):
        _rate(db, article, 3)

    assert article.effectiveness_score == pytest.approx(0.5)
    assert db.execute(select(func.count(AiFeedback.id))).scalar_one() == 0


def test_unknown_article_raises_not_found(db) -> None:
    with pytest.raises(NotFoundError):
        record_feedback(
            db,
            feedback_type=FeedbackType.knowledge_article,
            reference_id="999",
            user_id="user-1",
            rating=5,
        )


def test_auto_response_feedback_marks_helpfulness(db) -> None:
    ticket = make_ticket(db)
    response = AutoResponse(ticket_id=ticket.id, response="Try the reset link.", confidence=0.8, was_applied=True)
    db.add(response)
    db.commit()

    record_feedback(
        db,
        feedback_type=FeedbackType.auto_response,
        reference_id=str(response.id),
        user_id="user-1",
        rating=1,
        comment="Did not help",
        ticket_id=ticket.id,
    )
    db.refresh(response)

    assert response.was_helpful is False
    row = list_feedback(db, feedback_type=FeedbackType.auto_response)[0]
    assert row.comment == "Did not help"
    assert row.ticket_id == ticket.id
