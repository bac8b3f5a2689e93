"""Knowledge article lookup and lifecycle."""

from __future__ import annotations

import datetime as dt
import logging

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from app.core.exceptions import ApprovalRequiredError, ConflictError, NotFoundError
from app.models.enums import ArticleSource, ArticleStatus, PipelineEvent
from app.models.knowledge_article import KnowledgeArticle
from app.services.ai.cache import normalize_question
from app.services.ai.settings_provider import AISettings
from app.services.events import EventSink

logger = logging.getLogger(__name__)

MIN_SEARCH_TERM_LENGTH = 4
MAX_SEARCH_TERMS = 8
LOW_SCORE_THRESHOLD = 0.3
LOW_SCORE_MIN_VOTES = 3
AUTO_PUBLISH_MIN_EFFECTIVENESS = 0.5


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def search_terms(query: str) -> list[str]:
    seen: list[str] = []
    for term in normalize_question(query).split():
        if len(term) >= MIN_SEARCH_TERM_LENGTH and term not in seen:
            seen.append(term)
    return seen[:MAX_SEARCH_TERMS]


def search_articles(db: Session, query: str, *, limit: int = 5, record_usage: bool = False) -> list[KnowledgeArticle]:
    """Keyword search over published articles, best rated first."""
    terms = search_terms(query)
    if not terms:
        return []
    clauses = []
    for term in terms:
        pattern = f"%{term}%"
        clauses.extend(
            [
                KnowledgeArticle.title.ilike(pattern),
                KnowledgeArticle.summary.ilike(pattern),
                KnowledgeArticle.content.ilike(pattern),
            ]
        )
    articles = list(
        db.execute(
            select(KnowledgeArticle)
            .where(KnowledgeArticle.status == ArticleStatus.published, or_(*clauses))
            .order_by(KnowledgeArticle.effectiveness_score.desc(), KnowledgeArticle.usage_count.desc())
            .limit(max(limit, 1))
        ).scalars()
    )
    if record_usage and articles:
        db.execute(
            update(KnowledgeArticle)
            .where(KnowledgeArticle.id.in_([article.id for article in articles]))
            .values(usage_count=KnowledgeArticle.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    return articles


def get_article(db: Session, article_id: int) -> KnowledgeArticle:
    article = db.get(KnowledgeArticle, article_id)
    if article is None:
        raise NotFoundError("article_not_found", details={"article_id": article_id})
    return article


def list_articles(db: Session, *, status: ArticleStatus | None = None, limit: int = 50) -> list[KnowledgeArticle]:
    stmt = select(KnowledgeArticle).order_by(KnowledgeArticle.created_at.desc()).limit(max(limit, 1))
    if status is not None:
        stmt = stmt.where(KnowledgeArticle.status == status)
    return list(db.execute(stmt).scalars())


def create_article(
    db: Session,
    *,
    title: str,
    content: str,
    summary: str = "",
    category: str | None = None,
    tags: list[str] | None = None,
    created_by: str | None = None,
) -> KnowledgeArticle:
    article = KnowledgeArticle(
        title=title,
        summary=summary,
        content=content,
        category=category,
        tags=sorted(set(tags or [])),
        source_ticket_ids=[],
        status=ArticleStatus.draft,
        source=ArticleSource.manual,
        created_by=created_by,
    )
    db.add(article)
    db.commit()
    db.refresh(article)
    return article


def record_view(db: Session, article_id: int) -> KnowledgeArticle:
    """Count one surfacing of an article; independent of ratings."""
    result = db.execute(
        update(KnowledgeArticle)
        .where(KnowledgeArticle.id == article_id)
        .values(usage_count=KnowledgeArticle.usage_count + 1)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        db.rollback()
        raise NotFoundError("article_not_found", details={"article_id": article_id})
    db.commit()
    article = get_article(db, article_id)
    db.refresh(article)
    return article


def publish_article(
    db: Session,
    article_id: int,
    *,
    ai_settings: AISettings,
    events: EventSink,
    approved_by: str | None = None,
) -> KnowledgeArticle:
    """Publish a draft.

    ``approved_by`` records the reviewer. Without one, publishing is only
    allowed when the approval requirement is switched off.
    """
    article = get_article(db, article_id)
    if article.status == ArticleStatus.published:
        return article
    if article.status != ArticleStatus.draft:
        raise ConflictError("article_not_draft", details={"article_id": article_id, "status": article.status.value})
    if approved_by is None and ai_settings.article_approval_required:
        raise ApprovalRequiredError(article_id)

    article.status = ArticleStatus.published
    article.approved_by = approved_by
    article.published_at = _utcnow()
    db.commit()
    db.refresh(article)
    events.emit(
        PipelineEvent.article_published,
        actor=approved_by or "ai-pipeline",
        payload={"article_id": article.id, "title": article.title, "source_ticket_ids": list(article.source_ticket_ids or [])},
    )
    logger.info("Knowledge article %s published (approved_by=%s)", article.id, approved_by or "auto")
    return article


def archive_article(db: Session, article_id: int) -> KnowledgeArticle:
    article = get_article(db, article_id)
    if article.status != ArticleStatus.archived:
        article.status = ArticleStatus.archived
        db.commit()
        db.refresh(article)
    return article


def restore_article(db: Session, article_id: int) -> KnowledgeArticle:
    article = get_article(db, article_id)
    if article.status != ArticleStatus.archived:
        raise ConflictError("article_not_archived", details={"article_id": article_id, "status": article.status.value})
    article.status = ArticleStatus.draft
    article.published_at = None
    db.commit()
    db.refresh(article)
    return article


def unpublish_low_scoring(
    db: Session,
    *,
    threshold: float = LOW_SCORE_THRESHOLD,
    min_votes: int = LOW_SCORE_MIN_VOTES,
) -> list[int]:
    """Return poorly rated published articles to draft for review."""
    articles = db.execute(
        select(KnowledgeArticle).where(
            KnowledgeArticle.status == ArticleStatus.published,
            KnowledgeArticle.effectiveness_score < threshold,
            (KnowledgeArticle.helpful_votes + KnowledgeArticle.unhelpful_votes) >= min_votes,
        )
    ).scalars().all()
    for article in articles:
        article.status = ArticleStatus.draft
        article.published_at = None
    db.commit()
    ids = [article.id for article in articles]
    if ids:
        logger.info("Unpublished %s low scoring articles: %s", len(ids), ids)
    return ids


def auto_publish_drafts(
    db: Session,
    *,
    ai_settings: AISettings,
    events: EventSink,
    min_effectiveness: float = AUTO_PUBLISH_MIN_EFFECTIVENESS,
) -> list[int]:
    if ai_settings.article_approval_required:
        return []
    drafts = db.execute(
        select(KnowledgeArticle.id).where(
            KnowledgeArticle.status == ArticleStatus.draft,
            KnowledgeArticle.created_by.is_(None),
            KnowledgeArticle.effectiveness_score >= min_effectiveness,
        )
    ).scalars().all()
    published: list[int] = []
    for article_id in drafts:
        publish_article(db, article_id, ai_settings=ai_settings, events=events)
        published.append(article_id)
    return published
