from __future__ import annotations

import pytest

from app.core.exceptions import ApprovalRequiredError, ConflictError
from app.models.enums import ArticleStatus, PipelineEvent
from app.models.knowledge_article import KnowledgeArticle
from app.services.ai.settings_provider import AISettings
from app.services.knowledge_articles import (
    archive_article,
    auto_publish_drafts,
    create_article,
    publish_article,
    record_view,
    restore_article,
    search_articles,
    search_terms,
    unpublish_low_scoring,
)


def _published(db, title: str, content: str, score: float = 0.5) -> KnowledgeArticle:
    article = KnowledgeArticle(
        title=title,
        content=content,
        status=ArticleStatus.published,
        effectiveness_score=score,
    )
    db.add(article)
    db.commit()
    return article


def test_search_terms_drop_short_words_and_duplicates() -> None:
    assert search_terms("Cannot log in to the VPN, VPN keeps failing") == ["cannot", "keeps", "failing"]


def test_search_returns_published_matches_best_rated_first(db) -> None:
    low = _published(db, "VPN client keeps failing", "Reinstall the profile.", score=0.3)
    high = _published(db, "VPN troubleshooting", "Check the VPN gateway when connections keep failing.", score=0.9)
    db.add(KnowledgeArticle(title="VPN draft", content="Unreviewed notes on failing tunnels", status=ArticleStatus.draft))
    db.commit()

    results = search_articles(db, "vpn failing")

    assert [article.id for article in results] == [high.id, low.id]
    assert all(article.usage_count == 0 for article in results)


def test_search_with_usage_increments_counts(db) -> None:
    article = _published(db, "Printer offline", "Power cycle the printer.")

    search_articles(db, "printer offline", record_usage=True)
    viewed = record_view(db, article.id)

    assert viewed.usage_count == 2


def test_publish_requires_approval_when_configured(db, events) -> None:
    article = create_article(db, title="Reset MFA", content="Ask the service desk to reset MFA.")

    with pytest.raises(ApprovalRequiredError):
        publish_article(db, article.id, ai_settings=AISettings(article_approval_required=True), events=events)

    published = publish_article(
        db,
        article.id,
        ai_settings=AISettings(article_approval_required=True),
        events=events,
        approved_by="admin-1",
    )
    assert published.status == ArticleStatus.published
    assert published.approved_by == "admin-1"
    assert published.published_at is not None
    assert events.of_type(PipelineEvent.article_published)[0].payload["article_id"] == article.id


def test_archive_and_restore_lifecycle(db, events) -> None:
    article = create_article(db, title="Old VPN guide", content="Legacy VPN client instructions.")
    archived = archive_article(db, article.id)
    assert archived.status == ArticleStatus.archived

    with pytest.raises(ConflictError):
        publish_article(db, article.id, ai_settings=AISettings(), events=events, approved_by="admin-1")

    restored = restore_article(db, article.id)
    assert restored.status == ArticleStatus.draft
    with pytest.raises(ConflictError):
        restore_article(db, article.id)


def test_unpublish_low_scoring_needs_enough_votes(db) -> None:
    voted = _published(db, "Bad advice", "Turn it off and on.", score=0.1)
    voted.unhelpful_votes = 3
    unvoted = _published(db, "Unrated", "Nobody voted yet.", score=0.1)
    db.commit()

    assert unpublish_low_scoring(db) == [voted.id]
    db.refresh(unvoted)
    assert unvoted.status == ArticleStatus.published


def test_auto_publish_only_pipeline_drafts_without_approval(db, events) -> None:
    manual = create_article(db, title="Manual draft", content="Written by an admin.", created_by="admin-1")
    generated = KnowledgeArticle(title="Learned draft", content="From a resolved ticket.", status=ArticleStatus.draft)
    db.add(generated)
    db.commit()

    assert auto_publish_drafts(db, ai_settings=AISettings(article_approval_required=True), events=events) == []
    published = auto_publish_drafts(db, ai_settings=AISettings(article_approval_required=False), events=events)

    assert published == [generated.id]
    db.refresh(manual)
    assert manual.status == ArticleStatus.draft
