from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.core.config import settings
from app.db.session import get_db
from app.main import app
from app.models.enums import ArticleStatus
from app.models.knowledge_article import KnowledgeArticle
from app.services.ai.pipeline import get_pipeline

from conftest import make_ticket

ADMIN = {"X-User-Id": "admin-1", "X-User-Role": "admin"}
AGENT = {"X-User-Id": "agent-1", "X-User-Role": "agent"}
REQUESTER = {"X-User-Id": "user-1", "X-User-Role": "user"}


@pytest.fixture
def client(db, pipeline, monkeypatch):
    monkeypatch.setattr(settings, "RATE_LIMIT_ENABLED", False)

    def override_db():
        yield db

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_missing_caller_is_unauthenticated(client) -> None:
    response = client.post("/api/ai/tickets/TW-1/analyze")

    assert response.status_code == 401
    assert response.json()["error_code"] == "NOT_AUTHENTICATED"


def test_blocked_analysis_still_answers_and_hides_governor_details(client, db, pipeline, settings_provider) -> None:
    make_ticket(db)
    settings_provider.update_cost_limits({"max_requests_per_minute": 0})

    as_admin = client.post("/api/ai/tickets/TW-1001/analyze", headers=ADMIN)
    as_requester = client.post("/api/ai/tickets/TW-1001/analyze", headers=REQUESTER)

    assert as_admin.status_code == 200
    assert as_admin.json()["status"] == "blocked"
    assert as_admin.json()["blocked_reason"] == "minute_rate_limit"
    assert as_requester.status_code == 200
    assert as_requester.json()["complexity_score"] == 50
    assert "blocked_reason" not in as_requester.json()


def test_unknown_ticket_is_not_found(client) -> None:
    response = client.post("/api/ai/tickets/TW-404/analyze", headers=AGENT)

    assert response.status_code == 404


def test_admin_routes_reject_non_admins(client) -> None:
    assert client.get("/api/ai/admin/cost-limits", headers=AGENT).status_code == 403
    assert client.get("/api/ai/admin/cost-limits", headers=ADMIN).status_code == 200


def test_restricted_cost_limits_are_clamped(client) -> None:
    response = client.put(
        "/api/ai/admin/cost-limits",
        json={"restricted_account": True, "max_tokens_per_request": 100000},
        headers=ADMIN,
    )

    assert response.status_code == 200
    assert response.json()["max_tokens_per_request"] == 3000

    cleared = client.put("/api/ai/admin/cost-limits", json={"restricted_account": False}, headers=ADMIN)
    assert cleared.json()["max_tokens_per_request"] == 3000


def test_restricted_clamp_never_loosens_a_zero_limit(client) -> None:
    response = client.put(
        "/api/ai/admin/cost-limits",
        json={"restricted_account": True, "max_requests_per_minute": 0, "daily_limit_usd": 0},
        headers=ADMIN,
    )

    assert response.status_code == 200
    assert response.json()["max_requests_per_minute"] == 0
    assert response.json()["daily_limit_usd"] == 0.0


def test_null_setting_keeps_current_value(client) -> None:
    response = client.put("/api/ai/admin/settings", json={"max_tokens": None, "escalation_team_id": 4}, headers=ADMIN)

    assert response.status_code == 200
    assert response.json()["max_tokens"] == 2000
    assert response.json()["escalation_team_id"] == 4


def test_feedback_rating_must_be_thumbs(client, db) -> None:
    article = KnowledgeArticle(title="VPN setup", content="Install the client.", status=ArticleStatus.published)
    db.add(article)
    db.commit()
    payload = {"feedback_type": "knowledge_article", "reference_id": str(article.id)}

    assert client.post("/api/ai/feedback", json={**payload, "rating": 3}, headers=REQUESTER).status_code == 422
    accepted = client.post("/api/ai/feedback", json={**payload, "rating": 5}, headers=REQUESTER)

    assert accepted.status_code == 200
    assert accepted.json()["user_id"] == "user-1"
    db.refresh(article)
    assert article.effectiveness_score == pytest.approx(0.55)


def test_publish_records_admin_as_approver(client, db, events) -> None:
    article = KnowledgeArticle(title="Learned fix", content="Restart the sync agent.")
    db.add(article)
    db.commit()

    response = client.post(f"/api/ai/admin/articles/{article.id}/publish", headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["status"] == "published"
    assert response.json()["approved_by"] == "admin-1"

    search = client.get("/api/ai/knowledge/search", params={"q": "sync agent restart"}, headers=REQUESTER)
    assert [item["id"] for item in search.json()] == [article.id]


def test_learning_endpoints_report_ineligible_tickets(client, db) -> None:
    make_ticket(db, "TW-5001")

    response = client.post("/api/ai/admin/learning/tickets/TW-5001/enqueue", headers=ADMIN)

    assert response.json() == {"ticket_id": "TW-5001", "queued": False, "reason": "ticket_not_resolved"}
    status = client.get("/api/ai/admin/learning/status", headers=ADMIN).json()
    assert status["total"] == 0


def test_usage_and_diagnostics(client, db, backend) -> None:
    make_ticket(db)
    backend.replies.append('{"complexityScore": 20, "confidence": 0.1, "autoResponse": ""}')

    client.post("/api/ai/tickets/TW-1001/analyze", headers=AGENT)
    daily = client.get("/api/ai/admin/usage/daily", headers=ADMIN).json()
    diagnostics = client.get("/api/ai/admin/diagnostics", headers=ADMIN).json()

    assert daily["requests"] == 1
    assert daily["operations"] == {"ticket_analysis": 1}
    assert diagnostics["governor"]["admitted"] == 1
    assert diagnostics["cache"]["entries"] == 0
