from __future__ import annotations

import json

import pytest
from sqlalchemy import func, select

from app.core.exceptions import BackendUnavailable
from app.models.auto_response import AutoResponse
from app.models.complexity_score import ComplexityScore
from app.models.enums import AnalysisStatus, ArticleStatus, PipelineEvent, TicketPriority
from app.models.knowledge_article import KnowledgeArticle
from app.models.ticket import TicketComment
from app.services.ai.triage import ASSISTANT_AUTHOR, parse_triage_output

from conftest import make_ticket

ANSWER = "Password reset emails can take a few minutes. Check your spam folder, then use the self-service reset link again."


def _triage_json(*, confidence: float = 0.82, complexity: int = 35, answer: str = ANSWER) -> str:
    return "Here is my analysis:\n" + json.dumps(
        {
            "keyIssues": ["password reset email not delivered"],
            "suggestedCategory": "Support",
            "suggestedPriority": "medium",
            "complexityScore": complexity,
            "requiredExpertise": ["identity"],
            "estimatedHours": 0.5,
            "reasoning": "Common account access issue.",
            "autoResponse": answer,
            "confidence": confidence,
        }
    )


def _count(db, model) -> int:
    return db.execute(select(func.count()).select_from(model)).scalar_one()


def test_confident_answer_is_applied_then_served_from_cache(db, pipeline, backend, events) -> None:
    backend.replies.append(_triage_json())
    first_ticket = make_ticket(db, "TW-1001")

    first = pipeline.on_ticket_created(db, first_ticket, caller_id="user-1")

    assert first.status == AnalysisStatus.completed
    assert first.applied is True
    assert first.confidence == 0.82
    assert first.complexity_score == 35
    assert first.escalation is None
    assert len(backend.calls) == 1
    comments = db.execute(select(TicketComment).where(TicketComment.ticket_id == "TW-1001")).scalars().all()
    assert [(comment.author, comment.content) for comment in comments] == [(ASSISTANT_AUTHOR, ANSWER)]
    assert events.of_type(PipelineEvent.auto_response_applied)[0].ticket_id == "TW-1001"
    assert pipeline.cache.stats()["entries"] == 1

    second_ticket = make_ticket(db, "TW-1002", title="Cannot log in!", description="password reset email never arrives")
    second = pipeline.on_ticket_created(db, second_ticket, caller_id="user-2")

    assert second.status == AnalysisStatus.cached
    assert second.from_cache is True
    assert second.auto_response == ANSWER
    assert len(backend.calls) == 1
    applied = db.execute(
        select(AutoResponse).where(AutoResponse.ticket_id == "TW-1002", AutoResponse.was_applied.is_(True))
    ).scalars().all()
    assert len(applied) == 1
    assert len(pipeline.ledger.recent()) == 1


def test_saturated_governor_degrades_without_persisting(db, pipeline, backend, settings_provider) -> None:
    settings_provider.update_cost_limits({"max_requests_per_minute": 1})
    pipeline.governor.admit("agent-7", "ticket_analysis", 10, 10, model_id=pipeline.gateway.default_model_id)
    db.add(KnowledgeArticle(title="Password reset guide", content="Use the reset portal.", status=ArticleStatus.published))
    db.commit()
    ticket = make_ticket(db)

    result = pipeline.on_ticket_created(db, ticket, caller_id="agent-7")

    assert result.status == AnalysisStatus.blocked
    assert result.blocked_reason == "minute_rate_limit"
    assert 1 <= result.retry_after <= 60
    assert result.complexity_score == 50
    assert result.suggested_priority == TicketPriority.medium
    assert [article["title"] for article in result.fallback_articles] == ["Password reset guide"]
    assert "blocked_reason" not in result.public_view()
    assert backend.calls == []
    assert _count(db, AutoResponse) == 0
    assert _count(db, ComplexityScore) == 0


def test_low_confidence_answer_is_stored_but_not_applied(db, pipeline, backend, events) -> None:
    backend.replies.append(_triage_json(confidence=0.4))
    ticket = make_ticket(db)

    result = pipeline.on_ticket_created(db, ticket, caller_id="user-1")

    assert result.applied is False
    response = db.execute(select(AutoResponse)).scalar_one()
    assert response.was_applied is False
    assert _count(db, TicketComment) == 0
    assert events.events == []
    assert pipeline.cache.stats()["entries"] == 0


def test_auto_response_disabled_never_applies(db, pipeline, backend, settings_provider) -> None:
    settings_provider.update_ai_settings({"auto_response_enabled": False})
    backend.replies.append(_triage_json(confidence=0.99))

    result = pipeline.on_ticket_created(db, make_ticket(db), caller_id="user-1")

    assert result.status == AnalysisStatus.completed
    assert result.applied is False
    assert _count(db, TicketComment) == 0


def test_malformed_output_falls_back(db, pipeline, backend) -> None:
    backend.replies.append("Sorry, I cannot help with that.")

    result = pipeline.on_ticket_created(db, make_ticket(db), caller_id="user-1")

    assert result.status == AnalysisStatus.fallback
    assert result.complexity_score == 50
    assert _count(db, ComplexityScore) == 0
    # The call itself succeeded and is billed.
    assert len(pipeline.ledger.recent()) == 1


@pytest.mark.parametrize(
    ("field", "raw"),
    [
        ("complexityScore", "null"),
        ("confidence", "null"),
        ("complexityScore", "1e999"),
        ("confidence", "[0.9]"),
        ("estimatedHours", "\"soon\""),
    ],
)
def test_unusable_numbers_fall_back(db, pipeline, backend, field, raw) -> None:
    reply = json.loads(_triage_json().split(":", 1)[1])
    reply[field] = "__RAW__"
    backend.replies.append(json.dumps(reply).replace('"__RAW__"', raw))

    result = pipeline.on_ticket_created(db, make_ticket(db), caller_id="user-1")

    assert result.status == AnalysisStatus.fallback
    assert result.complexity_score == 50
    assert result.applied is False
    assert _count(db, ComplexityScore) == 0
    assert _count(db, AutoResponse) == 0


def test_backend_outage_reports_unavailable(db, pipeline, backend) -> None:
    backend.replies.append(BackendUnavailable("connection refused"))

    result = pipeline.on_ticket_created(db, make_ticket(db), caller_id="user-1")

    assert result.status == AnalysisStatus.unavailable
    assert result.blocked_reason == "AI_BACKEND_UNAVAILABLE"
    assert pipeline.ledger.recent() == []


def test_thread_context_bypasses_cache(db, pipeline, backend) -> None:
    pipeline.cache.store("Cannot log in\nPassword reset email never arrives", "Old cached answer that should be skipped.")
    backend.replies.append(_triage_json(answer="Your mailbox rejected the reset email; we whitelisted the sender."))
    ticket = make_ticket(db)

    result = pipeline.on_ticket_created(db, ticket, caller_id="agent-1", context="- user-1: still nothing after an hour")

    assert result.status == AnalysisStatus.completed
    assert len(backend.calls) == 1
    assert "still nothing after an hour" in backend.calls[0]["prompt"]
    answer, found = pipeline.cache.lookup("Cannot log in\nPassword reset email never arrives")
    assert found and answer == "Old cached answer that should be skipped."


def test_reapplied_answer_supersedes_previous(db, pipeline, backend) -> None:
    backend.replies.extend([_triage_json(), _triage_json(answer=ANSWER + " Updated.")])
    ticket = make_ticket(db)
    pipeline.on_ticket_created(db, ticket, caller_id="agent-1", context="- agent-1: first pass")
    pipeline.on_ticket_created(db, ticket, caller_id="agent-1", context="- agent-1: second pass")

    applied = db.execute(select(AutoResponse).where(AutoResponse.was_applied.is_(True))).scalars().all()
    assert len(applied) == 1
    assert applied[0].response.endswith("Updated.")
    assert _count(db, AutoResponse) == 2


def test_high_complexity_escalates_to_ceiling_queue(db, pipeline, backend, events, settings_provider) -> None:
    settings_provider.update_ai_settings({"complexity_threshold": 70, "escalation_team_id": 9})
    backend.replies.append(_triage_json(complexity=85, confidence=0.2))

    result = pipeline.on_ticket_created(db, make_ticket(db), caller_id="user-1")

    assert result.escalation["reason"] == "complexity_ceiling"
    assert result.escalation["team_id"] == 9
    assert result.escalation["queue"] == "escalations"
    assert events.of_type(PipelineEvent.ticket_escalated)[0].payload["complexity_score"] == 85


def test_parse_triage_output_normalizes_scale_and_enums() -> None:
    output = parse_triage_output('{"complexityScore": 140, "confidence": 82, "suggestedCategory": "BUG"}')

    assert output.complexity_score == 100
    assert output.confidence == 0.82
    assert output.suggested_category.value == "bug"


def test_service_facade_uses_shared_pipeline(db, pipeline, backend, monkeypatch) -> None:
    from app.services import ai as ai_services
    from app.services.ai import pipeline as pipeline_module

    monkeypatch.setattr(pipeline_module, "_pipeline", pipeline)
    backend.replies.append(_triage_json(confidence=0.1))

    result = ai_services.analyze_ticket(db, make_ticket(db), caller_id="user-1")

    assert result.status == AnalysisStatus.completed
    assert ai_services.ticket_resolved("TW-1001") is True
    assert pipeline.worker.backlog() == 1
