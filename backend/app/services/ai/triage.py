"""Ticket triage: complexity scoring, classification and auto-responses."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError
from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.exceptions import GovernorDenied, InferenceBackendError, MalformedInferenceOutput
from app.models.auto_response import AutoResponse
from app.models.complexity_score import ComplexityScore
from app.models.enums import AnalysisStatus, PipelineEvent
from app.models.knowledge_article import KnowledgeArticle
from app.models.ticket import Ticket, TicketComment
from app.schemas.ai import TriageOutput, TriageResult
from app.services.ai.cache import SemanticAnswerCache
from app.services.ai.complexity import NEUTRAL_COMPLEXITY, complexity_factors, factor_score
from app.services.ai.gateway import InferenceGateway
from app.services.ai.llm import extract_json
from app.services.ai.prompts import build_triage_prompt
from app.services.ai.settings_provider import AISettings, SettingsProvider
from app.services.events import EventSink
from app.services.knowledge_articles import search_articles

logger = logging.getLogger(__name__)

ASSISTANT_AUTHOR = "ai-assistant"
TRIAGE_OPERATION = "ticket_analysis"
KNOWLEDGE_CONTEXT_ARTICLES = 3


def ticket_question(ticket: Ticket) -> str:
    return f"{ticket.title}\n{ticket.description or ''}".strip()


def comment_thread(comments: list[TicketComment]) -> str:
    return "\n".join(f"- {comment.author}: {comment.content}" for comment in comments)


def parse_triage_output(text: str) -> TriageOutput:
    data = extract_json(text or "")
    if data is None:
        raise MalformedInferenceOutput("Triage output is not a JSON object", operation=TRIAGE_OPERATION)
    try:
        return TriageOutput.model_validate(data)
    except ValidationError as exc:
        raise MalformedInferenceOutput(
            f"Triage output failed validation: {exc.error_count()} errors",
            operation=TRIAGE_OPERATION,
        ) from exc


def _knowledge_section(articles: list[KnowledgeArticle]) -> str:
    return "\n---\n".join(
        f"[{article.id}] {article.title}\n{article.summary or article.content[:400]}" for article in articles
    )


def _article_refs(articles: list[KnowledgeArticle]) -> list[dict[str, Any]]:
    return [{"id": article.id, "title": article.title, "summary": article.summary} for article in articles]


class TriageAnalyzer:
    def __init__(
        self,
        gateway: InferenceGateway,
        cache: SemanticAnswerCache,
        settings_provider: SettingsProvider,
        events: EventSink,
    ) -> None:
        self.gateway = gateway
        self.cache = cache
        self._settings = settings_provider
        self.events = events

    def analyze(self, db: Session, ticket: Ticket, *, caller_id: str, context: str | None = None) -> TriageResult:
        """Analyze ``ticket`` and apply an auto-response when confident enough.

        ``context`` carries ticket-specific material (the comment thread on a
        re-analysis). Answers built with it are never read from or written to
        the answer cache.
        """
        ai_settings = self._settings.get_ai_settings()
        question = ticket_question(ticket)
        similar = search_articles(db, question, limit=KNOWLEDGE_CONTEXT_ARTICLES)
        factors = complexity_factors(
            title=ticket.title,
            description=ticket.description or "",
            priority=ticket.priority,
            similar_articles=len(similar),
        )
        cacheable = not (context or "").strip()

        if cacheable and ai_settings.auto_response_enabled:
            cached, found = self.cache.lookup(question)
            if found and cached:
                return self._from_cache(db, ticket, cached, factors, ai_settings)

        prompt = build_triage_prompt(
            title=ticket.title,
            description=ticket.description or "",
            category=ticket.category.value,
            priority=ticket.priority.value,
            knowledge_section=_knowledge_section(similar),
            thread=context or "",
            max_response_length=ai_settings.max_response_length,
        )
        try:
            completion = self.gateway.complete(
                caller_id=caller_id,
                operation=TRIAGE_OPERATION,
                prompt=prompt,
                max_output_tokens=ai_settings.max_tokens,
                ticket_id=ticket.id,
            )
        except GovernorDenied as exc:
            logger.warning("Triage blocked for ticket=%s: %s", ticket.id, exc.reason)
            result = self._degraded(db, ticket, question, factors, AnalysisStatus.blocked)
            result.blocked_reason = exc.reason
            result.retry_after = exc.retry_after
            result.estimated_cost = round(exc.estimated_cost, 6)
            return result
        except InferenceBackendError as exc:
            logger.warning("Triage unavailable for ticket=%s: %s", ticket.id, exc.error_code)
            result = self._degraded(db, ticket, question, factors, AnalysisStatus.unavailable)
            result.blocked_reason = exc.error_code
            return result

        try:
            output = parse_triage_output(completion.text)
        except MalformedInferenceOutput as exc:
            logger.warning("Malformed triage output for ticket=%s: %s", ticket.id, exc.message)
            return self._degraded(db, ticket, question, factors, AnalysisStatus.fallback)

        return self._complete(db, ticket, question, output, factors, ai_settings, cacheable=cacheable)

    def _complete(
        self,
        db: Session,
        ticket: Ticket,
        question: str,
        output: TriageOutput,
        factors: list[dict[str, Any]],
        ai_settings: AISettings,
        *,
        cacheable: bool,
    ) -> TriageResult:
        self._save_score(db, ticket, output.complexity_score, factors, output.reasoning)

        text = output.auto_response[: ai_settings.max_response_length].strip()
        applied = (
            ai_settings.auto_response_enabled
            and output.confidence >= ai_settings.confidence_threshold
            and len(text) >= ai_settings.min_auto_response_length
        )
        response_id = None
        if text:
            row = self._save_response(db, ticket, text, output.confidence, applied=applied)
            response_id = str(row.id)
            if applied:
                self._announce(ticket, row, from_cache=False)
                if cacheable:
                    self.cache.store(question, text)

        return TriageResult(
            status=AnalysisStatus.completed,
            ticket_id=ticket.id,
            key_issues=output.key_issues,
            suggested_category=output.suggested_category or ticket.category,
            suggested_priority=output.suggested_priority or ticket.priority,
            complexity_score=output.complexity_score,
            complexity_factors=factors,
            required_expertise=output.required_expertise,
            estimated_hours=output.estimated_hours,
            reasoning=output.reasoning,
            auto_response=text or None,
            auto_response_id=response_id,
            confidence=output.confidence,
            applied=applied,
        )

    def _from_cache(
        self,
        db: Session,
        ticket: Ticket,
        answer: str,
        factors: list[dict[str, Any]],
        ai_settings: AISettings,
    ) -> TriageResult:
        # Cached answers were only stored after clearing the threshold.
        confidence = ai_settings.confidence_threshold
        score = factor_score(factors)
        self._save_score(db, ticket, score, factors, "Answered from the FAQ cache")
        row = self._save_response(db, ticket, answer, confidence, applied=True)
        self._announce(ticket, row, from_cache=True)
        logger.info("Triage for ticket=%s served from FAQ cache", ticket.id)
        return TriageResult(
            status=AnalysisStatus.cached,
            ticket_id=ticket.id,
            suggested_category=ticket.category,
            suggested_priority=ticket.priority,
            complexity_score=score,
            complexity_factors=factors,
            auto_response=answer,
            auto_response_id=str(row.id),
            confidence=confidence,
            applied=True,
            from_cache=True,
        )

    def _degraded(
        self,
        db: Session,
        ticket: Ticket,
        question: str,
        factors: list[dict[str, Any]],
        status: AnalysisStatus,
    ) -> TriageResult:
        # Articles shown to the requester instead of an AI answer count as views.
        articles = search_articles(db, question, limit=KNOWLEDGE_CONTEXT_ARTICLES, record_usage=True)
        return TriageResult(
            status=status,
            ticket_id=ticket.id,
            suggested_category=ticket.category,
            suggested_priority=ticket.priority,
            complexity_score=NEUTRAL_COMPLEXITY,
            complexity_factors=factors,
            fallback_articles=_article_refs(articles),
        )

    def _save_score(
        self,
        db: Session,
        ticket: Ticket,
        score: int,
        factors: list[dict[str, Any]],
        reasoning: str,
    ) -> ComplexityScore:
        row = ComplexityScore(ticket_id=ticket.id, score=score, factors=factors, reasoning=reasoning)
        db.add(row)
        db.commit()
        return row

    def _save_response(
        self,
        db: Session,
        ticket: Ticket,
        text: str,
        confidence: float,
        *,
        applied: bool,
    ) -> AutoResponse:
        if applied:
            db.execute(
                update(AutoResponse)
                .where(AutoResponse.ticket_id == ticket.id, AutoResponse.was_applied.is_(True))
                .values(was_applied=False)
                .execution_options(synchronize_session=False)
            )
            db.add(TicketComment(ticket_id=ticket.id, author=ASSISTANT_AUTHOR, content=text))
        row = AutoResponse(ticket_id=ticket.id, response=text, confidence=confidence, was_applied=applied)
        db.add(row)
        db.commit()
        db.refresh(row)
        return row

    def _announce(self, ticket: Ticket, row: AutoResponse, *, from_cache: bool) -> None:
        self.events.emit(
            PipelineEvent.auto_response_applied,
            ticket_id=ticket.id,
            payload={
                "auto_response_id": str(row.id),
                "confidence": round(row.confidence, 3),
                "from_cache": from_cache,
            },
        )
