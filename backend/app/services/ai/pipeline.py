"""Composition of the AI triage and knowledge pipeline."""

from __future__ import annotations

import datetime as dt
import logging
import threading
from typing import Any, Callable

from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import SessionFactory, SessionLocal
from app.models.enums import PipelineEvent
from app.models.ticket import Ticket
from app.schemas.ai import TriageResult
from app.services.ai.cache import SemanticAnswerCache
from app.services.ai.escalation import evaluate_escalation, list_rules
from app.services.ai.gateway import InferenceGateway, build_backend
from app.services.ai.governor import CostRateGovernor
from app.services.ai.learning import KnowledgeLearningEngine
from app.services.ai.learning_worker import LearningWorker
from app.services.ai.llm import InferenceBackend
from app.services.ai.settings_provider import DbSettingsProvider, SettingsProvider
from app.services.ai.triage import TriageAnalyzer
from app.services.ai.usage_ledger import UsageLedger, utcnow
from app.services.events import AutomationEventSink, EventSink

logger = logging.getLogger(__name__)


class AIPipeline:
    def __init__(
        self,
        *,
        session_factory: SessionFactory,
        backend: InferenceBackend,
        settings_provider: SettingsProvider,
        events: EventSink,
        default_model_id: str,
        clock: Callable[[], dt.datetime] = utcnow,
        learning_queue_size: int = 256,
        learning_max_attempts: int = 3,
    ) -> None:
        self.settings_provider = settings_provider
        self.events = events
        self.ledger = UsageLedger(session_factory, clock=clock)
        self.governor = CostRateGovernor(settings_provider, self.ledger, clock=clock)
        self.cache = SemanticAnswerCache(session_factory)
        self.gateway = InferenceGateway(
            backend,
            self.governor,
            self.ledger,
            settings_provider,
            default_model_id=default_model_id,
        )
        self.analyzer = TriageAnalyzer(self.gateway, self.cache, settings_provider, events)
        self.learning = KnowledgeLearningEngine(
            session_factory,
            self.gateway,
            max_attempts=learning_max_attempts,
            clock=clock,
        )
        self.worker = LearningWorker(self.learning, max_size=learning_queue_size)

    def on_ticket_created(
        self,
        db: Session,
        ticket: Ticket,
        *,
        caller_id: str,
        context: str | None = None,
    ) -> TriageResult:
        result = self.analyzer.analyze(db, ticket, caller_id=caller_id, context=context)
        result.escalation = self.escalate(db, ticket, result.complexity_score)
        return result

    def escalate(self, db: Session, ticket: Ticket, complexity_score: int) -> dict[str, Any] | None:
        ai_settings = self.settings_provider.get_ai_settings()
        if not ai_settings.escalation_enabled:
            return None
        target = evaluate_escalation(
            ticket,
            complexity_score,
            list_rules(db),
            complexity_ceiling=ai_settings.complexity_threshold,
            ceiling_team_id=ai_settings.escalation_team_id,
        )
        if target is None:
            return None
        payload = {**target.as_dict(), "complexity_score": complexity_score}
        self.events.emit(PipelineEvent.ticket_escalated, ticket_id=ticket.id, payload=payload)
        logger.info("Ticket %s escalated (%s)", ticket.id, target.reason)
        return payload

    def on_ticket_resolved(self, ticket_id: str) -> bool:
        if not self.settings_provider.get_ai_settings().auto_learn_enabled:
            return False
        return self.worker.submit(ticket_id)

    def diagnostics(self) -> dict[str, Any]:
        return {
            **self.gateway.diagnostics(),
            "cache": self.cache.stats(),
            "learning_worker": self.worker.stats(),
        }


_pipeline: AIPipeline | None = None
_pipeline_lock = threading.Lock()


def build_pipeline() -> AIPipeline:
    return AIPipeline(
        session_factory=SessionLocal,
        backend=build_backend(),
        settings_provider=DbSettingsProvider(SessionLocal),
        events=AutomationEventSink(SessionLocal),
        default_model_id=settings.default_model_id,
        learning_queue_size=settings.AI_LEARNING_QUEUE_MAX_SIZE,
        learning_max_attempts=settings.AI_LEARNING_MAX_ATTEMPTS,
    )


def get_pipeline() -> AIPipeline:
    global _pipeline
    with _pipeline_lock:
        if _pipeline is None:
            _pipeline = build_pipeline()
        return _pipeline
