"""Outbound pipeline events consumed by the host application's notifiers."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Protocol

from app.db.session import SessionFactory
from app.models.automation_event import AutomationEvent
from app.models.enums import PipelineEvent

logger = logging.getLogger(__name__)

PIPELINE_ACTOR = "ai-pipeline"


@dataclass(frozen=True)
class EmittedEvent:
    event_type: str
    ticket_id: str | None
    actor: str
    payload: dict[str, Any] = field(default_factory=dict)


class EventSink(Protocol):
    def emit(
        self,
        event_type: PipelineEvent,
        *,
        ticket_id: str | None = None,
        actor: str = PIPELINE_ACTOR,
        payload: dict[str, Any] | None = None,
    ) -> None: ...


class InMemoryEventSink:
    def __init__(self) -> None:
        self.events: list[EmittedEvent] = []
        self._lock = threading.Lock()

    def emit(
        self,
        event_type: PipelineEvent,
        *,
        ticket_id: str | None = None,
        actor: str = PIPELINE_ACTOR,
        payload: dict[str, Any] | None = None,
    ) -> None:
        with self._lock:
            self.events.append(EmittedEvent(PipelineEvent(event_type).value, ticket_id, actor, dict(payload or {})))

    def of_type(self, event_type: PipelineEvent) -> list[EmittedEvent]:
        return [event for event in self.events if event.event_type == PipelineEvent(event_type).value]


class AutomationEventSink:
    """Writes events to the ``automation_events`` outbox in their own transaction."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def emit(
        self,
        event_type: PipelineEvent,
        *,
        ticket_id: str | None = None,
        actor: str = PIPELINE_ACTOR,
        payload: dict[str, Any] | None = None,
    ) -> None:
        with self._session_factory() as db:
            db.add(
                AutomationEvent(
                    ticket_id=ticket_id,
                    event_type=PipelineEvent(event_type).value,
                    actor=actor,
                    payload=payload or {},
                )
            )
            db.commit()
        logger.info("Event %s emitted for ticket=%s", PipelineEvent(event_type).value, ticket_id or "-")
