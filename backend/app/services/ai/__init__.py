"""AI service public API."""

from __future__ import annotations

__all__ = ["get_pipeline", "analyze_ticket", "ticket_resolved"]


def get_pipeline(*args, **kwargs):
    from app.services.ai.pipeline import get_pipeline as _get_pipeline

    return _get_pipeline(*args, **kwargs)


def analyze_ticket(db, ticket, *, caller_id: str, context: str | None = None):
    return get_pipeline().on_ticket_created(db, ticket, caller_id=caller_id, context=context)


def ticket_resolved(ticket_id: str) -> bool:
    return get_pipeline().on_ticket_resolved(ticket_id)
