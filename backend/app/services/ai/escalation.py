"""Rule based escalation of triaged tickets."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError
from app.models.escalation_rule import EscalationRule
from app.models.ticket import Ticket

logger = logging.getLogger(__name__)

CEILING_QUEUE = "escalations"


@dataclass(frozen=True)
class EscalationTarget:
    team_id: int | None
    queue: str | None
    reason: str
    rule_id: int | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"team_id": self.team_id, "queue": self.queue, "reason": self.reason, "rule_id": self.rule_id}


def _value(raw: Any) -> str:
    return str(getattr(raw, "value", raw) or "").lower()


def rule_matches(conditions: dict[str, Any], ticket: Ticket, complexity_score: int) -> bool:
    """All present conditions must hold; an empty condition set never matches."""
    if not conditions:
        return False
    min_complexity = conditions.get("min_complexity")
    if min_complexity is not None and complexity_score < int(min_complexity):
        return False
    max_complexity = conditions.get("max_complexity")
    if max_complexity is not None and complexity_score > int(max_complexity):
        return False
    categories = {str(item).lower() for item in conditions.get("categories") or []}
    if categories and _value(ticket.category) not in categories:
        return False
    priorities = {str(item).lower() for item in conditions.get("priorities") or []}
    if priorities and _value(ticket.priority) not in priorities:
        return False
    statuses = {str(item).lower() for item in conditions.get("statuses") or []}
    if statuses and _value(ticket.status) not in statuses:
        return False
    keywords = [str(item).lower() for item in conditions.get("keywords") or [] if str(item).strip()]
    if keywords:
        text = f"{ticket.title} {ticket.description or ''}".lower()
        if not any(keyword in text for keyword in keywords):
            return False
    return True


def evaluate_escalation(
    ticket: Ticket,
    complexity_score: int,
    rules: Iterable[EscalationRule],
    *,
    complexity_ceiling: int | None = None,
    ceiling_team_id: int | None = None,
) -> EscalationTarget | None:
    """Pick the escalation target for a ticket, or ``None``.

    Active rules are tried highest ``priority`` first (ties by id); the first
    match wins. With no match, a score at or above ``complexity_ceiling``
    still escalates to the ceiling team.
    """
    ordered = sorted(
        (rule for rule in rules if rule.is_active),
        key=lambda rule: (-int(rule.priority or 0), rule.id or 0),
    )
    for rule in ordered:
        if rule_matches(rule.conditions or {}, ticket, complexity_score):
            return EscalationTarget(
                team_id=rule.target_team_id,
                queue=rule.target_queue,
                reason=f"rule:{rule.name}",
                rule_id=rule.id,
            )
    if complexity_ceiling is not None and complexity_score >= complexity_ceiling:
        return EscalationTarget(team_id=ceiling_team_id, queue=CEILING_QUEUE, reason="complexity_ceiling")
    return None


def list_rules(db: Session, *, active_only: bool = True) -> list[EscalationRule]:
    stmt = select(EscalationRule).order_by(EscalationRule.priority.desc(), EscalationRule.id.asc())
    if active_only:
        stmt = stmt.where(EscalationRule.is_active.is_(True))
    return list(db.execute(stmt).scalars())


def create_rule(
    db: Session,
    *,
    name: str,
    conditions: dict[str, Any],
    priority: int = 0,
    description: str | None = None,
    target_team_id: int | None = None,
    target_queue: str | None = None,
) -> EscalationRule:
    rule = EscalationRule(
        name=name,
        description=description,
        conditions=conditions,
        priority=priority,
        target_team_id=target_team_id,
        target_queue=target_queue,
        is_active=True,
    )
    db.add(rule)
    db.commit()
    db.refresh(rule)
    logger.info("Escalation rule %s created (priority=%s)", rule.id, rule.priority)
    return rule


def deactivate_rule(db: Session, rule_id: int) -> EscalationRule:
    rule = db.get(EscalationRule, rule_id)
    if rule is None:
        raise NotFoundError("escalation_rule_not_found", details={"rule_id": rule_id})
    rule.is_active = False
    db.commit()
    db.refresh(rule)
    return rule
