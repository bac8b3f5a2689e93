from __future__ import annotations

from types import SimpleNamespace

import pytest

from app.core.exceptions import NotFoundError
from app.models.enums import TicketCategory, TicketPriority, TicketStatus
from app.services.ai.escalation import create_rule, deactivate_rule, evaluate_escalation, list_rules, rule_matches


def _ticket(**overrides):
    values = {
        "id": "TW-3001",
        "title": "Database server down",
        "description": "Production outage for all users",
        "category": TicketCategory.incident,
        "priority": TicketPriority.urgent,
        "status": TicketStatus.open,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def _rule(rule_id: int, conditions: dict, *, priority: int = 0, active: bool = True, team: int | None = None):
    return SimpleNamespace(
        id=rule_id,
        name=f"rule-{rule_id}",
        conditions=conditions,
        priority=priority,
        is_active=active,
        target_team_id=team,
        target_queue=None,
    )


def test_empty_conditions_never_match() -> None:
    assert rule_matches({}, _ticket(), 100) is False


def test_all_present_conditions_must_hold() -> None:
    conditions = {"min_complexity": 60, "categories": ["incident"], "priorities": ["urgent", "high"], "keywords": ["outage"]}

    assert rule_matches(conditions, _ticket(), 75) is True
    assert rule_matches(conditions, _ticket(), 40) is False
    assert rule_matches(conditions, _ticket(category=TicketCategory.request), 75) is False
    assert rule_matches(conditions, _ticket(description="Slow queries"), 75) is False
    assert rule_matches({"max_complexity": 30}, _ticket(), 31) is False
    assert rule_matches({"statuses": ["open"]}, _ticket(), 0) is True


def test_highest_priority_matching_rule_wins() -> None:
    rules = [
        _rule(1, {"categories": ["incident"]}, priority=1, team=10),
        _rule(2, {"priorities": ["urgent"]}, priority=5, team=20),
        _rule(3, {"priorities": ["urgent"]}, priority=9, active=False, team=30),
    ]

    target = evaluate_escalation(_ticket(), 20, rules)

    assert target.team_id == 20
    assert target.rule_id == 2
    assert target.reason == "rule:rule-2"


def test_equal_priority_ties_break_on_rule_id() -> None:
    rules = [_rule(7, {"min_complexity": 0}, team=70), _rule(4, {"min_complexity": 0}, team=40)]

    assert evaluate_escalation(_ticket(), 10, rules).rule_id == 4


def test_ceiling_applies_only_without_rule_match() -> None:
    target = evaluate_escalation(_ticket(), 70, [], complexity_ceiling=70, ceiling_team_id=3)

    assert target.as_dict() == {"team_id": 3, "queue": "escalations", "reason": "complexity_ceiling", "rule_id": None}
    assert evaluate_escalation(_ticket(), 69, [], complexity_ceiling=70) is None
    assert evaluate_escalation(_ticket(), 99, []) is None


def test_rule_crud(db) -> None:
    high = create_rule(db, name="Outages", conditions={"keywords": ["outage"]}, priority=10, target_team_id=5)
    low = create_rule(db, name="Bugs", conditions={"categories": ["bug"]}, priority=1, target_queue="dev")

    assert [rule.id for rule in list_rules(db)] == [high.id, low.id]

    deactivate_rule(db, high.id)
    assert [rule.id for rule in list_rules(db)] == [low.id]
    assert len(list_rules(db, active_only=False)) == 2

    with pytest.raises(NotFoundError):
        deactivate_rule(db, 999)
