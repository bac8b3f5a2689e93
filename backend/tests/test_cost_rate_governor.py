from __future__ import annotations

import threading
from types import SimpleNamespace

from app.core.exceptions import GovernorDenied
from app.services.ai.governor import CostRateGovernor
from app.services.ai.pricing import estimate_cost
from app.services.ai.settings_provider import CostLimits, StaticSettingsProvider
from app.services.ai.usage_ledger import UsageLedger

from conftest import MODEL_ID


def _governor(session_factory, clock, **limits) -> tuple[CostRateGovernor, UsageLedger]:
    provider = StaticSettingsProvider(cost_limits=CostLimits(**limits))
    ledger = UsageLedger(session_factory, clock=clock)
    return CostRateGovernor(provider, ledger, clock=clock), ledger


def _admit(governor: CostRateGovernor, caller: str = "agent-1", tokens: tuple[int, int] = (200, 100)):
    return governor.admit(caller, "ticket_analysis", tokens[0], tokens[1], model_id=MODEL_ID)


def test_minute_window_saturates_and_resets_lazily(session_factory, clock):
    governor, _ = _governor(session_factory, clock, max_requests_per_minute=2)

    assert _admit(governor).allow
    assert _admit(governor).allow
    denied = _admit(governor)

    assert not denied.allow
    assert denied.reason == "minute_rate_limit"
    assert 1 <= denied.retry_after <= 60

    clock.advance(61)
    assert _admit(governor).allow
    assert governor.windows_for("agent-1")["minute"]["count"] == 1


def test_windows_are_per_caller(session_factory, clock):
    governor, _ = _governor(session_factory, clock, max_requests_per_minute=1)

    assert _admit(governor, "agent-1").allow
    assert not _admit(governor, "agent-1").allow
    assert _admit(governor, "agent-2").allow


def test_hour_window_outlives_minute_rollover(session_factory, clock):
    governor, _ = _governor(session_factory, clock, max_requests_per_minute=100, max_requests_per_hour=3)
    for _ in range(3):
        assert _admit(governor).allow

    clock.advance(61)
    denied = _admit(governor)
    assert denied.reason == "hour_rate_limit"
    assert denied.retry_after > 60

    clock.advance(3600)
    assert _admit(governor).allow


def test_token_budget_denial_consumes_no_request_slot(session_factory, clock):
    governor, _ = _governor(session_factory, clock, max_tokens_per_request=4000)

    decision = _admit(governor, tokens=(3000, 2000))

    assert not decision.allow
    assert decision.reason == "token_budget"
    assert decision.retry_after is None
    assert governor.windows_for("agent-1")["minute"]["count"] == 0


def test_daily_cost_ceiling_uses_ledger_spend(session_factory, clock):
    governor, ledger = _governor(session_factory, clock, daily_limit_usd=0.01)
    ledger.record(operation="ticket_analysis", model_id=MODEL_ID, input_tokens=10, output_tokens=10, cost=0.0099)

    decision = _admit(governor, tokens=(2000, 1000))

    assert not decision.allow
    assert decision.reason == "daily_cost_limit"
    assert decision.estimated_cost > 0
    # 12:00 UTC, so the next day starts in twelve hours.
    assert decision.retry_after == 12 * 3600


def test_monthly_cost_ceiling(session_factory, clock):
    governor, ledger = _governor(session_factory, clock, daily_limit_usd=100.0, monthly_limit_usd=0.5)
    clock.advance(-5 * 24 * 3600)
    ledger.record(operation="knowledge_extraction", model_id=MODEL_ID, input_tokens=1, output_tokens=1, cost=0.5)
    clock.advance(5 * 24 * 3600)

    decision = _admit(governor)

    assert decision.reason == "monthly_cost_limit"


def test_denials_are_counted_in_diagnostics(session_factory, clock):
    governor, _ = _governor(session_factory, clock, max_requests_per_minute=1)
    _admit(governor)
    _admit(governor)

    diagnostics = governor.diagnostics()

    assert diagnostics["admitted"] == 1
    assert diagnostics["denied"] == {"minute_rate_limit": 1}
    assert diagnostics["blocked_total"] == 1
    assert diagnostics["recent_denials"][0]["caller_id"] == "agent-1"

    governor.reset()
    assert governor.diagnostics()["blocked_total"] == 0
    assert governor.windows_for("agent-1")["minute"]["count"] == 0


def test_decision_converts_to_exception(session_factory, clock):
    governor, _ = _governor(session_factory, clock, max_requests_per_minute=0)

    exc = _admit(governor).to_exception(operation="ticket_analysis", model_id=MODEL_ID)

    assert isinstance(exc, GovernorDenied)
    assert exc.reason == "minute_rate_limit"
    assert exc.status_code == 429


def _idle_ledger(daily: float = 0.0, monthly: float = 0.0) -> SimpleNamespace:
    return SimpleNamespace(daily_spend=lambda: daily, monthly_spend=lambda: monthly)


def test_concurrent_admits_never_exceed_the_window(clock):
    provider = StaticSettingsProvider(cost_limits=CostLimits(max_requests_per_minute=5))
    governor = CostRateGovernor(provider, _idle_ledger(), clock=clock)
    barrier = threading.Barrier(20)
    decisions = []

    def admit() -> None:
        barrier.wait()
        decisions.append(_admit(governor))

    threads = [threading.Thread(target=admit) for _ in range(20)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(30)

    assert len(decisions) == 20
    assert sum(decision.allow for decision in decisions) == 5
    assert {decision.reason for decision in decisions if not decision.allow} == {"minute_rate_limit"}
    assert governor.windows_for("agent-1")["minute"]["count"] == 5
    assert governor.diagnostics()["admitted"] == 5


def test_in_flight_calls_count_against_the_daily_ceiling(clock):
    cost = estimate_cost(MODEL_ID, 200, 100)
    provider = StaticSettingsProvider(cost_limits=CostLimits(daily_limit_usd=cost * 2.5))
    governor = CostRateGovernor(provider, _idle_ledger(), clock=clock)

    first = _admit(governor)
    second = _admit(governor)
    third = _admit(governor)

    assert first.allow and second.allow
    assert third.reason == "daily_cost_limit"
    assert governor.diagnostics()["reserved_usd"] == round(cost * 2, 6)

    governor.release(first)
    assert _admit(governor).allow


def test_window_denial_returns_the_reservation(clock):
    provider = StaticSettingsProvider(cost_limits=CostLimits(max_requests_per_minute=1))
    governor = CostRateGovernor(provider, _idle_ledger(), clock=clock)

    admitted = _admit(governor)
    denied = _admit(governor)

    assert denied.reason == "minute_rate_limit"
    assert denied.reserved == 0.0
    assert governor.diagnostics()["reserved_usd"] == round(admitted.reserved, 6)
