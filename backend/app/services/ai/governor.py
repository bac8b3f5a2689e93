"""Cost and rate governor consulted before every inference call.

Each caller has three request windows (minute, hour, day). A window resets
lazily: the first access at or after its ``reset_at`` sets the count back to
zero and starts a new window of the same length from that moment. Every
read-modify-write of a caller's windows happens under that caller's per-window
locks, acquired in a fixed order, so concurrent callers never serialize on a
shared mutex.

Spend checks count admitted calls that have not reached the ledger yet: an
admitted call reserves its projected cost until the caller hands the decision
back to ``release``.
"""

from __future__ import annotations

import datetime as dt
import logging
import math
import threading
from collections import Counter, deque
from dataclasses import dataclass, field, replace
from typing import Any, Callable

from app.core.exceptions import GovernorDenied
from app.core.locks import KeyedLocks
from app.services.ai.pricing import estimate_cost
from app.services.ai.settings_provider import CostLimits, SettingsProvider
from app.services.ai.usage_ledger import UsageLedger, next_day_start, next_month_start, utcnow

logger = logging.getLogger(__name__)

WINDOWS: tuple[tuple[str, int, str], ...] = (
    ("minute", 60, "max_requests_per_minute"),
    ("hour", 60 * 60, "max_requests_per_hour"),
    ("day", 24 * 60 * 60, "max_requests_per_day"),
)

REASON_TOKEN_BUDGET = "token_budget"
REASON_DAILY_COST = "daily_cost_limit"
REASON_MONTHLY_COST = "monthly_cost_limit"


def window_reason(name: str) -> str:
    return f"{name}_rate_limit"


@dataclass
class UsageWindow:
    count: int
    reset_at: dt.datetime


@dataclass(frozen=True)
class Decision:
    allow: bool
    reason: str | None = None
    retry_after: int | None = None
    estimated_cost: float = 0.0
    message: str | None = None
    reserved: float = 0.0

    def to_exception(self, *, operation: str | None = None, model_id: str | None = None) -> GovernorDenied:
        return GovernorDenied(
            self.reason or "denied",
            message=self.message,
            retry_after=self.retry_after,
            estimated_cost=self.estimated_cost,
            operation=operation,
            model_id=model_id,
        )


@dataclass
class _Stats:
    admitted: int = 0
    denied: Counter = field(default_factory=Counter)


def _seconds_until(target: dt.datetime, now: dt.datetime) -> int:
    return max(int(math.ceil((target - now).total_seconds())), 1)


class CostRateGovernor:
    def __init__(
        self,
        settings_provider: SettingsProvider,
        ledger: UsageLedger,
        *,
        clock: Callable[[], dt.datetime] = utcnow,
        denial_history: int = 50,
    ) -> None:
        self._settings = settings_provider
        self._ledger = ledger
        self._clock = clock
        self._locks = KeyedLocks()
        self._windows: dict[tuple[str, str], UsageWindow] = {}
        self._stats = _Stats()
        self._stats_lock = threading.Lock()
        self._recent_denials: deque[dict[str, Any]] = deque(maxlen=denial_history)
        self._spend_lock = threading.Lock()
        self._reserved = 0.0

    def admit(
        self,
        caller_id: str,
        operation: str,
        estimated_input_tokens: int,
        estimated_output_tokens: int,
        *,
        model_id: str,
    ) -> Decision:
        limits = self._settings.get_cost_limits()
        cost = estimate_cost(model_id, estimated_input_tokens, estimated_output_tokens)

        decision = self._check_budget(limits, estimated_input_tokens, estimated_output_tokens, cost)
        if decision is None:
            decision = self._reserve_spend(limits, cost)
        if decision is None:
            decision = self._take_request_slot(caller_id, limits, cost)
            if decision.allow:
                decision = replace(decision, reserved=cost)
            else:
                self._unreserve(cost)

        self._note(decision, caller_id=caller_id, operation=operation, model_id=model_id)
        return decision

    def _check_budget(self, limits: CostLimits, input_tokens: int, output_tokens: int, cost: float) -> Decision | None:
        total = input_tokens + output_tokens
        if total > limits.max_tokens_per_request:
            return Decision(
                allow=False,
                reason=REASON_TOKEN_BUDGET,
                estimated_cost=cost,
                message=f"Request needs {total} tokens, limit is {limits.max_tokens_per_request}",
            )
        return None

    def release(self, decision: Decision) -> None:
        """Drop the cost reservation of an admitted call once its ledger row is written."""
        if decision.reserved:
            self._unreserve(decision.reserved)

    def _unreserve(self, cost: float) -> None:
        with self._spend_lock:
            self._reserved = max(self._reserved - cost, 0.0)

    def _reserve_spend(self, limits: CostLimits, cost: float) -> Decision | None:
        with self._spend_lock:
            decision = self._check_spend(limits, cost, self._reserved)
            if decision is None:
                self._reserved += cost
            return decision

    def _check_spend(self, limits: CostLimits, cost: float, in_flight: float) -> Decision | None:
        now = self._clock()
        daily = self._ledger.daily_spend() + in_flight
        if daily + cost > limits.daily_limit_usd:
            return Decision(
                allow=False,
                reason=REASON_DAILY_COST,
                retry_after=_seconds_until(next_day_start(now), now),
                estimated_cost=cost,
                message=f"Daily cost limit ${limits.daily_limit_usd:.2f} would be exceeded (spent ${daily:.4f})",
            )
        monthly = self._ledger.monthly_spend() + in_flight
        if monthly + cost > limits.monthly_limit_usd:
            return Decision(
                allow=False,
                reason=REASON_MONTHLY_COST,
                retry_after=_seconds_until(next_month_start(now), now),
                estimated_cost=cost,
                message=f"Monthly cost limit ${limits.monthly_limit_usd:.2f} would be exceeded (spent ${monthly:.4f})",
            )
        return None

    def _take_request_slot(self, caller_id: str, limits: CostLimits, cost: float) -> Decision:
        keys = [(caller_id, name) for name, _, _ in WINDOWS]
        with self._locks.hold_many(keys):
            now = self._clock()
            windows: list[tuple[str, UsageWindow, int]] = []
            for name, length, limit_field in WINDOWS:
                window = self._windows.get((caller_id, name))
                if window is None or now >= window.reset_at:
                    window = UsageWindow(count=0, reset_at=now + dt.timedelta(seconds=length))
                    self._windows[(caller_id, name)] = window
                windows.append((name, window, getattr(limits, limit_field)))

            saturated = [(name, window) for name, window, limit in windows if window.count >= limit]
            if saturated:
                first_name = saturated[0][0]
                retry_after = max(_seconds_until(window.reset_at, now) for _, window in saturated)
                return Decision(
                    allow=False,
                    reason=window_reason(first_name),
                    retry_after=retry_after,
                    estimated_cost=cost,
                    message=f"Per-{first_name} request limit reached",
                )

            for _, window, _ in windows:
                window.count += 1
        return Decision(allow=True, estimated_cost=cost)

    def _note(self, decision: Decision, *, caller_id: str, operation: str, model_id: str) -> None:
        with self._stats_lock:
            if decision.allow:
                self._stats.admitted += 1
                return
            self._stats.denied[decision.reason or "denied"] += 1
            self._recent_denials.appendleft(
                {
                    "caller_id": caller_id,
                    "operation": operation,
                    "model_id": model_id,
                    "reason": decision.reason,
                    "retry_after": decision.retry_after,
                    "estimated_cost": round(decision.estimated_cost, 6),
                    "at": self._clock().isoformat(),
                }
            )
        logger.warning(
            "Governor denied op=%s caller=%s reason=%s est_cost=$%.6f",
            operation,
            caller_id,
            decision.reason,
            decision.estimated_cost,
        )

    def windows_for(self, caller_id: str) -> dict[str, dict[str, Any]]:
        now = self._clock()
        snapshot: dict[str, dict[str, Any]] = {}
        for name, _, _ in WINDOWS:
            with self._locks.hold((caller_id, name)):
                window = self._windows.get((caller_id, name))
                if window is None or now >= window.reset_at:
                    snapshot[name] = {"count": 0, "reset_at": None}
                else:
                    snapshot[name] = {"count": window.count, "reset_at": window.reset_at.isoformat()}
        return snapshot

    def diagnostics(self) -> dict[str, Any]:
        with self._stats_lock:
            return {
                "admitted": self._stats.admitted,
                "denied": dict(self._stats.denied),
                "blocked_total": sum(self._stats.denied.values()),
                "recent_denials": list(self._recent_denials),
                "reserved_usd": round(self._reserved, 6),
            }

    def reset(self) -> None:
        with self._stats_lock:
            self._stats = _Stats()
            self._recent_denials.clear()
        with self._spend_lock:
            self._reserved = 0.0
        self._windows.clear()
