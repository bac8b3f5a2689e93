"""Single entry point for governed, metered inference calls."""

from __future__ import annotations

import logging
import threading
from collections import Counter, deque
from typing import Any

from app.core.config import settings
from app.core.exceptions import InferenceBackendError
from app.services.ai.bedrock import BedrockBackend
from app.services.ai.governor import CostRateGovernor
from app.services.ai.llm import InferenceBackend, InferenceResult, OllamaBackend, estimate_tokens
from app.services.ai.pricing import estimate_cost
from app.services.ai.settings_provider import SettingsProvider
from app.services.ai.usage_ledger import UsageLedger, utcnow

logger = logging.getLogger(__name__)

# Expected completion size used for cost projection when the allowance is larger.
PROJECTED_OUTPUT_TOKENS = 1000


def build_backend() -> InferenceBackend:
    backend = settings.AI_BACKEND.strip().lower()
    if backend == "bedrock":
        return BedrockBackend(
            region=settings.BEDROCK_REGION,
            access_key_id=settings.BEDROCK_ACCESS_KEY_ID,
            secret_access_key=settings.BEDROCK_SECRET_ACCESS_KEY,
        )
    return OllamaBackend(settings.OLLAMA_BASE_URL)


class InferenceGateway:
    def __init__(
        self,
        backend: InferenceBackend,
        governor: CostRateGovernor,
        ledger: UsageLedger,
        settings_provider: SettingsProvider,
        *,
        default_model_id: str,
    ) -> None:
        self.backend = backend
        self.governor = governor
        self.ledger = ledger
        self._settings = settings_provider
        self.default_model_id = default_model_id
        self._failures: Counter = Counter()
        self._recent_failures: deque[dict[str, Any]] = deque(maxlen=50)
        self._failures_lock = threading.Lock()

    def complete(
        self,
        *,
        caller_id: str,
        operation: str,
        prompt: str,
        max_output_tokens: int | None = None,
        ticket_id: str | None = None,
    ) -> InferenceResult:
        """Run one inference call.

        Raises ``GovernorDenied`` when the call is not admitted and an
        ``InferenceBackendError`` subclass when the backend fails. Admitted
        calls that return are always written to the usage ledger.
        """
        ai_settings = self._settings.get_ai_settings()
        limits = self._settings.get_cost_limits()
        model_id = ai_settings.model_id or self.default_model_id

        estimated_input = estimate_tokens(prompt)
        requested = max_output_tokens or ai_settings.max_tokens
        allowance = limits.max_tokens_per_request - estimated_input
        if allowance > 0:
            effective_max = max(1, min(requested, allowance))
            projected_output = min(effective_max, PROJECTED_OUTPUT_TOKENS)
        else:
            # Prompt alone exhausts the budget; the governor reports token_budget.
            effective_max = requested
            projected_output = requested

        decision = self.governor.admit(
            caller_id,
            operation,
            estimated_input,
            projected_output,
            model_id=model_id,
        )
        if not decision.allow:
            raise decision.to_exception(operation=operation, model_id=model_id)

        try:
            try:
                result = self.backend.invoke(
                    model_id,
                    prompt,
                    effective_max,
                    temperature=ai_settings.temperature,
                    timeout=float(ai_settings.response_timeout),
                )
            except InferenceBackendError as exc:
                self._note_failure(exc, operation=operation, ticket_id=ticket_id)
                raise

            cost = estimate_cost(model_id, result.input_tokens, result.output_tokens)
            self.ledger.record(
                operation=operation,
                model_id=result.model_id or model_id,
                input_tokens=result.input_tokens,
                output_tokens=result.output_tokens,
                cost=cost,
                caller_id=caller_id,
                ticket_id=ticket_id,
            )
        finally:
            self.governor.release(decision)
        return result

    def _note_failure(self, exc: InferenceBackendError, *, operation: str, ticket_id: str | None) -> None:
        with self._failures_lock:
            self._failures[exc.error_code or type(exc).__name__] += 1
            self._recent_failures.appendleft(
                {
                    "operation": operation,
                    "ticket_id": ticket_id,
                    "error": type(exc).__name__,
                    "message": exc.message,
                    "retryable": exc.retryable,
                    "at": utcnow().isoformat(),
                }
            )
        logger.warning("Inference failed op=%s ticket=%s: %s", operation, ticket_id or "-", exc.message)

    def diagnostics(self) -> dict[str, Any]:
        with self._failures_lock:
            backend_failures = {
                "by_code": dict(self._failures),
                "recent": list(self._recent_failures),
            }
        return {
            "model_id": self._settings.get_ai_settings().model_id or self.default_model_id,
            "backend": type(self.backend).__name__,
            "governor": self.governor.diagnostics(),
            "backend_failures": backend_failures,
        }
