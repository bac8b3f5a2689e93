"""Administrative AI settings and cost limits, read fresh on every operation."""

from __future__ import annotations

import logging
import threading
from typing import Any, Protocol

from pydantic import BaseModel, ValidationError, field_validator
from sqlalchemy import select

from app.core.exceptions import BadRequestError
from app.db.session import SessionFactory
from app.models.ai_setting import AiSetting

logger = logging.getLogger(__name__)

AI_SETTINGS_KEY = "ai_settings"
COST_LIMITS_KEY = "cost_limits"
# Settings where an explicit null is meaningful.
NULLABLE_AI_SETTINGS = frozenset({"escalation_team_id", "model_id"})


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class AISettings(BaseModel):
    auto_response_enabled: bool = True
    confidence_threshold: float = 0.7
    max_response_length: int = 1000
    min_auto_response_length: int = 40
    response_timeout: int = 30
    auto_learn_enabled: bool = True
    article_approval_required: bool = True
    complexity_threshold: int = 70
    escalation_enabled: bool = True
    escalation_team_id: int | None = None
    model_id: str | None = None
    temperature: float = 0.3
    max_tokens: int = 2000

    @field_validator("confidence_threshold", "temperature")
    @classmethod
    def _unit_interval(cls, value: float) -> float:
        return _clamp(value, 0.0, 1.0)

    @field_validator("max_response_length")
    @classmethod
    def _response_length(cls, value: int) -> int:
        return int(_clamp(value, 100, 5000))

    @field_validator("min_auto_response_length")
    @classmethod
    def _min_length(cls, value: int) -> int:
        return max(value, 0)

    @field_validator("response_timeout")
    @classmethod
    def _timeout(cls, value: int) -> int:
        return int(_clamp(value, 5, 120))

    @field_validator("complexity_threshold")
    @classmethod
    def _complexity(cls, value: int) -> int:
        return int(_clamp(value, 0, 100))

    @field_validator("max_tokens")
    @classmethod
    def _max_tokens(cls, value: int) -> int:
        return int(_clamp(value, 100, 4000))


class CostLimits(BaseModel):
    daily_limit_usd: float = 100.0
    monthly_limit_usd: float = 1000.0
    max_tokens_per_request: int = 4000
    max_requests_per_day: int = 1000
    max_requests_per_hour: int = 100
    max_requests_per_minute: int = 20
    restricted_account: bool = False


RESTRICTED_CEILINGS: dict[str, float] = {
    "daily_limit_usd": 3.0,
    "monthly_limit_usd": 25.0,
    "max_tokens_per_request": 3000,
    "max_requests_per_day": 1500,
    "max_requests_per_hour": 300,
    "max_requests_per_minute": 20,
}


def _validate(model: type[BaseModel], data: dict[str, Any]) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        fields = sorted({str(error["loc"][0]) for error in exc.errors() if error.get("loc")})
        raise BadRequestError("invalid_settings", details={"fields": fields}) from exc


def merge_cost_limits(current: CostLimits, updates: dict[str, Any]) -> CostLimits:
    """Apply ``updates`` over ``current`` and enforce restricted-account ceilings.

    The ceilings are written into the stored document so that clearing the
    restricted flag later keeps the capped values until an admin raises them.
    """
    merged = current.model_dump()
    merged.update({key: value for key, value in updates.items() if value is not None})
    limits = _validate(CostLimits, merged)
    if limits.restricted_account:
        capped: dict[str, Any] = {}
        for field, ceiling in RESTRICTED_CEILINGS.items():
            configured = getattr(limits, field)
            value = min(configured, ceiling)
            capped[field] = type(configured)(value)
        limits = limits.model_copy(update=capped)
    return limits


def merge_ai_settings(current: AISettings, updates: dict[str, Any]) -> AISettings:
    merged = current.model_dump()
    merged.update(
        {key: value for key, value in updates.items() if value is not None or key in NULLABLE_AI_SETTINGS}
    )
    return _validate(AISettings, merged)


class SettingsProvider(Protocol):
    def get_ai_settings(self) -> AISettings: ...

    def get_cost_limits(self) -> CostLimits: ...

    def update_ai_settings(self, updates: dict[str, Any], *, updated_by: str | None = None) -> AISettings: ...

    def update_cost_limits(self, updates: dict[str, Any], *, updated_by: str | None = None) -> CostLimits: ...


class StaticSettingsProvider:
    """In-memory provider for scripts and tests."""

    def __init__(self, ai_settings: AISettings | None = None, cost_limits: CostLimits | None = None) -> None:
        self._ai_settings = ai_settings or AISettings()
        self._cost_limits = merge_cost_limits(cost_limits or CostLimits(), {})
        self._lock = threading.Lock()

    def get_ai_settings(self) -> AISettings:
        return self._ai_settings

    def get_cost_limits(self) -> CostLimits:
        return self._cost_limits

    def update_ai_settings(self, updates: dict[str, Any], *, updated_by: str | None = None) -> AISettings:
        with self._lock:
            self._ai_settings = merge_ai_settings(self._ai_settings, updates)
            return self._ai_settings

    def update_cost_limits(self, updates: dict[str, Any], *, updated_by: str | None = None) -> CostLimits:
        with self._lock:
            self._cost_limits = merge_cost_limits(self._cost_limits, updates)
            return self._cost_limits


class DbSettingsProvider:
    """Reads the ``ai_settings`` rows on every call; missing fields take defaults."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def _load(self, key: str, model: type[BaseModel]) -> Any:
        with self._session_factory() as db:
            row = db.get(AiSetting, key)
            raw = dict(row.value or {}) if row else {}
        try:
            return model.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Stored %s invalid, using defaults: %s", key, exc)
            return model()

    def _save(self, key: str, value: BaseModel, updated_by: str | None) -> None:
        with self._session_factory() as db:
            row = db.execute(select(AiSetting).where(AiSetting.key == key)).scalar_one_or_none()
            if row is None:
                row = AiSetting(key=key, value=value.model_dump(), updated_by=updated_by)
                db.add(row)
            else:
                row.value = value.model_dump()
                row.updated_by = updated_by
            db.commit()

    def get_ai_settings(self) -> AISettings:
        return self._load(AI_SETTINGS_KEY, AISettings)

    def get_cost_limits(self) -> CostLimits:
        return self._load(COST_LIMITS_KEY, CostLimits)

    def update_ai_settings(self, updates: dict[str, Any], *, updated_by: str | None = None) -> AISettings:
        merged = merge_ai_settings(self.get_ai_settings(), updates)
        self._save(AI_SETTINGS_KEY, merged, updated_by)
        logger.info("AI settings updated by %s: %s", updated_by or "system", sorted(updates))
        return merged

    def update_cost_limits(self, updates: dict[str, Any], *, updated_by: str | None = None) -> CostLimits:
        merged = merge_cost_limits(self.get_cost_limits(), updates)
        self._save(COST_LIMITS_KEY, merged, updated_by)
        logger.info("Cost limits updated by %s (restricted=%s)", updated_by or "system", merged.restricted_account)
        return merged
