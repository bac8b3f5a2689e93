"""Append-only usage ledger for inference calls and the summaries built on it."""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Callable

from sqlalchemy import delete, func, select

from app.db.session import SessionFactory
from app.models.ai_usage_record import AiUsageRecord

logger = logging.getLogger(__name__)


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def day_start(moment: dt.datetime) -> dt.datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def month_start(moment: dt.datetime) -> dt.datetime:
    return day_start(moment).replace(day=1)


def next_day_start(moment: dt.datetime) -> dt.datetime:
    return day_start(moment) + dt.timedelta(days=1)


def next_month_start(moment: dt.datetime) -> dt.datetime:
    start = month_start(moment)
    if start.month == 12:
        return start.replace(year=start.year + 1, month=1)
    return start.replace(month=start.month + 1)


def _serialize(record: AiUsageRecord) -> dict[str, Any]:
    return {
        "id": str(record.id),
        "operation": record.operation,
        "model_id": record.model_id,
        "input_tokens": record.input_tokens,
        "output_tokens": record.output_tokens,
        "cost": round(record.cost, 6),
        "caller_id": record.caller_id,
        "ticket_id": record.ticket_id,
        "created_at": record.created_at.isoformat() if record.created_at else None,
    }


class UsageLedger:
    """Each write commits in its own session so ledger rows survive caller rollbacks."""

    def __init__(self, session_factory: SessionFactory, *, clock: Callable[[], dt.datetime] = utcnow) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def record(
        self,
        *,
        operation: str,
        model_id: str,
        input_tokens: int,
        output_tokens: int,
        cost: float,
        caller_id: str | None = None,
        ticket_id: str | None = None,
    ) -> AiUsageRecord:
        row = AiUsageRecord(
            operation=operation,
            model_id=model_id,
            input_tokens=max(int(input_tokens), 0),
            output_tokens=max(int(output_tokens), 0),
            cost=max(float(cost), 0.0),
            caller_id=caller_id,
            ticket_id=ticket_id,
            created_at=self._clock(),
        )
        with self._session_factory() as db:
            db.add(row)
            db.commit()
        logger.info(
            "AI usage: op=%s model=%s in=%s out=%s cost=$%.6f ticket=%s",
            operation,
            model_id,
            row.input_tokens,
            row.output_tokens,
            row.cost,
            ticket_id or "-",
        )
        return row

    def spend_between(self, start: dt.datetime, end: dt.datetime | None = None) -> float:
        stmt = select(func.coalesce(func.sum(AiUsageRecord.cost), 0.0)).where(AiUsageRecord.created_at >= start)
        if end is not None:
            stmt = stmt.where(AiUsageRecord.created_at < end)
        with self._session_factory() as db:
            return float(db.execute(stmt).scalar_one() or 0.0)

    def daily_spend(self) -> float:
        return self.spend_between(day_start(self._clock()))

    def monthly_spend(self) -> float:
        return self.spend_between(month_start(self._clock()))

    def _summary(self, start: dt.datetime, end: dt.datetime) -> dict[str, Any]:
        window = (AiUsageRecord.created_at >= start, AiUsageRecord.created_at < end)
        with self._session_factory() as db:
            totals = db.execute(
                select(
                    func.count(AiUsageRecord.id),
                    func.coalesce(func.sum(AiUsageRecord.input_tokens), 0),
                    func.coalesce(func.sum(AiUsageRecord.output_tokens), 0),
                    func.coalesce(func.sum(AiUsageRecord.cost), 0.0),
                ).where(*window)
            ).one()
            per_operation = db.execute(
                select(AiUsageRecord.operation, func.count(AiUsageRecord.id))
                .where(*window)
                .group_by(AiUsageRecord.operation)
            ).all()
        requests, input_tokens, output_tokens, cost = totals
        return {
            "period_start": start.isoformat(),
            "period_end": end.isoformat(),
            "requests": int(requests or 0),
            "input_tokens": int(input_tokens or 0),
            "output_tokens": int(output_tokens or 0),
            "total_tokens": int(input_tokens or 0) + int(output_tokens or 0),
            "cost": round(float(cost or 0.0), 6),
            "operations": {operation: int(count) for operation, count in per_operation},
        }

    def daily_summary(self, day: dt.date | None = None) -> dict[str, Any]:
        now = self._clock()
        if day is not None:
            now = now.replace(year=day.year, month=day.month, day=day.day)
        return self._summary(day_start(now), next_day_start(now))

    def monthly_summary(self) -> dict[str, Any]:
        now = self._clock()
        return self._summary(month_start(now), next_month_start(now))

    def recent(self, limit: int = 50) -> list[dict[str, Any]]:
        with self._session_factory() as db:
            rows = db.execute(
                select(AiUsageRecord).order_by(AiUsageRecord.created_at.desc()).limit(max(limit, 1))
            ).scalars().all()
        return [_serialize(row) for row in rows]

    def export(self, start: dt.datetime, end: dt.datetime) -> list[dict[str, Any]]:
        with self._session_factory() as db:
            rows = db.execute(
                select(AiUsageRecord)
                .where(AiUsageRecord.created_at >= start, AiUsageRecord.created_at < end)
                .order_by(AiUsageRecord.created_at.asc())
            ).scalars().all()
        return [_serialize(row) for row in rows]

    def reset(self) -> int:
        with self._session_factory() as db:
            result = db.execute(delete(AiUsageRecord))
            db.commit()
        logger.warning("AI usage ledger reset (%s records removed)", result.rowcount)
        return int(result.rowcount or 0)
