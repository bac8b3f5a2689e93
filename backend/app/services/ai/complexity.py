"""Deterministic complexity factor breakdown for a ticket."""

from __future__ import annotations

from typing import Any

from app.models.enums import TicketPriority
from app.services.ai.prompts import COMPLEXITY_KEYWORDS, TECHNICAL_KEYWORDS

NEUTRAL_COMPLEXITY = 50

_URGENCY_POINTS = {
    TicketPriority.urgent: 30,
    TicketPriority.high: 20,
    TicketPriority.medium: 10,
    TicketPriority.low: 5,
}
_TECHNICAL_POINTS = 10
_KEYWORD_POINTS = 15
_NO_HISTORY_POINTS = 30


def _matches(text: str, keywords: list[str]) -> list[str]:
    return [keyword for keyword in keywords if keyword in text]


def complexity_factors(
    *,
    title: str,
    description: str,
    priority: TicketPriority,
    similar_articles: int,
) -> list[dict[str, Any]]:
    """Ordered factor list, heaviest first."""
    text = f"{title} {description}".lower()
    technical = _matches(text, TECHNICAL_KEYWORDS)
    keywords = _matches(text, COMPLEXITY_KEYWORDS)
    factors = [
        {"name": "urgency", "points": _URGENCY_POINTS.get(priority, 10), "detail": priority.value},
        {"name": "technical", "points": len(technical) * _TECHNICAL_POINTS, "detail": ", ".join(technical)},
        {"name": "keywords", "points": len(keywords) * _KEYWORD_POINTS, "detail": ", ".join(keywords)},
        {
            "name": "historical",
            "points": _NO_HISTORY_POINTS if similar_articles == 0 else 0,
            "detail": f"{similar_articles} similar articles",
        },
    ]
    # sorted() is stable so equal weights keep their declaration order
    return sorted(factors, key=lambda factor: factor["points"], reverse=True)


def factor_score(factors: list[dict[str, Any]]) -> int:
    return max(0, min(100, sum(int(factor.get("points", 0)) for factor in factors)))
