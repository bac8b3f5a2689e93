"""FAQ answer cache keyed by a digest of the normalized question."""

from __future__ import annotations

import datetime as dt
import hashlib
import logging
import re
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError

from app.core.locks import KeyedLocks
from app.db.session import SessionFactory
from app.models.faq_cache_entry import FaqCacheEntry

logger = logging.getLogger(__name__)

_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def normalize_question(question: str) -> str:
    text = (question or "").lower()
    text = _PUNCTUATION_RE.sub("", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def question_digest(question: str) -> str:
    return hashlib.sha256(normalize_question(question).encode("utf-8")).hexdigest()


class SemanticAnswerCache:
    """Only context-free answers belong here; callers decide what is cacheable."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory
        self._locks = KeyedLocks()

    def lookup(self, question: str) -> tuple[str | None, bool]:
        digest = question_digest(question)
        with self._session_factory() as db:
            result = db.execute(
                update(FaqCacheEntry)
                .where(FaqCacheEntry.question_hash == digest)
                .values(hit_count=FaqCacheEntry.hit_count + 1, last_hit_at=utcnow())
            )
            if not result.rowcount:
                db.rollback()
                return None, False
            answer = db.execute(
                select(FaqCacheEntry.answer).where(FaqCacheEntry.question_hash == digest)
            ).scalar_one_or_none()
            db.commit()
        logger.debug("FAQ cache hit %s", digest[:12])
        return answer, answer is not None

    def store(self, question: str, answer: str) -> None:
        normalized = normalize_question(question)
        if not normalized or not answer:
            return
        digest = question_digest(question)
        with self._locks.hold(digest):
            with self._session_factory() as db:
                if self._overwrite(db, digest, question, answer):
                    db.commit()
                    return
                db.add(
                    FaqCacheEntry(
                        question_hash=digest,
                        original_question=question,
                        normalized_question=normalized,
                        answer=answer,
                        hit_count=0,
                    )
                )
                try:
                    db.commit()
                except IntegrityError:
                    # Another process inserted first; last writer wins on the answer.
                    db.rollback()
                    self._overwrite(db, digest, question, answer)
                    db.commit()

    def _overwrite(self, db, digest: str, question: str, answer: str) -> bool:
        result = db.execute(
            update(FaqCacheEntry)
            .where(FaqCacheEntry.question_hash == digest)
            .values(answer=answer, original_question=question, updated_at=utcnow())
        )
        return bool(result.rowcount)

    def popular(self, limit: int = 10) -> list[dict[str, Any]]:
        with self._session_factory() as db:
            rows = db.execute(
                select(FaqCacheEntry)
                .order_by(FaqCacheEntry.hit_count.desc(), FaqCacheEntry.created_at.asc())
                .limit(max(limit, 1))
            ).scalars().all()
        return [
            {
                "question": row.original_question,
                "answer": row.answer,
                "hit_count": row.hit_count,
                "last_hit_at": row.last_hit_at.isoformat() if row.last_hit_at else None,
            }
            for row in rows
        ]

    def stats(self) -> dict[str, int]:
        with self._session_factory() as db:
            entries, hits = db.execute(
                select(func.count(FaqCacheEntry.id), func.coalesce(func.sum(FaqCacheEntry.hit_count), 0))
            ).one()
        return {"entries": int(entries or 0), "total_hits": int(hits or 0)}

    def clear(self) -> int:
        with self._session_factory() as db:
            result = db.execute(delete(FaqCacheEntry))
            db.commit()
        logger.info("FAQ cache cleared (%s entries)", result.rowcount)
        return int(result.rowcount or 0)
