"""Knowledge learning from resolved tickets.

Resolved tickets with a useful resolution thread are queued once in
``learning_queue`` and turned into draft articles. A worker claims an item
by flipping it from ``pending`` to ``processing`` in a single conditional
UPDATE, so two sweeps never extract the same ticket. Failures put the item
back to ``pending`` until ``max_attempts`` is reached, then mark it
``failed``. Drafts are never published here.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import ValidationError
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import GovernorDenied, InferenceBackendError, MalformedInferenceOutput, NotEligible
from app.db.session import SessionFactory
from app.models.enums import ArticleSource, ArticleStatus, LearningStatus, TicketPriority, TicketStatus
from app.models.knowledge_article import KnowledgeArticle
from app.models.learning_queue_item import LearningQueueItem
from app.models.ticket import Ticket, TicketComment
from app.schemas.ai import KnowledgeExtraction, LearningProcessResult
from app.services.ai.gateway import InferenceGateway
from app.services.ai.llm import extract_json
from app.services.ai.prompts import RESOLUTION_KEYWORDS, TAG_KEYWORDS, build_knowledge_extraction_prompt

logger = logging.getLogger(__name__)

LEARNING_OPERATION = "knowledge_extraction"
LEARNING_CALLER = "system:knowledge-learning"
MIN_COMMENTS = 2
RESOLUTION_TAIL = 3
MAX_TAGS = 15

REASON_NOT_FOUND = "ticket_not_found"
REASON_NOT_RESOLVED = "ticket_not_resolved"
REASON_TOO_FEW_COMMENTS = "not_useful:too_few_comments"
REASON_NO_RESOLUTION = "not_useful:no_resolution_language"
REASON_ALREADY_QUEUED = "already_queued"
REASON_NOT_CLAIMED = "not_claimed"


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass(frozen=True)
class LearningOutcome:
    ticket_id: str
    status: str
    reason: str | None = None
    article_id: int | None = None
    used_inference: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "ticket_id": self.ticket_id,
            "status": self.status,
            "reason": self.reason,
            "article_id": self.article_id,
            "used_inference": self.used_inference,
        }


@dataclass(frozen=True)
class ResolutionExtract:
    problem: str
    resolution: str
    thread: str


def has_resolution_language(text: str) -> bool:
    lowered = (text or "").lower()
    return any(keyword in lowered for keyword in RESOLUTION_KEYWORDS)


def ineligibility_reason(ticket: Ticket | None, comments: list[TicketComment]) -> str | None:
    if ticket is None:
        return REASON_NOT_FOUND
    if ticket.status != TicketStatus.resolved:
        return REASON_NOT_RESOLVED
    if len(comments) < MIN_COMMENTS:
        return REASON_TOO_FEW_COMMENTS
    if not any(has_resolution_language(comment.content) for comment in comments[-RESOLUTION_TAIL:]):
        return REASON_NO_RESOLUTION
    return None


def extract_resolution(ticket: Ticket, comments: list[TicketComment]) -> ResolutionExtract:
    tail = comments[-RESOLUTION_TAIL:]
    return ResolutionExtract(
        problem=f"{ticket.title}\n{ticket.description or ''}".strip(),
        resolution="\n\n".join(comment.content.strip() for comment in tail),
        thread="\n".join(f"- {comment.author}: {comment.content.strip()}" for comment in comments),
    )


def derive_tags(ticket: Ticket, resolution: str, extra: list[str] | None = None) -> list[str]:
    tags: list[str] = [ticket.category.value]
    if ticket.priority == TicketPriority.urgent:
        tags.append("urgent")
    text = f"{ticket.title} {resolution}".lower()
    tags.extend(keyword for keyword in TAG_KEYWORDS if keyword in text)
    tags.extend(ticket.tags or [])
    tags.extend(extra or [])
    seen: list[str] = []
    for tag in tags:
        cleaned = str(tag).strip().lower()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen[:MAX_TAGS]


def parse_extraction(text: str) -> KnowledgeExtraction:
    data = extract_json(text or "")
    if data is None:
        raise MalformedInferenceOutput("Extraction output is not a JSON object", operation=LEARNING_OPERATION)
    try:
        return KnowledgeExtraction.model_validate(data)
    except ValidationError as exc:
        raise MalformedInferenceOutput(
            f"Extraction output failed validation: {exc.error_count()} errors",
            operation=LEARNING_OPERATION,
        ) from exc


def _ai_article_content(extraction: KnowledgeExtraction, fallback: ResolutionExtract) -> str:
    sections = [f"## Problem\n{extraction.problem or fallback.problem}"]
    if extraction.resolution_steps:
        steps = "\n".join(f"{index}. {step}" for index, step in enumerate(extraction.resolution_steps, start=1))
        sections.append(f"## Resolution Steps\n{steps}")
    else:
        sections.append(f"## Resolution\n{fallback.resolution}")
    if extraction.root_cause:
        sections.append(f"## Root Cause\n{extraction.root_cause}")
    if extraction.prevention:
        sections.append("## Prevention\n" + "\n".join(f"- {tip}" for tip in extraction.prevention))
    return "\n\n".join(sections)


def _raw_article_content(extract: ResolutionExtract) -> str:
    return f"## Problem\n{extract.problem}\n\n## Resolution\n{extract.resolution}"


class KnowledgeLearningEngine:
    def __init__(
        self,
        session_factory: SessionFactory,
        gateway: InferenceGateway,
        *,
        max_attempts: int = 3,
        clock: Callable[[], dt.datetime] = _utcnow,
    ) -> None:
        self._session_factory = session_factory
        self.gateway = gateway
        self.max_attempts = max(1, max_attempts)
        self._clock = clock

    # ----- queue -----

    def enqueue(self, ticket_id: str) -> bool:
        """Queue an eligible ticket; ``False`` when it was already queued.

        Raises ``NotEligible`` without touching the queue when the ticket is
        not resolved or its thread does not look like a resolution.
        """
        with self._session_factory() as db:
            ticket = db.get(Ticket, ticket_id)
            comments = list(ticket.comments) if ticket is not None else []
            reason = ineligibility_reason(ticket, comments)
            if reason is not None:
                raise NotEligible(reason, ticket_id=ticket_id)
            return self._insert_item(db, ticket_id)

    def _insert_item(self, db: Session, ticket_id: str) -> bool:
        exists = db.execute(
            select(LearningQueueItem.id).where(LearningQueueItem.ticket_id == ticket_id)
        ).scalar_one_or_none()
        if exists is not None:
            return False
        db.add(LearningQueueItem(ticket_id=ticket_id, process_status=LearningStatus.pending, created_at=self._clock()))
        try:
            db.commit()
        except IntegrityError:
            # Lost the race against a concurrent enqueue of the same ticket.
            db.rollback()
            return False
        logger.info("Ticket %s queued for knowledge learning", ticket_id)
        return True

    def requeue(self, ticket_id: str) -> bool:
        """Give a ``failed`` item another round of attempts."""
        with self._session_factory() as db:
            result = db.execute(
                update(LearningQueueItem)
                .where(
                    LearningQueueItem.ticket_id == ticket_id,
                    LearningQueueItem.process_status == LearningStatus.failed,
                )
                .values(process_status=LearningStatus.pending, attempts=0, last_error=None, claimed_at=None)
            )
            db.commit()
        return bool(result.rowcount)

    def learn_from(self, ticket_id: str) -> LearningOutcome:
        try:
            queued = self.enqueue(ticket_id)
        except NotEligible as exc:
            logger.info("Skipping learning for ticket=%s: %s", ticket_id, exc.reason)
            return LearningOutcome(ticket_id=ticket_id, status="skipped", reason=exc.reason)
        if not queued:
            return LearningOutcome(ticket_id=ticket_id, status="skipped", reason=REASON_ALREADY_QUEUED)
        with self._session_factory() as db:
            item_id = db.execute(
                select(LearningQueueItem.id).where(LearningQueueItem.ticket_id == ticket_id)
            ).scalar_one()
        return self.process_item(item_id)

    # ----- processing -----

    def claim(self, item_id: int) -> bool:
        with self._session_factory() as db:
            result = db.execute(
                update(LearningQueueItem)
                .where(
                    LearningQueueItem.id == item_id,
                    LearningQueueItem.process_status == LearningStatus.pending,
                )
                .values(
                    process_status=LearningStatus.processing,
                    attempts=LearningQueueItem.attempts + 1,
                    claimed_at=self._clock(),
                )
            )
            db.commit()
        return bool(result.rowcount)

    def process_item(self, item_id: int) -> LearningOutcome:
        if not self.claim(item_id):
            with self._session_factory() as db:
                item = db.get(LearningQueueItem, item_id)
                ticket_id = item.ticket_id if item is not None else ""
            return LearningOutcome(ticket_id=ticket_id, status="skipped", reason=REASON_NOT_CLAIMED)

        with self._session_factory() as db:
            item = db.get(LearningQueueItem, item_id)
            ticket_id = item.ticket_id
            try:
                return self._extract(db, item)
            except Exception as exc:  # noqa: BLE001
                db.rollback()
                logger.warning("Knowledge learning failed for ticket=%s: %s", ticket_id, exc)
                status = self._release(item_id, str(exc))
                return LearningOutcome(ticket_id=ticket_id, status=status.value, reason=str(exc)[:200])

    def _release(self, item_id: int, error: str) -> LearningStatus:
        with self._session_factory() as db:
            item = db.get(LearningQueueItem, item_id)
            status = LearningStatus.failed if item.attempts >= self.max_attempts else LearningStatus.pending
            item.process_status = status
            item.last_error = error[:2000]
            item.claimed_at = None
            db.commit()
        return status

    def _extract(self, db: Session, item: LearningQueueItem) -> LearningOutcome:
        ticket = db.get(Ticket, item.ticket_id)
        comments = list(ticket.comments) if ticket is not None else []
        reason = ineligibility_reason(ticket, comments)
        if reason is not None:
            # Ticket was reopened or edited after queueing.
            item.process_status = LearningStatus.done
            item.last_error = reason
            item.processed_at = self._clock()
            db.commit()
            return LearningOutcome(ticket_id=item.ticket_id, status="skipped", reason=reason)

        extract = extract_resolution(ticket, comments)
        prompt = build_knowledge_extraction_prompt(
            title=ticket.title,
            description=ticket.description or "",
            category=ticket.category.value,
            resolution_thread=extract.thread,
        )
        extraction: KnowledgeExtraction | None = None
        try:
            completion = self.gateway.complete(
                caller_id=LEARNING_CALLER,
                operation=LEARNING_OPERATION,
                prompt=prompt,
                ticket_id=ticket.id,
            )
            extraction = parse_extraction(completion.text)
        except (GovernorDenied, InferenceBackendError, MalformedInferenceOutput) as exc:
            logger.warning(
                "Knowledge extraction for ticket=%s fell back to raw text: %s",
                ticket.id,
                exc.error_code,
            )

        if extraction is not None:
            article = KnowledgeArticle(
                title=extraction.title,
                summary=extraction.summary or extraction.problem[:500],
                content=_ai_article_content(extraction, extract),
                tags=derive_tags(ticket, extract.resolution, extraction.tags),
                source=ArticleSource.ai_generated,
            )
        else:
            article = KnowledgeArticle(
                title=ticket.title[:255],
                summary=(ticket.description or ticket.title)[:500],
                content=_raw_article_content(extract),
                tags=derive_tags(ticket, extract.resolution),
                source=ArticleSource.extracted,
            )
        article.category = ticket.category.value
        article.source_ticket_ids = [ticket.id]
        article.status = ArticleStatus.draft
        article.created_by = None
        db.add(article)
        db.flush()

        item.article_id = article.id
        item.process_status = LearningStatus.done
        item.processed_at = self._clock()
        item.last_error = None
        db.commit()
        logger.info(
            "Draft knowledge article %s created from ticket=%s (source=%s)",
            article.id,
            ticket.id,
            article.source.value,
        )
        return LearningOutcome(
            ticket_id=ticket.id,
            status="drafted",
            article_id=article.id,
            used_inference=extraction is not None,
        )

    # ----- sweeps -----

    def recover_stale(self, lease: dt.timedelta) -> int:
        """Release items whose worker died while holding them."""
        cutoff = self._clock() - lease
        stale = LearningQueueItem.process_status == LearningStatus.processing
        with self._session_factory() as db:
            exhausted = db.execute(
                update(LearningQueueItem)
                .where(stale, LearningQueueItem.claimed_at < cutoff, LearningQueueItem.attempts >= self.max_attempts)
                .values(process_status=LearningStatus.failed, claimed_at=None, last_error="processing_lease_expired")
            )
            released = db.execute(
                update(LearningQueueItem)
                .where(stale, LearningQueueItem.claimed_at < cutoff)
                .values(process_status=LearningStatus.pending, claimed_at=None, last_error="processing_lease_expired")
            )
            db.commit()
        total = int(exhausted.rowcount or 0) + int(released.rowcount or 0)
        if total:
            logger.warning("Recovered %s stale learning items (%s failed)", total, exhausted.rowcount)
        return total

    def unqueued_resolved_ticket_ids(self, limit: int = 100) -> list[str]:
        with self._session_factory() as db:
            queued = select(LearningQueueItem.ticket_id)
            return list(
                db.execute(
                    select(Ticket.id)
                    .where(Ticket.status == TicketStatus.resolved, Ticket.id.not_in(queued))
                    .order_by(Ticket.resolved_at.asc(), Ticket.id.asc())
                    .limit(max(limit, 1))
                ).scalars()
            )

    def seed_backlog(self, limit: int = 100) -> tuple[int, int]:
        """Queue resolved tickets missed by the resolution hook. Returns (queued, skipped)."""
        queued = skipped = 0
        for ticket_id in self.unqueued_resolved_ticket_ids(limit):
            try:
                if self.enqueue(ticket_id):
                    queued += 1
            except NotEligible:
                skipped += 1
        return queued, skipped

    def process_pending(self, limit: int = 25, *, lease: dt.timedelta | None = None) -> LearningProcessResult:
        result = LearningProcessResult()
        if lease is not None:
            result.recovered = self.recover_stale(lease)
        with self._session_factory() as db:
            item_ids = list(
                db.execute(
                    select(LearningQueueItem.id)
                    .where(LearningQueueItem.process_status == LearningStatus.pending)
                    .order_by(LearningQueueItem.created_at.asc(), LearningQueueItem.id.asc())
                    .limit(max(limit, 1))
                ).scalars()
            )
        for item_id in item_ids:
            outcome = self.process_item(item_id)
            if outcome.status == "skipped":
                result.skipped += 1
                continue
            result.processed += 1
            if outcome.status == "drafted":
                result.drafted += 1
            elif outcome.status == LearningStatus.failed.value:
                result.failed += 1
        if item_ids:
            logger.info(
                "Learning queue processed=%s drafted=%s failed=%s skipped=%s",
                result.processed,
                result.drafted,
                result.failed,
                result.skipped,
            )
        return result

    def status_counts(self) -> dict[LearningStatus, int]:
        with self._session_factory() as db:
            rows = db.execute(
                select(LearningQueueItem.process_status, func.count(LearningQueueItem.id)).group_by(
                    LearningQueueItem.process_status
                )
            ).all()
        counts = {status: 0 for status in LearningStatus}
        for status, count in rows:
            counts[LearningStatus(status)] = int(count)
        return counts
