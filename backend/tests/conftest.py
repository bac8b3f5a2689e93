from __future__ import annotations

import datetime as dt
import os
import sys
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

# Must be set before app.core.config is imported.
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import app.models  # noqa: E402,F401
from app.core.exceptions import InferenceBackendError  # noqa: E402
from app.db.base import Base  # noqa: E402
from app.models.enums import TicketCategory, TicketPriority, TicketStatus  # noqa: E402
from app.models.ticket import Ticket, TicketComment  # noqa: E402
from app.services.ai.llm import InferenceResult  # noqa: E402
from app.services.ai.pipeline import AIPipeline  # noqa: E402
from app.services.ai.settings_provider import StaticSettingsProvider  # noqa: E402
from app.services.events import InMemoryEventSink  # noqa: E402

MODEL_ID = "anthropic.claude-3-haiku-20240307-v1:0"


class FakeClock:
    def __init__(self, start: dt.datetime | None = None) -> None:
        self.now = start or dt.datetime(2026, 10, 16, 12, 0, tzinfo=dt.timezone.utc)

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + dt.timedelta(seconds=seconds)


class FakeBackend:
    """Returns queued replies in order; an exception in the queue is raised."""

    def __init__(self, *replies) -> None:
        self.replies = list(replies)
        self.calls: list[dict] = []

    def invoke(self, model_id, prompt, max_output_tokens, *, temperature=0.3, timeout=30.0):
        self.calls.append(
            {
                "model_id": model_id,
                "prompt": prompt,
                "max_output_tokens": max_output_tokens,
                "timeout": timeout,
            }
        )
        reply = self.replies.pop(0) if self.replies else "{}"
        if isinstance(reply, InferenceBackendError):
            raise reply
        return InferenceResult(text=reply, input_tokens=120, output_tokens=80, model_id=model_id)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def settings_provider() -> StaticSettingsProvider:
    return StaticSettingsProvider()


@pytest.fixture
def events() -> InMemoryEventSink:
    return InMemoryEventSink()


@pytest.fixture
def pipeline(session_factory, backend, settings_provider, events, clock) -> AIPipeline:
    return AIPipeline(
        session_factory=session_factory,
        backend=backend,
        settings_provider=settings_provider,
        events=events,
        default_model_id=MODEL_ID,
        clock=clock,
        learning_queue_size=4,
        learning_max_attempts=2,
    )


def make_ticket(
    db,
    ticket_id: str = "TW-1001",
    *,
    title: str = "Cannot log in",
    description: str = "Password reset email never arrives",
    status: TicketStatus = TicketStatus.open,
    priority: TicketPriority = TicketPriority.medium,
    category: TicketCategory = TicketCategory.support,
    comments: list[tuple[str, str]] | None = None,
) -> Ticket:
    ticket = Ticket(
        id=ticket_id,
        title=title,
        description=description,
        status=status,
        priority=priority,
        category=category,
        tags=[],
    )
    base = dt.datetime(2026, 10, 1, 9, 0, tzinfo=dt.timezone.utc)
    for index, (author, content) in enumerate(comments or []):
        ticket.comments.append(
            TicketComment(author=author, content=content, created_at=base + dt.timedelta(minutes=index))
        )
    db.add(ticket)
    db.commit()
    return ticket
