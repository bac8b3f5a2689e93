"""Background execution of knowledge learning.

Resolution hooks hand ticket ids to a bounded in-process queue drained by a
dedicated thread; a periodic asyncio sweep picks up anything the queue
dropped or a crash left behind.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import queue
import threading
from typing import Any

from app.core.config import settings
from app.core.exceptions import NotEligible
from app.services.ai.learning import KnowledgeLearningEngine
from app.services.ai.settings_provider import SettingsProvider

logger = logging.getLogger(__name__)

_STOP = object()


class LearningWorker:
    def __init__(self, engine: KnowledgeLearningEngine, *, max_size: int = 256) -> None:
        self.engine = engine
        self._queue: queue.Queue = queue.Queue(maxsize=max(1, max_size))
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self.processed = 0
        self.failed = 0
        self.dropped = 0
        self.last_error: str | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def backlog(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._thread = threading.Thread(target=self._run, name="knowledge-learning-worker", daemon=True)
            self._thread.start()
        logger.info("Knowledge learning worker started")

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            thread = self._thread
            self._thread = None
        if thread is None:
            return
        self._queue.put(_STOP)
        thread.join(timeout)

    def submit(self, ticket_id: str) -> bool:
        """Hand a resolved ticket to the worker without blocking the caller."""
        try:
            self._queue.put_nowait(ticket_id)
        except queue.Full:
            self.dropped += 1
            logger.warning("Learning queue full, ticket=%s left for the periodic sweep", ticket_id)
            return False
        return True

    def _run(self) -> None:
        while True:
            ticket_id = self._queue.get()
            try:
                if ticket_id is _STOP:
                    return
                self.run_one(ticket_id)
            finally:
                self._queue.task_done()

    def run_one(self, ticket_id: str) -> None:
        try:
            outcome = self.engine.learn_from(ticket_id)
        except NotEligible as exc:
            logger.debug("Ticket %s not eligible for learning: %s", ticket_id, exc.reason)
            return
        except Exception as exc:  # noqa: BLE001
            self.failed += 1
            self.last_error = str(exc)
            logger.error("Knowledge learning worker failed for ticket=%s: %s", ticket_id, exc)
            return
        self.processed += 1
        if outcome.status not in {"drafted", "skipped"}:
            self.failed += 1
            self.last_error = outcome.reason

    def stats(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "backlog": self.backlog(),
            "processed": self.processed,
            "failed": self.failed,
            "dropped": self.dropped,
            "last_error": self.last_error,
        }


_sweep_task: asyncio.Task | None = None


def run_learning_sweep(engine: KnowledgeLearningEngine, settings_provider: SettingsProvider) -> None:
    if not settings_provider.get_ai_settings().auto_learn_enabled:
        logger.debug("Skipping learning sweep: auto learning disabled")
        return
    batch = max(1, settings.AI_LEARNING_SWEEP_BATCH_SIZE)
    try:
        queued, skipped = engine.seed_backlog(batch)
        result = engine.process_pending(
            batch,
            lease=dt.timedelta(minutes=max(1, settings.AI_LEARNING_PROCESSING_LEASE_MINUTES)),
        )
        logger.info(
            "Learning sweep completed: queued=%s not_eligible=%s recovered=%s drafted=%s failed=%s",
            queued,
            skipped,
            result.recovered,
            result.drafted,
            result.failed,
        )
    except Exception as exc:  # noqa: BLE001
        logger.warning("Learning sweep failed: %s", exc)


async def _loop(engine: KnowledgeLearningEngine, settings_provider: SettingsProvider) -> None:
    startup_delay = max(0, settings.AI_LEARNING_SWEEP_STARTUP_DELAY_SECONDS)
    interval = max(60, settings.AI_LEARNING_SWEEP_INTERVAL_SECONDS)
    if startup_delay:
        await asyncio.sleep(startup_delay)
    while True:
        await asyncio.to_thread(run_learning_sweep, engine, settings_provider)
        await asyncio.sleep(interval)


async def start_learning_sweep(engine: KnowledgeLearningEngine, settings_provider: SettingsProvider) -> None:
    global _sweep_task
    if _sweep_task is not None:
        return
    if not settings.AI_LEARNING_SWEEP_ENABLED:
        return
    _sweep_task = asyncio.create_task(_loop(engine, settings_provider), name="knowledge-learning-sweep")
    logger.info(
        "Knowledge learning sweep started (every %s seconds)",
        max(60, settings.AI_LEARNING_SWEEP_INTERVAL_SECONDS),
    )


async def stop_learning_sweep() -> None:
    global _sweep_task
    task = _sweep_task
    _sweep_task = None
    if task is None:
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
