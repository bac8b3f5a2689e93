"""Run one knowledge learning sweep from the command line."""

from __future__ import annotations

import argparse
import datetime as dt
import sys
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]
sys.path.append(str(BASE_DIR))

from app.core.config import settings  # noqa: E402
from app.core.logging import setup_logging  # noqa: E402
from app.services.ai.pipeline import build_pipeline  # noqa: E402


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--limit", type=int, default=settings.AI_LEARNING_SWEEP_BATCH_SIZE)
    parser.add_argument("--no-seed", action="store_true", help="only process items already queued")
    parser.add_argument("--ticket", action="append", default=[], help="learn from this ticket id (repeatable)")
    args = parser.parse_args()

    setup_logging(settings.LOG_LEVEL)
    pipeline = build_pipeline()

    if args.ticket:
        for ticket_id in args.ticket:
            outcome = pipeline.learning.learn_from(ticket_id)
            print(f"{ticket_id}: {outcome.status} {outcome.reason or ''} article={outcome.article_id}")
        return 0

    if not args.no_seed:
        queued, skipped = pipeline.learning.seed_backlog(args.limit)
        print(f"seeded: queued={queued} not_eligible={skipped}")
    result = pipeline.learning.process_pending(
        args.limit,
        lease=dt.timedelta(minutes=max(1, settings.AI_LEARNING_PROCESSING_LEASE_MINUTES)),
    )
    print(
        f"processed={result.processed} drafted={result.drafted} failed={result.failed} "
        f"skipped={result.skipped} recovered={result.recovered}"
    )
    counts = pipeline.learning.status_counts()
    print("queue: " + ", ".join(f"{status.value}={count}" for status, count in counts.items()))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
