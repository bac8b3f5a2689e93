from __future__ import annotations

import threading

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from app.db.base import Base

from app.models.faq_cache_entry import FaqCacheEntry
from app.services.ai.cache import SemanticAnswerCache, normalize_question, question_digest


def test_normalize_question_strips_punctuation_case_and_spacing():
    assert normalize_question("  Cannot   LOG in?!\n") == "cannot log in"
    assert normalize_question("") == ""


def test_equivalent_questions_share_a_digest():
    assert question_digest("Cannot log in!") == question_digest("cannot   log in")
    assert question_digest("Cannot log in") != question_digest("Cannot log out")


def test_lookup_miss_does_not_create_an_entry(session_factory, db):
    cache = SemanticAnswerCache(session_factory)

    answer, found = cache.lookup("How do I reset my password?")

    assert (answer, found) == (None, False)
    assert db.execute(select(func.count(FaqCacheEntry.id))).scalar_one() == 0


def test_store_then_lookup_counts_hits(session_factory, db):
    cache = SemanticAnswerCache(session_factory)
    cache.store("How do I reset my password?", "Use the self-service reset link on the sign-in page.")

    first = cache.lookup("how do i reset my password")
    second = cache.lookup("How do I reset my PASSWORD??")

    assert first == ("Use the self-service reset link on the sign-in page.", True)
    assert second[1] is True
    entry = db.execute(select(FaqCacheEntry)).scalar_one()
    assert entry.hit_count == 2
    assert entry.last_hit_at is not None


def test_store_is_idempotent_per_question_and_keeps_hit_count(session_factory, db):
    cache = SemanticAnswerCache(session_factory)
    cache.store("VPN keeps dropping", "Reinstall the VPN client profile.")
    cache.lookup("VPN keeps dropping")

    cache.store("vpn keeps dropping.", "Update the VPN client to the latest release.")

    rows = db.execute(select(FaqCacheEntry)).scalars().all()
    assert len(rows) == 1
    assert rows[0].answer == "Update the VPN client to the latest release."
    assert rows[0].hit_count == 1


def test_store_ignores_empty_question_or_answer(session_factory):
    cache = SemanticAnswerCache(session_factory)
    cache.store("?!", "Some answer")
    cache.store("Printer offline", "")

    assert cache.stats() == {"entries": 0, "total_hits": 0}


def test_popular_orders_by_hits_and_clear_removes_everything(session_factory):
    cache = SemanticAnswerCache(session_factory)
    cache.store("Printer offline", "Power cycle the printer.")
    cache.store("Outlook crashes", "Start Outlook in safe mode.")
    for _ in range(3):
        cache.lookup("Outlook crashes")
    cache.lookup("Printer offline")

    popular = cache.popular(limit=2)

    assert [item["question"] for item in popular] == ["Outlook crashes", "Printer offline"]
    assert popular[0]["hit_count"] == 3
    assert cache.stats() == {"entries": 2, "total_hits": 4}
    assert cache.clear() == 2
    assert cache.lookup("Outlook crashes") == (None, False)


def _run_together(targets) -> None:
    barrier = threading.Barrier(len(targets))

    def run(target) -> None:
        barrier.wait()
        target()

    threads = [threading.Thread(target=run, args=(target,)) for target in targets]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(30)


def test_concurrent_first_stores_and_lookups_keep_one_entry(tmp_path) -> None:
    file_engine = create_engine(f"sqlite:///{tmp_path / 'cache.db'}", connect_args={"timeout": 15})
    Base.metadata.create_all(file_engine)
    factory = sessionmaker(bind=file_engine, autoflush=False, expire_on_commit=False)
    # Two instances share no locks, like two worker processes.
    caches = [SemanticAnswerCache(factory), SemanticAnswerCache(factory)]
    answers = [f"Answer variant {n}" for n in range(4)]
    hits = []

    try:
        _run_together(
            [lambda n=n: caches[n % 2].store("Printer is offline", answers[n]) for n in range(4)]
        )
        _run_together(
            [lambda n=n: caches[n % 2].store("printer is OFFLINE!", answers[n]) for n in range(4)]
            + [lambda n=n: hits.append(caches[n % 2].lookup("Printer is offline?")) for n in range(6)]
        )

        with factory() as session:
            rows = session.execute(select(FaqCacheEntry)).scalars().all()
        assert len(rows) == 1
        assert rows[0].answer in answers
        assert rows[0].hit_count == 6
        assert len(hits) == 6
        assert all(found for _, found in hits)
    finally:
        file_engine.dispose()
