"""Database engine and session lifecycle helpers."""

from __future__ import annotations

from typing import Callable

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings

# Components that must persist independently of the request transaction
# (usage ledger, answer cache, learning worker) receive one of these.
SessionFactory = Callable[[], Session]

engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
