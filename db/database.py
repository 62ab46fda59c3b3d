"""SQLAlchemy engine, session factory, and declarative Base."""

from __future__ import annotations

import os
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./triage_core.db")

# SQLite needs check_same_thread=False for use across threads (FastAPI workers, lock retries)
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp; every persisted datetime uses this convention."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_db():
    """FastAPI dependency: yield a DB session and close it after the request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> sessionmaker:
    """FastAPI dependency: the factory used by locks and idempotency records."""
    return SessionLocal


def init_db(bind=None) -> None:
    """Create all tables. Called once at application startup."""
    from db import models  # noqa: F401  registers models on Base
    Base.metadata.create_all(bind=bind or engine)


if __name__ == "__main__":
    print("Creating database tables...")
    init_db()
    print(f"Database: {DATABASE_URL}")

    from sqlalchemy import inspect
    inspector = inspect(engine)
    for table in inspector.get_table_names():
        print(f"   Table: {table}")
