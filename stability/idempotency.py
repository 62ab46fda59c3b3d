"""
Idempotent operation wrapper backed by the idempotency_keys table.

The first successful run stores its (JSON-serialisable) result under the key;
later calls within the TTL get the stored result back without running the
operation. This is advisory: two callers racing between the existence check
and the store can both execute. Guard with with_lock where a duplicate would
be harmful (e.g. payment capture).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Generic, Optional, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from db.database import SessionLocal, utcnow
from db.models import IdempotencyKey

logger = logging.getLogger(__name__)

T = TypeVar("T")

IDEMPOTENCY_TTL_SECONDS: int = int(os.getenv("IDEMPOTENCY_TTL_SECONDS", "86400"))


@dataclass(frozen=True)
class IdempotentResult(Generic[T]):
    result: T
    was_executed: bool


def _stored_result(factory: sessionmaker, key: str) -> tuple[bool, Any]:
    with factory() as session:
        record = session.get(IdempotencyKey, key)
        if record is None or record.expires_at <= utcnow():
            return False, None
        return True, record.result


def _store_result(factory: sessionmaker, key: str, result: Any, ttl_seconds: int) -> None:
    expires_at = utcnow() + timedelta(seconds=ttl_seconds)
    with factory() as session:
        record = session.get(IdempotencyKey, key)
        if record is None:
            session.add(IdempotencyKey(key=key, result=result, expires_at=expires_at))
        else:
            # expired record from an earlier window
            record.result = result
            record.expires_at = expires_at
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            logger.warning("idempotency key %s was stored concurrently; keeping the first result", key)


def idempotent(
    key: str,
    operation: Callable[[], T],
    *,
    ttl_seconds: int = IDEMPOTENCY_TTL_SECONDS,
    session_factory: Optional[sessionmaker] = None,
) -> IdempotentResult[T]:
    """Run `operation` at most once per `key` within `ttl_seconds`."""
    factory = session_factory or SessionLocal

    found, stored = _stored_result(factory, key)
    if found:
        logger.info("idempotency key %s already used; returning stored result", key)
        return IdempotentResult(result=stored, was_executed=False)

    result = operation()
    _store_result(factory, key, result, ttl_seconds)
    return IdempotentResult(result=result, was_executed=True)
