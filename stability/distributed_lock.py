"""
Database-backed distributed lock.

A lock is a row in distributed_locks with a unique key. Acquiring inserts the
row; a unique-constraint violation means somebody else holds it. Rows carry an
expiry so a crashed holder blocks others for at most `timeout` seconds: any
acquirer purges expired rows before inserting.

Release deletes by lock_id, never by key, so a holder whose lock expired and
was taken over cannot release the new holder's lock.

Call sites only use with_lock / held_lock, so the backing store can change
without touching them.
"""

from __future__ import annotations

import logging
import os
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Iterator, Optional, TypeVar

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from db.database import SessionLocal, utcnow
from db.models import DistributedLock
from stability.errors import ActionResult, LockNotAcquiredError

logger = logging.getLogger(__name__)

T = TypeVar("T")

LOCK_TIMEOUT_SECONDS: float = float(os.getenv("LOCK_TIMEOUT_SECONDS", "30"))
LOCK_RETRIES: int = int(os.getenv("LOCK_RETRIES", "3"))
LOCK_RETRY_DELAY_SECONDS: float = float(os.getenv("LOCK_RETRY_DELAY_SECONDS", "0.1"))


@dataclass(frozen=True)
class LockResult:
    acquired: bool
    key: str
    lock_id: Optional[str] = None


def _try_insert(factory: sessionmaker, key: str, lock_id: str, timeout: float) -> bool:
    with factory() as session:
        now = utcnow()
        try:
            session.execute(delete(DistributedLock).where(DistributedLock.expires_at < now))
            session.add(
                DistributedLock(key=key, lock_id=lock_id, expires_at=now + timedelta(seconds=timeout))
            )
            session.commit()
            return True
        except IntegrityError:
            session.rollback()
            return False


def acquire_lock(
    key: str,
    *,
    session_factory: Optional[sessionmaker] = None,
    timeout: float = LOCK_TIMEOUT_SECONDS,
    retries: int = LOCK_RETRIES,
    retry_delay: float = LOCK_RETRY_DELAY_SECONDS,
) -> LockResult:
    """
    Try to take the lock for `key`: one attempt plus up to `retries` retries,
    sleeping `retry_delay` seconds between attempts.
    """
    factory = session_factory or SessionLocal
    lock_id = uuid.uuid4().hex

    for attempt in range(retries + 1):
        if _try_insert(factory, key, lock_id, timeout):
            logger.debug("lock %s acquired (lock_id=%s, attempt=%d)", key, lock_id, attempt + 1)
            return LockResult(acquired=True, key=key, lock_id=lock_id)
        if attempt < retries:
            time.sleep(retry_delay)

    logger.info("lock %s not acquired after %d attempt(s)", key, retries + 1)
    return LockResult(acquired=False, key=key)


def release_lock(lock_id: str, *, session_factory: Optional[sessionmaker] = None) -> bool:
    """Delete the lock row owned by `lock_id`. Returns False if it was already gone."""
    factory = session_factory or SessionLocal
    with factory() as session:
        deleted = session.execute(
            delete(DistributedLock).where(DistributedLock.lock_id == lock_id)
        ).rowcount
        session.commit()
    if not deleted:
        logger.warning("release_lock: lock_id=%s not found (expired and taken over?)", lock_id)
    return bool(deleted)


@contextmanager
def held_lock(
    key: str,
    *,
    session_factory: Optional[sessionmaker] = None,
    timeout: float = LOCK_TIMEOUT_SECONDS,
    retries: int = LOCK_RETRIES,
    retry_delay: float = LOCK_RETRY_DELAY_SECONDS,
) -> Iterator[LockResult]:
    """Scoped acquisition; raises LockNotAcquiredError if the lock is held elsewhere."""
    lock = acquire_lock(
        key, session_factory=session_factory, timeout=timeout, retries=retries, retry_delay=retry_delay
    )
    if not lock.acquired:
        raise LockNotAcquiredError(key)
    try:
        yield lock
    finally:
        release_lock(lock.lock_id, session_factory=session_factory)


def with_lock(
    key: str,
    fn: Callable[[], T],
    *,
    session_factory: Optional[sessionmaker] = None,
    timeout: float = LOCK_TIMEOUT_SECONDS,
    retries: int = LOCK_RETRIES,
    retry_delay: float = LOCK_RETRY_DELAY_SECONDS,
) -> ActionResult[T]:
    """
    Run `fn` while holding the lock for `key`.

    Lock contention is an expected outcome and comes back as a failed
    ActionResult (code LOCK_NOT_ACQUIRED). Exceptions raised by `fn`
    propagate after the lock has been released.
    """
    try:
        with held_lock(
            key, session_factory=session_factory, timeout=timeout, retries=retries, retry_delay=retry_delay
        ):
            return ActionResult.ok(fn())
    except LockNotAcquiredError as e:
        return ActionResult.fail(e.message, e.code)
