"""
Unit Tests for the Database-backed Distributed Lock
"""
from datetime import timedelta

import pytest
from sqlalchemy import select

from db.database import utcnow
from db.models import DistributedLock
from stability.distributed_lock import acquire_lock, held_lock, release_lock, with_lock
from stability.errors import LockNotAcquiredError


class TestAcquireRelease:
    """Tests for acquire_lock / release_lock."""

    def test_second_acquisition_fails(self, session_factory):
        first = acquire_lock("request:1", session_factory=session_factory)
        second = acquire_lock("request:1", session_factory=session_factory, retries=0)
        assert first.acquired and first.lock_id
        assert not second.acquired
        assert second.lock_id is None

    def test_different_keys_do_not_contend(self, session_factory):
        assert acquire_lock("request:1", session_factory=session_factory).acquired
        assert acquire_lock("request:2", session_factory=session_factory).acquired

    def test_release_frees_the_key(self, session_factory):
        lock = acquire_lock("request:1", session_factory=session_factory)
        assert release_lock(lock.lock_id, session_factory=session_factory)
        assert acquire_lock("request:1", session_factory=session_factory, retries=0).acquired

    def test_releasing_unknown_lock_id_keeps_holder(self, session_factory):
        lock = acquire_lock("request:1", session_factory=session_factory)
        assert not release_lock("not-a-lock-id", session_factory=session_factory)
        with session_factory() as session:
            row = session.scalars(select(DistributedLock)).one()
        assert row.lock_id == lock.lock_id

    def test_expired_lock_is_taken_over(self, session_factory):
        with session_factory() as session:
            session.add(DistributedLock(key="request:1", lock_id="stale", expires_at=utcnow() - timedelta(seconds=1)))
            session.commit()
        lock = acquire_lock("request:1", session_factory=session_factory, retries=0)
        assert lock.acquired
        # the crashed holder cannot release the new holder's lock
        assert not release_lock("stale", session_factory=session_factory)

    def test_retries_are_bounded(self, session_factory, monkeypatch):
        sleeps = []
        monkeypatch.setattr("stability.distributed_lock.time.sleep", sleeps.append)
        acquire_lock("request:1", session_factory=session_factory)
        result = acquire_lock("request:1", session_factory=session_factory, retries=3, retry_delay=0.25)
        assert not result.acquired
        assert sleeps == [0.25, 0.25, 0.25]


class TestScopedLock:
    """Tests for held_lock and with_lock."""

    def test_with_lock_returns_value_and_releases(self, session_factory):
        result = with_lock("request:1", lambda: 42, session_factory=session_factory)
        assert result.success and result.data == 42
        assert acquire_lock("request:1", session_factory=session_factory, retries=0).acquired

    def test_with_lock_contention(self, session_factory):
        acquire_lock("request:1", session_factory=session_factory)
        calls = []
        result = with_lock("request:1", lambda: calls.append(1), session_factory=session_factory,
                           retries=0)
        assert not result.success
        assert result.code == "LOCK_NOT_ACQUIRED"
        assert calls == []

    def test_with_lock_releases_on_error(self, session_factory):
        def explode():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            with_lock("request:1", explode, session_factory=session_factory)
        assert acquire_lock("request:1", session_factory=session_factory, retries=0).acquired

    def test_held_lock_raises_when_held(self, session_factory):
        with held_lock("request:1", session_factory=session_factory) as lock:
            assert lock.acquired
            with pytest.raises(LockNotAcquiredError):
                with held_lock("request:1", session_factory=session_factory, retries=0):
                    pass
