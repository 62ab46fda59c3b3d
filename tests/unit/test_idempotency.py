"""
Unit Tests for the Idempotent Operation Wrapper
"""
from datetime import timedelta

import pytest

from db.database import utcnow
from db.models import IdempotencyKey
from stability.idempotency import idempotent


class Counter:
    def __init__(self) -> None:
        self.calls = 0

    def __call__(self) -> dict:
        self.calls += 1
        return {"call": self.calls}


class TestIdempotent:
    """Tests for idempotent()."""

    def test_second_call_returns_stored_result(self, session_factory):
        op = Counter()
        first = idempotent("payment:pi_123", op, session_factory=session_factory)
        second = idempotent("payment:pi_123", op, session_factory=session_factory)

        assert first.was_executed and first.result == {"call": 1}
        assert not second.was_executed
        assert second.result == {"call": 1}
        assert op.calls == 1

    def test_distinct_keys_run_separately(self, session_factory):
        op = Counter()
        idempotent("a", op, session_factory=session_factory)
        idempotent("b", op, session_factory=session_factory)
        assert op.calls == 2

    def test_expired_key_runs_again(self, session_factory):
        with session_factory() as session:
            session.add(IdempotencyKey(key="a", result={"call": 0}, expires_at=utcnow() - timedelta(seconds=1)))
            session.commit()

        op = Counter()
        outcome = idempotent("a", op, session_factory=session_factory)
        assert outcome.was_executed
        assert outcome.result == {"call": 1}

        with session_factory() as session:
            record = session.get(IdempotencyKey, "a")
            assert record.result == {"call": 1}
            assert record.expires_at > utcnow()

    def test_ttl_is_applied(self, session_factory):
        idempotent("a", Counter(), ttl_seconds=60, session_factory=session_factory)
        with session_factory() as session:
            expires_at = session.get(IdempotencyKey, "a").expires_at
        assert timedelta(seconds=50) < expires_at - utcnow() <= timedelta(seconds=60)

    def test_failed_operation_is_not_stored(self, session_factory):
        def explode():
            raise RuntimeError("provider error")

        with pytest.raises(RuntimeError):
            idempotent("a", explode, session_factory=session_factory)

        op = Counter()
        assert idempotent("a", op, session_factory=session_factory).was_executed
        assert op.calls == 1
