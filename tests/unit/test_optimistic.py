"""
Unit Tests for Optimistic Concurrency Updates
"""
import pytest

from db.models import ServiceRequest
from stability.optimistic import optimistic_update


class TestOptimisticUpdate:
    """Tests for optimistic_update()."""

    def test_matching_version_updates_and_bumps(self, session_factory, seed_request, load_request):
        seed_request("req-1")
        with session_factory() as session, session.begin():
            result = optimistic_update(session, ServiceRequest, "req-1", 1, {"status": "approved"})

        assert result.success and not result.conflict
        assert result.new_version == 2
        row = load_request("req-1")
        assert row.status == "approved"
        assert row.version == 2

    def test_stale_version_is_a_conflict(self, session_factory, seed_request, load_request):
        seed_request("req-1", version=3)
        with session_factory() as session, session.begin():
            result = optimistic_update(session, ServiceRequest, "req-1", 2, {"status": "approved"})

        assert not result.success
        assert result.conflict
        assert result.new_version is None
        row = load_request("req-1")
        assert row.status == "pending"
        assert row.version == 3

    def test_missing_row_is_a_conflict(self, session_factory):
        with session_factory() as session:
            result = optimistic_update(session, ServiceRequest, "nope", 1, {"status": "approved"})
        assert result.conflict

    def test_second_writer_with_same_version_loses(self, session_factory, seed_request):
        seed_request("req-1")
        with session_factory() as session, session.begin():
            first = optimistic_update(session, ServiceRequest, "req-1", 1, {"status": "approved"})
        with session_factory() as session, session.begin():
            second = optimistic_update(session, ServiceRequest, "req-1", 1, {"status": "declined"})
        assert first.success
        assert second.conflict

    def test_version_cannot_be_set_directly(self, session_factory):
        with session_factory() as session:
            with pytest.raises(ValueError):
                optimistic_update(session, ServiceRequest, "req-1", 1, {"version": 9})

    def test_caller_owns_the_transaction(self, session_factory, seed_request, load_request):
        seed_request("req-1")
        with session_factory() as session:
            optimistic_update(session, ServiceRequest, "req-1", 1, {"status": "approved"})
            session.rollback()
        assert load_request("req-1").version == 1
