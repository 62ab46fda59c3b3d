"""
Pytest Configuration and Fixtures

Shared fixtures: an in-memory SQLite database per test, a session factory
bound to it, and a helper for seeding request rows in any lifecycle state.
"""
from datetime import datetime
from typing import Callable, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db.database import init_db
from db.models import ServiceRequest
from state_machine.request_states import STATE_TO_DB_STATUS, STATE_TO_PAYMENT_STATUS, RequestState


@pytest.fixture
def engine():
    """One in-memory database shared by every session of a test."""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def seed_request(session_factory) -> Callable[..., str]:
    """Insert a request row directly, bypassing the transition service."""

    def _seed(
        request_id: str = "req-1",
        state: Optional[RequestState] = RequestState.DRAFT,
        request_type: str = "med_cert",
        **fields,
    ) -> str:
        values = {
            "id": request_id,
            "request_type": request_type,
            "patient_id": "patient-1",
            "version": 1,
        }
        if state is not None:
            values.update(
                state=state.value,
                status=STATE_TO_DB_STATUS[state],
                payment_status=STATE_TO_PAYMENT_STATUS[state],
            )
        values.update(fields)
        with session_factory() as session:
            session.add(ServiceRequest(**values))
            session.commit()
        return request_id

    return _seed


@pytest.fixture
def load_request(session_factory) -> Callable[[str], ServiceRequest]:
    """Read a request row in a fresh session (detached, attributes loaded)."""

    def _load(request_id: str) -> ServiceRequest:
        with session_factory() as session:
            row = session.get(ServiceRequest, request_id)
            session.expunge(row)
            return row

    return _load


@pytest.fixture
def reviewed_at() -> datetime:
    return datetime(2024, 1, 15, 9, 30)
