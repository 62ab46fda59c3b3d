"""Optimistic concurrency: conditional UPDATE on a version counter."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Type

from sqlalchemy import inspect, update
from sqlalchemy.orm import Session

from db.database import Base

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OptimisticResult:
    success: bool
    conflict: bool
    new_version: Optional[int] = None


def optimistic_update(
    session: Session,
    model: Type[Base],
    row_id: Any,
    expected_version: int,
    updates: Dict[str, Any],
) -> OptimisticResult:
    """
    Apply `updates` to the row only if its version is still `expected_version`,
    bumping the version by one. Zero matching rows is reported as a conflict,
    not raised; the caller decides whether to re-read and retry.

    Runs inside the caller's transaction; committing is the caller's job.
    """
    if "version" in updates:
        raise ValueError("optimistic_update manages the version column itself")

    mapper = inspect(model)
    pk = getattr(model, mapper.get_property_by_column(mapper.primary_key[0]).key)
    new_version = expected_version + 1
    stmt = (
        update(model)
        .where(pk == row_id, model.version == expected_version)
        .values(**updates, version=new_version)
        .execution_options(synchronize_session="evaluate")
    )
    matched = session.execute(stmt).rowcount

    if not matched:
        logger.info("optimistic update conflict on %s id=%s (expected version %d)",
                    model.__tablename__, row_id, expected_version)
        return OptimisticResult(success=False, conflict=True)
    return OptimisticResult(success=True, conflict=False, new_version=new_version)
