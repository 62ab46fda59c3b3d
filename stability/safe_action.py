"""
Safe-action boundary.

safe_action() runs an operation with an optional timeout and always returns
an ActionResult. Expected conditions (open circuit, held lock, boundary
violation) keep their own codes and messages; everything else is reported to
the observability sink and replaced with a generic user-safe message.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Dict, Optional, TypeVar

from sqlalchemy.orm import Session, sessionmaker

from db.database import SessionLocal
from stability.errors import (
    GENERIC_USER_MESSAGE,
    ActionResult,
    ActionTimeoutError,
    CircuitOpenError,
    InvariantError,
    LockNotAcquiredError,
    PrescribingBoundaryViolation,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Reporter = Callable[[BaseException, Dict[str, Any]], None]

SAFE_ACTION_TIMEOUT_SECONDS: float = float(os.getenv("SAFE_ACTION_TIMEOUT_SECONDS", "30"))


def log_reporter(exc: BaseException, context: Dict[str, Any]) -> None:
    """Default observability sink: the application log."""
    logger.error("safe_action %s failed: %s", context.get("action", "?"), exc, exc_info=exc)


def with_timeout(fn: Callable[..., T], timeout_seconds: Optional[float], *args: Any, **kwargs: Any) -> T:
    """
    Race `fn` against a timeout. On expiry ActionTimeoutError is raised; the
    worker thread cannot be killed and finishes in the background.
    """
    if timeout_seconds is None:
        return fn(*args, **kwargs)

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="safe-action")
    try:
        future = executor.submit(fn, *args, **kwargs)
        try:
            return future.result(timeout=timeout_seconds)
        except FutureTimeoutError:
            raise ActionTimeoutError(timeout_seconds) from None
    finally:
        executor.shutdown(wait=False)


def safe_action(
    fn: Callable[..., Any],
    *args: Any,
    timeout_seconds: Optional[float] = None,
    action_name: Optional[str] = None,
    report: Reporter = log_reporter,
    **kwargs: Any,
) -> ActionResult:
    """
    Run `fn(*args, **kwargs)` and convert the outcome into an ActionResult.
    A returned ActionResult is passed through unchanged.
    """
    context = {"action": action_name or getattr(fn, "__name__", repr(fn))}
    try:
        value = with_timeout(fn, timeout_seconds, *args, **kwargs)
    except (CircuitOpenError, LockNotAcquiredError) as e:
        logger.warning("safe_action %s: %s", context["action"], e.message)
        return ActionResult.fail(e.message, e.code)
    except PrescribingBoundaryViolation as e:
        report(e, context)
        return ActionResult.fail(e.message, e.code)
    except ActionTimeoutError as e:
        report(e, context)
        return ActionResult.fail("The operation timed out. Please try again.", e.code)
    except InvariantError as e:
        report(e, context)
        return ActionResult.fail(GENERIC_USER_MESSAGE, e.code)
    except Exception as e:
        report(e, context)
        return ActionResult.fail(GENERIC_USER_MESSAGE, "INTERNAL_ERROR")

    if isinstance(value, ActionResult):
        return value
    return ActionResult.ok(value)


def db_transaction(
    fn: Callable[[Session], T],
    *,
    session_factory: Optional[sessionmaker] = None,
    timeout_seconds: Optional[float] = SAFE_ACTION_TIMEOUT_SECONDS,
    report: Reporter = log_reporter,
) -> ActionResult:
    """Run `fn(session)` in one transaction: committed on return, rolled back on error."""
    factory = session_factory or SessionLocal

    def _run() -> T:
        with factory() as session, session.begin():
            return fn(session)

    return safe_action(
        _run,
        timeout_seconds=timeout_seconds,
        action_name=getattr(fn, "__name__", "db_transaction"),
        report=report,
    )
