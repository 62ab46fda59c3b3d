"""
Error taxonomy and the ActionResult envelope.

InvariantError               – a logic bug; an impossible state was reached.
PrescribingBoundaryViolation – an action outside the platform's permitted set.
CircuitOpenError             – dependency currently unavailable; retryable.
LockNotAcquiredError         – another caller holds the entity lock.
ActionTimeoutError           – a bounded wait expired.

ActionResult is what callers at the service boundary receive: either
ok(data) or fail(error, code). Raw exceptions never cross that boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")

GENERIC_USER_MESSAGE = "Something went wrong. Please try again."


class TriageCoreError(Exception):
    """Base exception for the request-lifecycle core."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class InvariantError(TriageCoreError):
    """Raised when an impossible state is reached. Never handled, only surfaced."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="INVARIANT_VIOLATION", details=details)


class PrescribingBoundaryViolation(TriageCoreError):
    """An attempted action is outside the platform's permitted action set."""

    def __init__(self, action: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"Action {action!r} is outside the platform's permitted actions",
            code="PRESCRIBING_BOUNDARY",
            details={"action": action, **(details or {})},
        )
        self.action = action


class CircuitOpenError(TriageCoreError):
    """The breaker for a dependency is open; the call was not attempted."""

    def __init__(self, name: str, retry_after_seconds: float = 0.0):
        super().__init__(
            message=f"Service {name} is temporarily unavailable",
            code="CIRCUIT_OPEN",
            details={"breaker": name, "retry_after_seconds": round(retry_after_seconds, 3)},
        )
        self.name = name
        self.retry_after_seconds = retry_after_seconds


class LockNotAcquiredError(TriageCoreError):
    def __init__(self, key: str):
        super().__init__(
            message=f"Could not acquire lock for {key}; another operation is in progress",
            code="LOCK_NOT_ACQUIRED",
            details={"key": key},
        )
        self.key = key


class ActionTimeoutError(TriageCoreError):
    def __init__(self, timeout_seconds: float):
        super().__init__(
            message=f"Operation timed out after {timeout_seconds}s",
            code="TIMEOUT",
            details={"timeout_seconds": timeout_seconds},
        )
        self.timeout_seconds = timeout_seconds


# ---------------------------------------------------------------------------
# ActionResult
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActionResult(Generic[T]):
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    code: Optional[str] = None

    @classmethod
    def ok(cls, data: Optional[T] = None) -> "ActionResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, code: str = "INTERNAL_ERROR") -> "ActionResult[T]":
        return cls(success=False, error=error, code=code)

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        return {"success": False, "error": self.error, "code": self.code}
