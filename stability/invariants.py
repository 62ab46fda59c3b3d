"""
Invariant assertions.

invariant() is for conditions that can only fail through a programming error;
the resulting InvariantError is never handled, only logged and surfaced as an
internal error by safe_action. The prescribing boundary is a policy check:
the platform records decisions and issues documents, prescribing itself
always happens in an external system.
"""

from __future__ import annotations

import logging
from typing import Any

from stability.errors import InvariantError, PrescribingBoundaryViolation

logger = logging.getLogger(__name__)

PERMITTED_PLATFORM_ACTIONS: frozenset[str] = frozenset({
    "record_clinical_decision",
    "request_more_information",
    "issue_medical_certificate",
    "issue_referral_letter",
    "indicate_external_prescribing",
    "send_patient_notification",
})


def invariant(condition: Any, message: str, **context: Any) -> None:
    if not condition:
        logger.error("invariant violated: %s %s", message, context)
        raise InvariantError(message, details=context)


def assert_prescribing_boundary(action: str) -> None:
    """Reject any action outside PERMITTED_PLATFORM_ACTIONS."""
    if action not in PERMITTED_PLATFORM_ACTIONS:
        logger.warning("prescribing boundary: rejected action %r", action)
        raise PrescribingBoundaryViolation(action)


def assert_approval_invariants(request: Any) -> None:
    """A request may only leave `approved` for `completed` once paid and reviewed."""
    invariant(request.payment_status == "paid",
              "approved request is not paid", request_id=request.id,
              payment_status=request.payment_status)
    invariant(request.reviewed_by is not None,
              "approved request has no reviewer", request_id=request.id)
    invariant(request.reviewed_at is not None,
              "approved request has no review timestamp", request_id=request.id)
