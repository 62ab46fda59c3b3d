"""
Request lifecycle state definitions.

Static data only: the nine internal states, the transition table with its
named triggers, and the derived mappings onto the external status / payment
status vocabulary and the outbound email triggers.

Every query function here is total: unknown states or illegal pairs answer
False / None / [] and never raise.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from stability.errors import InvariantError


class RequestState(str, Enum):
    DRAFT = "draft"
    AWAITING_PAYMENT = "awaiting_payment"
    PAID = "paid"
    AWAITING_REVIEW = "awaiting_review"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    DECLINED = "declined"
    NEEDS_INFO = "needs_info"
    COMPLETED = "completed"


StateLike = Union[RequestState, str]


@dataclass(frozen=True)
class StateTransition:
    from_state: RequestState
    to_state: RequestState
    trigger: str


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------

STATE_TRANSITIONS: tuple[StateTransition, ...] = (
    # Patient flow
    StateTransition(RequestState.DRAFT, RequestState.AWAITING_PAYMENT, "SUBMIT_FORM"),
    StateTransition(RequestState.AWAITING_PAYMENT, RequestState.PAID, "PAYMENT_SUCCESS"),
    StateTransition(RequestState.AWAITING_PAYMENT, RequestState.DRAFT, "PAYMENT_FAILED"),
    # System flow
    StateTransition(RequestState.PAID, RequestState.AWAITING_REVIEW, "ENTER_QUEUE"),
    # Doctor flow
    StateTransition(RequestState.AWAITING_REVIEW, RequestState.IN_REVIEW, "DOCTOR_OPENS"),
    StateTransition(RequestState.IN_REVIEW, RequestState.APPROVED, "DOCTOR_APPROVES"),
    StateTransition(RequestState.IN_REVIEW, RequestState.DECLINED, "DOCTOR_DECLINES"),
    StateTransition(RequestState.IN_REVIEW, RequestState.NEEDS_INFO, "DOCTOR_REQUESTS_INFO"),
    StateTransition(RequestState.IN_REVIEW, RequestState.AWAITING_REVIEW, "DOCTOR_RELEASES"),
    # Info follow-up
    StateTransition(RequestState.NEEDS_INFO, RequestState.AWAITING_REVIEW, "PATIENT_RESPONDS"),
    # Completion
    StateTransition(RequestState.APPROVED, RequestState.COMPLETED, "DOCUMENT_SENT"),
    StateTransition(RequestState.DECLINED, RequestState.COMPLETED, "NOTIFICATION_SENT"),
)

_TRIGGER_BY_EDGE: dict[tuple[RequestState, RequestState], str] = {
    (t.from_state, t.to_state): t.trigger for t in STATE_TRANSITIONS
}

if len(_TRIGGER_BY_EDGE) != len(STATE_TRANSITIONS):
    raise InvariantError("Duplicate (from, to) pair in STATE_TRANSITIONS")


# ---------------------------------------------------------------------------
# Derived mappings
# ---------------------------------------------------------------------------

# External status vocabulary: pending | approved | declined | needs_follow_up.
# completed maps back to approved for display compatibility.
STATE_TO_DB_STATUS: dict[RequestState, str] = {
    RequestState.DRAFT: "pending",
    RequestState.AWAITING_PAYMENT: "pending",
    RequestState.PAID: "pending",
    RequestState.AWAITING_REVIEW: "pending",
    RequestState.IN_REVIEW: "pending",
    RequestState.APPROVED: "approved",
    RequestState.DECLINED: "declined",
    RequestState.NEEDS_INFO: "needs_follow_up",
    RequestState.COMPLETED: "approved",
}

STATE_TO_PAYMENT_STATUS: dict[RequestState, str] = {
    RequestState.DRAFT: "pending_payment",
    RequestState.AWAITING_PAYMENT: "pending_payment",
    RequestState.PAID: "paid",
    RequestState.AWAITING_REVIEW: "paid",
    RequestState.IN_REVIEW: "paid",
    RequestState.APPROVED: "paid",
    RequestState.DECLINED: "paid",
    RequestState.NEEDS_INFO: "paid",
    RequestState.COMPLETED: "paid",
}

# The entire outbound contract with the email subsystem.
STATE_EMAIL_TRIGGERS: dict[RequestState, str] = {
    RequestState.AWAITING_REVIEW: "request_received",
    RequestState.PAID: "payment_confirmed",
    RequestState.APPROVED: "request_approved",
    RequestState.DECLINED: "request_declined",
    RequestState.NEEDS_INFO: "needs_more_info",
}

for _mapping_name, _mapping in (
    ("STATE_TO_DB_STATUS", STATE_TO_DB_STATUS),
    ("STATE_TO_PAYMENT_STATUS", STATE_TO_PAYMENT_STATUS),
):
    _missing = [s.value for s in RequestState if s not in _mapping]
    if _missing:
        raise InvariantError(
            f"{_mapping_name} has no entry for state(s): {', '.join(_missing)}",
            details={"mapping": _mapping_name, "missing": _missing},
        )


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def coerce_state(value: StateLike) -> Optional[RequestState]:
    """Coerce a raw value into a RequestState, or None when it is not one."""
    if isinstance(value, RequestState):
        return value
    try:
        return RequestState(value)
    except ValueError:
        return None


def can_transition(from_state: StateLike, to_state: StateLike) -> bool:
    """True iff (from, to) is an edge of the transition table."""
    return get_transition_trigger(from_state, to_state) is not None


def get_transition_trigger(from_state: StateLike, to_state: StateLike) -> Optional[str]:
    src, dst = coerce_state(from_state), coerce_state(to_state)
    if src is None or dst is None:
        return None
    return _TRIGGER_BY_EDGE.get((src, dst))


def get_valid_next_states(from_state: StateLike) -> list[RequestState]:
    src = coerce_state(from_state)
    if src is None:
        return []
    return [t.to_state for t in STATE_TRANSITIONS if t.from_state == src]


def is_terminal_state(state: StateLike) -> bool:
    """A state is terminal when it has no outgoing edges (only completed)."""
    return coerce_state(state) is not None and not get_valid_next_states(state)


def get_email_trigger(state: StateLike) -> Optional[str]:
    src = coerce_state(state)
    if src is None:
        return None
    return STATE_EMAIL_TRIGGERS.get(src)
