"""
Transition Agent: LangGraph node.
Records the clinician outcome through the transition service. A request still
waiting in the queue is opened first (DOCTOR_OPENS); opening and recording
commit together in one transaction, under the request lock.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import sessionmaker

from clinical.triage_types import TriageOutcome
from orchestrator.state import ReviewState
from stability.distributed_lock import with_lock
from stability.errors import GENERIC_USER_MESSAGE
from state_machine.request_states import RequestState
from state_machine.transition_service import (
    ActorType,
    TransitionContext,
    TransitionResult,
    execute_transition_path,
    get_request_state,
)

logger = logging.getLogger(__name__)

_PLATFORM_ACTION_BY_OUTCOME = {
    TriageOutcome.APPROVED.value: "record_clinical_decision",
    TriageOutcome.DECLINED.value: "record_clinical_decision",
    TriageOutcome.NEEDS_CALL.value: "request_more_information",
}


def _record_outcome(state: ReviewState, session_factory: Optional[sessionmaker]) -> TransitionResult:
    request_id = state["request_id"]
    target = RequestState(state["target_state"])
    context = TransitionContext(
        request_id=request_id,
        actor_type=ActorType.DOCTOR,
        actor_id=state.get("clinician_id"),
        metadata={
            "platform_action": _PLATFORM_ACTION_BY_OUTCOME[state["final_outcome"]],
            "final_outcome": state["final_outcome"],
            "suggested_outcome": state.get("suggested_outcome"),
            "decision_warnings": list(state.get("decision_warnings") or []),
        },
    )

    path = [RequestState.IN_REVIEW, target]
    if get_request_state(request_id, session_factory=session_factory) == RequestState.AWAITING_REVIEW:
        path.insert(0, RequestState.AWAITING_REVIEW)

    return execute_transition_path(context, path, session_factory=session_factory, lock=False)


# ---------------------------------------------------------------------------
# LangGraph node
# ---------------------------------------------------------------------------


def transition_agent(state: ReviewState, *, session_factory: Optional[sessionmaker] = None) -> ReviewState:
    """
    LangGraph node: move the request into the state recorded for final_outcome.

    Reads:  request_id, clinician_id, final_outcome, target_state, decision_warnings
    Writes: state['transition_success'], state['transition_error'], state['transition_code']
            state['new_state'], state['email_triggered']
            state['processing_status'] - 'transitioned' | 'transition_failed'
    """
    request_id = state.get("request_id")
    try:
        locked = with_lock(
            f"request:{request_id}",
            lambda: _record_outcome(state, session_factory),
            session_factory=session_factory,
        )
        result = locked.data if locked.success else TransitionResult.fail(locked.error, locked.code)

    except Exception as e:
        logger.exception("transition_agent failed for %s: %s", request_id, e)
        result = TransitionResult.fail(GENERIC_USER_MESSAGE, "INTERNAL_ERROR")

    if result.success:
        logger.info("transition_agent: %s -> %s", request_id, result.new_state.value)
    return {
        **state,
        "transition_success": result.success,
        "transition_error": result.error,
        "transition_code": result.code,
        "new_state": result.new_state.value if result.new_state else None,
        "email_triggered": result.email_triggered,
        "processing_status": "transitioned" if result.success else "transition_failed",
    }
