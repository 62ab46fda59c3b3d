"""
Triage Agent: LangGraph node.
Runs the deterministic rules engine over the patient's intake and stores the
result on the request row.

No network calls are made here; the same input always gives the same result.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session, sessionmaker

from clinical.triage_rules import evaluate_triage
from clinical.triage_types import AdditionalContext, TriageInput
from db.models import ServiceRequest
from orchestrator.state import ReviewState
from stability.safe_action import db_transaction

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def build_triage_input(state: ReviewState) -> TriageInput:
    """Assemble a TriageInput from the intake fields of ReviewState."""
    extra = state.get("additional_context")
    return TriageInput(
        request_id=state["request_id"],
        request_type=state.get("request_type") or "med_cert",
        patient_id=state.get("patient_id"),
        free_text_symptoms=state.get("free_text_symptoms"),
        is_first_request=bool(state.get("is_first_request")),
        is_controlled_substance=bool(state.get("is_controlled_substance")),
        is_first_time_high_risk=bool(state.get("is_first_time_high_risk")),
        is_outside_scope=bool(state.get("is_outside_scope")),
        has_call_happened=bool(state.get("has_call_happened")),
        additional_context=AdditionalContext(**extra) if extra else None,
    )


def _store_triage_result(request_id: str, result: dict, session_factory: Optional[sessionmaker]) -> bool:
    def store(session: Session) -> bool:
        row = session.get(ServiceRequest, request_id)
        if row is None:
            return False
        row.triage_result = result
        return True

    outcome = db_transaction(store, session_factory=session_factory)
    if not outcome.success:
        logger.warning("triage_agent: could not store result for %s: %s", request_id, outcome.error)
        return False
    return bool(outcome.data)


# ---------------------------------------------------------------------------
# LangGraph node
# ---------------------------------------------------------------------------


def triage_agent(state: ReviewState, *, session_factory: Optional[sessionmaker] = None) -> ReviewState:
    """
    LangGraph node: evaluate triage rules and persist the result.

    Reads:  request_id, request_type, free_text_symptoms, intake flags
    Writes: state['triage_result']     - TriageResult.to_dict()
            state['suggested_outcome'] - approved | needs_call | declined
            state['processing_status'] - 'triaged' | 'triage_failed'
    """
    try:
        result = evaluate_triage(build_triage_input(state))
        result_dict = result.to_dict()
        persisted = _store_triage_result(state["request_id"], result_dict, session_factory)

        return {
            **state,
            "triage": result,
            "triage_result": result_dict,
            "suggested_outcome": result.suggested_outcome.value,
            "triage_persisted": persisted,
            "processing_status": "triaged",
        }

    except Exception as e:
        logger.exception("triage_agent failed for %s: %s", state.get("request_id"), e)
        return {
            **state,
            "triage_result": {},
            "processing_status": "triage_failed",
        }
