"""
Review Agent: LangGraph node.
Checks the clinician's decision against the triage result and applies the
final safety rule. Warnings are recorded, never enforced: the clinician has
final authority.
"""

from __future__ import annotations

import logging

from clinical.decision import apply_final_safety_rule, outcome_to_state, validate_clinician_decision
from clinical.triage_types import normalize_to_triage_outcome
from orchestrator.state import ReviewState

logger = logging.getLogger(__name__)


def review_agent(state: ReviewState) -> ReviewState:
    """
    LangGraph node: validate the clinician decision and resolve the target state.

    Reads:  triage, clinician_decision, clinician_is_unsure
    Writes: state['decision_warnings'] - list of warning strings
            state['final_outcome']     - outcome after the final safety rule
            state['target_state']      - RequestState value to transition into
    """
    try:
        decision = normalize_to_triage_outcome(state["clinician_decision"])
        validation = validate_clinician_decision(decision, state["triage"])
        final = apply_final_safety_rule(decision, bool(state.get("clinician_is_unsure")))

        if final != decision:
            logger.info("review_agent: %s decision %s replaced by %s (clinician unsure)",
                        state.get("request_id"), decision.value, final.value)

        return {
            **state,
            "decision_warnings": validation.warnings,
            "final_outcome": final.value,
            "target_state": outcome_to_state(final).value,
        }

    except Exception as e:
        logger.exception("review_agent failed for %s: %s", state.get("request_id"), e)
        return {
            **state,
            "decision_warnings": [],
            "target_state": None,
            "processing_status": "review_failed",
        }
