"""
Conditional edge functions for the review LangGraph workflow.
"""

from __future__ import annotations

from orchestrator.state import ReviewState


def route_after_triage(state: ReviewState) -> str:
    """
    Decide the next node after triage_agent.

    - triage failed                    → '__end__'
    - no clinician decision supplied   → '__end__'  (triage-only run)
    - otherwise                        → 'review_agent'
    """
    if state.get("processing_status") == "triage_failed":
        return "__end__"
    if not state.get("clinician_decision"):
        return "__end__"
    return "review_agent"


def route_after_review(state: ReviewState) -> str:
    """A decision that could not be resolved to a target state never reaches the transition."""
    if state.get("processing_status") == "review_failed" or not state.get("target_state"):
        return "__end__"
    return "transition_agent"


def route_after_transition(state: ReviewState) -> str:
    """Notify only for committed transitions that carry an email trigger."""
    if state.get("transition_success") and state.get("email_triggered"):
        return "notify_agent"
    return "__end__"
