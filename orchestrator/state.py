"""Review state for the triage LangGraph workflow."""

from typing import Optional, TypedDict

from clinical.triage_types import TriageResult


class ReviewState(TypedDict, total=False):
    """State passed between agents in the review graph."""

    request_id: str
    request_type: str  # med_cert | repeat_rx | general_consult | referral
    patient_id: Optional[str]
    free_text_symptoms: str
    is_first_request: bool
    is_controlled_substance: bool
    is_first_time_high_risk: bool
    is_outside_scope: bool
    has_call_happened: bool
    additional_context: dict  # is_new_diagnosis, is_new_long_term_med, has_symptom_escalation, has_ambiguous_history

    # triage_agent output
    triage: TriageResult
    triage_result: dict       # TriageResult.to_dict()
    suggested_outcome: str    # approved | needs_call | declined
    triage_persisted: bool

    # Clinician input; the graph stops after triage when no decision is supplied
    clinician_id: str
    clinician_decision: str   # approved | needs_call | declined (legacy spellings accepted)
    clinician_is_unsure: bool

    # review_agent output
    decision_warnings: list[str]
    final_outcome: str        # after the final safety rule
    target_state: str         # RequestState value recorded for final_outcome

    # transition_agent output
    transition_success: bool
    transition_error: Optional[str]
    transition_code: Optional[str]
    new_state: Optional[str]
    email_triggered: Optional[str]

    # notify_agent output
    notification_sent: bool

    processing_status: str  # 'triaged' | 'triage_failed' | 'review_failed' | 'transitioned' | 'transition_failed'
