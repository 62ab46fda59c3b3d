"""
Clinician decision checks.

The clinician always has final authority: validate_clinician_decision never
blocks, it only returns warnings to be shown and audited. The one exception
is the final safety rule: if the clinician is unsure, the answer is
needs_call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Union

from clinical.triage_types import TriageOutcome, TriageResult, normalize_to_triage_outcome
from state_machine.request_states import RequestState

logger = logging.getLogger(__name__)

OutcomeLike = Union[TriageOutcome, str]


@dataclass(frozen=True)
class DecisionValidation:
    valid: bool
    warnings: List[str] = field(default_factory=list)


def validate_clinician_decision(decision: OutcomeLike, triage_result: TriageResult) -> DecisionValidation:
    outcome = normalize_to_triage_outcome(decision)
    warnings: List[str] = []

    if outcome == TriageOutcome.APPROVED:
        critical = triage_result.context.critical_flag_count
        if critical > 0:
            warnings.append(
                f"Approving despite {critical} critical flag(s). Ensure documented clinical reasoning."
            )
        if triage_result.async_blocked:
            warnings.append(
                "Approving async when system suggests synchronous contact. "
                f"Reason: {triage_result.async_blocked_reason}"
            )
        if triage_result.is_auto_rejected:
            category = triage_result.context.auto_reject_category
            warnings.append(
                f"Overriding auto-reject. Category: {category.value if category else 'unknown'}. "
                "Document clinical justification."
            )

    if warnings:
        logger.info("clinician decision %s on %s: %d warning(s)",
                    outcome.value, triage_result.context.request_id, len(warnings))

    return DecisionValidation(valid=True, warnings=warnings)


def apply_final_safety_rule(outcome: OutcomeLike, clinician_is_unsure: bool) -> TriageOutcome:
    """If unsure, the answer is needs_call. Speed is never a clinical justification."""
    if clinician_is_unsure:
        return TriageOutcome.NEEDS_CALL
    return normalize_to_triage_outcome(outcome)


OUTCOME_TO_STATE = {
    TriageOutcome.APPROVED: RequestState.APPROVED,
    TriageOutcome.DECLINED: RequestState.DECLINED,
    TriageOutcome.NEEDS_CALL: RequestState.NEEDS_INFO,
}


def outcome_to_state(outcome: OutcomeLike) -> RequestState:
    """The in_review exit state that records a clinician outcome."""
    return OUTCOME_TO_STATE[normalize_to_triage_outcome(outcome)]
