"""
Unit Tests for Clinician Decision Checks

The clinician always has final authority: validation only warns. If unsure,
the outcome is needs_call.
"""
import pytest

from clinical.decision import apply_final_safety_rule, outcome_to_state, validate_clinician_decision
from clinical.triage_rules import evaluate_triage
from clinical.triage_types import RequestType, TriageInput, TriageOutcome, normalize_to_triage_outcome
from state_machine.request_states import RequestState


def _triage(text, request_type=RequestType.MED_CERT, **kwargs):
    return evaluate_triage(
        TriageInput(request_id="req-1", request_type=request_type, free_text_symptoms=text, **kwargs)
    )


class TestValidateClinicianDecision:
    """Tests for validate_clinician_decision."""

    def test_clean_approval_has_no_warnings(self):
        result = validate_clinician_decision("approved", _triage("mild cold"))
        assert result.valid
        assert result.warnings == []

    def test_approving_critical_flags_warns(self):
        result = validate_clinician_decision("approved", _triage("worst headache of my life"))
        assert result.valid
        assert any("critical flag" in w for w in result.warnings)
        assert any("synchronous contact" in w for w in result.warnings)

    def test_overriding_auto_reject_warns(self):
        result = validate_clinician_decision(
            TriageOutcome.APPROVED, _triage("repeat script", RequestType.REPEAT_RX, is_outside_scope=True)
        )
        assert result.valid
        assert result.warnings == [
            "Overriding auto-reject. Category: outside_gp_scope. Document clinical justification."
        ]

    def test_declining_never_warns(self):
        result = validate_clinician_decision("declined", _triage("I have severe chest pain"))
        assert result.valid
        assert result.warnings == []

    def test_needs_call_never_warns(self):
        result = validate_clinician_decision("needs_call", _triage("sudden severe headache"))
        assert result.warnings == []

    def test_invalid_decision_raises(self):
        with pytest.raises(ValueError):
            validate_clinician_decision("maybe", _triage("mild cold"))


class TestFinalSafetyRule:
    """Tests for apply_final_safety_rule."""

    @pytest.mark.parametrize("outcome", list(TriageOutcome))
    def test_unsure_always_needs_call(self, outcome):
        assert apply_final_safety_rule(outcome, True) == TriageOutcome.NEEDS_CALL

    @pytest.mark.parametrize("outcome", list(TriageOutcome))
    def test_sure_keeps_outcome(self, outcome):
        assert apply_final_safety_rule(outcome, False) == outcome


class TestOutcomeMapping:
    """Tests for outcome normalisation and outcome_to_state."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("approve", TriageOutcome.APPROVED),
            ("Rejected", TriageOutcome.DECLINED),
            ("requires_consult", TriageOutcome.NEEDS_CALL),
            (" needs_call ", TriageOutcome.NEEDS_CALL),
        ],
    )
    def test_legacy_spellings(self, raw, expected):
        assert normalize_to_triage_outcome(raw) == expected

    def test_outcome_states(self):
        assert outcome_to_state("approved") == RequestState.APPROVED
        assert outcome_to_state("declined") == RequestState.DECLINED
        assert outcome_to_state(TriageOutcome.NEEDS_CALL) == RequestState.NEEDS_INFO
