"""
Unit Tests for the Review LangGraph Workflow

triage_agent → review_agent → transition_agent → notify_agent, against an
in-memory database.
"""
import pytest

from agents.notify_agent import notify_agent
from orchestrator.graph import build_graph
from orchestrator.router import route_after_review, route_after_transition, route_after_triage
from stability.circuit_breaker import CircuitBreakerRegistry
from state_machine.request_states import RequestState
from state_machine.transition_service import get_audit_history


class RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.sent = []
        self.attempts = []
        self.fail = fail

    def __call__(self, request_id: str, trigger: str) -> None:
        self.attempts.append(request_id)
        if self.fail:
            raise ConnectionError("smtp unavailable")
        self.sent.append((request_id, trigger))


def _intake(**overrides) -> dict:
    state = {
        "request_id": "req-1",
        "request_type": "med_cert",
        "patient_id": "patient-1",
        "free_text_symptoms": "I have a mild cold and need time off work",
    }
    state.update(overrides)
    return state


def _review(**overrides) -> dict:
    return _intake(**{"clinician_id": "dr-1", "clinician_decision": "approved", **overrides})


class TestRouters:
    """Tests for the conditional edge functions."""

    def test_route_after_triage(self):
        assert route_after_triage({"processing_status": "triaged"}) == "__end__"
        assert route_after_triage({"processing_status": "triaged", "clinician_decision": "approved"}) == "review_agent"
        assert route_after_triage({"processing_status": "triage_failed", "clinician_decision": "approved"}) == "__end__"

    def test_route_after_review(self):
        assert route_after_review({"target_state": "approved"}) == "transition_agent"
        assert route_after_review({"processing_status": "review_failed", "target_state": None}) == "__end__"

    def test_route_after_transition(self):
        assert route_after_transition({"transition_success": True, "email_triggered": "request_approved"}) == "notify_agent"
        assert route_after_transition({"transition_success": True, "email_triggered": None}) == "__end__"
        assert route_after_transition({"transition_success": False, "email_triggered": "x"}) == "__end__"


class TestTriageOnly:
    """Runs without a clinician decision stop after triage."""

    def test_triage_without_request_row(self, session_factory):
        final = build_graph(session_factory=session_factory).compile().invoke(_intake())
        assert final["processing_status"] == "triaged"
        assert final["suggested_outcome"] == "approved"
        assert final["triage_persisted"] is False
        assert "transition_success" not in final

    def test_triage_result_is_stored(self, session_factory, seed_request, load_request):
        seed_request("req-1", RequestState.AWAITING_REVIEW)
        final = build_graph(session_factory=session_factory).compile().invoke(
            _intake(free_text_symptoms="I have severe chest pain")
        )
        assert final["suggested_outcome"] == "declined"
        assert final["triage_persisted"] is True
        stored = load_request("req-1").triage_result
        assert stored["suggested_outcome"] == "declined"
        assert stored["is_auto_rejected"] is True

    def test_unknown_request_type_fails_triage(self, session_factory):
        final = build_graph(session_factory=session_factory).compile().invoke(
            _review(request_type="dental")
        )
        assert final["processing_status"] == "triage_failed"
        assert "transition_success" not in final


class TestReviewFlow:
    """Full runs with a clinician decision."""

    def test_approval_from_queue(self, session_factory, seed_request, load_request):
        seed_request("req-1", RequestState.AWAITING_REVIEW)
        notifier = RecordingNotifier()
        final = build_graph(session_factory=session_factory, notifier=notifier).compile().invoke(_review())

        assert final["processing_status"] == "transitioned"
        assert final["final_outcome"] == "approved"
        assert final["new_state"] == "approved"
        assert final["email_triggered"] == "request_approved"
        assert final["decision_warnings"] == []
        assert final["notification_sent"] is True
        assert notifier.sent == [("req-1", "request_approved")]

        row = load_request("req-1")
        assert row.reviewed_by == "dr-1"
        actions = [e.action for e in get_audit_history("req-1", session_factory=session_factory)]
        assert actions == ["DOCTOR_OPENS", "DOCTOR_APPROVES"]

    def test_unsure_clinician_requests_info(self, session_factory, seed_request):
        seed_request("req-1", RequestState.IN_REVIEW)
        final = build_graph(session_factory=session_factory).compile().invoke(
            _review(clinician_is_unsure=True)
        )
        assert final["final_outcome"] == "needs_call"
        assert final["new_state"] == "needs_info"
        assert final["email_triggered"] == "needs_more_info"
        assert final["notification_sent"] is False  # no notifier configured

        [entry] = get_audit_history("req-1", session_factory=session_factory)
        assert entry.metadata["platform_action"] == "request_more_information"
        assert entry.metadata["final_outcome"] == "needs_call"

    def test_override_warnings_are_audited(self, session_factory, seed_request):
        seed_request("req-1", RequestState.IN_REVIEW)
        final = build_graph(session_factory=session_factory).compile().invoke(
            _review(free_text_symptoms="I have severe chest pain")
        )
        assert final["new_state"] == "approved"
        assert final["decision_warnings"]

        [entry] = get_audit_history("req-1", session_factory=session_factory)
        assert entry.metadata["decision_warnings"] == final["decision_warnings"]
        assert entry.metadata["suggested_outcome"] == "declined"

    def test_invalid_decision_stops_before_transition(self, session_factory, seed_request, load_request):
        seed_request("req-1", RequestState.IN_REVIEW)
        final = build_graph(session_factory=session_factory).compile().invoke(
            _review(clinician_decision="maybe")
        )
        assert final["processing_status"] == "review_failed"
        assert "transition_success" not in final
        assert load_request("req-1").state == "in_review"

    def test_request_not_in_review(self, session_factory, seed_request):
        seed_request("req-1", RequestState.DRAFT)
        final = build_graph(session_factory=session_factory).compile().invoke(_review())
        assert final["processing_status"] == "transition_failed"
        assert final["transition_code"] == "STALE_STATE"

    def test_notifier_failure_keeps_transition(self, session_factory, seed_request, load_request):
        seed_request("req-1", RequestState.IN_REVIEW)
        final = build_graph(
            session_factory=session_factory, notifier=RecordingNotifier(fail=True)
        ).compile().invoke(_review(clinician_decision="declined"))
        assert final["transition_success"] is True
        assert final["notification_sent"] is False
        assert load_request("req-1").state == "declined"

    def test_open_email_breaker_skips_notifier(self, session_factory, seed_request):
        seed_request("req-1", RequestState.IN_REVIEW)
        breakers = CircuitBreakerRegistry.default()
        email = breakers.get("email_provider")
        for _ in range(email.config.failure_threshold):
            with pytest.raises(ConnectionError):
                email.execute(RecordingNotifier(fail=True), "other", "request_received")

        notifier = RecordingNotifier()
        final = build_graph(
            session_factory=session_factory, notifier=notifier, breakers=breakers
        ).compile().invoke(_review())
        assert final["transition_success"] is True
        assert final["notification_sent"] is False
        assert notifier.sent == []

    def test_email_breaker_persists_across_invocations(self, session_factory, seed_request):
        notifier = RecordingNotifier(fail=True)
        workflow = build_graph(session_factory=session_factory, notifier=notifier).compile()

        for n in range(6):
            seed_request(f"req-{n}", RequestState.IN_REVIEW)
            final = workflow.invoke(_review(request_id=f"req-{n}"))
            assert final["transition_success"] is True
            assert final["notification_sent"] is False
        assert notifier.attempts == [f"req-{n}" for n in range(5)]


class TestNotifyAgent:
    """Tests for the notify node called directly."""

    def test_no_registry_skips_dispatch(self):
        notifier = RecordingNotifier()
        final = notify_agent(
            {"request_id": "req-1", "email_triggered": "request_approved"}, notifier=notifier
        )
        assert final["notification_sent"] is False
        assert notifier.sent == []

    def test_dispatch_through_registry(self):
        notifier = RecordingNotifier()
        final = notify_agent(
            {"request_id": "req-1", "email_triggered": "request_approved"},
            notifier=notifier,
            breakers=CircuitBreakerRegistry.default(),
        )
        assert final["notification_sent"] is True
        assert notifier.sent == [("req-1", "request_approved")]
