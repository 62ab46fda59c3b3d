"""
Unit Tests for Invariant Assertions and the Prescribing Boundary
"""
from datetime import datetime
from types import SimpleNamespace

import pytest

from stability.errors import InvariantError, PrescribingBoundaryViolation
from stability.invariants import (
    PERMITTED_PLATFORM_ACTIONS,
    assert_approval_invariants,
    assert_prescribing_boundary,
    invariant,
)


def _request(**overrides):
    values = dict(id="req-1", payment_status="paid", reviewed_by="dr-1", reviewed_at=datetime(2024, 1, 15))
    values.update(overrides)
    return SimpleNamespace(**values)


class TestInvariant:
    """Tests for invariant()."""

    def test_true_condition_passes(self):
        invariant(True, "never raised")

    def test_false_condition_raises_with_context(self):
        with pytest.raises(InvariantError) as exc_info:
            invariant(0, "counter went negative", counter=-1)
        assert exc_info.value.code == "INVARIANT_VIOLATION"
        assert exc_info.value.details == {"counter": -1}
        assert exc_info.value.to_dict()["message"] == "counter went negative"


class TestPrescribingBoundary:
    """Tests for assert_prescribing_boundary()."""

    @pytest.mark.parametrize("action", sorted(PERMITTED_PLATFORM_ACTIONS))
    def test_permitted_actions(self, action):
        assert_prescribing_boundary(action)

    @pytest.mark.parametrize("action", ["prescribe_medication", "issue_prescription", ""])
    def test_prescribing_is_rejected(self, action):
        with pytest.raises(PrescribingBoundaryViolation) as exc_info:
            assert_prescribing_boundary(action)
        assert exc_info.value.code == "PRESCRIBING_BOUNDARY"
        assert exc_info.value.action == action


class TestApprovalInvariants:
    """Tests for assert_approval_invariants()."""

    def test_paid_and_reviewed(self):
        assert_approval_invariants(_request())

    @pytest.mark.parametrize(
        "overrides",
        [
            {"payment_status": "pending_payment"},
            {"reviewed_by": None},
            {"reviewed_at": None},
        ],
    )
    def test_violations(self, overrides):
        with pytest.raises(InvariantError):
            assert_approval_invariants(_request(**overrides))
