"""Tests for the liquidation state machine."""

import pytest

from liquidation_tracker.errors import InvalidStateError
from liquidation_tracker.services.state_machine import (
    LiquidationStateMachine,
    LiquidationStatus,
    ReviewType,
    WorkflowAction,
)


class TestLiquidationStateMachine:
    """Test state machine transitions."""

    def test_valid_transitions(self):
        """Every row of the transition table resolves."""
        assert LiquidationStateMachine.next_status("draft", WorkflowAction.SUBMIT) == "for_initial_review"
        assert LiquidationStateMachine.next_status("returned_to_hei", WorkflowAction.SUBMIT) == "for_initial_review"
        assert (
            LiquidationStateMachine.next_status("for_initial_review", WorkflowAction.ENDORSE_TO_ACCOUNTING)
            == "endorsed_to_accounting"
        )
        assert (
            LiquidationStateMachine.next_status("returned_to_rc", WorkflowAction.ENDORSE_TO_ACCOUNTING)
            == "endorsed_to_accounting"
        )
        assert LiquidationStateMachine.next_status("for_initial_review", WorkflowAction.RETURN_TO_HEI) == "returned_to_hei"
        assert LiquidationStateMachine.next_status("returned_to_rc", WorkflowAction.RETURN_TO_HEI) == "returned_to_hei"
        assert (
            LiquidationStateMachine.next_status("endorsed_to_accounting", WorkflowAction.ENDORSE_TO_COA)
            == "endorsed_to_coa"
        )
        assert (
            LiquidationStateMachine.next_status("endorsed_to_accounting", WorkflowAction.RETURN_TO_RC)
            == "returned_to_rc"
        )

    def test_invalid_transitions(self):
        """Pairs outside the table are blocked."""
        assert LiquidationStateMachine.can_apply("draft", WorkflowAction.ENDORSE_TO_COA) is False
        assert LiquidationStateMachine.can_apply("for_initial_review", WorkflowAction.SUBMIT) is False
        assert LiquidationStateMachine.can_apply("endorsed_to_accounting", WorkflowAction.RETURN_TO_HEI) is False
        assert LiquidationStateMachine.can_apply("returned_to_hei", WorkflowAction.ENDORSE_TO_ACCOUNTING) is False
        assert LiquidationStateMachine.can_apply("not_a_status", WorkflowAction.SUBMIT) is False

    def test_terminal_status_allows_nothing(self):
        assert LiquidationStateMachine.is_terminal("endorsed_to_coa") is True
        assert LiquidationStateMachine.allowed_actions("endorsed_to_coa") == []
        for action in WorkflowAction:
            assert LiquidationStateMachine.can_apply("endorsed_to_coa", action) is False

    def test_next_status_raises_with_state_message(self):
        with pytest.raises(InvalidStateError) as exc_info:
            LiquidationStateMachine.next_status("draft", WorkflowAction.RETURN_TO_RC)

        assert exc_info.value.current_status == "draft"
        assert exc_info.value.action == "return_to_rc"
        assert exc_info.value.message == "This liquidation is not pending Accountant review."

    def test_rc_actions_share_message(self):
        with pytest.raises(InvalidStateError) as exc_info:
            LiquidationStateMachine.next_status("draft", WorkflowAction.ENDORSE_TO_ACCOUNTING)
        assert "not available for Regional Coordinator review" in exc_info.value.message

    def test_allowed_actions(self):
        assert set(LiquidationStateMachine.allowed_actions("for_initial_review")) == {
            WorkflowAction.ENDORSE_TO_ACCOUNTING,
            WorkflowAction.RETURN_TO_HEI,
        }
        assert LiquidationStateMachine.allowed_actions("draft") == [WorkflowAction.SUBMIT]

    def test_get_next_statuses(self):
        assert set(LiquidationStateMachine.get_next_statuses("endorsed_to_accounting")) == {
            LiquidationStatus.ENDORSED_TO_COA,
            LiquidationStatus.RETURNED_TO_RC,
        }

    def test_editable_by_hei(self):
        assert LiquidationStateMachine.is_editable_by_hei("draft") is True
        assert LiquidationStateMachine.is_editable_by_hei("returned_to_hei") is True
        assert LiquidationStateMachine.is_editable_by_hei("for_initial_review") is False
        assert LiquidationStateMachine.is_editable_by_hei("endorsed_to_coa") is False

    def test_is_resubmission(self):
        assert LiquidationStateMachine.is_resubmission("returned_to_hei") is True
        assert LiquidationStateMachine.is_resubmission("draft") is False

    def test_pending_accountant_review(self):
        assert LiquidationStateMachine.is_pending_accountant_review("endorsed_to_accounting") is True
        assert LiquidationStateMachine.is_pending_accountant_review("returned_to_rc") is False

    def test_every_status_reachable_from_draft(self):
        seen = {LiquidationStatus.DRAFT}
        frontier = [LiquidationStatus.DRAFT]
        while frontier:
            current = frontier.pop()
            for status in LiquidationStateMachine.get_next_statuses(current):
                if status not in seen:
                    seen.add(status)
                    frontier.append(status)
        assert seen == set(LiquidationStatus)


class TestReviewType:
    def test_labels(self):
        assert ReviewType.RC_ENDORSEMENT.label == "RC Endorsement"
        assert ReviewType.ACCOUNTANT_RETURN.label == "Accountant Return"
        assert all(review_type.label for review_type in ReviewType)
