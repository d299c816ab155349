"""Liquidation state machine with transition validation."""

from __future__ import annotations

from enum import Enum

from liquidation_tracker.errors import InvalidStateError


class LiquidationStatus(str, Enum):
    """Workflow status values."""

    DRAFT = "draft"
    FOR_INITIAL_REVIEW = "for_initial_review"
    RETURNED_TO_HEI = "returned_to_hei"
    ENDORSED_TO_ACCOUNTING = "endorsed_to_accounting"
    RETURNED_TO_RC = "returned_to_rc"
    ENDORSED_TO_COA = "endorsed_to_coa"


class WorkflowAction(str, Enum):
    """Actions that move a liquidation between statuses."""

    SUBMIT = "submit"
    ENDORSE_TO_ACCOUNTING = "endorse_to_accounting"
    RETURN_TO_HEI = "return_to_hei"
    ENDORSE_TO_COA = "endorse_to_coa"
    RETURN_TO_RC = "return_to_rc"


class ReviewType(str, Enum):
    """Review history entry types."""

    RC_RETURN = "rc_return"
    RC_ENDORSEMENT = "rc_endorsement"
    HEI_RESUBMISSION = "hei_resubmission"
    ACCOUNTANT_RETURN = "accountant_return"
    ACCOUNTANT_ENDORSEMENT = "accountant_endorsement"

    @property
    def label(self) -> str:
        return _REVIEW_LABELS[self]


_REVIEW_LABELS = {
    ReviewType.RC_RETURN: "RC Return",
    ReviewType.RC_ENDORSEMENT: "RC Endorsement",
    ReviewType.HEI_RESUBMISSION: "HEI Resubmission",
    ReviewType.ACCOUNTANT_RETURN: "Accountant Return",
    ReviewType.ACCOUNTANT_ENDORSEMENT: "Accountant Endorsement",
}


class DocumentStatus(str, Enum):
    """Document completeness of a liquidation."""

    NONE = "NONE"
    PARTIAL = "PARTIAL"
    COMPLETE = "COMPLETE"


class LiquidationStateMachine:
    """State machine for liquidation status transitions.

    Allowed transitions:
    - draft → for_initial_review (submit)
    - returned_to_hei → for_initial_review (resubmit)
    - for_initial_review → endorsed_to_accounting | returned_to_hei
    - returned_to_rc → endorsed_to_accounting | returned_to_hei
    - endorsed_to_accounting → endorsed_to_coa | returned_to_rc
    - endorsed_to_coa is terminal
    """

    TRANSITIONS: dict[tuple[LiquidationStatus, WorkflowAction], LiquidationStatus] = {
        (LiquidationStatus.DRAFT, WorkflowAction.SUBMIT): LiquidationStatus.FOR_INITIAL_REVIEW,
        (LiquidationStatus.RETURNED_TO_HEI, WorkflowAction.SUBMIT): LiquidationStatus.FOR_INITIAL_REVIEW,
        (LiquidationStatus.FOR_INITIAL_REVIEW, WorkflowAction.ENDORSE_TO_ACCOUNTING): LiquidationStatus.ENDORSED_TO_ACCOUNTING,
        (LiquidationStatus.RETURNED_TO_RC, WorkflowAction.ENDORSE_TO_ACCOUNTING): LiquidationStatus.ENDORSED_TO_ACCOUNTING,
        (LiquidationStatus.FOR_INITIAL_REVIEW, WorkflowAction.RETURN_TO_HEI): LiquidationStatus.RETURNED_TO_HEI,
        (LiquidationStatus.RETURNED_TO_RC, WorkflowAction.RETURN_TO_HEI): LiquidationStatus.RETURNED_TO_HEI,
        (LiquidationStatus.ENDORSED_TO_ACCOUNTING, WorkflowAction.ENDORSE_TO_COA): LiquidationStatus.ENDORSED_TO_COA,
        (LiquidationStatus.ENDORSED_TO_ACCOUNTING, WorkflowAction.RETURN_TO_RC): LiquidationStatus.RETURNED_TO_RC,
    }

    # Messages used when an action is attempted from the wrong status
    STATE_MESSAGES: dict[WorkflowAction, str] = {
        WorkflowAction.SUBMIT: "This liquidation cannot be submitted in its current status.",
        WorkflowAction.ENDORSE_TO_ACCOUNTING: "This liquidation is not available for Regional Coordinator review.",
        WorkflowAction.RETURN_TO_HEI: "This liquidation is not available for Regional Coordinator review.",
        WorkflowAction.ENDORSE_TO_COA: "This liquidation is not pending Accountant review.",
        WorkflowAction.RETURN_TO_RC: "This liquidation is not pending Accountant review.",
    }

    # Statuses in which the creating HEI may still edit the record
    EDITABLE_BY_HEI = {
        LiquidationStatus.DRAFT,
        LiquidationStatus.RETURNED_TO_HEI,
    }

    TERMINAL = {LiquidationStatus.ENDORSED_TO_COA}

    @classmethod
    def can_apply(cls, status: str, action: WorkflowAction) -> bool:
        """Check if an action is valid from a status."""
        try:
            return (LiquidationStatus(status), action) in cls.TRANSITIONS
        except ValueError:
            return False

    @classmethod
    def next_status(cls, status: str, action: WorkflowAction) -> LiquidationStatus:
        """Resolve the target status, raising InvalidStateError if not allowed."""
        if not cls.can_apply(status, action):
            raise InvalidStateError(cls.STATE_MESSAGES[action], current_status=status, action=action.value)
        return cls.TRANSITIONS[(LiquidationStatus(status), action)]

    @classmethod
    def allowed_actions(cls, status: str) -> list[WorkflowAction]:
        """Get actions valid from the current status."""
        return [action for (from_status, action) in cls.TRANSITIONS if from_status == status]

    @classmethod
    def get_next_statuses(cls, status: str) -> list[LiquidationStatus]:
        """Get statuses reachable in one step."""
        return [to for (from_status, _), to in cls.TRANSITIONS.items() if from_status == status]

    @classmethod
    def is_editable_by_hei(cls, status: str) -> bool:
        return status in cls.EDITABLE_BY_HEI

    @classmethod
    def is_pending_accountant_review(cls, status: str) -> bool:
        return status == LiquidationStatus.ENDORSED_TO_ACCOUNTING

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return status in cls.TERMINAL

    @classmethod
    def is_resubmission(cls, status: str) -> bool:
        """Check if a submit from this status is a resubmission."""
        return status == LiquidationStatus.RETURNED_TO_HEI
