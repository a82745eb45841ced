"""Payroll period state machine with transition validation."""

from __future__ import annotations

from enum import Enum

from payroll_processing.errors import InvalidTransitionError


class PeriodStatus(str, Enum):
    """Payroll period status values."""

    DRAFT = "draft"
    CALCULATING = "calculating"
    CALCULATED = "calculated"
    APPROVED = "approved"
    CANCELLED = "cancelled"


class PeriodAction(str, Enum):
    """Actions that move a period between statuses."""

    RECALCULATE = "recalculate"
    COMPLETE = "complete"
    APPROVE = "approve"
    CANCEL = "cancel"


class RunStatus(str, Enum):
    """Calculation run status values."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PeriodStateMachine:
    """State machine for payroll period status transitions.

    Allowed transitions:
    - draft → calculating (recalculate)
    - calculated → calculating (recalculate)
    - calculating → calculated (run completes)
    - calculating → draft | calculated (run fails, back to prior status)
    - calculated → approved (approve)
    - draft | calculating | calculated → cancelled (cancel)

    Approved and cancelled are terminal.
    """

    # Define valid transitions: {(from_status, action): to_status}
    VALID_TRANSITIONS: dict[tuple[str, str], str] = {
        (PeriodStatus.DRAFT.value, PeriodAction.RECALCULATE.value): PeriodStatus.CALCULATING.value,
        (PeriodStatus.CALCULATED.value, PeriodAction.RECALCULATE.value): PeriodStatus.CALCULATING.value,
        (PeriodStatus.CALCULATING.value, PeriodAction.COMPLETE.value): PeriodStatus.CALCULATED.value,
        (PeriodStatus.CALCULATED.value, PeriodAction.APPROVE.value): PeriodStatus.APPROVED.value,
        (PeriodStatus.DRAFT.value, PeriodAction.CANCEL.value): PeriodStatus.CANCELLED.value,
        (PeriodStatus.CALCULATING.value, PeriodAction.CANCEL.value): PeriodStatus.CANCELLED.value,
        (PeriodStatus.CALCULATED.value, PeriodAction.CANCEL.value): PeriodStatus.CANCELLED.value,
    }

    # A failed run returns the period to where it was before the run
    FAIL_TARGETS = {PeriodStatus.DRAFT.value, PeriodStatus.CALCULATED.value}

    TERMINAL = {PeriodStatus.APPROVED.value, PeriodStatus.CANCELLED.value}

    # Statuses where period details may still be edited
    EDITABLE = {PeriodStatus.DRAFT.value}

    @classmethod
    def next_status(cls, from_status: str, action: str) -> str | None:
        """Target status for an action, or None if not allowed."""
        return cls.VALID_TRANSITIONS.get((PeriodStatus(from_status).value, PeriodAction(action).value))

    @classmethod
    def can_transition(cls, from_status: str, action: str) -> bool:
        """Check if an action is valid from a status."""
        return cls.next_status(from_status, action) is not None

    @classmethod
    def validate_transition(cls, from_status: str, action: str) -> str:
        """Validate an action, returning the target or raising InvalidTransitionError."""
        target = cls.next_status(from_status, action)
        if target is None:
            reason = "status is terminal" if cls.is_terminal(from_status) else None
            raise InvalidTransitionError(from_status, action, reason)
        return target

    @classmethod
    def failure_target(cls, prior_status: str | None) -> str:
        """Status a period returns to when its run fails."""
        if prior_status in cls.FAIL_TARGETS:
            return prior_status
        return PeriodStatus.DRAFT.value

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return status in cls.TERMINAL

    @classmethod
    def can_edit(cls, status: str) -> bool:
        """Check if period details (name, dates) can be modified."""
        return status in cls.EDITABLE

    @classmethod
    def get_allowed_actions(cls, current_status: str) -> list[str]:
        """Get list of user-facing actions valid from current status."""
        return [
            action
            for (status, action) in cls.VALID_TRANSITIONS
            if status == current_status
            and action != PeriodAction.COMPLETE.value
        ]
