"""Approval step state machine with action validation."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from expense_engine.errors import (
    AlreadyProcessedError,
    AuthorizationError,
    NotCurrentStepError,
    ValidationError,
)

if TYPE_CHECKING:
    from expense_engine.models import ApprovalStep, Expense


class ExpenseStatus(str, Enum):
    """Expense status values."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class StepStatus(str, Enum):
    """Approval step status values."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ApprovalAction(str, Enum):
    """Actions an approver can take on their step."""

    APPROVE = "approve"
    REJECT = "reject"


class ApprovalStateMachine:
    """State machine for approval steps and their expense.

    Allowed transitions (step and expense alike):
    - PENDING → APPROVED
    - PENDING → REJECTED

    APPROVED and REJECTED are terminal. A rejected step terminates the
    whole expense.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        StepStatus.PENDING.value: [StepStatus.APPROVED.value, StepStatus.REJECTED.value],
        StepStatus.APPROVED.value: [],  # Terminal state
        StepStatus.REJECTED.value: [],  # Terminal state
    }

    TERMINAL = {
        ExpenseStatus.APPROVED.value,
        ExpenseStatus.REJECTED.value,
    }

    ACTION_RESULT = {
        ApprovalAction.APPROVE: StepStatus.APPROVED,
        ApprovalAction.REJECT: StepStatus.REJECTED,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        return to_status in cls.VALID_TRANSITIONS.get(from_status, [])

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        """Check if an expense (or step) status can no longer change."""
        return status in cls.TERMINAL

    @classmethod
    def is_mutable_expense(cls, expense: Expense) -> bool:
        """Only pending expenses may be edited or deleted."""
        return expense.status == ExpenseStatus.PENDING.value

    @classmethod
    def validate_action(
        cls,
        step: ApprovalStep,
        expense: Expense,
        actor_id: UUID,
        action: ApprovalAction,
        comments: str | None,
    ) -> StepStatus:
        """Validate an approve/reject action, returning the step's new status.

        Checks run in a fixed order so a retried request fails with the same
        error the second time: approver, step status, expense status,
        current step, rejection comments.
        """
        action = ApprovalAction(action)
        verb = action.value
        new_status = cls.ACTION_RESULT[action]

        if step.approver_id != actor_id:
            raise AuthorizationError(f"You are not authorized to {verb} this expense")

        if not cls.can_transition(step.status, new_status.value):
            raise AlreadyProcessedError(
                "This approval step has already been processed",
                step_status=step.status,
            )

        if cls.is_terminal(expense.status):
            raise AlreadyProcessedError(
                f"This expense has already been {expense.status.lower()}",
                expense_status=expense.status,
            )

        if step.sequence != expense.current_approval_step:
            raise NotCurrentStepError(
                "This is not the current approval step",
                step_sequence=step.sequence,
                current_step=expense.current_approval_step,
            )

        if action == ApprovalAction.REJECT and not (comments and comments.strip()):
            raise ValidationError("Comments are required when rejecting an expense")

        return new_status
