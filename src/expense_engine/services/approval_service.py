"""Approval service - applies approve/reject actions and evaluates rules."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from expense_engine.errors import AlreadyProcessedError, NotFoundError, StateConflictError
from expense_engine.models import ApprovalStep, Expense, User
from expense_engine.models.base import utcnow
from expense_engine.services.evaluator import (
    ConditionalApprovalEvaluator,
    EvaluationResult,
    StepOutcome,
)
from expense_engine.services.expense_service import ensure_can_view_expense
from expense_engine.services.rule_repository import RuleRepository
from expense_engine.services.state_machine import (
    ApprovalAction,
    ApprovalStateMachine,
    ExpenseStatus,
    StepStatus,
)

logger = logging.getLogger(__name__)


@dataclass
class ApprovalActionResult:
    """Outcome of a single approve/reject action."""

    expense_id: UUID
    expense_status: str
    message: str
    next_approver: str | None = None
    current_step: int | None = None
    total_steps: int | None = None
    approval_reason: str | None = None


@dataclass
class PendingApproval:
    """A step waiting on the actor, with its expense context."""

    step: ApprovalStep
    expense: Expense
    employee: User
    total_steps: int


@dataclass
class ApprovalStats:
    """Approval counters for one approver."""

    pending: int
    approved_this_month: int
    rejected_this_month: int

    @property
    def total_processed_this_month(self) -> int:
        return self.approved_this_month + self.rejected_this_month


class ApprovalService:
    """Service for the approval workflow of submitted expenses.

    Operations:
    - apply_action: approve or reject the current step of an expense
    - evaluate_conditional_approval: run the rule evaluator for an expense
    - list_pending_approvals / get_approval_history / get_approval_stats

    All writes of one action go through the caller's session and are
    committed together. The expense and step updates are guarded by their
    expected prior state, so a concurrent action that already moved the
    expense makes this one fail instead of double-applying.
    """

    def __init__(
        self,
        session: AsyncSession,
        rules: RuleRepository | None = None,
        evaluator: ConditionalApprovalEvaluator | None = None,
    ):
        self.session = session
        self.rules = rules or RuleRepository(session)
        self.evaluator = evaluator or ConditionalApprovalEvaluator()

    async def apply_action(
        self,
        step_id: UUID,
        actor_id: UUID,
        action: ApprovalAction | str,
        comments: str | None = None,
    ) -> ApprovalActionResult:
        """Approve or reject an approval step.

        Raises:
            NotFoundError: step (or its expense) does not exist
            AuthorizationError: actor is not the step's approver
            AlreadyProcessedError: step or expense already decided
            NotCurrentStepError: step is not the expense's current step
            ValidationError: rejection without comments
        """
        action = ApprovalAction(action)

        step = await self._load_step(step_id)
        expense = await self._load_expense(step.expense_id, for_update=True)
        if expense is None:
            raise NotFoundError("Expense not found", expense_id=str(step.expense_id))

        new_status = ApprovalStateMachine.validate_action(
            step, expense, actor_id, action, comments
        )
        steps = await self._load_steps(expense.id)
        now = utcnow()

        await self._write_step(step, new_status, comments, now)

        if new_status == StepStatus.REJECTED:
            await self._write_expense(expense, step.sequence, now, status=ExpenseStatus.REJECTED.value)
            logger.info("Expense %s rejected at step %d by %s", expense.id, step.sequence, actor_id)
            return ApprovalActionResult(
                expense_id=expense.id,
                expense_status=ExpenseStatus.REJECTED.value,
                message="Expense rejected",
            )

        next_step = next((s for s in steps if s.sequence == step.sequence + 1), None)
        if next_step is not None:
            await self._write_expense(
                expense, step.sequence, now, current_approval_step=next_step.sequence
            )
            next_approver = await self.session.get(User, next_step.approver_id)
            logger.info(
                "Expense %s advanced to step %d of %d",
                expense.id,
                next_step.sequence,
                len(steps),
            )
            return ApprovalActionResult(
                expense_id=expense.id,
                expense_status=ExpenseStatus.PENDING.value,
                message="Expense approved. Moved to next approver.",
                next_approver=next_approver.name if next_approver else None,
                current_step=next_step.sequence,
                total_steps=len(steps),
            )

        outcomes = [
            StepOutcome(
                approver_id=s.approver_id,
                sequence=s.sequence,
                status=StepStatus.APPROVED.value if s.id == step.id else s.status,
            )
            for s in steps
        ]
        evaluation = await self.evaluate_expense(expense, outcomes)

        if evaluation.approved:
            await self._write_expense(expense, step.sequence, now, status=ExpenseStatus.APPROVED.value)
            logger.info("Expense %s approved: %s", expense.id, evaluation.reason)
            return ApprovalActionResult(
                expense_id=expense.id,
                expense_status=ExpenseStatus.APPROVED.value,
                message="Expense fully approved!",
                approval_reason=evaluation.reason,
            )

        # Status stays PENDING; the guarded write still serializes the action.
        await self._write_expense(expense, step.sequence, now, status=ExpenseStatus.PENDING.value)
        logger.info("Expense %s awaiting rule conditions: %s", expense.id, evaluation.reason)
        return ApprovalActionResult(
            expense_id=expense.id,
            expense_status=ExpenseStatus.PENDING.value,
            message="Expense approved by you. Waiting for conditional rules.",
            current_step=expense.current_approval_step,
            total_steps=len(steps),
            approval_reason=evaluation.reason,
        )

    async def approve(
        self, step_id: UUID, actor_id: UUID, comments: str | None = None
    ) -> ApprovalActionResult:
        """Approve the current step."""
        return await self.apply_action(step_id, actor_id, ApprovalAction.APPROVE, comments)

    async def reject(
        self, step_id: UUID, actor_id: UUID, comments: str | None
    ) -> ApprovalActionResult:
        """Reject the current step, terminating the expense."""
        return await self.apply_action(step_id, actor_id, ApprovalAction.REJECT, comments)

    async def evaluate_conditional_approval(self, expense_id: UUID, company_id: UUID) -> bool:
        """Whether the expense's current step outcomes satisfy the company's rules.

        Raises NotFoundError if the expense does not exist in the company.
        """
        expense = await self._load_expense(expense_id)
        if expense is None or expense.company_id != company_id:
            raise NotFoundError("Expense not found", expense_id=str(expense_id))

        steps = await self._load_steps(expense.id)
        result = await self.evaluate_expense(expense, [StepOutcome.from_model(s) for s in steps])
        return result.approved

    async def evaluate_expense(
        self, expense: Expense, outcomes: list[StepOutcome]
    ) -> EvaluationResult:
        """Evaluate applicable rules against the given step outcomes."""
        rules = await self.rules.list_applicable_rules(expense.company_id, expense.amount)
        return self.evaluator.evaluate(outcomes, rules, expense.amount)

    async def list_pending_approvals(self, actor: User) -> list[PendingApproval]:
        """Steps the actor can act on right now."""
        result = await self.session.execute(
            select(ApprovalStep, Expense, User)
            .join(Expense, ApprovalStep.expense_id == Expense.id)
            .join(User, Expense.employee_id == User.id)
            .where(
                ApprovalStep.approver_id == actor.id,
                ApprovalStep.status == StepStatus.PENDING.value,
                ApprovalStep.sequence == Expense.current_approval_step,
                Expense.company_id == actor.company_id,
                Expense.status == ExpenseStatus.PENDING.value,
            )
            .order_by(Expense.created_at.desc())
        )
        rows = result.all()
        if not rows:
            return []

        totals = await self._step_totals([expense.id for _, expense, _ in rows])
        return [
            PendingApproval(step=step, expense=expense, employee=employee, total_steps=totals.get(expense.id, 0))
            for step, expense, employee in rows
        ]

    async def get_approval_history(
        self, actor: User, expense_id: UUID
    ) -> tuple[Expense, list[tuple[ApprovalStep, User]]]:
        """An expense with its steps and approvers, subject to visibility rules."""
        expense = await self._load_expense(expense_id)
        if expense is None or expense.company_id != actor.company_id:
            raise NotFoundError("Expense not found", expense_id=str(expense_id))
        await ensure_can_view_expense(self.session, actor, expense, "view approval history for")

        result = await self.session.execute(
            select(ApprovalStep, User)
            .join(User, ApprovalStep.approver_id == User.id)
            .where(ApprovalStep.expense_id == expense_id)
            .order_by(ApprovalStep.sequence.asc())
        )
        return expense, [(step, approver) for step, approver in result.all()]

    async def get_approval_stats(self, actor: User, now: datetime | None = None) -> ApprovalStats:
        """Pending count plus approvals/rejections since the start of the month."""
        now = now or utcnow()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

        pending = await self.session.scalar(
            select(func.count())
            .select_from(ApprovalStep)
            .join(Expense, ApprovalStep.expense_id == Expense.id)
            .where(
                ApprovalStep.approver_id == actor.id,
                ApprovalStep.status == StepStatus.PENDING.value,
                Expense.company_id == actor.company_id,
                Expense.status == ExpenseStatus.PENDING.value,
            )
        )
        decided = await self.session.execute(
            select(ApprovalStep.status, func.count())
            .where(
                ApprovalStep.approver_id == actor.id,
                ApprovalStep.status != StepStatus.PENDING.value,
                ApprovalStep.action_date >= month_start,
            )
            .group_by(ApprovalStep.status)
        )
        counts = {status: count for status, count in decided.all()}
        return ApprovalStats(
            pending=pending or 0,
            approved_this_month=counts.get(StepStatus.APPROVED.value, 0),
            rejected_this_month=counts.get(StepStatus.REJECTED.value, 0),
        )

    async def _load_step(self, step_id: UUID) -> ApprovalStep:
        result = await self.session.execute(
            select(ApprovalStep)
            .where(ApprovalStep.id == step_id)
            .execution_options(populate_existing=True)
        )
        step = result.scalar_one_or_none()
        if step is None:
            raise NotFoundError("Approval step not found", step_id=str(step_id))
        return step

    async def _load_expense(self, expense_id: UUID, for_update: bool = False) -> Expense | None:
        query = (
            select(Expense)
            .where(Expense.id == expense_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def _load_steps(self, expense_id: UUID) -> list[ApprovalStep]:
        result = await self.session.execute(
            select(ApprovalStep)
            .where(ApprovalStep.expense_id == expense_id)
            .order_by(ApprovalStep.sequence.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def _step_totals(self, expense_ids: list[UUID]) -> dict[UUID, int]:
        result = await self.session.execute(
            select(ApprovalStep.expense_id, func.count())
            .where(ApprovalStep.expense_id.in_(expense_ids))
            .group_by(ApprovalStep.expense_id)
        )
        return {expense_id: count for expense_id, count in result.all()}

    async def _write_step(
        self,
        step: ApprovalStep,
        new_status: StepStatus,
        comments: str | None,
        now: datetime,
    ) -> None:
        """Record the decision on a step that is still pending."""
        result = await self.session.execute(
            update(ApprovalStep)
            .where(
                ApprovalStep.id == step.id,
                ApprovalStep.status == StepStatus.PENDING.value,
            )
            .values(
                status=new_status.value,
                comments=comments or None,
                action_date=now,
                updated_at=now,
            )
        )
        if result.rowcount == 0:
            raise AlreadyProcessedError("This approval step has already been processed")

    async def _write_expense(
        self,
        expense: Expense,
        expected_step: int,
        now: datetime,
        **values: Any,
    ) -> None:
        """Update a pending expense whose pointer is still at ``expected_step``."""
        result = await self.session.execute(
            update(Expense)
            .where(
                Expense.id == expense.id,
                Expense.status == ExpenseStatus.PENDING.value,
                Expense.current_approval_step == expected_step,
            )
            .values(updated_at=now, **values)
        )
        if result.rowcount == 0:
            raise StateConflictError(
                "Expense was modified by another action; reload and try again",
                expense_id=str(expense.id),
            )
