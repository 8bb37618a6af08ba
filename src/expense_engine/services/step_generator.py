"""Approval step generation for newly submitted expenses."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from expense_engine.errors import StateConflictError
from expense_engine.models import ApprovalStep, User
from expense_engine.services.rule_repository import RuleRepository
from expense_engine.services.rule_types import RuleDefinition, SpecificRule
from expense_engine.services.state_machine import StepStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlannedStep:
    """An approval step to be created."""

    approver_id: UUID
    sequence: int


def plan_approval_steps(
    manager_id: UUID | None,
    rule: RuleDefinition | None,
) -> list[PlannedStep]:
    """Build the ordered step list for an expense.

    Without a generating rule the employee's manager (if any) is the only
    approver. With a rule, the order is: manager (when the rule asks for
    one), the specific approver of a SPECIFIC rule, then the rule's listed
    approvers by their stored sequence. An approver appears at most once.
    Sequences are contiguous and start at 1.
    """
    approvers: list[UUID] = []

    def append(approver_id: UUID | None) -> None:
        if approver_id is not None and approver_id not in approvers:
            approvers.append(approver_id)

    if rule is None:
        append(manager_id)
    else:
        if rule.is_manager_approver:
            append(manager_id)
        if isinstance(rule, SpecificRule):
            append(rule.specific_approver_id)
        for listed in rule.ordered_approvers():
            append(listed.approver_id)

    return [PlannedStep(approver_id=a, sequence=i) for i, a in enumerate(approvers, start=1)]


class ApprovalStepGenerator:
    """Creates the approval steps for a submitted expense.

    The first applicable rule (lowest sequence) is the generating rule;
    later rules only take part in evaluation.
    """

    def __init__(self, session: AsyncSession, rules: RuleRepository | None = None):
        self.session = session
        self.rules = rules or RuleRepository(session)

    async def generate(
        self,
        expense_id: UUID,
        amount: Decimal,
        employee_id: UUID,
        company_id: UUID,
    ) -> int:
        """Create steps for the expense and return its first step sequence.

        Returns 0 when no approval step was created.
        """
        existing = await self.session.scalar(
            select(func.count()).select_from(ApprovalStep).where(
                ApprovalStep.expense_id == expense_id
            )
        )
        if existing:
            raise StateConflictError(
                "Approval steps have already been generated for this expense",
                expense_id=str(expense_id),
            )

        employee = await self.session.get(User, employee_id)
        if employee is None:
            logger.warning(
                "Employee %s not found; expense %s gets no approval steps",
                employee_id,
                expense_id,
            )
            return 0

        applicable = await self.rules.list_applicable_rules(company_id, amount)
        generating_rule = applicable[0] if applicable else None

        planned = plan_approval_steps(employee.manager_id, generating_rule)
        for step in planned:
            self.session.add(
                ApprovalStep(
                    expense_id=expense_id,
                    approver_id=step.approver_id,
                    sequence=step.sequence,
                    status=StepStatus.PENDING.value,
                )
            )
        await self.session.flush()

        logger.info(
            "Generated %d approval step(s) for expense %s (rule: %s)",
            len(planned),
            expense_id,
            generating_rule.name if generating_rule else "default manager approval",
        )
        return planned[0].sequence if planned else 0
