"""Conditional approval evaluator.

Decides, from an expense's approval steps and the company's approval rules,
whether the expense should be approved now. Rules are combined with OR
semantics in ascending sequence order: the first satisfied rule wins and
names the reason. When no rule is satisfied, an expense whose steps are all
approved is still approved, so the evaluator only ever adds acceptance
paths. Rejections never reach this module; they terminate the expense
upstream.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from expense_engine.errors import DivisionSafetyError
from expense_engine.services.rule_types import (
    HUNDRED,
    HybridRule,
    PercentageRule,
    RuleDefinition,
    SequentialRule,
    SpecificRule,
)
from expense_engine.services.state_machine import StepStatus

if TYPE_CHECKING:
    from expense_engine.models import ApprovalStep

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepOutcome:
    """Snapshot of one approval step as seen by the evaluator."""

    approver_id: UUID
    sequence: int
    status: str

    @property
    def is_approved(self) -> bool:
        return self.status == StepStatus.APPROVED.value

    @classmethod
    def from_model(cls, step: ApprovalStep) -> StepOutcome:
        return cls(approver_id=step.approver_id, sequence=step.sequence, status=step.status)


@dataclass(frozen=True)
class EvaluationResult:
    """Outcome of a conditional approval evaluation."""

    approved: bool
    reason: str
    matched_rule: RuleDefinition | None = None

    def __bool__(self) -> bool:
        return self.approved


def approval_percentage(steps: Sequence[StepOutcome]) -> Decimal:
    """Share of approved steps, 0-100.

    Raises DivisionSafetyError when there are no steps.
    """
    total = len(steps)
    if total == 0:
        raise DivisionSafetyError("Cannot compute approval percentage without approval steps")
    approved = sum(1 for step in steps if step.is_approved)
    return Decimal(approved) * HUNDRED / Decimal(total)


def all_steps_approved(steps: Sequence[StepOutcome]) -> bool:
    """Unanimous consent across the generated steps."""
    return all(step.is_approved for step in steps)


def specific_approver_approved(steps: Sequence[StepOutcome], approver_id: UUID | None) -> bool:
    """Whether the given approver holds an approved step."""
    if approver_id is None:
        return False
    return any(step.approver_id == approver_id and step.is_approved for step in steps)


def percentage_satisfied(steps: Sequence[StepOutcome], threshold: Decimal | None) -> bool:
    """Whether the approved share reaches the threshold.

    An expense without steps never satisfies a percentage condition.
    """
    if threshold is None:
        return False
    try:
        return approval_percentage(steps) >= threshold
    except DivisionSafetyError:
        return False


class ConditionalApprovalEvaluator:
    """Evaluates approval rules against an expense's approval steps."""

    def applicable_rules(
        self, rules: Iterable[RuleDefinition], amount: Decimal
    ) -> list[RuleDefinition]:
        """Active rules whose threshold admits the amount, by sequence."""
        applicable = [r for r in rules if r.is_active and r.applies_to(amount)]
        # sorted() is stable, so equal sequences keep repository order.
        return sorted(applicable, key=lambda r: r.sequence if r.sequence is not None else 0)

    def is_rule_satisfied(self, rule: RuleDefinition, steps: Sequence[StepOutcome]) -> bool:
        """Check a single rule against the step outcomes."""
        if isinstance(rule, PercentageRule):
            return percentage_satisfied(steps, rule.approval_percentage)
        if isinstance(rule, SpecificRule):
            return specific_approver_approved(steps, rule.specific_approver_id)
        if isinstance(rule, HybridRule):
            return percentage_satisfied(
                steps, rule.approval_percentage
            ) or specific_approver_approved(steps, rule.specific_approver_id)
        if isinstance(rule, SequentialRule):
            return all_steps_approved(steps)
        raise TypeError(f"Unsupported rule definition: {type(rule).__name__}")

    def evaluate(
        self,
        steps: Sequence[StepOutcome],
        rules: Iterable[RuleDefinition],
        amount: Decimal,
    ) -> EvaluationResult:
        """Decide whether the expense should be approved now.

        Args:
            steps: The expense's generated approval steps
            rules: The company's rules; filtered here by activity and threshold
            amount: The expense amount used for threshold applicability

        Returns:
            EvaluationResult; ``approved`` is the auto-approve decision
        """
        applicable = self.applicable_rules(rules, amount)

        if not applicable:
            if all_steps_approved(steps):
                return EvaluationResult(True, "All approval steps approved")
            return EvaluationResult(False, "Waiting for all approval steps")

        for rule in applicable:
            if self.is_rule_satisfied(rule, steps):
                logger.debug("Approval rule %r (%s) satisfied", rule.name, rule.rule_type.value)
                return EvaluationResult(
                    True,
                    f"{rule.rule_type.value.capitalize()} rule '{rule.name}' satisfied",
                    matched_rule=rule,
                )

        if all_steps_approved(steps):
            return EvaluationResult(True, "All approval steps approved")

        return EvaluationResult(False, "Approval rule conditions not yet satisfied")
