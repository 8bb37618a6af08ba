"""Tests for the conditional approval evaluator."""

from decimal import Decimal
from uuid import uuid4

import pytest

from expense_engine.errors import DivisionSafetyError
from expense_engine.services.evaluator import (
    ConditionalApprovalEvaluator,
    StepOutcome,
    approval_percentage,
    percentage_satisfied,
)
from expense_engine.services.rule_types import (
    HybridRule,
    PercentageRule,
    SequentialRule,
    SpecificRule,
)

APPROVED = "APPROVED"
PENDING = "PENDING"


def make_steps(*statuses: str, approvers=None) -> list[StepOutcome]:
    approvers = approvers or [uuid4() for _ in statuses]
    return [
        StepOutcome(approver_id=approver, sequence=i, status=status)
        for i, (approver, status) in enumerate(zip(approvers, statuses), start=1)
    ]


@pytest.fixture
def evaluator() -> ConditionalApprovalEvaluator:
    return ConditionalApprovalEvaluator()


class TestApprovalPercentage:
    """Test the approved-share helper."""

    def test_share_of_approved_steps(self):
        """Percentage is the approved share of all steps."""
        steps = make_steps(APPROVED, APPROVED, PENDING)
        assert approval_percentage(steps).quantize(Decimal("0.1")) == Decimal("66.7")

    def test_empty_steps_raise(self):
        """No steps means no percentage to compute."""
        with pytest.raises(DivisionSafetyError):
            approval_percentage([])

    def test_empty_steps_never_satisfy(self):
        """An empty step list never meets a threshold, even 0%."""
        assert percentage_satisfied([], Decimal("0")) is False


class TestPercentageRule:
    """PERCENTAGE rule with a 60% threshold over three steps."""

    rule = PercentageRule(name="Majority", approval_percentage=Decimal("60"), sequence=1)

    def test_two_of_three_satisfies(self, evaluator):
        """Two of three approvals meet a 60% rule."""
        steps = make_steps(APPROVED, APPROVED, PENDING)
        result = evaluator.evaluate(steps, [self.rule], Decimal("100"))

        assert result.approved is True
        assert result.matched_rule == self.rule
        assert result.reason == "Percentage rule 'Majority' satisfied"

    def test_one_of_three_does_not_satisfy(self, evaluator):
        """One of three approvals falls short of 60%."""
        steps = make_steps(APPROVED, PENDING, PENDING)
        result = evaluator.evaluate(steps, [self.rule], Decimal("100"))

        assert result.approved is False
        assert result.matched_rule is None

    def test_zero_steps_not_satisfied(self, evaluator):
        """A percentage rule over no steps is not satisfied."""
        assert evaluator.is_rule_satisfied(self.rule, []) is False

    def test_exact_threshold_is_inclusive(self, evaluator):
        """Meeting the threshold exactly counts."""
        rule = PercentageRule(name="Half", approval_percentage=Decimal("50"), sequence=1)
        steps = make_steps(APPROVED, PENDING)
        assert evaluator.is_rule_satisfied(rule, steps) is True


class TestHybridRule:
    """HYBRID: percentage OR specific approver."""

    def test_specific_approver_alone_suffices(self, evaluator):
        """The specific approver satisfies a hybrid rule alone."""
        cfo = uuid4()
        rule = HybridRule(
            name="CFO or 90%",
            approval_percentage=Decimal("90"),
            specific_approver_id=cfo,
            sequence=1,
        )
        steps = make_steps(PENDING, APPROVED, PENDING, approvers=[uuid4(), cfo, uuid4()])

        result = evaluator.evaluate(steps, [rule], Decimal("500"))

        assert result.approved is True
        assert result.reason == "Hybrid rule 'CFO or 90%' satisfied"

    def test_percentage_alone_suffices(self, evaluator):
        """The percentage satisfies a hybrid rule alone."""
        cfo = uuid4()
        rule = HybridRule(
            name="CFO or 60%",
            approval_percentage=Decimal("60"),
            specific_approver_id=cfo,
            sequence=1,
        )
        steps = make_steps(APPROVED, APPROVED, PENDING, approvers=[uuid4(), uuid4(), cfo])

        assert evaluator.evaluate(steps, [rule], Decimal("500")).approved is True

    def test_neither_condition_met(self, evaluator):
        """A hybrid rule fails when neither side holds."""
        cfo = uuid4()
        rule = HybridRule(
            name="CFO or 60%",
            approval_percentage=Decimal("60"),
            specific_approver_id=cfo,
            sequence=1,
        )
        steps = make_steps(APPROVED, PENDING, PENDING, approvers=[uuid4(), uuid4(), cfo])

        assert evaluator.evaluate(steps, [rule], Decimal("500")).approved is False


class TestSpecificAndSequential:
    """SPECIFIC and SEQUENTIAL rules."""

    def test_specific_approver_approved(self, evaluator):
        """A specific rule holds once that approver approves."""
        cfo = uuid4()
        rule = SpecificRule(name="CFO", specific_approver_id=cfo, sequence=1)
        steps = make_steps(PENDING, APPROVED, approvers=[uuid4(), cfo])

        assert evaluator.is_rule_satisfied(rule, steps) is True

    def test_specific_approver_pending(self, evaluator):
        """A specific rule waits for that approver."""
        cfo = uuid4()
        rule = SpecificRule(name="CFO", specific_approver_id=cfo, sequence=1)
        steps = make_steps(APPROVED, PENDING, approvers=[uuid4(), cfo])

        assert evaluator.is_rule_satisfied(rule, steps) is False

    def test_sequential_needs_every_step(self, evaluator):
        """A sequential rule needs every step approved."""
        rule = SequentialRule(name="Everyone", sequence=1)

        assert evaluator.is_rule_satisfied(rule, make_steps(APPROVED, APPROVED)) is True
        assert evaluator.is_rule_satisfied(rule, make_steps(APPROVED, PENDING)) is False


class TestNoApplicableRules:
    """Without applicable rules every step must approve."""

    def test_all_two_steps_approved(self, evaluator):
        """Without rules, all steps approved approves the expense."""
        result = evaluator.evaluate(make_steps(APPROVED, APPROVED), [], Decimal("10"))
        assert result.approved is True

    def test_one_of_two_steps_approved(self, evaluator):
        """Without rules, one pending step blocks approval."""
        result = evaluator.evaluate(make_steps(APPROVED, PENDING), [], Decimal("10"))
        assert result.approved is False

    def test_rules_above_threshold_are_ignored(self, evaluator):
        """Rules only apply from their threshold amount upward."""
        rule = PercentageRule(
            name="Big spend",
            approval_percentage=Decimal("50"),
            threshold_amount=Decimal("1000"),
            sequence=1,
        )
        steps = make_steps(APPROVED, PENDING)

        assert evaluator.evaluate(steps, [rule], Decimal("999.99")).approved is False
        assert evaluator.evaluate(steps, [rule], Decimal("1000")).approved is True

    def test_inactive_rules_are_ignored(self, evaluator):
        """Inactive rules never approve."""
        rule = PercentageRule(
            name="Disabled", approval_percentage=Decimal("0"), sequence=1, is_active=False
        )
        assert evaluator.evaluate(make_steps(PENDING), [rule], Decimal("10")).approved is False


class TestRuleOrdering:
    """First satisfied rule by sequence wins."""

    def test_lowest_sequence_names_the_reason(self, evaluator):
        """The lowest-sequence satisfied rule supplies the reason."""
        cfo = uuid4()
        percentage = PercentageRule(name="Half", approval_percentage=Decimal("50"), sequence=2)
        specific = SpecificRule(name="CFO", specific_approver_id=cfo, sequence=1)
        steps = make_steps(APPROVED, APPROVED, approvers=[cfo, uuid4()])

        result = evaluator.evaluate(steps, [percentage, specific], Decimal("100"))

        assert result.matched_rule == specific
        assert result.reason == "Specific rule 'CFO' satisfied"

    def test_later_rule_can_satisfy(self, evaluator):
        """A later rule approves when earlier ones are not satisfied."""
        specific = SpecificRule(name="CFO", specific_approver_id=uuid4(), sequence=1)
        percentage = PercentageRule(name="Half", approval_percentage=Decimal("50"), sequence=2)
        steps = make_steps(APPROVED, PENDING)

        result = evaluator.evaluate(steps, [specific, percentage], Decimal("100"))

        assert result.approved is True
        assert result.matched_rule == percentage

    def test_fallback_when_all_steps_approved(self, evaluator):
        """All steps approved wins when no rule is satisfied."""
        specific = SpecificRule(name="CFO", specific_approver_id=uuid4(), sequence=1)
        result = evaluator.evaluate(make_steps(APPROVED, APPROVED), [specific], Decimal("100"))

        assert result.approved is True
        assert result.matched_rule is None
        assert result.reason == "All approval steps approved"

    def test_evaluation_is_idempotent(self, evaluator):
        """Evaluating the same state twice gives the same result."""
        rules = [PercentageRule(name="Majority", approval_percentage=Decimal("60"), sequence=1)]
        steps = make_steps(APPROVED, PENDING, PENDING)

        first = evaluator.evaluate(steps, rules, Decimal("100"))
        second = evaluator.evaluate(steps, rules, Decimal("100"))

        assert first == second
        assert bool(first) is False
