"""Property-based tests for the approval workflow.

Random rule sets and random approve/reject sequences are driven through
step planning, action validation and rule evaluation, checking that the
workflow invariants hold after every action.
"""

from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace
from uuid import UUID, uuid4

from hypothesis import given, settings, strategies as st
from hypothesis.stateful import RuleBasedStateMachine, initialize, invariant, rule

from expense_engine.errors import ExpenseEngineError
from expense_engine.services.evaluator import ConditionalApprovalEvaluator, StepOutcome
from expense_engine.services.rule_types import (
    HybridRule,
    PercentageRule,
    RuleApproverSpec,
    RuleType,
    SequentialRule,
    SpecificRule,
)
from expense_engine.services.state_machine import (
    ApprovalAction,
    ApprovalStateMachine,
    ExpenseStatus,
    StepStatus,
)
from expense_engine.services.step_generator import plan_approval_steps

# A small fixed pool so that generated rules and managers overlap.
APPROVERS: list[UUID] = [uuid4() for _ in range(6)]

approver_ids = st.sampled_from(APPROVERS)
amounts = st.decimals(min_value=Decimal("0.01"), max_value=Decimal("10000"), places=2)
percentages = st.decimals(min_value=Decimal("0"), max_value=Decimal("100"), places=2)
comments = st.one_of(st.none(), st.just("   "), st.text(min_size=1, max_size=20))


@st.composite
def rule_definitions(draw) -> SequentialRule | PercentageRule | SpecificRule | HybridRule:
    """Any valid rule definition over the approver pool."""
    listed = draw(st.lists(approver_ids, unique=True, max_size=4))
    common = dict(
        name=draw(st.sampled_from(["Finance", "Board", "Team lead"])),
        sequence=draw(st.integers(min_value=1, max_value=5)),
        threshold_amount=draw(st.none() | amounts),
        is_manager_approver=draw(st.booleans()),
        is_active=draw(st.booleans()),
        approvers=tuple(RuleApproverSpec(a, i) for i, a in enumerate(listed, start=1)),
    )
    rule_type = draw(st.sampled_from(list(RuleType)))
    if rule_type == RuleType.PERCENTAGE:
        return PercentageRule(approval_percentage=draw(percentages), **common)
    if rule_type == RuleType.SPECIFIC:
        return SpecificRule(specific_approver_id=draw(approver_ids), **common)
    if rule_type == RuleType.HYBRID:
        return HybridRule(
            approval_percentage=draw(percentages),
            specific_approver_id=draw(approver_ids),
            **common,
        )
    return SequentialRule(**common)


rule_sets = st.lists(rule_definitions(), max_size=4)
managers = st.none() | approver_ids
step_statuses = st.sampled_from([StepStatus.PENDING.value, StepStatus.APPROVED.value])


class SimulatedExpense:
    """An expense and its steps, advanced the way ApprovalService does."""

    def __init__(self, manager_id, rules, amount):
        self.rules = list(rules)
        self.amount = amount
        self.evaluator = ConditionalApprovalEvaluator()
        applicable = self.evaluator.applicable_rules(self.rules, amount)
        planned = plan_approval_steps(manager_id, applicable[0] if applicable else None)
        self.steps = [
            SimpleNamespace(
                approver_id=p.approver_id,
                sequence=p.sequence,
                status=StepStatus.PENDING.value,
            )
            for p in planned
        ]
        self.expense = SimpleNamespace(
            status=ExpenseStatus.PENDING.value,
            current_approval_step=planned[0].sequence if planned else 0,
        )

    def outcomes(self) -> list[StepOutcome]:
        return [StepOutcome.from_model(s) for s in self.steps]

    def snapshot(self):
        return (
            self.expense.status,
            self.expense.current_approval_step,
            tuple(s.status for s in self.steps),
        )

    def current_step(self):
        return next(
            (s for s in self.steps if s.sequence == self.expense.current_approval_step), None
        )

    def act(self, step, actor_id, action, text=None) -> None:
        new_status = ApprovalStateMachine.validate_action(
            step, self.expense, actor_id, action, text
        )
        step.status = new_status.value
        if new_status == StepStatus.REJECTED:
            self.expense.status = ExpenseStatus.REJECTED.value
            return
        next_step = next((s for s in self.steps if s.sequence == step.sequence + 1), None)
        if next_step is not None:
            self.expense.current_approval_step = next_step.sequence
            return
        if self.evaluator.evaluate(self.outcomes(), self.rules, self.amount):
            self.expense.status = ExpenseStatus.APPROVED.value

    def try_act(self, step, actor_id, action, text=None) -> bool:
        """Apply an action; a refused action must leave everything unchanged."""
        before = self.snapshot()
        try:
            self.act(step, actor_id, action, text)
        except ExpenseEngineError:
            assert self.snapshot() == before
            return False
        return True


class TestStepPlanning:
    """Properties of the planned approver list."""

    @given(manager_id=managers, definition=st.none() | rule_definitions())
    @settings(max_examples=200)
    def test_sequences_contiguous_and_approvers_unique(self, manager_id, definition):
        """Sequences run 1..n and nobody approves twice."""
        steps = plan_approval_steps(manager_id, definition)

        assert [s.sequence for s in steps] == list(range(1, len(steps) + 1))
        assert len({s.approver_id for s in steps}) == len(steps)

    @given(manager_id=approver_ids, definition=st.none() | rule_definitions())
    @settings(max_examples=100)
    def test_manager_goes_first_when_asked_for(self, manager_id, definition):
        """The manager leads the chain whenever the rule wants one."""
        steps = plan_approval_steps(manager_id, definition)

        if definition is None or definition.is_manager_approver:
            assert steps[0].approver_id == manager_id
        else:
            expected = {a.approver_id for a in definition.approvers}
            if isinstance(definition, SpecificRule):
                expected.add(definition.specific_approver_id)
            assert {s.approver_id for s in steps} == expected


class TestActionValidation:
    """Only the current step's approver can act."""

    @given(
        statuses=st.lists(step_statuses, min_size=1, max_size=6),
        current=st.integers(min_value=0, max_value=7),
    )
    @settings(max_examples=200)
    def test_at_most_one_actionable_step(self, statuses, current):
        """At most one step accepts an approval, and it is the current one."""
        steps = [
            SimpleNamespace(approver_id=uuid4(), sequence=i, status=status)
            for i, status in enumerate(statuses, start=1)
        ]
        expense = SimpleNamespace(status=ExpenseStatus.PENDING.value, current_approval_step=current)

        actionable = []
        for step in steps:
            try:
                ApprovalStateMachine.validate_action(
                    step, expense, step.approver_id, ApprovalAction.APPROVE, None
                )
            except ExpenseEngineError:
                continue
            actionable.append(step.sequence)

        assert len(actionable) <= 1
        assert all(sequence == current for sequence in actionable)

    @given(
        manager_id=approver_ids,
        rules=rule_sets,
        amount=amounts,
        reject_at=st.integers(min_value=0, max_value=5),
    )
    @settings(max_examples=100)
    def test_rejection_locks_remaining_steps(self, manager_id, rules, amount, reject_at):
        """After a rejection no step can be approved or rejected again."""
        run = SimulatedExpense(manager_id, rules, amount)
        for step in run.steps[:reject_at]:
            assert run.try_act(step, step.approver_id, ApprovalAction.APPROVE)
            if run.expense.status != ExpenseStatus.PENDING.value:
                return

        current = run.current_step()
        if current is None:
            return
        assert run.try_act(current, current.approver_id, ApprovalAction.REJECT, "Not allowed")
        assert run.expense.status == ExpenseStatus.REJECTED.value

        for step in run.steps:
            assert not run.try_act(step, step.approver_id, ApprovalAction.APPROVE)
            assert not run.try_act(step, step.approver_id, ApprovalAction.REJECT, "Again")

    @given(
        manager_id=approver_ids,
        rules=rule_sets,
        amount=amounts,
        actions=st.lists(
            st.tuples(
                st.integers(min_value=0, max_value=5),
                st.booleans(),
                st.sampled_from(list(ApprovalAction)),
                comments,
            ),
            max_size=15,
        ),
    )
    @settings(max_examples=200)
    def test_random_actions_keep_workflow_consistent(self, manager_id, rules, amount, actions):
        """Steps are decided strictly in order whatever gets attempted."""
        run = SimulatedExpense(manager_id, rules, amount)
        approved_so_far = 0

        for index, by_approver, action, text in actions:
            if not run.steps:
                break
            step = run.steps[index % len(run.steps)]
            actor = step.approver_id if by_approver else uuid4()
            run.try_act(step, actor, action, text)

            decided = [s for s in run.steps if s.status != StepStatus.PENDING.value]
            assert all(s.sequence <= run.expense.current_approval_step for s in decided)
            rejected = [s for s in decided if s.status == StepStatus.REJECTED.value]
            assert len(rejected) <= 1
            assert bool(rejected) == (run.expense.status == ExpenseStatus.REJECTED.value)

            approved = len(decided) - len(rejected)
            assert approved >= approved_so_far
            approved_so_far = approved


class TestEvaluation:
    """Properties of the conditional approval evaluator."""

    @given(
        statuses=st.lists(step_statuses, min_size=1, max_size=6),
        rules=rule_sets,
        amount=amounts,
    )
    @settings(max_examples=200)
    def test_deterministic(self, statuses, rules, amount):
        """The same steps and rules always give the same result."""
        evaluator = ConditionalApprovalEvaluator()
        steps = [
            StepOutcome(approver_id=APPROVERS[i % len(APPROVERS)], sequence=i + 1, status=s)
            for i, s in enumerate(statuses)
        ]

        first = evaluator.evaluate(steps, rules, amount)
        second = evaluator.evaluate(steps, rules, amount)
        reordered = list(reversed(rules))

        assert first == second
        assert evaluator.evaluate(steps, reordered, amount).approved == first.approved

    @given(
        statuses=st.lists(step_statuses, min_size=1, max_size=6),
        rules=rule_sets,
        amount=amounts,
        index=st.integers(min_value=0, max_value=5),
    )
    @settings(max_examples=200)
    def test_more_approvals_never_revoke(self, statuses, rules, amount, index):
        """Approving one more step cannot turn an approval into a refusal."""
        evaluator = ConditionalApprovalEvaluator()
        steps = [
            StepOutcome(approver_id=APPROVERS[i % len(APPROVERS)], sequence=i + 1, status=s)
            for i, s in enumerate(statuses)
        ]
        target = index % len(steps)
        more = list(steps)
        more[target] = StepOutcome(
            approver_id=steps[target].approver_id,
            sequence=steps[target].sequence,
            status=StepStatus.APPROVED.value,
        )

        if evaluator.evaluate(steps, rules, amount).approved:
            assert evaluator.evaluate(more, rules, amount).approved

    @given(manager_id=approver_ids, rules=rule_sets, amount=amounts)
    @settings(max_examples=100)
    def test_approving_every_step_approves_expense(self, manager_id, rules, amount):
        """Walking the whole chain always ends in APPROVED."""
        run = SimulatedExpense(manager_id, rules, amount)

        for step in run.steps:
            if run.expense.status != ExpenseStatus.PENDING.value:
                break
            assert run.try_act(step, step.approver_id, ApprovalAction.APPROVE)

        if run.steps:
            assert run.expense.status == ExpenseStatus.APPROVED.value


class ApprovalWorkflowMachine(RuleBasedStateMachine):
    """
    Stateful property test for one expense.

    Random approvers try random actions on random steps; the invariants
    are checked after every action.
    """

    @initialize(manager_id=managers, rules=rule_sets, amount=amounts)
    def submit(self, manager_id, rules, amount):
        """Plan the steps of a fresh expense."""
        self.run = SimulatedExpense(manager_id, rules, amount)

    @rule(index=st.integers(min_value=0, max_value=5), actor=approver_ids)
    def approve_as_anyone(self, index, actor):
        """Someone from the pool approves some step."""
        if self.run.steps:
            step = self.run.steps[index % len(self.run.steps)]
            self.run.try_act(step, actor, ApprovalAction.APPROVE)

    @rule(text=comments)
    def approve_current(self, text):
        """The current approver approves."""
        step = self.run.current_step()
        if step is not None:
            self.run.try_act(step, step.approver_id, ApprovalAction.APPROVE, text)

    @rule(text=comments)
    def reject_current(self, text):
        """The current approver rejects, with or without a reason."""
        step = self.run.current_step()
        if step is None:
            return
        accepted = self.run.try_act(step, step.approver_id, ApprovalAction.REJECT, text)
        if accepted:
            assert text is not None and text.strip()

    @invariant()
    def pointer_within_steps(self):
        """The current step always names one of the steps."""
        if self.run.steps:
            assert 1 <= self.run.expense.current_approval_step <= len(self.run.steps)
        else:
            assert self.run.expense.current_approval_step == 0

    @invariant()
    def later_steps_stay_pending(self):
        """Nothing after the current step has been decided."""
        for step in self.run.steps:
            if step.sequence > self.run.expense.current_approval_step:
                assert step.status == StepStatus.PENDING.value

    @invariant()
    def rejection_terminates(self):
        """A rejected step means a rejected expense and nothing else decided after it."""
        rejected = [s for s in self.run.steps if s.status == StepStatus.REJECTED.value]
        if rejected:
            assert len(rejected) == 1
            assert self.run.expense.status == ExpenseStatus.REJECTED.value
            assert rejected[0].sequence == self.run.expense.current_approval_step

    @invariant()
    def approval_is_justified(self):
        """An approved expense still satisfies its rules when re-evaluated."""
        if self.run.expense.status == ExpenseStatus.APPROVED.value:
            result = self.run.evaluator.evaluate(
                self.run.outcomes(), self.run.rules, self.run.amount
            )
            assert result.approved


ApprovalWorkflowMachine.TestCase.settings = settings(max_examples=50, stateful_step_count=20)
TestApprovalWorkflow = ApprovalWorkflowMachine.TestCase
