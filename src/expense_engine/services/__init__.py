"""Expense engine services."""

from expense_engine.services.state_machine import (
    ApprovalAction,
    ApprovalStateMachine,
    ExpenseStatus,
    StepStatus,
)
from expense_engine.services.evaluator import ConditionalApprovalEvaluator, EvaluationResult, StepOutcome
from expense_engine.services.rule_repository import RuleRepository
from expense_engine.services.step_generator import ApprovalStepGenerator
from expense_engine.services.approval_service import ApprovalService
from expense_engine.services.expense_service import ExpenseService
from expense_engine.services.user_service import UserService

__all__ = [
    "ApprovalAction",
    "ApprovalStateMachine",
    "ExpenseStatus",
    "StepStatus",
    "ConditionalApprovalEvaluator",
    "EvaluationResult",
    "StepOutcome",
    "RuleRepository",
    "ApprovalStepGenerator",
    "ApprovalService",
    "ExpenseService",
    "UserService",
]
