"""ORM models for the expense approval engine."""

from expense_engine.models.base import Base, TimestampMixin
from expense_engine.models.company import APPROVER_ROLES, Company, User, UserRole
from expense_engine.models.expense import ApprovalStep, Expense
from expense_engine.models.approval import ApprovalRule, RuleApprover

__all__ = [
    "Base",
    "TimestampMixin",
    "Company",
    "User",
    "UserRole",
    "APPROVER_ROLES",
    "Expense",
    "ApprovalStep",
    "ApprovalRule",
    "RuleApprover",
]
