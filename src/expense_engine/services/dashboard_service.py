"""Per-user dashboard counters."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from expense_engine.models import APPROVER_ROLES, ApprovalStep, Expense, User, UserRole
from expense_engine.services.state_machine import ExpenseStatus, StepStatus


@dataclass
class DashboardStats:
    total_expenses: int = 0
    pending_expenses: int = 0
    approved_expenses: int = 0
    rejected_expenses: int = 0
    pending_approvals: int = 0
    team_members: int = 0


async def get_dashboard_stats(session: AsyncSession, actor: User) -> DashboardStats:
    """Own expense counts by status; approvers also get their pending
    approvals and admins the company head count."""
    stats = DashboardStats()

    result = await session.execute(
        select(Expense.status, func.count())
        .where(Expense.employee_id == actor.id, Expense.company_id == actor.company_id)
        .group_by(Expense.status)
    )
    for status, count in result.all():
        stats.total_expenses += count
        if status == ExpenseStatus.PENDING.value:
            stats.pending_expenses = count
        elif status == ExpenseStatus.APPROVED.value:
            stats.approved_expenses = count
        elif status == ExpenseStatus.REJECTED.value:
            stats.rejected_expenses = count

    if actor.role in APPROVER_ROLES:
        stats.pending_approvals = (
            await session.scalar(
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
            or 0
        )

    if actor.role == UserRole.ADMIN.value:
        stats.team_members = (
            await session.scalar(
                select(func.count()).select_from(User).where(User.company_id == actor.company_id)
            )
            or 0
        )

    return stats
