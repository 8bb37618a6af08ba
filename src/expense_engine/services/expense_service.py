"""Expense service - submission, listing and guarded edits."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from expense_engine.config import get_settings
from expense_engine.errors import (
    AuthorizationError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from expense_engine.models import ApprovalStep, Company, Expense, User, UserRole
from expense_engine.services.currency_service import ConversionResult, CurrencyService
from expense_engine.services.state_machine import ApprovalStateMachine, ExpenseStatus
from expense_engine.services.step_generator import ApprovalStepGenerator

logger = logging.getLogger(__name__)


async def ensure_can_view_expense(
    session: AsyncSession, actor: User, expense: Expense, verb: str = "view"
) -> None:
    """Employees see their own expenses, managers their team's, admins all."""
    if actor.role == UserRole.ADMIN.value:
        return
    if expense.employee_id == actor.id:
        return
    if actor.role == UserRole.MANAGER.value:
        employee = await session.get(User, expense.employee_id)
        if employee is not None and employee.manager_id == actor.id:
            return
        raise AuthorizationError(f"You can only {verb} your team's expenses")
    raise AuthorizationError(f"You can only {verb} your own expenses")


@dataclass
class ConvertedExpense:
    """An expense with its amount expressed in the company currency."""

    expense: Expense
    converted_amount: Decimal
    company_currency: str
    conversion_rate: Decimal


class ExpenseService:
    """Service for the expense lifecycle outside of approval actions.

    Operations:
    - submit_expense: create the expense and generate its approval steps
    - get_expense / list_my_expenses / list_company_expenses
    - update_expense / delete_expense: pending expenses only
    """

    def __init__(
        self,
        session: AsyncSession,
        currency_service: CurrencyService | None = None,
        auto_approve_unrouted: bool | None = None,
    ):
        self.session = session
        self.currency_service = currency_service
        if auto_approve_unrouted is None:
            auto_approve_unrouted = get_settings().auto_approve_unrouted_expenses
        self.auto_approve_unrouted = auto_approve_unrouted
        self.step_generator = ApprovalStepGenerator(session)

    async def submit_expense(
        self,
        actor: User,
        amount: Decimal,
        currency: str,
        category: str,
        expense_date: date,
        description: str = "",
    ) -> Expense:
        """Create a pending expense and its approval steps."""
        if amount is None or amount <= 0:
            raise ValidationError("Amount must be greater than 0")
        if not currency or not category or expense_date is None:
            raise ValidationError("Amount, currency, category, and date are required")

        expense = Expense(
            company_id=actor.company_id,
            employee_id=actor.id,
            amount=amount,
            currency=currency.upper(),
            category=category,
            description=description or "",
            expense_date=expense_date,
            status=ExpenseStatus.PENDING.value,
            current_approval_step=0,
        )
        self.session.add(expense)
        await self.session.flush()

        current_step = await self.step_generator.generate(
            expense.id, expense.amount, actor.id, actor.company_id
        )
        expense.current_approval_step = current_step

        if current_step == 0:
            if self.auto_approve_unrouted:
                expense.status = ExpenseStatus.APPROVED.value
                logger.info("Expense %s has no approvers; auto-approved", expense.id)
            else:
                logger.warning("Expense %s has no approvers and stays pending", expense.id)

        await self.session.flush()
        return await self.get_expense_for(expense.id)

    async def get_expense_for(self, expense_id: UUID) -> Expense:
        """Load an expense with its steps; NotFoundError if absent."""
        result = await self.session.execute(
            select(Expense)
            .where(Expense.id == expense_id)
            .options(selectinload(Expense.steps))
            .execution_options(populate_existing=True)
        )
        expense = result.scalar_one_or_none()
        if expense is None:
            raise NotFoundError("Expense not found", expense_id=str(expense_id))
        return expense

    async def get_expense(self, actor: User, expense_id: UUID) -> Expense:
        """Load an expense the actor may see."""
        expense = await self.get_expense_for(expense_id)
        if expense.company_id != actor.company_id:
            raise NotFoundError("Expense not found", expense_id=str(expense_id))
        await ensure_can_view_expense(self.session, actor, expense)
        return expense

    async def list_my_expenses(
        self,
        actor: User,
        status: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[Expense]:
        """The actor's own expenses, newest first."""
        query = self._base_query(actor).where(Expense.employee_id == actor.id)
        query = self._filter_status(query, status)
        if start_date is not None:
            query = query.where(Expense.expense_date >= start_date)
        if end_date is not None:
            query = query.where(Expense.expense_date <= end_date)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_company_expenses(
        self,
        actor: User,
        status: str | None = None,
        employee_id: UUID | None = None,
    ) -> list[Expense]:
        """Team expenses for managers, every expense for admins."""
        query = self._base_query(actor)

        if actor.role == UserRole.MANAGER.value:
            subordinates = await self.session.execute(
                select(User.id).where(
                    User.manager_id == actor.id, User.company_id == actor.company_id
                )
            )
            visible = [row[0] for row in subordinates.all()] + [actor.id]
            query = query.where(Expense.employee_id.in_(visible))
        elif actor.role != UserRole.ADMIN.value:
            raise AuthorizationError("Only managers and admins can list company expenses")

        if employee_id is not None and actor.role == UserRole.ADMIN.value:
            query = query.where(Expense.employee_id == employee_id)
        query = self._filter_status(query, status)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def update_expense(
        self,
        actor: User,
        expense_id: UUID,
        amount: Decimal | None = None,
        currency: str | None = None,
        category: str | None = None,
        description: str | None = None,
        expense_date: date | None = None,
    ) -> Expense:
        """Edit the actor's own pending expense."""
        expense = await self.get_expense_for(expense_id)
        if expense.company_id != actor.company_id:
            raise NotFoundError("Expense not found", expense_id=str(expense_id))
        if expense.employee_id != actor.id:
            raise AuthorizationError("You can only update your own expenses")
        if not ApprovalStateMachine.is_mutable_expense(expense):
            raise StateConflictError("Cannot update expense that is already approved or rejected")

        if amount is not None:
            if amount <= 0:
                raise ValidationError("Amount must be greater than 0")
            expense.amount = amount
        if currency:
            expense.currency = currency.upper()
        if category:
            expense.category = category
        if description is not None:
            expense.description = description
        if expense_date is not None:
            expense.expense_date = expense_date

        await self.session.flush()
        return await self.get_expense_for(expense_id)

    async def delete_expense(self, actor: User, expense_id: UUID) -> None:
        """Delete a pending expense (owner or admin) and its approval steps."""
        expense = await self.get_expense_for(expense_id)
        if expense.company_id != actor.company_id:
            raise NotFoundError("Expense not found", expense_id=str(expense_id))
        if actor.role != UserRole.ADMIN.value and expense.employee_id != actor.id:
            raise AuthorizationError("You can only delete your own expenses")
        if not ApprovalStateMachine.is_mutable_expense(expense):
            raise StateConflictError("Cannot delete expense that is already approved or rejected")

        await self.session.execute(delete(ApprovalStep).where(ApprovalStep.expense_id == expense_id))
        await self.session.execute(delete(Expense).where(Expense.id == expense_id))
        await self.session.flush()
        logger.info("Deleted expense %s", expense_id)

    async def with_conversions(
        self, company_id: UUID, expenses: list[Expense]
    ) -> list[ConvertedExpense]:
        """Express each expense in the company base currency.

        A failed conversion keeps the original amount at rate 1.
        """
        company = await self.session.get(Company, company_id)
        if company is None:
            raise NotFoundError("Company not found", company_id=str(company_id))
        base = company.base_currency

        results: list[ConversionResult | None] = [None] * len(expenses)
        if self.currency_service is not None and expenses:
            results = await self.currency_service.convert_many(
                [(e.amount, e.currency) for e in expenses], base
            )

        converted: list[ConvertedExpense] = []
        for expense, result in zip(expenses, results):
            if result is None:
                converted.append(ConvertedExpense(expense, expense.amount, base, Decimal("1")))
            else:
                converted.append(ConvertedExpense(expense, result.converted, base, result.rate))
        return converted

    def _base_query(self, actor: User):
        return (
            select(Expense)
            .where(Expense.company_id == actor.company_id)
            .options(selectinload(Expense.steps))
            .order_by(Expense.created_at.desc())
        )

    def _filter_status(self, query, status: str | None):
        if status:
            try:
                query = query.where(Expense.status == ExpenseStatus(status.upper()).value)
            except ValueError:
                logger.debug("Ignoring unknown status filter %r", status)
        return query
