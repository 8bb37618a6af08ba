"""Tests for expense submission, visibility and edits."""

from datetime import date
from decimal import Decimal

import httpx
import pytest

from expense_engine.errors import (
    AuthorizationError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from expense_engine.models import UserRole
from expense_engine.services.approval_service import ApprovalService
from expense_engine.services.cache import TTLCache
from expense_engine.services.currency_service import CurrencyService
from expense_engine.services.expense_service import ExpenseService


def rates_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path.endswith("/GBP"):
        return httpx.Response(200, json={"base": "GBP", "date": "2024-03-15", "rates": {"USD": 1.25}})
    return httpx.Response(503)


@pytest.fixture
async def currency_service():
    async with httpx.AsyncClient(transport=httpx.MockTransport(rates_handler)) as client:
        yield CurrencyService(client, TTLCache(60), "https://rates.test/latest")


async def submit(service, actor, amount="100.00", currency="USD", category="Meals"):
    return await service.submit_expense(
        actor,
        amount=Decimal(amount),
        currency=currency,
        category=category,
        expense_date=date(2024, 3, 1),
    )


class TestSubmitExpense:
    """Submission and step generation."""

    async def test_submit_routes_to_manager(self, session, employee, manager):
        """A new expense waits on the employee's manager."""
        expense = await submit(ExpenseService(session, auto_approve_unrouted=False), employee)

        assert expense.status == "PENDING"
        assert expense.current_approval_step == 1
        assert [s.approver_id for s in expense.steps] == [manager.id]

    async def test_amount_must_be_positive(self, session, employee):
        """A zero amount is refused."""
        with pytest.raises(ValidationError):
            await submit(ExpenseService(session, auto_approve_unrouted=False), employee, amount="0")

    async def test_unrouted_expense_stays_pending(self, session, make_user):
        """An expense with no approver stays pending at step 0."""
        loner = await make_user()
        expense = await submit(ExpenseService(session, auto_approve_unrouted=False), loner)

        assert expense.status == "PENDING"
        assert expense.current_approval_step == 0
        assert expense.steps == []

    async def test_unrouted_expense_auto_approved_when_enabled(self, session, make_user):
        """Auto-approval applies only when enabled."""
        loner = await make_user()
        expense = await submit(ExpenseService(session, auto_approve_unrouted=True), loner)

        assert expense.status == "APPROVED"


class TestVisibility:
    """Who can see which expenses."""

    @pytest.fixture
    def service(self, session):
        return ExpenseService(session, auto_approve_unrouted=False)

    async def test_manager_sees_direct_reports(self, service, employee, manager):
        """Managers can read their reports' expenses."""
        expense = await submit(service, employee)
        assert (await service.get_expense(manager, expense.id)).id == expense.id

    async def test_other_employee_cannot_see(self, service, make_user, employee):
        """Peers cannot read each other's expenses."""
        expense = await submit(service, employee)
        peer = await make_user()

        with pytest.raises(AuthorizationError):
            await service.get_expense(peer, expense.id)

    async def test_list_company_expenses_scoped_for_manager(
        self, service, make_user, admin, manager, employee
    ):
        """Managers see their team, admins see the company."""
        mine = await submit(service, employee)
        outsider = await make_user(UserRole.EMPLOYEE, manager=admin)
        await submit(service, outsider)

        team = await service.list_company_expenses(manager)
        everything = await service.list_company_expenses(admin)

        assert [e.id for e in team] == [mine.id]
        assert len(everything) == 2

    async def test_list_company_expenses_forbidden_for_employee(self, service, employee):
        """Employees cannot list company expenses."""
        with pytest.raises(AuthorizationError):
            await service.list_company_expenses(employee)

    async def test_list_my_expenses_filters(self, session, service, employee, manager):
        """Own expenses filter by status and date range."""
        first = await submit(service, employee, category="Travel")
        await submit(service, employee, category="Meals")
        await ApprovalService(session).approve(first.steps[0].id, manager.id)

        approved = await service.list_my_expenses(employee, status="approved")
        everything = await service.list_my_expenses(employee, start_date=date(2024, 3, 1))
        none = await service.list_my_expenses(employee, end_date=date(2024, 2, 28))

        assert [e.id for e in approved] == [first.id]
        assert len(everything) == 2
        assert none == []


class TestEditExpense:
    """Pending-only edits."""

    @pytest.fixture
    def service(self, session):
        return ExpenseService(session, auto_approve_unrouted=False)

    async def test_update_pending(self, service, employee):
        """Pending expenses can be edited by their owner."""
        expense = await submit(service, employee)

        updated = await service.update_expense(
            employee, expense.id, amount=Decimal("42.50"), currency="eur", description="Taxi"
        )

        assert updated.amount == Decimal("42.50")
        assert updated.currency == "EUR"
        assert updated.description == "Taxi"

    async def test_update_decided_expense(self, session, service, employee, manager):
        """Decided expenses are read-only."""
        expense = await submit(service, employee)
        await ApprovalService(session).approve(expense.steps[0].id, manager.id)

        with pytest.raises(StateConflictError):
            await service.update_expense(employee, expense.id, amount=Decimal("1"))

    async def test_update_someone_elses(self, service, employee, manager):
        """Only the owner edits an expense."""
        expense = await submit(service, employee)
        with pytest.raises(AuthorizationError):
            await service.update_expense(manager, expense.id, category="Other")

    async def test_admin_deletes_pending(self, service, admin, employee):
        """Admins can delete pending expenses."""
        expense = await submit(service, employee)

        await service.delete_expense(admin, expense.id)

        with pytest.raises(NotFoundError):
            await service.get_expense_for(expense.id)


class TestConversions:
    """Amounts in the company base currency."""

    async def test_converts_foreign_amounts(self, session, company, employee, currency_service):
        """Foreign amounts are converted to the company currency."""
        service = ExpenseService(session, currency_service, auto_approve_unrouted=False)
        local = await submit(service, employee, amount="10.00", currency="USD")
        foreign = await submit(service, employee, amount="10.00", currency="GBP")

        converted = await service.with_conversions(company.id, [local, foreign])

        assert [(c.converted_amount, c.conversion_rate) for c in converted] == [
            (Decimal("10.00"), Decimal("1")),
            (Decimal("12.50"), Decimal("1.2500")),
        ]
        assert {c.company_currency for c in converted} == {"USD"}

    async def test_failed_conversion_keeps_original(self, session, company, employee, currency_service):
        """Without a rate the original amount is kept at rate 1."""
        service = ExpenseService(session, currency_service, auto_approve_unrouted=False)
        expense = await submit(service, employee, amount="10.00", currency="JPY")

        [converted] = await service.with_conversions(company.id, [expense])

        assert converted.converted_amount == Decimal("10.00")
        assert converted.conversion_rate == Decimal("1")
