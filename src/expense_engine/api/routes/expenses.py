"""Expense endpoints."""

from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from expense_engine.api.dependencies import (
    AppSettings,
    ApproverUser,
    CurrentUser,
    Currencies,
    DbSession,
)
from expense_engine.api.schemas import (
    ConvertedExpenseResponse,
    ErrorResponse,
    ExpenseCreate,
    ExpenseListResponse,
    ExpenseResponse,
    ExpenseUpdate,
    MessageResponse,
)
from expense_engine.services.expense_service import ConvertedExpense, ExpenseService

router = APIRouter(prefix="/expenses", tags=["expenses"])


def _converted_response(item: ConvertedExpense) -> ConvertedExpenseResponse:
    base = ExpenseResponse.model_validate(item.expense).model_dump()
    return ConvertedExpenseResponse(
        **base,
        converted_amount=item.converted_amount,
        company_currency=item.company_currency,
        conversion_rate=item.conversion_rate,
    )


# ============================================================================
# Submission & listing
# ============================================================================


@router.post(
    "",
    response_model=ExpenseResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
)
async def submit_expense(
    db: DbSession,
    user: CurrentUser,
    settings: AppSettings,
    payload: ExpenseCreate,
) -> ExpenseResponse:
    """Submit an expense; approval steps are generated immediately."""
    service = ExpenseService(
        db, auto_approve_unrouted=settings.auto_approve_unrouted_expenses
    )
    expense = await service.submit_expense(
        user,
        amount=payload.amount,
        currency=payload.currency,
        category=payload.category,
        expense_date=payload.expense_date,
        description=payload.description,
    )
    await db.commit()
    return ExpenseResponse.model_validate(expense)


@router.get("/mine", response_model=ExpenseListResponse)
async def list_my_expenses(
    db: DbSession,
    user: CurrentUser,
    currencies: Currencies,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> ExpenseListResponse:
    """List the caller's expenses with amounts in the company currency."""
    service = ExpenseService(db, currencies)
    expenses = await service.list_my_expenses(user, status_filter, start_date, end_date)
    items = await service.with_conversions(user.company_id, expenses)
    return ExpenseListResponse(
        items=[_converted_response(item) for item in items],
        total=len(items),
    )


@router.get("", response_model=ExpenseListResponse)
async def list_company_expenses(
    db: DbSession,
    user: ApproverUser,
    currencies: Currencies,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    employee_id: UUID | None = None,
) -> ExpenseListResponse:
    """List team expenses (managers) or all company expenses (admins)."""
    service = ExpenseService(db, currencies)
    expenses = await service.list_company_expenses(user, status_filter, employee_id)
    items = await service.with_conversions(user.company_id, expenses)
    return ExpenseListResponse(
        items=[_converted_response(item) for item in items],
        total=len(items),
    )


# ============================================================================
# Single expense
# ============================================================================


@router.get(
    "/{expense_id}",
    response_model=ExpenseResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def get_expense(
    db: DbSession,
    user: CurrentUser,
    expense_id: Annotated[UUID, Path()],
) -> ExpenseResponse:
    """Get an expense with its approval steps."""
    expense = await ExpenseService(db).get_expense(user, expense_id)
    return ExpenseResponse.model_validate(expense)


@router.put(
    "/{expense_id}",
    response_model=ExpenseResponse,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def update_expense(
    db: DbSession,
    user: CurrentUser,
    expense_id: Annotated[UUID, Path()],
    payload: ExpenseUpdate,
) -> ExpenseResponse:
    """Edit a pending expense."""
    expense = await ExpenseService(db).update_expense(
        user,
        expense_id,
        amount=payload.amount,
        currency=payload.currency,
        category=payload.category,
        description=payload.description,
        expense_date=payload.expense_date,
    )
    await db.commit()
    return ExpenseResponse.model_validate(expense)


@router.delete(
    "/{expense_id}",
    response_model=MessageResponse,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def delete_expense(
    db: DbSession,
    user: CurrentUser,
    expense_id: Annotated[UUID, Path()],
) -> MessageResponse:
    """Delete a pending expense and its approval steps."""
    await ExpenseService(db).delete_expense(user, expense_id)
    await db.commit()
    return MessageResponse(message="Expense deleted successfully")
