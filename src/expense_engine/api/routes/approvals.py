"""Approval workflow endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path

from expense_engine.api.dependencies import ApproverUser, CurrentUser, DbSession
from expense_engine.api.schemas import (
    ApprovalActionRequest,
    ApprovalActionResponse,
    ApprovalHistoryEntry,
    ApprovalHistoryResponse,
    ApprovalStatsResponse,
    ErrorResponse,
    ExpenseSummaryResponse,
    PendingApprovalResponse,
)
from expense_engine.services.approval_service import ApprovalActionResult, ApprovalService
from expense_engine.services.state_machine import ApprovalAction

router = APIRouter(prefix="/approvals", tags=["approvals"])

ACTION_RESPONSES = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
}


def _action_response(result: ApprovalActionResult) -> ApprovalActionResponse:
    return ApprovalActionResponse(
        expense_id=result.expense_id,
        expense_status=result.expense_status,
        message=result.message,
        next_approver=result.next_approver,
        current_step=result.current_step,
        total_steps=result.total_steps,
        approval_reason=result.approval_reason,
    )


@router.get("/pending", response_model=list[PendingApprovalResponse])
async def list_pending_approvals(
    db: DbSession,
    user: ApproverUser,
) -> list[PendingApprovalResponse]:
    """Steps waiting on the caller right now."""
    pending = await ApprovalService(db).list_pending_approvals(user)
    return [
        PendingApprovalResponse(
            step_id=p.step.id,
            sequence=p.step.sequence,
            total_steps=p.total_steps,
            expense_id=p.expense.id,
            employee_id=p.employee.id,
            employee_name=p.employee.name,
            amount=p.expense.amount,
            currency=p.expense.currency,
            category=p.expense.category,
            description=p.expense.description,
            expense_date=p.expense.expense_date,
            submitted_at=p.expense.created_at,
        )
        for p in pending
    ]


@router.get("/stats", response_model=ApprovalStatsResponse)
async def get_approval_stats(db: DbSession, user: ApproverUser) -> ApprovalStatsResponse:
    """Pending count and this month's decisions for the caller."""
    stats = await ApprovalService(db).get_approval_stats(user)
    return ApprovalStatsResponse(
        pending=stats.pending,
        approved_this_month=stats.approved_this_month,
        rejected_this_month=stats.rejected_this_month,
        total_processed_this_month=stats.total_processed_this_month,
    )


@router.get(
    "/expenses/{expense_id}/history",
    response_model=ApprovalHistoryResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def get_approval_history(
    db: DbSession,
    user: CurrentUser,
    expense_id: Annotated[UUID, Path()],
) -> ApprovalHistoryResponse:
    """Approval steps of an expense, visible to whoever may see the expense."""
    expense, steps = await ApprovalService(db).get_approval_history(user, expense_id)
    return ApprovalHistoryResponse(
        expense=ExpenseSummaryResponse.model_validate(expense),
        steps=[
            ApprovalHistoryEntry(
                step_id=step.id,
                sequence=step.sequence,
                approver_id=approver.id,
                approver_name=approver.name,
                status=step.status,
                comments=step.comments,
                action_date=step.action_date,
            )
            for step, approver in steps
        ],
    )


@router.post(
    "/{step_id}/approve",
    response_model=ApprovalActionResponse,
    responses=ACTION_RESPONSES,
)
async def approve_step(
    db: DbSession,
    user: ApproverUser,
    step_id: Annotated[UUID, Path()],
    payload: ApprovalActionRequest | None = None,
) -> ApprovalActionResponse:
    """Approve the current step of an expense."""
    comments = payload.comments if payload else None
    result = await ApprovalService(db).apply_action(
        step_id, user.id, ApprovalAction.APPROVE, comments
    )
    await db.commit()
    return _action_response(result)


@router.post(
    "/{step_id}/reject",
    response_model=ApprovalActionResponse,
    responses=ACTION_RESPONSES,
)
async def reject_step(
    db: DbSession,
    user: ApproverUser,
    step_id: Annotated[UUID, Path()],
    payload: ApprovalActionRequest,
) -> ApprovalActionResponse:
    """Reject the current step; the whole expense is rejected."""
    result = await ApprovalService(db).apply_action(
        step_id, user.id, ApprovalAction.REJECT, payload.comments
    )
    await db.commit()
    return _action_response(result)
