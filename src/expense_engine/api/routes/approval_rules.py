"""Approval rule administration endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Body, Path, status

from expense_engine.api.dependencies import AdminUser, DbSession
from expense_engine.api.schemas import (
    ApprovalRuleResponse,
    ErrorResponse,
    MessageResponse,
    RulePayload,
)
from expense_engine.services.rule_repository import RuleRepository

router = APIRouter(prefix="/approval-rules", tags=["approval-rules"])

RuleBody = Annotated[RulePayload, Body(discriminator="rule_type")]


@router.get("", response_model=list[ApprovalRuleResponse])
async def list_rules(db: DbSession, admin: AdminUser) -> list[ApprovalRuleResponse]:
    """List the company's rules, active or not, in evaluation order."""
    rules = await RuleRepository(db).list_rules(admin.company_id)
    return [ApprovalRuleResponse.model_validate(rule) for rule in rules]


@router.post(
    "",
    response_model=ApprovalRuleResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def create_rule(db: DbSession, admin: AdminUser, payload: RuleBody) -> ApprovalRuleResponse:
    """Create a rule with its approver list."""
    rule = await RuleRepository(db).create_rule(admin.company_id, payload.to_definition())
    await db.commit()
    return ApprovalRuleResponse.model_validate(rule)


@router.put(
    "/{rule_id}",
    response_model=ApprovalRuleResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def update_rule(
    db: DbSession,
    admin: AdminUser,
    rule_id: Annotated[UUID, Path()],
    payload: RuleBody,
) -> ApprovalRuleResponse:
    """Replace a rule's definition and approver list."""
    rule = await RuleRepository(db).update_rule(
        admin.company_id, rule_id, payload.to_definition()
    )
    await db.commit()
    return ApprovalRuleResponse.model_validate(rule)


@router.delete(
    "/{rule_id}",
    response_model=MessageResponse,
    responses={404: {"model": ErrorResponse}},
)
async def delete_rule(
    db: DbSession,
    admin: AdminUser,
    rule_id: Annotated[UUID, Path()],
) -> MessageResponse:
    """Delete a rule."""
    await RuleRepository(db).delete_rule(admin.company_id, rule_id)
    await db.commit()
    return MessageResponse(message="Approval rule deleted successfully")


@router.patch(
    "/{rule_id}/toggle",
    response_model=ApprovalRuleResponse,
    responses={404: {"model": ErrorResponse}},
)
async def toggle_rule(
    db: DbSession,
    admin: AdminUser,
    rule_id: Annotated[UUID, Path()],
) -> ApprovalRuleResponse:
    """Activate or deactivate a rule."""
    rule = await RuleRepository(db).toggle_rule(admin.company_id, rule_id)
    await db.commit()
    return ApprovalRuleResponse.model_validate(rule)
