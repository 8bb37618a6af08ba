"""User administration endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, status

from expense_engine.api.dependencies import AdminUser, ApproverUser, CurrentUser, DbSession
from expense_engine.api.schemas import (
    CompanyResponse,
    ErrorResponse,
    ManagerSummary,
    MeResponse,
    MessageResponse,
    UserCreate,
    UserResponse,
    UserUpdate,
)
from expense_engine.services.user_service import UserService

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=MeResponse)
async def get_me(db: DbSession, user: CurrentUser) -> MeResponse:
    """Get the acting user with their company and manager."""
    me, company, manager = await UserService(db).get_me(user)
    return MeResponse(
        user=UserResponse.model_validate(me),
        company=CompanyResponse.model_validate(company),
        manager=ManagerSummary.model_validate(manager) if manager else None,
    )


@router.get("", response_model=list[UserResponse])
async def list_users(db: DbSession, user: ApproverUser) -> list[UserResponse]:
    """List users of the caller's company."""
    users = await UserService(db).list_users(user.company_id)
    return [UserResponse.model_validate(u) for u in users]


@router.post(
    "",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def create_user(db: DbSession, admin: AdminUser, payload: UserCreate) -> UserResponse:
    """Add a user to the caller's company."""
    created = await UserService(db).create_user(
        admin.company_id,
        name=payload.name,
        email=payload.email,
        role=payload.role,
        manager_id=payload.manager_id,
    )
    await db.commit()
    return UserResponse.model_validate(created)


@router.put(
    "/{user_id}",
    response_model=UserResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def update_user(
    db: DbSession,
    admin: AdminUser,
    user_id: Annotated[UUID, Path()],
    payload: UserUpdate,
) -> UserResponse:
    """Update a user's name, role or manager.

    An explicit ``"manager_id": null`` removes the manager.
    """
    service = UserService(db)
    if "manager_id" in payload.model_fields_set and payload.manager_id is None:
        await service.clear_manager(admin.company_id, user_id)
    updated = await service.update_user(
        admin.company_id,
        user_id,
        name=payload.name,
        role=payload.role,
        manager_id=payload.manager_id,
    )
    await db.commit()
    return UserResponse.model_validate(updated)


@router.delete(
    "/{user_id}",
    response_model=MessageResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def delete_user(
    db: DbSession,
    admin: AdminUser,
    user_id: Annotated[UUID, Path()],
) -> MessageResponse:
    """Delete a user with no remaining expenses, approvals, reports or rules."""
    await UserService(db).delete_user(admin.company_id, user_id)
    await db.commit()
    return MessageResponse(message="User deleted successfully")
