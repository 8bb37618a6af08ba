"""User and company administration."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from expense_engine.errors import NotFoundError, StateConflictError, ValidationError
from expense_engine.models import (
    APPROVER_ROLES,
    ApprovalStep,
    Company,
    Expense,
    User,
    UserRole,
)
from expense_engine.services.country_service import CountryService
from expense_engine.services.manager_tree import ManagerTree
from expense_engine.services.rule_repository import RuleRepository

logger = logging.getLogger(__name__)


def _parse_role(role: str) -> str:
    try:
        return UserRole(role.upper()).value
    except (ValueError, AttributeError):
        raise ValidationError("Invalid role. Must be EMPLOYEE, MANAGER, or ADMIN", role=role)


class UserService:
    """Service for users, their reporting lines and company bootstrap."""

    def __init__(self, session: AsyncSession, country_service: CountryService | None = None):
        self.session = session
        self.country_service = country_service
        self.manager_tree = ManagerTree(session)

    async def create_company(
        self,
        name: str,
        admin_name: str,
        admin_email: str,
        country: str = "United States",
    ) -> tuple[Company, User]:
        """Create a company with its first ADMIN user.

        The base currency comes from the country lookup (USD if unknown).
        """
        if not name or not admin_name or not admin_email:
            raise ValidationError("Company name, admin name, and admin email are required")
        await self._ensure_email_free(admin_email)

        base_currency = "USD"
        if self.country_service is not None:
            base_currency = await self.country_service.currency_for_country(country)

        company = Company(name=name, country=country, base_currency=base_currency)
        self.session.add(company)
        await self.session.flush()

        admin = User(
            company_id=company.id,
            name=admin_name,
            email=admin_email.lower(),
            role=UserRole.ADMIN.value,
        )
        self.session.add(admin)
        await self.session.flush()

        company.admin_user_id = admin.id
        await self.session.flush()
        logger.info("Created company %s (%s) with admin %s", company.id, base_currency, admin.id)
        return company, admin

    async def get_user(self, company_id: UUID, user_id: UUID) -> User:
        """A user of the company; NotFoundError otherwise."""
        result = await self.session.execute(
            select(User).where(User.id == user_id, User.company_id == company_id)
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundError("User not found", user_id=str(user_id))
        return user

    async def get_me(self, actor: User) -> tuple[User, Company, User | None]:
        """The acting user with their company and manager."""
        company = await self.session.get(Company, actor.company_id)
        if company is None:
            raise NotFoundError("Company not found", company_id=str(actor.company_id))
        manager = None
        if actor.manager_id is not None:
            manager = await self.session.get(User, actor.manager_id)
        return actor, company, manager

    async def list_users(self, company_id: UUID) -> list[User]:
        """All users of a company, newest first."""
        result = await self.session.execute(
            select(User).where(User.company_id == company_id).order_by(User.created_at.desc())
        )
        return list(result.scalars().all())

    async def create_user(
        self,
        company_id: UUID,
        name: str,
        email: str,
        role: str,
        manager_id: UUID | None = None,
    ) -> User:
        """Add a user to the company."""
        if not name or not email or not role:
            raise ValidationError("Name, email, and role are required")
        role_value = _parse_role(role)
        await self._ensure_email_free(email)
        if manager_id is not None:
            await self._validate_manager(company_id, manager_id)

        user = User(
            company_id=company_id,
            name=name,
            email=email.lower(),
            role=role_value,
            manager_id=manager_id,
        )
        self.session.add(user)
        await self.session.flush()
        logger.info("Created %s user %s in company %s", role_value, user.id, company_id)
        return user

    async def update_user(
        self,
        company_id: UUID,
        user_id: UUID,
        name: str | None = None,
        role: str | None = None,
        manager_id: UUID | None = None,
    ) -> User:
        """Update name, role or manager; manager changes are cycle-checked."""
        user = await self.get_user(company_id, user_id)

        if role is not None:
            user.role = _parse_role(role)
        if name:
            user.name = name
        if manager_id is not None:
            if manager_id == user_id:
                raise ValidationError("User cannot be their own manager")
            await self._validate_manager(company_id, manager_id)
            await self.manager_tree.would_create_cycle(manager_id, user_id, company_id)
            user.manager_id = manager_id

        await self.session.flush()
        return user

    async def clear_manager(self, company_id: UUID, user_id: UUID) -> User:
        """Remove a user's manager."""
        user = await self.get_user(company_id, user_id)
        user.manager_id = None
        await self.session.flush()
        return user

    async def delete_user(self, company_id: UUID, user_id: UUID) -> None:
        """Delete a user with no remaining responsibilities."""
        user = await self.get_user(company_id, user_id)

        company = await self.session.get(Company, company_id)
        if company is not None and company.admin_user_id == user_id:
            raise StateConflictError(
                "Cannot delete the company admin. "
                "Please transfer admin rights to another user first."
            )

        expenses = await self._count(select(func.count()).select_from(Expense).where(Expense.employee_id == user_id))
        if expenses:
            raise StateConflictError(
                f"Cannot delete user with {expenses} existing expense(s). "
                "Please delete expenses first."
            )

        steps = await self._count(
            select(func.count()).select_from(ApprovalStep).where(ApprovalStep.approver_id == user_id)
        )
        if steps:
            raise StateConflictError(
                f"Cannot delete user who is an approver in {steps} pending approval(s). "
                "Please complete or reassign approvals first."
            )

        reports = await self._count(select(func.count()).select_from(User).where(User.manager_id == user_id))
        if reports:
            raise StateConflictError(
                f"Cannot delete user who is managing {reports} employee(s). "
                "Please reassign their manager first."
            )

        rules = await RuleRepository(self.session).count_rules_referencing(user_id)
        if rules:
            raise StateConflictError(
                f"Cannot delete user who is configured in {rules} approval rule(s). "
                "Please update rules first."
            )

        await self.session.execute(delete(User).where(User.id == user.id))
        await self.session.flush()
        logger.info("Deleted user %s from company %s", user_id, company_id)

    async def _count(self, query) -> int:
        return (await self.session.scalar(query)) or 0

    async def _ensure_email_free(self, email: str) -> None:
        existing = await self.session.scalar(
            select(func.count()).select_from(User).where(User.email == email.lower())
        )
        if existing:
            raise ValidationError("User with this email already exists")

    async def _validate_manager(self, company_id: UUID, manager_id: UUID) -> User:
        result = await self.session.execute(
            select(User).where(User.id == manager_id, User.company_id == company_id)
        )
        manager = result.scalar_one_or_none()
        if manager is None:
            raise NotFoundError("Manager not found or not in the same company")
        if manager.role not in APPROVER_ROLES:
            raise ValidationError("Selected manager must have MANAGER or ADMIN role")
        return manager
