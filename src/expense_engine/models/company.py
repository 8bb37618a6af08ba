"""Company and user models."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from expense_engine.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from expense_engine.models.expense import Expense


class UserRole(str, Enum):
    """User role values."""

    EMPLOYEE = "EMPLOYEE"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"


APPROVER_ROLES = frozenset({UserRole.MANAGER.value, UserRole.ADMIN.value})


class Company(Base, TimestampMixin):
    """Tenant: owns users, expenses and approval rules."""

    __tablename__ = "company"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    country: Mapped[str] = mapped_column(String, nullable=False, default="United States")
    base_currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    # No FK: the admin row is created after the company in the same transaction.
    admin_user_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)

    # Relationships
    users: Mapped[list[User]] = relationship(back_populates="company")


class User(Base, TimestampMixin):
    """Company member. Managers form a tree through ``manager_id``."""

    __tablename__ = "app_user"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("company.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    role: Mapped[str] = mapped_column(String, nullable=False, default="EMPLOYEE")
    manager_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("app_user.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    __table_args__ = (
        CheckConstraint("role IN ('EMPLOYEE', 'MANAGER', 'ADMIN')", name="user_role_check"),
    )

    # Relationships
    company: Mapped[Company] = relationship(back_populates="users")
    expenses: Mapped[list[Expense]] = relationship(back_populates="employee")
