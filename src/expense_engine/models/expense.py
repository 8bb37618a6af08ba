"""Expense and approval step models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from expense_engine.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from expense_engine.models.company import User


class Expense(Base, TimestampMixin):
    """Expense claim submitted by an employee."""

    __tablename__ = "expense"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("company.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    employee_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("app_user.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    expense_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="PENDING")
    # 0 means no approval step is active.
    current_approval_step: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("status IN ('PENDING', 'APPROVED', 'REJECTED')", name="expense_status_check"),
        CheckConstraint("amount > 0", name="expense_amount_positive"),
        CheckConstraint("current_approval_step >= 0", name="expense_current_step_nonneg"),
    )

    # Relationships
    employee: Mapped[User] = relationship(back_populates="expenses")
    steps: Mapped[list[ApprovalStep]] = relationship(
        back_populates="expense",
        order_by="ApprovalStep.sequence",
        passive_deletes=True,
    )


class ApprovalStep(Base, TimestampMixin):
    """One approver's pending or decided action on an expense."""

    __tablename__ = "approval_step"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    expense_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("expense.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    approver_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("app_user.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="PENDING")
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    action_date: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint("expense_id", "sequence", name="approval_step_expense_sequence_unique"),
        CheckConstraint("sequence >= 1", name="approval_step_sequence_positive"),
        CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED')", name="approval_step_status_check"
        ),
    )

    # Relationships
    expense: Mapped[Expense] = relationship(back_populates="steps")
