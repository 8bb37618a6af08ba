"""Approval rule models."""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from expense_engine.models.base import Base, TimestampMixin


class ApprovalRule(Base, TimestampMixin):
    """Company-level policy describing when an expense counts as approved."""

    __tablename__ = "approval_rule"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("company.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    rule_type: Mapped[str] = mapped_column(String, nullable=False)
    # NULL applies to every amount.
    threshold_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    approval_percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    specific_approver_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("app_user.id", ondelete="RESTRICT"),
        nullable=True,
    )
    is_manager_approver: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    approvers_sequence_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "rule_type IN ('SEQUENTIAL', 'PERCENTAGE', 'SPECIFIC', 'HYBRID')",
            name="approval_rule_type_check",
        ),
        CheckConstraint(
            "approval_percentage IS NULL OR (approval_percentage >= 0 AND approval_percentage <= 100)",
            name="approval_rule_percentage_range",
        ),
    )

    # Relationships
    approvers: Mapped[list[RuleApprover]] = relationship(
        back_populates="rule",
        order_by="RuleApprover.sequence",
        passive_deletes=True,
    )


class RuleApprover(Base, TimestampMixin):
    """Approver listed on a rule. Replaced wholesale on rule update."""

    __tablename__ = "rule_approver"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    approval_rule_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("approval_rule.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    approver_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("app_user.id", ondelete="RESTRICT"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Relationships
    rule: Mapped[ApprovalRule] = relationship(back_populates="approvers")
