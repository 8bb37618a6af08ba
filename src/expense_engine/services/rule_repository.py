"""Approval rule repository, scoped by company."""

from __future__ import annotations

import logging
from collections import defaultdict
from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from expense_engine.errors import NotFoundError, ValidationError
from expense_engine.models import APPROVER_ROLES, ApprovalRule, RuleApprover, User
from expense_engine.services.rule_types import (
    RuleDefinition,
    percentage_of,
    rules_from_models,
    specific_approver_of,
)

logger = logging.getLogger(__name__)


class RuleRepository:
    """Stores approval rules and their approver lists.

    Writes are made on the caller's session and become visible only when
    the caller commits, so a rule and its replaced approver list are always
    published together.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_applicable_rules(
        self, company_id: UUID, amount: Decimal
    ) -> list[RuleDefinition]:
        """Active rules with no threshold or a threshold <= amount, by sequence."""
        result = await self.session.execute(
            select(ApprovalRule)
            .where(
                ApprovalRule.company_id == company_id,
                ApprovalRule.is_active.is_(True),
                or_(
                    ApprovalRule.threshold_amount.is_(None),
                    ApprovalRule.threshold_amount <= amount,
                ),
            )
            .order_by(ApprovalRule.sequence.asc(), ApprovalRule.created_at.asc())
        )
        rules = list(result.scalars().all())
        if not rules:
            return []

        approvers_by_rule = await self._approvers_for([r.id for r in rules])
        return rules_from_models(rules, approvers_by_rule)

    async def list_rules(self, company_id: UUID) -> list[ApprovalRule]:
        """All rules of a company, active or not, by sequence."""
        result = await self.session.execute(
            select(ApprovalRule)
            .where(ApprovalRule.company_id == company_id)
            .options(selectinload(ApprovalRule.approvers))
            .order_by(ApprovalRule.sequence.asc(), ApprovalRule.created_at.asc())
        )
        return list(result.scalars().all())

    async def get_rule(self, company_id: UUID, rule_id: UUID) -> ApprovalRule:
        """Load a rule with its approvers; NotFoundError if absent."""
        result = await self.session.execute(
            select(ApprovalRule)
            .where(ApprovalRule.id == rule_id, ApprovalRule.company_id == company_id)
            .options(selectinload(ApprovalRule.approvers))
            .execution_options(populate_existing=True)
        )
        rule = result.scalar_one_or_none()
        if rule is None:
            raise NotFoundError("Approval rule not found", rule_id=str(rule_id))
        return rule

    async def get_rule_approvers(self, rule_id: UUID) -> list[RuleApprover]:
        """Approvers listed on a rule, by sequence."""
        result = await self.session.execute(
            select(RuleApprover)
            .where(RuleApprover.approval_rule_id == rule_id)
            .order_by(RuleApprover.sequence.asc())
        )
        return list(result.scalars().all())

    async def create_rule(self, company_id: UUID, definition: RuleDefinition) -> ApprovalRule:
        """Insert a rule and its approver list."""
        await self._validate_approvers(company_id, definition)

        sequence = definition.sequence
        if sequence is None:
            sequence = await self._next_sequence(company_id)

        rule = ApprovalRule(
            company_id=company_id,
            sequence=sequence,
            is_active=True,
        )
        self._apply_definition(rule, definition)
        self.session.add(rule)
        await self.session.flush()

        self._add_approvers(rule.id, definition)
        await self.session.flush()

        logger.info(
            "Created %s approval rule %s for company %s",
            definition.rule_type.value,
            rule.id,
            company_id,
        )
        return await self.get_rule(company_id, rule.id)

    async def update_rule(
        self, company_id: UUID, rule_id: UUID, definition: RuleDefinition
    ) -> ApprovalRule:
        """Replace a rule's definition; the approver list is deleted and re-inserted."""
        rule = await self.get_rule(company_id, rule_id)
        await self._validate_approvers(company_id, definition)

        self._apply_definition(rule, definition)
        if definition.sequence is not None:
            rule.sequence = definition.sequence

        await self.session.execute(
            delete(RuleApprover).where(RuleApprover.approval_rule_id == rule_id)
        )
        self._add_approvers(rule_id, definition)
        await self.session.flush()

        logger.info("Updated approval rule %s (%d approver(s))", rule_id, len(definition.approvers))
        return await self.get_rule(company_id, rule_id)

    async def delete_rule(self, company_id: UUID, rule_id: UUID) -> None:
        """Delete a rule together with its approver list."""
        await self.get_rule(company_id, rule_id)
        await self.session.execute(
            delete(RuleApprover).where(RuleApprover.approval_rule_id == rule_id)
        )
        await self.session.execute(delete(ApprovalRule).where(ApprovalRule.id == rule_id))
        await self.session.flush()
        logger.info("Deleted approval rule %s", rule_id)

    async def toggle_rule(self, company_id: UUID, rule_id: UUID) -> ApprovalRule:
        """Flip a rule between active and inactive."""
        rule = await self.get_rule(company_id, rule_id)
        rule.is_active = not rule.is_active
        await self.session.flush()
        return rule

    async def count_rules_referencing(self, user_id: UUID) -> int:
        """Number of rules naming the user as specific or listed approver."""
        specific = await self.session.scalar(
            select(func.count())
            .select_from(ApprovalRule)
            .where(ApprovalRule.specific_approver_id == user_id)
        )
        listed = await self.session.scalar(
            select(func.count(func.distinct(RuleApprover.approval_rule_id))).where(
                RuleApprover.approver_id == user_id
            )
        )
        return (specific or 0) + (listed or 0)

    async def _approvers_for(self, rule_ids: list[UUID]) -> dict[UUID, list[RuleApprover]]:
        result = await self.session.execute(
            select(RuleApprover)
            .where(RuleApprover.approval_rule_id.in_(rule_ids))
            .order_by(RuleApprover.sequence.asc())
        )
        grouped: dict[UUID, list[RuleApprover]] = defaultdict(list)
        for approver in result.scalars().all():
            grouped[approver.approval_rule_id].append(approver)
        return grouped

    async def _next_sequence(self, company_id: UUID) -> int:
        last = await self.session.scalar(
            select(func.max(ApprovalRule.sequence)).where(ApprovalRule.company_id == company_id)
        )
        return (last or 0) + 1

    async def _validate_approvers(self, company_id: UUID, definition: RuleDefinition) -> None:
        """Approvers must be MANAGER or ADMIN users of the same company."""
        specific_id = specific_approver_of(definition)
        if specific_id is not None:
            approver = await self._company_user(company_id, specific_id)
            if approver is None:
                raise NotFoundError("Specific approver not found or not in the same company")
            if approver.role not in APPROVER_ROLES:
                raise ValidationError("Specific approver must have MANAGER or ADMIN role")

        for listed in definition.approvers:
            approver = await self._company_user(company_id, listed.approver_id)
            if approver is None:
                raise NotFoundError(
                    f"Approver {listed.approver_id} not found or not in the same company"
                )
            if approver.role not in APPROVER_ROLES:
                raise ValidationError(f"Approver {approver.name} must have MANAGER or ADMIN role")

    async def _company_user(self, company_id: UUID, user_id: UUID) -> User | None:
        result = await self.session.execute(
            select(User).where(User.id == user_id, User.company_id == company_id)
        )
        return result.scalar_one_or_none()

    def _apply_definition(self, rule: ApprovalRule, definition: RuleDefinition) -> None:
        rule.name = definition.name
        rule.rule_type = definition.rule_type.value
        rule.threshold_amount = definition.threshold_amount
        rule.approval_percentage = percentage_of(definition)
        rule.specific_approver_id = specific_approver_of(definition)
        rule.is_manager_approver = definition.is_manager_approver
        rule.approvers_sequence_enabled = definition.approvers_sequence_enabled

    def _add_approvers(self, rule_id: UUID, definition: RuleDefinition) -> None:
        for approver in definition.approvers:
            self.session.add(
                RuleApprover(
                    approval_rule_id=rule_id,
                    approver_id=approver.approver_id,
                    sequence=approver.sequence,
                    is_required=approver.is_required,
                )
            )
