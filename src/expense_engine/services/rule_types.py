"""Approval rule definitions as a tagged union.

Each rule type carries only the fields it needs. Definitions are validated
on construction, so anything that reaches the evaluator is well formed.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, ClassVar, Union
from uuid import UUID

from expense_engine.errors import ValidationError

if TYPE_CHECKING:
    from expense_engine.models import ApprovalRule, RuleApprover

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


class RuleType(str, Enum):
    """Approval rule types."""

    SEQUENTIAL = "SEQUENTIAL"
    PERCENTAGE = "PERCENTAGE"
    SPECIFIC = "SPECIFIC"
    HYBRID = "HYBRID"


@dataclass(frozen=True)
class RuleApproverSpec:
    """An approver listed on a rule."""

    approver_id: UUID
    sequence: int
    is_required: bool = False


@dataclass(frozen=True, kw_only=True)
class _RuleBase:
    rule_type: ClassVar[RuleType]

    name: str
    threshold_amount: Decimal | None = None
    is_manager_approver: bool = True
    approvers_sequence_enabled: bool = True
    sequence: int | None = None
    approvers: tuple[RuleApproverSpec, ...] = ()
    is_active: bool = True
    rule_id: UUID | None = None

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValidationError("Rule name is required")
        if self.threshold_amount is not None and self.threshold_amount < 0:
            raise ValidationError("Threshold amount cannot be negative")
        if self.sequence is not None and self.sequence < 1:
            raise ValidationError("Rule sequence must be at least 1")
        seen: set[UUID] = set()
        for approver in self.approvers:
            if approver.approver_id in seen:
                raise ValidationError(
                    f"Approver {approver.approver_id} is listed more than once"
                )
            seen.add(approver.approver_id)

    def applies_to(self, amount: Decimal) -> bool:
        """Whether the rule is applicable to an expense of this amount."""
        return self.threshold_amount is None or self.threshold_amount <= amount

    def ordered_approvers(self) -> list[RuleApproverSpec]:
        """Listed approvers by stored sequence; ties keep list order."""
        return sorted(self.approvers, key=lambda a: a.sequence)


def _check_percentage(value: Decimal | None, rule_type: RuleType) -> None:
    if value is None:
        raise ValidationError(
            "Approval percentage is required for PERCENTAGE or HYBRID rules",
            rule_type=rule_type.value,
        )
    if value < 0 or value > HUNDRED:
        raise ValidationError("Approval percentage must be between 0 and 100")


@dataclass(frozen=True, kw_only=True)
class SequentialRule(_RuleBase):
    """Every approval step must be approved."""

    rule_type: ClassVar[RuleType] = RuleType.SEQUENTIAL


@dataclass(frozen=True, kw_only=True)
class PercentageRule(_RuleBase):
    """A minimum share of the generated steps must be approved."""

    rule_type: ClassVar[RuleType] = RuleType.PERCENTAGE

    approval_percentage: Decimal

    def __post_init__(self) -> None:
        super().__post_init__()
        _check_percentage(self.approval_percentage, self.rule_type)


@dataclass(frozen=True, kw_only=True)
class SpecificRule(_RuleBase):
    """Approval by one designated approver is sufficient."""

    rule_type: ClassVar[RuleType] = RuleType.SPECIFIC

    specific_approver_id: UUID

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.specific_approver_id is None:
            raise ValidationError("Specific approver is required for SPECIFIC rules")


@dataclass(frozen=True, kw_only=True)
class HybridRule(_RuleBase):
    """Percentage condition OR specific approver condition."""

    rule_type: ClassVar[RuleType] = RuleType.HYBRID

    approval_percentage: Decimal
    specific_approver_id: UUID | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        _check_percentage(self.approval_percentage, self.rule_type)
        if self.specific_approver_id is None and not self.approvers:
            raise ValidationError(
                "Specific approver or approvers list is required for SPECIFIC or HYBRID rules"
            )


RuleDefinition = Union[SequentialRule, PercentageRule, SpecificRule, HybridRule]

RULE_CLASSES: dict[RuleType, type[_RuleBase]] = {
    RuleType.SEQUENTIAL: SequentialRule,
    RuleType.PERCENTAGE: PercentageRule,
    RuleType.SPECIFIC: SpecificRule,
    RuleType.HYBRID: HybridRule,
}


def specific_approver_of(rule: RuleDefinition) -> UUID | None:
    """The rule's designated approver, if its type has one."""
    return getattr(rule, "specific_approver_id", None)


def percentage_of(rule: RuleDefinition) -> Decimal | None:
    """The rule's percentage threshold, if its type has one."""
    return getattr(rule, "approval_percentage", None)


def rule_from_model(
    rule: ApprovalRule,
    approvers: Iterable[RuleApprover] = (),
) -> RuleDefinition:
    """Build a validated definition from a persisted rule row.

    Raises ValidationError if the stored row does not satisfy its type.
    """
    try:
        rule_type = RuleType(rule.rule_type)
    except ValueError:
        raise ValidationError(
            "Invalid rule type. Must be SEQUENTIAL, PERCENTAGE, SPECIFIC, or HYBRID",
            rule_type=rule.rule_type,
        )

    common = dict(
        name=rule.name,
        threshold_amount=rule.threshold_amount,
        is_manager_approver=rule.is_manager_approver,
        approvers_sequence_enabled=rule.approvers_sequence_enabled,
        sequence=rule.sequence,
        approvers=tuple(
            RuleApproverSpec(
                approver_id=a.approver_id,
                sequence=a.sequence,
                is_required=a.is_required,
            )
            for a in sorted(approvers, key=lambda a: a.sequence)
        ),
        is_active=rule.is_active,
        rule_id=rule.id,
    )

    if rule_type == RuleType.PERCENTAGE:
        return PercentageRule(approval_percentage=rule.approval_percentage, **common)
    if rule_type == RuleType.SPECIFIC:
        return SpecificRule(specific_approver_id=rule.specific_approver_id, **common)
    if rule_type == RuleType.HYBRID:
        return HybridRule(
            approval_percentage=rule.approval_percentage,
            specific_approver_id=rule.specific_approver_id,
            **common,
        )
    return SequentialRule(**common)


def rules_from_models(
    rules: Sequence[ApprovalRule],
    approvers_by_rule: dict[UUID, list[RuleApprover]],
) -> list[RuleDefinition]:
    """Convert rows to definitions, skipping rows that fail validation."""
    definitions: list[RuleDefinition] = []
    for rule in rules:
        try:
            definitions.append(rule_from_model(rule, approvers_by_rule.get(rule.id, [])))
        except ValidationError as e:
            logger.warning("Skipping invalid approval rule %s: %s", rule.id, e.message)
    return definitions
