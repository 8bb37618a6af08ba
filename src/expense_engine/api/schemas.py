"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from expense_engine.services.rule_types import (
    HybridRule,
    PercentageRule,
    RuleApproverSpec,
    SequentialRule,
    SpecificRule,
)


# ============================================================================
# Common schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None
    context: dict[str, Any] | None = None


class ValidationErrorResponse(BaseModel):
    """Schema for request validation errors."""

    detail: str
    code: str = "VALIDATION_ERROR"
    errors: list[dict[str, Any]]


class MessageResponse(BaseModel):
    """Schema for simple acknowledgement responses."""

    message: str


# ============================================================================
# Company & user schemas
# ============================================================================


class CompanyCreate(BaseModel):
    """Schema for registering a company with its first admin."""

    company_name: str = Field(min_length=1)
    country: str = "United States"
    admin_name: str = Field(min_length=1)
    admin_email: str = Field(min_length=3)


class CompanyResponse(BaseModel):
    """Schema for company response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    country: str
    base_currency: str
    admin_user_id: UUID | None = None
    created_at: datetime


class UserCreate(BaseModel):
    """Schema for adding a user to the caller's company."""

    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    role: str
    manager_id: UUID | None = None


class UserUpdate(BaseModel):
    """Schema for updating a user. Omitted fields are left unchanged."""

    name: str | None = None
    role: str | None = None
    manager_id: UUID | None = None


class UserResponse(BaseModel):
    """Schema for user response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    company_id: UUID
    name: str
    email: str
    role: str
    manager_id: UUID | None = None
    created_at: datetime


class ManagerSummary(BaseModel):
    """Schema for the manager embedded in user responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str


class MeResponse(BaseModel):
    """Schema for the acting user's profile."""

    user: UserResponse
    company: CompanyResponse
    manager: ManagerSummary | None = None


class CompanySignupResponse(BaseModel):
    """Schema for a freshly created company and its admin."""

    company: CompanyResponse
    admin: UserResponse


# ============================================================================
# Expense schemas
# ============================================================================


class ExpenseCreate(BaseModel):
    """Schema for submitting an expense."""

    amount: Decimal = Field(gt=0, max_digits=14, decimal_places=2)
    currency: str = Field(min_length=3, max_length=3)
    category: str = Field(min_length=1)
    description: str = ""
    expense_date: date


class ExpenseUpdate(BaseModel):
    """Schema for editing a pending expense."""

    amount: Decimal | None = Field(default=None, gt=0, max_digits=14, decimal_places=2)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    category: str | None = None
    description: str | None = None
    expense_date: date | None = None


class ApprovalStepResponse(BaseModel):
    """Schema for approval step response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    expense_id: UUID
    approver_id: UUID
    sequence: int
    status: str
    comments: str | None = None
    action_date: datetime | None = None


class ExpenseSummaryResponse(BaseModel):
    """Schema for an expense without its steps."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    company_id: UUID
    employee_id: UUID
    amount: Decimal
    currency: str
    category: str
    description: str
    expense_date: date
    status: str
    current_approval_step: int
    created_at: datetime
    updated_at: datetime


class ExpenseResponse(ExpenseSummaryResponse):
    """Schema for expense response."""

    steps: list[ApprovalStepResponse] = []


class ConvertedExpenseResponse(ExpenseResponse):
    """Expense with its amount in the company base currency."""

    converted_amount: Decimal
    company_currency: str
    conversion_rate: Decimal


class ExpenseListResponse(BaseModel):
    """Schema for listing expenses."""

    items: list[ConvertedExpenseResponse]
    total: int


# ============================================================================
# Approval schemas
# ============================================================================


class ApprovalActionRequest(BaseModel):
    """Schema for approving or rejecting a step."""

    comments: str | None = None


class ApprovalActionResponse(BaseModel):
    """Schema for the outcome of an approval action."""

    expense_id: UUID
    expense_status: str
    message: str
    next_approver: str | None = None
    current_step: int | None = None
    total_steps: int | None = None
    approval_reason: str | None = None


class PendingApprovalResponse(BaseModel):
    """Schema for a step waiting on the caller."""

    step_id: UUID
    sequence: int
    total_steps: int
    expense_id: UUID
    employee_id: UUID
    employee_name: str
    amount: Decimal
    currency: str
    category: str
    description: str
    expense_date: date
    submitted_at: datetime


class ApprovalStatsResponse(BaseModel):
    """Schema for approver counters."""

    pending: int
    approved_this_month: int
    rejected_this_month: int
    total_processed_this_month: int


class ApprovalHistoryEntry(BaseModel):
    """Schema for one step in an expense's approval history."""

    step_id: UUID
    sequence: int
    approver_id: UUID
    approver_name: str
    status: str
    comments: str | None = None
    action_date: datetime | None = None


class ApprovalHistoryResponse(BaseModel):
    """Schema for an expense's approval history."""

    expense: ExpenseSummaryResponse
    steps: list[ApprovalHistoryEntry]


# ============================================================================
# Approval rule schemas
# ============================================================================


class RuleApproverPayload(BaseModel):
    """An approver listed on a rule. Sequence defaults to list position."""

    approver_id: UUID
    sequence: int | None = Field(default=None, ge=1)
    is_required: bool = False


class _RulePayloadBase(BaseModel):
    name: str = Field(min_length=1)
    threshold_amount: Decimal | None = Field(default=None, ge=0)
    is_manager_approver: bool = True
    approvers_sequence_enabled: bool = True
    sequence: int | None = Field(default=None, ge=1)
    approvers: list[RuleApproverPayload] = []

    def _common(self) -> dict[str, Any]:
        return dict(
            name=self.name,
            threshold_amount=self.threshold_amount,
            is_manager_approver=self.is_manager_approver,
            approvers_sequence_enabled=self.approvers_sequence_enabled,
            sequence=self.sequence,
            approvers=tuple(
                RuleApproverSpec(
                    approver_id=a.approver_id,
                    sequence=a.sequence if a.sequence is not None else index,
                    is_required=a.is_required,
                )
                for index, a in enumerate(self.approvers, start=1)
            ),
        )


class SequentialRulePayload(_RulePayloadBase):
    """Every generated step must approve."""

    rule_type: Literal["SEQUENTIAL"]

    def to_definition(self) -> SequentialRule:
        return SequentialRule(**self._common())


class PercentageRulePayload(_RulePayloadBase):
    """A share of the generated steps must approve."""

    rule_type: Literal["PERCENTAGE"]
    approval_percentage: Decimal = Field(ge=0, le=100)

    def to_definition(self) -> PercentageRule:
        return PercentageRule(approval_percentage=self.approval_percentage, **self._common())


class SpecificRulePayload(_RulePayloadBase):
    """One designated approver suffices."""

    rule_type: Literal["SPECIFIC"]
    specific_approver_id: UUID

    def to_definition(self) -> SpecificRule:
        return SpecificRule(specific_approver_id=self.specific_approver_id, **self._common())


class HybridRulePayload(_RulePayloadBase):
    """Percentage or specific approver, whichever happens first."""

    rule_type: Literal["HYBRID"]
    approval_percentage: Decimal = Field(ge=0, le=100)
    specific_approver_id: UUID | None = None

    def to_definition(self) -> HybridRule:
        return HybridRule(
            approval_percentage=self.approval_percentage,
            specific_approver_id=self.specific_approver_id,
            **self._common(),
        )


RulePayload = Union[
    SequentialRulePayload,
    PercentageRulePayload,
    SpecificRulePayload,
    HybridRulePayload,
]


class RuleApproverResponse(BaseModel):
    """Schema for a listed rule approver."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    approver_id: UUID
    sequence: int
    is_required: bool


class ApprovalRuleResponse(BaseModel):
    """Schema for approval rule response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    company_id: UUID
    name: str
    rule_type: str
    threshold_amount: Decimal | None = None
    approval_percentage: Decimal | None = None
    specific_approver_id: UUID | None = None
    is_manager_approver: bool
    approvers_sequence_enabled: bool
    sequence: int
    is_active: bool
    created_at: datetime
    approvers: list[RuleApproverResponse] = []


# ============================================================================
# Country & currency schemas
# ============================================================================


class CountryResponse(BaseModel):
    """Schema for a country/currency pair."""

    model_config = ConfigDict(from_attributes=True)

    country: str
    currency_code: str
    currency_name: str
    currency_symbol: str


class CountryCurrencyResponse(BaseModel):
    """Schema for a country's primary currency."""

    country: str
    currency_code: str


class ExchangeRatesResponse(BaseModel):
    """Schema for exchange rates against a base currency."""

    model_config = ConfigDict(from_attributes=True)

    base: str
    date: str
    rates: dict[str, Decimal]


class ConvertRequest(BaseModel):
    """Schema for a conversion request."""

    amount: Decimal = Field(gt=0)
    from_currency: str = Field(min_length=3, max_length=3)
    to_currency: str = Field(min_length=3, max_length=3)


class ConversionResponse(BaseModel):
    """Schema for a conversion result."""

    model_config = ConfigDict(from_attributes=True)

    from_currency: str
    to_currency: str
    amount: Decimal
    converted: Decimal
    rate: Decimal
    date: str


# ============================================================================
# Dashboard schemas
# ============================================================================


class DashboardStatsResponse(BaseModel):
    """Schema for per-user dashboard counters."""

    model_config = ConfigDict(from_attributes=True)

    total_expenses: int
    pending_expenses: int
    approved_expenses: int
    rejected_expenses: int
    pending_approvals: int
    team_members: int
