"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

PeriodTypeLiteral = Literal["weekly", "bi_weekly", "semi_monthly", "monthly"]
RateBasisLiteral = Literal["monthly", "daily", "hourly"]


# ============================================================================
# Payroll Period schemas
# ============================================================================


class PeriodCreate(BaseModel):
    """Schema for creating a new payroll period."""

    name: str = Field(min_length=1, max_length=255)
    period_type: PeriodTypeLiteral
    start_date: date
    end_date: date
    pay_group: str = Field(default="default", min_length=1, max_length=64)
    cutoff_date: date | None = None
    pay_date: date | None = None


class PeriodUpdate(BaseModel):
    """Schema for editing a draft period; only the fields sent are changed."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    period_type: PeriodTypeLiteral | None = None
    start_date: date | None = None
    end_date: date | None = None
    cutoff_date: date | None = None
    pay_date: date | None = None


class PeriodResponse(BaseModel):
    """Schema for payroll period response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    period_type: str
    pay_group: str
    start_date: date
    end_date: date
    cutoff_date: date | None = None
    pay_date: date | None = None
    status: str
    version: int
    active_run_id: UUID | None = None
    total_employees: int
    total_gross_pay: Decimal
    total_deductions: Decimal
    total_net_pay: Decimal
    calculated_at: datetime | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    cancel_reason: str | None = None
    created_at: datetime
    updated_at: datetime
    allowed_actions: list[str] = Field(default_factory=list)


class PeriodListResponse(BaseModel):
    """Schema for listing payroll periods."""

    items: list[PeriodResponse]
    total: int
    page: int
    page_size: int


class CancelRequest(BaseModel):
    """Schema for cancelling a period."""

    reason: str | None = Field(default=None, max_length=2000)


class StatusEventResponse(BaseModel):
    """Schema for a period status change."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    period_id: UUID
    from_status: str | None = None
    to_status: str
    actor: str | None = None
    reason: str | None = None
    run_id: UUID | None = None
    occurred_at: datetime


# ============================================================================
# Calculation schemas
# ============================================================================


class DeductionLineResponse(BaseModel):
    """Schema for one applied deduction."""

    code: str
    amount: Decimal
    pre_tax: bool = False
    explanation: str | None = None


class CalculationResponse(BaseModel):
    """Schema for a per-employee calculation."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    period_id: UUID
    run_id: UUID
    employee_id: str
    gross_pay: Decimal
    deductions: list[DeductionLineResponse]
    total_deductions: Decimal
    net_pay: Decimal
    fingerprint: str
    computed_at: datetime


class CalculationListResponse(BaseModel):
    """Schema for listing the calculations of a period."""

    items: list[CalculationResponse]
    total: int
    total_gross_pay: Decimal
    total_deductions: Decimal
    total_net_pay: Decimal


# ============================================================================
# Calculation Run schemas
# ============================================================================


class SkippedEmployeeResponse(BaseModel):
    """Schema for an employee left out of a run."""

    employee_id: str
    reason: str


class RunResponse(BaseModel):
    """Schema for calculation run status, polled by the UI."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    period_id: UUID
    status: str
    prior_status: str | None = None
    progress_percent: int
    total_employees: int
    processed_employees: int
    failed_employees: int
    skipped: list[SkippedEmployeeResponse]
    error_code: str | None = None
    error_message: str | None = None
    started_at: datetime
    finished_at: datetime | None = None


class RecalculateResponse(BaseModel):
    """Schema for an accepted recalculation."""

    run_id: UUID
    period_id: UUID
    status: str
    progress_percent: int


# ============================================================================
# Payroll Info schemas
# ============================================================================


class PayrollInfoCreate(BaseModel):
    """Schema for creating an employee payroll info record."""

    employee_id: str = Field(min_length=1, max_length=64)
    employee_name: str | None = Field(default=None, max_length=255)
    employee_number: str | None = Field(default=None, max_length=64)
    pay_group: str = Field(default="default", min_length=1, max_length=64)
    rate_basis: RateBasisLiteral
    # Bounded to the payroll info columns
    rate: Decimal | None = Field(default=None, ge=0, max_digits=14, decimal_places=4)
    days_per_period: Decimal | None = Field(default=None, ge=0, max_digits=8, decimal_places=2)
    hours_per_period: Decimal | None = Field(default=None, ge=0, max_digits=8, decimal_places=2)
    effective_date: date
    end_date: date | None = None
    is_active: bool = True
    deduction_config: list[dict[str, Any]] = Field(default_factory=list)


class PayrollInfoResponse(BaseModel):
    """Schema for employee payroll info response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    employee_id: str
    employee_name: str | None = None
    employee_number: str | None = None
    pay_group: str
    rate_basis: str
    rate: Decimal | None = None
    days_per_period: Decimal | None = None
    hours_per_period: Decimal | None = None
    effective_date: date
    end_date: date | None = None
    is_active: bool
    deduction_config: list[dict[str, Any]]
    created_at: datetime
    updated_at: datetime


class PayrollInfoListResponse(BaseModel):
    """Schema for listing payroll info records."""

    items: list[PayrollInfoResponse]
    total: int


# ============================================================================
# Error schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None
