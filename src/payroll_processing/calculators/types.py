"""Type definitions for the calculation pipeline."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from payroll_processing.errors import PartialCalculationFailure, SkippedEmployee

if TYPE_CHECKING:
    from payroll_processing.models import EmployeePayrollInfo, PayrollPeriod


class RateBasis(str, Enum):
    """How an employee's rate converts into gross pay."""

    MONTHLY = "monthly"
    DAILY = "daily"
    HOURLY = "hourly"


class PeriodType(str, Enum):
    """Payroll period frequency."""

    WEEKLY = "weekly"
    BI_WEEKLY = "bi_weekly"
    SEMI_MONTHLY = "semi_monthly"
    MONTHLY = "monthly"

    @property
    def periods_per_year(self) -> int:
        return {
            PeriodType.WEEKLY: 52,
            PeriodType.BI_WEEKLY: 26,
            PeriodType.SEMI_MONTHLY: 24,
            PeriodType.MONTHLY: 12,
        }[self]


@dataclass(frozen=True)
class PeriodSnapshot:
    """The parts of a payroll period the engine depends on."""

    period_id: UUID
    period_type: PeriodType
    start_date: date
    end_date: date
    pay_group: str = "default"

    @classmethod
    def from_model(cls, period: PayrollPeriod) -> PeriodSnapshot:
        return cls(
            period_id=period.id,
            period_type=PeriodType(period.period_type),
            start_date=period.start_date,
            end_date=period.end_date,
            pay_group=period.pay_group,
        )

    def to_canonical_dict(self) -> dict[str, Any]:
        return {
            "period_id": str(self.period_id),
            "period_type": self.period_type.value,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "pay_group": self.pay_group,
        }


@dataclass(frozen=True)
class PayrollInfoSnapshot:
    """Immutable copy of an employee payroll info record."""

    record_id: str
    employee_id: str
    rate_basis: str
    rate: Decimal | None
    effective_date: date
    end_date: date | None = None
    days_per_period: Decimal | None = None
    hours_per_period: Decimal | None = None
    is_active: bool = True
    pay_group: str = "default"
    deduction_config: tuple[dict[str, Any], ...] = ()

    @classmethod
    def from_model(cls, info: EmployeePayrollInfo) -> PayrollInfoSnapshot:
        return cls(
            record_id=str(info.id),
            employee_id=info.employee_id,
            rate_basis=info.rate_basis,
            rate=info.rate,
            effective_date=info.effective_date,
            end_date=info.end_date,
            days_per_period=info.days_per_period,
            hours_per_period=info.hours_per_period,
            is_active=info.is_active,
            pay_group=info.pay_group,
            deduction_config=tuple(dict(d) for d in (info.deduction_config or [])),
        )

    def is_effective_between(self, start: date, end: date) -> bool:
        if self.effective_date > end:
            return False
        return self.end_date is None or self.end_date >= start

    def to_canonical_dict(self) -> dict[str, Any]:
        """Return canonical dict for hashing (deterministic ordering)."""
        return {
            "record_id": self.record_id,
            "employee_id": self.employee_id,
            "rate_basis": self.rate_basis,
            "rate": str(self.rate) if self.rate is not None else None,
            "days_per_period": (
                str(self.days_per_period) if self.days_per_period is not None else None
            ),
            "hours_per_period": (
                str(self.hours_per_period) if self.hours_per_period is not None else None
            ),
            "effective_date": self.effective_date.isoformat(),
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "deduction_config": json.loads(
                json.dumps(list(self.deduction_config), sort_keys=True, default=str)
            ),
        }


@dataclass(frozen=True)
class DeductionLine:
    """A single applied deduction (amount is positive)."""

    code: str
    amount: Decimal
    pre_tax: bool = False
    explanation: str | None = None

    def to_canonical_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "amount": str(self.amount),
            "pre_tax": self.pre_tax,
            "explanation": self.explanation,
        }


@dataclass(frozen=True)
class CalculationResult:
    """Result of calculating pay for one employee."""

    calculation_id: UUID
    employee_id: str
    gross_pay: Decimal
    deductions: tuple[DeductionLine, ...]
    total_deductions: Decimal
    net_pay: Decimal
    fingerprint: str

    def to_canonical_dict(self) -> dict[str, Any]:
        return {
            "calculation_id": str(self.calculation_id),
            "employee_id": self.employee_id,
            "gross_pay": str(self.gross_pay),
            "deductions": [d.to_canonical_dict() for d in self.deductions],
            "total_deductions": str(self.total_deductions),
            "net_pay": str(self.net_pay),
            "fingerprint": self.fingerprint,
        }


@dataclass
class CalculationOutcome:
    """Result of calculating an entire period."""

    period_id: UUID
    results: list[CalculationResult] = field(default_factory=list)
    skipped: list[SkippedEmployee] = field(default_factory=list)

    @property
    def total_gross(self) -> Decimal:
        return sum((r.gross_pay for r in self.results), Decimal("0"))

    @property
    def total_deductions(self) -> Decimal:
        return sum((r.total_deductions for r in self.results), Decimal("0"))

    @property
    def total_net(self) -> Decimal:
        return sum((r.net_pay for r in self.results), Decimal("0"))

    @property
    def employee_count(self) -> int:
        return len(self.results) + len(self.skipped)

    @property
    def failure(self) -> PartialCalculationFailure | None:
        """The partial failure to surface on the run, if any employee was skipped."""
        if not self.skipped:
            return None
        return PartialCalculationFailure(self.skipped)

    def to_canonical_json(self) -> str:
        """Serialize deterministically; equal inputs give equal bytes."""
        return json.dumps(
            {
                "period_id": str(self.period_id),
                "results": [r.to_canonical_dict() for r in self.results],
                "skipped": [s.to_dict() for s in self.skipped],
            },
            sort_keys=True,
        )
