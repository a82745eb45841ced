"""Employee payroll info model."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, CheckConstraint, Date, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from payroll_processing.models.base import Base, TimestampMixin


class EmployeePayrollInfo(Base, TimestampMixin):
    """Effective-dated compensation and deduction setup for an employee.

    Read-only input to the calculation engine. ``deduction_config`` is an
    ordered list of deduction rule dicts, see
    ``payroll_processing.calculators.deductions.DeductionRule.from_config``.
    """

    __tablename__ = "employee_payroll_info"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[str] = mapped_column(String(64), nullable=False)
    employee_name: Mapped[str | None] = mapped_column(String(255))
    employee_number: Mapped[str | None] = mapped_column(String(64))
    pay_group: Mapped[str] = mapped_column(String(64), nullable=False, default="default")

    rate_basis: Mapped[str] = mapped_column(String(20), nullable=False)
    rate: Mapped[Decimal | None] = mapped_column(Numeric(14, 4), nullable=True)
    days_per_period: Mapped[Decimal | None] = mapped_column(Numeric(8, 2), nullable=True)
    hours_per_period: Mapped[Decimal | None] = mapped_column(Numeric(8, 2), nullable=True)

    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deduction_config: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )

    __table_args__ = (
        CheckConstraint(
            "rate_basis IN ('monthly', 'daily', 'hourly')",
            name="employee_payroll_info_basis_check",
        ),
        CheckConstraint(
            "end_date IS NULL OR end_date >= effective_date",
            name="employee_payroll_info_dates_check",
        ),
        Index("ix_employee_payroll_info_group", "pay_group", "employee_id"),
    )

    def is_effective_between(self, start: date, end: date) -> bool:
        """Check whether this record overlaps the given date range."""
        if self.effective_date > end:
            return False
        return self.end_date is None or self.end_date >= start
