"""Payroll period, calculation, run and status history models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_processing.models.base import Base, TimestampMixin, utcnow

ACTIVE_RUN_STATUSES = ("pending", "running")
_ACTIVE_RUN_CLAUSE = text("status IN ('pending', 'running')")


# ===== Payroll Periods =====


class PayrollPeriod(Base, TimestampMixin):
    """A date range calculated and approved as one unit."""

    __tablename__ = "payroll_period"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    period_type: Mapped[str] = mapped_column(String(20), nullable=False)
    pay_group: Mapped[str] = mapped_column(String(64), nullable=False, default="default")
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    cutoff_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    pay_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")

    # Compare-and-swap token, bumped on every status change
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    active_run_id: Mapped[UUID | None] = mapped_column(nullable=True)

    # Totals from the latest accepted calculation
    total_employees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_gross_pay: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0")
    )
    total_deductions: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0")
    )
    total_net_pay: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0")
    )

    calculated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved_by: Mapped[str | None] = mapped_column(String(255))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_by: Mapped[str | None] = mapped_column(String(255))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancel_reason: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'calculating', 'calculated', 'approved', 'cancelled')",
            name="payroll_period_status_check",
        ),
        CheckConstraint(
            "period_type IN ('weekly', 'bi_weekly', 'semi_monthly', 'monthly')",
            name="payroll_period_type_check",
        ),
        CheckConstraint("end_date > start_date", name="payroll_period_dates_check"),
        Index("ix_payroll_period_group_dates", "pay_group", "start_date", "end_date"),
    )

    # Relationships
    calculations: Mapped[list[PayrollCalculation]] = relationship(
        back_populates="period",
        cascade="all, delete-orphan",
        order_by="PayrollCalculation.employee_id",
    )


class PayrollCalculation(Base):
    """Per-employee result of a period calculation."""

    __tablename__ = "payroll_calculation"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    period_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_period.id", ondelete="CASCADE"),
        nullable=False,
    )
    run_id: Mapped[UUID] = mapped_column(nullable=False)
    employee_id: Mapped[str] = mapped_column(String(64), nullable=False)
    gross_pay: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    total_deductions: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    net_pay: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    deductions: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        UniqueConstraint("period_id", "employee_id", name="payroll_calculation_period_employee_unique"),
        CheckConstraint("gross_pay >= 0", name="payroll_calculation_gross_check"),
        CheckConstraint("total_deductions >= 0", name="payroll_calculation_deductions_check"),
        CheckConstraint("net_pay >= 0", name="payroll_calculation_net_check"),
    )

    # Relationships
    period: Mapped[PayrollPeriod] = relationship(back_populates="calculations")


class PeriodStatusEvent(Base):
    """Status change recorded alongside every period transition."""

    __tablename__ = "payroll_period_status_event"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    period_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_period.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    from_status: Mapped[str | None] = mapped_column(String(20))
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    actor: Mapped[str | None] = mapped_column(String(255))
    reason: Mapped[str | None] = mapped_column(Text)
    run_id: Mapped[UUID | None] = mapped_column(nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


# ===== Calculation Runs =====


class CalculationRun(Base, TimestampMixin):
    """One execution attempt of the calculation engine against a period.

    References its period by id only; runs are never cascaded.
    """

    __tablename__ = "calculation_run"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    period_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    prior_status: Mapped[str | None] = mapped_column(String(20))
    progress_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_employees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_employees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_employees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    error_code: Mapped[str | None] = mapped_column(String(64))
    error_message: Mapped[str | None] = mapped_column(Text)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'running', 'succeeded', 'failed')",
            name="calculation_run_status_check",
        ),
        CheckConstraint(
            "progress_percent >= 0 AND progress_percent <= 100",
            name="calculation_run_progress_check",
        ),
        # At most one non-terminal run per period
        Index(
            "uq_calculation_run_active_period",
            "period_id",
            unique=True,
            sqlite_where=_ACTIVE_RUN_CLAUSE,
            postgresql_where=_ACTIVE_RUN_CLAUSE,
        ),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status not in ACTIVE_RUN_STATUSES
