"""SQLAlchemy ORM models."""

from payroll_processing.models.base import Base, TimestampMixin
from payroll_processing.models.employee import EmployeePayrollInfo
from payroll_processing.models.payroll import (
    ACTIVE_RUN_STATUSES,
    CalculationRun,
    PayrollCalculation,
    PayrollPeriod,
    PeriodStatusEvent,
)

__all__ = [
    "ACTIVE_RUN_STATUSES",
    "Base",
    "CalculationRun",
    "EmployeePayrollInfo",
    "PayrollCalculation",
    "PayrollPeriod",
    "PeriodStatusEvent",
    "TimestampMixin",
]
