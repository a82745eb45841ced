"""Payroll calculation engine."""

from payroll_processing.calculators.deductions import (
    DeductionConfigError,
    DeductionRule,
    apply_rules,
    build_rules,
)
from payroll_processing.calculators.engine import CalculationEngine, MissingPayrollDataError
from payroll_processing.calculators.money import MoneyRounder
from payroll_processing.calculators.types import (
    CalculationOutcome,
    CalculationResult,
    DeductionLine,
    PayrollInfoSnapshot,
    PeriodSnapshot,
    PeriodType,
    RateBasis,
)

__all__ = [
    "CalculationEngine",
    "CalculationOutcome",
    "CalculationResult",
    "DeductionConfigError",
    "DeductionLine",
    "DeductionRule",
    "MissingPayrollDataError",
    "MoneyRounder",
    "PayrollInfoSnapshot",
    "PeriodSnapshot",
    "PeriodType",
    "RateBasis",
    "apply_rules",
    "build_rules",
]
