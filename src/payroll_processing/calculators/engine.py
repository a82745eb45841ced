"""Payroll calculation engine."""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Iterable, Iterator, Union
from uuid import UUID

from payroll_processing.calculators.deductions import (
    DeductionConfigError,
    apply_rules,
    build_rules,
)
from payroll_processing.calculators.money import MoneyRounder
from payroll_processing.calculators.types import (
    CalculationOutcome,
    CalculationResult,
    PayrollInfoSnapshot,
    PeriodSnapshot,
    RateBasis,
)
from payroll_processing.config import Settings, get_settings
from payroll_processing.errors import SkippedEmployee

if TYPE_CHECKING:
    from payroll_processing.services.period_store import PeriodStore

EmployeeOutcome = Union[CalculationResult, SkippedEmployee]

# Largest amount the calculation columns can hold
MAX_AMOUNT = Decimal("999999999999.99")


class MissingPayrollDataError(ValueError):
    """Raised when a payroll info record lacks a field the calculation needs."""


class CalculationEngine:
    """Computes per-employee payroll for a period.

    Calculation pipeline (stable order per employee):
    1) Select the payroll info record effective during the period
    2) Compute gross pay from the rate basis
    3) Apply ordered deduction rules over the taxable base
    4) Clamp deductions to available pay, so net is never negative
    5) net = gross - sum(deductions), all amounts rounded once

    ``calculate`` is a pure function of its inputs. The calculation id and
    fingerprint are derived from the inputs, so repeating a calculation on
    unchanged data yields byte-identical output.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: PeriodStore | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.rounder = MoneyRounder(
            precision=self.settings.currency_precision,
            rounding=self.settings.rounding_mode,
        )

    async def calculate_period(self, period_id: UUID) -> CalculationOutcome:
        """Load the period and its payroll info snapshot, then calculate."""
        if self.store is None:
            raise RuntimeError("CalculationEngine needs a PeriodStore to load inputs")
        period, infos = await self.store.load_calculation_inputs(period_id)
        return self.calculate(period, infos)

    def calculate(
        self,
        period: PeriodSnapshot,
        infos: Iterable[PayrollInfoSnapshot],
    ) -> CalculationOutcome:
        """Calculate every eligible employee of a period."""
        outcome = CalculationOutcome(period_id=period.period_id)
        for item in self.iter_calculate(period, infos):
            if isinstance(item, SkippedEmployee):
                outcome.skipped.append(item)
            else:
                outcome.results.append(item)
        return outcome

    def iter_calculate(
        self,
        period: PeriodSnapshot,
        infos: Iterable[PayrollInfoSnapshot],
    ) -> Iterator[EmployeeOutcome]:
        """Yield one result or skip entry per eligible employee, ordered by employee id."""
        for info in self.select_effective(period, infos):
            try:
                yield self.calculate_employee(period, info)
            except (MissingPayrollDataError, DeductionConfigError) as e:
                yield SkippedEmployee(employee_id=info.employee_id, reason=str(e))
            except InvalidOperation:
                yield SkippedEmployee(
                    employee_id=info.employee_id, reason="Amount exceeds the supported range"
                )

    def select_effective(
        self,
        period: PeriodSnapshot,
        infos: Iterable[PayrollInfoSnapshot],
    ) -> list[PayrollInfoSnapshot]:
        """Pick the latest effective record per active employee in the pay group."""
        latest: dict[str, PayrollInfoSnapshot] = {}
        for info in infos:
            if not info.is_active or info.pay_group != period.pay_group:
                continue
            if not info.is_effective_between(period.start_date, period.end_date):
                continue
            current = latest.get(info.employee_id)
            if current is None or (info.effective_date, info.record_id) > (
                current.effective_date,
                current.record_id,
            ):
                latest[info.employee_id] = info
        return [latest[k] for k in sorted(latest)]

    def calculate_employee(
        self,
        period: PeriodSnapshot,
        info: PayrollInfoSnapshot,
    ) -> CalculationResult:
        """Calculate a single employee."""
        gross = self.rounder.round(self.gross_pay(period, info))
        if gross > MAX_AMOUNT:
            raise MissingPayrollDataError("Gross pay exceeds the supported range")
        rules = build_rules(info.deduction_config)
        lines, _ = apply_rules(rules, gross, self.rounder)

        total_deductions = self.rounder.total(line.amount for line in lines)
        # Deductions are clamped to available pay, so net never goes negative
        net = gross - total_deductions

        fingerprint = self._compute_fingerprint(period, info)
        return CalculationResult(
            calculation_id=self._generate_calculation_id(
                period.period_id, info.employee_id, fingerprint
            ),
            employee_id=info.employee_id,
            gross_pay=gross,
            deductions=tuple(lines),
            total_deductions=total_deductions,
            net_pay=net,
            fingerprint=fingerprint,
        )

    def gross_pay(self, period: PeriodSnapshot, info: PayrollInfoSnapshot) -> Decimal:
        """Unrounded gross pay for the period from the configured rate basis."""
        if info.rate is None:
            raise MissingPayrollDataError("Missing rate")
        if info.rate < 0:
            raise MissingPayrollDataError("Rate must not be negative")

        try:
            basis = RateBasis(info.rate_basis)
        except ValueError as e:
            raise MissingPayrollDataError(f"Unknown rate basis '{info.rate_basis}'") from e

        if basis == RateBasis.MONTHLY:
            return info.rate * 12 / period.period_type.periods_per_year

        if basis == RateBasis.DAILY:
            if info.days_per_period is None:
                raise MissingPayrollDataError("Daily rate requires days_per_period")
            return info.rate * info.days_per_period

        if info.hours_per_period is None:
            raise MissingPayrollDataError("Hourly rate requires hours_per_period")
        return info.rate * info.hours_per_period

    def _compute_fingerprint(
        self, period: PeriodSnapshot, info: PayrollInfoSnapshot
    ) -> str:
        """Compute fingerprint of everything the calculation read."""
        data = {
            "period": period.to_canonical_dict(),
            "info": info.to_canonical_dict(),
            "precision": str(self.settings.currency_precision),
            "rounding": self.settings.rounding_mode,
        }
        json_str = json.dumps(data, sort_keys=True)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]

    def _generate_calculation_id(
        self, period_id: UUID, employee_id: str, fingerprint: str
    ) -> UUID:
        """Generate deterministic calculation ID."""
        data = {
            "period_id": str(period_id),
            "employee_id": employee_id,
            "engine_version": self.settings.engine_version,
            "inputs_fingerprint": fingerprint,
        }
        json_str = json.dumps(data, sort_keys=True)
        hash_bytes = hashlib.sha256(json_str.encode()).digest()
        return UUID(bytes=hash_bytes[:16])
