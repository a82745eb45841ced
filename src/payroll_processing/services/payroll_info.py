"""Employee payroll info records, the calculation engine's inputs."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payroll_processing.calculators.deductions import DeductionConfigError, build_rules
from payroll_processing.calculators.types import RateBasis
from payroll_processing.errors import NotFoundError, ValidationError
from payroll_processing.models import EmployeePayrollInfo

logger = logging.getLogger(__name__)


class PayrollInfoRepository:
    """Create and read EmployeePayrollInfo records.

    Records are effective-dated; a new rate is a new record, not an edit.
    A record with no rate is accepted so it can be completed later, but the
    engine skips the employee until then.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(
        self,
        *,
        employee_id: str,
        rate_basis: str,
        effective_date: date,
        rate: Decimal | None = None,
        employee_name: str | None = None,
        employee_number: str | None = None,
        pay_group: str = "default",
        days_per_period: Decimal | None = None,
        hours_per_period: Decimal | None = None,
        end_date: date | None = None,
        is_active: bool = True,
        deduction_config: list[dict[str, Any]] | None = None,
    ) -> EmployeePayrollInfo:
        """Validate and store a payroll info record."""
        try:
            RateBasis(rate_basis)
        except ValueError as e:
            raise ValidationError(f"Unknown rate basis '{rate_basis}'") from e
        if end_date is not None and end_date < effective_date:
            raise ValidationError("end_date must not be before effective_date")

        config = list(deduction_config or [])
        try:
            build_rules(config)
        except DeductionConfigError as e:
            raise ValidationError(f"Invalid deduction config: {e}") from e

        info = EmployeePayrollInfo(
            employee_id=employee_id,
            employee_name=employee_name,
            employee_number=employee_number,
            pay_group=pay_group,
            rate_basis=rate_basis,
            rate=rate,
            days_per_period=days_per_period,
            hours_per_period=hours_per_period,
            effective_date=effective_date,
            end_date=end_date,
            is_active=is_active,
            deduction_config=config,
        )
        async with self.session_factory() as session:
            async with session.begin():
                session.add(info)

        logger.info("Created payroll info %s for employee %s", info.id, employee_id)
        return info

    async def get(self, info_id: UUID) -> EmployeePayrollInfo:
        async with self.session_factory() as session:
            info = await session.get(EmployeePayrollInfo, info_id)
            if info is None:
                raise NotFoundError("Payroll info", info_id)
            return info

    async def list_records(
        self,
        employee_id: str | None = None,
        pay_group: str | None = None,
    ) -> list[EmployeePayrollInfo]:
        """List records by employee, latest effective date first."""
        query = select(EmployeePayrollInfo)
        if employee_id:
            query = query.where(EmployeePayrollInfo.employee_id == employee_id)
        if pay_group:
            query = query.where(EmployeePayrollInfo.pay_group == pay_group)
        query = query.order_by(
            EmployeePayrollInfo.employee_id,
            EmployeePayrollInfo.effective_date.desc(),
        )

        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())
