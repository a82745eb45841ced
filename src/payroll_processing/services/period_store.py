"""Persistence for payroll periods, their calculations and status history."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Sequence
from uuid import UUID

from sqlalchemy import delete, extract, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payroll_processing.calculators.types import PayrollInfoSnapshot, PeriodSnapshot
from payroll_processing.errors import (
    ConflictError,
    NotFoundError,
    StaleRunError,
    ValidationError,
)
from payroll_processing.models import (
    EmployeePayrollInfo,
    PayrollCalculation,
    PayrollPeriod,
    PeriodStatusEvent,
)
from payroll_processing.models.base import utcnow
from payroll_processing.services.state_machine import PeriodStateMachine, PeriodStatus

if TYPE_CHECKING:
    from payroll_processing.calculators.types import CalculationResult

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "period_type", "start_date", "end_date", "cutoff_date", "pay_date")
REQUIRED_FIELDS = ("name", "period_type", "start_date", "end_date")


@dataclass(frozen=True)
class PeriodFilters:
    """Filters for listing periods."""

    status: str | None = None
    period_type: str | None = None
    pay_group: str | None = None
    search: str | None = None
    year: int | None = None
    offset: int = 0
    limit: int | None = None


def validate_period_dates(
    start_date: date,
    end_date: date,
    pay_date: date | None = None,
) -> None:
    """Raise ValidationError for an inverted or empty range."""
    if end_date <= start_date:
        raise ValidationError("end_date must be after start_date")
    if pay_date is not None and pay_date <= end_date:
        raise ValidationError("pay_date must be after end_date")


class PeriodStore:
    """Store for PayrollPeriod and PayrollCalculation rows.

    Every status change is a compare-and-swap: a conditional UPDATE on the
    expected prior status that also bumps ``version``. A status event is
    written in the same transaction. Each operation opens its own session,
    so the store can be shared by request handlers and background runs.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(
        self,
        *,
        name: str,
        period_type: str,
        start_date: date,
        end_date: date,
        pay_group: str = "default",
        cutoff_date: date | None = None,
        pay_date: date | None = None,
        actor: str | None = None,
    ) -> PayrollPeriod:
        """Create a period in draft status."""
        validate_period_dates(start_date, end_date, pay_date)

        async with self.session_factory() as session:
            async with session.begin():
                await self._check_overlap(session, pay_group, start_date, end_date)

                period = PayrollPeriod(
                    name=name,
                    period_type=period_type,
                    pay_group=pay_group,
                    start_date=start_date,
                    end_date=end_date,
                    cutoff_date=cutoff_date,
                    pay_date=pay_date,
                    status=PeriodStatus.DRAFT.value,
                    version=1,
                )
                session.add(period)
                await session.flush()

                session.add(
                    PeriodStatusEvent(
                        period_id=period.id,
                        from_status=None,
                        to_status=PeriodStatus.DRAFT.value,
                        actor=actor,
                    )
                )

        logger.info("Created payroll period %s (%s)", period.id, name)
        return period

    async def get(self, period_id: UUID) -> PayrollPeriod:
        """Load a period or raise NotFoundError."""
        async with self.session_factory() as session:
            period = await session.get(PayrollPeriod, period_id)
            if period is None:
                raise NotFoundError("Payroll period", period_id)
            return period

    async def list_periods(self, filters: PeriodFilters | None = None) -> list[PayrollPeriod]:
        """List periods matching filters, newest start date first."""
        query = self._filtered_query(select(PayrollPeriod), filters or PeriodFilters())
        query = query.order_by(PayrollPeriod.start_date.desc(), PayrollPeriod.id)
        if filters is not None:
            query = query.offset(filters.offset)
            if filters.limit is not None:
                query = query.limit(filters.limit)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def count_periods(self, filters: PeriodFilters | None = None) -> int:
        """Count periods matching filters, ignoring pagination."""
        query = self._filtered_query(
            select(func.count()).select_from(PayrollPeriod), filters or PeriodFilters()
        )
        async with self.session_factory() as session:
            return await session.scalar(query) or 0

    async def update(self, period_id: UUID, changes: dict[str, Any]) -> PayrollPeriod:
        """Edit the details of a draft period."""
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        cleared = sorted(f for f in REQUIRED_FIELDS if f in changes and changes[f] is None)
        if cleared:
            raise ValidationError(f"Fields cannot be cleared: {', '.join(cleared)}")

        async with self.session_factory() as session:
            async with session.begin():
                period = await session.get(PayrollPeriod, period_id)
                if period is None:
                    raise NotFoundError("Payroll period", period_id)
                if not PeriodStateMachine.can_edit(period.status):
                    raise ConflictError(
                        f"Only draft periods can be edited (current: {period.status})"
                    )

                start_date = changes.get("start_date", period.start_date)
                end_date = changes.get("end_date", period.end_date)
                validate_period_dates(start_date, end_date, changes.get("pay_date", period.pay_date))
                await self._check_overlap(
                    session, period.pay_group, start_date, end_date, exclude_id=period_id
                )

                # Conditional on the version we read, so a concurrent
                # transition cannot be overwritten
                result = await session.execute(
                    update(PayrollPeriod)
                    .where(
                        PayrollPeriod.id == period_id,
                        PayrollPeriod.status == PeriodStatus.DRAFT.value,
                        PayrollPeriod.version == period.version,
                    )
                    .values(**changes)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    raise ConflictError(f"Payroll period {period_id} changed concurrently")

        return await self.get(period_id)

    async def set_status(
        self,
        period_id: UUID,
        expected_status: str,
        new_status: str,
        *,
        expected_run_id: UUID | None = None,
        actor: str | None = None,
        reason: str | None = None,
        values: dict[str, Any] | None = None,
    ) -> PayrollPeriod:
        """Compare-and-swap the period status.

        Raises ConflictError if the stored status (or owning run, when
        ``expected_run_id`` is given) no longer matches.
        """
        async with self.session_factory() as session:
            async with session.begin():
                await self._swap_status(
                    session,
                    period_id,
                    expected_status,
                    new_status,
                    expected_run_id=expected_run_id,
                    actor=actor,
                    reason=reason,
                    values=values,
                )

        logger.info(
            "Period %s status %s -> %s%s",
            period_id,
            expected_status,
            new_status,
            f" ({reason})" if reason else "",
        )
        return await self.get(period_id)

    async def replace_calculations(
        self,
        period_id: UUID,
        run_id: UUID,
        calculations: Sequence[CalculationResult],
        *,
        total_employees: int | None = None,
        finalize: Callable[[AsyncSession], Awaitable[None]] | None = None,
    ) -> PayrollPeriod:
        """Atomically swap in a run's calculations and mark the period calculated.

        Deletes every prior calculation of the period and inserts the new
        ones in the same transaction as the calculating → calculated swap.
        ``finalize`` is awaited with the session before commit, so the run
        record can be closed in that same transaction.
        If the run no longer owns the period (cancelled, or superseded),
        raises StaleRunError and writes nothing.
        """
        gross = sum((c.gross_pay for c in calculations), Decimal("0"))
        deductions = sum((c.total_deductions for c in calculations), Decimal("0"))
        net = sum((c.net_pay for c in calculations), Decimal("0"))
        computed_at = utcnow()

        async with self.session_factory() as session:
            async with session.begin():
                try:
                    await self._swap_status(
                        session,
                        period_id,
                        PeriodStatus.CALCULATING.value,
                        PeriodStatus.CALCULATED.value,
                        expected_run_id=run_id,
                        values={
                            "total_employees": (
                                len(calculations) if total_employees is None else total_employees
                            ),
                            "total_gross_pay": gross,
                            "total_deductions": deductions,
                            "total_net_pay": net,
                            "calculated_at": computed_at,
                        },
                    )
                except ConflictError as e:
                    raise StaleRunError(period_id, run_id) from e

                await session.execute(
                    delete(PayrollCalculation)
                    .where(PayrollCalculation.period_id == period_id)
                    .execution_options(synchronize_session=False)
                )
                session.add_all(
                    PayrollCalculation(
                        id=calc.calculation_id,
                        period_id=period_id,
                        run_id=run_id,
                        employee_id=calc.employee_id,
                        gross_pay=calc.gross_pay,
                        total_deductions=calc.total_deductions,
                        net_pay=calc.net_pay,
                        deductions=[d.to_canonical_dict() for d in calc.deductions],
                        fingerprint=calc.fingerprint,
                        computed_at=computed_at,
                    )
                    for calc in calculations
                )
                if finalize is not None:
                    await finalize(session)

        logger.info(
            "Stored %d calculation(s) for period %s from run %s",
            len(calculations),
            period_id,
            run_id,
        )
        return await self.get(period_id)

    async def list_calculations(self, period_id: UUID) -> list[PayrollCalculation]:
        """List the current calculations of a period."""
        async with self.session_factory() as session:
            if await session.get(PayrollPeriod, period_id) is None:
                raise NotFoundError("Payroll period", period_id)
            result = await session.execute(
                select(PayrollCalculation)
                .where(PayrollCalculation.period_id == period_id)
                .order_by(PayrollCalculation.employee_id)
            )
            return list(result.scalars().all())

    async def count_calculations(self, period_id: UUID) -> int:
        async with self.session_factory() as session:
            return await session.scalar(
                select(func.count())
                .select_from(PayrollCalculation)
                .where(PayrollCalculation.period_id == period_id)
            ) or 0

    async def history(self, period_id: UUID) -> list[PeriodStatusEvent]:
        """Status changes of a period, oldest first."""
        async with self.session_factory() as session:
            if await session.get(PayrollPeriod, period_id) is None:
                raise NotFoundError("Payroll period", period_id)
            result = await session.execute(
                select(PeriodStatusEvent)
                .where(PeriodStatusEvent.period_id == period_id)
                .order_by(PeriodStatusEvent.occurred_at, PeriodStatusEvent.id)
            )
            return list(result.scalars().all())

    async def load_calculation_inputs(
        self, period_id: UUID
    ) -> tuple[PeriodSnapshot, list[PayrollInfoSnapshot]]:
        """Snapshot the period and the payroll info records effective during it."""
        async with self.session_factory() as session:
            period = await session.get(PayrollPeriod, period_id)
            if period is None:
                raise NotFoundError("Payroll period", period_id)

            result = await session.execute(
                select(EmployeePayrollInfo)
                .where(
                    EmployeePayrollInfo.pay_group == period.pay_group,
                    EmployeePayrollInfo.is_active.is_(True),
                    EmployeePayrollInfo.effective_date <= period.end_date,
                    or_(
                        EmployeePayrollInfo.end_date.is_(None),
                        EmployeePayrollInfo.end_date >= period.start_date,
                    ),
                )
                .order_by(EmployeePayrollInfo.employee_id, EmployeePayrollInfo.id)
            )
            infos = [PayrollInfoSnapshot.from_model(i) for i in result.scalars().all()]
            return PeriodSnapshot.from_model(period), infos

    # === Internal helpers ===

    async def _swap_status(
        self,
        session: AsyncSession,
        period_id: UUID,
        expected_status: str,
        new_status: str,
        *,
        expected_run_id: UUID | None = None,
        actor: str | None = None,
        reason: str | None = None,
        values: dict[str, Any] | None = None,
    ) -> None:
        conditions = [
            PayrollPeriod.id == period_id,
            PayrollPeriod.status == expected_status,
        ]
        if expected_run_id is not None:
            conditions.append(PayrollPeriod.active_run_id == expected_run_id)

        result = await session.execute(
            update(PayrollPeriod)
            .where(*conditions)
            .values(status=new_status, version=PayrollPeriod.version + 1, **(values or {}))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            current = await session.scalar(
                select(PayrollPeriod.status).where(PayrollPeriod.id == period_id)
            )
            if current is None:
                raise NotFoundError("Payroll period", period_id)
            raise ConflictError(
                f"Payroll period {period_id} is '{current}', expected '{expected_status}'"
            )

        session.add(
            PeriodStatusEvent(
                period_id=period_id,
                from_status=expected_status,
                to_status=new_status,
                actor=actor,
                reason=reason,
                run_id=(values or {}).get("active_run_id", expected_run_id),
            )
        )

    async def _check_overlap(
        self,
        session: AsyncSession,
        pay_group: str,
        start_date: date,
        end_date: date,
        exclude_id: UUID | None = None,
    ) -> None:
        query = select(PayrollPeriod.id, PayrollPeriod.name).where(
            PayrollPeriod.pay_group == pay_group,
            PayrollPeriod.status != PeriodStatus.CANCELLED.value,
            PayrollPeriod.start_date <= end_date,
            PayrollPeriod.end_date >= start_date,
        )
        if exclude_id is not None:
            query = query.where(PayrollPeriod.id != exclude_id)

        clash = (await session.execute(query.limit(1))).first()
        if clash is not None:
            raise ConflictError(
                f"Period overlaps '{clash.name}' ({clash.id}) in pay group '{pay_group}'"
            )

    @staticmethod
    def _filtered_query(query: Any, filters: PeriodFilters) -> Any:
        if filters.status and filters.status != "all":
            query = query.where(PayrollPeriod.status == filters.status)
        if filters.period_type and filters.period_type != "all":
            query = query.where(PayrollPeriod.period_type == filters.period_type)
        if filters.pay_group:
            query = query.where(PayrollPeriod.pay_group == filters.pay_group)
        if filters.search:
            query = query.where(func.lower(PayrollPeriod.name).contains(filters.search.lower()))
        if filters.year:
            query = query.where(extract("year", PayrollPeriod.start_date) == filters.year)
        return query
