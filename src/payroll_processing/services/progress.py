"""Progress tracking for calculation runs."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payroll_processing.errors import ConflictError, NotFoundError, PayrollError
from payroll_processing.models import ACTIVE_RUN_STATUSES, CalculationRun
from payroll_processing.models.base import utcnow
from payroll_processing.services.state_machine import RunStatus

if TYPE_CHECKING:
    from payroll_processing.calculators.types import CalculationOutcome

logger = logging.getLogger(__name__)


class ProgressReporter:
    """Owns CalculationRun rows and exposes them to pollers.

    Rules:
    - At most one non-terminal run per period (partial unique index).
    - Progress never decreases within a run; lower values are ignored.
    - Terminal runs (succeeded/failed) are never mutated again.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def start(self, period_id: UUID, prior_status: str | None = None) -> UUID:
        """Open a pending run for a period, or raise ConflictError if one is active."""
        run = CalculationRun(
            period_id=period_id,
            status=RunStatus.PENDING.value,
            prior_status=prior_status,
            progress_percent=0,
        )
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(run)
        except IntegrityError as e:
            raise ConflictError(
                f"A calculation run is already active for period {period_id}"
            ) from e

        logger.info("Started calculation run %s for period %s", run.id, period_id)
        return run.id

    async def begin(self, run_id: UUID, total_employees: int) -> None:
        """Mark a pending run as running with its employee count."""
        await self._mutate(
            run_id,
            status=RunStatus.RUNNING.value,
            total_employees=total_employees,
        )

    async def report_progress(
        self,
        run_id: UUID,
        percent: int,
        processed_employees: int | None = None,
        failed_employees: int | None = None,
    ) -> None:
        """Record progress; values below the stored percentage are ignored."""
        percent = max(0, min(100, int(percent)))
        values: dict[str, object] = {
            "status": RunStatus.RUNNING.value,
            "progress_percent": percent,
        }
        if processed_employees is not None:
            values["processed_employees"] = processed_employees
        if failed_employees is not None:
            values["failed_employees"] = failed_employees

        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(CalculationRun)
                    .where(
                        CalculationRun.id == run_id,
                        CalculationRun.status.in_(ACTIVE_RUN_STATUSES),
                        CalculationRun.progress_percent <= percent,
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    # Either a lower value (ignored) or a terminal/unknown run
                    run = await session.get(CalculationRun, run_id)
                    if run is None:
                        raise NotFoundError("Calculation run", run_id)
                    if run.is_terminal:
                        raise ConflictError(f"Calculation run {run_id} is already {run.status}")

    async def complete(self, run_id: UUID, result: CalculationOutcome) -> CalculationRun:
        """Mark a run succeeded, attaching any skipped employees."""
        async with self.session_factory() as session:
            async with session.begin():
                await self.mark_succeeded(session, run_id, result)
        self.log_completion(run_id, result)
        return await self.get(run_id)

    async def mark_succeeded(
        self, session: AsyncSession, run_id: UUID, result: CalculationOutcome
    ) -> None:
        """Mark a run succeeded inside the caller's transaction."""
        failure = result.failure
        await self._mutate_in(
            session,
            run_id,
            status=RunStatus.SUCCEEDED.value,
            progress_percent=100,
            total_employees=result.employee_count,
            processed_employees=len(result.results),
            failed_employees=len(result.skipped),
            skipped=[s.to_dict() for s in result.skipped],
            error_code=failure.code if failure else None,
            error_message=failure.message if failure else None,
            finished_at=utcnow(),
        )

    @staticmethod
    def log_completion(run_id: UUID, result: CalculationOutcome) -> None:
        failure = result.failure
        if failure:
            logger.warning("Run %s completed with partial failure: %s", run_id, failure.message)
        else:
            logger.info("Run %s completed (%d employees)", run_id, len(result.results))

    async def fail(self, run_id: UUID, error: PayrollError | str) -> CalculationRun:
        """Mark a run failed with an error kind and message."""
        if isinstance(error, PayrollError):
            code, message = error.code, error.message
        else:
            code, message = "RUN_FAILED", error

        await self._mutate(
            run_id,
            status=RunStatus.FAILED.value,
            error_code=code,
            error_message=message,
            finished_at=utcnow(),
        )
        logger.warning("Run %s failed: %s", run_id, message)
        return await self.get(run_id)

    async def get(self, run_id: UUID) -> CalculationRun:
        """Load a run or raise NotFoundError."""
        async with self.session_factory() as session:
            run = await session.get(CalculationRun, run_id)
            if run is None:
                raise NotFoundError("Calculation run", run_id)
            return run

    async def list_for_period(self, period_id: UUID) -> list[CalculationRun]:
        """Runs of a period, newest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(CalculationRun)
                .where(CalculationRun.period_id == period_id)
                .order_by(CalculationRun.started_at.desc(), CalculationRun.id)
            )
            return list(result.scalars().all())

    async def _mutate(self, run_id: UUID, **values: object) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await self._mutate_in(session, run_id, **values)

    @staticmethod
    async def _mutate_in(session: AsyncSession, run_id: UUID, **values: object) -> None:
        """Update a non-terminal run, raising if it is terminal or unknown."""
        result = await session.execute(
            update(CalculationRun)
            .where(
                CalculationRun.id == run_id,
                CalculationRun.status.in_(ACTIVE_RUN_STATUSES),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            run = await session.get(CalculationRun, run_id)
            if run is None:
                raise NotFoundError("Calculation run", run_id)
            raise ConflictError(f"Calculation run {run_id} is already {run.status}")
