"""Payroll period lifecycle controller - orchestrates transitions and runs."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from uuid import UUID

from payroll_processing.calculators.types import CalculationOutcome
from payroll_processing.config import Settings, get_settings
from payroll_processing.errors import (
    ConflictError,
    InvalidTransitionError,
    PayrollError,
    SkippedEmployee,
    StaleRunError,
    SystemicFailure,
)
from payroll_processing.models.base import utcnow
from payroll_processing.services.state_machine import (
    PeriodAction,
    PeriodStateMachine,
    PeriodStatus,
    RunStatus,
)

if TYPE_CHECKING:
    from payroll_processing.calculators.engine import CalculationEngine
    from payroll_processing.models import (
        CalculationRun,
        PayrollCalculation,
        PayrollPeriod,
        PeriodStatusEvent,
    )
    from payroll_processing.services.period_store import PeriodFilters, PeriodStore
    from payroll_processing.services.progress import ProgressReporter
    from payroll_processing.services.task_runner import TaskRunner

logger = logging.getLogger(__name__)


class LifecycleController:
    """Service for managing the payroll period lifecycle.

    Operations:
    - recalculate: draft/calculated → calculating, dispatches a background run
    - approve: calculated → approved, only for a clean, complete calculation
    - cancel: draft/calculating/calculated → cancelled

    The period status is the only point of mutual exclusion. Every
    transition is a compare-and-swap in PeriodStore; a background run only
    writes results while it still owns the calculating transition.
    """

    def __init__(
        self,
        store: PeriodStore,
        reporter: ProgressReporter,
        engine: CalculationEngine,
        runner: TaskRunner,
        settings: Settings | None = None,
    ):
        self.store = store
        self.reporter = reporter
        self.engine = engine
        self.runner = runner
        self.settings = settings or get_settings()

    # === Periods ===

    async def create_period(self, actor: str | None = None, **fields: Any) -> PayrollPeriod:
        """Create a draft period."""
        return await self.store.create(actor=actor, **fields)

    async def update_period(self, period_id: UUID, changes: dict[str, Any]) -> PayrollPeriod:
        """Edit a draft period."""
        return await self.store.update(period_id, changes)

    async def get_period(self, period_id: UUID) -> PayrollPeriod:
        return await self.store.get(period_id)

    async def list_periods(self, filters: PeriodFilters | None = None) -> list[PayrollPeriod]:
        return await self.store.list_periods(filters)

    async def count_periods(self, filters: PeriodFilters | None = None) -> int:
        return await self.store.count_periods(filters)

    async def list_calculations(self, period_id: UUID) -> list[PayrollCalculation]:
        return await self.store.list_calculations(period_id)

    async def history(self, period_id: UUID) -> list[PeriodStatusEvent]:
        return await self.store.history(period_id)

    # === Runs ===

    async def get_run(self, run_id: UUID) -> CalculationRun:
        return await self.reporter.get(run_id)

    async def list_runs(self, period_id: UUID) -> list[CalculationRun]:
        await self.store.get(period_id)
        return await self.reporter.list_for_period(period_id)

    # === Transitions ===

    async def recalculate(self, period_id: UUID, actor: str | None = None) -> CalculationRun:
        """Start a calculation run for a period and return it without waiting.

        Raises ConflictError if a run is already active (or the period moved
        concurrently) and InvalidTransitionError from approved/cancelled.
        """
        period = await self.store.get(period_id)
        if period.status == PeriodStatus.CALCULATING.value:
            raise ConflictError(f"A calculation run is already active for period {period_id}")
        PeriodStateMachine.validate_transition(period.status, PeriodAction.RECALCULATE.value)

        prior_status = period.status
        prior_run_id = period.active_run_id

        # Only one non-terminal run per period: the loser of a race stops here
        run_id = await self.reporter.start(period_id, prior_status=prior_status)

        try:
            await self.store.set_status(
                period_id,
                prior_status,
                PeriodStatus.CALCULATING.value,
                actor=actor,
                reason=f"Calculation run {run_id}",
                values={"active_run_id": run_id},
            )
        except PayrollError as e:
            await self.reporter.fail(run_id, e)
            raise

        self.runner.dispatch(
            lambda: self._execute_run(period_id, run_id, prior_status, prior_run_id),
            name=f"calculation-run-{run_id}",
        )
        return await self.reporter.get(run_id)

    async def approve(self, period_id: UUID, actor: str | None = None) -> PayrollPeriod:
        """Approve a calculated period."""
        period = await self.store.get(period_id)
        PeriodStateMachine.validate_transition(period.status, PeriodAction.APPROVE.value)

        errors = await self._approval_errors(period)
        if errors:
            raise InvalidTransitionError(
                period.status, PeriodAction.APPROVE.value, "; ".join(errors)
            )

        return await self.store.set_status(
            period_id,
            PeriodStatus.CALCULATED.value,
            PeriodStatus.APPROVED.value,
            expected_run_id=period.active_run_id,
            actor=actor,
            values={"approved_by": actor, "approved_at": utcnow()},
        )

    async def cancel(
        self,
        period_id: UUID,
        actor: str | None = None,
        reason: str | None = None,
    ) -> PayrollPeriod:
        """Cancel a period. An in-flight run is not interrupted; its result is discarded."""
        period = await self.store.get(period_id)
        PeriodStateMachine.validate_transition(period.status, PeriodAction.CANCEL.value)

        return await self.store.set_status(
            period_id,
            period.status,
            PeriodStatus.CANCELLED.value,
            actor=actor,
            reason=reason,
            values={
                "cancelled_by": actor,
                "cancelled_at": utcnow(),
                "cancel_reason": reason,
            },
        )

    # === Background run ===

    async def _execute_run(
        self,
        period_id: UUID,
        run_id: UUID,
        prior_status: str,
        prior_run_id: UUID | None,
    ) -> None:
        """Calculate a period and store the results, as a detached task."""
        logger.info("Executing calculation run %s for period %s", run_id, period_id)
        try:
            period, infos = await self.runner.with_retry(
                lambda: self.store.load_calculation_inputs(period_id), "input loading"
            )
            eligible = self.engine.select_effective(period, infos)
            total = len(eligible)
            await self.reporter.begin(run_id, total)

            outcome = CalculationOutcome(period_id=period_id)
            batch_size = self.settings.progress_batch_size
            for index, item in enumerate(self.engine.iter_calculate(period, eligible), start=1):
                if isinstance(item, SkippedEmployee):
                    outcome.skipped.append(item)
                else:
                    outcome.results.append(item)
                if index % batch_size == 0 and index < total:
                    await self.reporter.report_progress(
                        run_id,
                        min(99, index * 100 // total),
                        processed_employees=len(outcome.results),
                        failed_employees=len(outcome.skipped),
                    )

            await self.runner.with_retry(
                lambda: self.store.replace_calculations(
                    period_id,
                    run_id,
                    outcome.results,
                    total_employees=outcome.employee_count,
                    finalize=lambda session: self.reporter.mark_succeeded(
                        session, run_id, outcome
                    ),
                ),
                "storing calculations",
            )
        except StaleRunError as e:
            logger.info("Discarding results of run %s: %s", run_id, e.message)
            await self.reporter.fail(run_id, e)
            return
        except PayrollError as e:
            await self._fail_run(period_id, run_id, prior_status, prior_run_id, e)
            return
        except Exception:
            logger.exception("Calculation run %s crashed", run_id)
            await self._fail_run(
                period_id,
                run_id,
                prior_status,
                prior_run_id,
                SystemicFailure("Unexpected error during calculation"),
            )
            raise

        self.reporter.log_completion(run_id, outcome)

    async def _fail_run(
        self,
        period_id: UUID,
        run_id: UUID,
        prior_status: str,
        prior_run_id: UUID | None,
        error: PayrollError,
    ) -> None:
        """Return the period to its prior status, then mark the run failed."""
        target = PeriodStateMachine.failure_target(prior_status)
        try:
            await self.store.set_status(
                period_id,
                PeriodStatus.CALCULATING.value,
                target,
                expected_run_id=run_id,
                reason=f"Run {run_id} failed: {error.message}",
                values={"active_run_id": prior_run_id},
            )
        except ConflictError:
            # Cancelled or superseded while running; nothing to revert
            logger.info("Period %s no longer owned by run %s; not reverting", period_id, run_id)
        except PayrollError:
            logger.exception("Could not revert period %s after run %s failed", period_id, run_id)
        await self.reporter.fail(run_id, error)

    async def _approval_errors(self, period: PayrollPeriod) -> list[str]:
        """Validate a period's calculation for approval, returning any errors."""
        errors: list[str] = []
        if period.active_run_id is None:
            return ["Period has not been calculated"]

        run = await self.reporter.get(period.active_run_id)
        if run.status != RunStatus.SUCCEEDED.value:
            errors.append(f"Latest calculation run is {run.status}")
            return errors

        if run.failed_employees:
            errors.append(f"{run.failed_employees} employee(s) have calculation errors")

        stored = await self.store.count_calculations(period.id)
        if stored == 0:
            errors.append("Period has no calculations")
        elif stored != run.processed_employees:
            errors.append(
                f"Calculations incomplete: {stored} stored, {run.processed_employees} expected"
            )
        return errors
