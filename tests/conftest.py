"""Pytest fixtures for payroll processing tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from payroll_processing.api.app import create_app
from payroll_processing.calculators.engine import CalculationEngine
from payroll_processing.calculators.types import CalculationResult, DeductionLine
from payroll_processing.config import Settings
from payroll_processing.database import create_schema, create_session_factory, get_engine
from payroll_processing.models import EmployeePayrollInfo, PayrollPeriod
from payroll_processing.services.lifecycle import LifecycleController
from payroll_processing.services.payroll_info import PayrollInfoRepository
from payroll_processing.services.period_store import PeriodStore
from payroll_processing.services.progress import ProgressReporter
from payroll_processing.services.task_runner import Job, TaskRunner

# Standard deductions used across tests: 4.5% pre-tax contribution capped
# at 1350, a fixed 500 health plan, and a progressive withholding table.
STANDARD_DEDUCTIONS: list[dict[str, Any]] = [
    {"code": "SSS", "kind": "percent", "rate": "4.5", "cap": "1350", "pre_tax": True},
    {"code": "HMO", "kind": "fixed", "amount": "500"},
    {
        "code": "WTAX",
        "kind": "bracket",
        "brackets": [
            {"over": "0", "rate": "0"},
            {"over": "20833", "rate": "15", "base_amount": "0"},
            {"over": "33333", "rate": "20", "base_amount": "1875"},
        ],
    },
]


def make_settings(database_url: str = "sqlite+aiosqlite://", **overrides: Any) -> Settings:
    """Settings for tests: fast retries, small progress batches."""
    values: dict[str, Any] = {
        "database_url": database_url,
        "engine_version": "1.0.0-test",
        "host": "127.0.0.1",
        "port": 8000,
        "debug": False,
        "store_retry_attempts": 2,
        "store_retry_max_wait": 0.01,
        "progress_batch_size": 3,
        "create_schema": False,
    }
    values.update(overrides)
    return Settings(**values)


def make_result(
    employee_id: str, gross: str = "1000.00", deduction: str = "45.00"
) -> CalculationResult:
    """A calculation with one pre-tax deduction, for store-level tests."""
    gross_pay = Decimal(gross)
    amount = Decimal(deduction)
    return CalculationResult(
        calculation_id=uuid4(),
        employee_id=employee_id,
        gross_pay=gross_pay,
        deductions=(DeductionLine(code="SSS", amount=amount, pre_tax=True),),
        total_deductions=amount,
        net_pay=gross_pay - amount,
        fingerprint="f" * 32,
    )


class RecordingRunner(TaskRunner):
    """TaskRunner that holds dispatched jobs until ``run_pending`` is awaited.

    Lets tests observe a period while its run is still pending, and run the
    calculation deterministically.
    """

    def __init__(self, settings: Settings):
        super().__init__(settings)
        self.jobs: list[tuple[str | None, Job]] = []

    def dispatch(self, job: Job, name: str | None = None) -> None:  # type: ignore[override]
        self.jobs.append((name, job))

    async def run_pending(self) -> None:
        while self.jobs:
            _, job = self.jobs.pop(0)
            await job()


# Use a temp-file SQLite database per test, so separate connections
# (request handlers and background runs) see each other's commits.
@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(f"sqlite+aiosqlite:///{tmp_path / 'payroll.db'}")


@pytest_asyncio.fixture
async def db_engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """Create test database engine with the schema in place."""
    engine = get_engine(settings.database_url)
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(db_engine)


@pytest.fixture
def store(session_factory) -> PeriodStore:
    return PeriodStore(session_factory)


@pytest.fixture
def reporter(session_factory) -> ProgressReporter:
    return ProgressReporter(session_factory)


@pytest.fixture
def payroll_info(session_factory) -> PayrollInfoRepository:
    return PayrollInfoRepository(session_factory)


@pytest.fixture
def runner(settings: Settings) -> RecordingRunner:
    return RecordingRunner(settings)


@pytest.fixture
def controller(store, reporter, runner, settings) -> LifecycleController:
    return LifecycleController(
        store=store,
        reporter=reporter,
        engine=CalculationEngine(settings, store=store),
        runner=runner,
        settings=settings,
    )


@pytest_asyncio.fixture
async def client(settings, session_factory, runner) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing."""
    app = create_app(settings=settings, session_factory=session_factory, runner=runner)
    async with app.router.lifespan_context(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client


@pytest_asyncio.fixture
async def draft_period(controller: LifecycleController) -> PayrollPeriod:
    """A monthly draft period for January 2026 in the default pay group."""
    return await controller.create_period(
        name="January 2026",
        period_type="monthly",
        start_date=date(2026, 1, 1),
        end_date=date(2026, 1, 31),
        pay_date=date(2026, 2, 5),
        actor="admin-1",
    )


@pytest.fixture
def add_payroll_info(
    payroll_info: PayrollInfoRepository,
) -> Callable[..., Awaitable[EmployeePayrollInfo]]:
    """Factory for payroll info records effective from 2025-01-01."""

    async def _add(
        employee_id: str,
        rate: Decimal | None = Decimal("30000"),
        rate_basis: str = "monthly",
        **fields: Any,
    ) -> EmployeePayrollInfo:
        fields.setdefault("effective_date", date(2025, 1, 1))
        fields.setdefault("deduction_config", STANDARD_DEDUCTIONS)
        return await payroll_info.create(
            employee_id=employee_id,
            rate=rate,
            rate_basis=rate_basis,
            **fields,
        )

    return _add
