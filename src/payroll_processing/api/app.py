"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payroll_processing.api.routes import (
    health_router,
    payroll_info_router,
    periods_router,
    runs_router,
)
from payroll_processing.calculators.engine import CalculationEngine
from payroll_processing.config import Settings, get_settings
from payroll_processing.database import create_schema, create_session_factory, get_engine
from payroll_processing.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PayrollError,
    SystemicFailure,
    ValidationError,
)
from payroll_processing.services.lifecycle import LifecycleController
from payroll_processing.services.payroll_info import PayrollInfoRepository
from payroll_processing.services.period_store import PeriodStore
from payroll_processing.services.progress import ProgressReporter
from payroll_processing.services.task_runner import TaskRunner

logger = logging.getLogger(__name__)

# Most specific first; the first isinstance match wins
ERROR_STATUS_CODES: list[tuple[type[PayrollError], int]] = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (SystemicFailure, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_code_for(exc: PayrollError) -> int:
    for error_type, code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


def create_app(
    settings: Settings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    runner: TaskRunner | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    ``session_factory`` and ``runner`` may be injected (tests); otherwise
    they are built from settings at startup.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        # Startup
        engine = None
        factory = session_factory
        if factory is None:
            engine = get_engine(settings.database_url)
            factory = create_session_factory(engine)
            if settings.create_schema:
                await create_schema(engine)

        store = PeriodStore(factory)
        task_runner = runner or TaskRunner(settings)
        app.state.settings = settings
        app.state.session_factory = factory
        app.state.runner = task_runner
        app.state.payroll_info = PayrollInfoRepository(factory)
        app.state.controller = LifecycleController(
            store=store,
            reporter=ProgressReporter(factory),
            engine=CalculationEngine(settings, store=store),
            runner=task_runner,
            settings=settings,
        )
        logger.info("Payroll processing API started (engine %s)", settings.engine_version)
        yield
        # Shutdown
        await task_runner.join()
        if engine is not None:
            await engine.dispose()

    app = FastAPI(
        title="Payroll Processing API",
        description="Payroll period lifecycle and calculation service",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(PayrollError)
    async def payroll_error_handler(request: Request, exc: PayrollError) -> JSONResponse:
        """Map domain errors to their HTTP status."""
        return JSONResponse(
            status_code=status_code_for(exc),
            content={"detail": exc.message, "code": exc.code},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(periods_router, prefix="/api/v1")
    app.include_router(runs_router, prefix="/api/v1")
    app.include_router(payroll_info_router, prefix="/api/v1")

    return app
