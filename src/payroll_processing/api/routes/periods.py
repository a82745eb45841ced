"""Payroll period API endpoints."""

from decimal import Decimal
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from payroll_processing.api.dependencies import ActorId, Controller
from payroll_processing.api.schemas import (
    CalculationListResponse,
    CalculationResponse,
    CancelRequest,
    ErrorResponse,
    PeriodCreate,
    PeriodListResponse,
    PeriodResponse,
    PeriodUpdate,
    RecalculateResponse,
    RunResponse,
    StatusEventResponse,
)
from payroll_processing.models import PayrollPeriod
from payroll_processing.services.period_store import PeriodFilters
from payroll_processing.services.state_machine import PeriodStateMachine

router = APIRouter(prefix="/periods", tags=["periods"])


def _period_response(period: PayrollPeriod) -> PeriodResponse:
    resp = PeriodResponse.model_validate(period)
    resp.allowed_actions = PeriodStateMachine.get_allowed_actions(period.status)
    return resp


# ============================================================================
# Period CRUD
# ============================================================================


@router.post(
    "",
    response_model=PeriodResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def create_period(
    controller: Controller,
    actor_id: ActorId,
    payload: PeriodCreate,
) -> PeriodResponse:
    """Create a new payroll period in draft status."""
    period = await controller.create_period(actor=actor_id, **payload.model_dump())
    return _period_response(period)


@router.get("", response_model=PeriodListResponse)
async def list_periods(
    controller: Controller,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 20,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    period_type: str | None = None,
    pay_group: str | None = None,
    search: str | None = None,
    year: Annotated[int | None, Query(ge=1900, le=9999)] = None,
) -> PeriodListResponse:
    """List payroll periods with optional filters."""
    filters = PeriodFilters(
        status=status_filter,
        period_type=period_type,
        pay_group=pay_group,
        search=search,
        year=year,
        offset=(page - 1) * page_size,
        limit=page_size,
    )
    periods = await controller.list_periods(filters)
    total = await controller.count_periods(filters)

    return PeriodListResponse(
        items=[_period_response(p) for p in periods],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get(
    "/{period_id}",
    response_model=PeriodResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_period(
    controller: Controller,
    period_id: Annotated[UUID, Path()],
) -> PeriodResponse:
    """Get a specific payroll period by ID."""
    return _period_response(await controller.get_period(period_id))


@router.patch(
    "/{period_id}",
    response_model=PeriodResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def update_period(
    controller: Controller,
    period_id: Annotated[UUID, Path()],
    payload: PeriodUpdate,
) -> PeriodResponse:
    """Edit a draft period."""
    changes = payload.model_dump(exclude_unset=True)
    period = await controller.update_period(period_id, changes)
    return _period_response(period)


# ============================================================================
# Period State Transitions
# ============================================================================


@router.post(
    "/{period_id}/recalculate",
    response_model=RecalculateResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def recalculate_period(
    controller: Controller,
    actor_id: ActorId,
    period_id: Annotated[UUID, Path()],
) -> RecalculateResponse:
    """Start a calculation run. Poll GET /runs/{run_id} for progress."""
    run = await controller.recalculate(period_id, actor=actor_id)
    return RecalculateResponse(
        run_id=run.id,
        period_id=run.period_id,
        status=run.status,
        progress_percent=run.progress_percent,
    )


@router.post(
    "/{period_id}/approve",
    response_model=PeriodResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def approve_period(
    controller: Controller,
    actor_id: ActorId,
    period_id: Annotated[UUID, Path()],
) -> PeriodResponse:
    """Approve a calculated period."""
    return _period_response(await controller.approve(period_id, actor=actor_id))


@router.post(
    "/{period_id}/cancel",
    response_model=PeriodResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def cancel_period(
    controller: Controller,
    actor_id: ActorId,
    period_id: Annotated[UUID, Path()],
    payload: CancelRequest | None = None,
) -> PeriodResponse:
    """Cancel a period that is not yet approved."""
    reason = payload.reason if payload else None
    period = await controller.cancel(period_id, actor=actor_id, reason=reason)
    return _period_response(period)


# ============================================================================
# Period Results
# ============================================================================


@router.get(
    "/{period_id}/calculations",
    response_model=CalculationListResponse,
    responses={404: {"model": ErrorResponse}},
)
async def list_calculations(
    controller: Controller,
    period_id: Annotated[UUID, Path()],
) -> CalculationListResponse:
    """List the current per-employee calculations of a period."""
    calculations = await controller.list_calculations(period_id)
    items = [CalculationResponse.model_validate(c) for c in calculations]

    return CalculationListResponse(
        items=items,
        total=len(items),
        total_gross_pay=sum((c.gross_pay for c in items), Decimal("0")),
        total_deductions=sum((c.total_deductions for c in items), Decimal("0")),
        total_net_pay=sum((c.net_pay for c in items), Decimal("0")),
    )


@router.get(
    "/{period_id}/runs",
    response_model=list[RunResponse],
    responses={404: {"model": ErrorResponse}},
)
async def list_runs(
    controller: Controller,
    period_id: Annotated[UUID, Path()],
) -> list[RunResponse]:
    """List calculation runs of a period, newest first."""
    runs = await controller.list_runs(period_id)
    return [RunResponse.model_validate(r) for r in runs]


@router.get(
    "/{period_id}/history",
    response_model=list[StatusEventResponse],
    responses={404: {"model": ErrorResponse}},
)
async def period_history(
    controller: Controller,
    period_id: Annotated[UUID, Path()],
) -> list[StatusEventResponse]:
    """List status changes of a period, oldest first."""
    events = await controller.history(period_id)
    return [StatusEventResponse.model_validate(e) for e in events]
