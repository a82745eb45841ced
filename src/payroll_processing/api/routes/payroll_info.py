"""Employee payroll info API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, status

from payroll_processing.api.dependencies import PayrollInfo
from payroll_processing.api.schemas import (
    ErrorResponse,
    PayrollInfoCreate,
    PayrollInfoListResponse,
    PayrollInfoResponse,
)

router = APIRouter(prefix="/payroll-info", tags=["payroll-info"])


@router.post(
    "",
    response_model=PayrollInfoResponse,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": ErrorResponse}},
)
async def create_payroll_info(
    repository: PayrollInfo,
    payload: PayrollInfoCreate,
) -> PayrollInfoResponse:
    """Create an effective-dated payroll info record for an employee."""
    info = await repository.create(**payload.model_dump())
    return PayrollInfoResponse.model_validate(info)


@router.get("", response_model=PayrollInfoListResponse)
async def list_payroll_info(
    repository: PayrollInfo,
    employee_id: str | None = None,
    pay_group: str | None = None,
) -> PayrollInfoListResponse:
    """List payroll info records, optionally for one employee or pay group."""
    records = await repository.list_records(employee_id=employee_id, pay_group=pay_group)
    return PayrollInfoListResponse(
        items=[PayrollInfoResponse.model_validate(r) for r in records],
        total=len(records),
    )


@router.get(
    "/{info_id}",
    response_model=PayrollInfoResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_payroll_info(
    repository: PayrollInfo,
    info_id: Annotated[UUID, Path()],
) -> PayrollInfoResponse:
    """Get a specific payroll info record by ID."""
    return PayrollInfoResponse.model_validate(await repository.get(info_id))
