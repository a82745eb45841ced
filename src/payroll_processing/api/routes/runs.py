"""Calculation run API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path

from payroll_processing.api.dependencies import Controller
from payroll_processing.api.schemas import ErrorResponse, RunResponse

router = APIRouter(prefix="/runs", tags=["runs"])


@router.get(
    "/{run_id}",
    response_model=RunResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_run(
    controller: Controller,
    run_id: Annotated[UUID, Path()],
) -> RunResponse:
    """Get the status and progress of a calculation run."""
    return RunResponse.model_validate(await controller.get_run(run_id))
