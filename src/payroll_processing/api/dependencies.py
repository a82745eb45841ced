"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_processing.services.lifecycle import LifecycleController
from payroll_processing.services.payroll_info import PayrollInfoRepository


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with request.app.state.session_factory() as session:
        yield session


def get_controller(request: Request) -> LifecycleController:
    return request.app.state.controller


def get_payroll_info(request: Request) -> PayrollInfoRepository:
    return request.app.state.payroll_info


async def get_actor_id(
    x_actor_id: Annotated[str | None, Header()] = None
) -> str | None:
    """Extract the acting administrator from header, if sent."""
    if x_actor_id is None:
        return None
    return x_actor_id.strip() or None


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Controller = Annotated[LifecycleController, Depends(get_controller)]
PayrollInfo = Annotated[PayrollInfoRepository, Depends(get_payroll_info)]
ActorId = Annotated[str | None, Depends(get_actor_id)]
