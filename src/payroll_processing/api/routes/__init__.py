"""API routes."""

from payroll_processing.api.routes.health import router as health_router
from payroll_processing.api.routes.payroll_info import router as payroll_info_router
from payroll_processing.api.routes.periods import router as periods_router
from payroll_processing.api.routes.runs import router as runs_router

__all__ = ["health_router", "payroll_info_router", "periods_router", "runs_router"]
