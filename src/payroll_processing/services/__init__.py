"""Payroll processing services."""

from payroll_processing.services.lifecycle import LifecycleController
from payroll_processing.services.payroll_info import PayrollInfoRepository
from payroll_processing.services.period_store import PeriodFilters, PeriodStore
from payroll_processing.services.progress import ProgressReporter
from payroll_processing.services.state_machine import (
    PeriodAction,
    PeriodStateMachine,
    PeriodStatus,
    RunStatus,
)
from payroll_processing.services.task_runner import TaskRunner

__all__ = [
    "LifecycleController",
    "PayrollInfoRepository",
    "PeriodAction",
    "PeriodFilters",
    "PeriodStateMachine",
    "PeriodStatus",
    "PeriodStore",
    "ProgressReporter",
    "RunStatus",
    "TaskRunner",
]
