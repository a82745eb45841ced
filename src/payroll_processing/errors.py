"""Error kinds raised by the payroll processing services.

Every error carries a stable ``code`` that the HTTP layer returns alongside
a human-readable message. Storage exceptions never cross this boundary.
"""

from __future__ import annotations

from dataclasses import dataclass


class PayrollError(Exception):
    """Base class for payroll processing errors."""

    code = "PAYROLL_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(PayrollError):
    """Raised when a period, run or payroll info record does not exist."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: object):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class ConflictError(PayrollError):
    """Raised when a compare-and-swap fails or a run is already active."""

    code = "CONFLICT"


class StaleRunError(ConflictError):
    """Raised when a run's results no longer own the period transition."""

    code = "STALE_RUN"

    def __init__(self, period_id: object, run_id: object):
        self.period_id = period_id
        self.run_id = run_id
        super().__init__(
            f"Run {run_id} no longer owns period {period_id}; results discarded"
        )


class InvalidTransitionError(PayrollError):
    """Raised when an action is not legal from the period's current status."""

    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, action: str, reason: str | None = None):
        self.from_status = from_status
        self.action = action
        self.reason = reason
        msg = f"Cannot {action} a period in status '{from_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ValidationError(PayrollError):
    """Raised for malformed input such as an inverted date range."""

    code = "VALIDATION_ERROR"


class SystemicFailure(PayrollError):
    """Raised when the store is unavailable and a whole run must fail."""

    code = "SYSTEMIC_FAILURE"


@dataclass(frozen=True)
class SkippedEmployee:
    """An employee left out of a calculation, with the reason."""

    employee_id: str
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {"employee_id": self.employee_id, "reason": self.reason}


class PartialCalculationFailure(PayrollError):
    """One or more employees were skipped; the run itself still succeeded."""

    code = "PARTIAL_CALCULATION_FAILURE"

    def __init__(self, skipped: list[SkippedEmployee]):
        self.skipped = list(skipped)
        ids = ", ".join(s.employee_id for s in self.skipped)
        super().__init__(f"{len(self.skipped)} employee(s) skipped: {ids}")
