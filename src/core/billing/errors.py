"""
Billing domain exceptions.

Only genuinely exceptional situations raise. Incomplete enrolment
configuration is not one of them: coverage recompute treats it as a
no-op so that a half-configured enrolment never blocks a holiday edit.
"""

from typing import Any, Optional


class CoverageError(Exception):
    """Base class for billing coverage errors."""
    pass


class InvalidDateError(CoverageError, ValueError):
    """Raised when a value cannot be read as a calendar day."""

    def __init__(self, value: Any, reason: str = "") -> None:
        self.value = value
        self.reason = reason
        message = f"Invalid date: {value!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class EnrolmentNotFoundError(CoverageError):
    """Raised when a requested enrolment doesn't exist."""
    pass


class RecomputeBatchError(CoverageError):
    """
    Raised after a holiday fan-out when some enrolments failed to recompute.

    Every other enrolment in the fan-out has already been committed; the
    failed ones were rolled back individually and are listed here so the
    caller can decide whether to retry them.
    """

    def __init__(
        self,
        failures: dict[str, Exception],
        results: Optional[dict[str, Optional[str]]] = None,
    ) -> None:
        self.failures = failures
        self.results = results or {}
        ids = ", ".join(sorted(failures))
        super().__init__(f"Coverage recompute failed for {len(failures)} enrolment(s): {ids}")
