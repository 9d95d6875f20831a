"""
Exception hierarchy for the harness.

Every failure the scenario can report maps onto one of four kinds:
configuration, not found, conflict and transient backend errors.
"""

from typing import Any, Dict, Optional
from uuid import UUID


class OccReproError(Exception):
    """
    Base exception for all harness errors.

    Attributes:
        message: Error message
        details: Additional error details
        error_code: Error code for identification
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        self.message = message
        self.details = details or {}
        self.error_code = error_code or self.__class__.__name__
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the exception to a dict.

        Returns:
            Dict with error code, message and details
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (details: {self.details})"
        return self.message


class ConfigurationError(OccReproError):
    """Missing or invalid configuration (connection string, settings)"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, details=details, error_code="CONFIGURATION")


class RecordNotFoundError(OccReproError):
    """
    A record was looked up by id and does not exist.

    Example:
        >>> raise RecordNotFoundError(person_id=42)
    """

    def __init__(self, person_id: int):
        super().__init__(
            message=f"Person {person_id} not found",
            details={"person_id": person_id},
            error_code="NOT_FOUND"
        )
        self.person_id = person_id


class ConcurrencyConflictError(OccReproError):
    """
    A conditioned update affected zero rows.

    The row was changed (or deleted) by someone else after this session
    loaded it.

    Attributes:
        person_id: Id of the conflicting record
        expected_token: Token the update was conditioned on
        current_token: Token stored in the database at conflict time,
            None if the row no longer exists
    """

    def __init__(
        self,
        person_id: int,
        expected_token: Optional[UUID],
        current_token: Optional[UUID] = None
    ):
        super().__init__(
            message=f"Concurrency conflict on person {person_id}",
            details={
                "person_id": person_id,
                "expected_token": str(expected_token) if expected_token else None,
                "current_token": str(current_token) if current_token else None,
            },
            error_code="CONFLICT"
        )
        self.person_id = person_id
        self.expected_token = expected_token
        self.current_token = current_token


class TransientBackendError(OccReproError):
    """Connection loss, lock contention or another retryable backend failure"""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: str = "TRANSIENT"
    ):
        super().__init__(message=message, details=details, error_code=error_code)


class BackendTimeoutError(TransientBackendError):
    """A save attempt exceeded the configured command timeout"""

    def __init__(self, operation: str, timeout: float):
        super().__init__(
            message=f"{operation} timed out after {timeout:.1f}s",
            details={"operation": operation, "timeout": timeout},
            error_code="TIMEOUT"
        )
        self.operation = operation
        self.timeout = timeout
