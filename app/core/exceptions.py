"""
Base exception classes for application-wide error handling.

Every domain error raised by a service carries a human-readable message,
a machine-readable error code and an optional details dict, so views can
render them uniformly.

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Malformed or missing input, nothing was written
    ├── NotFoundError - A referenced record does not exist
    └── ConflictError - The current state forbids the operation

Usage:
    from core.exceptions import ValidationError, NotFoundError

    raise ValidationError(
        "amount_cents must be positive",
        details={"amount_cents": amount_cents},
    )

    try:
        ...
    except BaseApplicationError as e:
        return Response(e.to_dict(), status=400)

Retry semantics:
    ``retry_safe`` tells callers whether the failed call is guaranteed to
    have had no side effects. When it is False the caller must re-read
    state (e.g. settlement history) before trying again.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (field errors, amounts, ids)
        retry_safe: True when the operation failed before any write
    """

    default_error_code: str = "APPLICATION_ERROR"
    retry_safe: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Returns:
            Dict with error, error_code, retry_safe and (when present)
            details keys
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
            "retry_safe": self.retry_safe,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        """Return string representation with error code."""
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, error_code={self.error_code!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input fails validation.

    Validation always runs before any write, so the call had no effect.

    Example:
        if amount_cents <= 0:
            raise ValidationError(
                "amount_cents must be positive",
                error_code="INVALID_AMOUNT",
                details={"amount_cents": amount_cents},
            )
    """

    default_error_code: str = "VALIDATION_ERROR"
    retry_safe: bool = True


class NotFoundError(BaseApplicationError):
    """
    Raised when a requested resource doesn't exist.

    Use for single-resource lookups where existence is expected; list
    queries return empty results instead.
    """

    default_error_code: str = "NOT_FOUND"
    retry_safe: bool = True


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current resource state.

    Use for:
    - Concurrent modification conflicts
    - Invalid state transitions
    - Lock contention

    Note:
        HTTP 409 Conflict is the appropriate status for these errors.
    """

    default_error_code: str = "CONFLICT"
