"""
errors.py - Domain-specific exceptions for observation_sync.

All exceptions inherit from SyncError for unified handling.
Each exception type represents a distinct failure mode.
"""

from typing import Any


class SyncError(Exception):
    """Base exception for all observation_sync errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} [{context_str}]"
        return self.message


class RemoteError(SyncError):
    """
    Raised when a call to the Remote Store fails.

    Subclasses distinguish transient unavailability, permanent
    rejection and missing authentication.
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        status_code: int | None = None,
    ) -> None:
        context = {}
        if operation is not None:
            context["operation"] = operation
        if status_code is not None:
            context["status_code"] = status_code
        super().__init__(message, context=context)
        self.operation = operation
        self.status_code = status_code


class RemoteUnavailableError(RemoteError):
    """
    Raised when the Remote Store cannot be reached or answers with a
    server error. Always recoverable by queueing the operation.
    """


class RemoteRejectedError(RemoteError):
    """
    Raised when the Remote Store refuses a request it understood
    (4xx other than 401).

    The retry policy does not treat this differently from
    RemoteUnavailableError: a rejected pending operation is kept.
    """


class AuthenticationError(RemoteError):
    """
    Raised when the Remote Store cannot attribute the request to a user.

    Fatal for the attempted operation when no session was ever seen,
    since the server cannot attribute ownership of queued records.
    """


class LocalStoreError(SyncError):
    """
    Raised when the Local Durable Store fails.

    There is no fallback below the local cache, so this always
    propagates to the caller.
    """

    def __init__(
        self, message: str, key: str | None = None, operation: str | None = None
    ) -> None:
        context = {}
        if key is not None:
            context["key"] = key
        if operation is not None:
            context["operation"] = operation
        super().__init__(message, context=context)
        self.key = key
        self.operation = operation


class ValidationError(SyncError):
    """
    Raised when input validation fails.

    This includes records without a species name, malformed
    pending operations and unreadable backup files.
    """

    def __init__(
        self, message: str, field: str | None = None, value: Any = None
    ) -> None:
        context = {}
        if field is not None:
            context["field"] = field
        if value is not None:
            context["value"] = repr(value)[:100]
        super().__init__(message, context=context)
        self.field = field
        self.value = value
