#!/usr/bin/env python3
"""Exception Hierarchy for the Oikion XE.gr Sync Service.

Every error raised by the service derives from OikionError so callers can
catch the whole family with one clause, while the HTTP layer maps the
domain-facing subclasses onto status codes.

Exception Hierarchy:
    OikionError (base)
    ├── ConfigurationError (unrecoverable - fix config)
    ├── ValidationError (caller input rejected)
    ├── NotFoundError (missing, or outside the caller's tenant)
    ├── InvalidStateError (operation not allowed in current state)
    ├── TransportError (portal call failed)
    │   ├── AuthenticationError
    │   ├── APIError
    │   │   ├── RateLimitError
    │   │   └── ServerError
    │   ├── NetworkError
    │   │   ├── ConnectionError
    │   │   └── TimeoutError
    │   └── CircuitOpenError
    └── DatabaseError (may be recoverable)
        ├── ConnectionPoolError
        ├── TransactionError
        └── IntegrityError
"""
from datetime import datetime
from typing import Any, Optional

# ============================================
# Base Exception
# ============================================

class OikionError(Exception):
    """Base exception for all service errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "VALIDATION_ERROR")
        details: Additional context as a dictionary
        timestamp: When the error occurred
        cause: The original exception that caused this error
        recoverable: Whether this error might be recoverable with retry
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__.upper()
        self.details = details or {}
        self.timestamp = datetime.utcnow()
        self.cause = cause
        self.recoverable = recoverable

        if cause:
            self.__cause__ = cause

    def __str__(self) -> str:
        parts = [self.message]
        if self.code:
            parts.insert(0, f"[{self.code}]")
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"({detail_str})")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"details={self.details!r}, "
            f"recoverable={self.recoverable})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "recoverable": self.recoverable,
            "cause": str(self.cause) if self.cause else None,
        }


# ============================================
# Configuration Errors (Unrecoverable)
# ============================================

class ConfigurationError(OikionError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )


# ============================================
# Domain Errors
# ============================================

class ValidationError(OikionError):
    """Raised when caller input cannot be turned into a package.

    Covers empty property lists, ids that do not resolve within the tenant,
    and a missing or inactive integration.
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.field = field


class NotFoundError(OikionError):
    """Raised when a resource does not exist in the caller's tenant."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        **kwargs,
    ):
        message = f"{resource_type} not found"
        if resource_id:
            message = f"{resource_type} '{resource_id}' not found"

        details = kwargs.pop("details", {})
        details["resource_type"] = resource_type
        if resource_id:
            details["resource_id"] = resource_id

        super().__init__(
            message,
            code="NOT_FOUND",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class InvalidStateError(OikionError):
    """Raised when an operation is not allowed in the current state.

    Examples are retrying a package that is not FAILED, or giving up on a
    property lock held by a concurrent submission.
    """

    def __init__(
        self,
        message: str,
        current_state: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if current_state:
            details["current_state"] = current_state
        kwargs.setdefault("recoverable", False)
        super().__init__(
            message,
            code="INVALID_STATE",
            details=details,
            **kwargs,
        )
        self.current_state = current_state


# ============================================
# Transport Errors (portal communication)
# ============================================

class TransportError(OikionError):
    """Base class for failures talking to the XE.gr import API.

    The submitter converts these into a FAILED package; they never reach
    the HTTP caller of a sync operation.
    """

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)


class AuthenticationError(TransportError):
    """Raised when the portal rejects the integration credentials."""

    def __init__(self, message: str = "Portal rejected credentials", **kwargs):
        kwargs.setdefault("code", "AUTHENTICATION_ERROR")
        kwargs.setdefault("recoverable", False)
        super().__init__(message, **kwargs)


class APIError(TransportError):
    """Raised when the portal answers with a non-2xx status.

    Attributes:
        status_code: HTTP status code
        endpoint: API endpoint that was called
        response_body: Raw response body (may be truncated)
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        endpoint: Optional[str] = None,
        response_body: Optional[str] = None,
        method: str = "POST",
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["status_code"] = status_code
        if endpoint:
            details["endpoint"] = endpoint
        if method:
            details["method"] = method
        if response_body:
            details["response_body"] = response_body[:500]

        kwargs.setdefault("recoverable", status_code in (429, 500, 502, 503, 504))
        kwargs.setdefault("code", f"API_ERROR_{status_code}")

        super().__init__(
            message,
            details=details,
            **kwargs,
        )
        self.status_code = status_code
        self.endpoint = endpoint
        self.response_body = response_body
        self.method = method


class RateLimitError(APIError):
    """Raised when the portal throttles us (HTTP 429)."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[int] = None,
        **kwargs,
    ):
        kwargs.setdefault("status_code", 429)
        details = kwargs.pop("details", {})
        if retry_after:
            details["retry_after_seconds"] = retry_after
        super().__init__(
            message,
            code="RATE_LIMIT_EXCEEDED",
            details=details,
            **kwargs,
        )
        self.retry_after = retry_after or 60


class ServerError(APIError):
    """Raised when the portal returns a 5xx error."""

    def __init__(
        self,
        message: str = "Server error",
        **kwargs,
    ):
        kwargs.setdefault("status_code", 500)
        super().__init__(
            message,
            code="SERVER_ERROR",
            recoverable=True,
            **kwargs,
        )


class NetworkError(TransportError):
    """Base class for network-level failures."""


class ConnectionError(NetworkError):
    """Raised when connection to the portal fails."""

    def __init__(
        self,
        message: str = "Failed to connect to server",
        host: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if host:
            details["host"] = host
        super().__init__(
            message,
            code="CONNECTION_ERROR",
            details=details,
            **kwargs,
        )


class TimeoutError(NetworkError):
    """Raised when a portal request exceeds its bounded timeout."""

    def __init__(
        self,
        message: str = "Request timed out",
        timeout_seconds: Optional[float] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if timeout_seconds:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(
            message,
            code="TIMEOUT_ERROR",
            details=details,
            **kwargs,
        )


class CircuitOpenError(TransportError):
    """Raised when the circuit breaker is open and requests are rejected.

    Attributes:
        reset_at: When the circuit breaker will attempt to close
    """

    def __init__(
        self,
        message: str = "Circuit breaker is open, requests rejected",
        reset_at: Optional[datetime] = None,
        failure_count: int = 0,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if reset_at:
            details["reset_at"] = reset_at.isoformat()
        details["failure_count"] = failure_count

        super().__init__(
            message,
            code="CIRCUIT_OPEN",
            details=details,
            recoverable=True,
            **kwargs,
        )
        self.reset_at = reset_at
        self.failure_count = failure_count


# ============================================
# Database Errors
# ============================================

class DatabaseError(OikionError):
    """Base class for database-related errors."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)


class ConnectionPoolError(DatabaseError):
    """Raised when database connection pool is exhausted or unavailable."""

    def __init__(
        self,
        message: str = "Database connection pool error",
        **kwargs,
    ):
        super().__init__(message, code="CONNECTION_POOL_ERROR", **kwargs)


class TransactionError(DatabaseError):
    """Raised when database transaction fails."""

    def __init__(
        self,
        message: str = "Database transaction failed",
        operation: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        super().__init__(
            message,
            code="TRANSACTION_ERROR",
            details=details,
            **kwargs,
        )


class IntegrityError(DatabaseError):
    """Raised when database integrity constraint is violated."""

    def __init__(
        self,
        message: str = "Database integrity error",
        constraint: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if constraint:
            details["constraint"] = constraint
        super().__init__(
            message,
            code="INTEGRITY_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )


# ============================================
# Exports
# ============================================

__all__ = [
    # Base
    "OikionError",
    # Configuration
    "ConfigurationError",
    # Domain
    "ValidationError",
    "NotFoundError",
    "InvalidStateError",
    # Transport
    "TransportError",
    "AuthenticationError",
    "APIError",
    "RateLimitError",
    "ServerError",
    "NetworkError",
    "ConnectionError",
    "TimeoutError",
    "CircuitOpenError",
    # Database
    "DatabaseError",
    "ConnectionPoolError",
    "TransactionError",
    "IntegrityError",
]
