"""Shared infrastructure for the Oikion XE.gr sync service.

Classes:
    XeClient: HTTP client for the XE.gr bulk import API
    XeCredentials: Account credentials sent with every package

Exceptions:
    OikionError: Base exception for all service errors
    ValidationError / NotFoundError / InvalidStateError: Caller-facing errors
    TransportError: Portal communication failures
    DatabaseError: Persistence failures

Resilience:
    CircuitBreaker: Prevent cascading failures against the portal
    retry_async: Retry with exponential backoff
"""
from .database import (
    check_database_health,
    close_pool,
    create_pool,
    database_connection,
    database_transaction,
)
from .error_sanitizer import ErrorSanitizer, sanitize_error_message
from .exceptions import (
    APIError,
    AuthenticationError,
    CircuitOpenError,
    ConfigurationError,
    ConnectionError,
    ConnectionPoolError,
    DatabaseError,
    IntegrityError,
    InvalidStateError,
    NetworkError,
    NotFoundError,
    OikionError,
    RateLimitError,
    ServerError,
    TimeoutError,
    TransactionError,
    TransportError,
    ValidationError,
)
from .resilience import CircuitBreaker, CircuitState, retry_async
from .xe_client import XeApiResponse, XeClient, XeCredentials, create_zip_package

__all__ = [
    # Client
    "XeClient",
    "XeCredentials",
    "XeApiResponse",
    "create_zip_package",
    # Database
    "check_database_health",
    "close_pool",
    "create_pool",
    "database_connection",
    "database_transaction",
    # Sanitization
    "ErrorSanitizer",
    "sanitize_error_message",
    # Exceptions
    "OikionError",
    "ConfigurationError",
    "ValidationError",
    "NotFoundError",
    "InvalidStateError",
    "TransportError",
    "AuthenticationError",
    "APIError",
    "RateLimitError",
    "ServerError",
    "NetworkError",
    "ConnectionError",
    "TimeoutError",
    "CircuitOpenError",
    "DatabaseError",
    "ConnectionPoolError",
    "TransactionError",
    "IntegrityError",
    # Resilience
    "CircuitBreaker",
    "CircuitState",
    "retry_async",
]
