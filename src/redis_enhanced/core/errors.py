"""
Error taxonomy for redis-enhanced.

A single exception type carries a code from a closed enum, an HTTP-style
status class and a structured detail payload. Errors are built through one
factory keyed by code so callers dispatch on ``error.code`` rather than on
subclasses.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Failure families, used for reporting and status mapping."""
    REDIS = "redis"
    PERSISTENCE = "persistence"
    TRANSACTION = "transaction"
    VALIDATION = "validation"
    SYSTEM = "system"


class ErrorCode(str, Enum):
    """Stable error codes."""
    # Connection / command level
    REDIS_CONNECTION_ERROR = "REDIS_CONNECTION_ERROR"
    REDIS_OPERATION_ERROR = "REDIS_OPERATION_ERROR"
    REDIS_AUTH_ERROR = "REDIS_AUTH_ERROR"
    REDIS_TIMEOUT_ERROR = "REDIS_TIMEOUT_ERROR"

    # Durability configuration
    PERSISTENCE_CONFIG_ERROR = "PERSISTENCE_CONFIG_ERROR"
    PERSISTENCE_OPERATION_ERROR = "PERSISTENCE_OPERATION_ERROR"
    PERSISTENCE_SAVE_ERROR = "PERSISTENCE_SAVE_ERROR"
    PERSISTENCE_LOAD_ERROR = "PERSISTENCE_LOAD_ERROR"

    # Entity lifecycle / batches
    TRANSACTION_ERROR = "TRANSACTION_ERROR"
    TRANSACTION_COMMIT_ERROR = "TRANSACTION_COMMIT_ERROR"
    TRANSACTION_ROLLBACK_ERROR = "TRANSACTION_ROLLBACK_ERROR"
    ENTITY_NOT_FOUND = "ENTITY_NOT_FOUND"

    # Input validation
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_CONFIG = "INVALID_CONFIG"
    INVALID_PARAMETER = "INVALID_PARAMETER"

    # Catch-all
    SYSTEM_ERROR = "SYSTEM_ERROR"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.REDIS_CONNECTION_ERROR: "Failed to establish Redis connection",
    ErrorCode.REDIS_OPERATION_ERROR: "Redis operation failed",
    ErrorCode.REDIS_AUTH_ERROR: "Redis authentication failed",
    ErrorCode.REDIS_TIMEOUT_ERROR: "Redis operation timed out",
    ErrorCode.PERSISTENCE_CONFIG_ERROR: "Invalid persistence configuration",
    ErrorCode.PERSISTENCE_OPERATION_ERROR: "Persistence operation failed",
    ErrorCode.PERSISTENCE_SAVE_ERROR: "Failed to save data",
    ErrorCode.PERSISTENCE_LOAD_ERROR: "Failed to load data",
    ErrorCode.TRANSACTION_ERROR: "Transaction failed",
    ErrorCode.TRANSACTION_COMMIT_ERROR: "Failed to commit transaction",
    ErrorCode.TRANSACTION_ROLLBACK_ERROR: "Failed to rollback transaction",
    ErrorCode.ENTITY_NOT_FOUND: "Entity not found",
    ErrorCode.VALIDATION_ERROR: "Validation failed",
    ErrorCode.INVALID_CONFIG: "Invalid configuration",
    ErrorCode.INVALID_PARAMETER: "Invalid parameter",
    ErrorCode.SYSTEM_ERROR: "System error occurred",
    ErrorCode.UNEXPECTED_ERROR: "An unexpected error occurred",
}

_CATEGORIES: dict[ErrorCode, ErrorCategory] = {
    ErrorCode.REDIS_CONNECTION_ERROR: ErrorCategory.REDIS,
    ErrorCode.REDIS_OPERATION_ERROR: ErrorCategory.REDIS,
    ErrorCode.REDIS_AUTH_ERROR: ErrorCategory.REDIS,
    ErrorCode.REDIS_TIMEOUT_ERROR: ErrorCategory.REDIS,
    ErrorCode.PERSISTENCE_CONFIG_ERROR: ErrorCategory.PERSISTENCE,
    ErrorCode.PERSISTENCE_OPERATION_ERROR: ErrorCategory.PERSISTENCE,
    ErrorCode.PERSISTENCE_SAVE_ERROR: ErrorCategory.PERSISTENCE,
    ErrorCode.PERSISTENCE_LOAD_ERROR: ErrorCategory.PERSISTENCE,
    ErrorCode.TRANSACTION_ERROR: ErrorCategory.TRANSACTION,
    ErrorCode.TRANSACTION_COMMIT_ERROR: ErrorCategory.TRANSACTION,
    ErrorCode.TRANSACTION_ROLLBACK_ERROR: ErrorCategory.TRANSACTION,
    ErrorCode.ENTITY_NOT_FOUND: ErrorCategory.TRANSACTION,
    ErrorCode.VALIDATION_ERROR: ErrorCategory.VALIDATION,
    ErrorCode.INVALID_CONFIG: ErrorCategory.VALIDATION,
    ErrorCode.INVALID_PARAMETER: ErrorCategory.VALIDATION,
    ErrorCode.SYSTEM_ERROR: ErrorCategory.SYSTEM,
    ErrorCode.UNEXPECTED_ERROR: ErrorCategory.SYSTEM,
}

_STATUS_OVERRIDES: dict[ErrorCode, int] = {
    ErrorCode.ENTITY_NOT_FOUND: 404,
    ErrorCode.PERSISTENCE_CONFIG_ERROR: 400,
}


def status_code_for(code: ErrorCode) -> int:
    """
    Map an error code to its HTTP-style status class.

    Validation failures are client errors (400), a missing entity is 404,
    everything else is a server-side failure (500).
    """
    if code in _STATUS_OVERRIDES:
        return _STATUS_OVERRIDES[code]
    if _CATEGORIES[code] == ErrorCategory.VALIDATION:
        return 400
    return 500


class RedisEnhancedError(Exception):
    """
    Raised by every public redis-enhanced operation on failure.

    Attributes:
        code: Stable ErrorCode
        message: Human-readable message
        details: Structured context (component, operation, identifiers,
            wrapped error text)
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.code = ErrorCode(code)
        self.message = message or ERROR_MESSAGES[self.code]
        self.details = dict(details or {})
        super().__init__(f"[{self.code.value}] {self.message}")

    @property
    def status_code(self) -> int:
        """HTTP-style status class for this error."""
        return status_code_for(self.code)

    @property
    def category(self) -> ErrorCategory:
        """Failure family of this error."""
        return _CATEGORIES[self.code]

    def to_dict(self) -> dict[str, Any]:
        """Convert to error response format."""
        return {
            "code": self.code.value,
            "message": self.message,
            "status_code": self.status_code,
            "category": self.category.value,
            "details": self.details,
        }


def create_error(
    code: ErrorCode,
    message: str | None = None,
    **details: Any,
) -> RedisEnhancedError:
    """
    Build an error for ``code``.

    Args:
        code: Error code
        message: Optional message; defaults to the registered message
        **details: Structured detail payload

    Returns:
        RedisEnhancedError ready to raise
    """
    return RedisEnhancedError(code, message, details)


def format_exception(error: BaseException) -> dict[str, str]:
    """Describe an arbitrary exception for a detail payload."""
    return {"error": str(error), "error_type": type(error).__name__}


def wrap_error(
    code: ErrorCode,
    error: BaseException,
    message: str | None = None,
    **context: Any,
) -> RedisEnhancedError:
    """
    Translate ``error`` into the taxonomy.

    Errors that are already RedisEnhancedError are returned unchanged so
    they cross component boundaries with their original code.

    Args:
        code: Code to use when ``error`` is foreign
        error: Underlying failure
        message: Optional message override
        **context: Operation context (component, operation, ids)

    Returns:
        RedisEnhancedError with ``error`` chained as its cause
    """
    if isinstance(error, RedisEnhancedError):
        return error

    wrapped = RedisEnhancedError(code, message, {**context, **format_exception(error)})
    wrapped.__cause__ = error
    return wrapped


def classify_redis_error(error: BaseException) -> ErrorCode:
    """
    Pick the taxonomy code for a redis-py exception.

    Args:
        error: Exception raised by the redis client

    Returns:
        Matching ErrorCode
    """
    from redis import exceptions as redis_exceptions

    if isinstance(error, RedisEnhancedError):
        return error.code
    # AuthenticationError subclasses ConnectionError, so it is checked first
    if isinstance(error, redis_exceptions.AuthenticationError):
        return ErrorCode.REDIS_AUTH_ERROR
    if isinstance(error, redis_exceptions.TimeoutError):
        return ErrorCode.REDIS_TIMEOUT_ERROR
    if isinstance(error, redis_exceptions.ConnectionError):
        return ErrorCode.REDIS_CONNECTION_ERROR
    if isinstance(error, redis_exceptions.RedisError):
        return ErrorCode.REDIS_OPERATION_ERROR
    return ErrorCode.UNEXPECTED_ERROR
