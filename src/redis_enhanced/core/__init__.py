"""Core types, errors and configuration for redis-enhanced."""

from redis_enhanced.core.config import (
    ConnectionConfig,
    Settings,
    get_settings,
    load_settings,
    mask_secret,
    reset_settings,
)
from redis_enhanced.core.errors import (
    ErrorCategory,
    ErrorCode,
    RedisEnhancedError,
    classify_redis_error,
    create_error,
    status_code_for,
    wrap_error,
)
from redis_enhanced.core.types import (
    AOFOptions,
    AOFSyncOption,
    Entity,
    PersistencePolicy,
    PersistenceStatus,
    PersistenceType,
    RDBOptions,
    TransactionState,
)

__all__ = [
    # Config
    "ConnectionConfig",
    "Settings",
    "get_settings",
    "load_settings",
    "mask_secret",
    "reset_settings",
    # Errors
    "ErrorCategory",
    "ErrorCode",
    "RedisEnhancedError",
    "classify_redis_error",
    "create_error",
    "status_code_for",
    "wrap_error",
    # Types
    "AOFOptions",
    "AOFSyncOption",
    "Entity",
    "PersistencePolicy",
    "PersistenceStatus",
    "PersistenceType",
    "RDBOptions",
    "TransactionState",
]
