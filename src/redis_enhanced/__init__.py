"""
redis-enhanced - a reliability layer for Redis.

Adds versioned entity persistence with verified deletes, an explicit
MULTI/EXEC transaction envelope, and declarative control of the server's
durability mode (RDB snapshots, AOF, or none).

Quick Start:
    from redis_enhanced import EnhancedRedisClient, PersistencePolicy

    async with EnhancedRedisClient() as client:
        users = client.transaction_manager("users")
        user = await users.save({"name": "John", "value": 42})   # version 1

        async with users.transaction():
            await users.save({"name": "Jane"})

        await client.persistence.set_persistence(PersistencePolicy.aof("everysec"))
"""

__version__ = "1.0.0"

from redis_enhanced.client import EnhancedRedisClient
from redis_enhanced.core.config import ConnectionConfig, Settings, get_settings
from redis_enhanced.core.errors import ErrorCode, RedisEnhancedError, create_error
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
from redis_enhanced.persistence import PersistenceController
from redis_enhanced.storage import KeyValueTransport, RedisRepository, RedisTransport
from redis_enhanced.transactions import TransactionManager

__all__ = [
    "__version__",
    # Client
    "EnhancedRedisClient",
    # Config
    "ConnectionConfig",
    "Settings",
    "get_settings",
    # Errors
    "ErrorCode",
    "RedisEnhancedError",
    "create_error",
    # Types
    "AOFOptions",
    "AOFSyncOption",
    "Entity",
    "PersistencePolicy",
    "PersistenceStatus",
    "PersistenceType",
    "RDBOptions",
    "TransactionState",
    # Components
    "KeyValueTransport",
    "PersistenceController",
    "RedisRepository",
    "RedisTransport",
    "TransactionManager",
]
