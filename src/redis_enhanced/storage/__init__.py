"""Transport and repository adapters."""

from redis_enhanced.storage.repository import (
    EntityRepository,
    RedisRepository,
    entity_key,
    entity_key_pattern,
    is_entity_id,
)
from redis_enhanced.storage.transport import KeyValueTransport, RedisTransport, parse_info

__all__ = [
    "EntityRepository",
    "KeyValueTransport",
    "RedisRepository",
    "RedisTransport",
    "entity_key",
    "entity_key_pattern",
    "is_entity_id",
    "parse_info",
]
