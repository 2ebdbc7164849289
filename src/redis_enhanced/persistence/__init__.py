"""Durability policy control."""

from redis_enhanced.persistence.controller import (
    PersistenceController,
    coerce_policy,
    parse_persistence_info,
    validate_policy,
)

__all__ = [
    "PersistenceController",
    "coerce_policy",
    "parse_persistence_info",
    "validate_policy",
]
