"""
Entity repositories.

Maps an Entity to store keys and back. The key convention
``"<schemaName>:<entityId>"`` is shared with TransactionManager, which scans
``"<schemaName>:<entityId>*"`` to decide existence and to verify deletes.
Ids are fixed-length uuid4 hex strings, so no id is a prefix of another and
that scan never reaches a neighbouring entity.
"""

import json
import logging
import re
from typing import Protocol, runtime_checkable
from uuid import uuid4

from redis_enhanced.core.errors import ErrorCode, create_error
from redis_enhanced.core.types import Entity
from redis_enhanced.storage.transport import KeyValueTransport

logger = logging.getLogger(__name__)

ENTITY_ID_PATTERN = re.compile(r"[0-9a-f]{32}")


def entity_key(schema_name: str, entity_id: str) -> str:
    """Primary key of an entity."""
    return f"{schema_name}:{entity_id}"


def entity_key_pattern(schema_name: str, entity_id: str) -> str:
    """Glob matching the primary key and every key derived from it."""
    return f"{entity_key(schema_name, entity_id)}*"


def is_entity_id(value: object) -> bool:
    """True for ids in the form RedisRepository assigns."""
    return isinstance(value, str) and ENTITY_ID_PATTERN.fullmatch(value) is not None


@runtime_checkable
class EntityRepository(Protocol):
    """Record mapping capability consumed by TransactionManager."""

    schema_name: str

    async def save(self, entity: Entity) -> Entity:
        """Persist and return the entity with entity_id assigned."""
        ...

    async def fetch(self, entity_id: str) -> Entity | None:
        """Return the stored entity, or None when absent."""
        ...

    async def remove(self, entity_id: str) -> None:
        """Remove the stored entity."""
        ...


class RedisRepository:
    """
    Stores each entity as one JSON document at ``<schema>:<id>``.

    New entities get a uuid4 hex id; an entity that already carries an id
    keeps it, provided it has that same form.
    """

    def __init__(self, transport: KeyValueTransport, schema_name: str):
        self.transport = transport
        self.schema_name = schema_name

    async def save(self, entity: Entity) -> Entity:
        entity_id = entity.entity_id or uuid4().hex
        if not is_entity_id(entity_id):
            raise create_error(
                ErrorCode.INVALID_PARAMETER,
                "Entity id must be a 32-character lowercase hex string",
                component="RedisRepository",
                operation="save",
                schema=self.schema_name,
                entity_id=entity_id,
            )
        document = entity.model_dump(mode="json", by_alias=True, exclude={"entity_id"})
        await self.transport.set(entity_key(self.schema_name, entity_id), json.dumps(document))
        logger.debug(f"Stored {self.schema_name}:{entity_id}")
        return entity.model_copy(update={"entity_id": entity_id})

    async def fetch(self, entity_id: str) -> Entity | None:
        raw = await self.transport.get(entity_key(self.schema_name, entity_id))
        if raw is None:
            return None
        document = json.loads(raw)
        document["entityId"] = entity_id
        return Entity.model_validate(document)

    async def remove(self, entity_id: str) -> None:
        await self.transport.delete([entity_key(self.schema_name, entity_id)])
