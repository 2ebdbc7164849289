"""
Core data types for redis-enhanced.

- Entity: opaque record plus the housekeeping fields entityId, version,
  lastUpdated
- PersistencePolicy: declarative durability mode (NONE / RDB / AOF)
- PersistenceStatus: snapshot of in-progress durability work
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# Enums

class PersistenceType(str, Enum):
    """Durability mode of the store."""
    NONE = "NONE"
    RDB = "RDB"  # periodic snapshot
    AOF = "AOF"  # append-only log


class AOFSyncOption(str, Enum):
    """fsync cadence of the append-only log."""
    ALWAYS = "always"
    EVERYSEC = "everysec"
    NO = "no"


class TransactionState(str, Enum):
    """Transaction envelope state of one manager instance."""
    IDLE = "idle"
    ACTIVE = "active"


# Entity

class Entity(BaseModel):
    """
    Versioned record.

    Caller fields are kept as pydantic extras; the three reserved fields are
    re-derived by TransactionManager.save on every write.
    """
    model_config = ConfigDict(
        extra="allow",
        populate_by_name=True,
    )

    entity_id: str | None = Field(default=None, alias="entityId")
    version: int | None = Field(default=None, ge=0)
    last_updated: datetime | None = Field(default=None, alias="lastUpdated")

    @classmethod
    def from_mapping(cls, data: "Entity | Mapping[str, Any]") -> "Entity":
        """Accept either an Entity or a plain mapping of field values."""
        if isinstance(data, cls):
            return data
        return cls.model_validate(dict(data))

    @property
    def payload(self) -> dict[str, Any]:
        """Caller-defined fields, without housekeeping."""
        return dict(self.model_extra or {})

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible dict using the wire field names."""
        return self.model_dump(mode="json", by_alias=True)


# Persistence policy

class RDBOptions(BaseModel):
    """Snapshot options."""
    model_config = ConfigDict(populate_by_name=True)

    save_frequency: int = Field(..., gt=0, alias="saveFrequency")


class AOFOptions(BaseModel):
    """Append-log options."""
    appendfsync: AOFSyncOption


class PersistencePolicy(BaseModel):
    """
    Declarative durability policy.

    Mode-specific options are optional on the model itself; the pairing
    (RDB -> rdb_options only, AOF -> aof_options only, NONE -> neither) is
    checked by PersistenceController before anything is written to the store.
    """
    model_config = ConfigDict(populate_by_name=True)

    type: PersistenceType
    rdb_options: RDBOptions | None = Field(default=None, alias="rdbOptions")
    aof_options: AOFOptions | None = Field(default=None, alias="aofOptions")

    @classmethod
    def none(cls) -> "PersistencePolicy":
        """Policy with durability disabled."""
        return cls(type=PersistenceType.NONE)

    @classmethod
    def rdb(cls, save_frequency: int) -> "PersistencePolicy":
        """Snapshot policy."""
        return cls(
            type=PersistenceType.RDB,
            rdb_options=RDBOptions(save_frequency=save_frequency),
        )

    @classmethod
    def aof(cls, appendfsync: AOFSyncOption | str) -> "PersistencePolicy":
        """Append-log policy."""
        return cls(
            type=PersistenceType.AOF,
            aof_options=AOFOptions(appendfsync=AOFSyncOption(appendfsync)),
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON shape: {type, rdbOptions?, aofOptions?}."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


@dataclass
class PersistenceStatus:
    """Durability work reported by INFO persistence."""
    rdb_save_in_progress: bool = False
    aof_rewrite_in_progress: bool = False
    last_rdb_save_time: int = 0
    last_aof_rewrite_time: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "rdbSaveInProgress": self.rdb_save_in_progress,
            "aofRewriteInProgress": self.aof_rewrite_in_progress,
            "lastRdbSaveTime": self.last_rdb_save_time,
            "lastAofRewriteTime": self.last_aof_rewrite_time,
        }
