"""
Persistence Controller - durability policy for the store.

Translates a declarative PersistencePolicy into CONFIG SET writes and
reconstructs the live policy and status on demand. The controller keeps no
copy of the policy: every read goes to the store.

Apply order (fixed):

    1. save         "<saveFrequency> 1" for RDB, "" otherwise
    2. appendonly   "yes" for AOF, "no" otherwise
    3. appendfsync  sync mode, AOF only

The three writes are not atomic. A failure part-way leaves the store with
the writes that already succeeded; the error reports which step failed.

Reconstruction precedence (mirrors the store, where snapshotting is
independent of the append-log toggle):

    save non-empty      -> RDB
    appendonly == yes   -> AOF
    otherwise           -> NONE

A store with both snapshotting and AOF enabled is therefore reported as RDB.
"""

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from redis_enhanced.core.errors import ErrorCode, create_error, wrap_error
from redis_enhanced.core.types import (
    AOFOptions,
    AOFSyncOption,
    PersistencePolicy,
    PersistenceStatus,
    PersistenceType,
    RDBOptions,
)
from redis_enhanced.storage.transport import KeyValueTransport, parse_info

logger = logging.getLogger(__name__)

COMPONENT = "PersistenceController"

# CONFIG parameter names
SAVE_CONFIG = "save"
APPENDONLY_CONFIG = "appendonly"
APPENDFSYNC_CONFIG = "appendfsync"

# Number of writes within the interval that triggers a snapshot
SNAPSHOT_CHANGES = 1

# INFO persistence fields
_STATUS_FLAGS = {
    "rdb_bgsave_in_progress": "rdb_save_in_progress",
    "aof_rewrite_in_progress": "aof_rewrite_in_progress",
}
_STATUS_TIMES = {
    "rdb_last_save_time": "last_rdb_save_time",
    "aof_last_rewrite_time": "last_aof_rewrite_time",
}


def _context(operation: str, **extra: Any) -> dict[str, Any]:
    return {"component": COMPONENT, "operation": operation, **extra}


def coerce_policy(policy: PersistencePolicy | Mapping[str, Any]) -> PersistencePolicy:
    """
    Turn caller input into a PersistencePolicy.

    Accepts a PersistencePolicy or the JSON shape
    ``{type, rdbOptions?, aofOptions?}``.

    Raises:
        RedisEnhancedError: INVALID_CONFIG for anything else
    """
    if isinstance(policy, PersistencePolicy):
        return policy
    if not isinstance(policy, Mapping):
        raise create_error(
            ErrorCode.INVALID_CONFIG,
            "Persistence policy must be a PersistencePolicy or a mapping",
            **_context("set_persistence", received=type(policy).__name__),
        )
    try:
        return PersistencePolicy.model_validate(dict(policy))
    except ValidationError as e:
        raise create_error(
            ErrorCode.INVALID_CONFIG,
            "Invalid persistence policy",
            **_context("set_persistence", errors=e.errors(include_url=False, include_context=False)),
        ) from e


def validate_policy(policy: PersistencePolicy) -> None:
    """
    Check the kind/options pairing.

    Raises:
        RedisEnhancedError: INVALID_CONFIG for an unknown kind, a kind
            missing its options, or options that belong to another kind
    """
    kind = policy.type
    if kind not in (PersistenceType.NONE, PersistenceType.RDB, PersistenceType.AOF):
        raise create_error(
            ErrorCode.INVALID_CONFIG,
            f"Unknown persistence type: {kind}",
            **_context("set_persistence", type=str(kind)),
        )
    if kind == PersistenceType.RDB and policy.rdb_options is None:
        raise create_error(
            ErrorCode.INVALID_CONFIG,
            "RDB persistence requires rdbOptions.saveFrequency",
            **_context("set_persistence", type=kind.value),
        )
    if kind == PersistenceType.AOF and policy.aof_options is None:
        raise create_error(
            ErrorCode.INVALID_CONFIG,
            "AOF persistence requires aofOptions.appendfsync",
            **_context("set_persistence", type=kind.value),
        )

    stray = [
        alias
        for alias, value, owner in (
            ("rdbOptions", policy.rdb_options, PersistenceType.RDB),
            ("aofOptions", policy.aof_options, PersistenceType.AOF),
        )
        if value is not None and kind != owner
    ]
    if stray:
        raise create_error(
            ErrorCode.INVALID_CONFIG,
            f"{kind.value} persistence does not take {', '.join(stray)}",
            **_context("set_persistence", type=kind.value, unexpected=stray),
        )


def parse_persistence_info(text: str) -> PersistenceStatus:
    """
    Parse INFO persistence output.

    Unknown lines are ignored and missing or malformed fields keep their
    zero defaults.
    """
    status = PersistenceStatus()
    fields = parse_info(text)
    for key, attr in _STATUS_FLAGS.items():
        if key in fields:
            setattr(status, attr, fields[key] == "1")
    for key, attr in _STATUS_TIMES.items():
        if key not in fields:
            continue
        try:
            setattr(status, attr, int(fields[key]))
        except ValueError:
            logger.debug(f"Ignoring non-integer INFO value {key}={fields[key]!r}")
    return status


class PersistenceController:
    """
    Durability policy control over a connected transport.

    Example:
        controller = PersistenceController(transport)
        await controller.set_persistence(PersistencePolicy.rdb(3600))
        policy = await controller.get_current_config()   # RDB, 3600
        status = await controller.check_persistence_status()
    """

    def __init__(self, transport: KeyValueTransport):
        self.transport = transport

    def is_connected(self) -> bool:
        """Whether the transport is open."""
        return self.transport.is_open()

    async def set_persistence(self, policy: PersistencePolicy | Mapping[str, Any]) -> None:
        """
        Validate and apply a durability policy.

        Validation happens before any write, so invalid input never leaves a
        partial policy behind.

        Raises:
            RedisEnhancedError: INVALID_CONFIG on invalid input,
                PERSISTENCE_OPERATION_ERROR when a CONFIG SET fails
        """
        try:
            policy = coerce_policy(policy)
            validate_policy(policy)
        except Exception as e:
            logger.error(f"Rejected persistence policy: {e}", extra={"extra_fields": getattr(e, "details", {})})
            raise

        writes: list[tuple[str, str]] = []
        if policy.type == PersistenceType.RDB:
            writes.append((SAVE_CONFIG, f"{policy.rdb_options.save_frequency} {SNAPSHOT_CHANGES}"))
        else:
            writes.append((SAVE_CONFIG, ""))
        writes.append((APPENDONLY_CONFIG, "yes" if policy.type == PersistenceType.AOF else "no"))
        if policy.type == PersistenceType.AOF:
            writes.append((APPENDFSYNC_CONFIG, policy.aof_options.appendfsync.value))

        applied: list[str] = []
        for name, value in writes:
            try:
                await self.transport.config_set(name, value)
            except Exception as e:
                error = wrap_error(
                    ErrorCode.PERSISTENCE_OPERATION_ERROR,
                    e,
                    f"Failed to set {name}",
                    **_context(
                        "set_persistence",
                        type=policy.type.value,
                        parameter=name,
                        applied=list(applied),
                    ),
                )
                logger.error(
                    f"Failed to apply persistence policy at '{name}': {e}",
                    extra={"extra_fields": error.details},
                )
                raise error
            applied.append(name)

        logger.info(
            "Persistence configuration applied successfully",
            extra={"extra_fields": _context("set_persistence", policy=policy.to_dict())},
        )

    async def get_current_config(self) -> PersistencePolicy:
        """
        Reconstruct the active policy from live configuration.

        Raises:
            RedisEnhancedError: PERSISTENCE_OPERATION_ERROR when CONFIG GET
                fails, PERSISTENCE_CONFIG_ERROR when a value cannot be
                interpreted
        """
        try:
            save = await self.transport.config_get(SAVE_CONFIG)
            appendonly = await self.transport.config_get(APPENDONLY_CONFIG)
            appendfsync = await self.transport.config_get(APPENDFSYNC_CONFIG)
        except Exception as e:
            error = wrap_error(
                ErrorCode.PERSISTENCE_OPERATION_ERROR,
                e,
                "Failed to read persistence configuration",
                **_context("get_current_config"),
            )
            logger.error(f"Failed to read persistence configuration: {e}", extra={"extra_fields": error.details})
            raise error

        save = (save or "").strip()
        if save:
            return PersistencePolicy(
                type=PersistenceType.RDB,
                rdb_options=self._parse_save(save),
            )
        if (appendonly or "").strip().lower() == "yes":
            return PersistencePolicy(
                type=PersistenceType.AOF,
                aof_options=self._parse_appendfsync(appendfsync),
            )
        return PersistencePolicy.none()

    def _parse_save(self, save: str) -> RDBOptions:
        leading = save.split()[0]
        try:
            return RDBOptions(save_frequency=int(leading))
        except (ValueError, ValidationError) as e:
            raise create_error(
                ErrorCode.PERSISTENCE_CONFIG_ERROR,
                f"Cannot read snapshot interval from save={save!r}",
                **_context("get_current_config", save=save),
            ) from e

    def _parse_appendfsync(self, appendfsync: str | None) -> AOFOptions:
        value = (appendfsync or "").strip().lower()
        try:
            return AOFOptions(appendfsync=AOFSyncOption(value))
        except ValueError as e:
            raise create_error(
                ErrorCode.PERSISTENCE_CONFIG_ERROR,
                f"Unknown appendfsync value {appendfsync!r}",
                **_context("get_current_config", appendfsync=appendfsync),
            ) from e

    async def check_persistence_status(self) -> PersistenceStatus:
        """
        Read in-progress flags and last-run timestamps from INFO persistence.

        Raises:
            RedisEnhancedError: PERSISTENCE_OPERATION_ERROR when INFO fails
        """
        try:
            text = await self.transport.info("persistence")
        except Exception as e:
            error = wrap_error(
                ErrorCode.PERSISTENCE_OPERATION_ERROR,
                e,
                "Failed to read persistence status",
                **_context("check_persistence_status"),
            )
            logger.error(f"Failed to read persistence status: {e}", extra={"extra_fields": error.details})
            raise error

        return parse_persistence_info(text or "")

    async def disconnect(self) -> None:
        """
        Release the transport. No-op when already disconnected.

        Raises:
            RedisEnhancedError: REDIS_CONNECTION_ERROR if closing fails
        """
        if not self.transport.is_open():
            return

        try:
            await self.transport.close()
        except Exception as e:
            error = wrap_error(
                ErrorCode.REDIS_CONNECTION_ERROR,
                e,
                "Failed to disconnect",
                **_context("disconnect"),
            )
            logger.error(f"Failed to disconnect: {e}", extra={"extra_fields": error.details})
            raise error

        logger.info("Native Redis client disconnected successfully", extra={"extra_fields": _context("disconnect")})
