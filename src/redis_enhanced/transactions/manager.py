"""
Transactional entity manager.

Layers versioning, existence verification and verified deletes over an
EntityRepository, and exposes a single-in-flight transaction envelope over
the transport's MULTI/EXEC primitive.

Envelope state machine (per instance):

    IDLE --begin--> ACTIVE --commit|rollback--> IDLE

begin from ACTIVE and commit/rollback from IDLE raise TRANSACTION_ERROR.

Managers for different schemas may share one transport, and with it one
batch. While another manager's envelope is open, save and remove raise
TRANSACTION_ERROR instead of landing in that batch.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from redis_enhanced.core.errors import ErrorCode, create_error, wrap_error
from redis_enhanced.core.types import Entity, TransactionState
from redis_enhanced.storage.repository import EntityRepository, entity_key_pattern
from redis_enhanced.storage.transport import KeyValueTransport

logger = logging.getLogger(__name__)

COMPONENT = "TransactionManager"
_GLOB_CHARS = frozenset("*?[]")


class TransactionManager:
    """
    Versioned entity lifecycle plus an explicit transaction envelope.

    The transport is injected already connected; the manager never opens
    connections. It holds no entity cache: every read is a round trip.

    Example:
        manager = TransactionManager(transport, RedisRepository(transport, "orders"))

        order = await manager.save({"item": "book", "qty": 1})   # version 1
        order = await manager.save(order)                          # version 2
        await manager.remove(order.entity_id)

        async with manager.transaction():
            await manager.save(other)   # queued until commit
    """

    def __init__(
        self,
        transport: KeyValueTransport,
        repository: EntityRepository,
        schema_name: str | None = None,
    ):
        """
        Initialize manager.

        Args:
            transport: Connected key-value transport
            repository: Entity mapping bound to the same key space
            schema_name: Key namespace (defaults to repository.schema_name)
        """
        self.transport = transport
        self.repository = repository
        self.schema_name = schema_name or repository.schema_name
        self._state = TransactionState.IDLE
        self._lock = asyncio.Lock()

    @property
    def state(self) -> TransactionState:
        """Current envelope state."""
        return self._state

    @property
    def is_transaction_active(self) -> bool:
        """True while a transaction envelope is open."""
        return self._state == TransactionState.ACTIVE

    def _context(self, operation: str, **extra: Any) -> dict[str, Any]:
        return {
            "component": COMPONENT,
            "operation": operation,
            "schema": self.schema_name,
            **extra,
        }

    def _check_entity_id(self, entity_id: Any, operation: str) -> str:
        if not isinstance(entity_id, str) or not entity_id.strip():
            raise create_error(
                ErrorCode.INVALID_PARAMETER,
                "Entity id must be a non-empty string",
                **self._context(operation, entity_id=repr(entity_id)),
            )
        if _GLOB_CHARS.intersection(entity_id):
            raise create_error(
                ErrorCode.INVALID_PARAMETER,
                "Entity id must not contain glob metacharacters",
                **self._context(operation, entity_id=entity_id),
            )
        return entity_id

    # ==================== Entities ====================

    async def save(self, entity: Entity | Mapping[str, Any]) -> Entity:
        """
        Persist a new version of ``entity``.

        Increments version (absent counts as 0), stamps last_updated and
        writes through the repository.

        Returns:
            The stored entity with its repository-assigned entity_id

        Raises:
            RedisEnhancedError: TRANSACTION_ERROR on any underlying failure, or
                when another manager holds a batch open on the shared transport
        """
        if self.transport.in_batch and not self.is_transaction_active:
            raise self._foreign_batch("save")

        try:
            source = Entity.from_mapping(entity)
            prepared = source.model_copy(update={
                "version": (source.version or 0) + 1,
                "last_updated": datetime.now(timezone.utc),
            })
            stored = await self.repository.save(prepared)
            if stored is None or not stored.entity_id:
                raise create_error(
                    ErrorCode.TRANSACTION_ERROR,
                    "Repository did not assign an entity id",
                    **self._context("save"),
                )
            result = prepared.model_copy(update={"entity_id": stored.entity_id})
        except Exception as e:
            error = wrap_error(
                ErrorCode.TRANSACTION_ERROR,
                e,
                "Failed to save entity",
                **self._context("save"),
            )
            logger.error(
                f"Failed to save entity in '{self.schema_name}': {e}",
                extra={"extra_fields": error.details},
            )
            raise error

        logger.debug(
            f"Saved {self.schema_name}:{result.entity_id} version {result.version}",
            extra={"extra_fields": self._context(
                "save", entity_id=result.entity_id, version=result.version,
            )},
        )
        return result

    async def fetch(self, entity_id: str) -> Entity:
        """
        Load an entity.

        The key-pattern scan is the authoritative existence check; the
        repository is consulted only when keys exist.

        Raises:
            RedisEnhancedError: ENTITY_NOT_FOUND when absent, TRANSACTION_ERROR
                on any other failure
        """
        entity_id = self._check_entity_id(entity_id, "fetch")
        context = self._context("fetch", entity_id=entity_id)

        try:
            keys = await self.transport.keys(entity_key_pattern(self.schema_name, entity_id))
            if not keys:
                raise self._not_found(entity_id, "fetch")

            record = await self.repository.fetch(entity_id)
            if record is None:
                raise self._not_found(entity_id, "fetch", keys=sorted(keys))
        except Exception as e:
            error = wrap_error(ErrorCode.TRANSACTION_ERROR, e, "Failed to fetch entity", **context)
            if error.code != ErrorCode.ENTITY_NOT_FOUND:
                logger.error(
                    f"Failed to fetch {self.schema_name}:{entity_id}: {e}",
                    extra={"extra_fields": error.details},
                )
            raise error

        return record.model_copy(update={"entity_id": entity_id})

    async def remove(self, entity_id: str) -> None:
        """
        Verified delete.

        Steps, strictly sequential:
        1. fetch (ENTITY_NOT_FOUND propagates)
        2. delete every key under ``<schema>:<id>*`` in one call
        3. best-effort repository remove (failure is logged only)
        4. re-scan; any residual key fails the remove

        Raises:
            RedisEnhancedError: ENTITY_NOT_FOUND, or TRANSACTION_ERROR when a
                transaction is open on the transport, a step fails, or keys
                remain
        """
        entity_id = self._check_entity_id(entity_id, "remove")
        context = self._context("remove", entity_id=entity_id)

        if self.is_transaction_active:
            raise create_error(
                ErrorCode.TRANSACTION_ERROR,
                "Cannot remove an entity while a transaction is in progress",
                **context,
            )
        if self.transport.in_batch:
            raise self._foreign_batch("remove", entity_id=entity_id)

        await self.fetch(entity_id)
        pattern = entity_key_pattern(self.schema_name, entity_id)

        try:
            keys = await self.transport.keys(pattern)
            if keys:
                await self.transport.delete(set(keys))

            try:
                await self.repository.remove(entity_id)
            except Exception as e:
                # Key-level delete above is authoritative
                logger.warning(
                    f"Repository remove failed for {self.schema_name}:{entity_id}: {e}",
                    extra={"extra_fields": {**context, "error": str(e)}},
                )

            remaining = await self.transport.keys(pattern)
        except Exception as e:
            error = wrap_error(ErrorCode.TRANSACTION_ERROR, e, "Failed to remove entity", **context)
            logger.error(
                f"Failed to remove {self.schema_name}:{entity_id}: {e}",
                extra={"extra_fields": error.details},
            )
            raise error

        if remaining:
            error = create_error(
                ErrorCode.TRANSACTION_ERROR,
                "Entity keys still present after delete",
                **context,
                remaining_keys=sorted(remaining),
            )
            logger.error(
                f"Verified delete failed for {self.schema_name}:{entity_id}: "
                f"{len(remaining)} keys remain",
                extra={"extra_fields": error.details},
            )
            raise error

        logger.info(
            f"Removed {self.schema_name}:{entity_id}",
            extra={"extra_fields": {**context, "deleted_keys": len(keys)}},
        )

    def _not_found(self, entity_id: str, operation: str, **extra: Any):
        return create_error(
            ErrorCode.ENTITY_NOT_FOUND,
            f"Entity with id {entity_id} not found",
            **self._context(operation, entity_id=entity_id, **extra),
        )

    def _foreign_batch(self, operation: str, **extra: Any):
        # The transport holds one pipeline; writes would be queued on it
        return create_error(
            ErrorCode.TRANSACTION_ERROR,
            "Another transaction is in progress on the shared transport",
            **self._context(operation, **extra),
        )

    # ==================== Transaction envelope ====================

    async def begin_transaction(self) -> None:
        """
        Open the envelope (MULTI).

        Raises:
            RedisEnhancedError: TRANSACTION_ERROR if already ACTIVE or the
                transport cannot start a batch
        """
        async with self._lock:
            if self._state == TransactionState.ACTIVE:
                raise create_error(
                    ErrorCode.TRANSACTION_ERROR,
                    "Transaction already in progress",
                    **self._context("begin_transaction"),
                )
            try:
                await self.transport.begin_batch()
            except Exception as e:
                error = wrap_error(
                    ErrorCode.TRANSACTION_ERROR,
                    e,
                    "Failed to begin transaction",
                    **self._context("begin_transaction"),
                )
                logger.error(f"Failed to begin transaction: {e}", extra={"extra_fields": error.details})
                raise error

            self._state = TransactionState.ACTIVE
            logger.debug("Transaction started", extra={"extra_fields": self._context("begin_transaction")})

    async def commit_transaction(self) -> list[Any]:
        """
        Close the envelope by executing the batch (EXEC).

        An empty result list is a successful commit. The envelope is IDLE
        afterwards whether or not EXEC succeeded.

        Returns:
            Per-command results of the batch

        Raises:
            RedisEnhancedError: TRANSACTION_ERROR when IDLE,
                TRANSACTION_COMMIT_ERROR when EXEC fails
        """
        async with self._lock:
            self._require_active("commit_transaction")
            try:
                results: Sequence[Any] = await self.transport.execute_batch()
            except Exception as e:
                error = wrap_error(
                    ErrorCode.TRANSACTION_COMMIT_ERROR,
                    e,
                    **self._context("commit_transaction"),
                )
                logger.error(f"Failed to commit transaction: {e}", extra={"extra_fields": error.details})
                raise error
            finally:
                self._state = TransactionState.IDLE

        results = list(results or [])
        logger.debug(
            f"Transaction committed ({len(results)} results)",
            extra={"extra_fields": self._context("commit_transaction", results=len(results))},
        )
        return results

    async def rollback_transaction(self) -> None:
        """
        Close the envelope by discarding the batch (DISCARD).

        Raises:
            RedisEnhancedError: TRANSACTION_ERROR when IDLE,
                TRANSACTION_ROLLBACK_ERROR when DISCARD fails
        """
        async with self._lock:
            self._require_active("rollback_transaction")
            try:
                await self.transport.discard_batch()
            except Exception as e:
                error = wrap_error(
                    ErrorCode.TRANSACTION_ROLLBACK_ERROR,
                    e,
                    **self._context("rollback_transaction"),
                )
                logger.error(f"Failed to rollback transaction: {e}", extra={"extra_fields": error.details})
                raise error
            finally:
                self._state = TransactionState.IDLE

        logger.debug("Transaction rolled back", extra={"extra_fields": self._context("rollback_transaction")})

    def _require_active(self, operation: str) -> None:
        if self._state != TransactionState.ACTIVE:
            raise create_error(
                ErrorCode.TRANSACTION_ERROR,
                "No transaction in progress",
                **self._context(operation),
            )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["TransactionManager"]:
        """
        Envelope as a context manager.

        Commits on normal exit, rolls back and re-raises on exception.
        """
        await self.begin_transaction()
        try:
            yield self
        except BaseException as e:
            if self.is_transaction_active:
                try:
                    await self.rollback_transaction()
                except Exception as rollback_error:
                    # The body's exception is the one the caller sees
                    logger.error(
                        f"Rollback after failed transaction body failed: {rollback_error}",
                        extra={"extra_fields": {
                            **self._context("transaction"),
                            "error": str(rollback_error),
                            "body_error": str(e),
                        }},
                    )
            raise
        else:
            await self.commit_transaction()

    # ==================== Lifecycle ====================

    async def disconnect(self) -> None:
        """
        Roll back an open envelope, then release the transport.

        Safe to call repeatedly.

        Raises:
            RedisEnhancedError: REDIS_CONNECTION_ERROR if closing fails
        """
        if self.is_transaction_active:
            try:
                await self.rollback_transaction()
            except Exception as e:
                logger.warning(
                    f"Implicit rollback on disconnect failed: {e}",
                    extra={"extra_fields": {**self._context("disconnect"), "error": str(e)}},
                )

        if not self.transport.is_open():
            return

        try:
            await self.transport.close()
        except Exception as e:
            error = wrap_error(
                ErrorCode.REDIS_CONNECTION_ERROR,
                e,
                "Failed to disconnect",
                **self._context("disconnect"),
            )
            logger.error(f"Failed to disconnect: {e}", extra={"extra_fields": error.details})
            raise error

        logger.info("Transaction manager disconnected", extra={"extra_fields": self._context("disconnect")})
