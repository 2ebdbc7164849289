"""
redis-enhanced client.

EnhancedRedisClient owns connection bootstrapping: it validates connection
parameters, opens one RedisTransport and hands that transport, already
connected, to the TransactionManager and PersistenceController instances it
creates.
"""

import logging
from collections.abc import Mapping
from typing import Any

from redis_enhanced.core.config import ConnectionConfig, get_settings
from redis_enhanced.core.errors import (
    ErrorCode,
    RedisEnhancedError,
    classify_redis_error,
    create_error,
    wrap_error,
)
from redis_enhanced.persistence.controller import PersistenceController
from redis_enhanced.storage.repository import EntityRepository, RedisRepository
from redis_enhanced.storage.transport import KeyValueTransport, RedisTransport, parse_info
from redis_enhanced.transactions.manager import TransactionManager

logger = logging.getLogger(__name__)

COMPONENT = "EnhancedRedisClient"
DEFAULT_SCHEMA = "base"

# Sections collected by server_info() when none is requested
INFO_SECTIONS = (
    "server",
    "clients",
    "memory",
    "persistence",
    "stats",
    "replication",
    "cpu",
    "keyspace",
)


class EnhancedRedisClient:
    """
    Entry point for redis-enhanced.

    Example:
        async with EnhancedRedisClient(ConnectionConfig(url="redis://localhost:6380")) as client:
            manager = client.transaction_manager("orders")
            order = await manager.save({"item": "book"})
            await client.persistence.set_persistence(PersistencePolicy.rdb(3600))
    """

    def __init__(
        self,
        config: ConnectionConfig | Mapping[str, Any] | None = None,
        *,
        default_schema: str | None = None,
        socket_timeout: float | None = None,
        transport: KeyValueTransport | None = None,
    ):
        """
        Initialize client.

        Args:
            config: Connection parameters; when None they come from settings
            default_schema: Schema used by transaction_manager() without a name
            socket_timeout: Per-command timeout passed to the transport
            transport: Pre-built transport (connect() opens it if needed)

        Raises:
            RedisEnhancedError: INVALID_CONFIG on missing or malformed parameters
        """
        if config is None:
            settings = get_settings()
            config = settings.connection_config()
            default_schema = default_schema or settings.default_schema
        elif isinstance(config, Mapping):
            config = _config_from_mapping(config)
        elif not isinstance(config, ConnectionConfig):
            raise create_error(
                ErrorCode.INVALID_CONFIG,
                "Connection config must be a ConnectionConfig or a mapping",
                component=COMPONENT,
                received=type(config).__name__,
            )

        self.config = config
        self.default_schema = default_schema or DEFAULT_SCHEMA
        self._socket_timeout = socket_timeout
        self._transport: KeyValueTransport | None = transport
        self._persistence: PersistenceController | None = None
        self._managers: dict[str, TransactionManager] = {}
        self._connected = False

    async def __aenter__(self) -> "EnhancedRedisClient":
        """Enter async context manager."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit async context manager."""
        await self.disconnect()

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _context(self, operation: str, **extra: Any) -> dict[str, Any]:
        return {"component": COMPONENT, "operation": operation, **extra}

    def _not_connected(self, operation: str) -> RedisEnhancedError:
        return create_error(
            ErrorCode.REDIS_CONNECTION_ERROR,
            "Client not connected. Call connect() first.",
            **self._context(operation),
        )

    def _require_transport(self, operation: str) -> KeyValueTransport:
        if not self._connected or self._transport is None:
            raise self._not_connected(operation)
        return self._transport

    # ==================== Lifecycle ====================

    async def connect(self) -> None:
        """
        Open the transport and create the persistence controller.

        Raises:
            RedisEnhancedError: REDIS_CONNECTION_ERROR on any failure
        """
        if self._connected:
            return

        safe_config = self.config.safe_dict()
        logger.debug("Connecting to Redis", extra={"extra_fields": self._context("connect", config=safe_config)})

        try:
            if self._transport is None:
                self._transport = RedisTransport(
                    self.config.connection_url(),
                    socket_timeout=self._socket_timeout,
                )
            if not self._transport.is_open():
                await self._transport.connect()
        except Exception as e:
            error = wrap_error(
                ErrorCode.REDIS_CONNECTION_ERROR,
                e,
                "Failed to connect to Redis",
                **self._context("connect", config=safe_config),
            )
            logger.error(f"Failed to connect to Redis: {e}", extra={"extra_fields": error.details})
            raise error

        self._persistence = PersistenceController(self._transport)
        self._connected = True
        logger.info(
            "Successfully connected to Redis",
            extra={"extra_fields": self._context("connect", url=self.config.url)},
        )

    async def disconnect(self) -> None:
        """
        Roll back open transactions and release the connection.

        Safe to call repeatedly.

        Raises:
            RedisEnhancedError: REDIS_CONNECTION_ERROR if closing fails
        """
        if not self._connected:
            return

        try:
            for schema_name, manager in self._managers.items():
                if not manager.is_transaction_active:
                    continue
                try:
                    await manager.rollback_transaction()
                except Exception as e:
                    logger.warning(
                        f"Implicit rollback for schema '{schema_name}' failed: {e}",
                        extra={"extra_fields": self._context("disconnect", schema=schema_name, error=str(e))},
                    )

            if self._persistence is not None:
                await self._persistence.disconnect()
            elif self._transport is not None and self._transport.is_open():
                await self._transport.close()
        finally:
            self._connected = False
            self._managers.clear()
            self._persistence = None

        logger.info("Successfully disconnected from Redis", extra={"extra_fields": self._context("disconnect")})

    # ==================== Components ====================

    def transaction_manager(
        self,
        schema_name: str | None = None,
        repository: EntityRepository | None = None,
    ) -> TransactionManager:
        """
        Manager for one schema, bound to the shared transport.

        Managers are cached per schema name; passing a repository replaces
        the cached manager for that schema.

        Raises:
            RedisEnhancedError: REDIS_CONNECTION_ERROR when not connected
        """
        transport = self._require_transport("transaction_manager")
        name = schema_name or self.default_schema

        manager = self._managers.get(name)
        if manager is None or repository is not None:
            manager = TransactionManager(
                transport,
                repository or RedisRepository(transport, name),
                schema_name=name,
            )
            self._managers[name] = manager
        return manager

    @property
    def persistence(self) -> PersistenceController:
        """
        Durability policy controller.

        Raises:
            RedisEnhancedError: REDIS_CONNECTION_ERROR when not connected
        """
        if not self._connected or self._persistence is None:
            raise self._not_connected("persistence")
        return self._persistence

    # ==================== Server ====================

    async def ping(self) -> bool:
        """Health probe. Returns False instead of raising."""
        if not self._connected or self._transport is None:
            return False
        try:
            return bool(await self._transport.ping())
        except Exception as e:
            logger.error(f"Failed to ping Redis: {e}", extra={"extra_fields": self._context("ping", error=str(e))})
            return False

    async def server_info(self, section: str | None = None) -> dict[str, dict[str, str]]:
        """
        INFO as ``{section: {key: value}}``.

        Args:
            section: Single section to read; all common sections when None

        Raises:
            RedisEnhancedError: REDIS_CONNECTION_ERROR when not connected,
                a classified REDIS_* code when INFO fails
        """
        transport = self._require_transport("server_info")
        sections = (section.lower(),) if section else INFO_SECTIONS

        info: dict[str, dict[str, str]] = {}
        for name in sections:
            try:
                info[name] = parse_info(await transport.info(name))
            except Exception as e:
                raise self._operation_error("server_info", e, section=name)
        return info

    async def flush_db(self) -> None:
        """
        Delete every key in the selected database.

        Raises:
            RedisEnhancedError: REDIS_CONNECTION_ERROR when not connected,
                a classified REDIS_* code when FLUSHDB fails
        """
        transport = self._require_transport("flush_db")
        try:
            await transport.flush_db()
        except Exception as e:
            raise self._operation_error("flush_db", e)

        logger.warning("Flushed Redis database", extra={"extra_fields": self._context("flush_db", db=self.config.db)})

    def _operation_error(self, operation: str, error: Exception, **extra: Any) -> RedisEnhancedError:
        wrapped = wrap_error(
            classify_redis_error(error),
            error,
            f"Redis {operation} failed",
            **self._context(operation, **extra),
        )
        logger.error(f"Redis {operation} failed: {error}", extra={"extra_fields": wrapped.details})
        return wrapped


def _config_from_mapping(data: Mapping[str, Any]) -> ConnectionConfig:
    allowed = {"url", "username", "password", "db"}
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise create_error(
            ErrorCode.INVALID_CONFIG,
            f"Unknown connection parameters: {', '.join(unknown)}",
            component=COMPONENT,
            unknown=unknown,
        )
    return ConnectionConfig(
        url=data.get("url"),
        username=data.get("username"),
        password=data.get("password"),
        db=data.get("db"),
    )
