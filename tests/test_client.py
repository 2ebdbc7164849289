"""Tests for EnhancedRedisClient."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis import exceptions as redis_exceptions

from redis_enhanced.client import INFO_SECTIONS, EnhancedRedisClient
from redis_enhanced.core.config import ConnectionConfig
from redis_enhanced.core.errors import ErrorCode, RedisEnhancedError
from redis_enhanced.core.types import TransactionState
from redis_enhanced.persistence.controller import PersistenceController
from redis_enhanced.transactions.manager import TransactionManager

CONFIG = ConnectionConfig(url="redis://localhost:6380")


@pytest.fixture
async def client(fake_transport):
    """Connected client over the fake transport."""
    client = EnhancedRedisClient(CONFIG, transport=fake_transport)
    await client.connect()
    yield client
    await client.disconnect()


class TestConstruction:
    """Tests for configuration handling."""

    def test_config_from_settings(self, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://cache.local:6390")
        monkeypatch.setenv("REDIS_DB", "2")
        monkeypatch.setenv("REDIS_DEFAULT_SCHEMA", "orders")

        client = EnhancedRedisClient()

        assert client.config.connection_url() == "redis://cache.local:6390/2"
        assert client.default_schema == "orders"
        assert not client.is_connected

    def test_config_from_mapping(self):
        client = EnhancedRedisClient({"url": "redis://localhost:6380", "db": 1})
        assert client.config == ConnectionConfig(url="redis://localhost:6380", db=1)
        assert client.default_schema == "base"

    @pytest.mark.parametrize("config", [
        {"url": ""},
        {"host": "localhost"},
        {"url": "ftp://localhost"},
        "redis://localhost:6380",
    ])
    def test_invalid_config(self, config):
        with pytest.raises(RedisEnhancedError) as exc_info:
            EnhancedRedisClient(config)
        assert exc_info.value.code == ErrorCode.INVALID_CONFIG


class TestConnect:
    """Tests for connection bootstrapping."""

    async def test_builds_transport_from_config(self):
        transport = MagicMock()
        transport.is_open.return_value = False
        transport.connect = AsyncMock()
        config = ConnectionConfig(url="redis://localhost:6380", password="secret", db=3)

        with patch("redis_enhanced.client.RedisTransport", return_value=transport) as transport_cls:
            client = EnhancedRedisClient(config, socket_timeout=2.0)
            await client.connect()

        transport_cls.assert_called_once_with(
            "redis://:secret@localhost:6380/3",
            socket_timeout=2.0,
        )
        transport.connect.assert_awaited_once()
        assert client.is_connected
        assert isinstance(client.persistence, PersistenceController)

    async def test_opens_closed_transport(self, fake_transport):
        fake_transport.open = False
        client = EnhancedRedisClient(CONFIG, transport=fake_transport)
        await client.connect()
        assert fake_transport.commands("connect") == [("connect",)]

    async def test_connect_is_idempotent(self, client, fake_transport):
        await client.connect()
        assert fake_transport.commands("connect") == []

    async def test_failure_masks_password(self, fake_transport):
        fake_transport.open = False
        fake_transport.connect = AsyncMock(side_effect=redis_exceptions.ConnectionError("refused"))
        config = ConnectionConfig(url="redis://localhost:6380", password="secret")
        client = EnhancedRedisClient(config, transport=fake_transport)

        with pytest.raises(RedisEnhancedError) as exc_info:
            await client.connect()

        error = exc_info.value
        assert error.code == ErrorCode.REDIS_CONNECTION_ERROR
        assert error.details["config"]["password"] == "***"
        assert "secret" not in str(error.to_dict())
        assert not client.is_connected


class TestNotConnected:
    """Access before connect()."""

    def test_persistence(self):
        with pytest.raises(RedisEnhancedError) as exc_info:
            EnhancedRedisClient(CONFIG).persistence
        assert exc_info.value.code == ErrorCode.REDIS_CONNECTION_ERROR

    def test_transaction_manager(self):
        with pytest.raises(RedisEnhancedError) as exc_info:
            EnhancedRedisClient(CONFIG).transaction_manager("users")
        assert exc_info.value.code == ErrorCode.REDIS_CONNECTION_ERROR

    async def test_server_info(self):
        with pytest.raises(RedisEnhancedError) as exc_info:
            await EnhancedRedisClient(CONFIG).server_info()
        assert exc_info.value.code == ErrorCode.REDIS_CONNECTION_ERROR

    async def test_ping_returns_false(self):
        assert await EnhancedRedisClient(CONFIG).ping() is False


class TestComponents:
    """Tests for managers and controller wiring."""

    async def test_manager_cached_per_schema(self, client, fake_transport):
        users = client.transaction_manager("users")
        assert isinstance(users, TransactionManager)
        assert users.transport is fake_transport
        assert users.schema_name == "users"
        assert client.transaction_manager("users") is users
        assert client.transaction_manager("orders") is not users

    async def test_default_schema(self, client):
        assert client.transaction_manager().schema_name == "base"

    async def test_injected_repository(self, client):
        repository = MagicMock()
        repository.schema_name = "users"
        manager = client.transaction_manager("users", repository=repository)
        assert manager.repository is repository
        assert client.transaction_manager("users") is manager

    async def test_managers_share_key_space(self, client):
        saved = await client.transaction_manager("users").save({"name": "John"})
        fetched = await client.transaction_manager("users").fetch(saved.entity_id)
        assert fetched.version == 1

    async def test_open_transaction_blocks_other_schemas(self, client, fake_transport):
        users = client.transaction_manager("users")
        orders = client.transaction_manager("orders")
        john = await users.save({"name": "John"})

        async with orders.transaction():
            with pytest.raises(RedisEnhancedError) as exc_info:
                await users.remove(john.entity_id)
            assert exc_info.value.code == ErrorCode.TRANSACTION_ERROR

        assert f"users:{john.entity_id}" in fake_transport.data


class TestServer:
    """Tests for ping, INFO and FLUSHDB."""

    async def test_ping(self, client):
        assert await client.ping() is True

    async def test_ping_failure_returns_false(self, client, fake_transport):
        fake_transport.ping = AsyncMock(side_effect=redis_exceptions.TimeoutError("slow"))
        assert await client.ping() is False

    async def test_single_section(self, client):
        info = await client.server_info("Server")
        assert info == {
            "server": {"redis_version": "7.2.4", "redis_mode": "standalone", "tcp_port": "6380"},
        }

    async def test_all_sections(self, client):
        info = await client.server_info()
        assert tuple(info) == INFO_SECTIONS
        assert info["persistence"]["rdb_last_save_time"] == "1700000000"
        assert info["cpu"] == {}

    async def test_info_failure_classified(self, client, fake_transport):
        fake_transport.info = AsyncMock(side_effect=redis_exceptions.TimeoutError("slow"))
        with pytest.raises(RedisEnhancedError) as exc_info:
            await client.server_info("server")
        assert exc_info.value.code == ErrorCode.REDIS_TIMEOUT_ERROR
        assert exc_info.value.details["section"] == "server"

    async def test_flush_db(self, client, fake_transport):
        fake_transport.data["users:1"] = "{}"
        await client.flush_db()
        assert fake_transport.data == {}

    async def test_flush_failure_classified(self, client, fake_transport):
        fake_transport.flush_db = AsyncMock(side_effect=redis_exceptions.ResponseError("READONLY"))
        with pytest.raises(RedisEnhancedError) as exc_info:
            await client.flush_db()
        assert exc_info.value.code == ErrorCode.REDIS_OPERATION_ERROR


class TestDisconnect:
    """Tests for disconnect and the context manager."""

    async def test_rolls_back_open_transactions(self, fake_transport):
        client = EnhancedRedisClient(CONFIG, transport=fake_transport)
        await client.connect()
        users = client.transaction_manager("users")
        await users.begin_transaction()
        await users.save({"name": "John"})

        await client.disconnect()

        assert users.state == TransactionState.IDLE
        assert fake_transport.data == {}
        assert not fake_transport.is_open()
        assert not client.is_connected

    async def test_idempotent(self, fake_transport):
        client = EnhancedRedisClient(CONFIG, transport=fake_transport)
        await client.connect()
        await client.disconnect()
        await client.disconnect()
        assert fake_transport.commands("close") == [("close",)]

    async def test_close_failure(self, fake_transport):
        client = EnhancedRedisClient(CONFIG, transport=fake_transport)
        await client.connect()
        fake_transport.close = AsyncMock(side_effect=OSError("socket error"))

        with pytest.raises(RedisEnhancedError) as exc_info:
            await client.disconnect()

        assert exc_info.value.code == ErrorCode.REDIS_CONNECTION_ERROR
        assert not client.is_connected

    async def test_context_manager(self, fake_transport):
        async with EnhancedRedisClient(CONFIG, transport=fake_transport) as client:
            assert client.is_connected
            assert await client.ping()
        assert not client.is_connected
        assert not fake_transport.is_open()
