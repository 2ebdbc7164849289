"""
Pytest Configuration for redis-enhanced Tests.

Provides an in-memory transport, component fixtures and test isolation for
settings. Integration tests talk to a real Redis and skip when none is
reachable.
"""

import fnmatch
import os
import sys
import uuid
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from redis import exceptions as redis_exceptions

# Load .env file for environment variables (especially for integration tests)
env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from redis_enhanced.persistence.controller import PersistenceController  # noqa: E402
from redis_enhanced.storage.repository import RedisRepository  # noqa: E402
from redis_enhanced.transactions.manager import TransactionManager  # noqa: E402

SETTINGS_ENV_VARS = (
    "REDIS_URL",
    "REDIS_HOST",
    "REDIS_PORT",
    "REDIS_USERNAME",
    "REDIS_PASSWORD",
    "REDIS_DB",
    "REDIS_DEFAULT_SCHEMA",
    "REDIS_PERSISTENCE_TYPE",
    "REDIS_RDB_SAVE_FREQUENCY",
    "REDIS_AOF_APPENDFSYNC",
    "REDIS_LOG_LEVEL",
    "REDIS_LOG_JSON",
    "REDIS_ENHANCED_CONFIG_FILE",
)


# Configure pytest markers
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "slow: mark test as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (needs Redis)"
    )


@pytest.fixture(autouse=True, scope="function")
def auto_patch_settings(monkeypatch, request, tmp_path):
    """
    Isolate settings for unit tests.

    Clears the settings cache, removes REDIS_* variables and runs from an
    empty directory so no local config file is picked up. Integration tests
    keep the real environment.
    """
    from redis_enhanced.core.config import reset_settings

    reset_settings()

    markers = [m.name for m in request.node.iter_markers()]
    if "integration" not in markers:
        for name in SETTINGS_ENV_VARS:
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))
        monkeypatch.chdir(tmp_path)

    yield
    reset_settings()


@pytest.fixture(scope="function")
def schema_name():
    """Generate a unique schema name."""
    return f"test{uuid.uuid4().hex[:8]}"


# ============================================================================
# In-memory transport
# ============================================================================


class FakeTransport:
    """
    KeyValueTransport backed by dicts.

    Emulates glob KEYS, CONFIG GET/SET, INFO sections and MULTI/EXEC
    queuing of writes. Every call is appended to ``calls`` as
    ``(command, *args)`` so tests can assert ordering.
    """

    DEFAULT_CONFIG = {
        "save": "3600 1 300 100 60 10000",
        "appendonly": "no",
        "appendfsync": "everysec",
    }

    def __init__(self):
        self.data: dict[str, str] = {}
        self.config: dict[str, str] = dict(self.DEFAULT_CONFIG)
        self.info_sections: dict[str, str] = {
            "persistence": "\n".join([
                "# Persistence",
                "loading:0",
                "rdb_bgsave_in_progress:0",
                "rdb_last_save_time:1700000000",
                "aof_rewrite_in_progress:0",
                "aof_last_rewrite_time:-1",
            ]),
            "server": "# Server\nredis_version:7.2.4\nredis_mode:standalone\ntcp_port:6380",
        }
        self.calls: list[tuple] = []
        self.batch: list[tuple] | None = None
        self.open = True

    # Lifecycle

    def is_open(self) -> bool:
        return self.open

    async def connect(self) -> None:
        self.calls.append(("connect",))
        self.open = True

    async def close(self) -> None:
        self.calls.append(("close",))
        self.open = False
        self.batch = None

    def _check_open(self) -> None:
        if not self.open:
            raise redis_exceptions.ConnectionError("Transport is not connected")

    # Commands

    async def get(self, key: str) -> str | None:
        self._check_open()
        self.calls.append(("get", key))
        return self.data.get(key)

    async def set(self, key: str, value: str) -> Any:
        self._check_open()
        self.calls.append(("set", key))
        if self.batch is not None:
            self.batch.append(("set", key, value))
            return None
        self.data[key] = value
        return True

    async def keys(self, pattern: str) -> list[str]:
        self._check_open()
        self.calls.append(("keys", pattern))
        return [key for key in self.data if fnmatch.fnmatchcase(key, pattern)]

    async def delete(self, keys) -> int:
        self._check_open()
        key_list = list(keys)
        self.calls.append(("delete", tuple(sorted(key_list))))
        if self.batch is not None:
            self.batch.append(("delete", key_list))
            return 0
        return sum(1 for key in key_list if self.data.pop(key, None) is not None)

    async def config_get(self, name: str) -> str:
        self._check_open()
        self.calls.append(("config_get", name))
        return self.config.get(name, "")

    async def config_set(self, name: str, value: str) -> Any:
        self._check_open()
        self.calls.append(("config_set", name, value))
        self.config[name] = value
        return True

    async def info(self, section: str) -> str:
        self._check_open()
        self.calls.append(("info", section))
        return self.info_sections.get(section, "")

    async def ping(self) -> bool:
        self._check_open()
        return True

    async def flush_db(self) -> None:
        self._check_open()
        self.calls.append(("flush_db",))
        self.data.clear()

    # Batches

    @property
    def in_batch(self) -> bool:
        return self.batch is not None

    async def begin_batch(self) -> None:
        self._check_open()
        self.calls.append(("begin_batch",))
        if self.batch is not None:
            raise redis_exceptions.ResponseError("MULTI calls can not be nested")
        self.batch = []

    async def execute_batch(self) -> list[Any]:
        self.calls.append(("execute_batch",))
        if self.batch is None:
            raise redis_exceptions.ResponseError("EXEC without MULTI")
        queued, self.batch = self.batch, None
        results = []
        for command in queued:
            if command[0] == "set":
                self.data[command[1]] = command[2]
                results.append(True)
            else:
                results.append(sum(1 for key in command[1] if self.data.pop(key, None) is not None))
        return results

    async def discard_batch(self) -> None:
        self.calls.append(("discard_batch",))
        if self.batch is None:
            raise redis_exceptions.ResponseError("DISCARD without MULTI")
        self.batch = None

    def commands(self, name: str) -> list[tuple]:
        """Recorded calls of one command."""
        return [call for call in self.calls if call[0] == name]


@pytest.fixture
def fake_transport():
    """Open in-memory transport."""
    return FakeTransport()


@pytest.fixture
def repository(fake_transport):
    """RedisRepository for the 'users' schema over the fake transport."""
    return RedisRepository(fake_transport, "users")


@pytest.fixture
def manager(fake_transport, repository):
    """TransactionManager bound to the fake transport."""
    return TransactionManager(fake_transport, repository)


@pytest.fixture
def controller(fake_transport):
    """PersistenceController bound to the fake transport."""
    return PersistenceController(fake_transport)


# ============================================================================
# Infrastructure Availability Checks
# ============================================================================


def _integration_url() -> str:
    return os.environ.get("REDIS_URL", "redis://localhost:6380/15")


@pytest.fixture(scope="session")
def redis_url():
    """URL of the Redis used by integration tests."""
    return _integration_url()


@pytest.fixture(scope="session")
def redis_available():
    """Check if Redis is reachable."""
    try:
        import redis as redis_sync

        client = redis_sync.Redis.from_url(_integration_url(), socket_timeout=2)
        try:
            return bool(client.ping())
        finally:
            client.close()
    except Exception:
        return False


@pytest.fixture(autouse=True)
def skip_integration_if_unavailable(request):
    """Skip integration tests when Redis is unavailable."""
    markers = [m.name for m in request.node.iter_markers()]
    if "integration" in markers and not request.getfixturevalue("redis_available"):
        pytest.skip("Redis not available - skipping integration test")


@pytest_asyncio.fixture
async def redis_client(redis_url):
    """Connected client against the integration database, flushed around each test."""
    from redis_enhanced.client import EnhancedRedisClient
    from redis_enhanced.core.config import ConnectionConfig

    client = EnhancedRedisClient(ConnectionConfig(url=redis_url))
    await client.connect()
    await client.flush_db()
    yield client
    if client.is_connected:
        await client.flush_db()
        await client.disconnect()
