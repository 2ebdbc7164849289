"""
Key-value transport for redis-enhanced.

KeyValueTransport is the narrow command capability the core depends on.
RedisTransport implements it over redis.asyncio.

Batch semantics (MULTI/EXEC):
- begin_batch opens a transactional pipeline; one per transport, so every
  component sharing the transport sees it through in_batch
- while it is open, set() and delete() are queued on it instead of being
  sent; reads always go to the live connection
- execute_batch sends MULTI ... EXEC and returns the per-command results
- discard_batch drops the queue without touching the store
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

import redis.asyncio as redis
from redis import exceptions as redis_exceptions

logger = logging.getLogger(__name__)


@runtime_checkable
class KeyValueTransport(Protocol):
    """Command-level capability consumed by the core components."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> Any: ...

    async def keys(self, pattern: str) -> list[str]: ...

    async def delete(self, keys: Iterable[str]) -> int: ...

    async def config_get(self, name: str) -> str: ...

    async def config_set(self, name: str, value: str) -> Any: ...

    async def info(self, section: str) -> str: ...

    async def ping(self) -> bool: ...

    async def flush_db(self) -> None: ...

    @property
    def in_batch(self) -> bool: ...

    async def begin_batch(self) -> None: ...

    async def execute_batch(self) -> Sequence[Any]: ...

    async def discard_batch(self) -> None: ...

    def is_open(self) -> bool: ...

    async def connect(self) -> None: ...

    async def close(self) -> None: ...


class RedisTransport:
    """
    KeyValueTransport over a redis.asyncio client.

    Example:
        transport = RedisTransport("redis://localhost:6380/0")
        await transport.connect()
        await transport.set("base:42", "{}")
        await transport.close()
    """

    SCAN_COUNT = 500

    def __init__(
        self,
        url: str,
        socket_timeout: float | None = None,
        client: redis.Redis | None = None,
    ):
        """
        Initialize transport.

        Args:
            url: Redis connection URL (credentials and db included)
            socket_timeout: Per-command timeout in seconds (None = client default)
            client: Already-built client; when given, connect() only pings it
        """
        self._url = url
        self._socket_timeout = socket_timeout
        self._client: redis.Redis | None = client
        self._pipeline: Any | None = None

    # ==================== Connection ====================

    def is_open(self) -> bool:
        """True while a client is held."""
        return self._client is not None

    async def connect(self) -> None:
        """Open the client and verify it with PING."""
        client = self._client or redis.from_url(
            self._url,
            decode_responses=True,
            socket_timeout=self._socket_timeout,
        )
        try:
            await client.ping()
        except Exception:
            await client.aclose()
            self._client = None
            raise

        self._client = client
        logger.debug("Redis transport connected")

    async def close(self) -> None:
        """Release the client. No-op when already closed."""
        if self._client is None:
            return

        client, self._client = self._client, None
        if self._pipeline is not None:
            pipeline, self._pipeline = self._pipeline, None
            await pipeline.reset()
        await client.aclose()
        logger.debug("Redis transport closed")

    def _require_client(self) -> redis.Redis:
        if self._client is None:
            raise redis_exceptions.ConnectionError("Transport is not connected")
        return self._client

    # ==================== Commands ====================

    async def get(self, key: str) -> str | None:
        return await self._require_client().get(key)

    async def set(self, key: str, value: str) -> Any:
        """SET, or queue it when a batch is open (returns None then)."""
        client = self._require_client()
        if self._pipeline is not None:
            self._pipeline.set(key, value)
            return None
        return await client.set(key, value)

    async def keys(self, pattern: str) -> list[str]:
        """
        Keys matching a glob pattern.

        Uses SCAN rather than KEYS so large key spaces do not block the
        server; SCAN may repeat keys, hence the de-duplication.
        """
        client = self._require_client()
        found = [key async for key in client.scan_iter(match=pattern, count=self.SCAN_COUNT)]
        return list(dict.fromkeys(found))

    async def delete(self, keys: Iterable[str]) -> int:
        """DEL, or queue it when a batch is open (returns 0 then)."""
        client = self._require_client()
        key_list = list(keys)
        if not key_list:
            return 0
        if self._pipeline is not None:
            self._pipeline.delete(*key_list)
            return 0
        return await client.delete(*key_list)

    async def config_get(self, name: str) -> str:
        """CONFIG GET for a single parameter ("" when unknown)."""
        result = await self._require_client().config_get(name)
        value = result.get(name, "")
        return "" if value is None else str(value)

    async def config_set(self, name: str, value: str) -> Any:
        return await self._require_client().config_set(name, value)

    async def info(self, section: str) -> str:
        """INFO <section> as "key:value" lines."""
        data = await self._require_client().info(section)
        return _render_info(data)

    async def ping(self) -> bool:
        return bool(await self._require_client().ping())

    async def flush_db(self) -> None:
        await self._require_client().flushdb()

    # ==================== Batches ====================

    @property
    def in_batch(self) -> bool:
        """True between begin_batch and execute/discard."""
        return self._pipeline is not None

    async def begin_batch(self) -> None:
        """Start queuing writes for one MULTI/EXEC round trip."""
        client = self._require_client()
        if self._pipeline is not None:
            raise redis_exceptions.ResponseError("MULTI calls can not be nested")
        self._pipeline = client.pipeline(transaction=True)

    async def execute_batch(self) -> list[Any]:
        """Send the queued writes atomically and return their results."""
        if self._pipeline is None:
            raise redis_exceptions.ResponseError("EXEC without MULTI")
        pipeline, self._pipeline = self._pipeline, None
        # execute() resets the pipeline on success and failure
        return list(await pipeline.execute())

    async def discard_batch(self) -> None:
        """Drop the queued writes."""
        if self._pipeline is None:
            raise redis_exceptions.ResponseError("DISCARD without MULTI")
        pipeline, self._pipeline = self._pipeline, None
        await pipeline.reset()


def _render_info(data: Mapping[str, Any]) -> str:
    """Render redis-py's parsed INFO dict back into wire-format lines."""
    lines = []
    for key, value in data.items():
        if isinstance(value, Mapping):
            value = ",".join(f"{k}={v}" for k, v in value.items())
        lines.append(f"{key}:{value}")
    return "\n".join(lines)


def parse_info(text: str) -> dict[str, str]:
    """
    Parse "key:value" INFO lines into a dict.

    Blank lines and "# Section" headers are skipped; only the first colon
    separates key from value.
    """
    fields: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or ":" not in line:
            continue
        key, value = line.split(":", 1)
        fields[key.strip()] = value.strip()
    return fields
