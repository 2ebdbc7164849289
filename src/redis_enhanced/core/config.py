"""
Configuration management for redis-enhanced.

Uses pydantic-settings for environment variable support (REDIS_* prefix),
with an optional YAML file underneath. Connection parameters are validated
into a ConnectionConfig before any socket is opened.
"""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any
from urllib.parse import quote, urlsplit, urlunsplit

import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from redis_enhanced.core.errors import ErrorCode, create_error
from redis_enhanced.core.types import AOFSyncOption, PersistencePolicy, PersistenceType

logger = logging.getLogger(__name__)

ENV_PREFIX = "REDIS_"
CONFIG_FILE_ENV = "REDIS_ENHANCED_CONFIG_FILE"
SUPPORTED_SCHEMES = frozenset({"redis", "rediss", "unix"})
VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def mask_secret(value: str | None, visible_chars: int = 0) -> str:
    """
    Mask a secret value for logging.

    Args:
        value: The secret value to mask
        visible_chars: Number of characters to show at start

    Returns:
        Masked string (e.g., "pa***")
    """
    if not value or len(value) <= visible_chars:
        return "***"
    return value[:visible_chars] + "***"


@dataclass(frozen=True)
class ConnectionConfig:
    """
    Validated connection parameters.

    Raises:
        RedisEnhancedError: INVALID_CONFIG when url is missing or malformed
    """
    url: str
    username: str | None = None
    password: str | None = None
    db: int | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.url, str) or not self.url.strip():
            raise create_error(
                ErrorCode.INVALID_CONFIG,
                "Redis URL is required",
                field="url",
            )

        parts = urlsplit(_with_scheme(self.url.strip()))
        if parts.scheme not in SUPPORTED_SCHEMES:
            raise create_error(
                ErrorCode.INVALID_CONFIG,
                "Invalid Redis URL format",
                field="url",
                url=self.url,
                scheme=parts.scheme,
            )
        try:
            # .port raises ValueError for non-numeric or out-of-range ports
            parts.port
        except ValueError as e:
            raise create_error(
                ErrorCode.INVALID_CONFIG,
                "Invalid Redis URL format",
                field="url",
                url=self.url,
                error=str(e),
            ) from e
        has_target = parts.path if parts.scheme == "unix" else parts.hostname
        if not has_target:
            raise create_error(
                ErrorCode.INVALID_CONFIG,
                "Invalid Redis URL format",
                field="url",
                url=self.url,
            )

        if self.db is not None and (not isinstance(self.db, int) or self.db < 0):
            raise create_error(
                ErrorCode.INVALID_CONFIG,
                "Redis db must be a non-negative integer",
                field="db",
                db=self.db,
            )

    def connection_url(self) -> str:
        """
        Build the URL handed to the redis client.

        Credentials from the config are injected into the netloc when the URL
        does not carry its own; a configured db replaces any path.
        """
        parts = urlsplit(_with_scheme(self.url.strip()))
        if parts.scheme == "unix":
            query = parts.query
            if self.db is not None:
                query = f"{query}&db={self.db}" if query else f"db={self.db}"
            return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))

        netloc = parts.netloc
        if self.password and "@" not in netloc:
            user = quote(self.username, safe="") if self.username else ""
            netloc = f"{user}:{quote(self.password, safe='')}@{netloc}"

        path = f"/{self.db}" if self.db is not None else parts.path
        return urlunsplit((parts.scheme, netloc, path, parts.query, parts.fragment))

    def safe_dict(self) -> dict[str, Any]:
        """Config for logs and error details, password masked."""
        return {
            "url": self.url,
            "username": self.username,
            "password": mask_secret(self.password) if self.password else None,
            "db": self.db,
        }


def _with_scheme(url: str) -> str:
    return url if "://" in url else f"redis://{url}"


class Settings(BaseSettings):
    """redis-enhanced configuration with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Connection
    url: str | None = Field(
        default=None,
        description="Full Redis URL; when unset it is built from host and port",
    )
    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6380, ge=1, le=65535, description="Redis port")
    username: str | None = Field(default=None, description="ACL username")
    password: str | None = Field(default=None, description="Redis password")
    db: int = Field(default=0, ge=0, description="Logical database index")

    # Entities
    default_schema: str = Field(
        default="base",
        min_length=1,
        description="Key namespace used when no schema name is given",
    )

    # Default durability policy
    persistence_type: PersistenceType = Field(default=PersistenceType.NONE)
    rdb_save_frequency: int = Field(default=3600, gt=0, description="Snapshot interval (seconds)")
    aof_appendfsync: AOFSyncOption = Field(default=AOFSyncOption.EVERYSEC)

    # Logging
    log_level: str = Field(default="INFO", description="DEBUG, INFO, WARNING, ERROR")
    log_json: bool = Field(default=False, description="Emit JSON log lines")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level value."""
        if v.upper() not in VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of: {sorted(VALID_LOG_LEVELS)}")
        return v.upper()

    def connection_config(self) -> ConnectionConfig:
        """Validated connection parameters from these settings."""
        url = self.url or f"redis://{self.host}:{self.port}"
        return ConnectionConfig(
            url=url,
            username=self.username,
            password=self.password,
            db=self.db,
        )

    def default_persistence_policy(self) -> PersistencePolicy:
        """Policy built from the persistence_* settings."""
        if self.persistence_type == PersistenceType.RDB:
            return PersistencePolicy.rdb(self.rdb_save_frequency)
        if self.persistence_type == PersistenceType.AOF:
            return PersistencePolicy.aof(self.aof_appendfsync)
        return PersistencePolicy.none()


def _find_config_file() -> Path | None:
    """
    Locate a YAML config file.

    Search order:
    - REDIS_ENHANCED_CONFIG_FILE environment variable
    - ./redis-enhanced.yaml, ./redis-enhanced.yml
    - ~/.redis-enhanced/config.yaml
    """
    env_config = os.getenv(CONFIG_FILE_ENV)
    if env_config:
        path = Path(env_config).expanduser()
        if path.exists():
            return path
        logger.warning(f"Config file from {CONFIG_FILE_ENV} not found: {path}")

    search_paths = [
        Path("redis-enhanced.yaml"),
        Path("redis-enhanced.yml"),
        Path.home() / ".redis-enhanced" / "config.yaml",
    ]
    for path in search_paths:
        if path.exists():
            logger.debug(f"Found config file: {path}")
            return path

    return None


def _load_yaml_config(path: Path) -> dict:
    """
    Load configuration from YAML file.

    Raises:
        RedisEnhancedError: INVALID_CONFIG if the file is not a YAML mapping
    """
    try:
        with open(path, encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise create_error(
            ErrorCode.INVALID_CONFIG,
            f"Invalid YAML in config file {path}",
            path=str(path),
            error=str(e),
        ) from e

    if not isinstance(config, dict):
        raise create_error(
            ErrorCode.INVALID_CONFIG,
            f"Config file must contain a mapping, got {type(config).__name__}",
            path=str(path),
        )

    logger.info(f"Loaded configuration from: {path}")
    return config


def load_settings(config_path: Path | str | None = None) -> Settings:
    """
    Build Settings from an optional YAML file plus the environment.

    Environment variables always take precedence over YAML values.

    Args:
        config_path: Explicit YAML path; when None the standard locations
            are searched

    Returns:
        Settings instance
    """
    if config_path is not None:
        path = Path(config_path).expanduser()
        if not path.exists():
            raise create_error(
                ErrorCode.INVALID_CONFIG,
                f"Config file not found: {path}",
                path=str(path),
            )
    else:
        path = _find_config_file()

    yaml_config = _load_yaml_config(path) if path else {}

    filtered_config = {}
    for key, value in yaml_config.items():
        env_key = f"{ENV_PREFIX}{key.upper()}"
        if os.getenv(env_key) is None:
            filtered_config[key] = value
        else:
            logger.debug(f"Skipping YAML key '{key}' - overridden by {env_key}")

    try:
        return Settings(**filtered_config)
    except ValidationError as e:
        raise create_error(
            ErrorCode.INVALID_CONFIG,
            "Invalid redis-enhanced settings",
            error=str(e),
        ) from e


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Settings are loaded from (in order of precedence):
    1. Environment variables (REDIS_* prefix, .env file)
    2. YAML config file (if found)
    3. Default values
    """
    return load_settings()


def reset_settings() -> None:
    """Clear the cached settings, forcing reload on next get_settings() call."""
    get_settings.cache_clear()
