"""Configuration settings for streamhub.

Settings are grouped by concern and loaded from the environment (prefix
``STREAMHUB_``, nested groups separated by ``__``) or a ``.env`` file.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FFmpegConfig(BaseModel):
    """External transcoder configuration."""

    binary: str = Field(default="ffmpeg", description="Path to the ffmpeg executable")
    startup_grace: float = Field(
        default=0.5,
        description="Seconds to watch a freshly spawned process for an early exit",
    )
    graceful_stop_timeout: float = Field(
        default=2.0, description="Seconds between SIGTERM and SIGKILL"
    )


class TimeoutConfig(BaseModel):
    """Time boxes for session cleanup steps."""

    channel_close: float = Field(default=2.0, description="Control channel close timeout")
    transcode_stop: float = Field(default=3.0, description="Auxiliary process stop timeout")
    process_stop: float = Field(default=3.0, description="Primary process stop timeout")


class PoolConfig(BaseModel):
    """Connection pool configuration."""

    max_connections: int = Field(default=10, description="Maximum pooled connections")
    timeout: float = Field(default=30.0, description="Connection factory timeout")
    keep_alive_interval: float = Field(default=30.0, description="Keep-alive tick interval")
    idle_timeout: float = Field(default=60.0, description="Idle eviction threshold")


class ReconnectConfig(BaseModel):
    """Reconnect driver configuration."""

    max_attempts: Optional[int] = Field(
        default=None, description="Maximum attempts, unlimited when unset"
    )
    initial_delay: float = Field(default=1.0, description="First backoff delay in seconds")
    max_delay: float = Field(default=30.0, description="Backoff ceiling in seconds")
    multiplier: float = Field(default=2.0, description="Backoff growth factor")


class CacheConfig(BaseModel):
    """Cache configuration."""

    max_size: int = Field(default=100, description="LRU cache capacity")
    stream_ttl: float = Field(default=30.0, description="Stream record TTL in seconds")
    protocol_cache_size: int = Field(
        default=1000, description="Distinct URLs memoized by protocol detection"
    )


class QueueConfig(BaseModel):
    """Backpressure queue configuration."""

    max_size: int = Field(default=100, description="Queue capacity")
    batch_size: int = Field(default=10, description="Items drained per batch")
    batch_interval: float = Field(default=0.1, description="Seconds between batches")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Root log level"
    )
    json_output: bool = Field(default=False, description="Render log records as JSON")


class Settings(BaseSettings):
    """Application settings with logical grouping."""

    model_config = SettingsConfigDict(
        env_prefix="STREAMHUB_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    ffmpeg: FFmpegConfig = Field(default_factory=FFmpegConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    pool: PoolConfig = Field(default_factory=PoolConfig)
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: Application settings
    """
    return Settings()
