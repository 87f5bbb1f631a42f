"""Allocator configuration with pydantic-settings.

Settings are read once from the environment (or a ``.env`` file) and are
immutable afterwards; the port range and TTL must not change while an
allocator is running.

Usage:
    from tunnel_ports.config import PortAllocatorSettings

    settings = PortAllocatorSettings()
    allocator = PortAllocator.from_settings(redis, settings)
"""

from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from redis.connection import parse_url

MIN_PORT = 1
MAX_PORT = 65535


class PortAllocatorSettings(BaseSettings):
    """Port allocator settings.

    All fields have defaults matching the session controller deployment.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # === Store ===

    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL shared by all backend processes",
        examples=["redis://redis:6379/0"],
    )

    # === Allocation ===

    port_range_start: int = Field(
        default=8080,
        ge=MIN_PORT,
        le=MAX_PORT,
        description="First port of the allocatable range (inclusive)",
    )
    port_range_end: int = Field(
        default=8180,
        ge=MIN_PORT,
        le=MAX_PORT,
        description="Last port of the allocatable range (inclusive)",
    )
    port_ttl_seconds: int = Field(
        default=86400,
        ge=1,
        description="Lifetime of an allocation that is never released",
    )
    port_key_prefix: str = Field(
        default="port:allocated:",
        min_length=1,
        description="Redis key prefix for allocation records",
    )

    # === Logging ===

    service_name: str = Field(
        default="tunnel-ports",
        description="Service name for structured logging",
    )
    log_format: Literal["json", "console"] = Field(
        default="console",
        description="Log output format",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
    )

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: str) -> str:
        """Reject URLs redis-py cannot connect with."""
        parse_url(v)
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper_v

    @model_validator(mode="after")
    def validate_port_range(self) -> "PortAllocatorSettings":
        if self.port_range_start > self.port_range_end:
            raise ValueError(
                f"port_range_start ({self.port_range_start}) must not exceed "
                f"port_range_end ({self.port_range_end})"
            )
        return self

    @property
    def capacity(self) -> int:
        return self.port_range_end - self.port_range_start + 1
