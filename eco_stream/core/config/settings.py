#!/usr/bin/env python3
"""
Centralized Configuration Module using Pydantic Settings

This module provides type-safe, environment-based configuration for the Eco
streaming client. All tunables (endpoints, watchdog intervals, fallback guard,
logging) live here so every session reads the same values.

Architectural Decision: Pydantic Settings for type safety and validation
- Environment variable loading with .env support
- Type validation at startup (fail fast on misconfiguration)
- Easy testing with override mechanisms (reload_settings)

Author: System Architect
Date: 2025-12-05
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StreamEndpointSettings(BaseSettings):
    """
    Backend endpoint configuration.

    STAGE-0.1: Endpoint configuration

    The streaming endpoint and the non-streaming JSON endpoint used by the
    fallback manager share the same base URL.
    """

    ECO_API_BASE_URL: str = Field(default="http://localhost:3001", description="Backend base URL")
    ECO_STREAM_PATH: str = Field(default="/api/ask-eco", description="SSE endpoint path")
    ECO_FALLBACK_PATH: str = Field(default="/api/ask-eco", description="JSON fallback endpoint path")
    STREAM_REQUEST_TIMEOUT: float = Field(default=60.0, description="Connect/write timeout in seconds")
    STREAM_MAX_RETRIES: int = Field(
        default=1, ge=0, le=5, description="Retries for network failures before the stream opens"
    )
    STREAM_RETRY_BASE_DELAY: float = Field(default=0.25, ge=0, description="Initial retry backoff in seconds")
    STREAM_RETRY_MAX_DELAY: float = Field(default=2.0, ge=0, description="Maximum retry backoff in seconds")
    ECO_CLIENT_ID: str = Field(default="webapp", description="Default X-Client-Id header value")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class WatchdogSettings(BaseSettings):
    """
    Watchdog timer configuration.

    STAGE-W: Stall detection thresholds (milliseconds, <= 0 disables)
    """

    WATCHDOG_FIRST_TOKEN_MS: int = Field(default=25_000, description="prompt_ready -> first token limit")
    WATCHDOG_HEARTBEAT_MS: int = Field(default=30_000, description="Silence allowed between chunks")
    TYPING_WATCHDOG_MS: int = Field(default=45_000, description="Typing indicator guard")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class FallbackSettings(BaseSettings):
    """
    JSON fallback configuration.

    STAGE-F: Degraded-mode guard timer
    """

    STREAM_FALLBACK_ENABLED: bool = Field(default=False, description="Enable JSON fallback")
    STREAM_GUARD_TIMEOUT_MS: int = Field(
        default=15_000, ge=0, description="Guard timer before switching to JSON fallback"
    )

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class LoggingSettings(BaseSettings):
    """
    Logging configuration for structured logging.

    STAGE-L: Logging configuration

    Architectural Decision: structlog for production-grade logging
    """

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class ApplicationSettings(BaseSettings):
    """
    General application settings.

    STAGE-0: Application initialization
    """

    ENVIRONMENT: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment"
    )
    DEBUG: bool = Field(default=False, description="Debug mode")
    APP_NAME: str = Field(default="Eco Stream Client", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class Settings(BaseSettings):
    """
    Main settings class that aggregates all configuration sections.

    STAGE-0: Centralized configuration initialization

    Usage:
        from eco_stream.core.config.settings import get_settings

        settings = get_settings()
        first_token_ms = settings.watchdog.WATCHDOG_FIRST_TOKEN_MS
        guard_ms = settings.fallback.STREAM_GUARD_TIMEOUT_MS
    """

    # Endpoint settings
    ECO_API_BASE_URL: str = Field(default="http://localhost:3001", description="Backend base URL")
    ECO_STREAM_PATH: str = Field(default="/api/ask-eco", description="SSE endpoint path")
    ECO_FALLBACK_PATH: str = Field(default="/api/ask-eco", description="JSON fallback endpoint path")
    STREAM_REQUEST_TIMEOUT: float = Field(default=60.0, description="Connect/write timeout in seconds")
    STREAM_MAX_RETRIES: int = Field(default=1, ge=0, le=5, description="Network retries before open")
    STREAM_RETRY_BASE_DELAY: float = Field(default=0.25, ge=0, description="Initial retry backoff in seconds")
    STREAM_RETRY_MAX_DELAY: float = Field(default=2.0, ge=0, description="Maximum retry backoff in seconds")
    ECO_CLIENT_ID: str = Field(default="webapp", description="Default X-Client-Id header value")

    # Watchdog settings
    WATCHDOG_FIRST_TOKEN_MS: int = Field(default=25_000, description="prompt_ready -> first token limit")
    WATCHDOG_HEARTBEAT_MS: int = Field(default=30_000, description="Silence allowed between chunks")
    TYPING_WATCHDOG_MS: int = Field(default=45_000, description="Typing indicator guard")

    # Fallback settings
    STREAM_FALLBACK_ENABLED: bool = Field(default=False, description="Enable JSON fallback")
    STREAM_GUARD_TIMEOUT_MS: int = Field(default=15_000, ge=0, description="Fallback guard timer")

    # Logging settings
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    # Application settings
    ENVIRONMENT: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment"
    )
    DEBUG: bool = Field(default=False, description="Debug mode")
    APP_NAME: str = Field(default="Eco Stream Client", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @field_validator("ECO_API_BASE_URL")
    @classmethod
    def strip_trailing_slash(cls, v):
        """Normalize the base URL so paths can be appended verbatim."""
        return v.rstrip("/")

    # Nested configuration views
    @property
    def stream(self) -> 'StreamEndpointSettings':
        """Get endpoint settings."""
        return StreamEndpointSettings(
            ECO_API_BASE_URL=self.ECO_API_BASE_URL,
            ECO_STREAM_PATH=self.ECO_STREAM_PATH,
            ECO_FALLBACK_PATH=self.ECO_FALLBACK_PATH,
            STREAM_REQUEST_TIMEOUT=self.STREAM_REQUEST_TIMEOUT,
            STREAM_MAX_RETRIES=self.STREAM_MAX_RETRIES,
            STREAM_RETRY_BASE_DELAY=self.STREAM_RETRY_BASE_DELAY,
            STREAM_RETRY_MAX_DELAY=self.STREAM_RETRY_MAX_DELAY,
            ECO_CLIENT_ID=self.ECO_CLIENT_ID,
        )

    @property
    def watchdog(self) -> 'WatchdogSettings':
        """Get watchdog settings."""
        return WatchdogSettings(
            WATCHDOG_FIRST_TOKEN_MS=self.WATCHDOG_FIRST_TOKEN_MS,
            WATCHDOG_HEARTBEAT_MS=self.WATCHDOG_HEARTBEAT_MS,
            TYPING_WATCHDOG_MS=self.TYPING_WATCHDOG_MS,
        )

    @property
    def fallback(self) -> 'FallbackSettings':
        """Get fallback settings."""
        return FallbackSettings(
            STREAM_FALLBACK_ENABLED=self.STREAM_FALLBACK_ENABLED,
            STREAM_GUARD_TIMEOUT_MS=self.STREAM_GUARD_TIMEOUT_MS,
        )

    @property
    def logging(self) -> 'LoggingSettings':
        """Get logging settings."""
        return LoggingSettings(
            LOG_LEVEL=self.LOG_LEVEL,
            LOG_FORMAT=self.LOG_FORMAT,
        )

    @property
    def app(self) -> 'ApplicationSettings':
        """Get application settings."""
        return ApplicationSettings(
            ENVIRONMENT=self.ENVIRONMENT,
            DEBUG=self.DEBUG,
            APP_NAME=self.APP_NAME,
            APP_VERSION=self.APP_VERSION,
        )

    @property
    def stream_url(self) -> str:
        """Absolute URL of the SSE endpoint."""
        return _join_url(self.ECO_API_BASE_URL, self.ECO_STREAM_PATH)

    @property
    def fallback_url(self) -> str:
        """Absolute URL of the JSON fallback endpoint."""
        return _join_url(self.ECO_API_BASE_URL, self.ECO_FALLBACK_PATH)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"  # Ignore extra environment variables
    )


def _join_url(base: str, path: str) -> str:
    """Append path to base, dropping a duplicated /api prefix."""
    base = base.rstrip("/")
    path = "/" + path.lstrip("/")
    path = path.rstrip("/") or "/"
    if base.endswith("/api") and path.startswith("/api/"):
        path = path[len("/api"):]
    return f"{base}{path}"


# Global settings instance (singleton pattern)
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get the global settings instance (singleton).

    STAGE-0.3: Settings initialization

    Returns:
        Settings: Global settings instance
    """
    global _settings

    if _settings is None:
        _settings = Settings()

    return _settings


def reload_settings() -> Settings:
    """
    Reload settings (useful for testing).

    Returns:
        Settings: New settings instance
    """
    global _settings
    _settings = Settings()
    return _settings
