"""
Configuration management for the engagement service.

Loads configuration from YAML with ZERO defaults.
Every value must be explicitly specified or startup fails.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")
    host: str
    port: int
    log_level: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str


class DatabaseConfig(BaseModel):
    """Database configuration."""

    model_config = ConfigDict(extra="forbid")
    path: str


class UserDirectoryConfig(BaseModel):
    """User directory service connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    users_path: str
    timeout_seconds: int


class NotificationsConfig(BaseModel):
    """Notification dispatcher connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    notify_path: str
    timeout_seconds: int


class PayoutsConfig(BaseModel):
    """Payout processor connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    payout_path: str
    timeout_seconds: int


class MatchingConfig(BaseModel):
    """Geo-matching radius band configuration."""

    model_config = ConfigDict(extra="forbid")
    radius_steps_km: list[float] = Field(min_length=1)
    min_candidates: int = Field(ge=1)


class VerificationConfig(BaseModel):
    """Required document groups for a provider to count as verified."""

    model_config = ConfigDict(extra="forbid")
    required_groups: dict[str, list[str]] = Field(min_length=1)


class PaymentsConfig(BaseModel):
    """Escrow fee configuration (whole percentages of the gross amount)."""

    model_config = ConfigDict(extra="forbid")
    platform_fee_pct: int = Field(ge=0, le=100)
    tax_pct: int = Field(ge=0, le=100)


class RequestConfig(BaseModel):
    """Request handling configuration."""

    model_config = ConfigDict(extra="forbid")
    max_body_size: int


class Settings(BaseModel):
    """
    Root configuration container.

    All fields are REQUIRED. No defaults exist.
    Missing fields cause immediate startup failure.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    server: ServerConfig
    logging: LoggingConfig
    database: DatabaseConfig
    user_directory: UserDirectoryConfig
    notifications: NotificationsConfig
    payouts: PayoutsConfig
    matching: MatchingConfig
    verification: VerificationConfig
    payments: PaymentsConfig
    request: RequestConfig


def get_config_path() -> Path:
    """Determine configuration file path."""
    env_path = os.environ.get("CONFIG_PATH")
    if env_path:
        return Path(env_path)
    return Path.cwd() / "config.yaml"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load and cache settings from the YAML config file."""
    config_path = get_config_path()
    if not config_path.exists():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    raw = yaml.safe_load(config_path.read_text())
    if not isinstance(raw, dict):
        msg = f"Invalid config file: {config_path}"
        raise ValueError(msg)

    return Settings(**raw)


def clear_settings_cache() -> None:
    """Clear the cached settings. Used in testing."""
    get_settings.cache_clear()
