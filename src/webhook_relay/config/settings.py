"""Application settings loaded from environment variables and config files.

Configuration is loaded from (highest priority first):
1. Environment variables (prefix: ``WEBHOOKRELAY_``, nested via ``__``)
2. YAML config file (``--config path`` or ``WEBHOOKRELAY_CONFIG_PATH`` env var)
3. Defaults defined here
"""

from __future__ import annotations

import enum
from pathlib import Path
from typing import Any, Self

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Enums for validated choices
# ---------------------------------------------------------------------------


class DatabaseEngine(enum.StrEnum):
    """Supported database engines."""

    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


# ---------------------------------------------------------------------------
# Sub-config models
# ---------------------------------------------------------------------------

_ENV_PREFIX = "WEBHOOKRELAY_"


def _section(name: str) -> SettingsConfigDict:
    """Settings config for a section read from ``WEBHOOKRELAY_<NAME>__*``."""
    return SettingsConfigDict(env_prefix=f"{_ENV_PREFIX}{name}__", case_sensitive=False)


class ServerConfig(BaseSettings):
    """HTTP server settings."""

    model_config = _section("SERVER")

    host: str = "0.0.0.0"  # noqa: S104
    port: int = 3004
    log_level: str = "info"
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class DatabaseConfig(BaseSettings):
    """Database settings."""

    model_config = _section("DB")

    engine: DatabaseEngine = Field(
        default=DatabaseEngine.SQLITE,
        description="Database backend: sqlite or postgresql",
    )
    dsn: str = Field(
        default="sqlite+aiosqlite:///./webhook_relay.db",
        description="Async database connection string",
    )
    max_idle_connections: int = 5
    max_open_connections: int = 10
    debug_sql: bool = False


class DeliveryConfig(BaseSettings):
    """Outbound delivery worker and retry scheduler settings."""

    model_config = _section("DELIVERY")

    enabled: bool = True
    max_attempts: int = Field(default=3, ge=1)
    backoff_schedule: list[float] = Field(
        default_factory=lambda: [1.0, 5.0, 15.0],
        description="Delay in seconds before retry N (last entry repeats)",
    )
    request_timeout: float = 10.0
    poll_interval: float = 0.5
    batch_size: int = 50
    max_concurrency: int = 20
    per_workspace_concurrency: int = 5
    lease_timeout: float = 60.0
    user_agent: str = "OpenHouseCRM-Webhook/1.0"
    auto_disable_after: int = Field(
        default=10,
        ge=0,
        description="Deactivate a webhook after this many consecutive dead-letters (0 = never)",
    )
    retention_days: int = 30

    @field_validator("backoff_schedule")
    @classmethod
    def _non_empty_schedule(cls, value: list[float]) -> list[float]:
        if not value or any(delay < 0 for delay in value):
            msg = "backoff_schedule must be a non-empty list of non-negative delays"
            raise ValueError(msg)
        return value

    @model_validator(mode="after")
    def _lease_outlives_request(self) -> Self:
        if self.lease_timeout <= self.request_timeout:
            msg = "lease_timeout must be longer than request_timeout"
            raise ValueError(msg)
        return self


class SecretsConfig(BaseSettings):
    """Signing secret generation and rotation settings."""

    model_config = _section("SECRETS")

    secret_bytes: int = 32
    prefix: str = "whsec_"
    grace_period_hours: float = 24.0
    max_grace_period_hours: float = 168.0
    min_custom_length: int = 8


class RegistryConfig(BaseSettings):
    """Webhook registration validation settings."""

    model_config = _section("REGISTRY")

    require_https: bool = False
    max_url_length: int = 500
    max_description_length: int = 500


class AuditConfig(BaseSettings):
    """Audit log retention settings."""

    model_config = _section("AUDIT")

    retention_days: int = 365


class MetricsConfig(BaseSettings):
    """Prometheus metrics settings."""

    model_config = _section("METRICS")

    enabled: bool = True


class NotificationsConfig(BaseSettings):
    """In-process domain event bus settings."""

    model_config = _section("NOTIFICATIONS")

    enabled: bool = True
    buffer: int = 1000
    drain_timeout: float = Field(
        default=10.0,
        ge=0,
        description="Seconds to wait for queued events on shutdown",
    )


class TaskConfig(BaseSettings):
    """Background cron job settings (periods in seconds)."""

    model_config = _section("TASK")

    enabled: bool = True
    reclaim_leases_period: float = 30.0
    secret_cleanup_period: float = 3600.0
    delivery_retention_period: float = 3600.0
    audit_retention_period: float = 86400.0
    calculate_metrics_period: float = 15.0


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


def _load_yaml(path: str | Path) -> dict[str, Any]:
    """Mapping stored in a YAML file; empty when the file is missing or not a mapping."""
    p = Path(path)
    if not p.is_file():
        return {}
    with p.open(encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    return data if isinstance(data, dict) else {}


def _overlay(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge *override* onto *base*; *override* wins on conflicts."""
    merged = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _overlay(current, value)
        else:
            merged[key] = value
    return merged


class AppConfig(BaseSettings):
    """Relay configuration.

    Precedence: environment (``WEBHOOKRELAY_`` prefix) over the YAML file
    named by ``config_path`` over the defaults above.
    """

    model_config = SettingsConfigDict(
        env_prefix=_ENV_PREFIX,
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    debug: bool = False
    version: str = "0.1.0"
    config_path: str = ""

    server: ServerConfig = Field(default_factory=ServerConfig)
    db: DatabaseConfig = Field(default_factory=DatabaseConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    secrets: SecretsConfig = Field(default_factory=SecretsConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    task: TaskConfig = Field(default_factory=TaskConfig)

    @model_validator(mode="before")
    @classmethod
    def _apply_config_file(cls, values: Any) -> Any:
        if not isinstance(values, dict) or not values.get("config_path"):
            return values
        return _overlay(_load_yaml(values["config_path"]), values)

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """Load defaults from *path*; environment variables still override them."""
        return cls(config_path=str(path))
