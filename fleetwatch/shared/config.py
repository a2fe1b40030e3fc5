"""
FleetWatch - Configuration Loader

Pydantic-based configuration management with:
- Environment-based configuration (dev/prod)
- YAML file loading with inheritance
- Environment variables for settings the YAML files leave unset
- Type validation via Pydantic

Usage:
    from fleetwatch.shared.config import get_config

    config = get_config()  # Uses FW_ENVIRONMENT env var
    config = get_config("dev")  # Explicit environment

    # Access config values
    max_alerts = config.alerting.rate_limit.max_per_window
    threshold = config.alerting.metrics.slow_operation_threshold_ms
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# =============================================================================
# Configuration Models
# =============================================================================


class ProjectConfig(BaseModel):
    """Project metadata configuration."""

    name: str = "fleetwatch"
    version: str = "0.1.0"
    description: str = "Alert management core for multi-tenant screen fleets"


class RateLimitConfig(BaseModel):
    """Fixed-window rate limit for new alert creation."""

    max_per_window: int = Field(default=5, ge=0)
    window_ms: int = Field(default=60_000, gt=0)
    enabled: bool = True
    sweep_interval_seconds: float = Field(default=300.0, gt=0)


class MetricsConfig(BaseModel):
    """Operation timing configuration."""

    slow_operation_threshold_ms: float = 300.0
    max_samples: int = Field(default=100, gt=0)


class EscalationRuleConfig(BaseModel):
    """Single escalation rule: one trigger field, one threshold."""

    trigger: Literal["minutes_offline", "hours_stale", "failure_count", "occurrences"]
    threshold: float
    window_hours: float | None = None


def _default_escalation_rules() -> dict[str, list[EscalationRuleConfig]]:
    return {
        "device_offline": [EscalationRuleConfig(trigger="minutes_offline", threshold=30)],
        "device_screenshot_failed": [EscalationRuleConfig(trigger="failure_count", threshold=5)],
        "data_source_sync_failed": [
            EscalationRuleConfig(trigger="occurrences", threshold=3, window_hours=24)
        ],
        "social_feed_sync_failed": [
            EscalationRuleConfig(trigger="occurrences", threshold=5, window_hours=24)
        ],
        "device_cache_stale": [EscalationRuleConfig(trigger="hours_stale", threshold=24)],
    }


class EscalationConfig(BaseModel):
    """Severity auto-escalation configuration."""

    rules: dict[str, list[EscalationRuleConfig]] = Field(
        default_factory=_default_escalation_rules
    )


class NotificationsConfig(BaseModel):
    """Notification fan-out configuration."""

    recipient_roles: list[str] = Field(default_factory=lambda: ["owner", "admin", "editor"])
    default_min_severity: Literal["info", "warning", "critical"] = "warning"
    resolved_notes: str = "Auto-resolved: condition cleared"


class AlertingConfig(BaseModel):
    """Alerting configuration."""

    default_tenant_id: str | None = None
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    escalation: EscalationConfig = Field(default_factory=EscalationConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)


class StoreConfig(BaseModel):
    """Persistence collaborator configuration."""

    timeout_seconds: float = Field(default=10.0, gt=0)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: Literal["json", "text"] = "json"
    include_timestamp: bool = True


# =============================================================================
# Main Settings Class
# =============================================================================


class Settings(BaseSettings):
    """
    Main configuration class for FleetWatch.

    Loads configuration from:
    1. YAML files in configs/environments/
    2. Environment variables (FW_ prefix, "__" for nesting)

    Values passed to the constructor (the merged YAML) win over environment
    variables; environment variables fill anything the YAML leaves unset.
    """

    model_config = SettingsConfigDict(
        env_prefix="FW_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Environment
    environment: Literal["dev", "prod"] = "dev"

    # Configuration sections
    project: ProjectConfig = Field(default_factory=ProjectConfig)
    alerting: AlertingConfig = Field(default_factory=AlertingConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        valid_envs = {"dev", "prod"}
        if v not in valid_envs:
            raise ValueError(f"Invalid environment: {v}. Must be one of: {valid_envs}")
        return v


# =============================================================================
# Configuration Loading Functions
# =============================================================================


def _get_config_dir() -> Path:
    """Get the configuration directory path."""
    # Try relative path from the repository root
    config_dir = Path(__file__).parent.parent.parent / "configs"
    if config_dir.exists():
        return config_dir

    # Try from current working directory
    config_dir = Path.cwd() / "configs"
    if config_dir.exists():
        return config_dir

    raise FileNotFoundError(
        "Could not find configs directory. Ensure you're running from the project root."
    )


def _load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents."""
    if not path.exists():
        return {}
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries, with override taking precedence."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_config_for_environment(environment: str) -> dict[str, Any]:
    """Load and merge configuration for a specific environment."""
    env_dir = _get_config_dir() / "environments"

    base_config = _load_yaml_file(env_dir / "base.yaml")
    env_config = _load_yaml_file(env_dir / f"{environment}.yaml")

    # Remove inheritance marker if present
    env_config.pop("_inherit", None)

    merged = _deep_merge(base_config, env_config)
    merged["environment"] = environment

    return merged


@lru_cache(maxsize=4)
def get_config(environment: str | None = None) -> Settings:
    """
    Get configuration for the specified environment.

    Args:
        environment: Environment name (dev, prod).
                    If None, uses FW_ENVIRONMENT env var, defaulting to "dev".

    Returns:
        Settings: Validated configuration object.

    Example:
        config = get_config()  # Uses FW_ENVIRONMENT or defaults to dev
        config = get_config("prod")  # Explicit production config

        window = config.alerting.rate_limit.window_ms
    """
    if environment is None:
        environment = os.getenv("FW_ENVIRONMENT", "dev")

    yaml_config = _load_config_for_environment(environment)

    # Create Settings object (also loads env vars)
    return Settings(**yaml_config)


def reload_config(environment: str | None = None) -> Settings:
    """
    Reload configuration, clearing the cache.

    Useful for testing or when config files have changed.
    """
    get_config.cache_clear()
    return get_config(environment)


def is_production() -> bool:
    """Check if running in production environment."""
    return get_config().environment == "prod"
