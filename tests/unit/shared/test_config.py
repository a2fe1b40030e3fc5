"""
Tests for Configuration Loader

Tests YAML loading, environment inheritance and validation.
"""

import os

import pydantic
import pytest

from fleetwatch.shared.config import (
    Settings,
    _deep_merge,
    _get_config_dir,
    get_config,
    is_production,
    reload_config,
)


def test_config_dir_exists():
    configs_dir = _get_config_dir()

    assert (configs_dir / "environments" / "base.yaml").exists()


def test_dev_config_loads(test_config):
    assert test_config.environment == "dev"
    assert test_config.logging.level == "DEBUG"
    assert test_config.logging.format == "text"


def test_base_values_inherited(test_config):
    rate_limit = test_config.alerting.rate_limit

    assert rate_limit.max_per_window == 5
    assert rate_limit.window_ms == 60_000
    assert rate_limit.enabled is True
    assert test_config.alerting.metrics.slow_operation_threshold_ms == 300
    assert test_config.alerting.notifications.recipient_roles == ["owner", "admin", "editor"]
    assert test_config.alerting.default_tenant_id is None


def test_prod_overrides():
    config = reload_config("prod")

    assert config.environment == "prod"
    assert config.alerting.metrics.slow_operation_threshold_ms == 500
    assert config.store.timeout_seconds == 5
    assert config.logging.format == "json"
    # Unchanged base value
    assert config.alerting.rate_limit.max_per_window == 5


def test_escalation_rules_loaded(test_config):
    rules = test_config.alerting.escalation.rules

    assert rules["device_offline"][0].trigger == "minutes_offline"
    assert rules["device_offline"][0].threshold == 30
    assert rules["data_source_sync_failed"][0].window_hours == 24


def test_get_config_is_cached():
    assert get_config("dev") is get_config("dev")


def test_reload_config_clears_cache():
    first = get_config("dev")

    assert reload_config("dev") is not first


def test_environment_variable_selects_environment():
    os.environ["FW_ENVIRONMENT"] = "prod"

    assert reload_config().environment == "prod"
    assert is_production()

    os.environ["FW_ENVIRONMENT"] = "dev"
    reload_config()
    assert not is_production()


def test_invalid_environment_rejected():
    with pytest.raises(pydantic.ValidationError):
        Settings(environment="staging")


def test_invalid_rate_limit_rejected():
    with pytest.raises(pydantic.ValidationError):
        Settings(alerting={"rate_limit": {"window_ms": 0}})


def test_invalid_escalation_trigger_rejected():
    with pytest.raises(pydantic.ValidationError):
        Settings(
            alerting={
                "escalation": {
                    "rules": {"device_offline": [{"trigger": "cpu", "threshold": 1}]}
                }
            }
        )


def test_deep_merge():
    base = {"a": {"b": 1, "c": 2}, "d": 3}
    override = {"a": {"b": 10}, "e": 5}

    assert _deep_merge(base, override) == {"a": {"b": 10, "c": 2}, "d": 3, "e": 5}
    assert base == {"a": {"b": 1, "c": 2}, "d": 3}
