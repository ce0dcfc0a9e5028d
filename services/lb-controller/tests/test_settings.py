"""Tests for settings."""

import pytest
from pydantic import ValidationError

from app.config import RunMode, Settings


def test_defaults(monkeypatch):
    """Test defaults of every optional setting."""
    monkeypatch.setenv("DEFAULT_BACKEND_NODE_PORT", "30000")

    settings = Settings(_env_file=None)

    assert settings.cluster_name == "foo"
    assert settings.run_mode == RunMode.IN_CLUSTER
    assert settings.resync_period_seconds == 30.0
    assert settings.delete_all_on_quit is False
    assert settings.health_check_path == "/"
    assert settings.api_port == 8081
    assert settings.default_backend_node_port == 30000


def test_default_backend_port_required(monkeypatch):
    """Test a missing default backend port is a configuration error."""
    monkeypatch.delenv("DEFAULT_BACKEND_NODE_PORT", raising=False)

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_environment(monkeypatch):
    """Test settings are read case-insensitively from the environment."""
    monkeypatch.setenv("default_backend_node_port", "31000")
    monkeypatch.setenv("CLUSTER_NAME", "prod")
    monkeypatch.setenv("RUN_MODE", "proxy")
    monkeypatch.setenv("DELETE_ALL_ON_QUIT", "true")

    settings = Settings(_env_file=None)

    assert settings.run_mode == RunMode.PROXY
    assert settings.delete_all_on_quit is True
    config = settings.cluster_manager_config()
    assert config.cluster_name == "prod"
    assert config.default_backend_node_port == 31000


def test_settings_are_frozen(settings):
    with pytest.raises(ValidationError):
        settings.cluster_name = "other"
