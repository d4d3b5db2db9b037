"""Tests for YAML configuration loading."""

from pathlib import Path

import pytest
import yaml

from aquaguard.config import (
    ConfigLoadError,
    ConfigLoader,
    CooldownBackend,
    LogFormat,
    LogLevel,
    StaleAlertPolicy,
    StoreBackend,
    load_config,
)
from aquaguard.models.alerts import AlertSeverity

ENV_VARS = (
    "ALERT_WEBHOOK_URL",
    "REDIS_URL",
    "DATABASE_URL",
    "LOG_LEVEL",
    "LOG_FORMAT",
    "CONFIG_PATH",
)

MINIMAL_ALERTS = {
    "cooldowns": {"Critical": 60, "Warning": 120},
    "stale_alert_policy": "merge",
    "backends": {"store": "memory", "cooldown": "memory"},
    "channels": {
        "console": {"format": "simple"},
        "webhook": {"enabled": False},
    },
    "routing": {"Critical": ["console", "webhook"], "Warning": ["console"]},
}


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    """Config directory holding thresholds.yaml and alerts.yaml."""
    _write(tmp_path / "thresholds.yaml", {"thresholds": {}})
    _write(tmp_path / "alerts.yaml", MINIMAL_ALERTS)
    return tmp_path


def _write(path: Path, data) -> None:
    path.write_text(yaml.safe_dump(data), encoding="utf-8")


class TestRepositoryConfig:
    """The shipped config/ directory."""

    def test_loads(self, repo_config_dir):
        config = ConfigLoader(repo_config_dir).load()

        assert config.thresholds.ph.critical.min == 6.0
        assert config.thresholds.turbidity.critical == 20.0
        assert config.thresholds.tds.warning == 500.0
        assert config.alerts.cooldowns.seconds_for(AlertSeverity.CRITICAL) == 1800
        assert config.alerts.cooldowns.seconds_for(AlertSeverity.WARNING) == 3600
        assert config.alerts.stale_alert_policy == StaleAlertPolicy.AUTO_RESOLVE
        assert config.alerts.backends.store == StoreBackend.POSTGRES
        assert config.devices.names["WQ-001"] == "Reservoir Inlet"

    def test_webhook_disabled_without_url(self, repo_config_dir):
        config = ConfigLoader(repo_config_dir).load()

        assert config.alerts.get_channels_for_severity(AlertSeverity.CRITICAL) == ["console"]

    def test_webhook_enabled_by_env(self, repo_config_dir, monkeypatch):
        monkeypatch.setenv("ALERT_WEBHOOK_URL", "https://hooks.example.com/water")

        config = ConfigLoader(repo_config_dir).load()

        webhook = config.alerts.channels["webhook"]
        assert webhook.enabled is True
        assert webhook.webhook_url == "https://hooks.example.com/water"
        assert config.alerts.get_channels_for_severity(AlertSeverity.CRITICAL) == [
            "console",
            "webhook",
        ]


class TestConfigLoader:
    """Loading from a temporary directory."""

    def test_minimal(self, config_dir):
        config = ConfigLoader(config_dir).load()

        assert config.thresholds.ph.warning.max == 8.5
        assert config.alerts.cooldowns.critical_seconds == 60
        assert config.alerts.stale_alert_policy == StaleAlertPolicy.MERGE
        assert config.alerts.backends.cooldown == CooldownBackend.MEMORY
        assert config.alerts.channels["console"].format == "simple"
        assert config.devices.names == {}

    def test_connection_and_logging_env(self, config_dir, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://cache:6380")
        monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db:5432/water")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("LOG_FORMAT", "text")

        config = ConfigLoader(config_dir).load()

        assert config.redis.url == "redis://cache:6380"
        assert config.postgres.url == "postgresql://u:p@db:5432/water"
        assert config.logging.level == LogLevel.DEBUG
        assert config.logging.format == LogFormat.TEXT

    def test_unknown_log_level_falls_back(self, config_dir, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "verbose")

        config = ConfigLoader(config_dir).load()

        assert config.logging.level == LogLevel.INFO

    def test_load_config_uses_env_path(self, config_dir, monkeypatch):
        monkeypatch.setenv("CONFIG_PATH", str(config_dir))

        config = load_config()

        assert config.alerts.cooldowns.warning_seconds == 120

    def test_devices(self, config_dir):
        _write(config_dir / "devices.yaml", {"devices": [{"id": "D1", "name": "Well 1"}]})

        config = ConfigLoader(config_dir).load()

        assert config.devices.names == {"D1": "Well 1"}


class TestConfigErrors:
    """Invalid or missing configuration."""

    def test_missing_directory(self, tmp_path):
        with pytest.raises(ConfigLoadError):
            ConfigLoader(tmp_path / "absent")

    def test_missing_alerts_file(self, config_dir):
        (config_dir / "alerts.yaml").unlink()

        with pytest.raises(ConfigLoadError) as exc_info:
            ConfigLoader(config_dir).load()

        assert exc_info.value.file_path == config_dir / "alerts.yaml"

    def test_warning_band_outside_critical(self, config_dir):
        _write(
            config_dir / "thresholds.yaml",
            {
                "thresholds": {
                    "ph": {
                        "critical": {"min": 6.0, "max": 9.0},
                        "warning": {"min": 5.5, "max": 8.5},
                    }
                }
            },
        )

        with pytest.raises(ConfigLoadError, match="thresholds"):
            ConfigLoader(config_dir).load()

    def test_inverted_ceilings(self, config_dir):
        _write(
            config_dir / "thresholds.yaml",
            {"thresholds": {"tds": {"warning": 1000, "critical": 500}}},
        )

        with pytest.raises(ConfigLoadError):
            ConfigLoader(config_dir).load()

    def test_routing_to_unknown_channel(self, config_dir):
        _write(
            config_dir / "alerts.yaml",
            {**MINIMAL_ALERTS, "routing": {"Critical": ["pager"]}},
        )

        with pytest.raises(ConfigLoadError, match="pager"):
            ConfigLoader(config_dir).load()

    def test_empty_alerts_file(self, config_dir):
        (config_dir / "alerts.yaml").write_text("", encoding="utf-8")

        with pytest.raises(ConfigLoadError, match="empty"):
            ConfigLoader(config_dir).load()

    def test_malformed_device_entry(self, config_dir):
        _write(config_dir / "devices.yaml", {"devices": [{"id": "D1"}]})

        with pytest.raises(ConfigLoadError):
            ConfigLoader(config_dir).load()
