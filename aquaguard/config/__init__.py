"""
Configuration management for the alerting core.

This module handles loading and validating configuration from YAML files.
All configuration values are validated using Pydantic models to ensure
type safety and catch configuration errors early.

Configuration is loaded from YAML files in the config/ directory:
    - thresholds.yaml: Threshold catalog
    - alerts.yaml: Cooldowns, lifecycle policy, channels and routing
    - devices.yaml: Static device names (optional)

Environment variables can override connection settings:
    - REDIS_URL: Redis connection URL
    - DATABASE_URL: PostgreSQL connection URL
    - LOG_LEVEL / LOG_FORMAT: Logging settings
    - ALERT_WEBHOOK_URL: Webhook channel URL

Modules:
    loader: Configuration file loading utilities
    models: Pydantic models for configuration validation
"""

from aquaguard.config.loader import ConfigLoadError, ConfigLoader, load_config
from aquaguard.config.models import (
    # Enums
    CooldownBackend,
    LogFormat,
    LogLevel,
    StaleAlertPolicy,
    StoreBackend,
    # Threshold config
    CeilingThresholds,
    PhBand,
    PhThresholds,
    ThresholdCatalog,
    # Alert config
    AlertsConfig,
    BackendConfig,
    ChannelConfig,
    CooldownConfig,
    ProcessingConfig,
    TimeoutConfig,
    # Other config
    DevicesConfig,
    LoggingConfig,
    PostgresConnectionConfig,
    RedisConnectionConfig,
    # Root config
    AppConfig,
)

__all__ = [
    # Loader
    "ConfigLoadError",
    "ConfigLoader",
    "load_config",
    # Enums
    "CooldownBackend",
    "LogFormat",
    "LogLevel",
    "StaleAlertPolicy",
    "StoreBackend",
    # Threshold config
    "CeilingThresholds",
    "PhBand",
    "PhThresholds",
    "ThresholdCatalog",
    # Alert config
    "AlertsConfig",
    "BackendConfig",
    "ChannelConfig",
    "CooldownConfig",
    "ProcessingConfig",
    "TimeoutConfig",
    # Other config
    "DevicesConfig",
    "LoggingConfig",
    "PostgresConnectionConfig",
    "RedisConnectionConfig",
    # Root config
    "AppConfig",
]
