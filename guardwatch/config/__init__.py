"""
Configuration management for the monitoring pipeline.

This module handles loading and validating configuration from YAML files.
All configuration values are validated using Pydantic models to ensure
type safety and catch configuration errors early.

Configuration is loaded from YAML files in the config/ directory:
    - alerts.yaml: Throttle table, delivery, housekeeping, couriers
    - detectors.yaml: Lexicons, detector thresholds, danger zones
    - features.yaml: History sizes and logging

Environment variables can override connection and courier settings:
    - REDIS_URL, DATABASE_URL, LOG_LEVEL
    - SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASSWORD, SMTP_FROM
    - FCM_SERVER_KEY

Modules:
    loader: Configuration file loading utilities
    models: Pydantic models for configuration validation
"""

from guardwatch.config.loader import ConfigLoadError, ConfigLoader, load_config
from guardwatch.config.models import (
    # Enums
    LogFormat,
    LogLevel,
    ZoneRisk,
    # Alerts config
    AlertsConfig,
    CouriersConfig,
    DeliveryConfig,
    EmailCourierConfig,
    HousekeepingConfig,
    PushCourierConfig,
    RetryBackoffConfig,
    ThrottleRule,
    DEFAULT_THROTTLE_RULES,
    # Detectors config
    CallDetectorConfig,
    DangerZoneConfig,
    DetectorsConfig,
    KeywordDetectorConfig,
    LexiconConfig,
    LocationDetectorConfig,
    MediaDetectorConfig,
    OfflineDetectorConfig,
    # Features config
    FeaturesConfig,
    HistoryConfig,
    LoggingConfig,
    # Connection config
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
    "LogFormat",
    "LogLevel",
    "ZoneRisk",
    # Alerts config
    "AlertsConfig",
    "CouriersConfig",
    "DeliveryConfig",
    "EmailCourierConfig",
    "HousekeepingConfig",
    "PushCourierConfig",
    "RetryBackoffConfig",
    "ThrottleRule",
    "DEFAULT_THROTTLE_RULES",
    # Detectors config
    "CallDetectorConfig",
    "DangerZoneConfig",
    "DetectorsConfig",
    "KeywordDetectorConfig",
    "LexiconConfig",
    "LocationDetectorConfig",
    "MediaDetectorConfig",
    "OfflineDetectorConfig",
    # Features config
    "FeaturesConfig",
    "HistoryConfig",
    "LoggingConfig",
    # Connection config
    "PostgresConnectionConfig",
    "RedisConnectionConfig",
    # Root config
    "AppConfig",
]
