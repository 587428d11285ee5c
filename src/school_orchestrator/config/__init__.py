"""Configuration module for the School Orchestrator."""

from school_orchestrator.config.analytics import (
    AnalyticsConfig,
    get_analytics_config,
    load_analytics_config,
)

__all__ = [
    "AnalyticsConfig",
    "get_analytics_config",
    "load_analytics_config",
]
