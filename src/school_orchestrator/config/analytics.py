"""Analytics heuristics configuration.

The risk score and the teacher KPI are weighted sums. Their weights and
thresholds are product settings rather than code; defaults reproduce the
values the service has always shipped with and may be overridden with a
YAML file (ORCHESTRATOR_ANALYTICS_CONFIG_PATH).

Example YAML:
    risk:
      weights:
        delay: 0.25
        abandonment: 0.20
        low_performance: 0.30
        time_inefficiency: 0.10
        engagement_drop: 0.15
      thresholds:
        critical: 75
        high: 50
        medium: 25
      recommendation_threshold: 50
    teacher_kpi:
      weights:
        engagement: 0.30
        completion: 0.25
        quality: 0.25
        performance: 0.20
"""

import os
import threading
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

import yaml

from school_orchestrator.logging.setup import get_logger

logger = get_logger(__name__)


@dataclass
class RiskWeights:
    """Weight of each risk factor in the overall score.

    Attributes:
        delay: Late submissions.
        abandonment: Abandoned sessions.
        low_performance: Low average score.
        time_inefficiency: Time spent versus progress.
        engagement_drop: Days since the last activity.
    """

    delay: float = 0.25
    abandonment: float = 0.20
    low_performance: float = 0.30
    time_inefficiency: float = 0.10
    engagement_drop: float = 0.15


@dataclass
class RiskThresholds:
    """Minimum score for each risk level (low is everything below medium)."""

    critical: float = 75
    high: float = 50
    medium: float = 25


@dataclass
class RiskConfig:
    weights: RiskWeights = field(default_factory=RiskWeights)
    thresholds: RiskThresholds = field(default_factory=RiskThresholds)
    recommendation_threshold: float = 50


@dataclass
class TeacherKpiWeights:
    """Weight of each KPI component in the overall teacher score."""

    engagement: float = 0.30
    completion: float = 0.25
    quality: float = 0.25
    performance: float = 0.20


@dataclass
class TeacherKpiConfig:
    weights: TeacherKpiWeights = field(default_factory=TeacherKpiWeights)


@dataclass
class AnalyticsConfig:
    """Top-level analytics configuration."""

    risk: RiskConfig = field(default_factory=RiskConfig)
    teacher_kpi: TeacherKpiConfig = field(default_factory=TeacherKpiConfig)


def _build(cls, data: Optional[dict]):
    """Instantiate a flat dataclass from a mapping, rejecting unknown keys."""
    data = data or {}
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(
            f"Unknown {cls.__name__} keys: {', '.join(sorted(unknown))}"
        )
    return cls(**{k: float(v) for k, v in data.items()})


def load_analytics_config(path: Path | str) -> AnalyticsConfig:
    """Load analytics configuration from YAML.

    Missing sections keep their defaults.

    Args:
        path: Path to the YAML file.

    Returns:
        AnalyticsConfig instance.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: On unknown keys or non-numeric values.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Analytics configuration not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    risk_data = data.get("risk") or {}
    kpi_data = data.get("teacher_kpi") or {}

    config = AnalyticsConfig(
        risk=RiskConfig(
            weights=_build(RiskWeights, risk_data.get("weights")),
            thresholds=_build(RiskThresholds, risk_data.get("thresholds")),
            recommendation_threshold=float(
                risk_data.get("recommendation_threshold", 50)
            ),
        ),
        teacher_kpi=TeacherKpiConfig(
            weights=_build(TeacherKpiWeights, kpi_data.get("weights")),
        ),
    )

    logger.info(
        "Analytics configuration loaded",
        extra={"event": "analytics_config_loaded", "source": str(path)},
    )
    return config


_analytics_config: Optional[AnalyticsConfig] = None
_analytics_config_lock = threading.Lock()


def get_analytics_config() -> AnalyticsConfig:
    """Get the global analytics configuration.

    Loads ORCHESTRATOR_ANALYTICS_CONFIG_PATH when set, defaults otherwise.
    """
    global _analytics_config

    with _analytics_config_lock:
        if _analytics_config is None:
            config_path = os.getenv("ORCHESTRATOR_ANALYTICS_CONFIG_PATH")
            if config_path:
                _analytics_config = load_analytics_config(config_path)
            else:
                _analytics_config = AnalyticsConfig()

    return _analytics_config


def reset_analytics_config() -> None:
    """Reset the global analytics configuration (for testing)."""
    global _analytics_config
    with _analytics_config_lock:
        _analytics_config = None
