# healthcast/config/__init__.py
"""Application configuration. Import the `settings` singleton from here."""

from .settings import settings, Settings, ForecastConfig, OutbreakConfig, ThresholdRuleConfig, DEFAULT_OUTBREAK_THRESHOLDS

__all__ = [
    "settings",
    "Settings",
    "ForecastConfig",
    "OutbreakConfig",
    "ThresholdRuleConfig",
    "DEFAULT_OUTBREAK_THRESHOLDS",
]
