# healthcast/config/settings.py
#
# Centralized Application Configuration
# This file defines the entire application's configuration using Pydantic for
# validation and type safety. It loads settings from environment variables or
# a .env file (prefix HEALTHCAST_, nested with '__').

import logging
from pathlib import Path
from typing import List, Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Define Project Root ---
PROJECT_ROOT = Path(__file__).resolve().parent.parent

settings_logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# 1. NESTED CONFIGURATION MODELS
# -----------------------------------------------------------------------------

class AppConfig(BaseModel):
    """Core application metadata and operational settings."""
    name: str = "Healthcast Surveillance Engine"
    version: str = "1.0.0"
    organization_name: str = "City Health Office"

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: str = "%(asctime)s - %(name)s.%(funcName)s - %(levelname)s - %(message)s"
    log_date_format: str = "%Y-%m-%d %H:%M:%S"

class DirectoryConfig(BaseModel):
    """Manages all key directory paths, ensuring they exist."""
    root: Path = PROJECT_ROOT
    data_store: Path = root / "data_store"
    logs: Path = root / "logs"

    @model_validator(mode='after')
    def create_directories(self) -> 'DirectoryConfig':
        """Ensure all configured directories exist on initialization."""
        for dir_path in [self.data_store, self.logs]:
            dir_path.mkdir(parents=True, exist_ok=True)
        return self

class AggregationConfig(BaseModel):
    """Thresholds of the gap-aware daily/monthly aggregation policy."""
    irregularity_ratio_threshold: float = 1.5
    avg_gap_threshold_days: float = 20.0
    max_gap_threshold_days: float = 45.0
    fill_missing_periods: bool = True

class ForecastConfig(BaseModel):
    """SARIMA fitting, back-testing and output guard rails."""
    default_horizon: int = 12
    confidence_level: float = 0.95
    min_fit_points: int = 3
    max_series_length: int = 730

    backtest_min_points: int = 10
    backtest_min_test_points: int = 5
    backtest_test_fraction: float = 0.2

    # Predictions are clamped to [0, clamp_multiplier * historical max].
    clamp_multiplier: float = 5.0
    explosion_factor: float = 10.0
    max_growth_rate: float = 1.5

    maxiter: int = 200
    enable_trend_fallback: bool = False
    model_version: str = "Local-SARIMA"
    n_jobs: int = 1

    @field_validator('confidence_level')
    @classmethod
    def check_confidence_level(cls, value: float) -> float:
        if not 0.0 < value < 1.0:
            raise ValueError("confidence_level must lie strictly between 0 and 1")
        return value

class ThresholdRuleConfig(BaseModel):
    """One outbreak rule: `cases_threshold` cases within `days_window` days."""
    disease_type: str
    cases_threshold: int = Field(ge=1)
    days_window: int = Field(ge=1)
    description: str = ""

DEFAULT_OUTBREAK_THRESHOLDS: List[ThresholdRuleConfig] = [
    ThresholdRuleConfig(disease_type='dengue', cases_threshold=5, days_window=14, description='5+ cases in 14 days'),
    ThresholdRuleConfig(disease_type='dengue', cases_threshold=5, days_window=3, description='5+ cases in 3 days (rapid spike)'),
    ThresholdRuleConfig(disease_type='hiv_aids', cases_threshold=3, days_window=30, description='3+ new cases in 30 days'),
    ThresholdRuleConfig(disease_type='malaria', cases_threshold=3, days_window=14, description='3+ cases in 14 days'),
    ThresholdRuleConfig(disease_type='measles', cases_threshold=3, days_window=14, description='3+ cases in 14 days (highly contagious)'),
    ThresholdRuleConfig(disease_type='animal_bite', cases_threshold=1, days_window=7, description='Any animal bite/rabies case (immediate alert)'),
    ThresholdRuleConfig(disease_type='pregnancy_complications', cases_threshold=5, days_window=30, description='5+ complications in 30 days'),
    ThresholdRuleConfig(disease_type='other', cases_threshold=3, days_window=14, description='3+ cases in 14 days (custom disease)'),
]

class OutbreakConfig(BaseModel):
    """Alert lifetime, per-run record cap and outbreak threshold rules."""
    alert_ttl_minutes: int = 15
    max_records: int = 5000
    thresholds: List[ThresholdRuleConfig] = Field(
        default_factory=lambda: list(DEFAULT_OUTBREAK_THRESHOLDS)
    )

# -----------------------------------------------------------------------------
# 2. MAIN SETTINGS CLASS
# -----------------------------------------------------------------------------

class Settings(BaseSettings):
    """
    Main settings class for Healthcast.
    Aggregates all configuration models and loads from environment variables.
    """
    model_config = SettingsConfigDict(
        env_prefix='HEALTHCAST_',
        case_sensitive=False,
        env_nested_delimiter='__',
        env_file=f"{PROJECT_ROOT}/.env",
        extra='ignore'
    )

    # --- Nested Configuration Models ---
    app: AppConfig = Field(default_factory=AppConfig)
    directories: DirectoryConfig = Field(default_factory=DirectoryConfig)
    aggregation: AggregationConfig = Field(default_factory=AggregationConfig)
    forecast: ForecastConfig = Field(default_factory=ForecastConfig)
    outbreak: OutbreakConfig = Field(default_factory=OutbreakConfig)

    # --- Persistence ---
    database_path: Path = PROJECT_ROOT / "data_store" / "healthcast.db"

    # --- CSV extracts (relative to directories.data_store) ---
    observations_path: Path = Path("observations.csv")
    disease_records_path: Path = Path("disease_records.csv")
    geo_units_path: Path = Path("geo_units.csv")

# -----------------------------------------------------------------------------
# 3. SINGLETON INSTANCE
# -----------------------------------------------------------------------------

try:
    settings = Settings()
    settings_logger.info(
        f"Settings loaded for '{settings.app.name}' v{settings.app.version}. "
        f"LOG_LEVEL={settings.app.log_level}. PROJECT_ROOT='{PROJECT_ROOT}'"
    )
except Exception as e:
    settings_logger.critical(f"FATAL: Could not initialize application settings. Error: {e}", exc_info=True)
    raise
