# healthcast/analytics/__init__.py
#
# Analytics Package API
# Gap-aware aggregation, seasonal ARIMA forecasting and outbreak detection.

"""
Initializes the analytics package, making key functions and classes
available at the top level for easier, cleaner imports in other modules.
"""

# --- Domain Types & Errors ---
from .models import (
    AggregationMode,
    EntityKey,
    ModelOrder,
    Observation,
    DiseaseRecord,
    GeoUnit,
    OutbreakAlert,
    PredictionSet,
    RiskLevel,
    Severity,
)
from .exceptions import HealthcastError, ForecastingError, ModelFitError, DataSourceError

# --- Aggregation Policy ---
# Decides between daily and monthly series from the gaps between events.
from .aggregation import GapAnalyzer, AggregationPolicy, aggregate_series
from .model_order import select_order, simplest_order

# --- Forecasting ---
# statsmodels SARIMAX with back-tested accuracy metrics.
from .metrics import calculate_accuracy_metrics
from .forecasting import Forecaster
from .service import ForecastService

# --- Outbreak Detection ---
from .outbreak import OutbreakThresholdTable, OutbreakDetector


__all__ = [
    # Types
    "AggregationMode",
    "EntityKey",
    "ModelOrder",
    "Observation",
    "DiseaseRecord",
    "GeoUnit",
    "OutbreakAlert",
    "PredictionSet",
    "RiskLevel",
    "Severity",

    # Errors
    "HealthcastError",
    "ForecastingError",
    "ModelFitError",
    "DataSourceError",

    # Aggregation
    "GapAnalyzer",
    "AggregationPolicy",
    "aggregate_series",
    "select_order",
    "simplest_order",

    # Forecasting
    "calculate_accuracy_metrics",
    "Forecaster",
    "ForecastService",

    # Outbreak detection
    "OutbreakThresholdTable",
    "OutbreakDetector",
]
