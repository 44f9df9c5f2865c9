# healthcast/data_processing/__init__.py
#
# Data Processing Package API
# Loading, cleaning and persistence adapters around the analytics core.

"""
Initializes the data_processing package, making the store adapters, the CSV
loader and the cleaning pipeline available at the top level.
"""

# --- Data Preparation & Cleaning ---
from .pipeline import DataPipeline

# --- Store Interfaces & Adapters ---
from .stores import (
    SurveillanceSource,
    PredictionStore,
    AlertStore,
    InMemorySurveillanceSource,
    InMemoryPredictionStore,
    InMemoryAlertStore,
    SQLiteStore,
)

# --- CSV Extracts ---
from .loaders import DataLoader, CsvSurveillanceSource


__all__ = [
    # --- Preparation ---
    "DataPipeline",

    # --- Stores ---
    "SurveillanceSource",
    "PredictionStore",
    "AlertStore",
    "InMemorySurveillanceSource",
    "InMemoryPredictionStore",
    "InMemoryAlertStore",
    "SQLiteStore",

    # --- Loading ---
    "DataLoader",
    "CsvSurveillanceSource",
]
