# healthcast/data_processing/loaders.py
#
# Unified Data Loading Engine
# Loads surveillance CSV extracts through the cleaning pipeline and exposes them
# as a SurveillanceSource for the forecasting service and the outbreak detector.

import logging
import pandas as pd
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    from config.settings import settings
    from analytics.exceptions import DataSourceError
    from analytics.models import EntityKey, GeoUnit, Observation
    from .pipeline import DataPipeline
    from .stores import SurveillanceSource
except ImportError as e:
    logging.basicConfig(level="CRITICAL")
    logging.critical(f"FATAL ERROR in loaders.py: A core dependency is missing. {e}", exc_info=True)
    raise

logger = logging.getLogger(__name__)

# Column aliases seen in older extracts.
_OBSERVATION_ALIASES = {"entity_key": "key", "date": "timestamp", "observed_on": "timestamp", "barangay_id": "geo_unit_id"}
_DISEASE_ALIASES = {"barangay_id": "geo_unit_id", "diagnosis_date": "record_date", "date": "record_date", "cases": "case_count"}
_GEO_ALIASES = {"barangay_id": "id", "geo_unit_id": "id", "barangay_name": "name", "geo_unit_name": "name"}


class DataLoader:
    """
    Configuration-driven loader for CSV extracts. Every frame leaving the loader
    has snake_case columns and coerced date columns.
    """
    def __init__(self, data_source_dir: Path):
        self.base_dir = data_source_dir
        if not self.base_dir.exists():
            logger.warning(f"Data source directory not found: {self.base_dir}. Creating it.")
            self.base_dir.mkdir(parents=True, exist_ok=True)

    def _get_path(self, file_path: Path) -> Path:
        """Resolves a file path relative to the base data directory."""
        return self.base_dir / file_path if not file_path.is_absolute() else file_path

    def load_csv(
        self,
        file_path: Path,
        date_cols: Optional[List[str]] = None,
        rename_map: Optional[Dict[str, str]] = None,
    ) -> pd.DataFrame:
        """
        Loads a CSV file and applies the standard cleaning pipeline.
        A missing file is an empty extract; an unreadable one raises DataSourceError.
        """
        full_path = self._get_path(Path(file_path))
        log_ctx = f"CSV({full_path.name})"
        logger.debug(f"[{log_ctx}] Attempting to load data from {full_path}")

        if not full_path.exists():
            logger.warning(f"[{log_ctx}] Source file not found. Returning empty DataFrame.")
            return pd.DataFrame()

        try:
            df = pd.read_csv(full_path, low_memory=False)
        except (pd.errors.ParserError, UnicodeDecodeError, OSError) as e:
            raise DataSourceError(f"Could not read {full_path}: {e}") from e
        except pd.errors.EmptyDataError:
            logger.warning(f"[{log_ctx}] File is empty.")
            return pd.DataFrame()

        pipeline = DataPipeline(df, log_ctx=log_ctx).clean_column_names().rename_columns(rename_map or {})
        if date_cols:
            pipeline.convert_date_columns(date_cols)
        df_processed = pipeline.get_df()
        logger.info(f"[{log_ctx}] Loaded and cleaned {len(df_processed)} records.")
        return df_processed


def _records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """Row dicts with pandas missing markers turned into None."""
    if df.empty:
        return []
    return df.astype(object).where(df.notna(), None).to_dict("records")


class CsvSurveillanceSource(SurveillanceSource):
    """SurveillanceSource over the CSV extracts named in settings."""

    def __init__(
        self,
        data_dir: Optional[Path] = None,
        observations_path: Optional[Path] = None,
        disease_records_path: Optional[Path] = None,
        geo_units_path: Optional[Path] = None,
    ):
        self.loader = DataLoader(data_dir or settings.directories.data_store)
        self.observations_path = observations_path or settings.observations_path
        self.disease_records_path = disease_records_path or settings.disease_records_path
        self.geo_units_path = geo_units_path or settings.geo_units_path
        self.dropped: Dict[str, int] = {}
        self._observations: Optional[pd.DataFrame] = None

    # --- Observations ---

    def _load_observations(self) -> pd.DataFrame:
        if self._observations is None:
            df = self.loader.load_csv(self.observations_path, date_cols=["timestamp"], rename_map=_OBSERVATION_ALIASES)
            if not df.empty and "value" not in df.columns:
                df = df.assign(value=1)
            pipeline = DataPipeline(df, log_ctx="Observations")
            if not df.empty:
                pipeline.drop_missing(["entity_type", "key", "timestamp"]).drop_invalid_counts(["value"])
                pipeline.standardize_missing_values({"value": 1})
            self._merge_dropped(pipeline.dropped)
            self._observations = pipeline.get_df()
        return self._observations

    def fetch_observations(self, entity_key, date_range=None):
        df = self._load_observations()
        if df.empty:
            return []
        mask = (df["entity_type"].astype(str) == entity_key.entity_type) & (df["key"].astype(str) == entity_key.key)
        if entity_key.geo_unit_id is not None and "geo_unit_id" in df.columns:
            mask &= pd.to_numeric(df["geo_unit_id"], errors="coerce") == entity_key.geo_unit_id
        selected = df[mask]
        if date_range is not None:
            start, end = (pd.Timestamp(d) for d in date_range)
            selected = selected[(selected["timestamp"] >= start) & (selected["timestamp"] <= end)]
        return [
            Observation(
                timestamp=row["timestamp"].date(),
                value=int(row["value"]),
                dimension=_optional_int(row.get("geo_unit_id")),
            )
            for row in _records(selected)
        ]

    def list_entity_keys(self):
        df = self._load_observations()
        if df.empty:
            return []
        geo = df["geo_unit_id"] if "geo_unit_id" in df.columns else pd.Series([None] * len(df), index=df.index)
        keys = {
            EntityKey(str(t), str(k), _optional_int(g))
            for t, k, g in zip(df["entity_type"], df["key"], geo)
        }
        return sorted(keys, key=lambda k: (k.entity_type, k.key, k.geo_unit_id if k.geo_unit_id is not None else -1))

    # --- Disease Records ---

    def fetch_disease_records(self, lookback_start: date):
        df = self.loader.load_csv(self.disease_records_path, date_cols=["record_date"], rename_map=_DISEASE_ALIASES)
        if df.empty:
            return []
        pipeline = (
            DataPipeline(df, log_ctx="DiseaseRecords")
            .drop_missing(["disease_type", "record_date", "geo_unit_id"])
            .drop_invalid_counts(["case_count"])
            .standardize_missing_values({"severity": "low_risk"})
        )
        self._merge_dropped(pipeline.dropped)
        cleaned = pipeline.get_df()
        if cleaned.empty:
            return []
        cleaned = cleaned[cleaned["record_date"] >= pd.Timestamp(lookback_start)]
        records = _records(cleaned)
        for record in records:
            record["record_date"] = record["record_date"].date()
        return records

    # --- Geo Units ---

    def fetch_geo_units(self):
        df = self.loader.load_csv(self.geo_units_path, rename_map=_GEO_ALIASES)
        if df.empty:
            return []
        df = DataPipeline(df, log_ctx="GeoUnits").drop_missing(["id", "name"]).drop_invalid_counts(["id"]).get_df()
        return [GeoUnit(id=int(r["id"]), name=str(r["name"])) for r in _records(df)]

    def _merge_dropped(self, dropped: Dict[str, int]) -> None:
        for reason, count in dropped.items():
            self.dropped[reason] = self.dropped.get(reason, 0) + count


def _optional_int(value: Any) -> Optional[int]:
    if value is None or pd.isna(value):
        return None
    return int(value)
