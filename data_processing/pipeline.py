# healthcast/data_processing/pipeline.py
#
# Fluent Data Processing Pipeline
# A chainable class applying the cleaning steps every surveillance extract goes
# through before it reaches the analytics core: column normalisation, missing
# value handling, date coercion and removal of malformed rows.

import pandas as pd
import numpy as np
import logging
from typing import Dict, Any, List
from collections import Counter

try:
    from .helpers import convert_to_numeric, _NA_REGEX_PATTERN
except ImportError as e:
    logging.basicConfig(level="CRITICAL")
    logging.critical(f"FATAL ERROR in pipeline.py: could not import helpers. {e}", exc_info=True)
    raise

logger = logging.getLogger(__name__)


class DataPipeline:
    """
    A fluent interface for applying a sequence of data processing operations.
    Rows removed by the validation steps are tallied in `dropped` per reason.
    """
    def __init__(self, df: pd.DataFrame, log_ctx: str = "Pipeline"):
        if not isinstance(df, pd.DataFrame):
            raise TypeError("DataPipeline must be initialized with a pandas DataFrame.")
        self._df = df.copy()
        self.log_ctx = log_ctx
        self.dropped: Dict[str, int] = {}

    def get_df(self) -> pd.DataFrame:
        """Returns the processed DataFrame."""
        return self._df

    def clean_column_names(self) -> 'DataPipeline':
        """Standardizes column names to unique snake_case identifiers."""
        if self._df.empty and not len(self._df.columns):
            return self
        new_cols = (
            self._df.columns.astype(str)
            .str.lower().str.strip()
            .str.replace(r'[^0-9a-z_]+', '_', regex=True)
            .str.replace(r'_{2,}', '_', regex=True).str.strip('_')
        )
        new_cols = [f"unnamed_col_{i}" if not name else name for i, name in enumerate(new_cols)]

        counts = Counter(new_cols)
        if max(counts.values(), default=0) > 1:
            seen = Counter()
            final_cols = []
            for col_name in new_cols:
                if counts[col_name] > 1:
                    final_cols.append(f"{col_name}_{seen[col_name]}")
                    seen[col_name] += 1
                else:
                    final_cols.append(col_name)
            self._df.columns = final_cols
        else:
            self._df.columns = new_cols
        return self

    def rename_columns(self, rename_map: Dict[str, str]) -> 'DataPipeline':
        """Renames columns based on a provided dictionary."""
        if not rename_map:
            return self
        self._df = self._df.rename(columns=rename_map, errors="ignore")
        return self

    def standardize_missing_values(self, column_defaults: Dict[str, Any]) -> 'DataPipeline':
        """Replaces 'Not Available' formats and fills with the provided defaults."""
        if not column_defaults:
            return self
        for col, default_val in column_defaults.items():
            if col not in self._df.columns:
                continue
            series = self._df[col]
            if isinstance(default_val, (int, float, np.number)):
                series_obj = series.astype(object).replace(_NA_REGEX_PATTERN, np.nan, regex=True)
                self._df[col] = series_obj.where(series_obj.notna(), default_val)
            else:
                series_obj = series.astype(object).replace(_NA_REGEX_PATTERN, np.nan, regex=True)
                self._df[col] = series_obj.fillna(str(default_val))
        return self

    def convert_date_columns(self, date_columns: List[str], errors: str = 'coerce') -> 'DataPipeline':
        """Converts specified columns to datetime objects."""
        if not date_columns:
            return self
        for col in date_columns:
            if col in self._df.columns:
                self._df[col] = pd.to_datetime(self._df[col], errors=errors)
            else:
                logger.warning(f"[{self.log_ctx}] Date conversion skipped: Column '{col}' not found.")
        return self

    def drop_missing(self, required_columns: List[str]) -> 'DataPipeline':
        """Drops rows where any required column is missing or a 'Not Available' string."""
        for col in required_columns:
            if col not in self._df.columns:
                self._record_drop(f"missing column {col}", len(self._df))
                self._df = self._df.iloc[0:0]
                return self
            values = self._df[col]
            if pd.api.types.is_object_dtype(values.dtype) or pd.api.types.is_string_dtype(values.dtype):
                values = values.astype(object).replace(_NA_REGEX_PATTERN, np.nan, regex=True)
            mask = values.notna()
            self._record_drop(f"missing {col}", int((~mask).sum()))
            self._df = self._df[mask]
        return self

    def drop_invalid_counts(self, count_columns: List[str]) -> 'DataPipeline':
        """
        Coerces count columns to nullable integers, dropping rows whose value is
        present but non-numeric or negative. Missing values are left as <NA>.
        """
        for col in count_columns:
            if col not in self._df.columns:
                continue
            raw = self._df[col].astype(object).replace(_NA_REGEX_PATTERN, np.nan, regex=True)
            numeric = convert_to_numeric(raw)
            non_numeric = raw.notna() & numeric.isna()
            negative = numeric < 0
            self._record_drop(f"non-numeric {col}", int(non_numeric.sum()))
            self._record_drop(f"negative {col}", int(negative.sum()))
            keep = ~(non_numeric | negative)
            self._df = self._df[keep].copy()
            self._df[col] = numeric[keep].round().astype(pd.Int64Dtype())
        return self

    def _record_drop(self, reason: str, count: int) -> None:
        if count <= 0:
            return
        self.dropped[reason] = self.dropped.get(reason, 0) + count
        logger.warning(f"[{self.log_ctx}] Dropped {count} malformed row(s): {reason}.")
