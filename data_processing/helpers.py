# healthcast/data_processing/helpers.py
#
# Core Data Utilities
# Scalar and Series coercion shared by the loaders, the cleaning pipeline and the
# outbreak record validation.

import pandas as pd
import numpy as np
import logging
import re
from datetime import date, datetime
from typing import Any, Optional, Type

logger = logging.getLogger(__name__)

# Pre-compiled regex for finding various "Not Available" strings.
_NA_REGEX_PATTERN = re.compile(
    r'(?i)^\s*(nan|none|n/a|#n/a|na|null|nil|<na>|undefined|unknown|-|)\s*$'
)


def is_missing(value: Any) -> bool:
    """True for None, NaN/NaT and "not available" strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return bool(_NA_REGEX_PATTERN.match(value))
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def convert_to_numeric(
    data: Any,
    default_value: Any = np.nan,
    target_type: Optional[Type] = None
) -> Any:
    """
    Converts a scalar or Series to a numeric type, treating common
    "Not Available" strings as missing.

    Args:
        data: The input data, a scalar or pandas Series.
        default_value: The value to use for items that cannot be converted.
        target_type: int or float. If int, pandas' nullable Int64Dtype is used
                     when missing values remain.

    Returns:
        The converted data in the same shape as the input.
    """
    is_series = isinstance(data, pd.Series)
    series = data if is_series else pd.Series([data], dtype=object)

    if pd.api.types.is_object_dtype(series.dtype) or pd.api.types.is_string_dtype(series.dtype):
        series = series.replace(_NA_REGEX_PATTERN, np.nan, regex=True)

    numeric_series = pd.to_numeric(series, errors='coerce')
    if not pd.isna(default_value):
        numeric_series = numeric_series.fillna(default_value)

    if target_type is int and pd.api.types.is_numeric_dtype(numeric_series.dtype):
        if numeric_series.isnull().any():
            numeric_series = numeric_series.astype(pd.Int64Dtype())
        else:
            numeric_series = numeric_series.astype(int)
    elif target_type is float:
        numeric_series = numeric_series.astype(float)

    if is_series:
        return numeric_series
    else:
        return numeric_series.iloc[0] if not numeric_series.empty else default_value


def coerce_non_negative_int(value: Any, default: int = 1) -> int:
    """
    A missing count becomes `default`; a count that is present but non-numeric or
    negative raises ValueError. Fractional counts are rounded half to even, the
    same rule `DataPipeline.drop_invalid_counts` applies to whole columns.
    """
    if is_missing(value):
        return default
    numeric = convert_to_numeric(value)
    if pd.isna(numeric):
        raise ValueError(f"non-numeric count {value!r}")
    if numeric < 0:
        raise ValueError(f"negative count {value!r}")
    return int(np.round(numeric))


def coerce_date(value: Any) -> Optional[date]:
    """Calendar date from a date, datetime, Timestamp or ISO string; None when absent or unparseable."""
    if is_missing(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    parsed = pd.to_datetime(value, errors='coerce')
    if pd.isna(parsed):
        return None
    return parsed.date()
