# healthcast/analytics/aggregation.py
#
# Gap-aware aggregation policy.
# Irregular streams of dated events are inspected for their inter-event gaps and
# bucketed into either a daily or a monthly series before any model is fitted.

import logging
from datetime import date
from typing import Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

try:
    from config.settings import settings
    from analytics.models import AggregationDecision, AggregationMode, GapStatistics, Observation
except ImportError as e:
    logging.basicConfig(level="CRITICAL")
    logging.critical(f"FATAL ERROR in aggregation.py: A core dependency is missing. {e}", exc_info=True)
    raise

logger = logging.getLogger(__name__)

GRANULARITY_CHOICES = ("auto", "daily", "monthly")


# --- Gap Analysis ---

class GapAnalyzer:
    """Computes inter-event gap statistics over a collection of dates."""

    @staticmethod
    def analyze(dates: Iterable[date]) -> GapStatistics:
        ordered = sorted(pd.Timestamp(d).normalize() for d in dates)
        if len(ordered) < 2:
            return GapStatistics(count=len(ordered))

        gaps = np.array(
            [round((later - earlier) / pd.Timedelta(days=1)) for earlier, later in zip(ordered, ordered[1:])],
            dtype=float,
        )
        return GapStatistics(
            count=len(ordered),
            min_gap=float(gaps.min()),
            max_gap=float(gaps.max()),
            avg_gap=float(gaps.mean()),
            gap_variance=float(gaps.var()),
            gaps=tuple(int(g) for g in gaps),
        )


# --- Aggregation Decision ---

class AggregationPolicy:
    """Decides between daily and monthly granularity from gap statistics.

    Monthly aggregation requires BOTH an irregular spacing (max gap large relative
    to the mean gap) and a large absolute gap magnitude. Either condition alone
    keeps the daily series.
    """

    def __init__(
        self,
        irregularity_ratio_threshold: Optional[float] = None,
        avg_gap_threshold_days: Optional[float] = None,
        max_gap_threshold_days: Optional[float] = None,
    ):
        cfg = settings.aggregation
        self.irregularity_ratio_threshold = (
            cfg.irregularity_ratio_threshold if irregularity_ratio_threshold is None else irregularity_ratio_threshold
        )
        self.avg_gap_threshold_days = cfg.avg_gap_threshold_days if avg_gap_threshold_days is None else avg_gap_threshold_days
        self.max_gap_threshold_days = cfg.max_gap_threshold_days if max_gap_threshold_days is None else max_gap_threshold_days

    def decide(self, stats: GapStatistics, granularity: str = "auto") -> AggregationDecision:
        if granularity not in GRANULARITY_CHOICES:
            raise ValueError(f"Unknown granularity '{granularity}'. Expected one of {GRANULARITY_CHOICES}.")

        ratio = stats.irregularity_ratio
        if granularity != "auto":
            mode = AggregationMode(granularity)
            return AggregationDecision(
                mode=mode,
                irregularity_ratio=ratio,
                reasons=(f"granularity forced to {mode.value} by caller",),
                gap_statistics=stats,
            )

        if stats.count < 2:
            return AggregationDecision(
                mode=AggregationMode.DAILY,
                irregularity_ratio=0.0,
                reasons=(f"only {stats.count} observation(s); no gaps to analyse",),
                gap_statistics=stats,
            )

        reasons: List[str] = []
        irregular = ratio > self.irregularity_ratio_threshold
        if irregular:
            reasons.append(f"irregularity ratio {ratio:.2f} > {self.irregularity_ratio_threshold}")

        large_avg = stats.avg_gap > self.avg_gap_threshold_days
        large_max = stats.max_gap > self.max_gap_threshold_days
        if large_avg:
            reasons.append(f"average gap {stats.avg_gap:.1f}d > {self.avg_gap_threshold_days}d")
        if large_max:
            reasons.append(f"max gap {stats.max_gap:.0f}d > {self.max_gap_threshold_days}d")

        if irregular and (large_avg or large_max):
            mode = AggregationMode.MONTHLY
        else:
            mode = AggregationMode.DAILY
            if not reasons:
                reasons.append("gaps are regular and small")
            elif not irregular:
                reasons.append("gaps are large but evenly spaced")
            else:
                reasons.append("gaps are irregular but small")

        return AggregationDecision(mode=mode, irregularity_ratio=ratio, reasons=tuple(reasons), gap_statistics=stats)


# --- Series Construction ---

def observations_to_series(observations: Sequence[Observation]) -> pd.Series:
    """Raw observations as a value series indexed by timestamp (unsorted duplicates kept)."""
    if not observations:
        return pd.Series(dtype=float)
    index = pd.DatetimeIndex([pd.Timestamp(o.timestamp).normalize() for o in observations])
    return pd.Series([float(o.value) for o in observations], index=index).sort_index()


def aggregate_series(
    observations: Sequence[Observation],
    mode: AggregationMode,
    fill_missing_periods: Optional[bool] = None,
) -> pd.Series:
    """
    Buckets raw observations into a calendar-indexed series.

    MONTHLY sums values per calendar month (indexed by the month start); DAILY sums
    per date. With `fill_missing_periods` the index is made contiguous and empty
    periods hold zero, so a model never treats a gap as adjacent periods.
    """
    fill = settings.aggregation.fill_missing_periods if fill_missing_periods is None else fill_missing_periods
    raw = observations_to_series(observations)
    if raw.empty:
        return raw

    if mode is AggregationMode.MONTHLY:
        bucketed = raw.groupby(raw.index.to_period("M")).sum()
        bucketed.index = bucketed.index.to_timestamp(how="start")
    else:
        bucketed = raw.groupby(raw.index).sum()

    bucketed = bucketed.sort_index()
    if fill:
        bucketed = bucketed.asfreq(mode.pandas_freq, fill_value=0.0)
    bucketed.name = "value"
    return bucketed.astype(float)


# --- Series Descriptors ---

def detect_trend(series: pd.Series, threshold: float = 0.10) -> str:
    """'increasing' / 'decreasing' / 'stable' from the change between series halves."""
    values = np.asarray(series, dtype=float)
    if len(values) < 2:
        return "stable"
    half = len(values) // 2
    first_mean = values[:half].mean()
    second_mean = values[half:].mean()
    if first_mean == 0:
        return "increasing" if second_mean > 0 else "stable"
    change = (second_mean - first_mean) / abs(first_mean)
    if change > threshold:
        return "increasing"
    if change < -threshold:
        return "decreasing"
    return "stable"


def detect_seasonality(series: pd.Series, mode: AggregationMode) -> bool:
    values = np.asarray(series, dtype=float)
    period = mode.natural_period
    variance = values.var() if len(values) else 0.0
    if variance == 0:
        return False

    if mode is AggregationMode.MONTHLY:
        if len(values) < 24:
            return False
        # Share of variance explained by per-position seasonal means.
        positions = np.arange(len(values)) % period
        seasonal_means = np.array([values[positions == k].mean() for k in range(period)])
        seasonal_component = seasonal_means[positions] - values.mean()
        return float(seasonal_component.var() / variance) > 0.15

    if len(values) < 2 * period:
        return False
    centred = values - values.mean()
    autocovariance = float(np.mean(centred[:-period] * centred[period:]))
    return autocovariance > 0.3 * variance
