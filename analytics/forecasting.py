# healthcast/analytics/forecasting.py
#
# Seasonal ARIMA Forecasting Engine
# Fits a statsmodels SARIMAX model to an aggregated count series and produces
# bounded predictions with confidence intervals and accuracy metrics. Forecasts
# that are non-finite or explode relative to history are rejected with
# ModelFitError so the caller can retry with a simpler order.

import logging
import warnings
from typing import Optional, Tuple

import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.tsa.statespace.sarimax import SARIMAX

try:
    from config.settings import settings, ForecastConfig
    from analytics.aggregation import detect_seasonality, detect_trend
    from analytics.exceptions import ModelFitError
    from analytics.metrics import calculate_accuracy_metrics
    from analytics.models import (
        AccuracyMetrics, AggregationMode, DataQuality, ForecastPoint, ForecastResult, ModelOrder
    )
except ImportError as e:
    logging.basicConfig(level="CRITICAL")
    logging.critical(f"FATAL ERROR in forecasting.py: A core dependency is missing. {e}", exc_info=True)
    raise

logger = logging.getLogger(__name__)

FALLBACK_WINDOW = 7


class Forecaster:
    """Fits one aggregated series and returns a ForecastResult."""

    def __init__(self, config: Optional[ForecastConfig] = None):
        self.config = config or settings.forecast

    # --- Public API ---

    def forecast(
        self,
        series: pd.Series,
        order: ModelOrder,
        periods: int,
        mode: AggregationMode,
        confidence_level: Optional[float] = None,
        raw_point_count: Optional[int] = None,
        log_ctx: str = "Forecast",
    ) -> ForecastResult:
        confidence = self.config.confidence_level if confidence_level is None else confidence_level
        series = self._prepare(series)
        quality = DataQuality.from_point_count(len(series) if raw_point_count is None else raw_point_count)

        if len(series) < self.config.min_fit_points:
            logger.warning(
                f"[{log_ctx}] Only {len(series)} aggregated point(s); "
                f"{self.config.min_fit_points} required. Returning an empty forecast."
            )
            return self._degenerate(order, mode)

        values = series.to_numpy(dtype=float)
        historical_max = float(values.max())

        results = self._fit(values, order, log_ctx)
        try:
            forecast = results.get_forecast(steps=periods)
            mean = np.asarray(forecast.predicted_mean, dtype=float)
            interval = np.asarray(forecast.conf_int(alpha=1.0 - confidence), dtype=float)
        except Exception as e:
            raise ModelFitError(f"forecast step failed: {e}", order) from e

        self._validate(mean, interval, historical_max, order)
        points = self._build_points(series.index[-1], mean, interval[:, 0], interval[:, 1], historical_max, mode, confidence)
        metrics = self._accuracy(values, order, results, log_ctx)

        logger.info(
            f"[{log_ctx}] SARIMA{order} on {len(values)} {mode.value} points -> "
            f"{len(points)} periods, R²={metrics.r2:.3f}, MAE={metrics.mae:.2f}"
        )
        return ForecastResult(
            points=points,
            accuracy_metrics=metrics,
            model_order=order,
            mode=mode,
            model_version=f"{self.config.model_version}-{mode.value}-v2.0",
            data_quality=quality,
            trend=detect_trend(series),
            seasonality_detected=detect_seasonality(series, mode),
        )

    def trend_fallback(
        self,
        series: pd.Series,
        periods: int,
        mode: AggregationMode,
        confidence_level: Optional[float] = None,
        raw_point_count: Optional[int] = None,
        log_ctx: str = "Forecast",
    ) -> ForecastResult:
        """Last value plus the least-squares slope of the final points."""
        confidence = self.config.confidence_level if confidence_level is None else confidence_level
        series = self._prepare(series)
        quality = DataQuality.from_point_count(len(series) if raw_point_count is None else raw_point_count)
        order = ModelOrder(p=0, d=0, q=0)
        if len(series) < self.config.min_fit_points:
            return self._degenerate(order, mode, model_version=f"Fallback-Trend-{mode.value}-v1.0")

        values = series.to_numpy(dtype=float)
        window = values[-FALLBACK_WINDOW:]
        x = np.arange(len(window), dtype=float)
        fit = stats.linregress(x, window)
        fitted = fit.intercept + fit.slope * x
        sigma = float(np.std(window - fitted)) or float(np.std(window))
        z = float(stats.norm.ppf((1.0 + confidence) / 2.0))

        mean = values[-1] + fit.slope * np.arange(1, periods + 1, dtype=float)
        points = self._build_points(
            series.index[-1], mean, mean - z * sigma, mean + z * sigma, float(values.max()), mode, confidence
        )
        logger.info(f"[{log_ctx}] Trend fallback on {len(values)} {mode.value} points (slope={fit.slope:.3f})")
        return ForecastResult(
            points=points,
            accuracy_metrics=calculate_accuracy_metrics(window, fitted),
            model_order=order,
            mode=mode,
            model_version=f"Fallback-Trend-{mode.value}-v1.0",
            data_quality=quality,
            trend=detect_trend(series),
            seasonality_detected=detect_seasonality(series, mode),
        )

    # --- Internals ---

    def _prepare(self, series: pd.Series) -> pd.Series:
        series = series.dropna().sort_index()
        if len(series) > self.config.max_series_length:
            series = series.iloc[-self.config.max_series_length:]
        return series

    def _degenerate(self, order: ModelOrder, mode: AggregationMode, model_version: Optional[str] = None) -> ForecastResult:
        return ForecastResult(
            points=[],
            accuracy_metrics=AccuracyMetrics(),
            model_order=order,
            mode=mode,
            model_version=model_version or f"{self.config.model_version}-{mode.value}-v2.0",
            data_quality=DataQuality.INSUFFICIENT,
        )

    def _fit(self, values: np.ndarray, order: ModelOrder, log_ctx: str):
        trend = "c" if order.d == 0 and order.D == 0 else "n"
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore")
                model = SARIMAX(
                    values,
                    order=order.order,
                    seasonal_order=order.seasonal_order,
                    trend=trend,
                    enforce_stationarity=False,
                    enforce_invertibility=False,
                )
                results = model.fit(disp=False, maxiter=self.config.maxiter, method="lbfgs")
        except Exception as e:
            raise ModelFitError(f"estimator raised {type(e).__name__}: {e}", order) from e

        if not bool((getattr(results, "mle_retvals", None) or {}).get("converged", True)):
            logger.debug(f"[{log_ctx}] SARIMA{order} optimiser did not report convergence.")
        return results

    @staticmethod
    def _predict_mean(results, steps: int, order: ModelOrder) -> np.ndarray:
        try:
            return np.asarray(results.get_forecast(steps=steps).predicted_mean, dtype=float)
        except Exception as e:
            raise ModelFitError(f"forecast step failed: {e}", order) from e

    def _validate(self, mean: np.ndarray, interval: np.ndarray, historical_max: float, order: ModelOrder) -> None:
        if not np.all(np.isfinite(mean)) or not np.all(np.isfinite(interval)):
            raise ModelFitError("forecast contains non-finite values", order)

        reference = max(historical_max, 1.0)
        if mean.max() > self.config.explosion_factor * reference:
            raise ModelFitError(
                f"forecast max {mean.max():.1f} exceeds {self.config.explosion_factor}x historical max {historical_max:.1f}",
                order,
            )
        if len(mean) > 1:
            growth = np.diff(mean) / np.maximum(mean[:-1], 1.0)
            if growth.mean() > self.config.max_growth_rate:
                raise ModelFitError(f"mean step growth {growth.mean():.2f} exceeds {self.config.max_growth_rate}", order)

    def _build_points(
        self,
        last_index,
        mean: np.ndarray,
        lower: np.ndarray,
        upper: np.ndarray,
        historical_max: float,
        mode: AggregationMode,
        confidence: float,
    ):
        cap = historical_max * self.config.clamp_multiplier
        predicted = np.clip(mean, 0.0, cap)
        lower = np.minimum(np.clip(lower, 0.0, cap), predicted)
        upper = np.maximum(np.clip(upper, 0.0, cap), predicted)
        dates = future_dates(last_index, len(predicted), mode)
        return [
            ForecastPoint(
                date=d.date(),
                predicted_value=round(float(p), 4),
                lower_bound=round(float(lo), 4),
                upper_bound=round(float(hi), 4),
                confidence_level=confidence,
            )
            for d, p, lo, hi in zip(dates, predicted, lower, upper)
        ]

    def _accuracy(self, values: np.ndarray, order: ModelOrder, full_results, log_ctx: str) -> AccuracyMetrics:
        actual, predicted = self._backtest_pairs(values, order, log_ctx)
        if actual is None:
            fitted = np.asarray(full_results.fittedvalues, dtype=float)
            skip = min(order.warmup, len(values) - 1)
            actual, predicted = values[skip:], fitted[skip:]
        return calculate_accuracy_metrics(actual, np.clip(predicted, 0.0, None))

    def _backtest_pairs(
        self, values: np.ndarray, order: ModelOrder, log_ctx: str
    ) -> Tuple[Optional[np.ndarray], Optional[np.ndarray]]:
        """Hold out the trailing points, refit on the rest and forecast them."""
        if len(values) < self.config.backtest_min_points:
            return None, None
        test_size = max(self.config.backtest_min_test_points, int(len(values) * self.config.backtest_test_fraction))
        train, test = values[:-test_size], values[-test_size:]
        if len(train) < self.config.min_fit_points:
            return None, None
        try:
            results = self._fit(train, order, log_ctx)
            predicted = self._predict_mean(results, test_size, order)
        except ModelFitError as e:
            logger.warning(f"[{log_ctx}] Back-test refit failed, using in-sample metrics: {e}")
            return None, None
        if not np.all(np.isfinite(predicted)):
            logger.warning(f"[{log_ctx}] Back-test forecast is non-finite, using in-sample metrics.")
            return None, None
        return test, predicted


def future_dates(last_index, periods: int, mode: AggregationMode) -> pd.DatetimeIndex:
    """`periods` dates one period after `last_index` (month starts or days)."""
    last = pd.Timestamp(last_index).normalize()
    if mode is AggregationMode.MONTHLY:
        start = last.to_period("M").to_timestamp(how="start") + pd.offsets.MonthBegin(1)
    else:
        start = last + pd.Timedelta(days=1)
    return pd.date_range(start=start, periods=periods, freq=mode.pandas_freq)
