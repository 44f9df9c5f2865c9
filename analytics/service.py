# healthcast/analytics/service.py
#
# Forecast orchestration: fetch raw observations, apply the gap-aware policy,
# fit with a retry on the simplest order, and persist the prediction set.
# Batch runs isolate failures per entity and can fan out with joblib.

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from joblib import Parallel, delayed

try:
    from config.settings import settings, ForecastConfig
    from analytics.aggregation import AggregationPolicy, GapAnalyzer, aggregate_series
    from analytics.exceptions import ForecastingError, ModelFitError
    from analytics.forecasting import Forecaster
    from analytics.model_order import select_order, simplest_order
    from analytics.models import EntityKey, Observation, PredictionSet
    from data_processing.helpers import coerce_date, coerce_non_negative_int
except ImportError as e:
    logging.basicConfig(level="CRITICAL")
    logging.critical(f"FATAL ERROR in service.py: A core dependency is missing. {e}", exc_info=True)
    raise

logger = logging.getLogger(__name__)


# --- Observation Validation ---

def normalize_observation(raw: Observation) -> Observation:
    """
    Returns a validated Observation or raises ValueError naming the defect.
    A missing value means a single event, as for disease case counts.
    """
    timestamp = coerce_date(raw.timestamp)
    if timestamp is None:
        raise ValueError("missing or unparseable timestamp")
    value = coerce_non_negative_int(raw.value, default=1)
    return Observation(timestamp=timestamp, value=value, dimension=raw.dimension)


def filter_observations(
    observations: Iterable[Observation], log_ctx: str = "Forecast"
) -> Tuple[List[Observation], Dict[str, int]]:
    """Valid observations plus a per-reason tally of the skipped ones."""
    valid: List[Observation] = []
    skipped: Dict[str, int] = {}
    for raw in observations:
        try:
            valid.append(normalize_observation(raw))
        except ValueError as e:
            reason = str(e)
            skipped[reason] = skipped.get(reason, 0) + 1
            logger.warning(f"[{log_ctx}] Skipping malformed observation: {reason}")
    return valid, skipped


class ForecastService:
    """
    Runs the forecasting pipeline for entities read from a SurveillanceSource and
    writes results to a PredictionStore (delete-then-insert per date range).
    """

    def __init__(
        self,
        source,
        prediction_store=None,
        policy: Optional[AggregationPolicy] = None,
        forecaster: Optional[Forecaster] = None,
        config: Optional[ForecastConfig] = None,
    ):
        self.config = config or settings.forecast
        self.source = source
        self.prediction_store = prediction_store
        self.policy = policy or AggregationPolicy()
        self.forecaster = forecaster or Forecaster(self.config)

    def forecast_entity(
        self,
        entity_key: EntityKey,
        horizon: Optional[int] = None,
        granularity: str = "auto",
        persist: bool = True,
    ) -> PredictionSet:
        """Forecast one entity. Raises ForecastingError when every attempt fails."""
        prediction_set = self.compute(entity_key, horizon, granularity)
        if persist:
            self.persist(prediction_set)
        return prediction_set

    def compute(self, entity_key: EntityKey, horizon: Optional[int] = None, granularity: str = "auto") -> PredictionSet:
        log_ctx = f"Forecast({entity_key.key}/{entity_key.geo_unit_id if entity_key.geo_unit_id is not None else 'all'})"
        periods = self.config.default_horizon if horizon is None else horizon
        if periods < 1:
            raise ValueError(f"Forecast horizon must be at least 1 period, got {periods}.")

        observations, skipped = filter_observations(self.source.fetch_observations(entity_key), log_ctx)
        stats = GapAnalyzer.analyze(o.timestamp for o in observations)
        decision = self.policy.decide(stats, granularity)
        series = aggregate_series(observations, decision.mode)
        logger.info(
            f"[{log_ctx}] {len(observations)} raw observation(s) ({sum(skipped.values())} skipped) -> "
            f"{len(series)} {decision.mode.value} point(s) (irregularity ratio {decision.irregularity_ratio:.2f}; {'; '.join(decision.reasons)})"
        )

        order = select_order(len(series), decision.mode)
        fit_kwargs = dict(periods=periods, mode=decision.mode, raw_point_count=len(observations), log_ctx=log_ctx)
        try:
            result = self.forecaster.forecast(series, order, **fit_kwargs)
        except ModelFitError as first_error:
            retry_order = simplest_order(decision.mode)
            logger.warning(f"[{log_ctx}] {first_error}. Retrying with {retry_order}.")
            try:
                result = self.forecaster.forecast(series, retry_order, **fit_kwargs)
            except ModelFitError as second_error:
                if not self.config.enable_trend_fallback:
                    raise ForecastingError(f"{entity_key.label}: {second_error}") from second_error
                logger.warning(f"[{log_ctx}] {second_error}. Using trend fallback.")
                result = self.forecaster.trend_fallback(series, **fit_kwargs)

        return PredictionSet(
            entity_key=entity_key,
            result=result,
            decision=decision,
            raw_point_count=len(observations),
            records_skipped=sum(skipped.values()),
        )

    def persist(self, prediction_set: PredictionSet) -> int:
        if self.prediction_store is None or prediction_set.date_range is None:
            return 0
        return self.prediction_store.replace_predictions(
            prediction_set.entity_key,
            prediction_set.date_range,
            prediction_set.points,
            prediction_set.metadata(),
        )

    def run_forecasts(
        self,
        entity_keys: Optional[Sequence[EntityKey]] = None,
        horizon: Optional[int] = None,
        granularity: str = "auto",
        n_jobs: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Forecasts every entity independently. Fits may run in parallel; results
        are persisted here so that stores never need to be shared with workers.
        """
        keys = list(entity_keys) if entity_keys is not None else self.source.list_entity_keys()
        summary: Dict[str, Any] = {
            "started_at": datetime.now().isoformat(),
            "entities": len(keys),
            "succeeded": [],
            "degenerate": [],
            "failed": {},
            "predictions_stored": 0,
            "records_skipped": 0,
            "results": {},
            "completed_at": None,
        }
        logger.info(f"[ForecastService] Forecasting {len(keys)} entit{'y' if len(keys) == 1 else 'ies'}.")

        outcomes: List[Tuple[EntityKey, Optional[PredictionSet], Optional[str]]] = Parallel(
            n_jobs=n_jobs or self.config.n_jobs
        )(delayed(_compute_isolated)(self, key, horizon, granularity) for key in keys)

        for key, prediction_set, error in outcomes:
            if error is not None:
                summary["failed"][key.label] = error
                continue
            try:
                summary["predictions_stored"] += self.persist(prediction_set)
            except Exception as e:
                logger.error(f"[ForecastService] Persisting {key.label} failed: {e}", exc_info=True)
                summary["failed"][key.label] = f"persist failed: {e}"
                continue
            summary["results"][key.label] = prediction_set.to_dict()
            summary["records_skipped"] += prediction_set.records_skipped
            if prediction_set.result.is_degenerate:
                summary["degenerate"].append(key.label)
            else:
                summary["succeeded"].append(key.label)

        summary["completed_at"] = datetime.now().isoformat()
        logger.info(
            f"[ForecastService] {len(summary['succeeded'])} succeeded, {len(summary['degenerate'])} degenerate, "
            f"{len(summary['failed'])} failed."
        )
        return summary


def _compute_isolated(
    service: ForecastService, key: EntityKey, horizon: Optional[int], granularity: str
) -> Tuple[EntityKey, Optional[PredictionSet], Optional[str]]:
    try:
        return key, service.compute(key, horizon, granularity), None
    except Exception as e:
        logger.error(f"[ForecastService] Forecast for {key.label} failed: {e}", exc_info=True)
        return key, None, str(e)
