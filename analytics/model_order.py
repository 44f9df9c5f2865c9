# healthcast/analytics/model_order.py
#
# Seasonal ARIMA order selection.
# The differencing order depends on the aggregation mode alone: monthly series are
# already smoothed by bucketing and are modelled undifferenced, daily series take
# a first difference. Series length only adds or removes the MA term.

import logging

try:
    from analytics.models import AggregationMode, ModelOrder
except ImportError as e:
    logging.basicConfig(level="CRITICAL")
    logging.critical(f"FATAL ERROR in model_order.py: A core dependency is missing. {e}", exc_info=True)
    raise

logger = logging.getLogger(__name__)

SHORT_SERIES_LENGTH = 14


def _differencing_for(mode: AggregationMode) -> int:
    return 0 if mode is AggregationMode.MONTHLY else 1


def select_order(series_length: int, mode: AggregationMode) -> ModelOrder:
    """Order for an aggregated series of `series_length` points under `mode`."""
    d = _differencing_for(mode)
    if series_length < SHORT_SERIES_LENGTH:
        order = ModelOrder(p=1, d=d, q=0)
    else:
        order = ModelOrder(p=1, d=d, q=1)
    logger.debug(f"[ModelOrder] {series_length} {mode.value} points -> {order}")
    return order


def simplest_order(mode: AggregationMode) -> ModelOrder:
    """Fallback order tried after a failed fit."""
    return ModelOrder(p=1, d=_differencing_for(mode), q=0)
