# healthcast/analytics/metrics.py
#
# Accuracy metrics for fitted or back-tested forecasts.

import logging
from typing import Sequence

import numpy as np

try:
    from analytics.models import AccuracyMetrics
except ImportError as e:
    logging.basicConfig(level="CRITICAL")
    logging.critical(f"FATAL ERROR in metrics.py: A core dependency is missing. {e}", exc_info=True)
    raise

logger = logging.getLogger(__name__)


def calculate_accuracy_metrics(actual: Sequence[float], predicted: Sequence[float]) -> AccuracyMetrics:
    """
    MSE, RMSE, MAE, R² and MAPE over paired values.

    R² is clamped to [0, 1]: a model worse than the mean reports 0. A constant
    actual series scores 1 only when every prediction matches it. MAPE (percent)
    is computed over non-zero actuals only; zero when there are none.
    """
    y_true = np.asarray(actual, dtype=float)
    y_pred = np.asarray(predicted, dtype=float)
    n = min(len(y_true), len(y_pred))
    if n == 0:
        return AccuracyMetrics()
    y_true, y_pred = y_true[:n], y_pred[:n]

    errors = y_true - y_pred
    mse = float(np.mean(errors ** 2))
    mae = float(np.mean(np.abs(errors)))

    ss_res = float(np.sum(errors ** 2))
    ss_tot = float(np.sum((y_true - y_true.mean()) ** 2))
    if ss_tot == 0:
        r2 = 1.0 if ss_res == 0 else 0.0
    else:
        r2 = 1.0 - ss_res / ss_tot
    r2 = float(np.clip(r2, 0.0, 1.0))

    nonzero = y_true != 0
    if nonzero.any():
        mape = float(np.mean(np.abs(errors[nonzero] / y_true[nonzero])) * 100.0)
    else:
        mape = 0.0

    return AccuracyMetrics(mse=mse, rmse=float(np.sqrt(mse)), mae=mae, r2=r2, mape=mape)
