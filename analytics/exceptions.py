# healthcast/analytics/exceptions.py
"""Exception hierarchy for the analytics core."""

from typing import Optional


class HealthcastError(Exception):
    """Base class for all errors raised by the analytics core."""


class ForecastingError(HealthcastError):
    """Raised when a forecast cannot be produced."""


class ModelFitError(ForecastingError):
    """The estimator could not produce a bounded, finite forecast for an order.

    Callers may retry with a simpler order or surface the failure upstream.
    """

    def __init__(self, reason: str, order: Optional[object] = None):
        self.reason = reason
        self.order = order
        suffix = f" for order {order}" if order is not None else ""
        super().__init__(f"Model fit failed{suffix}: {reason}")


class DataSourceError(HealthcastError):
    """A store or extract could not be read or written."""
