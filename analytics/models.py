# healthcast/analytics/models.py
#
# Domain types shared by the forecasting policy and the outbreak engine.

"""Data models for forecasting and outbreak detection."""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple


# -----------------------------------------------------------------------------
# Forecasting
# -----------------------------------------------------------------------------

class AggregationMode(Enum):
    """Granularity the forecasting pipeline operates on."""
    DAILY = "daily"
    MONTHLY = "monthly"

    @property
    def pandas_freq(self) -> str:
        return "MS" if self is AggregationMode.MONTHLY else "D"

    @property
    def natural_period(self) -> int:
        """Seasonal period used when probing a series for seasonality."""
        return 12 if self is AggregationMode.MONTHLY else 7


class DataQuality(Enum):
    INSUFFICIENT = "insufficient"
    MODERATE = "moderate"
    HIGH = "high"

    @classmethod
    def from_point_count(cls, raw_points: int) -> 'DataQuality':
        if raw_points >= 50:
            return cls.HIGH
        if raw_points >= 30:
            return cls.MODERATE
        return cls.INSUFFICIENT


@dataclass(frozen=True)
class Observation:
    """One raw dated event (a completed service, a diagnosed case)."""
    timestamp: date
    value: int = 1
    dimension: Optional[int] = None


@dataclass(frozen=True)
class EntityKey:
    """Identifies one forecastable series, e.g. ('disease', 'dengue', 7)."""
    entity_type: str
    key: str
    geo_unit_id: Optional[int] = None

    @property
    def label(self) -> str:
        geo = self.geo_unit_id if self.geo_unit_id is not None else "all"
        return f"{self.entity_type}:{self.key}/{geo}"


@dataclass(frozen=True)
class GapStatistics:
    count: int = 0
    min_gap: float = 0.0
    max_gap: float = 0.0
    avg_gap: float = 0.0
    gap_variance: float = 0.0
    gaps: Tuple[int, ...] = ()

    @property
    def irregularity_ratio(self) -> float:
        # A zero mean gap (duplicate dates) short-circuits to the non-aggregating default.
        if self.avg_gap <= 0:
            return 0.0
        return self.max_gap / self.avg_gap


@dataclass(frozen=True)
class AggregationDecision:
    mode: AggregationMode
    irregularity_ratio: float
    reasons: Tuple[str, ...] = ()
    gap_statistics: GapStatistics = field(default_factory=GapStatistics)


@dataclass(frozen=True)
class ModelOrder:
    """Seasonal ARIMA order (p,d,q)(P,D,Q,s)."""
    p: int
    d: int
    q: int
    P: int = 0
    D: int = 0
    Q: int = 0
    s: int = 1

    def as_tuple(self) -> Tuple[int, int, int, int, int, int, int]:
        return (self.p, self.d, self.q, self.P, self.D, self.Q, self.s)

    @property
    def order(self) -> Tuple[int, int, int]:
        return (self.p, self.d, self.q)

    @property
    def seasonal_order(self) -> Tuple[int, int, int, int]:
        """statsmodels rejects a periodicity of 1 whenever it is passed in, so a
        model without seasonal terms is handed the all-zero tuple."""
        if self.P == 0 and self.D == 0 and self.Q == 0:
            return (0, 0, 0, 0)
        return (self.P, self.D, self.Q, self.s)

    @property
    def warmup(self) -> int:
        """Leading fitted values distorted by differencing initialisation."""
        return self.d + self.D * self.s

    def __str__(self) -> str:
        return f"({self.p},{self.d},{self.q})({self.P},{self.D},{self.Q})[{self.s}]"


@dataclass(frozen=True)
class ForecastPoint:
    date: date
    predicted_value: float
    lower_bound: float
    upper_bound: float
    confidence_level: float

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "predicted_value": self.predicted_value,
            "lower_bound": self.lower_bound,
            "upper_bound": self.upper_bound,
            "confidence_level": self.confidence_level,
        }


@dataclass(frozen=True)
class AccuracyMetrics:
    mse: float = 0.0
    rmse: float = 0.0
    mae: float = 0.0
    r2: float = 0.0
    mape: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {"mse": self.mse, "rmse": self.rmse, "mae": self.mae, "r2": self.r2, "mape": self.mape}


@dataclass
class ForecastResult:
    """Output of one Forecaster call, before it is tied to an entity."""
    points: List[ForecastPoint]
    accuracy_metrics: AccuracyMetrics
    model_order: ModelOrder
    mode: AggregationMode
    model_version: str
    data_quality: DataQuality
    trend: str = "stable"
    seasonality_detected: bool = False

    @property
    def is_degenerate(self) -> bool:
        return not self.points


@dataclass
class PredictionSet:
    """One forecasting run for one entity; replaces overlapping prior predictions."""
    entity_key: EntityKey
    result: ForecastResult
    decision: AggregationDecision
    raw_point_count: int
    records_skipped: int = 0
    generated_at: datetime = field(default_factory=datetime.now)

    @property
    def points(self) -> List[ForecastPoint]:
        return self.result.points

    @property
    def date_range(self) -> Optional[Tuple[date, date]]:
        if not self.result.points:
            return None
        return (self.result.points[0].date, self.result.points[-1].date)

    def metadata(self) -> dict:
        return {
            "entity_type": self.entity_key.entity_type,
            "entity_key": self.entity_key.key,
            "geo_unit_id": self.entity_key.geo_unit_id,
            "model_version": self.result.model_version,
            "granularity": self.result.mode.value,
            "model_order": list(self.result.model_order.as_tuple()),
            "accuracy_metrics": self.result.accuracy_metrics.to_dict(),
            "data_quality": self.result.data_quality.value,
            "trend": self.result.trend,
            "seasonality_detected": self.result.seasonality_detected,
            "irregularity_ratio": self.decision.irregularity_ratio,
            "aggregation_reasons": list(self.decision.reasons),
            "raw_point_count": self.raw_point_count,
            "records_skipped": self.records_skipped,
            "generated_at": self.generated_at.isoformat(),
        }

    def to_dict(self) -> dict:
        payload = self.metadata()
        payload["predictions"] = [p.to_dict() for p in self.points]
        return payload


# -----------------------------------------------------------------------------
# Outbreak detection
# -----------------------------------------------------------------------------

class Severity(Enum):
    """Severity of an individual case record."""
    HIGH = "high_risk"
    MEDIUM = "medium_risk"
    LOW = "low_risk"

    @classmethod
    def from_raw(cls, raw: Optional[str]) -> 'Severity':
        """Map stored severity strings, including legacy labels; unknown is LOW."""
        if raw is None:
            return cls.LOW
        return _SEVERITY_ALIASES.get(str(raw).strip().lower(), cls.LOW)


_SEVERITY_ALIASES: Dict[str, Severity] = {
    "high_risk": Severity.HIGH,
    "high": Severity.HIGH,
    "critical": Severity.HIGH,
    "severe": Severity.HIGH,
    "medium_risk": Severity.MEDIUM,
    "medium": Severity.MEDIUM,
    "moderate": Severity.MEDIUM,
    "low_risk": Severity.LOW,
    "low": Severity.LOW,
    "mild": Severity.LOW,
}


class RiskLevel(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {RiskLevel.HIGH: 0, RiskLevel.MEDIUM: 1, RiskLevel.LOW: 2}[self]


@dataclass(frozen=True)
class GeoUnit:
    id: int
    name: str


@dataclass(frozen=True)
class DiseaseRecord:
    """A raw disease-statistic row; `case_count` defaults to one patient case."""
    disease_type: str
    geo_unit_id: int
    record_date: date
    case_count: int = 1
    severity: Severity = Severity.LOW
    custom_disease_name: Optional[str] = None


@dataclass(frozen=True)
class OutbreakThresholdRule:
    disease_type: str
    cases_threshold: int
    days_window: int
    description: str = ""


@dataclass(frozen=True)
class SeverityBreakdown:
    high: int = 0
    medium: int = 0
    low: int = 0

    @property
    def total(self) -> int:
        return self.high + self.medium + self.low

    def to_dict(self) -> Dict[str, int]:
        return {"high": self.high, "medium": self.medium, "low": self.low}


@dataclass(frozen=True)
class OutbreakAlert:
    disease_type: str
    geo_unit_id: int
    geo_unit_name: str
    case_count: int
    severity_breakdown: SeverityBreakdown
    days_window: int
    threshold: int
    risk_level: RiskLevel
    first_case_date: date
    latest_case_date: date
    generated_at: datetime
    expires_at: datetime
    threshold_description: str = ""
    custom_disease_name: Optional[str] = None

    @property
    def identity(self) -> Tuple[str, int, int, int]:
        """Alerts with the same identity supersede one another across runs."""
        return (self.disease_type, self.geo_unit_id, self.days_window, self.threshold)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def to_dict(self) -> dict:
        return {
            "disease_type": self.disease_type,
            "custom_disease_name": self.custom_disease_name,
            "geo_unit_id": self.geo_unit_id,
            "geo_unit_name": self.geo_unit_name,
            "case_count": self.case_count,
            "severity_breakdown": self.severity_breakdown.to_dict(),
            "days_window": self.days_window,
            "threshold": self.threshold,
            "threshold_description": self.threshold_description,
            "risk_level": self.risk_level.value,
            "first_case_date": self.first_case_date.isoformat(),
            "latest_case_date": self.latest_case_date.isoformat(),
            "generated_at": self.generated_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }


def sort_alerts(alerts: Iterable[OutbreakAlert]) -> List[OutbreakAlert]:
    """Risk level first (HIGH before LOW), then case count descending."""
    return sorted(alerts, key=lambda a: (a.risk_level.rank, -a.case_count))
