# healthcast/data_processing/stores.py
#
# Store interfaces consumed and produced by the analytics core, with in-memory
# adapters (tests, embedding) and a SQLite adapter (persistent default).

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

try:
    from config.settings import settings
    from analytics.exceptions import DataSourceError
    from analytics.models import (
        DiseaseRecord, EntityKey, ForecastPoint, GeoUnit, Observation, OutbreakAlert, RiskLevel, SeverityBreakdown,
        sort_alerts,
    )
    from .helpers import coerce_date
except ImportError as e:
    logging.basicConfig(level="CRITICAL")
    logging.critical(f"FATAL ERROR in stores.py: A core dependency is missing. {e}", exc_info=True)
    raise

logger = logging.getLogger(__name__)

DateRange = Tuple[date, date]


# --- Interfaces ---

class SurveillanceSource(ABC):
    """Read-only access to raw surveillance records."""

    @abstractmethod
    def fetch_observations(self, entity_key: EntityKey, date_range: Optional[DateRange] = None) -> List[Observation]:
        """Observations of one entity; a key without geo unit spans all units."""

    @abstractmethod
    def fetch_disease_records(self, lookback_start: date) -> List[Union[DiseaseRecord, Mapping[str, Any]]]:
        """Disease records dated on or after `lookback_start`, unvalidated."""

    @abstractmethod
    def fetch_geo_units(self) -> List[GeoUnit]:
        pass

    def list_entity_keys(self) -> List[EntityKey]:
        """Distinct (entity_type, key, geo_unit_id) series known to the source."""
        return []


class PredictionStore(ABC):

    @abstractmethod
    def replace_predictions(
        self,
        entity_key: EntityKey,
        date_range: DateRange,
        points: Sequence[ForecastPoint],
        metadata: Mapping[str, Any],
    ) -> int:
        """Deletes stored predictions of the entity inside `date_range`, then inserts `points`."""

    @abstractmethod
    def get_predictions(self, entity_key: EntityKey) -> List[ForecastPoint]:
        pass


class AlertStore(ABC):

    @abstractmethod
    def replace_alerts(self, alerts: Sequence[OutbreakAlert], now: datetime) -> int:
        """Purges expired alerts, drops stored alerts sharing an identity with a new one, inserts the new set."""

    @abstractmethod
    def get_active_alerts(
        self,
        disease_type: Optional[str] = None,
        geo_unit_id: Optional[int] = None,
        risk_level: Optional[RiskLevel] = None,
        now: Optional[datetime] = None,
    ) -> List[OutbreakAlert]:
        """Non-expired alerts sorted by risk (HIGH first) then case count descending."""


def _filter_alerts(
    alerts: Iterable[OutbreakAlert],
    disease_type: Optional[str],
    geo_unit_id: Optional[int],
    risk_level: Optional[RiskLevel],
    now: datetime,
) -> List[OutbreakAlert]:
    selected = [
        a for a in alerts
        if not a.is_expired(now)
        and (disease_type is None or a.disease_type == disease_type)
        and (geo_unit_id is None or a.geo_unit_id == geo_unit_id)
        and (risk_level is None or a.risk_level is risk_level)
    ]
    return sort_alerts(selected)


# --- In-Memory Adapters ---

class InMemorySurveillanceSource(SurveillanceSource):

    def __init__(
        self,
        observations: Optional[Mapping[EntityKey, Sequence[Observation]]] = None,
        disease_records: Optional[Sequence[Union[DiseaseRecord, Mapping[str, Any]]]] = None,
        geo_units: Optional[Sequence[GeoUnit]] = None,
    ):
        self.observations: Dict[EntityKey, List[Observation]] = {k: list(v) for k, v in (observations or {}).items()}
        self.disease_records = list(disease_records or [])
        self.geo_units = list(geo_units or [])

    def fetch_observations(self, entity_key, date_range=None):
        if entity_key.geo_unit_id is None:
            matches = [
                o for k, obs in self.observations.items()
                if k.entity_type == entity_key.entity_type and k.key == entity_key.key
                for o in obs
            ]
        else:
            matches = list(self.observations.get(entity_key, []))
        if date_range is not None:
            start, end = date_range
            matches = [o for o in matches if start <= o.timestamp <= end]
        return matches

    def fetch_disease_records(self, lookback_start):
        selected = []
        for record in self.disease_records:
            raw_date = record.record_date if isinstance(record, DiseaseRecord) else record.get("record_date")
            record_date = coerce_date(raw_date)
            # Undated records are passed through so the detector can count them as malformed.
            if record_date is None or record_date >= lookback_start:
                selected.append(record)
        return selected

    def fetch_geo_units(self):
        return list(self.geo_units)

    def list_entity_keys(self):
        return list(self.observations.keys())


class InMemoryPredictionStore(PredictionStore):

    def __init__(self):
        self.predictions: Dict[EntityKey, List[ForecastPoint]] = {}
        self.metadata: Dict[EntityKey, Dict[str, Any]] = {}

    def replace_predictions(self, entity_key, date_range, points, metadata):
        start, end = date_range
        kept = [p for p in self.predictions.get(entity_key, []) if not start <= p.date <= end]
        self.predictions[entity_key] = sorted(kept + list(points), key=lambda p: p.date)
        self.metadata[entity_key] = dict(metadata)
        return len(points)

    def get_predictions(self, entity_key):
        return list(self.predictions.get(entity_key, []))


class InMemoryAlertStore(AlertStore):

    def __init__(self):
        self.alerts: List[OutbreakAlert] = []

    def replace_alerts(self, alerts, now):
        identities = {a.identity for a in alerts}
        self.alerts = [a for a in self.alerts if not a.is_expired(now) and a.identity not in identities]
        self.alerts.extend(alerts)
        return len(alerts)

    def get_active_alerts(self, disease_type=None, geo_unit_id=None, risk_level=None, now=None):
        return _filter_alerts(self.alerts, disease_type, geo_unit_id, risk_level, now or datetime.now())


# --- SQLite Adapter ---

_SCHEMA = """
CREATE TABLE IF NOT EXISTS observations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_type TEXT NOT NULL,
    entity_key TEXT NOT NULL,
    geo_unit_id INTEGER,
    observed_on TEXT NOT NULL,
    value INTEGER NOT NULL DEFAULT 1
);
CREATE INDEX IF NOT EXISTS idx_observations_entity ON observations (entity_type, entity_key, geo_unit_id);

CREATE TABLE IF NOT EXISTS disease_records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    disease_type TEXT,
    custom_disease_name TEXT,
    geo_unit_id INTEGER,
    record_date TEXT,
    case_count INTEGER,
    severity TEXT
);
CREATE INDEX IF NOT EXISTS idx_disease_records_date ON disease_records (record_date);

CREATE TABLE IF NOT EXISTS geo_units (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS predictions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_type TEXT NOT NULL,
    entity_key TEXT NOT NULL,
    geo_unit_id INTEGER,
    prediction_date TEXT NOT NULL,
    predicted_value REAL NOT NULL,
    lower_bound REAL NOT NULL,
    upper_bound REAL NOT NULL,
    confidence_level REAL NOT NULL,
    model_version TEXT,
    granularity TEXT,
    data_quality TEXT,
    metadata TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_predictions_entity ON predictions (entity_type, entity_key, geo_unit_id, prediction_date);

CREATE TABLE IF NOT EXISTS outbreak_alerts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    disease_type TEXT NOT NULL,
    custom_disease_name TEXT,
    geo_unit_id INTEGER NOT NULL,
    geo_unit_name TEXT NOT NULL,
    case_count INTEGER NOT NULL,
    high_count INTEGER NOT NULL,
    medium_count INTEGER NOT NULL,
    low_count INTEGER NOT NULL,
    days_window INTEGER NOT NULL,
    threshold INTEGER NOT NULL,
    threshold_description TEXT,
    risk_level TEXT NOT NULL,
    first_case_date TEXT NOT NULL,
    latest_case_date TEXT NOT NULL,
    generated_at TEXT NOT NULL,
    expires_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_outbreak_alerts_expiry ON outbreak_alerts (expires_at);
"""

_RISK_ORDER_SQL = "CASE risk_level WHEN 'high' THEN 0 WHEN 'medium' THEN 1 ELSE 2 END"


def _ts(value: datetime) -> str:
    # Fixed-width timestamps keep string comparison in SQL chronological.
    return value.isoformat(sep=" ", timespec="microseconds")


class SQLiteStore(SurveillanceSource, PredictionStore, AlertStore):
    """SQLite database holding raw records, predictions and outbreak alerts."""

    def __init__(self, db_path: Union[str, Path, None] = None, max_records: Optional[int] = None):
        self.db_path = Path(db_path or settings.database_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.max_records = settings.outbreak.max_records if max_records is None else max_records
        self._init_db()

    def _init_db(self) -> None:
        with self._get_connection() as conn:
            conn.executescript(_SCHEMA)

    def _get_connection(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise DataSourceError(f"Could not open database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        return conn

    # --- Loading ---

    def add_observations(self, entity_key: EntityKey, observations: Iterable[Observation]) -> int:
        rows = [
            (entity_key.entity_type, entity_key.key, o.dimension if o.dimension is not None else entity_key.geo_unit_id,
             o.timestamp.isoformat(), int(o.value))
            for o in observations
        ]
        with self._get_connection() as conn:
            conn.executemany(
                "INSERT INTO observations (entity_type, entity_key, geo_unit_id, observed_on, value) VALUES (?, ?, ?, ?, ?)",
                rows,
            )
        return len(rows)

    def add_disease_records(self, records: Iterable[Union[DiseaseRecord, Mapping[str, Any]]]) -> int:
        rows = []
        for record in records:
            fields = record.__dict__ if isinstance(record, DiseaseRecord) else dict(record)
            severity = fields.get("severity")
            record_date = coerce_date(fields.get("record_date"))
            rows.append((
                fields.get("disease_type"),
                fields.get("custom_disease_name"),
                fields.get("geo_unit_id"),
                record_date.isoformat() if record_date else None,
                fields.get("case_count"),
                getattr(severity, "value", severity),
            ))
        with self._get_connection() as conn:
            conn.executemany(
                """
                INSERT INTO disease_records (
                    disease_type, custom_disease_name, geo_unit_id, record_date, case_count, severity
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
        return len(rows)

    def add_geo_units(self, geo_units: Iterable[GeoUnit]) -> int:
        rows = [(g.id, g.name) for g in geo_units]
        with self._get_connection() as conn:
            conn.executemany("INSERT OR REPLACE INTO geo_units (id, name) VALUES (?, ?)", rows)
        return len(rows)

    # --- SurveillanceSource ---

    def fetch_observations(self, entity_key, date_range=None):
        query = "SELECT observed_on, value, geo_unit_id FROM observations WHERE entity_type = ? AND entity_key = ?"
        params: List[Any] = [entity_key.entity_type, entity_key.key]
        if entity_key.geo_unit_id is not None:
            query += " AND geo_unit_id = ?"
            params.append(entity_key.geo_unit_id)
        if date_range is not None:
            query += " AND observed_on BETWEEN ? AND ?"
            params.extend([date_range[0].isoformat(), date_range[1].isoformat()])
        query += " ORDER BY observed_on"
        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            Observation(timestamp=date.fromisoformat(r["observed_on"]), value=r["value"], dimension=r["geo_unit_id"])
            for r in rows
        ]

    def fetch_disease_records(self, lookback_start):
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT disease_type, custom_disease_name, geo_unit_id, record_date, case_count, severity
                FROM disease_records
                WHERE record_date IS NULL OR record_date >= ?
                ORDER BY record_date DESC
                LIMIT ?
                """,
                (lookback_start.isoformat(), self.max_records),
            ).fetchall()
        return [dict(r) for r in rows]

    def fetch_geo_units(self):
        with self._get_connection() as conn:
            rows = conn.execute("SELECT id, name FROM geo_units ORDER BY id").fetchall()
        return [GeoUnit(id=r["id"], name=r["name"]) for r in rows]

    def list_entity_keys(self):
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT DISTINCT entity_type, entity_key, geo_unit_id FROM observations ORDER BY entity_type, entity_key"
            ).fetchall()
        return [EntityKey(r["entity_type"], r["entity_key"], r["geo_unit_id"]) for r in rows]

    # --- PredictionStore ---

    def replace_predictions(self, entity_key, date_range, points, metadata):
        geo_clause = "geo_unit_id IS NULL" if entity_key.geo_unit_id is None else "geo_unit_id = ?"
        geo_params = [] if entity_key.geo_unit_id is None else [entity_key.geo_unit_id]
        created_at = _ts(datetime.now())
        with self._get_connection() as conn:
            conn.execute(
                f"""
                DELETE FROM predictions
                WHERE entity_type = ? AND entity_key = ? AND {geo_clause}
                AND prediction_date BETWEEN ? AND ?
                """,
                [entity_key.entity_type, entity_key.key, *geo_params,
                 date_range[0].isoformat(), date_range[1].isoformat()],
            )
            conn.executemany(
                """
                INSERT INTO predictions (
                    entity_type, entity_key, geo_unit_id, prediction_date, predicted_value,
                    lower_bound, upper_bound, confidence_level, model_version, granularity,
                    data_quality, metadata, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        entity_key.entity_type, entity_key.key, entity_key.geo_unit_id, p.date.isoformat(),
                        p.predicted_value, p.lower_bound, p.upper_bound, p.confidence_level,
                        metadata.get("model_version"), metadata.get("granularity"), metadata.get("data_quality"),
                        json.dumps(dict(metadata), default=str), created_at,
                    )
                    for p in points
                ],
            )
            conn.commit()
        logger.debug(f"[SQLiteStore] Replaced predictions for {entity_key.label} in {date_range[0]}..{date_range[1]}")
        return len(points)

    def get_predictions(self, entity_key):
        geo_clause = "geo_unit_id IS NULL" if entity_key.geo_unit_id is None else "geo_unit_id = ?"
        params = [entity_key.entity_type, entity_key.key]
        if entity_key.geo_unit_id is not None:
            params.append(entity_key.geo_unit_id)
        with self._get_connection() as conn:
            rows = conn.execute(
                f"""
                SELECT prediction_date, predicted_value, lower_bound, upper_bound, confidence_level
                FROM predictions
                WHERE entity_type = ? AND entity_key = ? AND {geo_clause}
                ORDER BY prediction_date
                """,
                params,
            ).fetchall()
        return [
            ForecastPoint(
                date=date.fromisoformat(r["prediction_date"]),
                predicted_value=r["predicted_value"],
                lower_bound=r["lower_bound"],
                upper_bound=r["upper_bound"],
                confidence_level=r["confidence_level"],
            )
            for r in rows
        ]

    # --- AlertStore ---

    def replace_alerts(self, alerts, now):
        with self._get_connection() as conn:
            purged = conn.execute("DELETE FROM outbreak_alerts WHERE expires_at <= ?", (_ts(now),)).rowcount
            conn.executemany(
                """
                DELETE FROM outbreak_alerts
                WHERE disease_type = ? AND geo_unit_id = ? AND days_window = ? AND threshold = ?
                """,
                [a.identity for a in alerts],
            )
            conn.executemany(
                """
                INSERT INTO outbreak_alerts (
                    disease_type, custom_disease_name, geo_unit_id, geo_unit_name, case_count,
                    high_count, medium_count, low_count, days_window, threshold, threshold_description,
                    risk_level, first_case_date, latest_case_date, generated_at, expires_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        a.disease_type, a.custom_disease_name, a.geo_unit_id, a.geo_unit_name, a.case_count,
                        a.severity_breakdown.high, a.severity_breakdown.medium, a.severity_breakdown.low,
                        a.days_window, a.threshold, a.threshold_description, a.risk_level.value,
                        a.first_case_date.isoformat(), a.latest_case_date.isoformat(),
                        _ts(a.generated_at), _ts(a.expires_at),
                    )
                    for a in alerts
                ],
            )
            conn.commit()
        logger.debug(f"[SQLiteStore] Purged {purged} expired alert(s), stored {len(alerts)}.")
        return len(alerts)

    def get_active_alerts(self, disease_type=None, geo_unit_id=None, risk_level=None, now=None):
        query = "SELECT * FROM outbreak_alerts WHERE expires_at > ?"
        params: List[Any] = [_ts(now or datetime.now())]
        if disease_type:
            query += " AND disease_type = ?"
            params.append(disease_type)
        if geo_unit_id is not None:
            query += " AND geo_unit_id = ?"
            params.append(geo_unit_id)
        if risk_level is not None:
            query += " AND risk_level = ?"
            params.append(risk_level.value)
        query += f" ORDER BY {_RISK_ORDER_SQL}, case_count DESC"
        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_alert(r) for r in rows]

    def _row_to_alert(self, row: sqlite3.Row) -> OutbreakAlert:
        return OutbreakAlert(
            disease_type=row["disease_type"],
            custom_disease_name=row["custom_disease_name"],
            geo_unit_id=row["geo_unit_id"],
            geo_unit_name=row["geo_unit_name"],
            case_count=row["case_count"],
            severity_breakdown=SeverityBreakdown(
                high=row["high_count"], medium=row["medium_count"], low=row["low_count"]
            ),
            days_window=row["days_window"],
            threshold=row["threshold"],
            threshold_description=row["threshold_description"] or "",
            risk_level=RiskLevel(row["risk_level"]),
            first_case_date=date.fromisoformat(row["first_case_date"]),
            latest_case_date=date.fromisoformat(row["latest_case_date"]),
            generated_at=datetime.fromisoformat(row["generated_at"]),
            expires_at=datetime.fromisoformat(row["expires_at"]),
        )
