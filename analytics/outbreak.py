# healthcast/analytics/outbreak.py
#
# Outbreak Detection Engine
# Evaluates sliding time-window threshold rules per disease type and geographic
# unit, classifies the risk of each triggered window from case severities, and
# refreshes the alert store so repeated runs over the same data are idempotent.

import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

try:
    from config.settings import settings, OutbreakConfig
    from analytics.models import (
        DiseaseRecord, GeoUnit, OutbreakAlert, OutbreakThresholdRule, RiskLevel, Severity, SeverityBreakdown,
        sort_alerts,
    )
    from data_processing.helpers import coerce_date, coerce_non_negative_int
except ImportError as e:
    logging.basicConfig(level="CRITICAL")
    logging.critical(f"FATAL ERROR in outbreak.py: A core dependency is missing. {e}", exc_info=True)
    raise

logger = logging.getLogger(__name__)

UNKNOWN_GEO_UNIT = "Unknown"
OTHER_DISEASE_TYPE = "other"

GroupKey = Tuple[str, int]
RawRecord = Union[DiseaseRecord, Mapping[str, Any]]


# --- Threshold Table ---

class OutbreakThresholdTable:
    """Ordered set of threshold rules, possibly several per disease type."""

    def __init__(self, rules: Sequence[OutbreakThresholdRule]):
        if not rules:
            raise ValueError("An outbreak threshold table needs at least one rule.")
        self.rules: List[OutbreakThresholdRule] = [
            OutbreakThresholdRule(
                disease_type=r.disease_type.strip().lower(),
                cases_threshold=r.cases_threshold,
                days_window=r.days_window,
                description=r.description,
            )
            for r in rules
        ]

    @classmethod
    def from_settings(cls, config: Optional[OutbreakConfig] = None) -> 'OutbreakThresholdTable':
        cfg = config or settings.outbreak
        return cls([
            OutbreakThresholdRule(
                disease_type=rule.disease_type,
                cases_threshold=rule.cases_threshold,
                days_window=rule.days_window,
                description=rule.description,
            )
            for rule in cfg.thresholds
        ])

    @property
    def max_window(self) -> int:
        return max(r.days_window for r in self.rules)

    @property
    def disease_types(self) -> List[str]:
        return list(OrderedDict.fromkeys(r.disease_type for r in self.rules))

    def rules_for(self, disease_type: str) -> List[OutbreakThresholdRule]:
        return [r for r in self.rules if r.disease_type == disease_type]

    def __len__(self) -> int:
        return len(self.rules)


# --- Record Validation ---

def normalize_record(raw: RawRecord) -> DiseaseRecord:
    """
    Returns a validated DiseaseRecord or raises ValueError naming the defect.
    A missing case count means a single patient case; an unknown severity is LOW.
    """
    if isinstance(raw, DiseaseRecord):
        fields = {
            "disease_type": raw.disease_type, "geo_unit_id": raw.geo_unit_id, "record_date": raw.record_date,
            "case_count": raw.case_count, "severity": raw.severity, "custom_disease_name": raw.custom_disease_name,
        }
    else:
        fields = dict(raw)

    disease_type = fields.get("disease_type")
    if disease_type is None or not str(disease_type).strip():
        raise ValueError("missing disease type")

    record_date = coerce_date(fields.get("record_date"))
    if record_date is None:
        raise ValueError("missing or unparseable record date")

    geo_unit_id = fields.get("geo_unit_id")
    if geo_unit_id is None:
        raise ValueError("missing geographic unit")

    case_count = coerce_non_negative_int(fields.get("case_count"), default=1)

    severity = fields.get("severity")
    if not isinstance(severity, Severity):
        severity = Severity.from_raw(severity)

    custom_name = fields.get("custom_disease_name")
    custom_name = str(custom_name).strip() if custom_name is not None and str(custom_name).strip() else None

    return DiseaseRecord(
        disease_type=str(disease_type).strip().lower(),
        geo_unit_id=int(geo_unit_id),
        record_date=record_date,
        case_count=case_count,
        severity=severity,
        custom_disease_name=custom_name,
    )


def classify_risk(breakdown: SeverityBreakdown) -> RiskLevel:
    if breakdown.high > 0:
        return RiskLevel.HIGH
    if breakdown.medium > 0:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


# --- Detector ---

class OutbreakDetector:
    """Detects threshold crossings in recent disease records."""

    def __init__(
        self,
        thresholds: Optional[OutbreakThresholdTable] = None,
        source=None,
        alert_store=None,
        alert_ttl_minutes: Optional[int] = None,
    ):
        self.thresholds = thresholds or OutbreakThresholdTable.from_settings()
        self.source = source
        self.alert_store = alert_store
        self.alert_ttl = timedelta(
            minutes=settings.outbreak.alert_ttl_minutes if alert_ttl_minutes is None else alert_ttl_minutes
        )

    def run(self, as_of: Optional[datetime] = None) -> Dict[str, Any]:
        """Fetch, detect and replace stored alerts. Returns the run summary."""
        if self.source is None or self.alert_store is None:
            raise ValueError("OutbreakDetector.run() needs both a source and an alert store.")

        now = as_of or datetime.now()
        lookback_start = now.date() - timedelta(days=self.thresholds.max_window)
        logger.info(
            f"[OutbreakDetector] Running detection as of {now.isoformat()} "
            f"(lookback {self.thresholds.max_window} days, {len(self.thresholds)} rules)."
        )

        records = self.source.fetch_disease_records(lookback_start)
        geo_units = self.source.fetch_geo_units()
        result = self.detect(records, geo_units, now)

        stored = self.alert_store.replace_alerts(result["alerts"], now)
        result["alerts_stored"] = stored
        result["completed_at"] = datetime.now().isoformat()
        logger.info(
            f"[OutbreakDetector] {len(result['alerts'])} alert(s) from {result['records_analyzed']} record(s); "
            f"{result['records_skipped']} skipped, {len(result['errors'])} disease type(s) failed."
        )
        return result

    def detect(
        self,
        records: Iterable[RawRecord],
        geo_units: Iterable[GeoUnit],
        as_of: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Pure detection over already-fetched records; nothing is persisted."""
        now = as_of or datetime.now()
        result: Dict[str, Any] = {
            "started_at": now.isoformat(),
            "records_analyzed": 0,
            "records_skipped": 0,
            "skipped_reasons": {},
            "groups": 0,
            "rules_evaluated": 0,
            "alerts": [],
            "errors": {},
        }

        groups = self._group_records(records, result)
        result["groups"] = len(groups)
        geo_names = {unit.id: unit.name for unit in geo_units}

        alerts: List[OutbreakAlert] = []
        for disease_type in self.thresholds.disease_types:
            try:
                alerts.extend(self._evaluate_disease_type(disease_type, groups, geo_names, now, result))
            except Exception as e:
                logger.error(f"[OutbreakDetector] Detection failed for '{disease_type}': {e}", exc_info=True)
                result["errors"][disease_type] = str(e)

        result["alerts"] = sort_alerts(alerts)
        return result

    # --- Internals ---

    def _group_records(
        self, records: Iterable[RawRecord], result: Dict[str, Any]
    ) -> "OrderedDict[GroupKey, List[DiseaseRecord]]":
        groups: "OrderedDict[GroupKey, List[DiseaseRecord]]" = OrderedDict()
        for raw in records:
            result["records_analyzed"] += 1
            try:
                record = normalize_record(raw)
            except ValueError as e:
                result["records_skipped"] += 1
                reason = str(e)
                result["skipped_reasons"][reason] = result["skipped_reasons"].get(reason, 0) + 1
                logger.warning(f"[OutbreakDetector] Skipping malformed disease record: {reason}")
                continue
            groups.setdefault((record.disease_type, record.geo_unit_id), []).append(record)
        return groups

    def _evaluate_disease_type(
        self,
        disease_type: str,
        groups: Mapping[GroupKey, List[DiseaseRecord]],
        geo_names: Mapping[int, str],
        now: datetime,
        result: Dict[str, Any],
    ) -> List[OutbreakAlert]:
        alerts = []
        today = now.date()
        for rule in self.thresholds.rules_for(disease_type):
            window_start = today - timedelta(days=rule.days_window)
            for (group_disease, geo_unit_id), entries in groups.items():
                if group_disease != disease_type:
                    continue
                result["rules_evaluated"] += 1
                in_window = [r for r in entries if window_start <= r.record_date <= today]
                alert = self._build_alert(rule, geo_unit_id, in_window, geo_names, now)
                if alert is not None:
                    logger.debug(
                        f"[OutbreakDetector] {disease_type}/{geo_unit_id}: {alert.case_count} case(s) "
                        f">= {rule.cases_threshold} in {rule.days_window}d -> {alert.risk_level.value}"
                    )
                    alerts.append(alert)
        return alerts

    def _build_alert(
        self,
        rule: OutbreakThresholdRule,
        geo_unit_id: int,
        entries: List[DiseaseRecord],
        geo_names: Mapping[int, str],
        now: datetime,
    ) -> Optional[OutbreakAlert]:
        case_count = sum(r.case_count for r in entries)
        if not entries or case_count < rule.cases_threshold:
            return None

        breakdown = SeverityBreakdown(
            high=sum(r.case_count for r in entries if r.severity is Severity.HIGH),
            medium=sum(r.case_count for r in entries if r.severity is Severity.MEDIUM),
            low=sum(r.case_count for r in entries if r.severity is Severity.LOW),
        )
        custom_name = None
        if rule.disease_type == OTHER_DISEASE_TYPE:
            custom_name = next((r.custom_disease_name for r in entries if r.custom_disease_name), None)

        dates = [r.record_date for r in entries]
        return OutbreakAlert(
            disease_type=rule.disease_type,
            geo_unit_id=geo_unit_id,
            geo_unit_name=geo_names.get(geo_unit_id, UNKNOWN_GEO_UNIT),
            case_count=case_count,
            severity_breakdown=breakdown,
            days_window=rule.days_window,
            threshold=rule.cases_threshold,
            risk_level=classify_risk(breakdown),
            first_case_date=min(dates),
            latest_case_date=max(dates),
            generated_at=now,
            expires_at=now + self.alert_ttl,
            threshold_description=rule.description,
            custom_disease_name=custom_name,
        )
