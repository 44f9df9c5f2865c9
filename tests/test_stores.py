"""Tests for the SQLite, in-memory and CSV store adapters."""

from datetime import date, datetime, timedelta

import pytest

from analytics.exceptions import DataSourceError
from analytics.models import (
    DiseaseRecord, EntityKey, ForecastPoint, GeoUnit, Observation, OutbreakAlert, RiskLevel, Severity,
    SeverityBreakdown,
)
from data_processing import CsvSurveillanceSource, InMemoryPredictionStore, InMemorySurveillanceSource, SQLiteStore
from tests.helpers import observations_on


def make_points(start, count, value=1.0):
    return [
        ForecastPoint(start + timedelta(days=i), value + i, value + i - 1, value + i + 1, 0.95)
        for i in range(count)
    ]


def make_alert(now, disease_type="dengue", geo_unit_id=1, case_count=5, risk_level=RiskLevel.LOW,
               days_window=14, threshold=5, ttl_minutes=15):
    return OutbreakAlert(
        disease_type=disease_type,
        geo_unit_id=geo_unit_id,
        geo_unit_name=f"Unit {geo_unit_id}",
        case_count=case_count,
        severity_breakdown=SeverityBreakdown(low=case_count),
        days_window=days_window,
        threshold=threshold,
        risk_level=risk_level,
        first_case_date=now.date() - timedelta(days=3),
        latest_case_date=now.date(),
        generated_at=now,
        expires_at=now + timedelta(minutes=ttl_minutes),
        threshold_description=f"{threshold}+ cases in {days_window} days",
    )


@pytest.fixture
def store(tmp_path):
    return SQLiteStore(tmp_path / "healthcast.db", max_records=100)


class TestSQLiteSource:

    def test_observations_filtered_by_geo_unit(self, store):
        store.add_observations(EntityKey("disease", "dengue", 1), observations_on([date(2024, 1, 2), date(2024, 1, 5)]))
        store.add_observations(EntityKey("disease", "dengue", 2), observations_on([date(2024, 1, 3)]))

        assert len(store.fetch_observations(EntityKey("disease", "dengue", 1))) == 2
        everywhere = store.fetch_observations(EntityKey("disease", "dengue"))
        assert [o.timestamp for o in everywhere] == [date(2024, 1, 2), date(2024, 1, 3), date(2024, 1, 5)]
        assert {o.dimension for o in everywhere} == {1, 2}

    def test_observation_date_range(self, store):
        key = EntityKey("service", "prenatal", 1)
        store.add_observations(key, observations_on([date(2024, 1, 2), date(2024, 2, 5), date(2024, 3, 9)]))
        selected = store.fetch_observations(key, (date(2024, 2, 1), date(2024, 2, 29)))
        assert [o.timestamp for o in selected] == [date(2024, 2, 5)]

    def test_list_entity_keys(self, store):
        store.add_observations(EntityKey("disease", "dengue", 1), observations_on([date(2024, 1, 2)]))
        store.add_observations(EntityKey("disease", "dengue", 1), observations_on([date(2024, 1, 9)]))
        store.add_observations(EntityKey("service", "immunization", 2), observations_on([date(2024, 1, 2)]))
        assert store.list_entity_keys() == [
            EntityKey("disease", "dengue", 1), EntityKey("service", "immunization", 2)
        ]

    def test_disease_records_respect_lookback(self, store):
        store.add_disease_records([
            DiseaseRecord("dengue", 1, date(2024, 6, 10), 2, Severity.HIGH),
            DiseaseRecord("dengue", 1, date(2024, 3, 1)),
            {"disease_type": "malaria", "geo_unit_id": 2, "record_date": None},
        ])
        records = store.fetch_disease_records(date(2024, 5, 15))
        assert len(records) == 2
        dated = next(r for r in records if r["record_date"])
        assert dated["record_date"] == "2024-06-10"
        assert dated["case_count"] == 2
        assert Severity.from_raw(dated["severity"]) is Severity.HIGH

    def test_disease_records_capped_at_max_records(self, tmp_path):
        store = SQLiteStore(tmp_path / "capped.db", max_records=3)
        store.add_disease_records([DiseaseRecord("dengue", 1, date(2024, 6, d)) for d in range(1, 8)])
        records = store.fetch_disease_records(date(2024, 1, 1))
        assert [r["record_date"] for r in records] == ["2024-06-07", "2024-06-06", "2024-06-05"]

    def test_geo_units_round_trip(self, store):
        store.add_geo_units([GeoUnit(2, "Poblacion"), GeoUnit(1, "San Isidro")])
        store.add_geo_units([GeoUnit(1, "San Isidro Norte")])
        assert store.fetch_geo_units() == [GeoUnit(1, "San Isidro Norte"), GeoUnit(2, "Poblacion")]


class TestSQLitePredictions:

    def test_rerun_replaces_overlapping_range(self, store):
        key = EntityKey("disease", "dengue", 1)
        first = make_points(date(2024, 7, 1), 5, value=1.0)
        store.replace_predictions(key, (first[0].date, first[-1].date), first, {"model_version": "a"})

        second = make_points(date(2024, 7, 3), 5, value=10.0)
        store.replace_predictions(key, (second[0].date, second[-1].date), second, {"model_version": "b"})

        stored = store.get_predictions(key)
        assert [p.date for p in stored] == [date(2024, 7, d) for d in range(1, 8)]
        assert [p.predicted_value for p in stored[:2]] == [1.0, 2.0]
        assert stored[2].predicted_value == 10.0

    def test_same_range_twice_keeps_one_row_per_date(self, store):
        key = EntityKey("disease", "dengue")
        points = make_points(date(2024, 7, 1), 4)
        for _ in range(2):
            store.replace_predictions(key, (points[0].date, points[-1].date), points, {})
        assert len(store.get_predictions(key)) == 4

    def test_predictions_are_scoped_per_entity(self, store):
        points = make_points(date(2024, 7, 1), 3)
        store.replace_predictions(EntityKey("disease", "dengue", 1), (points[0].date, points[-1].date), points, {})
        store.replace_predictions(EntityKey("disease", "dengue", 2), (points[0].date, points[-1].date), points[:1], {})
        assert len(store.get_predictions(EntityKey("disease", "dengue", 1))) == 3
        assert len(store.get_predictions(EntityKey("disease", "dengue", 2))) == 1
        assert store.get_predictions(EntityKey("disease", "dengue")) == []


class TestSQLiteAlerts:

    def test_alert_round_trip(self, store, as_of):
        alert = make_alert(as_of)
        store.replace_alerts([alert], as_of)
        assert store.get_active_alerts(now=as_of) == [alert]

    def test_same_identity_is_replaced(self, store, as_of):
        store.replace_alerts([make_alert(as_of, case_count=5)], as_of)
        later = as_of + timedelta(minutes=5)
        store.replace_alerts([make_alert(later, case_count=7)], later)
        active = store.get_active_alerts(now=later)
        assert [a.case_count for a in active] == [7]

    def test_different_window_is_kept(self, store, as_of):
        store.replace_alerts([make_alert(as_of, days_window=14)], as_of)
        store.replace_alerts([make_alert(as_of, days_window=3)], as_of)
        assert sorted(a.days_window for a in store.get_active_alerts(now=as_of)) == [3, 14]

    def test_expired_alerts_purged_and_hidden(self, store, as_of):
        store.replace_alerts([make_alert(as_of, geo_unit_id=1)], as_of)
        later = as_of + timedelta(minutes=15)
        assert store.get_active_alerts(now=later) == []
        store.replace_alerts([make_alert(later, geo_unit_id=2)], later)
        with store._get_connection() as conn:
            assert conn.execute("SELECT COUNT(*) FROM outbreak_alerts").fetchone()[0] == 1

    def test_filters_and_sort(self, store, as_of):
        store.replace_alerts([
            make_alert(as_of, geo_unit_id=1, case_count=9, risk_level=RiskLevel.LOW),
            make_alert(as_of, geo_unit_id=2, case_count=5, risk_level=RiskLevel.HIGH),
            make_alert(as_of, geo_unit_id=3, case_count=6, risk_level=RiskLevel.MEDIUM),
            make_alert(as_of, disease_type="measles", geo_unit_id=1, case_count=3, threshold=3),
        ], as_of)
        assert [(a.disease_type, a.geo_unit_id) for a in store.get_active_alerts(now=as_of)] == [
            ("dengue", 2), ("dengue", 3), ("dengue", 1), ("measles", 1)
        ]
        assert len(store.get_active_alerts(disease_type="measles", now=as_of)) == 1
        assert [a.disease_type for a in store.get_active_alerts(geo_unit_id=1, now=as_of)] == ["dengue", "measles"]
        assert [a.geo_unit_id for a in store.get_active_alerts(risk_level=RiskLevel.MEDIUM, now=as_of)] == [3]


class TestInMemoryAdapters:

    def test_source_without_geo_unit_spans_all_units(self):
        source = InMemorySurveillanceSource(observations={
            EntityKey("disease", "dengue", 1): observations_on([date(2024, 1, 1)]),
            EntityKey("disease", "dengue", 2): observations_on([date(2024, 1, 2)]),
            EntityKey("disease", "malaria", 1): observations_on([date(2024, 1, 3)]),
        })
        assert len(source.fetch_observations(EntityKey("disease", "dengue"))) == 2
        assert len(source.fetch_observations(EntityKey("disease", "dengue", 2))) == 1
        assert source.fetch_observations(EntityKey("disease", "cholera")) == []

    def test_prediction_store_replaces_inside_range_only(self):
        store = InMemoryPredictionStore()
        key = EntityKey("disease", "dengue")
        first = make_points(date(2024, 7, 1), 4)
        store.replace_predictions(key, (first[0].date, first[-1].date), first, {})
        second = make_points(date(2024, 7, 3), 2, value=20.0)
        store.replace_predictions(key, (second[0].date, second[-1].date), second, {"model_version": "b"})
        assert [p.predicted_value for p in store.get_predictions(key)] == [1.0, 2.0, 20.0, 21.0]
        assert store.metadata[key] == {"model_version": "b"}


class TestCsvSource:

    @pytest.fixture
    def data_dir(self, tmp_path):
        (tmp_path / "observations.csv").write_text(
            "Entity Type,Entity Key,Date,Barangay ID\n"
            "disease,dengue,2024-01-02,1\n"
            "disease,dengue,2024-01-09,2\n"
            "disease,dengue,not a date,1\n"
            "disease,,2024-01-03,1\n"
            "service,prenatal,2024-01-04,1\n"
        )
        (tmp_path / "disease_records.csv").write_text(
            "disease_type,barangay_id,diagnosis_date,cases,severity\n"
            "dengue,1,2024-06-10,2,critical\n"
            "dengue,1,2024-06-11,,\n"
            "dengue,1,2024-06-12,-1,low_risk\n"
            "dengue,1,2024-06-12,lots,low_risk\n"
            "dengue,1,2024-01-01,1,low_risk\n"
            ",1,2024-06-12,1,low_risk\n"
        )
        (tmp_path / "geo_units.csv").write_text(
            "barangay_id,barangay_name\n1,San Isidro\n2,Poblacion\nx,Broken\n"
        )
        return tmp_path

    def test_observations_use_aliases_and_drop_malformed_rows(self, data_dir):
        source = CsvSurveillanceSource(data_dir=data_dir)
        observations = source.fetch_observations(EntityKey("disease", "dengue"))
        assert [o.timestamp for o in observations] == [date(2024, 1, 2), date(2024, 1, 9)]
        assert all(o.value == 1 for o in observations)
        assert source.fetch_observations(EntityKey("disease", "dengue", 2))[0].dimension == 2
        assert source.dropped == {"missing key": 1, "missing timestamp": 1}

    def test_entity_keys(self, data_dir):
        keys = CsvSurveillanceSource(data_dir=data_dir).list_entity_keys()
        assert keys == [
            EntityKey("disease", "dengue", 1), EntityKey("disease", "dengue", 2), EntityKey("service", "prenatal", 1)
        ]

    def test_disease_records_are_cleaned_and_windowed(self, data_dir):
        source = CsvSurveillanceSource(data_dir=data_dir)
        records = source.fetch_disease_records(date(2024, 6, 1))
        assert [(r["record_date"], r["case_count"], r["severity"]) for r in records] == [
            (date(2024, 6, 10), 2, "critical"),
            (date(2024, 6, 11), None, "low_risk"),
        ]
        assert source.dropped == {"missing disease_type": 1, "negative case_count": 1, "non-numeric case_count": 1}

    def test_geo_units(self, data_dir):
        assert CsvSurveillanceSource(data_dir=data_dir).fetch_geo_units() == [
            GeoUnit(1, "San Isidro"), GeoUnit(2, "Poblacion")
        ]

    def test_missing_files_give_empty_results(self, tmp_path):
        source = CsvSurveillanceSource(data_dir=tmp_path)
        assert source.fetch_observations(EntityKey("disease", "dengue")) == []
        assert source.fetch_disease_records(date(2024, 1, 1)) == []
        assert source.fetch_geo_units() == []

    def test_unreadable_file_raises(self, tmp_path):
        (tmp_path / "geo_units.csv").write_bytes(b"id,name\n1,\xff\xfe\x00bad\n")
        with pytest.raises(DataSourceError):
            CsvSurveillanceSource(data_dir=tmp_path).fetch_geo_units()
