from datetime import date, datetime

import numpy as np
import pandas as pd
import pytest

from data_processing.helpers import coerce_date, coerce_non_negative_int, convert_to_numeric, is_missing
from data_processing.pipeline import DataPipeline


class TestHelpers:

    @pytest.mark.parametrize("value", [None, np.nan, pd.NaT, "", "N/A", " null ", "None"])
    def test_is_missing(self, value):
        assert is_missing(value)

    @pytest.mark.parametrize("value", [0, "0", "dengue", date(2024, 1, 1)])
    def test_is_not_missing(self, value):
        assert not is_missing(value)

    def test_convert_to_numeric_series(self):
        result = convert_to_numeric(pd.Series(["1", "n/a", "x", "4.5"]), default_value=0)
        assert result.tolist() == [1.0, 0.0, 0.0, 4.5]

    def test_convert_to_numeric_scalar(self):
        assert convert_to_numeric("12") == 12
        assert pd.isna(convert_to_numeric("twelve"))

    def test_coerce_non_negative_int(self):
        assert coerce_non_negative_int(None) == 1
        assert coerce_non_negative_int("", default=1) == 1
        assert coerce_non_negative_int("3") == 3
        assert coerce_non_negative_int(0) == 0
        with pytest.raises(ValueError):
            coerce_non_negative_int(-1)
        with pytest.raises(ValueError):
            coerce_non_negative_int("several")

    def test_coerce_date(self):
        assert coerce_date(datetime(2024, 3, 1, 8, 30)) == date(2024, 3, 1)
        assert coerce_date(date(2024, 3, 1)) == date(2024, 3, 1)
        assert coerce_date("2024-03-01") == date(2024, 3, 1)
        assert coerce_date(pd.Timestamp("2024-03-01 10:00")) == date(2024, 3, 1)
        assert coerce_date("not a date") is None
        assert coerce_date(None) is None


class TestDataPipeline:

    def test_requires_dataframe(self):
        with pytest.raises(TypeError):
            DataPipeline([1, 2, 3])

    def test_clean_column_names(self):
        df = pd.DataFrame(columns=["Disease Type", "  Case-Count ", "", "case count"])
        cleaned = DataPipeline(df).clean_column_names().get_df()
        assert list(cleaned.columns) == ["disease_type", "case_count_0", "unnamed_col_2", "case_count_1"]

    def test_input_frame_is_not_mutated(self):
        df = pd.DataFrame({"A": [1]})
        DataPipeline(df).clean_column_names()
        assert list(df.columns) == ["A"]

    def test_drop_missing_counts_reasons(self):
        df = pd.DataFrame({"disease_type": ["dengue", None, "N/A", "measles"], "geo_unit_id": [1, 2, 3, None]})
        pipeline = DataPipeline(df).drop_missing(["disease_type", "geo_unit_id"])
        assert pipeline.get_df()["disease_type"].tolist() == ["dengue"]
        assert pipeline.dropped == {"missing disease_type": 2, "missing geo_unit_id": 1}

    def test_drop_missing_without_column_drops_everything(self):
        pipeline = DataPipeline(pd.DataFrame({"a": [1, 2]})).drop_missing(["b"])
        assert pipeline.get_df().empty
        assert pipeline.dropped == {"missing column b": 2}

    def test_drop_invalid_counts_keeps_missing_as_na(self):
        df = pd.DataFrame({"case_count": ["2", "", "-3", "many", 4]})
        pipeline = DataPipeline(df).drop_invalid_counts(["case_count"])
        values = pipeline.get_df()["case_count"]
        assert str(values.dtype) == "Int64"
        assert values.iloc[0] == 2
        assert pd.isna(values.iloc[1])
        assert values.iloc[2] == 4
        assert pipeline.dropped == {"negative case_count": 1, "non-numeric case_count": 1}

    def test_standardize_missing_values(self):
        df = pd.DataFrame({"severity": ["high_risk", "n/a", None], "value": [2, None, 3]})
        result = DataPipeline(df).standardize_missing_values({"severity": "low_risk", "value": 1}).get_df()
        assert result["severity"].tolist() == ["high_risk", "low_risk", "low_risk"]
        assert result["value"].tolist() == [2, 1, 3]

    def test_convert_date_columns(self):
        df = pd.DataFrame({"record_date": ["2024-01-02", "garbage"]})
        result = DataPipeline(df).convert_date_columns(["record_date", "absent"]).get_df()
        assert result["record_date"].iloc[0] == pd.Timestamp("2024-01-02")
        assert pd.isna(result["record_date"].iloc[1])


def test_fractional_counts_round_the_same_way_everywhere():
    assert coerce_non_negative_int("2.6") == 3
    assert coerce_non_negative_int(2.5) == 2
    assert coerce_non_negative_int(3.5) == 4

    df = pd.DataFrame({"case_count": ["2.6", 2.5, 3.5]})
    rounded = DataPipeline(df).drop_invalid_counts(["case_count"]).get_df()["case_count"]
    assert rounded.tolist() == [3, 2, 4]
