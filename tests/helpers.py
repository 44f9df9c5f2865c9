"""Builders shared by the test modules."""

from datetime import timedelta

import numpy as np
import pandas as pd

from analytics.models import DiseaseRecord, Observation, Severity


def dates_from_gaps(start, gaps):
    """Dates starting at `start`, each following the previous by the given number of days."""
    dates = [start]
    for gap in gaps:
        dates.append(dates[-1] + timedelta(days=gap))
    return dates


def observations_on(dates, value=1, dimension=None):
    return [Observation(timestamp=d, value=value, dimension=dimension) for d in dates]


def monthly_observations(months=30, seed=7, dimension=None):
    """A few events per month with a mild yearly cycle."""
    rng = np.random.default_rng(seed)
    observations = []
    for i in range(months):
        month_start = (pd.Timestamp("2022-01-01") + pd.DateOffset(months=i)).date()
        count = int(6 + 3 * np.sin(2 * np.pi * i / 12) + rng.integers(0, 3))
        for k in range(count):
            observations.append(Observation(month_start + timedelta(days=(k * 3) % 27), 1, dimension))
    return observations


def make_record(days_ago, as_of, disease_type="dengue", geo_unit_id=1, case_count=1,
                severity=Severity.LOW, custom_disease_name=None):
    return DiseaseRecord(
        disease_type=disease_type,
        geo_unit_id=geo_unit_id,
        record_date=as_of.date() - timedelta(days=days_ago),
        case_count=case_count,
        severity=severity,
        custom_disease_name=custom_disease_name,
    )
