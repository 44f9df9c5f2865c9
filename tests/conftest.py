from datetime import date, datetime

import pytest

from analytics.models import GeoUnit


@pytest.fixture
def as_of():
    return datetime(2024, 6, 15, 12, 0, 0)


@pytest.fixture
def geo_units():
    return [GeoUnit(1, "San Isidro"), GeoUnit(2, "Poblacion"), GeoUnit(3, "Mabini")]


@pytest.fixture
def example_dates():
    return [date(2024, 1, 3), date(2024, 1, 5), date(2024, 3, 20), date(2024, 3, 22), date(2024, 6, 1)]
