import pytest

from analytics.metrics import calculate_accuracy_metrics


def test_perfect_prediction():
    metrics = calculate_accuracy_metrics([1, 2, 3, 4], [1, 2, 3, 4])
    assert metrics.mse == 0.0
    assert metrics.mae == 0.0
    assert metrics.r2 == 1.0
    assert metrics.mape == 0.0


def test_error_metrics_and_mape_over_nonzero_actuals():
    metrics = calculate_accuracy_metrics([0, 10], [5, 5])
    assert metrics.mse == pytest.approx(25.0)
    assert metrics.rmse == pytest.approx(5.0)
    assert metrics.mae == pytest.approx(5.0)
    assert metrics.mape == pytest.approx(50.0)


def test_r2_is_clamped_at_zero_for_worse_than_mean():
    metrics = calculate_accuracy_metrics([1, 2, 3, 4], [4, 3, 2, 1])
    assert metrics.r2 == 0.0


def test_constant_actuals():
    assert calculate_accuracy_metrics([3, 3, 3], [3, 3, 3]).r2 == 1.0
    assert calculate_accuracy_metrics([3, 3, 3], [2, 3, 4]).r2 == 0.0


def test_all_zero_actuals_give_zero_mape():
    assert calculate_accuracy_metrics([0, 0], [1, 1]).mape == 0.0


def test_empty_input_gives_zero_metrics():
    metrics = calculate_accuracy_metrics([], [])
    assert metrics.to_dict() == {"mse": 0.0, "rmse": 0.0, "mae": 0.0, "r2": 0.0, "mape": 0.0}
