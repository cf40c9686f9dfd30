# ABOUTME: Tests the swappable performance regressors and their shared contract.
# ABOUTME: Uses small synthetic linear data so every implementation trains in seconds.

import pickle

import numpy as np
import pytest

from src.common.config import RegressorConfig
from src.common.errors import DimensionMismatchError, InsufficientDataError, NonFiniteValueError
from src.performance.regressors import (
    BoostedPerformanceRegressor,
    FeedForwardPerformanceRegressor,
    LinearPerformanceRegressor,
    build_regressor,
)


def _linear_data(n=40, seed=0):
    rng = np.random.default_rng(seed)
    features = rng.normal(size=(n, 3))
    targets = 0.6 + 0.1 * features[:, 0] - 0.05 * features[:, 1] + rng.normal(scale=0.01, size=n)
    return features, targets


def test_build_regressor_selects_kind():
    assert isinstance(build_regressor(RegressorConfig(kind="linear")), LinearPerformanceRegressor)
    assert isinstance(build_regressor(RegressorConfig(kind="gradient_boosting")), BoostedPerformanceRegressor)
    assert isinstance(build_regressor(RegressorConfig(kind="feedforward")), FeedForwardPerformanceRegressor)
    with pytest.raises(ValueError):
        build_regressor(RegressorConfig(kind="svm"))


def test_linear_regressor_fits_and_reports_validation_metrics():
    features, targets = _linear_data()
    fitted = LinearPerformanceRegressor(RegressorConfig(kind="linear", alpha=0.01)).fit(features, targets)

    assert fitted.n_train == 32
    assert fitted.n_validation == 8
    assert set(fitted.validation_metrics) == {"mse", "rmse", "mae", "r2"}
    assert fitted.validation_metrics["r2"] > 0.9
    assert fitted.predict(features[0]) == pytest.approx(targets[0], abs=0.05)


def test_evaluate_returns_all_metrics():
    features, targets = _linear_data()
    fitted = LinearPerformanceRegressor(RegressorConfig(kind="linear")).fit(features, targets)
    metrics = fitted.evaluate(features, targets)
    assert metrics["rmse"] == pytest.approx(np.sqrt(metrics["mse"]))
    assert metrics["mae"] >= 0.0


def test_gradient_boosting_is_deterministic():
    features, targets = _linear_data()
    config = RegressorConfig(kind="gradient_boosting", n_estimators=20)
    first = BoostedPerformanceRegressor(config).fit(features, targets)
    second = BoostedPerformanceRegressor(config).fit(features, targets)
    np.testing.assert_allclose(first.predict_batch(features), second.predict_batch(features))


def test_fit_rejects_mismatched_counts():
    features, targets = _linear_data()
    with pytest.raises(DimensionMismatchError):
        LinearPerformanceRegressor().fit(features, targets[:-1])


def test_fit_rejects_non_finite_values():
    features, targets = _linear_data()
    features[3, 1] = np.inf
    with pytest.raises(NonFiniteValueError):
        LinearPerformanceRegressor().fit(features, targets)


def test_fit_requires_minimum_samples():
    features, targets = _linear_data(n=3)
    with pytest.raises(InsufficientDataError) as excinfo:
        LinearPerformanceRegressor(RegressorConfig(kind="linear", min_samples=4)).fit(features, targets)
    assert excinfo.value.received == 3


def test_small_sample_skips_validation_split():
    features, targets = _linear_data(n=4)
    fitted = LinearPerformanceRegressor(RegressorConfig(kind="linear")).fit(features, targets)
    assert fitted.n_validation == 0
    assert fitted.validation_metrics == {}


def test_predict_rejects_wrong_width():
    features, targets = _linear_data()
    fitted = LinearPerformanceRegressor().fit(features, targets)
    with pytest.raises(DimensionMismatchError):
        fitted.predict(np.zeros(5))
    with pytest.raises(DimensionMismatchError):
        fitted.predict(np.zeros((1, 3)))


def test_feedforward_regressor_trains_and_predicts_deterministically():
    features, targets = _linear_data(n=48)
    config = RegressorConfig(kind="feedforward", hidden_units=(16, 8), max_epochs=5, batch_size=16, dropout=0.2)

    fitted = FeedForwardPerformanceRegressor(config).fit(features, targets)

    assert fitted.kind == "feedforward"
    assert set(fitted.validation_metrics) == {"mse", "rmse", "mae", "r2"}
    first = fitted.predict(features[0])
    assert np.isfinite(first)
    assert fitted.predict(features[0]) == first

    restored = pickle.loads(pickle.dumps(fitted))
    assert restored.predict(features[0]) == pytest.approx(first, abs=1e-6)
