# ABOUTME: Provides swappable performance regressors behind a common fit/predict/evaluate contract.
# ABOUTME: Wraps ridge, gradient-boosted trees, and the Lightning feed-forward network.

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, ClassVar, Dict, Mapping, Optional, Tuple, Type

import numpy as np
from sklearn.ensemble import GradientBoostingRegressor
from sklearn.linear_model import Ridge
from sklearn.model_selection import train_test_split

from src.common.config import RegressorConfig
from src.common.errors import DimensionMismatchError, InsufficientDataError, ensure_finite
from src.common.evaluation import regression_metrics

from .network import train_network

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FittedRegressor:
    """Immutable result of a fit; safe to share between concurrent prediction requests."""

    kind: str
    estimator: Any
    n_features: int
    n_train: int
    n_validation: int
    validation_metrics: Mapping[str, float] = field(default_factory=dict)

    def predict(self, feature_vector) -> float:
        """Score estimate for one FeatureVector."""

        vector = np.asarray(feature_vector, dtype=np.float64)
        if vector.ndim != 1:
            raise DimensionMismatchError(f"Expected a 1-D feature vector, got shape {vector.shape}.")
        return float(self.predict_batch(vector.reshape(1, -1))[0])

    def predict_batch(self, features) -> np.ndarray:
        matrix = _as_matrix(features)
        if matrix.shape[1] != self.n_features:
            raise DimensionMismatchError(
                f"Regressor was fitted on {self.n_features} features, got {matrix.shape[1]}."
            )
        ensure_finite(matrix, "regressor input")
        predictions = np.asarray(self.estimator.predict(matrix), dtype=np.float64).ravel()
        ensure_finite(predictions, f"{self.kind} regressor output")
        return predictions

    def evaluate(self, features, targets) -> Mapping[str, float]:
        """Regression metrics (mse, rmse, mae, r2) against held-out targets."""

        matrix, y = _check_inputs(features, targets)
        return regression_metrics(y, self.predict_batch(matrix))


class PerformanceRegressor(ABC):
    """
    Trains a function approximator from feature vectors to a performance score.

    ``fit`` never mutates the regressor; it returns a new FittedRegressor carrying the
    held-out validation metrics used to gate model acceptance.
    """

    kind: ClassVar[str] = ""

    def __init__(self, config: Optional[RegressorConfig] = None) -> None:
        self.config = config or RegressorConfig(kind=self.kind)

    def fit(self, features, targets) -> FittedRegressor:
        matrix, y = _check_inputs(features, targets)
        n_samples = len(y)
        if n_samples < self.config.min_samples:
            raise InsufficientDataError(
                f"{self.kind} regressor needs at least {self.config.min_samples} samples, got {n_samples}",
                required=self.config.min_samples,
                received=n_samples,
            )

        x_train, x_val, y_train, y_val = self._split(matrix, y)
        estimator = self._fit_estimator(x_train, y_train, x_val, y_val)
        fitted = FittedRegressor(
            kind=self.kind,
            estimator=estimator,
            n_features=matrix.shape[1],
            n_train=len(y_train),
            n_validation=len(y_val),
        )
        metrics: Dict[str, float] = dict(fitted.evaluate(x_val, y_val)) if len(y_val) else {}
        logger.info(
            "Fitted %s regressor on %d samples (%d held out): %s",
            self.kind,
            len(y_train),
            len(y_val),
            {k: round(v, 4) for k, v in metrics.items()},
        )
        return replace(fitted, validation_metrics=metrics)

    def _split(self, matrix: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        fraction = self.config.validation_fraction
        n_val = int(len(y) * fraction)
        if fraction <= 0 or n_val < 1 or len(y) - n_val < 2:
            return matrix, matrix[:0], y, y[:0]
        return train_test_split(matrix, y, test_size=n_val, random_state=self.config.seed)

    @abstractmethod
    def _fit_estimator(self, x_train, y_train, x_val, y_val) -> Any:
        """Return an object exposing ``predict(matrix) -> ndarray``."""


class LinearPerformanceRegressor(PerformanceRegressor):
    kind = "linear"

    def _fit_estimator(self, x_train, y_train, x_val, y_val):
        return Ridge(alpha=self.config.alpha).fit(x_train, y_train)


class BoostedPerformanceRegressor(PerformanceRegressor):
    kind = "gradient_boosting"

    def _fit_estimator(self, x_train, y_train, x_val, y_val):
        model = GradientBoostingRegressor(
            n_estimators=self.config.n_estimators,
            max_depth=self.config.max_depth,
            learning_rate=self.config.boosting_learning_rate,
            random_state=self.config.seed,
        )
        return model.fit(x_train, y_train)


class FeedForwardPerformanceRegressor(PerformanceRegressor):
    kind = "feedforward"

    def _fit_estimator(self, x_train, y_train, x_val, y_val):
        return train_network(x_train, y_train, x_val, y_val, self.config)


REGRESSORS: Dict[str, Type[PerformanceRegressor]] = {
    cls.kind: cls
    for cls in (LinearPerformanceRegressor, BoostedPerformanceRegressor, FeedForwardPerformanceRegressor)
}


def build_regressor(config: RegressorConfig) -> PerformanceRegressor:
    try:
        regressor_cls = REGRESSORS[config.kind]
    except KeyError:
        raise ValueError(f"Unsupported regressor kind '{config.kind}'. Expected one of: {sorted(REGRESSORS)}.")
    return regressor_cls(config)


def _as_matrix(features) -> np.ndarray:
    matrix = np.asarray(features, dtype=np.float64)
    if matrix.ndim != 2:
        raise DimensionMismatchError(f"Expected a 2-D feature matrix, got shape {matrix.shape}.")
    return matrix


def _check_inputs(features, targets) -> Tuple[np.ndarray, np.ndarray]:
    matrix = _as_matrix(features)
    y = np.asarray(targets, dtype=np.float64)
    if y.ndim == 2 and y.shape[1] == 1:
        y = y.ravel()
    if y.ndim != 1:
        raise DimensionMismatchError(f"Expected a single target column, got shape {y.shape}.")
    if matrix.shape[0] != y.shape[0]:
        raise DimensionMismatchError(
            f"Feature/target count mismatch: {matrix.shape[0]} feature vectors vs {y.shape[0]} targets."
        )
    ensure_finite(matrix, "regressor features")
    ensure_finite(y, "regressor targets")
    return matrix, y
