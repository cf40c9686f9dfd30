# ABOUTME: Groups the feature preprocessor and the swappable performance regressors.
# ABOUTME: Re-exports preprocessing functions, regressor implementations, and the network trainer.

from .preprocessing import FittedPreprocessor, fit, fit_transform, transform, transform_one
from .regressors import (
    BoostedPerformanceRegressor,
    FeedForwardPerformanceRegressor,
    FittedRegressor,
    LinearPerformanceRegressor,
    PerformanceRegressor,
    build_regressor,
)

__all__ = [
    "FittedPreprocessor",
    "fit",
    "fit_transform",
    "transform",
    "transform_one",
    "BoostedPerformanceRegressor",
    "FeedForwardPerformanceRegressor",
    "FittedRegressor",
    "LinearPerformanceRegressor",
    "PerformanceRegressor",
    "build_regressor",
]
