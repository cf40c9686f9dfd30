# ABOUTME: Makes the shared common package importable across components.
# ABOUTME: Re-exports schema types, the error taxonomy, config loading, and metrics.

from .schemas import (
    MasteryState,
    PerformanceRecord,
    PredictionResult,
    RiskArea,
    TrainingProgress,
    records_from_frame,
    records_to_frame,
)
from .errors import (
    DimensionMismatchError,
    InsufficientDataError,
    LowDataWarning,
    NonFiniteValueError,
    PredictionEngineError,
)
from .config import EngineConfig, load_engine_config
from .evaluation import evaluate_predictions, regression_metrics

__all__ = [
    "MasteryState",
    "PerformanceRecord",
    "PredictionResult",
    "RiskArea",
    "TrainingProgress",
    "records_from_frame",
    "records_to_frame",
    "DimensionMismatchError",
    "InsufficientDataError",
    "LowDataWarning",
    "NonFiniteValueError",
    "PredictionEngineError",
    "EngineConfig",
    "load_engine_config",
    "evaluate_predictions",
    "regression_metrics",
]
