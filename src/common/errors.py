# ABOUTME: Declares the error taxonomy shared by the preprocessor, tracker, regressor, and orchestrator.
# ABOUTME: Separates recoverable data-sufficiency problems from fatal shape problems.

from __future__ import annotations

import math
from typing import Iterable

import numpy as np


class PredictionEngineError(Exception):
    """Base class for errors raised by the prediction engine."""


class InsufficientDataError(PredictionEngineError):
    """Raised when a fit needs more samples than were supplied."""

    def __init__(self, message: str, required: int, received: int) -> None:
        super().__init__(message)
        self.required = required
        self.received = received


class DimensionMismatchError(PredictionEngineError, ValueError):
    """Raised when inputs disagree with the fitted schema or with each other."""


class NonFiniteValueError(DimensionMismatchError):
    """Raised when NaN or Inf reaches a component boundary."""


class LowDataWarning(UserWarning):
    """Annotation attached to heuristic fits that saw too little data."""


def ensure_finite(values, context: str) -> None:
    """Raise NonFiniteValueError if any value in ``values`` is NaN or Inf."""

    array = np.asarray(values, dtype=np.float64)
    if not np.all(np.isfinite(array)):
        bad = int(np.size(array) - np.count_nonzero(np.isfinite(array)))
        raise NonFiniteValueError(f"{context}: {bad} non-finite value(s) encountered.")


def ensure_probability(value: float, name: str) -> float:
    if value is None or not math.isfinite(value) or value < 0.0 or value > 1.0:
        raise ValueError(f"{name} must be a probability in [0, 1], got {value!r}.")
    return float(value)


def format_fields(fields: Iterable[str]) -> str:
    return ", ".join(sorted(fields)) or "<none>"
