# ABOUTME: Groups the Bayesian Knowledge Tracing engine with exponential skill decay.
# ABOUTME: Re-exports the pure update functions, parameter fitting, and the mastery tracker.

from .bkt import (
    BKTParameters,
    DEFAULT_PARAMETERS,
    decay,
    decay_curve,
    days_until_threshold,
    load_parameters,
    observe,
    predict_correct,
    save_parameters,
)
from .fitting import ParameterFit, fit_parameters, fit_skill_parameters
from .tracker import MasteryTracker, ParameterSet

__all__ = [
    "BKTParameters",
    "DEFAULT_PARAMETERS",
    "decay",
    "decay_curve",
    "days_until_threshold",
    "load_parameters",
    "observe",
    "predict_correct",
    "save_parameters",
    "ParameterFit",
    "fit_parameters",
    "fit_skill_parameters",
    "MasteryTracker",
    "ParameterSet",
]
