# ABOUTME: Defines regression evaluation helpers shared by the regressors and the retraining job.
# ABOUTME: Computes MSE, RMSE, MAE, and R2 used to gate model acceptance.

from typing import Iterable, Mapping

import numpy as np
import pandas as pd
from sklearn.metrics import mean_absolute_error, mean_squared_error, r2_score

DEFAULT_METRICS = ("mse", "rmse", "mae", "r2")


def evaluate_predictions(predictions: pd.DataFrame, metrics: Iterable[str] = DEFAULT_METRICS) -> Mapping[str, float]:
    """
    Evaluate a predictions dataframe using the requested metric names.

    Parameters
    ----------
    predictions : pd.DataFrame
        Expected columns: ['y_true', 'y_pred'] plus optional metadata such as 'trainee_id'.
    metrics : Iterable[str]
        Metric identifiers among 'mse', 'rmse', 'mae', 'r2'.
    """

    metrics = list(metrics)
    if predictions is None or len(predictions) == 0:
        return {metric: np.nan for metric in metrics}

    y_true = predictions["y_true"].astype(float).to_numpy()
    y_pred = predictions["y_pred"].astype(float).to_numpy()

    results = {}
    for metric in metrics:
        if metric == "mse":
            results[metric] = float(mean_squared_error(y_true, y_pred))
        elif metric == "rmse":
            results[metric] = float(np.sqrt(mean_squared_error(y_true, y_pred)))
        elif metric == "mae":
            results[metric] = float(mean_absolute_error(y_true, y_pred))
        elif metric == "r2":
            # r2_score is undefined for fewer than two samples or constant targets; return 0.0 when degenerate.
            if len(y_true) < 2 or np.allclose(y_true, y_true[0]):
                results[metric] = 0.0
            else:
                results[metric] = float(r2_score(y_true, y_pred))
        else:
            raise ValueError(f"Unsupported metric '{metric}'.")

    return results


def regression_metrics(y_true, y_pred) -> Mapping[str, float]:
    """Shortcut for array inputs; returns every metric in DEFAULT_METRICS."""

    frame = pd.DataFrame(
        {
            "y_true": np.asarray(y_true, dtype=np.float64).ravel(),
            "y_pred": np.asarray(y_pred, dtype=np.float64).ravel(),
        }
    )
    return evaluate_predictions(frame, DEFAULT_METRICS)
