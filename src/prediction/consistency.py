# ABOUTME: Scores how consistent a trainee's session metrics are and flags anomalous sessions.
# ABOUTME: Uses coefficient of variation for the score and z-scores for anomalies, with templated advice.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from src.common.errors import InsufficientDataError
from src.common.schemas import PerformanceRecord, records_to_frame

NON_METRIC_COLUMNS = ("trainee_id", "session_id", "skill_id", "timestamp", "date")


class ConsistencyThresholds:
    ANOMALY_Z = 2.0
    HIGH_SEVERITY_Z = 3.0
    LOW_SCORE = 4.0
    MODERATE_SCORE = 7.0
    MIN_SESSIONS = 2


@dataclass
class Anomaly:
    metric: str
    session_id: str
    value: float
    z_score: float
    severity: str


@dataclass
class ConsistencyAssessment:
    consistency_score: float
    variance_metrics: Dict[str, float]
    anomalies: List[Anomaly]
    summary: str
    actions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "consistency_score": self.consistency_score,
            "variance_metrics": dict(self.variance_metrics),
            "anomalies": [vars(a) for a in self.anomalies],
            "recommendation": {"summary": self.summary, "actions": list(self.actions)},
        }


def assess_consistency(
    metrics: Union[pd.DataFrame, Sequence[PerformanceRecord]],
    metric_columns: Optional[Sequence[str]] = None,
) -> ConsistencyAssessment:
    """
    Score consistency on a 0-10 scale as ``10 * exp(-2 * mean_cv)``.

    ``metrics`` is either a session table (one row per session, numeric metric columns) or a
    sequence of PerformanceRecords, in which case the ``performance`` column is assessed.
    """

    if isinstance(metrics, pd.DataFrame):
        frame = metrics.reset_index(drop=True)
    else:
        frame = records_to_frame(metrics)
        metric_columns = metric_columns or ["performance"]

    if metric_columns is None:
        metric_columns = [
            col
            for col in frame.columns
            if col not in NON_METRIC_COLUMNS and pd.api.types.is_numeric_dtype(frame[col])
        ]
    metric_columns = list(metric_columns)
    if len(frame) < ConsistencyThresholds.MIN_SESSIONS or not metric_columns:
        raise InsufficientDataError(
            f"Consistency needs at least {ConsistencyThresholds.MIN_SESSIONS} sessions with numeric metrics, "
            f"got {len(frame)}",
            required=ConsistencyThresholds.MIN_SESSIONS,
            received=len(frame),
        )

    cv_scores = {}
    variance_metrics = {}
    for col in metric_columns:
        values = frame[col].astype(float)
        mean = float(values.mean())
        std = float(values.std())
        variance_metrics[col] = std
        cv_scores[col] = std / abs(mean) if mean != 0 else std

    avg_cv = float(np.mean(list(cv_scores.values())))
    score = float(10.0 * np.exp(-2.0 * avg_cv))
    anomalies = detect_anomalies(frame, metric_columns)
    summary, actions = consistency_recommendation(score, variance_metrics, anomalies)
    return ConsistencyAssessment(
        consistency_score=score,
        variance_metrics=variance_metrics,
        anomalies=anomalies,
        summary=summary,
        actions=actions,
    )


def detect_anomalies(frame: pd.DataFrame, metric_columns: Sequence[str]) -> List[Anomaly]:
    anomalies = []
    for col in metric_columns:
        values = frame[col].astype(float)
        std = float(values.std())
        if not std or np.isnan(std):
            continue
        z_scores = (values - values.mean()) / std
        for idx in np.where(np.abs(z_scores) > ConsistencyThresholds.ANOMALY_Z)[0]:
            z = float(z_scores.iloc[idx])
            session_id = frame["session_id"].iloc[idx] if "session_id" in frame.columns else idx
            anomalies.append(
                Anomaly(
                    metric=col,
                    session_id=str(session_id),
                    value=float(values.iloc[idx]),
                    z_score=z,
                    severity="high" if abs(z) > ConsistencyThresholds.HIGH_SEVERITY_Z else "medium",
                )
            )
    return anomalies


def consistency_recommendation(score: float, variance_metrics: Dict[str, float], anomalies: List[Anomaly]):
    if score < ConsistencyThresholds.LOW_SCORE:
        summary = "Significant performance inconsistency detected"
        actions = [
            "Review fundamentals and reinforce standard procedures",
            "Increase training frequency to build muscle memory",
        ]
    elif score < ConsistencyThresholds.MODERATE_SCORE:
        summary = "Moderate performance inconsistency detected"
        actions = ["Focus training on areas with highest variance"]
    else:
        summary = "Good performance consistency observed"
        actions = ["Maintain current practice routine"]

    high = sorted({a.metric for a in anomalies if a.severity == "high"})
    if high:
        actions.append(f"Investigate factors affecting performance in: {', '.join(high)}")
    if score < ConsistencyThresholds.MODERATE_SCORE and variance_metrics:
        noisiest = max(variance_metrics, key=variance_metrics.get)
        actions.append(f"Target practice on {noisiest}, the most variable metric")
    return summary, actions
