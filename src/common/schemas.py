# ABOUTME: Defines canonical data structures shared by the tracker, regressor, and orchestrator.
# ABOUTME: Centralizes performance record, mastery state, and prediction result schemas.

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

RISK_LEVELS = ("high", "medium", "low")

RECORD_COLUMNS = [
    "trainee_id",
    "skill_id",
    "timestamp",
    "performance",
    "time_since_last_practice_days",
]


def to_utc(value: Any) -> datetime:
    """Coerce ISO8601 strings, pandas timestamps, and naive datetimes to aware UTC datetimes."""

    if isinstance(value, pd.Timestamp):
        value = value.to_pydatetime()
    elif isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if not isinstance(value, datetime):
        raise ValueError(f"Unsupported timestamp value {value!r}.")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class PerformanceRecord:
    """One observed practice outcome produced by the assessment service."""

    trainee_id: str
    skill_id: str
    timestamp: datetime
    performance: float
    time_since_last_practice_days: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", to_utc(self.timestamp))
        performance = float(self.performance)
        if not math.isfinite(performance) or performance < 0.0 or performance > 1.0:
            raise ValueError(f"performance must lie in [0, 1], got {self.performance!r}.")
        object.__setattr__(self, "performance", performance)
        elapsed = float(self.time_since_last_practice_days)
        if not math.isfinite(elapsed) or elapsed < 0.0:
            raise ValueError(
                f"time_since_last_practice_days must be >= 0, got {self.time_since_last_practice_days!r}."
            )
        object.__setattr__(self, "time_since_last_practice_days", elapsed)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PerformanceRecord":
        return cls(
            trainee_id=str(payload["trainee_id"]),
            skill_id=str(payload["skill_id"]),
            timestamp=payload["timestamp"],
            performance=payload["performance"],
            time_since_last_practice_days=payload.get("time_since_last_practice_days", 0.0) or 0.0,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trainee_id": self.trainee_id,
            "skill_id": self.skill_id,
            "timestamp": self.timestamp.isoformat(),
            "performance": self.performance,
            "time_since_last_practice_days": self.time_since_last_practice_days,
        }


@dataclass(frozen=True)
class MasteryState:
    """Mastery probability for one (trainee, skill) pair at ``last_updated``."""

    trainee_id: str
    skill_id: str
    mastery: float
    last_updated: datetime
    observation_count: int = 0

    @property
    def key(self) -> Tuple[str, str]:
        return (self.trainee_id, self.skill_id)


@dataclass(frozen=True)
class TrainingProgress:
    """Module completion history supplied by the syllabus service."""

    trainee_id: str
    total_modules: int
    completed_at: Sequence[datetime] = field(default_factory=tuple)
    started_at: Optional[datetime] = None
    required_skills: Sequence[str] = field(default_factory=tuple)

    @property
    def completed_modules(self) -> int:
        return len(self.completed_at)

    @property
    def remaining_modules(self) -> int:
        return max(0, self.total_modules - self.completed_modules)


@dataclass(frozen=True)
class RiskArea:
    skill_id: str
    risk_level: str
    recommendation: str
    mastery: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "skill_id": self.skill_id,
            "risk_level": self.risk_level,
            "recommendation": self.recommendation,
        }


@dataclass(frozen=True)
class PredictionResult:
    """Consolidated prediction returned to the analytics collaborator."""

    trainee_id: str
    predicted_completion_date: Optional[datetime]
    predicted_final_score: Optional[float]
    risk_areas: List[RiskArea]
    confidence_score: float

    @classmethod
    def empty(cls, trainee_id: str) -> "PredictionResult":
        return cls(
            trainee_id=trainee_id,
            predicted_completion_date=None,
            predicted_final_score=None,
            risk_areas=[],
            confidence_score=0.0,
        )

    def to_dict(self) -> Dict[str, Any]:
        completion = self.predicted_completion_date
        return {
            "trainee_id": self.trainee_id,
            "predicted_completion_date": completion.isoformat() if completion is not None else None,
            "predicted_final_score": self.predicted_final_score,
            "risk_areas": [area.to_dict() for area in self.risk_areas],
            "confidence_score": self.confidence_score,
        }

    def to_json(self, **kwargs) -> str:
        return json.dumps(self.to_dict(), **kwargs)


def records_from_frame(frame: pd.DataFrame) -> List[PerformanceRecord]:
    """Convert a dataframe with the canonical record columns into PerformanceRecords."""

    if frame is None or frame.empty:
        return []
    missing = [col for col in RECORD_COLUMNS[:4] if col not in frame.columns]
    if missing:
        raise ValueError(f"Performance frame is missing columns: {missing}")

    df = frame.copy()
    if "time_since_last_practice_days" not in df.columns:
        df["time_since_last_practice_days"] = 0.0
    df["time_since_last_practice_days"] = df["time_since_last_practice_days"].fillna(0.0)
    df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)

    records = []
    for row in df.itertuples(index=False):
        records.append(
            PerformanceRecord(
                trainee_id=str(row.trainee_id),
                skill_id=str(row.skill_id),
                timestamp=row.timestamp,
                performance=float(row.performance),
                time_since_last_practice_days=float(row.time_since_last_practice_days),
            )
        )
    return records


def records_to_frame(records: Iterable[PerformanceRecord]) -> pd.DataFrame:
    rows = [
        {
            "trainee_id": record.trainee_id,
            "skill_id": record.skill_id,
            "timestamp": record.timestamp,
            "performance": record.performance,
            "time_since_last_practice_days": record.time_since_last_practice_days,
        }
        for record in records
    ]
    if not rows:
        return pd.DataFrame(columns=RECORD_COLUMNS)
    df = pd.DataFrame(rows)
    df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
    return df
