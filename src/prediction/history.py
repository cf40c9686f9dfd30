# ABOUTME: Describes the collaborator interface that supplies trainee history to the orchestrator.
# ABOUTME: Provides a dataframe-backed implementation used by the CLI, scripts, and tests.

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

import pandas as pd

from src.common.schemas import PerformanceRecord, TrainingProgress, records_from_frame, to_utc


class TraineeHistorySource(Protocol):
    """What the orchestrator needs from the assessment and syllabus services."""

    def performance_history(self, trainee_id: str) -> List[PerformanceRecord]:
        ...

    def latest_session(self, trainee_id: str) -> Optional[Dict[str, Any]]:
        ...

    def session_history(self, trainee_id: str) -> pd.DataFrame:
        ...

    def training_progress(self, trainee_id: str) -> Optional[TrainingProgress]:
        ...


class FrameHistorySource:
    """
    History source over in-memory dataframes.

    records: canonical performance record columns.
    sessions: one row per session with ``trainee_id``, an optional ``timestamp``, and arbitrary
        feature fields consumed by the preprocessor.
    modules: one row per syllabus module with ``trainee_id``, ``module_id``, ``completed_at``
        (null while incomplete) and optional ``skill_id`` / ``started_at`` columns.
    """

    def __init__(
        self,
        records: Optional[pd.DataFrame] = None,
        sessions: Optional[pd.DataFrame] = None,
        modules: Optional[pd.DataFrame] = None,
    ) -> None:
        self.records = records if records is not None else pd.DataFrame(columns=["trainee_id"])
        self.sessions = sessions if sessions is not None else pd.DataFrame(columns=["trainee_id"])
        self.modules = modules if modules is not None else pd.DataFrame(columns=["trainee_id"])

    def performance_history(self, trainee_id: str) -> List[PerformanceRecord]:
        subset = self.records[self.records["trainee_id"].astype(str) == str(trainee_id)]
        records = records_from_frame(subset)
        return sorted(records, key=lambda r: r.timestamp)

    def session_history(self, trainee_id: str) -> pd.DataFrame:
        subset = self.sessions[self.sessions["trainee_id"].astype(str) == str(trainee_id)].copy()
        if "timestamp" in subset.columns and not subset.empty:
            subset["timestamp"] = pd.to_datetime(subset["timestamp"], utc=True)
            subset = subset.sort_values("timestamp", kind="mergesort")
        return subset.reset_index(drop=True)

    def latest_session(self, trainee_id: str) -> Optional[Dict[str, Any]]:
        history = self.session_history(trainee_id)
        if history.empty:
            return None
        return history.iloc[-1].to_dict()

    def training_progress(self, trainee_id: str) -> Optional[TrainingProgress]:
        subset = self.modules[self.modules["trainee_id"].astype(str) == str(trainee_id)]
        if subset.empty:
            return None

        completed = pd.to_datetime(subset["completed_at"], utc=True).dropna().sort_values()
        started_at = None
        if "started_at" in subset.columns:
            starts = pd.to_datetime(subset["started_at"], utc=True).dropna()
            if not starts.empty:
                started_at = to_utc(starts.min())
        required_skills = ()
        if "skill_id" in subset.columns:
            required_skills = tuple(sorted(subset["skill_id"].dropna().astype(str).unique()))

        return TrainingProgress(
            trainee_id=str(trainee_id),
            total_modules=int(subset["module_id"].nunique()),
            completed_at=tuple(to_utc(ts) for ts in completed),
            started_at=started_at,
            required_skills=required_skills,
        )
