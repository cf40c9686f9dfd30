# ABOUTME: Consolidates mastery states, the regressor estimate, and syllabus progress into one prediction.
# ABOUTME: Also projects per-skill decay so coordinators can schedule refresher practice.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from src.common.config import EngineConfig, OrchestratorConfig
from src.common.schemas import MasteryState, PerformanceRecord, PredictionResult, RiskArea, TrainingProgress, to_utc
from src.knowledge_tracing.bkt import days_until_threshold, decay_curve
from src.knowledge_tracing.tracker import MasteryTracker, elapsed_days
from src.performance.preprocessing import transform_one

from .history import TraineeHistorySource
from .snapshot import ModelSnapshot, SnapshotHolder

logger = logging.getLogger(__name__)

RISK_RECOMMENDATIONS = {
    "high": "Schedule remedial training on {skill_id}: mastery {mastery:.0%} is well below proficiency.",
    "medium": "Add refresher practice on {skill_id} (mastery {mastery:.0%}) before the next evaluation.",
    "low": "Maintain the current practice cadence for {skill_id} (mastery {mastery:.0%}).",
}


@dataclass(frozen=True)
class SkillDecayForecast:
    skill_id: str
    mastery: float
    days_until_threshold: Optional[int]
    curve: List[Dict[str, float]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "skill_id": self.skill_id,
            "mastery": self.mastery,
            "days_until_threshold": self.days_until_threshold,
            "curve": list(self.curve),
        }


def classify_risk(mastery: float, config: OrchestratorConfig) -> str:
    if mastery < config.high_risk_threshold:
        return "high"
    if mastery < config.medium_risk_threshold:
        return "medium"
    return "low"


def risk_areas_for(states: Sequence[MasteryState], config: OrchestratorConfig) -> List[RiskArea]:
    """One templated risk area per tracked skill, weakest skill first."""

    areas = []
    for state in sorted(states, key=lambda s: (s.mastery, s.skill_id)):
        level = classify_risk(state.mastery, config)
        areas.append(
            RiskArea(
                skill_id=state.skill_id,
                risk_level=level,
                recommendation=RISK_RECOMMENDATIONS[level].format(skill_id=state.skill_id, mastery=state.mastery),
                mastery=state.mastery,
            )
        )
    return areas


def project_completion_date(
    progress: Optional[TrainingProgress],
    now: datetime,
    first_activity: Optional[datetime] = None,
) -> Optional[datetime]:
    """
    Linear projection of the remaining modules over the historical completion rate.

    The rate is completed modules per day since ``progress.started_at`` (or ``first_activity``
    when the syllabus service does not report a start). Returns the last completion time when
    everything is done and None when there is no progress or no measurable rate.
    """

    if progress is None or progress.total_modules <= 0:
        return None
    completed = sorted(to_utc(ts) for ts in progress.completed_at)
    if progress.remaining_modules == 0:
        return completed[-1] if completed else None
    if not completed:
        return None

    start = progress.started_at or first_activity or completed[0]
    days = elapsed_days(start, now)
    if days <= 0:
        return None
    rate = len(completed) / days
    return to_utc(now) + timedelta(days=progress.remaining_modules / rate)


def compute_confidence(history: Sequence[PerformanceRecord], config: OrchestratorConfig) -> float:
    """Grows with the number of records and shrinks with the spread of recent performances."""

    n = len(history)
    if n == 0:
        return 0.0
    volume = n / (n + config.confidence_half_records)
    recent = [record.performance for record in history[-config.recent_window:]]
    stability = 1.0 - min(1.0, 2.0 * float(np.std(recent)))
    return float(min(1.0, max(0.0, volume * stability)))


def blend_final_score(
    regressor_estimate: Optional[float],
    mean_mastery: Optional[float],
    config: OrchestratorConfig,
) -> Optional[float]:
    """Weighted blend of the regressor estimate and scaled mean mastery; missing parts drop out."""

    parts = []
    if regressor_estimate is not None:
        parts.append((config.regressor_weight, regressor_estimate))
    if mean_mastery is not None:
        parts.append((config.mastery_weight, mean_mastery * config.mastery_score_scale))
    total_weight = sum(weight for weight, _ in parts)
    if not parts or total_weight <= 0:
        return None
    return float(sum(weight * value for weight, value in parts) / total_weight)


class PredictionOrchestrator:
    """
    Answers prediction requests for a trainee.

    Each request takes one reference to the live snapshot, replays the trainee's history into
    the shared tracker, and reads mastery decayed to ``now``. Collaborators and thresholds
    are injected; nothing is read from module-level state.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        history: Optional[TraineeHistorySource] = None,
        tracker: Optional[MasteryTracker] = None,
        snapshots: Optional[SnapshotHolder] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if history is None:
            raise ValueError("PredictionOrchestrator requires a trainee history source.")
        self.config = config or EngineConfig()
        self.history = history
        self.snapshots = snapshots or SnapshotHolder(max_r2_regression=self.config.orchestrator.max_r2_regression)
        self.tracker = tracker or MasteryTracker(self.snapshots.current().parameters)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _now(self, now: Optional[datetime]) -> datetime:
        return to_utc(now) if now is not None else to_utc(self.clock())

    def _sync(self, trainee_id: str, snapshot: ModelSnapshot) -> List[PerformanceRecord]:
        if self.tracker.parameters is not snapshot.parameters:
            self.tracker.swap_parameters(snapshot.parameters)
        records = self.history.performance_history(trainee_id)
        applied = self.tracker.ingest(records)
        logger.debug("Replayed %d new records for trainee %s.", applied, trainee_id)
        return sorted(records, key=lambda r: r.timestamp)

    def predict_for_trainee(self, trainee_id: str, now: Optional[datetime] = None) -> PredictionResult:
        now = self._now(now)
        snapshot = self.snapshots.current()
        cfg = self.config.orchestrator

        records = self._sync(trainee_id, snapshot)
        if not records:
            logger.info("No performance history for trainee %s; returning empty prediction.", trainee_id)
            return PredictionResult.empty(trainee_id)

        states = self.tracker.current_states(trainee_id, now)
        progress = self.history.training_progress(trainee_id)

        regressor_estimate = self._regressor_estimate(trainee_id, snapshot)
        mean_mastery = self._mean_mastery(states, progress, snapshot)
        final_score = blend_final_score(regressor_estimate, mean_mastery, cfg)

        return PredictionResult(
            trainee_id=trainee_id,
            predicted_completion_date=project_completion_date(progress, now, records[0].timestamp),
            predicted_final_score=final_score,
            risk_areas=risk_areas_for(states, cfg),
            confidence_score=compute_confidence(records, cfg),
        )

    def forecast_skill_decay(
        self,
        trainee_id: str,
        horizon_days: Optional[int] = None,
        threshold: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> List[SkillDecayForecast]:
        """Per-skill mastery today, days until it drops below ``threshold``, and the daily curve."""

        now = self._now(now)
        snapshot = self.snapshots.current()
        cfg = self.config.orchestrator
        horizon = cfg.forecast_horizon_days if horizon_days is None else horizon_days
        threshold = cfg.intervention_threshold if threshold is None else threshold
        if horizon < 0:
            raise ValueError(f"horizon_days must be >= 0, got {horizon}.")

        self._sync(trainee_id, snapshot)
        forecasts = []
        for state in self.tracker.current_states(trainee_id, now):
            params = snapshot.parameters.for_skill(state.skill_id)
            forecasts.append(
                SkillDecayForecast(
                    skill_id=state.skill_id,
                    mastery=state.mastery,
                    days_until_threshold=days_until_threshold(state.mastery, threshold, params),
                    curve=decay_curve(state.mastery, horizon, params),
                )
            )
        return forecasts

    def _regressor_estimate(self, trainee_id: str, snapshot: ModelSnapshot) -> Optional[float]:
        if not snapshot.has_regressor:
            logger.info("No fitted regressor in the live snapshot; using mastery only for %s.", trainee_id)
            return None
        session = self.history.latest_session(trainee_id)
        if session is None:
            logger.info("No session data for trainee %s; using mastery only.", trainee_id)
            return None
        features = transform_one(session, snapshot.preprocessor)
        return snapshot.regressor.predict(features)

    def _mean_mastery(
        self,
        states: Sequence[MasteryState],
        progress: Optional[TrainingProgress],
        snapshot: ModelSnapshot,
    ) -> Optional[float]:
        by_skill = {state.skill_id: state.mastery for state in states}
        required = list(by_skill)
        if progress is not None and progress.required_skills:
            required = list(progress.required_skills)
        if not required:
            return None
        values = [
            by_skill.get(skill_id, snapshot.parameters.for_skill(skill_id).p_init) for skill_id in required
        ]
        return float(np.mean(values))
