# ABOUTME: Exposes the prediction orchestrator and the snapshot lifecycle around it.
# ABOUTME: Groups history sources, snapshots, decay forecasts, and consistency assessment.

from .consistency import ConsistencyAssessment, assess_consistency
from .history import FrameHistorySource, TraineeHistorySource
from .orchestrator import PredictionOrchestrator, SkillDecayForecast, classify_risk
from .snapshot import ModelSnapshot, SnapshotHolder, load_snapshot, save_snapshot

__all__ = [
    "ConsistencyAssessment",
    "assess_consistency",
    "FrameHistorySource",
    "TraineeHistorySource",
    "PredictionOrchestrator",
    "SkillDecayForecast",
    "classify_risk",
    "ModelSnapshot",
    "SnapshotHolder",
    "load_snapshot",
    "save_snapshot",
]
