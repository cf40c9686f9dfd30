# ABOUTME: Tests the prediction orchestrator end to end over in-memory history tables.
# ABOUTME: Covers cold start, risk classification, score blending, completion projection, and decay forecasts.

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import numpy as np
import pandas as pd
import pytest

from src.common.config import EngineConfig, OrchestratorConfig, RegressorConfig
from src.common.schemas import MasteryState, PerformanceRecord, TrainingProgress, records_from_frame
from src.knowledge_tracing.bkt import BKTParameters
from src.knowledge_tracing.tracker import ParameterSet
from src.performance.preprocessing import transform_one
from src.performance.training import build_snapshot
from src.prediction.history import FrameHistorySource
from src.prediction.orchestrator import (
    PredictionOrchestrator,
    blend_final_score,
    classify_risk,
    compute_confidence,
    project_completion_date,
    risk_areas_for,
)
from src.prediction.snapshot import SnapshotHolder

START = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _records_frame():
    rows = []
    for day in range(3):
        rows.append(
            {"trainee_id": "t1", "skill_id": "landing", "timestamp": START + timedelta(days=day),
             "performance": 1.0, "time_since_last_practice_days": float(day > 0)}
        )
    for day in range(2):
        rows.append(
            {"trainee_id": "t1", "skill_id": "engine_fire", "timestamp": START + timedelta(days=day),
             "performance": 0.0, "time_since_last_practice_days": float(day > 0)}
        )
    return pd.DataFrame(rows)


def _sessions_frame():
    hours = [2.0, 4.0, 6.0, 8.0, 10.0, 12.0, 14.0, 16.0, 18.0, 20.0]
    return pd.DataFrame(
        {
            "trainee_id": [f"t{i}" for i in range(1, 11)],
            "timestamp": [START + timedelta(days=i) for i in range(10)],
            "hours": hours,
            "final_score": [0.4 + 0.02 * h for h in hours],
        }
    )


def _modules_frame():
    completed = [START + timedelta(days=d) for d in (2, 4, 6, 8)] + [pd.NaT] * 6
    return pd.DataFrame(
        {
            "trainee_id": ["t1"] * 10,
            "module_id": [f"m{i}" for i in range(10)],
            "completed_at": completed,
            "started_at": [START] * 10,
            "skill_id": ["landing", "engine_fire"] * 5,
        }
    )


def _orchestrator(config=None, with_regressor=True):
    config = config or EngineConfig(regressor=RegressorConfig(kind="linear"))
    records = _records_frame()
    sessions = _sessions_frame()
    holder = SnapshotHolder()
    if with_regressor:
        snapshot, _ = build_snapshot(records_from_frame(records), sessions, config)
        holder.swap(snapshot)
    history = FrameHistorySource(records=records, sessions=sessions, modules=_modules_frame())
    return PredictionOrchestrator(config=config, history=history, snapshots=holder)


def test_classify_risk_thresholds():
    cfg = OrchestratorConfig()
    assert classify_risk(0.35, cfg) == "high"
    assert classify_risk(0.55, cfg) == "medium"
    assert classify_risk(0.85, cfg) == "low"
    assert classify_risk(0.4, cfg) == "medium"
    assert classify_risk(0.7, cfg) == "low"


def test_cold_start_returns_empty_prediction():
    orchestrator = PredictionOrchestrator(history=FrameHistorySource())
    result = orchestrator.predict_for_trainee("nobody", now=START)
    assert result.to_dict() == {
        "trainee_id": "nobody",
        "predicted_completion_date": None,
        "predicted_final_score": None,
        "risk_areas": [],
        "confidence_score": 0.0,
    }


def test_blend_final_score_renormalises_missing_parts():
    cfg = OrchestratorConfig(regressor_weight=0.7, mastery_weight=0.3)
    assert blend_final_score(0.8, 0.5, cfg) == pytest.approx(0.71)
    assert blend_final_score(None, 0.5, cfg) == pytest.approx(0.5)
    assert blend_final_score(0.8, None, cfg) == pytest.approx(0.8)
    assert blend_final_score(None, None, cfg) is None


def test_project_completion_date_uses_historical_rate():
    progress = TrainingProgress(
        trainee_id="t1",
        total_modules=10,
        completed_at=[START + timedelta(days=d) for d in (2, 4, 6, 8)],
        started_at=START,
    )
    projected = project_completion_date(progress, START + timedelta(days=10))
    assert projected == START + timedelta(days=25)


def test_project_completion_date_edge_cases():
    now = START + timedelta(days=10)
    done = TrainingProgress("t1", 2, completed_at=[START + timedelta(days=1), START + timedelta(days=3)])
    assert project_completion_date(done, now) == START + timedelta(days=3)
    assert project_completion_date(None, now) is None
    assert project_completion_date(TrainingProgress("t1", 5), now) is None

    no_start = TrainingProgress("t1", 4, completed_at=[START + timedelta(days=5)])
    assert project_completion_date(no_start, now, first_activity=START) == now + timedelta(days=30)


def test_confidence_grows_with_history_and_drops_with_variance():
    cfg = OrchestratorConfig(confidence_half_records=10, recent_window=10)

    def history(values):
        return [PerformanceRecord("t1", "s1", START + timedelta(days=i), v) for i, v in enumerate(values)]

    steady_short = compute_confidence(history([0.8] * 5), cfg)
    steady_long = compute_confidence(history([0.8] * 30), cfg)
    noisy_long = compute_confidence(history([0.2, 0.9] * 15), cfg)

    assert steady_short == pytest.approx(5 / 15)
    assert steady_long == pytest.approx(30 / 40)
    assert 0.0 <= noisy_long < steady_long
    assert compute_confidence([], cfg) == 0.0


def test_risk_areas_sorted_weakest_first():
    states = [
        MasteryState("t1", "a", 0.9, START),
        MasteryState("t1", "b", 0.2, START),
        MasteryState("t1", "c", 0.5, START),
    ]
    areas = risk_areas_for(states, OrchestratorConfig())
    assert [(a.skill_id, a.risk_level) for a in areas] == [("b", "high"), ("c", "medium"), ("a", "low")]
    assert "b" in areas[0].recommendation


def test_predict_for_trainee_consolidates_components():
    orchestrator = _orchestrator()
    now = START + timedelta(days=10)

    result = orchestrator.predict_for_trainee("t1", now=now)

    assert [area.skill_id for area in result.risk_areas] == ["engine_fire", "landing"]
    assert result.risk_areas[0].risk_level == "high"
    assert result.predicted_completion_date == START + timedelta(days=25)
    assert 0.0 < result.confidence_score <= 1.0

    snapshot = orchestrator.snapshots.current()
    session = orchestrator.history.latest_session("t1")
    regressor_estimate = snapshot.regressor.predict(transform_one(session, snapshot.preprocessor))
    mean_mastery = np.mean([s.mastery for s in orchestrator.tracker.current_states("t1", now)])
    assert result.predicted_final_score == pytest.approx(0.7 * regressor_estimate + 0.3 * mean_mastery)

    payload = result.to_dict()
    assert payload["predicted_completion_date"] == (START + timedelta(days=25)).isoformat()
    assert set(payload["risk_areas"][0]) == {"skill_id", "risk_level", "recommendation"}


def test_predict_without_regressor_uses_mastery_only():
    orchestrator = _orchestrator(with_regressor=False)
    now = START + timedelta(days=10)

    result = orchestrator.predict_for_trainee("t1", now=now)

    mean_mastery = np.mean([s.mastery for s in orchestrator.tracker.current_states("t1", now)])
    assert result.predicted_final_score == pytest.approx(mean_mastery)


def test_repeated_predictions_are_stable():
    orchestrator = _orchestrator()
    now = START + timedelta(days=10)
    assert orchestrator.predict_for_trainee("t1", now=now) == orchestrator.predict_for_trainee("t1", now=now)


def test_forecast_skill_decay():
    orchestrator = _orchestrator(with_regressor=False)
    forecasts = orchestrator.forecast_skill_decay("t1", horizon_days=14, threshold=0.7, now=START + timedelta(days=2))

    by_skill = {f.skill_id: f for f in forecasts}
    assert set(by_skill) == {"engine_fire", "landing"}
    assert by_skill["engine_fire"].days_until_threshold == 0
    assert by_skill["landing"].days_until_threshold > 0
    assert len(by_skill["landing"].curve) == 15
    assert by_skill["landing"].curve[0]["mastery"] == pytest.approx(by_skill["landing"].mastery)

    with pytest.raises(ValueError):
        orchestrator.forecast_skill_decay("t1", horizon_days=-1)


def test_orchestrator_requires_history_source():
    with pytest.raises(ValueError):
        PredictionOrchestrator()


def test_snapshot_swap_recomputes_mastery_under_new_parameters():
    orchestrator = _orchestrator()
    now = START + timedelta(days=10)
    orchestrator.predict_for_trainee("t1", now=now)

    retrained = replace(
        orchestrator.snapshots.current(),
        parameters=ParameterSet(default=BKTParameters(p_init=0.9, decay_rate=0.02)),
    )
    orchestrator.snapshots.swap(retrained)
    after_swap = orchestrator.predict_for_trainee("t1", now=now)

    fresh = PredictionOrchestrator(
        config=orchestrator.config,
        history=orchestrator.history,
        snapshots=SnapshotHolder(retrained),
    )
    assert after_swap == fresh.predict_for_trainee("t1", now=now)
    assert orchestrator.tracker.current_states("t1", now) == fresh.tracker.current_states("t1", now)


def test_blend_final_score_scales_mastery_to_percentage_targets():
    cfg = OrchestratorConfig(regressor_weight=0.7, mastery_weight=0.3, mastery_score_scale=100.0)
    assert blend_final_score(80.0, 0.5, cfg) == pytest.approx(71.0)
    assert blend_final_score(None, 0.5, cfg) == pytest.approx(50.0)
