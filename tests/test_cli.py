# ABOUTME: Exercises the training, prediction, and report CLIs against small CSV tables.
# ABOUTME: Ensures Typer apps register their commands and produce snapshots and JSON output.

import json
import math
from datetime import datetime, timedelta, timezone

import pandas as pd
import yaml
from typer.testing import CliRunner

from scripts import trainee_report
from src.performance import training
from src.prediction import cli as prediction_cli

START = datetime(2024, 1, 1, tzinfo=timezone.utc)
runner = CliRunner()


def _command_names(app):
    return {cmd.name or cmd.callback.__name__ for cmd in app.registered_commands}


def _write_inputs(tmp_path):
    records = []
    for idx, gap in enumerate((5, 10, 15, 20, 25, 30)):
        for skill in ("landing", "engine_fire"):
            records.append(
                {"trainee_id": f"t{idx}", "skill_id": skill, "timestamp": START.isoformat(),
                 "performance": 1.0, "time_since_last_practice_days": 0.0}
            )
            records.append(
                {"trainee_id": f"t{idx}", "skill_id": skill, "timestamp": (START + timedelta(days=gap)).isoformat(),
                 "performance": math.exp(-0.02 * gap), "time_since_last_practice_days": float(gap)}
            )
    pd.DataFrame(records).to_csv(tmp_path / "records.csv", index=False)

    hours = [float(h) for h in range(2, 22, 2)]
    pd.DataFrame(
        {
            "trainee_id": [f"t{i % 6}" for i in range(10)],
            "session_id": [f"s{i}" for i in range(10)],
            "timestamp": [(START + timedelta(days=i)).isoformat() for i in range(10)],
            "hours": hours,
            "final_score": [0.4 + 0.02 * h for h in hours],
        }
    ).to_csv(tmp_path / "sessions.csv", index=False)

    pd.DataFrame(
        {
            "trainee_id": ["t0"] * 4,
            "module_id": ["m1", "m2", "m3", "m4"],
            "completed_at": [(START + timedelta(days=10)).isoformat(), (START + timedelta(days=20)).isoformat(), None, None],
            "started_at": [START.isoformat()] * 4,
            "skill_id": ["landing", "engine_fire", "landing", "engine_fire"],
        }
    ).to_csv(tmp_path / "modules.csv", index=False)

    config = {
        "run_name": "cli_test",
        "data": {
            "records_path": str(tmp_path / "records.csv"),
            "sessions_path": str(tmp_path / "sessions.csv"),
            "progress_path": str(tmp_path / "modules.csv"),
        },
        "regressor": {"kind": "linear"},
        "outputs": {"model_dir": str(tmp_path / "models"), "metrics_dir": str(tmp_path / "metrics")},
    }
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.safe_dump(config))
    return config_path


def test_apps_register_expected_commands():
    assert "train" in _command_names(training.app)
    assert {"predict", "forecast"} <= _command_names(prediction_cli.app)
    assert "report" in _command_names(trainee_report.app)


def test_train_writes_snapshot_and_metrics(tmp_path):
    config_path = _write_inputs(tmp_path)

    result = runner.invoke(training.app, ["train", "--config", str(config_path)])

    assert result.exit_code == 0, result.output
    assert "[train] Snapshot written" in result.output
    assert (tmp_path / "models" / "snapshot.pt").exists()
    assert (tmp_path / "models" / "bkt_parameters.json").exists()

    metrics = json.loads((tmp_path / "metrics" / "cli_test_metrics.json").read_text())
    assert metrics["accepted"] is True
    assert metrics["regressor"]["kind"] == "linear"
    assert metrics["knowledge_tracing"]["used_defaults"] is False
    assert 0.01 < metrics["knowledge_tracing"]["default"]["decay_rate"] < 0.03


def test_predict_and_forecast_print_json(tmp_path):
    config_path = _write_inputs(tmp_path)
    assert runner.invoke(training.app, ["train", "--config", str(config_path)]).exit_code == 0
    now = (START + timedelta(days=30)).isoformat()

    result = runner.invoke(
        prediction_cli.app, ["predict", "--config", str(config_path), "--trainee-id", "t0", "--now", now]
    )
    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout[result.stdout.index("{"):])
    assert payload["trainee_id"] == "t0"
    assert payload["predicted_final_score"] is not None
    assert payload["predicted_completion_date"] == (START + timedelta(days=60)).isoformat()
    assert {area["skill_id"] for area in payload["risk_areas"]} == {"landing", "engine_fire"}

    result = runner.invoke(
        prediction_cli.app,
        ["forecast", "--config", str(config_path), "--trainee-id", "t0", "--horizon-days", "7", "--now", now],
    )
    assert result.exit_code == 0, result.output
    forecasts = json.loads(result.stdout[result.stdout.index("[\n"):])
    assert len(forecasts) == 2
    assert all(len(f["curve"]) == 8 for f in forecasts)


def test_predict_for_unknown_trainee_is_empty(tmp_path):
    config_path = _write_inputs(tmp_path)

    result = runner.invoke(prediction_cli.app, ["predict", "--config", str(config_path), "--trainee-id", "ghost"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout[result.stdout.index("{"):])
    assert payload["risk_areas"] == []
    assert payload["confidence_score"] == 0.0


def test_report_renders_tables(tmp_path):
    config_path = _write_inputs(tmp_path)
    assert runner.invoke(training.app, ["train", "--config", str(config_path)]).exit_code == 0

    result = runner.invoke(
        trainee_report.app,
        ["report", "--trainee-id", "t0", "--config", str(config_path), "--now", (START + timedelta(days=30)).isoformat()],
    )

    assert result.exit_code == 0, result.output
    assert "Risk areas" in result.output
    assert "Decay outlook" in result.output
    assert "Consistency" in result.output
