# ABOUTME: Provides the CLI entrypoint for answering prediction and decay forecast requests.
# ABOUTME: Wires config, history tables, and the saved snapshot into a PredictionOrchestrator.

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer

from src.common.config import EngineConfig, load_engine_config
from src.common.errors import PredictionEngineError
from src.common.schemas import to_utc
from src.performance.training import read_table

from .history import FrameHistorySource
from .orchestrator import PredictionOrchestrator
from .snapshot import SnapshotHolder, load_snapshot

logger = logging.getLogger(__name__)

app = typer.Typer(help="Predict trainee outcomes and skill decay from a trained snapshot.")


def build_history_source(config: EngineConfig) -> FrameHistorySource:
    data = config.data
    return FrameHistorySource(
        records=read_table(data.records_path) if data.records_path is not None else None,
        sessions=read_table(data.sessions_path) if data.sessions_path is not None else None,
        modules=read_table(data.progress_path) if data.progress_path is not None else None,
    )


def build_orchestrator(config: EngineConfig) -> PredictionOrchestrator:
    """Orchestrator over the configured tables and the saved snapshot (defaults when none exists)."""

    holder = SnapshotHolder(max_r2_regression=config.orchestrator.max_r2_regression)
    try:
        holder.swap(load_snapshot(Path(config.outputs.model_dir)))
    except FileNotFoundError:
        logger.warning("No snapshot in %s; predicting with default BKT parameters only.", config.outputs.model_dir)
    return PredictionOrchestrator(config=config, history=build_history_source(config), snapshots=holder)


def _parse_now(now: Optional[str]) -> Optional[datetime]:
    if now is None:
        return None
    try:
        return to_utc(now)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--now") from exc


@app.command()
def predict(
    config: Path = typer.Option(..., "--config", help="Path to trainee prediction config YAML."),
    trainee_id: str = typer.Option(..., "--trainee-id", help="Trainee identifier."),
    now: Optional[str] = typer.Option(None, "--now", help="ISO8601 evaluation time (defaults to the current time)."),
) -> None:
    """Print the consolidated PredictionResult as JSON."""

    orchestrator = build_orchestrator(load_engine_config(config))
    typer.echo(f"[predict] Predicting outcomes for trainee {trainee_id}", err=True)
    try:
        result = orchestrator.predict_for_trainee(trainee_id, now=_parse_now(now))
    except PredictionEngineError as exc:
        typer.echo(f"[predict] {exc}", err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(result.to_json(indent=2))


@app.command()
def forecast(
    config: Path = typer.Option(..., "--config", help="Path to trainee prediction config YAML."),
    trainee_id: str = typer.Option(..., "--trainee-id", help="Trainee identifier."),
    horizon_days: Optional[int] = typer.Option(None, "--horizon-days", help="Days of decay curve to project."),
    threshold: Optional[float] = typer.Option(None, "--threshold", help="Mastery level that triggers intervention."),
    now: Optional[str] = typer.Option(None, "--now", help="ISO8601 evaluation time (defaults to the current time)."),
) -> None:
    """Print per-skill decay forecasts as JSON."""

    orchestrator = build_orchestrator(load_engine_config(config))
    typer.echo(f"[predict] Forecasting skill decay for trainee {trainee_id}", err=True)
    try:
        forecasts = orchestrator.forecast_skill_decay(
            trainee_id, horizon_days=horizon_days, threshold=threshold, now=_parse_now(now)
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    typer.echo(json.dumps([f.to_dict() for f in forecasts], indent=2))


if __name__ == "__main__":
    app()
