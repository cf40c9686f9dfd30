# ABOUTME: Provides a CLI that renders a trainee's prediction, risk areas, and decay outlook as rich tables.
# ABOUTME: Adds a consistency assessment over the trainee's session metrics or performance records.

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from src.common.config import load_engine_config
from src.common.errors import InsufficientDataError
from src.common.schemas import to_utc
from src.prediction.cli import build_orchestrator
from src.prediction.consistency import assess_consistency

console = Console()
app = typer.Typer(help="Summarize predicted outcomes and skill decay for one trainee.")

RISK_COLORS = {"high": "red", "medium": "yellow", "low": "green"}


@app.callback()
def main() -> None:
    """Trainee reports."""


@app.command()
def report(
    trainee_id: str = typer.Option(..., "--trainee-id", help="Trainee identifier."),
    config: Path = typer.Option(Path("configs/trainee_prediction.yaml"), "--config", help="Engine config path."),
    now: Optional[str] = typer.Option(None, "--now", help="ISO8601 evaluation time."),
) -> None:
    """Prediction summary, risk areas, decay forecast, and consistency for a trainee."""

    engine_config = load_engine_config(config)
    orchestrator = build_orchestrator(engine_config)
    when = to_utc(now) if now else None

    result = orchestrator.predict_for_trainee(trainee_id, now=when)
    console.rule(f"[bold blue]Trainee {trainee_id}[/bold blue]")
    if not result.risk_areas:
        console.print("[yellow]No performance history recorded for this trainee.[/yellow]")
        return

    score = "n/a" if result.predicted_final_score is None else f"{result.predicted_final_score:.3f}"
    completion = "n/a" if result.predicted_completion_date is None else result.predicted_completion_date.date().isoformat()
    console.print(f"[bold]Predicted final score:[/] {score}")
    console.print(f"[bold]Predicted completion:[/] {completion}")
    console.print(f"[bold]Confidence:[/] {result.confidence_score:.2f}")
    console.print()

    risk_table = Table(title="Risk areas")
    risk_table.add_column("skill_id")
    risk_table.add_column("mastery", justify="right")
    risk_table.add_column("risk")
    risk_table.add_column("recommendation")
    for area in result.risk_areas:
        color = RISK_COLORS.get(area.risk_level, "white")
        risk_table.add_row(
            area.skill_id,
            f"{area.mastery:.3f}",
            f"[{color}]{area.risk_level}[/{color}]",
            area.recommendation,
        )
    console.print(risk_table)

    forecasts = orchestrator.forecast_skill_decay(trainee_id, now=when)
    decay_table = Table(title=f"Decay outlook (threshold {engine_config.orchestrator.intervention_threshold:.2f})")
    decay_table.add_column("skill_id")
    decay_table.add_column("mastery now", justify="right")
    decay_table.add_column(f"mastery +{engine_config.orchestrator.forecast_horizon_days}d", justify="right")
    decay_table.add_column("days until threshold", justify="right")
    for forecast in forecasts:
        days = "never" if forecast.days_until_threshold is None else str(forecast.days_until_threshold)
        decay_table.add_row(
            forecast.skill_id,
            f"{forecast.mastery:.3f}",
            f"{forecast.curve[-1]['mastery']:.3f}",
            days,
        )
    console.print(decay_table)

    sessions = orchestrator.history.session_history(trainee_id)
    source = sessions if len(sessions) else orchestrator.history.performance_history(trainee_id)
    try:
        assessment = assess_consistency(source)
    except InsufficientDataError as exc:
        console.print(f"[yellow]Consistency skipped: {exc}[/yellow]")
        return
    console.print(f"[bold]Consistency:[/] {assessment.consistency_score:.1f}/10 - {assessment.summary}")
    for anomaly in assessment.anomalies:
        console.print(f"  [red]{anomaly.metric}[/red] session {anomaly.session_id}: z={anomaly.z_score:.2f} ({anomaly.severity})")
    for action in assessment.actions:
        console.print(f"  → {action}")


if __name__ == "__main__":
    app()
