# ABOUTME: Provides the CLI entrypoint for the offline retraining job.
# ABOUTME: Fits the preprocessor, regressor, and BKT parameters into a snapshot and gates its adoption.

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd
import typer

from src.common.config import EngineConfig, load_engine_config
from src.common.errors import PredictionEngineError
from src.common.schemas import PerformanceRecord, records_from_frame
from src.knowledge_tracing.bkt import BKTParameters
from src.knowledge_tracing.fitting import fit_parameters, fit_skill_parameters
from src.knowledge_tracing.tracker import ParameterSet
from src.prediction.snapshot import ModelSnapshot, SnapshotHolder, load_snapshot, save_snapshot

from .preprocessing import fit_transform
from .regressors import build_regressor

logger = logging.getLogger(__name__)

app = typer.Typer(help="Train the trainee performance prediction engine.")


@app.callback()
def main() -> None:
    """Offline retraining jobs."""


@app.command()
def train(config: Path = typer.Option(..., "--config", help="Path to trainee prediction config YAML.")) -> None:
    try:
        train_snapshot(config)
    except PredictionEngineError as exc:
        typer.echo(f"[train] {exc}", err=True)
        raise typer.Exit(code=1) from exc


def read_table(path: Path) -> pd.DataFrame:
    """Load a parquet or CSV table depending on its suffix."""

    path = Path(path)
    if path.suffix == ".parquet":
        return pd.read_parquet(path)
    if path.suffix == ".csv":
        return pd.read_csv(path)
    raise ValueError(f"Unsupported table format for {path}; expected .parquet or .csv")


def fit_knowledge_tracing(
    records: Sequence[PerformanceRecord], config: EngineConfig
) -> Tuple[ParameterSet, Dict[str, Any]]:
    """Global BKT fit plus per-skill fits seeded from it."""

    kt_cfg = config.knowledge_tracing
    defaults = BKTParameters(
        p_init=kt_cfg.p_init,
        p_transit=kt_cfg.p_transit,
        p_slip=kt_cfg.p_slip,
        p_guess=kt_cfg.p_guess,
        decay_rate=kt_cfg.decay_rate,
    )
    global_fit = fit_parameters(records, defaults=defaults, min_records=kt_cfg.min_records)
    warnings: List[str] = [str(w) for w in global_fit.warnings]

    per_skill: Dict[str, BKTParameters] = {}
    if kt_cfg.per_skill:
        for skill_id, skill_fit in fit_skill_parameters(
            records, defaults=global_fit.parameters, min_records=kt_cfg.min_records
        ).items():
            warnings.extend(f"{skill_id}: {w}" for w in skill_fit.warnings)
            if not skill_fit.used_defaults:
                per_skill[skill_id] = skill_fit.parameters

    report = {
        "n_records": global_fit.n_records,
        "used_defaults": global_fit.used_defaults,
        "default": global_fit.parameters.to_dict(),
        "per_skill": {skill: params.to_dict() for skill, params in per_skill.items()},
        "warnings": warnings,
    }
    return ParameterSet(default=global_fit.parameters, per_skill=per_skill), report


def build_snapshot(
    records: Sequence[PerformanceRecord],
    sessions: Optional[pd.DataFrame],
    config: EngineConfig,
) -> Tuple[ModelSnapshot, Dict[str, Any]]:
    """
    Fit every component from scratch and return a new snapshot with its training report.

    The regressor is skipped when no session table (or no target column) is available; the
    orchestrator then falls back to the mastery-only estimate.
    """

    parameters, kt_report = fit_knowledge_tracing(records, config)
    report: Dict[str, Any] = {"run_name": config.run_name, "knowledge_tracing": kt_report}

    target = config.data.target_column
    preprocessor = regressor = None
    if sessions is not None and target in sessions.columns:
        labelled = sessions[sessions[target].notna()].reset_index(drop=True)
        features = labelled.drop(columns=[target])
        preprocessor, matrix = fit_transform(features, config.preprocessor)
        regressor = build_regressor(config.regressor).fit(matrix, labelled[target].to_numpy())
        report["regressor"] = {
            "kind": regressor.kind,
            "n_train": regressor.n_train,
            "n_validation": regressor.n_validation,
            "feature_names": preprocessor.feature_names(),
            "validation_metrics": dict(regressor.validation_metrics),
        }
    else:
        logger.info("No '%s' session targets available; snapshot carries no regressor.", target)
        report["regressor"] = None

    snapshot = ModelSnapshot(
        parameters=parameters,
        preprocessor=preprocessor,
        regressor=regressor,
        metadata={"run_name": config.run_name},
    )
    return snapshot, report


def train_snapshot(config_path: Path) -> Dict[str, Any]:
    """Programmatic entrypoint mirrored by the Typer CLI."""

    config = load_engine_config(config_path)
    if config.data.records_path is None:
        raise typer.BadParameter("data.records_path must be set to train.", param_hint="--config")

    records = records_from_frame(read_table(config.data.records_path))
    sessions = read_table(config.data.sessions_path) if config.data.sessions_path is not None else None
    typer.echo(
        f"[train] {len(records)} performance records"
        + (f", {len(sessions)} sessions" if sessions is not None else ", no session table")
    )

    candidate, report = build_snapshot(records, sessions, config)
    kt_report = report["knowledge_tracing"]
    typer.echo(
        f"[train] BKT default p_init={kt_report['default']['p_init']:.3f} "
        f"decay_rate={kt_report['default']['decay_rate']:.4f} ({len(kt_report['per_skill'])} per-skill sets)"
    )
    for warning in kt_report["warnings"]:
        typer.echo(f"[train] warning: {warning}")
    if report["regressor"] is not None:
        metrics = report["regressor"]["validation_metrics"]
        typer.echo(f"[train] {report['regressor']['kind']} regressor validation: {json.dumps(metrics)}")

    model_dir = Path(config.outputs.model_dir)
    live = None
    try:
        live = load_snapshot(model_dir)
    except FileNotFoundError:
        logger.info("No live snapshot in %s; candidate will be adopted.", model_dir)
    holder = SnapshotHolder(live, max_r2_regression=config.orchestrator.max_r2_regression)
    accepted = holder.propose(candidate)
    report["accepted"] = accepted
    if accepted:
        path = save_snapshot(candidate, model_dir)
        typer.echo(f"[train] Snapshot written to {path}")
    else:
        typer.echo(
            f"[train] Candidate rejected: r2={candidate.validation_r2} regressed from live r2={live.validation_r2}"
        )

    metrics_dir = Path(config.outputs.metrics_dir)
    metrics_dir.mkdir(parents=True, exist_ok=True)
    metrics_path = metrics_dir / f"{config.run_name}_metrics.json"
    metrics_path.write_text(json.dumps(report, indent=2))
    typer.echo(f"[train] Metrics written to {metrics_path}")
    return report


if __name__ == "__main__":
    app()
