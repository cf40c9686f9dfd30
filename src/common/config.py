# ABOUTME: Maps the engine YAML config onto typed dataclasses passed into each component.
# ABOUTME: Replaces module-level model directories and device selection with explicit settings.

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence

import yaml


@dataclass(frozen=True)
class PreprocessorConfig:
    """Field roles and sample requirements for the feature preprocessor."""

    numeric_fields: Optional[Sequence[str]] = None
    categorical_fields: Optional[Sequence[str]] = None
    exclude_fields: Sequence[str] = ("trainee_id", "session_id", "timestamp")
    min_distinct_samples: int = 2


@dataclass(frozen=True)
class RegressorConfig:
    """Selects and tunes one of the swappable regressor implementations."""

    kind: str = "feedforward"
    min_samples: int = 4
    validation_fraction: float = 0.2
    seed: int = 42
    # linear
    alpha: float = 1.0
    # gradient_boosting
    n_estimators: int = 200
    max_depth: int = 3
    boosting_learning_rate: float = 0.1
    # feedforward
    learning_rate: float = 0.001
    hidden_units: Sequence[int] = (128, 64, 32)
    dropout: float = 0.3
    weight_decay: float = 0.0001
    batch_size: int = 32
    max_epochs: int = 100
    patience: int = 10
    accelerator: str = "cpu"


@dataclass(frozen=True)
class KnowledgeTracingConfig:
    """Defaults and data requirements for BKT parameter estimation."""

    p_init: float = 0.3
    p_transit: float = 0.1
    p_slip: float = 0.1
    p_guess: float = 0.05
    decay_rate: float = 0.01
    min_records: int = 10
    per_skill: bool = True


@dataclass(frozen=True)
class OrchestratorConfig:
    """Heuristic constants used when consolidating a prediction."""

    high_risk_threshold: float = 0.4
    medium_risk_threshold: float = 0.7
    regressor_weight: float = 0.7
    mastery_weight: float = 0.3
    # final_score units per unit of mastery; 1.0 for 0-1 targets, 100.0 for percentages
    mastery_score_scale: float = 1.0
    confidence_half_records: int = 10
    recent_window: int = 10
    intervention_threshold: float = 0.7
    forecast_horizon_days: int = 30
    max_r2_regression: float = 0.05


@dataclass(frozen=True)
class OutputsConfig:
    model_dir: Path = Path("reports/models")
    metrics_dir: Path = Path("reports/metrics")


@dataclass(frozen=True)
class DataConfig:
    records_path: Optional[Path] = None
    sessions_path: Optional[Path] = None
    progress_path: Optional[Path] = None
    target_column: str = "final_score"


@dataclass(frozen=True)
class EngineConfig:
    """Top-level configuration handed to the orchestrator at construction time."""

    run_name: str = "trainee_prediction"
    data: DataConfig = field(default_factory=DataConfig)
    preprocessor: PreprocessorConfig = field(default_factory=PreprocessorConfig)
    regressor: RegressorConfig = field(default_factory=RegressorConfig)
    knowledge_tracing: KnowledgeTracingConfig = field(default_factory=KnowledgeTracingConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    outputs: OutputsConfig = field(default_factory=OutputsConfig)

    @classmethod
    def from_dict(cls, cfg: Mapping[str, Any]) -> "EngineConfig":
        cfg = dict(cfg or {})
        data_cfg = dict(cfg.get("data") or {})
        for key in ("records_path", "sessions_path", "progress_path"):
            if data_cfg.get(key) is not None:
                data_cfg[key] = Path(data_cfg[key])
        outputs_cfg = {key: Path(value) for key, value in (cfg.get("outputs") or {}).items()}
        regressor_cfg = dict(cfg.get("regressor") or {})
        if "hidden_units" in regressor_cfg:
            regressor_cfg["hidden_units"] = tuple(regressor_cfg["hidden_units"])
        return cls(
            run_name=cfg.get("run_name", "trainee_prediction"),
            data=DataConfig(**data_cfg),
            preprocessor=PreprocessorConfig(**(cfg.get("preprocessor") or {})),
            regressor=RegressorConfig(**regressor_cfg),
            knowledge_tracing=KnowledgeTracingConfig(**(cfg.get("knowledge_tracing") or {})),
            orchestrator=OrchestratorConfig(**(cfg.get("orchestrator") or {})),
            outputs=OutputsConfig(**outputs_cfg),
        )


def load_engine_config(config_path: Path) -> EngineConfig:
    """Read a YAML config file into an EngineConfig."""

    with open(config_path) as f:
        cfg: Dict[str, Any] = yaml.safe_load(f) or {}
    return EngineConfig.from_dict(cfg)
