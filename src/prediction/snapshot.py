# ABOUTME: Bundles fitted preprocessor, regressor, and BKT parameters into an immutable model snapshot.
# ABOUTME: Swaps snapshots atomically, gates adoption on validation R2, and persists them to a model directory.

from __future__ import annotations

import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional

import torch

from src.knowledge_tracing.bkt import BKTParameters, save_parameters
from src.knowledge_tracing.tracker import ParameterSet
from src.performance.preprocessing import FittedPreprocessor
from src.performance.regressors import FittedRegressor

logger = logging.getLogger(__name__)

SNAPSHOT_FILENAME = "snapshot.pt"
PARAMETERS_FILENAME = "bkt_parameters.json"


@dataclass(frozen=True)
class ModelSnapshot:
    """Read-only model artifacts served to prediction requests."""

    parameters: ParameterSet = field(default_factory=ParameterSet)
    preprocessor: Optional[FittedPreprocessor] = None
    regressor: Optional[FittedRegressor] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def has_regressor(self) -> bool:
        return self.preprocessor is not None and self.regressor is not None

    @property
    def validation_r2(self) -> Optional[float]:
        if self.regressor is None:
            return None
        return self.regressor.validation_metrics.get("r2")


class SnapshotHolder:
    """
    Holds the live snapshot.

    Readers call ``current()`` and keep the returned reference for the whole request, so a
    concurrent swap never exposes a half-updated model.
    """

    def __init__(self, initial: Optional[ModelSnapshot] = None, max_r2_regression: float = 0.05) -> None:
        self._snapshot = initial or ModelSnapshot()
        self._lock = threading.Lock()
        self.max_r2_regression = max_r2_regression

    def current(self) -> ModelSnapshot:
        return self._snapshot

    def swap(self, snapshot: ModelSnapshot) -> ModelSnapshot:
        with self._lock:
            previous = self._snapshot
            self._snapshot = snapshot
        return previous

    def propose(self, candidate: ModelSnapshot) -> bool:
        """Adopt ``candidate`` unless its validation R2 regresses past the allowed margin."""

        with self._lock:
            accepted = is_acceptable(candidate, self._snapshot, self.max_r2_regression)
            if accepted:
                self._snapshot = candidate
        if accepted:
            logger.info("Adopted model snapshot created at %s (r2=%s).", candidate.created_at, candidate.validation_r2)
        else:
            logger.warning(
                "Rejected model snapshot: r2=%s vs live r2=%s (allowed regression %.3f).",
                candidate.validation_r2,
                self._snapshot.validation_r2,
                self.max_r2_regression,
            )
        return accepted


def is_acceptable(candidate: ModelSnapshot, live: Optional[ModelSnapshot], max_r2_regression: float) -> bool:
    live_r2 = live.validation_r2 if live is not None else None
    if live_r2 is None:
        return True
    candidate_r2 = candidate.validation_r2
    if candidate_r2 is None:
        return False
    return candidate_r2 >= live_r2 - max_r2_regression


def save_snapshot(snapshot: ModelSnapshot, model_dir: Path) -> Path:
    """
    Write the snapshot in one atomic replace of ``snapshot.pt``.

    BKT parameters travel inside the torch payload; ``bkt_parameters.json`` is a readable
    export written afterwards and is never read back.
    """

    model_dir = Path(model_dir)
    model_dir.mkdir(parents=True, exist_ok=True)
    path = model_dir / SNAPSHOT_FILENAME

    payload = {
        "parameters": {name: params.to_dict() for name, params in snapshot.parameters.to_dict().items()},
        "preprocessor": snapshot.preprocessor.to_dict() if snapshot.preprocessor is not None else None,
        "regressor": snapshot.regressor,
        "created_at": snapshot.created_at.isoformat(),
        "metadata": dict(snapshot.metadata),
    }
    fd, tmp_name = tempfile.mkstemp(dir=model_dir, prefix=f".{SNAPSHOT_FILENAME}.", suffix=".tmp")
    os.close(fd)
    try:
        torch.save(payload, tmp_name)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise

    save_parameters(snapshot.parameters.to_dict(), model_dir / PARAMETERS_FILENAME)
    logger.info("Model snapshot saved to %s", path)
    return path


def load_snapshot(model_dir: Path) -> ModelSnapshot:
    model_dir = Path(model_dir)
    path = model_dir / SNAPSHOT_FILENAME
    if not path.exists():
        raise FileNotFoundError(f"Model snapshot not found: {path}")

    payload = torch.load(path, map_location="cpu", weights_only=False)
    parameters = ParameterSet.from_dict(
        {name: BKTParameters.from_dict(values) for name, values in payload["parameters"].items()}
    )
    preprocessor = payload.get("preprocessor")
    snapshot = ModelSnapshot(
        parameters=parameters,
        preprocessor=FittedPreprocessor.from_dict(preprocessor) if preprocessor is not None else None,
        regressor=payload.get("regressor"),
        created_at=datetime.fromisoformat(payload["created_at"]),
        metadata=payload.get("metadata", {}),
    )
    logger.info("Model snapshot loaded from %s", path)
    return snapshot
