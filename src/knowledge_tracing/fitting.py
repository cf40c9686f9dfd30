# ABOUTME: Estimates BKT parameters from a corpus of performance records with simple heuristics.
# ABOUTME: Falls back to default parameters plus a LowDataWarning when evidence is too thin.

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Dict, Iterable, Optional, Tuple

import numpy as np
import pandas as pd

from src.common.errors import InsufficientDataError, LowDataWarning
from src.common.schemas import PerformanceRecord, records_to_frame

from .bkt import BKTParameters, DEFAULT_PARAMETERS, clamp_probability

logger = logging.getLogger(__name__)

MIN_FIT_RECORDS = 10


@dataclass(frozen=True)
class ParameterFit:
    """Fitted parameters plus any low-data annotations raised while estimating them."""

    parameters: BKTParameters
    n_records: int
    warnings: Tuple[LowDataWarning, ...] = ()
    used_defaults: bool = False


def fit_parameters(
    records: Iterable[PerformanceRecord],
    defaults: Optional[BKTParameters] = None,
    min_records: int = MIN_FIT_RECORDS,
) -> ParameterFit:
    """
    Heuristic (non-EM) estimate of p_init and decay_rate.

    p_init is the mean performance on first attempts, averaged within each skill and then
    across skills. decay_rate is the mean performance drop divided by the mean elapsed days,
    over consecutive attempts of the same trainee and skill where time passed and performance
    actually dropped. p_transit, p_slip and p_guess keep their defaults.
    """

    defaults = defaults or DEFAULT_PARAMETERS
    frame = records_to_frame(records)
    n_records = len(frame)

    try:
        _require_records(n_records, min_records)
    except InsufficientDataError as exc:
        warning = LowDataWarning(f"{exc}; keeping default BKT parameters.")
        logger.warning("%s", warning)
        return ParameterFit(parameters=defaults, n_records=n_records, warnings=(warning,), used_defaults=True)

    frame = frame.sort_values(["trainee_id", "skill_id", "timestamp"], kind="mergesort")
    warnings = []

    p_init = _estimate_p_init(frame)
    decay_rate = _estimate_decay_rate(frame)
    if decay_rate is None:
        warning = LowDataWarning("No consecutive attempts showed a performance drop; keeping default decay_rate.")
        logger.warning("%s", warning)
        warnings.append(warning)
        decay_rate = defaults.decay_rate

    parameters = replace(defaults, p_init=clamp_probability(p_init), decay_rate=float(decay_rate))
    logger.info(
        "Fitted BKT parameters from %d records: p_init=%.3f decay_rate=%.4f",
        n_records,
        parameters.p_init,
        parameters.decay_rate,
    )
    return ParameterFit(parameters=parameters, n_records=n_records, warnings=tuple(warnings))


def fit_skill_parameters(
    records: Iterable[PerformanceRecord],
    defaults: Optional[BKTParameters] = None,
    min_records: int = MIN_FIT_RECORDS,
) -> Dict[str, ParameterFit]:
    """Fit one parameter set per skill; skills with thin data keep the defaults."""

    by_skill: Dict[str, list] = {}
    for record in records:
        by_skill.setdefault(record.skill_id, []).append(record)
    return {
        skill_id: fit_parameters(skill_records, defaults=defaults, min_records=min_records)
        for skill_id, skill_records in sorted(by_skill.items())
    }


def _require_records(n_records: int, min_records: int) -> None:
    if n_records < min_records:
        raise InsufficientDataError(
            f"BKT fitting needs at least {min_records} records, got {n_records}",
            required=min_records,
            received=n_records,
        )


def _estimate_p_init(frame: pd.DataFrame) -> float:
    first_attempts = frame.groupby(["trainee_id", "skill_id"], sort=False).head(1)
    per_skill = first_attempts.groupby("skill_id")["performance"].mean()
    return float(per_skill.mean())


def _estimate_decay_rate(frame: pd.DataFrame) -> Optional[float]:
    grouped = frame.groupby(["trainee_id", "skill_id"], sort=False)
    previous = grouped["performance"].shift(1)
    drops = previous - frame["performance"]
    elapsed = frame["time_since_last_practice_days"]

    mask = previous.notna() & (elapsed > 0) & (drops > 0)
    if not mask.any():
        return None

    avg_drop = float(np.mean(drops[mask]))
    avg_days = float(np.mean(elapsed[mask]))
    if avg_days <= 0 or avg_drop <= 0:
        return None
    return avg_drop / avg_days
