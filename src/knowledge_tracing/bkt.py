# ABOUTME: Implements the Bayesian Knowledge Tracing update and exponential skill decay.
# ABOUTME: Pure functions over a frozen parameter set; every result is clamped to [0, 1].

from __future__ import annotations

import json
import math
import os
import tempfile
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from src.common.errors import ensure_probability


def clamp_probability(value: float) -> float:
    return min(1.0, max(0.0, float(value)))


@dataclass(frozen=True)
class BKTParameters:
    """
    Parameters of the decaying BKT model.

    p_init: probability the skill is mastered before the first practice.
    p_transit: probability of learning the skill on a practice opportunity.
    p_slip: probability of an incorrect response despite mastery.
    p_guess: probability of a correct response without mastery.
    decay_rate: per-day exponential erosion rate of unpracticed mastery.
    """

    p_init: float = 0.3
    p_transit: float = 0.1
    p_slip: float = 0.1
    p_guess: float = 0.05
    decay_rate: float = 0.01

    def __post_init__(self) -> None:
        for name in ("p_init", "p_transit", "p_slip", "p_guess"):
            object.__setattr__(self, name, ensure_probability(getattr(self, name), name))
        rate = float(self.decay_rate)
        if not math.isfinite(rate) or rate < 0.0:
            raise ValueError(f"decay_rate must be >= 0, got {self.decay_rate!r}.")
        object.__setattr__(self, "decay_rate", rate)

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Mapping[str, float]) -> "BKTParameters":
        known = {key: float(payload[key]) for key in cls.__dataclass_fields__ if key in payload}
        return cls(**known)


DEFAULT_PARAMETERS = BKTParameters()


def decay(mastery: float, days_since_practice: float, params: BKTParameters) -> float:
    """Exponentially erode mastery over ``days_since_practice`` days without practice."""

    if days_since_practice is None or not math.isfinite(days_since_practice) or days_since_practice < 0:
        raise ValueError(f"days_since_practice must be >= 0, got {days_since_practice!r}.")
    mastery = clamp_probability(mastery)
    if days_since_practice == 0:
        return mastery
    return clamp_probability(mastery * math.exp(-params.decay_rate * days_since_practice))


def _observe_binary(prior: float, correct: bool, params: BKTParameters) -> float:
    if correct:
        numerator = prior * (1.0 - params.p_slip)
        denominator = numerator + (1.0 - prior) * params.p_guess
    else:
        numerator = prior * params.p_slip
        denominator = numerator + (1.0 - prior) * (1.0 - params.p_guess)

    if denominator <= 0.0:
        # Evidence is impossible under the current parameters; keep the prior.
        return prior

    posterior = numerator / denominator
    return clamp_probability(posterior + (1.0 - posterior) * params.p_transit)


def observe(prior_mastery: float, performance: float, params: BKTParameters) -> float:
    """
    Update mastery after one practice outcome.

    Binary outcomes use the slip/guess posterior followed by the learning transit.
    A continuous score in (0, 1) is treated as soft evidence: the correct and
    incorrect updates are mixed with weights ``performance`` and ``1 - performance``.
    """

    prior = clamp_probability(prior_mastery)
    performance = ensure_probability(performance, "performance")
    if performance >= 1.0:
        return _observe_binary(prior, True, params)
    if performance <= 0.0:
        return _observe_binary(prior, False, params)
    after_correct = _observe_binary(prior, True, params)
    after_incorrect = _observe_binary(prior, False, params)
    return clamp_probability(performance * after_correct + (1.0 - performance) * after_incorrect)


def predict_correct(mastery: float, params: BKTParameters) -> float:
    """Probability of a correct response given the current mastery."""

    mastery = clamp_probability(mastery)
    return clamp_probability(mastery * (1.0 - params.p_slip) + (1.0 - mastery) * params.p_guess)


def days_until_threshold(mastery: float, threshold: float, params: BKTParameters) -> Optional[int]:
    """
    Whole days until decayed mastery falls below ``threshold``.

    Returns 0 when mastery is already at or below the threshold and None when it never will
    (zero decay rate or a zero threshold).
    """

    mastery = clamp_probability(mastery)
    threshold = ensure_probability(threshold, "threshold")
    if mastery <= threshold:
        return 0
    if params.decay_rate == 0.0 or threshold == 0.0:
        return None
    return int(math.floor(math.log(mastery / threshold) / params.decay_rate))


def decay_curve(mastery: float, days: int, params: BKTParameters) -> List[Dict[str, float]]:
    """Mastery projected for each day in ``range(days + 1)`` assuming no further practice."""

    return [{"day": day, "mastery": decay(mastery, float(day), params)} for day in range(int(days) + 1)]


def save_parameters(params: Mapping[str, BKTParameters], path: Path) -> None:
    """Atomically replace ``path`` with a JSON object of named parameter sets."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {name: p.to_dict() for name, p in params.items()}
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, sort_keys=True)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def load_parameters(path: Path) -> Dict[str, BKTParameters]:
    with open(path, encoding="utf-8") as f:
        payload = json.load(f)
    return {name: BKTParameters.from_dict(values) for name, values in payload.items()}
