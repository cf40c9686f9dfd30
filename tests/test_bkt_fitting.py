# ABOUTME: Tests heuristic BKT parameter estimation from performance records.
# ABOUTME: Covers the low-data fallback and recovery of a synthetic decay rate.

import math
from datetime import datetime, timedelta, timezone

import pytest

from src.common.errors import LowDataWarning
from src.common.schemas import PerformanceRecord
from src.knowledge_tracing.bkt import BKTParameters, DEFAULT_PARAMETERS
from src.knowledge_tracing.fitting import fit_parameters, fit_skill_parameters

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _decaying_records(skill_id="s1", rate=0.02, gaps=(5, 10, 15, 20, 25, 30)):
    records = []
    for idx, gap in enumerate(gaps):
        trainee = f"t{idx}"
        records.append(PerformanceRecord(trainee, skill_id, START, 1.0, 0.0))
        records.append(
            PerformanceRecord(trainee, skill_id, START + timedelta(days=gap), math.exp(-rate * gap), float(gap))
        )
    return records


def test_low_data_returns_defaults_with_warning():
    records = _decaying_records()[:4]
    defaults = BKTParameters(p_init=0.25, decay_rate=0.03)

    fit = fit_parameters(records, defaults=defaults)

    assert fit.used_defaults
    assert fit.parameters == defaults
    assert fit.n_records == 4
    assert len(fit.warnings) == 1
    assert isinstance(fit.warnings[0], LowDataWarning)


def test_empty_history_falls_back_to_defaults():
    fit = fit_parameters([])
    assert fit.used_defaults
    assert fit.parameters == DEFAULT_PARAMETERS


def test_decay_rate_round_trip_within_tolerance():
    fit = fit_parameters(_decaying_records(rate=0.02))

    assert not fit.used_defaults
    assert fit.warnings == ()
    assert fit.parameters.decay_rate == pytest.approx(0.02, rel=0.5)
    assert fit.parameters.p_init == pytest.approx(1.0)
    assert fit.parameters.p_slip == DEFAULT_PARAMETERS.p_slip


def test_no_performance_drop_keeps_default_decay():
    records = []
    for idx in range(6):
        records.append(PerformanceRecord(f"t{idx}", "s1", START, 0.5, 0.0))
        records.append(PerformanceRecord(f"t{idx}", "s1", START + timedelta(days=3), 0.8, 3.0))

    fit = fit_parameters(records)

    assert not fit.used_defaults
    assert fit.parameters.decay_rate == DEFAULT_PARAMETERS.decay_rate
    assert fit.parameters.p_init == pytest.approx(0.5)
    assert any("decay_rate" in str(w) for w in fit.warnings)


def test_pairs_do_not_cross_trainees():
    # Trainee a ends high and trainee b starts low; that is not a drop for either of them.
    records = []
    for idx in range(5):
        records.append(PerformanceRecord("a", "s1", START + timedelta(days=idx), 0.9, float(idx > 0)))
        records.append(PerformanceRecord("b", "s1", START + timedelta(days=idx), 0.2, float(idx > 0)))

    fit = fit_parameters(records)

    assert fit.parameters.decay_rate == DEFAULT_PARAMETERS.decay_rate


def test_fit_skill_parameters_fits_each_skill_independently():
    records = _decaying_records("fast", rate=0.02) + _decaying_records("thin", rate=0.02)[:2]

    fits = fit_skill_parameters(records)

    assert set(fits) == {"fast", "thin"}
    assert not fits["fast"].used_defaults
    assert fits["thin"].used_defaults


def test_p_init_averages_every_trainees_first_attempt_within_skill():
    records = []
    for idx, first in enumerate((0.2, 0.4, 0.6, 0.8, 1.0)):
        for skill_id, opening in (("s1", first), ("s2", 0.2)):
            records.append(PerformanceRecord(f"t{idx}", skill_id, START + timedelta(days=1), 1.0, 1.0))
            records.append(PerformanceRecord(f"t{idx}", skill_id, START, opening, 0.0))

    fit = fit_parameters(records)

    assert fit.parameters.p_init == pytest.approx((0.6 + 0.2) / 2)
