# ABOUTME: Owns per-(trainee, skill) mastery states and serializes their decay/observe updates.
# ABOUTME: Applies decay up to each new record before observing it, and replays history under a per-key lock.

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import pandas as pd

from src.common.schemas import MasteryState, PerformanceRecord, to_utc

from .bkt import BKTParameters, DEFAULT_PARAMETERS, clamp_probability, decay, observe

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0

StateKey = Tuple[str, str]


@dataclass(frozen=True)
class ParameterSet:
    """Global BKT parameters with optional per-skill overrides."""

    default: BKTParameters = DEFAULT_PARAMETERS
    per_skill: Mapping[str, BKTParameters] = field(default_factory=dict)

    def for_skill(self, skill_id: str) -> BKTParameters:
        return self.per_skill.get(skill_id, self.default)

    def to_dict(self) -> Dict[str, BKTParameters]:
        payload = {"__default__": self.default}
        payload.update(self.per_skill)
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, BKTParameters]) -> "ParameterSet":
        payload = dict(payload)
        default = payload.pop("__default__", DEFAULT_PARAMETERS)
        return cls(default=default, per_skill=payload)


def elapsed_days(start: datetime, end: datetime) -> float:
    """Days between two timestamps; never negative."""

    return max(0.0, (to_utc(end) - to_utc(start)).total_seconds() / SECONDS_PER_DAY)


class MasteryTracker:
    """
    Tracks mastery per (trainee, skill).

    States are immutable snapshots replaced on every update. Updates for the same key are
    serialized with a per-key lock; different keys update independently. Parameters are an
    immutable ParameterSet swapped atomically by retraining.

    ``ingest`` remembers, per key, the ordered records it applied and the ParameterSet it
    applied them under. A replay that only extends that log applies the new tail; anything
    else (a late record, a changed parameter set, a state loaded from a frame) rebuilds the
    key from the supplied history.
    """

    def __init__(self, parameters: Optional[ParameterSet] = None) -> None:
        self._parameters = parameters or ParameterSet()
        self._states: Dict[StateKey, MasteryState] = {}
        self._applied: Dict[StateKey, Tuple[ParameterSet, List[PerformanceRecord]]] = {}
        self._locks: Dict[StateKey, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    @property
    def parameters(self) -> ParameterSet:
        return self._parameters

    def swap_parameters(self, parameters: ParameterSet) -> None:
        self._parameters = parameters

    def _lock_for(self, key: StateKey) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @staticmethod
    def _step(state: Optional[MasteryState], record: PerformanceRecord, params: BKTParameters) -> MasteryState:
        if state is None:
            return MasteryState(
                trainee_id=record.trainee_id,
                skill_id=record.skill_id,
                mastery=observe(params.p_init, record.performance, params),
                last_updated=record.timestamp,
                observation_count=1,
            )
        if record.timestamp < state.last_updated:
            logger.debug(
                "Record for %s/%s predates last update; applying without decay.",
                record.trainee_id,
                record.skill_id,
            )
        prior = decay(state.mastery, elapsed_days(state.last_updated, record.timestamp), params)
        return MasteryState(
            trainee_id=record.trainee_id,
            skill_id=record.skill_id,
            mastery=observe(prior, record.performance, params),
            last_updated=max(record.timestamp, state.last_updated),
            observation_count=state.observation_count + 1,
        )

    def observe(self, record: PerformanceRecord) -> MasteryState:
        """Decay the stored state up to ``record.timestamp`` and then apply the observation."""

        key = (record.trainee_id, record.skill_id)
        parameters = self._parameters
        with self._lock_for(key):
            state = self._states.get(key)
            updated = self._step(state, record, parameters.for_skill(record.skill_id))
            self._states[key] = updated
            applied = self._applied.get(key)
            if state is None:
                self._applied[key] = (parameters, [record])
            elif applied is not None and applied[0] is parameters:
                applied[1].append(record)
            else:
                self._applied.pop(key, None)
            return updated

    def ingest(self, records: Iterable[PerformanceRecord]) -> int:
        """
        Bring every key touched by ``records`` in line with that history.

        Records are ordered by timestamp, ties keeping their input order. Returns the number of
        records applied, so replaying the same history is a no-op and returns 0.
        """

        parameters = self._parameters
        by_key: Dict[StateKey, List[PerformanceRecord]] = {}
        for record in sorted(records, key=lambda r: r.timestamp):
            by_key.setdefault((record.trainee_id, record.skill_id), []).append(record)

        applied = 0
        for key, history in by_key.items():
            with self._lock_for(key):
                applied += self._replay(key, history, parameters)
        return applied

    def _replay(self, key: StateKey, history: List[PerformanceRecord], parameters: ParameterSet) -> int:
        state = self._states.get(key)
        log = self._applied.get(key)
        if state is not None and log is not None and log[0] is parameters and history[: len(log[1])] == log[1]:
            pending = history[len(log[1]):]
        else:
            if state is not None:
                logger.debug("Rebuilding mastery for %s/%s from %d records.", key[0], key[1], len(history))
            state = None
            pending = history

        params = parameters.for_skill(key[1])
        for record in pending:
            state = self._step(state, record, params)
        if state is not None:
            self._states[key] = state
        self._applied[key] = (parameters, list(history))
        return len(pending)

    def stored_state(self, trainee_id: str, skill_id: str) -> Optional[MasteryState]:
        return self._states.get((trainee_id, skill_id))

    def current_state(self, trainee_id: str, skill_id: str, now: Optional[datetime] = None) -> Optional[MasteryState]:
        """The stored state decayed to ``now`` without mutating it."""

        state = self._states.get((trainee_id, skill_id))
        if state is None:
            return None
        now = to_utc(now) if now is not None else datetime.now(timezone.utc)
        params = self._parameters.for_skill(skill_id)
        return MasteryState(
            trainee_id=trainee_id,
            skill_id=skill_id,
            mastery=clamp_probability(decay(state.mastery, elapsed_days(state.last_updated, now), params)),
            last_updated=max(now, state.last_updated),
            observation_count=state.observation_count,
        )

    def current_states(self, trainee_id: str, now: Optional[datetime] = None) -> List[MasteryState]:
        skills = sorted(skill for (tid, skill) in list(self._states) if tid == trainee_id)
        states = [self.current_state(trainee_id, skill, now) for skill in skills]
        return [state for state in states if state is not None]

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {
                "trainee_id": state.trainee_id,
                "skill_id": state.skill_id,
                "mastery": state.mastery,
                "last_updated": state.last_updated,
                "observation_count": state.observation_count,
            }
            for state in self._states.values()
        ]
        return pd.DataFrame(
            rows, columns=["trainee_id", "skill_id", "mastery", "last_updated", "observation_count"]
        )

    @classmethod
    def from_frame(cls, frame: pd.DataFrame, parameters: Optional[ParameterSet] = None) -> "MasteryTracker":
        tracker = cls(parameters)
        for row in frame.itertuples(index=False):
            state = MasteryState(
                trainee_id=str(row.trainee_id),
                skill_id=str(row.skill_id),
                mastery=clamp_probability(row.mastery),
                last_updated=to_utc(row.last_updated),
                observation_count=int(row.observation_count),
            )
            tracker._states[state.key] = state
        return tracker
