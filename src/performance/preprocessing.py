# ABOUTME: Turns heterogeneous trainee/session records into fixed-length numeric feature vectors.
# ABOUTME: Standardizes numeric fields and one-hot encodes categoricals with an unknown bucket.

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from sklearn.preprocessing import StandardScaler

from src.common.config import PreprocessorConfig
from src.common.errors import (
    DimensionMismatchError,
    InsufficientDataError,
    ensure_finite,
    format_fields,
)

UNKNOWN_CATEGORY = "__unknown__"

Records = Union[pd.DataFrame, Iterable[Mapping[str, Any]]]


@dataclass(frozen=True)
class FittedPreprocessor:
    """Statistics learned by ``fit``; immutable so it can be shared across requests."""

    numeric_fields: Tuple[str, ...]
    means: Tuple[float, ...]
    scales: Tuple[float, ...]
    categorical_fields: Tuple[str, ...]
    vocabularies: Tuple[Tuple[str, ...], ...]
    n_samples: int

    @property
    def n_features(self) -> int:
        return len(self.numeric_fields) + sum(len(vocab) + 1 for vocab in self.vocabularies)

    def feature_names(self) -> List[str]:
        names = list(self.numeric_fields)
        for field_name, vocab in zip(self.categorical_fields, self.vocabularies):
            names.extend(f"{field_name}={value}" for value in vocab)
            names.append(f"{field_name}={UNKNOWN_CATEGORY}")
        return names

    def to_dict(self) -> Dict[str, Any]:
        return {
            "numeric_fields": list(self.numeric_fields),
            "means": list(self.means),
            "scales": list(self.scales),
            "categorical_fields": list(self.categorical_fields),
            "vocabularies": [list(vocab) for vocab in self.vocabularies],
            "n_samples": self.n_samples,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "FittedPreprocessor":
        return cls(
            numeric_fields=tuple(payload["numeric_fields"]),
            means=tuple(float(v) for v in payload["means"]),
            scales=tuple(float(v) for v in payload["scales"]),
            categorical_fields=tuple(payload["categorical_fields"]),
            vocabularies=tuple(tuple(vocab) for vocab in payload["vocabularies"]),
            n_samples=int(payload["n_samples"]),
        )


def fit(records: Records, config: Optional[PreprocessorConfig] = None) -> FittedPreprocessor:
    """Compute per-field mean/scale and per-categorical vocabularies from historical records."""

    config = config or PreprocessorConfig()
    frame = _as_frame(records)
    numeric_fields, categorical_fields = _resolve_fields(frame, config)
    fields = list(numeric_fields) + list(categorical_fields)
    if not fields:
        raise DimensionMismatchError("No feature fields found in the supplied records.")

    distinct = len(frame[fields].astype(str).drop_duplicates())
    if distinct < config.min_distinct_samples:
        raise InsufficientDataError(
            f"Preprocessor needs at least {config.min_distinct_samples} distinct samples, got {distinct}",
            required=config.min_distinct_samples,
            received=distinct,
        )

    means: Tuple[float, ...] = ()
    scales: Tuple[float, ...] = ()
    if numeric_fields:
        values = _numeric_block(frame, numeric_fields)
        # StandardScaler assigns scale 1.0 to zero-variance columns.
        scaler = StandardScaler().fit(values)
        means = tuple(float(v) for v in scaler.mean_)
        scales = tuple(float(v) for v in scaler.scale_)

    vocabularies = []
    for field_name in categorical_fields:
        observed = frame[field_name].dropna().astype(str)
        vocabularies.append(tuple(sorted(set(observed) - {UNKNOWN_CATEGORY})))

    return FittedPreprocessor(
        numeric_fields=tuple(numeric_fields),
        means=means,
        scales=scales,
        categorical_fields=tuple(categorical_fields),
        vocabularies=tuple(vocabularies),
        n_samples=len(frame),
    )


def transform(records: Records, fitted: FittedPreprocessor) -> np.ndarray:
    """Map records to an (n_records, n_features) matrix using the fitted statistics."""

    frame = _as_frame(records)
    if frame.empty:
        return np.zeros((0, fitted.n_features), dtype=np.float64)

    required = set(fitted.numeric_fields) | set(fitted.categorical_fields)
    missing = required - set(frame.columns)
    if missing:
        raise DimensionMismatchError(f"Records are missing fitted fields: {format_fields(missing)}")

    blocks = []
    if fitted.numeric_fields:
        values = _numeric_block(frame, fitted.numeric_fields)
        blocks.append((values - np.asarray(fitted.means)) / np.asarray(fitted.scales))

    for field_name, vocab in zip(fitted.categorical_fields, fitted.vocabularies):
        index = {value: idx for idx, value in enumerate(vocab)}
        unknown_slot = len(vocab)
        block = np.zeros((len(frame), len(vocab) + 1), dtype=np.float64)
        for row_idx, value in enumerate(frame[field_name].tolist()):
            if value is None or (not isinstance(value, str) and pd.isna(value)):
                slot = unknown_slot
            else:
                slot = index.get(str(value), unknown_slot)
            block[row_idx, slot] = 1.0
        blocks.append(block)

    matrix = np.hstack(blocks) if blocks else np.zeros((len(frame), 0), dtype=np.float64)
    ensure_finite(matrix, "transformed features")
    return matrix


def transform_one(record: Mapping[str, Any], fitted: FittedPreprocessor) -> np.ndarray:
    """FeatureVector for a single record."""

    return transform([record], fitted)[0]


def fit_transform(
    records: Records, config: Optional[PreprocessorConfig] = None
) -> Tuple[FittedPreprocessor, np.ndarray]:
    frame = _as_frame(records)
    fitted = fit(frame, config)
    return fitted, transform(frame, fitted)


def _as_frame(records: Records) -> pd.DataFrame:
    if isinstance(records, pd.DataFrame):
        return records.reset_index(drop=True)
    return pd.DataFrame(list(records))


def _resolve_fields(frame: pd.DataFrame, config: PreprocessorConfig) -> Tuple[List[str], List[str]]:
    excluded = set(config.exclude_fields)
    if config.numeric_fields is not None:
        numeric = sorted(config.numeric_fields)
    else:
        numeric = sorted(
            col
            for col in frame.columns
            if col not in excluded
            and (pd.api.types.is_numeric_dtype(frame[col]) or pd.api.types.is_bool_dtype(frame[col]))
        )
    if config.categorical_fields is not None:
        categorical = sorted(config.categorical_fields)
    else:
        categorical = sorted(col for col in frame.columns if col not in excluded and col not in numeric)

    missing = (set(numeric) | set(categorical)) - set(frame.columns)
    if missing:
        raise DimensionMismatchError(f"Configured fields not present in records: {format_fields(missing)}")
    return numeric, categorical


def _numeric_block(frame: pd.DataFrame, fields: Sequence[str]) -> np.ndarray:
    block = frame[list(fields)].apply(pd.to_numeric, errors="coerce").astype(np.float64).to_numpy()
    ensure_finite(block, f"numeric fields ({format_fields(fields)})")
    return block
