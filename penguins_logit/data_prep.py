from __future__ import annotations

"""
Data preparation for the penguin models: loading, completeness filtering,
binary response derivation, dummy encoding with explicit reference levels and
the stratified train/test split.
"""

import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping, Sequence

import numpy as np
import pandas as pd
from sklearn.model_selection import train_test_split

from .constants import (
    ALL_COLUMNS,
    CATEGORICAL_COLUMNS,
    DEFAULT_SEED,
    DEFAULT_TRAIN_FRACTION,
    NUMERIC_COLUMNS,
    OTHER_LABEL,
    RESPONSE,
)
from .diagnostics import detect_quasi_separation
from .errors import InvalidSplitProportion

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Observation:
    """One penguin as handed over by a loader; ``None`` marks a missing field."""

    species: str | None
    island: str | None
    bill_length_mm: float | None
    bill_depth_mm: float | None
    flipper_length_mm: float | None
    body_mass_g: float | None
    sex: str | None
    year: int | None


def _as_level(value):
    """Normalize a categorical cell to a string level (2007.0 -> "2007")."""
    if pd.isna(value):
        return None
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        return str(int(value))
    return str(value)


def _coerce_types(df: pd.DataFrame) -> pd.DataFrame:
    out = df.copy()
    for col in NUMERIC_COLUMNS:
        if col in out.columns:
            out[col] = pd.to_numeric(out[col], errors="coerce").astype(float)
    for col in (RESPONSE, *CATEGORICAL_COLUMNS):
        if col in out.columns:
            out[col] = out[col].map(_as_level).astype(object)
    return out


def records_to_frame(records: Iterable[Observation]) -> pd.DataFrame:
    """Build a dataset frame from typed records, keeping their order."""
    rows = [asdict(r) for r in records]
    return _coerce_types(pd.DataFrame(rows, columns=list(ALL_COLUMNS)))


def load_penguins(csv_path: Path) -> pd.DataFrame:
    """
    Read a CSV in the palmerpenguins layout. Extra columns (e.g. ``rowid``)
    are ignored, missing fields come through as NaN/None.
    """
    df = pd.read_csv(csv_path, na_values=["NA", ""])
    missing = [c for c in ALL_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"{csv_path} lacks required columns: {missing}")
    return _coerce_types(df[list(ALL_COLUMNS)])


def load_and_clean(df: pd.DataFrame, columns: Sequence[str] | None = None):
    """
    Drop every row with a missing field. No imputation happens; the number of
    excluded rows is logged and returned in ``meta``.
    """
    cols = [c for c in (columns or ALL_COLUMNS) if c in df.columns]
    clean = df.dropna(subset=cols)
    dropped = len(df) - len(clean)
    if dropped:
        logger.info("Dropped %d incomplete rows out of %d", dropped, len(df))

    meta = {
        "num_rows": len(df),
        "retained": len(clean),
        "dropped_incomplete": dropped,
    }
    if RESPONSE in clean.columns:
        meta["class_counts"] = clean[RESPONSE].value_counts().sort_index().to_dict()
    return clean.copy(), meta


def derive_binary_response(
    df: pd.DataFrame,
    positive_category: str,
    response: str = RESPONSE,
    other_label: str = OTHER_LABEL,
) -> pd.DataFrame:
    """Collapse the response to {positive_category, other_label}."""
    if positive_category == other_label:
        raise ValueError(f"Positive category may not equal the other label {other_label!r}")
    if not (df[response] == positive_category).any():
        raise ValueError(f"{positive_category!r} does not occur in column {response!r}")

    out = df.copy()
    out[response] = np.where(out[response] == positive_category, positive_category, other_label)
    out[response] = out[response].astype(object)
    return out


@dataclass(frozen=True)
class CategoricalEncoding:
    """
    Treatment (dummy) coding: every factor contributes one indicator per
    non-reference level, numeric columns pass through unchanged. The same
    instance must encode train, test and every CV fold.
    """

    numeric: tuple[str, ...]
    levels: Mapping[str, tuple[str, ...]]
    reference_levels: Mapping[str, str]

    @property
    def categorical(self) -> tuple[str, ...]:
        return tuple(self.levels)

    def indicator_columns(self, factor: str) -> list[str]:
        ref = self.reference_levels[factor]
        return [f"{factor}_{level}" for level in self.levels[factor] if level != ref]

    @property
    def feature_names(self) -> list[str]:
        names = list(self.numeric)
        for factor in self.categorical:
            names.extend(self.indicator_columns(factor))
        return names

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        absent = [c for c in (*self.numeric, *self.categorical) if c not in df.columns]
        if absent:
            raise ValueError(f"Cannot encode, columns missing: {absent}")

        features = {col: df[col].astype(float) for col in self.numeric}
        for factor in self.categorical:
            values = df[factor]
            if values.isna().any():
                raise ValueError(f"Factor {factor!r} has missing values; clean the data first")
            unknown = set(values.unique()) - set(self.levels[factor])
            if unknown:
                raise ValueError(f"Unseen levels for {factor!r}: {sorted(unknown)}")
            ref = self.reference_levels[factor]
            for level in self.levels[factor]:
                if level != ref:
                    features[f"{factor}_{level}"] = (values == level).astype(float)

        return pd.DataFrame(features, index=df.index, columns=self.feature_names)


@dataclass(frozen=True)
class EncodedDataset:
    X: pd.DataFrame
    y: pd.Series | None
    encoding: CategoricalEncoding


def fit_encoding(
    df: pd.DataFrame,
    reference_levels: Mapping[str, str],
    categorical: Sequence[str] = CATEGORICAL_COLUMNS,
    numeric: Sequence[str] = NUMERIC_COLUMNS,
    levels: Mapping[str, Sequence[str]] | None = None,
) -> CategoricalEncoding:
    """
    Record the level set of each factor (sorted, taken from ``df`` unless
    given) together with its caller-chosen reference level.
    """
    level_map = {}
    for factor in categorical:
        if levels is not None and factor in levels:
            observed = tuple(str(v) for v in levels[factor])
        else:
            observed = tuple(sorted(str(v) for v in df[factor].dropna().unique()))
        ref = reference_levels.get(factor)
        if ref is None:
            raise ValueError(f"No reference level given for factor {factor!r}")
        if ref not in observed:
            raise ValueError(f"Reference level {ref!r} not among levels of {factor!r}: {observed}")
        level_map[factor] = observed

    return CategoricalEncoding(
        numeric=tuple(numeric),
        levels=MappingProxyType(level_map),
        reference_levels=MappingProxyType({f: reference_levels[f] for f in categorical}),
    )


def encode_categoricals(
    df: pd.DataFrame,
    reference_levels: Mapping[str, str],
    categorical: Sequence[str] = CATEGORICAL_COLUMNS,
    numeric: Sequence[str] = NUMERIC_COLUMNS,
    response: str = RESPONSE,
    encoding: CategoricalEncoding | None = None,
) -> EncodedDataset:
    """Encode ``df``; pass ``encoding`` to reuse the training set's levels."""
    if encoding is None:
        encoding = fit_encoding(df, reference_levels, categorical, numeric)
    X = encoding.transform(df)
    y = df[response] if response in df.columns else None
    return EncodedDataset(X=X, y=y, encoding=encoding)


def choose_reference_levels(
    df: pd.DataFrame,
    categorical: Sequence[str] = CATEGORICAL_COLUMNS,
    response: str = RESPONSE,
    overrides: Mapping[str, str] | None = None,
) -> tuple[dict[str, str], list[str]]:
    """
    Pick a reference level per factor. Caller overrides win. Otherwise the
    first level (sorted) that does not separate the response is chosen; a
    factor whose every level separates the response is dropped.
    """
    overrides = overrides or {}
    chosen: dict[str, str] = {}
    dropped: list[str] = []
    for factor in categorical:
        if factor in overrides:
            chosen[factor] = str(overrides[factor])
            continue
        flagged = detect_quasi_separation(df[factor], df[response])
        candidates = [
            lvl for lvl in sorted(str(v) for v in df[factor].dropna().unique()) if lvl not in flagged
        ]
        if candidates:
            chosen[factor] = candidates[0]
        else:
            logger.info("Every level of %r separates %r; dropping the factor", factor, response)
            dropped.append(factor)
    return chosen, dropped


def stratified_split(
    df: pd.DataFrame,
    train_fraction: float = DEFAULT_TRAIN_FRACTION,
    seed: int = DEFAULT_SEED,
    response: str = RESPONSE,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Split rows into train/test keeping per-class proportions. Deterministic
    for a fixed seed; both parts keep the input's row order.
    """
    if isinstance(train_fraction, bool) or not isinstance(train_fraction, (int, float)):
        raise InvalidSplitProportion(train_fraction)
    if not 0 < train_fraction < 1:
        raise InvalidSplitProportion(train_fraction)

    positions = np.arange(len(df))
    train_pos, test_pos = train_test_split(
        positions,
        train_size=train_fraction,
        random_state=seed,
        stratify=df[response].to_numpy(),
    )
    train = df.iloc[np.sort(train_pos)]
    test = df.iloc[np.sort(test_pos)]
    logger.debug("Stratified split: %d train / %d test rows", len(train), len(test))
    return train, test
