from __future__ import annotations

"""
K-fold cross-validation: deterministic fold assignment and per-fold scoring
reduced to a mean (and spread) across folds.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Mapping

import numpy as np
import pandas as pd
from sklearn.model_selection import KFold

from .constants import DEFAULT_FOLDS, DEFAULT_SEED
from .errors import InvalidFoldCount

logger = logging.getLogger(__name__)

FoldScorer = Callable[[pd.DataFrame, pd.DataFrame], Mapping[str, float]]


@dataclass(frozen=True)
class CrossValidationResult:
    folds: pd.DataFrame
    mean: pd.Series
    std: pd.Series

    @property
    def k(self) -> int:
        return len(self.folds)


def _fold_positions(n: int, k: int, seed: int) -> list[np.ndarray]:
    if isinstance(k, bool) or not isinstance(k, (int, np.integer)) or k < 2 or k > n:
        raise InvalidFoldCount(k, n)
    splitter = KFold(n_splits=int(k), shuffle=True, random_state=seed)
    return [np.sort(held_out) for _, held_out in splitter.split(np.arange(n))]


def k_fold_partition(df: pd.DataFrame, k: int = DEFAULT_FOLDS, seed: int = DEFAULT_SEED) -> list[pd.Index]:
    """
    Shuffle rows with ``seed`` and cut them into k disjoint folds covering
    every row exactly once. Folds are returned as index labels of ``df``.
    """
    return [df.index[pos] for pos in _fold_positions(len(df), k, seed)]


def cross_validate(
    df: pd.DataFrame,
    score_fold: FoldScorer,
    k: int = DEFAULT_FOLDS,
    seed: int = DEFAULT_SEED,
) -> CrossValidationResult:
    """
    For each fold, train on the other k-1 folds and score on the held-out one.
    ``score_fold(train_part, held_out)`` returns a metric mapping; non-numeric
    entries (e.g. a fit status) are kept in ``folds`` but left out of the mean.
    """
    folds = _fold_positions(len(df), k, seed)
    rows = []
    for i, held_out in enumerate(folds):
        mask = np.zeros(len(df), dtype=bool)
        mask[held_out] = True
        train_part, test_part = df[~mask], df[mask]
        scores = dict(score_fold(train_part, test_part))
        scores["fold"] = i
        scores["n_train"] = len(train_part)
        scores["n_test"] = len(test_part)
        rows.append(scores)
        logger.debug("Fold %d/%d: %s", i + 1, len(folds), scores)

    table = pd.DataFrame(rows).set_index("fold")
    numeric = table.drop(columns=["n_train", "n_test"]).select_dtypes(include="number")
    undefined = numeric.isna().sum()
    for name, count in undefined[undefined > 0].items():
        logger.warning("Metric %r undefined in %d of %d folds; mean uses the rest", name, count, len(folds))

    return CrossValidationResult(folds=table, mean=numeric.mean(), std=numeric.std(ddof=1))
