from __future__ import annotations

"""
Pre-fit diagnostics: chi-squared independence between factors and the
response, and detection of levels that (quasi-)separate the response.
"""

import logging
from typing import NamedTuple, Sequence

import numpy as np
import pandas as pd
from scipy import stats

logger = logging.getLogger(__name__)


class ChiSquaredResult(NamedTuple):
    statistic: float
    dof: int
    p_value: float
    observed: pd.DataFrame
    expected: pd.DataFrame


def chi_squared_independence(categorical_a, categorical_b) -> ChiSquaredResult:
    """
    Pearson's chi-squared test on the contingency table of two factors,
    without continuity correction.
    """
    a = pd.Series(np.asarray(categorical_a, dtype=object), name="a")
    b = pd.Series(np.asarray(categorical_b, dtype=object), name="b")
    if len(a) != len(b):
        raise ValueError(f"Length mismatch: {len(a)} vs {len(b)}")
    if len(a) == 0:
        raise ValueError("Cannot build a contingency table from empty input")

    observed = pd.crosstab(a, b)
    counts = observed.to_numpy(dtype=float)
    total = counts.sum()
    expected_arr = np.outer(counts.sum(axis=1), counts.sum(axis=0)) / total

    statistic = float(((counts - expected_arr) ** 2 / expected_arr).sum())
    dof = (counts.shape[0] - 1) * (counts.shape[1] - 1)
    p_value = float(stats.chi2.sf(statistic, dof)) if dof > 0 else float("nan")

    expected = pd.DataFrame(expected_arr, index=observed.index, columns=observed.columns)
    return ChiSquaredResult(statistic, dof, p_value, observed, expected)


def detect_quasi_separation(categorical, response, classes=None) -> set:
    """
    Levels whose rows all share one response value. When ``classes`` is
    given, a level is also flagged if its rows miss any of those classes,
    which is what drives a multinomial coefficient to infinity.
    """
    frame = pd.DataFrame(
        {
            "level": np.asarray(categorical, dtype=object),
            "response": np.asarray(response, dtype=object),
        }
    ).dropna()
    distinct = frame.groupby("level")["response"].nunique()
    needed = 2 if classes is None else len(classes)
    return set(distinct.index[distinct < needed])


def separation_report(
    df: pd.DataFrame, categorical: Sequence[str], response: str
) -> dict[str, set]:
    """Separating levels per factor; factors without any are omitted."""
    report = {}
    for factor in categorical:
        flagged = detect_quasi_separation(df[factor], df[response])
        if flagged:
            logger.warning(
                "Factor %r: levels %s separate %r", factor, sorted(flagged), response
            )
            report[factor] = flagged
    return report


def independence_report(
    df: pd.DataFrame, categorical: Sequence[str], response: str
) -> pd.DataFrame:
    """One chi-squared row per factor, tested against the response."""
    rows = []
    for factor in categorical:
        res = chi_squared_independence(df[factor], df[response])
        rows.append(
            {
                "factor": factor,
                "statistic": res.statistic,
                "dof": res.dof,
                "p_value": res.p_value,
                "separated_levels": sorted(detect_quasi_separation(df[factor], df[response])),
            }
        )
    columns = ["factor", "statistic", "dof", "p_value", "separated_levels"]
    return pd.DataFrame(rows, columns=columns).set_index("factor")
