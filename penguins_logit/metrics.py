from __future__ import annotations

"""
Evaluation helpers: confusion matrices, derived rates, ROC/AUC and
multinomial accuracy. Rates with a zero denominator come back as NaN.
"""

import logging
from dataclasses import asdict, dataclass
from typing import NamedTuple, Sequence

import numpy as np
import pandas as pd
from sklearn import metrics

logger = logging.getLogger(__name__)


class BinaryConfusion(NamedTuple):
    tp: int
    tn: int
    fp: int
    fn: int

    @property
    def total(self) -> int:
        return self.tp + self.tn + self.fp + self.fn

    def as_matrix(self) -> np.ndarray:
        """[[TN, FP], [FN, TP]], rows actual, columns predicted."""
        return np.array([[self.tn, self.fp], [self.fn, self.tp]])


@dataclass(frozen=True)
class ClassificationRates:
    accuracy: float
    error_rate: float
    sensitivity: float
    specificity: float
    fpr: float
    fnr: float

    @property
    def undefined(self) -> tuple[str, ...]:
        return tuple(name for name, value in asdict(self).items() if np.isnan(value))

    def as_dict(self) -> dict[str, float]:
        return asdict(self)


class RocCurve(NamedTuple):
    fpr: np.ndarray
    tpr: np.ndarray
    thresholds: np.ndarray

    def points(self) -> list[tuple[float, float]]:
        return list(zip(self.fpr.tolist(), self.tpr.tolist()))


def _ratio(num: float, den: float) -> float:
    return float(num) / den if den else float("nan")


def confusion_matrix(predicted, actual, positive_label) -> BinaryConfusion:
    """Counts against ``positive_label``; every other label is negative."""
    pred = np.asarray(predicted, dtype=object) == positive_label
    act = np.asarray(actual, dtype=object) == positive_label
    if pred.shape != act.shape:
        raise ValueError(f"Length mismatch: {pred.shape[0]} predictions vs {act.shape[0]} labels")
    tn, fp, fn, tp = metrics.confusion_matrix(act, pred, labels=[False, True]).ravel()
    return BinaryConfusion(tp=int(tp), tn=int(tn), fp=int(fp), fn=int(fn))


def multiclass_confusion(predicted, actual, labels: Sequence) -> pd.DataFrame:
    """K x K table, rows = actual class, columns = predicted class."""
    table = metrics.confusion_matrix(
        np.asarray(actual, dtype=object), np.asarray(predicted, dtype=object), labels=list(labels)
    )
    return pd.DataFrame(
        table,
        index=pd.Index(list(labels), name="actual"),
        columns=pd.Index(list(labels), name="predicted"),
    )


def classification_rates(cm: BinaryConfusion) -> ClassificationRates:
    accuracy = _ratio(cm.tp + cm.tn, cm.total)
    sensitivity = _ratio(cm.tp, cm.tp + cm.fn)
    specificity = _ratio(cm.tn, cm.tn + cm.fp)
    rates = ClassificationRates(
        accuracy=accuracy,
        error_rate=1.0 - accuracy,
        sensitivity=sensitivity,
        specificity=specificity,
        fpr=1.0 - specificity,
        fnr=1.0 - sensitivity,
    )
    if rates.undefined:
        logger.warning("Undefined rates (zero denominator): %s for %s", ", ".join(rates.undefined), cm)
    return rates


def roc_curve(scores, actual, positive_label) -> RocCurve:
    """
    Walk the scores once in descending order. All rows sharing a score are
    consumed before a point is emitted, so ties give one diagonal segment
    instead of an order-dependent staircase. The curve starts at (0, 0).
    """
    s = np.asarray(scores, dtype=float)
    pos = np.asarray(actual, dtype=object) == positive_label
    if s.shape != pos.shape:
        raise ValueError(f"Length mismatch: {s.shape[0]} scores vs {pos.shape[0]} labels")

    order = np.argsort(-s, kind="mergesort")
    s, pos = s[order], pos[order]

    # last index of every run of equal scores
    last_of_run = np.r_[np.flatnonzero(np.diff(s) != 0), len(s) - 1] if len(s) else np.array([], dtype=int)
    tps = np.cumsum(pos)[last_of_run]
    fps = np.cumsum(~pos)[last_of_run]

    n_pos, n_neg = int(pos.sum()), int((~pos).sum())
    if n_pos == 0 or n_neg == 0:
        logger.warning("ROC undefined: %d positives, %d negatives", n_pos, n_neg)
    with np.errstate(divide="ignore", invalid="ignore"):
        tpr = np.r_[0.0, tps / n_pos] if n_pos else np.full(len(tps) + 1, np.nan)
        fpr = np.r_[0.0, fps / n_neg] if n_neg else np.full(len(fps) + 1, np.nan)
    thresholds = np.r_[np.inf, s[last_of_run]]
    return RocCurve(fpr=fpr, tpr=tpr, thresholds=thresholds)


def auc(fpr, tpr) -> float:
    """Trapezoidal area: sum of d(FPR) * (TPR_i + TPR_i+1) / 2."""
    fpr = np.asarray(fpr, dtype=float)
    tpr = np.asarray(tpr, dtype=float)
    if len(fpr) < 2 or np.isnan(fpr).any() or np.isnan(tpr).any():
        return float("nan")
    return float(np.sum(np.diff(fpr) * (tpr[1:] + tpr[:-1]) / 2.0))


def roc_auc(scores, actual, positive_label) -> float:
    curve = roc_curve(scores, actual, positive_label)
    return auc(curve.fpr, curve.tpr)


def accuracy(predicted, actual) -> float:
    pred = np.asarray(predicted, dtype=object)
    act = np.asarray(actual, dtype=object)
    return _ratio(np.sum(pred == act), len(act))


def multinomial_accuracy(proba: np.ndarray, classes: Sequence, actual) -> float:
    """Share of rows whose argmax class matches the actual label."""
    proba = np.asarray(proba, dtype=float)
    predicted = np.asarray(list(classes), dtype=object)[np.argmax(proba, axis=1)]
    return accuracy(predicted, actual)


def no_information_rate(actual) -> float:
    """Accuracy of always predicting the most frequent class."""
    counts = pd.Series(np.asarray(actual, dtype=object)).value_counts()
    return _ratio(counts.iloc[0], counts.sum()) if len(counts) else float("nan")


def compute_classification_metrics(actual, scores, positive_label, threshold: float = 0.5) -> dict:
    """Binary summary for probabilities of ``positive_label`` at a threshold."""
    scores = np.asarray(scores, dtype=float)
    hits = scores >= threshold
    actual_arr = np.asarray(actual, dtype=object)
    predicted = np.where(hits, positive_label, None).astype(object)
    cm = confusion_matrix(predicted, actual_arr, positive_label)
    curve = roc_curve(scores, actual_arr, positive_label)
    return {
        "confusion": cm,
        "rates": classification_rates(cm),
        "roc": curve,
        "auc": auc(curve.fpr, curve.tpr),
    }


def summarize_coefficients(coef: pd.Series, top_k: int = 5) -> dict[str, pd.Series]:
    coef_sorted = coef.sort_values()
    return {
        "positive": coef_sorted[coef_sorted > 0].tail(top_k)[::-1],
        "negative": coef_sorted[coef_sorted < 0].head(top_k),
    }
