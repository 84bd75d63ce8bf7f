from __future__ import annotations

"""
Maximum-likelihood logistic regression: binary (IRLS) and multinomial
(joint Newton-Raphson). Fitting never mutates anything; each call returns a
new read-only LogitFit carrying coefficients, standard errors, deviances and
a convergence status.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Callable

import numpy as np
import pandas as pd
from scipy import stats
from scipy.special import logsumexp

from .constants import DEFAULT_MAX_ITER, DEFAULT_TOL, INTERCEPT
from .diagnostics import detect_quasi_separation

logger = logging.getLogger(__name__)

# Fitted probabilities this close to 0 or 1 count as a boundary fit (R uses the same eps).
BOUNDARY_EPS = 10 * np.finfo(float).eps
# Near-zero residual deviance plus a large coefficient means the MLE does not exist.
SEPARATION_DEVIANCE = 1e-4
SEPARATION_COEF = 10.0
# A large estimate whose standard error dwarfs it is drifting, not estimated.
SEPARATION_SE_RATIO = 100.0
MAX_HALVINGS = 30


class FitStatus(str, enum.Enum):
    CONVERGED = "converged"
    NON_CONVERGED = "non_converged"
    QUASI_SEPARATION = "quasi_separation"


def _as_matrix(X) -> tuple[np.ndarray, tuple[str, ...]]:
    if isinstance(X, pd.DataFrame):
        arr = X.to_numpy(dtype=float)
        names = tuple(str(c) for c in X.columns)
    else:
        arr = np.asarray(X, dtype=float)
        if arr.ndim == 1:
            arr = arr.reshape(-1, 1)
        names = tuple(f"x{i}" for i in range(arr.shape[1]))
    if not np.all(np.isfinite(arr)):
        raise ValueError("Feature matrix contains NaN or infinite values")
    return arr, names


def _add_bias(X: np.ndarray) -> np.ndarray:
    return np.hstack([np.ones((X.shape[0], 1)), X])


def _solve(info: np.ndarray, grad: np.ndarray) -> np.ndarray:
    try:
        delta = np.linalg.solve(info, grad)
        if np.all(np.isfinite(delta)):
            return delta
    except np.linalg.LinAlgError:
        pass
    logger.debug("Singular information matrix, falling back to least squares")
    return np.linalg.lstsq(info, grad, rcond=None)[0]


def _covariance(info: np.ndarray) -> np.ndarray:
    try:
        return np.linalg.inv(info)
    except np.linalg.LinAlgError:
        logger.warning("Singular information matrix at the final iterate; using pseudo-inverse")
        return np.linalg.pinv(info)


def _newton(
    deviance: Callable[[np.ndarray], float],
    score_and_information: Callable[[np.ndarray], tuple[np.ndarray, np.ndarray]],
    n_params: int,
    max_iter: int,
    tol: float,
) -> tuple[np.ndarray, float, int, bool]:
    """
    Newton-Raphson on the log-likelihood starting from zero. Stops when the
    relative deviance change |dev - dev_old| / (|dev| + 0.1) drops below tol.
    Steps that make the deviance worse or non-finite are halved.
    """
    theta = np.zeros(n_params)
    dev = deviance(theta)
    for step in range(1, max_iter + 1):
        grad, info = score_and_information(theta)
        delta = _solve(info, grad)

        dev_new = dev
        for _ in range(MAX_HALVINGS):
            candidate = theta + delta
            dev_new = deviance(candidate)
            if np.isfinite(dev_new) and dev_new - dev <= 1e-10 * (abs(dev) + 0.1):
                theta = candidate
                break
            delta = delta / 2
        else:
            logger.warning(
                "Newton step %d: no improving step after %d halvings", step, MAX_HALVINGS
            )
            return theta, dev, step, False

        done = abs(dev_new - dev) / (abs(dev_new) + 0.1) < tol
        dev = dev_new
        logger.debug("Newton step %d: deviance %.8f", step, dev)
        if done:
            return theta, dev, step, True
    return theta, dev, max_iter, False


def _null_log_likelihood(labels: np.ndarray, classes: tuple) -> float:
    n = len(labels)
    counts = np.array([np.sum(labels == c) for c in classes], dtype=float)
    counts = counts[counts > 0]
    return float(np.sum(counts * np.log(counts / n)))


@dataclass(frozen=True, eq=False)
class LogitFit:
    """
    Result of a logistic fit. ``coef`` and ``stderr`` have one row per
    non-reference class and one column per term (intercept first). For a
    binary fit ``classes`` is (negative, positive).
    """

    kind: str
    classes: tuple
    feature_names: tuple[str, ...]
    coef: np.ndarray
    stderr: np.ndarray
    log_likelihood: float
    null_deviance: float
    n_obs: int
    n_iter: int
    converged: bool
    boundary: bool
    separated: bool
    separating_terms: tuple[str, ...] = ()

    def __post_init__(self):
        for name in ("coef", "stderr"):
            arr = np.array(getattr(self, name), dtype=float, copy=True)
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)
        object.__setattr__(self, "separating_terms", tuple(self.separating_terms))

    @property
    def reference(self):
        return self.classes[0]

    @property
    def positive(self):
        if self.kind != "binary":
            raise ValueError("Only binary fits have a positive class")
        return self.classes[1]

    @property
    def terms(self) -> tuple[str, ...]:
        return (INTERCEPT, *self.feature_names)

    @property
    def n_params(self) -> int:
        return int(self.coef.size)

    @property
    def residual_deviance(self) -> float:
        return -2.0 * self.log_likelihood

    @property
    def aic(self) -> float:
        return 2.0 * self.n_params - 2.0 * self.log_likelihood

    @property
    def status(self) -> FitStatus:
        if self.separated:
            return FitStatus.QUASI_SEPARATION
        if not self.converged or self.boundary:
            return FitStatus.NON_CONVERGED
        return FitStatus.CONVERGED

    @property
    def non_converged(self) -> bool:
        return self.status is not FitStatus.CONVERGED

    @property
    def z_values(self) -> np.ndarray:
        with np.errstate(divide="ignore", invalid="ignore"):
            return self.coef / self.stderr

    @property
    def p_values(self) -> np.ndarray:
        return 2.0 * stats.norm.sf(np.abs(self.z_values))

    def _index(self):
        if self.kind == "binary":
            return pd.Index(self.terms, name="term")
        return pd.MultiIndex.from_product([self.classes[1:], self.terms], names=["class", "term"])

    def coef_table(self) -> pd.DataFrame:
        """Estimates with standard errors, Wald z, p-values and odds ratios."""
        return pd.DataFrame(
            {
                "estimate": self.coef.ravel(),
                "std_error": self.stderr.ravel(),
                "z_value": self.z_values.ravel(),
                "p_value": self.p_values.ravel(),
                "odds_ratio": np.exp(self.coef.ravel()),
            },
            index=self._index(),
        )

    def odds_ratios(self) -> pd.Series:
        return pd.Series(np.exp(self.coef.ravel()), index=self._index(), name="odds_ratio")

    def conf_int(self, level: float = 0.95, exponentiate: bool = False) -> pd.DataFrame:
        """Wald intervals on the log-odds scale, optionally exponentiated to odds ratios."""
        if not 0 < level < 1:
            raise ValueError(f"Confidence level must lie in (0, 1), got {level}")
        z = stats.norm.ppf(0.5 + level / 2)
        lower = self.coef.ravel() - z * self.stderr.ravel()
        upper = self.coef.ravel() + z * self.stderr.ravel()
        if exponentiate:
            lower, upper = np.exp(lower), np.exp(upper)
        return pd.DataFrame({"lower": lower, "upper": upper}, index=self._index())

    def _design(self, X) -> np.ndarray:
        if isinstance(X, pd.DataFrame):
            missing = [c for c in self.feature_names if c not in X.columns]
            if missing:
                raise ValueError(f"Columns missing for prediction: {missing}")
            X = X[list(self.feature_names)]
        arr, _ = _as_matrix(X)
        if arr.shape[1] != len(self.feature_names):
            raise ValueError(
                f"Expected {len(self.feature_names)} features, got {arr.shape[1]}"
            )
        return _add_bias(arr)

    def predict_proba(self, X) -> np.ndarray:
        """Class probabilities, shape (n, K), columns ordered as ``classes``."""
        Xb = self._design(X)
        eta = np.zeros((Xb.shape[0], len(self.classes)))
        eta[:, 1:] = Xb @ self.coef.T
        return np.exp(eta - logsumexp(eta, axis=1, keepdims=True))

    def positive_proba(self, X) -> np.ndarray:
        """P(positive class) for a binary fit."""
        if self.kind != "binary":
            raise ValueError("positive_proba is only defined for binary fits")
        return self.predict_proba(X)[:, 1]

    def predict(self, X, threshold: float = 0.5) -> np.ndarray:
        """Labels: thresholded for binary fits, argmax for multinomial ones."""
        proba = self.predict_proba(X)
        if self.kind == "binary":
            return np.where(proba[:, 1] >= threshold, self.classes[1], self.classes[0]).astype(object)
        return np.asarray(self.classes, dtype=object)[np.argmax(proba, axis=1)]

    def summary(self) -> dict:
        return {
            "n_obs": self.n_obs,
            "log_likelihood": self.log_likelihood,
            "null_deviance": self.null_deviance,
            "residual_deviance": self.residual_deviance,
            "aic": self.aic,
            "n_iter": self.n_iter,
            "status": self.status.value,
            "separating_terms": list(self.separating_terms),
        }


def _separating_indicators(
    X_arr: np.ndarray, names: tuple[str, ...], labels: np.ndarray, classes: tuple
) -> list[str]:
    """0/1 columns where either side of the indicator misses a response class."""
    flagged = []
    for j, name in enumerate(names):
        column = X_arr[:, j]
        if set(np.unique(column).tolist()) != {0.0, 1.0}:
            continue
        if detect_quasi_separation(column, labels, classes=classes):
            flagged.append(name)
    return flagged


def _drifting_terms(coef: np.ndarray, stderr: np.ndarray, terms: tuple[str, ...]) -> list[str]:
    magnitude = np.abs(coef)
    with np.errstate(invalid="ignore"):
        drifting = (magnitude > SEPARATION_COEF) & (stderr > SEPARATION_SE_RATIO * magnitude)
    return [terms[j] for j in np.flatnonzero(drifting.any(axis=0))]


def _finish_fit(
    kind: str,
    classes: tuple,
    names: tuple[str, ...],
    X_arr: np.ndarray,
    theta: np.ndarray,
    info: np.ndarray,
    proba: np.ndarray,
    deviance: float,
    labels: np.ndarray,
    n_iter: int,
    converged: bool,
) -> LogitFit:
    n_rows = len(classes) - 1
    coef = theta.reshape(n_rows, -1)
    cov = _covariance(info)
    stderr = np.sqrt(np.clip(np.diag(cov), 0.0, None)).reshape(n_rows, -1)

    boundary = bool(np.any((proba < BOUNDARY_EPS) | (proba > 1 - BOUNDARY_EPS)))
    separating = _separating_indicators(X_arr, names, labels, classes)
    separating += [
        t for t in _drifting_terms(coef, stderr, (INTERCEPT, *names)) if t not in separating
    ]
    separated = bool(
        (deviance < SEPARATION_DEVIANCE and np.max(np.abs(coef)) > SEPARATION_COEF) or separating
    )

    fit = LogitFit(
        kind=kind,
        classes=classes,
        feature_names=names,
        coef=coef,
        stderr=stderr,
        log_likelihood=-deviance / 2.0,
        null_deviance=-2.0 * _null_log_likelihood(labels, classes),
        n_obs=len(labels),
        n_iter=n_iter,
        converged=converged,
        boundary=boundary,
        separated=separated,
        separating_terms=tuple(separating),
    )
    if fit.non_converged:
        logger.warning(
            "%s logit fit flagged %s (converged=%s, boundary=%s, separated=%s, terms=%s, "
            "iterations=%d); estimates are unreliable",
            kind,
            fit.status.value,
            converged,
            boundary,
            separated,
            list(separating),
            n_iter,
        )
    return fit


def _check_lengths(X_arr: np.ndarray, labels: np.ndarray):
    if X_arr.shape[0] != len(labels):
        raise ValueError(f"X has {X_arr.shape[0]} rows but y has {len(labels)}")
    if pd.isna(labels).any():
        raise ValueError("Response contains missing values")


class BinaryLogitIRLS:
    """
    Binary logistic regression by iteratively reweighted least squares
    (Newton-Raphson on the canonical logit link). The intercept is added
    internally; pass features only.
    """

    def __init__(self, max_iter: int = DEFAULT_MAX_ITER, tol: float = DEFAULT_TOL):
        self.max_iter = max_iter
        self.tol = tol

    @staticmethod
    def _sigmoid(z: np.ndarray) -> np.ndarray:
        z = np.clip(z, -500, 500)
        return 1.0 / (1.0 + np.exp(-z))

    @staticmethod
    def _classes(labels: np.ndarray, positive) -> tuple:
        levels = list(pd.unique(labels))
        if len(levels) != 2:
            raise ValueError(f"Binary fit needs exactly two response classes, got {levels}")
        if positive is None:
            positive = 1 if set(levels) <= {0, 1} else sorted(levels)[-1]
        if positive not in levels:
            raise ValueError(f"Positive class {positive!r} not in response classes {levels}")
        negative = levels[0] if levels[1] == positive else levels[1]
        return negative, positive

    def fit(self, X, y, positive=None) -> LogitFit:
        X_arr, names = _as_matrix(X)
        labels = np.asarray(y, dtype=object)
        _check_lengths(X_arr, labels)
        classes = self._classes(labels, positive)

        y01 = (labels == classes[1]).astype(float)
        Xb = _add_bias(X_arr)

        def deviance(beta):
            eta = Xb @ beta
            return -2.0 * float(np.sum(y01 * eta - np.logaddexp(0.0, eta)))

        def score_and_information(beta):
            mu = self._sigmoid(Xb @ beta)
            w = mu * (1.0 - mu)
            return Xb.T @ (y01 - mu), Xb.T @ (w[:, None] * Xb)

        beta, dev, n_iter, converged = _newton(
            deviance, score_and_information, Xb.shape[1], self.max_iter, self.tol
        )
        mu = self._sigmoid(Xb @ beta)
        _, info = score_and_information(beta)
        return _finish_fit(
            "binary", classes, names, X_arr, beta, info, mu, dev, labels, n_iter, converged
        )


class MultinomialLogitNewton:
    """
    Baseline-category multinomial logit: K-1 equations
    log(P(k) / P(reference)) = b0_k + x . b_k, fitted jointly by
    Newton-Raphson over the whole (K-1)(p+1) parameter block.
    """

    def __init__(self, max_iter: int = DEFAULT_MAX_ITER, tol: float = DEFAULT_TOL):
        self.max_iter = max_iter
        self.tol = tol

    def fit(self, X, y, reference=None) -> LogitFit:
        X_arr, names = _as_matrix(X)
        labels = np.asarray(y, dtype=object)
        _check_lengths(X_arr, labels)

        levels = sorted(pd.unique(labels))
        if len(levels) < 2:
            raise ValueError(f"Multinomial fit needs at least two response classes, got {levels}")
        if reference is None:
            reference = levels[0]
        if reference not in levels:
            raise ValueError(f"Reference class {reference!r} not in response classes {levels}")
        classes = (reference, *[c for c in levels if c != reference])

        Y = np.column_stack([(labels == c).astype(float) for c in classes])
        Xb = _add_bias(X_arr)
        n_eq, d = len(classes) - 1, Xb.shape[1]

        def linear(theta):
            eta = np.zeros((Xb.shape[0], n_eq + 1))
            eta[:, 1:] = Xb @ theta.reshape(n_eq, d).T
            return eta

        def probabilities(theta):
            eta = linear(theta)
            return np.exp(eta - logsumexp(eta, axis=1, keepdims=True))

        def deviance(theta):
            eta = linear(theta)
            return -2.0 * float(np.sum(np.sum(Y * eta, axis=1) - logsumexp(eta, axis=1)))

        def score_and_information(theta):
            P = probabilities(theta)
            grad = ((Y[:, 1:] - P[:, 1:]).T @ Xb).ravel()
            info = np.empty((n_eq * d, n_eq * d))
            for k in range(n_eq):
                for m in range(n_eq):
                    w = P[:, k + 1] * (float(k == m) - P[:, m + 1])
                    info[k * d:(k + 1) * d, m * d:(m + 1) * d] = Xb.T @ (w[:, None] * Xb)
            return grad, info

        theta, dev, n_iter, converged = _newton(
            deviance, score_and_information, n_eq * d, self.max_iter, self.tol
        )
        _, info = score_and_information(theta)
        return _finish_fit(
            "multinomial",
            classes,
            names,
            X_arr,
            theta,
            info,
            probabilities(theta),
            dev,
            labels,
            n_iter,
            converged,
        )


def fit_binary_logit(X, y, positive=None, max_iter: int = DEFAULT_MAX_ITER, tol: float = DEFAULT_TOL) -> LogitFit:
    return BinaryLogitIRLS(max_iter=max_iter, tol=tol).fit(X, y, positive=positive)


def fit_multinomial_logit(X, y, reference=None, max_iter: int = DEFAULT_MAX_ITER, tol: float = DEFAULT_TOL) -> LogitFit:
    return MultinomialLogitNewton(max_iter=max_iter, tol=tol).fit(X, y, reference=reference)
