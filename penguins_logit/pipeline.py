from __future__ import annotations

"""
End-to-end runs: clean -> stratified split -> diagnostics -> encode -> fit ->
cross-validate on the training split -> evaluate on the held-out split.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Sequence

import pandas as pd

from .config import PipelineConfig
from .crossval import CrossValidationResult, cross_validate
from .data_prep import (
    CategoricalEncoding,
    choose_reference_levels,
    derive_binary_response,
    fit_encoding,
    load_and_clean,
    stratified_split,
)
from .diagnostics import independence_report, separation_report
from .logreg import LogitFit, fit_binary_logit, fit_multinomial_logit
from .metrics import (
    BinaryConfusion,
    ClassificationRates,
    RocCurve,
    compute_classification_metrics,
    multiclass_confusion,
    multinomial_accuracy,
    no_information_rate,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class BinaryReport:
    fit: LogitFit
    encoding: CategoricalEncoding
    confusion: BinaryConfusion
    rates: ClassificationRates
    roc: RocCurve
    auc: float
    no_information_rate: float
    cross_validation: CrossValidationResult
    chi_squared: pd.DataFrame
    separation: dict
    meta: dict


@dataclass(frozen=True, eq=False)
class MultinomialReport:
    fit: LogitFit
    encoding: CategoricalEncoding
    confusion: pd.DataFrame
    accuracy: float
    no_information_rate: float
    cross_validation: CrossValidationResult
    chi_squared: pd.DataFrame
    separation: dict
    meta: dict


def _prepare(df: pd.DataFrame, config: PipelineConfig):
    clean, meta = load_and_clean(df)
    train, test = stratified_split(clean, config.train_fraction, config.seed, config.response)
    meta["n_train"] = len(train)
    meta["n_test"] = len(test)
    levels = {f: sorted(str(v) for v in clean[f].unique()) for f in config.categorical_features}
    return train, test, levels, meta


def _select_factors(train: pd.DataFrame, config: PipelineConfig):
    """
    Run the independence and separation checks on the training data and
    decide which factors enter the model and with which reference level.
    """
    factors = list(config.categorical_features)
    chi_squared = independence_report(train, factors, config.response)
    separation = separation_report(train, factors, config.response)

    dropped = []
    if config.drop_separated:
        dropped = [f for f in factors if f in separation]
        factors = [f for f in factors if f not in separation]

    overrides = {f: v for f, v in config.reference_levels.items() if f in factors}
    refs, unusable = choose_reference_levels(train, factors, config.response, overrides)
    dropped.extend(unusable)
    factors = [f for f in factors if f not in unusable]
    if dropped:
        logger.info("Excluding factors %s before fitting", dropped)
    return factors, refs, chi_squared, separation, dropped


def _fit_model(
    train: pd.DataFrame,
    factors: Sequence[str],
    refs: dict,
    levels: dict,
    config: PipelineConfig,
    fit_fn: Callable[[pd.DataFrame, pd.Series], LogitFit],
) -> tuple[LogitFit, CategoricalEncoding, bool]:
    encoding = fit_encoding(train, refs, factors, config.numeric_features, levels=levels)
    fit = fit_fn(encoding.transform(train), train[config.response])
    if not fit.non_converged or not (config.retry_without_categorical and factors and config.numeric_features):
        return fit, encoding, False

    logger.warning("Fit is %s; refitting without factors %s", fit.status.value, list(factors))
    encoding = fit_encoding(train, {}, (), config.numeric_features)
    return fit_fn(encoding.transform(train), train[config.response]), encoding, True


def _meta(meta: dict, fit: LogitFit, encoding: CategoricalEncoding, dropped, refit: bool) -> dict:
    out = dict(meta)
    out.update(
        {
            "features": encoding.feature_names,
            "reference_levels": dict(encoding.reference_levels),
            "dropped_factors": list(dropped),
            "refit_without_categorical": refit,
            "status": fit.status.value,
            "separating_terms": list(fit.separating_terms),
        }
    )
    return out


def run_binary(df: pd.DataFrame, config: PipelineConfig | None = None) -> BinaryReport:
    """Positive species vs the rest."""
    config = (config or PipelineConfig()).validate()
    train, test, levels, meta = _prepare(df, config)
    positive = config.positive_species
    train = derive_binary_response(train, positive, config.response, config.other_label)
    test = derive_binary_response(test, positive, config.response, config.other_label)

    def fit_fn(X, y):
        return fit_binary_logit(X, y, positive=positive, max_iter=config.max_iter, tol=config.tol)

    factors, refs, chi_squared, separation, dropped = _select_factors(train, config)
    fit, encoding, refit = _fit_model(train, factors, refs, levels, config, fit_fn)

    def score_fold(part, held_out):
        fold_fit = fit_fn(encoding.transform(part), part[config.response])
        probs = fold_fit.positive_proba(encoding.transform(held_out))
        res = compute_classification_metrics(held_out[config.response], probs, positive, config.threshold)
        return {
            "accuracy": res["rates"].accuracy,
            "sensitivity": res["rates"].sensitivity,
            "specificity": res["rates"].specificity,
            "auc": res["auc"],
            "status": fold_fit.status.value,
        }

    cv = cross_validate(train, score_fold, config.n_folds, config.seed)

    probs = fit.positive_proba(encoding.transform(test))
    res = compute_classification_metrics(test[config.response], probs, positive, config.threshold)
    return BinaryReport(
        fit=fit,
        encoding=encoding,
        confusion=res["confusion"],
        rates=res["rates"],
        roc=res["roc"],
        auc=res["auc"],
        no_information_rate=no_information_rate(test[config.response]),
        cross_validation=cv,
        chi_squared=chi_squared,
        separation=separation,
        meta=_meta(meta, fit, encoding, dropped, refit),
    )


def run_multinomial(df: pd.DataFrame, config: PipelineConfig | None = None) -> MultinomialReport:
    """All species at once, baseline-category logit."""
    config = (config or PipelineConfig()).validate()
    train, test, levels, meta = _prepare(df, config)

    def fit_fn(X, y):
        return fit_multinomial_logit(
            X, y, reference=config.multinomial_reference, max_iter=config.max_iter, tol=config.tol
        )

    factors, refs, chi_squared, separation, dropped = _select_factors(train, config)
    fit, encoding, refit = _fit_model(train, factors, refs, levels, config, fit_fn)

    def score_fold(part, held_out):
        fold_fit = fit_fn(encoding.transform(part), part[config.response])
        proba = fold_fit.predict_proba(encoding.transform(held_out))
        return {
            "accuracy": multinomial_accuracy(proba, fold_fit.classes, held_out[config.response]),
            "status": fold_fit.status.value,
        }

    cv = cross_validate(train, score_fold, config.n_folds, config.seed)

    X_test = encoding.transform(test)
    proba = fit.predict_proba(X_test)
    return MultinomialReport(
        fit=fit,
        encoding=encoding,
        confusion=multiclass_confusion(fit.predict(X_test), test[config.response], fit.classes),
        accuracy=multinomial_accuracy(proba, fit.classes, test[config.response]),
        no_information_rate=no_information_rate(test[config.response]),
        cross_validation=cv,
        chi_squared=chi_squared,
        separation=separation,
        meta=_meta(meta, fit, encoding, dropped, refit),
    )


def run_diagnostics(df: pd.DataFrame, config: PipelineConfig | None = None) -> dict:
    """Chi-squared/separation tables for every selected factor on the cleaned data."""
    config = (config or PipelineConfig()).validate()
    clean, meta = load_and_clean(df)
    binary = derive_binary_response(clean, config.positive_species, config.response, config.other_label)
    factors = list(config.categorical_features)
    return {
        "meta": meta,
        "species": independence_report(clean, factors, config.response),
        "binary": independence_report(binary, factors, config.response),
    }
