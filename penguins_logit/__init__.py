"""
Logistic-regression models for classifying Palmer penguin species.

This package contains data preparation helpers, separation diagnostics, binary
and multinomial maximum-likelihood fitters, cross-validation and evaluation
utilities used by main.py.
"""

from .config import PipelineConfig
from .constants import CATEGORICAL_COLUMNS, NUMERIC_COLUMNS, RESPONSE, SPECIES
from .crossval import cross_validate, k_fold_partition
from .data_prep import (
    Observation,
    choose_reference_levels,
    derive_binary_response,
    encode_categoricals,
    fit_encoding,
    load_and_clean,
    load_penguins,
    records_to_frame,
    stratified_split,
)
from .diagnostics import chi_squared_independence, detect_quasi_separation
from .errors import InvalidFoldCount, InvalidSplitProportion, PipelineConfigError
from .logreg import FitStatus, LogitFit, fit_binary_logit, fit_multinomial_logit
from .metrics import auc, classification_rates, confusion_matrix, roc_auc, roc_curve
from .pipeline import run_binary, run_diagnostics, run_multinomial

__all__ = [
    "CATEGORICAL_COLUMNS",
    "NUMERIC_COLUMNS",
    "RESPONSE",
    "SPECIES",
    "PipelineConfig",
    "Observation",
    "load_penguins",
    "records_to_frame",
    "load_and_clean",
    "derive_binary_response",
    "fit_encoding",
    "encode_categoricals",
    "choose_reference_levels",
    "stratified_split",
    "chi_squared_independence",
    "detect_quasi_separation",
    "FitStatus",
    "LogitFit",
    "fit_binary_logit",
    "fit_multinomial_logit",
    "k_fold_partition",
    "cross_validate",
    "confusion_matrix",
    "classification_rates",
    "roc_curve",
    "auc",
    "roc_auc",
    "run_binary",
    "run_multinomial",
    "run_diagnostics",
    "PipelineConfigError",
    "InvalidSplitProportion",
    "InvalidFoldCount",
]
