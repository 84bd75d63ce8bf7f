from __future__ import annotations

"""
CLI entrypoint for the penguin species models. Pick experiment via
--experiment: binary (one species vs the rest), multinomial (all species),
diagnostics (chi-squared / separation tables only).
"""

import argparse
import logging
from pathlib import Path

import pandas as pd

from penguins_logit import (
    CATEGORICAL_COLUMNS,
    NUMERIC_COLUMNS,
    PipelineConfig,
    load_penguins,
    run_binary,
    run_diagnostics,
    run_multinomial,
)
from penguins_logit.constants import INTERCEPT
from penguins_logit.metrics import summarize_coefficients


def describe_data(meta: dict):
    """Print dataset size after completeness filtering and the split sizes."""
    print(
        f"Rows: {meta['num_rows']}, retained: {meta['retained']}, "
        f"dropped incomplete: {meta['dropped_incomplete']}"
    )
    if "n_train" in meta:
        print(f"Train size: {meta['n_train']}, Test size: {meta['n_test']}")
    if meta.get("dropped_factors"):
        print(f"Excluded factors (separation): {meta['dropped_factors']}")
    if meta.get("refit_without_categorical"):
        print("First fit did not converge; refitted on numeric features only.")


def _fmt(value: float) -> str:
    return "undefined" if pd.isna(value) else f"{value:.3f}"


def print_fit(fit):
    summary = fit.summary()
    print(
        f"Fit status: {summary['status']} after {summary['n_iter']} iterations | "
        f"logLik {summary['log_likelihood']:.3f} | null dev {summary['null_deviance']:.3f} | "
        f"resid dev {summary['residual_deviance']:.3f} | AIC {summary['aic']:.3f}"
    )
    if summary["separating_terms"]:
        print(f"Separating terms (estimates diverge): {summary['separating_terms']}")
    with pd.option_context("display.width", 120, "display.float_format", "{:.4g}".format):
        print(fit.coef_table())


def print_cv(label: str, cv):
    parts = [f"{name} {_fmt(value)} (sd {_fmt(cv.std[name])})" for name, value in cv.mean.items()]
    print(f"[{label}] {cv.k}-fold CV: " + " | ".join(parts))
    statuses = cv.folds["status"].value_counts().to_dict()
    print(f"    Fold fit status: {statuses}")


def run_binary_experiment(df: pd.DataFrame, config: PipelineConfig):
    report = run_binary(df, config)
    describe_data(report.meta)
    print_fit(report.fit)

    coef = pd.Series(report.fit.coef[0], index=report.fit.terms).drop(INTERCEPT)
    top = summarize_coefficients(coef, top_k=3)
    print(f"\nLargest log-odds effects toward {config.positive_species}:")
    print(top["positive"])
    print(f"Largest log-odds effects away from {config.positive_species}:")
    print(top["negative"])

    rates = report.rates
    print(
        f"\n[Test] Acc {_fmt(rates.accuracy)} (NIR {_fmt(report.no_information_rate)}) | "
        f"Sens {_fmt(rates.sensitivity)} | Spec {_fmt(rates.specificity)} | "
        f"FPR {_fmt(rates.fpr)} | FNR {_fmt(rates.fnr)} | AUC {_fmt(report.auc)}"
    )
    print(f"    Confusion matrix [[TN, FP], [FN, TP]]: {report.confusion.as_matrix().tolist()}")
    if rates.undefined:
        print(f"    Undefined rates: {', '.join(rates.undefined)}")
    print_cv("Train", report.cross_validation)


def run_multinomial_experiment(df: pd.DataFrame, config: PipelineConfig):
    report = run_multinomial(df, config)
    describe_data(report.meta)
    print(f"Reference species: {report.fit.reference}")
    print_fit(report.fit)
    print(
        f"\n[Test] Accuracy {_fmt(report.accuracy)} (NIR {_fmt(report.no_information_rate)})"
    )
    print(report.confusion)
    print_cv("Train", report.cross_validation)


def run_diagnostics_experiment(df: pd.DataFrame, config: PipelineConfig):
    tables = run_diagnostics(df, config)
    describe_data(tables["meta"])
    print("\nFactor vs species:")
    print(tables["species"])
    print(f"\nFactor vs {config.positive_species}/{config.other_label}:")
    print(tables["binary"])


def _parse_reference(items: list[str]) -> dict[str, str]:
    refs = {}
    for item in items:
        factor, sep, level = item.partition("=")
        if not sep or not factor or not level:
            raise argparse.ArgumentTypeError(f"Expected FACTOR=LEVEL, got {item!r}")
        refs[factor] = level
    return refs


def build_arg_parser():
    """CLI parser with knobs for data, features, split, folds and fitter."""
    parser = argparse.ArgumentParser(
        description="Classify Palmer penguin species with logistic regression."
    )
    parser.add_argument("--csv-path", type=Path, default=Path("data/penguins.csv"))
    parser.add_argument(
        "--experiment",
        choices=["binary", "multinomial", "diagnostics"],
        default="binary",
        help="binary: positive species vs rest; multinomial: all species; diagnostics: tables only.",
    )
    parser.add_argument(
        "--features",
        type=str,
        default=",".join(NUMERIC_COLUMNS + CATEGORICAL_COLUMNS),
        help="Comma-separated feature columns.",
    )
    parser.add_argument(
        "--reference",
        action="append",
        default=[],
        metavar="FACTOR=LEVEL",
        help="Pin the reference level of a factor (repeatable).",
    )
    parser.add_argument("--positive-species", type=str, default="Adelie")
    parser.add_argument("--multinomial-reference", type=str, default="Adelie")
    parser.add_argument("--train-fraction", type=float, default=0.8)
    parser.add_argument("--folds", type=int, default=10, help="Number of CV folds on the training split.")
    parser.add_argument("--threshold", type=float, default=0.5, help="Probability cut-off for the binary model.")
    parser.add_argument("--max-iter", type=int, default=25, help="Max Newton/IRLS iterations.")
    parser.add_argument("--tol", type=float, default=1e-8, help="Relative deviance tolerance.")
    parser.add_argument(
        "--keep-separated",
        action="store_true",
        help="Keep factors with separating levels instead of excluding them.",
    )
    parser.add_argument(
        "--no-retry",
        action="store_true",
        help="Do not refit on numeric features when the first fit fails to converge.",
    )
    parser.add_argument(
        "--random-state",
        type=int,
        default=42,
        help="Random seed for the split and the fold assignment.",
    )
    parser.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser


def config_from_args(args: argparse.Namespace) -> PipelineConfig:
    features = tuple(f.strip() for f in args.features.split(",") if f.strip())
    return PipelineConfig(
        features=features,
        reference_levels=_parse_reference(args.reference),
        positive_species=args.positive_species,
        multinomial_reference=args.multinomial_reference,
        train_fraction=args.train_fraction,
        n_folds=args.folds,
        seed=args.random_state,
        threshold=args.threshold,
        max_iter=args.max_iter,
        tol=args.tol,
        drop_separated=not args.keep_separated,
        retry_without_categorical=not args.no_retry,
    ).validate()


def main(args: argparse.Namespace | None = None):
    """Dispatch to the selected experiment."""
    args = args or build_arg_parser().parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = config_from_args(args)
    df = load_penguins(args.csv_path)

    if args.experiment == "binary":
        run_binary_experiment(df, config)
    elif args.experiment == "multinomial":
        run_multinomial_experiment(df, config)
    else:
        run_diagnostics_experiment(df, config)


if __name__ == "__main__":
    main()
