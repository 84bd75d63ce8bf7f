import dataclasses

import numpy as np
import pandas as pd
import pytest

from penguins_logit import FitStatus, fit_binary_logit, fit_multinomial_logit
from penguins_logit.constants import INTERCEPT
from penguins_logit.logreg import _newton


def _logistic_data(n, beta0, beta, seed=0):
    rng = np.random.default_rng(seed)
    X = rng.normal(size=(n, len(beta)))
    p = 1.0 / (1.0 + np.exp(-(beta0 + X @ np.asarray(beta))))
    y = (rng.uniform(size=n) < p).astype(int)
    return pd.DataFrame(X, columns=[f"f{i}" for i in range(len(beta))]), y


def _multinomial_data(n, B, seed=0):
    """B has one row [intercept, slopes...] per non-reference class."""
    rng = np.random.default_rng(seed)
    B = np.asarray(B)
    X = rng.normal(size=(n, B.shape[1] - 1))
    eta = np.column_stack([np.zeros(n), np.column_stack([np.ones(n), X]) @ B.T])
    P = np.exp(eta - eta.max(axis=1, keepdims=True))
    P /= P.sum(axis=1, keepdims=True)
    labels = np.array(["a", "b", "c"])[[rng.choice(3, p=row) for row in P]]
    return pd.DataFrame(X, columns=["u", "v"]), labels


def test_binary_recovers_generating_coefficients():
    X, y = _logistic_data(5000, -0.5, [1.5, -1.0], seed=11)
    fit = fit_binary_logit(X, y)
    assert fit.status is FitStatus.CONVERGED
    assert not fit.non_converged
    np.testing.assert_allclose(fit.coef[0], [-0.5, 1.5, -1.0], atol=0.2)
    assert fit.classes == (0, 1)
    assert fit.terms == (INTERCEPT, "f0", "f1")


def test_binary_fit_statistics_are_consistent():
    X, y = _logistic_data(800, 0.3, [0.8, 0.0, -0.6], seed=5)
    fit = fit_binary_logit(X, y)

    assert fit.residual_deviance == pytest.approx(-2 * fit.log_likelihood)
    assert fit.aic == pytest.approx(2 * 4 - 2 * fit.log_likelihood)
    assert fit.null_deviance >= fit.residual_deviance
    p_bar = y.mean()
    null_ll = len(y) * (p_bar * np.log(p_bar) + (1 - p_bar) * np.log(1 - p_bar))
    assert fit.null_deviance == pytest.approx(-2 * null_ll)

    assert (fit.stderr > 0).all()
    np.testing.assert_allclose(fit.z_values, fit.coef / fit.stderr)
    assert ((fit.p_values >= 0) & (fit.p_values <= 1)).all()
    # the pure-noise feature should not look significant, the real ones should
    table = fit.coef_table()
    assert table.loc["f0", "p_value"] < 1e-6
    assert table.loc["f2", "p_value"] < 1e-6
    assert table.loc["f1", "p_value"] > 1e-3
    np.testing.assert_allclose(table["odds_ratio"], np.exp(table["estimate"]))


def test_binary_confidence_intervals_cover_estimate():
    X, y = _logistic_data(600, 0.0, [1.0], seed=2)
    fit = fit_binary_logit(X, y)
    ci = fit.conf_int(0.95)
    est = fit.coef_table()["estimate"]
    assert (ci["lower"] < est).all() and (est < ci["upper"]).all()
    width = (ci["upper"] - ci["lower"]) / 2
    np.testing.assert_allclose(width, 1.959964 * fit.coef_table()["std_error"], rtol=1e-5)
    odds_ci = fit.conf_int(0.95, exponentiate=True)
    np.testing.assert_allclose(odds_ci["lower"], np.exp(ci["lower"]))
    with pytest.raises(ValueError):
        fit.conf_int(1.5)


def test_binary_separable_data_is_flagged():
    rng = np.random.default_rng(3)
    neg = rng.uniform(-0.3, -0.05, size=50)
    pos = rng.uniform(0.05, 0.3, size=50)
    X = pd.DataFrame({"x1": np.r_[neg, pos], "x2": rng.normal(scale=0.1, size=100)})
    y = np.r_[np.zeros(50), np.ones(50)]

    fit = fit_binary_logit(X, y)
    assert fit.non_converged
    assert fit.status is not FitStatus.CONVERGED
    # estimates are still returned
    assert fit.coef.shape == (1, 3)
    assert np.abs(fit.coef[0, 1]) > 10


def _dummy_data(n, seed):
    rng = np.random.default_rng(seed)
    x = rng.normal(size=n)
    d = (rng.uniform(size=n) < 0.2).astype(float)
    return x, d, rng


def test_binary_single_separating_dummy_is_flagged():
    x, d, rng = _dummy_data(300, 6)
    p = 1.0 / (1.0 + np.exp(-0.5 * x))
    y = np.where(d == 1, 1, (rng.uniform(size=300) < p).astype(int))
    fit = fit_binary_logit(pd.DataFrame({"x": x, "d": d}), y)

    # deviance stays well away from zero: only one level is separated
    assert fit.residual_deviance > 1.0
    assert fit.status is FitStatus.QUASI_SEPARATION
    assert fit.non_converged
    assert fit.separating_terms == ("d",)
    assert fit.coef_table().loc["d", "estimate"] > 5


def test_balanced_dummy_is_not_flagged():
    x, d, rng = _dummy_data(400, 13)
    p = 1.0 / (1.0 + np.exp(-(0.5 * x + 0.8 * d)))
    y = (rng.uniform(size=400) < p).astype(int)
    fit = fit_binary_logit(pd.DataFrame({"x": x, "d": d}), y)
    assert fit.status is FitStatus.CONVERGED
    assert fit.separating_terms == ()


def test_multinomial_dummy_missing_a_class_is_flagged():
    x, d, rng = _dummy_data(450, 17)
    labels = rng.choice(["a", "b", "c"], size=450)
    labels[d == 1] = rng.choice(["a", "b"], size=int(d.sum()))
    fit = fit_multinomial_logit(pd.DataFrame({"x": x, "d": d}), labels, reference="a")
    assert fit.status is FitStatus.QUASI_SEPARATION
    assert "d" in fit.separating_terms


def test_newton_without_an_acceptable_step_is_not_converged():
    def deviance(theta):
        return 0.0 if not theta.any() else float("nan")

    def score_and_information(theta):
        return np.ones(2), np.eye(2)

    theta, dev, n_iter, converged = _newton(deviance, score_and_information, 2, 25, 1e-8)
    assert not converged
    assert n_iter == 1
    assert dev == 0.0
    np.testing.assert_array_equal(theta, [0.0, 0.0])


def test_binary_string_labels_and_prediction():
    X, y = _logistic_data(400, 0.0, [2.0], seed=8)
    labels = np.where(y == 1, "Adelie", "other")
    fit = fit_binary_logit(X, labels, positive="Adelie")
    assert fit.classes == ("other", "Adelie")
    assert fit.positive == "Adelie"

    proba = fit.predict_proba(X)
    assert proba.shape == (400, 2)
    np.testing.assert_allclose(proba.sum(axis=1), 1.0)
    np.testing.assert_allclose(fit.positive_proba(X), proba[:, 1])

    pred = fit.predict(X)
    assert set(pred) <= {"Adelie", "other"}
    assert (pred == np.where(proba[:, 1] >= 0.5, "Adelie", "other")).all()
    assert (fit.predict(X, threshold=0.0) == "Adelie").all()


def test_binary_rejects_bad_input():
    X, y = _logistic_data(50, 0.0, [1.0])
    with pytest.raises(ValueError):
        fit_binary_logit(X, np.ones(50))
    with pytest.raises(ValueError):
        fit_binary_logit(X, y[:-1])
    with pytest.raises(ValueError):
        fit_binary_logit(X, y, positive=7)
    bad = X.copy()
    bad.iloc[0, 0] = np.nan
    with pytest.raises(ValueError):
        fit_binary_logit(bad, y)


def test_fit_is_immutable():
    X, y = _logistic_data(200, 0.0, [1.0])
    fit = fit_binary_logit(X, y)
    with pytest.raises(dataclasses.FrozenInstanceError):
        fit.converged = False
    with pytest.raises(ValueError):
        fit.coef[0, 0] = 99.0
    with pytest.raises(ValueError):
        fit.stderr[0, 0] = 0.0


def test_prediction_checks_columns():
    X, y = _logistic_data(200, 0.0, [1.0, 1.0])
    fit = fit_binary_logit(X, y)
    with pytest.raises(ValueError, match="missing"):
        fit.predict_proba(X[["f0"]])
    # column order does not matter for frames
    np.testing.assert_allclose(fit.predict_proba(X[["f1", "f0"]]), fit.predict_proba(X))


def test_multinomial_with_two_classes_matches_binary():
    X, y = _logistic_data(500, 0.4, [1.0, -0.7], seed=4)
    labels = np.where(y == 1, "yes", "no")
    binary = fit_binary_logit(X, labels, positive="yes")
    multi = fit_multinomial_logit(X, labels, reference="no")
    np.testing.assert_allclose(multi.coef, binary.coef, atol=1e-6)
    np.testing.assert_allclose(multi.stderr, binary.stderr, rtol=1e-5)
    assert multi.log_likelihood == pytest.approx(binary.log_likelihood)
    assert multi.null_deviance == pytest.approx(binary.null_deviance)


def test_multinomial_recovers_generating_coefficients():
    B = [[0.5, 1.0, -1.0], [-0.5, -1.0, 0.5]]
    X, labels = _multinomial_data(6000, B, seed=21)
    fit = fit_multinomial_logit(X, labels, reference="a")

    assert fit.status is FitStatus.CONVERGED
    assert fit.classes == ("a", "b", "c")
    assert fit.coef.shape == fit.stderr.shape == (2, 3)
    np.testing.assert_allclose(fit.coef, B, atol=0.2)

    k, p = 3, 2
    assert fit.aic == pytest.approx(2 * (k - 1) * (p + 1) - 2 * fit.log_likelihood)
    assert fit.residual_deviance == pytest.approx(-2 * fit.log_likelihood)
    assert fit.null_deviance > fit.residual_deviance

    table = fit.coef_table()
    assert list(table.index.get_level_values("class").unique()) == ["b", "c"]
    proba = fit.predict_proba(X)
    np.testing.assert_allclose(proba.sum(axis=1), 1.0)
    assert set(fit.predict(X)) <= {"a", "b", "c"}


def test_multinomial_reference_choice_changes_parametrisation_not_fit():
    B = [[0.2, 0.8, 0.0], [0.0, -0.5, 0.9]]
    X, labels = _multinomial_data(1500, B, seed=9)
    fit_a = fit_multinomial_logit(X, labels, reference="a")
    fit_c = fit_multinomial_logit(X, labels, reference="c")
    assert fit_c.classes[0] == "c"
    assert fit_a.log_likelihood == pytest.approx(fit_c.log_likelihood)
    reorder = [fit_c.classes.index(c) for c in fit_a.classes]
    np.testing.assert_allclose(fit_a.predict_proba(X), fit_c.predict_proba(X)[:, reorder], atol=1e-8)


def test_multinomial_separable_data_is_flagged():
    rng = np.random.default_rng(5)
    a = np.column_stack([rng.uniform(-0.6, -0.1, 40), rng.uniform(-0.1, 0.1, 40)])
    b = np.column_stack([rng.uniform(0.1, 0.6, 40), rng.uniform(-0.1, 0.1, 40)])
    c = np.column_stack([rng.uniform(-0.1, 0.1, 40), rng.uniform(0.2, 0.6, 40)])
    X = pd.DataFrame(np.vstack([a, b, c]), columns=["u", "v"])
    labels = np.repeat(["a", "b", "c"], 40)

    fit = fit_multinomial_logit(X, labels)
    assert fit.non_converged
    assert fit.status in (FitStatus.NON_CONVERGED, FitStatus.QUASI_SEPARATION)


def test_multinomial_rejects_unknown_reference():
    X, labels = _multinomial_data(100, [[0, 1, 0], [0, 0, 1]])
    with pytest.raises(ValueError):
        fit_multinomial_logit(X, labels, reference="z")
    with pytest.raises(ValueError):
        fit_multinomial_logit(X, np.repeat("a", 100))
