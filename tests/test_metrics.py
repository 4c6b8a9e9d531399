"""Tests for regression/classification metrics and the primary score."""

import numpy as np
import pytest

from covnet.metrics import (
    classification_metrics,
    evaluate_predictions,
    primary_score,
    regression_metrics,
)


class TestRegressionMetrics:
    def test_perfect_fit(self):
        y = np.array([1.0, 2.0, 3.0, 4.0])
        metrics = regression_metrics(y, y)
        assert metrics["mse"] == 0.0
        assert metrics["r2"] == pytest.approx(1.0)
        assert metrics["pearson"] == pytest.approx(1.0)
        assert metrics["spearman"] == pytest.approx(1.0)

    def test_constant_prediction_gives_nan_correlations(self):
        y = np.array([1.0, 2.0, 3.0, 4.0])
        metrics = regression_metrics(y, np.full(4, 2.5))
        assert np.isnan(metrics["pearson"])
        assert np.isnan(metrics["spearman"])
        assert metrics["rmse"] == pytest.approx(np.sqrt(1.25))

    def test_single_sample(self):
        metrics = regression_metrics(np.array([3.0]), np.array([2.0]))
        assert np.isnan(metrics["r2"])
        assert np.isnan(metrics["pearson"])
        assert metrics["mae"] == pytest.approx(1.0)


class TestClassificationMetrics:
    def test_separable(self):
        metrics = classification_metrics(np.array([0, 0, 1, 1]), np.array([0.1, 0.3, 0.7, 0.9]))
        assert metrics["accuracy"] == 1.0
        assert metrics["balanced_accuracy"] == 1.0
        assert metrics["roc_auc"] == 1.0
        assert metrics["log_loss"] > 0.0

    def test_single_class_is_nan(self):
        metrics = classification_metrics(np.array([1, 1, 1]), np.array([0.2, 0.6, 0.9]))
        assert np.isnan(metrics["roc_auc"])
        assert np.isnan(metrics["balanced_accuracy"])
        assert metrics["accuracy"] == pytest.approx(2 / 3)
        assert np.isfinite(metrics["log_loss"])


class TestDispatch:
    def test_evaluate_predictions_family(self):
        assert "roc_auc" in evaluate_predictions("binomial", np.array([0, 1]), np.array([0.2, 0.8]))
        assert "r2" in evaluate_predictions("gaussian", np.array([0.0, 1.0]), np.array([0.1, 0.9]))

    def test_primary_score(self):
        assert primary_score("binomial", {"roc_auc": 0.8, "r2": 0.1}) == pytest.approx(0.8)
        assert primary_score("gaussian", {"roc_auc": 0.8, "r2": 0.1}) == pytest.approx(0.1)
        assert np.isnan(primary_score("gaussian", {}))
