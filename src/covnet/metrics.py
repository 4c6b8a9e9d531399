from typing import Dict

import numpy as np
from scipy.stats import pearsonr, spearmanr
from sklearn.metrics import (
    accuracy_score,
    balanced_accuracy_score,
    log_loss,
    mean_absolute_error,
    mean_squared_error,
    r2_score,
    roc_auc_score,
)


def regression_metrics(y_true: np.ndarray, y_pred: np.ndarray) -> Dict[str, float]:
    y_true = np.asarray(y_true, dtype=np.float64)
    y_pred = np.asarray(y_pred, dtype=np.float64)
    mse_val = float(mean_squared_error(y_true, y_pred))
    rmse_val = float(np.sqrt(mse_val))
    mae_val = float(mean_absolute_error(y_true, y_pred))
    r2_val = float(r2_score(y_true, y_pred)) if y_true.size >= 2 else float("nan")
    pearson = _safe_corr(y_true, y_pred, method="pearson")
    spearman = _safe_corr(y_true, y_pred, method="spearman")
    return {
        "mse": mse_val,
        "rmse": rmse_val,
        "mae": mae_val,
        "r2": r2_val,
        "spearman": spearman,
        "pearson": pearson,
    }


def classification_metrics(y_true: np.ndarray, y_score: np.ndarray, threshold: float = 0.5) -> Dict[str, float]:
    """Metrics for a binary covariate given positive-class probabilities."""
    y_true = np.asarray(y_true).astype(np.int64)
    y_score = np.clip(np.asarray(y_score, dtype=np.float64), 0.0, 1.0)
    y_label = (y_score >= threshold).astype(np.int64)
    one_class = np.unique(y_true).size < 2
    return {
        "accuracy": float(accuracy_score(y_true, y_label)),
        "balanced_accuracy": float(balanced_accuracy_score(y_true, y_label)) if not one_class else float("nan"),
        "roc_auc": float(roc_auc_score(y_true, y_score)) if not one_class else float("nan"),
        "log_loss": float(log_loss(y_true, y_score, labels=[0, 1])),
    }


def evaluate_predictions(family: str, y_true: np.ndarray, y_pred: np.ndarray) -> Dict[str, float]:
    if family == "binomial":
        return classification_metrics(y_true, y_pred)
    return regression_metrics(y_true, y_pred)


def primary_score(family: str, metrics: Dict[str, float]) -> float:
    """Higher-is-better score used to compare fits (r2 or ROC AUC)."""
    key = "roc_auc" if family == "binomial" else "r2"
    value = metrics.get(key, float("nan"))
    return float(value) if value is not None else float("nan")


def _safe_corr(a: np.ndarray, b: np.ndarray, method: str) -> float:
    if a.size < 2 or b.size < 2:
        return float("nan")
    if np.allclose(a, a[0]) or np.allclose(b, b[0]):
        return float("nan")
    if method == "pearson":
        corr, _ = pearsonr(a, b)
    else:
        corr, _ = spearmanr(a, b)
    return float(corr)
