import warnings
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np
import pandas as pd
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import ElasticNet, ElasticNetCV, LogisticRegression, LogisticRegressionCV
from sklearn.model_selection import KFold, StratifiedKFold
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from .config import SelectionConfig
from .logging_utils import get_logger

_LOG = get_logger(__name__)

# Smallest l1 weight used when deriving lambda_max, so ridge fits still get a finite grid.
_MIN_GRID_L1_RATIO = 1e-3


@dataclass
class GeneModel:
    """Cross-validated penalised linear model of a covariate on gene expression.

    Coefficients are reported on the standardized (z-scored) gene scale so they
    can be compared across genes.
    """

    family: str
    estimator: Pipeline
    feature_names: List[str]
    lambda_min: float
    lambda_1se: float
    lambda_: float
    coefficients: np.ndarray
    intercept: float
    cv_curve: pd.DataFrame
    n_samples: int

    def num_selected(self) -> int:
        return int(np.count_nonzero(self.coefficients))

    def predict(self, features: pd.DataFrame) -> np.ndarray:
        """Predict from a samples x genes frame; probabilities for binomial models."""
        missing = [name for name in self.feature_names if name not in features.columns]
        if missing:
            raise KeyError(
                f"{len(missing)} model genes missing from input: {', '.join(missing[:10])}"
            )
        X = features.loc[:, self.feature_names].to_numpy(dtype=np.float64)
        if self.family == "binomial":
            return self.estimator.predict_proba(X)[:, 1]
        return self.estimator.predict(X)


def lambda_grid(
    X_scaled: np.ndarray,
    y: np.ndarray,
    l1_ratio: float,
    n_lambdas: int,
) -> np.ndarray:
    """Log-spaced decreasing penalty grid starting at the smallest all-zero lambda."""
    n_samples, n_features = X_scaled.shape
    residual = np.asarray(y, dtype=np.float64) - float(np.mean(y))
    weight = max(l1_ratio, _MIN_GRID_L1_RATIO)
    lambda_max = float(np.max(np.abs(X_scaled.T @ residual))) / (n_samples * weight)
    if not np.isfinite(lambda_max) or lambda_max <= 0:
        lambda_max = 1.0
    ratio = 0.01 if n_samples < n_features else 1e-4
    return np.logspace(np.log10(lambda_max), np.log10(lambda_max * ratio), n_lambdas)


def _effective_folds(y: np.ndarray, family: str, k_folds: int) -> int:
    if family == "binomial":
        _, counts = np.unique(y, return_counts=True)
        if counts.size < 2:
            raise ValueError("Binomial covariate has a single class in the fitting samples")
        limit = int(counts.min())
    else:
        limit = int(y.size)
    folds = min(k_folds, limit)
    if folds < 2:
        raise ValueError(f"Not enough samples for cross-validation (k_folds={k_folds}, available={limit})")
    if folds < k_folds:
        _LOG.warning("Reducing CV folds from %d to %d to fit the available samples", k_folds, folds)
    return folds


def _cv_summary(lambdas: np.ndarray, errors: np.ndarray) -> pd.DataFrame:
    """Per-lambda mean CV error and its standard error (errors: n_lambdas x n_folds)."""
    n_folds = errors.shape[1]
    mean = errors.mean(axis=1)
    if n_folds > 1:
        se = errors.std(axis=1, ddof=1) / np.sqrt(n_folds)
    else:
        se = np.zeros_like(mean)
    return pd.DataFrame({"lambda": lambdas, "cv_error": mean, "cv_se": se})


def _lambda_1se(curve: pd.DataFrame) -> float:
    best = int(curve["cv_error"].to_numpy().argmin())
    threshold = curve["cv_error"].iloc[best] + curve["cv_se"].iloc[best]
    within = curve.loc[curve["cv_error"] <= threshold, "lambda"]
    return float(within.max())


def _fit_gaussian(
    X_scaled: np.ndarray,
    y: np.ndarray,
    lambdas: np.ndarray,
    folds: int,
    config: SelectionConfig,
    seed: int,
):
    cv = KFold(n_splits=folds, shuffle=True, random_state=seed)
    search = ElasticNetCV(
        l1_ratio=config.l1_ratio,
        alphas=lambdas,
        cv=cv,
        max_iter=config.max_iter,
        tol=config.tol,
        random_state=seed,
    )
    search.fit(X_scaled, y)
    path_lambdas = np.asarray(search.alphas_, dtype=np.float64).ravel()
    errors = np.asarray(search.mse_path_, dtype=np.float64).reshape(path_lambdas.size, -1)
    curve = _cv_summary(path_lambdas, errors)
    lambda_min = float(search.alpha_)
    lambda_1se = _lambda_1se(curve)

    if config.lambda_rule == "1se" and not np.isclose(lambda_1se, lambda_min):
        final = ElasticNet(
            alpha=lambda_1se,
            l1_ratio=config.l1_ratio,
            max_iter=config.max_iter,
            tol=config.tol,
            random_state=seed,
        )
        final.fit(X_scaled, y)
        return final, lambda_min, lambda_1se, lambda_1se, curve
    return search, lambda_min, lambda_1se, lambda_min, curve


def _fit_binomial(
    X_scaled: np.ndarray,
    y: np.ndarray,
    lambdas: np.ndarray,
    folds: int,
    config: SelectionConfig,
    seed: int,
):
    n_samples = X_scaled.shape[0]
    # sklearn's C multiplies the summed loss; glmnet's lambda scales the mean loss
    Cs = 1.0 / (n_samples * lambdas)
    cv = StratifiedKFold(n_splits=folds, shuffle=True, random_state=seed)
    search = LogisticRegressionCV(
        Cs=Cs,
        cv=cv,
        penalty="elasticnet",
        solver="saga",
        l1_ratios=[config.l1_ratio],
        scoring="neg_log_loss",
        max_iter=config.max_iter,
        tol=config.tol,
        random_state=seed,
        refit=True,
    )
    search.fit(X_scaled, y)

    scores = search.scores_
    if isinstance(scores, dict):
        scores = next(iter(scores.values()))
    path_Cs = np.asarray(search.Cs_, dtype=np.float64).ravel()
    scores = np.asarray(scores, dtype=np.float64)
    scores = scores.reshape(scores.shape[0], path_Cs.size, -1)[:, :, 0]
    path_lambdas = 1.0 / (n_samples * path_Cs)
    curve = _cv_summary(path_lambdas, -scores.T)
    curve = curve.sort_values("lambda", ascending=False).reset_index(drop=True)
    lambda_min = float(1.0 / (n_samples * float(np.ravel(search.C_)[0])))
    lambda_1se = _lambda_1se(curve)

    if config.lambda_rule == "1se" and not np.isclose(lambda_1se, lambda_min):
        final = LogisticRegression(
            C=1.0 / (n_samples * lambda_1se),
            penalty="elasticnet",
            solver="saga",
            l1_ratio=config.l1_ratio,
            max_iter=config.max_iter,
            tol=config.tol,
            random_state=seed,
        )
        final.fit(X_scaled, y)
        return final, lambda_min, lambda_1se, lambda_1se, curve
    return search, lambda_min, lambda_1se, lambda_min, curve


def fit_glmnet(
    X: pd.DataFrame,
    y: np.ndarray,
    family: str,
    config: SelectionConfig,
    seed: int,
) -> GeneModel:
    """Fit a cross-validated elastic-net model of ``y`` on the columns of ``X``.

    Genes are standardized, a glmnet-style lambda grid is built, the CV error
    curve is computed over k folds (stratified for binomial covariates) and
    the model is refit at ``lambda.min`` or ``lambda.1se`` depending on
    ``config.lambda_rule``.
    """
    if family not in {"gaussian", "binomial"}:
        raise ValueError(f"Unsupported family: {family}")
    if X.shape[1] == 0:
        raise ValueError("Cannot fit a model without genes")
    y = np.asarray(y)
    if y.shape[0] != X.shape[0]:
        raise ValueError(f"Covariate length {y.shape[0]} does not match sample count {X.shape[0]}")

    feature_names = [str(name) for name in X.columns]
    scaler = StandardScaler()
    X_scaled = scaler.fit_transform(X.to_numpy(dtype=np.float64))
    lambdas = lambda_grid(X_scaled, y, config.l1_ratio, config.n_lambdas)
    folds = _effective_folds(y, family, config.k_folds)

    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=ConvergenceWarning)
        warnings.filterwarnings("ignore", message=".*'penalty' was deprecated.*", category=FutureWarning)
        if family == "binomial":
            estimator, lambda_min, lambda_1se, chosen, curve = _fit_binomial(
                X_scaled, y.astype(np.int64), lambdas, folds, config, seed
            )
        else:
            estimator, lambda_min, lambda_1se, chosen, curve = _fit_gaussian(
                X_scaled, y.astype(np.float64), lambdas, folds, config, seed
            )

    coefficients = np.asarray(estimator.coef_, dtype=np.float64).ravel()
    intercept = float(np.ravel(estimator.intercept_)[0])
    pipeline = Pipeline([("scaler", scaler), ("regressor", estimator)])

    model = GeneModel(
        family=family,
        estimator=pipeline,
        feature_names=feature_names,
        lambda_min=lambda_min,
        lambda_1se=lambda_1se,
        lambda_=chosen,
        coefficients=coefficients,
        intercept=intercept,
        cv_curve=curve,
        n_samples=int(X.shape[0]),
    )
    _LOG.debug(
        "glmnet fit | family=%s | samples=%d | genes=%d | folds=%d | lambda=%.4g | selected=%d",
        family,
        X.shape[0],
        X.shape[1],
        folds,
        chosen,
        model.num_selected(),
    )
    return model


def extract_model_genes(model: GeneModel) -> pd.DataFrame:
    """Genes with a nonzero coefficient, largest absolute effect first."""
    coef = np.asarray(model.coefficients, dtype=np.float64)
    mask = coef != 0.0
    table = pd.DataFrame(
        {
            "gene": np.asarray(model.feature_names, dtype=object)[mask],
            "coefficient": coef[mask],
        }
    )
    table["abs_coefficient"] = table["coefficient"].abs()
    table = table.sort_values(["abs_coefficient", "gene"], ascending=[False, True], kind="mergesort")
    return table.reset_index(drop=True)


def predict_covariate(model: GeneModel, expression: pd.DataFrame) -> pd.Series:
    """Predict the covariate for every sample of a genes x samples frame."""
    features = expression.T
    preds = model.predict(features)
    return pd.Series(preds, index=features.index.astype(str), name="prediction")


def selected_gene_names(model: GeneModel) -> Sequence[str]:
    return extract_model_genes(model)["gene"].tolist()
