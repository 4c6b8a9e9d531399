"""Repeated elastic-net gene selection and frequency-based gene reduction."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from .config import SelectionConfig
from .data import CovariateDataset, split_samples
from .logging_utils import get_logger
from .metrics import evaluate_predictions, primary_score
from .models import GeneModel, extract_model_genes, fit_glmnet

_LOG = get_logger(__name__)

FREQUENCY_COLUMNS = ["gene", "count", "frequency", "mean_coefficient", "sd_coefficient"]


@dataclass
class RepetitionResult:
    repetition: int
    seed: int
    genes: pd.DataFrame
    lambda_: float
    train_metrics: Dict[str, float]
    test_metrics: Dict[str, float]
    n_train: int
    n_test: int
    cv_curve: Optional[pd.DataFrame] = field(default=None, repr=False)

    def gene_set(self) -> List[str]:
        return self.genes["gene"].tolist()


def evaluate_model(model: GeneModel, dataset: CovariateDataset, samples: Sequence[str]) -> Dict[str, float]:
    """Score ``model`` on the given samples of ``dataset``."""
    if not samples:
        return {}
    preds = model.predict(dataset.features(samples))
    return evaluate_predictions(dataset.family, dataset.target(samples), preds)


def _run_repetition(dataset: CovariateDataset, config: SelectionConfig, repetition: int) -> RepetitionResult:
    seed = config.random_state + repetition
    train_ids, test_ids = split_samples(dataset.covariate, dataset.family, config.train_fraction, seed)
    model = fit_glmnet(
        dataset.features(train_ids),
        dataset.target(train_ids),
        dataset.family,
        config,
        seed,
    )
    return RepetitionResult(
        repetition=repetition,
        seed=seed,
        genes=extract_model_genes(model),
        lambda_=model.lambda_,
        train_metrics=evaluate_model(model, dataset, train_ids),
        test_metrics=evaluate_model(model, dataset, test_ids),
        n_train=len(train_ids),
        n_test=len(test_ids),
        cv_curve=model.cv_curve,
    )


def run_repetitions(dataset: CovariateDataset, config: SelectionConfig) -> List[RepetitionResult]:
    """Fit ``config.repetitions`` independent models, each on its own random split.

    Repetition ``i`` (1-based) is seeded with ``random_state + i``, so results
    do not depend on the number of workers.
    """
    _LOG.info(
        "Repeated glmnet start | covariate=%s | family=%s | repetitions=%d | n_jobs=%d | genes=%d | samples=%d",
        dataset.name,
        dataset.family,
        config.repetitions,
        config.n_jobs,
        dataset.num_genes(),
        dataset.num_samples(),
    )
    results = Parallel(n_jobs=config.n_jobs)(
        delayed(_run_repetition)(dataset, config, repetition)
        for repetition in range(1, config.repetitions + 1)
    )
    results = sorted(results, key=lambda result: result.repetition)
    for result in results:
        key = "roc_auc" if dataset.family == "binomial" else "r2"
        _LOG.info(
            "Repetition %d | seed=%d | genes=%d | lambda=%.4g | test_%s=%.3f",
            result.repetition,
            result.seed,
            len(result.genes),
            result.lambda_,
            key,
            result.test_metrics.get(key, float("nan")),
        )
    return results


def selection_records(results: Sequence[RepetitionResult]) -> pd.DataFrame:
    """Long table with one row per (gene, repetition) selection."""
    frames = []
    for result in results:
        frame = result.genes.loc[:, ["gene", "coefficient"]].copy()
        frame["repetition"] = result.repetition
        frames.append(frame)
    if not frames:
        return pd.DataFrame(columns=["gene", "coefficient", "repetition"])
    return pd.concat(frames, ignore_index=True)


def repetition_metrics(results: Sequence[RepetitionResult]) -> pd.DataFrame:
    rows = []
    for result in results:
        row: Dict[str, object] = {
            "repetition": result.repetition,
            "seed": result.seed,
            "n_genes": len(result.genes),
            "lambda": result.lambda_,
            "n_train": result.n_train,
            "n_test": result.n_test,
        }
        row.update({f"train_{key}": value for key, value in result.train_metrics.items()})
        row.update({f"test_{key}": value for key, value in result.test_metrics.items()})
        rows.append(row)
    return pd.DataFrame(rows)


def gene_frequency(records: pd.DataFrame, repetitions: int) -> pd.DataFrame:
    """Relative frequency of appearance of each gene across repetitions.

    ``frequency`` is the number of repetitions selecting the gene divided by
    ``repetitions``. Rows are ordered by decreasing frequency, then by
    decreasing absolute mean coefficient.
    """
    if repetitions < 1:
        raise ValueError("repetitions must be >= 1")
    if records.empty:
        return pd.DataFrame(columns=FREQUENCY_COLUMNS)

    unique_records = records.drop_duplicates(subset=["gene", "repetition"])
    observed = unique_records["repetition"].nunique()
    if observed > repetitions:
        raise ValueError(f"Records span {observed} repetitions but repetitions={repetitions}")

    grouped = unique_records.groupby("gene")["coefficient"]
    table = pd.DataFrame(
        {
            "count": grouped.size(),
            "mean_coefficient": grouped.mean(),
            "sd_coefficient": grouped.std(ddof=1),
        }
    )
    table["frequency"] = table["count"] / float(repetitions)
    table = table.reset_index()
    table["_abs_mean"] = table["mean_coefficient"].abs()
    table = table.sort_values(
        ["frequency", "_abs_mean", "gene"],
        ascending=[False, False, True],
        kind="mergesort",
    )
    return table.loc[:, FREQUENCY_COLUMNS].reset_index(drop=True)


def reduce_genes(frequency: pd.DataFrame, mrfa: float, force_mrfa: bool = False) -> List[str]:
    """Genes whose relative frequency of appearance is at least ``mrfa``.

    When no gene reaches ``mrfa`` and ``force_mrfa`` is False, the threshold is
    lowered to the highest frequency observed. With ``force_mrfa`` the empty
    list is returned instead.
    """
    if not (0.0 <= mrfa <= 1.0):
        raise ValueError(f"mrfa must be within [0, 1], got {mrfa}")
    if frequency.empty:
        return []
    freq = frequency["frequency"].to_numpy(dtype=np.float64)
    keep = freq >= mrfa - 1e-12
    if not keep.any() and not force_mrfa:
        fallback = float(freq.max())
        _LOG.warning(
            "No gene reaches mrfa=%.3f; lowering threshold to the highest observed frequency %.3f",
            mrfa,
            fallback,
        )
        keep = freq >= fallback - 1e-12
    return frequency.loc[keep, "gene"].tolist()


def glmnet_genes_subset(
    dataset: CovariateDataset,
    genes: Sequence[str],
    config: SelectionConfig,
    seed: int,
    samples: Optional[Sequence[str]] = None,
) -> GeneModel:
    """Fit the covariate on a subset of genes (optionally a subset of samples)."""
    if not genes:
        raise ValueError("Gene subset is empty")
    return fit_glmnet(
        dataset.features(samples, genes),
        dataset.target(samples),
        dataset.family,
        config,
        seed,
    )


def select_mrfa(
    dataset: CovariateDataset,
    frequency: pd.DataFrame,
    config: SelectionConfig,
    seed: int,
) -> Tuple[float, pd.DataFrame]:
    """Pick the mrfa whose reduced gene set predicts held-out samples best.

    Every candidate is evaluated on the same train/test split. Ties in the
    score go to the larger mrfa, which keeps fewer genes.
    """
    train_ids, test_ids = split_samples(dataset.covariate, dataset.family, config.train_fraction, seed)
    evaluated: Dict[Tuple[str, ...], Dict[str, float]] = {}
    rows = []
    for candidate in sorted(set(config.mrfa_candidates)):
        genes = reduce_genes(frequency, candidate, force_mrfa=True)
        row: Dict[str, object] = {"mrfa": candidate, "n_genes": len(genes)}
        if genes:
            key = tuple(genes)
            if key not in evaluated:
                model = glmnet_genes_subset(dataset, genes, config, seed, samples=train_ids)
                metrics = evaluate_model(model, dataset, test_ids)
                metrics["n_model_genes"] = float(model.num_selected())
                evaluated[key] = metrics
            row.update(evaluated[key])
            row["score"] = primary_score(dataset.family, evaluated[key])
        else:
            row["score"] = float("nan")
        rows.append(row)
        _LOG.info("mrfa candidate %.2f | genes=%d | score=%s", candidate, len(genes), row["score"])

    table = pd.DataFrame(rows)
    scored = table.loc[np.isfinite(table["score"].astype(float))]
    if scored.empty:
        fallback = float(frequency["frequency"].max()) if not frequency.empty else 0.0
        _LOG.warning("No mrfa candidate could be scored; using the highest observed frequency %.3f", fallback)
        return fallback, table
    best = scored.sort_values(["score", "mrfa"], ascending=[False, False], kind="mergesort").iloc[0]
    _LOG.info("Selected mrfa=%.2f | genes=%d | score=%.3f", best["mrfa"], int(best["n_genes"]), best["score"])
    return float(best["mrfa"]), table
