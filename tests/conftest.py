"""
Shared fixtures: synthetic expression data with a known set of covariate-driving genes.
"""

import logging

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from covnet.config import NetworkConfig, PathsConfig, PipelineConfig, SelectionConfig
from covnet.data import CovariateDataset

DRIVER_GENES = ["gene_0", "gene_1", "gene_2"]


def generate_expression(n_genes: int = 40, n_samples: int = 90, seed: int = 7) -> pd.DataFrame:
    """Standard-normal genes x samples matrix with gene_i / sample_j labels."""
    rng = np.random.default_rng(seed)
    values = rng.normal(0.0, 1.0, size=(n_genes, n_samples))
    return pd.DataFrame(
        values,
        index=[f"gene_{i}" for i in range(n_genes)],
        columns=[f"sample_{j}" for j in range(n_samples)],
    )


def make_age(expression: pd.DataFrame, seed: int = 11) -> pd.Series:
    """Age driven by gene_0 (+), gene_1 (-) and gene_2 (+)."""
    rng = np.random.default_rng(seed)
    age = (
        50.0
        + 8.0 * expression.loc["gene_0"]
        - 6.0 * expression.loc["gene_1"]
        + 5.0 * expression.loc["gene_2"]
        + rng.normal(0.0, 1.5, size=expression.shape[1])
    )
    age.name = "AGE"
    return age


def make_sex(expression: pd.DataFrame, seed: int = 13) -> pd.Series:
    """Binary covariate whose log-odds depend on gene_0 and gene_1."""
    rng = np.random.default_rng(seed)
    logits = 4.0 * expression.loc["gene_0"] - 4.0 * expression.loc["gene_1"]
    prob = 1.0 / (1.0 + np.exp(-logits))
    sex = pd.Series((rng.uniform(size=prob.size) < prob).astype(np.int64), index=expression.columns, name="SEX")
    return sex


@pytest.fixture
def expression() -> pd.DataFrame:
    return generate_expression()


@pytest.fixture
def age_dataset(expression) -> CovariateDataset:
    return CovariateDataset(expression=expression, covariate=make_age(expression), family="gaussian", name="AGE")


@pytest.fixture
def sex_dataset(expression) -> CovariateDataset:
    return CovariateDataset(
        expression=expression,
        covariate=make_sex(expression),
        family="binomial",
        name="SEX",
        levels=[0, 1],
    )


@pytest.fixture
def fast_selection() -> SelectionConfig:
    return SelectionConfig(repetitions=4, k_folds=3, n_lambdas=30, n_jobs=1, random_state=3)


@pytest.fixture
def project_dir(tmp_path, expression):
    """Project layout with data/expression.tsv and data/covariates.csv."""
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    expression.to_csv(data_dir / "expression.tsv", sep="\t")
    covariates = pd.DataFrame(
        {
            "SAMPID": expression.columns,
            "AGE": make_age(expression).to_numpy(),
            "SEX": make_sex(expression).map({0: 1, 1: 2}).to_numpy(),
        }
    )
    covariates.to_csv(data_dir / "covariates.csv", index=False)
    return tmp_path


@pytest.fixture
def pipeline_config(project_dir, fast_selection) -> PipelineConfig:
    fast_selection.mrfa_candidates = [0.25, 0.5, 0.75, 1.0]
    return PipelineConfig(
        paths=PathsConfig.from_base(project_dir),
        covariate="AGE",
        selection=fast_selection,
        network=NetworkConfig(max_cluster_size=5, max_hubs=3, k_folds=3),
        run_name="test_run",
    )


@pytest.fixture(autouse=True)
def _reset_root_logging():
    """configure_logging installs root handlers; drop them after each test."""
    yield
    root = logging.getLogger()
    for handler in [h for h in root.handlers if type(h) in (logging.StreamHandler, logging.FileHandler)]:
        root.removeHandler(handler)
        handler.close()
