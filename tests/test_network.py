"""Tests for hub genes, hub clusters and the two-layer network."""

import numpy as np
import pandas as pd
import pytest

from conftest import DRIVER_GENES
from covnet.config import SelectionConfig
from covnet.network import (
    CLUSTER_COLUMNS,
    EDGE_COLUMNS,
    build_network,
    cluster_sizes,
    gene_clusters,
    hub_genes,
)
from covnet.selection import glmnet_genes_subset


@pytest.fixture
def cluster_config():
    return SelectionConfig(repetitions=1, k_folds=3, n_lambdas=20, random_state=0)


@pytest.fixture
def correlated_dataset(age_dataset):
    """gene_10 and gene_11 are near copies of gene_0."""
    rng = np.random.default_rng(5)
    expression = age_dataset.expression.copy()
    expression.loc["gene_10"] = expression.loc["gene_0"] + rng.normal(0.0, 0.1, expression.shape[1])
    expression.loc["gene_11"] = expression.loc["gene_0"] * -1.0 + rng.normal(0.0, 0.1, expression.shape[1])
    age_dataset.expression = expression
    return age_dataset


class TestHubGenes:
    def test_ranked_by_absolute_coefficient(self, age_dataset, cluster_config):
        model = glmnet_genes_subset(age_dataset, DRIVER_GENES + ["gene_7"], cluster_config, seed=0)
        hubs = hub_genes(model)
        assert hubs["rank"].tolist() == list(range(1, len(hubs) + 1))
        assert hubs["abs_coefficient"].is_monotonic_decreasing
        assert set(DRIVER_GENES) <= set(hubs["gene"])

    def test_max_hubs(self, age_dataset, cluster_config):
        model = glmnet_genes_subset(age_dataset, DRIVER_GENES, cluster_config, seed=0)
        assert len(hub_genes(model, max_hubs=2)) == 2


class TestGeneClusters:
    def test_cluster_contains_correlated_genes(self, correlated_dataset, cluster_config):
        clusters = gene_clusters(correlated_dataset, ["gene_0"], cluster_config, seed=0)
        assert list(clusters.columns) == CLUSTER_COLUMNS
        assert "gene_0" not in set(clusters["gene"])
        coefficients = clusters.set_index("gene")["coefficient"]
        assert {"gene_10", "gene_11"} & set(coefficients.index)
        assert clusters["gene"].iloc[0] in {"gene_10", "gene_11"}
        if "gene_10" in coefficients.index:
            assert coefficients["gene_10"] > 0
        if "gene_11" in coefficients.index:
            assert coefficients["gene_11"] < 0

    def test_max_cluster_size(self, correlated_dataset, cluster_config):
        clusters = gene_clusters(correlated_dataset, ["gene_0", "gene_1"], cluster_config, seed=0, max_cluster_size=1)
        assert clusters.groupby("hub").size().max() == 1
        assert clusters["rank"].unique().tolist() == [1]

    def test_duplicate_hubs_collapsed(self, correlated_dataset, cluster_config):
        clusters = gene_clusters(correlated_dataset, ["gene_0", "gene_0"], cluster_config, seed=0, max_cluster_size=2)
        assert clusters["hub"].unique().tolist() == ["gene_0"]
        assert len(clusters) <= 2

    def test_unknown_hub(self, age_dataset, cluster_config):
        with pytest.raises(KeyError):
            gene_clusters(age_dataset, ["not_a_gene"], cluster_config, seed=0)

    def test_no_hubs(self, age_dataset, cluster_config):
        clusters = gene_clusters(age_dataset, [], cluster_config, seed=0)
        assert clusters.empty
        assert list(clusters.columns) == CLUSTER_COLUMNS


class TestBuildNetwork:
    def test_edges(self):
        hubs = pd.DataFrame({"gene": ["h1", "h2"], "coefficient": [0.8, -0.3]})
        clusters = pd.DataFrame(
            {"hub": ["h1", "h1", "h2"], "gene": ["a", "b", "c"], "coefficient": [0.5, 0.1, -0.2], "rank": [1, 2, 1]}
        )
        edges = build_network(hubs, clusters, "AGE")
        assert list(edges.columns) == EDGE_COLUMNS
        covariate_edges = edges.loc[edges["kind"] == "covariate-hub"]
        assert covariate_edges["source"].unique().tolist() == ["AGE"]
        assert covariate_edges["target"].tolist() == ["h1", "h2"]
        hub_edges = edges.loc[edges["kind"] == "hub-gene"]
        assert list(zip(hub_edges["source"], hub_edges["target"])) == [("h1", "a"), ("h1", "b"), ("h2", "c")]
        assert hub_edges["weight"].tolist() == [0.5, 0.1, -0.2]

    def test_without_clusters(self):
        hubs = pd.DataFrame({"gene": ["h1"], "coefficient": [1.0]})
        edges = build_network(hubs, pd.DataFrame(columns=CLUSTER_COLUMNS), "SEX")
        assert len(edges) == 1
        assert edges["kind"].iloc[0] == "covariate-hub"

    def test_empty(self):
        edges = build_network(pd.DataFrame(columns=["gene", "coefficient"]), pd.DataFrame(columns=CLUSTER_COLUMNS), "AGE")
        assert edges.empty
        assert list(edges.columns) == EDGE_COLUMNS

    def test_cluster_sizes(self):
        clusters = pd.DataFrame({"hub": ["h2", "h1", "h2"], "gene": ["a", "b", "c"], "coefficient": [1, 2, 3], "rank": [1, 1, 2]})
        sizes = cluster_sizes(clusters)
        assert sizes.to_dict() == {"h2": 2, "h1": 1}
