"""Tests for repeated selection, gene frequency and mrfa reduction."""

import numpy as np
import pandas as pd
import pytest

from conftest import DRIVER_GENES
from covnet.selection import (
    FREQUENCY_COLUMNS,
    evaluate_model,
    gene_frequency,
    glmnet_genes_subset,
    reduce_genes,
    repetition_metrics,
    run_repetitions,
    select_mrfa,
    selection_records,
)


def _records():
    return pd.DataFrame(
        {
            "gene": ["a", "b", "c", "a", "b", "a", "d"],
            "coefficient": [1.0, -0.5, 0.2, 2.0, -0.7, 1.5, 0.1],
            "repetition": [1, 1, 1, 2, 2, 3, 4],
        }
    )


class TestGeneFrequency:
    def test_counts_and_frequency(self):
        table = gene_frequency(_records(), repetitions=4)
        assert list(table.columns) == FREQUENCY_COLUMNS
        row = table.set_index("gene")
        assert row.loc["a", "count"] == 3
        assert row.loc["a", "frequency"] == pytest.approx(0.75)
        assert row.loc["b", "frequency"] == pytest.approx(0.5)
        assert row.loc["d", "frequency"] == pytest.approx(0.25)
        assert row.loc["a", "mean_coefficient"] == pytest.approx(1.5)

    def test_ordering(self):
        table = gene_frequency(_records(), repetitions=4)
        assert table["gene"].tolist() == ["a", "b", "c", "d"]

    def test_frequency_bounds(self):
        table = gene_frequency(_records(), repetitions=4)
        assert table["frequency"].between(0.0, 1.0).all()

    def test_empty_records(self):
        table = gene_frequency(pd.DataFrame(columns=["gene", "coefficient", "repetition"]), repetitions=3)
        assert table.empty
        assert list(table.columns) == FREQUENCY_COLUMNS

    def test_more_repetitions_than_declared(self):
        with pytest.raises(ValueError):
            gene_frequency(_records(), repetitions=2)


class TestReduceGenes:
    def test_threshold(self):
        table = gene_frequency(_records(), repetitions=4)
        assert reduce_genes(table, 0.5) == ["a", "b"]
        assert reduce_genes(table, 0.0) == ["a", "b", "c", "d"]

    def test_subset_of_input(self):
        table = gene_frequency(_records(), repetitions=4)
        for mrfa in np.linspace(0.0, 1.0, 11):
            assert set(reduce_genes(table, float(mrfa))) <= set(table["gene"])

    def test_fallback_to_highest_frequency(self):
        table = gene_frequency(_records(), repetitions=4)
        assert reduce_genes(table, 1.0) == ["a"]

    def test_force_mrfa_returns_empty(self):
        table = gene_frequency(_records(), repetitions=4)
        assert reduce_genes(table, 1.0, force_mrfa=True) == []

    @pytest.mark.parametrize("mrfa", [-0.1, 1.5])
    def test_out_of_range(self, mrfa):
        table = gene_frequency(_records(), repetitions=4)
        with pytest.raises(ValueError):
            reduce_genes(table, mrfa)

    def test_empty_frequency(self):
        assert reduce_genes(pd.DataFrame(columns=FREQUENCY_COLUMNS), 0.5) == []


class TestRunRepetitions:
    def test_drivers_selected_every_time(self, age_dataset, fast_selection):
        results = run_repetitions(age_dataset, fast_selection)
        assert [result.repetition for result in results] == [1, 2, 3, 4]
        assert [result.seed for result in results] == [4, 5, 6, 7]
        for result in results:
            assert set(DRIVER_GENES) <= set(result.gene_set())
            assert result.n_train + result.n_test == age_dataset.num_samples()
            assert result.test_metrics["r2"] > 0.5

    def test_records_and_frequency(self, age_dataset, fast_selection):
        results = run_repetitions(age_dataset, fast_selection)
        records = selection_records(results)
        assert set(records.columns) == {"gene", "coefficient", "repetition"}
        assert (records["coefficient"] != 0).all()
        frequency = gene_frequency(records, fast_selection.repetitions)
        top = frequency.set_index("gene").loc[DRIVER_GENES, "frequency"]
        assert (top == 1.0).all()

    def test_deterministic(self, age_dataset, fast_selection):
        first = selection_records(run_repetitions(age_dataset, fast_selection))
        second = selection_records(run_repetitions(age_dataset, fast_selection))
        pd.testing.assert_frame_equal(first, second)

    def test_repetition_metrics_table(self, age_dataset, fast_selection):
        table = repetition_metrics(run_repetitions(age_dataset, fast_selection))
        assert len(table) == fast_selection.repetitions
        assert {"repetition", "n_genes", "lambda", "test_r2", "train_r2"} <= set(table.columns)

    def test_binomial(self, sex_dataset, fast_selection):
        results = run_repetitions(sex_dataset, fast_selection)
        for result in results:
            assert "gene_0" in result.gene_set()
            assert 0.0 <= result.test_metrics["roc_auc"] <= 1.0


class TestSubsetAndMrfa:
    def test_glmnet_genes_subset_uses_only_subset(self, age_dataset, fast_selection):
        genes = ["gene_0", "gene_1", "gene_5"]
        model = glmnet_genes_subset(age_dataset, genes, fast_selection, seed=1)
        assert model.feature_names == genes
        metrics = evaluate_model(model, age_dataset, age_dataset.sample_ids)
        assert metrics["r2"] > 0.5

    def test_glmnet_genes_subset_empty(self, age_dataset, fast_selection):
        with pytest.raises(ValueError):
            glmnet_genes_subset(age_dataset, [], fast_selection, seed=1)

    def test_select_mrfa_returns_candidate(self, age_dataset, fast_selection):
        fast_selection.mrfa_candidates = [0.25, 0.5, 1.0]
        frequency = gene_frequency(selection_records(run_repetitions(age_dataset, fast_selection)), 4)
        mrfa, table = select_mrfa(age_dataset, frequency, fast_selection, seed=0)
        assert mrfa in fast_selection.mrfa_candidates
        assert table["mrfa"].tolist() == [0.25, 0.5, 1.0]
        assert (table["n_genes"].diff().dropna() <= 0).all()
        best_score = table["score"].max()
        assert table.loc[table["mrfa"] == mrfa, "score"].iloc[0] == pytest.approx(best_score)
