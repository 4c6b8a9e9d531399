"""Plot helpers write a PNG for real input and nothing for empty input."""

import numpy as np
import pandas as pd
import pytest

from covnet.network import CLUSTER_COLUMNS, cluster_sizes
from covnet.selection import FREQUENCY_COLUMNS
from covnet.visualization import (
    plot_cluster_sizes,
    plot_cv_curve,
    plot_gene_frequency,
    plot_hub_genes,
    plot_jaccard_heatmap,
    plot_mrfa_selection,
    plot_predictions_vs_actual,
    plot_probability_by_class,
    save_metric_table,
)


class TestEmptyInput:
    @pytest.mark.parametrize(
        "plot",
        [
            lambda path: plot_gene_frequency(pd.DataFrame(columns=FREQUENCY_COLUMNS), path, "t", mrfa=0.5),
            lambda path: plot_hub_genes(pd.DataFrame(columns=["gene", "coefficient"]), path, "t"),
            lambda path: plot_jaccard_heatmap(pd.DataFrame(), path, "t"),
            lambda path: plot_mrfa_selection(pd.DataFrame(columns=["mrfa", "n_genes", "score"]), path, "t"),
            lambda path: plot_cv_curve(pd.DataFrame(columns=["lambda", "cv_error", "cv_se"]), path, "t", 0.1, 0.2),
            lambda path: plot_cluster_sizes(cluster_sizes(pd.DataFrame(columns=CLUSTER_COLUMNS)), path, "t"),
            lambda path: plot_predictions_vs_actual(np.array([]), np.array([]), path, "t"),
            lambda path: plot_probability_by_class(np.array([]), np.array([]), path, "t"),
        ],
    )
    def test_nothing_written(self, tmp_path, plot):
        path = tmp_path / "figs" / "plot.png"
        plot(path)
        assert not path.exists()
        assert not path.parent.exists()


class TestWrittenFigures:
    def test_cluster_sizes(self, tmp_path):
        clusters = pd.DataFrame(
            {"hub": ["h1", "h1", "h2"], "gene": ["a", "b", "c"], "coefficient": [0.4, -0.2, 0.3], "rank": [1, 2, 1]}
        )
        path = tmp_path / "cluster_sizes.png"
        plot_cluster_sizes(cluster_sizes(clusters), path, "Hub cluster sizes")
        assert path.stat().st_size > 0

    def test_probability_by_class(self, tmp_path):
        path = tmp_path / "figs" / "probabilities.png"
        plot_probability_by_class(
            np.array([0, 1, 0, 1]),
            np.array([0.2, 0.9, 0.4, 0.6]),
            path,
            "Held-out predictions",
            class_labels=[1, 2],
        )
        assert path.stat().st_size > 0

    def test_gene_frequency_and_heatmap(self, tmp_path):
        frequency = pd.DataFrame(
            {
                "gene": ["g1", "g2"],
                "count": [2, 1],
                "frequency": [1.0, 0.5],
                "mean_coefficient": [0.5, -0.1],
                "sd_coefficient": [0.1, np.nan],
            }
        )
        plot_gene_frequency(frequency, tmp_path / "freq.png", "Frequency", mrfa=0.5)
        matrix = pd.DataFrame([[1.0, 0.5], [0.5, 1.0]], index=[1, 2], columns=[1, 2])
        plot_jaccard_heatmap(matrix, tmp_path / "jaccard.png", "Stability")
        assert (tmp_path / "freq.png").exists()
        assert (tmp_path / "jaccard.png").exists()

    def test_metric_table(self, tmp_path):
        path = tmp_path / "metrics.csv"
        save_metric_table({"r2": 0.5, "rmse": 1.25}, path)
        assert path.read_text().splitlines() == ["metric,value", "r2,0.5", "rmse,1.25"]
