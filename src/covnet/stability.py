"""Stability of gene selection across repeated fits, measured with the Jaccard index."""

from typing import Dict, Hashable, Iterable, Mapping

import numpy as np
import pandas as pd


def jaccard_index(set_a: Iterable[str], set_b: Iterable[str]) -> float:
    """Size of the intersection divided by the size of the union.

    Returns 0.0 when both sets are empty.
    """
    set_a = set(set_a)
    set_b = set(set_b)
    if not set_a and not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def measure_stability_jaccard(selections: Mapping[Hashable, Iterable[str]]) -> pd.DataFrame:
    """Pairwise Jaccard index between the gene sets of every pair of repetitions.

    Args:
        selections: Mapping of repetition label to the genes selected in it.

    Returns:
        Square, symmetric DataFrame (repetitions x repetitions) with values in [0, 1].
    """
    labels = list(selections.keys())
    gene_sets = {label: set(selections[label]) for label in labels}
    matrix = pd.DataFrame(np.nan, index=labels, columns=labels, dtype=float)
    for i, label_a in enumerate(labels):
        for label_b in labels[i:]:
            score = jaccard_index(gene_sets[label_a], gene_sets[label_b])
            matrix.loc[label_a, label_b] = score
            matrix.loc[label_b, label_a] = score
    matrix.index.name = "repetition"
    matrix.columns.name = "repetition"
    return matrix


def stability_summary(matrix: pd.DataFrame) -> Dict[str, float]:
    """Summary statistics of the off-diagonal entries of a stability matrix."""
    values = matrix.to_numpy(dtype=np.float64)
    n = values.shape[0]
    if n < 2:
        nan = float("nan")
        return {"n_repetitions": n, "mean": nan, "median": nan, "min": nan, "max": nan, "sd": nan}
    upper = values[np.triu_indices(n, k=1)]
    return {
        "n_repetitions": n,
        "mean": float(np.mean(upper)),
        "median": float(np.median(upper)),
        "min": float(np.min(upper)),
        "max": float(np.max(upper)),
        "sd": float(np.std(upper, ddof=1)) if upper.size > 1 else 0.0,
    }
