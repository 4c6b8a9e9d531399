"""Hub genes of the covariate model and the co-expression clusters around them.

The network is two-layered: the covariate links to its hub genes (the genes
kept by the final model) and every hub links to the genes that best predict
its own expression.
"""

from typing import List, Optional, Sequence

import pandas as pd
from joblib import Parallel, delayed

from .config import SelectionConfig
from .data import CovariateDataset
from .logging_utils import get_logger
from .models import GeneModel, extract_model_genes, fit_glmnet

_LOG = get_logger(__name__)

CLUSTER_COLUMNS = ["hub", "gene", "coefficient", "rank"]
EDGE_COLUMNS = ["source", "target", "weight", "kind"]


def hub_genes(model: GeneModel, max_hubs: Optional[int] = None) -> pd.DataFrame:
    """Genes kept by the covariate model, ranked by absolute coefficient."""
    table = extract_model_genes(model)
    if max_hubs is not None:
        table = table.head(max_hubs)
    table = table.copy()
    table["rank"] = range(1, len(table) + 1)
    return table.reset_index(drop=True)


def _hub_cluster(
    expression: pd.DataFrame,
    hub: str,
    config: SelectionConfig,
    seed: int,
    max_cluster_size: Optional[int],
) -> pd.DataFrame:
    predictors = expression.drop(index=hub)
    if predictors.shape[0] == 0:
        return pd.DataFrame(columns=CLUSTER_COLUMNS)
    model = fit_glmnet(
        predictors.T,
        expression.loc[hub].to_numpy(),
        "gaussian",
        config,
        seed,
    )
    genes = extract_model_genes(model)
    if max_cluster_size is not None:
        genes = genes.head(max_cluster_size)
    return pd.DataFrame(
        {
            "hub": hub,
            "gene": genes["gene"].to_numpy(),
            "coefficient": genes["coefficient"].to_numpy(),
            "rank": range(1, len(genes) + 1),
        },
        columns=CLUSTER_COLUMNS,
    )


def gene_clusters(
    dataset: CovariateDataset,
    hubs: Sequence[str],
    config: SelectionConfig,
    seed: int,
    max_cluster_size: Optional[int] = None,
) -> pd.DataFrame:
    """Cluster of co-expressed genes for each hub.

    For each hub an elastic-net model predicts the hub's expression from every
    other gene across all samples; its nonzero predictors, at most
    ``max_cluster_size`` of them, form the cluster.
    """
    hubs = list(dict.fromkeys(hubs))
    missing = [hub for hub in hubs if hub not in dataset.expression.index]
    if missing:
        raise KeyError(f"Hub genes not present in expression matrix: {', '.join(missing[:10])}")
    if not hubs:
        return pd.DataFrame(columns=CLUSTER_COLUMNS)

    _LOG.info("Building clusters for %d hub genes | n_jobs=%d", len(hubs), config.n_jobs)
    frames: List[pd.DataFrame] = Parallel(n_jobs=config.n_jobs)(
        delayed(_hub_cluster)(dataset.expression, hub, config, seed, max_cluster_size) for hub in hubs
    )
    for hub, frame in zip(hubs, frames):
        _LOG.info("Hub %s | cluster size=%d", hub, len(frame))
    non_empty = [frame for frame in frames if not frame.empty]
    if not non_empty:
        return pd.DataFrame(columns=CLUSTER_COLUMNS)
    return pd.concat(non_empty, ignore_index=True)


def build_network(hubs: pd.DataFrame, clusters: pd.DataFrame, covariate_name: str) -> pd.DataFrame:
    """Edge list linking the covariate to its hubs and each hub to its cluster."""
    covariate_edges = pd.DataFrame(
        {
            "source": covariate_name,
            "target": hubs["gene"].to_numpy() if not hubs.empty else [],
            "weight": hubs["coefficient"].to_numpy() if not hubs.empty else [],
            "kind": "covariate-hub",
        },
        columns=EDGE_COLUMNS,
    )
    cluster_edges = pd.DataFrame(
        {
            "source": clusters["hub"].to_numpy() if not clusters.empty else [],
            "target": clusters["gene"].to_numpy() if not clusters.empty else [],
            "weight": clusters["coefficient"].to_numpy() if not clusters.empty else [],
            "kind": "hub-gene",
        },
        columns=EDGE_COLUMNS,
    )
    frames = [frame for frame in (covariate_edges, cluster_edges) if not frame.empty]
    if not frames:
        return pd.DataFrame(columns=EDGE_COLUMNS)
    return pd.concat(frames, ignore_index=True)


def cluster_sizes(clusters: pd.DataFrame) -> pd.Series:
    if clusters.empty:
        return pd.Series(dtype="int64", name="cluster_size")
    return clusters.groupby("hub", sort=False).size().rename("cluster_size")
