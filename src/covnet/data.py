import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import anndata as ad
import numpy as np
import pandas as pd
from sklearn.model_selection import train_test_split

from .config import PipelineConfig
from .logging_utils import get_logger

_LOG = get_logger(__name__)

_AGE_BRACKET_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*-\s*(\d+(?:\.\d+)?)\s*$")


@dataclass
class CovariateDataset:
    """Expression matrix (genes x samples) aligned with one covariate value per sample."""

    expression: pd.DataFrame
    covariate: pd.Series
    family: str
    name: str
    levels: Optional[List[object]] = None
    metadata: dict = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        if self.family not in {"gaussian", "binomial"}:
            raise ValueError(f"Unsupported family: {self.family}")
        if self.expression.shape[0] == 0:
            raise ValueError("Expression matrix has no genes")
        if list(self.expression.columns) != list(self.covariate.index):
            raise ValueError("Expression columns and covariate index must list the same samples in the same order")
        if self.covariate.isna().any():
            raise ValueError("Covariate contains missing values after alignment")

    @property
    def gene_names(self) -> List[str]:
        return [str(gene) for gene in self.expression.index]

    @property
    def sample_ids(self) -> List[str]:
        return [str(sample) for sample in self.expression.columns]

    def num_genes(self) -> int:
        return int(self.expression.shape[0])

    def num_samples(self) -> int:
        return int(self.expression.shape[1])

    def features(
        self,
        samples: Optional[Sequence[str]] = None,
        genes: Optional[Sequence[str]] = None,
    ) -> pd.DataFrame:
        """Samples x genes design matrix."""
        frame = self.expression
        if genes is not None:
            frame = frame.loc[list(genes)]
        if samples is not None:
            frame = frame.loc[:, list(samples)]
        return frame.T

    def target(self, samples: Optional[Sequence[str]] = None) -> np.ndarray:
        values = self.covariate if samples is None else self.covariate.loc[list(samples)]
        dtype = np.int64 if self.family == "binomial" else np.float64
        return values.to_numpy(dtype=dtype)

    def subset_genes(self, genes: Sequence[str]) -> "CovariateDataset":
        missing = [gene for gene in genes if gene not in self.expression.index]
        if missing:
            raise KeyError(f"Genes not present in expression matrix: {', '.join(missing[:10])}")
        return CovariateDataset(
            expression=self.expression.loc[list(genes)],
            covariate=self.covariate,
            family=self.family,
            name=self.name,
            levels=self.levels,
        )


def _delimiter_for(path: Path) -> str:
    suffixes = [suffix.lower() for suffix in path.suffixes]
    if suffixes and suffixes[-1] in {".gz", ".bz2", ".xz", ".zip"}:
        suffixes = suffixes[:-1]
    return "," if suffixes and suffixes[-1] == ".csv" else "\t"


def _is_gct(path: Path) -> bool:
    name = path.name.lower()
    return name.endswith(".gct") or name.endswith(".gct.gz")


def load_expression(path: str | Path) -> pd.DataFrame:
    """Read a genes x samples expression matrix.

    Supported inputs are delimited text (first column holds gene ids), GTEx
    ``.gct`` files and AnnData ``.h5ad`` files (samples x genes, transposed
    here). Non-numeric annotation columns are dropped and duplicated gene ids
    are averaged.
    """
    path = Path(path).expanduser()
    if not path.exists():
        raise FileNotFoundError(f"Expression file not found: {path}")

    _LOG.info("Loading expression matrix from %s", path)
    if path.suffix.lower() == ".h5ad":
        adata = ad.read_h5ad(path.as_posix())
        matrix = adata.X.toarray() if hasattr(adata.X, "toarray") else np.asarray(adata.X)
        frame = pd.DataFrame(
            matrix.T,
            index=np.asarray(adata.var_names).astype(str),
            columns=np.asarray(adata.obs_names).astype(str),
        )
    elif _is_gct(path):
        # GCT: version line, dimensions line, then Name/Description/samples
        frame = pd.read_csv(path, sep="\t", skiprows=2, index_col=0)
    else:
        frame = pd.read_csv(path, sep=_delimiter_for(path), index_col=0)

    numeric_cols = [col for col in frame.columns if pd.api.types.is_numeric_dtype(frame[col])]
    dropped = [col for col in frame.columns if col not in numeric_cols]
    if dropped:
        _LOG.info("Dropping %d non-numeric columns from expression matrix: %s", len(dropped), ", ".join(map(str, dropped[:5])))
    frame = frame[numeric_cols]
    frame.index = frame.index.astype(str)
    frame.columns = frame.columns.astype(str)

    if frame.index.has_duplicates:
        n_dup = int(frame.index.duplicated().sum())
        _LOG.warning("Averaging %d duplicated gene identifiers", n_dup)
        frame = frame.groupby(level=0, sort=False).mean()

    _LOG.info("Expression matrix loaded | genes=%d | samples=%d", frame.shape[0], frame.shape[1])
    return frame.astype(np.float64)


def load_covariate(
    path: str | Path,
    column: str,
    sample_column: Optional[str] = None,
) -> pd.Series:
    """Return ``column`` of a sample table indexed by sample id."""
    path = Path(path).expanduser()
    if not path.exists():
        raise FileNotFoundError(f"Covariate file not found: {path}")

    if path.suffix.lower() == ".h5ad":
        adata = ad.read_h5ad(path.as_posix(), backed="r")
        try:
            table = adata.obs.copy()
        finally:
            adata.file.close()
        if sample_column:
            table = table.set_index(sample_column)
    else:
        table = pd.read_csv(path, sep=_delimiter_for(path))
        index_col = sample_column or table.columns[0]
        if index_col not in table.columns:
            raise ValueError(f"Sample column '{index_col}' not found in {path}")
        table = table.set_index(index_col)

    if column not in table.columns:
        raise ValueError(
            f"Covariate column '{column}' not found in {path}. Available: {', '.join(map(str, table.columns[:20]))}"
        )
    series = table[column].copy()
    series.index = series.index.astype(str)
    series.name = column
    if series.index.has_duplicates:
        _LOG.warning("Covariate table has duplicated sample ids; keeping the first occurrence")
        series = series[~series.index.duplicated(keep="first")]
    return series


def parse_age(value: object) -> float:
    """Convert GTEx age brackets such as ``"60-69"`` to their midpoint."""
    if value is None:
        return float("nan")
    if isinstance(value, (int, float, np.integer, np.floating)):
        return float(value)
    text = str(value).strip()
    if not text or text.lower() in {"nan", "na", "none"}:
        return float("nan")
    match = _AGE_BRACKET_PATTERN.match(text)
    if match:
        low, high = float(match.group(1)), float(match.group(2))
        return (low + high) / 2.0
    try:
        return float(text)
    except ValueError as exc:
        raise ValueError(f"Cannot interpret '{value}' as an age") from exc


def infer_family(covariate: pd.Series) -> str:
    return "binomial" if covariate.dropna().nunique() == 2 else "gaussian"


def encode_covariate(covariate: pd.Series, family: str) -> Tuple[pd.Series, Optional[List[object]]]:
    """Encode a covariate for the requested family.

    Binomial covariates are mapped to 0/1 following the sorted order of their
    two levels (GTEx SEX 1/2 becomes 0/1). Gaussian covariates are converted
    to floats, with age brackets replaced by their midpoint.
    """
    if family == "binomial":
        present = covariate.dropna()
        levels = sorted(present.unique().tolist(), key=lambda value: (str(type(value)), value))
        if len(levels) != 2:
            raise ValueError(
                f"Binomial covariate '{covariate.name}' must have exactly two levels, found {len(levels)}"
            )
        mapping = {levels[0]: 0, levels[1]: 1}
        encoded = covariate.map(mapping)
        return encoded, levels
    if family == "gaussian":
        if pd.api.types.is_numeric_dtype(covariate):
            return covariate.astype(np.float64), None
        return covariate.map(parse_age).astype(np.float64), None
    raise ValueError(f"Unsupported family: {family}")


def align_samples(expression: pd.DataFrame, covariate: pd.Series) -> Tuple[pd.DataFrame, pd.Series]:
    present = covariate.dropna()
    if len(present) < len(covariate):
        _LOG.info("Dropping %d samples with a missing covariate value", len(covariate) - len(present))
    shared = [sample for sample in expression.columns if sample in present.index]
    if not shared:
        raise ValueError("Expression matrix and covariate table share no sample identifiers")
    n_unmatched = expression.shape[1] - len(shared)
    if n_unmatched:
        _LOG.info("Dropping %d expression samples without a covariate value", n_unmatched)
    return expression.loc[:, shared], present.loc[shared]


def filter_genes(
    expression: pd.DataFrame,
    min_mean: float = 0.0,
    min_variance: float = 0.0,
    log_transform: bool = False,
) -> pd.DataFrame:
    """Drop lowly expressed and constant genes, optionally applying log2(x + 1)."""
    frame = expression
    if log_transform:
        if (frame.to_numpy() < 0).any():
            raise ValueError("log_transform requires non-negative expression values")
        frame = np.log2(frame + 1.0)

    means = frame.mean(axis=1)
    variances = frame.var(axis=1, ddof=1)
    # thresholds of 0 disable the filters; constant genes are always dropped
    keep = variances > 0
    if min_mean > 0:
        keep &= means >= min_mean
    if min_variance > 0:
        keep &= variances > min_variance
    filtered = frame.loc[keep]
    _LOG.info(
        "Gene filtering | kept=%d | dropped=%d | min_mean=%s | min_variance=%s | log2=%s",
        filtered.shape[0],
        frame.shape[0] - filtered.shape[0],
        min_mean,
        min_variance,
        log_transform,
    )
    if filtered.shape[0] == 0:
        raise ValueError("No genes left after expression filtering")
    return filtered


def split_samples(
    covariate: pd.Series,
    family: str,
    train_fraction: float,
    seed: int,
) -> Tuple[List[str], List[str]]:
    samples = np.asarray(covariate.index).astype(str)
    stratify = covariate.to_numpy() if family == "binomial" else None
    train_ids, test_ids = train_test_split(
        samples,
        train_size=train_fraction,
        random_state=seed,
        shuffle=True,
        stratify=stratify,
    )
    return list(train_ids), list(test_ids)


def load_dataset(config: PipelineConfig) -> CovariateDataset:
    expression = load_expression(config.paths.expression_path)
    raw_covariate = load_covariate(config.paths.covariate_path, config.covariate, config.sample_column)

    if config.genes:
        missing = [gene for gene in config.genes if gene not in expression.index]
        if missing:
            raise RuntimeError(
                "The following requested genes were not found in the expression matrix: "
                + ", ".join(missing[:10])
                + (" ..." if len(missing) > 10 else "")
            )
        expression = expression.loc[list(dict.fromkeys(config.genes))]

    family = config.family if config.family != "auto" else infer_family(raw_covariate)
    _LOG.info("Covariate %s modelled with family=%s", config.covariate, family)
    covariate, levels = encode_covariate(raw_covariate, family)

    expression, covariate = align_samples(expression, covariate)
    selection = config.selection
    expression = filter_genes(
        expression,
        min_mean=selection.min_mean_expression,
        min_variance=selection.min_variance,
        log_transform=selection.log_transform,
    )
    if family == "binomial":
        covariate = covariate.astype(np.int64)

    dataset = CovariateDataset(
        expression=expression,
        covariate=covariate,
        family=family,
        name=config.covariate,
        levels=levels,
    )
    _LOG.info(
        "Dataset ready | covariate=%s | genes=%d | samples=%d",
        dataset.name,
        dataset.num_genes(),
        dataset.num_samples(),
    )
    return dataset
