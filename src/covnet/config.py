from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


@dataclass
class PathsConfig:
    base_dir: Path
    expression_path: Path
    covariate_path: Path
    output_dir: Path
    logs_dir: Path
    figures_dir: Path

    @classmethod
    def from_base(
        cls,
        base_dir: str | Path,
        expression_filename: str = "expression.tsv",
        covariate_filename: str = "covariates.csv",
    ) -> "PathsConfig":
        root = Path(base_dir).expanduser().resolve()

        def _resolve(filename: str, fallback_dirs: list[str]) -> Path:
            candidate = (root / filename).expanduser()
            if candidate.exists():
                return candidate.resolve()
            for rel_dir in fallback_dirs:
                alt = (root / rel_dir / filename).expanduser()
                if alt.exists():
                    return alt.resolve()
            searched = [str((root / filename).expanduser())] + [
                str((root / rel_dir / filename).expanduser()) for rel_dir in fallback_dirs
            ]
            raise FileNotFoundError(
                f"Could not locate '{filename}'. Looked in: {', '.join(searched)}"
            )

        fallback_data_dirs = ["data", "data/raw"]
        expression_path = _resolve(expression_filename, fallback_data_dirs)
        covariate_path = _resolve(covariate_filename, fallback_data_dirs)
        output_root = (root / "output").resolve()
        output_dir = (output_root / "results").resolve()
        logs_dir = (output_root / "logs").resolve()
        figures_dir = (root / "analysis" / "figs").resolve()
        return cls(root, expression_path, covariate_path, output_dir, logs_dir, figures_dir)


@dataclass
class SelectionConfig:
    repetitions: int = 10
    k_folds: int = 10
    train_fraction: float = 0.8
    # glmnet "alpha": 1.0 is the lasso, 0.0 ridge
    l1_ratio: float = 1.0
    n_lambdas: int = 100
    lambda_rule: str = "min"
    max_iter: int = 10_000
    tol: float = 1e-4
    random_state: int = 42
    n_jobs: int = 1
    mrfa: Optional[float] = None
    mrfa_candidates: List[float] = field(
        default_factory=lambda: [0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0]
    )
    force_mrfa: bool = False
    min_mean_expression: float = 0.0
    min_variance: float = 0.0
    log_transform: bool = False
    top_n_plot: int = 30

    def validate(self) -> None:
        if self.repetitions < 1:
            raise ValueError("repetitions must be >= 1")
        if self.k_folds < 2:
            raise ValueError("k_folds must be at least 2")
        if not (0.0 < self.train_fraction < 1.0):
            raise ValueError("train_fraction must be within (0, 1)")
        if not (0.0 <= self.l1_ratio <= 1.0):
            raise ValueError("l1_ratio must be within [0, 1]")
        if self.n_lambdas < 2:
            raise ValueError("n_lambdas must be >= 2")
        if self.lambda_rule not in {"min", "1se"}:
            raise ValueError("lambda_rule must be 'min' or '1se'")
        if self.max_iter <= 0:
            raise ValueError("max_iter must be positive")
        if self.tol <= 0:
            raise ValueError("tol must be positive")
        if self.n_jobs == 0:
            raise ValueError("n_jobs must be non-zero (use -1 for all cores)")
        if self.mrfa is not None and not (0.0 <= self.mrfa <= 1.0):
            raise ValueError("mrfa must be within [0, 1]")
        if not self.mrfa_candidates:
            raise ValueError("mrfa_candidates must not be empty")
        if any(not (0.0 <= value <= 1.0) for value in self.mrfa_candidates):
            raise ValueError("mrfa_candidates must all be within [0, 1]")
        if self.min_mean_expression < 0:
            raise ValueError("min_mean_expression must be non-negative")
        if self.min_variance < 0:
            raise ValueError("min_variance must be non-negative")
        if self.top_n_plot < 1:
            raise ValueError("top_n_plot must be >= 1")


@dataclass
class NetworkConfig:
    enabled: bool = True
    max_cluster_size: Optional[int] = 100
    max_hubs: Optional[int] = None
    l1_ratio: float = 1.0
    k_folds: int = 10

    def validate(self) -> None:
        if self.max_cluster_size is not None and self.max_cluster_size <= 0:
            raise ValueError("max_cluster_size must be positive when specified")
        if self.max_hubs is not None and self.max_hubs <= 0:
            raise ValueError("max_hubs must be positive when specified")
        if not (0.0 <= self.l1_ratio <= 1.0):
            raise ValueError("network l1_ratio must be within [0, 1]")
        if self.k_folds < 2:
            raise ValueError("network k_folds must be at least 2")


@dataclass
class PipelineConfig:
    paths: PathsConfig
    covariate: str = "AGE"
    selection: SelectionConfig = field(default_factory=SelectionConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    family: str = "auto"
    sample_column: Optional[str] = None
    genes: Optional[List[str]] = None
    run_name: Optional[str] = None

    def validate(self) -> None:
        if self.family not in {"auto", "gaussian", "binomial"}:
            raise ValueError("family must be one of 'auto', 'gaussian', 'binomial'")
        if not self.covariate:
            raise ValueError("covariate column name must be non-empty")
        self.selection.validate()
        self.network.validate()

    def ensure_directories(self) -> None:
        self.paths.output_dir.mkdir(parents=True, exist_ok=True)
        self.paths.logs_dir.mkdir(parents=True, exist_ok=True)
        self.paths.figures_dir.mkdir(parents=True, exist_ok=True)

    def network_selection(self) -> SelectionConfig:
        """Selection settings used for the per-hub cluster fits."""
        base = self.selection
        return SelectionConfig(
            repetitions=1,
            k_folds=self.network.k_folds,
            train_fraction=base.train_fraction,
            l1_ratio=self.network.l1_ratio,
            n_lambdas=base.n_lambdas,
            lambda_rule=base.lambda_rule,
            max_iter=base.max_iter,
            tol=base.tol,
            random_state=base.random_state,
            n_jobs=base.n_jobs,
        )
