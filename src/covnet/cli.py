import argparse
import csv
import json
from datetime import datetime
from pathlib import Path
from typing import Optional

from .config import NetworkConfig, PathsConfig, PipelineConfig, SelectionConfig
from .logging_utils import configure_logging, get_logger
from .pipeline import run_pipeline


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="covnet: covariate-specific gene co-expression networks from repeated elastic-net selection"
    )
    parser.add_argument(
        "--base-dir",
        default=str(Path.cwd()),
        help="Project root directory (defaults to the current working directory)",
    )
    parser.add_argument("--expression-path", help="Genes x samples expression matrix (csv/tsv/gct/h5ad)")
    parser.add_argument("--covariate-path", help="Sample table holding the covariate column")
    parser.add_argument("--covariate", help="Covariate column to model (default AGE)")
    parser.add_argument("--sample-column", help="Sample identifier column of the covariate table (default: first column)")
    parser.add_argument(
        "--family",
        choices=["auto", "gaussian", "binomial"],
        help="Model family; auto picks binomial for two-level covariates",
    )
    parser.add_argument("--genes", nargs="*", help="Restrict the analysis to these genes")
    parser.add_argument("--gene-manifest", help="Path to newline-delimited list of genes to restrict the analysis to")
    parser.add_argument("--repetitions", type=int, help="Number of repeated glmnet fits (default 10)")
    parser.add_argument("--k-folds", type=int, help="Cross-validation folds per fit (default 10)")
    parser.add_argument("--train-fraction", type=float, help="Training fraction of each random split (default 0.8)")
    parser.add_argument("--l1-ratio", type=float, help="Elastic-net mixing parameter: 1 lasso, 0 ridge (default 1)")
    parser.add_argument("--n-lambdas", type=int, help="Length of the lambda path (default 100)")
    parser.add_argument("--lambda-rule", choices=["min", "1se"], help="Pick lambda.min or lambda.1se (default min)")
    parser.add_argument("--mrfa", type=float, help="Minimum relative frequency of appearance; omit to select automatically")
    parser.add_argument(
        "--force-mrfa",
        action="store_true",
        help="Keep the requested mrfa even when no gene reaches it",
    )
    parser.add_argument("--n-jobs", type=int, help="Worker processes for repeated fits (-1 uses all cores)")
    parser.add_argument("--seed", type=int, help="Base random seed (default 42)")
    parser.add_argument("--min-mean-expression", type=float, help="Drop genes whose mean expression is below this value")
    parser.add_argument("--min-variance", type=float, help="Drop genes whose variance is not above this value")
    parser.add_argument("--log-transform", action="store_true", help="Apply log2(x + 1) before modelling")
    parser.add_argument("--top-n-plot", type=int, help="Genes shown in bar plots (default 30)")
    parser.add_argument("--disable-clusters", action="store_true", help="Skip hub-gene cluster construction")
    parser.add_argument("--max-cluster-size", type=int, help="Maximum genes per hub cluster (default 100)")
    parser.add_argument("--max-hubs", type=int, help="Maximum number of hub genes to cluster")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default INFO)")
    parser.add_argument("--run-name", help="Optional run name override")
    parser.add_argument("--config-json", help="Path to configuration JSON file to load")
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = _build_arg_parser()
    args = parser.parse_args(argv)

    if args.config_json:
        config_path = Path(args.config_json).expanduser().resolve()
        if not config_path.exists():
            parser.error(f"Configuration file not found at {config_path}")
        payload = json.loads(config_path.read_text())
        try:
            config = _config_from_json(payload)
        except TypeError as exc:
            parser.error(f"Invalid configuration in {config_path}: {exc}")
    else:
        config = _config_from_args(parser, args)

    try:
        config.validate()
    except ValueError as exc:
        parser.error(str(exc))

    run_name = args.run_name or config.run_name or f"covnet_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
    config.run_name = run_name
    config.ensure_directories()

    log_path = configure_logging(config.paths.logs_dir, run_name, args.log_level)
    logger = get_logger(__name__)
    logger.info("Logging to %s", log_path)

    try:
        output_dir = run_pipeline(config)
    except Exception:
        logger.exception("Pipeline terminated with an error")
        logger.error("RUN_COMPLETE_STATUS=FAILURE")
        raise SystemExit(1)

    logger.info("Pipeline complete. Results stored in %s", output_dir)
    logger.info("RUN_COMPLETE_STATUS=SUCCESS")


def _config_from_args(parser: argparse.ArgumentParser, args: argparse.Namespace) -> PipelineConfig:
    base_dir = Path(args.base_dir).expanduser().resolve()

    def _override_path(override: Optional[str], label: str) -> Optional[Path]:
        if not override:
            return None
        candidate = Path(override).expanduser().resolve()
        if not candidate.exists():
            parser.error(f"{label} not found at {candidate}")
        return candidate

    expression_override = _override_path(args.expression_path, "Expression path")
    covariate_override = _override_path(args.covariate_path, "Covariate path")
    paths = PathsConfig.from_base(
        base_dir,
        expression_filename=str(expression_override or "expression.tsv"),
        covariate_filename=str(covariate_override or "covariates.csv"),
    )

    selection = SelectionConfig()
    if args.repetitions is not None:
        selection.repetitions = args.repetitions
    if args.k_folds is not None:
        selection.k_folds = args.k_folds
    if args.train_fraction is not None:
        selection.train_fraction = args.train_fraction
    if args.l1_ratio is not None:
        selection.l1_ratio = args.l1_ratio
    if args.n_lambdas is not None:
        selection.n_lambdas = args.n_lambdas
    if args.lambda_rule:
        selection.lambda_rule = args.lambda_rule
    if args.mrfa is not None:
        selection.mrfa = args.mrfa
    if args.force_mrfa:
        selection.force_mrfa = True
    if args.n_jobs is not None:
        selection.n_jobs = args.n_jobs
    if args.seed is not None:
        selection.random_state = args.seed
    if args.min_mean_expression is not None:
        selection.min_mean_expression = args.min_mean_expression
    if args.min_variance is not None:
        selection.min_variance = args.min_variance
    if args.log_transform:
        selection.log_transform = True
    if args.top_n_plot is not None:
        selection.top_n_plot = args.top_n_plot

    network = NetworkConfig()
    if args.disable_clusters:
        network.enabled = False
    if args.max_cluster_size is not None:
        network.max_cluster_size = args.max_cluster_size
    if args.max_hubs is not None:
        network.max_hubs = args.max_hubs

    gene_list: Optional[list[str]] = list(args.genes) if args.genes else None
    if args.genes and args.gene_manifest:
        parser.error("--genes and --gene-manifest are mutually exclusive")
    if args.gene_manifest:
        manifest_path = Path(args.gene_manifest).expanduser().resolve()
        if not manifest_path.exists():
            parser.error(f"Gene manifest not found at {manifest_path}")
        manifest_genes = _load_manifest_genes(manifest_path)
        if not manifest_genes:
            parser.error(f"Gene manifest {manifest_path} did not contain any gene entries")
        gene_list = manifest_genes

    return PipelineConfig(
        paths=paths,
        covariate=args.covariate or "AGE",
        selection=selection,
        network=network,
        family=args.family or "auto",
        sample_column=args.sample_column,
        genes=gene_list,
    )


def _config_from_json(payload: dict) -> PipelineConfig:
    base_dir = payload.get("base_dir", str(Path.cwd()))
    paths = PathsConfig.from_base(
        base_dir,
        expression_filename=payload.get("expression_path", "expression.tsv"),
        covariate_filename=payload.get("covariate_path", "covariates.csv"),
    )
    selection = SelectionConfig(**payload.get("selection", {}))
    network = NetworkConfig(**payload.get("network", {}))

    return PipelineConfig(
        paths=paths,
        covariate=payload.get("covariate", "AGE"),
        selection=selection,
        network=network,
        family=payload.get("family", "auto"),
        sample_column=payload.get("sample_column"),
        genes=payload.get("genes"),
        run_name=payload.get("run_name"),
    )


def _load_manifest_genes(manifest_path: Path) -> list[str]:
    text = manifest_path.read_text().splitlines()
    stripped = [line.strip() for line in text if line.strip() and not line.strip().startswith("#")]
    if not stripped:
        return []

    sniff_sample = "\n".join(stripped[:5])
    if any(delim in sniff_sample for delim in (",", "\t", ";")):
        try:
            dialect = csv.Sniffer().sniff(sniff_sample, delimiters=",\t;")
        except csv.Error:
            dialect = csv.get_dialect("excel")
        with manifest_path.open("r", newline="") as handle:
            rows = [row for row in csv.reader(handle, dialect) if row]
        if not rows:
            return []
        header_candidates = {value.strip().lower(): idx for idx, value in enumerate(rows[0])}
        gene_col = None
        for key in ("gene", "gene_id", "gene_name", "name"):
            if key in header_candidates:
                gene_col = header_candidates[key]
                break
        start_idx = 1 if gene_col is not None else 0
        if gene_col is None:
            gene_col = 0
        genes = [row[gene_col].strip() for row in rows[start_idx:] if gene_col < len(row) and row[gene_col].strip()]
        return list(dict.fromkeys(genes))

    return list(dict.fromkeys(stripped))


if __name__ == "__main__":
    main()
