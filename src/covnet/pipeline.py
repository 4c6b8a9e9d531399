import json
from collections import OrderedDict
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import joblib
import numpy as np
import pandas as pd

from .config import PipelineConfig
from .data import CovariateDataset, load_dataset, split_samples
from .logging_utils import get_logger
from .network import build_network, cluster_sizes, gene_clusters, hub_genes
from .selection import (
    evaluate_model,
    gene_frequency,
    glmnet_genes_subset,
    reduce_genes,
    repetition_metrics,
    run_repetitions,
    select_mrfa,
    selection_records,
)
from .stability import measure_stability_jaccard, stability_summary
from .visualization import (
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

_LOG = get_logger(__name__)

MODEL_FILENAME = "final_model.pkl"


def run_pipeline(config: PipelineConfig) -> Path:
    """Run gene selection, stability analysis, hub extraction and clustering.

    Returns the run directory holding every table, figure and the persisted
    final model.
    """
    config.validate()
    config.ensure_directories()
    if not config.run_name:
        config.run_name = f"covnet_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
    run_dir = _ensure_directory(config.paths.output_dir / config.run_name)
    figures_dir = _ensure_directory(run_dir / "figures")
    models_dir = _ensure_directory(run_dir / "models")
    selection = config.selection

    context: Dict[str, Any] = {}
    status = "failed"
    try:
        dataset = load_dataset(config)
        context.update(
            {
                "family": dataset.family,
                "levels": dataset.levels,
                "n_genes": dataset.num_genes(),
                "n_samples": dataset.num_samples(),
            }
        )

        results = run_repetitions(dataset, selection)
        records = selection_records(results)
        records.to_csv(run_dir / "selection_records.csv", index=False)
        repetition_metrics(results).to_csv(run_dir / "repetition_metrics.csv", index=False)

        stability = measure_stability_jaccard({result.repetition: result.gene_set() for result in results})
        stability.to_csv(run_dir / "stability_jaccard.csv")
        summary = stability_summary(stability)
        (run_dir / "stability_summary.json").write_text(json.dumps(summary, indent=2) + "\n")
        _LOG.info(
            "Selection stability | mean_jaccard=%.3f | min=%.3f | max=%.3f",
            summary["mean"],
            summary["min"],
            summary["max"],
        )
        plot_jaccard_heatmap(
            stability,
            figures_dir / "stability_jaccard.png",
            f"Selection stability | {dataset.name}",
        )

        frequency = gene_frequency(records, selection.repetitions)
        frequency.to_csv(run_dir / "gene_frequency.csv", index=False)
        if frequency.empty:
            raise RuntimeError("No gene was selected in any repetition; nothing to reduce")

        if selection.mrfa is None:
            mrfa, mrfa_table = select_mrfa(dataset, frequency, selection, selection.random_state)
            mrfa_table.to_csv(run_dir / "mrfa_selection.csv", index=False)
            plot_mrfa_selection(
                mrfa_table,
                figures_dir / "mrfa_selection.png",
                f"mrfa selection | {dataset.name}",
                selected=mrfa,
                score_label="Test ROC AUC" if dataset.family == "binomial" else "Test $R^2$",
            )
        else:
            mrfa = selection.mrfa
        context["requested_mrfa"] = mrfa

        reduced = reduce_genes(frequency, mrfa, force_mrfa=selection.force_mrfa)
        if not reduced:
            raise RuntimeError(f"No gene reaches mrfa={mrfa} (force_mrfa is set)")
        # reduce_genes lowers the threshold when nothing reaches it; record the one applied
        lowest_kept = float(frequency.loc[frequency["gene"].isin(reduced), "frequency"].min())
        mrfa = min(float(mrfa), lowest_kept)
        context["mrfa"] = mrfa
        frequency.loc[frequency["gene"].isin(reduced)].to_csv(run_dir / "reduced_genes.csv", index=False)
        context["n_reduced_genes"] = len(reduced)
        _LOG.info("Reduced gene set | mrfa=%.2f | genes=%d", mrfa, len(reduced))
        plot_gene_frequency(
            frequency,
            figures_dir / "gene_frequency.png",
            f"Gene frequency over {selection.repetitions} repetitions | {dataset.name}",
            top_n=selection.top_n_plot,
            mrfa=mrfa,
        )

        train_ids, test_ids = split_samples(
            dataset.covariate, dataset.family, selection.train_fraction, selection.random_state
        )
        final_model = glmnet_genes_subset(
            dataset, reduced, selection, selection.random_state, samples=train_ids
        )
        final_metrics = {
            "train": evaluate_model(final_model, dataset, train_ids),
            "test": evaluate_model(final_model, dataset, test_ids),
            "lambda": final_model.lambda_,
            "lambda_min": final_model.lambda_min,
            "lambda_1se": final_model.lambda_1se,
            "n_input_genes": len(reduced),
            "n_model_genes": final_model.num_selected(),
        }
        (run_dir / "final_metrics.json").write_text(json.dumps(_serialize_value(final_metrics), indent=2) + "\n")
        save_metric_table(final_metrics["test"], run_dir / "final_test_metrics.csv")
        _LOG.info("Final model | genes=%d | test=%s", final_model.num_selected(), final_metrics["test"])

        _persist_model(models_dir, final_model, dataset, selection.log_transform)
        _plot_final_model(figures_dir, final_model, dataset, test_ids)

        hubs = hub_genes(final_model, config.network.max_hubs)
        hubs.to_csv(run_dir / "hub_genes.csv", index=False)
        plot_hub_genes(
            hubs,
            figures_dir / "hub_genes.png",
            f"Hub genes | {dataset.name}",
            top_n=selection.top_n_plot,
        )
        context["n_hubs"] = len(hubs)
        if hubs.empty:
            _LOG.warning("Final model kept no genes; skipping cluster construction")

        if config.network.enabled and not hubs.empty:
            clusters = gene_clusters(
                dataset,
                hubs["gene"].tolist(),
                config.network_selection(),
                selection.random_state,
                max_cluster_size=config.network.max_cluster_size,
            )
            clusters.to_csv(run_dir / "gene_clusters.csv", index=False)
            edges = build_network(hubs, clusters, dataset.name)
            edges.to_csv(run_dir / "network_edges.csv", index=False)
            plot_cluster_sizes(
                cluster_sizes(clusters),
                figures_dir / "cluster_sizes.png",
                f"Hub cluster sizes | {dataset.name}",
            )
            context["n_cluster_genes"] = int(clusters["gene"].nunique()) if not clusters.empty else 0
        status = "succeeded"
    finally:
        _export_run_configuration(config, run_dir, context, status)
        _update_run_status_overview(config.paths.output_dir, run_dir, config.run_name, status)

    _LOG.info("Run %s complete | outputs=%s", config.run_name, run_dir)
    return run_dir


def _ensure_directory(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def _plot_final_model(figures_dir: Path, model, dataset: CovariateDataset, test_ids: List[str]) -> None:
    plot_cv_curve(
        model.cv_curve,
        figures_dir / "final_model_cv_curve.png",
        f"Cross-validation curve | {dataset.name}",
        model.lambda_min,
        model.lambda_1se,
    )
    if not test_ids:
        return
    preds = model.predict(dataset.features(test_ids))
    y_true = dataset.target(test_ids)
    if dataset.family == "binomial":
        plot_probability_by_class(
            y_true,
            preds,
            figures_dir / "test_predictions.png",
            f"Held-out predictions | {dataset.name}",
            class_labels=dataset.levels,
        )
    else:
        plot_predictions_vs_actual(
            y_true,
            preds,
            figures_dir / "test_predictions.png",
            f"Held-out predictions | {dataset.name}",
            covariate_label=dataset.name,
        )


def _persist_model(models_dir: Path, model, dataset: CovariateDataset, log_transform: bool) -> Path:
    path = models_dir / MODEL_FILENAME
    joblib.dump(
        {
            "model": model,
            "covariate": dataset.name,
            "family": dataset.family,
            "levels": dataset.levels,
            "genes": list(model.feature_names),
            "log_transform": log_transform,
        },
        path,
    )
    pd.Series(model.feature_names, name="gene").to_csv(models_dir / "model_genes.csv", index=False)
    _LOG.info("Persisted final model to %s", path)
    return path


def _serialize_value(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, dict):
        return {str(key): _serialize_value(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_serialize_value(item) for item in value]
    if is_dataclass(value):
        return {key: _serialize_value(val) for key, val in asdict(value).items()}
    return repr(value)


def _utc_timestamp() -> str:
    """Return a timezone-aware UTC timestamp with a trailing Z."""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _export_run_configuration(
    config: PipelineConfig,
    run_dir: Path,
    context: Dict[str, Any],
    status: str,
) -> None:
    payload: "OrderedDict[str, Any]" = OrderedDict()
    payload["pipeline_config"] = {
        "paths": _serialize_value(config.paths),
        "covariate": config.covariate,
        "family": config.family,
        "sample_column": config.sample_column,
        "selection": _serialize_value(config.selection),
        "network": _serialize_value(config.network),
        "genes": _serialize_value(config.genes),
    }
    payload["run_name"] = config.run_name
    payload["status"] = status
    payload["timestamp_utc"] = _utc_timestamp()
    payload["run_context"] = _serialize_value(context)

    output_path = run_dir / "run_configuration.json"
    output_path.write_text(json.dumps(payload, indent=2) + "\n")
    _LOG.info("Exported run configuration snapshot to %s", output_path)


def _update_run_status_overview(
    base_dir: Path,
    run_dir: Path,
    run_name: Optional[str],
    overall_status: str,
) -> None:
    summary_path = base_dir / "run_status_overview.json"
    try:
        summary = json.loads(summary_path.read_text())
    except (FileNotFoundError, json.JSONDecodeError):
        summary = {}

    summary.setdefault("succeeded", [])
    summary.setdefault("failed", [])

    identifier = run_name or run_dir.name
    run_path = str(run_dir.resolve())

    def _filtered(entries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [
            entry
            for entry in entries
            if entry.get("run_name") != identifier and entry.get("path") != run_path
        ]

    summary["succeeded"] = _filtered(summary["succeeded"])
    summary["failed"] = _filtered(summary["failed"])

    target = "succeeded" if overall_status == "succeeded" else "failed"
    summary[target].append(
        {
            "run_name": identifier,
            "path": run_path,
            "updated_at": _utc_timestamp(),
        }
    )
    for key in ("succeeded", "failed"):
        summary[key] = sorted(summary[key], key=lambda item: item.get("updated_at", ""), reverse=True)
    summary["generated_at"] = _utc_timestamp()
    summary_path.write_text(json.dumps(summary, indent=2) + "\n")
