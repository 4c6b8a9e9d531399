from pathlib import Path
from typing import Dict, Optional

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from .metrics import regression_metrics

sns.set_style("whitegrid")


def plot_predictions_vs_actual(
    y_true: np.ndarray,
    y_pred: np.ndarray,
    output_path: Path,
    title: str,
    covariate_label: str = "covariate",
    annotation_metrics: Optional[Dict[str, float]] = None,
) -> None:
    y_true = np.asarray(y_true, dtype=np.float64)
    y_pred = np.asarray(y_pred, dtype=np.float64)
    mask = np.isfinite(y_true) & np.isfinite(y_pred)
    y_true = y_true[mask]
    y_pred = y_pred[mask]
    if y_true.size == 0:
        return

    min_val = float(min(y_true.min(), y_pred.min()))
    max_val = float(max(y_true.max(), y_pred.max()))
    if min_val == max_val:
        max_val = min_val + 1.0

    output_path.parent.mkdir(parents=True, exist_ok=True)
    plt.figure(figsize=(7, 7))
    plt.scatter(y_true, y_pred, s=18, alpha=0.6, edgecolor="none")
    plt.plot([min_val, max_val], [min_val, max_val], linestyle="--", color="crimson", linewidth=1.5)
    plt.xlabel(f"Actual {covariate_label}")
    plt.ylabel(f"Predicted {covariate_label}")
    plt.title(title)

    metrics = annotation_metrics if annotation_metrics is not None else regression_metrics(y_true, y_pred)

    def _fmt(value: float) -> str:
        return "nan" if not np.isfinite(value) else f"{value:.3f}"

    lines = []
    if "r2" in metrics:
        lines.append(f"$R^2={_fmt(metrics['r2'])}$")
    if "pearson" in metrics:
        lines.append(f"Pearson={_fmt(metrics['pearson'])}")
    if "rmse" in metrics:
        lines.append(f"RMSE={_fmt(metrics['rmse'])}")
    text = "\n".join(lines)
    if text:
        plt.text(
            min_val + 0.05 * (max_val - min_val),
            max_val - 0.12 * (max_val - min_val),
            text,
            fontsize=12,
            bbox=dict(boxstyle="round", facecolor="white", alpha=0.7),
        )
    plt.tight_layout()
    plt.savefig(output_path)
    plt.close()


def plot_probability_by_class(
    y_true: np.ndarray,
    y_score: np.ndarray,
    output_path: Path,
    title: str,
    class_labels: Optional[list] = None,
) -> None:
    y_true = np.asarray(y_true)
    y_score = np.asarray(y_score, dtype=np.float64)
    if y_true.size == 0:
        return
    labels = class_labels or [0, 1]
    frame = pd.DataFrame(
        {
            "class": [str(labels[int(value)]) for value in y_true],
            "probability": y_score,
        }
    )
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig, ax = plt.subplots(figsize=(6, 5))
    sns.boxplot(data=frame, x="class", y="probability", ax=ax, color="#DDDDDD")
    sns.stripplot(data=frame, x="class", y="probability", ax=ax, size=4, alpha=0.6)
    ax.axhline(0.5, linestyle="--", color="crimson", linewidth=1)
    ax.set_ylim(-0.02, 1.02)
    ax.set_xlabel("Observed class")
    ax.set_ylabel("Predicted probability of second class")
    ax.set_title(title)
    fig.tight_layout()
    fig.savefig(output_path)
    plt.close(fig)


def plot_gene_frequency(
    frequency: pd.DataFrame,
    output_path: Path,
    title: str,
    top_n: int = 30,
    mrfa: Optional[float] = None,
) -> None:
    if frequency.empty:
        return
    top = frequency.head(max(top_n, 1))
    limit = len(top)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig_height = max(4.0, 0.35 * limit)
    fig, ax = plt.subplots(figsize=(9, fig_height))
    ax.barh(np.arange(limit), top["frequency"].to_numpy(dtype=np.float64), color="#4C72B0")
    ax.set_yticks(np.arange(limit))
    ax.set_yticklabels(top["gene"].astype(str).tolist())
    ax.invert_yaxis()
    ax.set_xlim(0, 1.05)
    if mrfa is not None:
        ax.axvline(mrfa, linestyle="--", color="crimson", linewidth=1.2, label=f"mrfa = {mrfa:.2f}")
        ax.legend(loc="lower right")
    ax.set_xlabel("Relative frequency of appearance")
    ax.set_ylabel("Gene")
    ax.set_title(title)
    fig.tight_layout()
    fig.savefig(output_path)
    plt.close(fig)


def plot_hub_genes(
    hubs: pd.DataFrame,
    output_path: Path,
    title: str,
    top_n: int = 30,
) -> None:
    if hubs.empty:
        return
    top = hubs.head(max(top_n, 1))
    limit = len(top)
    values = top["coefficient"].to_numpy(dtype=np.float64)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig_height = max(4.0, 0.35 * limit)
    fig, ax = plt.subplots(figsize=(9, fig_height))
    colors = ["#d62728" if value >= 0 else "#1f77b4" for value in values]
    bars = ax.barh(np.arange(limit), values, color=colors)
    ax.set_yticks(np.arange(limit))
    ax.set_yticklabels(top["gene"].astype(str).tolist())
    ax.invert_yaxis()  # strongest effect on top
    ax.axvline(0.0, color="black", linewidth=0.8)
    ax.set_xlabel("Coefficient (standardized expression)")
    ax.set_ylabel("Hub gene")
    ax.set_title(title)
    for bar, value in zip(bars, values):
        ax.text(
            value,
            bar.get_y() + bar.get_height() / 2,
            f" {value:.3f} ",
            va="center",
            ha="left" if value >= 0 else "right",
            fontsize=8,
        )
    fig.tight_layout()
    fig.savefig(output_path)
    plt.close(fig)


def plot_jaccard_heatmap(matrix: pd.DataFrame, output_path: Path, title: str) -> None:
    if matrix.empty:
        return
    n = matrix.shape[0]
    size = max(5.0, 0.45 * n + 2.0)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig, ax = plt.subplots(figsize=(size, size * 0.85))
    sns.heatmap(
        matrix.astype(float),
        annot=n <= 15,
        fmt=".2f",
        cmap="YlOrRd",
        vmin=0,
        vmax=1,
        square=True,
        linewidths=0.5,
        cbar_kws={"label": "Jaccard index", "shrink": 0.8},
        ax=ax,
    )
    ax.set_xlabel("Repetition")
    ax.set_ylabel("Repetition")
    ax.set_title(title)
    fig.tight_layout()
    fig.savefig(output_path)
    plt.close(fig)


def plot_mrfa_selection(
    table: pd.DataFrame,
    output_path: Path,
    title: str,
    selected: Optional[float] = None,
    score_label: str = "score",
) -> None:
    if table.empty:
        return
    ordered = table.sort_values("mrfa")
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig, ax_left = plt.subplots(figsize=(8, 4.5))
    ax_left.plot(ordered["mrfa"], ordered["score"], marker="o", color="#1f77b4")
    ax_left.set_xlabel("mrfa")
    ax_left.set_ylabel(score_label, color="#1f77b4")
    ax_left.tick_params(axis="y", labelcolor="#1f77b4")

    ax_right = ax_left.twinx()
    ax_right.plot(ordered["mrfa"], ordered["n_genes"], marker="s", linestyle="--", color="#ff7f0e")
    ax_right.set_ylabel("Genes kept", color="#ff7f0e")
    ax_right.tick_params(axis="y", labelcolor="#ff7f0e")

    if selected is not None:
        ax_left.axvline(selected, linestyle=":", color="crimson", linewidth=1.2)
    ax_left.set_title(title)
    fig.tight_layout()
    fig.savefig(output_path)
    plt.close(fig)


def plot_cv_curve(curve: pd.DataFrame, output_path: Path, title: str, lambda_min: float, lambda_1se: float) -> None:
    if curve.empty:
        return
    output_path.parent.mkdir(parents=True, exist_ok=True)
    log_lambda = np.log(curve["lambda"].to_numpy(dtype=np.float64))
    mean = curve["cv_error"].to_numpy(dtype=np.float64)
    se = curve["cv_se"].to_numpy(dtype=np.float64)
    fig, ax = plt.subplots(figsize=(8, 4.5))
    ax.errorbar(log_lambda, mean, yerr=se, fmt="o", markersize=3, color="#d62728", ecolor="#999999", capsize=2)
    ax.axvline(np.log(lambda_min), linestyle="--", color="black", linewidth=1, label="lambda.min")
    ax.axvline(np.log(lambda_1se), linestyle=":", color="black", linewidth=1, label="lambda.1se")
    ax.set_xlabel("log(lambda)")
    ax.set_ylabel("Mean CV error")
    ax.set_title(title)
    ax.legend(loc="best")
    fig.tight_layout()
    fig.savefig(output_path)
    plt.close(fig)


def plot_cluster_sizes(sizes: pd.Series, output_path: Path, title: str) -> None:
    if sizes.empty:
        return
    ordered = sizes.sort_values(ascending=False)
    limit = len(ordered)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig, ax = plt.subplots(figsize=(max(6.0, 0.4 * limit + 2.0), 4.5))
    ax.bar(np.arange(limit), ordered.to_numpy(), color="#55A868")
    ax.set_xticks(np.arange(limit))
    ax.set_xticklabels([str(name) for name in ordered.index], rotation=60, ha="right")
    ax.set_xlabel("Hub gene")
    ax.set_ylabel("Cluster size")
    ax.set_title(title)
    fig.tight_layout()
    fig.savefig(output_path)
    plt.close(fig)


def save_metric_table(metrics: Dict[str, float], output_path: Path) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    lines = ["metric,value"] + [f"{name},{value}" for name, value in metrics.items()]
    output_path.write_text("\n".join(lines) + "\n")
