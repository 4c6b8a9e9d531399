import argparse
from pathlib import Path
from typing import Optional

import joblib
import numpy as np
import pandas as pd

from .data import load_expression
from .logging_utils import get_logger
from .models import predict_covariate
from .pipeline import MODEL_FILENAME

_LOG = get_logger(__name__)


def load_run_model(run_dir: Path) -> dict:
    model_path = run_dir / "models" / MODEL_FILENAME
    if not model_path.exists():
        raise FileNotFoundError(f"No persisted model found at {model_path}")
    bundle = joblib.load(model_path)
    for key in ("model", "covariate", "family", "genes"):
        if key not in bundle:
            raise ValueError(f"Model bundle at {model_path} is missing '{key}'")
    return bundle


def predict(
    run_dir: Path,
    expression_path: Path,
    output_path: Optional[Path] = None,
) -> Path:
    """Predict the covariate of new samples with a run's final model.

    Raw values are log2(x + 1) transformed when the run was trained that way.
    """
    bundle = load_run_model(run_dir)
    expression = load_expression(expression_path)
    genes = bundle["genes"]
    missing = [gene for gene in genes if gene not in expression.index]
    if missing:
        raise KeyError(
            f"{len(missing)} model genes are absent from {expression_path}: {', '.join(missing[:10])}"
        )
    expression = expression.loc[genes]
    if bundle.get("log_transform", False):
        expression = np.log2(expression + 1.0)

    predictions = predict_covariate(bundle["model"], expression)
    frame = pd.DataFrame({"sample": predictions.index, "prediction": predictions.to_numpy()})
    if bundle["family"] == "binomial":
        levels = bundle.get("levels") or [0, 1]
        frame = frame.rename(columns={"prediction": "probability"})
        frame["predicted_level"] = [levels[int(p >= 0.5)] for p in frame["probability"]]

    out_path = output_path or (run_dir / "predictions_inference.csv")
    out_path.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(out_path, index=False)
    _LOG.info(
        "Saved %s predictions for %d samples to %s",
        bundle["covariate"],
        len(frame),
        out_path,
    )
    return out_path


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Predict a covariate for new samples using a trained covnet run")
    parser.add_argument("--run-dir", required=True, help="Path to a pipeline run directory (contains models/)")
    parser.add_argument("--expression-path", required=True, help="Genes x samples expression matrix (csv/tsv/gct/h5ad)")
    parser.add_argument("--output", help="Optional output CSV path for predictions")
    args = parser.parse_args(argv)

    run_dir = Path(args.run_dir).expanduser().resolve()
    expression_path = Path(args.expression_path).expanduser().resolve()
    output_path = Path(args.output).expanduser().resolve() if args.output else None

    predict(run_dir, expression_path, output_path)


if __name__ == "__main__":
    main()
