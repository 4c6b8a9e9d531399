#!/usr/bin/env python3
"""Build covnet inputs for one tissue from GTEx release files.

Workflow:
1. Read the sample attributes table and keep samples of the requested tissue (SMTSD).
2. Read only those sample columns from the gene TPM GCT (the full matrix is very large).
3. Attach subject phenotypes (AGE bracket, SEX) using the subject id prefix of each sample id.
4. Write a genes x samples expression TSV and a sample covariate CSV.

Outputs:
    - <out-dir>/expression.tsv : gene id x sample TPM matrix
    - <out-dir>/covariates.csv : SAMPID, SUBJID, AGE, SEX, SMTSD
"""

import argparse
import logging
from pathlib import Path

import pandas as pd

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
log = logging.getLogger(__name__)


def subject_id(sample_id: str) -> str:
    """GTEx sample ids look like GTEX-1117F-0226-SM-5GZZ7; the subject is the first two tokens."""
    return "-".join(sample_id.split("-")[:2])


def tissue_samples(attributes_path: Path, tissue: str) -> pd.DataFrame:
    attributes = pd.read_csv(attributes_path, sep="\t", usecols=["SAMPID", "SMTSD"])
    selected = attributes.loc[attributes["SMTSD"] == tissue].copy()
    if selected.empty:
        available = ", ".join(sorted(attributes["SMTSD"].dropna().unique())[:10])
        raise ValueError(f"No samples for tissue '{tissue}'. Examples of available tissues: {available}")
    selected["SUBJID"] = selected["SAMPID"].map(subject_id)
    log.info("Tissue %s | samples=%d", tissue, len(selected))
    return selected


def read_expression(gct_path: Path, sample_ids: list[str]) -> pd.DataFrame:
    # Header row only, to find which sample columns are present
    header = pd.read_csv(gct_path, sep="\t", skiprows=2, nrows=0).columns
    wanted = set(sample_ids)
    keep = [col for col in header[2:] if col in wanted]
    if not keep:
        raise ValueError(f"None of the tissue samples are present in {gct_path}")
    missing = len(wanted) - len(keep)
    if missing:
        log.warning("%d tissue samples have no expression column", missing)
    expression = pd.read_csv(
        gct_path,
        sep="\t",
        skiprows=2,
        usecols=["Name"] + keep,
        index_col="Name",
    )
    expression.index.name = "gene_id"
    log.info("Expression loaded | genes=%d | samples=%d", expression.shape[0], expression.shape[1])
    return expression


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--gct", type=Path, required=True, help="GTEx gene TPM .gct(.gz)")
    parser.add_argument("--sample-attributes", type=Path, required=True, help="GTEx SampleAttributesDS.txt")
    parser.add_argument("--subject-phenotypes", type=Path, required=True, help="GTEx SubjectPhenotypesDS.txt")
    parser.add_argument("--tissue", required=True, help="Tissue name as written in SMTSD, e.g. 'Brain - Cortex'")
    parser.add_argument("--out-dir", type=Path, default=Path("data"), help="Output directory (default: data)")
    parser.add_argument(
        "--min-tpm",
        type=float,
        default=0.0,
        help="Drop genes whose mean TPM in the tissue is below this value (default: %(default)s)",
    )
    args = parser.parse_args()

    samples = tissue_samples(args.sample_attributes, args.tissue)
    expression = read_expression(args.gct, samples["SAMPID"].tolist())
    if args.min_tpm > 0:
        before = expression.shape[0]
        expression = expression.loc[expression.mean(axis=1) >= args.min_tpm]
        log.info("Mean TPM filter %.2f | genes kept=%d of %d", args.min_tpm, expression.shape[0], before)

    phenotypes = pd.read_csv(args.subject_phenotypes, sep="\t", usecols=["SUBJID", "SEX", "AGE"])
    covariates = samples.merge(phenotypes, on="SUBJID", how="left")
    covariates = covariates.loc[covariates["SAMPID"].isin(expression.columns)]
    covariates = covariates.loc[:, ["SAMPID", "SUBJID", "AGE", "SEX", "SMTSD"]]
    n_missing = int(covariates[["AGE", "SEX"]].isna().any(axis=1).sum())
    if n_missing:
        log.warning("%d samples lack AGE or SEX annotations", n_missing)

    args.out_dir.mkdir(parents=True, exist_ok=True)
    expression_path = args.out_dir / "expression.tsv"
    covariate_path = args.out_dir / "covariates.csv"
    expression.to_csv(expression_path, sep="\t")
    covariates.to_csv(covariate_path, index=False)
    log.info("Wrote %s and %s", expression_path, covariate_path)


if __name__ == "__main__":
    main()
