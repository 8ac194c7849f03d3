"""Read and write the tab-separated tables used by the methodical command line."""

import csv
import os
from typing import Iterable, Optional

# Third party modules
import numpy as np
import pandas as pd

from methodical.anchor import AnchorCorrelations
from methodical.matrix import MethylationMatrix
from methodical.tmrs import TMR, TMR_FIELDS
from methodical.window import Anchor


NA_VALUES = ["", "NA", "NaN", "nan", "."]


def _format_value(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value != value:
        return "NA"
    return str(value)


def _read_table(path: str, **kwargs) -> pd.DataFrame:
    """Read a TSV into a DataFrame, treating NA_VALUES as missing."""
    if not os.access(path, os.R_OK):
        raise FileNotFoundError("Cannot read table: " + os.path.abspath(path))
    try:
        return pd.read_csv(
            path, sep="\t", na_values=NA_VALUES, keep_default_na=False, **kwargs
        )
    except pd.errors.EmptyDataError as e:
        raise ValueError(f"Table is empty: {path}") from e


def _optional_int(value) -> Optional[int]:
    return None if pd.isna(value) else int(value)


def read_anchors(path: str) -> list[Anchor]:
    """Read anchors from a TSV with columns name, seqname, position[, strand].

    Optional upstream and downstream columns set per-anchor window extents.
    """
    df = _read_table(path, dtype={"name": str, "seqname": str, "strand": str})
    missing = {"name", "seqname", "position"} - set(df.columns)
    if missing:
        raise ValueError(f"Anchor table {path} is missing columns: {', '.join(sorted(missing))}")

    anchors = []
    for record in df.to_dict("records"):
        strand = record.get("strand")
        anchors.append(
            Anchor(
                name=record["name"],
                seqname=record["seqname"],
                position=int(record["position"]),
                strand="*" if pd.isna(strand) else strand,
                upstream=_optional_int(record.get("upstream")),
                downstream=_optional_int(record.get("downstream")),
            )
        )
    return anchors


def read_feature_table(path: str) -> dict[str, dict[str, float]]:
    """Read a feature (e.g. expression) table.

    The first column holds feature names; every other column is a sample.
    Missing values are left out of the feature's sample mapping.
    """
    df = _read_table(path, index_col=0)
    df.index = df.index.astype(str)
    df.columns = df.columns.astype(str)
    return {
        name: {sample: float(value) for sample, value in row.dropna().items()}
        for name, row in df.astype(float).iterrows()
    }


def read_methylation_table(path: str, verbose: bool = False) -> MethylationMatrix:
    """Read a methylation TSV with columns seqname, position, then one per sample."""
    df = _read_table(path, dtype={"seqname": str})
    if list(df.columns[:2]) != ["seqname", "position"]:
        raise ValueError(f"Methylation table {path} must start with seqname and position columns")
    return MethylationMatrix(
        seqnames=df["seqname"].tolist(),
        positions=df["position"].to_numpy(dtype=np.int64),
        values=df.iloc[:, 2:].to_numpy(dtype=float),
        sample_names=[str(sample) for sample in df.columns[2:]],
        verbose=verbose,
    )


def load_methylation(path: str, verbose: bool = False) -> MethylationMatrix:
    """Load a methylation matrix from a .npz file or a TSV."""
    if path.endswith(".npz"):
        return MethylationMatrix.load_npz(path, verbose=verbose)
    return read_methylation_table(path, verbose=verbose)


def write_tmrs(tmrs: Iterable[TMR], path: str) -> None:
    """Write TMRs to a TSV."""
    with open(path, "w", newline="") as f:
        writer = csv.writer(f, delimiter="\t", lineterminator="\n")
        writer.writerow(TMR_FIELDS)
        for tmr in tmrs:
            writer.writerow([_format_value(v) for v in tmr.as_row()])


def write_correlations(correlations: AnchorCorrelations, path: str) -> None:
    """Write the site correlations around one anchor to a TSV.

    The anchor location is written as a leading comment line.
    """
    fields = ["seqname", "position", "cor", "p_val"]
    if correlations.q_val is not None:
        fields.append("q_val")
    fields.append("distance_to_anchor")

    with open(path, "w", newline="") as f:
        f.write(f"# anchor={correlations.anchor.name} location={correlations.anchor.location}\n")
        writer = csv.writer(f, delimiter="\t", lineterminator="\n")
        writer.writerow(fields)
        for record in correlations:
            writer.writerow([_format_value(getattr(record, field)) for field in fields])
