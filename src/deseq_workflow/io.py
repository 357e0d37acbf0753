"""
Reading count and metadata tables, bundle persistence and result export.

The count table is the tab-separated output of featureCounts: commented
header lines, a gene id column, gene annotation columns (Chr, Start, End,
Strand, Length) and one column per sample named after its BAM file.
"""

from __future__ import annotations

import logging
import pickle
import re
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

ANNOTATION_COLUMNS = ("Chr", "Start", "End", "Strand", "Length")
DEFAULT_SUFFIX = r"\.bam$"


def strip_sample_suffix(names: Sequence[str], suffix: Optional[str] = DEFAULT_SUFFIX) -> list:
    """Remove a trailing regex ``suffix`` (e.g. ``.bam``) from sample names."""
    if not suffix:
        return [str(n) for n in names]
    pattern = re.compile(suffix)
    return [pattern.sub("", str(n)) for n in names]


def read_count_table(
    path: PathLike,
    comment: str = "#",
    annotation_columns: Sequence[str] = ANNOTATION_COLUMNS,
    suffix: Optional[str] = DEFAULT_SUFFIX,
    sep: str = "\t",
) -> pd.DataFrame:
    """
    Read a gene x sample count table.

    Args:
        path: Tab-separated table, first column = gene id.
        comment: Prefix of header comment lines.
        annotation_columns: Non-sample columns to drop when present.
        suffix: Regex removed from the end of sample column names.
        sep: Field separator.

    Returns:
        DataFrame of int64 counts indexed by gene id (as str).

    Raises:
        ValueError: If a count is missing or not a whole number.
    """
    table = pd.read_csv(path, sep=sep, comment=comment, index_col=0)
    drop = [c for c in table.columns if c in set(annotation_columns)]
    table = table.drop(columns=drop)
    table.columns = strip_sample_suffix(table.columns, suffix)
    table.index = table.index.astype(str)
    table.index.name = "gene"
    values = table.to_numpy(dtype=float)
    bad = np.isnan(values).any(axis=1) | (values != np.round(values)).any(axis=1)
    if bad.any():
        raise ValueError(f"Counts must be integers; offending genes: {list(table.index[bad][:10])}")
    logger.info("Read %d genes x %d samples from %s", table.shape[0], table.shape[1], path)
    return table.astype("int64")


def read_sample_info(
    path: PathLike,
    sample_column: Optional[str] = None,
    sep: str = "\t",
) -> pd.DataFrame:
    """
    Read a sample metadata table indexed by its sample id column.

    All columns are read as strings; factor levels are declared by the
    design, never inferred from the file.

    Args:
        path: Delimited metadata table.
        sample_column: Column holding sample ids. Defaults to the first.
        sep: Field separator.
    """
    table = pd.read_csv(path, sep=sep, dtype=str)
    if sample_column is None:
        sample_column = table.columns[0]
    if sample_column not in table.columns:
        raise KeyError(
            f"Sample column '{sample_column}' not found. Available: {list(table.columns)}"
        )
    table = table.set_index(sample_column)
    table.index = table.index.astype(str)
    return table


def save_bundle(path: PathLike, **objects: Any) -> Path:
    """
    Persist named objects (e.g. ``counts=..., sample_info=...``) as one file.

    Fitted models keep their R objects; rpy2 serializes them through R.
    """
    if not objects:
        raise ValueError("Nothing to save")
    path = Path(path)
    with path.open("wb") as fh:
        pickle.dump(dict(objects), fh, protocol=pickle.HIGHEST_PROTOCOL)
    logger.info("Saved bundle %s with %s", path, sorted(objects))
    return path


def load_bundle(path: PathLike, required: Sequence[str] = ()) -> Dict[str, Any]:
    """Load a bundle written by ``save_bundle``; check ``required`` keys exist."""
    with Path(path).open("rb") as fh:
        bundle = pickle.load(fh)
    if not isinstance(bundle, dict):
        raise TypeError(f"{path} does not contain a bundle")
    missing = [key for key in required if key not in bundle]
    if missing:
        raise KeyError(f"Bundle {path} lacks {missing}. Available: {sorted(bundle)}")
    return bundle


def write_results(
    table: pd.DataFrame,
    path: PathLike,
    columns: Optional[Union[Sequence[str], Mapping[str, str]]] = None,
    sep: str = "\t",
    index: bool = False,
) -> Path:
    """
    Write a results table as flat delimited text.

    Args:
        table: Results or annotated results frame.
        path: Output file.
        columns: Columns to keep, or a ``{old: new}`` mapping to keep and
            rename them in that order.
        sep: Field separator.
        index: Also write the index.
    """
    out = table
    if columns is not None:
        if isinstance(columns, Mapping):
            out = out[list(columns)].rename(columns=dict(columns))
        else:
            out = out[list(columns)]
    path = Path(path)
    out.to_csv(path, sep=sep, index=index, na_rep="NA")
    logger.info("Wrote %d rows to %s", len(out), path)
    return path
