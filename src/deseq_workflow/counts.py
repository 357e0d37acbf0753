"""
Count matrix loading and low-count filtering.

A count matrix and its sample metadata travel together as one BiocPy
``SummarizedExperiment``: assay ``"counts"`` (genes x samples, int64),
gene ids as ``row_names``, sample ids as ``column_names`` and the metadata
as ``column_data`` in count-column order.

Example:
    >>> se = build_count_matrix(counts_df, sample_info_df)
    >>> se = filter_low_counts(se, min_total=5)
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

import numpy as np
import pandas as pd

from .errors import InputMismatch

logger = logging.getLogger(__name__)

MIN_TOTAL_COUNT = 5
COUNTS_ASSAY = "counts"


def _duplicates(values: Sequence[Any]) -> list:
    return sorted({str(v) for v in pd.Index(values)[pd.Index(values).duplicated()]})


def _check_counts(values: np.ndarray) -> np.ndarray:
    try:
        arr = np.asarray(values, dtype=float)
    except (TypeError, ValueError) as err:
        raise TypeError("Counts must be numeric") from err
    if not np.all(np.isfinite(arr)):
        raise ValueError("Counts contain missing or non-finite values")
    if np.any(arr < 0):
        raise ValueError("Counts must be non-negative")
    if np.any(arr != np.round(arr)):
        raise ValueError("Counts must be integers")
    return arr.astype(np.int64)


def build_count_matrix(counts: pd.DataFrame, sample_info: pd.DataFrame):
    """
    Reconcile a count table with its sample metadata.

    Args:
        counts: Genes x samples table of raw counts; index = gene ids,
            columns = sample ids.
        sample_info: One row per sample, indexed by sample id. Column order
            of the result follows this table.

    Returns:
        SummarizedExperiment with the ``"counts"`` assay and the metadata as
        column data.

    Raises:
        InputMismatch: Duplicated ids, or metadata sample ids not equal (as
            a set) to the count columns.
        TypeError: If ``counts`` or ``sample_info`` is not a DataFrame.
        ValueError: If counts are negative, missing or not integers.
    """
    from biocframe import BiocFrame
    from summarizedexperiment import SummarizedExperiment

    if not isinstance(counts, pd.DataFrame):
        raise TypeError(f"Expected `counts` to be a pandas DataFrame, got {type(counts).__name__}")
    if not isinstance(sample_info, pd.DataFrame):
        raise TypeError(
            f"Expected `sample_info` to be a pandas DataFrame, got {type(sample_info).__name__}"
        )

    dup_genes = _duplicates(counts.index)
    if dup_genes:
        raise InputMismatch(f"Duplicated gene ids in count matrix: {dup_genes[:10]}")
    dup_cols = _duplicates(counts.columns)
    if dup_cols:
        raise InputMismatch(f"Duplicated sample ids in count matrix: {dup_cols}")
    dup_samples = _duplicates(sample_info.index)
    if dup_samples:
        raise InputMismatch(f"Duplicated sample ids in sample metadata: {dup_samples}")

    count_ids = [str(c) for c in counts.columns]
    meta_ids = [str(s) for s in sample_info.index]
    missing = sorted(set(meta_ids) - set(count_ids))
    unexpected = sorted(set(count_ids) - set(meta_ids))
    if missing or unexpected:
        raise InputMismatch(
            "Sample ids in metadata and count matrix disagree; "
            f"in metadata only: {missing}, in counts only: {unexpected}"
        )

    ordered = counts.copy()
    ordered.columns = count_ids
    ordered = ordered[meta_ids]
    values = _check_counts(ordered.to_numpy())

    coldata = BiocFrame(
        {str(col): [str(v) for v in sample_info[col]] for col in sample_info.columns},
        number_of_rows=len(meta_ids),
        row_names=meta_ids,
    )
    gene_ids = [str(g) for g in ordered.index]
    se = SummarizedExperiment(
        assays={COUNTS_ASSAY: values},
        row_names=gene_ids,
        column_names=meta_ids,
        column_data=coldata,
    )
    logger.info("Loaded count matrix: %d genes x %d samples", len(gene_ids), len(meta_ids))
    return se


def count_values(se: Any) -> np.ndarray:
    """The raw count assay as an int64 array."""
    return np.asarray(se.assay(COUNTS_ASSAY), dtype=np.int64)


def counts_frame(se: Any) -> pd.DataFrame:
    return pd.DataFrame(
        count_values(se),
        index=[str(g) for g in se.row_names],
        columns=[str(s) for s in se.column_names],
    )


def sample_frame(se: Any) -> pd.DataFrame:
    """Sample metadata as a DataFrame indexed by sample id."""
    coldata = se.get_column_data()
    sample_ids = [str(s) for s in se.column_names]
    if coldata is None or len(coldata.column_names) == 0:
        return pd.DataFrame(index=sample_ids)
    frame = pd.DataFrame({str(col): list(coldata.get_column(col)) for col in coldata.column_names})
    frame.index = sample_ids
    return frame


def library_sizes(se: Any) -> pd.Series:
    return pd.Series(
        count_values(se).sum(axis=0),
        index=[str(s) for s in se.column_names],
        name="library_size",
    )


def filter_low_counts(se: Any, min_total: int = MIN_TOTAL_COUNT):
    """
    Drop genes whose total count across samples is at or below ``min_total``.

    Filtering is idempotent: a second pass removes nothing.

    Args:
        se: SummarizedExperiment from ``build_count_matrix``.
        min_total: Genes with total count ``<= min_total`` are removed.

    Returns:
        A new SummarizedExperiment with the surviving genes in their
        original order.
    """
    totals = count_values(se).sum(axis=1)
    keep = np.flatnonzero(totals > min_total)
    logger.info(
        "Removed %d of %d genes with total count <= %d",
        len(totals) - len(keep), len(totals), min_total,
    )
    return se[keep.tolist(), :]
