"""
Gene annotation: biomaRt lookup and joining onto results tables.

Annotation sources rarely map genes one-to-one. The join here is a left
join on gene id: genes without an annotation row keep NaN annotation
fields, genes with several rows appear once per row. Both are expected
data-quality outcomes and are logged, not raised.

Usage:
    >>> annot = query_biomart(res.gene_ids, dataset="mmusculus_gene_ensembl")
    >>> annotated = annotate_results(res, annot)
    >>> write_results(rename_for_export(annotated), "results.tsv")
"""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Sequence, Union

import numpy as np
import pandas as pd

from .r_env import ensure_r_dependencies, get_r_environment, r_frame_to_pandas
from .results_table import ResultsTable

logger = logging.getLogger(__name__)

DEFAULT_MART = "ENSEMBL_MART_ENSEMBL"
DEFAULT_DATASET = "mmusculus_gene_ensembl"
DEFAULT_HOST = "https://www.ensembl.org"
DEFAULT_FILTER = "ensembl_gene_id"
DEFAULT_ATTRIBUTES = (
    "ensembl_gene_id",
    "entrezgene_id",
    "external_gene_name",
    "description",
    "chromosome_name",
    "start_position",
    "end_position",
    "strand",
    "gene_biotype",
)

EXPORT_COLUMNS = {
    "gene": "GeneID",
    "entrezgene_id": "Entrez",
    "external_gene_name": "Symbol",
    "description": "Description",
    "base_mean": "baseMean",
    "log2_fc": "logFC",
    "log2_fc_shrunk": "logFC_shrunk",
    "lfc_se": "lfcSE",
    "stat": "stat",
    "p_value": "pvalue",
    "adj_p_value": "FDR",
    "chromosome_name": "Chr",
    "start_position": "Start",
    "end_position": "End",
    "strand": "Strand",
    "gene_biotype": "Biotype",
}


def query_biomart(
    gene_ids: Sequence[str],
    dataset: str = DEFAULT_DATASET,
    filter_name: str = DEFAULT_FILTER,
    attributes: Sequence[str] = DEFAULT_ATTRIBUTES,
    mart: str = DEFAULT_MART,
    host: str = DEFAULT_HOST,
) -> pd.DataFrame:
    """
    Fetch annotation rows for ``gene_ids`` from Ensembl BioMart.

    Wraps ``biomaRt::getBM``. This is a blocking remote call; it returns
    zero or more rows per requested id.

    Args:
        gene_ids: Identifiers to look up.
        dataset: BioMart dataset, e.g. "mmusculus_gene_ensembl".
        filter_name: BioMart filter matching the kind of ``gene_ids``,
            e.g. "ensembl_gene_id" or "entrezgene_id".
        attributes: Attributes to return; ``filter_name`` is added if absent.
        mart: BioMart database.
        host: BioMart host URL.

    Returns:
        pd.DataFrame with one column per attribute.
    """
    ensure_r_dependencies(["biomaRt"])
    r = get_r_environment()
    biomart = r.lazy_import_r_packages("biomaRt")

    attributes = list(attributes)
    if filter_name not in attributes:
        attributes.insert(0, filter_name)

    ensembl = biomart.useMart(mart, dataset=dataset, host=host)
    rdf = biomart.getBM(
        attributes=r.StrVector(attributes),
        filters=filter_name,
        values=r.StrVector([str(g) for g in gene_ids]),
        mart=ensembl,
    )
    table = r_frame_to_pandas(rdf).reset_index(drop=True)
    logger.info(
        "BioMart returned %d rows for %d %s ids", len(table), len(gene_ids), filter_name
    )
    return table


def _as_frame(results: Union[ResultsTable, pd.DataFrame]) -> pd.DataFrame:
    if isinstance(results, ResultsTable):
        return results.table
    if isinstance(results, pd.DataFrame):
        return results.copy()
    raise TypeError(f"Expected a ResultsTable or DataFrame, got {type(results).__name__}")


def _key_strings(ids: pd.Series) -> pd.Series:
    # Integer ids read next to NaN come back as float: 497097.0
    if pd.api.types.is_float_dtype(ids) and np.all(np.mod(ids.to_numpy(), 1) == 0):
        ids = ids.astype("int64")
    return ids.astype(str)


def annotate_results(
    results: Union[ResultsTable, pd.DataFrame],
    annotation: pd.DataFrame,
    key: str = DEFAULT_FILTER,
) -> pd.DataFrame:
    """
    Left-join annotation rows onto a gene-indexed results table.

    Args:
        results: ResultsTable or DataFrame indexed by gene id.
        annotation: Table with a ``key`` column of gene ids.
        key: Annotation column matching the results index.

    Returns:
        pd.DataFrame with a ``gene`` column, the result columns and the
        annotation columns, in results order. Unmatched genes have NaN
        annotation fields; genes with several annotation rows are repeated.
    """
    if key not in annotation.columns:
        raise KeyError(f"Annotation has no column '{key}'. Available: {list(annotation.columns)}")

    left = _as_frame(results)
    left.index = [str(g) for g in left.index]
    left = left.rename_axis("gene").reset_index()

    right = annotation[annotation[key].notna()].copy()
    right[key] = _key_strings(right[key])
    clash = [c for c in right.columns if c in left.columns and c != key]
    if clash:
        raise ValueError(f"Annotation columns {clash} collide with result columns")

    merged = left.merge(right, how="left", left_on="gene", right_on=key, indicator=True)
    unmatched = merged.loc[merged["_merge"] == "left_only", "gene"].nunique()
    duplicated = merged.loc[merged["gene"].duplicated(), "gene"].nunique()
    merged = merged.drop(columns=["_merge"] + ([key] if key != "gene" else []))

    logger.info(
        "Annotated %d genes: %d without annotation, %d with multiple annotation rows",
        len(left), unmatched, duplicated,
    )
    return merged


def annotation_gaps(
    annotated: pd.DataFrame,
    column: str = "external_gene_name",
) -> Dict[str, List[str]]:
    """Genes with no value in ``column`` and genes that appear more than once."""
    missing = annotated.loc[annotated[column].isna(), "gene"]
    repeated = annotated.loc[annotated["gene"].duplicated(), "gene"]
    return {
        "unmatched": sorted(set(missing.astype(str))),
        "duplicated": sorted(set(repeated.astype(str))),
    }


def rename_for_export(
    annotated: pd.DataFrame,
    mapping: Mapping[str, str] = EXPORT_COLUMNS,
) -> pd.DataFrame:
    """Keep the mapped columns that are present, in mapping order, renamed."""
    keep = [c for c in mapping if c in annotated.columns]
    return annotated[keep].rename(columns={c: mapping[c] for c in keep})
