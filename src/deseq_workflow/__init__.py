"""deseq_workflow: bulk RNA-seq differential expression with DESeq2 from Python.

Count loading, design encoding, independent filtering, ranking and
result export are plain Python. Model fitting (DESeq2) and annotation
lookup (biomaRt) run in R through rpy2 and are loaded lazily, so the
R dependency check happens only when they are first used.

Usage:
    >>> from deseq_workflow import read_count_table, read_sample_info, build_count_matrix, make_design
    >>> se = build_count_matrix(read_count_table("counts.txt"), read_sample_info("samples.txt"))
    >>> design = make_design({"CellType": ["basal", "luminal"], "Status": ["virgin", "pregnant", "lactate"]})
    >>> # DESeq2 is NOT loaded yet - no R dependency check
    >>>
    >>> import deseq_workflow.deseq2 as deseq2  # NOW DESeq2 is checked/installed
    >>> model = deseq2.deseq(se, design)
"""

from __future__ import annotations

import importlib

# Core exports that don't require R
from .errors import (
    DeseqWorkflowError,
    InputMismatch,
    InvalidContrast,
    StageOrderError,
    DegenerateFitWarning,
)
from .counts import (
    MIN_TOTAL_COUNT,
    build_count_matrix,
    count_values,
    counts_frame,
    sample_frame,
    library_sizes,
    filter_low_counts,
)
from .design import Factor, Design, make_design, make_r_name
from .filtering import (
    DEFAULT_ALPHA,
    FilterOutcome,
    p_adjust_bh,
    filtered_p,
    independent_filtering,
    rank_results,
    top_genes,
    summarize,
)
from .results_table import RESULT_COLUMNS, ResultsTable, make_results_table
from .io import (
    read_count_table,
    read_sample_info,
    strip_sample_suffix,
    save_bundle,
    load_bundle,
    write_results,
)
from .r_env import ensure_r_dependencies, get_r_environment, is_r_package_available

__all__ = [
    "DeseqWorkflowError",
    "InputMismatch",
    "InvalidContrast",
    "StageOrderError",
    "DegenerateFitWarning",
    "MIN_TOTAL_COUNT",
    "build_count_matrix",
    "count_values",
    "counts_frame",
    "sample_frame",
    "library_sizes",
    "filter_low_counts",
    "Factor",
    "Design",
    "make_design",
    "make_r_name",
    "DEFAULT_ALPHA",
    "FilterOutcome",
    "p_adjust_bh",
    "filtered_p",
    "independent_filtering",
    "rank_results",
    "top_genes",
    "summarize",
    "RESULT_COLUMNS",
    "ResultsTable",
    "make_results_table",
    "read_count_table",
    "read_sample_info",
    "strip_sample_suffix",
    "save_bundle",
    "load_bundle",
    "write_results",
    "ensure_r_dependencies",
    "get_r_environment",
    "is_r_package_available",
    # Lazy-loaded submodules
    "deseq2",
    "annotation",
    "plots",
]

# Submodules to be lazily loaded
_LAZY_SUBMODULES = {"deseq2", "annotation", "plots"}


def __getattr__(name: str):
    """Lazy loading of submodules per PEP 562."""
    if name in _LAZY_SUBMODULES:
        module = importlib.import_module(f".{name}", __name__)
        globals()[name] = module
        return module
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__():
    """Include lazy submodules in dir() output."""
    return list(__all__)
