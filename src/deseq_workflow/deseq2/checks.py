"""
Input validation utilities for DESeq2 functions.

Provides centralized checks for SummarizedExperiment inputs, DeseqModel
stages and model comparisons.
"""

from __future__ import annotations

from typing import Any

import numpy as np

from ..counts import COUNTS_ASSAY, count_values, sample_frame
from ..errors import InputMismatch, StageOrderError

STAGES = ("constructed", "size_factors", "dispersions", "wald")


def check_se(se: Any, name: str = "se") -> None:
    """Check that input is a SummarizedExperiment-like object with counts."""
    for attr in ("assays", "assay_names", "row_names", "column_names"):
        if not hasattr(se, attr):
            raise TypeError(
                f"Expected `{name}` to be a SummarizedExperiment-like object, "
                f"got {type(se).__name__} which lacks '{attr}'"
            )
    if COUNTS_ASSAY not in se.assay_names:
        raise KeyError(
            f"Assay '{COUNTS_ASSAY}' not found. Available assays: {list(se.assay_names)}"
        )
    if se.row_names is None or se.column_names is None:
        raise ValueError("The count matrix needs gene ids (row names) and sample ids (column names)")


def check_deseq_model(model: Any, name: str = "model") -> None:
    from .dataset import DeseqModel

    if not isinstance(model, DeseqModel):
        raise TypeError(f"Expected `{name}` to be a DeseqModel, got {type(model).__name__}")


def check_stage(model: Any, required: str) -> None:
    """Raise StageOrderError unless ``model`` has completed stage ``required``."""
    check_deseq_model(model)
    if STAGES.index(model.stage) < STAGES.index(required):
        raise StageOrderError(
            f"Stage '{required}' has not been run on this model (current stage: "
            f"'{model.stage}'); run the fitting stages in order: {' -> '.join(STAGES[1:])}"
        )


def check_same_data(full: Any, reduced: Any) -> None:
    """Both models must be built from the same counts and sample metadata."""
    if list(full.gene_ids) != list(reduced.gene_ids):
        raise InputMismatch("Models were fitted on different genes")
    if list(full.sample_ids) != list(reduced.sample_ids):
        raise InputMismatch("Models were fitted on different samples")
    if not np.array_equal(count_values(full.se), count_values(reduced.se)):
        raise InputMismatch("Models were fitted on different count values")
    if not sample_frame(full.se).equals(sample_frame(reduced.se)):
        raise InputMismatch("Models were fitted with different sample metadata")
