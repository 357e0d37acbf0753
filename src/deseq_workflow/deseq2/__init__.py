"""DESeq2: negative binomial differential expression for count data.

This module provides Python wrappers for the R DESeq2 package. Each
fitting stage is a function returning a new ``DeseqModel``.

Functional API:
    >>> import deseq_workflow.deseq2 as deseq2
    >>> model = deseq2.deseq_dataset(se, design)
    >>> model = deseq2.estimate_size_factors(model)
    >>> model = deseq2.estimate_dispersions(model)
    >>> model = deseq2.nbinom_wald_test(model)
    >>> res = deseq2.results(model, contrast=("Status", "pregnant", "virgin"))

One-call form:
    >>> model = deseq2.deseq(se, design)
"""

# Check/install DESeq2 R package on module import
from ..r_env import ensure_r_dependencies
ensure_r_dependencies(["DESeq2"])

from .dataset import DeseqConfig, DeseqModel, deseq_dataset
from .size_factors import estimate_size_factors
from .dispersions import estimate_dispersions
from .wald_test import nbinom_wald_test
from .deseq import deseq
from .results import compare_models, resolve_contrast, results
from .shrink import shrink_lfc
from .transform import normalized_counts, variance_stabilize
from .utils import _prep_deseq2

__all__ = [
    # Model classes
    "DeseqConfig",
    "DeseqModel",
    # Fitting stages
    "deseq_dataset",
    "estimate_size_factors",
    "estimate_dispersions",
    "nbinom_wald_test",
    "deseq",
    # Results
    "results",
    "resolve_contrast",
    "compare_models",
    "shrink_lfc",
    # Matrices
    "normalized_counts",
    "variance_stabilize",
    # Utilities
    "_prep_deseq2",
]
