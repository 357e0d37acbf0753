"""
One-call DESeq2 pipeline.

``deseq`` runs the three fitting stages in order with the parameters of a
single ``DeseqConfig``; it is exactly the sequence

    >>> model = deseq_dataset(se, design, config)
    >>> model = estimate_size_factors(model)
    >>> model = estimate_dispersions(model)
    >>> model = nbinom_wald_test(model)

so stage-by-stage fitting with the same inputs gives the same model.
"""

from __future__ import annotations

from typing import Any, Optional

from ..design import Design
from .dataset import DeseqConfig, DeseqModel, deseq_dataset
from .dispersions import estimate_dispersions
from .size_factors import estimate_size_factors
from .wald_test import nbinom_wald_test


def deseq(se: Any, design: Design, config: Optional[DeseqConfig] = None) -> DeseqModel:
    """
    Estimate size factors and dispersions, fit the GLM and run Wald tests.

    Args:
        se: SummarizedExperiment from ``counts.build_count_matrix``.
        design: Model design with explicit reference levels.
        config: Stage parameters. Default: ``DeseqConfig()``.

    Returns:
        DeseqModel at stage "wald".

    Example:
        >>> import deseq_workflow.deseq2 as deseq2
        >>> model = deseq2.deseq(se, design)
        >>> res = deseq2.results(model, name="Status_lactate_vs_virgin")
    """
    model = deseq_dataset(se, design, config=config)
    model = estimate_size_factors(model)
    model = estimate_dispersions(model)
    return nbinom_wald_test(model)
