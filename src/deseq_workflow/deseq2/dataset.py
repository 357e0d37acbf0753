"""
DESeqDataSet construction and the DeseqModel value object.

A ``DeseqModel`` bundles the input experiment, the design, the R
``DESeqDataSet`` and the Python copies of everything the fitting stages
estimate. It is immutable: every stage returns a new model, and R's
copy-on-modify semantics keep the ``DESeqDataSet`` of earlier models
untouched. Fitting the same data with another design means building a
new model with ``deseq_dataset`` (or ``DeseqModel.with_design``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from ..counts import count_values, sample_frame
from ..design import Design
from ..r_env import factor_frame_to_r, int_matrix_to_r
from .checks import check_se
from .utils import _prep_deseq2

logger = logging.getLogger(__name__)

SF_TYPES = ("ratio", "poscounts", "iterate")
FIT_TYPES = ("parametric", "local", "mean", "glmGamPoi")


@dataclass(frozen=True)
class DeseqConfig:
    """Parameters of the three fitting stages.

    Attributes:
        sf_type: Size factor estimator: "ratio" (median-of-ratios),
            "poscounts" or "iterate".
        fit_type: Dispersion trend: "parametric", "local", "mean" or
            "glmGamPoi".
        use_t: Use a t distribution for Wald p-values.
        min_mu: Lower bound on fitted means for the NB likelihood.
        max_iter: Maximum IRLS iterations per gene.
    """

    sf_type: str = "ratio"
    fit_type: str = "parametric"
    use_t: bool = False
    min_mu: float = 0.5
    max_iter: int = 100

    def __post_init__(self):
        if self.sf_type not in SF_TYPES:
            raise ValueError(f"sf_type must be one of {SF_TYPES}, got {self.sf_type!r}")
        if self.fit_type not in FIT_TYPES:
            raise ValueError(f"fit_type must be one of {FIT_TYPES}, got {self.fit_type!r}")
        if self.min_mu <= 0:
            raise ValueError("min_mu must be positive")
        if self.max_iter < 1:
            raise ValueError("max_iter must be at least 1")


@dataclass(frozen=True, eq=False)
class DeseqModel:
    """
    A DESeq2 model at some point of the fitting pipeline.

    Attributes:
        se: SummarizedExperiment with the raw counts and sample metadata.
        design: Design the model is fitted with.
        dds: The R ``DESeqDataSet``.
        config: Parameters used (or to be used) by the stages.
        model_matrix: Samples x coefficients matrix of ``design``.
        stage: Last completed stage: "constructed", "size_factors",
            "dispersions" or "wald".
        size_factors: Per-sample size factors.
        dispersions: Per-gene final (MAP) dispersions; NaN for degenerate genes.
        coefficients: Genes x coefficients on the log2 scale.
    """

    se: Any
    design: Design
    dds: Any = field(repr=False)
    config: DeseqConfig = field(default_factory=DeseqConfig)
    model_matrix: Optional[pd.DataFrame] = field(default=None, repr=False)
    stage: str = "constructed"
    size_factors: Optional[np.ndarray] = field(default=None, repr=False)
    dispersions: Optional[np.ndarray] = field(default=None, repr=False)
    coefficients: Optional[pd.DataFrame] = field(default=None, repr=False)

    @property
    def gene_ids(self) -> List[str]:
        return [str(g) for g in self.se.row_names]

    @property
    def sample_ids(self) -> List[str]:
        return [str(s) for s in self.se.column_names]

    @property
    def coefficient_names(self) -> List[str]:
        return self.design.coefficient_names

    @property
    def formula(self) -> str:
        return self.design.formula

    @property
    def degenerate_genes(self) -> List[str]:
        """Genes whose fit produced NA (all-zero counts or failed estimation)."""
        bad = count_values(self.se).sum(axis=1) == 0
        if self.dispersions is not None:
            bad |= np.isnan(self.dispersions)
        if self.coefficients is not None:
            bad |= self.coefficients.isna().any(axis=1).to_numpy()
        return [g for g, flag in zip(self.gene_ids, bad) if flag]

    def with_design(self, design: Design) -> "DeseqModel":
        """A fresh, unfitted model of the same data under another design."""
        return deseq_dataset(self.se, design, config=self.config)

    def results(
        self,
        name: Optional[str] = None,
        contrast: Optional[Union[Tuple[str, str, str], Sequence[float]]] = None,
        **kwargs: Any,
    ):
        """
        Extract a ResultsTable from this fitted model.

        Convenience method that delegates to ``deseq2.results``.

        Example:
            >>> model = deseq(se, design)
            >>> res = model.results(contrast=("Status", "pregnant", "virgin"))
        """
        from .results import results as _results

        return _results(self, name=name, contrast=contrast, **kwargs)

    def shrink(self, table, coef=None, contrast=None, type: str = "apeglm"):
        """Add shrunken log2 fold changes to ``table``; see ``deseq2.shrink_lfc``."""
        from .shrink import shrink_lfc

        return shrink_lfc(self, table, coef=coef, contrast=contrast, type=type)


def deseq_dataset(
    se: Any,
    design: Design,
    config: Optional[DeseqConfig] = None,
) -> DeseqModel:
    """
    Build an unfitted DeseqModel from counts, metadata and a design.

    The design is validated against the sample metadata in Python before
    anything is sent to R; design factors reach R as factors with exactly
    the declared level order, so the reference level is never inferred.

    Args:
        se: SummarizedExperiment from ``counts.build_count_matrix``.
        design: Design over the metadata columns.
        config: Stage parameters. Default: ``DeseqConfig()``.

    Returns:
        DeseqModel at stage "constructed".

    Raises:
        InputMismatch: If the metadata lacks a design factor or has values
            outside its declared levels.
        ValueError: If the model matrix is not full rank.

    Example:
        >>> from deseq_workflow.design import make_design
        >>> design = make_design({"CellType": ["basal", "luminal"]})
        >>> model = deseq_dataset(se, design)
    """
    check_se(se)
    if not isinstance(design, Design):
        raise TypeError(f"Expected `design` to be a Design, got {type(design).__name__}")
    config = config or DeseqConfig()

    sample_info = sample_frame(se)
    model_matrix = design.model_matrix(sample_info)

    r, pkg = _prep_deseq2()
    counts_r = int_matrix_to_r(count_values(se), se.row_names, se.column_names)
    coldata_r = factor_frame_to_r(sample_info, design.levels)
    dds = pkg.DESeqDataSetFromMatrix(
        countData=counts_r,
        colData=coldata_r,
        design=r.Formula(design.formula),
    )
    logger.info(
        "Built DESeqDataSet with design %s (%d genes x %d samples)",
        design.formula, se.shape[0], se.shape[1],
    )
    return DeseqModel(se=se, design=design, dds=dds, config=config, model_matrix=model_matrix)
