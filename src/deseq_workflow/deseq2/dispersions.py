"""
Estimate gene-wise dispersions using DESeq2::estimateDispersions.

Second fitting stage: gene-wise maximum-likelihood estimates, a trend
across mean expression, and shrinkage of the gene-wise estimates toward
the trend (maximum a posteriori).
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional

import numpy as np

from ..r_env import ensure_r_dependencies, r_vector_to_numpy
from .checks import check_stage
from .dataset import FIT_TYPES, DeseqModel
from .utils import _prep_deseq2

logger = logging.getLogger(__name__)


def estimate_dispersions(model: DeseqModel, fit_type: Optional[str] = None) -> DeseqModel:
    """
    Estimate one dispersion per gene.

    The "glmGamPoi" trend needs the glmGamPoi R package, which is
    installed on first use.

    Args:
        model: DeseqModel with size factors.
        fit_type: Trend type: "parametric", "local", "mean" or "glmGamPoi".
            Default: ``model.config.fit_type``.

    Returns:
        New DeseqModel at stage "dispersions". Genes with all-zero counts
        get a NaN dispersion.

    Raises:
        StageOrderError: If size factors have not been estimated.
    """
    check_stage(model, "size_factors")
    fit_type = fit_type or model.config.fit_type
    if fit_type not in FIT_TYPES:
        raise ValueError(f"fit_type must be one of {FIT_TYPES}, got {fit_type!r}")
    if fit_type == "glmGamPoi":
        ensure_r_dependencies(["glmGamPoi"])

    r, pkg = _prep_deseq2()
    dds = pkg.estimateDispersions(model.dds, fitType=fit_type)
    dispersions = r_vector_to_numpy(r.call("dispersions", dds))
    logger.info(
        "Estimated dispersions (%s trend) for %d genes, %d NA",
        fit_type, len(dispersions), int(np.isnan(dispersions).sum()),
    )

    return replace(model, dds=dds, stage="dispersions", dispersions=dispersions, coefficients=None)
