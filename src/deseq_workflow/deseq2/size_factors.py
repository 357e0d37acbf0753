"""
Estimate size factors using DESeq2::estimateSizeFactors.

First fitting stage. The default median-of-ratios estimator divides each
sample by the per-gene geometric mean across samples and takes the median
ratio; genes with a zero in any sample have no geometric mean and do not
contribute, and the result does not depend on gene order.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional

from ..r_env import r_vector_to_numpy
from .checks import check_deseq_model
from .dataset import SF_TYPES, DeseqModel
from .utils import _prep_deseq2

logger = logging.getLogger(__name__)


def estimate_size_factors(model: DeseqModel, sf_type: Optional[str] = None) -> DeseqModel:
    """
    Estimate one normalization factor per sample.

    Wraps ``DESeq2::estimateSizeFactors``. Any later-stage estimates on
    ``model`` are dropped from the returned model, since they depend on
    the size factors.

    Args:
        model: DeseqModel at any stage.
        sf_type: "ratio", "poscounts" or "iterate". Default: ``model.config.sf_type``.
            "ratio" fails in R when every gene has at least one zero count;
            use "poscounts" for such data.

    Returns:
        New DeseqModel at stage "size_factors".

    Example:
        >>> model = estimate_size_factors(deseq_dataset(se, design))
        >>> model.size_factors
    """
    check_deseq_model(model)
    sf_type = sf_type or model.config.sf_type
    if sf_type not in SF_TYPES:
        raise ValueError(f"sf_type must be one of {SF_TYPES}, got {sf_type!r}")

    r, pkg = _prep_deseq2()
    dds = pkg.estimateSizeFactors(model.dds, type=sf_type)
    size_factors = r_vector_to_numpy(r.call("sizeFactors", dds))
    logger.info("Estimated size factors (%s): %s", sf_type, size_factors.round(3).tolist())

    return replace(
        model,
        dds=dds,
        stage="size_factors",
        size_factors=size_factors,
        dispersions=None,
        coefficients=None,
    )
