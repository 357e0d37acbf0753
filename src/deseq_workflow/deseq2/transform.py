"""
Normalized and variance-stabilized expression matrices for plotting.
"""

from __future__ import annotations

import logging
from typing import Literal

import numpy as np
import pandas as pd

from ..counts import count_values
from ..r_env import r_matrix_to_frame
from .checks import check_deseq_model, check_stage
from .dataset import DeseqModel
from .utils import _prep_deseq2

logger = logging.getLogger(__name__)

# DESeq2::vst subsamples this many genes to fit the dispersion trend.
VST_NSUB = 1000


def normalized_counts(model: DeseqModel) -> pd.DataFrame:
    """Counts divided by the sample size factors (genes x samples)."""
    check_stage(model, "size_factors")
    values = count_values(model.se) / model.size_factors[np.newaxis, :]
    return pd.DataFrame(values, index=model.gene_ids, columns=model.sample_ids)


def variance_stabilize(
    model: DeseqModel,
    blind: bool = True,
    method: Literal["vst", "rlog"] = "vst",
) -> pd.DataFrame:
    """
    Log2-scale, variance-stabilized expression (genes x samples).

    Wraps ``DESeq2::vst`` (``varianceStabilizingTransformation`` for fewer
    than 1000 genes) or ``DESeq2::rlog``.

    Args:
        model: DeseqModel at any stage.
        blind: Ignore the design when estimating dispersions (for QC
            plots such as PCA).
        method: "vst" or "rlog".
    """
    check_deseq_model(model)
    r, pkg = _prep_deseq2()
    if method == "vst":
        if len(model.gene_ids) < VST_NSUB:
            transformed = pkg.varianceStabilizingTransformation(model.dds, blind=blind)
        else:
            transformed = pkg.vst(model.dds, blind=blind)
    elif method == "rlog":
        transformed = pkg.rlog(model.dds, blind=blind)
    else:
        raise ValueError(f"method must be 'vst' or 'rlog', got {method!r}")

    logger.info("Computed %s (blind=%s)", method, blind)
    return r_matrix_to_frame(
        r.call("assay", transformed), index=model.gene_ids, columns=model.sample_ids
    )
