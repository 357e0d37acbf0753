"""
Fit the negative binomial GLM and run Wald tests using DESeq2::nbinomWaldTest.

Third fitting stage. Coefficients are stored on the log2 scale under the
design's coefficient names; genes whose fit fails are reported as NA and
flagged with a ``DegenerateFitWarning`` instead of aborting the run.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import replace

from ..errors import DegenerateFitWarning
from ..r_env import r_matrix_to_frame, r_strings
from .checks import check_stage
from .dataset import DeseqModel
from .utils import _prep_deseq2

logger = logging.getLogger(__name__)


def nbinom_wald_test(model: DeseqModel) -> DeseqModel:
    """
    Fit per-gene NB GLMs and compute Wald statistics for every coefficient.

    Args:
        model: DeseqModel with dispersions.

    Returns:
        New DeseqModel at stage "wald" with ``coefficients`` filled in.

    Raises:
        StageOrderError: If dispersions have not been estimated.
        RuntimeError: If DESeq2 names the coefficients differently from
            the design (contrast vectors would be misaligned).
    """
    check_stage(model, "dispersions")
    config = model.config

    r, pkg = _prep_deseq2()
    dds = pkg.nbinomWaldTest(
        model.dds,
        betaPrior=False,
        useT=config.use_t,
        minmu=config.min_mu,
        maxit=config.max_iter,
    )

    r_names = r_strings(pkg.resultsNames(dds))
    if r_names != model.design.coefficient_names:
        raise RuntimeError(
            f"DESeq2 coefficient names {r_names} do not match the design "
            f"coefficients {model.design.coefficient_names}"
        )

    coefficients = r_matrix_to_frame(
        r.call("coef", dds), index=model.gene_ids, columns=model.design.coefficient_names
    )
    fitted = replace(model, dds=dds, stage="wald", coefficients=coefficients)

    degenerate = fitted.degenerate_genes
    if degenerate:
        warnings.warn(
            f"{len(degenerate)} genes could not be fitted and have NA results "
            f"(e.g. {degenerate[:5]})",
            DegenerateFitWarning,
            stacklevel=2,
        )
    logger.info("Fitted NB GLM %s for %d genes", model.design.formula, len(model.gene_ids))
    return fitted
