"""
Shrink log2 fold changes using DESeq2::lfcShrink.

Shrunken effect sizes are for plotting and ranking by effect only. They
are added next to the original ``log2_fc`` of a ResultsTable; the
unshrunken estimate, its statistic and p-values are left as they are.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from ..errors import InvalidContrast
from ..r_env import ensure_r_dependencies, r_vector_to_numpy
from ..results_table import ResultsTable
from .checks import check_stage
from .dataset import DeseqModel
from .results import ContrastSpec, _is_level_contrast, resolve_contrast
from .utils import _prep_deseq2, r_column

logger = logging.getLogger(__name__)

SHRINK_TYPES = {"apeglm": "apeglm", "ashr": "ashr", "normal": None}


def shrink_lfc(
    model: DeseqModel,
    table: ResultsTable,
    coef: Optional[str] = None,
    contrast: Optional[ContrastSpec] = None,
    type: str = "apeglm",
) -> ResultsTable:
    """
    Add shrunken effect sizes to a results table.

    Args:
        model: DeseqModel at stage "wald".
        table: ResultsTable from ``results`` for the same coefficient or
            contrast.
        coef: Coefficient name (required by "apeglm").
        contrast: ``(factor, numerator, denominator)`` or numeric vector
            ("ashr" handles both; "normal" only level triples).
        type: "apeglm", "ashr" or "normal". The R package behind
            "apeglm"/"ashr" is installed on first use.

    Returns:
        New ResultsTable with ``log2_fc_shrunk`` and ``lfc_se_shrunk``.

    Raises:
        InvalidContrast: If ``table`` was computed for another coefficient
            or contrast, or the shrinkage type cannot handle the request.
    """
    check_stage(model, "wald")
    if type not in SHRINK_TYPES:
        raise ValueError(f"type must be one of {sorted(SHRINK_TYPES)}, got {type!r}")
    vec, label = resolve_contrast(model, name=coef, contrast=contrast)
    if table.contrast is not None and not np.allclose(table.contrast, vec):
        raise InvalidContrast(
            f"Results table '{table.name}' was not computed for {label}; "
            "shrink the same coefficient or contrast"
        )
    if table.gene_ids != model.gene_ids:
        raise InvalidContrast("Results table and model cover different genes")
    if type == "apeglm" and coef is None:
        raise InvalidContrast("apeglm shrinkage needs a coefficient name; use type='ashr' for contrasts")
    if type == "normal" and contrast is not None and not _is_level_contrast(contrast):
        raise InvalidContrast("normal shrinkage needs a coefficient or a (factor, num, den) contrast")

    if SHRINK_TYPES[type]:
        ensure_r_dependencies([SHRINK_TYPES[type]])

    r, pkg = _prep_deseq2()
    if coef is not None:
        shrunk = pkg.lfcShrink(model.dds, coef=coef, type=type, quiet=True)
    elif _is_level_contrast(contrast):
        shrunk = pkg.lfcShrink(model.dds, contrast=r.StrVector(list(contrast)), type=type, quiet=True)
    else:
        shrunk = pkg.lfcShrink(model.dds, contrast=r.FloatVector(vec.tolist()), type=type, quiet=True)

    logger.info("Shrunk log2 fold changes for %s (%s)", label, type)
    return table.with_columns(
        log2_fc_shrunk=r_vector_to_numpy(r_column(r, shrunk, "log2FoldChange")),
        lfc_se_shrunk=r_vector_to_numpy(r_column(r, shrunk, "lfcSE")),
    )
