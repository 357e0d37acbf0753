"""
Extract per-gene results from fitted DESeq2 models.

``results`` tests a named coefficient or a contrast between two levels of
one factor (Wald test); ``compare_models`` tests the terms a full design
adds over a nested one (likelihood-ratio test). DESeq2 supplies the raw
statistics with its own filtering switched off; adjusted p-values come
from ``filtering.independent_filtering``.
"""

from __future__ import annotations

import logging
import warnings
from typing import Any, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from ..errors import DegenerateFitWarning, InvalidContrast
from ..filtering import DEFAULT_ALPHA, FilterRule
from ..r_env import r_vector_to_numpy
from ..results_table import ResultsTable, make_results_table
from .checks import check_deseq_model, check_same_data, check_stage
from .dataset import DeseqModel
from .utils import _prep_deseq2, r_column

logger = logging.getLogger(__name__)

ContrastSpec = Union[Tuple[str, str, str], Sequence[float], np.ndarray]

_R_COLUMNS = {
    "base_mean": "baseMean",
    "log2_fc": "log2FoldChange",
    "lfc_se": "lfcSE",
    "stat": "stat",
    "p_value": "pvalue",
}


def _is_level_contrast(contrast: Any) -> bool:
    return (
        isinstance(contrast, (tuple, list))
        and len(contrast) == 3
        and all(isinstance(x, str) for x in contrast)
    )


def resolve_contrast(
    model: DeseqModel,
    name: Optional[str] = None,
    contrast: Optional[ContrastSpec] = None,
) -> Tuple[np.ndarray, str]:
    """
    Turn a coefficient name or contrast into ``(vector, label)``.

    Exactly one of ``name`` and ``contrast`` must be given; there is no
    default coefficient, so the orientation of every comparison is chosen
    by the caller.

    Raises:
        ValueError: If both or neither are given.
        InvalidContrast: Unknown coefficient, factor or level, a numeric
            contrast of the wrong length, or an all-zero contrast.
    """
    if (name is None) == (contrast is None):
        raise ValueError("Specify exactly one of `name` or `contrast`")
    design = model.design
    if name is not None:
        return design.coefficient_vector(name), name
    if _is_level_contrast(contrast):
        factor, numerator, denominator = contrast
        vec = design.contrast_vector(factor, numerator, denominator)
        return vec, f"{factor} {numerator} vs {denominator}"
    if isinstance(contrast, str):
        raise InvalidContrast(
            f"Contrast {contrast!r} must be a (factor, numerator, denominator) tuple "
            "or a numeric vector; use `name=` for a single coefficient"
        )
    try:
        vec = np.asarray(contrast, dtype=float)
    except (TypeError, ValueError) as err:
        raise InvalidContrast(f"Contrast {contrast!r} is neither a level triple nor numeric") from err
    if vec.ndim != 1 or len(vec) != design.n_coefficients:
        raise InvalidContrast(
            f"Numeric contrast must have {design.n_coefficients} entries "
            f"({design.coefficient_names}), got shape {vec.shape}"
        )
    if not np.any(vec):
        raise InvalidContrast("Numeric contrast is all zero")
    terms = [f"{w:+g}*{n}" for w, n in zip(vec, design.coefficient_names) if w != 0]
    return vec, " ".join(terms)


def _results_frame(r: Any, res: Any, gene_ids: Sequence[str]) -> pd.DataFrame:
    return pd.DataFrame(
        {key: r_vector_to_numpy(r_column(r, res, col)) for key, col in _R_COLUMNS.items()},
        index=list(gene_ids),
    )


def _warn_untestable(frame: pd.DataFrame) -> None:
    untestable = frame.index[frame["p_value"].isna()]
    if len(untestable):
        warnings.warn(
            f"{len(untestable)} genes have no p-value (all-zero counts, count outliers "
            f"or failed fits), e.g. {list(untestable[:5])}",
            DegenerateFitWarning,
            stacklevel=3,
        )


def results(
    model: DeseqModel,
    name: Optional[str] = None,
    contrast: Optional[ContrastSpec] = None,
    alpha: float = DEFAULT_ALPHA,
    independent_filtering: bool = True,
    filter_rule: FilterRule = "max",
    cooks_cutoff: Optional[bool] = None,
) -> ResultsTable:
    """
    Wald-test results for a coefficient or a contrast.

    Wraps ``DESeq2::results``. A ``(factor, numerator, denominator)``
    contrast is turned into a numeric combination of coefficients, so
    levels other than the reference can be compared directly; swapping
    numerator and denominator flips the sign of ``log2_fc`` and ``stat``.

    Args:
        model: DeseqModel at stage "wald".
        name: Coefficient name, one of ``model.coefficient_names``.
        contrast: ``(factor, numerator, denominator)`` or a numeric vector
            over the coefficients.
        alpha: Significance level for independent filtering.
        independent_filtering: If False, plain BH over all tested genes.
        filter_rule: "max" or "lowess"; see ``filtering.independent_filtering``.
        cooks_cutoff: Pass False to keep p-values of genes with count
            outliers. Default: DESeq2's Cook's distance cutoff.

    Returns:
        ResultsTable with one row per gene in model order.

    Raises:
        StageOrderError: If the Wald stage has not been run.
        InvalidContrast: See ``resolve_contrast``.

    Example:
        >>> res = results(model, contrast=("Status", "pregnant", "virgin"))
        >>> res.top(100)
    """
    check_stage(model, "wald")
    vec, label = resolve_contrast(model, name=name, contrast=contrast)

    r, pkg = _prep_deseq2()
    kwargs = {"independentFiltering": False}
    if cooks_cutoff is not None:
        kwargs["cooksCutoff"] = bool(cooks_cutoff)
    if name is not None:
        res = pkg.results(model.dds, name=name, **kwargs)
    else:
        res = pkg.results(model.dds, contrast=r.FloatVector(vec.tolist()), **kwargs)

    frame = _results_frame(r, res, model.gene_ids)
    _warn_untestable(frame)
    logger.info("Extracted Wald results for %s", label)
    return make_results_table(
        frame,
        name=label,
        test="Wald",
        alpha=alpha,
        independent_filtering_on=independent_filtering,
        filter_rule=filter_rule,
        contrast=vec,
    )


def compare_models(
    full: DeseqModel,
    reduced: DeseqModel,
    alpha: float = DEFAULT_ALPHA,
    independent_filtering: bool = True,
    filter_rule: FilterRule = "max",
) -> ResultsTable:
    """
    Likelihood-ratio test of ``full`` against a nested ``reduced`` design.

    Wraps ``DESeq2::nbinomLRT`` using the dispersions of ``full``. The
    p-value of each gene tests whether the terms in ``full`` missing from
    ``reduced`` improve the fit; ``log2_fc`` is the last coefficient of
    ``full`` and is reported for orientation only.

    Args:
        full: DeseqModel with dispersions (stage "dispersions" or later).
        reduced: DeseqModel of the same counts and metadata whose design
            coefficients are a strict subset of ``full``'s.
        alpha: Significance level for independent filtering.
        independent_filtering: If False, plain BH over all tested genes.
        filter_rule: "max" or "lowess".

    Returns:
        ResultsTable with ``test="LRT"``.

    Raises:
        StageOrderError: If ``full`` has no dispersions.
        InputMismatch: If the models do not share counts and metadata.
        InvalidContrast: If ``reduced`` is not nested in ``full``.

    Example:
        >>> full = deseq(se, make_design({"CellType": [...], "Status": [...]}))
        >>> reduced = deseq_dataset(se, make_design({"CellType": [...]}))
        >>> lrt = compare_models(full, reduced)
    """
    check_deseq_model(reduced, name="reduced")
    check_stage(full, "dispersions")
    check_same_data(full, reduced)
    if not reduced.design.is_nested_in(full.design):
        raise InvalidContrast(
            f"Design {reduced.design.formula} is not nested in {full.design.formula}: "
            "the reduced coefficients must be a strict subset of the full ones"
        )

    r, pkg = _prep_deseq2()
    config = full.config
    dds = pkg.nbinomLRT(
        full.dds,
        reduced=r.Formula(reduced.design.formula),
        minmu=config.min_mu,
        maxit=config.max_iter,
    )
    res = pkg.results(dds, independentFiltering=False)

    frame = _results_frame(r, res, full.gene_ids)
    _warn_untestable(frame)
    label = f"LRT {full.design.formula} vs {reduced.design.formula}"
    logger.info("Extracted %s", label)
    return make_results_table(
        frame,
        name=label,
        test="LRT",
        alpha=alpha,
        independent_filtering_on=independent_filtering,
        filter_rule=filter_rule,
    )
