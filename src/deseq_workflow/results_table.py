"""
Per-gene differential expression results.

``ResultsTable`` is the value returned by results extraction and model
comparison. The underlying frame is indexed by gene id and holds:

    - base_mean: mean of size-factor normalized counts
    - log2_fc: log2 fold change (effect size)
    - lfc_se: standard error of log2_fc
    - stat: Wald statistic, or LRT statistic for model comparisons
    - p_value: raw p-value (NA for untestable genes)
    - adj_p_value: BH adjusted p-value after independent filtering (NA for
      genes filtered out or untestable)

``table`` hands out copies so a produced table cannot be altered in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd

from .filtering import (
    DEFAULT_ALPHA,
    FilterRule,
    check_alpha,
    independent_filtering,
    p_adjust_bh,
    rank_results,
    summarize,
    top_genes,
)

RESULT_COLUMNS = ["base_mean", "log2_fc", "lfc_se", "stat", "p_value", "adj_p_value"]


@dataclass(frozen=True, eq=False)
class ResultsTable:
    """
    Differential expression results for one coefficient, contrast or test.

    Attributes:
        name: Human-readable description, e.g. ``"Status pregnant vs virgin"``.
        test: ``"Wald"`` or ``"LRT"``.
        alpha: Significance level used for independent filtering.
        filter_threshold: Mean-expression cutoff chosen by filtering
            (NaN if filtering was disabled).
        filter_theta: Quantile of the cutoff.
        filter_num_rej: Rejections per tried quantile.
        contrast: Numeric contrast vector over the model coefficients.

    The per-gene frame is private; ``table`` and the ranking methods
    return copies of it.
    """

    _frame: pd.DataFrame = field(repr=False)
    name: str = ""
    test: str = "Wald"
    alpha: float = DEFAULT_ALPHA
    filter_threshold: float = np.nan
    filter_theta: float = np.nan
    filter_num_rej: Optional[pd.DataFrame] = field(default=None, repr=False)
    contrast: Optional[np.ndarray] = field(default=None, repr=False)

    @property
    def table(self) -> pd.DataFrame:
        return self._frame.copy()

    @property
    def gene_ids(self) -> list:
        return [str(g) for g in self._frame.index]

    def __len__(self) -> int:
        return len(self._frame)

    def ranked(self) -> pd.DataFrame:
        return rank_results(self._frame).copy()

    def top(self, n: int) -> pd.DataFrame:
        return top_genes(self._frame, n).copy()

    def significant(self, alpha: Optional[float] = None) -> pd.DataFrame:
        alpha = self.alpha if alpha is None else check_alpha(alpha)
        return rank_results(self._frame[self._frame["adj_p_value"] < alpha]).copy()

    def summary(self, alpha: Optional[float] = None) -> Dict[str, Any]:
        out = summarize(self._frame, self.alpha if alpha is None else alpha)
        out["name"] = self.name
        out["test"] = self.test
        out["filter_threshold"] = self.filter_threshold
        return out

    def with_columns(self, **columns: Any) -> "ResultsTable":
        """Return a new table with extra columns; existing columns are kept."""
        clash = sorted(set(columns) & set(RESULT_COLUMNS))
        if clash:
            raise ValueError(f"Cannot overwrite result columns {clash}")
        frame = self._frame.copy()
        for key, values in columns.items():
            frame[key] = values
        return replace(self, _frame=frame)


def make_results_table(
    frame: pd.DataFrame,
    name: str,
    test: str = "Wald",
    alpha: float = DEFAULT_ALPHA,
    independent_filtering_on: bool = True,
    filter_rule: FilterRule = "max",
    contrast: Optional[np.ndarray] = None,
) -> ResultsTable:
    """
    Adjust raw p-values and wrap them in a ResultsTable.

    Args:
        frame: Gene-indexed frame with all columns of RESULT_COLUMNS except
            ``adj_p_value``.
        name: Description of the coefficient or contrast.
        test: Test that produced the p-values.
        alpha: Significance level for filtering.
        independent_filtering_on: If False, plain BH over all tested genes.
        filter_rule: See ``filtering.independent_filtering``.
        contrast: Contrast vector, kept for reference.
    """
    alpha = check_alpha(alpha)
    missing = [c for c in RESULT_COLUMNS[:-1] if c not in frame.columns]
    if missing:
        raise ValueError(f"Results frame lacks columns {missing}")
    out = frame.copy()
    out.index = [str(g) for g in out.index]
    out.index.name = "gene"

    if independent_filtering_on:
        outcome = independent_filtering(
            out["base_mean"].to_numpy(), out["p_value"].to_numpy(), alpha=alpha, rule=filter_rule
        )
        out["adj_p_value"] = outcome.adj_p_value
        extra = dict(
            filter_threshold=outcome.threshold,
            filter_theta=outcome.theta,
            filter_num_rej=outcome.num_rejections,
        )
    else:
        out["adj_p_value"] = p_adjust_bh(out["p_value"].to_numpy())
        extra = {}

    other = [c for c in out.columns if c not in RESULT_COLUMNS]
    out = out[RESULT_COLUMNS + other]
    return ResultsTable(_frame=out, name=name, test=test, alpha=alpha, contrast=contrast, **extra)
