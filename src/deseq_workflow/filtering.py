"""
Independent filtering, multiple-testing adjustment and ranking.

Independent filtering removes genes with low mean expression from the
multiple-testing correction: a grid of mean-expression quantiles is tried,
p-values are Benjamini-Hochberg adjusted among the genes above each cutoff,
and the cutoff giving the most rejections at ``alpha`` wins. Genes below
the chosen cutoff keep their row with an NA adjusted p-value.

The filter grid follows DESeq2 / genefilter: 50 quantiles from the
fraction of genes with zero mean up to 0.95.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal, Optional, Sequence

import numpy as np
import pandas as pd
from scipy.stats import false_discovery_control

logger = logging.getLogger(__name__)

DEFAULT_ALPHA = 0.1
N_THETA = 50

FilterRule = Literal["max", "lowess"]


@dataclass(frozen=True)
class FilterOutcome:
    """Result of independent filtering over a theta grid."""

    adj_p_value: np.ndarray
    threshold: float
    theta: float
    num_rejections: pd.DataFrame


def check_alpha(alpha: float) -> float:
    if not 0 < alpha < 1:
        raise ValueError(f"alpha must be between 0 and 1, got {alpha}")
    return float(alpha)


def p_adjust_bh(pvalues: Sequence[float]) -> np.ndarray:
    """Benjamini-Hochberg adjustment; NaN entries stay NaN and are not counted."""
    p = np.asarray(pvalues, dtype=float)
    out = np.full(p.shape, np.nan)
    mask = ~np.isnan(p)
    if mask.any():
        out[mask] = false_discovery_control(p[mask], method="bh")
    return out


def default_theta(filter_stat: np.ndarray) -> np.ndarray:
    lower = float(np.mean(filter_stat == 0))
    upper = 0.95 if lower < 0.95 else 1.0
    return np.linspace(lower, upper, N_THETA)


def filtered_p(
    filter_stat: Sequence[float],
    pvalues: Sequence[float],
    theta: Sequence[float],
) -> np.ndarray:
    """
    Adjusted p-values for each filtering fraction in ``theta``.

    Returns:
        (n_genes, len(theta)) array; entries filtered out at a given
        fraction are NaN.
    """
    filt = np.asarray(filter_stat, dtype=float)
    p = np.asarray(pvalues, dtype=float)
    cutoffs = np.quantile(filt, theta)
    result = np.full((len(filt), len(cutoffs)), np.nan)
    for i, cutoff in enumerate(cutoffs):
        use = filt >= cutoff
        if np.any(use):
            result[use, i] = p_adjust_bh(p[use])
    return result


def _lowess_choice(num_rej: np.ndarray, theta: np.ndarray) -> int:
    from statsmodels.nonparametric.smoothers_lowess import lowess

    # Not enough signal to justify filtering.
    if np.max(num_rej) <= 10:
        return 0
    lo_fit = lowess(num_rej, theta, frac=1 / 5)
    positive = num_rej > 0
    residual = num_rej[positive] - lo_fit[positive, 1]
    thresh = np.max(lo_fit[:, 1]) - np.sqrt(np.mean(residual ** 2))
    above = np.nonzero(num_rej > thresh)[0]
    return int(above[0]) if len(above) else 0


def independent_filtering(
    base_mean: Sequence[float],
    pvalues: Sequence[float],
    alpha: float = DEFAULT_ALPHA,
    theta: Optional[Sequence[float]] = None,
    rule: FilterRule = "max",
) -> FilterOutcome:
    """
    Choose a mean-expression cutoff and adjust p-values above it.

    Args:
        base_mean: Mean of normalized counts per gene (the filter statistic).
        pvalues: Raw p-values per gene; NaN for untestable genes.
        alpha: Significance level used to count rejections.
        theta: Filtering fractions to try. Defaults to the DESeq2 grid.
        rule: ``"max"`` takes the fraction with the most rejections (the
            least aggressive one on ties); ``"lowess"`` takes the first
            fraction whose rejection count exceeds the lowess-smoothed
            maximum minus the residual standard deviation.

    Returns:
        FilterOutcome with the adjusted p-values, the chosen threshold on
        the mean, the chosen fraction and the rejection curve.
    """
    alpha = check_alpha(alpha)
    filt = np.asarray(base_mean, dtype=float)
    p = np.asarray(pvalues, dtype=float)
    if filt.shape != p.shape:
        raise ValueError("base_mean and pvalues must have the same length")
    if len(filt) == 0:
        return FilterOutcome(np.array([]), np.nan, np.nan, pd.DataFrame(columns=["theta", "num_rej"]))

    theta = default_theta(filt) if theta is None else np.asarray(theta, dtype=float)
    if len(theta) <= 1:
        raise ValueError("theta must contain more than one filtering fraction")

    padj = filtered_p(filt, p, theta)
    num_rej = np.nansum(padj < alpha, axis=0)

    if rule == "max":
        j = int(np.argmax(num_rej))
    elif rule == "lowess":
        j = _lowess_choice(num_rej, theta)
    else:
        raise ValueError(f"Unknown filter rule {rule!r}; use 'max' or 'lowess'")

    threshold = float(np.quantile(filt, theta[j]))
    logger.info(
        "Independent filtering: mean threshold %.4g (theta=%.3f), %d rejections at alpha=%g",
        threshold, theta[j], num_rej[j], alpha,
    )
    return FilterOutcome(
        adj_p_value=padj[:, j],
        threshold=threshold,
        theta=float(theta[j]),
        num_rejections=pd.DataFrame({"theta": theta, "num_rej": num_rej}),
    )


def rank_results(table: pd.DataFrame, column: str = "adj_p_value") -> pd.DataFrame:
    """Stable sort by ``column`` ascending with NA last; ties keep row order."""
    return table.sort_values(column, kind="mergesort", na_position="last")


def top_genes(table: pd.DataFrame, n: int, column: str = "adj_p_value") -> pd.DataFrame:
    """The first ``n`` ranked rows that have a non-NA ``column``."""
    if n < 0:
        raise ValueError(f"n must be non-negative, got {n}")
    ranked = rank_results(table, column)
    return ranked[ranked[column].notna()].head(n)


def summarize(table: pd.DataFrame, alpha: float = DEFAULT_ALPHA) -> dict:
    """Counts of up/down regulated, filtered, outlier and all-zero genes."""
    alpha = check_alpha(alpha)
    sig = table["adj_p_value"] < alpha
    return {
        "n_genes": int(len(table)),
        "alpha": alpha,
        "up": int((sig & (table["log2_fc"] > 0)).sum()),
        "down": int((sig & (table["log2_fc"] < 0)).sum()),
        "all_zero": int((table["base_mean"] == 0).sum()),
        "outliers": int((table["p_value"].isna() & (table["base_mean"] > 0)).sum()),
        "low_counts": int((table["p_value"].notna() & table["adj_p_value"].isna()).sum()),
    }
