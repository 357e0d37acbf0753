"""Diagnostic plots for differential expression results and expression matrices."""

from __future__ import annotations

import logging
from typing import Optional, Sequence, Tuple, Union

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from sklearn.decomposition import PCA

from .results_table import ResultsTable

logger = logging.getLogger(__name__)

SIG_COLOR = "#e74c3c"
NONSIG_COLOR = "#95a5a6"
TEXT_COLOR = "#2c3e50"


def _results_frame(results: Union[ResultsTable, pd.DataFrame]) -> pd.DataFrame:
    if isinstance(results, ResultsTable):
        return results.table
    return results.copy()


def _style_axes(ax: plt.Axes, title: str, xlabel: str, ylabel: str) -> None:
    ax.set_xlabel(xlabel, fontsize=13, fontweight="bold", color=TEXT_COLOR)
    ax.set_ylabel(ylabel, fontsize=13, fontweight="bold", color=TEXT_COLOR)
    ax.set_title(title, fontsize=15, fontweight="bold", color=TEXT_COLOR, pad=20)
    for spine in ax.spines.values():
        spine.set_color(TEXT_COLOR)
        spine.set_linewidth(1.5)
    ax.grid(True, alpha=0.2, linestyle=":", linewidth=0.8)
    ax.set_axisbelow(True)
    ax.tick_params(colors=TEXT_COLOR, labelsize=11, width=1.5, length=6)


def _save(fig: plt.Figure, save_path: Optional[str], dpi: int) -> None:
    if save_path:
        fig.savefig(save_path, dpi=dpi, bbox_inches="tight", facecolor="white")
        logger.info("Figure saved to: %s", save_path)


def volcano_plot(
    results: Union[ResultsTable, pd.DataFrame],
    logfc_col: str = "log2_fc",
    padj_col: str = "adj_p_value",
    alpha: float = 0.1,
    logfc_threshold: float = 1.0,
    figsize: tuple = (10, 8),
    title: str = "Volcano Plot",
    xlabel: str = "log₂(Fold Change)",
    ylabel: str = "-log₁₀(Adjusted p-value)",
    save_path: Optional[str] = None,
    **kwargs,
) -> plt.Figure:
    """
    Volcano plot of effect size against adjusted p-value.

    Genes without an adjusted p-value (filtered or untestable) are left
    out; adjusted p-values of zero are drawn at the smallest non-zero value.

    Args:
        results: ResultsTable or DataFrame with the two columns below.
        logfc_col: Effect size column.
        padj_col: Adjusted p-value column.
        alpha: Significance threshold.
        logfc_threshold: Absolute effect size needed to highlight a gene.
        figsize: Figure size.
        title: Plot title.
        xlabel: X-axis label.
        ylabel: Y-axis label.
        save_path: Path to save figure (optional).
        **kwargs: ``point_size`` (50), ``sig_color``, ``nonsig_color``,
            ``alpha_points`` (0.7), ``dpi`` (300).

    Returns:
        matplotlib.figure.Figure

    Example:
        >>> fig = volcano_plot(res, alpha=0.05, save_path="volcano.png")
    """
    point_size = kwargs.get("point_size", 50)
    sig_color = kwargs.get("sig_color", SIG_COLOR)
    nonsig_color = kwargs.get("nonsig_color", NONSIG_COLOR)
    alpha_points = kwargs.get("alpha_points", 0.7)
    dpi = kwargs.get("dpi", 300)

    df = _results_frame(results)
    df = df[df[padj_col].notna() & df[logfc_col].notna()]
    padj = df[padj_col].to_numpy(dtype=float)
    positive = padj[padj > 0]
    floor = positive.min() if len(positive) else 1e-300
    df = df.assign(neg_log10_padj=-np.log10(np.clip(padj, floor, None)))

    sig_mask = (df[padj_col] < alpha) & (np.abs(df[logfc_col]) > logfc_threshold)

    fig, ax = plt.subplots(figsize=figsize, dpi=100)
    non_sig = df[~sig_mask]
    ax.scatter(
        non_sig[logfc_col], non_sig["neg_log10_padj"],
        s=point_size, color=nonsig_color, alpha=alpha_points * 0.5,
        edgecolors="none", linewidth=0.5, label="Not significant", zorder=1,
    )
    sig = df[sig_mask]
    ax.scatter(
        sig[logfc_col], sig["neg_log10_padj"],
        s=point_size * 1.3, color=sig_color, alpha=alpha_points,
        edgecolors="white", linewidth=1,
        label=f"padj < {alpha}, |log2FC| > {logfc_threshold}", zorder=2,
    )

    for x in (-logfc_threshold, logfc_threshold):
        ax.axvline(x, color="#34495e", linestyle="--", linewidth=1.5, alpha=0.6, zorder=0)
    ax.axhline(-np.log10(alpha), color="#34495e", linestyle="--", linewidth=1.5, alpha=0.6, zorder=0)

    _style_axes(ax, title, xlabel, ylabel)
    ax.legend(loc="upper right", frameon=True, fontsize=10, framealpha=0.95)

    n_sig = int(sig_mask.sum())
    stats_text = (
        f"Significant: {n_sig}/{len(df)}\n"
        f"Up-regulated: {int((sig_mask & (df[logfc_col] > 0)).sum())}\n"
        f"Down-regulated: {int((sig_mask & (df[logfc_col] < 0)).sum())}"
    )
    ax.text(
        0.02, 0.98, stats_text, transform=ax.transAxes, fontsize=10,
        verticalalignment="top", family="monospace", color=TEXT_COLOR,
        bbox=dict(boxstyle="round", facecolor="white", alpha=0.85, edgecolor=TEXT_COLOR, linewidth=1.5),
    )
    fig.tight_layout()
    _save(fig, save_path, dpi)
    return fig


def ma_plot(
    results: Union[ResultsTable, pd.DataFrame],
    alpha: float = 0.1,
    ylim: Optional[Tuple[float, float]] = None,
    figsize: tuple = (10, 7),
    title: str = "MA Plot",
    save_path: Optional[str] = None,
    **kwargs,
) -> plt.Figure:
    """
    Mean of normalized counts against log2 fold change.

    Uses ``log2_fc_shrunk`` when the table carries it. Genes with
    ``adj_p_value < alpha`` are highlighted; points outside ``ylim`` are
    drawn as triangles on the border.
    """
    point_size = kwargs.get("point_size", 12)
    dpi = kwargs.get("dpi", 300)

    df = _results_frame(results)
    lfc_col = "log2_fc_shrunk" if "log2_fc_shrunk" in df.columns else "log2_fc"
    df = df[(df["base_mean"] > 0) & df[lfc_col].notna()]
    sig_mask = (df["adj_p_value"] < alpha).to_numpy()
    x = df["base_mean"].to_numpy(dtype=float)
    y = df[lfc_col].to_numpy(dtype=float)

    if ylim is None:
        bound = float(np.nanmax(np.abs(y))) * 1.1 if len(y) else 1.0
        ylim = (-bound, bound)
    lo, hi = ylim
    clipped = np.clip(y, lo, hi)
    outside = (y < lo) | (y > hi)

    fig, ax = plt.subplots(figsize=figsize, dpi=100)
    for mask, color, label, z in (
        (~sig_mask, NONSIG_COLOR, "Not significant", 1),
        (sig_mask, SIG_COLOR, f"padj < {alpha}", 2),
    ):
        inside = mask & ~outside
        ax.scatter(x[inside], clipped[inside], s=point_size, color=color, alpha=0.6,
                   edgecolors="none", label=label, zorder=z)
        ax.scatter(x[mask & outside], clipped[mask & outside], s=point_size * 2, color=color,
                   marker="^", edgecolors="none", zorder=z)
    ax.axhline(0, color="#34495e", linewidth=1.5, alpha=0.6, zorder=0)
    ax.set_xscale("log")
    ax.set_ylim(lo, hi)
    _style_axes(ax, title, "Mean of normalized counts", f"log₂(Fold Change){' (shrunk)' if lfc_col.endswith('shrunk') else ''}")
    ax.legend(loc="upper right", fontsize=10)
    fig.tight_layout()
    _save(fig, save_path, dpi)
    return fig


def pca(matrix: pd.DataFrame, ntop: int = 500) -> Tuple[pd.DataFrame, np.ndarray]:
    """
    Principal components of the samples of a genes x samples matrix.

    Uses the ``ntop`` genes with the highest variance across samples,
    centred per gene.

    Returns:
        Tuple ``(scores, explained)``: scores is samples x components with
        columns PC1..PCk, explained the fraction of variance per component.
    """
    values = matrix.to_numpy(dtype=float)
    variance = values.var(axis=1, ddof=1)
    order = np.argsort(-variance, kind="mergesort")[: min(ntop, len(variance))]
    x = values[order].T

    model = PCA(n_components=min(x.shape))
    projected = model.fit_transform(x)
    explained = np.nan_to_num(model.explained_variance_ratio_)
    scores = pd.DataFrame(
        projected,
        index=matrix.columns,
        columns=[f"PC{i + 1}" for i in range(projected.shape[1])],
    )
    return scores, explained


def pca_plot(
    matrix: pd.DataFrame,
    sample_info: pd.DataFrame,
    color: str,
    shape: Optional[str] = None,
    ntop: int = 500,
    figsize: tuple = (8, 6),
    title: str = "PCA",
    save_path: Optional[str] = None,
    dpi: int = 300,
) -> plt.Figure:
    """
    PC1 vs PC2 of a (variance-stabilized) expression matrix.

    Args:
        matrix: Genes x samples, e.g. from ``deseq2.variance_stabilize``.
        sample_info: Metadata indexed by sample id.
        color: Metadata column for point colour.
        shape: Metadata column for point marker (optional).
    """
    scores, explained = pca(matrix, ntop=ntop)
    data = scores.join(sample_info.loc[scores.index, [c for c in (color, shape) if c]])

    fig, ax = plt.subplots(figsize=figsize, dpi=100)
    sns.scatterplot(data=data, x="PC1", y="PC2", hue=color, style=shape, s=120, ax=ax)
    _style_axes(
        ax, title,
        f"PC1: {explained[0] * 100:.0f}% variance",
        f"PC2: {explained[1] * 100:.0f}% variance" if len(explained) > 1 else "PC2",
    )
    fig.tight_layout()
    _save(fig, save_path, dpi)
    return fig


def heatmap(
    matrix: pd.DataFrame,
    genes: Sequence[str],
    sample_info: Optional[pd.DataFrame] = None,
    annotate: Optional[Sequence[str]] = None,
    figsize: tuple = (8, 10),
    save_path: Optional[str] = None,
    dpi: int = 300,
) -> plt.Figure:
    """
    Clustered heatmap of selected genes, rows z-scored.

    Args:
        matrix: Genes x samples expression matrix.
        genes: Genes to show, e.g. ``res.top(50).index``.
        sample_info: Metadata indexed by sample id, for column colour bars.
        annotate: Metadata columns to draw as colour bars (default: all).
    """
    missing = [g for g in genes if g not in matrix.index]
    if missing:
        raise KeyError(f"Genes not in matrix: {missing[:5]}")
    data = matrix.loc[list(genes)]

    col_colors = None
    if sample_info is not None:
        columns = list(annotate) if annotate is not None else list(sample_info.columns)
        col_colors = pd.DataFrame(index=data.columns)
        for column in columns:
            values = sample_info.loc[data.columns, column].astype(str)
            palette = dict(zip(sorted(values.unique()), sns.color_palette("Set2", values.nunique())))
            col_colors[column] = values.map(palette)

    grid = sns.clustermap(
        data, z_score=0, cmap="RdBu_r", center=0, col_colors=col_colors,
        figsize=figsize, yticklabels=len(data) <= 100,
    )
    _save(grid.figure, save_path, dpi)
    return grid.figure


def count_plot(
    normalized: pd.DataFrame,
    gene: str,
    sample_info: pd.DataFrame,
    x: str,
    hue: Optional[str] = None,
    figsize: tuple = (7, 5),
    save_path: Optional[str] = None,
    dpi: int = 300,
) -> plt.Figure:
    """Strip chart of one gene's normalized counts grouped by a metadata column."""
    if gene not in normalized.index:
        raise KeyError(f"Gene '{gene}' not in matrix")
    data = sample_info.loc[normalized.columns].copy()
    data["count"] = normalized.loc[gene].to_numpy(dtype=float) + 0.5

    fig, ax = plt.subplots(figsize=figsize, dpi=100)
    sns.stripplot(data=data, x=x, y="count", hue=hue, dodge=hue is not None, size=8, ax=ax)
    ax.set_yscale("log")
    _style_axes(ax, gene, x, "Normalized count + 0.5")
    fig.tight_layout()
    _save(fig, save_path, dpi)
    return fig
