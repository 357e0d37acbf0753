"""Smoke tests for the plotting helpers (Agg backend, no display)."""

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import pytest

from deseq_workflow import make_results_table
from deseq_workflow.plots import count_plot, heatmap, ma_plot, pca, pca_plot, volcano_plot


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")


@pytest.fixture
def table(raw_results):
    return make_results_table(raw_results, name="x")


@pytest.fixture
def log_matrix(counts, sample_info):
    return np.log2(counts[list(sample_info.index)] + 1.0)


class TestResultPlots:
    def test_volcano(self, table):
        fig = volcano_plot(table, alpha=0.1, logfc_threshold=0.5)
        assert isinstance(fig, plt.Figure)
        assert fig.axes[0].get_title() == "Volcano Plot"

    def test_volcano_zero_padj(self, table):
        frame = table.table
        frame.iloc[20, frame.columns.get_loc("adj_p_value")] = 0.0
        fig = volcano_plot(frame)
        assert isinstance(fig, plt.Figure)

    def test_volcano_saves(self, table, tmp_path):
        path = tmp_path / "volcano.png"
        volcano_plot(table, save_path=str(path), dpi=50)
        assert path.exists()

    def test_ma_plot_uses_shrunk(self, table):
        shrunk = table.with_columns(log2_fc_shrunk=table.table["log2_fc"] / 2)
        fig = ma_plot(shrunk)
        assert "shrunk" in fig.axes[0].get_ylabel()

    def test_ma_plot_ylim(self, table):
        fig = ma_plot(table, ylim=(-1, 1))
        assert fig.axes[0].get_ylim() == (-1, 1)


class TestPCA:
    def test_scores_and_variance(self, log_matrix):
        scores, explained = pca(log_matrix, ntop=100)
        assert list(scores.index) == list(log_matrix.columns)
        assert scores.columns[0] == "PC1"
        assert explained.sum() == pytest.approx(1.0)
        assert np.all(np.diff(explained) <= 1e-12)

    def test_scores_are_centred(self, log_matrix):
        scores, _ = pca(log_matrix)
        np.testing.assert_allclose(scores.mean(axis=0).to_numpy(), 0.0, atol=1e-8)

    def test_explained_matches_score_variance(self, log_matrix):
        scores, explained = pca(log_matrix, ntop=50)
        var = scores.var(axis=0, ddof=1).to_numpy()
        np.testing.assert_allclose(var / var.sum(), explained, atol=1e-10)

    def test_pca_plot(self, log_matrix, sample_info):
        fig = pca_plot(log_matrix, sample_info, color="CellType", shape="Status")
        assert fig.axes[0].get_xlabel().startswith("PC1:")


class TestMatrixPlots:
    def test_heatmap(self, log_matrix, sample_info):
        genes = list(log_matrix.index[:30])
        fig = heatmap(log_matrix, genes, sample_info=sample_info, annotate=["CellType", "Status"])
        assert isinstance(fig, plt.Figure)

    def test_heatmap_unknown_gene(self, log_matrix):
        with pytest.raises(KeyError):
            heatmap(log_matrix, ["nope"])

    def test_count_plot(self, counts, sample_info):
        fig = count_plot(counts, "ENSMUSG00000000001", sample_info, x="Status", hue="CellType")
        assert fig.axes[0].get_title() == "ENSMUSG00000000001"

    def test_count_plot_unknown_gene(self, counts, sample_info):
        with pytest.raises(KeyError):
            count_plot(counts, "nope", sample_info, x="Status")
