"""
End-to-end tests of the DESeq2 wrappers with actual R conversion using rpy2.

Skipped when rpy2 or the R package DESeq2 is unavailable.
"""

import warnings

import numpy as np
import pandas as pd
import pytest

from deseq_workflow import (
    DegenerateFitWarning,
    InputMismatch,
    InvalidContrast,
    StageOrderError,
    build_count_matrix,
    count_values,
    filter_low_counts,
    make_design,
)
from deseq_workflow.r_env import is_r_package_available


def genes(start, stop):
    return [f"ENSMUSG{i:011d}" for i in range(start, stop)]


pytestmark = [
    pytest.mark.r,
    pytest.mark.skipif(
        not is_r_package_available("DESeq2"),
        reason="rpy2 and the R package DESeq2 are required",
    ),
]


@pytest.fixture
def deseq2():
    """Import on use so the DESeq2 dependency check only runs when R is present."""
    import deseq_workflow.deseq2 as module

    return module


@pytest.fixture
def fse(se):
    """The experiment after low-count filtering."""
    return filter_low_counts(se)


@pytest.fixture
def fitted(deseq2, fse, design):
    return deseq2.deseq(fse, design)


class TestStages:
    def test_constructed_model(self, deseq2, fse, design):
        model = deseq2.deseq_dataset(fse, design)
        assert model.stage == "constructed"
        assert model.coefficient_names == design.coefficient_names
        assert model.gene_ids == list(fse.row_names)
        assert list(model.model_matrix.columns) == design.coefficient_names

    def test_stage_order_enforced(self, deseq2, fse, design):
        model = deseq2.deseq_dataset(fse, design)
        with pytest.raises(StageOrderError):
            deseq2.estimate_dispersions(model)
        with_sf = deseq2.estimate_size_factors(model)
        with pytest.raises(StageOrderError):
            deseq2.nbinom_wald_test(with_sf)
        with_disp = deseq2.estimate_dispersions(with_sf)
        with pytest.raises(StageOrderError):
            deseq2.results(with_disp, name="Status_pregnant_vs_virgin")

    def test_glmgampoi_trend_checks_its_package(self, deseq2, fse, design, monkeypatch):
        requested = []

        def record(packages):
            requested.extend(packages)
            raise ImportError("stop before fitting")

        monkeypatch.setattr("deseq_workflow.deseq2.dispersions.ensure_r_dependencies", record)
        with_sf = deseq2.estimate_size_factors(deseq2.deseq_dataset(fse, design))
        with pytest.raises(ImportError, match="stop before fitting"):
            deseq2.estimate_dispersions(with_sf, fit_type="glmGamPoi")
        assert requested == ["glmGamPoi"]

    def test_stages_return_new_models(self, deseq2, fse, design):
        model = deseq2.deseq_dataset(fse, design)
        with_sf = deseq2.estimate_size_factors(model)
        assert model.stage == "constructed"
        assert model.size_factors is None
        assert with_sf.stage == "size_factors"
        assert len(with_sf.size_factors) == fse.shape[1]

    def test_rerunning_size_factors_clears_later_stages(self, deseq2, fitted):
        again = deseq2.estimate_size_factors(fitted, sf_type="poscounts")
        assert again.stage == "size_factors"
        assert again.dispersions is None
        assert again.coefficients is None
        assert fitted.stage == "wald"

    def test_one_call_equals_three_stages(self, deseq2, fse, design, fitted):
        manual = deseq2.deseq_dataset(fse, design)
        manual = deseq2.estimate_size_factors(manual)
        manual = deseq2.estimate_dispersions(manual)
        manual = deseq2.nbinom_wald_test(manual)
        np.testing.assert_allclose(manual.size_factors, fitted.size_factors)
        np.testing.assert_allclose(manual.dispersions, fitted.dispersions)
        pd.testing.assert_frame_equal(manual.coefficients, fitted.coefficients)

    def test_size_factors_ignore_gene_order(self, deseq2, counts, sample_info, design):
        forward = build_count_matrix(counts, sample_info)
        backward = build_count_matrix(counts.iloc[::-1], sample_info)
        sf_forward = deseq2.estimate_size_factors(deseq2.deseq_dataset(forward, design)).size_factors
        sf_backward = deseq2.estimate_size_factors(deseq2.deseq_dataset(backward, design)).size_factors
        np.testing.assert_allclose(sf_forward, sf_backward)

    def test_coefficients_named_by_design(self, fitted, design):
        assert list(fitted.coefficients.columns) == design.coefficient_names
        assert list(fitted.coefficients.index) == fitted.gene_ids

    def test_all_zero_genes_are_degenerate(self, deseq2, se, design):
        with pytest.warns(DegenerateFitWarning):
            model = deseq2.deseq(se, design)
        zero = [g for g, total in zip(model.gene_ids, count_values(se).sum(axis=1)) if total == 0]
        assert len(zero) >= 5
        assert set(zero) <= set(model.degenerate_genes)

    def test_undeclared_level_fails_before_fitting(self, deseq2, fse):
        design = make_design({"Status": ["virgin", "pregnant"]})
        with pytest.raises(InputMismatch, match="lactate"):
            deseq2.deseq_dataset(fse, design)

    def test_config_validation(self, deseq2):
        with pytest.raises(ValueError):
            deseq2.DeseqConfig(fit_type="loess")


class TestResults:
    def test_table_shape(self, fitted):
        res = fitted.results(contrast=("Status", "pregnant", "virgin"))
        assert len(res) == len(fitted.gene_ids)
        assert res.test == "Wald"
        assert res.name == "Status pregnant vs virgin"

    def test_orientation_flips_sign(self, deseq2, fitted):
        forward = deseq2.results(fitted, contrast=("Status", "pregnant", "virgin"))
        backward = deseq2.results(fitted, contrast=("Status", "virgin", "pregnant"))
        f, b = forward.table, backward.table
        np.testing.assert_allclose(f["log2_fc"], -b["log2_fc"])
        np.testing.assert_allclose(np.abs(f["stat"]), np.abs(b["stat"]))
        np.testing.assert_allclose(f["p_value"], b["p_value"])

    def test_name_matches_reference_contrast(self, deseq2, fitted):
        by_name = deseq2.results(fitted, name="Status_pregnant_vs_virgin").table
        by_levels = deseq2.results(fitted, contrast=("Status", "pregnant", "virgin")).table
        np.testing.assert_allclose(by_name["log2_fc"], by_levels["log2_fc"], rtol=1e-8)
        np.testing.assert_allclose(by_name["p_value"], by_levels["p_value"], rtol=1e-6)

    def test_non_reference_contrast(self, deseq2, fitted):
        res = deseq2.results(fitted, contrast=("Status", "lactate", "pregnant")).table
        coef = fitted.coefficients
        expected = coef["Status_lactate_vs_virgin"] - coef["Status_pregnant_vs_virgin"]
        np.testing.assert_allclose(res["log2_fc"].to_numpy(), expected.to_numpy(), rtol=1e-8, atol=1e-10)

    def test_numeric_contrast(self, deseq2, fitted):
        by_vector = deseq2.results(fitted, contrast=[0, 0, -1, 1]).table
        by_levels = deseq2.results(fitted, contrast=("Status", "lactate", "pregnant")).table
        np.testing.assert_allclose(by_vector["stat"], by_levels["stat"])

    def test_planted_effects_found(self, fitted):
        res = fitted.results(contrast=("Status", "pregnant", "virgin")).table
        planted = res.loc[genes(20, 40)]
        hits = (planted["adj_p_value"] < 0.1) & (planted["log2_fc"] > 1)
        assert hits.sum() >= 15

    def test_reparameterization(self, deseq2, fse, design, fitted):
        releveled = deseq2.deseq(fse, design.relevel("Status", "pregnant"))
        assert "Status_virgin_vs_pregnant" in releveled.coefficient_names

        original = fitted.results(contrast=("Status", "pregnant", "virgin")).table
        again = releveled.results(contrast=("Status", "pregnant", "virgin")).table
        expressed = original["base_mean"] > 10
        np.testing.assert_allclose(
            again.loc[expressed, "log2_fc"], original.loc[expressed, "log2_fc"], rtol=1e-3, atol=1e-3
        )
        np.testing.assert_allclose(
            np.abs(again.loc[expressed, "stat"]), np.abs(original.loc[expressed, "stat"]), rtol=1e-3, atol=1e-3
        )

        coef_new = releveled.coefficients["Status_virgin_vs_pregnant"]
        coef_old = fitted.coefficients["Status_pregnant_vs_virgin"]
        np.testing.assert_allclose(coef_new[expressed], -coef_old[expressed], rtol=1e-3, atol=1e-3)

    def test_unknown_coefficient(self, deseq2, fitted):
        with pytest.raises(InvalidContrast):
            deseq2.results(fitted, name="Status_lactating_vs_virgin")

    def test_unknown_level(self, deseq2, fitted):
        with pytest.raises(InvalidContrast):
            deseq2.results(fitted, contrast=("Status", "lactating", "virgin"))

    def test_numeric_contrast_wrong_length(self, deseq2, fitted):
        with pytest.raises(InvalidContrast):
            deseq2.results(fitted, contrast=[0, 1])

    def test_orientation_is_required(self, deseq2, fitted):
        with pytest.raises(ValueError):
            deseq2.results(fitted)
        with pytest.raises(ValueError):
            deseq2.results(fitted, name="Intercept", contrast=("Status", "pregnant", "virgin"))

    def test_filter_threshold_recorded(self, fitted):
        res = fitted.results(name="CellType_luminal_vs_basal")
        assert res.filter_threshold >= 0
        assert res.filter_num_rej is not None


class TestCompareModels:
    def test_nested_lrt(self, deseq2, fse, reduced_design, fitted):
        reduced = deseq2.deseq_dataset(fse, reduced_design)
        lrt = deseq2.compare_models(fitted, reduced)
        frame = lrt.table
        assert lrt.test == "LRT"
        assert len(frame) == len(fitted.gene_ids)
        assert frame["p_value"].notna().mean() > 0.9
        status_genes = frame.loc[genes(20, 60), "p_value"]
        others = frame.drop(index=genes(0, 60))["p_value"]
        assert status_genes.median() < others.median()

    def test_swapped_designs_fail(self, deseq2, fse, design, reduced_design):
        small = deseq2.deseq(fse, reduced_design)
        large = deseq2.deseq_dataset(fse, design)
        with pytest.raises(InvalidContrast, match="not nested"):
            deseq2.compare_models(small, large)

    def test_unrelated_design_fails(self, deseq2, fse, fitted):
        other = deseq2.deseq_dataset(fse, make_design({"CellType": ["luminal", "basal"]}))
        with pytest.raises(InvalidContrast):
            deseq2.compare_models(fitted, other)

    def test_different_data_fails(self, deseq2, se, fse, reduced_design, fitted):
        reduced = deseq2.deseq_dataset(se, reduced_design)
        with pytest.raises(InputMismatch):
            deseq2.compare_models(fitted, reduced)

    def test_full_needs_dispersions(self, deseq2, fse, design, reduced_design):
        full = deseq2.deseq_dataset(fse, design)
        reduced = deseq2.deseq_dataset(fse, reduced_design)
        with pytest.raises(StageOrderError):
            deseq2.compare_models(full, reduced)

    def test_with_design_builds_fresh_model(self, fitted, reduced_design):
        reduced = fitted.with_design(reduced_design)
        assert reduced.stage == "constructed"
        assert reduced.design == reduced_design
        assert fitted.design != reduced_design


class TestShrinkAndTransform:
    def test_normal_shrinkage(self, deseq2, fitted):
        res = fitted.results(name="Status_pregnant_vs_virgin")
        shrunk = deseq2.shrink_lfc(fitted, res, coef="Status_pregnant_vs_virgin", type="normal")
        frame = shrunk.table
        pd.testing.assert_series_equal(frame["log2_fc"], res.table["log2_fc"])
        assert np.nanmedian(np.abs(frame["log2_fc_shrunk"])) <= np.nanmedian(np.abs(frame["log2_fc"])) + 1e-8

    def test_shrink_mismatched_table(self, deseq2, fitted):
        res = fitted.results(name="Status_pregnant_vs_virgin")
        with pytest.raises(InvalidContrast, match="not computed"):
            deseq2.shrink_lfc(fitted, res, coef="Status_lactate_vs_virgin", type="normal")

    def test_apeglm_needs_coefficient(self, deseq2, fitted):
        res = fitted.results(contrast=("Status", "lactate", "pregnant"))
        with pytest.raises(InvalidContrast, match="apeglm"):
            deseq2.shrink_lfc(fitted, res, contrast=("Status", "lactate", "pregnant"), type="apeglm")

    def test_normalized_counts(self, deseq2, fitted, fse):
        normalized = deseq2.normalized_counts(fitted)
        expected = count_values(fse) / fitted.size_factors
        np.testing.assert_allclose(normalized.to_numpy(), expected)
        assert list(normalized.columns) == fitted.sample_ids

    def test_normalized_counts_need_size_factors(self, deseq2, fse, design):
        with pytest.raises(StageOrderError):
            deseq2.normalized_counts(deseq2.deseq_dataset(fse, design))

    def test_variance_stabilize(self, deseq2, fitted):
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            vst = deseq2.variance_stabilize(fitted, blind=True)
        assert vst.shape == (len(fitted.gene_ids), len(fitted.sample_ids))
        assert np.isfinite(vst.to_numpy()).all()

    def test_unknown_transform(self, deseq2, fitted):
        with pytest.raises(ValueError):
            deseq2.variance_stabilize(fitted, method="log")
