"""Tests for reading input tables, bundles and result export."""

import numpy as np
import pandas as pd
import pytest

from deseq_workflow import (
    load_bundle,
    read_count_table,
    read_sample_info,
    save_bundle,
    strip_sample_suffix,
    write_results,
)

FEATURECOUNTS = """\
# Program:featureCounts v2.0.1; Command:"featureCounts" "-a" "mm10.gtf"
Geneid\tChr\tStart\tEnd\tStrand\tLength\tMCL1.DG.bam\tMCL1.DH.bam\tMCL1.LA.bam
497097\tchr1;chr1;chr1\t3214482;3421702;3670552\t3216968;3421901;3671498\t-;-;-\t3634\t0\t0\t1
100503874\tchr1;chr1\t3647309;3658847\t3658904;3658904\t-;-\t3259\t12\t3\t0
27395\tchr1\t4773206\t4785739\t-\t1677\t881\t777\t1050
"""

SAMPLE_INFO = """\
FileName\tSampleName\tCellType\tStatus
MCL1.DG\tDG\tbasal\tvirgin
MCL1.DH\tDH\tbasal\tpregnant
MCL1.LA\tLA\tluminal\tvirgin
"""


@pytest.fixture
def count_file(tmp_path):
    path = tmp_path / "counts.txt"
    path.write_text(FEATURECOUNTS)
    return path


@pytest.fixture
def info_file(tmp_path):
    path = tmp_path / "samples.txt"
    path.write_text(SAMPLE_INFO)
    return path


class TestReadCountTable:
    def test_drops_annotation_and_comment(self, count_file):
        table = read_count_table(count_file)
        assert list(table.columns) == ["MCL1.DG", "MCL1.DH", "MCL1.LA"]
        assert list(table.index) == ["497097", "100503874", "27395"]
        assert table.index.name == "gene"
        assert (table.dtypes == "int64").all()
        assert table.loc["27395", "MCL1.LA"] == 1050

    def test_keep_suffix(self, count_file):
        table = read_count_table(count_file, suffix=None)
        assert list(table.columns) == ["MCL1.DG.bam", "MCL1.DH.bam", "MCL1.LA.bam"]

    def test_fractional_count_rejected(self, tmp_path):
        path = tmp_path / "counts.txt"
        path.write_text(FEATURECOUNTS.replace("\t881\t", "\t1.5\t"))
        with pytest.raises(ValueError, match="integers"):
            read_count_table(path)

    def test_whole_floats_accepted(self, tmp_path):
        path = tmp_path / "counts.txt"
        path.write_text(FEATURECOUNTS.replace("\t881\t", "\t881.0\t"))
        table = read_count_table(path)
        assert (table.dtypes == "int64").all()
        assert table.loc["27395", "MCL1.DG"] == 881

    def test_strip_sample_suffix(self):
        assert strip_sample_suffix(["a.bam", "b.bam.bam", "c"]) == ["a", "b.bam", "c"]
        assert strip_sample_suffix(["x_sorted.bam"], r"_sorted\.bam$") == ["x"]


class TestReadSampleInfo:
    def test_first_column_is_index(self, info_file):
        info = read_sample_info(info_file)
        assert list(info.index) == ["MCL1.DG", "MCL1.DH", "MCL1.LA"]
        assert list(info.columns) == ["SampleName", "CellType", "Status"]

    def test_named_sample_column(self, info_file):
        info = read_sample_info(info_file, sample_column="SampleName")
        assert list(info.index) == ["DG", "DH", "LA"]
        assert "FileName" in info.columns

    def test_values_are_strings(self, tmp_path):
        path = tmp_path / "numeric.txt"
        path.write_text("Sample\tBatch\nS1\t1\nS2\t2\n")
        info = read_sample_info(path)
        assert list(info["Batch"]) == ["1", "2"]

    def test_missing_sample_column(self, info_file):
        with pytest.raises(KeyError, match="Sample"):
            read_sample_info(info_file, sample_column="Sample")

    def test_tables_fit_together(self, count_file, info_file):
        from deseq_workflow import build_count_matrix

        se = build_count_matrix(read_count_table(count_file), read_sample_info(info_file))
        assert se.shape == (3, 3)


class TestBundles:
    def test_round_trip(self, tmp_path, counts, sample_info):
        path = save_bundle(tmp_path / "preprocessed.pkl", counts=counts, sample_info=sample_info)
        bundle = load_bundle(path, required=["counts", "sample_info"])
        pd.testing.assert_frame_equal(bundle["counts"], counts)
        pd.testing.assert_frame_equal(bundle["sample_info"], sample_info)

    def test_missing_key(self, tmp_path, counts):
        path = save_bundle(tmp_path / "b.pkl", counts=counts)
        with pytest.raises(KeyError, match="sample_info"):
            load_bundle(path, required=["counts", "sample_info"])

    def test_nothing_to_save(self, tmp_path):
        with pytest.raises(ValueError):
            save_bundle(tmp_path / "empty.pkl")


class TestWriteResults:
    @pytest.fixture
    def frame(self):
        return pd.DataFrame(
            {"gene": ["g1", "g2"], "log2_fc": [1.5, -0.5], "adj_p_value": [0.01, np.nan]}
        )

    def test_writes_na(self, tmp_path, frame):
        path = write_results(frame, tmp_path / "out.tsv")
        lines = path.read_text().splitlines()
        assert lines[0] == "gene\tlog2_fc\tadj_p_value"
        assert lines[2] == "g2\t-0.5\tNA"

    def test_select_and_rename(self, tmp_path, frame):
        path = write_results(frame, tmp_path / "out.csv", columns={"gene": "GeneID", "adj_p_value": "FDR"}, sep=",")
        back = pd.read_csv(path)
        assert list(back.columns) == ["GeneID", "FDR"]

    def test_select_list(self, tmp_path, frame):
        path = write_results(frame, tmp_path / "out.tsv", columns=["log2_fc"])
        assert path.read_text().splitlines()[0] == "log2_fc"
