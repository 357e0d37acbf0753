"""
Shared fixtures: a synthetic mammary-gland style experiment.

Twelve samples, CellType {basal, luminal} x Status {virgin, pregnant,
lactate}, two replicates each. The first genes carry planted effects:
luminal up, pregnant up, lactate down (both relative to virgin).
"""

import numpy as np
import pandas as pd
import pytest

from deseq_workflow import build_count_matrix, make_design

CELL_TYPES = ["basal", "luminal"]
STATUSES = ["virgin", "pregnant", "lactate"]
N_GENES = 300


@pytest.fixture
def sample_info():
    """Sample metadata indexed by sample id."""
    rows = []
    for cell in CELL_TYPES:
        for status in STATUSES:
            for rep in (1, 2):
                rows.append({
                    "SampleName": f"{cell[0].upper()}{status[0].upper()}{rep}",
                    "CellType": cell,
                    "Status": status,
                })
    return pd.DataFrame(rows).set_index("SampleName")


@pytest.fixture
def counts(sample_info):
    """Genes x samples counts; columns deliberately in reverse metadata order."""
    rng = np.random.default_rng(42)
    n_samples = len(sample_info)
    mu = rng.gamma(shape=1.5, scale=200.0, size=N_GENES)[:, None] * np.ones(n_samples)

    luminal = (sample_info["CellType"] == "luminal").to_numpy()
    pregnant = (sample_info["Status"] == "pregnant").to_numpy()
    lactate = (sample_info["Status"] == "lactate").to_numpy()
    mu[0:20, luminal] *= 4.0
    mu[20:40, pregnant] *= 4.0
    mu[40:60, lactate] /= 4.0

    size = 10.0
    values = rng.negative_binomial(size, size / (size + mu))
    values[-5:, :] = 0
    frame = pd.DataFrame(
        values,
        index=[f"ENSMUSG{i:011d}" for i in range(N_GENES)],
        columns=list(sample_info.index),
    )
    return frame[frame.columns[::-1]]


@pytest.fixture
def se(counts, sample_info):
    return build_count_matrix(counts, sample_info)


@pytest.fixture
def design():
    """~CellType + Status with explicit reference levels."""
    return make_design({"CellType": CELL_TYPES, "Status": STATUSES})


@pytest.fixture
def reduced_design():
    return make_design({"CellType": CELL_TYPES})


@pytest.fixture
def raw_results():
    """A gene-indexed frame of raw statistics, as extracted from DESeq2."""
    rng = np.random.default_rng(7)
    n = 200
    base_mean = np.concatenate([np.zeros(10), rng.gamma(1.0, 100.0, size=n - 10)])
    p_value = rng.uniform(size=n)
    p_value[10:40] = rng.uniform(0, 1e-4, size=30)
    p_value[:10] = np.nan
    log2_fc = rng.normal(size=n)
    log2_fc[:10] = np.nan
    return pd.DataFrame(
        {
            "base_mean": base_mean,
            "log2_fc": log2_fc,
            "lfc_se": np.abs(rng.normal(0.3, 0.05, size=n)),
            "stat": rng.normal(size=n),
            "p_value": p_value,
        },
        index=[f"G{i:04d}" for i in range(n)],
    )
