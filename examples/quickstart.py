# examples/quickstart.py
import numpy as np
import pandas as pd

import deseq_workflow as dw

# --- a toy mammary-gland style experiment (genes x samples) ---
cell_types = ["basal", "luminal"]
statuses = ["virgin", "pregnant", "lactate"]
info = pd.DataFrame(
    [(f"{c[0].upper()}{s[0].upper()}{r}", c, s) for c in cell_types for s in statuses for r in (1, 2)],
    columns=["SampleName", "CellType", "Status"],
).set_index("SampleName")

rng = np.random.default_rng(1)
mu = rng.gamma(1.5, 200.0, size=(500, 1)) * np.ones((1, len(info)))
mu[:25, (info["Status"] == "pregnant").to_numpy()] *= 4
counts = pd.DataFrame(
    rng.negative_binomial(10, 10 / (10 + mu)),
    index=[f"ENSMUSG{i:011d}" for i in range(500)],
    columns=info.index,
)

# Real data: dw.read_count_table("GSE60450_Lactation-GenewiseCounts.txt"),
#            dw.read_sample_info("SampleInfo.txt", sample_column="FileName")
se = dw.filter_low_counts(dw.build_count_matrix(counts, info))
design = dw.make_design({"CellType": cell_types, "Status": statuses})

# DESeq2 is checked/installed on first access
model = dw.deseq2.deseq(se, design)
res = model.results(contrast=("Status", "pregnant", "virgin"))
print(res.summary())
print(res.top(10))

# Does Status explain anything beyond CellType?
reduced = model.with_design(dw.make_design({"CellType": cell_types}))
lrt = dw.deseq2.compare_models(model, reduced)
print(lrt.top(10))

vst = dw.deseq2.variance_stabilize(model)
dw.plots.pca_plot(vst, dw.sample_frame(se), color="Status", shape="CellType", save_path="pca.png")
dw.plots.volcano_plot(res, save_path="volcano.png")
dw.save_bundle("results.pkl", results=res, lrt=lrt, sample_info=dw.sample_frame(se))
