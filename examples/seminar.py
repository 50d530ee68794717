# examples/seminar.py
"""
The photoreceptor (GSE4051) seminar workflow end to end.

    python examples/seminar.py GSE4051_data.tsv GSE4051_design.rds

Without arguments a simulated two-group experiment is used instead.
"""
import logging
import sys

import matplotlib

matplotlib.use("Agg")

import moderated_de as mde
from moderated_de import limma
from moderated_de.plots import (
    plot_statistic_matrix,
    plot_variance_shrinkage,
    stripplot_it,
    volcano_plot,
)

logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")


def simulated():
    # --- what moderation buys on data with only three replicates per group ---
    exprs, samples, de_genes = mde.simulate_two_group(n_genes=1000, n_per_group=3, n_de=50, seed=1)
    design = mde.model_matrix(samples, "~ group")
    model = limma.lm_fit(exprs, design).e_bayes()
    print(model)
    table = model.top_table(coef="groupB", number=None)
    hits = table.loc[table["adj_p_value"] < 0.05, "gene"]
    print(f"{len(hits)} hits, {len(set(hits) & set(de_genes))} of them truly shifted")
    plot_variance_shrinkage(model).savefig("variance_shrinkage.png")
    volcano_plot(table, title="B vs A", save_path="volcano.png")


def photoreceptor(expr_path, design_path):
    se = mde.load_experiment(expr_path, design_path)

    # --- two genes, all samples ---
    long = mde.prepare_data(se, ["1419655_at", "1438815_at"])
    stripplot_it(long).savefig("stripplot.png")

    # --- wild type only: does expression change over development? ---
    wt = mde.subset_samples(se, gType="wt")
    design = mde.model_matrix(mde.sample_frame(wt), "~ devStage")
    fit = limma.lm_fit(wt, design).e_bayes()
    coefs = [c for c in fit.coef_names if c.startswith("devStage")]
    print(fit.top_table(coef=coefs, p_value=1e-5, number=None).head())
    plot_statistic_matrix(fit).savefig("t_statistics.png")

    # --- late stages compared with each other ---
    cont = limma.make_contrasts(
        P10VsP6="devStageP10 - devStageP6",
        fourweeksVsP10="devStage4_weeks - devStageP10",
        levels=fit.coef_names,
    )
    cont_fit = fit.contrasts_fit(cont).e_bayes()
    results = cont_fit.decide_tests(p_value=1e-4)
    print(limma.summarize_tests(results))
    print(limma.venn_counts(results))
    print(limma.hits_in_all(results, direction="down"))

    # --- genotype by stage interaction, both genotypes ---
    frame = mde.relevel(mde.sample_frame(se), "gType", "wt")
    design = mde.model_matrix(frame, "~ gType * devStage")
    full = limma.lm_fit(se, design).e_bayes()
    interaction = [c for c in full.coef_names if ":" in c]
    print(full.top_table(coef=interaction, number=10))


if __name__ == "__main__":
    if len(sys.argv) == 3:
        photoreceptor(sys.argv[1], sys.argv[2])
    else:
        simulated()
