"""Shared fixtures: small deterministic expression datasets."""

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from moderated_de.simulate import simulate_two_group

STAGES = ["E16", "P2", "P6", "P10", "4_weeks"]
GTYPES = ["wt", "NrlKO"]


@pytest.fixture
def two_group():
    """1000 genes, 3 vs 3 samples, first 50 genes shifted by 3 in group B."""
    exprs, samples, de_genes = simulate_two_group(
        n_genes=1000, n_per_group=3, n_de=50, effect=3.0, seed=42
    )
    return exprs, samples, de_genes


@pytest.fixture
def two_group_design(two_group):
    _, samples, _ = two_group
    return pd.DataFrame(
        {
            "(Intercept)": 1.0,
            "groupB": (samples["group"] == "B").astype(float),
        },
        index=samples.index,
    )


@pytest.fixture
def photorec_design():
    """Photoreceptor-style design: 5 stages x 2 genotypes x 4 replicates, shuffled ids."""
    rows = []
    k = 0
    for gtype in GTYPES:
        for stage in STAGES:
            for rep in range(4):
                k += 1
                rows.append({"sidChar": f"Sample_{k}", "sidNum": k, "devStage": stage, "gType": gtype})
    design = pd.DataFrame(rows)
    design["devStage"] = pd.Categorical(design["devStage"], categories=STAGES, ordered=True)
    design["gType"] = pd.Categorical(design["gType"], categories=GTYPES, ordered=True)
    return design


@pytest.fixture
def photorec_exprs(photorec_design):
    """200 genes; genes 0-9 rise with stage, genes 10-14 differ by genotype."""
    rng = np.random.default_rng(7)
    n_genes = 200
    n_samples = len(photorec_design)
    values = rng.normal(loc=8.0, scale=0.3, size=(n_genes, n_samples))
    stage_index = photorec_design["devStage"].cat.codes.to_numpy()
    values[:10] += stage_index[None, :] * 1.5
    ko = (photorec_design["gType"] == "NrlKO").to_numpy()
    values[10:15, ko] -= 2.0
    genes = [f"{1415670 + i}_at" for i in range(n_genes)]
    return pd.DataFrame(values, index=genes, columns=photorec_design["sidChar"].tolist())


@pytest.fixture
def photorec_se(photorec_exprs, photorec_design):
    from moderated_de.data import build_experiment

    shuffled = photorec_design.sample(frac=1.0, random_state=3)
    return build_experiment(photorec_exprs, shuffled, sample_col="sidChar")


@pytest.fixture(autouse=True)
def _close_figures():
    yield
    import matplotlib.pyplot as plt

    plt.close("all")
