"""moderated_de: limma-style linear models for high-volume expression data.

Fits a linear model to every gene at once, moderates the gene-wise variances
with empirical Bayes, ranks genes, tests contrasts and plots the results.

Usage:
    >>> import moderated_de as mde
    >>> se = mde.load_experiment("GSE4051_data.tsv", "GSE4051_design.tsv")
    >>> wt = mde.subset_samples(se, gType="wt")
    >>> design = mde.model_matrix(mde.sample_frame(wt), "~ devStage")
    >>> model = mde.limma.lm_fit(wt, design).e_bayes()
    >>> model.top_table(coef=["devStageP2", "devStageP6"], p_value=1e-5)
"""

from __future__ import annotations

from . import limma
from .data import (
    DEFAULT_FACTOR_LEVELS,
    load_expression,
    load_design,
    build_experiment,
    load_experiment,
    sample_frame,
    expression_frame,
    subset_samples,
    subset_genes,
    prepare_data,
)
from .design import model_matrix, relevel
from .simulate import simulate_null_expression, simulate_two_group
from .r_utils import is_r_available, ensure_r_dependencies, read_rds, r_limma_top_table

__all__ = [
    "limma",
    # Data
    "DEFAULT_FACTOR_LEVELS",
    "load_expression",
    "load_design",
    "build_experiment",
    "load_experiment",
    "sample_frame",
    "expression_frame",
    "subset_samples",
    "subset_genes",
    "prepare_data",
    # Design
    "model_matrix",
    "relevel",
    # Simulation
    "simulate_null_expression",
    "simulate_two_group",
    # R bridge
    "is_r_available",
    "ensure_r_dependencies",
    "read_rds",
    "r_limma_top_table",
]
