"""Simulated expression data for exploring variance moderation."""

from __future__ import annotations
from typing import List, Optional, Tuple
import numpy as np
import pandas as pd


def _gene_names(n_genes: int) -> List[str]:
    width = max(4, len(str(n_genes)))
    return [f"gene{i + 1:0{width}d}" for i in range(n_genes)]


def simulate_null_expression(
    n_genes: int = 1000,
    n_samples: int = 3,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """
    Draw i.i.d. standard normal expression values with no differential expression.

    Every gene has true variance 1, so the spread of the gene-wise sample
    variances is pure estimation noise; moderation should pull them towards 1.

    Returns:
        pd.DataFrame: Genes (``gene0001``...) x samples (``sample1``...).
    """
    rng = np.random.default_rng(seed)
    values = rng.standard_normal((n_genes, n_samples))
    return pd.DataFrame(
        values,
        index=_gene_names(n_genes),
        columns=[f"sample{j + 1}" for j in range(n_samples)],
    )


def simulate_two_group(
    n_genes: int = 1000,
    n_per_group: int = 3,
    n_de: int = 50,
    effect: float = 2.0,
    seed: Optional[int] = None,
) -> Tuple[pd.DataFrame, pd.DataFrame, List[str]]:
    """
    Simulate a two-group experiment with ``n_de`` shifted genes.

    Gene-wise variances are drawn from a scaled inverse chi-square prior so
    that moderation has something to borrow; group B of the first ``n_de``
    genes is shifted by ``effect``.

    Returns:
        (exprs, samples, de_genes): expression (genes x samples), sample
        metadata with a categorical ``group`` column (levels A, B), and the
        names of the shifted genes.
    """
    if not 0 <= n_de <= n_genes:
        raise ValueError(f"n_de must be between 0 and n_genes, got {n_de}")
    rng = np.random.default_rng(seed)
    n_samples = 2 * n_per_group
    d0, s0 = 4.0, 0.5
    sigma2 = d0 * s0 ** 2 / rng.chisquare(d0, size=n_genes)
    values = rng.standard_normal((n_genes, n_samples)) * np.sqrt(sigma2)[:, None]
    values[:n_de, n_per_group:] += effect

    genes = _gene_names(n_genes)
    sample_names = [f"A{j + 1}" for j in range(n_per_group)] + [f"B{j + 1}" for j in range(n_per_group)]
    exprs = pd.DataFrame(values, index=genes, columns=sample_names)
    samples = pd.DataFrame(
        {"group": pd.Categorical(["A"] * n_per_group + ["B"] * n_per_group, categories=["A", "B"])},
        index=sample_names,
    )
    return exprs, samples, genes[:n_de]
