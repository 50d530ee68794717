"""
Overlap of hit lists across coefficients or contrasts.

``venn_counts`` follows limma::vennCounts; the hit-set helpers give the
intersections and unions of the gene lists directly.
"""

from __future__ import annotations
from typing import Optional, Sequence, Set
import itertools
import numpy as np
import pandas as pd

INCLUDE = ("both", "up", "down")


def _called(results: pd.DataFrame, include: str) -> pd.DataFrame:
    if include not in INCLUDE:
        raise ValueError(f"include must be one of {INCLUDE}, got '{include}'")
    if include == "up":
        return results > 0
    if include == "down":
        return results < 0
    return results != 0


def venn_counts(results: pd.DataFrame, include: str = "both") -> pd.DataFrame:
    """
    Count genes falling in each combination of significant columns.

    Args:
        results: Output of decide_tests().
        include: "both", "up" or "down" calls. Default: "both".

    Returns:
        pd.DataFrame: One 0/1 indicator column per results column plus
        ``Counts``; the first column varies slowest.

    Example:
        >>> venn_counts(decide_tests(model_contrasts, p_value=1e-2))
           P10VsP6  fourweeksVsP10  Counts
        0        0               0   29897
        1        0               1      43
        ...
    """
    called = _called(results, include).to_numpy()
    n_cols = called.shape[1]
    outcomes = np.array(list(itertools.product((0, 1), repeat=n_cols)), dtype=int).reshape(-1, n_cols)
    codes = called.astype(int) @ (2 ** np.arange(n_cols - 1, -1, -1))
    counts = np.bincount(codes, minlength=2 ** n_cols)
    frame = pd.DataFrame(outcomes, columns=list(results.columns))
    frame["Counts"] = counts
    return frame


def hits(
    results: pd.DataFrame,
    column: Optional[str] = None,
    direction: str = "both",
) -> Set:
    """Genes with a call in one column of decide_tests() output."""
    if column is None:
        if results.shape[1] != 1:
            raise ValueError("`column` is required when results have more than one column")
        column = results.columns[0]
    if column not in results.columns:
        raise KeyError(f"Column '{column}' not found. Available: {list(results.columns)}")
    called = _called(results[[column]], direction)[column]
    return set(results.index[called.to_numpy()])


def hits_in_all(
    results: pd.DataFrame,
    columns: Optional[Sequence[str]] = None,
    direction: str = "both",
) -> Set:
    """Genes called in every one of the given columns (default: all)."""
    columns = list(results.columns) if columns is None else list(columns)
    sets = [hits(results, c, direction) for c in columns]
    return set.intersection(*sets) if sets else set()


def hits_in_any(
    results: pd.DataFrame,
    columns: Optional[Sequence[str]] = None,
    direction: str = "both",
) -> Set:
    """Genes called in at least one of the given columns (default: all)."""
    columns = list(results.columns) if columns is None else list(columns)
    sets = [hits(results, c, direction) for c in columns]
    return set.union(*sets) if sets else set()
