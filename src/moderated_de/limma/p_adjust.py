"""
Multiple testing correction of p-values, after stats::p.adjust.

The adjustments are computed by ``statsmodels.stats.multitest.multipletests``;
this module maps R's method names onto it and keeps NaN p-values out of the
count of tests.
"""

from __future__ import annotations
from typing import Union
import numpy as np
import pandas as pd
from statsmodels.stats.multitest import multipletests

# R method name -> statsmodels method name
_STATSMODELS_METHODS = {
    "BH": "fdr_bh",
    "fdr": "fdr_bh",
    "BY": "fdr_by",
    "holm": "holm",
    "hochberg": "simes-hochberg",
    "bonferroni": "bonferroni",
}

P_ADJUST_METHODS = (*_STATSMODELS_METHODS, "none")


def p_adjust(
    p: Union[np.ndarray, pd.Series, list],
    method: str = "BH",
) -> Union[np.ndarray, pd.Series]:
    """
    Adjust p-values for multiple comparisons.

    NaN p-values are kept in place and do not count towards the number of
    tests.

    Args:
        p: Raw p-values.
        method: One of "BH" (alias "fdr"), "BY", "holm", "hochberg",
            "bonferroni" or "none". Default: "BH".

    Returns:
        Adjusted p-values of the same shape (a Series if given a Series).

    Raises:
        ValueError: If the method is unknown.

    Example:
        >>> p_adjust([0.01, 0.02, 0.03, 0.04, 0.05], method="BH")
        array([0.05, 0.05, 0.05, 0.05, 0.05])
    """
    if method not in P_ADJUST_METHODS:
        raise ValueError(f"Unknown p-value adjustment method '{method}'. Choose from {P_ADJUST_METHODS}")

    values = np.asarray(p, dtype=float)
    flat = values.ravel()

    valid_mask = ~np.isnan(flat)
    adjusted = np.full_like(flat, np.nan)
    if method == "none":
        adjusted[valid_mask] = flat[valid_mask]
    elif np.any(valid_mask):
        _, adjusted[valid_mask], _, _ = multipletests(
            flat[valid_mask],
            method=_STATSMODELS_METHODS[method],
        )

    adjusted = adjusted.reshape(values.shape)
    if isinstance(p, pd.Series):
        return pd.Series(adjusted, index=p.index, name=p.name)
    return adjusted
