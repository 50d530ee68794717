"""
Classify genes as up, down or not significant, after limma::decideTests.

This module provides a functional interface to classify genes as up/down/not
significant, plus a per-column summary of the calls.
"""

from __future__ import annotations
import numpy as np
import pandas as pd

from .checks import check_limma_model
from .lm_fit import LimmaModel
from .p_adjust import p_adjust

DECIDE_METHODS = ("separate", "global")


def decide_tests(
    model: LimmaModel,
    method: str = "separate",
    adjust_method: str = "BH",
    p_value: float = 0.05,
    lfc: float = 0,
) -> pd.DataFrame:
    """
    Classify genes as significantly up, down, or not significant.

    Will run e_bayes if the model has not been moderated.

    Args:
        model: LimmaModel (will run e_bayes if not moderated).
        method: "separate" adjusts each coefficient on its own; "global"
            adjusts all coefficients together as one set of tests.
            Default: "separate".
        adjust_method: Multiple testing method. Default: "BH".
        p_value: Significance threshold on adjusted p-values. Default: 0.05.
        lfc: Minimum absolute log-fold-change for a call. Default: 0.

    Returns:
        pd.DataFrame: Values -1 (down), 0 (not significant), 1 (up).
            Index: gene names, Columns: coefficient names.

    Raises:
        ValueError: If the method is unknown.

    Example:
        >>> import moderated_de.limma as limma
        >>> model = limma.lm_fit(exprs, design).e_bayes()
        >>> dt = limma.decide_tests(model, p_value=0.01)
        >>> n_up = (dt == 1).sum()
    """
    from .e_bayes import e_bayes

    check_limma_model(model)
    if method not in DECIDE_METHODS:
        raise ValueError(f"Unknown method '{method}'. Choose from {DECIDE_METHODS}")
    if not model.is_moderated:
        model = e_bayes(model)

    p = model.p_value.to_numpy(dtype=float)
    if method == "separate":
        adj = np.column_stack([p_adjust(p[:, j], method=adjust_method) for j in range(p.shape[1])])
    else:
        adj = p_adjust(p.ravel(), method=adjust_method).reshape(p.shape)

    t = model.t.to_numpy(dtype=float)
    with np.errstate(invalid="ignore"):
        calls = np.sign(np.nan_to_num(t)) * (np.nan_to_num(adj, nan=1.0) <= p_value)
        if lfc > 0:
            coef = model.coefficients.to_numpy(dtype=float)
            calls[~(np.abs(coef) >= lfc)] = 0

    return pd.DataFrame(
        calls.astype(int),
        index=model.coefficients.index,
        columns=model.coefficients.columns,
    )


def summarize_tests(results: pd.DataFrame) -> pd.DataFrame:
    """Count down, not significant and up calls per column.

    Example:
        >>> summarize_tests(decide_tests(model))
                devStageP2  devStageP6
        Down             1           3
        NotSig       29940       29930
        Up               8          16
    """
    return pd.DataFrame(
        {
            "Down": (results == -1).sum(axis=0),
            "NotSig": (results == 0).sum(axis=0),
            "Up": (results == 1).sum(axis=0),
        }
    ).T
