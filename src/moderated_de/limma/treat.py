"""
Test against a fold-change threshold, after limma::treat.

This module provides a functional interface for fold-change threshold testing.
"""

from __future__ import annotations
from dataclasses import replace
import numpy as np
import pandas as pd
from scipy import stats

from .checks import check_limma_model_fitted
from .lm_fit import LimmaModel, MODERATED_SLOTS
from .squeeze_var import squeeze_var


def treat(
    model: LimmaModel,
    lfc: float = float(np.log2(1.2)),
    trend: bool = False,
) -> LimmaModel:
    """
    Test for differential expression relative to a fold-change threshold.

    Tests H0: |coef| <= lfc using the moderated variances. No B-statistics
    or F-statistics are computed; ``top_table`` sorts by p-value instead.

    Args:
        model: LimmaModel from lm_fit() or contrasts_fit().
        lfc: Log-fold-change threshold. Default: log2(1.2).
        trend: Trend the prior variance on average expression. Default: False.

    Returns:
        LimmaModel: With TREAT t-statistics and p-values, and ``treat_lfc``
        recorded in metadata.

    Example:
        >>> import moderated_de.limma as limma
        >>> model = limma.lm_fit(exprs, design)
        >>> model_treat = limma.treat(model, lfc=1.0)
        >>> results = model_treat.top_table(coef=1)
    """
    check_limma_model_fitted(model)

    coef = model.coefficients.to_numpy(dtype=float)
    stdev = model.stdev_unscaled.to_numpy(dtype=float)
    sigma = model.sigma.to_numpy(dtype=float)
    df_residual = model.df_residual.to_numpy(dtype=float)
    if not np.any(df_residual > 0):
        raise ValueError("No residual degrees of freedom in linear model fits")

    covariate = model.amean.to_numpy(dtype=float) if trend else None
    squeezed = squeeze_var(sigma ** 2, df_residual, covariate=covariate)
    df_total = np.minimum(df_residual + squeezed.df_prior, np.nansum(df_residual))

    lfc = abs(float(lfc))
    acoef = np.abs(coef)
    se = stdev * np.sqrt(squeezed.var_post)[:, None]
    dft = df_total[:, None]
    with np.errstate(invalid="ignore", divide="ignore"):
        t_right = (acoef - lfc) / se
        t_left = (acoef + lfc) / se
    p_value = stats.t.sf(t_right, dft) + stats.t.sf(t_left, dft)

    t_right = np.maximum(t_right, 0)
    with np.errstate(invalid="ignore"):
        up = np.nan_to_num(coef, nan=0.0) >= lfc
        down = np.nan_to_num(coef, nan=0.0) <= -lfc
    t = np.zeros_like(coef)
    t[up] = t_right[up]
    t[down] = -t_right[down]

    index = model.coefficients.index
    columns = model.coefficients.columns
    s2_prior = squeezed.var_prior
    cleared = dict.fromkeys(MODERATED_SLOTS)
    cleared.update(
        df_prior=float(squeezed.df_prior),
        s2_prior=float(s2_prior) if np.ndim(s2_prior) == 0 else pd.Series(s2_prior, index=index, name="s2_prior"),
        s2_post=pd.Series(squeezed.var_post, index=index, name="s2_post"),
        df_total=pd.Series(df_total, index=index, name="df_total"),
        t=pd.DataFrame(t, index=index, columns=columns),
        p_value=pd.DataFrame(p_value, index=index, columns=columns),
    )
    return replace(model, metadata={**model.metadata, "treat_lfc": lfc}, **cleared)
