"""
Empirical Bayes moderation of a gene-wise linear model fit, after limma::eBayes.

This module provides a functional interface to compute moderated t- and
F-statistics and B-statistics (log-odds of differential expression).

The hyperparameters come from ``inmoose.limma``: ``squeezeVar`` for the
variance prior, ``tmixture_matrix`` for the prior variance of non-zero
coefficients and ``classifyTestsF`` for the moderated F-statistic. The
F p-values use the per-gene total degrees of freedom.
"""

from __future__ import annotations
from typing import Optional, Tuple
from dataclasses import replace
import warnings
import numpy as np
import pandas as pd
from scipy import stats
from inmoose.limma import classifyTestsF, tmixture_matrix

from .checks import check_limma_model_fitted, check_proportion
from .lm_fit import LimmaModel
from .squeeze_var import squeeze_var

_LOG_TINY = np.log(np.finfo(float).tiny)


def t_at_common_df(tstat: np.ndarray, df: np.ndarray) -> np.ndarray:
    """|t| re-expressed on the largest df with the same tail probability.

    Tail probabilities are taken on the log scale; finite statistics whose
    tail underflows are capped at the largest representable quantile.
    """
    tstat = np.abs(np.asarray(tstat, dtype=float))
    df = np.asarray(df, dtype=float)
    max_df = np.max(df)
    lower = df < max_df
    if lower.any():
        sub = tstat[lower]
        log_tail = stats.t.logsf(sub, df[lower][:, None])
        log_tail = np.maximum(log_tail, np.where(np.isinf(sub), -np.inf, _LOG_TINY))
        tstat[lower] = stats.t.isf(np.exp(log_tail), max_df)
    return tstat


def _independent_columns(cor: np.ndarray) -> list:
    keep: list = []
    for j in range(cor.shape[0]):
        trial = keep + [j]
        if np.linalg.matrix_rank(cor[np.ix_(trial, trial)]) == len(trial):
            keep.append(j)
    return keep


def moderated_f(
    tstat: np.ndarray,
    cov_coefficients: np.ndarray,
) -> Tuple[np.ndarray, int]:
    """Moderated F-statistic combining the t-statistics of all coefficients.

    Linearly dependent coefficients are dropped first; the F-statistic
    depends only on the space the coefficients span.

    Returns:
        (F, df1) where df1 is the numerator degrees of freedom.
    """
    cov = np.array(cov_coefficients, dtype=float)
    # all-zero contrasts have zero variance
    zero = np.flatnonzero(np.diag(cov) == 0)
    cov[zero, zero] = 1.0
    sd = np.sqrt(np.diag(cov))
    cor = cov / np.outer(sd, sd)
    keep = _independent_columns(cor)
    F = classifyTestsF(
        np.asarray(tstat, dtype=float)[:, keep],
        cor_matrix=cor[np.ix_(keep, keep)],
        fstat_only=True,
    )
    return np.asarray(F, dtype=float).reshape(-1), int(F.df1)


def f_p_value(F: np.ndarray, df1: int, df2: np.ndarray) -> np.ndarray:
    """Upper tail of F(df1, df2); chi-square on df1 when df2 exceeds 1e6."""
    df2 = np.broadcast_to(np.asarray(df2, dtype=float), F.shape)
    chisq = stats.chi2.sf(df1 * F, df1)
    with np.errstate(invalid="ignore"):
        fdist = stats.f.sf(F, df1, np.where(df2 > 1e6, 1.0, df2))
    return np.where(df2 > 1e6, chisq, fdist)


def _moderated_f_slots(
    t: pd.DataFrame,
    cov_coefficients: pd.DataFrame,
    df_total: pd.Series,
) -> Tuple[Optional[pd.Series], Optional[pd.Series]]:
    cov = cov_coefficients.to_numpy(dtype=float)
    if np.isnan(cov).any():
        return None, None
    F, df1 = moderated_f(t.to_numpy(dtype=float), cov)
    p = f_p_value(F, df1, df_total.to_numpy(dtype=float))
    return pd.Series(F, index=t.index, name="F"), pd.Series(p, index=t.index, name="F_p_value")


def e_bayes(
    model: LimmaModel,
    proportion: float = 0.01,
    stdev_coef_lim: Tuple[float, float] = (0.1, 4.0),
    trend: bool = False,
) -> LimmaModel:
    """
    Compute empirical Bayes moderated statistics.

    Squeezes the residual variances towards a common prior, then derives
    moderated t-statistics, their p-values, B-statistics and the moderated
    F-statistic. Returns a new LimmaModel with the moderated slots set.

    Args:
        model: LimmaModel from lm_fit() or contrasts_fit().
        proportion: Assumed proportion of DE genes. Default: 0.01.
        stdev_coef_lim: Limits on the prior standard deviation of log-fold
            changes for DE genes. Default: (0.1, 4).
        trend: Trend the prior variance on average expression. Default: False.

    Returns:
        LimmaModel: With moderated slots set.

    Raises:
        TypeError: If model is not a LimmaModel.
        ValueError: If model is not fitted, has no residual degrees of
            freedom, or proportion is outside (0, 1).

    Example:
        >>> import moderated_de.limma as limma
        >>> model = limma.lm_fit(exprs, design)
        >>> model_eb = limma.e_bayes(model)
        >>> results = limma.top_table(model_eb, coef=1)
    """
    check_limma_model_fitted(model)
    check_proportion(proportion)

    coef = model.coefficients.to_numpy(dtype=float)
    stdev = model.stdev_unscaled.to_numpy(dtype=float)
    sigma = model.sigma.to_numpy(dtype=float)
    df_residual = model.df_residual.to_numpy(dtype=float)

    if not np.any(df_residual > 0):
        raise ValueError("No residual degrees of freedom in linear model fits")
    if not np.any(np.isfinite(sigma)):
        raise ValueError("No finite residual standard deviations")

    covariate = model.amean.to_numpy(dtype=float) if trend else None
    squeezed = squeeze_var(sigma ** 2, df_residual, covariate=covariate)
    s2_post = squeezed.var_post
    df_prior = squeezed.df_prior

    df_total = np.minimum(df_residual + df_prior, np.nansum(df_residual))
    with np.errstate(invalid="ignore", divide="ignore"):
        t = coef / stdev / np.sqrt(s2_post)[:, None]
    p_value = 2 * stats.t.sf(np.abs(t), df_total[:, None])

    s2_prior = squeezed.var_prior
    var_prior_lim = np.asarray(stdev_coef_lim, dtype=float) ** 2 / np.median(s2_prior)
    var_prior = tmixture_matrix(
        t_at_common_df(t, df_total),
        stdev,
        np.full_like(df_total, np.max(df_total)),
        proportion,
        var_prior_lim,
    )
    if np.isnan(var_prior).any():
        var_prior[np.isnan(var_prior)] = 1.0 / np.median(s2_prior)
        warnings.warn("Estimation of var.prior failed - set to default value", stacklevel=2)

    with np.errstate(invalid="ignore", divide="ignore"):
        r = (stdev ** 2 + var_prior[None, :]) / stdev ** 2
        t2 = t ** 2
        if df_prior > 1e6:
            kernel = t2 * (1 - 1 / r) / 2
        else:
            dft = df_total[:, None]
            kernel = (1 + dft) / 2 * np.log((t2 + dft) / (t2 / r + dft))
        lods = np.log(proportion / (1 - proportion)) - np.log(r) / 2 + kernel

    index = model.coefficients.index
    columns = model.coefficients.columns
    df_total_s = pd.Series(df_total, index=index, name="df_total")
    t_df = pd.DataFrame(t, index=index, columns=columns)
    F, F_p = _moderated_f_slots(t_df, model.cov_coefficients, df_total_s)

    if np.ndim(s2_prior) == 0:
        s2_prior_out = float(s2_prior)
    else:
        s2_prior_out = pd.Series(s2_prior, index=index, name="s2_prior")

    return replace(
        model,
        df_prior=float(df_prior),
        s2_prior=s2_prior_out,
        s2_post=pd.Series(s2_post, index=index, name="s2_post"),
        df_total=df_total_s,
        t=t_df,
        p_value=pd.DataFrame(p_value, index=index, columns=columns),
        lods=pd.DataFrame(lods, index=index, columns=columns),
        var_prior=pd.Series(var_prior, index=columns, name="var_prior"),
        F=F,
        F_p_value=F_p,
        proportion=proportion,
        metadata={k: v for k, v in model.metadata.items() if k != "treat_lfc"},
    )
