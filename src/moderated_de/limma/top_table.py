"""
Extract top-ranked genes from a moderated fit, after limma::topTable.

This module provides a functional interface to extract DE results.
"""

from __future__ import annotations
from typing import Any, List, Optional, Sequence, Union
import logging
import numpy as np
import pandas as pd
from scipy import stats

from .checks import check_limma_model
from .lm_fit import LimmaModel
from .p_adjust import p_adjust
from .e_bayes import moderated_f, f_p_value

logger = logging.getLogger(__name__)

T_SORT_KEYS = ("B", "p", "P", "t", "logFC", "AveExpr", "none")
F_SORT_KEYS = ("F", "none")

Coef = Union[int, str]


def resolve_coefs(model: LimmaModel, coef: Union[Coef, Sequence[Coef]]) -> List[str]:
    """Map coefficient names or 0-based positions to names."""
    names = model.coef_names
    items = [coef] if isinstance(coef, (int, np.integer, str)) else list(coef)
    resolved = []
    for item in items:
        if isinstance(item, (int, np.integer)) and not isinstance(item, bool):
            if not -len(names) <= item < len(names):
                raise KeyError(f"Coefficient index {item} out of range for {len(names)} coefficients")
            resolved.append(names[item])
        elif item in names:
            resolved.append(item)
        else:
            raise KeyError(f"Coefficient '{item}' not found. Available: {names}")
    return resolved


def _empty(columns: Sequence[str]) -> pd.DataFrame:
    return pd.DataFrame({c: pd.Series(dtype=object if c == "gene" else float) for c in columns})


def _take(order: np.ndarray, number: Optional[int]) -> np.ndarray:
    if number is None:
        return order
    return order[: max(int(number), 0)]


def _top_table_t(
    model: LimmaModel,
    coef: str,
    number: Optional[int],
    adjust_method: str,
    sort_by: str,
    p_value: float,
    lfc: float,
    confint: Union[bool, float],
) -> pd.DataFrame:
    has_lods = model.lods is not None
    if sort_by not in T_SORT_KEYS:
        raise ValueError(f"sort_by must be one of {T_SORT_KEYS} for a single coefficient, got '{sort_by}'")
    if sort_by == "B" and not has_lods:
        sort_by = "p"

    M = model.coefficients[coef].to_numpy(dtype=float)
    A = model.amean.to_numpy(dtype=float)
    t = model.t[coef].to_numpy(dtype=float)
    P = model.p_value[coef].to_numpy(dtype=float)
    adj = p_adjust(P, method=adjust_method)
    B = model.lods[coef].to_numpy(dtype=float) if has_lods else None

    columns = ["gene", "log_fc"]
    if confint:
        columns += ["ci_l", "ci_r"]
    columns += ["ave_expr", "t_statistic", "p_value", "adj_p_value"]
    if has_lods:
        columns.append("b_statistic")

    keep = np.ones(M.shape[0], dtype=bool)
    if lfc > 0 or p_value < 1:
        with np.errstate(invalid="ignore"):
            keep = (adj <= p_value) & (np.abs(M) >= lfc)
        keep &= ~np.isnan(adj) & ~np.isnan(M)
        if not keep.any():
            return _empty(columns)
    idx = np.flatnonzero(keep)

    key = {
        "logFC": -np.abs(M),
        "AveExpr": -A,
        "p": P,
        "P": P,
        "t": -np.abs(t),
        "B": -B if B is not None else None,
    }.get(sort_by)
    if key is None:
        order = idx
    else:
        # NaN keys sort last, as R's order() does.
        order = idx[np.argsort(np.where(np.isnan(key[idx]), np.inf, key[idx]), kind="stable")]
    top = _take(order, number)

    out = {"gene": model.coefficients.index[top], "log_fc": M[top]}
    if confint:
        level = 0.95 if confint is True else float(confint)
        alpha = (1 + level) / 2
        se = model.stdev_unscaled[coef].to_numpy(dtype=float)[top] * np.sqrt(model.s2_post.to_numpy()[top])
        margin = se * stats.t.ppf(alpha, model.df_total.to_numpy()[top])
        out["ci_l"] = M[top] - margin
        out["ci_r"] = M[top] + margin
    out.update({
        "ave_expr": A[top],
        "t_statistic": t[top],
        "p_value": P[top],
        "adj_p_value": adj[top],
    })
    if has_lods:
        out["b_statistic"] = B[top]
    return pd.DataFrame(out, columns=columns).reset_index(drop=True)


def _top_table_f(
    model: LimmaModel,
    coefs: List[str],
    number: Optional[int],
    adjust_method: str,
    sort_by: str,
    p_value: float,
    lfc: float,
) -> pd.DataFrame:
    if sort_by == "B":
        sort_by = "F"
    if sort_by not in F_SORT_KEYS:
        raise ValueError(f"sort_by must be one of {F_SORT_KEYS} for several coefficients, got '{sort_by}'")

    columns = ["gene", *coefs, "ave_expr", "f_statistic", "p_value", "adj_p_value"]
    cov = model.cov_coefficients.loc[coefs, coefs].to_numpy(dtype=float)
    if np.isnan(cov).any():
        raise ValueError("F-statistic unavailable: design is not of full rank for the chosen coefficients")

    F, df1 = moderated_f(model.t[coefs].to_numpy(dtype=float), cov)
    P = f_p_value(F, df1, model.df_total.to_numpy(dtype=float))
    adj = p_adjust(P, method=adjust_method)
    M = model.coefficients[coefs].to_numpy(dtype=float)
    A = model.amean.to_numpy(dtype=float)

    keep = np.ones(M.shape[0], dtype=bool)
    if lfc > 0:
        with np.errstate(invalid="ignore"):
            keep &= np.nansum(np.abs(M) > lfc, axis=1) > 0
    if p_value < 1:
        with np.errstate(invalid="ignore"):
            keep &= adj <= p_value
    if not keep.any():
        return _empty(columns)
    idx = np.flatnonzero(keep)

    if sort_by == "F":
        # F p-values rank correctly when df_total differs between genes.
        order = idx[np.argsort(np.where(np.isnan(P[idx]), np.inf, P[idx]), kind="stable")]
    else:
        order = idx
    top = _take(order, number)

    out = {"gene": model.coefficients.index[top]}
    for j, name in enumerate(coefs):
        out[name] = M[top, j]
    out.update({
        "ave_expr": A[top],
        "f_statistic": F[top],
        "p_value": P[top],
        "adj_p_value": adj[top],
    })
    return pd.DataFrame(out, columns=columns).reset_index(drop=True)


def top_table(
    model: LimmaModel,
    coef: Optional[Union[Coef, Sequence[Coef]]] = None,
    number: Optional[int] = 10,
    adjust_method: str = "BH",
    sort_by: Optional[str] = None,
    p_value: float = 1.0,
    lfc: float = 0.0,
    confint: Union[bool, float] = False,
) -> pd.DataFrame:
    """
    Extract top-ranked genes from differential expression analysis.

    Will run e_bayes if the model has not been moderated. A single
    coefficient gives a table of moderated t-statistics; several coefficients
    (or ``coef=None`` on a multi-coefficient model) give a table of moderated
    F-statistics testing all of them at once.

    Args:
        model: LimmaModel (will run e_bayes if not moderated).
        coef: Coefficient name or 0-based position, or a list of them.
            None means all coefficients except "(Intercept)".
        number: Maximum number of genes to return (None = all). Default: 10.
        adjust_method: Multiple testing method. Default: "BH".
        sort_by: "B", "p", "t", "logFC", "AveExpr" or "none" for a single
            coefficient (default "B"); "F" (sorts by F p-value, "B" is taken
            as "F") or "none" otherwise (default "F").
        p_value: Cutoff on adjusted p-values. Default: 1 (no filter).
        lfc: Minimum absolute log-fold-change. Default: 0.
        confint: Add confidence interval columns (True for 95%, or a level).

    Returns:
        pd.DataFrame: Results table. For a single coefficient the columns are:
            - gene: gene identifier
            - log_fc: log fold-change
            - ci_l, ci_r: confidence limits (only with confint)
            - ave_expr: average expression
            - t_statistic: moderated t-statistic
            - p_value: raw p-value
            - adj_p_value: adjusted p-value
            - b_statistic: B-statistic (absent after treat)
        For several coefficients: gene, one column per coefficient,
        ave_expr, f_statistic, p_value, adj_p_value.

    Raises:
        KeyError: If a coefficient is unknown.
        ValueError: If sort_by is not valid for the kind of table.

    Example:
        >>> import moderated_de.limma as limma
        >>> model = limma.lm_fit(exprs, design).e_bayes()
        >>> limma.top_table(model, coef="devStageP2", number=5)
        >>> limma.top_table(model, p_value=1e-5, number=None)
    """
    from .e_bayes import e_bayes

    check_limma_model(model)
    if not model.is_moderated:
        model = e_bayes(model)

    if coef is None:
        coefs = list(model.coef_names)
        if len(coefs) > 1 and "(Intercept)" in coefs:
            logger.info("Removing intercept from test coefficients")
            coefs.remove("(Intercept)")
    else:
        coefs = resolve_coefs(model, coef)
        coefs = list(dict.fromkeys(coefs))

    if len(coefs) == 1:
        return _top_table_t(
            model,
            coefs[0],
            number=number,
            adjust_method=adjust_method,
            sort_by=sort_by or "B",
            p_value=p_value,
            lfc=lfc,
            confint=confint,
        )
    if model.treat_lfc is not None:
        raise ValueError("TREAT results can only be tabulated one coefficient at a time")
    return _top_table_f(
        model,
        coefs,
        number=number,
        adjust_method=adjust_method,
        sort_by=sort_by or "F",
        p_value=p_value,
        lfc=lfc,
    )
