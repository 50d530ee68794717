"""
Fit gene-wise linear models, after limma::lmFit.

This module provides the LimmaModel dataclass for storing fit results
and the lm_fit function for fitting the model.
"""

from __future__ import annotations
from typing import Any, Dict, Optional, Sequence, Tuple, TypeVar, Union
from dataclasses import dataclass, field
import logging
import warnings
import numpy as np
import pandas as pd
from inmoose.limma import lmFit, nonEstimable

from .checks import (
    check_se,
    is_se,
    check_assay_exists,
    check_design,
    check_numeric_matrix,
)
from .utils import _design_matrix, _fit_slots

logger = logging.getLogger(__name__)

# Type variable for SummarizedExperiment variants
SE = TypeVar("SE")

# Slots written by e_bayes / treat and cleared whenever coefficients change.
MODERATED_SLOTS = (
    "df_prior",
    "s2_prior",
    "s2_post",
    "df_total",
    "t",
    "p_value",
    "lods",
    "var_prior",
    "F",
    "F_p_value",
    "proportion",
)


@dataclass
class LimmaModel:
    """Container for gene-wise linear model fit results.

    Plays the role of limma's ``MArrayLM``. Fit slots are set by lm_fit (and
    rewritten by contrasts_fit); moderated slots are set by e_bayes or treat.
    Use with e_bayes(), top_table(), etc. for downstream analysis.

    Attributes:
        coefficients: Genes x coefficients estimates.
        stdev_unscaled: Genes x coefficients unscaled standard errors.
        sigma: Residual standard deviation per gene.
        df_residual: Residual degrees of freedom per gene.
        amean: Average log-expression per gene.
        cov_coefficients: Unscaled covariance of the coefficients.
        design: Design matrix used for fitting.
        contrasts: Contrast matrix applied by contrasts_fit (optional).
        df_prior: Prior degrees of freedom from the variance squeeze.
        s2_prior: Prior variance (scalar, or per gene with a trend).
        s2_post: Posterior (moderated) variance per gene.
        df_total: Residual plus prior degrees of freedom, capped at the pooled df.
        t: Moderated t-statistics.
        p_value: Two-sided p-values of the moderated t-statistics.
        lods: B-statistics (log-odds of differential expression).
        var_prior: Prior variance of the non-zero coefficients.
        F: Moderated F-statistic over all coefficients.
        F_p_value: p-value of the moderated F-statistic.
        proportion: Assumed proportion of DE genes used for the B-statistic.
        method: Fitting method used.
        metadata: Additional metadata.
    """
    coefficients: Optional[pd.DataFrame] = None
    stdev_unscaled: Optional[pd.DataFrame] = None
    sigma: Optional[pd.Series] = None
    df_residual: Optional[pd.Series] = None
    amean: Optional[pd.Series] = None
    cov_coefficients: Optional[pd.DataFrame] = None
    design: Optional[pd.DataFrame] = None
    contrasts: Optional[pd.DataFrame] = None
    df_prior: Optional[float] = None
    s2_prior: Optional[Union[float, pd.Series]] = None
    s2_post: Optional[pd.Series] = None
    df_total: Optional[pd.Series] = None
    t: Optional[pd.DataFrame] = None
    p_value: Optional[pd.DataFrame] = None
    lods: Optional[pd.DataFrame] = None
    var_prior: Optional[pd.Series] = None
    F: Optional[pd.Series] = None
    F_p_value: Optional[pd.Series] = None
    proportion: Optional[float] = None
    method: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def coef_names(self) -> list:
        return list(self.coefficients.columns)

    @property
    def feature_names(self) -> list:
        return list(self.coefficients.index)

    @property
    def n_genes(self) -> int:
        return self.coefficients.shape[0]

    @property
    def is_moderated(self) -> bool:
        return self.t is not None and self.p_value is not None

    @property
    def treat_lfc(self) -> Optional[float]:
        return self.metadata.get("treat_lfc")

    def __repr__(self) -> str:
        state = "moderated" if self.is_moderated else "unmoderated"
        kind = "contrasts" if self.contrasts is not None else "coefficients"
        return (
            f"LimmaModel({self.n_genes} genes, {len(self.coef_names)} {kind}: "
            f"{self.coef_names}, {state})"
        )

    def e_bayes(
        self,
        proportion: float = 0.01,
        stdev_coef_lim: Tuple[float, float] = (0.1, 4.0),
        trend: bool = False,
    ) -> "LimmaModel":
        """
        Apply empirical Bayes moderation.

        Convenience method that delegates to the e_bayes function.

        Returns:
            LimmaModel with moderated slots set.
        """
        from .e_bayes import e_bayes as _e_bayes
        return _e_bayes(self, proportion=proportion, stdev_coef_lim=stdev_coef_lim, trend=trend)

    def contrasts_fit(
        self,
        contrasts: Union[pd.DataFrame, pd.Series, Sequence[float], np.ndarray],
    ) -> "LimmaModel":
        """
        Apply contrasts to fitted model.

        Convenience method that delegates to the contrasts_fit function.

        Returns:
            LimmaModel re-expressed in terms of the contrasts.
        """
        from .contrasts import contrasts_fit as _contrasts_fit
        return _contrasts_fit(self, contrasts=contrasts)

    def top_table(
        self,
        coef: Optional[Union[int, str, Sequence[Union[int, str]]]] = None,
        number: Optional[int] = 10,
        adjust_method: str = "BH",
        sort_by: Optional[str] = None,
        **kwargs: Any
    ) -> pd.DataFrame:
        """
        Extract top-ranked genes.

        Convenience method that delegates to the top_table function.

        Returns:
            pd.DataFrame with DE results.
        """
        from .top_table import top_table as _top_table
        return _top_table(self, coef=coef, number=number, adjust_method=adjust_method, sort_by=sort_by, **kwargs)

    def decide_tests(
        self,
        method: str = "separate",
        adjust_method: str = "BH",
        p_value: float = 0.05,
        lfc: float = 0,
    ) -> pd.DataFrame:
        """
        Classify genes as up/down/not significant.

        Convenience method that delegates to the decide_tests function.

        Returns:
            pd.DataFrame with -1 (down), 0 (not sig), 1 (up).
        """
        from .decide_tests import decide_tests as _decide_tests
        return _decide_tests(self, method=method, adjust_method=adjust_method, p_value=p_value, lfc=lfc)

    def treat(
        self,
        lfc: float = float(np.log2(1.2)),
        trend: bool = False,
    ) -> "LimmaModel":
        """
        Apply TREAT (fold-change threshold testing).

        Convenience method that delegates to the treat function.

        Returns:
            LimmaModel with TREAT statistics.
        """
        from .treat import treat as _treat
        return _treat(self, lfc=lfc, trend=trend)


def _expression_matrix(data: Any, assay: str) -> Tuple[np.ndarray, list, list]:
    """Return (values, gene names, sample names) for any supported input."""
    if is_se(data):
        check_se(data)
        check_assay_exists(data, assay)
        values = np.asarray(data.assay(assay))
        n_genes, n_samples = values.shape
        genes = list(data.row_names) if data.row_names is not None else list(range(n_genes))
        samples = list(data.column_names) if data.column_names is not None else list(range(n_samples))
    elif isinstance(data, pd.DataFrame):
        values = data.to_numpy()
        genes = list(data.index)
        samples = list(data.columns)
    elif isinstance(data, np.ndarray):
        values = data
        genes = list(range(data.shape[0])) if data.ndim == 2 else []
        samples = list(range(data.shape[1])) if data.ndim == 2 else []
    else:
        raise TypeError(
            f"Expected a DataFrame, ndarray or SummarizedExperiment, got {type(data).__name__}"
        )
    check_numeric_matrix(values, "data")
    return values.astype(float), genes, samples


def _design_frame(design: Union[pd.DataFrame, np.ndarray], samples: Sequence) -> pd.DataFrame:
    if isinstance(design, pd.DataFrame):
        frame = design.astype(float)
    else:
        arr = np.asarray(design, dtype=float)
        frame = pd.DataFrame(arr, columns=[f"x{i + 1}" for i in range(arr.shape[1])])
    if not isinstance(design, pd.DataFrame) or isinstance(frame.index, pd.RangeIndex):
        frame.index = pd.Index(samples)
    return frame


def _unobservable_genes(values: np.ndarray, X: np.ndarray) -> np.ndarray:
    """Genes whose observed samples leave some coefficient without information."""
    observed = np.isfinite(values)
    incomplete = ~observed.all(axis=1)
    out = np.zeros(values.shape[0], dtype=bool)
    if not incomplete.any():
        return out
    patterns, inverse = np.unique(observed[incomplete], axis=0, return_inverse=True)
    deficient = np.array([np.linalg.matrix_rank(X[pattern]) < X.shape[1] for pattern in patterns])
    out[np.flatnonzero(incomplete)] = deficient[np.ravel(inverse)]
    return out


def lm_fit(
    data: Union[SE, pd.DataFrame, np.ndarray],
    design: Union[pd.DataFrame, np.ndarray],
    assay: str = "exprs",
) -> LimmaModel:
    """
    Fit a linear model to every gene at once, after ``limma::lmFit``.

    The fits are computed by ``inmoose.limma.lmFit``: complete genes share a
    single QR decomposition of the design, genes with missing values are
    fitted one at a time on their observed samples. Non-estimable
    coefficients of a rank-deficient design are dropped before fitting and
    come back as NaN columns.

    Args:
        data: Expression values (genes x samples) as DataFrame, ndarray or
            SummarizedExperiment.
        design: Design matrix (samples x covariates).
        assay: Expression assay to use when ``data`` is a SummarizedExperiment.
            Default: "exprs".

    Returns:
        LimmaModel: Container with fitted model.

    Raises:
        TypeError: If inputs are invalid.
        KeyError: If assay doesn't exist.
        ValueError: If dimensions disagree or no coefficient is estimable.

    Example:
        >>> import moderated_de.limma as limma
        >>> design = pd.DataFrame({'(Intercept)': [1]*6, 'groupB': [0,0,0,1,1,1]})
        >>> model = limma.lm_fit(exprs, design)
        >>> results = model.e_bayes().top_table(coef="groupB")
    """
    Y, genes, samples = _expression_matrix(data, assay)
    n_samples = Y.shape[1]
    check_design(design, n_samples)
    design_df = _design_frame(design, samples)
    coef_names = list(design_df.columns)

    non_est = nonEstimable(_design_matrix(design_df))
    if non_est is not None:
        non_est = [str(name) for name in non_est]
        warnings.warn(f"Coefficients not estimable: {', '.join(non_est)}", stacklevel=2)
    estimable = [c for c in coef_names if str(c) not in set(non_est or [])]
    if not estimable:
        raise ValueError("No estimable coefficients in design")
    X = design_df[estimable]

    index = pd.Index(genes)
    exprs = pd.DataFrame(Y, index=index, columns=samples)
    amean = exprs.mean(axis=1).rename("amean")

    unobservable = _unobservable_genes(Y, X.to_numpy(dtype=float))
    if unobservable.any():
        logger.warning(
            "%d genes have too few observed samples to estimate every coefficient; "
            "they are returned as NaN",
            int(unobservable.sum()),
        )
        exprs.iloc[np.flatnonzero(unobservable), :] = np.nan
    if not np.isfinite(Y).all():
        logger.info("Fitting %d genes individually (missing values)", Y.shape[0])

    fit = lmFit(exprs, _design_matrix(X))
    slots = _fit_slots(fit, index, estimable)

    return LimmaModel(
        coefficients=slots["coefficients"].reindex(columns=coef_names),
        stdev_unscaled=slots["stdev_unscaled"].reindex(columns=coef_names),
        sigma=slots["sigma"],
        df_residual=slots["df_residual"],
        amean=amean,
        cov_coefficients=slots["cov_coefficients"].reindex(index=coef_names, columns=coef_names),
        design=design_df,
        method=fit.method,
    )
