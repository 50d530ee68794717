"""
Empirical Bayes squeezing of gene-wise variances.

The sample variances s_g^2 are modelled as scaled F-distributed around a
common prior ``s2_prior`` with ``df_prior`` degrees of freedom. The prior is
estimated by matching the first two moments of log(s_g^2), optionally along a
natural-spline trend in a covariate, and the posterior variances are the
df-weighted average of sample and prior variance.

The estimation itself is done by ``inmoose.limma`` (``fitFDist``,
``squeezeVar`` and ``trigammaInverse``); these wrappers copy their inputs,
since the inmoose functions modify arrays in place, and return named tuples.
Diagnostics such as zero sample variances are reported on the ``inmoose``
logger.
"""

from __future__ import annotations
from typing import NamedTuple, Optional, Union
import numpy as np
from inmoose.limma import fitFDist, squeezeVar
from inmoose.limma.fitFDist import trigammaInverse


class FDistFit(NamedTuple):
    scale: Union[float, np.ndarray]
    df2: float


class SqueezedVariances(NamedTuple):
    var_post: np.ndarray
    var_prior: Union[float, np.ndarray]
    df_prior: float


def trigamma_inverse(x: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
    """Solve trigamma(y) = x for y.

    Uses y = 1/sqrt(x) for x > 1e7 and y = 1/x for x < 1e-6, Newton iteration
    otherwise. Negative input gives NaN.
    """
    scalar = np.ndim(x) == 0
    y = trigammaInverse(np.array(x, dtype=float, ndmin=1))
    y = np.asarray(y, dtype=float)
    return float(y[0]) if scalar else y


def _scalar(value) -> float:
    return float(np.asarray(value, dtype=float).ravel()[0])


def fit_f_dist(
    x: np.ndarray,
    df1: Union[float, np.ndarray],
    covariate: Optional[np.ndarray] = None,
) -> FDistFit:
    """
    Moment estimation of a scaled F-distribution with known first df.

    Args:
        x: Sample variances.
        df1: Degrees of freedom of each variance (scalar or per value).
        covariate: Optional covariate (e.g. average expression) along which
            the scale follows a natural-spline trend.

    Returns:
        FDistFit with ``scale`` (scalar, or per value with a covariate) and
        ``df2`` (the prior degrees of freedom, possibly infinite).

    Raises:
        ValueError: If ``covariate`` has the wrong length or NaN values.
    """
    x = np.array(x, dtype=float)
    if covariate is not None:
        covariate = np.array(covariate, dtype=float)
    out = fitFDist(x, df1=df1, covariate=covariate)
    if covariate is None:
        scale = _scalar(out["scale"])
    else:
        scale = np.asarray(out["scale"], dtype=float)
    return FDistFit(scale=scale, df2=_scalar(out["df2"]))


def squeeze_var(
    var: np.ndarray,
    df: Union[float, np.ndarray],
    covariate: Optional[np.ndarray] = None,
) -> SqueezedVariances:
    """
    Squeeze a set of sample variances towards a common (or trended) value.

    Genes with zero residual df carry no variance information and are
    excluded from the prior estimate.

    Args:
        var: Sample variances, one per gene.
        df: Residual degrees of freedom (scalar or per gene).
        covariate: Optional covariate for a trended prior.

    Returns:
        SqueezedVariances with the posterior variances, the prior variance
        and the prior degrees of freedom.

    Raises:
        ValueError: If ``var`` is empty.
        RuntimeError: If the prior df cannot be estimated.
    """
    var = np.array(var, dtype=float, ndmin=1)
    if covariate is not None:
        covariate = np.array(covariate, dtype=float)
    out = squeezeVar(var, np.asarray(df, dtype=float), covariate=covariate)

    var_prior = out["var_prior"]
    if covariate is None or var.size == 1:
        var_prior = _scalar(var_prior)
    else:
        var_prior = np.asarray(var_prior, dtype=float)
    return SqueezedVariances(
        var_post=np.asarray(out["var_post"], dtype=float),
        var_prior=var_prior,
        df_prior=_scalar(out["df_prior"]),
    )
