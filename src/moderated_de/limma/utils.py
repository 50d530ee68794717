"""
Conversion between LimmaModel and inmoose's MArrayLM.

The linear model fits and contrast re-projections are computed by
``inmoose.limma``; LimmaModel keeps the results as labelled pandas objects.
"""

from typing import Any, Dict, Sequence
import numpy as np
import pandas as pd
import patsy
from inmoose.limma import MArrayLM


def _design_matrix(design: pd.DataFrame) -> patsy.DesignMatrix:
    """Wrap a design frame as a patsy DesignMatrix that keeps its column names."""
    return patsy.DesignMatrix(
        design.to_numpy(dtype=float),
        design_info=patsy.DesignInfo([str(c) for c in design.columns]),
    )


def _to_marraylm(model: Any) -> MArrayLM:
    """Build an MArrayLM from the fit slots of a LimmaModel.

    All arrays are copies; inmoose modifies fit objects in place.
    """
    fit = MArrayLM(
        model.coefficients.astype(float),
        model.stdev_unscaled.astype(float),
        model.sigma.astype(float),
        model.df_residual.to_numpy(dtype=float),
        model.cov_coefficients.astype(float),
    )
    fit.Amean = model.amean.copy()
    fit.design = None if model.design is None else _design_matrix(model.design)
    fit.contrasts = model.contrasts
    return fit


def _fit_slots(fit: MArrayLM, index: pd.Index, columns: Sequence[Any]) -> Dict[str, Any]:
    """Fit slots of an MArrayLM as labelled pandas objects."""
    columns = list(columns)
    cov = np.asarray(fit.cov_coefficients, dtype=float)
    return {
        "coefficients": pd.DataFrame(np.asarray(fit.coefficients, dtype=float), index=index, columns=columns),
        "stdev_unscaled": pd.DataFrame(np.asarray(fit.stdev_unscaled, dtype=float), index=index, columns=columns),
        "sigma": pd.Series(np.asarray(fit.sigma, dtype=float), index=index, name="sigma"),
        "df_residual": pd.Series(np.asarray(fit.df_residual, dtype=float), index=index, name="df_residual"),
        "cov_coefficients": pd.DataFrame(cov, index=columns, columns=columns),
    }
