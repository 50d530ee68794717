"""
Input validation utilities for limma functions.

Provides centralized checks for SummarizedExperiment inputs, design matrices
and LimmaModel objects.
"""

from __future__ import annotations
from typing import Any, Optional
import numpy as np
import pandas as pd


def check_se(se: Any, name: str = "se") -> None:
    """Check that input is a SummarizedExperiment-like object.

    Accepts any object with assays and assay_names attributes
    (duck typing for SE, RSE, SCE).
    """
    required_attrs = ["assays", "assay_names"]
    for attr in required_attrs:
        if not hasattr(se, attr):
            raise TypeError(
                f"Expected `{name}` to be a SummarizedExperiment-like object, "
                f"got {type(se).__name__} which lacks '{attr}'"
            )


def is_se(obj: Any) -> bool:
    return hasattr(obj, "assays") and hasattr(obj, "assay_names")


def check_assay_exists(se: Any, assay: str) -> None:
    """Check that the specified assay exists in the SummarizedExperiment."""
    if assay not in se.assay_names:
        available = list(se.assay_names)
        raise KeyError(
            f"Assay '{assay}' not found. Available assays: {available}"
        )


def check_numeric_matrix(values: np.ndarray, name: str = "data") -> None:
    """Check that values form a 2-D numeric matrix."""
    if values.ndim != 2:
        raise ValueError(f"`{name}` must be 2-dimensional, got {values.ndim} dimension(s)")
    if not np.issubdtype(values.dtype, np.number):
        raise TypeError(f"`{name}` must be numeric, got dtype {values.dtype}")


def check_design(design: Any, n_samples: Optional[int] = None) -> None:
    """Check that design is a valid numeric design matrix."""
    if not isinstance(design, (pd.DataFrame, np.ndarray)):
        raise TypeError(
            f"Expected `design` to be a pandas DataFrame or numpy array, "
            f"got {type(design).__name__}"
        )
    if np.ndim(design) != 2:
        raise ValueError("Design matrix must be 2-dimensional")
    if isinstance(design, pd.DataFrame):
        non_numeric = [c for c in design.columns if not pd.api.types.is_numeric_dtype(design[c])]
        if non_numeric:
            raise TypeError(f"Design matrix has non-numeric columns: {non_numeric}")
    if n_samples is not None and len(design) != n_samples:
        raise ValueError(
            f"Design matrix has {len(design)} rows but expected {n_samples} samples"
        )


def check_limma_model(model: Any) -> None:
    """Check that input is a valid LimmaModel."""
    from .lm_fit import LimmaModel
    if not isinstance(model, LimmaModel):
        raise TypeError(
            f"Expected a LimmaModel, got {type(model).__name__}"
        )


def check_limma_model_fitted(model: Any) -> None:
    """Check that LimmaModel carries coefficients and residual variances."""
    check_limma_model(model)
    if model.coefficients is None or model.sigma is None:
        raise ValueError("LimmaModel has no coefficients - model has not been fitted")


def check_proportion(proportion: float) -> None:
    if not 0 < proportion < 1:
        raise ValueError(f"`proportion` must be strictly between 0 and 1, got {proportion}")
