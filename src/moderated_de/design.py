"""
Design matrices from sample metadata.

Formulas are evaluated by patsy with treatment contrasts, and the column
names are rewritten the way R's ``model.matrix`` prints them:

    ~ devStage                 intercept + one column per non-reference level
    ~ 0 + devStage             one column per level (cell means)
    ~ gType + devStage         additive model
    ~ gType * devStage         additive model plus interaction columns
"""

from __future__ import annotations
import re
import pandas as pd
import patsy

INTERCEPT = "(Intercept)"

# devStage[T.P2] -> devStageP2, devStage[E16] -> devStageE16
_LEVEL = re.compile(r"\[(?:T\.)?([^\]]*)\]")


def r_column_name(name: str) -> str:
    """Rename a patsy design column to R's convention."""
    if name == "Intercept":
        return INTERCEPT
    return _LEVEL.sub(r"\1", name)


def formula_variables(formula: str) -> list:
    """Plain variable names used by the right-hand side of a formula."""
    desc = patsy.ModelDesc.from_formula(formula)
    names = []
    for term in desc.rhs_termlist:
        for factor in term.factors:
            code = factor.name()
            if code.isidentifier() and code not in names:
                names.append(code)
    return names


def model_matrix(frame: pd.DataFrame, formula: str) -> pd.DataFrame:
    """
    Build a design matrix from sample metadata using treatment contrasts.

    Factors (categorical, string or boolean columns) contribute one indicator
    column per level, with the first level as reference when an intercept is
    present. Categorical columns keep their category order; other factors use
    sorted levels. Without an intercept the first factor keeps all of its
    levels. Numeric columns enter as they are. Column names follow R, e.g.
    ``(Intercept)``, ``devStageP2`` and ``gTypeNrlKO:devStageP2``.

    Args:
        frame: Sample metadata, one row per sample.
        formula: Formula such as ``"~ devStage"`` or ``"~ gType * devStage"``.

    Returns:
        pd.DataFrame: Samples x columns design matrix indexed like ``frame``.

    Raises:
        KeyError: If the formula names an unknown variable.
        ValueError: If the formula is empty, or a variable has missing values.

    Example:
        >>> design = model_matrix(sample_frame(se), "~ devStage")
        >>> list(design.columns)
        ['(Intercept)', 'devStageP2', 'devStageP6', 'devStageP10', 'devStage4_weeks']
    """
    if not formula.split("~", 1)[-1].strip():
        raise ValueError(f"Empty formula: '{formula}'")
    for variable in formula_variables(formula):
        if variable not in frame.columns:
            raise KeyError(f"Variable '{variable}' not found. Available: {list(frame.columns)}")
        if frame[variable].isna().any():
            raise ValueError(f"Variable '{variable}' has missing values")

    design = patsy.dmatrix(formula, frame, eval_env=1, NA_action="raise", return_type="dataframe")
    if design.shape[1] == 0:
        raise ValueError(f"Formula '{formula}' produces an empty design")
    design.columns = [r_column_name(str(c)) for c in design.columns]
    design.index = frame.index
    return design


def relevel(frame: pd.DataFrame, column: str, ref: str) -> pd.DataFrame:
    """Return a copy of ``frame`` with ``ref`` as the first level of ``column``."""
    if column not in frame.columns:
        raise KeyError(f"Column '{column}' not found. Available: {list(frame.columns)}")
    values = frame[column]
    if isinstance(values.dtype, pd.CategoricalDtype):
        levels = list(values.cat.categories)
    else:
        levels = sorted(values.dropna().unique().tolist())
    if ref not in levels:
        raise ValueError(f"'{ref}' is not a level of '{column}': {levels}")
    new_levels = [ref] + [level for level in levels if level != ref]
    out = frame.copy()
    ordered = isinstance(values.dtype, pd.CategoricalDtype) and values.cat.ordered
    out[column] = pd.Categorical(values, categories=new_levels, ordered=ordered)
    return out
