"""
Build contrast matrices and re-express a fit in terms of contrasts.

``make_contrasts`` follows limma::makeContrasts and ``contrasts_fit``
follows limma::contrasts.fit.
"""

from __future__ import annotations
from typing import Dict, Sequence, Union
from dataclasses import replace
import ast
import operator
import re
import numpy as np
import pandas as pd
from inmoose.limma import contrasts_fit as _contrasts_fit

from .checks import check_limma_model_fitted
from .lm_fit import LimmaModel, MODERATED_SLOTS
from .utils import _fit_slots, _to_marraylm

_BINOPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
}
_UNARYOPS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}
# Level names that would collide with numeric constants in an expression.
_NUMBER = re.compile(r"(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")


def _evaluate(node: ast.AST, env: Dict[str, np.ndarray], expression: str):
    if isinstance(node, ast.Expression):
        return _evaluate(node.body, env, expression)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
        return float(node.value)
    if isinstance(node, ast.Name):
        if node.id not in env:
            raise ValueError(f"Unknown level in contrast '{expression}'")
        return env[node.id]
    if isinstance(node, ast.BinOp) and type(node.op) in _BINOPS:
        left = _evaluate(node.left, env, expression)
        right = _evaluate(node.right, env, expression)
        return _BINOPS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARYOPS:
        return _UNARYOPS[type(node.op)](_evaluate(node.operand, env, expression))
    raise ValueError(f"Unsupported syntax in contrast '{expression}'")


def _parse_contrast(expression: str, levels: Sequence[str]) -> np.ndarray:
    """Evaluate a linear expression over levels to a coefficient vector."""
    identity = np.eye(len(levels))
    env: Dict[str, np.ndarray] = {}
    text = expression
    # Substitute level names longest first so that names which are not
    # Python identifiers ("(Intercept)", "4_weeks") still parse.
    for k in sorted(range(len(levels)), key=lambda i: -len(levels[i])):
        placeholder = f"_lvl{k}_"
        pattern = r"(?<![\w.])" + re.escape(levels[k]) + r"(?![\w.])"
        text = re.sub(pattern, placeholder, text)
        env[placeholder] = identity[k]
    try:
        tree = ast.parse(text.strip(), mode="eval")
    except SyntaxError as err:
        raise ValueError(f"Cannot parse contrast '{expression}'") from err
    value = _evaluate(tree, env, expression)
    if np.ndim(value) == 0:
        raise ValueError(f"Contrast '{expression}' does not involve any level")
    return np.asarray(value, dtype=float)


def make_contrasts(
    *contrasts: str,
    levels: Union[Sequence[str], pd.DataFrame, pd.Index],
    **named: str,
) -> pd.DataFrame:
    """
    Construct a contrast matrix from expressions over coefficient names.

    Args:
        *contrasts: Expressions such as ``"devStageP10 - devStageP6"``; the
            expression itself names the column.
        levels: Coefficient names, or a design matrix whose columns are used.
        **named: Named expressions, e.g. ``P10VsP6="devStageP10 - devStageP6"``.

    Returns:
        pd.DataFrame: Levels x contrasts matrix.

    Raises:
        ValueError: If an expression references an unknown level or uses
            anything other than numbers, names, + - * / and parentheses, or
            if a level name is itself a number.

    Example:
        >>> cont = make_contrasts(
        ...     P2VsE16="devStageP2", P10VsP6="devStageP10 - devStageP6",
        ...     levels=design)
    """
    if isinstance(levels, pd.DataFrame):
        levels = list(levels.columns)
    levels = [str(level) for level in levels]
    if len(set(levels)) != len(levels):
        raise ValueError("levels must be unique")
    numeric = [level for level in levels if _NUMBER.fullmatch(level)]
    if numeric:
        raise ValueError(f"Level names cannot be numbers: {numeric}")

    items = [(expr, expr) for expr in contrasts] + list(named.items())
    if not items:
        raise ValueError("No contrasts specified")

    columns = {name: _parse_contrast(expr, levels) for name, expr in items}
    frame = pd.DataFrame(columns, index=pd.Index(levels, name="Levels"))
    frame.columns.name = "Contrasts"
    return frame


def _contrast_frame(
    contrasts: Union[pd.DataFrame, pd.Series, Sequence[float], np.ndarray],
    coef_names: Sequence[str],
) -> pd.DataFrame:
    if isinstance(contrasts, pd.DataFrame):
        frame = contrasts
    elif isinstance(contrasts, pd.Series):
        frame = contrasts.to_frame(name=contrasts.name if contrasts.name is not None else "contrast")
    else:
        arr = np.asarray(contrasts, dtype=float)
        if arr.ndim == 1:
            arr = arr[:, None]
        frame = pd.DataFrame(arr)
        if frame.shape[1] == 1:
            frame.columns = ["contrast"]
    if frame.shape[0] != len(coef_names):
        raise ValueError(
            f"Number of rows of contrast matrix ({frame.shape[0]}) must match "
            f"number of coefficients ({len(coef_names)})"
        )
    if not isinstance(frame.index, pd.RangeIndex):
        unknown = [i for i in frame.index if i not in set(coef_names)]
        if unknown:
            raise ValueError(f"Contrast rows do not match coefficients: {unknown}")
        frame = frame.loc[list(coef_names)]
    else:
        frame = frame.set_axis(list(coef_names), axis=0)
    if frame.isna().any().any():
        raise ValueError("Contrast matrix has missing values")
    return frame.astype(float)


def contrasts_fit(
    model: LimmaModel,
    contrasts: Union[pd.DataFrame, pd.Series, Sequence[float], np.ndarray],
) -> LimmaModel:
    """
    Re-express a fitted linear model in terms of contrasts of its coefficients.

    The estimates become B C. Their unscaled standard errors are computed by
    ``inmoose.limma.contrasts_fit``, gene by gene from the coefficient
    correlation matrix when the design is not orthogonal. Coefficients that
    no contrast uses are dropped first. Moderated statistics are cleared;
    run e_bayes() again on the result.

    Args:
        model: LimmaModel from lm_fit().
        contrasts: Coefficients x contrasts matrix (see make_contrasts), or a
            single contrast vector.

    Returns:
        LimmaModel: With contrasts as its coefficients.

    Raises:
        TypeError: If model is not a LimmaModel.
        ValueError: If the contrast matrix does not match the coefficients.

    Example:
        >>> cont = make_contrasts(P10VsP6="devStageP10 - devStageP6", levels=design)
        >>> model_c = contrasts_fit(model, cont).e_bayes()
    """
    check_limma_model_fitted(model)
    C_frame = _contrast_frame(contrasts, model.coef_names)

    used = (C_frame != 0).any(axis=1).to_numpy()
    if not used.any():
        used[:] = True
    coefs = list(C_frame.index[used])
    fit = _contrasts_fit(_to_marraylm(model)[:, coefs], contrasts=C_frame.loc[coefs])

    columns = list(C_frame.columns)
    slots = _fit_slots(fit, model.coefficients.index, columns)
    cleared = dict.fromkeys(MODERATED_SLOTS)
    return replace(
        model,
        coefficients=slots["coefficients"],
        stdev_unscaled=slots["stdev_unscaled"],
        cov_coefficients=slots["cov_coefficients"],
        contrasts=C_frame,
        metadata={k: v for k, v in model.metadata.items() if k != "treat_lfc"},
        **cleared,
    )
