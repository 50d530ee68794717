"""
Loading and reshaping expression data.

An experiment is a BiocPy ``SummarizedExperiment`` with an expression assay
(genes x samples), probe ids as row names and the design metadata as column
data. Factor level order is kept in ``metadata["factor_levels"]`` so that
categorical columns come back ordered after subsetting.

Usage:
    >>> from moderated_de.data import load_experiment, subset_samples, prepare_data
    >>> se = load_experiment("GSE4051_data.tsv", "GSE4051_design.rds")
    >>> wt = subset_samples(se, gType="wt")
    >>> long = prepare_data(wt, ["1419655_at", "1438815_at"])
"""

from __future__ import annotations
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Union
import logging
import numpy as np
import pandas as pd
from biocframe import BiocFrame
from summarizedexperiment import SummarizedExperiment

from .limma.checks import check_se, check_assay_exists

logger = logging.getLogger(__name__)

EXPRS_ASSAY = "exprs"

# Level order of the photoreceptor (GSE4051) design factors.
DEFAULT_FACTOR_LEVELS: Dict[str, list] = {
    "devStage": ["E16", "P2", "P6", "P10", "4_weeks"],
    "gType": ["wt", "NrlKO"],
}

_SEPARATORS = {".tsv": "\t", ".txt": "\t", ".csv": ","}


def load_expression(path: Union[str, Path], sep: str = "\t") -> pd.DataFrame:
    """
    Read an expression matrix with probe ids in the first column.

    Args:
        path: Delimited text file, one row per gene and one column per sample.
        sep: Field separator. Default: tab.

    Returns:
        pd.DataFrame: Genes x samples, float values.

    Raises:
        TypeError: If any sample column is not numeric.
    """
    frame = pd.read_csv(path, sep=sep, index_col=0)
    non_numeric = [c for c in frame.columns if not pd.api.types.is_numeric_dtype(frame[c])]
    if non_numeric:
        raise TypeError(f"Expression columns are not numeric: {non_numeric}")
    frame.index = frame.index.astype(str)
    frame.columns = frame.columns.astype(str)
    logger.info("Loaded expression matrix %s: %d genes x %d samples", path, *frame.shape)
    return frame.astype(float)


def apply_factor_levels(
    frame: pd.DataFrame,
    factor_levels: Mapping[str, Sequence[Any]],
) -> pd.DataFrame:
    """Convert the named columns to ordered categoricals with the given levels.

    Columns absent from ``frame`` are skipped.

    Raises:
        ValueError: If a column holds values outside its levels.
    """
    out = frame.copy()
    for column, levels in factor_levels.items():
        if column not in out.columns:
            continue
        values = out[column].astype(str)
        levels = [str(level) for level in levels]
        unknown = sorted(set(values.dropna()) - set(levels))
        if unknown:
            raise ValueError(f"Column '{column}' has values outside its levels {levels}: {unknown}")
        out[column] = pd.Categorical(values, categories=levels, ordered=True)
    return out


def load_design(
    path: Union[str, Path],
    factor_levels: Optional[Mapping[str, Sequence[Any]]] = None,
) -> pd.DataFrame:
    """
    Read the design metadata (one row per sample).

    ``.rds`` files are read through R (requires rpy2); ``.tsv``, ``.txt`` and
    ``.csv`` are read with pandas.

    Args:
        path: Path to the design file.
        factor_levels: Level order per factor column. Default:
            DEFAULT_FACTOR_LEVELS.

    Returns:
        pd.DataFrame: Design metadata with ordered categorical factors.

    Raises:
        ValueError: If the file type is not supported.
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".rds":
        from .r_utils import read_rds
        frame = read_rds(path)
    elif suffix in _SEPARATORS:
        frame = pd.read_csv(path, sep=_SEPARATORS[suffix])
    else:
        raise ValueError(f"Unsupported design file type '{suffix}' (expected .rds, .tsv, .txt or .csv)")
    levels = DEFAULT_FACTOR_LEVELS if factor_levels is None else factor_levels
    logger.info("Loaded design %s: %d samples", path, len(frame))
    return apply_factor_levels(frame, levels)


def _recorded_levels(frame: pd.DataFrame) -> Dict[str, list]:
    return {
        c: [str(level) for level in frame[c].cat.categories]
        for c in frame.columns
        if isinstance(frame[c].dtype, pd.CategoricalDtype)
    }


def build_experiment(
    exprs: pd.DataFrame,
    design: pd.DataFrame,
    sample_col: Optional[str] = "sidChar",
    assay: str = EXPRS_ASSAY,
) -> SummarizedExperiment:
    """
    Combine an expression matrix and design metadata into one experiment.

    Design rows are matched to expression columns by sample id and reordered
    to follow the expression matrix.

    Args:
        exprs: Genes x samples expression values.
        design: Sample metadata.
        sample_col: Design column holding sample ids; None uses the index.
            Default: "sidChar".
        assay: Name of the expression assay. Default: "exprs".

    Returns:
        SummarizedExperiment: With the expression assay and column data.

    Raises:
        KeyError: If ``sample_col`` is not a design column.
        ValueError: If samples do not match one-to-one.
    """
    if sample_col is None:
        ids = design.index.astype(str)
    else:
        if sample_col not in design.columns:
            raise KeyError(f"Sample column '{sample_col}' not found. Available: {list(design.columns)}")
        ids = design[sample_col].astype(str)
    if ids.duplicated().any():
        raise ValueError(f"Duplicated sample ids in design: {sorted(set(ids[ids.duplicated()]))}")

    samples = [str(s) for s in exprs.columns]
    missing_design = sorted(set(samples) - set(ids))
    missing_exprs = sorted(set(ids) - set(samples))
    if missing_design or missing_exprs:
        raise ValueError(
            f"Samples do not match. Without design rows: {missing_design}; "
            f"without expression columns: {missing_exprs}"
        )

    aligned = design.set_axis(pd.Index(list(ids), name=None), axis=0).loc[samples]

    return SummarizedExperiment(
        assays={assay: exprs.to_numpy(dtype=float)},
        row_names=[str(g) for g in exprs.index],
        column_names=samples,
        column_data=BiocFrame.from_pandas(aligned),
        metadata={"factor_levels": _recorded_levels(aligned)},
    )


def load_experiment(
    expr_path: Union[str, Path],
    design_path: Union[str, Path],
    sample_col: Optional[str] = "sidChar",
    factor_levels: Optional[Mapping[str, Sequence[Any]]] = None,
) -> SummarizedExperiment:
    """Load expression matrix and design metadata into one experiment."""
    exprs = load_expression(expr_path)
    design = load_design(design_path, factor_levels=factor_levels)
    return build_experiment(exprs, design, sample_col=sample_col)


def sample_frame(se: Any) -> pd.DataFrame:
    """
    Column data as a pandas DataFrame indexed by sample name.

    Categorical columns recorded in ``metadata["factor_levels"]`` are
    restored with their level order.
    """
    check_se(se)
    frame = se.get_column_data().to_pandas()
    frame.index = pd.Index([str(s) for s in se.column_names])
    levels = (se.metadata or {}).get("factor_levels", {})
    for column, lv in levels.items():
        if column in frame.columns:
            frame[column] = pd.Categorical(frame[column].astype(str), categories=lv, ordered=True)
    return frame


def _with_levels(se: Any, levels: Dict[str, list]) -> Any:
    metadata = dict(se.metadata or {})
    metadata["factor_levels"] = levels
    return se.set_metadata(metadata)


def _matches(values: pd.Series, criterion: Any) -> np.ndarray:
    if callable(criterion):
        return np.asarray(criterion(values), dtype=bool)
    if isinstance(criterion, (list, tuple, set, frozenset)):
        return values.isin(list(criterion)).to_numpy()
    return (values == criterion).to_numpy()


def subset_samples(
    se: Any,
    **criteria: Union[Any, Sequence[Any], Callable[[pd.Series], Sequence[bool]]],
) -> Any:
    """
    Keep the samples whose column data matches every criterion.

    Each keyword names a column; the value is a scalar (equality), a
    collection (membership) or a callable returning a boolean mask. Factor
    levels that no longer occur are dropped.

    Raises:
        KeyError: If a criterion names an unknown column.
        ValueError: If no sample matches.

    Example:
        >>> wt = subset_samples(se, gType="wt")
        >>> late = subset_samples(se, devStage=["P10", "4_weeks"])
    """
    frame = sample_frame(se)
    keep = np.ones(len(frame), dtype=bool)
    for column, criterion in criteria.items():
        if column not in frame.columns:
            raise KeyError(f"Column '{column}' not found. Available: {list(frame.columns)}")
        keep &= _matches(frame[column], criterion)
    if not keep.any():
        raise ValueError(f"No samples match {criteria}")

    positions = [int(i) for i in np.flatnonzero(keep)]
    subset = se[:, positions]
    kept = frame.iloc[positions]
    levels = {
        column: [level for level in lv if (kept[column].astype(str) == level).any()]
        for column, lv in (se.metadata or {}).get("factor_levels", {}).items()
        if column in kept.columns
    }
    logger.debug("subset_samples kept %d of %d samples", len(positions), len(frame))
    return _with_levels(subset, levels)


def subset_genes(se: Any, genes: Sequence[str]) -> Any:
    """
    Keep the named genes, in the given order.

    Raises:
        KeyError: If any gene is not a row name.
    """
    check_se(se)
    names = [str(g) for g in se.row_names]
    lookup = {name: i for i, name in enumerate(names)}
    missing = [g for g in genes if str(g) not in lookup]
    if missing:
        raise KeyError(f"Genes not found: {missing}")
    return se[[lookup[str(g)] for g in genes], :]


def expression_frame(se: Any, assay: str = EXPRS_ASSAY) -> pd.DataFrame:
    """Assay values as a genes x samples DataFrame."""
    check_se(se)
    check_assay_exists(se, assay)
    return pd.DataFrame(
        np.asarray(se.assay(assay), dtype=float),
        index=[str(g) for g in se.row_names],
        columns=[str(s) for s in se.column_names],
    )


def prepare_data(se: Any, genes: Sequence[str], assay: str = EXPRS_ASSAY) -> pd.DataFrame:
    """
    Reshape a few genes to long format for plotting.

    Args:
        se: Experiment with the expression assay.
        genes: Gene (probe) ids, in the order they should be shown.
        assay: Expression assay. Default: "exprs".

    Returns:
        pd.DataFrame: One row per gene and sample, holding the sample
        metadata, ``gExp`` (the expression value), ``gene`` (categorical in
        request order) and ``sample``.

    Example:
        >>> long = prepare_data(se, ["1419655_at", "1438815_at"])
        >>> long.groupby(["gene", "devStage"], observed=True)["gExp"].mean()
    """
    genes = list(dict.fromkeys(str(g) for g in genes))
    if not genes:
        raise ValueError("No genes given")
    values = expression_frame(subset_genes(se, genes), assay=assay)
    meta = sample_frame(se)

    frames = []
    for gene in genes:
        part = meta.copy()
        part["gExp"] = values.loc[gene].to_numpy()
        part["gene"] = gene
        frames.append(part)
    long = pd.concat(frames)
    long["gene"] = pd.Categorical(long["gene"], categories=genes)
    return long.rename_axis("sample").reset_index()
