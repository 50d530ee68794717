"""R interop utilities: dependency checks, .rds input and a limma reference run.

rpy2 is an optional dependency (``pip install moderated-de[r]``); it is only
imported inside the functions below.
"""

from __future__ import annotations
import logging
from pathlib import Path
from typing import Any, Optional, Sequence, Union
import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

# Track which packages have been checked
_checked_packages: set = set()

_limma_pkg: Any = None

_TOP_TABLE_COLUMNS = {
    "logFC": "log_fc",
    "CI.L": "ci_l",
    "CI.R": "ci_r",
    "AveExpr": "ave_expr",
    "t": "t_statistic",
    "F": "f_statistic",
    "P.Value": "p_value",
    "adj.P.Val": "adj_p_value",
    "B": "b_statistic",
}


def _robjects():
    try:
        import rpy2.robjects as ro
    except ImportError:
        raise ImportError(
            "rpy2 is not installed. Please install it via "
            "'pip install moderated-de[r]' or 'pip install rpy2'."
        )
    return ro


def is_r_available() -> bool:
    """
    Check whether rpy2 is installed and an R installation can be embedded.

    Returns:
        True if ``rpy2.robjects`` imports, False otherwise.
    """
    try:
        import rpy2.robjects  # noqa: F401
    except (ImportError, RuntimeError, OSError, ValueError) as err:
        logger.debug("R is not available: %s", err)
        return False
    return True


def is_r_package_installed(package: str) -> bool:
    """
    Check if an R package is installed.

    Returns:
        True if R is available and the package is installed, False otherwise.
    """
    if not is_r_available():
        return False
    import rpy2.robjects.packages as rpackages
    return bool(rpackages.isinstalled(package))


def ensure_r_dependencies(packages: Sequence[str], install: bool = False) -> None:
    """
    Check that required R packages are installed.
    If ``install`` is True, missing packages are installed with BiocManager
    via rpy2.

    Args:
        packages: Sequence of R package names to check/install.
            e.g., ["limma"]
        install: Install missing packages. Default: False.

    Raises:
        ImportError: If rpy2 is not installed.
        RuntimeError: If packages are missing and ``install`` is False.

    Example:
        >>> ensure_r_dependencies(["limma"])  # Check only
        >>> ensure_r_dependencies(["limma"], install=True)
    """
    global _checked_packages

    # Filter to only packages we haven't checked yet
    packages_to_check = [pkg for pkg in packages if pkg not in _checked_packages]
    if not packages_to_check:
        return

    _robjects()
    import rpy2.robjects.packages as rpackages
    from rpy2.robjects.vectors import StrVector

    # Check which packages are missing
    missing_pkgs = [pkg for pkg in packages_to_check if not rpackages.isinstalled(pkg)]

    if missing_pkgs:
        if not install:
            raise RuntimeError(
                f"Missing R packages: {', '.join(missing_pkgs)}. "
                f"Install them with ensure_r_dependencies({missing_pkgs!r}, install=True)"
            )
        logger.info("Missing R packages detected: %s", ", ".join(missing_pkgs))
        logger.info("Attempting to install via BiocManager...")

        utils = rpackages.importr("utils")
        utils.chooseCRANmirror(ind=1)  # Select first mirror automatically

        # Ensure BiocManager is installed
        if not rpackages.isinstalled("BiocManager"):
            utils.install_packages(StrVector(["BiocManager"]))

        # Install missing packages
        bioc_manager = rpackages.importr("BiocManager")
        bioc_manager.install(StrVector(missing_pkgs), ask=False)

        logger.info("R packages installed successfully.")

    # Mark all requested packages as checked
    _checked_packages.update(packages_to_check)


def _limma() -> Any:
    """Lazily import and return the R `limma` package via rpy2.

    Returns:
        Any: An object handle to the imported R `limma` package as exposed by rpy2.

    Notes:
        The package is imported only once and cached in a module-level variable
        for subsequent calls.
    """
    global _limma_pkg
    if _limma_pkg is None:
        ensure_r_dependencies(["limma"])
        from rpy2.robjects.packages import importr
        _limma_pkg = importr("limma")
    return _limma_pkg


def _to_pandas(obj: Any) -> Any:
    ro = _robjects()
    from rpy2.robjects import pandas2ri
    from rpy2.robjects.conversion import localconverter
    with localconverter(ro.default_converter + pandas2ri.converter):
        return ro.conversion.get_conversion().rpy2py(obj)


def read_rds(path: Union[str, Path]) -> pd.DataFrame:
    """
    Read an R data.frame saved with ``saveRDS``.

    Factors come back as pandas categoricals with their R level order.

    Args:
        path: Path to the .rds file.

    Returns:
        pd.DataFrame: The converted data.frame.

    Raises:
        FileNotFoundError: If the file does not exist.
        TypeError: If the object is not a data.frame.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(path)
    ro = _robjects()
    obj = ro.r["readRDS"](str(path))
    frame = _to_pandas(obj)
    if not isinstance(frame, pd.DataFrame):
        raise TypeError(f"{path} does not contain a data.frame")
    return frame


def _r_matrix(values: np.ndarray, rownames: Sequence, colnames: Sequence) -> Any:
    ro = _robjects()
    values = np.asarray(values, dtype=float)
    flat = ro.FloatVector(values.ravel(order="F"))
    mat = ro.r["matrix"](flat, nrow=values.shape[0], ncol=values.shape[1])
    set_dimnames = ro.r("function(x, rn, cn) { dimnames(x) <- list(rn, cn); x }")
    return set_dimnames(
        mat,
        ro.StrVector([str(r) for r in rownames]),
        ro.StrVector([str(c) for c in colnames]),
    )


def r_limma_top_table(
    exprs: pd.DataFrame,
    design: pd.DataFrame,
    coef: Optional[Union[str, Sequence[str]]] = None,
    number: Optional[int] = None,
    adjust_method: str = "BH",
    sort_by: str = "none",
    proportion: float = 0.01,
    trend: bool = False,
) -> pd.DataFrame:
    """
    Run lmFit -> eBayes -> topTable in R's limma, for cross-checking.

    Args:
        exprs: Genes x samples expression values.
        design: Samples x coefficients design matrix.
        coef: Coefficient name(s); None tests all but the intercept.
        number: Number of genes (None = all).
        adjust_method: Multiple testing method. Default: "BH".
        sort_by: limma's ``sort.by``. Default: "none" (input order).
        proportion: Assumed proportion of DE genes. Default: 0.01.
        trend: Trended prior variance. Default: False.

    Returns:
        pd.DataFrame: topTable output with the same column names as
        ``moderated_de.limma.top_table``.
    """
    ro = _robjects()
    limma = _limma()

    y_r = _r_matrix(exprs.to_numpy(), exprs.index, exprs.columns)
    x_r = _r_matrix(design.to_numpy(), design.index, design.columns)

    fit = limma.lmFit(y_r, x_r)
    eb = limma.eBayes(fit, proportion=proportion, trend=trend)

    if coef is None:
        coef_r = ro.NULL
    elif isinstance(coef, str):
        coef_r = ro.StrVector([coef])
    else:
        coef_r = ro.StrVector(list(coef))
    number_r = exprs.shape[0] if number is None else int(number)

    top_r = limma.topTable(
        eb,
        coef=coef_r,
        number=number_r,
        **{"adjust.method": adjust_method, "sort.by": sort_by},
    )
    df = _to_pandas(top_r)
    return df.reset_index(names="gene").rename(columns=_TOP_TABLE_COLUMNS)
