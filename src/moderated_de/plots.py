"""Plots of expression values and moderated statistics."""

from __future__ import annotations
from typing import Optional, Sequence, Union
import logging
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns

from .limma.lm_fit import LimmaModel
from .limma.top_table import resolve_coefs

logger = logging.getLogger(__name__)


def _ensure_moderated(model: LimmaModel) -> LimmaModel:
    if not model.is_moderated:
        from .limma.e_bayes import e_bayes
        model = e_bayes(model)
    return model


def _levels(values: pd.Series) -> list:
    if isinstance(values.dtype, pd.CategoricalDtype):
        return [level for level in values.cat.categories if (values == level).any()]
    return sorted(values.dropna().unique().tolist())


def stripplot_it(
    data: pd.DataFrame,
    x: str = "devStage",
    y: str = "gExp",
    hue: Optional[str] = "gType",
    col: Optional[str] = "gene",
    col_wrap: Optional[int] = None,
    jitter: float = 0.15,
    height: float = 3.0,
    show_means: bool = True,
    **kwargs,
) -> sns.FacetGrid:
    """
    Strip plot of expression by group, one panel per gene.

    Points are jittered within each group and, with ``show_means``, a line
    joins the group means of each ``hue`` level.

    Args:
        data: Long-format data, e.g. from prepare_data().
        x: Grouping column on the x-axis. Default: "devStage".
        y: Value column. Default: "gExp".
        hue: Colouring column (None for a single colour). Default: "gType".
        col: Facet column (None for a single panel). Default: "gene".
        col_wrap: Panels per row.
        jitter: Horizontal jitter. Default: 0.15.
        height: Panel height in inches. Default: 3.
        show_means: Draw lines through group means. Default: True.
        **kwargs: Forwarded to seaborn.catplot.

    Returns:
        seaborn.FacetGrid

    Example:
        >>> grid = stripplot_it(prepare_data(se, ["1419655_at", "1438815_at"]))
    """
    order = _levels(data[x])
    hue_order = _levels(data[hue]) if hue is not None else [None]
    colors = sns.color_palette(n_colors=len(hue_order))
    palette = dict(zip(hue_order, colors))

    grid = sns.catplot(
        data=data,
        x=x,
        y=y,
        hue=hue,
        col=col,
        col_wrap=col_wrap if col is not None else None,
        kind="strip",
        order=order,
        hue_order=hue_order if hue is not None else None,
        palette=palette if hue is not None else None,
        jitter=jitter,
        height=height,
        **kwargs,
    )

    if show_means:
        panels = list(grid.axes_dict.items()) if col is not None else [(None, grid.ax)]
        positions = {level: i for i, level in enumerate(order)}
        for panel, ax in panels:
            sub = data if panel is None else data[data[col] == panel]
            for level in hue_order:
                group = sub if level is None else sub[sub[hue] == level]
                means = group.groupby(x, observed=True)[y].mean()
                means = means[[lv for lv in order if lv in means.index]]
                ax.plot(
                    [positions[lv] for lv in means.index],
                    means.to_numpy(),
                    color=palette[level],
                    linewidth=1.5,
                    gid="group_mean",
                )
    return grid


def plot_variance_shrinkage(
    model: LimmaModel,
    ax: Optional[plt.Axes] = None,
    log: bool = True,
) -> plt.Figure:
    """
    Density of the gene-wise sample variances against the moderated ones.

    The moderated (posterior) variances are squeezed towards the prior,
    which is marked with a vertical line.

    Args:
        model: LimmaModel (moderated on the fly if needed).
        ax: Axes to draw on; a new figure is created if None.
        log: Plot log2 variances. Default: True.

    Returns:
        matplotlib.figure.Figure
    """
    model = _ensure_moderated(model)
    sample_var = model.sigma.to_numpy(dtype=float) ** 2
    post_var = model.s2_post.to_numpy(dtype=float)
    prior = float(np.median(np.asarray(model.s2_prior, dtype=float)))

    transform = np.log2 if log else (lambda v: v)
    with np.errstate(divide="ignore"):
        frame = pd.concat([
            pd.DataFrame({"variance": transform(sample_var), "estimate": "sample"}),
            pd.DataFrame({"variance": transform(post_var), "estimate": "moderated"}),
        ], ignore_index=True)
    frame = frame[np.isfinite(frame["variance"])]

    if ax is None:
        fig, ax = plt.subplots(figsize=(7, 4.5))
    else:
        fig = ax.figure
    sns.kdeplot(data=frame, x="variance", hue="estimate", common_norm=False, fill=True, alpha=0.3, ax=ax)
    ax.axvline(transform(prior), color="#34495e", linestyle="--", linewidth=1.2)
    ax.set_xlabel("log2(variance)" if log else "variance")
    ax.set_title(f"Variance moderation (prior df = {model.df_prior:.2f})")
    fig.tight_layout()
    return fig


def volcano_plot(
    results: pd.DataFrame,
    logfc_col: str = "log_fc",
    fdr_col: str = "adj_p_value",
    fdr_threshold: float = 0.05,
    logfc_threshold: float = 1.0,
    figsize: tuple = (10, 8),
    title: str = "Volcano Plot",
    xlabel: str = "log₂(Fold Change)",
    ylabel: str = "-log₁₀(Adjusted p-value)",
    save_path: Optional[str] = None,
    **kwargs
) -> plt.Figure:
    """
    Volcano plot of a top_table() result.

    Args:
        results: DataFrame with differential expression results
        logfc_col: Column name for log fold change (default: "log_fc")
        fdr_col: Column name for adjusted p-value (default: "adj_p_value")
        fdr_threshold: FDR significance threshold (default: 0.05)
        logfc_threshold: Log fold change threshold for highlighting (default: 1.0)
        figsize: Figure size tuple (default: (10, 8))
        title: Plot title
        xlabel: X-axis label
        ylabel: Y-axis label
        save_path: Path to save figure (optional)
        **kwargs: Additional arguments for customization
            - point_size: Size of points (default: 20)
            - sig_color: Color for significant points (default: '#e74c3c' - red)
            - nonsig_color: Color for non-significant points (default: '#95a5a6' - gray)
            - alpha: Transparency (default: 0.7)
            - dpi: DPI for saved figure (default: 300)

    Returns:
        matplotlib.figure.Figure: The figure object

    Examples:
        >>> table = top_table(model, coef="devStageP2", number=None)
        >>> fig = volcano_plot(table, title="P2 vs E16")
    """
    point_size = kwargs.get('point_size', 20)
    sig_color = kwargs.get('sig_color', '#e74c3c')
    nonsig_color = kwargs.get('nonsig_color', '#95a5a6')
    text_color = kwargs.get('text_color', '#2c3e50')
    alpha = kwargs.get('alpha', 0.7)
    dpi = kwargs.get('dpi', 300)

    for column in (logfc_col, fdr_col):
        if column not in results.columns:
            raise KeyError(f"Column '{column}' not found. Available: {list(results.columns)}")

    df = results.copy()
    with np.errstate(divide="ignore"):
        df['neg_log10_fdr'] = -np.log10(df[fdr_col].astype(float))

    sig_mask = (df[fdr_col] < fdr_threshold) & (np.abs(df[logfc_col]) > logfc_threshold)

    fig, ax = plt.subplots(figsize=figsize, dpi=100)

    # Non-significant points first so they sit behind
    non_sig = df[~sig_mask]
    ax.scatter(
        non_sig[logfc_col],
        non_sig['neg_log10_fdr'],
        s=point_size,
        color=nonsig_color,
        alpha=alpha * 0.5,
        edgecolors='none',
        label='Not significant',
        zorder=1
    )

    sig = df[sig_mask]
    ax.scatter(
        sig[logfc_col],
        sig['neg_log10_fdr'],
        s=point_size * 1.3,
        color=sig_color,
        alpha=alpha,
        edgecolors='white',
        linewidth=0.5,
        label=f'FDR < {fdr_threshold}, |logFC| > {logfc_threshold}',
        zorder=2
    )

    ax.axvline(-logfc_threshold, color='#34495e', linestyle='--', linewidth=1.2, alpha=0.6, zorder=0)
    ax.axvline(logfc_threshold, color='#34495e', linestyle='--', linewidth=1.2, alpha=0.6, zorder=0)
    ax.axhline(-np.log10(fdr_threshold), color='#34495e', linestyle='--', linewidth=1.2, alpha=0.6, zorder=0)

    ax.set_xlabel(xlabel, fontsize=13, color=text_color)
    ax.set_ylabel(ylabel, fontsize=13, color=text_color)
    ax.set_title(title, fontsize=15, color=text_color, pad=15)
    ax.grid(True, alpha=0.2, linestyle=':', linewidth=0.8)
    ax.set_axisbelow(True)
    ax.legend(loc='upper right', frameon=True, fontsize=10, framealpha=0.95)

    n_sig = int(sig_mask.sum())
    stats_text = f'Significant: {n_sig}/{len(df)}\n'
    stats_text += f'Up-regulated: {int((sig_mask & (df[logfc_col] > 0)).sum())}\n'
    stats_text += f'Down-regulated: {int((sig_mask & (df[logfc_col] < 0)).sum())}'
    ax.text(
        0.02, 0.98,
        stats_text,
        transform=ax.transAxes,
        fontsize=10,
        verticalalignment='top',
        bbox=dict(boxstyle='round', facecolor='white', alpha=0.85, edgecolor=text_color),
        family='monospace',
        color=text_color
    )

    fig.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=dpi, bbox_inches='tight', facecolor='white')
        logger.info("Figure saved to: %s", save_path)

    return fig


def statistic_frame(
    model: LimmaModel,
    stat: str = "t",
    coefs: Optional[Sequence[Union[int, str]]] = None,
) -> pd.DataFrame:
    """Genes x coefficients table of one statistic ("t", "coefficients", "p_value" or "lods")."""
    model = _ensure_moderated(model)
    tables = {
        "t": model.t,
        "coefficients": model.coefficients,
        "p_value": model.p_value,
        "lods": model.lods,
    }
    if stat not in tables or tables[stat] is None:
        raise ValueError(f"stat must be one of {[k for k, v in tables.items() if v is not None]}, got '{stat}'")
    frame = tables[stat]
    if coefs is not None:
        frame = frame[resolve_coefs(model, coefs)]
    return frame


def plot_statistic_matrix(
    model: Union[LimmaModel, pd.DataFrame],
    stat: str = "t",
    coefs: Optional[Sequence[Union[int, str]]] = None,
    height: float = 2.2,
    point_size: float = 4,
) -> sns.PairGrid:
    """
    Scatter-plot matrix of a statistic across coefficients or contrasts.

    Args:
        model: LimmaModel, or a genes x columns DataFrame of values.
        stat: Statistic to plot for a LimmaModel. Default: "t".
        coefs: Subset of coefficients (default: all but "(Intercept)").
        height: Panel height in inches.
        point_size: Marker size.

    Returns:
        seaborn.PairGrid
    """
    if isinstance(model, LimmaModel):
        frame = statistic_frame(model, stat=stat, coefs=coefs)
        if coefs is None and "(Intercept)" in frame.columns and frame.shape[1] > 1:
            frame = frame.drop(columns="(Intercept)")
    else:
        frame = model if coefs is None else model[list(coefs)]
    if frame.shape[1] < 2:
        raise ValueError("Need at least two columns for a scatter-plot matrix")
    return sns.pairplot(
        frame.reset_index(drop=True),
        height=height,
        plot_kws={"s": point_size, "alpha": 0.4, "edgecolor": "none"},
        diag_kind="kde",
    )


def plot_pvalue_density(
    model: LimmaModel,
    coef: Union[int, str],
    ax: Optional[plt.Axes] = None,
    bins: int = 50,
) -> plt.Figure:
    """Histogram of raw p-values for one coefficient; uniform under the null."""
    model = _ensure_moderated(model)
    name = resolve_coefs(model, coef)[0]
    p = model.p_value[name].dropna()
    if ax is None:
        fig, ax = plt.subplots(figsize=(6, 4))
    else:
        fig = ax.figure
    sns.histplot(x=p.to_numpy(), bins=bins, binrange=(0, 1), stat="density", ax=ax, color="#3b7dd8")
    ax.axhline(1.0, color="#34495e", linestyle="--", linewidth=1)
    ax.set_xlabel("p-value")
    ax.set_title(name)
    fig.tight_layout()
    return fig
