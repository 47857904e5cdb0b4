# src/pooling/evaluation/visualization.py
"""Visualization utilities for the pooling comparison.

Provides slide-ready plotting functions for:
- Raw clustered data
- Full pooling, no pooling and partial pooling fits (faceted by group)
- The three strategies overlaid per group
- Shrinkage of group estimates toward the population estimate
- Caterpillar plot of the random effects
- Estimation error against the simulated truth

Every plotting function returns ``(figure, axes)`` and leaves saving to
:func:`save_figure`.

Example:
    >>> from pooling.evaluation.visualization import (
    ...     set_publication_style,
    ...     plot_pooling_comparison,
    ...     save_figure,
    ... )
    >>> set_publication_style()
    >>> fig, axes = plot_pooling_comparison(comparison)
    >>> save_figure(fig, "comparison", output_dir, formats=["pdf", "png"])
"""

import logging
import math
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
import pandas as pd  # noqa: E402
import seaborn as sns  # noqa: E402
from matplotlib.axes import Axes  # noqa: E402
from matplotlib.figure import Figure  # noqa: E402

from pooling.models.base import STRATEGIES, ModelSpec  # noqa: E402
from pooling.models.comparison import PoolingComparison  # noqa: E402
from pooling.models.lme_model import PartialPoolingFit  # noqa: E402

logger = logging.getLogger(__name__)

DEFAULT_STRATEGY_COLORS: Dict[str, str] = {
    "full": "#d95f02",
    "none": "#7570b3",
    "partial": "#1b9e77",
}

DEFAULT_STRATEGY_LABELS: Dict[str, str] = {
    "full": "Full pooling",
    "none": "No pooling",
    "partial": "Partial pooling",
}

POPULATION_COLOR = "#333333"


def set_publication_style(
    font_size: int = 12,
    axes_label_size: int = 13,
    axes_title_size: int = 14,
    tick_label_size: int = 11,
    legend_font_size: int = 11,
    figure_dpi: int = 110,
    save_dpi: int = 200,
) -> None:
    """Configure matplotlib for figures projected on slides.

    Larger fonts than a paper figure: the back row has to read the axes.

    Args:
        font_size: Base font size.
        axes_label_size: Axis label font size.
        axes_title_size: Title font size.
        tick_label_size: Tick label font size.
        legend_font_size: Legend font size.
        figure_dpi: Display DPI.
        save_dpi: Saved figure DPI.
    """
    sns.set_theme(style="whitegrid", context="notebook")
    plt.rcParams.update(
        {
            "font.size": font_size,
            "axes.labelsize": axes_label_size,
            "axes.titlesize": axes_title_size,
            "xtick.labelsize": tick_label_size,
            "ytick.labelsize": tick_label_size,
            "legend.fontsize": legend_font_size,
            "figure.dpi": figure_dpi,
            "savefig.dpi": save_dpi,
            "savefig.bbox": "tight",
            "savefig.pad_inches": 0.1,
            "axes.spines.top": False,
            "axes.spines.right": False,
        }
    )


def save_figure(
    fig: Figure,
    name: str,
    output_dir: Union[str, Path],
    formats: Sequence[str] = ("pdf", "png"),
    close: bool = True,
) -> List[Path]:
    """Save figure in multiple formats.

    Args:
        fig: Matplotlib figure to save.
        name: Base filename (without extension).
        output_dir: Directory to save figures.
        formats: File formats to save (e.g., ["pdf", "png"]).
        close: Whether to close the figure after saving.

    Returns:
        List of saved file paths.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    saved_paths = []
    for fmt in formats:
        path = output_dir / f"{name}.{fmt}"
        fig.savefig(path)
        logger.info(f"Saved figure to {path}")
        saved_paths.append(path)

    if close:
        plt.close(fig)

    return saved_paths


def group_palette(groups: Sequence[str], palette: str = "husl") -> Dict[str, Tuple[float, float, float]]:
    """Stable colour per group."""
    colors = sns.color_palette(palette, n_colors=len(groups))
    return {str(g): c for g, c in zip(groups, colors)}


def _require_predictor(spec: ModelSpec) -> str:
    if spec.predictor is None:
        raise ValueError("This plot needs a model with a predictor")
    return spec.predictor


def _facet_axes(
    n_panels: int,
    ncols: int = 4,
    panel_size: Tuple[float, float] = (3.0, 2.6),
) -> Tuple[Figure, np.ndarray]:
    ncols = max(1, min(ncols, n_panels))
    nrows = math.ceil(n_panels / ncols)
    fig, axes = plt.subplots(
        nrows,
        ncols,
        figsize=(panel_size[0] * ncols, panel_size[1] * nrows),
        sharex=True,
        sharey=True,
        squeeze=False,
    )
    for ax in axes.flat[n_panels:]:
        ax.set_visible(False)
    return fig, axes


def plot_raw_clusters(
    df: pd.DataFrame,
    spec: ModelSpec,
    title: str = "Clustered data",
    figsize: Tuple[float, float] = (8, 5),
    point_size: int = 40,
    alpha: float = 0.8,
) -> Tuple[Figure, Axes]:
    """Scatter of the response against the predictor, coloured by group.

    Args:
        df: Dataset.
        spec: Model specification (column roles).
        title: Plot title.
        figsize: Figure size (width, height).
        point_size: Scatter point size.
        alpha: Point transparency.

    Returns:
        Tuple of (figure, axes).
    """
    predictor = _require_predictor(spec)
    groups = [str(g) for g in sorted(df[spec.group].astype(str).unique())]
    palette = group_palette(groups)

    fig, ax = plt.subplots(figsize=figsize)
    sns.scatterplot(
        x=df[predictor].to_numpy(),
        y=df[spec.response].to_numpy(),
        hue=df[spec.group].astype(str).to_numpy(),
        hue_order=groups,
        palette=palette,
        s=point_size,
        alpha=alpha,
        ax=ax,
    )
    ax.set_xlabel(predictor)
    ax.set_ylabel(spec.response)
    ax.set_title(title)
    ax.legend(title=spec.group, bbox_to_anchor=(1.02, 1), loc="upper left", frameon=False)
    return fig, ax


def plot_full_pooling(
    comparison: PoolingComparison,
    title: str = "Full pooling: one line for everyone",
    figsize: Tuple[float, float] = (8, 5),
    color: Optional[str] = None,
) -> Tuple[Figure, Axes]:
    """Data coloured by group with the single pooled regression line."""
    spec = comparison.spec
    predictor = _require_predictor(spec)
    df = comparison.data

    fig, ax = plot_raw_clusters(df, spec, title=title, figsize=figsize, alpha=0.6)
    x = np.linspace(df[predictor].min(), df[predictor].max(), 50)
    full = comparison.full
    ax.plot(
        x,
        full.intercept + full.slope * x,
        color=color or DEFAULT_STRATEGY_COLORS["full"],
        linewidth=3,
        label=DEFAULT_STRATEGY_LABELS["full"],
    )
    ax.legend(bbox_to_anchor=(1.02, 1), loc="upper left", frameon=False)
    return fig, ax


def plot_group_lines(
    comparison: PoolingComparison,
    strategies: Sequence[str] = STRATEGIES,
    show_population: bool = False,
    title: Optional[str] = None,
    ncols: int = 4,
    colors: Optional[Dict[str, str]] = None,
    labels: Optional[Dict[str, str]] = None,
) -> Tuple[Figure, np.ndarray]:
    """One panel per group with that group's points and fitted lines.

    Panels are ordered by group size so the shrinkage of small groups is
    visible left to right.

    Args:
        comparison: Fitted comparison.
        strategies: Which strategies' lines to draw.
        show_population: Also draw the mixed model's population line.
        title: Figure title.
        ncols: Panels per row.
        colors: Strategy -> colour.
        labels: Strategy -> legend label.

    Returns:
        Tuple of (figure, axes array).
    """
    spec = comparison.spec
    predictor = _require_predictor(spec)
    unknown = set(strategies) - set(STRATEGIES)
    if unknown:
        raise ValueError(f"Unknown strategies: {sorted(unknown)}")

    colors = {**DEFAULT_STRATEGY_COLORS, **(colors or {})}
    labels = {**DEFAULT_STRATEGY_LABELS, **(labels or {})}
    df = comparison.data.assign(_group=comparison.data[spec.group].astype(str))
    grid = comparison.prediction_grid()
    sizes = comparison.full.group_sizes.sort_values(kind="stable")

    fig, axes = _facet_axes(len(sizes), ncols=ncols)
    for ax, (group, n) in zip(axes.flat, sizes.items()):
        points = df[df["_group"] == group]
        ax.scatter(points[predictor], points[spec.response], s=18, color="#555555", alpha=0.7)

        for strategy in strategies:
            line = grid[(grid["group"] == group) & (grid["strategy"] == strategy)]
            ax.plot(
                line[predictor],
                line["fitted"],
                color=colors[strategy],
                linewidth=2,
                linestyle="--" if strategy == "full" else "-",
                label=labels[strategy],
            )

        if show_population:
            x = np.linspace(points[predictor].min(), points[predictor].max(), 10)
            ax.plot(
                x,
                comparison.partial.predict_population(x),
                color=POPULATION_COLOR,
                linewidth=1,
                linestyle=":",
                label="Population",
            )

        ax.set_title(f"{group} (n={int(n)})", fontsize=11)

    for ax in axes[-1, :]:
        ax.set_xlabel(predictor)
    for ax in axes[:, 0]:
        ax.set_ylabel(spec.response)

    handles, legend_labels = axes.flat[0].get_legend_handles_labels()
    fig.legend(
        handles,
        legend_labels,
        loc="lower center",
        ncol=len(handles),
        frameon=False,
        bbox_to_anchor=(0.5, -0.02),
    )
    if title:
        fig.suptitle(title, fontweight="bold")
    fig.tight_layout(rect=(0, 0.05, 1, 1))
    return fig, axes


def plot_no_pooling(comparison: PoolingComparison, **kwargs) -> Tuple[Figure, np.ndarray]:
    """Per-group panels with each group's own regression line."""
    kwargs.setdefault("title", "No pooling: a separate line per group")
    return plot_group_lines(comparison, strategies=["none"], **kwargs)


def plot_partial_pooling(comparison: PoolingComparison, **kwargs) -> Tuple[Figure, np.ndarray]:
    """Per-group panels with the mixed-model lines and the population line."""
    kwargs.setdefault("title", "Partial pooling: group lines from the mixed model")
    return plot_group_lines(comparison, strategies=["partial"], show_population=True, **kwargs)


def plot_pooling_comparison(comparison: PoolingComparison, **kwargs) -> Tuple[Figure, np.ndarray]:
    """Per-group panels overlaying full, no and partial pooling."""
    kwargs.setdefault("title", "Full vs. no vs. partial pooling")
    return plot_group_lines(comparison, strategies=STRATEGIES, **kwargs)


def plot_shrinkage(
    comparison: PoolingComparison,
    title: str = "Shrinkage toward the population estimate",
    figsize: Tuple[float, float] = (8, 6),
    colors: Optional[Dict[str, str]] = None,
) -> Tuple[Figure, Axes]:
    """Arrows from each group's no-pooling estimate to its partial-pooling estimate.

    With a random slope the arrows live in the (intercept, slope) plane.
    Otherwise each group's level at its mean predictor value is plotted
    relative to the population line, against group size, which shows small
    groups travelling furthest.

    Returns:
        Tuple of (figure, axes).
    """
    colors = {**DEFAULT_STRATEGY_COLORS, **(colors or {})}
    spec = comparison.spec
    fig, ax = plt.subplots(figsize=figsize)

    if spec.predictor is not None and spec.random_slope:
        intercepts = comparison.wide("intercept")
        slopes = comparison.wide("slope")
        table = pd.DataFrame(
            {
                "b0_none": intercepts["none"],
                "b1_none": slopes["none"],
                "b0_partial": intercepts["partial"],
                "b1_partial": slopes["partial"],
                "n": intercepts["n"],
            }
        ).dropna()
        sizes = 20 + 120 * table["n"] / table["n"].max()
        ax.scatter(table["b0_none"], table["b1_none"], s=sizes, color=colors["none"],
                   label="No pooling", zorder=3)
        ax.scatter(table["b0_partial"], table["b1_partial"], s=sizes, color=colors["partial"],
                   label="Partial pooling", zorder=3)
        for _, row in table.iterrows():
            ax.annotate(
                "",
                xy=(row["b0_partial"], row["b1_partial"]),
                xytext=(row["b0_none"], row["b1_none"]),
                arrowprops=dict(arrowstyle="->", color="#888888", lw=1),
            )
        ax.scatter(
            [comparison.partial.intercept],
            [comparison.partial.slope],
            marker="X",
            s=160,
            color=POPULATION_COLOR,
            label="Population",
            zorder=4,
        )
        ax.set_xlabel("Intercept")
        ax.set_ylabel(f"Slope of {spec.predictor}")
    else:
        levels = comparison.wide("level")
        offset = comparison.reference("level").reindex(levels.index)
        table = pd.DataFrame(
            {
                "n": levels["n"],
                "none": levels["none"] - offset,
                "partial": levels["partial"] - offset,
            }
        ).dropna()
        ax.scatter(table["n"], table["none"], color=colors["none"], label="No pooling", zorder=3)
        ax.scatter(table["n"], table["partial"], color=colors["partial"], label="Partial pooling", zorder=3)
        for _, row in table.iterrows():
            ax.annotate(
                "",
                xy=(row["n"], row["partial"]),
                xytext=(row["n"], row["none"]),
                arrowprops=dict(arrowstyle="->", color="#888888", lw=1),
            )
        ax.axhline(0.0, color=POPULATION_COLOR, linestyle=":", label="Population")
        ax.set_xlabel("Observations in group")
        if spec.predictor is not None:
            ax.set_ylabel(f"Group level at its mean {spec.predictor}, minus population")
        else:
            ax.set_ylabel("Group mean minus population mean")

    ax.set_title(title)
    ax.legend(frameon=False)
    return fig, ax


def plot_random_effects(
    fit: PartialPoolingFit,
    term: str = "intercept",
    z: float = 1.96,
    title: Optional[str] = None,
    figsize: Tuple[float, float] = (6, 5),
    color: Optional[str] = None,
) -> Tuple[Figure, Axes]:
    """Caterpillar plot: BLUPs with ±z conditional SDs, sorted.

    Args:
        fit: Mixed-model fit.
        term: ``"intercept"`` or ``"slope"``.
        z: Interval half-width in conditional SDs.
        title: Plot title.
        figsize: Figure size.
        color: Point colour.

    Returns:
        Tuple of (figure, axes).
    """
    re = fit.random_effects
    if term not in re.columns:
        raise ValueError(f"No random {term} in this model; available: {list(re.columns)}")
    se = fit.random_effects_se[term]
    order = re[term].sort_values().index

    fig, ax = plt.subplots(figsize=figsize)
    y = np.arange(len(order))
    ax.errorbar(
        re.loc[order, term],
        y,
        xerr=z * se.loc[order],
        fmt="o",
        color=color or DEFAULT_STRATEGY_COLORS["partial"],
        ecolor="#999999",
        capsize=3,
    )
    ax.axvline(0, color=POPULATION_COLOR, linestyle=":", linewidth=1)
    ax.set_yticks(y)
    ax.set_yticklabels(order)
    ax.set_xlabel(f"Random {term} (deviation from population)")
    ax.set_title(title or f"Random {term}s")
    return fig, ax


def plot_estimation_error(
    errors: pd.DataFrame,
    title: str = "Error against the true group coefficients",
    figsize: Tuple[float, float] = (8, 4),
    colors: Optional[Dict[str, str]] = None,
    labels: Optional[Dict[str, str]] = None,
) -> Tuple[Figure, np.ndarray]:
    """Bar chart of RMSE per strategy, one panel per coefficient.

    Args:
        errors: Output of ``estimation_error`` (strategy index, ``*_rmse`` columns).

    Returns:
        Tuple of (figure, axes array).
    """
    colors = {**DEFAULT_STRATEGY_COLORS, **(colors or {})}
    labels = {**DEFAULT_STRATEGY_LABELS, **(labels or {})}
    metrics = list(errors.columns)

    fig, axes = plt.subplots(1, len(metrics), figsize=figsize, squeeze=False)
    for ax, metric in zip(axes.flat, metrics):
        values = errors[metric]
        x = np.arange(len(values))
        bars = ax.bar(x, values, color=[colors[s] for s in values.index], alpha=0.9)
        for bar, val in zip(bars, values):
            ax.annotate(
                f"{val:.2f}",
                xy=(bar.get_x() + bar.get_width() / 2, bar.get_height()),
                xytext=(0, 2),
                textcoords="offset points",
                ha="center",
                va="bottom",
                fontsize=10,
            )
        ax.set_xticks(x)
        ax.set_xticklabels([labels[s] for s in values.index], rotation=20, ha="right")
        ax.set_title(metric.replace("_rmse", "").capitalize() + " RMSE")
    fig.suptitle(title, fontweight="bold")
    fig.tight_layout()
    return fig, axes.flatten()
