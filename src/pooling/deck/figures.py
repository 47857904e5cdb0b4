"""Figure generation for the slide deck.

Each ``fig_*`` function draws one slide figure from the ``DeckContext``,
saves it in the configured formats and returns it base64-encoded for
embedding in the HTML deck.
"""

import base64
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402

from pooling.deck.context import DeckContext  # noqa: E402
from pooling.deck.style import SAVE_DPI, apply_style, get_color  # noqa: E402
from pooling.evaluation.visualization import (  # noqa: E402
    plot_estimation_error,
    plot_full_pooling,
    plot_no_pooling,
    plot_partial_pooling,
    plot_pooling_comparison,
    plot_random_effects,
    plot_raw_clusters,
    plot_shrinkage,
    save_figure,
)

logger = logging.getLogger(__name__)

apply_style()


# ─────────────────────────────────────────────────────────────────────
# Figure result container
# ─────────────────────────────────────────────────────────────────────


@dataclass
class FigureResult:
    """Result of a single figure generation."""

    name: str
    paths: List[Path] = field(default_factory=list)
    png_base64: str = ""
    caption: str = ""


# ─────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────


def _save_and_encode(
    fig: "matplotlib.figure.Figure",
    name: str,
    figures_dir: Path,
    formats: Sequence[str] = ("png", "pdf"),
    caption: str = "",
) -> FigureResult:
    """Save figure in every format and encode a PNG to base64.

    Args:
        fig: Matplotlib figure.
        name: Figure filename stem.
        figures_dir: Directory to save into.
        formats: File formats to write.
        caption: Figure caption text.

    Returns:
        FigureResult with paths and base64 encoding.
    """
    buf = io.BytesIO()
    fig.savefig(buf, format="png", dpi=SAVE_DPI, bbox_inches="tight")
    buf.seek(0)
    b64 = base64.b64encode(buf.read()).decode("ascii")
    buf.close()

    paths = save_figure(fig, name, figures_dir, formats=formats, close=True)

    return FigureResult(name=name, paths=paths, png_base64=b64, caption=caption)


# ─────────────────────────────────────────────────────────────────────
# Slide figures
# ─────────────────────────────────────────────────────────────────────


def fig_raw_clusters(ctx: DeckContext, figures_dir: Path, formats: Sequence[str]) -> Optional[FigureResult]:
    """The data, coloured by group."""
    if ctx.spec.predictor is None:
        return None
    fig, _ = plot_raw_clusters(ctx.data, ctx.spec, title="Observations coloured by group")
    n_groups = ctx.overview["n_groups"]
    caption = (
        f"{ctx.overview['n_obs']} observations in {n_groups} groups. "
        "Points from the same group sit together: they are not independent."
    )
    return _save_and_encode(fig, "raw_clusters", figures_dir, formats, caption)


def fig_full_pooling(ctx: DeckContext, figures_dir: Path, formats: Sequence[str]) -> Optional[FigureResult]:
    """One regression line through every point."""
    if ctx.spec.predictor is None:
        return None
    fig, _ = plot_full_pooling(ctx.comparison)
    full = ctx.comparison.full
    caption = f"Full pooling: ŷ = {full.intercept:.2f} + {full.slope:.2f}·{ctx.spec.predictor} for every group."
    return _save_and_encode(fig, "full_pooling", figures_dir, formats, caption)


def fig_no_pooling(ctx: DeckContext, figures_dir: Path, formats: Sequence[str]) -> Optional[FigureResult]:
    """A separate regression per group."""
    if ctx.spec.predictor is None:
        return None
    fig, _ = plot_no_pooling(ctx.comparison)
    caption = "No pooling: each group gets its own line, fitted from its own points only."
    return _save_and_encode(fig, "no_pooling", figures_dir, formats, caption)


def fig_partial_pooling(ctx: DeckContext, figures_dir: Path, formats: Sequence[str]) -> Optional[FigureResult]:
    """Mixed-model group lines plus the population line."""
    if ctx.spec.predictor is None:
        return None
    fig, _ = plot_partial_pooling(ctx.comparison)
    caption = "Partial pooling: group lines from the mixed model, with the population line dotted."
    return _save_and_encode(fig, "partial_pooling", figures_dir, formats, caption)


def fig_comparison(ctx: DeckContext, figures_dir: Path, formats: Sequence[str]) -> Optional[FigureResult]:
    """All three strategies per group."""
    if ctx.spec.predictor is None:
        return None
    fig, _ = plot_pooling_comparison(ctx.comparison)
    caption = (
        "Panels ordered by group size. In small groups the partial-pooling line "
        "sits between the group's own line and the pooled line."
    )
    return _save_and_encode(fig, "pooling_comparison", figures_dir, formats, caption)


def fig_shrinkage(ctx: DeckContext, figures_dir: Path, formats: Sequence[str]) -> Optional[FigureResult]:
    """Arrows from no-pooling to partial-pooling estimates."""
    fig, _ = plot_shrinkage(ctx.comparison)
    check = ctx.shrinkage
    caption = "Each arrow starts at a group's own estimate and ends at its mixed-model estimate."
    if check is not None:
        caption += f" {check.fraction:.0%} of the group levels moved toward the population line."
    return _save_and_encode(fig, "shrinkage", figures_dir, formats, caption)


def fig_random_intercepts(ctx: DeckContext, figures_dir: Path, formats: Sequence[str]) -> Optional[FigureResult]:
    """Caterpillar plot of the random intercepts."""
    fig, _ = plot_random_effects(ctx.comparison.partial, term="intercept")
    caption = "Predicted random intercepts (BLUPs) with ±1.96 conditional SD."
    return _save_and_encode(fig, "random_intercepts", figures_dir, formats, caption)


def fig_random_slopes(ctx: DeckContext, figures_dir: Path, formats: Sequence[str]) -> Optional[FigureResult]:
    """Caterpillar plot of the random slopes."""
    if not ctx.spec.random_slope:
        return None
    fig, _ = plot_random_effects(ctx.comparison.partial, term="slope")
    caption = f"Predicted random slopes of {ctx.spec.predictor} with ±1.96 conditional SD."
    return _save_and_encode(fig, "random_slopes", figures_dir, formats, caption)


def fig_estimation_error(ctx: DeckContext, figures_dir: Path, formats: Sequence[str]) -> Optional[FigureResult]:
    """RMSE against the simulated truth."""
    if ctx.errors is None:
        return None
    fig, _ = plot_estimation_error(ctx.errors)
    caption = "Root-mean-square error of the group coefficients against the values used to simulate them."
    return _save_and_encode(fig, "estimation_error", figures_dir, formats, caption)


def fig_interval_comparison(ctx: DeckContext, figures_dir: Path, formats: Sequence[str]) -> Optional[FigureResult]:
    """Naive OLS interval next to the cluster bootstrap interval."""
    if ctx.bootstrap is None or ctx.naive_ci is None:
        return None

    boot = ctx.bootstrap
    lo, hi = ctx.naive_ci
    term = ctx.spec.predictor or "intercept"

    fig, ax = plt.subplots(figsize=(7, 3))
    rows = [
        ("Naive OLS", lo, hi, get_color("full")),
        ("Cluster bootstrap", boot.ci_lower, boot.ci_upper, get_color("partial")),
    ]
    for y, (label, lower, upper, color) in enumerate(rows):
        ax.plot([lower, upper], [y, y], color=color, linewidth=6, solid_capstyle="butt")
        ax.annotate(
            f"width {upper - lower:.3f}",
            xy=(upper, y),
            xytext=(6, -4),
            textcoords="offset points",
            fontsize=10,
        )
    ax.axvline(boot.mean, color="#333333", linestyle=":", linewidth=1)
    ax.set_yticks(np.arange(len(rows)))
    ax.set_yticklabels([r[0] for r in rows])
    ax.set_ylim(-0.7, len(rows) - 0.3)
    ax.set_xlabel(f"Pooled {term} estimate")
    ax.set_title("Same estimate, different honesty about uncertainty")
    fig.tight_layout()

    ratio = boot.width / (hi - lo) if hi > lo else float("nan")
    caption = f"The bootstrap interval, resampling whole groups, is {ratio:.1f}× as wide as the naive one."
    return _save_and_encode(fig, "interval_comparison", figures_dir, formats, caption)


# ─────────────────────────────────────────────────────────────────────
# Orchestrator
# ─────────────────────────────────────────────────────────────────────

FigureFn = Callable[[DeckContext, Path, Sequence[str]], Optional[FigureResult]]

GENERATORS: List[Tuple[str, FigureFn]] = [
    ("Raw clusters", fig_raw_clusters),
    ("Full pooling", fig_full_pooling),
    ("No pooling", fig_no_pooling),
    ("Partial pooling", fig_partial_pooling),
    ("Pooling comparison", fig_comparison),
    ("Shrinkage", fig_shrinkage),
    ("Random intercepts", fig_random_intercepts),
    ("Random slopes", fig_random_slopes),
    ("Estimation error", fig_estimation_error),
    ("Interval comparison", fig_interval_comparison),
]


def generate_all_figures(
    ctx: DeckContext,
    figures_dir: Path,
    formats: Sequence[str] = ("png", "pdf"),
) -> List[FigureResult]:
    """Generate every slide figure.

    Args:
        ctx: Deck context.
        figures_dir: Where figure files go.
        formats: File formats to write.

    Returns:
        List of generated FigureResult objects, in slide order.
    """
    figures: List[FigureResult] = []
    for desc, gen_fn in GENERATORS:
        logger.info("Generating: %s", desc)
        result = gen_fn(ctx, Path(figures_dir), formats)
        if result is None:
            logger.info("  -> skipped (not applicable)")
            continue
        figures.append(result)
        logger.info("  -> %s", ", ".join(str(p) for p in result.paths))
    return figures
