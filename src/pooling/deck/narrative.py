"""Data-driven slide text for the mixed-models deck.

Each ``slide_*`` function reads the ``DeckContext`` and produces one slide.
Every number quoted in the prose comes from the fitted models.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

from pooling.deck.context import DeckContext
from pooling.deck.style import strategy_label
from pooling.evaluation.statistics import interpret_icc

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────
# Slide container
# ─────────────────────────────────────────────────────────────────────


@dataclass
class SlideContent:
    """Content for one slide."""

    slide_id: str
    title: str
    paragraphs: list[str] = field(default_factory=list)
    bullets: list[str] = field(default_factory=list)
    equations: list[str] = field(default_factory=list)
    code: str = ""
    figure_names: list[str] = field(default_factory=list)
    table_names: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)


# ─────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────


def _fmt(val: float | None, decimals: int = 2) -> str:
    """Format a float for display, handling None and NaN."""
    if val is None or (isinstance(val, float) and np.isnan(val)):
        return "N/A"
    return f"{val:.{decimals}f}"


def _pct(val: float | None) -> str:
    """Format as percentage."""
    if val is None or (isinstance(val, float) and np.isnan(val)):
        return "N/A"
    return f"{val * 100:.0f}%"


def _fit_call(ctx: DeckContext) -> str:
    """The mixedlm call exactly as the deck fits it."""
    spec = ctx.spec
    re_arg = f', re_formula="{spec.re_formula}"' if spec.re_formula else ""
    return (
        f'model = smf.mixedlm("{spec.formula}", df, groups=df["{spec.group}"]{re_arg})\n'
        f"fit = model.fit(reml={spec.reml}, method={list(spec.methods)!r})"
    )


def _largest_move(ctx: DeckContext) -> Optional[Dict[str, Any]]:
    """Group whose estimate moved the most toward the population value."""
    check = ctx.shrinkage
    if check is None or check.table.empty:
        return None
    moved = (check.table["none"] - check.table["partial"]).abs()
    group = moved.idxmax()
    row = check.table.loc[group]
    return {
        "group": group,
        "n": int(row["n"]),
        "none": float(row["none"]),
        "partial": float(row["partial"]),
        "moved": float(moved.loc[group]),
    }


# ─────────────────────────────────────────────────────────────────────
# Slide generators
# ─────────────────────────────────────────────────────────────────────


def slide_title(ctx: DeckContext, deck_cfg: Dict[str, Any]) -> SlideContent:
    """Title slide."""
    slide = SlideContent(
        slide_id="title",
        title=deck_cfg.get("title", "Mixed-effects models"),
    )
    if deck_cfg.get("subtitle"):
        slide.paragraphs.append(deck_cfg["subtitle"])
    if deck_cfg.get("author"):
        slide.paragraphs.append(deck_cfg["author"])
    slide.notes.append(
        "Goal for today: why one regression for everyone and one regression per group "
        "are both wrong, and how a mixed model sits between them."
    )
    return slide


def slide_clustered_data(ctx: DeckContext) -> SlideContent:
    """Describe the dataset and why its rows are not independent."""
    ov = ctx.overview
    spec = ctx.spec
    slide = SlideContent(
        slide_id="clustered_data",
        title="Clustered data",
        figure_names=["raw_clusters"],
        table_names=["group_summary"],
    )

    if ctx.source == "simulate" and ctx.simulation is not None:
        sim = ctx.simulation
        origin = (
            f"simulated with seed {sim.seed}: population intercept {_fmt(sim.intercept)}, "
            f"slope {_fmt(sim.slope)}, group-level SDs {_fmt(sim.intercept_sd)} "
            f"(intercept) and {_fmt(sim.slope_sd)} (slope), residual SD {_fmt(sim.residual_sd)}"
        )
    elif ctx.source == "bundled":
        origin = "loaded from the dataset bundled with the deck"
    else:
        origin = "loaded from a CSV file"

    slide.paragraphs.append(
        f"{ov['n_obs']} observations of <code>{spec.response}</code> in {ov['n_groups']} groups "
        f"(<code>{spec.group}</code>), {origin}."
    )
    slide.paragraphs.append(
        f"Groups hold between {ov['min_group_size']} and {ov['max_group_size']} observations. "
        f"The group means spread with SD {_fmt(ov['between_sd'])}, while observations "
        f"within a group spread with SD {_fmt(ov['within_sd'])} on average."
    )
    slide.bullets = [
        "Observations from the same group share something unmeasured.",
        "Ordinary regression assumes every row is independent.",
        "Group sizes differ, so some groups tell us much more than others.",
    ]
    return slide


def slide_full_pooling(ctx: DeckContext) -> SlideContent:
    """One regression ignoring the groups."""
    spec = ctx.spec
    full = ctx.comparison.full
    slide = SlideContent(
        slide_id="full_pooling",
        title=strategy_label("full"),
        figure_names=["full_pooling"],
        code=f'fit = smf.ols("{spec.formula}", data=df).fit()',
    )
    if spec.predictor is not None:
        slide.equations.append(r"y_{ij} = \beta_0 + \beta_1 x_{ij} + \varepsilon_{ij}, \quad \varepsilon_{ij} \sim N(0, \sigma^2)")
        slide.paragraphs.append(
            f"Ignore <code>{spec.group}</code> entirely: one intercept ({_fmt(full.intercept)}) "
            f"and one slope ({_fmt(full.slope)}) for every group."
        )
    else:
        slide.equations.append(r"y_{ij} = \beta_0 + \varepsilon_{ij}")
        slide.paragraphs.append(
            f"Ignore <code>{spec.group}</code> entirely: one mean ({_fmt(full.intercept)}) for every group."
        )
    slide.bullets = [
        "Uses all the data for one estimate.",
        "Pretends the groups do not differ.",
        "Standard errors are too small: clustered rows count as independent evidence.",
    ]
    return slide


def slide_no_pooling(ctx: DeckContext) -> SlideContent:
    """A separate regression per group."""
    spec = ctx.spec
    none = ctx.comparison.none
    est = none.estimates
    slide = SlideContent(
        slide_id="no_pooling",
        title=strategy_label("none"),
        figure_names=["no_pooling"],
        code=(
            "fits = {\n"
            f'    g: smf.ols("{spec.formula}", data=d).fit()\n'
            f'    for g, d in df.groupby("{spec.group}")\n'
            "}"
        ),
    )
    if spec.predictor is not None:
        slide.equations.append(r"y_{ij} = \beta_{0j} + \beta_{1j} x_{ij} + \varepsilon_{ij}")
    else:
        slide.equations.append(r"y_{ij} = \beta_{0j} + \varepsilon_{ij}")

    slide.paragraphs.append(
        f"Fit every group on its own. The {len(est)} intercepts range from "
        f"{_fmt(est['intercept'].min())} to {_fmt(est['intercept'].max())}."
    )
    if spec.predictor is not None:
        slopes = est["slope"].dropna()
        if len(slopes):
            slide.paragraphs.append(
                f"The slopes range from {_fmt(slopes.min())} to {_fmt(slopes.max())}. "
                "Small groups produce the most extreme lines."
            )
        undefined = int(est["slope"].isna().sum())
        if undefined:
            slide.paragraphs.append(
                f"{undefined} group(s) have too few distinct <code>{spec.predictor}</code> "
                "values to estimate a slope at all."
            )
    slide.bullets = [
        "Each group is treated as if the others told us nothing.",
        "Estimates from small groups are noisy.",
        "There is no estimate for a new group.",
    ]
    return slide


def slide_partial_pooling(ctx: DeckContext) -> SlideContent:
    """The mixed model in notation."""
    spec = ctx.spec
    slide = SlideContent(slide_id="partial_pooling", title=strategy_label("partial"))

    if spec.random_slope:
        slide.equations = [
            r"y_{ij} = (\beta_0 + u_{0j}) + (\beta_1 + u_{1j})\, x_{ij} + \varepsilon_{ij}",
            r"\begin{pmatrix} u_{0j} \\ u_{1j} \end{pmatrix} \sim N\!\left(0, "
            r"\begin{pmatrix} \tau_0^2 & \tau_{01} \\ \tau_{01} & \tau_1^2 \end{pmatrix}\right),"
            r"\quad \varepsilon_{ij} \sim N(0, \sigma^2)",
        ]
    elif spec.predictor is not None:
        slide.equations = [
            r"y_{ij} = \beta_0 + u_{0j} + \beta_1 x_{ij} + \varepsilon_{ij}",
            r"u_{0j} \sim N(0, \tau_0^2), \quad \varepsilon_{ij} \sim N(0, \sigma^2)",
        ]
    else:
        slide.equations = [
            r"y_{ij} = \beta_0 + u_{0j} + \varepsilon_{ij}",
            r"u_{0j} \sim N(0, \tau_0^2), \quad \varepsilon_{ij} \sim N(0, \sigma^2)",
        ]
    slide.equations.append(
        r"\hat\beta_{0j}^{\text{partial}} \approx \lambda_j\, \hat\beta_{0j}^{\text{none}} "
        r"+ (1 - \lambda_j)\, \hat\beta_0, \qquad \lambda_j = \frac{\tau_0^2}{\tau_0^2 + \sigma^2 / n_j}"
    )
    slide.paragraphs.append(
        "Group effects are drawn from a common distribution. Its variance is estimated "
        "from the data, and it decides how far each group is pulled toward the population."
    )
    slide.bullets = [
        "Large groups (big n<sub>j</sub>) keep most of their own estimate.",
        "Small groups borrow strength from the rest.",
        "If groups barely differ (small τ₀²), everything collapses toward full pooling.",
    ]
    return slide


def slide_fitting(ctx: DeckContext) -> SlideContent:
    """Fitting the mixed model and reading the output."""
    partial = ctx.comparison.partial
    diag = partial.diagnostics
    spec = ctx.spec
    slide = SlideContent(
        slide_id="fitting",
        title="Fitting the mixed model",
        code=_fit_call(ctx),
        table_names=["fixed_effects"],
    )
    estimation = "REML" if spec.reml else "maximum likelihood"
    slide.paragraphs.append(
        f"Estimated by {estimation}, trying the <code>{', '.join(spec.methods)}</code> "
        f"optimizers in turn: {diag.describe()}."
    )
    if spec.predictor is not None:
        slide.paragraphs.append(
            f"Population line: intercept {_fmt(partial.intercept)}, slope {_fmt(partial.slope)} "
            f"per unit of <code>{spec.predictor}</code>."
        )
    else:
        slide.paragraphs.append(f"Population mean: {_fmt(partial.intercept)}.")
    slide.notes.append(
        "Point out the two halves of the output: fixed effects (the population) and "
        "variance components (how much groups differ)."
    )
    return slide


def slide_comparison(ctx: DeckContext) -> SlideContent:
    """Three strategies side by side."""
    slide = SlideContent(
        slide_id="comparison",
        title="Full vs. no vs. partial pooling",
        figure_names=["pooling_comparison", "estimation_error"],
        table_names=["estimates"],
    )
    slide.paragraphs.append(
        "Same data, three answers. The partial-pooling line follows the group when the "
        "group has plenty of data and leans toward the population line when it does not."
    )
    if ctx.errors is not None:
        col = "intercept_rmse"
        best = ctx.errors[col].idxmin()
        slide.paragraphs.append(
            "Because these data are simulated we know the true group coefficients. "
            f"Intercept RMSE: full {_fmt(ctx.errors.loc['full', col])}, "
            f"none {_fmt(ctx.errors.loc['none', col])}, "
            f"partial {_fmt(ctx.errors.loc['partial', col])}. "
            f"Lowest: {strategy_label(best).lower()}."
        )
    return slide


def slide_shrinkage(ctx: DeckContext) -> SlideContent:
    """Shrinkage toward the population estimate."""
    slide = SlideContent(
        slide_id="shrinkage",
        title="Shrinkage",
        figure_names=["shrinkage", "random_intercepts"],
        table_names=["shrinkage"],
    )
    check = ctx.shrinkage
    if check is not None and not check.table.empty:
        n_between = int(check.table["between"].sum())
        if check.parameter != "level":
            where = check.parameter
        elif ctx.spec.predictor is not None:
            where = f"line at the group's mean {ctx.spec.predictor}"
        else:
            where = "group mean"
        slide.paragraphs.append(
            f"For {n_between} of {len(check.table)} groups the partial-pooling {where} lies "
            "between the group's own estimate and the population value there."
        )
        if ctx.spec.random_slope:
            slide.paragraphs.append(
                "With a random slope the two coefficients are shrunk jointly, so a group "
                "can occasionally overshoot its own estimate while the pair moves inward."
            )
    mover = _largest_move(ctx)
    if mover is not None:
        slide.paragraphs.append(
            f"The largest move: group {mover['group']} (n = {mover['n']}) goes from "
            f"{_fmt(mover['none'])} to {_fmt(mover['partial'])}."
        )
    if ctx.shrinkage_weights is not None and len(ctx.shrinkage_weights):
        w = ctx.shrinkage_weights
        slide.bullets.append(
            f"Weight on the group's own data, λ<sub>j</sub>: {_fmt(w.min())} for group "
            f"{w.idxmin()} up to {_fmt(w.max())} for group {w.idxmax()}."
        )
        if ctx.spec.random_slope:
            slide.notes.append("λ uses the random-intercept formula; with a random slope it is only approximate.")
    slide.bullets.append("Extreme estimates from small groups are the ones pulled in hardest.")
    return slide


def slide_variance(ctx: DeckContext) -> SlideContent:
    """Variance components and the ICC."""
    vc = ctx.variance
    slide = SlideContent(
        slide_id="variance",
        title="Variance components and ICC",
        table_names=["variance_components"],
        equations=[r"\text{ICC} = \frac{\tau_0^2}{\tau_0^2 + \sigma^2}"],
    )
    slide.paragraphs.append(
        f"Between-group intercept variance τ₀² = {_fmt(vc.get('intercept_var'))}, "
        f"residual variance σ² = {_fmt(vc.get('residual_var'))}."
    )
    if "slope_var" in vc:
        slide.paragraphs.append(
            f"Slope variance τ₁² = {_fmt(vc['slope_var'], 3)}, intercept-slope correlation "
            f"{_fmt(vc.get('intercept_slope_corr'))}."
        )
    slide.paragraphs.append(
        f"ICC = {_fmt(ctx.icc)}: {_pct(ctx.icc)} of the variance (at "
        f"{f'{ctx.spec.predictor} = 0' if ctx.spec.random_slope else 'every predictor value'}) is between groups, "
        f"{interpret_icc(ctx.icc)} agreement within groups."
    )
    slide.notes.append("The ICC is also the correlation between two observations from the same group.")
    return slide


def slide_why_it_matters(ctx: DeckContext) -> SlideContent:
    """Inference: naive vs cluster-aware intervals, LRT."""
    slide = SlideContent(
        slide_id="why_it_matters",
        title="Why it matters for inference",
        figure_names=["interval_comparison"],
    )
    term = ctx.spec.predictor or "intercept"
    if ctx.bootstrap is not None and ctx.naive_ci is not None:
        lo, hi = ctx.naive_ci
        boot = ctx.bootstrap
        ratio = boot.width / (hi - lo) if hi > lo else float("nan")
        slide.paragraphs.append(
            f"Naive OLS interval for the {term}: [{_fmt(lo, 3)}, {_fmt(hi, 3)}]. "
            f"Cluster bootstrap ({boot.n_bootstrap} resamples of whole groups): "
            f"[{_fmt(boot.ci_lower, 3)}, {_fmt(boot.ci_upper, 3)}], {_fmt(ratio, 1)}× as wide."
        )
    if ctx.lrt is not None:
        lrt = ctx.lrt
        verdict = "clearly needed" if lrt.p_value < 0.05 else "not supported by these data"
        slide.paragraphs.append(
            f"Likelihood-ratio test of the random effects against OLS: {lrt}. "
            f"The group structure is {verdict}."
        )
        mixture = (
            f"an approximate 50:50 χ²({lrt.df - 1})/χ²({lrt.df}) mixture"
            if lrt.approximate
            else "a 50:50 χ² mixture"
        )
        slide.bullets.append(
            f"Both models are refitted by ML for the test; the p-value uses {mixture} "
            "because variances cannot be negative."
        )
    slide.bullets.append("Treating clustered rows as independent overstates certainty.")
    return slide


def slide_caveats(ctx: DeckContext) -> SlideContent:
    """Singular and non-convergent fits, shown live."""
    slide = SlideContent(slide_id="caveats", title="These models will not always fit")
    main_diag = ctx.comparison.partial.diagnostics
    slide.paragraphs.append(f"The model on the previous slides: {main_diag.describe()}.")

    demo = ctx.caveat
    if demo is not None:
        slide.code = (
            f"# {demo.description}\n"
            f'smf.mixedlm("{demo.spec.formula}", df, groups=df["{demo.spec.group}"], '
            f're_formula="{demo.spec.re_formula}").fit()'
        )
        if demo.error:
            slide.paragraphs.append(
                f"Fitting a random slope to {demo.description}: every optimizer fails "
                f"({demo.error}), so all that is left is the zero-variance answer."
            )
        else:
            slide.paragraphs.append(
                f"Fitting a random slope to {demo.description}: {demo.diagnostics.describe()}."
            )
            if "slope_var" in demo.variance_components:
                slide.paragraphs.append(
                    f"Estimated slope variance: {_fmt(demo.variance_components['slope_var'], 4)}."
                )
        for message in demo.diagnostics.warnings[:3]:
            slide.notes.append(f"Optimizer said: {message}")

    slide.bullets = [
        "Singular fit: a variance estimate sits on zero or a correlation on ±1.",
        "Non-convergence: the optimizer stopped before finding the maximum.",
        "Usual fixes: simplify the random effects, rescale predictors, collect more groups.",
    ]
    return slide


def slide_exercise(ctx: DeckContext) -> SlideContent:
    """Classroom exercise on a public dataset."""
    slide = SlideContent(slide_id="exercise", title="Your turn")
    ex = ctx.exercise
    if ex is None:
        slide.paragraphs.append("Refit the three strategies on the deck's data with a different seed.")
        return slide

    cols = ex.columns
    slide.paragraphs.append(f'Download the data: <a href="{ex.url}">{ex.url}</a>')
    slide.code = (
        "import pandas as pd\n"
        "import statsmodels.formula.api as smf\n\n"
        f'df = pd.read_csv("{ex.url}")\n'
        f'smf.mixedlm("{cols.response} ~ {cols.predictor}", df, '
        f'groups=df["{cols.group}"], re_formula="~{cols.predictor}").fit()'
    )
    slide.bullets = [
        f"Plot <code>{cols.response}</code> against <code>{cols.predictor}</code> for each <code>{cols.group}</code>.",
        "Fit full, no and partial pooling. Which groups shrink the most?",
        "Is the random slope needed?",
    ]
    if ex.preview is not None:
        slide.paragraphs.append(f"{ex.n_rows} rows in {ex.n_groups} groups.")
        slide.table_names.append("exercise_preview")
    return slide


def slide_summary(ctx: DeckContext) -> SlideContent:
    """Take-home messages."""
    slide = SlideContent(slide_id="summary", title="Summary")
    slide.bullets = [
        f"{strategy_label('full')} ignores the groups and overstates certainty.",
        f"{strategy_label('none')} overfits small groups.",
        f"{strategy_label('partial')} lets the data decide how much groups share "
        f"(here ICC = {_fmt(ctx.icc)}).",
        "Check convergence and boundary estimates before reading the output.",
    ]
    return slide


# ─────────────────────────────────────────────────────────────────────
# Orchestrator
# ─────────────────────────────────────────────────────────────────────


def generate_all_slides(ctx: DeckContext, deck_cfg: Optional[Dict[str, Any]] = None) -> List[SlideContent]:
    """Generate every slide in presentation order.

    Args:
        ctx: Deck context.
        deck_cfg: ``deck`` config section; defaults to ``ctx.deck``.

    Returns:
        Ordered list of SlideContent objects.
    """
    deck_cfg = deck_cfg if deck_cfg is not None else ctx.deck
    slides = [
        slide_title(ctx, deck_cfg),
        slide_clustered_data(ctx),
        slide_full_pooling(ctx),
        slide_no_pooling(ctx),
        slide_partial_pooling(ctx),
        slide_fitting(ctx),
        slide_comparison(ctx),
        slide_shrinkage(ctx),
        slide_variance(ctx),
        slide_why_it_matters(ctx),
        slide_caveats(ctx),
        slide_exercise(ctx),
        slide_summary(ctx),
    ]
    logger.info("Generated %d slides", len(slides))
    return slides
