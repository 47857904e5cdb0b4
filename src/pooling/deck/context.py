"""Everything the slides read from, computed once before any slide is built.

``build_context`` loads (or simulates) the dataset, fits the three pooling
strategies, runs the teaching statistics, the singular-fit demonstration and
the optional classroom-dataset download. Slides, figures and tables only read
from the resulting ``DeckContext``.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import pandas as pd
from omegaconf import DictConfig

from pooling.data.datasets import (
    BUNDLED_COLUMNS,
    ColumnMap,
    DatasetError,
    fetch_dataset,
    load_bundled_dataset,
    load_csv_dataset,
    prepare_dataset,
)
from pooling.data.simulate import SimulationConfig, simulate_clustered_data
from pooling.data.summaries import group_summary, overall_summary
from pooling.evaluation.statistics import (
    BootstrapCI,
    LRTResult,
    cluster_bootstrap_ci,
    estimation_error,
    intraclass_correlation,
    likelihood_ratio_test,
    naive_ols_ci,
    shrinkage_factors,
    variance_components,
)
from pooling.models.base import FitDiagnostics, ModelSpec
from pooling.models.comparison import (
    PoolingComparison,
    ShrinkageCheck,
    check_shrinkage,
    fit_all,
)
from pooling.models.lme_model import fit_partial_pooling
from pooling.utils.config import get_value, to_dict

logger = logging.getLogger(__name__)


@dataclass
class CaveatDemo:
    """A deliberately ill-posed mixed model and what happened when fitting it.

    Attributes:
        description: What was simulated.
        spec: Model that was fitted.
        diagnostics: Outcome of the fit.
        variance_components: Estimated components (all zero after a fallback).
        error: Optimizer exceptions when every optimizer failed.
    """

    description: str
    spec: ModelSpec
    diagnostics: FitDiagnostics
    variance_components: Dict[str, float] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass
class ExerciseInfo:
    """Classroom exercise dataset.

    Attributes:
        url: Where students download the data.
        columns: Column roles in the remote file.
        local_path: Cached copy, when it was fetched during the build.
        preview: First rows of the prepared data, when fetched.
        n_rows: Rows in the prepared data, when fetched.
        n_groups: Groups in the prepared data, when fetched.
    """

    url: str
    columns: ColumnMap
    local_path: Optional[Path] = None
    preview: Optional[pd.DataFrame] = None
    n_rows: Optional[int] = None
    n_groups: Optional[int] = None


@dataclass
class DeckContext:
    """Shared read-only state for every slide.

    Attributes:
        data: Dataset used throughout the deck.
        source: "simulate", "bundled" or "csv".
        spec: Model specification.
        comparison: Full/no/partial pooling fits.
        group_table: Per-group n/mean/SD table.
        overview: Headline numbers of the dataset.
        truth: True group coefficients (simulated data only).
        simulation: Simulation parameters (simulated data only).
        variance: Variance components of the mixed model.
        icc: Intraclass correlation.
        shrinkage: Shrinkage check of each group's level at its mean predictor value.
        shrinkage_slope: Shrinkage check for the slopes (if there is a predictor).
        shrinkage_weights: λⱼ of the random-intercept model.
        errors: RMSE of each strategy vs the truth (simulated data only).
        lrt: Likelihood-ratio test against OLS.
        bootstrap: Cluster bootstrap CI of the pooled slope.
        naive_ci: Naive OLS CI of the pooled slope.
        caveat: Singular-fit demonstration.
        exercise: Classroom exercise dataset.
        deck: The ``deck`` config section as a plain dict.
        seed: Global seed.
    """

    data: pd.DataFrame
    source: str
    spec: ModelSpec
    comparison: PoolingComparison
    group_table: pd.DataFrame
    overview: Dict[str, Any]
    truth: Optional[pd.DataFrame] = None
    simulation: Optional[SimulationConfig] = None
    variance: Dict[str, float] = field(default_factory=dict)
    icc: float = float("nan")
    shrinkage: Optional[ShrinkageCheck] = None
    shrinkage_slope: Optional[ShrinkageCheck] = None
    shrinkage_weights: Optional[pd.Series] = None
    errors: Optional[pd.DataFrame] = None
    lrt: Optional[LRTResult] = None
    bootstrap: Optional[BootstrapCI] = None
    naive_ci: Optional[tuple] = None
    caveat: Optional[CaveatDemo] = None
    exercise: Optional[ExerciseInfo] = None
    deck: Dict[str, Any] = field(default_factory=dict)
    seed: int = 0


def load_deck_data(cfg: DictConfig) -> tuple:
    """Load or simulate the deck's dataset.

    Returns:
        Tuple of (data, truth or None, SimulationConfig or None).

    Raises:
        DatasetError: If a file-based source cannot be loaded.
    """
    columns = ColumnMap.from_dict(to_dict(cfg.data.columns))
    source = cfg.data.source

    if source == "simulate":
        sim_cfg = SimulationConfig.from_dict(
            to_dict(cfg.simulation),
            seed=int(get_value(cfg, "simulation.seed", cfg.seed)),
            response=columns.response,
            predictor=columns.predictor,
            group=columns.group,
        )
        simulated = simulate_clustered_data(sim_cfg)
        return simulated.data, simulated.truth, sim_cfg

    if source == "bundled":
        name = get_value(cfg, "data.bundled_name", "classroom")
        raw = load_bundled_dataset(name)
        source_columns = ColumnMap.from_dict(BUNDLED_COLUMNS[name])
    elif source == "csv":
        mapping = get_value(cfg, "data.source_columns", None)
        source_columns = ColumnMap.from_dict(to_dict(mapping)) if mapping is not None else columns
        raw = load_csv_dataset(cfg.data.path, source_columns)
    else:
        raise DatasetError(f"Unknown data source '{source}'")

    return prepare_dataset(raw, source_columns, columns), None, None


def run_caveat_demo(cfg: DictConfig, spec: ModelSpec) -> CaveatDemo:
    """Fit a random-slope model to data that has no slope variation.

    The estimated slope variance should collapse onto zero (a singular fit),
    or the optimizer should complain. Whatever happens is reported.
    """
    params = to_dict(cfg.caveat)
    sim_cfg = SimulationConfig.from_dict(
        to_dict(cfg.simulation),
        n_groups=int(params.get("n_groups", 5)),
        n_per_group=int(params.get("n_per_group", 4)),
        group_sizes=None,
        slope_sd=float(params.get("slope_sd", 0.0)),
        intercept_sd=float(params.get("intercept_sd", cfg.simulation.intercept_sd)),
        seed=int(params.get("seed", cfg.seed + 1)),
        response=spec.response,
        predictor=spec.predictor,
        group=spec.group,
    )
    demo_spec = ModelSpec(
        response=spec.response,
        group=spec.group,
        predictor=spec.predictor,
        random_slope=True,
        reml=spec.reml,
        methods=spec.methods,
        maxiter=spec.maxiter,
        singular_tol=float(params.get("singular_tol", 1e-3)),
    )
    description = (
        f"{sim_cfg.n_groups} groups × {sim_cfg.n_per_group} observations, "
        f"true slope SD = {sim_cfg.slope_sd:g}"
    )
    data = simulate_clustered_data(sim_cfg).data

    fit = fit_partial_pooling(data, demo_spec)
    diag = fit.diagnostics
    return CaveatDemo(
        description=description,
        spec=demo_spec,
        diagnostics=diag,
        variance_components=variance_components(fit),
        error="; ".join(diag.errors) if diag.fallback else None,
    )


def load_exercise(cfg: DictConfig, cache_dir: Path) -> Optional[ExerciseInfo]:
    """Describe (and optionally download) the classroom exercise dataset."""
    url = get_value(cfg, "exercise.url", None)
    if not url:
        return None

    columns = ColumnMap.from_dict(to_dict(cfg.exercise.columns))
    info = ExerciseInfo(url=url, columns=columns)
    if not get_value(cfg, "exercise.fetch", False):
        logger.info("Exercise dataset not fetched (exercise.fetch=false)")
        return info

    path = fetch_dataset(
        url,
        cache_dir,
        timeout=float(get_value(cfg, "exercise.timeout", 20.0)),
        retries=int(get_value(cfg, "exercise.retries", 3)),
    )
    prepared = prepare_dataset(load_csv_dataset(path, columns), columns)
    info.local_path = path
    info.preview = prepared.head(int(get_value(cfg, "exercise.preview_rows", 6)))
    info.n_rows = int(len(prepared))
    info.n_groups = int(prepared[columns.group].nunique())
    return info


def build_context(cfg: DictConfig, cache_dir: Path) -> DeckContext:
    """Run every computation the deck needs.

    Args:
        cfg: Validated deck configuration.
        cache_dir: Where downloaded datasets are cached.

    Returns:
        DeckContext.
    """
    data, truth, sim_cfg = load_deck_data(cfg)
    spec = ModelSpec.from_config(to_dict(cfg.model), to_dict(cfg.data.columns))

    logger.info(f"Dataset: {len(data)} rows, {data[spec.group].nunique()} groups")
    group_table = group_summary(data, spec.response, spec.group, spec.predictor)
    overview = overall_summary(data, spec.response, spec.group)

    comparison = fit_all(data, spec)
    partial = comparison.partial

    context = DeckContext(
        data=data,
        source=str(cfg.data.source),
        spec=spec,
        comparison=comparison,
        group_table=group_table,
        overview=overview,
        truth=truth,
        simulation=sim_cfg,
        variance=variance_components(partial),
        icc=intraclass_correlation(partial),
        shrinkage=check_shrinkage(comparison, "level"),
        shrinkage_slope=check_shrinkage(comparison, "slope") if spec.predictor else None,
        shrinkage_weights=shrinkage_factors(partial),
        deck=to_dict(cfg.deck),
        seed=int(cfg.seed),
    )

    if truth is not None:
        context.errors = estimation_error(comparison, truth)

    if get_value(cfg, "lrt.enabled", True):
        context.lrt = likelihood_ratio_test(data, spec)

    if get_value(cfg, "bootstrap.enabled", True):
        ci = float(get_value(cfg, "bootstrap.ci", 0.95))
        context.bootstrap = cluster_bootstrap_ci(
            data,
            spec,
            n_bootstrap=int(get_value(cfg, "bootstrap.n_bootstrap", 500)),
            ci=ci,
            random_state=int(cfg.seed),
            progress=bool(get_value(cfg, "bootstrap.progress", False)),
        )
        context.naive_ci = naive_ols_ci(comparison.full, ci=ci)

    if get_value(cfg, "caveat.enabled", True) and spec.predictor is not None:
        context.caveat = run_caveat_demo(cfg, spec)

    context.exercise = load_exercise(cfg, Path(cache_dir))
    return context
