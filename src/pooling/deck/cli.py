"""CLI entry point for the mixed-models slide deck.

Orchestrates configuration, data, model fitting, figure generation,
narrative construction and HTML deck building.

Usage:
    pooling-deck --config my_deck.yaml
    pooling-deck seed=7 data.source=bundled
    pooling-deck --output-dir ./deck_output bootstrap.n_bootstrap=200 exercise.fetch=true
"""

import argparse
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from pooling.data.datasets import DatasetError
from pooling.data.summaries import format_summary_table
from pooling.deck.context import DeckContext, build_context
from pooling.deck.figures import generate_all_figures
from pooling.deck.html_builder import build_deck, html_table
from pooling.deck.narrative import generate_all_slides
from pooling.deck.style import STRATEGY_ORDER, strategy_label
from pooling.utils.config import (
    DEFAULT_CONFIG_PATH,
    ConfigError,
    get_value,
    load_config,
    to_dict,
    validate_config,
)
from pooling.utils.logging import setup_logging
from pooling.utils.paths import DeckPaths
from pooling.utils.reproducibility import save_reproducibility_artifacts
from pooling.utils.seed import set_seed

logger = logging.getLogger(__name__)


def _build_tables(ctx: DeckContext) -> Dict[str, pd.DataFrame]:
    """Assemble every slide table as a DataFrame."""
    spec = ctx.spec
    partial = ctx.comparison.partial
    tables: Dict[str, pd.DataFrame] = {}

    tables["group_summary"] = format_summary_table(ctx.group_table)

    tables["fixed_effects"] = pd.DataFrame(
        {
            "Term": list(partial.fixed_effects.index),
            "Estimate": partial.fixed_effects.to_numpy(dtype=float),
            "SE": partial.bse_fe.reindex(partial.fixed_effects.index).to_numpy(dtype=float),
        }
    )

    wide = ctx.comparison.wide("intercept")
    estimates = pd.DataFrame({"Group": wide.index.astype(str), "n": wide["n"].astype(int).to_numpy()})
    for strategy in STRATEGY_ORDER:
        estimates[f"{strategy_label(strategy)} intercept"] = wide[strategy].to_numpy(dtype=float)
    if spec.predictor is not None:
        slopes = ctx.comparison.wide("slope")
        for strategy in STRATEGY_ORDER:
            estimates[f"{strategy_label(strategy)} slope"] = slopes[strategy].to_numpy(dtype=float)
    tables["estimates"] = estimates

    tables["variance_components"] = pd.DataFrame(
        {
            "Component": list(ctx.variance) + ["ICC"],
            "Value": list(ctx.variance.values()) + [ctx.icc],
        }
    )

    if ctx.shrinkage is not None and not ctx.shrinkage.table.empty:
        shrink = ctx.shrinkage.table.reset_index()
        shrink = shrink.rename(
            columns={
                shrink.columns[0]: "Group",
                "population": "Population",
                "none": "No pooling",
                "partial": "Partial pooling",
                "between": "Between",
                "shrinkage": "Shrinkage",
            }
        )
        if ctx.shrinkage_weights is not None:
            shrink["λ"] = ctx.shrinkage_weights.reindex(shrink["Group"].astype(str)).to_numpy()
        tables["shrinkage"] = shrink.sort_values("n", kind="stable")

    if ctx.errors is not None:
        errors = ctx.errors.reset_index()
        errors["strategy"] = errors["strategy"].map(strategy_label)
        tables["estimation_error"] = errors.rename(columns={"strategy": "Strategy"})

    if ctx.exercise is not None and ctx.exercise.preview is not None:
        tables["exercise_preview"] = ctx.exercise.preview.reset_index(drop=True)

    return tables


def _export_tables(
    tables: Dict[str, pd.DataFrame],
    tables_dir: Path,
) -> Dict[str, str]:
    """Write each table as CSV and render it for embedding.

    Args:
        tables: Named DataFrames.
        tables_dir: Directory for CSV files.

    Returns:
        Dict of table name -> HTML table string for embedding.
    """
    tables_dir.mkdir(parents=True, exist_ok=True)

    html_tables: Dict[str, str] = {}
    for name, df in tables.items():
        csv_path = tables_dir / f"{name}.csv"
        df.to_csv(csv_path, index=False)
        logger.info("Saved %s", csv_path)
        html_tables[name] = html_table(df, caption=name.replace("_", " ").capitalize())

    return html_tables


def _export_summary_json(ctx: DeckContext, output_path: Path) -> None:
    """Export fitted results as JSON for programmatic access.

    Args:
        ctx: Deck context.
        output_path: Path to write summary.json.
    """
    summary: Dict[str, Any] = {
        "source": ctx.source,
        "seed": ctx.seed,
        "model": {
            "formula": ctx.spec.formula,
            "re_formula": ctx.spec.re_formula or "1",
            "group": ctx.spec.group,
            "reml": ctx.spec.reml,
        },
        "overview": ctx.overview,
        "fits": {name: fit.summary() for name, fit in ctx.comparison.fits.items()},
        "variance_components": ctx.variance,
        "icc": ctx.icc,
    }
    if ctx.shrinkage is not None:
        summary["shrinkage"] = {
            "parameter": ctx.shrinkage.parameter,
            "fraction_between": ctx.shrinkage.fraction,
            "skipped": ctx.shrinkage.skipped,
        }
    if ctx.errors is not None:
        summary["estimation_error"] = ctx.errors.to_dict(orient="index")
    if ctx.lrt is not None:
        summary["lrt"] = {
            "statistic": ctx.lrt.statistic,
            "df": ctx.lrt.df,
            "p_value": ctx.lrt.p_value,
        }
    if ctx.bootstrap is not None:
        summary["bootstrap_ci"] = {
            "estimate": ctx.bootstrap.mean,
            "lower": ctx.bootstrap.ci_lower,
            "upper": ctx.bootstrap.ci_upper,
            "n_bootstrap": ctx.bootstrap.n_bootstrap,
        }
    if ctx.naive_ci is not None:
        summary["naive_ci"] = {"lower": ctx.naive_ci[0], "upper": ctx.naive_ci[1]}
    if ctx.caveat is not None:
        summary["caveat"] = {
            "description": ctx.caveat.description,
            "diagnostics": ctx.caveat.diagnostics.to_dict(),
            "variance_components": ctx.caveat.variance_components,
            "error": ctx.caveat.error,
        }
    if ctx.exercise is not None:
        summary["exercise"] = {
            "url": ctx.exercise.url,
            "fetched": ctx.exercise.local_path is not None,
            "n_rows": ctx.exercise.n_rows,
            "n_groups": ctx.exercise.n_groups,
        }

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        json.dump(summary, f, indent=2, default=str)
    logger.info("Summary JSON written to %s", output_path)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        description="Build the mixed-models teaching slide deck",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to YAML configuration file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Output directory for the deck (overrides paths.output_dir)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: logging.level from the config, else INFO)",
    )
    parser.add_argument(
        "overrides",
        nargs="*",
        default=[],
        help="Config overrides in key=value form, e.g. seed=7 model.random_slope=false",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for deck generation.

    Returns:
        Process exit code.
    """
    args = parse_args(argv)

    overrides = list(args.overrides)
    if args.output_dir is not None:
        overrides.append(f"paths.output_dir={args.output_dir}")

    try:
        cfg = load_config(args.config, overrides=overrides)
        validate_config(cfg)
    except (FileNotFoundError, ConfigError) as e:
        setup_logging(level=args.log_level or "INFO")
        logger.error("%s", e)
        return 2

    paths = DeckPaths.create(cfg.paths.output_dir, cache_dir=get_value(cfg, "paths.cache_dir"))
    setup_logging(
        paths.output_dir,
        log_filename=get_value(cfg, "logging.log_file", "build.log"),
        level=args.log_level or get_value(cfg, "logging.level", "INFO"),
    )

    logger.info("=" * 60)
    logger.info("Mixed-models deck builder")
    logger.info("=" * 60)
    logger.info("Config:      %s", args.config)
    logger.info("Output dir:  %s", paths.output_dir)
    logger.info("Data source: %s", cfg.data.source)
    logger.info("Seed:        %s", cfg.seed)

    set_seed(int(cfg.seed))

    # 1. Data, fits and statistics
    logger.info("--- Fitting models ---")
    try:
        ctx = build_context(cfg, paths.cache_dir)
    except DatasetError as e:
        logger.error("Dataset problem: %s", e)
        return 1

    dataset_path = paths.data_dir / "dataset.csv"
    ctx.data.to_csv(dataset_path, index=False)
    logger.info("Saved %s", dataset_path)
    if ctx.truth is not None:
        ctx.truth.to_csv(paths.data_dir / "truth.csv", index=False)

    # 2. Figures
    logger.info("--- Generating figures ---")
    figures = generate_all_figures(
        ctx,
        paths.figures_dir,
        formats=list(get_value(cfg, "deck.figure_formats", ["png", "pdf"])),
    )
    logger.info("Generated %d figures", len(figures))

    # 3. Narrative
    logger.info("--- Generating slides ---")
    slides = generate_all_slides(ctx, to_dict(cfg.deck))

    # 4. Tables
    logger.info("--- Generating tables ---")
    tables = _export_tables(_build_tables(ctx), paths.tables_dir)
    logger.info("Generated %d tables", len(tables))

    # 5. HTML deck
    logger.info("--- Building HTML deck ---")
    deck_path = build_deck(
        slides=slides,
        figures=figures,
        tables=tables,
        output_path=paths.deck_html,
        title=cfg.deck.title,
    )

    # 6. Summary and reproducibility
    _export_summary_json(ctx, paths.summary_json)
    save_reproducibility_artifacts(paths.meta_dir, to_dict(cfg), str(args.config))

    logger.info("=" * 60)
    logger.info("DONE")
    logger.info("=" * 60)
    logger.info("Deck:    %s", deck_path)
    logger.info("Figures: %s", paths.figures_dir)
    logger.info("Tables:  %s", paths.tables_dir)
    logger.info("Data:    %s", paths.summary_json)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
