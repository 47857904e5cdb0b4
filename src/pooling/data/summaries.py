# src/pooling/data/summaries.py
"""Descriptive tables shown before any model is fitted."""

import logging
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def group_summary(
    df: pd.DataFrame,
    response: str,
    group: str,
    predictor: Optional[str] = None,
) -> pd.DataFrame:
    """Per-group size, mean and SD of the response.

    Args:
        df: Dataset.
        response: Response column.
        group: Grouping column.
        predictor: Optional predictor column; adds its per-group mean.

    Returns:
        DataFrame with columns ``group``, ``n``, ``mean``, ``sd``
        (plus ``<predictor>_mean``), sorted by group. The SD of a
        single-observation group is NaN.
    """
    grouped = df.groupby(group, observed=True, sort=True)
    table = grouped[response].agg(n="count", mean="mean", sd="std")
    if predictor is not None:
        table[f"{predictor}_mean"] = grouped[predictor].mean()
    table = table.reset_index().rename(columns={group: "group"})
    table["group"] = table["group"].astype(str)
    table["n"] = table["n"].astype(int)
    return table


def overall_summary(df: pd.DataFrame, response: str, group: str) -> Dict[str, Any]:
    """Headline numbers for the "clustered data" slide.

    Returns:
        Dict with ``n_obs``, ``n_groups``, ``grand_mean``, ``between_sd``
        (SD of the group means), ``within_sd`` (mean within-group SD), and
        ``min_group_size`` / ``max_group_size``.
    """
    table = group_summary(df, response, group)
    within = table["sd"].dropna()
    summary = {
        "n_obs": int(len(df)),
        "n_groups": int(len(table)),
        "grand_mean": float(df[response].mean()),
        "between_sd": float(table["mean"].std()) if len(table) > 1 else float("nan"),
        "within_sd": float(within.mean()) if len(within) else float("nan"),
        "min_group_size": int(table["n"].min()),
        "max_group_size": int(table["n"].max()),
    }
    logger.debug(f"Overall summary: {summary}")
    return summary


def format_summary_table(table: pd.DataFrame, decimals: int = 2) -> pd.DataFrame:
    """Round numeric columns and give them slide-friendly headers."""
    out = table.copy()
    numeric = out.select_dtypes(include=[np.number]).columns.drop("n", errors="ignore")
    out[numeric] = out[numeric].round(decimals)
    return out.rename(
        columns={"group": "Group", "n": "n", "mean": "Mean", "sd": "SD"}
    )
