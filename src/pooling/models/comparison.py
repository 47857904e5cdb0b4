# src/pooling/models/comparison.py
"""
Side-by-side comparison of full, no, and partial pooling.

The central picture of the deck: for every group, the partial-pooling
estimate sits between that group's own (no-pooling) estimate and the
population estimate, closer to the population the less data the group has.
``check_shrinkage`` verifies that picture on the fitted models.

Example:
    >>> comparison = fit_all(df, ModelSpec(random_slope=True))
    >>> comparison.wide("intercept")
    >>> check_shrinkage(comparison).fraction
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List

import numpy as np
import pandas as pd

from pooling.models.base import STRATEGIES, ModelSpec
from pooling.models.lme_model import PartialPoolingFit, fit_partial_pooling
from pooling.models.ols_models import (
    FullPoolingFit,
    NoPoolingFit,
    fit_full_pooling,
    fit_no_pooling,
)

logger = logging.getLogger(__name__)

PARAMETERS = ("intercept", "slope", "level")


@dataclass
class PoolingComparison:
    """The three fits on one dataset.

    Attributes:
        spec: Shared model specification.
        data: Dataset all three were fitted on.
        full: Full-pooling fit.
        none: No-pooling fit.
        partial: Partial-pooling (mixed) fit.
    """

    spec: ModelSpec
    data: pd.DataFrame = field(repr=False)
    full: FullPoolingFit
    none: NoPoolingFit
    partial: PartialPoolingFit

    @property
    def fits(self) -> Dict[str, object]:
        return {"full": self.full, "none": self.none, "partial": self.partial}

    @property
    def estimates(self) -> pd.DataFrame:
        """Long table: one row per (group, strategy)."""
        frames = [self.fits[s].estimates for s in STRATEGIES]
        return pd.concat(frames, ignore_index=True)

    def wide(self, parameter: str = "intercept") -> pd.DataFrame:
        """One row per group, one column per strategy, plus ``n``.

        Args:
            parameter: ``"intercept"``, ``"slope"`` or ``"level"`` (the
                fitted value at the group's own mean predictor value).
        """
        if parameter not in PARAMETERS:
            raise ValueError(f"parameter must be one of {PARAMETERS}, got '{parameter}'")
        if parameter == "level":
            return self._levels()
        est = self.estimates
        table = est.pivot(index="group", columns="strategy", values=parameter)
        table = table[list(STRATEGIES)]
        table.columns.name = None
        table["n"] = self.full.group_sizes.reindex(table.index)
        return table

    @property
    def predictor_means(self) -> pd.Series:
        """Mean predictor value per group (0 for intercept-only models)."""
        groups = self.full.group_sizes.index
        if self.spec.predictor is None:
            return pd.Series(0.0, index=groups, name="x_mean")
        labels = self.data[self.spec.group].astype(str)
        means = self.data[self.spec.predictor].groupby(labels).mean()
        return means.reindex(groups).astype(float).rename("x_mean")

    def _levels(self) -> pd.DataFrame:
        # No pooling passes through each group's (x̄, ȳ), so its level is the group mean
        means = self.predictor_means
        grid = pd.DataFrame({self.spec.group: means.index})
        if self.spec.predictor is not None:
            grid[self.spec.predictor] = means.to_numpy()
        table = pd.DataFrame(
            {s: self.fits[s].predict(grid) for s in STRATEGIES},
            index=pd.Index(means.index, name="group"),
        )
        table["n"] = self.full.group_sizes.reindex(table.index)
        return table

    def population(self, parameter: str = "intercept") -> float:
        """Population estimate from the mixed model's fixed effects."""
        if parameter == "level":
            raise ValueError("The population level differs per group; use reference('level')")
        return self.partial.intercept if parameter == "intercept" else self.partial.slope

    def reference(self, parameter: str = "intercept") -> pd.Series:
        """Per-group population value that partial pooling shrinks toward.

        For ``"level"`` this is the population line at the group's mean
        predictor value; otherwise the fixed effect, repeated per group.
        """
        groups = self.full.group_sizes.index
        if parameter == "level":
            x_mean = self.predictor_means
            values = self.partial.predict_population(x_mean.to_numpy())
            return pd.Series(values, index=groups, name="population")
        return pd.Series(self.population(parameter), index=groups, name="population")

    def prediction_grid(self, n_points: int = 25) -> pd.DataFrame:
        """Per-group fitted lines over each group's observed predictor range.

        Returns:
            Long DataFrame with ``group``, ``strategy``, predictor and
            ``fitted`` columns.
        """
        spec = self.spec
        if spec.predictor is None:
            raise ValueError("prediction_grid needs a predictor")

        rows = []
        grouped = self.data.groupby(spec.group, observed=True, sort=True)
        for group, frame in grouped:
            x = np.linspace(frame[spec.predictor].min(), frame[spec.predictor].max(), n_points)
            grid = pd.DataFrame({spec.group: str(group), spec.predictor: x})
            for strategy in STRATEGIES:
                rows.append(
                    pd.DataFrame(
                        {
                            "group": str(group),
                            "strategy": strategy,
                            spec.predictor: x,
                            "fitted": self.fits[strategy].predict(grid),
                        }
                    )
                )
        return pd.concat(rows, ignore_index=True)


def fit_all(df: pd.DataFrame, spec: ModelSpec) -> PoolingComparison:
    """Fit full, no, and partial pooling on the same data."""
    logger.info(f"Fitting all pooling strategies for {spec.formula} by {spec.group}")
    return PoolingComparison(
        spec=spec,
        data=df,
        full=fit_full_pooling(df, spec),
        none=fit_no_pooling(df, spec),
        partial=fit_partial_pooling(df, spec),
    )


@dataclass
class ShrinkageCheck:
    """Per-group check that partial pooling lies between population and no pooling.

    Attributes:
        parameter: Checked quantity (``level``, ``intercept`` or ``slope``).
        table: Per-group ``population``, ``none``, ``partial``, ``n``,
            ``between`` and ``shrinkage`` (fraction of the distance to the
            population closed).
        skipped: Groups without a no-pooling estimate.
    """

    parameter: str
    table: pd.DataFrame
    skipped: List[str] = field(default_factory=list)

    @property
    def fraction(self) -> float:
        """Share of checked groups for which the ordering holds."""
        if self.table.empty:
            return float("nan")
        return float(self.table["between"].mean())

    @property
    def holds(self) -> bool:
        return bool(len(self.table)) and bool(self.table["between"].all())


def check_shrinkage(
    comparison: PoolingComparison,
    parameter: str = "level",
    tol: float = 1e-6,
) -> ShrinkageCheck:
    """Check that each group's partial-pooling estimate is shrunk toward the population.

    The default compares each group's level at its own mean predictor value.
    There the random-intercept model gives exactly
    ``partial - population = λⱼ (none - population)``, so the ordering holds
    for every group. Raw intercepts are extrapolations to x = 0 with each
    group's own slope and need not be ordered. With a random slope the
    bivariate shrinkage can move a coefficient slightly past its own
    no-pooling value, so read ``fraction`` rather than expecting 1.0.

    Args:
        comparison: Fitted comparison.
        parameter: ``"level"``, ``"intercept"`` or ``"slope"``.
        tol: Absolute slack on the bounds.

    Returns:
        ShrinkageCheck; never raises on a violated ordering.
    """
    wide = comparison.wide(parameter)
    wide["population"] = comparison.reference(parameter).reindex(wide.index)

    usable = wide.dropna(subset=["none", "partial"])
    skipped = [str(g) for g in wide.index.difference(usable.index)]
    population = usable["population"]

    lower = np.minimum(usable["none"], population) - tol
    upper = np.maximum(usable["none"], population) + tol
    between = (usable["partial"] >= lower) & (usable["partial"] <= upper)

    distance = usable["none"] - population
    with np.errstate(divide="ignore", invalid="ignore"):
        shrinkage = np.where(
            np.abs(distance) > tol,
            1.0 - (usable["partial"] - population) / distance,
            np.nan,
        )

    table = pd.DataFrame(
        {
            "population": population,
            "none": usable["none"],
            "partial": usable["partial"],
            "n": usable["n"],
            "between": between,
            "shrinkage": shrinkage,
        },
        index=usable.index,
    )

    result = ShrinkageCheck(parameter=parameter, table=table, skipped=skipped)
    logger.info(
        f"Shrinkage check ({parameter}): ordering holds for "
        f"{int(between.sum())}/{len(between)} groups"
    )
    return result
