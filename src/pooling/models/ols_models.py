# src/pooling/models/ols_models.py
"""
Ordinary least squares fits: full pooling and no pooling.

Full pooling ignores the groups and fits a single line.
No pooling fits an independent line per group. A group whose predictor takes
fewer than two distinct values cannot identify a slope; it gets an
intercept-only fit and a NaN slope instead of being dropped.
"""

import logging
from typing import Any, Dict

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf

from pooling.models.base import ModelSpec, PoolingFit

logger = logging.getLogger(__name__)


class FullPoolingFit(PoolingFit):
    """One OLS regression for all observations.

    Args:
        spec: Model specification.
        data: Dataset containing ``spec.columns``.

    Example:
        >>> fit = FullPoolingFit(spec, df)
        >>> fit.intercept, fit.slope
    """

    strategy = "full"

    def __init__(self, spec: ModelSpec, data: pd.DataFrame):
        super().__init__(spec, data)
        self.result = smf.ols(spec.formula, data=data[spec.columns]).fit()
        logger.info(
            f"Full pooling: {spec.formula} on {int(self.result.nobs)} rows, "
            f"R²={self.result.rsquared:.3f}"
        )

    @property
    def intercept(self) -> float:
        return float(self.result.params["Intercept"])

    @property
    def slope(self) -> float:
        if self.spec.predictor is None:
            return float("nan")
        return float(self.result.params[self.spec.predictor])

    @property
    def estimates(self) -> pd.DataFrame:
        groups = self.group_sizes.index
        return self._estimates_frame(
            {g: self.intercept for g in groups},
            {g: self.slope for g in groups},
        )

    def conf_int(self, alpha: float = 0.05) -> pd.DataFrame:
        """Naive OLS confidence intervals (they assume independent rows)."""
        return self.result.conf_int(alpha=alpha).rename(columns={0: "lower", 1: "upper"})

    def summary(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy,
            "formula": self.spec.formula,
            "intercept": self.intercept,
            "slope": self.slope,
            "bse": {k: float(v) for k, v in self.result.bse.items()},
            "rsquared": float(self.result.rsquared),
            "residual_sd": float(np.sqrt(self.result.scale)),
            "llf": float(self.result.llf),
            "nobs": int(self.result.nobs),
        }


class NoPoolingFit(PoolingFit):
    """One OLS regression per group.

    Args:
        spec: Model specification.
        data: Dataset containing ``spec.columns``.
    """

    strategy = "none"

    def __init__(self, spec: ModelSpec, data: pd.DataFrame):
        super().__init__(spec, data)
        self.results: Dict[str, Any] = {}
        self.slope_undefined = []

        intercepts: Dict[str, float] = {}
        slopes: Dict[str, float] = {}
        grouped = data[spec.columns].groupby(spec.group, observed=True, sort=True)

        for group, frame in grouped:
            group = str(group)
            if spec.predictor is not None and frame[spec.predictor].nunique() >= 2:
                result = smf.ols(spec.formula, data=frame).fit()
                intercepts[group] = result.params["Intercept"]
                slopes[group] = result.params[spec.predictor]
            else:
                result = smf.ols(f"{spec.response} ~ 1", data=frame).fit()
                intercepts[group] = result.params["Intercept"]
                if spec.predictor is not None:
                    self.slope_undefined.append(group)
                    logger.warning(
                        f"No pooling: group '{group}' has {len(frame)} row(s) and "
                        f"{frame[spec.predictor].nunique()} distinct {spec.predictor} value(s); "
                        "slope is undefined"
                    )
            self.results[group] = result

        self._estimates = self._estimates_frame(intercepts, slopes)
        logger.info(f"No pooling: fitted {len(self.results)} separate regressions")

    @property
    def estimates(self) -> pd.DataFrame:
        return self._estimates

    def summary(self) -> Dict[str, Any]:
        est = self._estimates
        return {
            "strategy": self.strategy,
            "formula": self.spec.formula,
            "n_fits": len(self.results),
            "slope_undefined": list(self.slope_undefined),
            "intercept_range": [float(est["intercept"].min()), float(est["intercept"].max())],
            "slope_range": (
                [float(est["slope"].min()), float(est["slope"].max())]
                if self.spec.predictor is not None
                else None
            ),
        }


def fit_full_pooling(df: pd.DataFrame, spec: ModelSpec) -> FullPoolingFit:
    """Fit one regression ignoring cluster membership."""
    return FullPoolingFit(spec, df)


def fit_no_pooling(df: pd.DataFrame, spec: ModelSpec) -> NoPoolingFit:
    """Fit a separate regression per cluster."""
    return NoPoolingFit(spec, df)
