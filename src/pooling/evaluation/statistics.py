# src/pooling/evaluation/statistics.py
"""Statistics that make the case for mixed models.

This module provides:
- Variance components and the intraclass correlation (ICC)
- Per-group shrinkage factors of the random-intercept model
- A likelihood-ratio test of the random effects against plain OLS
- Cluster bootstrap confidence intervals, to contrast with naive OLS intervals
- Estimation error of each pooling strategy against the simulated truth

Example:
    >>> from pooling.evaluation.statistics import cluster_bootstrap_ci, naive_ols_ci
    >>> boot = cluster_bootstrap_ci(df, spec, n_bootstrap=500)
    >>> lo, hi = naive_ols_ci(comparison.full)
    >>> print(f"bootstrap {boot}  vs  naive [{lo:.3f}, {hi:.3f}]")
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from scipy import stats
from sklearn.utils import resample
from tqdm import tqdm

from pooling.models.base import STRATEGIES, ModelSpec
from pooling.models.comparison import PoolingComparison
from pooling.models.lme_model import PartialPoolingFit, fit_partial_pooling
from pooling.models.ols_models import FullPoolingFit, fit_full_pooling

logger = logging.getLogger(__name__)


@dataclass
class BootstrapCI:
    """Bootstrap confidence interval results.

    Attributes:
        mean: Point estimate on the original data.
        ci_lower: Lower bound of confidence interval.
        ci_upper: Upper bound of confidence interval.
        std: Standard deviation of bootstrap distribution.
        n_bootstrap: Number of bootstrap samples used.
    """

    mean: float
    ci_lower: float
    ci_upper: float
    std: float
    n_bootstrap: int = 1000

    @property
    def width(self) -> float:
        return self.ci_upper - self.ci_lower

    def __str__(self) -> str:
        return f"{self.mean:.4f} [{self.ci_lower:.4f}, {self.ci_upper:.4f}]"

    def __repr__(self) -> str:
        return (
            f"BootstrapCI(mean={self.mean:.4f}, "
            f"ci=[{self.ci_lower:.4f}, {self.ci_upper:.4f}], "
            f"std={self.std:.4f})"
        )


@dataclass
class LRTResult:
    """Likelihood-ratio test of the random effects.

    Attributes:
        statistic: 2 * (llf_mixed - llf_ols), floored at 0.
        df: Number of extra covariance parameters in the mixed model.
        p_value: P-value from the 50:50 chi-square mixture.
        llf_mixed: ML log-likelihood of the mixed model.
        llf_ols: ML log-likelihood of the OLS model.
        approximate: The mixture is only an approximation of the null
            distribution. It is the exact asymptotic null for a single
            variance, not for a 2 x 2 covariance matrix.
    """

    statistic: float
    df: int
    p_value: float
    llf_mixed: float
    llf_ols: float
    approximate: bool = False

    def __str__(self) -> str:
        stars = (
            "***"
            if self.p_value < 0.001
            else "**" if self.p_value < 0.01 else "*" if self.p_value < 0.05 else "n.s."
        )
        return f"LR={self.statistic:.2f} (df={self.df}), p={self.p_value:.4g} {stars}"


def variance_components(fit: PartialPoolingFit) -> Dict[str, float]:
    """Random-effect variances, covariance and residual variance.

    Returns:
        Dict with ``intercept_var``, ``residual_var`` and, for random-slope
        models, ``slope_var``, ``intercept_slope_cov`` and
        ``intercept_slope_corr``.
    """
    cov = fit.cov_re
    components = {
        "intercept_var": float(cov[0, 0]),
        "residual_var": fit.residual_variance,
    }
    if fit.spec.random_slope:
        components["slope_var"] = float(cov[1, 1])
        components["intercept_slope_cov"] = float(cov[0, 1])
        denom = np.sqrt(cov[0, 0] * cov[1, 1])
        components["intercept_slope_corr"] = float(cov[0, 1] / denom) if denom > 0 else float("nan")
    return components


def intraclass_correlation(fit: PartialPoolingFit) -> float:
    """ICC = τ₀² / (τ₀² + σ²).

    For random-slope models this is the ICC at predictor value 0.
    """
    tau2 = float(fit.cov_re[0, 0])
    sigma2 = fit.residual_variance
    total = tau2 + sigma2
    if total <= 0:
        return 0.0
    return tau2 / total


def interpret_icc(icc: float) -> str:
    """Interpret ICC magnitude (Koo & Li thresholds).

    - icc < 0.5: poor
    - 0.5 <= icc < 0.75: moderate
    - 0.75 <= icc < 0.9: good
    - icc >= 0.9: excellent
    """
    if icc < 0.5:
        return "poor"
    elif icc < 0.75:
        return "moderate"
    elif icc < 0.9:
        return "good"
    else:
        return "excellent"


def shrinkage_factors(
    fit: PartialPoolingFit,
    group_sizes: Optional[pd.Series] = None,
) -> pd.Series:
    """Weight each group's own mean receives in the random-intercept model.

    λⱼ = τ₀² / (τ₀² + σ² / nⱼ); the partial-pooling intercept is
    λⱼ · (group estimate) + (1 − λⱼ) · (population estimate).

    Args:
        fit: Mixed-model fit.
        group_sizes: Observations per group. Defaults to the fit's own.

    Returns:
        Series of λⱼ in [0, 1], indexed by group.
    """
    sizes = group_sizes if group_sizes is not None else fit.group_sizes
    tau2 = max(float(fit.cov_re[0, 0]), 0.0)
    sigma2 = fit.residual_variance
    factors = tau2 / (tau2 + sigma2 / sizes.astype(float))
    return factors.rename("shrinkage_factor")


def likelihood_ratio_test(df: pd.DataFrame, spec: ModelSpec) -> LRTResult:
    """Test the random effects against plain OLS.

    Both models are refitted by maximum likelihood (REML likelihoods are not
    comparable with OLS). The null puts the variance components on the
    boundary, so the p-value uses the 50:50 mixture of χ²(df-1) and χ²(df).
    That mixture is the asymptotic null for a single variance; with a random
    slope it is only an approximation (``approximate`` is set).

    Args:
        df: Dataset.
        spec: Model specification; ``reml`` is ignored.

    Returns:
        LRTResult.
    """
    ml_spec = ModelSpec(
        response=spec.response,
        group=spec.group,
        predictor=spec.predictor,
        random_slope=spec.random_slope,
        reml=False,
        methods=spec.methods,
        maxiter=spec.maxiter,
        singular_tol=spec.singular_tol,
    )
    mixed = fit_partial_pooling(df, ml_spec)
    ols = fit_full_pooling(df, ml_spec)

    llf_mixed = mixed.llf
    llf_ols = float(ols.result.llf)
    statistic = max(2.0 * (llf_mixed - llf_ols), 0.0)

    k = mixed.cov_re.shape[0]
    n_params = k * (k + 1) // 2
    upper = stats.chi2.sf(statistic, n_params)
    lower = stats.chi2.sf(statistic, n_params - 1) if n_params > 1 else float(statistic <= 0)
    p_value = float(0.5 * lower + 0.5 * upper)

    result = LRTResult(
        statistic=float(statistic),
        df=n_params,
        p_value=p_value,
        llf_mixed=llf_mixed,
        llf_ols=llf_ols,
        approximate=n_params > 1,
    )
    logger.info(f"Likelihood-ratio test vs OLS: {result}")
    return result


def naive_ols_ci(fit: FullPoolingFit, ci: float = 0.95) -> Tuple[float, float]:
    """Textbook OLS interval for the slope (intercept if there is no predictor).

    It treats every row as independent and is too narrow for clustered data.
    """
    term = fit.spec.predictor or "Intercept"
    bounds = fit.conf_int(alpha=1 - ci).loc[term]
    return float(bounds["lower"]), float(bounds["upper"])


def cluster_bootstrap_ci(
    df: pd.DataFrame,
    spec: ModelSpec,
    n_bootstrap: int = 1000,
    ci: float = 0.95,
    random_state: int = 42,
    progress: bool = False,
) -> BootstrapCI:
    """Bootstrap CI for the full-pooling slope, resampling whole groups.

    Rows within a group are not independent, so the resampling unit is the
    group. The interval is the percentile interval of the refitted slopes.

    Args:
        df: Dataset.
        spec: Model specification.
        n_bootstrap: Number of bootstrap samples.
        ci: Confidence level.
        random_state: Random seed for reproducibility.
        progress: Show a tqdm progress bar.

    Returns:
        BootstrapCI for the slope (intercept if there is no predictor).

    Raises:
        ValueError: If there are fewer than 2 groups or n_bootstrap < 1.
    """
    if n_bootstrap < 1:
        raise ValueError(f"n_bootstrap must be >= 1, got {n_bootstrap}")

    term = spec.predictor or "Intercept"
    frames = {str(g): f for g, f in df[spec.columns].groupby(spec.group, observed=True)}
    labels = sorted(frames)
    if len(labels) < 2:
        raise ValueError(f"Cluster bootstrap needs >= 2 groups, got {len(labels)}")

    rng = np.random.RandomState(random_state)
    estimate = float(smf.ols(spec.formula, data=df[spec.columns]).fit().params[term])

    boot_stats = []
    for _ in tqdm(range(n_bootstrap), desc="Cluster bootstrap", disable=not progress):
        sample = resample(labels, replace=True, n_samples=len(labels), random_state=rng.randint(0, 2**31))
        boot_df = pd.concat([frames[g] for g in sample], ignore_index=True)
        if spec.predictor is not None and boot_df[spec.predictor].nunique() < 2:
            continue
        boot_stats.append(smf.ols(spec.formula, data=boot_df).fit().params[term])

    if not boot_stats:
        raise ValueError("Every bootstrap sample was degenerate; cannot form an interval")

    boot_stats = np.asarray(boot_stats, dtype=float)
    alpha = 1 - ci
    result = BootstrapCI(
        mean=estimate,
        ci_lower=float(np.percentile(boot_stats, alpha / 2 * 100)),
        ci_upper=float(np.percentile(boot_stats, (1 - alpha / 2) * 100)),
        std=float(np.std(boot_stats)),
        n_bootstrap=len(boot_stats),
    )
    logger.info(f"Cluster bootstrap ({term}): {result}")
    return result


def estimation_error(comparison: PoolingComparison, truth: pd.DataFrame) -> pd.DataFrame:
    """Root-mean-square error of each strategy's group coefficients vs the truth.

    Args:
        comparison: Fitted comparison.
        truth: Per-group true coefficients (``group``, ``intercept``, ``slope``),
            as returned by the simulator.

    Returns:
        DataFrame indexed by strategy with ``intercept_rmse`` and
        ``slope_rmse`` columns (slope omitted for intercept-only models).
    """
    truth = truth.assign(group=truth["group"].astype(str)).set_index("group")
    parameters = ["intercept"] if comparison.spec.predictor is None else ["intercept", "slope"]

    rows = {}
    for strategy in STRATEGIES:
        est = comparison.fits[strategy].estimates.set_index("group")
        row = {}
        for parameter in parameters:
            diff = (est[parameter] - truth[parameter].reindex(est.index)).dropna()
            row[f"{parameter}_rmse"] = float(np.sqrt(np.mean(diff**2))) if len(diff) else float("nan")
        rows[strategy] = row

    table = pd.DataFrame.from_dict(rows, orient="index")
    table.index.name = "strategy"
    return table


__all__ = [
    "BootstrapCI",
    "LRTResult",
    "variance_components",
    "intraclass_correlation",
    "interpret_icc",
    "shrinkage_factors",
    "likelihood_ratio_test",
    "naive_ols_ci",
    "cluster_bootstrap_ci",
    "estimation_error",
]
