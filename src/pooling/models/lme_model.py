# src/pooling/models/lme_model.py
"""
Linear Mixed-Effects (LME) model: partial pooling.

Random intercept (optionally random slope) per group:
  y_ij = (β₀ + b₀ⱼ) + (β₁ + b₁ⱼ) · x_ij + ε_ij

Fitted via REML by default (statsmodels.MixedLM). Group-specific coefficients
are the fixed effects plus each group's BLUP, so groups with few observations
are shrunk toward the population line automatically.

Optimizer trouble (non-convergence, variance components on the boundary) is
recorded in ``FitDiagnostics`` and logged, never raised.
"""

import logging
import warnings
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf

from pooling.models.base import FitDiagnostics, ModelSpec, PoolingFit

logger = logging.getLogger(__name__)


def detect_singularity(
    cov_re: pd.DataFrame,
    scale: float,
    tol: float = 1e-4,
    names: Tuple[str, ...] = ("intercept", "slope"),
) -> List[str]:
    """Find variance components that sit on the boundary of the parameter space.

    A variance at or below ``tol * scale`` counts as zero, and an implied
    random-effect correlation with ``|r| >= 1 - tol`` counts as perfect.

    Args:
        cov_re: Random-effects covariance matrix (k x k).
        scale: Residual variance, sets the scale for ``tol``.
        tol: Relative tolerance.
        names: Display names of the random-effect terms, in order.

    Returns:
        Names of the degenerate components; empty when the fit is regular.
    """
    cov = np.atleast_2d(np.asarray(cov_re, dtype=float))
    threshold = tol * max(float(scale), np.finfo(float).tiny)
    boundary = []

    if not np.all(np.isfinite(cov)):
        return ["random-effects covariance (not finite)"]

    diag = np.diag(cov)
    for i, var in enumerate(diag):
        if var <= threshold:
            boundary.append(f"{names[i] if i < len(names) else f'term {i}'} variance")

    if cov.shape[0] == 2 and np.all(diag > threshold):
        corr = cov[0, 1] / np.sqrt(diag[0] * diag[1])
        if abs(corr) >= 1.0 - tol:
            boundary.append(f"{names[0]}-{names[1]} correlation")

    return boundary


def conditional_random_effects(
    frame: pd.DataFrame,
    spec: ModelSpec,
    fe_params: np.ndarray,
    cov_re: np.ndarray,
    scale: float,
) -> Tuple[Dict[str, np.ndarray], Dict[str, np.ndarray]]:
    """BLUPs and their conditional covariances, group by group.

    E[b | y] = Σ Z'V⁻¹(y - Xβ) and Cov[b | y] = Σ - Σ Z'V⁻¹ZΣ with
    V = ZΣZ' + σ²I. Only V is inverted, so a singular Σ is fine; with Σ = 0
    every BLUP and conditional SD is exactly zero.

    Args:
        frame: Fitted data with string group labels.
        spec: Model specification.
        fe_params: Fixed effects, intercept first.
        cov_re: Random-effects covariance (k x k).
        scale: Residual variance.

    Returns:
        Tuple of (BLUPs, conditional covariances), both keyed by group.
    """
    beta = np.asarray(fe_params, dtype=float)
    cov = np.atleast_2d(np.asarray(cov_re, dtype=float))
    blups: Dict[str, np.ndarray] = {}
    covs: Dict[str, np.ndarray] = {}
    for group, rows in frame.groupby(spec.group, observed=True, sort=True):
        ones = np.ones(len(rows))
        if spec.predictor is None:
            exog = ones[:, None]
        else:
            exog = np.column_stack([ones, rows[spec.predictor].to_numpy(dtype=float)])
        exog_re = exog if spec.random_slope else ones[:, None]

        resid = rows[spec.response].to_numpy(dtype=float) - exog @ beta
        z_cov = exog_re @ cov
        marginal = z_cov @ exog_re.T + scale * np.eye(len(rows))
        solved = np.linalg.solve(marginal, np.column_stack([resid, z_cov]))
        blups[str(group)] = z_cov.T @ solved[:, 0]
        covs[str(group)] = cov - z_cov.T @ solved[:, 1:]
    return blups, covs


class PartialPoolingFit(PoolingFit):
    """Mixed-effects regression with group random effects.

    The optimizers in ``spec.methods`` are tried in order until one converges.
    One that raises (statsmodels hits ``LinAlgError`` when a variance
    collapses onto zero) is skipped. If all of them raise, the fit reports
    the zero-variance boundary solution, which is the pooled OLS fit, and
    says so in ``diagnostics``.

    Args:
        spec: Model specification (``random_slope``/``reml``/``methods`` are used).
        data: Dataset containing ``spec.columns``.

    Example:
        >>> fit = PartialPoolingFit(ModelSpec(random_slope=True), df)
        >>> fit.fixed_effects
        >>> fit.diagnostics.describe()
    """

    strategy = "partial"

    def __init__(self, spec: ModelSpec, data: pd.DataFrame):
        super().__init__(spec, data)
        frame = data[spec.columns].copy()
        frame[spec.group] = frame[spec.group].astype(str)
        self.nobs = int(len(frame))

        model = smf.mixedlm(
            spec.formula,
            frame,
            groups=frame[spec.group],
            re_formula=spec.re_formula,
        )

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            self.result, optimizer, errors = self._run_optimizers(model)

        messages = []
        for w in caught:
            message = f"{w.category.__name__}: {w.message}"
            if message not in messages:
                messages.append(message)

        if self.result is not None:
            self._read_result(frame)
        else:
            self._boundary_solution(frame)

        term_names = ("intercept", spec.predictor) if spec.random_slope else ("intercept",)
        boundary = detect_singularity(self._cov_re, self._scale, spec.singular_tol, names=term_names)
        self.diagnostics = FitDiagnostics(
            converged=self.result is not None and bool(getattr(self.result, "converged", True)),
            singular=bool(boundary),
            boundary_terms=boundary,
            warnings=messages,
            method="REML" if spec.reml else "ML",
            optimizer=optimizer,
            errors=errors,
            fallback=self.result is None,
        )

        if self.diagnostics.ok and not messages and not errors:
            logger.info(
                f"Partial pooling: {spec.formula} | {spec.re_formula or '1'} by {spec.group} "
                f"({self.diagnostics.method}, {optimizer}) converged"
            )
        else:
            logger.warning(f"Partial pooling fit: {self.diagnostics.describe()}")
            for message in errors + messages:
                logger.warning(f"  {message}")

        self._estimates = self._compute_estimates()

    def _run_optimizers(self, model) -> Tuple[Optional[Any], Optional[str], List[str]]:
        """Fit with each optimizer in turn; keep the first converged result."""
        result, used, errors = None, None, []
        for method in self.spec.methods:
            try:
                candidate = model.fit(reml=self.spec.reml, method=method, maxiter=self.spec.maxiter)
            except (np.linalg.LinAlgError, ValueError) as e:
                errors.append(f"{method}: {type(e).__name__}: {e}")
                continue
            result, used = candidate, method
            if getattr(candidate, "converged", True):
                break
        return result, used, errors

    def _read_result(self, frame: pd.DataFrame) -> None:
        result = self.result
        self._fe_params = result.fe_params
        self._bse_fe = pd.Series(
            np.asarray(result.bse_fe, dtype=float)[: len(result.fe_params)],
            index=result.fe_params.index,
        )
        self._cov_re = np.atleast_2d(np.asarray(result.cov_re, dtype=float))
        self._scale = float(result.scale)
        self.llf, self.aic, self.bic = float(result.llf), float(result.aic), float(result.bic)

        k = self._cov_re.shape[0]
        try:
            self._blups = {str(g): np.asarray(v, dtype=float)[:k] for g, v in result.random_effects.items()}
            self._blup_covs = {
                str(g): np.atleast_2d(np.asarray(c, dtype=float))[:k, :k]
                for g, c in result.random_effects_cov.items()
            }
        except (np.linalg.LinAlgError, ValueError):
            # statsmodels inverts cov_re and refuses a singular one
            self._blups, self._blup_covs = conditional_random_effects(
                frame, self.spec, self._fe_params, self._cov_re, self._scale
            )

    def _boundary_solution(self, frame: pd.DataFrame) -> None:
        """All variance components at zero: the pooled OLS fit."""
        ols = smf.ols(self.spec.formula, data=frame).fit()
        n_fe = len(ols.params)
        k = 2 if self.spec.random_slope else 1

        self._fe_params = ols.params
        self._bse_fe = ols.bse
        self._cov_re = np.zeros((k, k))
        dof = self.nobs - n_fe if self.spec.reml else self.nobs
        self._scale = float(ols.ssr / dof)
        if self.spec.reml:
            # statsmodels reports no AIC/BIC for REML fits either
            self.llf = self.aic = self.bic = float("nan")
        else:
            self.llf = float(ols.llf)
            n_params = n_fe + k * (k + 1) // 2 + 1
            self.aic = -2.0 * self.llf + 2.0 * n_params
            self.bic = -2.0 * self.llf + np.log(self.nobs) * n_params
        self._blups, self._blup_covs = conditional_random_effects(
            frame, self.spec, self._fe_params, self._cov_re, self._scale
        )

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------

    @property
    def fixed_effects(self) -> pd.Series:
        """Population-level coefficients (β)."""
        return self._fe_params

    @property
    def bse_fe(self) -> pd.Series:
        """Standard errors of the fixed effects."""
        return self._bse_fe

    @property
    def intercept(self) -> float:
        return float(self.fixed_effects["Intercept"])

    @property
    def slope(self) -> float:
        if self.spec.predictor is None:
            return float("nan")
        return float(self.fixed_effects[self.spec.predictor])

    @property
    def cov_re(self) -> np.ndarray:
        """Random-effects covariance matrix (k x k)."""
        return self._cov_re

    @property
    def residual_variance(self) -> float:
        return self._scale

    def _per_group(self, values: Dict[str, np.ndarray]) -> pd.DataFrame:
        columns = ["intercept", "slope"] if self.spec.random_slope else ["intercept"]
        frame = pd.DataFrame.from_dict(values, orient="index", columns=columns)
        frame.index.name = "group"
        return frame.loc[[g for g in self.group_sizes.index if g in frame.index]]

    @property
    def random_effects(self) -> pd.DataFrame:
        """BLUPs, one row per group: ``intercept`` (and ``slope``) deviations."""
        return self._per_group(self._blups)

    @property
    def random_effects_se(self) -> pd.DataFrame:
        """Conditional SDs of the BLUPs (same layout as ``random_effects``)."""
        return self._per_group(
            {g: np.sqrt(np.clip(np.diag(c), 0.0, None)) for g, c in self._blup_covs.items()}
        )

    def _compute_estimates(self) -> pd.DataFrame:
        re = self.random_effects
        intercepts = {g: self.intercept + re.loc[g, "intercept"] for g in re.index}
        slopes: Dict[str, float] = {}
        if self.spec.predictor is not None:
            for g in re.index:
                deviation = re.loc[g, "slope"] if self.spec.random_slope else 0.0
                slopes[g] = self.slope + deviation
        return self._estimates_frame(intercepts, slopes)

    @property
    def estimates(self) -> pd.DataFrame:
        return self._estimates

    def predict_population(self, x: np.ndarray) -> np.ndarray:
        """Population-average line (fixed effects only)."""
        x = np.asarray(x, dtype=float)
        if self.spec.predictor is None:
            return np.full_like(x, self.intercept)
        return self.intercept + self.slope * x

    def summary(self) -> Dict[str, Any]:
        cov = self.cov_re
        summary: Dict[str, Any] = {
            "strategy": self.strategy,
            "formula": self.spec.formula,
            "re_formula": self.spec.re_formula or "1",
            "method": self.diagnostics.method,
            "fixed_effects": {k: float(v) for k, v in self.fixed_effects.items()},
            "bse_fe": {k: float(v) for k, v in self.bse_fe.items()},
            "intercept_var": float(cov[0, 0]),
            "residual_var": self.residual_variance,
            "llf": self.llf,
            "aic": self.aic,
            "bic": self.bic,
            "n_groups": int(len(self.group_sizes)),
            "nobs": self.nobs,
            "diagnostics": self.diagnostics.to_dict(),
        }
        if self.spec.random_slope:
            summary["slope_var"] = float(cov[1, 1])
            summary["intercept_slope_cov"] = float(cov[0, 1])
        return summary


def fit_partial_pooling(df: pd.DataFrame, spec: ModelSpec) -> PartialPoolingFit:
    """Fit the mixed-effects (partial pooling) model."""
    return PartialPoolingFit(spec, df)
