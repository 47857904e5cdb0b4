# src/pooling/models/base.py
"""
Shared types for the three pooling strategies.

All fits share the same interface:
- ``estimates``: one row per group with that group's intercept and slope
- ``predict(df)``: fitted values for rows of ``df``
- ``summary()``: plain dict for the summary JSON and the slide narrative
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

STRATEGIES = ("full", "none", "partial")
ESTIMATE_COLUMNS = ["group", "strategy", "intercept", "slope", "n"]


@dataclass
class ModelSpec:
    """What to regress on what, and how to fit the mixed model.

    Attributes:
        response: Response column.
        group: Grouping column.
        predictor: Predictor column, or None for intercept-only models.
        random_slope: Give each group its own slope in the mixed model.
        reml: Fit the mixed model by REML (True) or ML (False).
        methods: Optimizers tried in order by ``MixedLM.fit``.
        maxiter: Maximum optimizer iterations.
        singular_tol: Relative tolerance for flagging a boundary fit.
    """

    response: str = "y"
    group: str = "group"
    predictor: Optional[str] = "x"
    random_slope: bool = False
    reml: bool = True
    methods: Sequence[str] = ("lbfgs", "bfgs", "cg")
    maxiter: int = 500
    singular_tol: float = 1e-4

    def __post_init__(self) -> None:
        for name in ("response", "group", "predictor"):
            value = getattr(self, name)
            if value is not None and not str(value).isidentifier():
                raise ValueError(
                    f"Column name '{value}' for {name} must be a valid identifier "
                    "to be used in a model formula"
                )
        if self.random_slope and self.predictor is None:
            raise ValueError("random_slope requires a predictor")
        self.methods = list(self.methods)

    @property
    def formula(self) -> str:
        """Fixed-effects formula, e.g. ``"y ~ x"`` or ``"y ~ 1"``."""
        rhs = self.predictor if self.predictor is not None else "1"
        return f"{self.response} ~ {rhs}"

    @property
    def re_formula(self) -> Optional[str]:
        """Random-effects formula for ``MixedLM.from_formula`` (None = random intercept)."""
        return f"~{self.predictor}" if self.random_slope else None

    @property
    def columns(self) -> List[str]:
        cols = [self.group, self.response]
        if self.predictor is not None:
            cols.insert(1, self.predictor)
        return cols

    @classmethod
    def from_config(cls, model_cfg: Dict[str, Any], columns: Dict[str, Any]) -> "ModelSpec":
        """Build from the ``model`` and ``data.columns`` config sections."""
        return cls(
            response=columns["response"],
            group=columns["group"],
            predictor=columns.get("predictor"),
            random_slope=bool(model_cfg.get("random_slope", False)),
            reml=bool(model_cfg.get("reml", True)),
            methods=list(model_cfg.get("methods", ("lbfgs", "bfgs", "cg"))),
            maxiter=int(model_cfg.get("maxiter", 500)),
            singular_tol=float(model_cfg.get("singular_tol", 1e-4)),
        )


@dataclass
class FitDiagnostics:
    """Convergence and boundary diagnostics of a fit.

    Problems are recorded here rather than raised: a singular or
    non-converged fit is something to show the audience.

    Attributes:
        converged: Optimizer reported convergence.
        singular: At least one variance component sits on the boundary.
        boundary_terms: Names of the degenerate variance components.
        warnings: Messages of warnings captured during the fit.
        method: Estimation criterion, ``"REML"`` or ``"ML"``.
        optimizer: Optimizer that produced the final fit (None if all failed).
        errors: Exceptions raised by optimizers that were abandoned.
        fallback: Every optimizer raised, so the reported fit is the
            zero-variance boundary solution (the pooled OLS line).
    """

    converged: bool = True
    singular: bool = False
    boundary_terms: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    method: Optional[str] = None
    optimizer: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    fallback: bool = False

    @property
    def ok(self) -> bool:
        return self.converged and not self.singular

    def describe(self) -> str:
        """One-line human-readable status."""
        if self.ok and not self.warnings and not self.errors:
            return "converged, no boundary estimates"
        parts = []
        if self.fallback:
            parts.append("every optimizer failed, showing the zero-variance solution")
        elif not self.converged:
            parts.append("did not converge")
        if self.singular:
            parts.append(f"singular fit ({', '.join(self.boundary_terms)} on the boundary)")
        if self.errors and not self.fallback:
            parts.append(f"{len(self.errors)} optimizer(s) raised")
        if self.warnings:
            parts.append(f"{len(self.warnings)} optimizer warning(s)")
        return "; ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "converged": self.converged,
            "singular": self.singular,
            "boundary_terms": list(self.boundary_terms),
            "warnings": list(self.warnings),
            "method": self.method,
            "optimizer": self.optimizer,
            "errors": list(self.errors),
            "fallback": self.fallback,
        }


class PoolingFit(ABC):
    """Abstract base class for a fitted pooling strategy."""

    strategy: str = ""

    def __init__(self, spec: ModelSpec, data: pd.DataFrame):
        self.spec = spec
        self.group_sizes = (
            data.groupby(spec.group, observed=True)[spec.response].count().rename("n")
        )
        self.group_sizes.index = self.group_sizes.index.astype(str)

    @property
    @abstractmethod
    def estimates(self) -> pd.DataFrame:
        """Per-group coefficients with columns ``ESTIMATE_COLUMNS``."""

    @abstractmethod
    def summary(self) -> Dict[str, Any]:
        """Plain-dict summary of the fit."""

    def coefficients(self, group: str) -> tuple:
        """(intercept, slope) for one group; slope is 0 for intercept-only models."""
        est = self.estimates.set_index("group")
        if group not in est.index:
            raise KeyError(f"Unknown group '{group}'")
        row = est.loc[group]
        slope = row["slope"] if self.spec.predictor is not None else 0.0
        return float(row["intercept"]), float(slope)

    def predict(self, df: pd.DataFrame) -> np.ndarray:
        """Group-specific fitted values for the rows of ``df``.

        Groups with an undefined slope (NaN) predict their intercept.
        """
        est = self.estimates.set_index("group")
        groups = df[self.spec.group].astype(str)
        intercept = groups.map(est["intercept"]).to_numpy(dtype=float)
        if self.spec.predictor is None:
            return intercept
        slope = groups.map(est["slope"]).to_numpy(dtype=float)
        slope = np.where(np.isnan(slope), 0.0, slope)
        return intercept + slope * df[self.spec.predictor].to_numpy(dtype=float)

    def _estimates_frame(
        self,
        intercepts: Dict[str, float],
        slopes: Dict[str, float],
    ) -> pd.DataFrame:
        groups = list(self.group_sizes.index)
        return pd.DataFrame(
            {
                "group": groups,
                "strategy": self.strategy,
                "intercept": [float(intercepts[g]) for g in groups],
                "slope": [float(slopes.get(g, np.nan)) for g in groups],
                "n": [int(self.group_sizes[g]) for g in groups],
            },
            columns=ESTIMATE_COLUMNS,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(formula='{self.spec.formula}', groups={len(self.group_sizes)})"
