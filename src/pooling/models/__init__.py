# src/pooling/models/__init__.py
"""
Regression models for the three pooling strategies.

Components:
- base: ModelSpec, FitDiagnostics and the PoolingFit interface
- ols_models: Full pooling and no pooling (statsmodels OLS)
- lme_model: Partial pooling (statsmodels MixedLM)
- comparison: Fitting all three and checking shrinkage
"""

from .base import ESTIMATE_COLUMNS, STRATEGIES, FitDiagnostics, ModelSpec, PoolingFit
from .comparison import PoolingComparison, ShrinkageCheck, check_shrinkage, fit_all
from .lme_model import PartialPoolingFit, detect_singularity, fit_partial_pooling
from .ols_models import FullPoolingFit, NoPoolingFit, fit_full_pooling, fit_no_pooling

__all__ = [
    "ESTIMATE_COLUMNS",
    "STRATEGIES",
    "FitDiagnostics",
    "ModelSpec",
    "PoolingFit",
    "PoolingComparison",
    "ShrinkageCheck",
    "check_shrinkage",
    "fit_all",
    "PartialPoolingFit",
    "detect_singularity",
    "fit_partial_pooling",
    "FullPoolingFit",
    "NoPoolingFit",
    "fit_full_pooling",
    "fit_no_pooling",
]
