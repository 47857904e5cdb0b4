# src/pooling/evaluation/__init__.py
"""
Evaluation for the pooling comparison.

Components:
- statistics: Variance components, ICC, shrinkage factors, LRT, cluster bootstrap
- visualization: Slide-ready plots of the three pooling strategies
"""

from .statistics import (
    BootstrapCI,
    LRTResult,
    cluster_bootstrap_ci,
    estimation_error,
    interpret_icc,
    intraclass_correlation,
    likelihood_ratio_test,
    naive_ols_ci,
    shrinkage_factors,
    variance_components,
)

__all__ = [
    "BootstrapCI",
    "LRTResult",
    "cluster_bootstrap_ci",
    "estimation_error",
    "interpret_icc",
    "intraclass_correlation",
    "likelihood_ratio_test",
    "naive_ols_ci",
    "shrinkage_factors",
    "variance_components",
]
