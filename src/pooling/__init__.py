# src/pooling/__init__.py
"""
Teaching deck on mixed-effects models.

Simulates clustered data, fits full pooling, no pooling and partial pooling
(mixed-model) regressions with statsmodels, and renders the comparison as an
HTML slide deck.
"""

__version__ = "0.1.0"
