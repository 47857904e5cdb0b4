"""Shared style constants for the slide deck.

Consolidates strategy ordering, labels, colour palettes and the matplotlib
configuration used across all figures.
"""

from typing import Dict, List

from pooling.evaluation.visualization import (
    DEFAULT_STRATEGY_COLORS,
    DEFAULT_STRATEGY_LABELS,
    set_publication_style,
)

# ─────────────────────────────────────────────────────────────────────
# Strategy ordering and labels
# ─────────────────────────────────────────────────────────────────────

STRATEGY_ORDER: List[str] = ["full", "none", "partial"]

STRATEGY_LABELS: Dict[str, str] = dict(DEFAULT_STRATEGY_LABELS)

STRATEGY_SHORT: Dict[str, str] = {
    "full": "Full",
    "none": "None",
    "partial": "Partial",
}

# ─────────────────────────────────────────────────────────────────────
# Color palettes
# ─────────────────────────────────────────────────────────────────────

STRATEGY_COLORS: Dict[str, str] = dict(DEFAULT_STRATEGY_COLORS)

# Slide chrome, shared with the HTML template
THEME: Dict[str, str] = {
    "background": "#fbf7f0",
    "ink": "#0b1f33",
    "muted": "#54657a",
    "accent": "#1b9e77",
    "warning": "#c62828",
    "rule": "#d7cbbe",
    "code_bg": "#f5f0e8",
}

FIGURE_DPI = 110
SAVE_DPI = 200


def strategy_label(strategy: str) -> str:
    """Display label for a strategy key, with fallback.

    Args:
        strategy: "full", "none" or "partial".

    Returns:
        Label such as "Partial pooling".
    """
    return STRATEGY_LABELS.get(strategy, strategy)


def get_color(strategy: str) -> str:
    """Colour for a strategy, grey for anything unknown."""
    return STRATEGY_COLORS.get(strategy, "#808080")


def apply_style() -> None:
    """Apply the slide-figure matplotlib style."""
    set_publication_style(figure_dpi=FIGURE_DPI, save_dpi=SAVE_DPI)
